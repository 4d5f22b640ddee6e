"""
Database package for the channel ingestion system.

This package contains all database-related functionality including:
- SQLAlchemy models and table definitions
- Engine construction and session management
- Typed query/insert operations used by the ingestion pipeline
- Transient-error retry for store operations

Structure:
- models.py: SQLAlchemy ORM models (Channel, Video, TimestampMixin)
- database.py: Engine factory, session context manager, schema creation
- queries.py: Channel lookups, video state reads, channel upsert, video insert
- retry.py: Transient error classification and exponential backoff
- __init__.py: Package initialization and exports

Database Patterns:
- Session-per-operation with get_db_session(engine)
- Blocking calls are retried from asyncio via with_database_retry()
"""

from .models import Base, Channel, Video, TimestampMixin
from .database import (
    create_db_engine,
    get_db_session,
    check_database_connection,
    init_database,
    close_database,
)
from .queries import (
    ChannelRecord,
    ChannelUpsertError,
    LatestVideoDates,
    VideoStateRow,
    find_channel_by_canonical_url,
    find_channel_by_handle,
    find_channel_by_id,
    get_latest_video_dates,
    insert_video,
    list_video_state_rows,
    upsert_channel,
)
from .retry import (
    RetryPolicy,
    describe_database_error,
    is_transient_database_error,
    with_database_retry,
)

__all__ = [
    # Models
    "Base",
    "Channel",
    "Video",
    "TimestampMixin",
    # Engine and sessions
    "create_db_engine",
    "get_db_session",
    "check_database_connection",
    "init_database",
    "close_database",
    # Queries
    "ChannelRecord",
    "ChannelUpsertError",
    "LatestVideoDates",
    "VideoStateRow",
    "find_channel_by_canonical_url",
    "find_channel_by_handle",
    "find_channel_by_id",
    "get_latest_video_dates",
    "insert_video",
    "list_video_state_rows",
    "upsert_channel",
    # Retry
    "RetryPolicy",
    "describe_database_error",
    "is_transient_database_error",
    "with_database_retry",
]
