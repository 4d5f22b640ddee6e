"""
Typed store operations used by the ingestion pipeline.

Every function here is blocking and does one complete unit of work in its own
session, so it can be handed to with_database_retry and re-run safely.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from .database import get_db_session
from .models import Channel, Video
from src.logger import log_function

db_logger = logging.getLogger("database")


class ChannelUpsertError(RuntimeError):
    """The store accepted a channel upsert but returned no row."""


@dataclass(frozen=True)
class ChannelRecord:
    """Detached snapshot of a channels row."""

    id: int
    canonical_url: str
    external_id: Optional[str] = None
    handle: Optional[str] = None
    display_name: Optional[str] = None


@dataclass(frozen=True)
class VideoStateRow:
    """The columns the state loader needs from a videos row."""

    id: str
    channel_id: Optional[int]
    raw_data: Any


@dataclass(frozen=True)
class LatestVideoDates:
    """Raw max() aggregates over the videos table."""

    upload_date: Optional[str] = None
    uploaded_at: Optional[datetime] = None


def _to_record(channel: Optional[Channel]) -> Optional[ChannelRecord]:
    if channel is None:
        return None
    return ChannelRecord(
        id=channel.id,
        canonical_url=channel.canonical_url,
        external_id=channel.external_id,
        handle=channel.handle,
        display_name=channel.display_name,
    )


def _dialect_insert(session: Session, model):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise ValueError(f"Upserts are not supported for the {dialect} dialect")


def find_channel_by_canonical_url(engine: Engine, canonical_url: str) -> Optional[ChannelRecord]:
    with get_db_session(engine) as session:
        channel = session.query(Channel).filter(Channel.canonical_url == canonical_url).first()
        return _to_record(channel)


def find_channel_by_handle(engine: Engine, handle: str) -> Optional[ChannelRecord]:
    with get_db_session(engine) as session:
        channel = session.query(Channel).filter(Channel.handle == handle).first()
        return _to_record(channel)


def find_channel_by_id(engine: Engine, channel_id: int) -> Optional[ChannelRecord]:
    with get_db_session(engine) as session:
        return _to_record(session.get(Channel, channel_id))


@log_function(logger_name="database")
def list_video_state_rows(engine: Engine, channel_id: Optional[int] = None) -> list[VideoStateRow]:
    """
    Fetch id, channel_id and raw_data for videos.

    Without a channel id this reads the whole table, which the channel
    resolution fallbacks rely on.
    """
    stmt = select(Video.id, Video.channel_id, Video.raw_data)
    if channel_id is not None:
        stmt = stmt.where(Video.channel_id == channel_id)

    with get_db_session(engine) as session:
        rows = session.execute(stmt).all()

    db_logger.debug(f"Loaded {len(rows)} video state rows (channel_id={channel_id})")
    return [VideoStateRow(id=row.id, channel_id=row.channel_id, raw_data=row.raw_data) for row in rows]


def get_latest_video_dates(engine: Engine, channel_id: Optional[int] = None) -> LatestVideoDates:
    """Newest upload_date string and uploaded_at instant, optionally per channel."""
    stmt = select(
        func.max(Video.upload_date).label("upload_date"),
        func.max(Video.uploaded_at).label("uploaded_at"),
    )
    if channel_id is not None:
        stmt = stmt.where(Video.channel_id == channel_id)

    with get_db_session(engine) as session:
        row = session.execute(stmt).first()

    if row is None:
        return LatestVideoDates()

    uploaded_at = row.uploaded_at
    if isinstance(uploaded_at, str):
        # Some drivers hand aggregates back untyped
        try:
            uploaded_at = datetime.fromisoformat(uploaded_at)
        except ValueError:
            uploaded_at = None
    if isinstance(uploaded_at, datetime) and uploaded_at.tzinfo is None:
        uploaded_at = uploaded_at.replace(tzinfo=timezone.utc)

    return LatestVideoDates(upload_date=row.upload_date, uploaded_at=uploaded_at)


@log_function(logger_name="database", log_args=True)
def upsert_channel(engine: Engine, payload: dict[str, Any]) -> ChannelRecord:
    """
    Insert a channel or refresh its denormalized fields.

    Conflicts on canonical_url update external_id, handle, display_name and
    updated_at from the incoming payload; the id and URL never change.

    Raises:
        ChannelUpsertError: If the store returned no row.
    """
    with get_db_session(engine) as session:
        stmt = _dialect_insert(session, Channel).values(**payload)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Channel.canonical_url],
            set_={
                "external_id": stmt.excluded.external_id,
                "handle": stmt.excluded.handle,
                "display_name": stmt.excluded.display_name,
                "updated_at": stmt.excluded.updated_at,
            },
        ).returning(
            Channel.id,
            Channel.canonical_url,
            Channel.external_id,
            Channel.handle,
            Channel.display_name,
        )
        row = session.execute(stmt).first()
        session.commit()

    if row is None:
        raise ChannelUpsertError(
            f"Failed to upsert channel {payload.get('canonical_url')}; database returned no record."
        )

    return ChannelRecord(
        id=row.id,
        canonical_url=row.canonical_url,
        external_id=row.external_id,
        handle=row.handle,
        display_name=row.display_name,
    )


def insert_video(engine: Engine, payload: dict[str, Any]) -> bool:
    """
    Insert a video unless its id is already stored.

    Returns:
        bool: True if a new row was written, False if the id already existed
    """
    with get_db_session(engine) as session:
        stmt = (
            _dialect_insert(session, Video)
            .values(**payload)
            .on_conflict_do_nothing(index_elements=[Video.id])
            .returning(Video.id)
        )
        inserted = session.execute(stmt).first()
        session.commit()

    return inserted is not None
