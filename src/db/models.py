"""
SQLAlchemy ORM models for the channel ingestion system.

This module defines the database schema using SQLAlchemy's declarative base.
All models inherit from Base and use consistent naming conventions.

Models:
    Channel: A YouTube channel, keyed by its normalized canonical URL
    Video: A single video scraped by yt-dlp, with the full raw payload
    TimestampMixin: Provides automatic created_at/updated_at timestamps
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    false,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON everywhere else
RawPayload = JSON().with_variant(JSONB(), "postgresql")


class TimestampMixin:
    """
    Mixin to add automatic timestamp tracking to models.

    Provides:
        created_at: Timestamp when record was created (set automatically)
        updated_at: Timestamp when record was last modified (updated automatically)

    Both fields use database-level defaults (func.now()) for consistency.
    """

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class Channel(Base, TimestampMixin):
    """
    Normalized channel metadata, stored once instead of on every video row.

    Attributes:
        id: Store-assigned integer primary key
        canonical_url: Normalized channel URL (no tab suffix, no query, trailing slash)
        external_id: YouTube channel id (UC...) when yt-dlp reported one
        handle: Channel handle (e.g. "@CareyNieuwhof")
        display_name: Human readable channel name
    """

    __tablename__ = "channels"

    id = Column(Integer, primary_key=True, autoincrement=True)
    canonical_url = Column(Text, nullable=False, unique=True)
    external_id = Column(Text, nullable=True)
    handle = Column(Text, nullable=True)
    display_name = Column(Text, nullable=True)

    __table_args__ = (Index("channels_handle_idx", "handle"),)

    def __repr__(self):
        return f"<Channel(id={self.id}, canonical_url='{self.canonical_url}', handle={self.handle})>"


class Video(Base, TimestampMixin):
    """
    Raw metadata emitted by yt-dlp for one video.

    A few searchable columns are denormalized next to the complete payload in
    raw_data. Rows are inserted once and never refreshed by later scrapes.

    Attributes:
        id: yt-dlp video id (primary key)
        channel_id: Owning channel (restrict on delete)
        video_url: Watch URL
        title: Video title, falls back to the id when yt-dlp omitted it
        description: Optional description
        duration_seconds: Optional duration in seconds
        published_timestamp: Optional epoch seconds reported by yt-dlp
        upload_date: Optional YYYYMMDD string reported by yt-dlp
        uploaded_at: Resolved upload instant (timestamp or upload_date)
        scraped_at: When the run that inserted the row started
        is_live: Whether the video was live when scraped
        raw_data: Full yt-dlp JSON payload
    """

    __tablename__ = "videos"

    id = Column(String, primary_key=True)
    channel_id = Column(
        Integer,
        ForeignKey("channels.id", ondelete="RESTRICT"),
        nullable=False,
    )
    video_url = Column(Text, nullable=False)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    published_timestamp = Column(Integer, nullable=True)
    upload_date = Column(String(8), nullable=True)
    uploaded_at = Column(DateTime(timezone=True), nullable=True)
    scraped_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    is_live = Column(Boolean, nullable=False, default=False, server_default=false())
    raw_data = Column(RawPayload, nullable=False)

    __table_args__ = (
        Index("videos_channel_id_idx", "channel_id"),
        Index("videos_uploaded_at_idx", "uploaded_at"),
    )

    def __repr__(self):
        return f"<Video(id={self.id}, channel_id={self.channel_id}, title='{self.title}')>"
