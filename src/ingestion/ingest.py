"""
Persist yt-dlp records as Channel / Video rows.

ingest_video is the per-record handler the stream controller dispatches. It
runs on the event loop; the store calls themselves go through
with_database_retry and execute in worker threads, so the counters and the
known-id set below are only ever touched from the loop.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.engine import Engine

from src.db import ChannelRecord, RetryPolicy, insert_video, upsert_channel, with_database_retry
from .utils import (
    RawVideo,
    extract_handle_from_url,
    get_uploaded_at_date,
    is_live_video,
    normalize_channel_url,
    resolve_video_url,
    to_integer_or_null,
    to_non_empty_string,
    to_optional_string,
)

logger = logging.getLogger("scrape_youtube")


@dataclass
class IngestionStats:
    parsed: int = 0
    inserted: int = 0
    skipped_existing: int = 0
    invalid: int = 0


@dataclass
class IngestionContext:
    """Mutable state shared by every ingest_video call of one run."""

    engine: Engine
    channel_url: str
    retry_policy: RetryPolicy
    scraped_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    stats: IngestionStats = field(default_factory=IngestionStats)
    known_ids: set[str] = field(default_factory=set)
    channel: Optional[ChannelRecord] = None
    log_skipped_videos: bool = False
    _channel_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


def create_ingestion_context(
    engine: Engine,
    channel_url: str,
    retry_policy: RetryPolicy,
    channel: Optional[ChannelRecord] = None,
    known_video_ids: Optional[set[str]] = None,
    log_skipped_videos: bool = False,
) -> IngestionContext:
    return IngestionContext(
        engine=engine,
        channel_url=normalize_channel_url(channel_url),
        retry_policy=retry_policy,
        known_ids=set(known_video_ids or ()),
        channel=channel,
        log_skipped_videos=log_skipped_videos,
    )


def _first_string(video: RawVideo, *keys: str) -> Optional[str]:
    for key in keys:
        value = to_non_empty_string(video.get(key))
        if value:
            return value
    return None


def build_channel_insert_payload(
    video: RawVideo, fallback_channel_url: str, scraped_at: datetime
) -> dict[str, Any]:
    """
    Channel columns taken from the video's own metadata.

    The video's channel URL wins over the requested one, so a redirecting or
    aliased channel URL still lands on the channel yt-dlp actually scraped.
    """
    canonical_source = (
        _first_string(video, "channel_url", "playlist_channel_url", "uploader_url")
        or fallback_channel_url
    )
    canonical_url = normalize_channel_url(canonical_source)

    return {
        "canonical_url": canonical_url,
        "external_id": _first_string(video, "channel_id", "playlist_channel_id", "uploader_id"),
        "handle": to_non_empty_string(video.get("channel_handle"))
        or extract_handle_from_url(canonical_url),
        "display_name": _first_string(video, "channel", "playlist_channel", "uploader"),
        "updated_at": scraped_at,
    }


def map_raw_video_to_insert(
    video: RawVideo, channel_id: int, scraped_at: datetime
) -> Optional[dict[str, Any]]:
    """Video columns for a payload, or None if it has no usable id."""
    video_id = to_non_empty_string(video.get("id"))
    if not video_id:
        return None

    return {
        "id": video_id,
        "channel_id": channel_id,
        "video_url": resolve_video_url(video, video_id),
        "title": to_non_empty_string(video.get("title")) or video_id,
        "description": to_optional_string(video.get("description")),
        "duration_seconds": to_integer_or_null(video.get("duration")),
        "published_timestamp": to_integer_or_null(video.get("timestamp")),
        "upload_date": to_non_empty_string(video.get("upload_date")),
        "uploaded_at": get_uploaded_at_date(video),
        "scraped_at": scraped_at,
        "is_live": is_live_video(video),
        "raw_data": video,
        "updated_at": datetime.now(timezone.utc),
    }


async def ensure_channel_record(video: RawVideo, context: IngestionContext) -> ChannelRecord:
    """Return the run's channel, upserting it from the first video if needed."""
    if context.channel is not None:
        return context.channel

    async with context._channel_lock:
        # Another record may have resolved it while we waited
        if context.channel is not None:
            return context.channel

        payload = build_channel_insert_payload(video, context.channel_url, context.scraped_at)
        record = await with_database_retry(
            lambda: upsert_channel(context.engine, payload), context.retry_policy
        )
        logger.info(f"Using channel {record.canonical_url} (id={record.id}).")
        context.channel = record
        return record


def _record_skipped(video_id: str, context: IngestionContext) -> None:
    context.stats.skipped_existing += 1
    context.known_ids.add(video_id)
    if context.log_skipped_videos:
        logger.info(f"Skipping already ingested video {video_id}")


async def ingest_video(video: Any, context: IngestionContext) -> None:
    """
    Store one yt-dlp record.

    Records without an id are counted as invalid and dropped. Ids already
    known to this run, or rejected by the store's primary key, are counted as
    skipped. Store errors propagate to the caller.
    """
    video_id = to_non_empty_string(video.get("id")) if isinstance(video, dict) else None
    if not video_id:
        context.stats.invalid += 1
        logger.warning("Skipping malformed video entry (missing id).")
        return

    if video_id in context.known_ids:
        _record_skipped(video_id, context)
        return

    channel = await ensure_channel_record(video, context)
    mapped = map_raw_video_to_insert(video, channel.id, context.scraped_at)

    inserted = await with_database_retry(
        lambda: insert_video(context.engine, mapped), context.retry_policy
    )
    if not inserted:
        _record_skipped(video_id, context)
        return

    context.stats.inserted += 1
    context.known_ids.add(video_id)
    logger.info(f"Inserted video {video_id}: {mapped['title']}")


def log_ingestion_summary(stats: IngestionStats) -> None:
    logger.info(
        f"Summary => parsed {stats.parsed}, inserted {stats.inserted}, "
        f"skipped {stats.skipped_existing}, invalid {stats.invalid}."
    )
