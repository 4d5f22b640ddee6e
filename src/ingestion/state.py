"""
Bootstrap state for an ingestion run.

Before yt-dlp starts we look at what the store already holds for the target
channel: which video ids are known, how far through the channel playlist
previous runs got, and which extractor keys yt-dlp used for each id (to build
a --download-archive file).

The channel itself is resolved through an ordered list of named strategies;
the first one that finds a row wins. Missing every strategy is a normal
outcome for a channel that has never been scraped.
"""

import logging
import shutil
import tempfile
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional

from sqlalchemy.engine import Engine

from src.db import (
    ChannelRecord,
    RetryPolicy,
    VideoStateRow,
    find_channel_by_canonical_url,
    find_channel_by_handle,
    find_channel_by_id,
    get_latest_video_dates,
    list_video_state_rows,
    with_database_retry,
)
from src.logger import log_function
from .utils import (
    RawVideo,
    extract_handle_from_url,
    normalize_channel_url,
    to_integer_or_null,
    to_non_empty_string,
)

logger = logging.getLogger("scrape_youtube")

DEFAULT_ARCHIVE_EXTRACTOR_KEYS = ("youtubetab", "youtube")
CHANNEL_URL_FIELDS = ("channel_url", "playlist_channel_url", "uploader_url")
EXTRACTOR_KEY_FIELDS = ("extractor", "extractor_key", "ie_key")


class ChannelMatchStrategy(str, Enum):
    """How the existing channel row was found."""

    CANONICAL = "canonical"  # exact canonical_url
    HANDLE = "handle"  # @handle from the requested URL
    RAW_DATA = "raw_data"  # channel URL embedded in stored payloads
    FALLBACK = "fallback"  # most common channel among all stored videos


@dataclass(frozen=True)
class PlaylistCoverage:
    max_playlist_index: Optional[int] = None
    max_playlist_count: Optional[int] = None


@dataclass(frozen=True)
class DownloadArchiveEntry:
    id: str
    extractor_keys: tuple[str, ...] = ()


@dataclass
class ChannelBootstrapState:
    """Everything the planner needs to know about previous runs."""

    channel: Optional[ChannelRecord] = None
    match_strategy: Optional[ChannelMatchStrategy] = None
    known_video_ids: set[str] = field(default_factory=set)
    coverage: Optional[PlaylistCoverage] = None
    archive_entries: list[DownloadArchiveEntry] = field(default_factory=list)


@dataclass(frozen=True)
class SortKeyInfo:
    """Newest stored upload markers for the channel."""

    upload_date: Optional[str] = None
    uploaded_at: Optional[datetime] = None


@dataclass
class _ChannelMatch:
    channel: ChannelRecord
    strategy: ChannelMatchStrategy
    rows: Optional[list[VideoStateRow]] = None


@dataclass
class _LookupContext:
    engine: Engine
    canonical_url: str
    handle: Optional[str]
    retry_policy: RetryPolicy
    all_rows: Optional[list[VideoStateRow]] = None

    async def run(self, operation):
        return await with_database_retry(operation, self.retry_policy)


async def _match_canonical(ctx: _LookupContext) -> Optional[_ChannelMatch]:
    channel = await ctx.run(lambda: find_channel_by_canonical_url(ctx.engine, ctx.canonical_url))
    return _ChannelMatch(channel, ChannelMatchStrategy.CANONICAL) if channel else None


async def _match_handle(ctx: _LookupContext) -> Optional[_ChannelMatch]:
    if not ctx.handle:
        return None

    candidates = [ctx.handle]
    if ctx.handle.startswith("@"):
        candidates.append(ctx.handle[1:])

    for candidate in candidates:
        channel = await ctx.run(lambda: find_channel_by_handle(ctx.engine, candidate))
        if channel:
            return _ChannelMatch(channel, ChannelMatchStrategy.HANDLE)
    return None


def does_raw_video_match_channel(raw_video: Optional[RawVideo], canonical_url: str) -> bool:
    if not isinstance(raw_video, dict):
        return False
    for field_name in CHANNEL_URL_FIELDS:
        candidate = to_non_empty_string(raw_video.get(field_name))
        if candidate and normalize_channel_url(candidate) == canonical_url:
            return True
    return False


def _most_common_channel_id(rows: Iterable[VideoStateRow]) -> Optional[int]:
    counts = Counter(row.channel_id for row in rows if row.channel_id is not None)
    if not counts:
        return None
    return counts.most_common(1)[0][0]


async def _match_from_video_rows(ctx: _LookupContext) -> Optional[_ChannelMatch]:
    # Reads every stored video; only reached when the channel row itself is unknown
    if ctx.all_rows is None:
        ctx.all_rows = await ctx.run(lambda: list_video_state_rows(ctx.engine))

    matching = [
        row for row in ctx.all_rows if does_raw_video_match_channel(row.raw_data, ctx.canonical_url)
    ]
    if matching:
        strategy, candidates = ChannelMatchStrategy.RAW_DATA, matching
    else:
        strategy, candidates = ChannelMatchStrategy.FALLBACK, ctx.all_rows

    channel_id = _most_common_channel_id(candidates)
    if channel_id is None:
        return None

    channel = await ctx.run(lambda: find_channel_by_id(ctx.engine, channel_id))
    if channel is None:
        return None

    rows = [row for row in ctx.all_rows if row.channel_id == channel.id]
    return _ChannelMatch(channel, strategy, rows)


CHANNEL_LOOKUP_STRATEGIES: tuple[Callable[[_LookupContext], Awaitable[Optional[_ChannelMatch]]], ...] = (
    _match_canonical,
    _match_handle,
    _match_from_video_rows,
)


def extract_archive_extractor_keys(raw_video: Optional[RawVideo]) -> list[str]:
    """Lower-cased extractor names yt-dlp reported for a video, de-duplicated."""
    if not isinstance(raw_video, dict):
        return []
    keys: list[str] = []
    for field_name in EXTRACTOR_KEY_FIELDS:
        candidate = to_non_empty_string(raw_video.get(field_name))
        if candidate and candidate.lower() not in keys:
            keys.append(candidate.lower())
    return keys


def summarize_video_rows(
    rows: Iterable[VideoStateRow],
) -> tuple[set[str], Optional[PlaylistCoverage], list[DownloadArchiveEntry]]:
    """Known ids, playlist coverage and archive entries for one channel's rows."""
    known_ids: set[str] = set()
    archive_keys: dict[str, list[str]] = {}
    max_index: Optional[int] = None
    max_count: Optional[int] = None

    for row in rows:
        known_ids.add(row.id)
        keys = archive_keys.setdefault(row.id, [])
        raw_video = row.raw_data
        if not isinstance(raw_video, dict):
            continue

        playlist_index = to_integer_or_null(raw_video.get("playlist_index"))
        if playlist_index is not None:
            max_index = playlist_index if max_index is None else max(max_index, playlist_index)

        playlist_count = to_integer_or_null(raw_video.get("playlist_count"))
        if playlist_count is not None:
            max_count = playlist_count if max_count is None else max(max_count, playlist_count)

        for key in extract_archive_extractor_keys(raw_video):
            if key not in keys:
                keys.append(key)

    coverage = None
    if max_index is not None or max_count is not None:
        coverage = PlaylistCoverage(max_playlist_index=max_index, max_playlist_count=max_count)

    entries = [DownloadArchiveEntry(video_id, tuple(keys)) for video_id, keys in archive_keys.items()]
    return known_ids, coverage, entries


@log_function(logger_name="scrape_youtube")
async def load_existing_channel_state(
    engine: Engine, channel_url: str, retry_policy: RetryPolicy
) -> ChannelBootstrapState:
    """
    Resolve the stored channel for channel_url and summarize its videos.

    Args:
        engine: Store to read from
        channel_url: Channel URL as configured (normalized here)
        retry_policy: Backoff settings for each store read

    Returns:
        ChannelBootstrapState, empty when no strategy matched
    """
    canonical_url = normalize_channel_url(channel_url)
    ctx = _LookupContext(
        engine=engine,
        canonical_url=canonical_url,
        handle=extract_handle_from_url(canonical_url),
        retry_policy=retry_policy,
    )

    match: Optional[_ChannelMatch] = None
    for strategy in CHANNEL_LOOKUP_STRATEGIES:
        match = await strategy(ctx)
        if match is not None:
            break

    if match is None:
        logger.info("No existing channel record found; starting fresh scrape.")
        return ChannelBootstrapState()

    logger.info(
        f"Matched existing channel {match.channel.canonical_url} (id={match.channel.id}) "
        f"via {match.strategy.value} lookup."
    )

    rows = match.rows
    if rows is None:
        rows = await ctx.run(lambda: list_video_state_rows(engine, match.channel.id))

    known_ids, coverage, entries = summarize_video_rows(rows)
    if known_ids:
        plural = "" if len(known_ids) == 1 else "s"
        logger.info(f"Found {len(known_ids)} previously ingested video id{plural} in the database.")

    return ChannelBootstrapState(
        channel=match.channel,
        match_strategy=match.strategy,
        known_video_ids=known_ids,
        coverage=coverage,
        archive_entries=entries,
    )


async def get_latest_sort_key(
    engine: Engine, channel_id: Optional[int], retry_policy: RetryPolicy
) -> Optional[SortKeyInfo]:
    """Newest upload_date / uploaded_at for the channel (all videos if channel_id is None)."""
    latest = await with_database_retry(
        lambda: get_latest_video_dates(engine, channel_id), retry_policy
    )
    if not latest.upload_date and latest.uploaded_at is None:
        logger.info("No existing video rows found; full scrape will run.")
        return None

    parts = []
    if latest.upload_date:
        parts.append(f"upload_date={latest.upload_date}")
    if latest.uploaded_at is not None:
        parts.append(f"uploaded_at={latest.uploaded_at.isoformat()}")
    logger.info(f"Latest stored video -> {' | '.join(parts)}.")

    return SortKeyInfo(upload_date=latest.upload_date or None, uploaded_at=latest.uploaded_at)


@dataclass(frozen=True)
class DownloadArchive:
    """Temporary --download-archive file; call cleanup() when the run ends."""

    path: Path
    entry_count: int

    def cleanup(self) -> None:
        shutil.rmtree(self.path.parent)


def build_archive_lines(entries: Iterable[DownloadArchiveEntry]) -> list[str]:
    """``<extractor-key> <id>`` lines, falling back to the default keys per id."""
    lines: list[str] = []
    seen: set[str] = set()
    for entry in entries:
        for key in entry.extractor_keys or DEFAULT_ARCHIVE_EXTRACTOR_KEYS:
            normalized = key.lower()
            if not normalized:
                continue
            line = f"{normalized} {entry.id}\n"
            if line not in seen:
                seen.add(line)
                lines.append(line)
    return lines


def create_download_archive_file(
    entries: Iterable[DownloadArchiveEntry],
) -> Optional[DownloadArchive]:
    """Write the archive to a fresh temp directory, or return None if empty."""
    entries = list(entries)
    lines = build_archive_lines(entries)
    if not lines:
        return None

    temp_dir = Path(tempfile.mkdtemp(prefix="yt-archive-"))
    archive_path = temp_dir / "download-archive.txt"
    archive_path.write_text("".join(lines), encoding="utf-8")

    plural = "y" if len(entries) == 1 else "ies"
    logger.info(
        f"Prepared download archive with {len(entries)} entr{plural} so duplicates are skipped immediately."
    )
    return DownloadArchive(path=archive_path, entry_count=len(entries))
