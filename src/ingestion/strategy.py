"""
Scrape planning from bootstrap state.

The decisions are independent pure functions so each one can be checked on
its own; plan_scrape combines them and logs what was decided and why.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from .config import ScrapeConfig
from .state import ChannelBootstrapState, PlaylistCoverage, SortKeyInfo
from .utils import parse_upload_date

logger = logging.getLogger("scrape_youtube")


@dataclass(frozen=True)
class ScrapePlan:
    """yt-dlp options derived from stored state."""

    reverse_playlist: bool = False
    break_on_existing: bool = False
    date_after: Optional[str] = None
    auto_date_after_blocked: bool = False


def _coverage_numbers(coverage: Optional[PlaylistCoverage]) -> tuple[Optional[int], Optional[int]]:
    if coverage is None:
        return None, None
    return coverage.max_playlist_index, coverage.max_playlist_count


def needs_playlist_backfill(state: ChannelBootstrapState) -> bool:
    """
    Whether to walk the playlist oldest-first.

    True when videos are known but the deepest playlist position stored is
    still short of the playlist size a previous run reported, i.e. an earlier
    run stopped before reaching the oldest videos.
    """
    if not state.known_video_ids:
        return False

    max_index, max_count = _coverage_numbers(state.coverage)
    if max_index is None or max_count is None or max_count <= 0:
        return False

    return max_index < max_count


def should_use_auto_date_after(state: ChannelBootstrapState) -> bool:
    """Auto cutoff is safe for fresh channels and fully backfilled ones."""
    if not state.known_video_ids:
        return True

    max_index, max_count = _coverage_numbers(state.coverage)
    return max_index is not None and max_count is not None and 0 < max_count <= max_index


def upload_date_to_datetime(upload_date: Optional[str]) -> Optional[datetime]:
    if not upload_date:
        return None
    seconds = parse_upload_date(upload_date)
    if math.isnan(seconds):
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def format_date_as_yyyymmdd(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y%m%d")


def compute_date_after(sort_key: Optional[SortKeyInfo]) -> Optional[str]:
    """
    One UTC day before the newest stored upload, as YYYYMMDD.

    The day of margin covers videos whose upload_date bucket differs from
    their timestamp.
    """
    if sort_key is None:
        return None

    candidates = [upload_date_to_datetime(sort_key.upload_date), sort_key.uploaded_at]
    candidates = [c for c in candidates if c is not None]
    if not candidates:
        return None

    baseline = max(
        c if c.tzinfo is not None else c.replace(tzinfo=timezone.utc) for c in candidates
    )
    try:
        return format_date_as_yyyymmdd(baseline - timedelta(days=1))
    except OverflowError:
        return None


def should_break_on_existing(
    archive_built: bool, state: ChannelBootstrapState, backfill: bool
) -> bool:
    # During backfill the archived videos come first in playlist order
    return archive_built and bool(state.known_video_ids) and not backfill


def log_playlist_coverage_hint(coverage: Optional[PlaylistCoverage]) -> None:
    max_index, max_count = _coverage_numbers(coverage)
    if max_index is not None and max_count is not None:
        logger.info(
            f"Playlist coverage -> processed {max_index} of {max_count} reported entries."
        )
    elif max_index is not None:
        logger.info(f"Playlist coverage -> highest playlist_index seen so far: {max_index}.")


def plan_scrape(
    state: ChannelBootstrapState,
    sort_key: Optional[SortKeyInfo],
    config: ScrapeConfig,
    archive_built: bool,
) -> ScrapePlan:
    """Combine the individual decisions into the options for this run."""
    log_playlist_coverage_hint(state.coverage)

    backfill = needs_playlist_backfill(state)
    if backfill:
        logger.info(
            "Playlist backfill mode enabled (processing oldest items first to resume "
            "where the previous run stopped)."
        )

    break_on_existing = should_break_on_existing(archive_built, state, backfill)
    if break_on_existing:
        logger.info(
            "Will stop early once an already ingested video is encountered (--break-on-existing)."
        )

    date_after = None
    blocked = False
    if config.user_specified_date_after:
        logger.info("Using user supplied --dateafter value from YT_YTDLP_EXTRA_ARGS.")
    elif config.auto_date_after_enabled:
        if should_use_auto_date_after(state):
            date_after = compute_date_after(sort_key)
        else:
            blocked = True
            logger.info(
                "Auto --dateafter disabled because this channel still has older playlist items to backfill."
            )

    if date_after:
        logger.info(
            f"Auto-applying '--dateafter {date_after}' to skip previously ingested videos "
            "(set YT_DISABLE_AUTO_DATEAFTER=1 to disable)."
        )

    return ScrapePlan(
        reverse_playlist=backfill,
        break_on_existing=break_on_existing,
        date_after=date_after,
        auto_date_after_blocked=blocked,
    )
