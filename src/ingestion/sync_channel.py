#!/usr/bin/env python3
"""
YouTube Channel to Database Sync

Loads what the database already knows about the channel, decides how to call
yt-dlp (backfill order, --dateafter cutoff, --break-on-existing with a
download archive), then streams every video yt-dlp reports into the
channels / videos tables.

Usage:
    uv run -m src.ingestion                                  # Sync YT_CHANNEL_URL
    uv run -m src.ingestion --channel-url https://www.youtube.com/@handle/videos
    uv run -m src.ingestion --max-videos 50                  # Stop after 50 playlist entries
    uv run -m src.ingestion --dry-run                        # Show the plan only
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from sqlalchemy.engine import Engine

from src.db import close_database
from src.logger import log_function
from .config import ScrapeConfig
from .ingest import (
    IngestionStats,
    create_ingestion_context,
    ingest_video,
    log_ingestion_summary,
)
from .state import (
    ChannelBootstrapState,
    DownloadArchive,
    create_download_archive_file,
    get_latest_sort_key,
    load_existing_channel_state,
)
from .strategy import ScrapePlan, plan_scrape
from .utils import shell_join
from .ytdlp import ScrapeOptions, build_scrape_command, scrape_channel

logger = logging.getLogger("scrape_youtube")


@dataclass
class SyncResult:
    """Outcome of one channel sync."""

    stats: IngestionStats = field(default_factory=IngestionStats)
    plan: Optional[ScrapePlan] = None
    command: Optional[str] = None
    channel_id: Optional[int] = None
    dry_run: bool = False


def _cleanup(archive: Optional[DownloadArchive], engine: Engine) -> None:
    if archive is not None:
        try:
            archive.cleanup()
        except OSError as e:
            logger.warning(f"Failed to remove download archive {archive.path}: {e}")

    try:
        close_database(engine)
    except Exception as e:
        logger.warning(f"Failed to close database engine: {e}")


@log_function(logger_name="scrape_youtube", log_execution_time=True)
async def run_channel_sync(
    config: ScrapeConfig,
    engine: Engine,
    executable: str,
    dry_run: bool = False,
) -> SyncResult:
    """
    Sync one channel from yt-dlp into the database.

    The archive file and the engine are released when the run ends, whether
    it succeeded or not.

    Args:
        config: Run configuration
        engine: Database engine (disposed on exit)
        executable: yt-dlp executable to spawn
        dry_run: Plan and log the yt-dlp command without running it

    Returns:
        SyncResult with the run's counters and the plan that was used

    Raises:
        IngestionError: yt-dlp could not be run or its output was unusable
        SQLAlchemyError: A store operation failed after retries
    """
    archive: Optional[DownloadArchive] = None
    result = SyncResult(dry_run=dry_run)

    try:
        logger.info(f"Scraping channel: {config.channel_url}")

        state: ChannelBootstrapState = await load_existing_channel_state(
            engine, config.channel_url, config.retry_policy
        )
        if state.archive_entries:
            archive = create_download_archive_file(state.archive_entries)

        context = create_ingestion_context(
            engine,
            config.channel_url,
            config.retry_policy,
            channel=state.channel,
            known_video_ids=state.known_video_ids,
            log_skipped_videos=config.log_skipped_videos,
        )
        result.stats = context.stats
        result.channel_id = state.channel.id if state.channel else None

        sort_key = None
        if config.auto_date_after_enabled:
            sort_key = await get_latest_sort_key(
                engine, state.channel.id if state.channel else None, config.retry_policy
            )

        plan = plan_scrape(state, sort_key, config, archive_built=archive is not None)
        result.plan = plan

        async def on_video(video: Any) -> None:
            context.stats.parsed += 1
            await ingest_video(video, context)

        options = ScrapeOptions(
            on_video=on_video,
            date_after=plan.date_after,
            reverse_playlist=plan.reverse_playlist,
            break_on_existing=plan.break_on_existing,
            download_archive_path=str(archive.path) if archive else None,
        )

        if dry_run:
            args = build_scrape_command(executable, config.channel_url, config, options)
            result.command = shell_join(executable, args)
            logger.info(f"Dry run, yt-dlp not started. Command: {result.command}")
            return result

        parsed = await scrape_channel(executable, config.channel_url, config, options)
        logger.info(f"Finished parsing {parsed} entries.")
        log_ingestion_summary(context.stats)

        if context.channel is not None:
            result.channel_id = context.channel.id
        return result

    finally:
        _cleanup(archive, engine)


def default_search_dir() -> Path:
    """Directory yt-dlp lookup starts from: the project root."""
    return Path(__file__).resolve().parent.parent.parent
