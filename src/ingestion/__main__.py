#!/usr/bin/env python3
"""
Main entry point for the ingestion package.

Runs the channel sync as a module:
    uv run -m src.ingestion

Configuration comes from YT_* / DATABASE_URL environment variables (a
.env.local or .env file is loaded if present); the flags below override them.
"""

import argparse
import asyncio
import sys

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from src.db import check_database_connection, create_db_engine, init_database
from src.logger import setup_logging
from src.ingestion.config import ScrapeConfig, load_local_env
from src.ingestion.sync_channel import SyncResult, default_search_dir, run_channel_sync
from src.ingestion.ytdlp import locate_ytdlp


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Scrape YouTube channel metadata with yt-dlp into the database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  uv run -m src.ingestion                                   # Sync YT_CHANNEL_URL
  uv run -m src.ingestion --channel-url https://www.youtube.com/@handle/videos
  uv run -m src.ingestion --max-videos 50                   # Limit playlist entries
  uv run -m src.ingestion --database-url sqlite:///data/youtube.db --init-db
  uv run -m src.ingestion --dry-run                         # Show plan and command only
        """,
    )

    parser.add_argument(
        "--channel-url",
        type=str,
        default=None,
        help="Channel URL (overrides YT_CHANNEL_URL from .env)",
    )
    parser.add_argument(
        "--max-videos",
        type=int,
        default=None,
        help="Max playlist entries for yt-dlp (overrides YT_MAX_VIDEOS)",
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="SQLAlchemy database URL (overrides DATABASE_URL)",
    )
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create missing tables before scraping",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the scrape plan and yt-dlp command without running it",
    )
    parser.add_argument(
        "--verbose", action="store_true", help="Detailed console output"
    )
    return parser


def render_summary(console: Console, result: SyncResult) -> None:
    """Print the end-of-run summary panel."""
    if result.dry_run:
        console.print(
            Panel(result.command or "", title="Dry run: yt-dlp command", border_style="yellow")
        )
        return

    stats = result.stats
    table = Table(show_header=False, box=None)
    table.add_column(style="cyan")
    table.add_column(justify="right")
    table.add_row("Parsed", str(stats.parsed))
    table.add_row("Inserted", str(stats.inserted))
    table.add_row("Skipped (existing)", str(stats.skipped_existing))
    table.add_row("Invalid", str(stats.invalid))
    if result.channel_id is not None:
        table.add_row("Channel id", str(result.channel_id))

    console.print(Panel(table, title="Channel sync complete", border_style="green"))


def main():
    """
    Entry point for the channel ingestion CLI.

    Exits the process with code 0 on success, 1 on error, or 130 when
    interrupted by the user.
    """
    args = build_parser().parse_args()

    load_local_env()

    logger = setup_logging(
        logger_name="scrape_youtube",
        log_file="logs/scrape_youtube.log",
        verbose=args.verbose,
    )
    setup_logging(
        logger_name="database",
        log_file="logs/database.log",
        verbose=args.verbose,
        console=args.verbose,
    )
    logger.info("Starting channel sync")

    console = Console()
    try:
        config = ScrapeConfig.from_env().with_overrides(
            channel_url=args.channel_url,
            playlist_end=args.max_videos if args.max_videos and args.max_videos > 0 else None,
            database_url=args.database_url,
        )
        if not config.database_url:
            raise EnvironmentError("DATABASE_URL is not set (use .env or --database-url)")

        executable = locate_ytdlp(default_search_dir(), config.ytdlp_path)
        engine = create_db_engine(config.database_url)
        if not check_database_connection(engine):
            raise ConnectionError(f"Cannot connect to the database at {config.database_url}")
        if args.init_db:
            init_database(engine)

        result = asyncio.run(
            run_channel_sync(config, engine, executable, dry_run=args.dry_run)
        )
        render_summary(console, result)
        logger.info(f"Operation completed: {result.stats}")
        sys.exit(0)
    except KeyboardInterrupt:
        print("\nSync interrupted by user", file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        print(f"✗ Sync failed: {e}", file=sys.stderr)
        logger.error(f"Sync failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
