"""
Ingestion package for YouTube channel metadata.

Runs yt-dlp against a channel, streams its JSON output and stores one row per
video (plus one row per channel) without downloading any media. Every run
resumes from what the database already holds.

Modules:
    config: ScrapeConfig built from YT_* environment variables
    utils: Field coercion, URL normalization, argument helpers
    state: Bootstrap state (known ids, playlist coverage, download archive)
    strategy: Backfill / --dateafter / --break-on-existing planning
    ytdlp: yt-dlp subprocess and streaming JSON controller
    ingest: Per-video persistence and run counters
    sync_channel: Run orchestration and cleanup
    errors: Ingestion exception types

Usage:
    # Sync the configured channel
    uv run -m src.ingestion

    # Create tables first, then sync a specific channel
    uv run -m src.ingestion --init-db --channel-url https://www.youtube.com/@handle/videos
"""
