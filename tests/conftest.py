"""
Shared pytest fixtures.

Every test gets its own file-backed SQLite database and, when it needs one, a
fake yt-dlp script that replays canned JSON lines.
"""

import json
import shlex
import stat
from pathlib import Path

import pytest

from src.db import RetryPolicy, close_database, create_db_engine, init_database
from src.ingestion.config import RateLimitPreset, ScrapeConfig


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'youtube.db'}"


@pytest.fixture
def engine(database_url):
    engine = create_db_engine(database_url)
    init_database(engine)
    yield engine
    close_database(engine)


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay_ms=50, max_delay_ms=50)


@pytest.fixture
def scrape_config(database_url, retry_policy) -> ScrapeConfig:
    return ScrapeConfig(
        database_url=database_url,
        channel_url="https://www.youtube.com/@example/videos",
        rate_limit_preset=RateLimitPreset("sleep", explicit=False),
        retry_policy=retry_policy,
    )


def make_video(video_id, **overrides) -> dict:
    """A yt-dlp style payload for a video of https://www.youtube.com/@example."""
    video = {
        "id": video_id,
        "title": f"Video {video_id}",
        "webpage_url": f"https://www.youtube.com/watch?v={video_id}",
        "channel_url": "https://www.youtube.com/@example",
        "channel_id": "UCexample",
        "channel": "Example Channel",
        "uploader_url": "https://www.youtube.com/@example",
        "extractor_key": "Youtube",
        "upload_date": "20240115",
        "timestamp": 1705312800,
        "duration": 321,
    }
    video.update(overrides)
    return video


@pytest.fixture
def fake_ytdlp(tmp_path):
    """
    Factory writing an executable yt-dlp stand-in.

    The script records its arguments (one per line) to ``args.txt``, prints
    each given stdout line, optionally writes stderr and exits with the given
    code.
    """
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()

    def build(lines=(), stderr="", exit_code=0) -> Path:
        stdout_file = bin_dir / "stdout.txt"
        stdout_file.write_text(
            "".join(
                (line if isinstance(line, str) else json.dumps(line)) + "\n" for line in lines
            ),
            encoding="utf-8",
        )
        script = bin_dir / "yt-dlp"
        script.write_text(
            "#!/bin/sh\n"
            f'for arg in "$@"; do printf "%s\\n" "$arg"; done > {shlex.quote(str(bin_dir / "args.txt"))}\n'
            f"cat {shlex.quote(str(stdout_file))}\n"
            + (f"printf '%s\\n' {shlex.quote(stderr)} >&2\n" if stderr else "")
            + f"exit {exit_code}\n",
            encoding="utf-8",
        )
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return build


def read_recorded_args(script: Path) -> list[str]:
    return (script.parent / "args.txt").read_text(encoding="utf-8").splitlines()
