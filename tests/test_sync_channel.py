import asyncio

import pytest
from sqlalchemy import func, select

from src.db import Channel, Video, get_db_session
from src.ingestion.sync_channel import run_channel_sync
from tests.conftest import make_video, read_recorded_args


def count_rows(engine, model):
    with get_db_session(engine) as session:
        return session.execute(select(func.count()).select_from(model)).scalar_one()


def sync(config, engine, script, **kwargs):
    return asyncio.run(run_channel_sync(config, engine, str(script), **kwargs))


class TestRunChannelSync:
    def test_duplicate_within_one_run(self, scrape_config, engine, fake_ytdlp):
        script = fake_ytdlp([make_video("a"), make_video("b"), make_video("b")])

        result = sync(scrape_config, engine, script)

        stats = result.stats
        assert (stats.parsed, stats.inserted, stats.skipped_existing, stats.invalid) == (3, 2, 1, 0)
        assert count_rows(engine, Video) == 2
        assert count_rows(engine, Channel) == 1

    def test_rerun_is_idempotent(self, scrape_config, engine, fake_ytdlp):
        script = fake_ytdlp([make_video("abc123")])
        first = sync(scrape_config, engine, script)
        assert first.stats.inserted == 1

        second = sync(scrape_config, engine, script)

        assert second.stats.inserted == 0
        assert second.stats.skipped_existing == 1
        assert count_rows(engine, Video) == 1

    def test_invalid_records_are_counted(self, scrape_config, engine, fake_ytdlp):
        script = fake_ytdlp([{"title": "no id"}, [1, 2], make_video("a")])

        stats = sync(scrape_config, engine, script).stats

        assert (stats.parsed, stats.inserted, stats.invalid) == (3, 1, 2)
        assert count_rows(engine, Video) == 1

    def test_channel_row_built_from_video_metadata(self, scrape_config, engine, fake_ytdlp):
        script = fake_ytdlp([make_video("a")])

        result = sync(scrape_config, engine, script)

        with get_db_session(engine) as session:
            channel = session.execute(select(Channel)).scalar_one()
            video = session.get(Video, "a")
            assert channel.canonical_url == "https://www.youtube.com/@example/"
            assert channel.external_id == "UCexample"
            assert channel.handle == "@example"
            assert channel.display_name == "Example Channel"
            assert video.channel_id == channel.id == result.channel_id
            assert video.upload_date == "20240115"
            assert video.duration_seconds == 321
            assert video.raw_data["id"] == "a"

    def test_second_run_uses_archive_and_cutoff(self, scrape_config, engine, fake_ytdlp):
        sync(scrape_config, engine, fake_ytdlp([make_video("a", playlist_index=1, playlist_count=1)]))

        script = fake_ytdlp([make_video("b")])
        result = sync(scrape_config, engine, script)

        args = read_recorded_args(script)
        assert args[args.index("--dateafter") + 1] == "20240114"
        assert "--break-on-existing" in args
        assert "--download-archive" in args
        assert "--playlist-reverse" not in args
        assert result.plan.break_on_existing

    def test_partial_coverage_triggers_backfill(self, scrape_config, engine, fake_ytdlp):
        sync(scrape_config, engine, fake_ytdlp([make_video("a", playlist_index=1, playlist_count=5)]))

        script = fake_ytdlp([make_video("b", playlist_index=2, playlist_count=5)])
        result = sync(scrape_config, engine, script)

        args = read_recorded_args(script)
        assert "--playlist-reverse" in args
        assert "--break-on-existing" not in args
        assert "--dateafter" not in args
        assert result.plan.auto_date_after_blocked

    def test_dry_run_does_not_spawn(self, scrape_config, engine, fake_ytdlp):
        script = fake_ytdlp([make_video("a")])

        result = sync(scrape_config, engine, script, dry_run=True)

        assert result.dry_run
        assert result.command.startswith(str(script))
        assert not (script.parent / "args.txt").exists()
        assert count_rows(engine, Video) == 0

    def test_store_failure_propagates(self, scrape_config, engine, fake_ytdlp, monkeypatch):
        def broken_insert(engine, payload):
            raise ValueError("constraint violated")

        monkeypatch.setattr("src.ingestion.ingest.insert_video", broken_insert)
        script = fake_ytdlp([make_video("a")])

        with pytest.raises(ValueError, match="constraint violated"):
            sync(scrape_config, engine, script)
