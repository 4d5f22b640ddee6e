import math
from datetime import datetime, timezone

import pytest

from src.ingestion.utils import (
    extract_handle_from_url,
    get_uploaded_at_date,
    is_live_video,
    is_truthy,
    normalize_channel_url,
    parse_positive_int,
    parse_upload_date,
    resolve_video_url,
    shell_join,
    shell_quote,
    split_args,
    to_integer_or_null,
    to_non_empty_string,
)


class TestNormalizeChannelUrl:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("https://www.youtube.com/@Example/videos", "https://www.youtube.com/@Example/"),
            ("https://www.youtube.com/@Example/shorts/", "https://www.youtube.com/@Example/"),
            ("https://www.youtube.com/@Example/streams?x=1#top", "https://www.youtube.com/@Example/"),
            ("https://www.youtube.com/@Example/featured", "https://www.youtube.com/@Example/"),
            ("https://www.youtube.com/@Example/community", "https://www.youtube.com/@Example/"),
            ("https://www.youtube.com/@Example", "https://www.youtube.com/@Example/"),
            ("HTTPS://WWW.YouTube.com//channel//UC123/", "https://www.youtube.com/channel/UC123/"),
        ],
    )
    def test_canonical_form(self, raw, expected):
        assert normalize_channel_url(raw) == expected

    @pytest.mark.parametrize(
        "raw",
        [
            "https://www.youtube.com/@Example/videos/videos",
            "https://www.youtube.com/@Example/videos//",
            "https://www.youtube.com/c/Example/streams?sort=dd",
            "not a url",
        ],
    )
    def test_idempotent(self, raw):
        once = normalize_channel_url(raw)
        assert normalize_channel_url(once) == once

    def test_unparseable_input_is_trimmed(self):
        assert normalize_channel_url("  @Example  ") == "@Example"


class TestExtractHandle:
    def test_from_url_path(self):
        assert extract_handle_from_url("https://www.youtube.com/@Example/") == "@Example"

    def test_url_without_handle(self):
        assert extract_handle_from_url("https://www.youtube.com/channel/UC123/") is None

    def test_from_plain_text(self):
        assert extract_handle_from_url("@Example/videos") == "@Example"


class TestParseUploadDate:
    def test_valid_date_is_utc_midnight(self):
        expected = datetime(2024, 1, 15, tzinfo=timezone.utc).timestamp()
        assert parse_upload_date("20240115") == expected

    def test_day_overflow_rolls_into_next_month(self):
        expected = datetime(2024, 3, 2, tzinfo=timezone.utc).timestamp()
        assert parse_upload_date("20240231") == expected

    @pytest.mark.parametrize("raw", ["2024011", "202401155", "2024-1-15", "20241315", "20240100", "abcdefgh", ""])
    def test_malformed_is_nan(self, raw):
        assert math.isnan(parse_upload_date(raw))


class TestUploadedAt:
    def test_prefers_positive_timestamp(self):
        video = {"timestamp": 1705312800, "upload_date": "20200101"}
        assert get_uploaded_at_date(video) == datetime.fromtimestamp(1705312800, tz=timezone.utc)

    def test_falls_back_to_upload_date(self):
        video = {"timestamp": 0, "upload_date": "20240115"}
        assert get_uploaded_at_date(video) == datetime(2024, 1, 15, tzinfo=timezone.utc)

    def test_nothing_usable(self):
        assert get_uploaded_at_date({"timestamp": "soon", "upload_date": "bad"}) is None

    def test_huge_timestamp_falls_back_to_upload_date(self):
        video = {"timestamp": 10**400, "upload_date": "20240115"}
        assert get_uploaded_at_date(video) == datetime(2024, 1, 15, tzinfo=timezone.utc)
        assert get_uploaded_at_date({"timestamp": 10**400}) is None


class TestCoercion:
    @pytest.mark.parametrize(
        "value, expected",
        [(321, 321), (12.9, 12), ("42", 42), ("7.5", 7), (-1, None), ("abc", None), (None, None), (True, None)],
    )
    def test_to_integer_or_null(self, value, expected):
        assert to_integer_or_null(value) == expected

    @pytest.mark.parametrize("value", [10**400, 2**31, "1e300", "inf", float("nan")])
    def test_to_integer_or_null_rejects_out_of_range(self, value):
        assert to_integer_or_null(value) is None

    def test_to_integer_or_null_keeps_largest_storable(self):
        assert to_integer_or_null(2**31 - 1) == 2**31 - 1

    def test_to_non_empty_string(self):
        assert to_non_empty_string("  hi ") == "hi"
        assert to_non_empty_string("   ") is None
        assert to_non_empty_string(5) is None

    @pytest.mark.parametrize("raw, expected", [("10", 10), ("3.7", 3), ("0", None), ("-2", None), ("x", None), (None, None)])
    def test_parse_positive_int(self, raw, expected):
        assert parse_positive_int(raw) == expected

    @pytest.mark.parametrize("raw", ["1", "true", "YES", "On"])
    def test_truthy(self, raw):
        assert is_truthy(raw)

    @pytest.mark.parametrize("raw", [None, "", "0", "false", "nope"])
    def test_not_truthy(self, raw):
        assert not is_truthy(raw)


class TestVideoFields:
    def test_video_url_fallback_chain(self):
        assert resolve_video_url({"webpage_url": "https://a"}, "x") == "https://a"
        assert resolve_video_url({"url": "https://b"}, "x") == "https://b"
        assert resolve_video_url({}, "abc123") == "https://www.youtube.com/watch?v=abc123"

    def test_live_detection(self):
        assert is_live_video({"is_live": True})
        assert not is_live_video({"is_live": False, "live_status": "is_live"})
        assert is_live_video({"live_status": "LIVE"})
        assert not is_live_video({"live_status": "was_live"})
        assert not is_live_video({})


class TestArgs:
    def test_split_keeps_quoted_runs(self):
        assert split_args('--format "best video" --output \'a b\' -v') == [
            "--format",
            "best video",
            "--output",
            "a b",
            "-v",
        ]

    def test_split_empty(self):
        assert split_args(None) == []
        assert split_args("   ") == []

    def test_shell_quote(self):
        assert shell_quote("--dump-json") == "--dump-json"
        assert shell_quote("https://www.youtube.com/@x/") == "https://www.youtube.com/@x/"
        assert shell_quote("can't stop") == "'can'\\''t stop'"

    def test_shell_join(self):
        assert shell_join("/usr/bin/yt-dlp", ["-t", "sleep", "a b"]) == "/usr/bin/yt-dlp -t sleep 'a b'"
