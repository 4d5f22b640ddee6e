"""
Configuration for a channel ingestion run.

ScrapeConfig is built once at process entry (from the environment, optionally
overridden by CLI flags) and passed explicitly to every component.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from src.db.retry import RetryPolicy
from .utils import is_truthy, parse_positive_int, split_args

DEFAULT_CHANNEL_URL = "https://www.youtube.com/@CareyNieuwhof/videos"
DEFAULT_RATE_LIMIT_PRESET = "sleep"
RATE_LIMIT_PRESET_DISABLED_VALUES = frozenset(
    {"0", "false", "off", "none", "no", "disable", "disabled"}
)
ENV_FILES = (".env.local", ".env")


@dataclass(frozen=True)
class RateLimitPreset:
    """yt-dlp ``-t`` preset and whether the operator asked for it explicitly."""

    preset: str
    explicit: bool


@dataclass(frozen=True)
class ScrapeConfig:
    """Immutable settings for one ingestion run"""

    database_url: Optional[str] = None
    channel_url: str = DEFAULT_CHANNEL_URL

    # yt-dlp invocation
    ytdlp_path: Optional[str] = None
    playlist_end: Optional[int] = None
    extra_args: tuple[str, ...] = ()
    ytdlp_verbose: bool = False
    rate_limit_preset: Optional[RateLimitPreset] = RateLimitPreset(DEFAULT_RATE_LIMIT_PRESET, False)

    # Operator feedback
    progress_interval: int = 25
    heartbeat_ms: int = 15000
    log_skipped_videos: bool = False

    # Strategy
    disable_auto_date_after: bool = False

    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self):
        object.__setattr__(self, "progress_interval", max(1, self.progress_interval))
        object.__setattr__(self, "heartbeat_ms", max(1000, self.heartbeat_ms))

    @property
    def user_specified_date_after(self) -> bool:
        return any(arg.startswith("--dateafter") for arg in self.extra_args)

    @property
    def auto_date_after_enabled(self) -> bool:
        return not self.disable_auto_date_after and not self.user_specified_date_after

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ScrapeConfig":
        """
        Build the configuration from YT_* environment variables.

        Args:
            environ: Mapping to read instead of os.environ (tests)
        """
        env = os.environ if environ is None else environ
        extra_args = tuple(split_args(env.get("YT_YTDLP_EXTRA_ARGS")))

        return cls(
            database_url=env.get("DATABASE_URL"),
            channel_url=env.get("YT_CHANNEL_URL") or DEFAULT_CHANNEL_URL,
            ytdlp_path=env.get("YT_YTDLP_PATH") or None,
            playlist_end=parse_positive_int(env.get("YT_MAX_VIDEOS")),
            extra_args=extra_args,
            ytdlp_verbose=is_truthy(env.get("YT_YTDLP_VERBOSE")),
            rate_limit_preset=determine_rate_limit_preset(
                env.get("YT_YTDLP_RATE_LIMIT_PRESET"), extra_args
            ),
            progress_interval=_int_or_default(env.get("YT_PROGRESS_INTERVAL"), 25),
            heartbeat_ms=_int_or_default(env.get("YT_HEARTBEAT_MS"), 15000),
            log_skipped_videos=is_truthy(env.get("YT_LOG_SKIPPED_VIDEOS")),
            disable_auto_date_after=is_truthy(env.get("YT_DISABLE_AUTO_DATEAFTER")),
            retry_policy=RetryPolicy(
                max_attempts=parse_positive_int(env.get("YT_DB_MAX_RETRIES")) or 5,
                base_delay_ms=parse_positive_int(env.get("YT_DB_RETRY_BASE_MS")) or 500,
                max_delay_ms=parse_positive_int(env.get("YT_DB_RETRY_MAX_MS")) or 5000,
            ),
        )

    def with_overrides(self, **changes) -> "ScrapeConfig":
        """Copy with non-None overrides applied (CLI flags)."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def _int_or_default(raw: Optional[str], default: int) -> int:
    try:
        return int(float(raw)) if raw else default
    except (ValueError, OverflowError):
        return default


def resolve_rate_limit_preset(raw_value: Optional[str]) -> Optional[RateLimitPreset]:
    if raw_value is None:
        return RateLimitPreset(DEFAULT_RATE_LIMIT_PRESET, explicit=False)

    normalized = raw_value.strip()
    if not normalized or normalized.lower() in RATE_LIMIT_PRESET_DISABLED_VALUES:
        return None

    return RateLimitPreset(normalized, explicit=True)


def has_user_provided_sleep_args(extra_args: tuple[str, ...]) -> bool:
    return any(
        arg.lower().startswith("-t") or arg.lower().startswith("--sleep-")
        for arg in extra_args
    )


def determine_rate_limit_preset(
    raw_value: Optional[str], extra_args: tuple[str, ...]
) -> Optional[RateLimitPreset]:
    """
    Pick the ``-t`` preset for yt-dlp.

    The implicit default is dropped when the extra args already throttle
    requests; an explicit preset always wins.
    """
    resolved = resolve_rate_limit_preset(raw_value)
    if resolved is None:
        return None
    if not resolved.explicit and has_user_provided_sleep_args(extra_args):
        return None
    return resolved


def load_local_env(start_dir: Optional[Path] = None) -> Optional[str]:
    """
    Load the nearest .env.local or .env, searching upward from start_dir.

    Existing environment variables are never overridden.

    Returns:
        The path of the loaded file, or None if none was found.
    """
    current = (start_dir or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        for env_file in ENV_FILES:
            candidate = directory / env_file
            if candidate.is_file():
                load_dotenv(candidate)
                return str(candidate)

    return None
