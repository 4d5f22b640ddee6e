"""
Run yt-dlp and stream its --dump-json output into a record handler.

yt-dlp prints one JSON object per video on stdout as it walks the channel, and
diagnostics on stderr. scrape_channel parses stdout incrementally and hands
every record to an async handler without waiting for it, so parsing and
database writes overlap. Handler tasks are tracked until they settle; the
first handler failure stops the subprocess and becomes the run's error.

Run phases: STARTING -> STREAMING -> DRAINING -> SUCCEEDED | FAILED.
"""

import asyncio
import codecs
import json
import logging
import shutil
import sys
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from src.logger import log_function, log_with_timer
from .config import ScrapeConfig
from .errors import ScrapeOutputError, ScraperExitError, ScraperNotFoundError
from .utils import shell_join

logger = logging.getLogger("scrape_youtube")

CANDIDATE_EXECUTABLES = ("yt-dlp.sh", "yt-dlp")
BASE_ARGS = ("--ignore-errors", "--no-warnings", "--dump-json", "--skip-download", "--yes-playlist")
READ_CHUNK_SIZE = 64 * 1024

VideoHandler = Callable[[Any], Awaitable[None]]


class ScrapePhase(str, Enum):
    STARTING = "starting"
    STREAMING = "streaming"
    DRAINING = "draining"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class ScrapeOptions:
    """Per-run yt-dlp options on top of the static configuration."""

    on_video: VideoHandler
    date_after: Optional[str] = None
    reverse_playlist: bool = False
    break_on_existing: bool = False
    download_archive_path: Optional[str] = None


def _is_candidate(path: Path) -> bool:
    return path.is_file()


def locate_ytdlp(start_dir: Path, override: Optional[str] = None) -> str:
    """
    Find the yt-dlp executable.

    Order: explicit override, then yt-dlp.sh / yt-dlp in start_dir and each of
    its ancestors, then PATH.

    Raises:
        ScraperNotFoundError: If nothing was found.
    """
    if override:
        candidate = Path(override).expanduser()
        if _is_candidate(candidate):
            return str(candidate.resolve())
        raise ScraperNotFoundError(f"Configured yt-dlp executable does not exist: {override}")

    current = start_dir.resolve()
    for directory in (current, *current.parents):
        for file_name in CANDIDATE_EXECUTABLES:
            candidate = directory / file_name
            if _is_candidate(candidate):
                return str(candidate)

    on_path = shutil.which("yt-dlp")
    if on_path:
        return on_path

    raise ScraperNotFoundError(
        "Unable to locate yt-dlp or yt-dlp.sh. Install yt-dlp, set YT_YTDLP_PATH, "
        "or run inside a yt-dlp checkout."
    )


@log_with_timer("scrape_youtube")
def build_scrape_command(
    executable: str, url: str, config: ScrapeConfig, options: ScrapeOptions
) -> list[str]:
    """Argument list (without the executable) for one channel scrape."""
    args = list(BASE_ARGS)

    if config.ytdlp_verbose:
        args.insert(0, "--verbose")

    if config.playlist_end is not None:
        args += ["--playlist-end", str(config.playlist_end)]

    preset = config.rate_limit_preset
    if preset is not None:
        args += ["-t", preset.preset]

    args += list(config.extra_args)

    if options.date_after:
        args += ["--dateafter", options.date_after]
    if options.reverse_playlist:
        args.append("--playlist-reverse")
    if options.break_on_existing:
        args.append("--break-on-existing")
    if options.download_archive_path:
        args += ["--download-archive", options.download_archive_path]

    args.append(url)
    return args


def _log_rate_limit_preset(config: ScrapeConfig) -> None:
    preset = config.rate_limit_preset
    if preset is None:
        return
    if preset.explicit:
        logger.info(f"Applying user-specified '-t {preset.preset}' preset to throttle requests.")
    else:
        logger.info(
            f"Applying default '-t {preset.preset}' preset to reduce rate limiting "
            "(set YT_YTDLP_RATE_LIMIT_PRESET=off to disable)."
        )


class ChannelScrape:
    """
    One yt-dlp invocation and the handler tasks it spawns.

    Attributes:
        phase: Current ScrapePhase
        parsed_count: Records successfully parsed from stdout
        stderr_text: Everything yt-dlp wrote on stderr
    """

    def __init__(self, executable: str, args: list[str], config: ScrapeConfig, on_video: VideoHandler):
        self.executable = executable
        self.args = args
        self.config = config
        self.on_video = on_video

        self.phase = ScrapePhase.STARTING
        self.parsed_count = 0
        self.stderr_text = ""
        self.returncode: Optional[int] = None

        self._process: Optional[asyncio.subprocess.Process] = None
        self._stdout_buffer = ""
        self._last_output = time.monotonic()
        self._in_flight: set[asyncio.Task] = set()
        self._handler_error: Optional[BaseException] = None
        self._output_error: Optional[ScrapeOutputError] = None

    def _set_phase(self, phase: ScrapePhase) -> None:
        self.phase = phase
        logger.debug(f"yt-dlp run phase -> {phase.value}")

    def _abort_process(self) -> None:
        process = self._process
        if process is not None and process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None and self._handler_error is None:
            self._handler_error = error
            logger.error(f"Ingestion failed, stopping yt-dlp: {error}")
            self._abort_process()

    def _dispatch(self, record: Any) -> None:
        if self._handler_error is not None:
            return
        task = asyncio.create_task(self.on_video(record))
        self._in_flight.add(task)
        task.add_done_callback(self._on_task_done)

    def _maybe_log_progress(self, record: Any) -> None:
        if self.parsed_count % self.config.progress_interval != 0:
            return
        label = ""
        if isinstance(record, dict):
            label = " • ".join(str(v) for v in (record.get("title"), record.get("id")) if v)
        suffix = f" (latest: {label})" if label else ""
        logger.info(f"Parsed {self.parsed_count} entries{suffix}...")

    def _handle_line(self, line: str, trailing: bool = False) -> bool:
        """Parse and dispatch one line; False once the output is unusable."""
        line = line.strip()
        if not line:
            return True
        try:
            record = json.loads(line)
        except json.JSONDecodeError as e:
            where = "trailing yt-dlp output" if trailing else "yt-dlp output line"
            self._output_error = ScrapeOutputError(f"Failed to parse {where}: {e}", line)
            self._abort_process()
            return False

        self.parsed_count += 1
        self._dispatch(record)
        self._maybe_log_progress(record)
        return True

    async def _consume_stdout(self, stream: asyncio.StreamReader) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            self._last_output = time.monotonic()
            self._stdout_buffer += decoder.decode(chunk)

            while "\n" in self._stdout_buffer:
                line, self._stdout_buffer = self._stdout_buffer.split("\n", 1)
                if not self._handle_line(line):
                    self._stdout_buffer = ""
                    return

        self._stdout_buffer += decoder.decode(b"", final=True)

    async def _consume_stderr(self, stream: asyncio.StreamReader) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            self._last_output = time.monotonic()
            text = decoder.decode(chunk)
            self.stderr_text += text
            sys.stderr.write(text)
            sys.stderr.flush()

    async def _heartbeat(self) -> None:
        interval = self.config.heartbeat_ms / 1000
        while True:
            await asyncio.sleep(interval)
            seconds_since_output = round(time.monotonic() - self._last_output)
            logger.info(
                f"yt-dlp still running... parsed {self.parsed_count} entries so far "
                f"(last output {seconds_since_output}s ago)"
            )

    async def run(self) -> int:
        """
        Execute yt-dlp to completion.

        Returns:
            int: Number of records parsed

        Raises:
            ScraperNotFoundError: The executable could not be started
            ScrapeOutputError: A stdout line was not valid JSON
            ScraperExitError: yt-dlp failed without producing any record
            Exception: The first error raised by the record handler
        """
        self._set_phase(ScrapePhase.STARTING)
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.executable,
                *self.args,
                cwd=str(Path(self.executable).parent),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except PermissionError as e:
            self._set_phase(ScrapePhase.FAILED)
            raise ScraperNotFoundError(f"yt-dlp at {self.executable} is not executable: {e}") from e

        self._set_phase(ScrapePhase.STREAMING)
        heartbeat = asyncio.create_task(self._heartbeat())
        stderr_reader = asyncio.create_task(self._consume_stderr(self._process.stderr))
        try:
            await self._consume_stdout(self._process.stdout)
            if self._output_error is not None:
                # Let the killed process close its pipes; stdout is no longer read
                await self._drain_unread(self._process.stdout)
            await stderr_reader
            self.returncode = await self._process.wait()
        finally:
            heartbeat.cancel()
            if not stderr_reader.done():
                stderr_reader.cancel()
            self._abort_process()

        self._set_phase(ScrapePhase.DRAINING)
        if self._output_error is None and self._handler_error is None and self._stdout_buffer.strip():
            self._handle_line(self._stdout_buffer, trailing=True)
        self._stdout_buffer = ""

        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

        return self._finish()

    @staticmethod
    async def _drain_unread(stream: asyncio.StreamReader) -> None:
        while await stream.read(READ_CHUNK_SIZE):
            pass

    def _finish(self) -> int:
        if self._handler_error is not None:
            self._set_phase(ScrapePhase.FAILED)
            raise self._handler_error

        if self._output_error is not None:
            self._set_phase(ScrapePhase.FAILED)
            raise self._output_error

        if self.returncode != 0 and self.parsed_count == 0:
            self._set_phase(ScrapePhase.FAILED)
            raise ScraperExitError(self.returncode, self.stderr_text.strip())

        if self.stderr_text.strip():
            logger.warning(self.stderr_text.strip())

        self._set_phase(ScrapePhase.SUCCEEDED)
        return self.parsed_count


@log_function(logger_name="scrape_youtube")
async def scrape_channel(
    executable: str, url: str, config: ScrapeConfig, options: ScrapeOptions
) -> int:
    """
    Scrape a channel with yt-dlp, feeding every record to options.on_video.

    Args:
        executable: Path to yt-dlp (or a wrapper script)
        url: Channel URL passed to yt-dlp
        config: Static run configuration
        options: Per-run options derived from stored state

    Returns:
        int: Number of records parsed from yt-dlp's output
    """
    _log_rate_limit_preset(config)
    args = build_scrape_command(executable, url, config, options)
    logger.info(f"Command: {shell_join(executable, args)}")

    scrape = ChannelScrape(executable, args, config, options.on_video)
    return await scrape.run()
