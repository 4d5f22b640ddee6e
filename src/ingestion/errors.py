"""Exceptions raised by the channel ingestion pipeline."""


class IngestionError(RuntimeError):
    """Base class for fatal ingestion failures."""


class ScraperNotFoundError(IngestionError):
    """No runnable yt-dlp executable could be located."""


class ScrapeOutputError(IngestionError):
    """yt-dlp wrote a line on stdout that is not valid JSON."""

    def __init__(self, message: str, line: str):
        super().__init__(message)
        self.line = line


class ScraperExitError(IngestionError):
    """yt-dlp exited with an error before producing a single record."""

    def __init__(self, returncode: int, stderr: str):
        super().__init__(f"yt-dlp exited with code {returncode}. stderr:\n{stderr}")
        self.returncode = returncode
        self.stderr = stderr
