"""
Error taxonomy for the icon pack client.

Errors split by how far they reach:
- Session-fatal: ``SubmissionError``, ``StreamTransportError`` and
  ``GenerationFailedError`` end the current session.
- Dropped: ``StreamParseError`` is logged and the offending event skipped.
- Local: ``ProviderJobError`` belongs to one provider job; ``ExportError``
  and ``GenerateMoreError`` belong to one user action. None of them touch
  the rest of the session.

Nothing here is retried automatically.
"""

from typing import Optional


class IconPackError(Exception):
    """Base class for every error raised by the icon pack client."""


class SubmissionError(IconPackError):
    """The initial generation request failed or returned a malformed body."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StreamParseError(IconPackError):
    """A single push event could not be decoded."""

    def __init__(self, event: str, message: str):
        super().__init__(f"Malformed '{event}' event: {message}")
        self.event = event


class StreamTransportError(IconPackError):
    """The push-event connection failed or ended before a terminal event."""


class GenerationFailedError(IconPackError):
    """The server reported a session-level ``generation_error``."""


class ProviderJobError(IconPackError):
    """One provider job finished with an error. Stored on the job, not raised."""

    def __init__(self, job_key: str, message: str):
        super().__init__(message)
        self.job_key = job_key


class ExportError(IconPackError):
    """An export download failed."""


class GenerateMoreError(IconPackError):
    """A generate-more request could not be issued or failed."""


class FormSubmissionError(IconPackError):
    """An unsubscribe or feedback form request failed."""
