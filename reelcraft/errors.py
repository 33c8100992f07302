"""Exception hierarchy shared by every pipeline component."""

from __future__ import annotations

from typing import Any

import httpx


class ReelcraftError(Exception):
    """Base class for pipeline errors."""


class InvalidInputError(ReelcraftError):
    """Empty script, missing directory or malformed configuration."""


class EmptyInputError(InvalidInputError):
    """A component received an empty collection it cannot work with."""


class UpstreamError(ReelcraftError):
    """Raised when an external service fails.

    Attributes:
        status_code: HTTP status, if the failure had one.
        body: Response body or vendor payload, surfaced as-is.
    """

    def __init__(self, message: str, status_code: int | None = None, body: Any = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class UpstreamUnavailableError(UpstreamError):
    """Transient failure: network error, timeout, quota or 5xx."""


class UpstreamRejectedError(UpstreamError):
    """Permanent failure: authorisation, bad voice id, malformed request."""


class MediaValidationError(ReelcraftError):
    """Downloaded bytes failed the magic-byte, size or content-type check."""


class KeywordMissError(ReelcraftError):
    """A visual cue keyword does not occur in the narration."""


class MuxError(ReelcraftError):
    """An ffmpeg / ffprobe subprocess exited with a non-zero status."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


def upstream_error(vendor: str, response: httpx.Response) -> UpstreamError:
    """Classify a non-2xx response into an unavailable / rejected error."""
    status = response.status_code
    message = f"{vendor}: HTTP {status}: {response.text[:500]}"
    if status == 429 or status >= 500:
        return UpstreamUnavailableError(message, status_code=status, body=response.text)
    return UpstreamRejectedError(message, status_code=status, body=response.text)


def transport_error(vendor: str, exc: httpx.HTTPError) -> UpstreamUnavailableError:
    """Wrap a transport-level httpx failure (DNS, connect, timeout)."""
    return UpstreamUnavailableError(f"{vendor}: {exc.__class__.__name__}: {exc}")
