"""Exception hierarchy shared by every mrlens package.

Platform and provider errors carry the HTTP status and any provider-supplied
Retry-After value so the queue's retry policy can classify them without
knowing which SDK raised the original exception.
"""

from __future__ import annotations


class MRLensError(Exception):
    """Base class for all mrlens errors."""


class ConfigError(MRLensError, ValueError):
    """Raised when configuration fails validation at load time."""


class _RemoteError(MRLensError):
    def __init__(self, message: str, status_code: int | None = None, retry_after: float | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class PlatformError(_RemoteError):
    """A source-control host API call failed."""


class ProviderError(_RemoteError):
    """A language-model provider call failed."""


class SchemaViolationError(MRLensError):
    """The model returned output that does not conform to the review schema."""


class FileNotInDiffError(MRLensError):
    """An inline comment targets a file that is not part of the reviewed diff."""
