"""Error taxonomy shared by the identity, store, inference, and orchestration layers."""

from __future__ import annotations

from typing import Optional


class AnalysisError(Exception):
    """Base class for every error surfaced by the analysis core."""


class AuthFailure(AnalysisError):
    """Identity bootstrap exhausted both the token and the anonymous path."""


class NotReady(AnalysisError):
    """An operation needing an identity was requested before bootstrap completed."""


class AnalysisInProgress(NotReady):
    """A second analysis was requested while one is still submitting."""


class NoImage(AnalysisError):
    """Analysis was requested without a staged image."""


class ImageRejected(AnalysisError, ValueError):
    """The image violates the size, emptiness, or mime type preconditions."""

    def __init__(self, message: str, *, reason: str) -> None:
        super().__init__(message)
        self.reason = reason


class MalformedResponse(AnalysisError):
    """The inference service answered with a body that does not satisfy the schema."""


class InferenceFailed(AnalysisError):
    """Every inference attempt failed; carries the last attempt's error."""

    def __init__(self, message: str, last_error: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.last_error = last_error


class StoreUnavailable(AnalysisError):
    """The document store could not be reached after its transient handling."""


class PermissionDenied(AnalysisError):
    """A collection operation stepped outside the caller's identity partition."""
