"""Error taxonomy and classification for structured error handling.

Every terminal failure of an acquisition run is an :class:`AcquisitionError`
subclass whose ``kind`` tells the caller what to do next (upload the
missing file, wait out a rate limit, fix the URL).  ``classify_error``
separates transient from permanent failures so the network layer only
retries what can succeed on a second attempt.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum

from robodesc.constants import ERROR_TRUNCATION_CHARS, FailureKind


class AcquisitionError(Exception):
    """Base class for failures that terminate an acquisition run."""

    kind: FailureKind = FailureKind.INTERNAL

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NoDescriptionFoundError(AcquisitionError):
    kind = FailureKind.NO_DESCRIPTION_FOUND


class EmptyDescriptionError(AcquisitionError):
    kind = FailureKind.EMPTY_DESCRIPTION


class MalformedMarkupError(AcquisitionError):
    kind = FailureKind.MALFORMED_MARKUP

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class ExpansionGrammarError(AcquisitionError):
    """The macro engine rejected the template."""

    kind = FailureKind.EXPANSION_GRAMMAR_ERROR

    def __init__(self, message: str, path: str | None = None) -> None:
        if path and path not in message:
            message = f"{message} (in {path})"
        super().__init__(message)
        self.path = path


class UnresolvedIncludeError(ExpansionGrammarError):
    """The engine asked for an include the file mapping cannot satisfy."""

    def __init__(self, path: str) -> None:
        super().__init__(
            f'XACRO include file not found: "{path}". '
            "Make sure all referenced files are included in the upload."
        )
        self.path = path


class ModelBuildError(AcquisitionError):
    """The model builder rejected the canonical description."""

    kind = FailureKind.MODEL_BUILD_ERROR

    def __init__(self, native_message: str) -> None:
        super().__init__(
            f"Failed to build robot model: {native_message}"
        )
        self.native_message = native_message


class MalformedSourceLocationError(AcquisitionError):
    kind = FailureKind.MALFORMED_SOURCE_LOCATION


class PhaseTimeoutError(AcquisitionError):
    kind = FailureKind.TIMEOUT


class NetworkError(AcquisitionError):
    """Remote host failure not covered by a more specific kind."""

    kind = FailureKind.NETWORK_OTHER

    def __init__(
        self, message: str, status_code: int | None = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code


class NetworkNotFoundError(NetworkError):
    kind = FailureKind.NETWORK_NOT_FOUND


class NetworkRateLimitedError(NetworkError):
    kind = FailureKind.NETWORK_RATE_LIMITED


class NetworkUnavailableError(NetworkError):
    """The host's circuit is open after repeated failures."""


class InvalidTransitionError(RuntimeError):
    """An operation was called in a phase that does not allow it.

    This is a caller bug, not a run failure: the run keeps its phase.
    """


# ── Failure values ──────────────────────────────────────────


@dataclass(frozen=True)
class Failure:
    """User-displayable description of why a run stopped."""

    kind: FailureKind
    message: str


def failure_from_exception(error: BaseException) -> Failure:
    """Map any exception to a kind-distinguishing :class:`Failure`."""
    if isinstance(error, AcquisitionError):
        return Failure(kind=error.kind, message=error.message)
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return Failure(
            kind=FailureKind.TIMEOUT,
            message="The operation timed out.",
        )
    detail = str(error)[:ERROR_TRUNCATION_CHARS] or type(error).__name__
    return Failure(
        kind=FailureKind.INTERNAL,
        message=f"Unexpected error: {detail}",
    )


# ── Retry classification ────────────────────────────────────


class ErrorClass(Enum):
    TRANSIENT = "transient"  # 429, dropped connections
    SERVER = "server"  # 5xx
    TIMEOUT = "timeout"
    CLIENT = "client"  # other 4xx
    UNKNOWN = "unknown"


def classify_error(error: Exception) -> ErrorClass:
    """Classify an error to determine handling strategy.

    Checks structured attributes first (status_code), falls back
    to string matching for untyped exceptions.
    """
    # 1. Check for structured status_code attribute (httpx, NetworkError)
    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int):
        if status_code == 429:
            return ErrorClass.TRANSIENT
        if 400 <= status_code < 500:
            return ErrorClass.CLIENT
        if 500 <= status_code < 600:
            return ErrorClass.SERVER

    # 2. Check for timeout types
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return ErrorClass.TIMEOUT

    # 3. Fall back to string matching for untyped exceptions
    msg = str(error).lower()

    if "timeout" in msg or "timed out" in msg:
        return ErrorClass.TIMEOUT
    if "429" in msg or "rate limit" in msg or "rate_limit" in msg:
        return ErrorClass.TRANSIENT
    if any(code in msg for code in ("500", "502", "503", "504")):
        return ErrorClass.SERVER
    if "econnrefused" in msg or "connection" in msg:
        return ErrorClass.TRANSIENT
    if any(code in msg for code in ("400", "401", "403", "404")):
        return ErrorClass.CLIENT

    return ErrorClass.UNKNOWN


_RETRYABLE = frozenset({
    ErrorClass.TRANSIENT,
    ErrorClass.SERVER,
    ErrorClass.TIMEOUT,
})


def is_retryable(error: Exception) -> bool:
    """Return True if the error category supports retry.

    Rate-limit and not-found responses are never retried: a second
    request only burns more of the host's quota.  Neither is an open
    circuit.
    """
    if isinstance(
        error,
        (
            NetworkNotFoundError,
            NetworkRateLimitedError,
            NetworkUnavailableError,
        ),
    ):
        return False
    return classify_error(error) in _RETRYABLE
