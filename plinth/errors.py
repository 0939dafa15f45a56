"""Application error taxonomy and typed failure results.

Every failure that leaves the orchestration layer is an ``AppError`` wrapped
in a ``Failure``. The ``code`` is stable and machine readable, ``message`` is
for developers and logs, and ``user_message`` is the calm copy shown to end
users. Internal codes and stack traces never reach the UI.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

USER_MESSAGES: Dict[str, str] = {
    "NOT_READY": "Not enough evidence to generate a credible analysis.",
    "NOT_FOUND": "The requested resource was not found.",
    "EXTERNAL_FETCH": "Failed to fetch external data. This may be a temporary issue.",
    "ANALYSIS_FAILED": "Analysis generation failed. Please try again.",
    "RUN_FAILED": "This run stopped safely and your data is intact. Start a new run to continue.",
    "STEP_TIMEOUT": "A step took too long and was stopped safely. You can retry it.",
    "INVALID_TRANSITION": "This step is no longer in progress.",
    "UNKNOWN": "Something went wrong. Please try again.",
}

MAX_CODE_LENGTH = 100
MAX_MESSAGE_LENGTH = 1000
MAX_DETAIL_LENGTH = 500

_SECRET_PATTERNS = [
    re.compile(r"(api[_-]?key|token|secret|password|auth)[\s:=]+['\"]?[A-Za-z0-9_\-]{20,}['\"]?", re.IGNORECASE),
    re.compile(r"(bearer|basic)\s+[A-Za-z0-9_\-\.]{20,}", re.IGNORECASE),
]


def user_message_for(code: Optional[str]) -> str:
    """Return the user-facing message for an error code."""
    return USER_MESSAGES.get(code or "UNKNOWN", USER_MESSAGES["UNKNOWN"])


def truncate(text: str, max_length: int) -> str:
    """Truncate text to max_length, marking the cut with a trailing '...'."""
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def sanitize_message(message: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Redact secrets, drop stack trace lines and truncate."""
    sanitized = message or ""
    for pattern in _SECRET_PATTERNS:
        sanitized = pattern.sub("[REDACTED]", sanitized)

    # Keep the first line only; the rest is usually a traceback
    sanitized = sanitized.strip().split("\n", 1)[0]
    return truncate(sanitized, max_length)


class AppError(Exception):
    """Base application error."""

    code = "UNKNOWN"
    is_retryable = True

    def __init__(
        self,
        message: str,
        user_message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        step: Optional[str] = None,
        upstream: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.user_message = user_message or user_message_for(self.code)
        self.details = details
        self.step = step
        self.upstream = upstream

    def to_dict(self) -> Dict[str, Any]:
        """Public representation: code and user message only."""
        return {"code": self.code, "user_message": self.user_message}


class NotReadyError(AppError):
    """Prerequisites not met, e.g. insufficient evidence."""

    code = "NOT_READY"
    is_retryable = False


class NotFoundError(AppError):
    """Missing run, project or other resource."""

    code = "NOT_FOUND"
    is_retryable = False


class ExternalFetchError(AppError):
    """An upstream fetch (search API, generator API) failed or timed out."""

    code = "EXTERNAL_FETCH"
    is_retryable = True


class AnalysisFailedError(AppError):
    """The content generator returned something unusable."""

    code = "ANALYSIS_FAILED"
    is_retryable = True


class RunFailedError(AppError):
    """The run reached a fatal state; no further step may start."""

    code = "RUN_FAILED"
    is_retryable = False


class StepTimeoutError(AppError):
    """A step stayed running past its deadline."""

    code = "STEP_TIMEOUT"
    is_retryable = True


class InvalidTransitionError(AppError):
    """A step update was requested from a status that does not allow it."""

    code = "INVALID_TRANSITION"
    is_retryable = False


class UnknownAppError(AppError):
    """Catch-all for unexpected errors."""

    code = "UNKNOWN"
    is_retryable = True


def to_app_error(exc: BaseException, step: Optional[str] = None) -> AppError:
    """
    Convert any exception into an AppError.

    Args:
        exc: The exception to convert
        step: Pipeline step the exception came from, if any

    Returns:
        The exception itself when it already is an AppError, otherwise a
        mapped AppError subclass
    """
    if isinstance(exc, AppError):
        if step and not exc.step:
            exc.step = step
        return exc

    message = str(exc) or exc.__class__.__name__

    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return ExternalFetchError(f"External fetch failed: {message}", step=step)
    if isinstance(exc, httpx.HTTPStatusError):
        return ExternalFetchError(
            f"External fetch failed: {message}",
            step=step,
            details={"status_code": exc.response.status_code},
        )

    lowered = message.lower()
    if any(marker in lowered for marker in ("timeout", "timed out", "connection refused", "network")):
        return ExternalFetchError(f"External fetch failed: {message}", step=step)

    return UnknownAppError(f"Unexpected error: {message}", step=step)


@dataclass
class Failure:
    """Typed failure result returned instead of raising across the orchestrator boundary."""

    error: AppError

    ok = False
