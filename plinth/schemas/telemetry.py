"""Run telemetry schemas and the structural telemetry merge.

Telemetry lives in ``run.metrics["telemetry"]``. It is a denormalized,
additive view of a run (timeline, counters, last event, debug notes) and is
never the authoritative record of step state. Keep it small: arrays are
capped and strings truncated.
"""

import logging
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ValidationError

from plinth.errors import (
    MAX_CODE_LENGTH,
    MAX_MESSAGE_LENGTH,
    AppError,
    sanitize_message,
    truncate,
)
from plinth.timeutils import isoformat, utcnow

logger = logging.getLogger(__name__)

MAX_NOTES = 10
MAX_DETAIL_KEYS = 5

Number = Union[int, float]


class SanitizedError(BaseModel):
    """Capped, secret-free error object stored in step state and telemetry."""

    code: str
    message: str
    request_id: Optional[str] = None
    step: Optional[str] = None
    upstream: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    at: Optional[str] = None


class StepTiming(BaseModel):
    """Timeline entry for a single step."""

    status: Optional[Literal["running", "completed", "failed"]] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    duration_ms: Optional[Number] = None
    attempts: Optional[int] = None


class Timeline(BaseModel):
    """Run timeline."""

    created_at: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    steps: Optional[Dict[str, StepTiming]] = None


class LastEvent(BaseModel):
    """Most recent notable event."""

    at: str
    name: str
    step: Optional[str] = None
    request_id: Optional[str] = None


class Debug(BaseModel):
    """Developer-facing debug information."""

    notes: List[str] = []
    last_error: Optional[SanitizedError] = None


class Telemetry(BaseModel):
    """Complete run telemetry."""

    timeline: Timeline
    counters: Optional[Dict[str, Dict[str, Number]]] = None
    last_event: Optional[LastEvent] = None
    debug: Optional[Debug] = None


class TimelinePatch(BaseModel):
    """Timeline patch; every field optional."""

    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    steps: Optional[Dict[str, StepTiming]] = None


class TelemetryPatch(BaseModel):
    """Incremental telemetry update."""

    timeline: Optional[TimelinePatch] = None
    counters: Optional[Dict[str, Dict[str, Number]]] = None
    last_event: Optional[LastEvent] = None
    debug: Optional[Debug] = None


def default_telemetry(created_at: Optional[str] = None) -> Telemetry:
    """Empty telemetry with only the creation timestamp."""
    return Telemetry(timeline=Timeline(created_at=created_at or isoformat(utcnow())))


def parse_telemetry(value: Any, created_at: Optional[str] = None) -> Telemetry:
    """
    Parse telemetry read from a run's metrics document.

    Args:
        value: Untyped value from ``metrics["telemetry"]``
        created_at: Fallback creation timestamp for the default timeline

    Returns:
        Parsed telemetry, or a default timeline when value is missing or malformed
    """
    if value is None:
        return default_telemetry(created_at)

    try:
        return Telemetry.model_validate(value)
    except ValidationError as e:
        logger.warning(f"Invalid telemetry shape, normalizing to default: {e.error_count()} errors")
        return default_telemetry(created_at)


def _merge_step(current: Optional[StepTiming], patch: StepTiming) -> StepTiming:
    merged = current.model_dump() if current else {}
    merged.update(patch.model_dump(exclude_none=True))
    return StepTiming(**merged)


def merge_telemetry(current: Telemetry, patch: Union[TelemetryPatch, Dict[str, Any]]) -> Telemetry:
    """
    Merge a telemetry patch into current telemetry.

    Steps merge field by field, counters merge per leaf key within each
    namespace, ``timeline.created_at`` is kept from current once set, and
    debug notes are appended without duplicates (first ``MAX_NOTES``
    kept). Merging the same patch twice gives the same result as merging it
    once.

    Args:
        current: Telemetry to merge into (not mutated)
        patch: Patch model or plain dict of the same shape

    Returns:
        New merged telemetry
    """
    if isinstance(patch, dict):
        patch = TelemetryPatch.model_validate(patch)

    # Timeline
    timeline = current.timeline.model_copy(deep=True)
    if patch.timeline is not None:
        if patch.timeline.started_at is not None:
            timeline.started_at = patch.timeline.started_at
        if patch.timeline.completed_at is not None:
            timeline.completed_at = patch.timeline.completed_at
        if not timeline.created_at and patch.timeline.created_at:
            timeline.created_at = patch.timeline.created_at
        if patch.timeline.steps:
            steps = dict(timeline.steps or {})
            for step_name, step_patch in patch.timeline.steps.items():
                steps[step_name] = _merge_step(steps.get(step_name), step_patch)
            timeline.steps = steps

    # Counters
    counters = None
    if current.counters is not None or patch.counters is not None:
        counters = {ns: dict(values) for ns, values in (current.counters or {}).items()}
        for namespace, values in (patch.counters or {}).items():
            counters.setdefault(namespace, {}).update(values)

    # Debug
    debug = current.debug.model_copy(deep=True) if current.debug else None
    if patch.debug is not None:
        debug = debug or Debug()
        notes = list(debug.notes)
        for note in patch.debug.notes:
            if note not in notes:
                notes.append(note)
        # Keep the oldest notes
        debug.notes = notes[:MAX_NOTES]
        if patch.debug.last_error is not None:
            debug.last_error = patch.debug.last_error

    return Telemetry(
        timeline=timeline,
        counters=counters,
        last_event=patch.last_event or current.last_event,
        debug=debug,
    )


def sanitize_error(
    code: str,
    message: str,
    request_id: Optional[str] = None,
    step: Optional[str] = None,
    upstream: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    at: Optional[str] = None,
) -> SanitizedError:
    """Build a capped error object safe to persist."""
    capped_details = None
    if details:
        capped_details = {
            truncate(str(key), 50): truncate(value, 200) if isinstance(value, str) else value
            for key, value in list(details.items())[:MAX_DETAIL_KEYS]
        }

    return SanitizedError(
        code=truncate(code or "UNKNOWN", MAX_CODE_LENGTH),
        message=sanitize_message(message, MAX_MESSAGE_LENGTH),
        request_id=truncate(request_id, 100) if request_id else None,
        step=truncate(step, 50) if step else None,
        upstream=truncate(upstream, 50) if upstream else None,
        details=capped_details,
        at=at or isoformat(utcnow()),
    )


def sanitize_app_error(error: AppError, request_id: Optional[str] = None) -> SanitizedError:
    """Sanitize an AppError for storage."""
    return sanitize_error(
        code=error.code,
        message=error.message,
        request_id=request_id,
        step=error.step,
        upstream=error.upstream,
        details=error.details,
    )
