"""Step status tracker.

Reads the step-status map stored in ``run.metrics["step_status"]``. The
stored document is untyped and may have been written by older code, so
every read goes through validation and never raises: anything missing or
malformed reads as a pending step.
"""

import logging
from typing import Any, Dict, Mapping

from pydantic import ValidationError

from plinth.schemas.run import StepState

logger = logging.getLogger(__name__)

STEP_STATUS_KEY = "step_status"
VALID_STATUSES = ("pending", "running", "completed", "failed")


def parse_step_state(value: Any) -> StepState:
    """Parse one stored step entry, defaulting to pending."""
    if not isinstance(value, Mapping):
        return StepState()

    try:
        return StepState.model_validate(dict(value))
    except ValidationError as e:
        # Keep the status when only auxiliary fields are broken
        status = value.get("status")
        if status in VALID_STATUSES:
            logger.warning(f"Malformed step state fields, keeping status '{status}': {e.error_count()} errors")
            return StepState(status=status)
        logger.warning(f"Malformed step state, reading as pending: {e.error_count()} errors")
        return StepState()


def parse_step_status(value: Any) -> Dict[str, StepState]:
    """
    Parse a stored step-status map.

    Args:
        value: Untyped value from ``metrics["step_status"]``

    Returns:
        Mapping of step name to StepState; empty for non-mapping input
    """
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        logger.warning(f"step_status is not a mapping ({type(value).__name__}), ignoring")
        return {}

    return {
        str(step_name): parse_step_state(entry)
        for step_name, entry in value.items()
    }


def get_step_status_map(run) -> Dict[str, StepState]:
    """Step-status map of a run."""
    metrics = run.metrics if isinstance(run.metrics, Mapping) else {}
    return parse_step_status(metrics.get(STEP_STATUS_KEY))


def get_step_status(run, step_name: str) -> StepState:
    """Status of one step of a run; pending when absent or malformed."""
    metrics = run.metrics if isinstance(run.metrics, Mapping) else {}
    raw = metrics.get(STEP_STATUS_KEY)
    if not isinstance(raw, Mapping):
        return StepState()
    return parse_step_state(raw.get(step_name))


def serialize_step_status(step_status: Mapping[str, StepState]) -> Dict[str, Dict[str, Any]]:
    """Plain-dict form of a step-status map for storage."""
    return {
        step_name: state.model_dump(mode="json")
        for step_name, state in step_status.items()
    }
