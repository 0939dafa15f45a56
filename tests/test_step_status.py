"""Tests for the step status tracker."""

from types import SimpleNamespace

from plinth.schemas.run import StepState
from plinth.services.step_status import (
    get_step_status,
    get_step_status_map,
    parse_step_status,
    serialize_step_status,
)


def _run(metrics):
    return SimpleNamespace(metrics=metrics)


def test_missing_step_is_pending():
    assert get_step_status(_run({}), "evidence").status == "pending"
    assert get_step_status(_run({"step_status": {}}), "evidence").status == "pending"


def test_malformed_documents_read_as_pending():
    assert get_step_status(_run(None), "evidence").status == "pending"
    assert get_step_status(_run({"step_status": "garbage"}), "evidence").status == "pending"
    assert get_step_status(_run({"step_status": {"evidence": 7}}), "evidence").status == "pending"
    assert get_step_status(_run({"step_status": {"evidence": {"status": "exploded"}}}), "evidence").status == "pending"


def test_valid_status_survives_broken_fields():
    run = _run({"step_status": {"evidence": {"status": "completed", "attempts": "many"}}})

    state = get_step_status(run, "evidence")

    assert state.status == "completed"
    assert state.attempts == 0


def test_camel_case_timestamps_are_accepted():
    run = _run(
        {
            "step_status": {
                "analysis": {
                    "status": "running",
                    "startedAt": "2025-06-01T00:00:00+00:00",
                    "attempts": 2,
                }
            }
        }
    )

    state = get_step_status(run, "analysis")

    assert state.status == "running"
    assert state.started_at == "2025-06-01T00:00:00+00:00"
    assert state.attempts == 2


def test_parse_step_status_non_mapping():
    assert parse_step_status(["evidence"]) == {}
    assert parse_step_status(None) == {}


def test_serialize_round_trips_through_parse():
    step_map = {
        "evidence": StepState(status="completed", started_at="a", finished_at="b", attempts=1),
        "analysis": StepState(status="running", attempts=2),
    }

    stored = serialize_step_status(step_map)

    assert stored["evidence"]["finished_at"] == "b"
    assert get_step_status_map(_run({"step_status": stored})) == step_map
