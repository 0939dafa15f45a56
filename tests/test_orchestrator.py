"""Tests for the run orchestrator."""

import threading
import uuid

from plinth.errors import AnalysisFailedError, RunFailedError
from plinth.models.project import Project
from plinth.services import run_store
from plinth.services.orchestrator import (
    advance_run,
    claim_step,
    mark_run_completed,
    mark_run_failed,
    mark_step_completed,
    mark_step_failed,
    resolve_active_run,
)
from plinth.services.step_status import get_step_status


def _run(test_db, project):
    return run_store.get_or_create_active_run(test_db, project.id, project.input_version)


def test_resolve_active_run_reports_creation(test_db, project):
    first = resolve_active_run(test_db, project.id)
    second = resolve_active_run(test_db, project.id)

    assert first.ok and first.created
    assert second.ok and not second.created
    assert first.run.id == second.run.id


def test_resolve_active_run_missing_project(test_db):
    result = resolve_active_run(test_db, uuid.uuid4())

    assert not result.ok
    assert result.error.code == "NOT_FOUND"


def test_advance_missing_run(test_db):
    result = advance_run(test_db, uuid.uuid4(), "evidence")

    assert not result.ok
    assert result.error.code == "NOT_FOUND"


def test_first_advance_starts_step_and_run(test_db, project):
    run = _run(test_db, project)

    result = advance_run(test_db, run.id, "evidence")

    assert result.ok
    assert result.action == "started"
    assert result.step_status.status == "running"
    assert result.step_status.attempts == 1
    assert result.step_status.started_at is not None
    assert result.run.status == "running"
    assert result.run.started_at is not None
    telemetry = result.run.metrics["telemetry"]
    assert telemetry["timeline"]["steps"]["evidence"]["status"] == "running"
    assert telemetry["last_event"]["name"] == "step_started"


def test_running_step_is_noop(test_db, project):
    run = _run(test_db, project)
    advance_run(test_db, run.id, "evidence")

    result = advance_run(test_db, run.id, "evidence")

    assert result.ok
    assert result.action == "noop"
    assert result.step_status.attempts == 1


def test_completed_step_is_noop(test_db, project):
    run = _run(test_db, project)
    advance_run(test_db, run.id, "evidence")
    completed = mark_step_completed(test_db, run.id, "evidence", counters={"sources_found": 4})

    result = advance_run(test_db, run.id, "evidence")

    assert completed.ok
    assert completed.step_status.status == "completed"
    assert result.action == "noop"
    assert result.step_status.status == "completed"
    timeline = result.run.metrics["telemetry"]["timeline"]["steps"]["evidence"]
    assert timeline["status"] == "completed"
    assert timeline["duration_ms"] >= 0
    assert result.run.metrics["telemetry"]["counters"]["evidence"] == {"sources_found": 4}


def test_exactly_one_stale_reader_wins(session_factory, project):
    """Two callers holding the same stale copy: one starts, the other gets noop."""
    setup = session_factory()
    run_id = run_store.get_or_create_active_run(setup, project.id, 1).id
    setup.close()

    db_a = session_factory()
    db_b = session_factory()
    run_a = run_store.get_run(db_a, run_id)
    run_b = run_store.get_run(db_b, run_id)
    assert run_a.metrics_version == run_b.metrics_version == 0

    result_a = claim_step(db_a, run_a, "evidence")
    result_b = claim_step(db_b, run_b, "evidence")

    assert sorted([result_a.action, result_b.action]) == ["noop", "started"]
    assert result_b.step_status.status == "running"
    assert result_b.step_status.attempts == 1

    check = session_factory()
    assert get_step_status(run_store.get_run(check, run_id), "evidence").attempts == 1
    for db in (db_a, db_b, check):
        db.close()


def test_stale_reader_cannot_start_step_on_failed_run(session_factory, project):
    """A caller that read the run before another caller failed it must not claim a step."""
    setup = session_factory()
    run_id = run_store.get_or_create_active_run(setup, project.id, 1).id
    setup.close()

    db_a = session_factory()
    db_b = session_factory()
    stale = run_store.get_run(db_a, run_id)
    assert stale.status == "queued"
    run_store.set_run_failed(db_b, run_id, "RUN_FAILED", "Project was deleted")

    result = claim_step(db_a, stale, "evidence")

    assert not result.ok
    assert result.error.code == "RUN_FAILED"
    check = session_factory()
    fresh = run_store.get_run(check, run_id)
    assert fresh.status == "failed"
    assert get_step_status(fresh, "evidence").status == "pending"
    for db in (db_a, db_b, check):
        db.close()


def test_concurrent_advances_start_step_once(session_factory, project):
    """Many callers racing on the same step: exactly one starts it."""
    setup = session_factory()
    run_id = run_store.get_or_create_active_run(setup, project.id, 1).id
    setup.close()

    callers = 6
    barrier = threading.Barrier(callers)
    actions = []
    errors = []

    def advance():
        db = session_factory()
        try:
            run = run_store.get_run(db, run_id)
            barrier.wait(timeout=10)
            actions.append(claim_step(db, run, "evidence").action)
        except Exception as e:
            errors.append(e)
        finally:
            db.close()

    threads = [threading.Thread(target=advance) for _ in range(callers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert sorted(actions) == ["noop"] * (callers - 1) + ["started"]
    check = session_factory()
    state = get_step_status(run_store.get_run(check, run_id), "evidence")
    assert state.status == "running"
    assert state.attempts == 1
    check.close()


def test_failed_step_resumes_with_cleared_error(test_db, project):
    run = _run(test_db, project)
    advance_run(test_db, run.id, "analysis")
    failed = mark_step_failed(test_db, run.id, "analysis", AnalysisFailedError("bad JSON"))

    assert failed.ok
    assert failed.step_status.status == "failed"
    assert failed.step_status.error.code == "ANALYSIS_FAILED"
    assert failed.step_status.error.step == "analysis"
    assert failed.run.metrics["telemetry"]["debug"]["last_error"]["code"] == "ANALYSIS_FAILED"

    result = advance_run(test_db, run.id, "analysis")

    assert result.action == "resumed"
    assert result.step_status.status == "running"
    assert result.step_status.attempts == 2
    assert result.step_status.error is None
    assert result.step_status.finished_at is None


def test_step_updates_require_running(test_db, project):
    run = _run(test_db, project)

    result = mark_step_completed(test_db, run.id, "scoring")

    assert not result.ok
    assert result.error.code == "INVALID_TRANSITION"
    assert get_step_status(run_store.get_run(test_db, run.id), "scoring").status == "pending"


def test_failed_run_refuses_every_step(test_db, project):
    run = _run(test_db, project)
    mark_run_failed(test_db, run.id, RunFailedError("fatal"))

    result = advance_run(test_db, run.id, "evidence")

    assert not result.ok
    assert result.error.code == "RUN_FAILED"
    assert get_step_status(run_store.get_run(test_db, run.id), "evidence").status == "pending"


def test_deleted_project_fails_run(test_db, project):
    run = _run(test_db, project)
    test_db.get(Project, project.id).deleted = True
    test_db.commit()

    result = advance_run(test_db, run.id, "evidence")

    assert not result.ok
    assert result.error.code == "RUN_FAILED"
    fresh = run_store.get_run(test_db, run.id)
    assert fresh.status == "failed"
    assert fresh.error_code == "RUN_FAILED"


def test_run_completion_is_idempotent(test_db, project):
    run = _run(test_db, project)
    advance_run(test_db, run.id, "evidence")

    first = mark_run_completed(test_db, run.id, output={"bets": []})
    second = mark_run_completed(test_db, run.id, output={"bets": ["ignored"]})

    assert first.ok and first.changed
    assert first.run.status == "succeeded"
    assert first.run.metrics["telemetry"]["timeline"]["completed_at"] is not None
    assert second.ok and not second.changed
    assert second.run.output == {"bets": []}


def test_completed_run_cannot_be_failed(test_db, project):
    run = _run(test_db, project)
    mark_run_completed(test_db, run.id, output={})

    result = mark_run_failed(test_db, run.id, RunFailedError("late"))

    assert result.ok
    assert not result.changed
    assert result.run.status == "succeeded"


def test_succeeded_run_steps_are_noop(test_db, project):
    run = _run(test_db, project)
    mark_run_completed(test_db, run.id, output={})

    result = advance_run(test_db, run.id, "synthesis")

    assert result.ok
    assert result.action == "noop"
