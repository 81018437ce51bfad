from __future__ import annotations

from formpilot.core.scheduler import RunScheduler, status_for_result
from formpilot.core.types import OrchestratorResult
from formpilot.models.application_run import ApplicationRun, RunStatus


def _add_runs(session_factory, *links):
    ids = []
    with session_factory() as session:
        for link in links:
            run = ApplicationRun(link=link, status=RunStatus.PENDING)
            session.add(run)
            session.commit()
            session.refresh(run)
            ids.append(run.id)
    return ids


def _status(session_factory, run_id):
    with session_factory() as session:
        return session.get(ApplicationRun, run_id).status


def test_status_for_result():
    assert status_for_result(OrchestratorResult(success=True)) == RunStatus.AWAITING_REVIEW
    assert (
        status_for_result(OrchestratorResult(success=False, keep_browser_open=True))
        == RunStatus.MANUAL_REQUIRED
    )
    assert status_for_result(OrchestratorResult(success=False)) == RunStatus.FAILED


def test_run_once_with_empty_queue(isolated_db):
    scheduler = RunScheduler(runner=lambda run: OrchestratorResult(success=True))
    assert scheduler.run_once() is False


def test_run_once_processes_oldest_pending_first(isolated_db):
    first, second = _add_runs(isolated_db, "https://example.com/a", "https://example.com/b")
    seen = []

    def runner(run):
        seen.append((run.id, run.status))
        return OrchestratorResult(success=True, final_page="review")

    scheduler = RunScheduler(runner=runner)
    assert scheduler.run_once() is True
    assert seen == [(first, RunStatus.IN_PROGRESS)]
    assert _status(isolated_db, first) == RunStatus.AWAITING_REVIEW
    assert _status(isolated_db, second) == RunStatus.PENDING
    assert scheduler.current_run_id is None


def test_run_once_records_failure(isolated_db):
    (run_id,) = _add_runs(isolated_db, "https://example.com/a")
    scheduler = RunScheduler(
        runner=lambda run: OrchestratorResult(success=False, final_page="error", error="boom")
    )
    scheduler.run_once()
    with isolated_db() as session:
        run = session.get(ApplicationRun, run_id)
        assert run.status == RunStatus.FAILED
        assert run.error == "boom"


def test_run_once_marks_manual_when_browser_kept(isolated_db):
    (run_id,) = _add_runs(isolated_db, "https://example.com/a")
    scheduler = RunScheduler(
        runner=lambda run: OrchestratorResult(
            success=False, final_page="error", keep_browser_open=True, error="captcha"
        )
    )
    scheduler.run_once()
    assert _status(isolated_db, run_id) == RunStatus.MANUAL_REQUIRED
