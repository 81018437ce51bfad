import pytest

from formpilot.core.cost import CostTracker, get_task_budget
from formpilot.core.errors import ActionLimitExceededError, BudgetExceededError
from formpilot.core.progress import ProgressStep, ProgressTracker


def test_task_budget_by_preset():
    assert get_task_budget("speed") == 0.05
    assert get_task_budget("quality") == 0.50
    assert get_task_budget("unknown") == get_task_budget("balanced")


def test_budget_exceeded_raises_with_details():
    tracker = CostTracker(task_budget=0.10)
    tracker.record_token_usage(input_tokens=100, output_tokens=10, input_cost=0.05, role="image")
    assert tracker.get_remaining_budget() == pytest.approx(0.05)

    with pytest.raises(BudgetExceededError) as exc_info:
        tracker.record_token_usage(input_tokens=100, output_tokens=10, output_cost=0.06)
    assert exc_info.value.budget == 0.10
    assert exc_info.value.total_cost == pytest.approx(0.11)

    snap = tracker.get_snapshot()
    assert snap.image_cost == pytest.approx(0.05)
    assert snap.reasoning_cost == pytest.approx(0.06)
    assert snap.input_tokens == 200


def test_action_limit():
    tracker = CostTracker(max_actions=2)
    tracker.record_action()
    tracker.record_action()
    with pytest.raises(ActionLimitExceededError):
        tracker.record_action()


def test_action_limit_from_job_type():
    assert CostTracker(job_type="scrape").action_limit == 30
    assert CostTracker().action_limit == 50


def test_progress_set_step_emits_snapshot():
    updates: list[dict] = []
    tracker = ProgressTracker(on_update=updates.append)
    tracker.set_step(ProgressStep.ANALYZING_PAGE)
    assert updates[-1]["step"] == "analyzing_page"
    assert 0 < updates[-1]["progress_pct"] < 100


def test_progress_callback_errors_are_swallowed():
    def boom(_snap):
        raise RuntimeError("sink down")

    tracker = ProgressTracker(on_update=boom)
    tracker.set_step(ProgressStep.FILLING_FORM)
    assert tracker.current_step == ProgressStep.FILLING_FORM


def test_progress_action_moves_forward_only():
    tracker = ProgressTracker(throttle_seconds=0)
    tracker.set_step(ProgressStep.ANALYZING_PAGE)
    tracker.on_action_started("click")
    assert tracker.current_step == ProgressStep.FILLING_FORM

    tracker.set_step(ProgressStep.REVIEWING)
    tracker.on_action_started("goto")
    assert tracker.current_step == ProgressStep.REVIEWING


def test_completed_is_100_percent():
    tracker = ProgressTracker()
    tracker.set_step(ProgressStep.COMPLETED)
    assert tracker.get_progress_pct() == 100
