import pytest

from formpilot.config import OrchestratorSettings
from formpilot.core.agent_runtime import AgentGate
from formpilot.core.cost import CostTracker
from formpilot.core.errors import BudgetExceededError
from formpilot.core.types import ActResult


class _Inspector:
    def __init__(self, healthy=True):
        self.healthy = healthy
        self.waits: list[int] = []

    def is_healthy(self):
        return self.healthy

    def wait(self, ms):
        self.waits.append(ms)


class _Agent:
    def __init__(self, *results, extracted=None):
        self.results = list(results)
        self.extracted = list(extracted or [])
        self.instructions: list[tuple[str, object]] = []
        self.extract_calls = 0

    def act(self, instruction, timeout_ms=None):
        self.instructions.append((instruction, timeout_ms))
        result = self.results.pop(0) if self.results else ActResult(success=True)
        if isinstance(result, Exception):
            raise result
        return result

    def extract(self, instruction, schema):
        self.extract_calls += 1
        result = self.extracted.pop(0) if self.extracted else {"page_type": "questions"}
        if isinstance(result, Exception):
            raise result
        return result


def _gate(primary, secondary=None, inspector=None, tracker=None, now=None):
    clock = now or [100.0]
    return AgentGate(
        primary,
        inspector=inspector or _Inspector(),
        secondary=secondary,
        cost_tracker=tracker,
        settings=OrchestratorSettings(),
        clock=lambda: clock[0],
    )


def test_per_field_mode_routes_fill_calls_to_secondary():
    primary, secondary = _Agent(), _Agent()
    gate = _gate(primary, secondary)
    assert gate.per_field_mode is True
    assert gate.safe_act("fill", "p") is True
    assert gate.safe_act("look", "p", visual=True, timeout_ms=30000) is True
    assert secondary.instructions == [("fill", 60000)]
    assert primary.instructions == [("look", 30000)]


def test_single_agent_is_batch_mode():
    primary = _Agent()
    gate = _gate(primary, secondary=primary)
    assert gate.per_field_mode is False
    assert gate.fill_agent is primary


def test_throttle_enforces_min_gap():
    inspector = _Inspector()
    now = [100.0]
    gate = _gate(_Agent(), inspector=inspector, now=now)
    gate.safe_act("a", "p")
    assert inspector.waits == []
    now[0] += 2.0
    gate.safe_act("b", "p")
    assert inspector.waits == [3000]
    now[0] += 10.0
    gate.safe_act("c", "p")
    assert inspector.waits == [3000]


def test_rate_limit_waits_and_retries_once():
    inspector = _Inspector()
    agent = _Agent(RuntimeError("Error code: 429 Too Many Requests"), ActResult(success=True))
    gate = _gate(agent, inspector=inspector)
    assert gate.safe_act("fill", "p") is True
    assert len(agent.instructions) == 2
    assert 30000 in inspector.waits


def test_other_errors_propagate():
    gate = _gate(_Agent(RuntimeError("element detached")))
    with pytest.raises(RuntimeError):
        gate.safe_act("fill", "p")

    gate = _gate(_Agent(BudgetExceededError("Budget exceeded: $0.30 > $0.25")))
    with pytest.raises(BudgetExceededError):
        gate.safe_act("fill", "p")


def test_unhealthy_page_skips_call():
    agent = _Agent()
    gate = _gate(agent, inspector=_Inspector(healthy=False))
    assert gate.safe_act("fill", "p") is False
    assert agent.instructions == []


def test_reported_failure_returns_false():
    gate = _gate(_Agent(ActResult(success=False, message="could not find field")))
    assert gate.safe_act("fill", "p") is False


def test_exhausted_budget_blocks_calls():
    tracker = CostTracker(task_budget=0.10)
    tracker.input_cost = 0.10
    agent = _Agent()
    gate = _gate(agent, tracker=tracker)
    with pytest.raises(BudgetExceededError):
        gate.safe_act("fill", "p")
    with pytest.raises(BudgetExceededError):
        gate.extract("classify", {})
    assert agent.instructions == []


def test_act_without_timeout_uses_configured_deadline():
    agent = _Agent()
    gate = AgentGate(
        agent,
        inspector=_Inspector(),
        settings=OrchestratorSettings(act_timeout_ms=45000),
        clock=lambda: 100.0,
    )
    gate.safe_act("fill First Name", "p")
    gate.safe_act("look", "p", visual=True, timeout_ms=30000)
    assert agent.instructions == [("fill First Name", 45000), ("look", 30000)]


def test_extract_retries_once_after_rate_limit():
    inspector = _Inspector()
    agent = _Agent(extracted=[RuntimeError("429 rate_limit: slow down"), {"page_type": "review"}])
    gate = _gate(agent, inspector=inspector)
    assert gate.extract("classify", {}) == {"page_type": "review"}
    assert agent.extract_calls == 2
    assert 30000 in inspector.waits


def test_extract_other_errors_propagate():
    gate = _gate(_Agent(extracted=[RuntimeError("bad json")]))
    with pytest.raises(RuntimeError):
        gate.extract("classify", {})


def test_extract_skipped_on_unhealthy_page():
    agent = _Agent()
    gate = _gate(agent, inspector=_Inspector(healthy=False))
    assert gate.extract("classify", {}) is None
    assert agent.extract_calls == 0
