"""
Agent 调用闸门（AgentGate）

职责：
- 所有 act()/extract() 调用的统一入口
- 调用前：页面健康检查（坏页直接跳过）、预算预检、最小调用间隔节流
- 429 / rate_limit：等待 backoff 后重试一次，而不是报错
- 预算 / 动作上限等致命错误原样上抛
"""

from __future__ import annotations

import time
from typing import Any, Callable, Optional

from ..config import OrchestratorSettings
from .errors import BudgetExceededError, is_fatal_error
from .heuristics import is_rate_limit_message
from .page_probe import PageInspector

LogFn = Callable[[str, str], None]


class AgentGate:
    def __init__(
        self,
        primary,
        *,
        inspector: PageInspector,
        secondary=None,
        cost_tracker=None,
        settings: Optional[OrchestratorSettings] = None,
        log_fn: Optional[LogFn] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.primary = primary
        self.secondary = secondary
        self.inspector = inspector
        self.cost_tracker = cost_tracker
        self.settings = settings or OrchestratorSettings()
        self._log = log_fn or (lambda msg, level="info": None)
        self._clock = clock
        self._last_call_at: Optional[float] = None

    @property
    def per_field_mode(self) -> bool:
        """配置了廉价的单动作 Agent 时，Phase 2 走逐字段模式。"""
        return self.secondary is not None and self.secondary is not self.primary

    @property
    def fill_agent(self):
        return self.secondary if self.per_field_mode else self.primary

    def throttle(self) -> None:
        gap = self.settings.min_llm_gap_ms
        now = self._clock()
        if self._last_call_at is not None:
            elapsed_ms = (now - self._last_call_at) * 1000
            if elapsed_ms < gap:
                wait_ms = int(gap - elapsed_ms)
                self._log(f"⏳ LLM 调用节流，等待 {wait_ms}ms")
                self.inspector.wait(wait_ms)
        self._last_call_at = self._clock()

    def check_budget(self) -> None:
        if self.cost_tracker is None:
            return
        remaining = self.cost_tracker.get_remaining_budget()
        if remaining <= 0:
            budget = self.cost_tracker.get_task_budget()
            raise BudgetExceededError(
                f"Budget exceeded: no remaining budget (limit ${budget:.2f})",
                total_cost=budget - remaining,
                budget=budget,
            )

    def _page_ok(self, label: str) -> bool:
        if self.inspector.is_healthy():
            return True
        self._log(f"⚠ [{label}] 页面疑似损坏，跳过 LLM 调用", "warn")
        return False

    def _invoke(self, label: str, call: Callable[[], Any]) -> Any:
        """预算预检 + 节流后执行 call；429 等待 backoff 再试一次，其余异常上抛。"""
        self.check_budget()
        self.throttle()
        try:
            return call()
        except Exception as e:
            if is_fatal_error(e) or not is_rate_limit_message(str(e)):
                raise
            backoff = self.settings.rate_limit_backoff_ms
            self._log(f"⚠ [{label}] 触发速率限制 (429)，等待 {backoff // 1000}s 后重试", "warn")
            self.inspector.wait(backoff)
            self._last_call_at = self._clock()
            return call()

    def safe_act(
        self,
        instruction: str,
        label: str,
        *,
        visual: bool = False,
        timeout_ms: Optional[int] = None,
    ) -> bool:
        """
        执行一次 act()；成功返回 True。

        坏页 / act 报告失败返回 False；429 重试一次；其他异常上抛由调用方决定。
        未指定 timeout_ms 时使用 act_timeout_ms。
        """
        if not self._page_ok(label):
            return False
        agent = self.primary if visual else self.fill_agent
        timeout = timeout_ms or self.settings.act_timeout_ms
        result = self._invoke(label, lambda: agent.act(instruction, timeout_ms=timeout))
        if not result.success:
            self._log(f"⚠ [{label}] act() 报告失败: {result.message}", "warn")
            return False
        return True

    def extract(self, instruction: str, schema: dict, *, label: str = "extract") -> Any:
        """坏页返回 None（调用方按失败处理）。"""
        if not self._page_ok(label):
            return None
        return self._invoke(label, lambda: self.primary.extract(instruction, schema))
