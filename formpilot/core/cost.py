"""
成本控制

职责：
- 按质量档位限定单次运行的 LLM 预算（USD）
- 限定动作次数
- 超限时抛出致命错误
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

from .errors import ActionLimitExceededError, BudgetExceededError

QualityPreset = Literal["speed", "balanced", "quality"]

TASK_BUDGET: dict[str, float] = {
    "speed": 0.05,
    "balanced": 0.25,
    "quality": 0.50,
}

DEFAULT_MAX_ACTIONS = 50

JOB_TYPE_ACTION_LIMITS: dict[str, int] = {
    "apply": 50,
    "scrape": 30,
    "fill_form": 40,
    "custom": 50,
}


def get_task_budget(quality_preset: str = "balanced") -> float:
    return TASK_BUDGET.get(quality_preset, TASK_BUDGET["balanced"])


@dataclass(frozen=True)
class CostSnapshot:
    input_tokens: int
    output_tokens: int
    input_cost: float
    output_cost: float
    total_cost: float
    action_count: int
    image_cost: float
    reasoning_cost: float


class CostTracker:
    """单次运行的预算与动作计数。"""

    def __init__(
        self,
        *,
        run_id: Optional[int] = None,
        quality_preset: str = "balanced",
        job_type: Optional[str] = None,
        max_actions: Optional[int] = None,
        task_budget: Optional[float] = None,
    ) -> None:
        self.run_id = run_id
        self.task_budget = (
            task_budget if task_budget is not None else get_task_budget(quality_preset)
        )
        self.action_limit = (
            max_actions
            or (JOB_TYPE_ACTION_LIMITS.get(job_type) if job_type else None)
            or DEFAULT_MAX_ACTIONS
        )
        self.input_tokens = 0
        self.output_tokens = 0
        self.input_cost = 0.0
        self.output_cost = 0.0
        self.action_count = 0
        self._image_cost = 0.0
        self._reasoning_cost = 0.0

    @property
    def total_cost(self) -> float:
        return self.input_cost + self.output_cost

    def record_token_usage(
        self,
        *,
        input_tokens: int,
        output_tokens: int,
        input_cost: float = 0.0,
        output_cost: float = 0.0,
        role: str = "reasoning",
    ) -> None:
        """累计 token 用量；总花费超过预算时抛 BudgetExceededError。"""
        self.input_tokens += int(input_tokens)
        self.output_tokens += int(output_tokens)
        self.input_cost += input_cost
        self.output_cost += output_cost
        if role == "image":
            self._image_cost += input_cost + output_cost
        else:
            self._reasoning_cost += input_cost + output_cost

        total = self.total_cost
        if total > self.task_budget:
            raise BudgetExceededError(
                f"Budget exceeded: task cost ${total:.4f} > ${self.task_budget:.2f} limit",
                total_cost=total,
                budget=self.task_budget,
            )

    def record_action(self) -> None:
        self.action_count += 1
        if self.action_count > self.action_limit:
            raise ActionLimitExceededError(
                f"Action limit exceeded: {self.action_count} > {self.action_limit}",
                action_count=self.action_count,
                limit=self.action_limit,
            )

    def get_remaining_budget(self) -> float:
        return self.task_budget - self.total_cost

    def get_task_budget(self) -> float:
        return self.task_budget

    def get_snapshot(self) -> CostSnapshot:
        return CostSnapshot(
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            input_cost=self.input_cost,
            output_cost=self.output_cost,
            total_cost=self.total_cost,
            action_count=self.action_count,
            image_cost=self._image_cost,
            reasoning_cost=self._reasoning_cost,
        )
