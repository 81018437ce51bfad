"""
进度跟踪

职责：
- 有序步骤枚举与描述
- 步骤进度（60%）与动作进度（40%）混合估算百分比
- 回调失败不影响主流程
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Callable, Optional


class ProgressStep(str, Enum):
    QUEUED = "queued"
    INITIALIZING = "initializing"
    NAVIGATING = "navigating"
    ANALYZING_PAGE = "analyzing_page"
    FILLING_FORM = "filling_form"
    UPLOADING_RESUME = "uploading_resume"
    ANSWERING_QUESTIONS = "answering_questions"
    REVIEWING = "reviewing"
    SUBMITTING = "submitting"
    EXTRACTING_RESULTS = "extracting_results"
    AWAITING_USER_REVIEW = "awaiting_user_review"
    COMPLETED = "completed"
    FAILED = "failed"


STEP_ORDER: list[ProgressStep] = [
    ProgressStep.QUEUED,
    ProgressStep.INITIALIZING,
    ProgressStep.NAVIGATING,
    ProgressStep.ANALYZING_PAGE,
    ProgressStep.FILLING_FORM,
    ProgressStep.UPLOADING_RESUME,
    ProgressStep.ANSWERING_QUESTIONS,
    ProgressStep.REVIEWING,
    ProgressStep.SUBMITTING,
    ProgressStep.EXTRACTING_RESULTS,
    ProgressStep.AWAITING_USER_REVIEW,
    ProgressStep.COMPLETED,
]

STEP_DESCRIPTIONS: dict[ProgressStep, str] = {
    ProgressStep.QUEUED: "Waiting in queue",
    ProgressStep.INITIALIZING: "Starting browser agent",
    ProgressStep.NAVIGATING: "Navigating to application page",
    ProgressStep.ANALYZING_PAGE: "Analyzing page structure",
    ProgressStep.FILLING_FORM: "Filling out form fields",
    ProgressStep.UPLOADING_RESUME: "Uploading resume",
    ProgressStep.ANSWERING_QUESTIONS: "Answering screening questions",
    ProgressStep.REVIEWING: "Reviewing submission",
    ProgressStep.SUBMITTING: "Submitting application",
    ProgressStep.EXTRACTING_RESULTS: "Extracting confirmation details",
    ProgressStep.AWAITING_USER_REVIEW: "Waiting for user to review and submit",
    ProgressStep.COMPLETED: "Application complete",
    ProgressStep.FAILED: "Job failed",
}

ProgressCallback = Callable[[dict], None]


def infer_step_from_action(
    action: str, current: ProgressStep, thought: str = ""
) -> ProgressStep:
    """根据动作类型与理由粗略推断所处步骤（只前进不回退由调用方保证）。"""
    v = (action or "").lower()
    t = (thought or "").lower()
    if v == "upload" or any(k in t for k in ("resume", "upload", "attach")):
        return ProgressStep.UPLOADING_RESUME
    if any(k in t for k in ("question", "screening", "answer")):
        return ProgressStep.ANSWERING_QUESTIONS
    if any(k in t for k in ("review", "verify")):
        return ProgressStep.REVIEWING
    if v in ("goto", "navigate") or "navigate" in t:
        return ProgressStep.NAVIGATING
    if v in ("type", "click", "select", "press"):
        if STEP_ORDER.index(current) < STEP_ORDER.index(ProgressStep.FILLING_FORM):
            return ProgressStep.FILLING_FORM
    return current


class ProgressTracker:
    def __init__(
        self,
        *,
        on_update: Optional[ProgressCallback] = None,
        estimated_total_actions: int = 30,
        throttle_seconds: float = 2.0,
    ) -> None:
        self._on_update = on_update
        self.estimated_total_actions = max(1, estimated_total_actions)
        self.throttle_seconds = throttle_seconds
        self.current_step = ProgressStep.QUEUED
        self.action_index = 0
        self.latest_thought = ""
        self.started_at = time.time()
        self._last_emit = 0.0
        self._pending = False

    def set_step(self, step: ProgressStep) -> None:
        """显式切换步骤并立即推送。永不抛异常。"""
        self.current_step = step
        self._emit()

    def record_thought(self, thought: str) -> None:
        self.latest_thought = thought or ""

    def on_action_started(self, action: str) -> None:
        self.action_index += 1
        inferred = infer_step_from_action(action, self.current_step, self.latest_thought)
        if inferred in STEP_ORDER and self.current_step in STEP_ORDER:
            if STEP_ORDER.index(inferred) > STEP_ORDER.index(self.current_step):
                self.current_step = inferred
        self._emit_throttled()

    def get_progress_pct(self) -> int:
        if self.current_step == ProgressStep.COMPLETED:
            return 100
        if self.current_step in STEP_ORDER:
            step_idx = STEP_ORDER.index(self.current_step)
            step_pct = step_idx / (len(STEP_ORDER) - 1) * 100
        else:
            step_pct = 0.0
        action_pct = min(100.0, self.action_index / self.estimated_total_actions * 100)
        return min(99, round(step_pct * 0.6 + action_pct * 0.4))

    def get_snapshot(self) -> dict:
        return {
            "step": self.current_step.value,
            "progress_pct": self.get_progress_pct(),
            "description": STEP_DESCRIPTIONS[self.current_step],
            "action_index": self.action_index,
            "total_actions_estimate": self.estimated_total_actions,
            "current_action": self.latest_thought,
            "elapsed_ms": int((time.time() - self.started_at) * 1000),
        }

    def flush(self) -> None:
        if self._pending:
            self._emit()

    def _emit(self) -> None:
        self._last_emit = time.time()
        self._pending = False
        if not self._on_update:
            return
        try:
            self._on_update(self.get_snapshot())
        except Exception:
            # progress reporting must never break the run
            pass

    def _emit_throttled(self) -> None:
        if time.time() - self._last_emit >= self.throttle_seconds:
            self._emit()
        else:
            self._pending = True
