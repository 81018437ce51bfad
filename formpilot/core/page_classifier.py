"""
页面分类器

职责：
- 四级分类（成本递增，命中即返回）：
  1. URL 规则
  2. 廉价 DOM 信号（确认页 / 单密码框登录页）+ 平台 DOM 规则
  3. Agent extract 分类（含安全覆盖与审核页复核）
  4. DOM 兜底
- SPA 覆盖：已点过 Apply 后再识别为 job_listing 的页面按 questions 处理
- 审核页门禁：页面上仍有可编辑控件时，review 一律降级为 questions
"""

from __future__ import annotations

from typing import Callable, Optional

from .agent_runtime import AgentGate
from .errors import is_fatal_error
from .heuristics import build_url_hints
from .page_probe import PageInspector
from .prompt_builder import REVIEW_VERIFICATION_PROMPT, REVIEW_VERIFICATION_SCHEMA
from .types import PageState, RunContext, coerce_page_state

LogFn = Callable[[str, str], None]

ACCOUNT_CREATION_FIELD_LIMIT = 5


class PageClassifier:
    def __init__(
        self,
        config,
        inspector: PageInspector,
        gate: AgentGate,
        log_fn: Optional[LogFn] = None,
    ) -> None:
        self.config = config
        self.inspector = inspector
        self.gate = gate
        self._log = log_fn or (lambda msg, level="info": None)

    def classify(self, ctx: RunContext) -> PageState:
        url = self.inspector.adapter.get_current_url()

        # Tier 1
        state = self.config.detect_page_by_url(url)
        if state is not None:
            return self._apply_spa_override(state, ctx)

        # Tier 2
        state = self._detect_obvious_page(ctx)
        if state is not None:
            return state

        state = self.config.detect_page_by_dom(self.inspector)
        if state is not None:
            state = self._apply_spa_override(state, ctx)
            self._log(f"DOM 规则识别页面: {state.page_type}")
            return self._gate_review(state)

        # Tier 3
        try:
            state = self._classify_with_agent(url, ctx)
        except Exception as e:
            if is_fatal_error(e):
                raise
            self._log(f"⚠ Agent 页面分类失败，使用 DOM 兜底: {e}", "warn")
        if state is not None:
            return state

        # Tier 4
        page_type = self.config.classify_by_dom_fallback(self.inspector)
        if page_type != "unknown":
            self._log(f"DOM 兜底识别页面: {page_type}")
        return PageState(page_type=page_type, page_title=page_type if page_type != "unknown" else "N/A")

    def _detect_obvious_page(self, ctx: RunContext) -> Optional[PageState]:
        signals = self.inspector.obvious_signals()
        if signals.get("hasConfirmation"):
            return PageState(page_type="confirmation", page_title="Confirmation")
        if (
            int(signals.get("passwordCount") or 0) == 1
            and not signals.get("isCreateAccountHeading")
            and not ctx.login_attempted
            and int(signals.get("formFieldCount") or 0) < ACCOUNT_CREATION_FIELD_LIMIT
        ):
            return PageState(page_type="login", page_title="Sign-In")
        return None

    def _classify_with_agent(self, url: str, ctx: RunContext) -> Optional[PageState]:
        if not self.inspector.is_healthy():
            self._log("⚠ 页面疑似损坏，跳过 Agent 分类", "warn")
            page_type = self.config.classify_by_dom_fallback(self.inspector)
            return PageState(page_type=page_type, page_title="broken_page")

        prompt = self.config.build_classification_prompt(build_url_hints(url))
        raw = self.gate.extract(prompt, self.config.page_state_schema, label="classify")
        if raw is None:
            return None
        state = coerce_page_state(raw)
        self._log(f"Agent 识别页面: {state.page_type}")

        state = self._apply_spa_override(state, ctx)

        if state.page_type == "account_creation":
            field_count = self.inspector.count_form_fields()
            if field_count >= ACCOUNT_CREATION_FIELD_LIMIT:
                self._log(f"🔄 Agent 判为 account_creation 但页面有 {field_count} 个输入框，改判 questions")
                state.page_type = "questions"
                return state

        if state.page_type == "review":
            state = self._gate_review(state)
            if state.page_type == "review" and not self.verify_review_page():
                self._log("🔄 审核页复核未通过，改判 questions")
                state.page_type = "questions"
        return state

    def _gate_review(self, state: PageState) -> PageState:
        if state.page_type == "review" and self.inspector.has_review_blocking_fields():
            self._log("🔄 识别为 review 但页面仍有可编辑控件，改判 questions")
            state.page_type = "questions"
        return state

    def verify_review_page(self) -> bool:
        """让 Agent 按明确标准复核是否为最终审核页；调用失败按"不是"处理。"""
        try:
            result = self.gate.extract(
                REVIEW_VERIFICATION_PROMPT, REVIEW_VERIFICATION_SCHEMA, label="review_verify"
            ) or {}
        except Exception as e:
            if is_fatal_error(e):
                raise
            self._log(f"⚠ 审核页复核调用失败: {e}", "warn")
            return False
        verdict = bool(result.get("is_final_review"))
        self._log(f"审核页复核: is_final_review={verdict}, reason={result.get('reason', '')!r}")
        return verdict

    def _apply_spa_override(self, state: PageState, ctx: RunContext) -> PageState:
        # 单页应用：点了 Apply 之后表单直接渲染在职位页的 DOM 里
        if ctx.apply_clicked and state.page_type == "job_listing":
            self._log("🔄 已点击过 Apply，job_listing 改判 questions（SPA）")
            return PageState(page_type="questions", page_title="Application Form")
        return state
