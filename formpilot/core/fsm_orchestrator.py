"""
编排主循环的决策模块

职责：
- 页面类型 → 处理路径（纯函数，便于测试与回放）
- 终止页 → OrchestratorResult
- 是否保留浏览器供人工接管
"""

from __future__ import annotations

from typing import Literal, Optional

from .types import OrchestratorResult, RunContext

PageRoute = Literal[
    "job_listing",
    "login",
    "sso_signin",
    "verification_code",
    "phone_2fa",
    "account_creation",
    "terminal_review",
    "terminal_confirmation",
    "terminal_error",
    "custom_experience",
    "fill_form",
]
TerminalPage = Literal["review", "stuck", "max_pages_reached", "confirmation", "error"]
AdvancePath = Literal["terminal_review", "continue"]

RESUME_PAGE_TYPES = frozenset({"experience", "resume_upload"})

# final_page -> (success, awaiting_user_review)
TERMINAL_OUTCOMES: dict[str, tuple[bool, bool]] = {
    "review": (True, True),
    "stuck": (True, True),
    "max_pages_reached": (True, True),
    "confirmation": (True, False),
    "error": (False, False),
}


def decide_page_route(
    page_type: str,
    *,
    login_attempted: bool,
    needs_custom_experience_handler: bool,
) -> PageRoute:
    if page_type == "job_listing":
        return "job_listing"
    if page_type == "login":
        return "login"
    if page_type == "sso_signin":
        return "sso_signin"
    if page_type == "verification_code":
        return "verification_code"
    if page_type == "phone_2fa":
        return "phone_2fa"
    if page_type == "account_creation":
        # 先试登录：账号可能已经存在
        return "account_creation" if login_attempted else "login"
    if page_type == "review":
        return "terminal_review"
    if page_type == "confirmation":
        return "terminal_confirmation"
    if page_type == "error":
        return "terminal_error"
    if page_type in RESUME_PAGE_TYPES and needs_custom_experience_handler:
        return "custom_experience"
    return "fill_form"


def progress_step_for_page(page_type: str) -> str:
    return "uploading_resume" if page_type in RESUME_PAGE_TYPES else "filling_form"


def decide_fill_outcome_path(outcome: str) -> AdvancePath:
    # navigated / complete / stuck 都交给下一轮重新识别
    if outcome == "review":
        return "terminal_review"
    return "continue"


def decide_keep_browser_open(
    *,
    awaiting_user_review: bool,
    manual_intervention: bool,
    pages_processed: int,
    failed: bool,
) -> bool:
    if awaiting_user_review or manual_intervention:
        return True
    return failed and pages_processed > 2


def build_terminal_result(
    final_page: TerminalPage,
    ctx: RunContext,
    *,
    error: Optional[str] = None,
    manual_intervention: bool = False,
) -> OrchestratorResult:
    success, awaiting = TERMINAL_OUTCOMES[final_page]
    return OrchestratorResult(
        success=success,
        pages_processed=ctx.pages_processed,
        dom_filled=ctx.dom_filled,
        llm_filled=ctx.llm_filled,
        agent_filled=ctx.agent_filled,
        total_fields=ctx.total_fields,
        awaiting_user_review=awaiting,
        keep_browser_open=decide_keep_browser_open(
            awaiting_user_review=awaiting,
            manual_intervention=manual_intervention,
            pages_processed=ctx.pages_processed,
            failed=not success,
        ),
        final_page=final_page,
        platform=ctx.platform,
        error=error,
    )
