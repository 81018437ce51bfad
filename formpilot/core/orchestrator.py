"""
分层表单编排器（LayeredOrchestrator）

主循环：等待页面稳定 → 关闭 Cookie 横幅 → 识别页面 → 卡页检测 → 按页面类型路由。
表单页交给 FillPipeline（内部再交给 NavigationAdvancer），
登录 / SSO / 验证码 / 2FA / 注册 / 职位页交给 PageHandlers。

run() 永不抛异常：任何异常都转换为失败的 OrchestratorResult。
"""

from __future__ import annotations

from typing import Callable, Optional

from ..config import OrchestratorSettings
from .agent_runtime import AgentGate
from .errors import ManualInterventionRequired
from .fill_pipeline import FillPipeline
from .fsm_orchestrator import (
    build_terminal_result,
    decide_fill_outcome_path,
    decide_page_route,
    progress_step_for_page,
)
from .loop_guard import StuckDetector, page_signature
from .page_classifier import PageClassifier
from .page_handlers import PageHandlers
from .page_probe import PageInspector
from .progress import ProgressStep, ProgressTracker
from .types import OrchestratorResult, PageState, RunContext

LogFn = Callable[[str, str], None]


class LayeredOrchestrator:
    def __init__(
        self,
        adapter,
        config,
        *,
        secondary_adapter=None,
        cost_tracker=None,
        progress: Optional[ProgressTracker] = None,
        settings: Optional[OrchestratorSettings] = None,
        log_fn: Optional[LogFn] = None,
    ) -> None:
        self.adapter = adapter
        self.config = config
        self.settings = settings or OrchestratorSettings()
        self.progress = progress or ProgressTracker()
        self._log = log_fn or (lambda msg, level="info": None)
        self.inspector = PageInspector(adapter, self._log)
        self.gate = AgentGate(
            adapter,
            inspector=self.inspector,
            secondary=secondary_adapter,
            cost_tracker=cost_tracker,
            settings=self.settings,
            log_fn=self._log,
        )
        self.classifier = PageClassifier(config, self.inspector, self.gate, self._log)
        self.ctx = RunContext(platform=config.platform_id)

    def run(
        self,
        profile: dict,
        qa_map: dict[str, str],
        data_prompt: str,
        resume_path: Optional[str] = None,
    ) -> OrchestratorResult:
        ctx = RunContext(
            platform=self.config.platform_id,
            data_prompt=data_prompt,
            qa_map=dict(qa_map),
            resume_path=resume_path,
        )
        self.ctx = ctx
        pipeline = FillPipeline(
            self.config, self.inspector, self.gate, ctx, self.settings, self._log
        )
        handlers = PageHandlers(
            self.config, self.inspector, self.gate, ctx, self.settings, self._log
        )
        stuck = StuckDetector(self.settings.max_same_page)

        chooser_handler = self._attach_resume_listener(resume_path) if resume_path else None
        try:
            while ctx.pages_processed < self.settings.max_pages:
                ctx.pages_processed += 1
                self.inspector.wait_for_settled(self.settings.page_transition_wait_ms)
                self.inspector.dismiss_cookie_banner()

                self.progress.set_step(ProgressStep.ANALYZING_PAGE)
                state = self.classifier.classify(ctx)
                url = self.adapter.get_current_url()
                self._log(
                    f"第 {ctx.pages_processed} 页: {state.page_type} (标题: {state.page_title or 'N/A'})"
                )

                if stuck.observe(page_signature(url, self.inspector.fingerprint())):
                    self._log(f"⚠ 连续 {stuck.same_count} 次停留在同一页面，停止", "warn")
                    self.progress.set_step(ProgressStep.AWAITING_USER_REVIEW)
                    return build_terminal_result("stuck", ctx)

                result = self._route(state, ctx, pipeline, handlers, profile)
                if result is not None:
                    return result

            self._log(f"⚠ 达到最大页数 {self.settings.max_pages}", "warn")
            self.progress.set_step(ProgressStep.AWAITING_USER_REVIEW)
            return build_terminal_result("max_pages_reached", ctx)

        except ManualInterventionRequired as e:
            self._log(f"❌ 需要人工处理（第 {ctx.pages_processed} 页）: {e}", "error")
            return build_terminal_result("error", ctx, error=str(e), manual_intervention=True)
        except Exception as e:
            self._log(f"❌ 第 {ctx.pages_processed} 页出错: {e}", "error")
            return build_terminal_result("error", ctx, error=str(e))
        finally:
            if chooser_handler is not None:
                try:
                    self.adapter.page.remove_listener("filechooser", chooser_handler)
                except Exception as e:
                    self._log(f"⚠ 移除 filechooser 监听失败: {e}", "warn")

    def _route(
        self,
        state: PageState,
        ctx: RunContext,
        pipeline: FillPipeline,
        handlers: PageHandlers,
        profile: dict,
    ) -> Optional[OrchestratorResult]:
        page_type = state.page_type
        route = decide_page_route(
            page_type,
            login_attempted=ctx.login_attempted,
            needs_custom_experience_handler=self.config.needs_custom_experience_handler,
        )

        if route == "job_listing":
            handlers.handle_job_listing()
        elif route == "login":
            if page_type == "account_creation":
                self._log("注册页，但还没尝试过登录，先登录")
            handlers.handle_login(profile)
            ctx.login_attempted = True
        elif route == "sso_signin":
            handlers.handle_sso_signin(profile)
            ctx.login_attempted = True
        elif route == "verification_code":
            handlers.handle_verification_code()
        elif route == "phone_2fa":
            handlers.handle_phone_2fa()
        elif route == "account_creation":
            handlers.handle_account_creation(profile)
        elif route == "terminal_review":
            return self._finish_at_review(ctx)
        elif route == "terminal_confirmation":
            self._log("⚠ 意外到达确认页（申请可能已提交）", "warn")
            return build_terminal_result("confirmation", ctx)
        elif route == "terminal_error":
            return build_terminal_result(
                "error",
                ctx,
                error=f"Application error page: {state.error_message or 'Unknown error'}",
            )
        elif route == "custom_experience":
            self.progress.set_step(ProgressStep.UPLOADING_RESUME)
            self.config.handle_experience_page(
                self.inspector,
                self.gate,
                profile,
                ctx.data_prompt,
                ctx.resume_path,
                self._log,
            )
            advanced = pipeline.advancer.advance_after_custom_handler(page_type)
            if advanced == "navigated":
                self.inspector.wait_for_settled(self.settings.page_transition_wait_ms)
            # review / stuck 由下一轮重新识别
        else:
            self.progress.set_step(ProgressStep(progress_step_for_page(page_type)))
            fill_prompt = self.config.build_page_prompt(page_type, ctx.data_prompt)
            outcome = pipeline.fill_page(fill_prompt, page_type)
            if decide_fill_outcome_path(outcome) == "terminal_review":
                return self._finish_at_review(ctx)
        return None

    def _finish_at_review(self, ctx: RunContext) -> OrchestratorResult:
        self.progress.set_step(ProgressStep.AWAITING_USER_REVIEW)
        self._log("✓ 已到达审核页，停止（不提交）")
        return build_terminal_result("review", ctx)

    def _attach_resume_listener(self, resume_path: str):
        def on_file_chooser(chooser) -> None:
            try:
                self._log("文件选择框已打开，挂载简历")
                chooser.set_files(resume_path)
            except Exception as e:
                self._log(f"⚠ 挂载简历失败: {e}", "warn")

        self.adapter.page.on("filechooser", on_file_chooser)
        return on_file_chooser
