"""
单次申请执行模块。

流程：
1. 识别平台，加载申请人资料，构造 QA 映射与数据提示
2. 启动浏览器并打开申请链接
3. LayeredOrchestrator 逐页识别、填写、推进，停在审核页（不提交）
4. 持久化结果；需要人工审核 / 接管时保留浏览器
"""

from __future__ import annotations

from datetime import datetime, timezone
from threading import Lock
from typing import Optional

from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from ..config import (
    get_cost_settings,
    get_default_resume_path,
    get_llm_settings,
    get_orchestrator_settings,
    load_applicant_profile,
)
from ..db.database import SessionLocal
from ..models.application_run import ApplicationRun
from ..models.run_log import RunLog
from ..platforms import detect_platform_from_url
from .agent_adapter import PlaywrightAgentAdapter
from .browser_manager import BrowserManager, BrowserSession
from .cost import CostTracker
from .orchestrator import LayeredOrchestrator
from .progress import ProgressStep, ProgressTracker
from .types import OrchestratorResult

# 等待人工审核 / 接管的浏览器会话，只能在创建它的调度线程里关闭
_open_sessions: dict[int, BrowserSession] = {}
_close_requests: set[int] = set()
_sessions_lock = Lock()


def run_application(run: ApplicationRun) -> OrchestratorResult:
    """
    对一条申请链接执行完整流程，返回编排结果（永不抛异常）。
    """
    log = lambda msg, level="info": _log(run.id, msg, level)  # noqa: E731

    config = detect_platform_from_url(run.link)
    platform_id = config.platform_id
    _log(run.id, "=" * 50)
    _log(run.id, "🚀 开始申请流程")
    _log(run.id, f"   岗位: {run.title or '未命名'}")
    _log(run.id, f"   公司: {run.company or '未知'}")
    _log(run.id, f"   链接: {run.link}")
    _log(run.id, f"   平台: {config.display_name}")
    _log(run.id, "=" * 50)
    _persist_platform(run.id, platform_id)

    applicant = load_applicant_profile()
    profile = applicant["profile"]
    overrides = applicant["qa_overrides"]

    cost_cfg = get_cost_settings()
    cost_tracker = CostTracker(
        run_id=run.id,
        quality_preset=str(cost_cfg.get("quality_preset") or "balanced"),
        max_actions=cost_cfg.get("max_actions"),
    )
    progress = ProgressTracker(
        on_update=lambda snap: _log(
            run.id, f"进度: {snap['step']} ({snap['progress_pct']}%)"
        )
    )

    session: Optional[BrowserSession] = None
    result: OrchestratorResult
    try:
        progress.set_step(ProgressStep.INITIALIZING)
        session = BrowserManager(log_fn=log).launch()
        page = session.page

        progress.set_step(ProgressStep.NAVIGATING)
        try:
            page.goto(run.link, wait_until="domcontentloaded", timeout=30000)
            _log(run.id, "✓ 页面加载成功")
        except PlaywrightTimeoutError:
            _log(run.id, "❌ 页面加载超时", "error")
            result = OrchestratorResult(
                success=False, final_page="error", platform=platform_id, error="页面加载超时"
            )
            _finish(run.id, result, cost_tracker, session)
            return result

        primary, secondary = _build_adapters(page, cost_tracker, progress, log)
        orchestrator = LayeredOrchestrator(
            primary,
            config,
            secondary_adapter=secondary,
            cost_tracker=cost_tracker,
            progress=progress,
            settings=get_orchestrator_settings(),
            log_fn=log,
        )
        result = orchestrator.run(
            profile,
            config.build_qa_map(profile, overrides),
            config.build_data_prompt(profile, overrides),
            get_default_resume_path(),
        )
    except Exception as e:
        _log(run.id, f"❌ 申请流程异常: {e}", "error")
        result = OrchestratorResult(
            success=False, final_page="error", platform=platform_id, error=str(e)
        )

    if not result.success:
        progress.set_step(ProgressStep.FAILED)
    _log(
        run.id,
        f"结果: final_page={result.final_page} pages={result.pages_processed} "
        f"dom={result.dom_filled} llm={result.llm_filled} agent={result.agent_filled} "
        f"cost=${cost_tracker.total_cost:.4f}",
    )
    _finish(run.id, result, cost_tracker, session)
    return result


def _build_adapters(page, cost_tracker: CostTracker, progress: ProgressTracker, log):
    llm_cfg = get_llm_settings()
    models = [llm_cfg["model"]] + [
        m for m in (llm_cfg.get("fallback_models") or []) if m != llm_cfg["model"]
    ]
    primary = PlaywrightAgentAdapter(
        page,
        models=models,
        cost_tracker=cost_tracker,
        progress=progress,
        log_fn=log,
        screenshot_max_width=int(llm_cfg["screenshot_max_width"]),
        max_act_steps=int(llm_cfg["max_act_steps"]),
    )
    secondary = None
    if llm_cfg.get("secondary_model"):
        secondary = PlaywrightAgentAdapter(
            page,
            client=primary.client,
            models=[llm_cfg["secondary_model"]],
            cost_tracker=cost_tracker,
            progress=progress,
            log_fn=log,
            screenshot_max_width=int(llm_cfg["screenshot_max_width"]),
            max_act_steps=int(llm_cfg["max_act_steps"]),
            cost_role="reasoning",
        )
    return primary, secondary


def _finish(
    run_id: int,
    result: OrchestratorResult,
    cost_tracker: CostTracker,
    session: Optional[BrowserSession],
) -> None:
    _persist_result(run_id, result, cost_tracker.total_cost)
    if session is None:
        return
    if result.keep_browser_open:
        with _sessions_lock:
            _open_sessions[run_id] = session
        _log(run_id, "⏳ 浏览器保持打开，等待人工审核 / 接管")
        return
    try:
        session.close()
    except Exception as e:
        _log(run_id, f"⚠ 关闭浏览器失败: {e}", "warn")


def request_browser_close(run_id: int) -> bool:
    """API 线程调用：登记关闭请求，由调度线程执行。返回该运行是否有保留的浏览器。"""
    with _sessions_lock:
        if run_id not in _open_sessions:
            return False
        _close_requests.add(run_id)
        return True


def close_requested_sessions() -> int:
    """在调度线程里关闭已登记的浏览器会话。"""
    with _sessions_lock:
        pending = [(rid, _open_sessions.pop(rid)) for rid in list(_close_requests) if rid in _open_sessions]
        _close_requests.clear()
    for run_id, session in pending:
        try:
            session.close()
            _log(run_id, "✓ 已关闭保留的浏览器")
        except Exception as e:
            _log(run_id, f"⚠ 关闭浏览器失败: {e}", "warn")
    return len(pending)


def has_open_session(run_id: int) -> bool:
    with _sessions_lock:
        return run_id in _open_sessions


def _log(run_id: int, message: str, level: str = "info") -> None:
    """写入日志"""
    try:
        with SessionLocal() as session:
            session.add(RunLog(run_id=run_id, level=level, message=message))
            session.commit()
    except Exception as e:
        print(f"[run={run_id}] [ERROR] 日志写入失败: {e}")
    print(f"[run={run_id}] [{level.upper()}] {message}")


def _persist_platform(run_id: int, platform_id: str) -> None:
    with SessionLocal() as session:
        db_run = session.get(ApplicationRun, run_id)
        if not db_run:
            return
        db_run.platform = platform_id
        session.add(db_run)
        session.commit()


def _persist_result(run_id: int, result: OrchestratorResult, cost_usd: float) -> None:
    """
    将终态计数器写回 application_runs（状态由调度器决定）。
    """
    with SessionLocal() as session:
        db_run = session.get(ApplicationRun, run_id)
        if not db_run:
            return
        db_run.platform = result.platform
        db_run.pages_processed = result.pages_processed
        db_run.dom_filled = result.dom_filled
        db_run.llm_filled = result.llm_filled
        db_run.agent_filled = result.agent_filled
        db_run.total_fields = result.total_fields
        db_run.final_page = result.final_page
        db_run.error = result.error
        db_run.keep_browser_open = result.keep_browser_open
        db_run.cost_usd = round(cost_usd, 6)
        db_run.finish_time = datetime.now(timezone.utc)
        session.add(db_run)
        session.commit()
