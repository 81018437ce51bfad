"""
单线程运行调度器。

职责：
- 从 application_runs 表中按创建顺序取出 pending 运行
- 将其标记为 in_progress 并调用申请执行模块
- 根据编排结果更新为 awaiting_review / manual_required / failed
- 在同一线程里关闭 API 请求释放的浏览器
"""

from __future__ import annotations

from dataclasses import dataclass
from threading import Event, Thread
from typing import Callable, Optional

from ..db.database import get_session
from ..models.application_run import ApplicationRun, RunStatus
from .applier import close_requested_sessions, run_application
from .types import OrchestratorResult


@dataclass
class SchedulerConfig:
    poll_interval_seconds: float = 2.0


def status_for_result(result: OrchestratorResult) -> RunStatus:
    if result.success:
        # 确认页也交给人工核对
        return RunStatus.AWAITING_REVIEW
    if result.keep_browser_open:
        return RunStatus.MANUAL_REQUIRED
    return RunStatus.FAILED


class RunScheduler:
    """后台单线程：一次只跑一个申请流程，同时负责关闭被释放的浏览器。"""

    def __init__(
        self,
        config: Optional[SchedulerConfig] = None,
        runner: Optional[Callable[[ApplicationRun], OrchestratorResult]] = None,
    ) -> None:
        self.config = config or SchedulerConfig()
        self._runner = runner
        self._halt = Event()
        self._worker: Optional[Thread] = None
        self.current_run_id: Optional[int] = None

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive() and not self._halt.is_set()

    def start(self) -> None:
        self._halt.clear()
        if self._worker is None or not self._worker.is_alive():
            self._worker = Thread(target=self._loop, name="formpilot-scheduler", daemon=True)
            self._worker.start()

    def stop(self) -> None:
        """当前运行会跑完，之后线程退出。"""
        self._halt.set()

    def _loop(self) -> None:
        while not self._halt.is_set():
            close_requested_sessions()
            if not self.run_once():
                self._halt.wait(self.config.poll_interval_seconds)

    def run_once(self) -> bool:
        """处理一个 pending 运行；没有可处理的运行时返回 False。"""
        run = self._fetch_next_pending_run()
        if not run:
            return False
        self._process_run(run)
        return True

    def _fetch_next_pending_run(self) -> Optional[ApplicationRun]:
        with get_session() as session:
            run = (
                session.query(ApplicationRun)
                .filter(ApplicationRun.status == RunStatus.PENDING)
                .order_by(ApplicationRun.create_time.asc(), ApplicationRun.id.asc())
                .first()
            )
            if run:
                run.status = RunStatus.IN_PROGRESS
                session.add(run)
            return run

    def _process_run(self, run: ApplicationRun) -> None:
        self.current_run_id = run.id
        try:
            result = (self._runner or run_application)(run)
        finally:
            self.current_run_id = None

        status = status_for_result(result)
        with get_session() as session:
            db_run = session.get(ApplicationRun, run.id)
            if not db_run:
                return
            db_run.status = status
            if result.error and not db_run.error:
                db_run.error = result.error
            session.add(db_run)
        print(f"[run={run.id}] 状态更新为: {status.value.upper()}")


# 全局单例调度器
scheduler = RunScheduler()
