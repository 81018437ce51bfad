"""
浏览器会话

职责：
- 按 config.yaml 的 browser 段启动 Chromium 持久化上下文（保留登录态 / Cookie）
- 页面 console error、pageerror、失败请求写入运行日志
- BrowserSession 由调度线程创建与关闭（Playwright 同步 API 绑定线程）
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from playwright.sync_api import BrowserContext, Page, sync_playwright

from ..config import load_settings

LogFn = Callable[[str, str], None]

DEFAULT_PROFILE_DIR = "~/.cache/formpilot/chrome-profile"


@dataclass
class BrowserSession:
    playwright: Any
    context: BrowserContext
    page: Page

    def close(self) -> None:
        try:
            self.context.close()
        finally:
            self.playwright.stop()


def build_launch_args(browser_cfg: dict) -> dict:
    """browser 配置段 → launch_persistent_context 关键字参数（未设置的项不传）。"""
    args: dict[str, Any] = {
        "user_data_dir": str(Path(browser_cfg.get("user_data_dir") or DEFAULT_PROFILE_DIR).expanduser()),
        "headless": bool(browser_cfg.get("headless", False)),
        "accept_downloads": False,
    }
    slow_mo = int(browser_cfg.get("slow_mo") or 0)
    if slow_mo > 0:
        args["slow_mo"] = slow_mo
    if browser_cfg.get("executable_path"):
        args["executable_path"] = browser_cfg["executable_path"]
    return args


class BrowserManager:
    def __init__(self, log_fn: Optional[LogFn] = None, settings: Optional[dict] = None) -> None:
        self._log = log_fn or (lambda msg, level="info": None)
        self._browser_cfg = (settings if settings is not None else load_settings()).get("browser") or {}

    def launch(self) -> BrowserSession:
        args = build_launch_args(self._browser_cfg)
        pw = sync_playwright().start()
        try:
            context = pw.chromium.launch_persistent_context(**args)
        except Exception:
            pw.stop()
            raise
        page = context.pages[0] if context.pages else context.new_page()
        self._watch(page, context)
        self._log(f"✓ 浏览器已启动 (headless={args['headless']}, profile={args['user_data_dir']})")
        return BrowserSession(playwright=pw, context=context, page=page)

    def _watch(self, page: Page, context: BrowserContext) -> None:
        def on_console(msg) -> None:
            if msg.type == "error":
                self._log(f"[console] {msg.text}", "warn")

        page.on("console", on_console)
        page.on("pageerror", lambda exc: self._log(f"[pageerror] {exc}", "error"))
        context.on("requestfailed", lambda req: self._log(f"[requestfailed] {req.method} {req.url}", "warn"))
