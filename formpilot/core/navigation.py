"""
导航推进（Navigation Advancer）

职责：
- 滚到底部，用平台的 click_next_button 点击"下一步"
- 点击后检查站点校验错误 / 页面是否变化 / 是否被自动滚到未填字段，必要时回到填充管线（depth+1）
- 结构上是最终审核页时只报告 review，绝不点击提交
"""

from __future__ import annotations

from typing import Callable, Optional

from ..config import OrchestratorSettings
from .heuristics import exceeds_scroll_delta
from .page_probe import PageInspector

LogFn = Callable[[str, str], None]
RefillFn = Callable[[int], str]

CLICK_SETTLE_MS = 2000


class NavigationAdvancer:
    def __init__(
        self,
        config,
        inspector: PageInspector,
        gate=None,
        settings: Optional[OrchestratorSettings] = None,
        log_fn: Optional[LogFn] = None,
    ) -> None:
        self.config = config
        self.inspector = inspector
        self.gate = gate
        self.settings = settings or OrchestratorSettings()
        self._log = log_fn or (lambda msg, level="info": None)

    def _snapshot(self) -> tuple[str, str]:
        return self.inspector.adapter.get_current_url(), self.inspector.fingerprint()

    def _page_changed(self, before: tuple[str, str]) -> bool:
        return self._snapshot() != before

    def _settle(self) -> None:
        self.inspector.wait_for_settled(self.settings.page_transition_wait_ms)

    def _click_next(self) -> str:
        return self.config.click_next_button(self.inspector, self.gate)

    def _refill(self, refill: Optional[RefillFn], depth: int) -> str:
        if refill is None:
            return "complete"
        return refill(depth + 1)

    def advance(self, page_label: str, depth: int = 0, refill: Optional[RefillFn] = None) -> str:
        """返回 'navigated' | 'review' | 'complete'。"""
        inspector = self.inspector
        inspector.clear_scan_tags()
        inspector.scroll_to_bottom()
        inspector.wait(500)

        before = self._snapshot()
        scroll_before = inspector.scroll_y()

        result = self._click_next()
        if result == "clicked":
            self._log(f"[{page_label}] 已通过 DOM 点击 Next")
            inspector.wait(CLICK_SETTLE_MS)

            if self.config.detect_validation_errors(inspector):
                self._log(f"⚠ [{page_label}] 点击 Next 后出现校验错误，重新填充", "warn")
                if not exceeds_scroll_delta(scroll_before, inspector.scroll_y()):
                    inspector.scroll_to(0)
                    inspector.wait(500)
                return self._refill(refill, depth)

            if self._page_changed(before):
                self._settle()
                return "navigated"

            # SPA 延迟渲染
            inspector.wait(CLICK_SETTLE_MS)
            if self._page_changed(before):
                self._settle()
                return "navigated"

            # 没有错误标记但页面被滚到了未填字段处
            if exceeds_scroll_delta(scroll_before, inspector.scroll_y()):
                self._log(f"🔄 [{page_label}] 点击 Next 后页面自动滚动，重新填充")
                return self._refill(refill, depth)

            self._log(f"⚠ [{page_label}] 点击了 Next 但页面没有变化", "warn")

        elif result == "review_detected":
            self._log(f"[{page_label}] 识别到审核页，不点击提交")
            return "review"

        elif result == "not_found":
            inspector.scroll_to(inspector.content_scroll_max(), smooth=True)
            inspector.wait(800)
            retry = self._click_next()
            if retry == "clicked":
                self._log(f"[{page_label}] 在内容底部点击了 Next")
                inspector.wait(CLICK_SETTLE_MS)
                self._settle()
                return "navigated"
            if retry == "review_detected":
                self._log(f"[{page_label}] 内容底部识别到审核页")
                return "review"

        if inspector.has_submit_like_button():
            self._log(f"[{page_label}] 页面存在提交按钮，按审核页处理")
            return "review"

        self._log(f"[{page_label}] 页面处理结束，未能前进")
        return "complete"

    def advance_after_custom_handler(self, page_label: str) -> str:
        """自定义页面处理之后推进；不回到填充管线。返回 'navigated' | 'review' | 'stuck'。"""
        inspector = self.inspector
        inspector.scroll_to_bottom()
        inspector.wait(500)
        before = self._snapshot()

        result = self._click_next()
        self._log(f"[{page_label}] 自定义处理后点击 Next: {result}")

        if result == "clicked":
            inspector.wait(CLICK_SETTLE_MS)
            if self.config.detect_validation_errors(inspector):
                self._log(f"⚠ [{page_label}] 点击 Next 后出现校验错误", "warn")
                return "stuck"
            if self._page_changed(before):
                return "navigated"
            inspector.wait(CLICK_SETTLE_MS)
            if self._page_changed(before):
                return "navigated"
            self._log(f"⚠ [{page_label}] 点击了 Next 但页面没有变化", "warn")

        elif result == "review_detected":
            return "review"

        elif result == "not_found":
            inspector.scroll_to(inspector.content_scroll_max(), smooth=True)
            inspector.wait(800)
            retry = self._click_next()
            if retry == "clicked":
                inspector.wait(CLICK_SETTLE_MS)
                return "navigated"
            if retry == "review_detected":
                return "review"
            self._log(f"⚠ [{page_label}] 滚到底部仍找不到 Next 按钮", "warn")

        return "stuck"
