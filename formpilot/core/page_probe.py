"""
页面探针（PageInspector）

职责：
- 封装所有只读 / 轻量修改的 page.evaluate 脚本
- 每个探针独立、短小，失败时返回安全默认值（探针不应中断主流程）
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from .heuristics import PageHealth, assess_page_health, compose_page_fingerprint
from .types import ScannedField

LogFn = Callable[[str, str], None]

SCAN_IDX_ATTR = "data-fp-scan-idx"

_EDITABLE = ":not([readonly]):not([disabled])"
_TEXT_INPUT_TYPES = ("text", "email", "tel", "number", "url", "date", "search", "datetime-local", "month")

FORM_FIELD_SELECTOR = ", ".join(
    [f'input[type="{t}"]{_EDITABLE}' for t in _TEXT_INPUT_TYPES]
    + [
        f"input:not([type]){_EDITABLE}",
        f"textarea{_EDITABLE}",
        "select:not([disabled])",
        '[role="combobox"]:not([aria-disabled="true"])',
    ]
)

REVIEW_BLOCKING_SELECTOR = (
    FORM_FIELD_SELECTOR + ", "
    '[role="radiogroup"], '
    '[role="radio"]:not([aria-checked="true"]), '
    'input[type="checkbox"][required]:not(:checked):not([disabled]), '
    '[role="checkbox"][aria-required="true"]:not([aria-checked="true"])'
)

_OBVIOUS_SIGNALS_JS = """(fieldSelector) => {
    const bodyText = (document.body ? document.body.innerText : '').toLowerCase();
    const passwordFields = document.querySelectorAll('input[type="password"]:not([disabled])');
    const headings = Array.from(document.querySelectorAll('h1, h2, h3, [role="heading"]'));
    const headingText = headings.map(h => (h.textContent || '').toLowerCase()).join(' ');
    return {
        passwordCount: passwordFields.length,
        isCreateAccountHeading: headingText.includes('create account')
            || headingText.includes('register') || headingText.includes('sign up'),
        hasConfirmation: bodyText.includes('thank you for applying')
            || bodyText.includes('application received')
            || bodyText.includes('successfully submitted')
            || bodyText.includes('application has been submitted'),
        formFieldCount: document.querySelectorAll(fieldSelector).length,
    };
}"""

_COUNT_SELECTOR_JS = """(selector) => document.querySelectorAll(selector).length"""

_HEALTH_JS = """() => {
    const vh = window.innerHeight;
    let visibleText = '';
    const walker = document.createTreeWalker(document.body, NodeFilter.SHOW_TEXT);
    let node;
    while ((node = walker.nextNode())) {
        const range = document.createRange();
        range.selectNodeContents(node);
        const rect = range.getBoundingClientRect();
        if (rect.bottom < 0 || rect.top > vh) continue;
        if (rect.width === 0 || rect.height === 0) continue;
        visibleText += node.textContent + ' ';
        if (visibleText.length > 5000) break;
    }
    const ui = document.querySelectorAll(
        'button, [role="button"], input:not([type="hidden"]), select, textarea, label, h1, h2, h3, h4, img'
    );
    let visibleUi = 0;
    for (const el of ui) {
        const r = el.getBoundingClientRect();
        if (r.bottom < 0 || r.top > vh) continue;
        if (r.width > 0 && r.height > 0) visibleUi++;
    }
    return { text: visibleText, visibleUi };
}"""

_FINGERPRINT_JS = """() => {
    const h = document.querySelector('h1, h2, h3');
    const heading = (h && h.textContent ? h.textContent : '').trim();
    let count = 0;
    for (const f of document.querySelectorAll('input:not([type="hidden"]), select, textarea')) {
        const r = f.getBoundingClientRect();
        if (r.width > 0 && r.height > 0) count++;
    }
    const activeSelectors = [
        '[aria-current="step"]', '[aria-current="true"]', '.active-step', '.current-step',
        'li.active', 'a.active', '[class*="activeSection"]', '[class*="currentSection"]',
    ];
    let active = '';
    for (const sel of activeSelectors) {
        const el = document.querySelector(sel);
        if (el) { active = (el.textContent || '').trim(); break; }
    }
    return { heading, count, active };
}"""

_REVIEW_STRUCTURE_JS = """(fieldSelector) => {
    const headings = Array.from(document.querySelectorAll('h1, h2, h3'));
    if (!headings.some(h => (h.textContent || '').toLowerCase().includes('review'))) return false;
    const SUBMIT_TEXTS = ['submit', 'submit application', 'submit my application',
        'submit this application', 'send application'];
    const hasSubmit = Array.from(document.querySelectorAll('button')).some(b => {
        const t = (b.textContent || '').trim().toLowerCase();
        return SUBMIT_TEXTS.indexOf(t) !== -1 || t.startsWith('submit');
    });
    if (!hasSubmit) return false;
    return document.querySelectorAll(
        fieldSelector + ', input[type="radio"]:not([disabled]), input[type="checkbox"]:not([disabled])'
    ).length === 0;
}"""

_SUBMIT_FALLBACK_JS = """() => {
    const btns = Array.from(document.querySelectorAll('button, [role="button"], input[type="submit"], a.btn'));
    return btns.some(b => {
        const t = (b.textContent || b.value || '').trim().toLowerCase();
        return t.includes('submit') || t === 'apply' || t === 'apply now' || t === 'send application';
    });
}"""

_CONTENT_SCROLL_MAX_JS = """() => {
    const els = document.querySelectorAll(
        'button, [role="button"], input, select, textarea, a[href], label, h1, h2, h3, h4, p, li, td, th, img, [role="listbox"], [role="combobox"]'
    );
    let maxBottom = 0;
    for (const el of els) {
        const r = el.getBoundingClientRect();
        if (r.width === 0 || r.height === 0) continue;
        const bottom = r.bottom + window.scrollY;
        if (bottom > maxBottom) maxBottom = bottom;
    }
    const sh = document.documentElement.scrollHeight;
    const limit = maxBottom > 0 ? Math.min(maxBottom + 150, sh) : sh;
    return Math.max(0, limit - window.innerHeight);
}"""

_PER_FIELD_VALUES_JS = """(info) => info.map(({ selector, kind }) => {
    if (!selector) return '';
    let el = null;
    try { el = document.querySelector(selector); } catch (e) { return ''; }
    if (!el) return '';
    if (el.tagName === 'INPUT' || el.tagName === 'TEXTAREA' || el.tagName === 'SELECT') {
        if (el.type === 'checkbox' || el.type === 'radio') return el.checked ? 'checked' : '';
        return el.value || '';
    }
    if (kind === 'custom_dropdown') {
        const inner = el.querySelector('input');
        if (inner && inner.value && inner.value.trim()) return inner.value;
        const sel = el.querySelector('[aria-selected="true"], [data-selected="true"], .selected');
        if (sel) return (sel.textContent || '').trim();
        return (el.textContent || '').trim().substring(0, 100);
    }
    if (kind === 'aria_radio') {
        const checked = el.querySelector('[role="radio"][aria-checked="true"]');
        if (checked) return (checked.getAttribute('aria-label') || checked.textContent || '').trim();
        if (el.getAttribute('aria-checked') === 'true') return (el.getAttribute('aria-label') || el.textContent || '').trim();
        return '';
    }
    if (kind === 'contenteditable') return (el.textContent || '').trim();
    return 'value' in el ? (el.value || '') : '';
})"""

_CHECKED_CHECKBOXES_JS = """(selectors) => selectors.filter(sel => {
    let el = null;
    try { el = document.querySelector(sel); } catch (e) { return false; }
    return !!(el && el.checked);
})"""

_RESTORE_CHECKBOXES_JS = """(selectors) => {
    let count = 0;
    for (const sel of selectors) {
        let cb = null;
        try { cb = document.querySelector(sel); } catch (e) { continue; }
        if (cb && cb.type === 'checkbox' && !cb.checked) { cb.click(); count++; }
    }
    return count;
}"""

_COOKIE_BANNER_JS = """() => {
    const selectors = [
        '#onetrust-accept-btn-handler', '#cookie-accept', '#accept-cookies',
        '#CookieAcceptAll', '#cookieAcceptAll', '#truste-consent-button', '#sp-cc-accept',
        '.cookie-accept-btn', '.accept-cookies-btn', '.cookie-consent-accept',
        '[data-testid="cookie-accept"]', '[data-action="accept-cookies"]',
    ];
    for (const sel of selectors) {
        const el = document.querySelector(sel);
        if (el) {
            const st = window.getComputedStyle(el);
            if (st.display !== 'none' && st.visibility !== 'hidden') { el.click(); return true; }
        }
    }
    const ACCEPT = ['accept', 'accept all', 'accept cookies', 'accept all cookies', 'i accept',
        'got it', 'ok', 'agree', 'consent'];
    for (const btn of document.querySelectorAll('button, a[role="button"], [role="button"]')) {
        const t = (btn.textContent || '').trim().toLowerCase();
        if (ACCEPT.indexOf(t) === -1) continue;
        const st = window.getComputedStyle(btn);
        const r = btn.getBoundingClientRect();
        if (st.display !== 'none' && st.visibility !== 'hidden' && r.width > 0 && r.height > 0) {
            btn.click();
            return true;
        }
    }
    return false;
}"""

_BLUR_ACTIVE_JS = """() => {
    if (document.activeElement && document.activeElement !== document.body && document.activeElement.blur) {
        document.activeElement.blur();
    }
}"""

_STRIP_TARGET_BLANK_JS = """() => {
    document.querySelectorAll('a[target="_blank"]').forEach(a => a.removeAttribute('target'));
}"""


class PageInspector:
    """页面探针集合，供分类器 / 填充管线 / 导航推进复用。"""

    def __init__(self, adapter, log_fn: Optional[LogFn] = None) -> None:
        self.adapter = adapter
        self._log = log_fn or (lambda msg, level="info": None)

    @property
    def page(self):
        return self.adapter.page

    def wait(self, ms: int) -> None:
        self.page.wait_for_timeout(ms)

    def press(self, key: str) -> None:
        self.page.keyboard.press(key)

    # ---- classification signals ----

    def obvious_signals(self) -> dict:
        return self.adapter.evaluate(_OBVIOUS_SIGNALS_JS, FORM_FIELD_SELECTOR) or {}

    def count_form_fields(self) -> int:
        return int(self.adapter.evaluate(_COUNT_SELECTOR_JS, FORM_FIELD_SELECTOR) or 0)

    def has_review_blocking_fields(self) -> bool:
        return int(self.adapter.evaluate(_COUNT_SELECTOR_JS, REVIEW_BLOCKING_SELECTOR) or 0) > 0

    def is_review_structure(self) -> bool:
        try:
            return bool(self.adapter.evaluate(_REVIEW_STRUCTURE_JS, FORM_FIELD_SELECTOR))
        except Exception as e:
            self._log(f"⚠ 审核页结构检查失败: {e}", "warn")
            return False

    def has_submit_like_button(self) -> bool:
        return bool(self.adapter.evaluate(_SUBMIT_FALLBACK_JS))

    # ---- health / fingerprint ----

    def health(self) -> PageHealth:
        data = self.adapter.evaluate(_HEALTH_JS) or {}
        return assess_page_health(str(data.get("text") or ""), int(data.get("visibleUi") or 0))

    def is_healthy(self) -> bool:
        try:
            return self.health().healthy
        except Exception as e:
            self._log(f"⚠ 页面健康检查失败，按健康处理: {e}", "warn")
            return True

    def fingerprint(self) -> str:
        try:
            data = self.adapter.evaluate(_FINGERPRINT_JS) or {}
        except Exception:
            return ""
        return compose_page_fingerprint(
            str(data.get("heading") or ""),
            int(data.get("count") or 0),
            str(data.get("active") or ""),
        )

    # ---- scrolling ----

    def scroll_y(self) -> float:
        return float(self.adapter.evaluate("() => window.scrollY") or 0)

    def viewport_height(self) -> int:
        return int(self.adapter.evaluate("() => window.innerHeight") or 0)

    def scroll_height(self) -> int:
        return int(self.adapter.evaluate("() => document.documentElement.scrollHeight") or 0)

    def scroll_to(self, y: float, smooth: bool = False) -> None:
        if smooth:
            self.adapter.evaluate(
                "(y) => window.scrollTo({ top: y, behavior: 'smooth' })", y
            )
        else:
            self.adapter.evaluate("(y) => window.scrollTo(0, y)", y)

    def scroll_to_bottom(self) -> None:
        self.adapter.evaluate(
            "() => window.scrollTo(0, document.documentElement.scrollHeight)"
        )

    def scroll_into_view(self, selector: str) -> None:
        if not selector:
            return
        self.adapter.evaluate(
            "(sel) => { const el = document.querySelector(sel); if (el) el.scrollIntoView({ block: 'center' }); }",
            selector,
        )

    def content_scroll_max(self) -> int:
        return int(self.adapter.evaluate(_CONTENT_SCROLL_MAX_JS) or 0)

    def clear_scan_tags(self) -> None:
        self.adapter.evaluate(
            f"() => document.querySelectorAll('[{SCAN_IDX_ATTR}]')"
            f".forEach(el => el.removeAttribute('{SCAN_IDX_ATTR}'))"
        )

    # ---- field state ----

    def per_field_values(self, fields: list[ScannedField]) -> list[str]:
        info = [{"selector": f.selector, "kind": f.kind or "text"} for f in fields]
        if not info:
            return []
        values = self.adapter.evaluate(_PER_FIELD_VALUES_JS, info) or []
        return [str(v or "") for v in values]

    def checked_checkboxes(self, fields: list[ScannedField]) -> list[str]:
        """扫描到的原生复选框中当前已勾选者的 selector（按扫描标记定位，不受 DOM 增删影响）。"""
        selectors = [f.selector for f in fields if f.kind == "checkbox" and f.selector]
        if not selectors:
            return []
        return [str(s) for s in (self.adapter.evaluate(_CHECKED_CHECKBOXES_JS, selectors) or [])]

    def restore_unchecked_checkboxes(self, previously_checked: list[str]) -> int:
        if not previously_checked:
            return 0
        restored = int(
            self.adapter.evaluate(_RESTORE_CHECKBOXES_JS, previously_checked) or 0
        )
        if restored:
            self._log(f"🔄 恢复了 {restored} 个被误取消的复选框")
        return restored

    # ---- page hygiene ----

    def wait_for_settled(self, transition_ms: int) -> None:
        try:
            try:
                self.page.wait_for_load_state("networkidle", timeout=10000)
            except Exception:
                pass
            self.page.wait_for_timeout(transition_ms)
        except Exception as e:
            self._log(f"⚠ 等待页面稳定失败: {e}", "warn")

    def dismiss_cookie_banner(self) -> bool:
        try:
            dismissed = bool(self.adapter.evaluate(_COOKIE_BANNER_JS))
        except Exception as e:
            self._log(f"⚠ 关闭 Cookie 横幅失败: {e}", "warn")
            return False
        if dismissed:
            self._log("✓ 已关闭 Cookie 同意横幅")
            self.wait(500)
        return dismissed

    def dismiss_open_overlays(self) -> None:
        try:
            self.press("Escape")
            self.wait(200)
            self.adapter.evaluate(_BLUR_ACTIVE_JS)
            self.wait(300)
        except Exception as e:
            self._log(f"⚠ 关闭浮层失败: {e}", "warn")

    def strip_target_blank(self) -> None:
        self.adapter.evaluate(_STRIP_TARGET_BLANK_JS)

    def evaluate(self, script: str, arg: Any = None) -> Any:
        return self.adapter.evaluate(script, arg)
