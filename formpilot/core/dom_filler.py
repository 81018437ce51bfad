"""
DOM 直填

职责：
- 按字段类型直接写值（原生 setter + input/change 事件，或模拟点击），不调用任何 LLM
- 勾选必选 / 同意类复选框
- 有 file input 时直接挂载简历

所有写入都在"目标仍为空"时才发生，避免覆盖上一轮已填的值。
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

from .answer_matcher import answer_means_checked, pick_option
from .errors import is_fatal_error
from .page_probe import PageInspector
from .types import ScannedField

LogFn = Callable[[str, str], None]

OPTION_IDX_ATTR = "data-fp-opt-idx"

_SET_VALUE_JS = """({ selector, value }) => {
    const el = document.querySelector(selector);
    if (!el) return 'missing';
    if (el.value && el.value.trim() !== '') return 'occupied';
    const proto = el.tagName === 'TEXTAREA' ? HTMLTextAreaElement.prototype : HTMLInputElement.prototype;
    const desc = Object.getOwnPropertyDescriptor(proto, 'value');
    if (desc && desc.set) desc.set.call(el, value); else el.value = value;
    el.dispatchEvent(new Event('input', { bubbles: true }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
    el.dispatchEvent(new Event('blur', { bubbles: true }));
    return el.value ? 'ok' : 'rejected';
}"""

_SELECT_OPTION_JS = """({ selector, optionText }) => {
    const el = document.querySelector(selector);
    if (!el || el.tagName !== 'SELECT') return 'missing';
    const cur = el.options[el.selectedIndex];
    if (el.selectedIndex > 0 && cur && cur.value) return 'occupied';
    const idx = Array.from(el.options).findIndex(o => o.text.trim() === optionText);
    if (idx < 0) return 'no_option';
    const desc = Object.getOwnPropertyDescriptor(HTMLSelectElement.prototype, 'value');
    if (desc && desc.set) desc.set.call(el, el.options[idx].value); else el.selectedIndex = idx;
    el.dispatchEvent(new Event('input', { bubbles: true }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
    return 'ok';
}"""

_CLICK_RADIO_JS = """({ selector, group, optionText }) => {
    const first = document.querySelector(selector);
    if (!first) return 'missing';
    const radios = group
        ? Array.from(document.querySelectorAll('input[type="radio"][name="' + CSS.escape(group) + '"]'))
        : [first];
    if (radios.some(r => r.checked)) return 'occupied';
    const textOf = (r) => ((r.labels && r.labels.length ? r.labels[0].textContent : '')
        || r.getAttribute('aria-label') || r.value || '').replace(/\\s+/g, ' ').trim();
    const target = radios.find(r => textOf(r) === optionText);
    if (!target) return 'no_option';
    target.click();
    return target.checked ? 'ok' : 'rejected';
}"""

_CLICK_ARIA_RADIO_JS = """({ selector, optionText }) => {
    const group = document.querySelector(selector);
    if (!group) return 'missing';
    if (group.querySelector('[role="radio"][aria-checked="true"]')) return 'occupied';
    const radios = Array.from(group.querySelectorAll('[role="radio"]'));
    const textOf = (r) => (r.getAttribute('aria-label') || r.textContent || '').replace(/\\s+/g, ' ').trim();
    const target = radios.find(r => textOf(r) === optionText);
    if (!target) return 'no_option';
    target.click();
    return 'ok';
}"""

_CHECKBOX_STATE_JS = """(selector) => {
    const el = document.querySelector(selector);
    if (!el) return null;
    if ('checked' in el) return !!el.checked;
    return el.getAttribute('aria-checked') === 'true';
}"""

# 打开的下拉弹层中的可见选项，逐个打标记供 locator 点击
_OPEN_OPTIONS_JS = """(attr) => {
    const sels = [
        '[role="option"]', '[role="listbox"] li', '[role="menu"] [role="menuitem"]',
        '[data-automation-id*="promptOption"]', '[class*="option"]', '[class*="menu-item"]',
        '[class*="dropdown-item"]', 'li[data-value]',
    ];
    document.querySelectorAll('[' + attr + ']').forEach(el => el.removeAttribute(attr));
    const seen = new Set();
    const out = [];
    for (const sel of sels) {
        for (const el of document.querySelectorAll(sel)) {
            if (seen.has(el)) continue;
            seen.add(el);
            const r = el.getBoundingClientRect();
            if (r.width === 0 || r.height === 0) continue;
            const text = (el.textContent || '').replace(/\\s+/g, ' ').trim();
            if (!text) continue;
            el.setAttribute(attr, String(out.length));
            out.push(text.substring(0, 150));
        }
        if (out.length) break;
    }
    return out;
}"""

_REQUIRED_CHECKBOXES_JS = """() => {
    const CONSENT = [
        'agree', 'acknowledge', 'terms', 'consent', 'privacy', 'certify', 'confirm',
        'authorize', 'accept', 'understand', 'i have read',
    ];
    let checked = 0;
    for (const cb of document.querySelectorAll('input[type="checkbox"]')) {
        if (cb.checked || cb.disabled) continue;
        const r = cb.getBoundingClientRect();
        if (r.width === 0 || r.height === 0) continue;
        if (r.bottom < 0 || r.top > window.innerHeight) continue;
        const required = cb.required || cb.getAttribute('aria-required') === 'true';
        let nearby = '';
        if (cb.labels) for (const l of cb.labels) nearby += ' ' + (l.textContent || '');
        let el = cb.parentElement;
        for (let depth = 0; depth < 3 && el; depth++) {
            nearby += ' ' + (el.textContent || '');
            el = el.parentElement;
        }
        nearby = nearby.toLowerCase();
        if (required || CONSENT.some(w => nearby.includes(w))) {
            cb.click();
            checked++;
        }
    }
    return checked;
}"""

_EMPTY_FILE_INPUT_JS = """() => {
    const inputs = Array.from(document.querySelectorAll('input[type="file"]:not([disabled])'));
    return inputs.findIndex(i => !i.files || i.files.length === 0);
}"""


def _option_text_for(options: list[str], answer: str) -> Optional[str]:
    idx = pick_option(options, answer)
    return options[idx] if idx is not None else None


def fill_scanned_field(
    inspector: PageInspector,
    field: ScannedField,
    answer: str,
    log_fn: Optional[LogFn] = None,
) -> bool:
    """按字段类型直填；返回 True 表示已写入（或已处于目标状态）。"""
    log = log_fn or (lambda msg, level="info": None)
    if not field.selector or not answer:
        return False
    try:
        if field.kind in ("text", "date"):
            status = inspector.evaluate(
                _SET_VALUE_JS, {"selector": field.selector, "value": answer}
            )
            return status == "ok"

        if field.kind == "select":
            option = _option_text_for(field.options, answer)
            if option is None:
                return False
            status = inspector.evaluate(
                _SELECT_OPTION_JS, {"selector": field.selector, "optionText": option}
            )
            return status == "ok"

        if field.kind == "radio":
            option = _option_text_for(field.options, answer)
            if option is None:
                return False
            status = inspector.evaluate(
                _CLICK_RADIO_JS,
                {
                    "selector": field.selector,
                    "group": str(field.platform_meta.get("group") or ""),
                    "optionText": option,
                },
            )
            return status == "ok"

        if field.kind == "aria_radio":
            option = _option_text_for(field.options, answer)
            if option is None:
                return False
            status = inspector.evaluate(
                _CLICK_ARIA_RADIO_JS, {"selector": field.selector, "optionText": option}
            )
            return status == "ok"

        if field.kind == "checkbox":
            return _fill_checkbox(inspector, field, answer)

        if field.kind == "custom_dropdown":
            return fill_custom_dropdown(inspector, field.selector, answer)

        if field.kind == "contenteditable":
            locator = inspector.page.locator(field.selector).first
            if (locator.text_content() or "").strip():
                return False
            locator.click()
            locator.fill(answer)
            return True
    except Exception as e:
        if is_fatal_error(e):
            raise
        log(f"⚠ 直填失败 [{field.label}]: {e}", "warn")
        return False
    return False


def _fill_checkbox(inspector: PageInspector, field: ScannedField, answer: str) -> bool:
    want_checked = answer_means_checked(answer)
    state = inspector.evaluate(_CHECKBOX_STATE_JS, field.selector)
    if state is None:
        return False
    if bool(state) == want_checked:
        return True
    inspector.page.locator(field.selector).first.click()
    return bool(inspector.evaluate(_CHECKBOX_STATE_JS, field.selector)) == want_checked


def click_open_option(inspector: PageInspector, answer: str) -> bool:
    """在已展开的下拉弹层中点击与答案最匹配的选项。"""
    options = inspector.evaluate(_OPEN_OPTIONS_JS, OPTION_IDX_ATTR) or []
    idx = pick_option([str(o) for o in options], answer)
    if idx is None:
        return False
    inspector.page.locator(f'[{OPTION_IDX_ATTR}="{idx}"]').first.click(force=True)
    inspector.wait(300)
    return True


def fill_custom_dropdown(inspector: PageInspector, selector: str, answer: str) -> bool:
    """
    点开自定义下拉并选择答案。

    先直接找选项；找不到且触发器内有输入框时，输入答案过滤后再找一次。
    都失败则按 Escape 收起弹层。
    """
    trigger = inspector.page.locator(selector).first
    trigger.scroll_into_view_if_needed()
    trigger.click()
    inspector.wait(500)
    if click_open_option(inspector, answer):
        return True

    search = trigger.locator("input")
    if search.count() > 0:
        search.first.fill(answer)
        inspector.wait(800)
        if click_open_option(inspector, answer):
            return True

    inspector.press("Escape")
    inspector.wait(200)
    return False


def check_required_checkboxes(inspector: PageInspector) -> int:
    return int(inspector.evaluate(_REQUIRED_CHECKBOXES_JS) or 0)


def upload_resume_if_present(
    inspector: PageInspector,
    resume_path: Optional[str],
    log_fn: Optional[LogFn] = None,
) -> bool:
    """页面上有空的 file input 时直接挂载简历。"""
    log = log_fn or (lambda msg, level="info": None)
    if not resume_path or not Path(resume_path).exists():
        return False
    found = inspector.evaluate(_EMPTY_FILE_INPUT_JS)
    index = -1 if found is None else int(found)
    if index < 0:
        return False
    try:
        inspector.page.locator('input[type="file"]').nth(index).set_input_files(resume_path)
    except Exception as e:
        log(f"⚠ 简历上传失败: {e}", "warn")
        return False
    log(f"✓ 已上传简历: {Path(resume_path).name}")
    inspector.wait(1500)
    return True

