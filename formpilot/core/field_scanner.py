"""
字段扫描器

职责：
- 整页扫描：按视口 70% 步长从上到下滚动，收集每个可见、可用的表单控件
- 可见未填扫描：只看当前视口，供批量 LLM 填充使用
- 为 LLM 生成字段上下文（标签 / 类型 / 选项 / 期望值）

扫描给每个控件打上 data-fp-scan-idx 标记；已有标记的元素复用原标记，
因此同一页面内 selector 始终稳定。
"""

from __future__ import annotations

from typing import Optional

from ..config import MatcherThresholds
from .answer_matcher import find_best_answer, normalize_label
from .page_probe import SCAN_IDX_ATTR, PageInspector
from .types import ScannedField, ScanResult

# 在所有扫描脚本之间共享的 JS 工具函数（以字符串拼接进各脚本）
_SCAN_HELPERS_JS = r"""
    const clean = (t) => (t || '').replace(/\s+/g, ' ').trim().substring(0, 120);
    const isVisible = (el) => {
        const r = el.getBoundingClientRect();
        if (r.width === 0 || r.height === 0) return false;
        if (r.bottom < 0 || r.top > window.innerHeight) return false;
        const st = window.getComputedStyle(el);
        if (st.display === 'none' || st.visibility === 'hidden' || parseFloat(st.opacity) === 0) return false;
        if (el.closest('[aria-hidden="true"]')) return false;
        return true;
    };
    const inChrome = (el) => !!el.closest('nav, header, [role="navigation"], [role="menubar"], [role="menu"]');
    const tagOf = (el) => {
        let idx = el.getAttribute(attr);
        if (!idx) {
            window.__fpScanSeq = (window.__fpScanSeq || 0) + 1;
            idx = String(window.__fpScanSeq);
            el.setAttribute(attr, idx);
        }
        return idx;
    };
    const selectorOf = (el) => '[' + attr + '="' + tagOf(el) + '"]';
    const findLabel = (el) => {
        if (el.labels && el.labels.length) {
            const t = clean(el.labels[0].textContent);
            if (t) return t;
        }
        const aria = clean(el.getAttribute('aria-label'));
        if (aria) return aria;
        const by = el.getAttribute('aria-labelledby');
        if (by) {
            const t = clean(by.split(/\s+/).map(id => {
                const n = document.getElementById(id);
                return n ? n.textContent : '';
            }).join(' '));
            if (t) return t;
        }
        if (el.id) {
            const lbl = document.querySelector('label[for="' + CSS.escape(el.id) + '"]');
            if (lbl) {
                const t = clean(lbl.textContent);
                if (t) return t;
            }
        }
        const container = el.closest('[class*="field"], [class*="form-group"], [class*="question"], fieldset');
        if (container) {
            const lbl = container.querySelector('label, legend, [class*="label"]');
            if (lbl && !lbl.contains(el)) {
                const t = clean(lbl.textContent);
                if (t) return t;
            }
        }
        const prev = el.previousElementSibling;
        if (prev && ['INPUT', 'SELECT', 'TEXTAREA', 'BUTTON'].indexOf(prev.tagName) === -1) {
            const t = clean(prev.textContent);
            if (t && t.length < 120) return t;
        }
        return clean(el.getAttribute('name') || el.id || el.getAttribute('placeholder') || '');
    };
    const optionText = (el) => clean(
        (el.labels && el.labels.length ? el.labels[0].textContent : '')
        || el.getAttribute('aria-label') || el.textContent || el.value || ''
    );
    const groupLabel = (el, optionTexts) => {
        const container = el.closest(
            'fieldset, [role="group"], [role="radiogroup"], [class*="question"], [class*="field"], [class*="form-group"]'
        );
        if (container) {
            const aria = clean(container.getAttribute('aria-label'));
            if (aria) return aria;
            for (const c of container.querySelectorAll('legend, label, [class*="label"], h3, h4, p')) {
                const t = clean(c.textContent);
                if (t && optionTexts.indexOf(t) === -1) return t;
            }
        }
        return clean(el.getAttribute('name') || '');
    };
    const isRequired = (el) => !!(el.required || el.getAttribute('aria-required') === 'true');
"""

_SCAN_VIEWPORT_JS = (
    "(attr) => {"
    + _SCAN_HELPERS_JS
    + r"""
    const out = [];
    const push = (el, kind, extra) => {
        const r = el.getBoundingClientRect();
        out.push(Object.assign({
            selector: selectorOf(el),
            kind,
            label: findLabel(el),
            currentValue: '',
            absoluteY: r.top + window.scrollY,
            isRequired: isRequired(el),
            options: [],
            meta: {},
        }, extra));
    };
    const TEXT_TYPES = ['', 'text', 'email', 'tel', 'url', 'number', 'search'];
    const seenGroups = new Set();

    for (const el of document.querySelectorAll('input:not([type="hidden"]), textarea, select')) {
        if (el.disabled) continue;
        const type = (el.getAttribute('type') || '').toLowerCase();
        if (el.tagName === 'INPUT' && (type === 'file' || type === 'password')) continue;
        if (el.tagName !== 'SELECT' && el.readOnly) continue;
        if (!isVisible(el) || inChrome(el)) continue;

        if (el.tagName === 'SELECT') {
            const opts = Array.from(el.options)
                .filter(o => o.value && !o.disabled).map(o => o.text.trim()).filter(Boolean);
            const cur = el.options[el.selectedIndex];
            push(el, 'select', { currentValue: cur && cur.value ? cur.text.trim() : '', options: opts });
        } else if (el.tagName === 'TEXTAREA' || TEXT_TYPES.indexOf(type) !== -1) {
            if (el.getAttribute('role') === 'combobox' || el.closest('[role="combobox"]')) continue;
            push(el, 'text', { currentValue: el.value || '' });
        } else if (type === 'date') {
            push(el, 'date', { currentValue: el.value || '' });
        } else if (type === 'checkbox') {
            push(el, 'checkbox', { currentValue: el.checked ? 'checked' : '' });
        } else if (type === 'radio') {
            const name = el.getAttribute('name') || '';
            if (name && seenGroups.has(name)) continue;
            const radios = name
                ? Array.from(document.querySelectorAll('input[type="radio"][name="' + CSS.escape(name) + '"]'))
                : [el];
            seenGroups.add(name);
            const opts = radios.map(optionText);
            const checked = radios.find(r => r.checked);
            push(el, 'radio', {
                label: groupLabel(el, opts),
                currentValue: checked ? optionText(checked) : '',
                options: opts,
                isRequired: radios.some(isRequired),
                meta: { group: name },
            });
        }
    }

    // 自定义下拉：只保留最外层候选，避免嵌套元素重复
    const ddCandidates = Array.from(document.querySelectorAll(
        '[role="combobox"], [role="listbox"], [aria-haspopup="listbox"], button[aria-haspopup], ' +
        '[aria-expanded][class*="select"], [class*="select__control"], [class*="dropdown-toggle"]'
    )).filter(el => el.tagName !== 'SELECT' && !inChrome(el));
    for (const el of ddCandidates) {
        if (ddCandidates.some(o => o !== el && o.contains(el))) continue;
        if (el.getAttribute('aria-disabled') === 'true' || !isVisible(el)) continue;
        const inner = el.tagName === 'INPUT' ? el : el.querySelector('input');
        let value = inner && inner.value ? inner.value.trim() : '';
        if (!value) {
            const sel = el.querySelector('[aria-selected="true"], [class*="singleValue"], [class*="single-value"]');
            value = clean(sel ? sel.textContent : el.textContent).substring(0, 100);
        }
        let label = findLabel(el);
        if ((!label || label === value) && inner && inner !== el) label = findLabel(inner);
        push(el, 'custom_dropdown', { label, currentValue: value });
    }

    for (const el of document.querySelectorAll('[role="radiogroup"]')) {
        if (!isVisible(el) || inChrome(el)) continue;
        const radios = Array.from(el.querySelectorAll('[role="radio"]'));
        const opts = radios.map(r => clean(r.getAttribute('aria-label') || r.textContent)).filter(Boolean);
        const checked = radios.find(r => r.getAttribute('aria-checked') === 'true');
        let label = findLabel(el);
        if (!label || opts.indexOf(label) !== -1) label = groupLabel(el.parentElement || el, opts);
        push(el, 'aria_radio', {
            label,
            currentValue: checked ? clean(checked.getAttribute('aria-label') || checked.textContent) : '',
            options: opts,
        });
    }

    for (const el of document.querySelectorAll('[contenteditable="true"]')) {
        if (!isVisible(el) || inChrome(el)) continue;
        if (el.parentElement && el.parentElement.closest('[contenteditable="true"]')) continue;
        push(el, 'contenteditable', { currentValue: clean(el.textContent) });
    }

    // 文件输入通常被隐藏，不做可见性判断
    const fileInputs = Array.from(document.querySelectorAll('input[type="file"]:not([disabled])'));
    for (const el of fileInputs) {
        const host = el.getBoundingClientRect().height > 0 ? el : (el.parentElement || el);
        const r = host.getBoundingClientRect();
        out.push({
            selector: selectorOf(el),
            kind: 'file',
            label: findLabel(el) || 'File upload',
            currentValue: el.files && el.files.length ? el.files[0].name : '',
            absoluteY: r.top + window.scrollY,
            isRequired: isRequired(el),
            options: [],
            meta: {},
        });
    }
    if (!fileInputs.length) {
        for (const el of document.querySelectorAll('button, [role="button"]')) {
            const t = clean(el.textContent).toLowerCase();
            if (!/upload|attach/.test(t) || !isVisible(el)) continue;
            push(el, 'upload_button', { label: clean(el.textContent) });
        }
    }
    return out;
}"""
)

_VISIBLE_UNFILLED_JS = (
    "(attr) => {"
    + _SCAN_HELPERS_JS
    + r"""
    const vh = window.innerHeight;
    const results = [];
    const inView = (el, minW, minH) => {
        const r = el.getBoundingClientRect();
        if (r.width < minW || r.height < minH || r.bottom < 0 || r.top > vh) return false;
        const st = window.getComputedStyle(el);
        return st.display !== 'none' && st.visibility !== 'hidden';
    };

    const inputs = document.querySelectorAll(
        'input:not([type="hidden"]):not([type="file"]):not([type="radio"]):not([type="checkbox"])' +
        ':not([type="password"]):not([disabled]):not([readonly]), ' +
        'textarea:not([disabled]):not([readonly]), select:not([disabled])'
    );
    for (const el of inputs) {
        if (el.value && el.value.trim() !== '') continue;
        if (el.tagName === 'SELECT' && el.selectedIndex > 0) continue;
        if (!inView(el, 10, 5) || inChrome(el)) continue;
        const options = el.tagName === 'SELECT'
            ? Array.from(el.options).filter(o => o.value && !o.disabled).map(o => o.text.trim()).filter(Boolean)
            : [];
        results.push({
            label: findLabel(el),
            kind: el.tagName === 'SELECT' ? 'select' : 'text',
            selector: selectorOf(el),
            isRequired: isRequired(el),
            options,
        });
    }

    for (const el of document.querySelectorAll(
        '[role="combobox"], [role="listbox"], [aria-haspopup], [role="radiogroup"], [role="radio"]'
    )) {
        if (inChrome(el) || !inView(el, 5, 5)) continue;
        const inner = el.querySelector('input');
        if (inner && inner.value && inner.value.trim()) continue;
        if (el.getAttribute('aria-checked') === 'true') continue;
        const role = el.getAttribute('role') || '';
        if (role === 'radiogroup' && el.querySelector('[role="radio"][aria-checked="true"]')) continue;
        if (role === 'radio' && el.closest('[role="radiogroup"]')) continue;
        const label = findLabel(el);
        if (!label) continue;
        const isRadio = role === 'radiogroup' || role === 'radio';
        const options = [];
        if (isRadio) {
            const host = role === 'radiogroup' ? el : el.parentElement;
            if (host) {
                for (const r of host.querySelectorAll('[role="radio"]')) {
                    const t = clean(r.getAttribute('aria-label') || r.textContent);
                    if (t) options.push(t);
                }
            }
        }
        results.push({
            label,
            kind: isRadio ? 'aria_radio' : 'custom_dropdown',
            selector: selectorOf(el),
            isRequired: el.getAttribute('aria-required') === 'true',
            options,
        });
    }

    // Material 风格的下拉：以箭头图标定位容器
    const seenLabels = new Set(results.map(r => r.label.toLowerCase()));
    const ARROWS = ['arrow_drop_down', 'expand_more', 'keyboard_arrow_down'];
    for (const arrow of document.querySelectorAll('i, span')) {
        if (ARROWS.indexOf((arrow.textContent || '').trim()) === -1) continue;
        let container = arrow.parentElement;
        for (let up = 0; up < 5 && container; up++) {
            const r = container.getBoundingClientRect();
            if (r.width >= 80 && r.width <= 700 && r.height >= 20 && r.height <= 120) break;
            container = container.parentElement;
        }
        if (!container || container === document.body) continue;
        if (!inView(container, 5, 5) || inChrome(container)) continue;
        const mdInput = container.querySelector('input');
        if (mdInput && mdInput.value && mdInput.value.trim()) continue;
        const label = findLabel(container);
        if (!label || seenLabels.has(label.toLowerCase())) continue;
        seenLabels.add(label.toLowerCase());
        results.push({
            label,
            kind: 'custom_dropdown',
            selector: selectorOf(container),
            isRequired: container.getAttribute('aria-required') === 'true'
                || container.closest('[class*="required"]') !== null,
            options: [],
        });
    }
    return results;
}"""
)

# 下拉控件上显示这些文字时视为"尚未选择"
_PLACEHOLDER_VALUES = frozenset(
    {
        "",
        "select",
        "select one",
        "select an option",
        "select option",
        "choose",
        "choose one",
        "choose an option",
        "please select",
        "please choose",
        "none selected",
        "no selection",
    }
)

KIND_LABELS = {
    "text": "Text input",
    "select": "Dropdown",
    "custom_dropdown": "Dropdown",
    "radio": "Radio buttons",
    "aria_radio": "Radio buttons",
    "checkbox": "Checkbox",
    "date": "Date input",
    "file": "File upload",
    "contenteditable": "Rich text editor",
    "upload_button": "Upload button",
}


def is_value_present(kind: str, value: str, label: str = "") -> bool:
    """
    字段当前值是否算"已填"。

    下拉类控件的可见文本若等于自身标签或占位文案，说明还没有选择。
    """
    v = normalize_label(value)
    if not v:
        return False
    if kind in ("custom_dropdown", "select"):
        norm_label = normalize_label(label)
        if v in _PLACEHOLDER_VALUES or v == norm_label:
            return False
        if norm_label and v.startswith(norm_label) and v[len(norm_label):].strip() in _PLACEHOLDER_VALUES:
            return False
        if v.startswith("select ") or v.startswith("choose ") or v.startswith("please select"):
            return False
    return True


def _field_from_raw(raw: dict) -> Optional[ScannedField]:
    selector = str(raw.get("selector") or "")
    if not selector:
        return None
    kind = str(raw.get("kind") or "text")
    label = str(raw.get("label") or "").strip()
    value = str(raw.get("currentValue") or "")
    idx = selector.split('"')[1] if '"' in selector else selector
    return ScannedField(
        id=f"field-{idx}",
        selector=selector,
        kind=kind,
        label=label,
        current_value=value,
        absolute_y=float(raw.get("absoluteY") or 0.0),
        is_required=bool(raw.get("isRequired")),
        options=[str(o) for o in (raw.get("options") or []) if o],
        filled=is_value_present(kind, value, label),
        platform_meta=dict(raw.get("meta") or {}),
    )


def merge_scanned_fields(batches: list[list[dict]]) -> list[ScannedField]:
    """按 selector 去重（视口重叠处同一元素会出现两次），再按纵坐标排序。"""
    merged: dict[str, ScannedField] = {}
    for batch in batches:
        for raw in batch or []:
            field = _field_from_raw(raw)
            if field is None or field.selector in merged:
                continue
            merged[field.selector] = field
    return sorted(merged.values(), key=lambda f: f.absolute_y)


def scan_page(
    inspector: PageInspector,
    *,
    step_ratio: float = 0.7,
    max_steps: int = 30,
    settle_ms: int = 150,
) -> ScanResult:
    """整页扫描，结束后滚回顶部。"""
    viewport = inspector.viewport_height() or 800
    scroll_height = inspector.scroll_height()
    step = max(100, int(viewport * step_ratio))

    batches: list[list[dict]] = []
    y = 0
    for _ in range(max_steps):
        inspector.scroll_to(y)
        inspector.wait(settle_ms)
        batches.append(inspector.evaluate(_SCAN_VIEWPORT_JS, SCAN_IDX_ATTR) or [])
        # 懒加载内容会让页面变长
        scroll_height = max(scroll_height, inspector.scroll_height())
        if y + viewport >= scroll_height:
            break
        y += step

    inspector.scroll_to(0)
    return ScanResult(
        fields=merge_scanned_fields(batches),
        scroll_height=scroll_height,
        viewport_height=viewport,
    )


def scan_visible_unfilled_fields(
    inspector: PageInspector,
    qa_map: dict[str, str],
    thresholds: Optional[MatcherThresholds] = None,
) -> list[ScannedField]:
    raw_fields = inspector.evaluate(_VISIBLE_UNFILLED_JS, SCAN_IDX_ATTR) or []
    seen: set[str] = set()
    fields: list[ScannedField] = []
    for raw in raw_fields:
        label = str(raw.get("label") or "")
        kind = str(raw.get("kind") or "text")
        key = f"{label}|{kind}"
        if key in seen:
            continue
        seen.add(key)
        fields.append(
            ScannedField(
                id=f"visible-{len(fields)}",
                selector=str(raw.get("selector") or ""),
                kind=kind,
                label=label,
                is_required=bool(raw.get("isRequired")),
                options=[str(o) for o in (raw.get("options") or []) if o],
                matched_answer=find_best_answer(label, qa_map, thresholds),
            )
        )
    return fields


def build_scan_context_for_llm(fields: list[ScannedField]) -> str:
    lines = []
    for f in fields:
        kind = KIND_LABELS.get(f.kind, f.kind)
        options = ""
        if f.options:
            more = ", ..." if len(f.options) > 10 else ""
            options = f" Options: [{', '.join(f.options[:10])}{more}]"
        if f.matched_answer:
            expected = f' → Fill with: "{f.matched_answer}"'
        elif f.is_required:
            expected = (
                " → No exact data available. Use your best judgment to pick a "
                "reasonable answer that benefits the applicant"
            )
        else:
            expected = ""
        required = " [REQUIRED]" if f.is_required else ""
        lines.append(f'- "{f.label}" ({kind}){options}{expected}{required}')
    return "\n".join(lines)
