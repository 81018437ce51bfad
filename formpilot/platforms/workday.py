"""
Workday 平台配置

在通用配置之上：
- 增加 voluntary_disclosure / self_identify 页面类型
- "Create Account" 视图识别、Google 挑战类型命名
- "Select One" 按钮式下拉的扫描与直填
- 自有的下一步按钮优先级（Save and Continue 优先，审核页不点 Submit）
- My Experience 页：DOM 上传简历 + 一次 Agent 调用
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Optional

from ..core.dom_filler import click_open_option
from ..core.errors import is_fatal_error
from ..core.page_probe import FORM_FIELD_SELECTOR, SCAN_IDX_ATTR, PageInspector
from ..core.types import PAGE_TYPES, PageState, ScannedField, ScanResult
from .generic import GENERIC_CLASSIFIABLE_TYPES, GenericPlatformConfig

LogFn = Callable[[str, str], None]

SELECT_ONE_WIDGET = "workday_select_one"

WORKDAY_BASE_RULES = """ABSOLUTE RULE #1 (ZERO SCROLLING): You must NEVER scroll the page, not even 1 pixel. I handle all scrolling myself.

ABSOLUTE RULE #2 (FULLY VISIBLE ONLY): Only interact with a field when you can see all four edges of its input box. If any edge is cut off by the top or bottom of the screen, the field is OFF LIMITS. When you run out of fully visible fields, STOP. I will scroll and call you again.

ABSOLUTE RULE #3 (ONE ATTEMPT PER TEXT FIELD): Type into a given text input AT MOST ONCE. Typing twice causes duplicate text (e.g. "WuWu"). EXCEPTION: a dropdown still showing "Select One" did not register, so retry it.

ABSOLUTE RULE #4 (CLICK BEFORE TYPING): NEVER type unless you have just clicked a text input and it is focused.

ABSOLUTE RULE #5 (NO TAB KEY): Never press Tab. Click whitespace to deselect, then click the next field.

ABSOLUTE RULE #6 (NEVER NAVIGATE): Do NOT click "Save and Continue", "Next", "Submit", "Back", or any button that leaves the page."""

_FIELD_FILL_RULES = """1. If the field already has ANY value (even if formatted differently), SKIP IT entirely.
2. Phone numbers like "(408) 555-1234" are formatted by Workday; do NOT re-enter them.
3. If the field is empty: CLICK it, type/select the correct value, then CLICK whitespace to deselect."""

_DROPDOWN_RULES = """DROPDOWNS: Fill ONLY ONE dropdown per turn. Click the dropdown button, TYPE the desired answer, wait for the list to filter, then click the option whose text best matches. If the button still says "Select One" afterwards, retry (at most 2 times). The popup that appears ALWAYS belongs to the dropdown you just clicked. Never use arrow keys."""

_CHECKBOX_RULES = """CHECKBOXES: If you see a required checkbox (e.g. "I acknowledge..." or Terms & Conditions), click it."""

_SELF_ID_DEFAULTS = {
    "gender": "I do not wish to answer",
    "race_ethnicity": "I do not wish to answer",
    "veteran_status": "I am not a protected veteran",
    "disability_status": "I do not wish to answer",
}

_SELECT_ONE_SCAN_JS = """(attr) => {
    const out = [];
    const buttons = document.querySelectorAll('button');
    for (let i = 0; i < buttons.length; i++) {
        const btn = buttons[i];
        if ((btn.textContent || '').trim() !== 'Select One') continue;
        const r = btn.getBoundingClientRect();
        if (r.width === 0 || r.height === 0) continue;
        let tag = btn.getAttribute(attr);
        if (!tag) {
            tag = 'wd-dd-' + i;
            btn.setAttribute(attr, tag);
        }
        let label = '';
        const aria = btn.getAttribute('aria-label');
        if (aria && aria !== 'Select One') label = aria;
        let node = btn.parentElement;
        for (let d = 0; d < 10 && node && !label; d++) {
            const lbl = node.querySelector('label, [data-automation-id*="formLabel"]');
            const t = lbl ? (lbl.textContent || '').trim() : '';
            if (t && t !== 'Select One') label = t;
            node = node.parentElement;
        }
        if (!label) {
            const parent = btn.closest('[data-automation-id]');
            if (parent) {
                const t = (parent.textContent || '').replace(/Select One/g, '').replace(/Required/gi, '')
                    .replace(/[*]/g, '').trim();
                if (t.length > 3 && t.length < 200) label = t;
            }
        }
        out.push({
            tag: tag,
            label: label.replace(/\\s+/g, ' ').substring(0, 120),
            absoluteY: r.top + window.scrollY,
        });
    }
    return out;
}"""

_DOM_SIGNALS_JS = """(fieldSelector) => {
    const bodyText = (document.body ? document.body.innerText : '').toLowerCase();
    const headingText = Array.from(document.querySelectorAll(
        'h1, h2, h3, [data-automation-id*="pageHeader"], [role="heading"]'
    )).map(h => (h.textContent || '').toLowerCase()).join(' ');
    const passwords = document.querySelectorAll('input[type="password"]:not([disabled])');
    return {
        hasSsoButton: bodyText.includes('sign in with google') || bodyText.includes('continue with google'),
        hasSignIn: bodyText.includes('sign in') || bodyText.includes('log in'),
        hasApplyButton: bodyText.includes('apply') && !bodyText.includes('application questions'),
        hasSubmitApplication: bodyText.includes('submit application') || bodyText.includes('submit your application'),
        isCreateAccountView: headingText.includes('create account') || headingText.includes('register')
            || passwords.length > 1,
        hasPasswordField: passwords.length > 0,
        formFieldCount: document.querySelectorAll(fieldSelector).length,
    };
}"""

_DOM_FALLBACK_JS = """() => {
    const bodyText = (document.body ? document.body.innerText : '').toLowerCase();
    const headingText = Array.from(document.querySelectorAll(
        'h1, h2, h3, [data-automation-id*="pageHeader"], [data-automation-id*="stepTitle"]'
    )).map(h => (h.textContent || '').toLowerCase()).join(' ');
    const hasSelectOne = Array.from(document.querySelectorAll('button'))
        .some(b => (b.textContent || '').trim() === 'Select One');
    const hasInputs = document.querySelectorAll(
        'input[type="text"]:not([readonly]), textarea:not([readonly]), input[type="email"], input[type="tel"]'
    ).length > 0;
    const texts = Array.from(document.querySelectorAll('button, [role="button"]'))
        .map(b => (b.textContent || '').trim().toLowerCase());
    const hasSubmit = texts.some(t => t === 'submit' || t === 'submit application');
    const hasSaveContinue = texts.some(t => t.includes('save and continue'));

    if (headingText.includes('review') && !hasInputs && !hasSelectOne && !hasSaveContinue) return 'review';
    if (hasSubmit && !hasSaveContinue && !hasSelectOne && !hasInputs) return 'review';

    const allText = headingText + ' ' + bodyText.substring(0, 2000);
    if (allText.includes('application questions') || allText.includes('additional questions')) return 'questions';
    if (allText.includes('voluntary disclosures') || allText.includes('voluntary self')) return 'voluntary_disclosure';
    if (allText.includes('self identify') || allText.includes('self-identify')
        || allText.includes('disability status')) return 'self_identify';
    if (allText.includes('my experience') || allText.includes('work experience')
        || allText.includes('resume')) return 'experience';
    if (allText.includes('my information') || allText.includes('personal info')) return 'personal_info';
    return 'unknown';
}"""

_CLICK_NEXT_JS = """() => {
    const buttons = Array.from(document.querySelectorAll('button, [role="button"], a'));
    const textOf = (b) => (b.textContent || '').trim().toLowerCase();
    for (const target of ['save and continue', 'next', 'continue']) {
        const btn = buttons.find(b => textOf(b) === target);
        if (btn) { btn.click(); return 'clicked'; }
    }
    const partial = buttons.find(b => textOf(b).includes('save and continue') || textOf(b).includes('next'));
    if (partial) { partial.click(); return 'clicked'; }

    const submit = buttons.find(b => textOf(b) === 'submit' || textOf(b) === 'submit application');
    if (submit) {
        const reviewHeading = Array.from(document.querySelectorAll('h1, h2, h3'))
            .some(h => (h.textContent || '').toLowerCase().includes('review'));
        const hasEditable = document.querySelectorAll(
            'input[type="text"]:not([readonly]), textarea:not([readonly]), input[type="email"], input[type="tel"]'
        ).length > 0;
        const hasSelectOne = buttons.some(b => (b.textContent || '').trim() === 'Select One');
        const hasUnchecked = Array.from(document.querySelectorAll('input[type="checkbox"]:not(:checked)'))
            .some(cb => { const r = cb.getBoundingClientRect(); return r.width > 0 && r.height > 0; });
        if (reviewHeading || (!hasEditable && !hasSelectOne && !hasUnchecked)) return 'review_detected';
        submit.click();
        return 'clicked';
    }
    return 'not_found';
}"""

_VALIDATION_ERRORS_JS = """() => {
    const banner = document.querySelector(
        '[data-automation-id="errorMessage"], [role="alert"], [class*="WJLK"]'
    );
    if (banner && (banner.textContent || '').toLowerCase().includes('error')) return true;
    const text = document.body ? document.body.innerText : '';
    return text.includes('Errors Found') || text.includes('Error -');
}"""

_UPLOAD_CONFIRMED_JS = """() => (document.body ? document.body.innerText : '').toLowerCase().includes('successfully')"""

STRICT_NEXT_PROMPT = (
    'Click the "Save and Continue" button. Click ONLY that button and then STOP. '
    'Do absolutely nothing else. Do NOT click "Submit" or "Submit Application".'
)


def _self_id_fields(profile: dict) -> dict[str, str]:
    return {k: str(profile.get(k) or default) for k, default in _SELF_ID_DEFAULTS.items()}


def _first_word(value: str, n: int = 1) -> str:
    return " ".join(value.split()[:n])


class WorkdayPlatformConfig(GenericPlatformConfig):
    platform_id = "workday"
    display_name = "Workday"
    page_types = tuple(
        t for t in PAGE_TYPES
        if t in GENERIC_CLASSIFIABLE_TYPES or t in ("voluntary_disclosure", "self_identify")
    )
    base_rules = WORKDAY_BASE_RULES
    needs_custom_experience_handler = True
    auth_domains = ("accounts.google.com", "myworkdayjobs.com")

    def __init__(self) -> None:
        self._self_id: dict[str, str] = dict(_SELF_ID_DEFAULTS)

    # ---- page detection ----

    def describe_google_challenge(self, url: str) -> str:
        if "recaptcha" in url:
            kind = "CAPTCHA"
        elif "ipp" in url:
            kind = "Phone/SMS verification"
        elif "dp" in url:
            kind = "Device prompt"
        else:
            kind = "Google challenge"
        return f"{kind} (manual solve required)"

    def detect_page_by_dom(self, inspector: PageInspector) -> Optional[PageState]:
        s = inspector.evaluate(_DOM_SIGNALS_JS, FORM_FIELD_SELECTOR) or {}
        if s.get("isCreateAccountView"):
            return PageState(page_type="account_creation", page_title="Workday Create Account")

        # "sign in" in the header of a long application form is not a login page
        is_application_form = int(s.get("formFieldCount") or 0) >= 5
        has_sso = bool(s.get("hasSsoButton"))
        if has_sso and not is_application_form:
            return PageState(page_type="login", page_title="Workday Sign-In", has_sso_button=True)

        looks_like_login = bool(s.get("hasPasswordField")) or has_sso
        if (
            looks_like_login
            and not is_application_form
            and s.get("hasSignIn")
            and not s.get("hasApplyButton")
            and not s.get("hasSubmitApplication")
        ):
            return PageState(page_type="login", page_title="Workday Sign-In", has_sso_button=has_sso)
        return None

    def build_classification_prompt(self, url_hints: list[str]) -> str:
        url_context = f"URL context: {' '.join(url_hints)} " if url_hints else ""
        return f"""{url_context}Analyze the current page and determine what type of page this is in a Workday job application process.

CLASSIFICATION RULES (check in this order):
1. If the page has a "Sign in with Google" button, OR shows login/sign-in options (even if "Create Account" is also present) → "login".
2. If the page heading contains "Application Questions" or "Additional Questions" or you see screening questions (radio buttons, dropdowns, text inputs about eligibility, availability, referral source, etc.) → "questions".
3. If the page shows a summary of the entire application with a prominent "Submit" or "Submit Application" button → "review".
4. If the page heading says "My Experience" or "Work Experience" or asks for resume upload → "experience" or "resume_upload".
5. If the page asks for name, email, phone, address fields → "personal_info".
6. If the page heading says "Voluntary Disclosures" and asks about gender, race/ethnicity, veteran status → "voluntary_disclosure".
7. If the page heading says "Self Identify" or "Self-Identification" or asks specifically about disability status → "self_identify".
8. If the page asks about gender, race/ethnicity, veteran status, disability but doesn't match rules 6 or 7 → "voluntary_disclosure".
9. If you see ONLY a "Create Account" or "Sign Up" form with no sign-in option → "account_creation".

IMPORTANT: Pages titled "Application Questions (1 of N)" or "(2 of N)" are ALWAYS "questions", never "experience".
IMPORTANT: If a page has BOTH "Sign In" and "Create Account" options, classify as "login" (NOT "account_creation")."""

    def classify_by_dom_fallback(self, inspector: PageInspector) -> str:
        url = inspector.adapter.get_current_url()
        if "myworkdayjobs.com" in url and ("login" in url or "signin" in url):
            return "login"
        page_type = str(inspector.evaluate(_DOM_FALLBACK_JS) or "unknown")
        return page_type if page_type in self.page_types else "unknown"

    # ---- prompts & data ----

    def build_data_prompt(self, profile: dict, qa_overrides: dict[str, str]) -> str:
        p = profile or {}
        addr = p.get("address") or {}
        parts = [
            "FIELD-TO-VALUE MAPPING: read each field label and match it to the correct value:",
            "",
            "--- NAME FIELDS ---",
            f'If the label says "First Name" or "Legal First Name" → type: {p.get("first_name", "")}',
            f'If the label says "Last Name" or "Legal Last Name" → type: {p.get("last_name", "")}',
            "",
            "--- CONTACT FIELDS ---",
            f'If the label says "Email" or "Email Address" → type: {p.get("email", "")}',
            f'If the label says "Phone Number" or "Phone" → type: {p.get("phone", "")}',
            f'If the label says "Phone Device Type" → select: {p.get("phone_device_type") or "Mobile"}',
            f'If the label says "Country Phone Code" → select: {p.get("phone_country_code") or "+1"}',
            "",
            "--- ADDRESS FIELDS ---",
            f'If the label says "Country" or "Country/Territory" → select from dropdown: {addr.get("country", "")}',
            f'If the label says "Address Line 1" or "Street" → type: {addr.get("street", "")}',
            f'If the label says "City" → type: {addr.get("city", "")}',
            f'If the label says "State" or "State/Province" → select from dropdown: {addr.get("state", "")}',
            f'If the label says "Postal Code" or "ZIP" → type: {addr.get("zip", "")}',
        ]

        if p.get("linkedin_url"):
            parts += ["", "--- LINKS ---", f'If the label says "LinkedIn" → type: {p["linkedin_url"]}']
            website = p.get("website_url") or p.get("portfolio_url")
            if website:
                parts.append(f'If the label says "Website" → type: {website}')

        education = p.get("education") or []
        if education:
            edu = education[0] or {}
            parts += [
                "",
                "--- EDUCATION ---",
                f"School/University → {edu.get('school', '')}",
                f"Degree → {edu.get('degree', '')}",
                f"Field of Study → {edu.get('field_of_study', '')}",
            ]
            if edu.get("gpa"):
                parts.append(f"GPA → {edu['gpa']}")

        if qa_overrides:
            parts += ["", "--- SCREENING QUESTIONS: match the question text and select/type the answer ---"]
            for question, answer in qa_overrides.items():
                parts.append(f'If the question asks "{question}" → answer: {answer}')

        self._self_id = _self_id_fields(p)
        parts += [
            "",
            "--- SELF-IDENTIFICATION ---",
            f"Gender → {self._self_id['gender']}",
            f"Race/Ethnicity → {self._self_id['race_ethnicity']}",
            f"Veteran Status → {self._self_id['veteran_status']}",
            f"Disability Status → {self._self_id['disability_status']}",
            "",
            "--- GENERAL ---",
            f"Work Authorization → {p.get('work_authorization', '')}",
            f"Visa Sponsorship → {p.get('visa_sponsorship', '')}",
            "For unknown questions not listed above, skip the field rather than guessing.",
            "NESTED DROPDOWNS: After selecting a category, a second list may appear. Select the sub-option. "
            'Do NOT click any back arrow or "← Category" button.',
        ]
        return "\n".join(parts)

    def build_qa_map(self, profile: dict, qa_overrides: dict[str, str]) -> dict[str, str]:
        p = profile or {}
        addr = p.get("address") or {}
        self_id = _self_id_fields(p)
        full_name = f"{p.get('first_name', '')} {p.get('last_name', '')}".strip()
        device = p.get("phone_device_type") or "Mobile"

        # no bare "Ethnicity" key: its normalized form ends in "city" and would capture City fields
        qa: dict[str, Any] = {
            "Gender": self_id["gender"],
            "Race/Ethnicity": self_id["race_ethnicity"],
            "Race": self_id["race_ethnicity"],
            "Veteran Status": self_id["veteran_status"],
            "Are you a protected veteran": self_id["veteran_status"],
            "Disability": self_id["disability_status"],
            "Disability Status": self_id["disability_status"],
            "Please indicate if you have a disability": self_id["disability_status"],
            "Email": p.get("email"),
            "Email Address": p.get("email"),
            "Phone": p.get("phone"),
            "Phone Number": p.get("phone"),
            "City": addr.get("city"),
            "Address Line 1": addr.get("street"),
            "Street": addr.get("street"),
            "Address": addr.get("street"),
            "Postal Code": addr.get("zip"),
            "Zip Code": addr.get("zip"),
            "Zip": addr.get("zip"),
            "Country": addr.get("country"),
            "Country/Territory": addr.get("country"),
            "State": addr.get("state"),
            "State/Province": addr.get("state"),
            "Phone Device Type": device,
            "Phone Type": device,
            "First Name": p.get("first_name"),
            "Legal First Name": p.get("first_name"),
            "Given Name": p.get("first_name"),
            "Last Name": p.get("last_name"),
            "Legal Last Name": p.get("last_name"),
            "Family Name": p.get("last_name"),
            "Surname": p.get("last_name"),
            "Please enter your name": full_name,
            "Enter your name": full_name,
            "Your name": full_name,
            "Full Name": full_name,
            "Signature": full_name,
            "What is your desired salary?": "Open to discussion",
            "Desired salary": "Open to discussion",
        }
        result = {k: str(v) for k, v in qa.items() if v not in (None, "")}
        result.update(qa_overrides or {})
        return result

    def build_page_prompt(self, page_type: str, data_block: str) -> str:
        s = self._self_id
        if page_type == "voluntary_disclosure":
            veteran_hint = "not a protected" if "not" in s["veteran_status"] else _first_word(s["veteran_status"], 3)
            return f"""{WORKDAY_BASE_RULES}

This is a voluntary self-identification page. Fill any UNANSWERED questions that are FULLY visible on screen:
1. If a dropdown already has an answer selected, SKIP IT.
2. If empty: CLICK the dropdown, then TYPE the desired answer to filter:
   - Gender → type "{_first_word(s['gender'])}" then click "{s['gender']}"
   - Race/Ethnicity → type "{_first_word(s['race_ethnicity'])}" then click "{s['race_ethnicity']}"
   - Veteran Status → type "{veteran_hint}" then click "{s['veteran_status']}"
   - Disability → type "{_first_word(s['disability_status'], 3)}" then click "{s['disability_status']}"
3. If typing doesn't produce a match, click whitespace, re-click the dropdown, and try a shorter keyword.
4. {_CHECKBOX_RULES}

If ALL visible questions already have answers, STOP IMMEDIATELY."""
        if page_type == "self_identify":
            return f"""{WORKDAY_BASE_RULES}

This is a self-identification page (often about disability status). Fill any UNANSWERED questions that are FULLY visible on screen:
1. If a field/dropdown already has an answer selected, SKIP IT.
2. Disability Status → click "{s['disability_status']}". Any other question → type "Decline".
3. {_CHECKBOX_RULES}

If ALL visible questions already have answers, STOP IMMEDIATELY."""

        description = {
            "personal_info": "My Information",
            "questions": "application questions",
        }.get(page_type, "application")
        return f"""{WORKDAY_BASE_RULES}

You are on a "{description}" form page. Fill any EMPTY fields that are FULLY visible on screen, from top to bottom:
{_FIELD_FILL_RULES}
4. {_DROPDOWN_RULES}
5. {_CHECKBOX_RULES}

If ALL visible fields already have values, STOP IMMEDIATELY.

{data_block}"""

    # ---- DOM procedures ----

    def scan_page_fields(self, inspector: PageInspector, *, step_ratio: float = 0.7) -> ScanResult:
        scan = super().scan_page_fields(inspector, step_ratio=step_ratio)
        existing_selectors = {f.selector for f in scan.fields}
        existing_labels = {f.label.lower() for f in scan.fields}

        for raw in inspector.evaluate(_SELECT_ONE_SCAN_JS, SCAN_IDX_ATTR) or []:
            tag = str(raw.get("tag") or "")
            label = str(raw.get("label") or "")
            selector = f'[{SCAN_IDX_ATTR}="{tag}"]'
            if not tag or selector in existing_selectors or label.lower() in existing_labels:
                continue
            scan.fields.append(
                ScannedField(
                    id=f"field-{tag}",
                    selector=selector,
                    kind="custom_dropdown",
                    label=label,
                    absolute_y=float(raw.get("absoluteY") or 0.0),
                    is_required=True,
                    platform_meta={"widgetType": SELECT_ONE_WIDGET},
                )
            )
            existing_labels.add(label.lower())

        scan.fields.sort(key=lambda f: f.absolute_y)
        return scan

    def fill_scanned_field(
        self,
        inspector: PageInspector,
        field: ScannedField,
        answer: str,
        log_fn: Optional[LogFn] = None,
    ) -> bool:
        if field.platform_meta.get("widgetType") != SELECT_ONE_WIDGET:
            return super().fill_scanned_field(inspector, field, answer, log_fn)

        log = log_fn or (lambda msg, level="info": None)
        # "Country → United States" style answers: only the part before the arrow is searchable
        search = answer.split("→")[0].strip()
        try:
            trigger = inspector.page.locator(field.selector).first
            trigger.scroll_into_view_if_needed()
            trigger.click()
            inspector.wait(600)
            if click_open_option(inspector, search):
                return True
            inspector.page.keyboard.type(search, delay=50)
            inspector.wait(500)
            if click_open_option(inspector, search):
                return True
            inspector.press("Escape")
            inspector.wait(300)
        except Exception as e:
            if is_fatal_error(e):
                raise
            log(f"⚠ [Workday] Select One 直填失败 [{field.label}]: {e}", "warn")
        return False

    def click_next_button(self, inspector: PageInspector, gate=None) -> str:
        result = str(inspector.evaluate(_CLICK_NEXT_JS) or "not_found")
        if result != "not_found" or gate is None:
            return result
        # DOM 找不到按钮时，最后让 Agent 点一次
        try:
            clicked = gate.safe_act(STRICT_NEXT_PROMPT, "workday-next", visual=True)
        except Exception as e:
            if is_fatal_error(e):
                raise
            return "not_found"
        return "clicked" if clicked else "not_found"

    def detect_validation_errors(self, inspector: PageInspector) -> bool:
        return bool(inspector.evaluate(_VALIDATION_ERRORS_JS))

    def handle_experience_page(
        self,
        inspector: PageInspector,
        gate,
        profile: dict,
        data_prompt: str,
        resume_path: Optional[str] = None,
        log_fn: Optional[LogFn] = None,
    ) -> None:
        log = log_fn or (lambda msg, level="info": None)
        log("🔄 [Workday] My Experience 页：DOM 上传简历，然后交给 Agent 填写各分区")
        inspector.scroll_to(0)
        inspector.wait(500)

        if resume_path and Path(resume_path).exists():
            try:
                inspector.page.locator('input[type="file"]').first.set_input_files(resume_path)
                inspector.wait(5000)
                if inspector.evaluate(_UPLOAD_CONFIRMED_JS):
                    log("✓ [Workday] 简历上传成功")
                else:
                    log("⚠ [Workday] 简历上传状态不明，继续", "warn")
            except Exception as e:
                if is_fatal_error(e):
                    raise
                log(f"⚠ [Workday] 简历上传失败: {e}", "warn")
        elif resume_path:
            log(f"⚠ [Workday] 简历文件不存在: {resume_path}", "warn")

        gate.safe_act(
            self.build_experience_prompt(profile or {}, data_prompt),
            "workday-experience",
            visual=True,
        )

    def build_experience_prompt(self, profile: dict, data_prompt: str) -> str:
        block = [
            "DO NOT TOUCH THESE SECTIONS:",
            '- "Websites": do NOT click its "Add" button. An empty URL row causes a validation error.',
            '- "Certifications": do NOT click its "Add" button.',
            "- Do NOT add more than one work experience entry or more than one education entry.",
            "",
            "MY EXPERIENCE PAGE DATA:",
        ]
        experience = profile.get("experience") or []
        if experience:
            exp = experience[0] or {}
            start = str(exp.get("start_date") or "")
            pieces = start.split("-")
            from_date = f"{pieces[1]}/{pieces[0]}" if len(pieces) >= 2 else start
            block += [
                'WORK EXPERIENCE (click "Add" under Work Experience first):',
                f"  Job Title: {exp.get('title', '')}",
                f"  Company: {exp.get('company', '')}",
                f"  Location: {exp.get('location', '')}",
                f"  I currently work here: {'YES, check the checkbox' if exp.get('currently_work_here') else 'No'}",
                f'  From date: {from_date}. Click the MM box (left part) first, then type "{from_date.replace("/", "")}".',
                f"  Role Description: {exp.get('description', '')}",
            ]
        education = profile.get("education") or []
        if education:
            edu = education[0] or {}
            block += [
                'EDUCATION (click "Add" under Education first):',
                f"  School or University: {edu.get('school', '')}",
                f"  Degree: {edu.get('degree', '')} (dropdown: click it, type to filter, select)",
                f"  Field of Study: {edu.get('field_of_study', '')} (typeahead: type, wait, press Enter)",
            ]
        skills = profile.get("skills") or []
        if skills:
            block.append(
                "SKILLS (type each into the skills input, press Enter, click the match): "
                + ", ".join(f'"{s}"' for s in skills)
            )
        if profile.get("linkedin_url"):
            block.append(f'LINKEDIN (under "Social Network URLs", not "Websites"): {profile["linkedin_url"]}')

        return f"""{WORKDAY_BASE_RULES}

This is the "My Experience" page. Fill any EMPTY sections that are FULLY visible on screen.
1. "Add" BUTTONS: ONLY click "Add" under "Work Experience" and "Education". If the entry is already expanded, do NOT click Add again.
2. {_DROPDOWN_RULES}
3. {_CHECKBOX_RULES}

{chr(10).join(block)}

{data_prompt}"""
