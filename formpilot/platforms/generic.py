"""
通用平台配置（任意站点的默认实现）

职责：
- 页面识别：URL 规则 / 廉价 DOM 信号 / 分类 prompt / DOM 兜底分类
- 数据：申请人资料 → 数据 prompt 与 QA Map
- DOM 过程：字段扫描、直填、必选复选框、下一步按钮、校验错误检测

平台子类只覆盖与站点标记相关的部分，编排器只依赖这里的接口。
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from ..core import dom_filler
from ..core.answer_matcher import derive_education_level
from ..core.field_scanner import scan_page
from ..core.page_probe import PageInspector
from ..core.types import PAGE_TYPES, PageState, ScannedField, ScanResult

LogFn = Callable[[str, str], None]

GENERIC_BASE_RULES = """YOUR ROLE: You are a form-filling assistant. You can ONLY see what is currently on screen. You have NO ability to reveal more content. Scrolling happens ONLY after you report done, and reporting done IS the trigger for scrolling.

RULES (follow in strict order):

1. Work strictly TOP TO BOTTOM. Start with the TOPMOST unanswered field and fill it. Then move to the next one below it. Do NOT skip ahead.

2. FILL every empty field that is 100% FULLY VISIBLE on screen using the data below.

3. SKIP fields that already have text, a selection, or a checked checkbox. NEVER uncheck a checkbox that is already checked. NEVER clear a field that already has a value.

4. SKIP fields with no matching data (e.g. Middle Name, Address Line 2).

5. CUT-OFF DETECTION: Before answering ANY question near the bottom of the screen, check that you can see the COMPLETE question text AND every answer option. If an expected choice (like "No" or "Yes") is missing or the text runs off the bottom edge, the question is CUT OFF. Do not touch it, just report done. It will be scrolled into view and you will answer it next time.

6. You MAY click dropdowns, radio buttons, checkboxes, "Add Another", "Upload", and other form controls, but ONLY for questions that are 100% fully visible.

7. NEVER click any button that says Next, Continue, Submit, Submit Application, Save, Send, or similar. You are ONLY here to fill fields. If you see a review/summary page, report done immediately.

8. Before reporting done, scan from the TOP of the screen to the BOTTOM: did you answer every FULLY VISIBLE question? If you missed any, answer it NOW.

9. When all fully visible questions are handled, IMMEDIATELY report done. Do NOT use the wait action."""

FIELD_INTERACTION_RULES = """HOW TO FILL:
- Text fields: Click, type the value, click away to deselect.
- Dropdowns: Click to open, type to filter, click the match. If no exact match, pick the closest option.
- Radio buttons: Click the matching option.
- Required checkboxes (terms, agreements): Check them.
- If a field has no match in the data mapping (e.g. Middle Name, Address Line 2), skip it.
- If stuck on a field after two tries, skip it and move on."""

GENERIC_CLASSIFIABLE_TYPES = (
    "job_listing",
    "login",
    "sso_signin",
    "verification_code",
    "phone_2fa",
    "account_creation",
    "personal_info",
    "experience",
    "resume_upload",
    "questions",
    "review",
    "confirmation",
    "error",
    "unknown",
)


def build_page_state_schema(page_types: tuple[str, ...]) -> dict:
    return {
        "type": "object",
        "properties": {
            "page_type": {"type": "string", "enum": list(page_types)},
            "page_title": {"type": "string"},
            "has_apply_button": {"type": "boolean"},
            "has_next_button": {"type": "boolean"},
            "has_submit_button": {"type": "boolean"},
            "has_sso_button": {"type": "boolean"},
            "error_message": {"type": "string"},
        },
        "required": ["page_type"],
    }


_CLICKABLE_TEXTS_JS_PART = """
    const clickables = Array.from(document.querySelectorAll(
        'button, [role="button"], input[type="submit"], a[href], a[role="link"]'
    ));
    const clickableTexts = clickables.map(el => {
        const raw = (el.textContent || el.getAttribute('value') || el.getAttribute('aria-label') || '').trim();
        return raw.replace(/\\s+/g, ' ').substring(0, 60).toLowerCase();
    });
    const APPLY_TEXTS = ['apply', 'apply now', 'apply for this job', 'apply on company site', 'apply to this job'];
    const SIGN_IN_TEXTS = ['sign in', 'log in', 'login', 'sign in with google', 'continue with google'];
"""

_DOM_SIGNALS_JS = (
    """() => {
    const bodyText = (document.body ? document.body.innerText : '').toLowerCase();"""
    + _CLICKABLE_TEXTS_JS_PART
    + """
    const hasApplyButton = clickableTexts.some(t => APPLY_TEXTS.includes(t));
    const hasSubmitButton = clickableTexts.some(t =>
        t === 'submit' || t === 'submit application' || t === 'submit my application');
    const REVIEW_TEXTS = ['review your application', 'review & apply', 'review and apply',
        'review application', 'application summary', 'review & submit', 'review and submit'];
    const hasReviewSignals = REVIEW_TEXTS.some(s => bodyText.includes(s));
    const JD_TEXTS = ['job description', 'responsibilities', 'qualifications', 'about the role',
        'about this job', "what you'll do"];
    const hasJobDescription = JD_TEXTS.some(s => bodyText.includes(s));
    const hasPasswordField = document.querySelectorAll('input[type="password"]').length > 0;
    const hasEmailField = document.querySelectorAll('input[type="email"]').length > 0;
    const hasSsoButton = bodyText.includes('sign in with google') || bodyText.includes('continue with google');
    const hasSignInClickable = clickableTexts.some(t => SIGN_IN_TEXTS.includes(t));
    const isLoginPage = hasPasswordField || hasSsoButton || (hasEmailField && hasSignInClickable) || hasSignInClickable;
    const hasFormInputs = document.querySelectorAll(
        'input[type="text"], input[type="email"], input[type="tel"], textarea, select, [role="combobox"], '
        + '[role="radiogroup"], [role="radio"]:not([aria-checked="true"]), [role="listbox"], '
        + '[contenteditable="true"], input[type="file"]'
    ).length > 2;
    const hasConfirmation = bodyText.includes('thank you') || bodyText.includes('application received')
        || bodyText.includes('successfully submitted');
    return { hasApplyButton, hasSubmitButton, hasReviewSignals, hasJobDescription, isLoginPage,
        hasSsoButton, hasFormInputs, hasConfirmation };
}"""
)

_DOM_FALLBACK_JS = (
    """() => {
    const bodyText = (document.body ? document.body.innerText : '').toLowerCase();
    const headingText = Array.from(document.querySelectorAll('h1, h2, h3'))
        .map(h => (h.textContent || '').toLowerCase()).join(' ');
    const allText = headingText + ' ' + bodyText.substring(0, 3000);
    const hasEditable = document.querySelectorAll(
        'input[type="text"]:not([readonly]):not([disabled]), textarea:not([readonly]):not([disabled]), '
        + 'input[type="email"]:not([readonly]):not([disabled]), input[type="tel"]:not([readonly]):not([disabled]), '
        + 'select:not([disabled]), [role="combobox"], [role="listbox"], [role="radiogroup"], [role="radio"], '
        + '[contenteditable="true"], input[type="file"]'
    ).length > 0;"""
    + _CLICKABLE_TEXTS_JS_PART
    + """
    const hasSubmit = clickableTexts.some(t => t === 'submit' || t === 'submit application');
    const hasNext = clickableTexts.some(t => t === 'next' || t === 'continue' || t.includes('save and continue'));
    const hasApply = clickableTexts.some(t => APPLY_TEXTS.includes(t));
    const hasPassword = document.querySelectorAll('input[type="password"]').length > 0;
    const hasSignIn = clickableTexts.some(t => SIGN_IN_TEXTS.includes(t));

    if (hasSubmit && !hasEditable && !hasNext) return 'review';
    if (allText.includes('thank you') || allText.includes('application received')
        || allText.includes('successfully submitted')) return 'confirmation';
    if (hasApply) return 'job_listing';
    if (hasPassword || hasSignIn) return 'login';
    if (hasEditable) {
        if (allText.includes('application questions') || allText.includes('screening questions')) return 'questions';
        if (allText.includes('work experience') || allText.includes('resume') || allText.includes('upload cv')) return 'experience';
        if (allText.includes('personal info') || allText.includes('contact info') || allText.includes('your information')) return 'personal_info';
        return 'questions';
    }
    return 'unknown';
}"""
)

_CLICK_NEXT_JS = """() => {
    const NEXT_TEXTS = ['next', 'continue', 'proceed', 'review application', 'review my application',
        'go to next step', 'next step'];
    const NEXT_INCLUDES = ['save and continue', 'save & continue', 'skip and continue', 'skip & continue',
        'submit profile', 'submit and continue', 'submit & continue'];
    const vh = window.innerHeight;
    const buttons = Array.from(document.querySelectorAll('button, [role="button"], input[type="submit"], a.btn'))
        .map(b => {
            const r = b.getBoundingClientRect();
            return {
                el: b,
                text: (b.textContent || b.getAttribute('value') || '').trim().toLowerCase(),
                visible: r.width > 0 && r.height > 0 && r.bottom > 0 && r.top < vh,
            };
        });
    const isNext = (t) => NEXT_TEXTS.includes(t) || NEXT_INCLUDES.some(s => t.includes(s));
    const hasSubmit = buttons.some(b => b.text === 'submit' || b.text === 'submit application');
    const hasNext = buttons.some(b => isNext(b.text));
    // page-wide: a submit anywhere with no next-like control anywhere
    if (hasSubmit && !hasNext) return 'review_detected';
    const target = buttons.find(b => b.visible && isNext(b.text));
    if (target) {
        target.el.click();
        return 'clicked';
    }
    return 'not_found';
}"""

_VALIDATION_ERRORS_JS = """() => {
    const PATTERNS = ['required', 'this field is required', 'please fill', 'please enter', 'please select',
        'invalid', 'must be completed', 'cannot be blank', 'is not valid', 'must provide', 'missing required'];
    const errorEls = document.querySelectorAll(
        '[role="alert"], .field-error, .validation-error, .form-error, .input-error, .error-message'
    );
    for (const el of errorEls) {
        const r = el.getBoundingClientRect();
        if (r.width === 0 || r.height === 0) continue;
        const text = (el.textContent || '').trim().toLowerCase();
        if (!text || text.length > 500) continue;
        if (PATTERNS.some(p => text.includes(p))) return true;
    }
    for (const input of document.querySelectorAll('input, select, textarea')) {
        const r = input.getBoundingClientRect();
        if (r.width === 0 || r.height === 0) continue;
        if (r.bottom < 0 || r.top > window.innerHeight) continue;
        const border = window.getComputedStyle(input).borderColor || '';
        const reddish = border.includes('rgb(255, 0') || border.includes('rgb(220, 53') || border.includes('rgb(239, 68');
        if (reddish && input.getAttribute('aria-invalid') === 'true') return true;
    }
    return false;
}"""


def _address_part(profile: dict, key: str) -> str:
    addr = profile.get("address") or {}
    return str(addr.get(key) or profile.get(key) or "")


def _first_entry(profile: dict, *keys: str) -> dict:
    for key in keys:
        entries = profile.get(key) or []
        if isinstance(entries, list) and entries:
            return entries[0] or {}
    return {}


class GenericPlatformConfig:
    platform_id = "generic"
    display_name = "Generic (any site)"
    page_types: tuple[str, ...] = GENERIC_CLASSIFIABLE_TYPES
    base_rules = GENERIC_BASE_RULES
    needs_custom_experience_handler = False
    auth_domains: tuple[str, ...] = ()

    @property
    def page_state_schema(self) -> dict:
        return build_page_state_schema(self.page_types)

    # ---- page detection ----

    def detect_page_by_url(self, url: str) -> Optional[PageState]:
        if "accounts.google.com" not in (url or ""):
            return None
        if "/pwd" in url or "/identifier" in url:
            return PageState(page_type="sso_signin", page_title="Google Sign-In")
        if "/challenge/" in url:
            return PageState(page_type="phone_2fa", page_title=self.describe_google_challenge(url))
        return PageState(page_type="sso_signin", page_title="Google Sign-In")

    def describe_google_challenge(self, url: str) -> str:
        return "Google Challenge (manual solve required)"

    def detect_page_by_dom(self, inspector: PageInspector) -> Optional[PageState]:
        s = inspector.evaluate(_DOM_SIGNALS_JS) or {}

        if s.get("hasConfirmation") and not s.get("hasFormInputs"):
            return PageState(page_type="confirmation", page_title="Confirmation")
        # review pages often carry an "Apply" button that means submit
        if s.get("hasReviewSignals"):
            return PageState(page_type="review", page_title="Review")
        if s.get("hasApplyButton") and (s.get("hasJobDescription") or not s.get("hasFormInputs")):
            return PageState(page_type="job_listing", page_title="Job Listing", has_apply_button=True)
        if s.get("isLoginPage"):
            return PageState(
                page_type="login",
                page_title="Sign-In",
                has_sso_button=bool(s.get("hasSsoButton")),
            )
        if s.get("hasFormInputs"):
            return PageState(page_type="questions", page_title="Form Page")
        return None

    def build_classification_prompt(self, url_hints: list[str]) -> str:
        url_context = f"URL context: {' '.join(url_hints)} " if url_hints else ""
        return f"""{url_context}Analyze the current page and classify it in a job application process.

CLASSIFICATION RULES (check in this order):
1. If the page has login/sign-in fields, OAuth buttons, or "Sign in with Google" → "login"
2. If the page shows a job description with an "Apply" or "Apply Now" button → "job_listing"
3. If the page asks for name, email, phone, address (personal details) → "personal_info"
4. If the page asks for resume/CV upload, work experience, education history → "experience" or "resume_upload"
5. If the page has screening questions (radio buttons, dropdowns, text answers about eligibility, availability, etc.) → "questions"
6. REVIEW PAGE: classify as "review" ONLY if ALL of these are true: (a) the page shows a READ-ONLY summary of your entire application, (b) there is a prominent "Submit" or "Submit Application" button, and (c) there are truly NO fillable form fields on the page. A page that has a Submit button but ALSO has form fields, input boxes, dropdowns, or sections still to fill is NOT a review page; classify it based on what needs to be filled.
7. If the page shows an error message → "error"
8. If the page shows a confirmation, thank-you message, or "application received" → "confirmation"
9. If the page asks to create an account or register → "account_creation"
10. Otherwise → "unknown"

IMPORTANT: If a page has BOTH "Sign In" and "Create Account" options, classify as "login" (NOT "account_creation").
IMPORTANT: Many job sites show a "Submit" button on EVERY page; this does NOT mean you are on the review page. Only classify as "review" if the page is purely a read-only summary with no fields to fill."""

    def classify_by_dom_fallback(self, inspector: PageInspector) -> str:
        page_type = str(inspector.evaluate(_DOM_FALLBACK_JS) or "unknown")
        return page_type if page_type in PAGE_TYPES else "unknown"

    # ---- prompts & data ----

    def build_data_prompt(self, profile: dict, qa_overrides: dict[str, str]) -> str:
        p = profile or {}
        lines = ["DATA MAPPING:"]

        def add(label: str, value: Any) -> None:
            if value not in (None, ""):
                lines.append(f"- {label}: {value}")

        add("First Name / Given Name", p.get("first_name"))
        add("Last Name / Family Name / Surname", p.get("last_name"))
        add("Email / Email Address", p.get("email"))
        add("Phone / Phone Number / Mobile", p.get("phone"))
        add("Street / Address / Address Line 1", _address_part(p, "street"))
        add("Address Line 2 / Apt / Suite", _address_part(p, "line2"))
        add("City", _address_part(p, "city"))
        add("State / Province", _address_part(p, "state"))
        add("Zip / Postal Code / ZIP Code", _address_part(p, "zip"))
        add("Country", _address_part(p, "country"))
        add("LinkedIn / LinkedIn URL", p.get("linkedin_url"))
        add("Website / Portfolio", p.get("portfolio_url") or p.get("website_url"))
        add("Current Company / Employer", p.get("current_company"))
        add("Current Title / Job Title", p.get("current_title"))
        add("Work authorization", p.get("work_authorization"))
        add("Salary expectations", p.get("salary_expectation"))
        add("Years of experience", p.get("years_of_experience"))

        edu = _first_entry(p, "education")
        if edu:
            degree = str(edu.get("degree") or edu.get("level") or "")
            if degree:
                add("Education Level / Highest Degree", derive_education_level(degree))
            add("Degree", degree)
            add("School / University / Institution", edu.get("school") or edu.get("institution"))
            add("Field of Study / Major", edu.get("field_of_study") or edu.get("major"))
            add("Graduation Year", edu.get("graduation_year") or edu.get("end_date"))

        experience = p.get("experience") or []
        if experience:
            lines += ["", "WORK EXPERIENCE:"]
            for exp in experience:
                end = "Present" if exp.get("currently_work_here") else (exp.get("end_date") or "")
                location = f" ({exp['location']})" if exp.get("location") else ""
                lines.append(
                    f"- {exp.get('title', '')} at {exp.get('company', '')}{location}, "
                    f"{exp.get('start_date', '')} to {end}"
                )
                if exp.get("description"):
                    lines.append(f"  Description: {exp['description']}")

        skills = p.get("skills") or []
        if skills:
            lines.append(f"- Skills: {', '.join(str(s) for s in skills)}")

        add("Gender", p.get("gender"))
        add("Race / Ethnicity", p.get("race_ethnicity"))
        add("Veteran Status", p.get("veteran_status"))
        add("Disability Status", p.get("disability_status"))

        if qa_overrides:
            lines += ["", "SCREENING QUESTIONS:"]
            for question, answer in qa_overrides.items():
                lines.append(f'- "{question}" → {answer}')

        lines += [
            "",
            "DEFAULTS:",
            '- "How did you hear about us?" → Other',
            "- For unknown questions not listed above, skip the field rather than guessing.",
        ]
        return "\n".join(lines)

    def build_qa_map(self, profile: dict, qa_overrides: dict[str, str]) -> dict[str, str]:
        p = profile or {}
        qa: dict[str, str] = {}

        def put(keys: tuple[str, ...], value: Any) -> None:
            if value in (None, ""):
                return
            for key in keys:
                qa[key] = str(value)

        put(("First Name", "Given Name"), p.get("first_name"))
        put(("Last Name", "Family Name", "Surname"), p.get("last_name"))
        put(("Email", "Email Address"), p.get("email"))
        put(("Phone", "Phone Number", "Mobile"), p.get("phone"))
        put(("Street", "Address", "Address Line 1"), _address_part(p, "street"))
        put(("City",), _address_part(p, "city"))
        put(("State",), _address_part(p, "state"))
        put(("Zip Code", "Zip", "Postal Code"), _address_part(p, "zip"))
        put(("Country",), _address_part(p, "country"))
        put(("LinkedIn", "LinkedIn URL"), p.get("linkedin_url"))
        put(("Website", "Portfolio"), p.get("portfolio_url") or p.get("website_url"))
        put(("Current Company", "Employer", "Company"), p.get("current_company"))
        put(("Current Title", "Job Title"), p.get("current_title"))

        edu = _first_entry(p, "education")
        degree = str(edu.get("degree") or edu.get("level") or "")
        if degree:
            level = derive_education_level(degree)
            put(("Education Level", "Highest Degree"), level)
            put(("Degree",), degree)
        put(("School", "University", "Institution"), edu.get("school") or edu.get("institution"))
        put(("Field of Study", "Major"), edu.get("field_of_study") or edu.get("major"))

        # common screening questions
        qa["Are you legally authorized to work in the United States?"] = str(
            p.get("work_authorization") or "Yes"
        )
        qa["Will you now or in the future require sponsorship?"] = str(
            p.get("visa_sponsorship") or "No"
        )
        qa["Are you at least 18 years of age?"] = "Yes"
        qa["How did you hear about this position?"] = "Other"
        qa["Are you willing to relocate?"] = "Yes"

        qa.update(qa_overrides or {})
        return qa

    def build_page_prompt(self, page_type: str, data_block: str) -> str:
        return f"{self.base_rules}\n\n{FIELD_INTERACTION_RULES}\n\n{data_block}"

    # ---- DOM procedures ----

    def scan_page_fields(self, inspector: PageInspector, *, step_ratio: float = 0.7) -> ScanResult:
        return scan_page(inspector, step_ratio=step_ratio)

    def fill_scanned_field(
        self,
        inspector: PageInspector,
        field: ScannedField,
        answer: str,
        log_fn: Optional[LogFn] = None,
    ) -> bool:
        return dom_filler.fill_scanned_field(inspector, field, answer, log_fn)

    def check_required_checkboxes(self, inspector: PageInspector) -> int:
        return dom_filler.check_required_checkboxes(inspector)

    def click_next_button(self, inspector: PageInspector, gate=None) -> str:
        return str(inspector.evaluate(_CLICK_NEXT_JS) or "not_found")

    def detect_validation_errors(self, inspector: PageInspector) -> bool:
        return bool(inspector.evaluate(_VALIDATION_ERRORS_JS))

    # ---- optional overrides ----

    def handle_experience_page(
        self,
        inspector: PageInspector,
        gate,
        profile: dict,
        data_prompt: str,
        resume_path: Optional[str] = None,
        log_fn: Optional[LogFn] = None,
    ) -> None:
        """
        站点自定义经历 / 简历页处理；needs_custom_experience_handler 为 True 的平台覆盖此方法。
        通用平台无此步骤，直接返回。
        """
        return None

    def handle_login(self, inspector: PageInspector, gate, profile: dict, log_fn=None) -> bool:
        """站点自定义登录；返回 False 表示交给通用登录流程。"""
        return False
