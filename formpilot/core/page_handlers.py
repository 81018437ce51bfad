"""
专用页面处理

职责：
- 职位页：点击 Apply
- 登录页：平台自定义登录 > Google SSO > 原生邮箱密码登录 > Agent 兜底
- Google SSO：按子状态（邮箱 / 密码 / 确认 / 选账号）走 DOM，其他情况交给 Agent
- 验证码：新开邮箱标签页读取验证码
- 手机 2FA / CAPTCHA：有界轮询等待人工处理，超时抛 ManualInterventionRequired
- 注册页：DOM 填邮箱与所有密码框，其余交给 Agent
"""

from __future__ import annotations

import re
from typing import Callable, Optional

from ..config import OrchestratorSettings, get_applicant_password
from .agent_runtime import AgentGate
from .errors import ManualInterventionRequired
from .heuristics import describe_challenge
from .page_probe import PageInspector
from .prompt_builder import (
    APPLY_CLICK_PROMPT,
    build_account_creation_prompt,
    build_sso_fallback_prompt,
    build_verification_code_prompt,
)
from .types import RunContext

LogFn = Callable[[str, str], None]

MAIL_INBOX_URL = "https://mail.google.com"

_CODE_PATTERNS = (
    re.compile(
        r"(?:verification|security|confirm|one-time|otp|2fa)\s*(?:code|pin|number)[:\s]*(\d{4,8})",
        re.IGNORECASE,
    ),
    re.compile(r"(\d{4,8})\s*(?:is your|is the)\s*(?:verification|security|confirm)", re.IGNORECASE),
)

_GOOGLE_SSO_BUTTON_JS = """() => {
    const els = document.querySelectorAll('a, button, [role="button"], [role="link"]');
    for (const el of els) {
        const text = (el.textContent || '').toLowerCase();
        if (text.includes('google') && (text.includes('sign in') || text.includes('continue') || text.includes('log in'))) return true;
        if (el.querySelector('img[src*="google" i], img[alt*="google" i]')) return true;
    }
    return false;
}"""

_SIGN_IN_LINK_TEXT = "text === 'sign in' || text === 'log in' || text === 'login' || text.includes('already have an account')"

_LOGIN_FORM_STATE_JS = """() => {
    const hasEmail = !!document.querySelector(
        'input[type="email"]:not([disabled]), input[autocomplete="email"]:not([disabled]), ' +
        'input[name*="email" i]:not([disabled]), input[name*="user" i]:not([disabled])'
    );
    const passwords = document.querySelectorAll('input[type="password"]:not([disabled])');
    const headingText = Array.from(document.querySelectorAll('h1, h2, h3, [role="heading"]'))
        .map(h => (h.textContent || '').toLowerCase()).join(' ');
    const createHeading = headingText.includes('create account') || headingText.includes('register') || headingText.includes('sign up');
    const signInLink = Array.from(document.querySelectorAll('a, button, [role="tab"], [role="button"], [role="link"]'))
        .some(el => { const text = (el.textContent || '').trim().toLowerCase(); return %s; });
    return {
        hasEmail,
        hasPassword: passwords.length > 0,
        isCreateAccountForm: passwords.length > 1 || createHeading,
        hasSignInLink: signInLink,
    };
}""" % _SIGN_IN_LINK_TEXT

_CLICK_SIGN_IN_LINK_JS = """() => {
    const els = document.querySelectorAll('a, button, [role="tab"], [role="button"], [role="link"]');
    for (const el of els) {
        const text = (el.textContent || '').trim().toLowerCase();
        if (%s) { el.click(); return true; }
    }
    return false;
}""" % _SIGN_IN_LINK_TEXT

_SET_INPUT_JS = """
    const setValue = (input, value) => {
        input.focus();
        input.value = value;
        input.dispatchEvent(new Event('input', { bubbles: true }));
        input.dispatchEvent(new Event('change', { bubbles: true }));
    };
"""

_FILL_EMAIL_JS = """({ email, onlyEmpty }) => {%s
    const sels = [
        'input[type="email"]', 'input[autocomplete="email"]', 'input[data-automation-id*="email" i]',
        'input[name*="email" i]', 'input[name*="user" i]', 'input[id*="email" i]', 'input[id*="user" i]',
    ];
    for (const sel of sels) {
        const input = document.querySelector(sel + ':not([disabled])');
        if (!input || input.getBoundingClientRect().width === 0) continue;
        if (onlyEmpty && (input.value || '').trim()) continue;
        setValue(input, email);
        return true;
    }
    return false;
}""" % _SET_INPUT_JS

_FILL_PASSWORDS_JS = """({ password, all }) => {%s
    let count = 0;
    for (const input of document.querySelectorAll('input[type="password"]:not([disabled])')) {
        if (input.getBoundingClientRect().width === 0) continue;
        setValue(input, password);
        count++;
        if (!all) break;
    }
    return count;
}""" % _SET_INPUT_JS

_CLICK_LOGIN_SUBMIT_JS = """() => {
    const TEXTS = ['sign in', 'log in', 'login', 'submit', 'continue', 'next'];
    for (const btn of document.querySelectorAll('button, input[type="submit"], [role="button"]')) {
        const text = (btn.textContent || btn.value || '').trim().toLowerCase();
        if (TEXTS.some(t => text === t || (text.length < 30 && text.includes(t)))) { btn.click(); return true; }
    }
    const form = document.querySelector('form');
    if (form) { form.requestSubmit(); return true; }
    return false;
}"""

_LOGIN_ERROR_JS = """() => {
    const patterns = ['incorrect', 'invalid', 'wrong', 'not found', "doesn't exist", 'does not exist',
        'failed', 'try again', 'not recognized', 'no account', 'unable to sign'];
    const els = document.querySelectorAll(
        '[role="alert"], .error, .alert-error, .alert-danger, ' +
        '[class*="error-msg"], [class*="error-message"], [class*="errorMessage"]'
    );
    for (const el of els) {
        const r = el.getBoundingClientRect();
        if (r.width === 0 || r.height === 0) continue;
        const text = (el.textContent || '').trim().toLowerCase();
        if (text && patterns.some(p => text.includes(p))) return text.substring(0, 200);
    }
    return null;
}"""

_CLICK_CREATE_ACCOUNT_JS = """() => {
    const TEXTS = ['create account', 'sign up', 'register', 'create an account',
        "don't have an account", 'new user', 'get started', 'join now'];
    for (const el of document.querySelectorAll('a, button, [role="button"], [role="link"], span')) {
        const text = (el.textContent || '').trim().toLowerCase();
        if (TEXTS.some(t => text.includes(t))) { el.click(); return true; }
    }
    return false;
}"""

_SSO_STATE_JS = """(targetEmail) => {
    targetEmail = (targetEmail || '').toLowerCase();
    const visible = (el) => {
        if (el.getAttribute('aria-hidden') === 'true') return false;
        const s = window.getComputedStyle(el);
        if (s.display === 'none' || s.visibility === 'hidden' || s.opacity === '0') return false;
        const r = el.getBoundingClientRect();
        return r.width > 0 && r.height > 0;
    };
    if (Array.from(document.querySelectorAll('input[type="password"]')).some(visible)) return 'password_entry';
    if (Array.from(document.querySelectorAll('input[type="email"]')).some(visible)) return 'email_entry';
    const body = (document.body.innerText || '').toLowerCase();
    const hasContinue = Array.from(document.querySelectorAll('button, div[role="button"]')).some(b => {
        const t = (b.textContent || '').trim().toLowerCase();
        return t === 'continue' || t === 'confirm' || t === 'allow';
    });
    if (hasContinue && ((targetEmail && body.includes(targetEmail)) || body.includes('confirm') || body.includes('signing in'))) {
        return 'confirmation';
    }
    for (const el of document.querySelectorAll('[data-email], [data-identifier]')) {
        const addr = (el.getAttribute('data-email') || el.getAttribute('data-identifier') || '').toLowerCase();
        if (targetEmail && addr === targetEmail) return 'account_chooser';
    }
    if (body.includes('choose an account') || body.includes('select an account')) return 'account_chooser';
    return 'unknown';
}"""

_CLICK_BUTTON_TEXT_JS = """(texts) => {
    for (const btn of document.querySelectorAll('button, div[role="button"]')) {
        const t = (btn.textContent || '').trim().toLowerCase();
        if (texts.some(x => t === x || (x === 'next' && t.includes('next')))) { btn.click(); return true; }
    }
    return false;
}"""

_CLICK_ACCOUNT_JS = """(targetEmail) => {
    const lower = (targetEmail || '').toLowerCase();
    if (!lower) return false;
    for (const el of document.querySelectorAll('[data-email], [data-identifier]')) {
        const addr = (el.getAttribute('data-email') || el.getAttribute('data-identifier') || '').toLowerCase();
        if (addr === lower) { el.click(); return true; }
    }
    for (const el of document.querySelectorAll('li, div[role="link"], div[role="button"]')) {
        if ((el.textContent || '').toLowerCase().includes(lower) && el.children.length < 5) { el.click(); return true; }
    }
    return false;
}"""

_PASSWORD_COUNT_JS = """() => document.querySelectorAll('input[type="password"]').length"""


def extract_verification_code(text: str) -> Optional[str]:
    """从邮件正文中找 4-8 位验证码。"""
    for pattern in _CODE_PATTERNS:
        m = pattern.search(text or "")
        if m:
            return m.group(1)
    return None


class PageHandlers:
    def __init__(
        self,
        config,
        inspector: PageInspector,
        gate: AgentGate,
        ctx: RunContext,
        settings: Optional[OrchestratorSettings] = None,
        log_fn: Optional[LogFn] = None,
    ) -> None:
        self.config = config
        self.inspector = inspector
        self.gate = gate
        self.ctx = ctx
        self.settings = settings or OrchestratorSettings()
        self._log = log_fn or (lambda msg, level="info": None)

    def _settle(self) -> None:
        self.inspector.wait_for_settled(self.settings.page_transition_wait_ms)

    def _act(self, instruction: str, label: str) -> bool:
        return self.gate.safe_act(instruction, label, visual=True)

    def _url(self) -> str:
        return self.inspector.adapter.get_current_url()

    # ---- job listing ----

    def handle_job_listing(self) -> None:
        self._log("职位页，点击 Apply...")
        self.inspector.strip_target_blank()
        url_before = self._url()
        if not self._act(APPLY_CLICK_PROMPT, "job_listing"):
            if self._url() == url_before:
                raise RuntimeError("Failed to click Apply button")
            self._log("Apply 点击报告失败，但页面已跳转，继续")
        self.ctx.apply_clicked = True
        self._settle()

    # ---- login ----

    def handle_login(self, profile: dict) -> None:
        if self.config.handle_login(self.inspector, self.gate, profile, self._log):
            return

        email = str(profile.get("email") or "")
        if "accounts.google.com" in self._url():
            self.handle_sso_signin(profile)
            return

        inspector = self.inspector
        if inspector.evaluate(_GOOGLE_SSO_BUTTON_JS):
            self._log("发现 Google 登录按钮，点击...")
            if not self._act(
                'Click the "Sign in with Google" button, Google icon/logo button, or "Continue with Google" option. '
                "Click ONLY ONE button, then report done.",
                "login",
            ):
                self._log("⚠ Google 登录按钮点击失败，继续", "warn")
            self._settle()
            return

        state = inspector.evaluate(_LOGIN_FORM_STATE_JS) or {}
        if state.get("isCreateAccountForm") and state.get("hasSignInLink"):
            self._log("当前是注册表单，切换到登录视图")
            if inspector.evaluate(_CLICK_SIGN_IN_LINK_JS):
                inspector.wait(1500)
                state = inspector.evaluate(_LOGIN_FORM_STATE_JS) or {}

        if not (state.get("hasEmail") or state.get("hasPassword")):
            if not self._act(
                'This is a login page. First, look for a "Sign In" or "Log In" button and click it. '
                'Only if there is no sign-in option, click a "Create Account" or "Sign Up" link instead. '
                "Click ONLY ONE button, then report done.",
                "login",
            ):
                self._log("⚠ 登录页 Agent 兜底失败", "warn")
            self._settle()
            return

        password = get_applicant_password(profile)
        if state.get("hasEmail"):
            inspector.evaluate(_FILL_EMAIL_JS, {"email": email, "onlyEmpty": False})
        if state.get("hasPassword") and password:
            inspector.evaluate(_FILL_PASSWORDS_JS, {"password": password, "all": False})
        inspector.wait(300)

        if not inspector.evaluate(_CLICK_LOGIN_SUBMIT_JS):
            if not self._act('Click the "Sign In", "Log In", "Next", or "Continue" button. Click ONLY ONE button.', "login"):
                self._log("⚠ 登录提交按钮点击失败", "warn")
        inspector.wait(3000)
        self._settle()

        if not state.get("hasPassword"):
            return
        error = inspector.evaluate(_LOGIN_ERROR_JS)
        if error:
            self._log(f"⚠ 登录失败: \"{error}\"，转到注册", "warn")
            if not inspector.evaluate(_CLICK_CREATE_ACCOUNT_JS):
                if not self._act(
                    'The login failed. Look for a "Create Account", "Sign Up", "Register", or '
                    "\"Don't have an account?\" link and click it. Click ONLY ONE link.",
                    "login",
                ):
                    self._log("⚠ 注册链接点击失败", "warn")
            self._settle()

    # ---- Google SSO ----

    def handle_sso_signin(self, profile: dict) -> None:
        inspector = self.inspector
        email = str(profile.get("email") or "")
        password = get_applicant_password(profile)

        sub_state = str(inspector.evaluate(_SSO_STATE_JS, email) or "unknown")
        self._log(f"Google 登录页，子状态: {sub_state}")

        if sub_state == "confirmation":
            if not inspector.evaluate(_CLICK_BUTTON_TEXT_JS, ["continue", "confirm", "allow"]):
                self._act('Click the "Continue" or "Confirm" button to proceed with Google sign-in.', "sso")
        elif sub_state == "account_chooser":
            if not inspector.evaluate(_CLICK_ACCOUNT_JS, email):
                self._act(f'Click on the account "{email}" to sign in with it.', "sso")
        elif sub_state == "email_entry":
            inspector.page.locator('input[type="email"]:visible').first.fill(email)
            inspector.wait(300)
            self._click_google_next()
        elif sub_state == "password_entry":
            if not password:
                raise ManualInterventionRequired(
                    "Google sign-in requires a password (profile.password or FORMPILOT_PASSWORD)"
                )
            inspector.page.locator('input[type="password"]:visible').first.fill(password)
            inspector.wait(300)
            self._click_google_next()
        else:
            if not self._act(build_sso_fallback_prompt(email, bool(password)), "sso"):
                self._log("⚠ Google 登录 Agent 兜底失败", "warn")
        inspector.wait(2000)

    def _click_google_next(self) -> None:
        if not self.inspector.evaluate(_CLICK_BUTTON_TEXT_JS, ["next"]):
            self._act('Click the "Next" button.', "sso")

    # ---- verification code ----

    def handle_verification_code(self) -> None:
        self._log("需要验证码，打开邮箱查找...")
        mail_page = self.inspector.page.context.new_page()
        try:
            mail_page.goto(MAIL_INBOX_URL, wait_until="domcontentloaded")
            mail_page.wait_for_timeout(3000)
            body = mail_page.evaluate("() => document.body.innerText") or ""
        finally:
            mail_page.close()

        code = extract_verification_code(str(body))
        if not code:
            raise RuntimeError("Could not find verification code in mailbox")
        self._log(f"✓ 找到验证码（{len(code)} 位）")
        if not self._act(build_verification_code_prompt(code), "verification_code"):
            raise RuntimeError("Failed to enter verification code")
        self._settle()

    # ---- phone 2FA / challenge ----

    def handle_phone_2fa(self) -> None:
        """等待人工在浏览器里完成验证；URL 离开挑战页即返回，超时抛 ManualInterventionRequired。"""
        url = self._url()
        description = describe_challenge(url)
        timeout_ms = self.settings.challenge_timeout_ms
        poll_ms = max(1, self.settings.challenge_poll_ms)
        self._log(f"⏳ {description}，最多等待 {timeout_ms // 1000}s", "warn")

        waited = 0
        while waited < timeout_ms:
            self.inspector.wait(poll_ms)
            waited += poll_ms
            if not self._still_on_challenge(self._url()):
                self._log("✓ 验证已由人工完成，继续")
                self._settle()
                return
        raise ManualInterventionRequired(f"{description} (not cleared within {timeout_ms // 1000}s)")

    def _still_on_challenge(self, url: str) -> bool:
        state = self.config.detect_page_by_url(url)
        if state is not None:
            return state.page_type == "phone_2fa"
        return "/challenge/" in url or "recaptcha" in url

    # ---- account creation ----

    def handle_account_creation(self, profile: dict) -> None:
        self._log("注册页，填写账号信息...")
        password = get_applicant_password(profile)
        if not password:
            raise ManualInterventionRequired(
                "Account creation requires a password (profile.password or FORMPILOT_PASSWORD)"
            )
        inspector = self.inspector
        inspector.evaluate(
            _FILL_EMAIL_JS, {"email": str(profile.get("email") or ""), "onlyEmpty": True}
        )
        inspector.evaluate(_FILL_PASSWORDS_JS, {"password": password, "all": True})
        inspector.wait(300)

        if not self._act(build_account_creation_prompt(self.ctx.data_prompt), "account_creation"):
            if int(inspector.evaluate(_PASSWORD_COUNT_JS) or 0) == 0:
                self._log("act() 报告失败，但页面已离开注册页，继续")
                return
            raise RuntimeError("Failed to create account")
        self._settle()
