import pytest

from formpilot.config import OrchestratorSettings
from formpilot.core import page_handlers as handlers_module
from formpilot.core.errors import ManualInterventionRequired
from formpilot.core.page_handlers import PageHandlers, extract_verification_code
from formpilot.core.types import RunContext
from formpilot.platforms.generic import GenericPlatformConfig


class _Adapter:
    def __init__(self, url):
        self.url = url

    def get_current_url(self):
        return self.url


class _MailPage:
    def __init__(self, body):
        self.body = body
        self.visited = []
        self.closed = False

    def goto(self, url, wait_until=None):
        self.visited.append(url)

    def wait_for_timeout(self, ms):
        pass

    def evaluate(self, script):
        return self.body

    def close(self):
        self.closed = True


class _Context:
    def __init__(self, mail_page):
        self.mail_page = mail_page

    def new_page(self):
        return self.mail_page


class _Page:
    def __init__(self, mail_page=None):
        self.context = _Context(mail_page)


class _Inspector:
    def __init__(self, url="https://jobs.example.com/apply", evaluations=None, page=None):
        self.adapter = _Adapter(url)
        self.evaluations = evaluations or {}
        self.page = page or _Page()
        self.waits = []
        self.on_wait = None
        self.settled = 0

    def evaluate(self, script, arg=None):
        return self.evaluations.get(script)

    def wait(self, ms):
        self.waits.append(ms)
        if self.on_wait:
            self.on_wait(self)

    def wait_for_settled(self, ms):
        self.settled += 1

    def strip_target_blank(self):
        pass


class _Gate:
    def __init__(self, result=True, on_act=None):
        self.result = result
        self.on_act = on_act
        self.calls = []

    def safe_act(self, instruction, label, *, visual=False, timeout_ms=None):
        self.calls.append((instruction, label, visual))
        if self.on_act:
            self.on_act()
        return self.result


def _handlers(inspector, gate=None, config=None, settings=None, ctx=None):
    return PageHandlers(
        config or GenericPlatformConfig(),
        inspector,
        gate or _Gate(),
        ctx or RunContext(data_prompt="First Name: Ada"),
        settings or OrchestratorSettings(),
    )


def test_extract_verification_code():
    assert extract_verification_code("Your verification code: 123456") == "123456"
    assert extract_verification_code("482913 is your security code") == "482913"
    assert extract_verification_code("Welcome to the team") is None


def test_phone_2fa_times_out_into_manual_intervention():
    inspector = _Inspector("https://accounts.google.com/v3/signin/challenge/ipp")
    settings = OrchestratorSettings(challenge_timeout_ms=15000, challenge_poll_ms=5000)
    handlers = _handlers(inspector, settings=settings)

    with pytest.raises(ManualInterventionRequired):
        handlers.handle_phone_2fa()
    assert inspector.waits == [5000, 5000, 5000]


def test_phone_2fa_returns_once_challenge_cleared():
    inspector = _Inspector("https://accounts.google.com/v3/signin/challenge/ipp")

    def human_solves(insp):
        insp.adapter.url = "https://jobs.example.com/apply/step2"

    inspector.on_wait = human_solves
    settings = OrchestratorSettings(challenge_timeout_ms=15000, challenge_poll_ms=5000)
    _handlers(inspector, settings=settings).handle_phone_2fa()
    assert inspector.waits == [5000]
    assert inspector.settled == 1


def test_job_listing_failure_without_navigation_raises():
    inspector = _Inspector()
    handlers = _handlers(inspector, gate=_Gate(result=False))
    with pytest.raises(RuntimeError):
        handlers.handle_job_listing()
    assert handlers.ctx.apply_clicked is False


def test_job_listing_failure_with_navigation_continues():
    inspector = _Inspector()

    def navigate():
        inspector.adapter.url = "https://jobs.example.com/apply/form"

    handlers = _handlers(inspector, gate=_Gate(result=False, on_act=navigate))
    handlers.handle_job_listing()
    assert handlers.ctx.apply_clicked is True


def test_job_listing_success_marks_apply_clicked():
    gate = _Gate()
    handlers = _handlers(_Inspector(), gate=gate)
    handlers.handle_job_listing()
    assert handlers.ctx.apply_clicked is True
    assert gate.calls[0][1] == "job_listing"
    assert gate.calls[0][2] is True


def test_account_creation_without_password_needs_a_human(monkeypatch):
    monkeypatch.delenv("FORMPILOT_PASSWORD", raising=False)
    with pytest.raises(ManualInterventionRequired):
        _handlers(_Inspector()).handle_account_creation({"email": "ada@example.com"})


def test_account_creation_failed_act_but_page_left(monkeypatch):
    monkeypatch.delenv("FORMPILOT_PASSWORD", raising=False)
    inspector = _Inspector(evaluations={handlers_module._PASSWORD_COUNT_JS: 0})
    gate = _Gate(result=False)
    _handlers(inspector, gate=gate).handle_account_creation(
        {"email": "ada@example.com", "password": "s3cret!"}
    )
    assert "First Name: Ada" in gate.calls[0][0]


def test_account_creation_failed_act_still_on_form_raises(monkeypatch):
    monkeypatch.setenv("FORMPILOT_PASSWORD", "from-env")
    inspector = _Inspector(evaluations={handlers_module._PASSWORD_COUNT_JS: 2})
    with pytest.raises(RuntimeError):
        _handlers(inspector, gate=_Gate(result=False)).handle_account_creation({"email": "a@b.c"})


def test_platform_login_short_circuits_generic_flow():
    class _Config(GenericPlatformConfig):
        def handle_login(self, inspector, gate, profile, log_fn=None):
            return True

    gate = _Gate()
    _handlers(_Inspector(), gate=gate, config=_Config()).handle_login({"email": "a@b.c"})
    assert gate.calls == []


def test_login_without_form_falls_back_to_agent():
    gate = _Gate()
    inspector = _Inspector(evaluations={handlers_module._LOGIN_FORM_STATE_JS: {}})
    _handlers(inspector, gate=gate).handle_login({"email": "a@b.c"})
    assert len(gate.calls) == 1
    assert gate.calls[0][1] == "login"


def test_sso_password_entry_without_password(monkeypatch):
    monkeypatch.delenv("FORMPILOT_PASSWORD", raising=False)
    inspector = _Inspector(
        "https://accounts.google.com/v3/signin/challenge/pwd",
        evaluations={handlers_module._SSO_STATE_JS: "password_entry"},
    )
    with pytest.raises(ManualInterventionRequired):
        _handlers(inspector).handle_sso_signin({"email": "a@b.c"})


def test_verification_code_read_from_mailbox():
    mail = _MailPage("Acme Careers\nYour verification code: 731904\nThanks")
    gate = _Gate()
    inspector = _Inspector(page=_Page(mail))
    _handlers(inspector, gate=gate).handle_verification_code()

    assert mail.closed is True
    assert mail.visited == [handlers_module.MAIL_INBOX_URL]
    assert '"731904"' in gate.calls[0][0]


def test_verification_code_missing_raises():
    mail = _MailPage("No new messages")
    with pytest.raises(RuntimeError):
        _handlers(_Inspector(page=_Page(mail))).handle_verification_code()
    assert mail.closed is True
