from formpilot.config import OrchestratorSettings
from formpilot.core import orchestrator as orchestrator_module
from formpilot.core.errors import ManualInterventionRequired
from formpilot.core.orchestrator import LayeredOrchestrator
from formpilot.core.types import PageState, ScannedField, ScanResult
from formpilot.platforms.generic import GenericPlatformConfig


class _BrowserPage:
    def __init__(self):
        self.listeners = {}

    def on(self, event, handler):
        self.listeners[event] = handler

    def remove_listener(self, event, handler):
        self.listeners.pop(event, None)


class _Adapter:
    def __init__(self):
        self.url = "https://jobs.example.com/apply/1"
        self.page = _BrowserPage()

    def get_current_url(self):
        return self.url


class _Inspector:
    def __init__(self, adapter):
        self.adapter = adapter
        self.fp = "fp-0"

    def wait_for_settled(self, ms):
        pass

    def dismiss_cookie_banner(self):
        pass

    def fingerprint(self):
        return self.fp


class _Classifier:
    """Yields page states in order; exceptions are raised instead of returned."""

    def __init__(self, *states):
        self.states = list(states)

    def classify(self, ctx):
        item = self.states.pop(0) if len(self.states) > 1 else self.states[0]
        if isinstance(item, Exception):
            raise item
        return item


class _Pipeline:
    def __init__(self, config, inspector, gate, ctx, settings, log_fn=None):
        self.inspector = inspector
        self.ctx = ctx

    def fill_page(self, prompt, page_type, depth=0):
        self.ctx.dom_filled += 2
        # each fill moves the browser to a new page
        self.inspector.adapter.url += "/next"
        return "navigated"


def _orchestrator(monkeypatch, *states):
    monkeypatch.setattr(orchestrator_module, "FillPipeline", _Pipeline)
    adapter = _Adapter()
    orch = LayeredOrchestrator(adapter, GenericPlatformConfig(), settings=OrchestratorSettings())
    orch.inspector = _Inspector(adapter)
    orch.classifier = _Classifier(*states)
    return orch


class _Site:
    """Three-step application: two form pages, then a read-only review page."""

    PAGES = [
        ("personal_info", [("#first", "First Name"), ("#email", "Email Address")]),
        ("questions", [("#why", "Why do you want to join Acme?")]),
        ("review", []),
    ]

    def __init__(self):
        self.index = 0
        self.values: dict[str, str] = {}

    @property
    def url(self):
        return f"https://jobs.example.com/apply/step-{self.index}"

    @property
    def page_type(self):
        return self.PAGES[self.index][0]

    @property
    def fields(self):
        return self.PAGES[self.index][1]


class _SiteAdapter:
    def __init__(self, site):
        self.site = site
        self.page = _BrowserPage()
        self.agent_calls: list[str] = []

    def get_current_url(self):
        return self.site.url

    def act(self, instruction, timeout_ms=None):
        self.agent_calls.append(instruction)
        raise AssertionError("agent act should not run when every field has an answer")

    def extract(self, instruction, schema):
        self.agent_calls.append(instruction)
        raise AssertionError("agent extract should not run when the DOM tier classifies")


class _SiteInspector:
    def __init__(self, adapter):
        self.adapter = adapter
        self.site = adapter.site

    def wait_for_settled(self, ms):
        pass

    def dismiss_cookie_banner(self):
        return False

    def fingerprint(self):
        return f"step-{self.site.index}|{len(self.site.fields)}"

    def obvious_signals(self):
        return {}

    def is_healthy(self):
        return True

    def count_form_fields(self):
        return len(self.site.fields)

    def has_review_blocking_fields(self):
        return any(not self.site.values.get(s) for s, _label in self.site.fields)

    def is_review_structure(self):
        return self.site.page_type == "review"

    def clear_scan_tags(self):
        pass

    def scroll_to_bottom(self):
        pass

    def scroll_to(self, y, smooth=False):
        pass

    def scroll_y(self):
        return 0.0

    def content_scroll_max(self):
        return 0

    def has_submit_like_button(self):
        return False

    def wait(self, ms):
        pass


class _SiteConfig(GenericPlatformConfig):
    def __init__(self, site):
        self.site = site

    def detect_page_by_dom(self, inspector):
        return PageState(page_type=self.site.page_type, page_title=self.site.page_type.title())

    def scan_page_fields(self, inspector, *, step_ratio=0.7):
        fields = []
        for i, (selector, label) in enumerate(self.site.fields):
            value = self.site.values.get(selector, "")
            fields.append(
                ScannedField(
                    id=selector,
                    selector=selector,
                    kind="text",
                    label=label,
                    current_value=value,
                    absolute_y=100.0 * i,
                    filled=bool(value),
                )
            )
        return ScanResult(fields=fields, scroll_height=800, viewport_height=800)

    def fill_scanned_field(self, inspector, field, answer, log_fn=None):
        self.site.values[field.selector] = answer
        return True

    def check_required_checkboxes(self, inspector):
        return 0

    def click_next_button(self, inspector, gate=None):
        if self.site.page_type == "review":
            return "review_detected"
        if any(not self.site.values.get(s) for s, _label in self.site.fields):
            return "not_found"
        self.site.index += 1
        return "clicked"

    def detect_validation_errors(self, inspector):
        return False


def test_runs_until_review_page(monkeypatch):
    site = _Site()
    adapter = _SiteAdapter(site)
    inspector = _SiteInspector(adapter)
    monkeypatch.setattr(orchestrator_module, "PageInspector", lambda adapter, log_fn=None: inspector)
    orch = LayeredOrchestrator(adapter, _SiteConfig(site), settings=OrchestratorSettings())
    qa_map = {
        "First Name": "Ada",
        "Email Address": "ada@example.com",
        "Why do you want to join Acme?": "I like the mission.",
    }

    result = orch.run({"email": "ada@example.com"}, qa_map, "First Name: Ada")

    assert result.final_page == "review"
    assert result.success is True
    assert result.awaiting_user_review is True
    assert result.keep_browser_open is True
    assert result.pages_processed == 3
    assert result.dom_filled == 3
    assert result.llm_filled == 0
    assert result.agent_filled == 0
    assert adapter.agent_calls == []
    assert site.values == {
        "#first": "Ada",
        "#email": "ada@example.com",
        "#why": "I like the mission.",
    }


def test_same_page_three_times_is_stuck(monkeypatch):
    orch = _orchestrator(monkeypatch, PageState(page_type="unknown"))
    # the fill never changes the page
    monkeypatch.setattr(_Pipeline, "fill_page", lambda self, prompt, page_type, depth=0: "complete")

    result = orch.run({}, {}, "")
    assert result.final_page == "stuck"
    assert result.success is True
    assert result.awaiting_user_review is True
    assert result.pages_processed == 3


def test_confirmation_page_is_success_without_review(monkeypatch):
    orch = _orchestrator(monkeypatch, PageState(page_type="confirmation"))
    result = orch.run({}, {}, "")
    assert result.final_page == "confirmation"
    assert result.success is True
    assert result.awaiting_user_review is False


def test_error_page_reports_message(monkeypatch):
    orch = _orchestrator(monkeypatch, PageState(page_type="error", error_message="Position closed"))
    result = orch.run({}, {}, "")
    assert result.success is False
    assert "Position closed" in result.error
    assert result.keep_browser_open is False


def test_exceptions_become_error_results(monkeypatch):
    orch = _orchestrator(monkeypatch, RuntimeError("page crashed"))
    result = orch.run({}, {}, "")
    assert result.success is False
    assert result.final_page == "error"
    assert result.error == "page crashed"
    assert result.keep_browser_open is False


def test_manual_intervention_keeps_browser_open(monkeypatch):
    orch = _orchestrator(monkeypatch, ManualInterventionRequired("captcha"))
    result = orch.run({}, {}, "")
    assert result.success is False
    assert result.keep_browser_open is True


def test_resume_listener_is_detached(monkeypatch, tmp_path):
    orch = _orchestrator(monkeypatch, PageState(page_type="review"))
    resume = tmp_path / "cv.pdf"
    resume.write_bytes(b"%PDF")
    orch.run({}, {}, "", str(resume))
    assert orch.adapter.page.listeners == {}


def test_max_pages_stops_the_run(monkeypatch):
    orch = _orchestrator(monkeypatch, PageState(page_type="questions"))
    orch.settings = OrchestratorSettings(max_pages=2)
    result = orch.run({}, {}, "")
    assert result.final_page == "max_pages_reached"
    assert result.pages_processed == 2
