
from formpilot.core.types import ActResult
from formpilot.platforms import (
    GenericPlatformConfig,
    detect_platform_from_url,
    get_platform_config,
    list_platforms,
)
from formpilot.platforms.workday import STRICT_NEXT_PROMPT, WorkdayPlatformConfig

PROFILE = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "email": "ada@example.com",
    "phone": "555-0100",
    "address": {"street": "1 Main St", "city": "Springfield", "zip": "94107", "country": "United States"},
    "education": [{"degree": "Master of Science", "school": "State University"}],
    "experience": [
        {"title": "Engineer", "company": "Acme", "start_date": "2020-03", "currently_work_here": True}
    ],
}


class _FakeInspector:
    def __init__(self, evaluate_result=None):
        self.evaluate_result = evaluate_result
        self.scrolled_to: list[float] = []
        self.waits: list[int] = []

    def evaluate(self, script, arg=None):
        return self.evaluate_result

    def scroll_to(self, y, smooth=False):
        self.scrolled_to.append(y)

    def wait(self, ms):
        self.waits.append(ms)


class _FakeGate:
    def __init__(self, ok=True):
        self.ok = ok
        self.calls: list[tuple[str, str, bool]] = []

    def safe_act(self, instruction, label, *, visual=False, timeout_ms=None):
        self.calls.append((instruction, label, visual))
        return self.ok


def test_registry_detects_platform_from_url():
    assert detect_platform_from_url("https://acme.wd5.myworkdayjobs.com/en-US/job/1").platform_id == "workday"
    assert detect_platform_from_url("https://www.amazon.jobs/en/jobs/123").platform_id == "amazon"
    assert detect_platform_from_url("https://boards.example.com/jobs/1").platform_id == "generic"
    assert get_platform_config("nope").platform_id == "generic"
    ids = {p["platform_id"] for p in list_platforms()}
    assert {"generic", "workday", "amazon"} <= ids


def test_generic_detects_google_pages_by_url():
    config = GenericPlatformConfig()
    assert config.detect_page_by_url("https://acme.com/apply") is None
    assert config.detect_page_by_url("https://accounts.google.com/v3/signin/identifier").page_type == "sso_signin"
    assert config.detect_page_by_url("https://accounts.google.com/v3/signin/challenge/ipp").page_type == "phone_2fa"


def test_amazon_url_rules():
    config = get_platform_config("amazon")
    assert config.detect_page_by_url("https://www.amazon.com/ap/signin?x=1").page_type == "login"
    state = config.detect_page_by_url("https://www.amazon.jobs/en/jobs/2712345/sde")
    assert state.page_type == "job_listing"
    assert state.has_apply_button is True
    assert config.detect_page_by_url("https://www.amazon.jobs/en/search") is None


def test_workday_challenge_description():
    config = WorkdayPlatformConfig()
    assert config.describe_google_challenge("https://accounts.google.com/recaptcha").startswith("CAPTCHA")
    state = config.detect_page_by_url("https://accounts.google.com/v3/signin/challenge/ipp")
    assert state.page_type == "phone_2fa"
    assert "Phone/SMS" in state.page_title


def test_generic_qa_map_and_data_prompt():
    config = GenericPlatformConfig()
    qa = config.build_qa_map(PROFILE, {"Are you willing to relocate?": "No"})
    assert qa["First Name"] == "Ada"
    assert qa["City"] == "Springfield"
    assert qa["Education Level"] == "Master's Degree"
    assert qa["Are you willing to relocate?"] == "No"

    prompt = config.build_data_prompt(PROFILE, {"Favorite language?": "Python"})
    assert "- First Name / Given Name: Ada" in prompt
    assert "Engineer at Acme, 2020-03 to Present" in prompt
    assert '"Favorite language?" → Python' in prompt


def test_workday_qa_map_uses_self_id_defaults():
    qa = WorkdayPlatformConfig().build_qa_map(PROFILE, {})
    assert qa["Legal First Name"] == "Ada"
    assert qa["Veteran Status"] == "I am not a protected veteran"
    assert qa["Full Name"] == "Ada Lovelace"
    assert "Ethnicity" not in qa


def test_workday_page_prompt_carries_data_block():
    prompt = WorkdayPlatformConfig().build_page_prompt("personal_info", "DATA MAPPING:\n- x")
    assert "My Information" in prompt
    assert prompt.endswith("DATA MAPPING:\n- x")


def test_generic_has_no_custom_experience_handler():
    config = GenericPlatformConfig()
    assert config.needs_custom_experience_handler is False
    gate = _FakeGate()
    assert config.handle_experience_page(_FakeInspector(), gate, PROFILE, "") is None
    assert gate.calls == []
    assert config.handle_login(_FakeInspector(), _FakeGate(), PROFILE) is False


def test_workday_next_falls_back_to_agent():
    config = WorkdayPlatformConfig()
    gate = _FakeGate(ok=True)
    assert config.click_next_button(_FakeInspector("not_found"), gate) == "clicked"
    assert gate.calls == [(STRICT_NEXT_PROMPT, "workday-next", True)]

    assert config.click_next_button(_FakeInspector("not_found"), _FakeGate(ok=False)) == "not_found"
    assert config.click_next_button(_FakeInspector("review_detected"), gate) == "review_detected"
    assert config.click_next_button(_FakeInspector("not_found"), None) == "not_found"


def test_workday_experience_handler_is_one_visual_act():
    config = WorkdayPlatformConfig()
    gate = _FakeGate()
    config.handle_experience_page(_FakeInspector(), gate, PROFILE, "DATA", resume_path=None)
    assert len(gate.calls) == 1
    instruction, label, visual = gate.calls[0]
    assert label == "workday-experience"
    assert visual is True
    assert "Job Title: Engineer" in instruction
    assert "03/2020" in instruction


def test_workday_dom_login_detection():
    config = WorkdayPlatformConfig()
    inspector = _FakeInspector({"hasSsoButton": True, "formFieldCount": 1})
    assert config.detect_page_by_dom(inspector).page_type == "login"

    inspector = _FakeInspector({"hasSsoButton": True, "formFieldCount": 8})
    assert config.detect_page_by_dom(inspector) is None

    inspector = _FakeInspector({"isCreateAccountView": True})
    assert config.detect_page_by_dom(inspector).page_type == "account_creation"


def test_act_result_defaults():
    assert ActResult(success=True).message == ""
