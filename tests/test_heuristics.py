from formpilot.core.errors import BudgetExceededError, is_fatal_error
from formpilot.core.heuristics import (
    assess_page_health,
    build_url_hints,
    compose_page_fingerprint,
    dedupe_label_key,
    describe_challenge,
    exceeds_scroll_delta,
    is_rate_limit_message,
)


def test_short_text_is_always_healthy():
    health = assess_page_health("const a = 1;", 0)
    assert health.healthy is True
    assert health.code_hits == 0


def test_source_leak_is_unhealthy():
    text = "const a = 1; function (x) { return x; } " * 10
    health = assess_page_health(text, 0)
    assert health.healthy is False
    assert health.code_hits >= 15


def test_normal_form_text_is_healthy():
    text = "Please enter your first name, last name and email address below. " * 5
    assert assess_page_health(text, 12).healthy is True


def test_compose_page_fingerprint():
    assert (
        compose_page_fingerprint("  Personal Info ", 5, "Step 2")
        == "Personal Info|fields:5|active:Step 2"
    )


def test_build_url_hints():
    hints = build_url_hints("https://acme.com/careers/login")
    assert any("login" in h for h in hints)
    assert any("job-related" in h for h in hints)
    assert build_url_hints("") == []


def test_describe_challenge():
    assert "Captcha" in describe_challenge("https://accounts.google.com/recaptcha")
    assert "phone" in describe_challenge("https://accounts.google.com/v3/signin/challenge/ipp")
    assert "security challenge" in describe_challenge("https://accounts.google.com/x")


def test_rate_limit_and_dedupe_helpers():
    assert is_rate_limit_message("Error code: 429") is True
    assert is_rate_limit_message("Too Many Requests") is True
    assert is_rate_limit_message("timeout") is False
    assert dedupe_label_key("First Name *") == "firstname"


def test_exceeds_scroll_delta():
    assert exceeds_scroll_delta(0, 51) is True
    assert exceeds_scroll_delta(0, 50) is False
    assert exceeds_scroll_delta(400, 100) is True


def test_is_fatal_error_by_type_and_message():
    assert is_fatal_error(BudgetExceededError("Budget exceeded: x")) is True
    assert is_fatal_error(RuntimeError("wrapped: Action limit exceeded: 51 > 50")) is True
    assert is_fatal_error(RuntimeError("element not found")) is False
