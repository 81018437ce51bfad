from formpilot.core.fsm_orchestrator import (
    build_terminal_result,
    decide_fill_outcome_path,
    decide_keep_browser_open,
    decide_page_route,
    progress_step_for_page,
)
from formpilot.core.loop_guard import StuckDetector, page_signature
from formpilot.core.types import RunContext


def _route(page_type, login_attempted=False, custom=False):
    return decide_page_route(
        page_type, login_attempted=login_attempted, needs_custom_experience_handler=custom
    )


def test_decide_page_route_handlers_and_terminals():
    assert _route("job_listing") == "job_listing"
    assert _route("login") == "login"
    assert _route("sso_signin") == "sso_signin"
    assert _route("verification_code") == "verification_code"
    assert _route("phone_2fa") == "phone_2fa"
    assert _route("review") == "terminal_review"
    assert _route("confirmation") == "terminal_confirmation"
    assert _route("error") == "terminal_error"


def test_account_creation_tries_login_first():
    assert _route("account_creation") == "login"
    assert _route("account_creation", login_attempted=True) == "account_creation"


def test_resume_pages_use_custom_handler_only_when_declared():
    assert _route("experience", custom=True) == "custom_experience"
    assert _route("resume_upload", custom=True) == "custom_experience"
    assert _route("experience") == "fill_form"
    assert _route("personal_info", custom=True) == "fill_form"
    assert _route("unknown") == "fill_form"


def test_progress_step_and_fill_outcome():
    assert progress_step_for_page("experience") == "uploading_resume"
    assert progress_step_for_page("questions") == "filling_form"
    assert decide_fill_outcome_path("review") == "terminal_review"
    assert decide_fill_outcome_path("navigated") == "continue"
    assert decide_fill_outcome_path("complete") == "continue"


def test_decide_keep_browser_open():
    assert decide_keep_browser_open(
        awaiting_user_review=True, manual_intervention=False, pages_processed=1, failed=False
    )
    assert decide_keep_browser_open(
        awaiting_user_review=False, manual_intervention=True, pages_processed=1, failed=True
    )
    assert decide_keep_browser_open(
        awaiting_user_review=False, manual_intervention=False, pages_processed=3, failed=True
    )
    assert not decide_keep_browser_open(
        awaiting_user_review=False, manual_intervention=False, pages_processed=2, failed=True
    )


def test_build_terminal_result_outcomes():
    ctx = RunContext(platform="workday", pages_processed=4, dom_filled=7, llm_filled=2, total_fields=12)

    review = build_terminal_result("review", ctx)
    assert review.success and review.awaiting_user_review and review.keep_browser_open
    assert review.dom_filled == 7
    assert review.platform == "workday"

    stuck = build_terminal_result("stuck", ctx)
    assert stuck.success and stuck.awaiting_user_review

    confirmation = build_terminal_result("confirmation", ctx)
    assert confirmation.success and not confirmation.awaiting_user_review
    assert not confirmation.keep_browser_open

    error = build_terminal_result("error", ctx, error="boom")
    assert not error.success
    assert error.error == "boom"
    assert error.keep_browser_open  # failed after more than 2 pages


def test_manual_intervention_keeps_browser_open_on_first_page():
    ctx = RunContext(pages_processed=1)
    result = build_terminal_result("error", ctx, error="captcha", manual_intervention=True)
    assert not result.success
    assert result.keep_browser_open


def test_stuck_detector_counts_consecutive_signatures():
    detector = StuckDetector(max_same=3)
    sig = page_signature("https://a/apply", "Questions|fields:4|active:")
    assert detector.observe(sig) is False
    assert detector.observe(sig) is False
    assert detector.observe(sig) is True
    assert detector.same_count == 3


def test_stuck_detector_resets_on_new_signature():
    detector = StuckDetector(max_same=2)
    assert detector.observe("a|1") is False
    assert detector.observe("b|1") is False
    assert detector.observe("a|1") is False
    assert detector.observe("a|1") is True
    detector.reset()
    assert detector.same_count == 0
    assert page_signature(None, None) == "|"
