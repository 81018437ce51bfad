from formpilot.config import MatcherThresholds
from formpilot.core.answer_matcher import (
    answer_means_checked,
    derive_education_level,
    find_best_answer,
    normalize_label,
    pick_option,
)

QA = {
    "First Name": "Ada",
    "Last Name": "Lovelace",
    "Email Address": "ada@example.com",
    "What is your gender?": "Female",
    "Zip Code": "94107",
}


def test_normalize_label_strips_punctuation_and_case():
    assert normalize_label("  First   Name *") == "first name"
    assert normalize_label("") == ""


def test_exact_and_noisy_labels_match():
    assert find_best_answer("First Name", QA) == "Ada"
    assert find_best_answer("First Name *", QA) == "Ada"
    assert find_best_answer("Email Address (required)", QA) == "ada@example.com"


def test_short_label_matches_longer_key():
    assert find_best_answer("Gender", QA) == "Female"


def test_generic_word_does_not_cross_match():
    # "Middle Name" shares only the generic word "name" with "First Name"
    assert find_best_answer("Middle Name", QA) is None


def test_empty_label_returns_none():
    assert find_best_answer("***", QA) is None


def test_thresholds_are_configurable():
    assert find_best_answer("Zip", QA) == "94107"
    assert find_best_answer("Zip", QA, MatcherThresholds(min_key_length=4)) is None


def test_pick_option_prefers_exact_then_prefix():
    assert pick_option(["Yes", "No"], "true") == 0
    assert pick_option(["None of the above", "No"], "No") == 1
    assert pick_option(["United States of America", "Canada"], "United States") == 0


def test_pick_option_short_answer_needs_word_boundary():
    assert pick_option(["None of the above", "Not a veteran"], "no") is None
    assert pick_option([], "yes") is None


def test_answer_means_checked():
    assert answer_means_checked("Yes") is True
    assert answer_means_checked("I agree") is True
    assert answer_means_checked("No") is False
    assert answer_means_checked(None) is False


def test_derive_education_level():
    assert derive_education_level("Master of Science") == "Master's Degree"
    assert derive_education_level("BS") == "Bachelor's Degree"
    assert derive_education_level("PhD in Physics") == "Doctorate"
    assert derive_education_level("Bootcamp") == "Bootcamp"
