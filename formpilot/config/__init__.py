"""
Configuration module for loading runtime settings and the applicant profile.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml


# Config directory path
CONFIG_DIR = Path(__file__).parent
SETTINGS_PATH = CONFIG_DIR.parent / "config.yaml"
APPLICANT_PROFILE_PATH = CONFIG_DIR / "applicant_profile.yaml"


_settings_cache: Optional[dict] = None
_applicant_cache: Optional[dict] = None


@dataclass
class MatcherThresholds:
    """Answer matcher tuning (label ↔ Q&A key)."""

    min_key_length: int = 3
    min_word_length: int = 3
    min_word_overlap: int = 2
    min_stem_overlap: int = 2


@dataclass
class OrchestratorSettings:
    """
    Every numeric limit of the orchestration loop.
    Defaults mirror production values; config.yaml `orchestrator:` overrides them.
    """

    max_pages: int = 15
    max_same_page: int = 3
    page_transition_wait_ms: int = 3000
    min_llm_gap_ms: int = 5000
    rate_limit_backoff_ms: int = 30000
    act_timeout_ms: int = 60000
    max_fill_depth: int = 3
    max_fill_cycles: int = 5
    max_llm_calls_per_page: int = 100
    max_consecutive_failures: int = 3
    max_scroll_steps: int = 10
    scroll_step_ratio: float = 0.7
    max_cleanup_calls: int = 5
    escalation_budget_cap: float = 0.50
    escalation_max_fields: int = 15
    escalation_act_timeout_ms: int = 30000
    escalation_min_remaining_budget: float = 0.02
    challenge_timeout_ms: int = 120000
    challenge_poll_ms: int = 5000
    matcher: MatcherThresholds = field(default_factory=MatcherThresholds)


def _read_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except Exception as e:
        print(f"❌ Failed to load {path.name}: {e}")
        return {}


def load_settings(force_reload: bool = False) -> dict:
    """
    Load formpilot/config.yaml (browser / llm / orchestrator / cost / files).
    Caches the result for performance.
    """
    global _settings_cache

    if _settings_cache is not None and not force_reload:
        return _settings_cache
    _settings_cache = _read_yaml(SETTINGS_PATH)
    return _settings_cache


def load_applicant_profile(force_reload: bool = False) -> dict:
    """
    Load the applicant profile YAML.

    Returns:
        dict: {"profile": {...}, "qa_overrides": {...}}
    """
    global _applicant_cache

    if _applicant_cache is not None and not force_reload:
        return _applicant_cache

    if not APPLICANT_PROFILE_PATH.exists():
        print(f"⚠️ Applicant profile not found: {APPLICANT_PROFILE_PATH}")
        return {"profile": {}, "qa_overrides": {}}

    data = _read_yaml(APPLICANT_PROFILE_PATH)
    _applicant_cache = {
        "profile": data.get("profile") or {},
        "qa_overrides": {
            str(k): str(v) for k, v in (data.get("qa_overrides") or {}).items()
        },
    }
    return _applicant_cache


def get_applicant_password(profile: dict | None = None) -> str:
    """Profile password first, then FORMPILOT_PASSWORD."""
    profile = profile if profile is not None else load_applicant_profile()["profile"]
    return str(profile.get("password") or os.getenv("FORMPILOT_PASSWORD") or "")


def get_default_resume_path() -> Optional[str]:
    files_cfg = load_settings().get("files", {}) or {}
    raw = files_cfg.get("default_resume")
    if not raw:
        return None
    path = Path(str(raw)).expanduser()
    if not path.is_absolute():
        path = CONFIG_DIR.parent / path
    return str(path) if path.exists() else None


def get_llm_settings() -> dict[str, Any]:
    llm_cfg = dict(load_settings().get("llm", {}) or {})
    llm_cfg.setdefault("model", "gpt-4o")
    llm_cfg.setdefault("fallback_models", [llm_cfg["model"]])
    llm_cfg.setdefault("secondary_model", None)
    llm_cfg.setdefault("screenshot_max_width", 1280)
    llm_cfg.setdefault("max_act_steps", 12)
    return llm_cfg


def get_cost_settings() -> dict[str, Any]:
    cost_cfg = dict(load_settings().get("cost", {}) or {})
    cost_cfg.setdefault("quality_preset", "balanced")
    cost_cfg.setdefault("max_actions", None)
    return cost_cfg


def build_orchestrator_settings(raw: dict | None) -> OrchestratorSettings:
    """Build settings from a mapping, ignoring unknown keys."""
    raw = dict(raw or {})
    matcher_raw = raw.pop("matcher", None) or {}
    known = {f.name for f in fields(OrchestratorSettings)} - {"matcher"}
    kwargs = {k: v for k, v in raw.items() if k in known}
    matcher_known = {f.name for f in fields(MatcherThresholds)}
    matcher = MatcherThresholds(
        **{k: v for k, v in matcher_raw.items() if k in matcher_known}
    )
    return OrchestratorSettings(matcher=matcher, **kwargs)


def get_orchestrator_settings() -> OrchestratorSettings:
    return build_orchestrator_settings(load_settings().get("orchestrator"))
