"""
通用启发式规则（纯函数，便于测试）：页面健康度、指纹拼装、URL 提示、挑战类型。
"""

from __future__ import annotations

import re
from dataclasses import dataclass

# 可见文本中出现这些模式说明页面可能把源码当文本渲染了
CODE_PATTERNS: tuple[re.Pattern, ...] = tuple(
    re.compile(p)
    for p in (
        r"\bfunction\s*\(",
        r"\bconst\s+\w+",
        r"\bvar\s+\w+",
        r"\blet\s+\w+",
        r"\bimport\s+",
        r"\bexport\s+",
        r"\brequire\s*\(",
        r"\bmodule\.exports",
        r"=>\s*\{",
        r"\}\s*\)",
        r"\bclass\s+\w+",
        r"\bnew\s+\w+",
        r"\btry\s*\{",
        r"\bcatch\s*\(",
        r"\bthrow\s+",
        r"\bif\s*\(",
        r"\belse\s*\{",
        r"\breturn\s+",
        r"\bwindow\.",
        r"\bdocument\.",
        r"\bconsole\.",
        r"[{};]\s*[{};]",
    )
)

MIN_TEXT_FOR_HEALTH_CHECK = 200


@dataclass
class PageHealth:
    healthy: bool
    code_hits: int
    visible_ui_count: int


def count_code_hits(visible_text: str) -> int:
    return sum(len(p.findall(visible_text or "")) for p in CODE_PATTERNS)


def assess_page_health(visible_text: str, visible_ui_count: int) -> PageHealth:
    """源码泄漏检测：代码特征多、可见 UI 控件少则视为页面损坏。"""
    text = visible_text or ""
    if len(text) < MIN_TEXT_FOR_HEALTH_CHECK:
        return PageHealth(healthy=True, code_hits=0, visible_ui_count=visible_ui_count)
    hits = count_code_hits(text)
    healthy = True
    if hits >= 15 and visible_ui_count < 3:
        healthy = False
    elif hits >= 10 and hits > visible_ui_count * 3:
        healthy = False
    return PageHealth(healthy=healthy, code_hits=hits, visible_ui_count=visible_ui_count)


def compose_page_fingerprint(heading: str, visible_field_count: int, active_text: str) -> str:
    return (
        f"{(heading or '').strip()[:60]}"
        f"|fields:{int(visible_field_count)}"
        f"|active:{(active_text or '').strip()[:40]}"
    )


def build_url_hints(url: str) -> list[str]:
    """为分类提示词生成 URL 语境。"""
    u = (url or "").lower()
    hints: list[str] = []
    if "signin" in u or "login" in u or "accounts.google.com" in u:
        hints.append("The URL indicates this is a login/sign-in page.")
    if "review" in u or "summary" in u:
        hints.append("The URL suggests this may be a review/summary page.")
    if "job" in u or "position" in u or "career" in u:
        hints.append("The URL is job-related.")
    if "apply" in u:
        hints.append("The URL contains 'apply'.")
    return hints


def describe_challenge(url: str) -> str:
    u = (url or "").lower()
    if "recaptcha" in u or "captcha" in u:
        return "Captcha challenge detected - manual solve required"
    if "ipp" in u or "/challenge/" in u:
        return "2FA phone verification detected - manual completion required"
    return "2FA security challenge detected - manual completion required"


def is_rate_limit_message(message: str) -> bool:
    s = message or ""
    return "429" in s or "rate_limit" in s.lower() or "Too Many Requests" in s


def dedupe_label_key(label: str) -> str:
    """逐字段模式下的重复标签判定键。"""
    return re.sub(r"[^a-z0-9]", "", (label or "").lower())


def exceeds_scroll_delta(before: float, after: float, threshold: float = 50) -> bool:
    return abs((after or 0) - (before or 0)) > threshold
