"""
答案匹配（字段标签 → QA Map 答案）

五轮匹配，命中即返回：
1. 规范化后完全相等
2. 标签包含 key（处理 "First Name *" / "Required" 之类噪声）
3. key 包含短标签（"Gender"）
4. 词重叠：标签中所有区分性词都必须出现在 key 中
5. 词干重叠：最宽松的兜底
"""

from __future__ import annotations

import re
from typing import Optional

from ..config import MatcherThresholds

GENERIC_WORDS = frozenset(
    {
        "name",
        "number",
        "address",
        "date",
        "line",
        "code",
        "url",
        "type",
        "level",
        "status",
        "field",
        "info",
        "the",
        "your",
        "please",
        "enter",
        "select",
        "provide",
    }
)

_STEM_SUFFIX_RE = re.compile(
    r"(ating|ting|ing|tion|sion|ment|ness|able|ible|ed|ly|er|est|ies|es|s)$"
)
_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")

_YES_WORDS = {"yes", "y", "true", "checked", "agree", "i agree"}
_NO_WORDS = {"no", "n", "false", "unchecked"}


def normalize_label(text: str) -> str:
    return " ".join(_NON_ALNUM_RE.sub("", (text or "").lower()).split())


def _stem(word: str) -> str:
    return _STEM_SUFFIX_RE.sub("", word)


def find_best_answer(
    label: str,
    qa_map: dict[str, str],
    thresholds: Optional[MatcherThresholds] = None,
) -> Optional[str]:
    t = thresholds or MatcherThresholds()
    norm = normalize_label(label)
    if not norm:
        return None

    normalized_keys = [(normalize_label(q), a) for q, a in qa_map.items()]

    # Pass 1
    for key, answer in normalized_keys:
        if key == norm:
            return answer

    # Pass 2
    for key, answer in normalized_keys:
        if len(key) >= t.min_key_length and key in norm:
            return answer

    # Pass 3
    if len(norm) >= t.min_key_length:
        for key, answer in normalized_keys:
            if norm in key:
                return answer

    # Pass 4: "Middle Name" must not match "First Name" through the shared "name"
    label_words = [w for w in norm.split() if len(w) >= t.min_word_length]
    if not label_words:
        return None
    distinguishing = [w for w in label_words if w not in GENERIC_WORDS]

    for key, answer in normalized_keys:
        key_words = [w for w in key.split() if len(w) >= t.min_word_length]
        overlap = [w for w in label_words if w in key_words]
        if distinguishing:
            if all(w in key_words for w in distinguishing) and len(overlap) >= t.min_word_overlap:
                return answer
        elif len(overlap) >= t.min_word_overlap:
            return answer

    # Pass 5
    label_stems = {_stem(w) for w in norm.split() if len(w) > 3}
    best_answer: Optional[str] = None
    best_overlap = 0
    for key, answer in normalized_keys:
        key_stems = [_stem(w) for w in key.split() if len(w) > 3]
        overlap = sum(1 for s in key_stems if s in label_stems)
        if overlap >= t.min_stem_overlap and overlap > best_overlap:
            best_answer, best_overlap = answer, overlap
    return best_answer


def pick_option(options: list[str], answer: str) -> Optional[int]:
    """
    在下拉 / 单选选项中挑选与答案对应的下标。
    顺序：完全相等 → 前缀 → 包含；yes/no 同义词归一。
    """
    if not options or not answer:
        return None
    target = normalize_label(answer)
    if target in _YES_WORDS:
        target = "yes"
    elif target in _NO_WORDS:
        target = "no"
    if not target:
        return None
    normalized = [normalize_label(o) for o in options]

    for i, opt in enumerate(normalized):
        if opt == target:
            return i
    for i, opt in enumerate(normalized):
        if opt and (opt.startswith(target) or target.startswith(opt)):
            # "no" must not pick "none of the above" / "not a veteran" by prefix alone
            if len(target) <= 3 and not re.match(rf"^{re.escape(target)}\b", opt):
                continue
            return i
    if len(target) > 3:
        for i, opt in enumerate(normalized):
            if opt and (target in opt or (len(opt) > 3 and opt in target)):
                return i
    return None


def answer_means_checked(answer: Optional[str]) -> bool:
    return normalize_label(answer or "") in _YES_WORDS


def derive_education_level(degree: str) -> str:
    """自由文本学位 → 常见下拉选项文案。"""
    d = (degree or "").lower().strip()
    if any(k in d for k in ("phd", "doctorate", "doctor of")):
        return "Doctorate"
    if "master" in d or d in ("mba", "ms", "ma", "msc"):
        return "Master's Degree"
    if "bachelor" in d or d in ("bs", "ba", "bsc"):
        return "Bachelor's Degree"
    if "associate" in d:
        return "Associate's Degree"
    if any(k in d for k in ("high school", "ged", "diploma")):
        return "High School or Equivalent"
    if "certificate" in d or "certification" in d:
        return "Professional Certificate"
    return degree
