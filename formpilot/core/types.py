"""
核心数据类型

职责：
- 页面类型 / 字段类型字面量
- PageState / ScannedField / ScanResult / ActResult
- RunContext（一次运行内的计数与标志）与 OrchestratorResult
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal, Optional, get_args

PageType = Literal[
    "job_listing",
    "login",
    "sso_signin",
    "verification_code",
    "phone_2fa",
    "account_creation",
    "personal_info",
    "experience",
    "resume_upload",
    "questions",
    "voluntary_disclosure",
    "self_identify",
    "review",
    "confirmation",
    "error",
    "unknown",
]

PAGE_TYPES: tuple[str, ...] = get_args(PageType)

FieldKind = Literal[
    "text",
    "select",
    "custom_dropdown",
    "radio",
    "aria_radio",
    "checkbox",
    "date",
    "file",
    "upload_button",
    "contenteditable",
]

_PAGE_TYPE_ALIASES = {"google_signin": "sso_signin"}


@dataclass
class PageState:
    page_type: str = "unknown"
    page_title: str = ""
    has_apply_button: bool = False
    has_next_button: bool = False
    has_submit_button: bool = False
    has_sso_button: bool = False
    error_message: str = ""


def coerce_page_state(raw: Any, *, default_title: str = "") -> PageState:
    """
    将 extract() 返回的松散 dict 收敛为 PageState。
    未知的 page_type 一律落到 unknown。
    """
    if isinstance(raw, PageState):
        return raw
    if not isinstance(raw, dict):
        return PageState(page_type="unknown", page_title=default_title)
    page_type = str(raw.get("page_type") or "unknown").strip().lower()
    page_type = _PAGE_TYPE_ALIASES.get(page_type, page_type)
    if page_type not in PAGE_TYPES:
        page_type = "unknown"
    return PageState(
        page_type=page_type,
        page_title=str(raw.get("page_title") or default_title),
        has_apply_button=bool(raw.get("has_apply_button", False)),
        has_next_button=bool(raw.get("has_next_button", False)),
        has_submit_button=bool(raw.get("has_submit_button", False)),
        has_sso_button=bool(
            raw.get("has_sso_button", raw.get("has_sign_in_with_google", False))
        ),
        error_message=str(raw.get("error_message") or ""),
    )


@dataclass
class ScannedField:
    id: str
    selector: str
    kind: str
    label: str
    current_value: str = ""
    absolute_y: float = 0.0
    is_required: bool = False
    options: list[str] = field(default_factory=list)
    matched_answer: Optional[str] = None
    filled: bool = False
    platform_meta: dict[str, Any] = field(default_factory=dict)


@dataclass
class ScanResult:
    fields: list[ScannedField] = field(default_factory=list)
    scroll_height: int = 0
    viewport_height: int = 0


@dataclass
class ActResult:
    success: bool
    message: str = ""
    duration_ms: int = 0


@dataclass
class RunContext:
    """单次运行的计数器与标志，由编排器持有并传给各组件。"""

    platform: str = "generic"
    data_prompt: str = ""
    qa_map: dict[str, str] = field(default_factory=dict)
    resume_path: Optional[str] = None
    pages_processed: int = 0
    dom_filled: int = 0
    llm_filled: int = 0
    agent_filled: int = 0
    total_fields: int = 0
    login_attempted: bool = False
    apply_clicked: bool = False
    escalation_disabled: bool = False


@dataclass
class OrchestratorResult:
    success: bool
    pages_processed: int = 0
    dom_filled: int = 0
    llm_filled: int = 0
    agent_filled: int = 0
    total_fields: int = 0
    awaiting_user_review: bool = False
    keep_browser_open: bool = False
    final_page: str = "unknown"
    platform: str = "generic"
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)
