"""
Prompt 构建模块

职责：
- 统一构建交给 Agent 的自然语言指令（逐字段 / 批量 / 清理 / 升级 / 审核页复核 / 点击 Apply 等）
- 让填充管线与大段 prompt 文本解耦
"""

from __future__ import annotations

from typing import Optional

from .types import ScannedField

_KIND_ACTION = {
    "text": "Type",
    "select": "Select",
    "custom_dropdown": "Select",
    "radio": "Select",
    "aria_radio": "Select",
    "checkbox": "Check",
    "date": "Type",
    "contenteditable": "Type",
}

_ESCALATION_KIND_HINTS = {
    "custom_dropdown": (
        "This is a custom dropdown. Click it to open, find the correct option, and select it. "
        "If it has a search/autocomplete input, type the value first, wait for options to appear, "
        "then click the match."
    ),
    "select": "This is a dropdown menu. Click to open it, then select the correct option.",
    "contenteditable": "This is a rich text editor. Click into it and type the value.",
    "aria_radio": "This is a radio button group. Click the correct option.",
    "radio": "This is a radio button group. Click the correct option.",
    "checkbox": "This is a checkbox. Click it if it should be checked.",
    "date": "This is a date field. Enter the date in the format shown.",
    "text": "This is a text input field. Click into it and type the value.",
    "unknown": "Interact with this form control appropriately.",
}

REVIEW_VERIFICATION_SCHEMA = {
    "type": "object",
    "properties": {
        "is_final_review": {"type": "boolean"},
        "reason": {"type": "string"},
    },
    "required": ["is_final_review", "reason"],
}

REVIEW_VERIFICATION_PROMPT = """Look at this page carefully. I need to determine if this is the FINAL review/summary page of a job application, or if there are still more steps to complete.

A TRUE final review page:
- Shows a read-only summary of ALL your previously entered application data
- Has a "Submit" or "Submit Application" button as the final action
- Has NO more sections, steps, or pages left to fill out
- The application progress indicator (if any) shows you are at the last step

This is NOT the final review page if ANY of these are true:
- There are still more steps/sections visible in a sidebar, progress bar, or navigation that haven't been completed yet
- The page is asking you to make a choice (e.g. enable notifications, select preferences, agree to terms)
- There are form fields, radio buttons, toggles, checkboxes, or dropdowns that need interaction
- A progress indicator shows you are NOT at the final step
- The page has content to interact with beyond just reviewing submitted data

Set is_final_review to true ONLY if this is genuinely the last page before submission with nothing left to do except click Submit."""

APPLY_CLICK_PROMPT = (
    'Click the "Apply" or "Apply Now" button to start the job application. '
    "Your ONLY task is to click the apply button, nothing else. "
    "After clicking, report the task as done immediately. "
    "The page will navigate away, that is expected."
)

UPLOAD_CLICK_PROMPT = (
    "Click the resume/CV upload button or drag-and-drop area to open the file picker. "
    'Look for text like "Upload", "Attach", "Choose File", "Browse", "Add Resume", or a drag-and-drop zone. '
    "Click it ONCE, then report done immediately. Do NOT fill any other fields."
)


def _options_hint(options: list[str], limit: int, prefix: str) -> str:
    if not options:
        return ""
    return f" {prefix}: {', '.join(options[:limit])}"


def build_per_field_prompt(field: ScannedField, answer: Optional[str] = None) -> str:
    """逐字段模式：一条指令只处理一个字段。"""
    action = _KIND_ACTION.get(field.kind, "Fill in")

    if field.kind in ("custom_dropdown", "select"):
        if answer:
            return (
                f'{action} "{answer}" from the "{field.label}" dropdown. Click the dropdown to open it, '
                f'then find and click the option "{answer}". If it has a search input, type "{answer}" '
                "first, wait for matching options to appear, then click the match. Do NOT scroll the page."
            )
        hint = _options_hint(field.options, 8, "Available options")
        return (
            f'{action} the most reasonable option from the "{field.label}" dropdown.{hint} '
            "Click the dropdown to open it, then click the best option. Do NOT scroll the page."
        )

    if field.kind in ("radio", "aria_radio"):
        if answer:
            return f'Click the "{answer}" radio button for the "{field.label}" question. Do NOT scroll the page.'
        hint = _options_hint(field.options, 6, "Options")
        return f'Select the most appropriate radio button for "{field.label}".{hint} Do NOT scroll the page.'

    if field.kind == "checkbox":
        return f'Check the "{field.label}" checkbox. Do NOT scroll the page.'

    if answer:
        return (
            f'Click on the "{field.label}" input field and type "{answer}". '
            "Make sure to clear any existing text first. Do NOT scroll the page."
        )
    return f'Fill in the "{field.label}" input field with a reasonable value. Do NOT scroll the page.'


def build_batch_fill_prompt(fill_prompt: str, context: str, field_count: int) -> str:
    """批量视口模式：当前视口内所有未填字段合成一条指令。"""
    return f"""{fill_prompt}

FIELDS VISIBLE IN CURRENT VIEWPORT ({field_count} field(s) detected by scan):
{context}

Fill the fields listed above. They are currently visible and empty. Use the expected values shown where provided.

ADDITIONALLY: If you see any other visible empty required fields on screen (marked with * or "required") that are NOT listed above, fill those too. Some custom dropdowns or non-standard UI components may not appear in the scan. For dropdowns that don't have a text input, click them to open, then select the correct option.

CRITICAL: NEVER skip a [REQUIRED] field (marked with * or [REQUIRED]). If no exact data is available, use your best judgment to pick the most reasonable answer. For example, "Degree Status" → "Completed" or "Graduated", "Visa Status" → "Authorized to work". Required fields MUST be filled.

STUCK FIELD RULE: If you type a value into a dropdown/autocomplete field and NO matching options appear, the value is NOT available. Do NOT retry the same field or retype the same value. Clear the field, click somewhere else to close any popups, then move on. You get ONE attempt per field.

DROPDOWN NAVIGATION: For click-to-open dropdowns with a long option list, you MAY press ArrowDown to move through options within the dropdown, then press Enter or click to select. This scrolls within the dropdown only, not the page.

Do NOT scroll the page or click Next."""


def build_cleanup_prompt(fill_prompt: str, context: str, field_count: int) -> str:
    return f"""{fill_prompt}

FIELDS VISIBLE IN CURRENT VIEWPORT ({field_count} field(s) detected by scan):
{context}

Fill the fields listed above. They are currently visible and empty. Use the expected values shown where provided.

CRITICAL: NEVER skip a [REQUIRED] field (marked with * or [REQUIRED]). If no exact data is available, use your best judgment to pick the most reasonable answer.

Do NOT scroll the page or click Next."""


def build_escalation_prompt(
    field: ScannedField, answer: Optional[str], data_prompt: str
) -> str:
    """升级层：视觉能力更强的 Agent，一次只处理一个字段。"""
    hint = _ESCALATION_KIND_HINTS.get(field.kind, _ESCALATION_KIND_HINTS["unknown"])
    options = ""
    if field.options:
        more = ", ..." if len(field.options) > 20 else ""
        options = f"\nAvailable options: [{', '.join(field.options[:20])}{more}]"
    if answer:
        value_instruction = f'Fill it with: "{answer}"'
    else:
        value_instruction = (
            "Use your best judgment based on the applicant data below to pick the most reasonable value."
        )
    required = " [REQUIRED]" if field.is_required else ""

    return f"""You are filling out a job application form. Focus ONLY on the single field described below. Do NOT interact with any other fields, buttons, or navigation elements.

FIELD: "{field.label}"{required}
TYPE: {field.kind}{options}
INSTRUCTION: {value_instruction}

{hint}

RULES:
- Fill ONLY this one field, then stop immediately.
- Do NOT scroll the page or click Next/Submit.
- Do NOT interact with any other fields.
- If a dropdown has no matching option, select the closest reasonable match.
- ONE attempt only. Do not retry if it doesn't work.

APPLICANT DATA:
{data_prompt}"""


def build_account_creation_prompt(data_prompt: str) -> str:
    return f"""Fill out the remaining account creation fields, then click "Create Account", "Register", "Continue", or "Next".

The email and password fields should already be filled. Do NOT clear or retype them.

HOW TO FILL:
- Fill name and other fields from the data mapping below.
- If there are checkboxes for terms/conditions or privacy policy, check them.
- Report the task as done after clicking the registration button.

{data_prompt}"""


def build_sso_fallback_prompt(email: str, has_password: bool) -> str:
    if has_password:
        password_hint = '- If you see a "Password" field, type the password and click "Next".'
    else:
        password_hint = '- If you see a "Password" field, report the task as done (no password available).'
    return f"""This is a Google sign-in page. Move through the sign-in flow for "{email}":
- If you see a "Continue", "Confirm", or "Allow" button, click it to proceed.
- If you see the account "{email}" listed, click on it to select it.
- If you see an "Email or phone" field, type "{email}" and click "Next".
{password_hint}
- If you see a CAPTCHA or image challenge, report the task as done.
Click only ONE button, then report the task as done."""


def build_verification_code_prompt(code: str) -> str:
    return (
        f'Enter the verification code "{code}" into the verification code input field, then click the '
        '"Next", "Verify", "Continue", or "Submit" button. Report the task as done after clicking.'
    )
