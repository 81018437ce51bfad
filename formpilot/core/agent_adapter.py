"""
自动化适配器（Playwright + OpenAI 视觉模型）

职责：
- 浏览器原语：get_current_url / navigate / evaluate
- act(instruction)：截图 + 可交互元素列表 → 模型决策 → Playwright 执行，有限步循环
- extract(instruction, schema)：截图 + 可见文本 → 模型返回 JSON
- 每次模型调用向 CostTracker 记账，每个执行动作计入动作上限
"""

from __future__ import annotations

import base64
import io
import json
import os
import re
import time
from typing import Any, Callable, Optional

from openai import OpenAI
from PIL import Image
from playwright.sync_api import Page

from .cost import CostTracker
from .llm_runtime import run_chat_with_fallback
from .progress import ProgressTracker
from .types import ActResult

LogFn = Callable[[str, str], None]

SCREENSHOT_JPEG_QUALITY = 70

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)

# USD per 1K tokens (input, output)
MODEL_PRICES: dict[str, tuple[float, float]] = {
    "gpt-4o": (0.0025, 0.01),
    "gpt-4o-mini": (0.00015, 0.0006),
    "gpt-4.1": (0.002, 0.008),
    "gpt-4.1-mini": (0.0004, 0.0016),
    "gpt-4.1-nano": (0.0001, 0.0004),
}
DEFAULT_PRICE = (0.0025, 0.01)

AGENT_IDX_ATTR = "data-fp-agent-idx"

_COLLECT_INTERACTIVE_JS = """() => {
    const vh = window.innerHeight;
    document.querySelectorAll('[data-fp-agent-idx]').forEach(el => el.removeAttribute('data-fp-agent-idx'));
    const els = Array.from(document.querySelectorAll(
        'a[href], button, input:not([type="hidden"]), select, textarea, [role="button"], ' +
        '[role="combobox"], [role="option"], [role="radio"], [role="checkbox"], [role="listbox"] li, ' +
        '[contenteditable="true"], [aria-haspopup]'
    ));
    const out = [];
    for (const el of els) {
        const rect = el.getBoundingClientRect();
        if (rect.width === 0 || rect.height === 0) continue;
        if (rect.bottom < 0 || rect.top > vh) continue;
        const style = window.getComputedStyle(el);
        if (style.display === 'none' || style.visibility === 'hidden') continue;
        const idx = out.length;
        el.setAttribute('data-fp-agent-idx', String(idx));
        const label = (el.getAttribute('aria-label') || el.getAttribute('placeholder') ||
            (el.labels && el.labels[0] ? el.labels[0].textContent : '') || el.textContent || '').trim();
        out.push({
            index: idx,
            tag: el.tagName.toLowerCase(),
            type: el.getAttribute('type') || '',
            role: el.getAttribute('role') || '',
            text: label.replace(/\\s+/g, ' ').substring(0, 80),
            value: ('value' in el ? String(el.value || '') : '').substring(0, 60),
            checked: !!el.checked || el.getAttribute('aria-checked') === 'true',
        });
        if (out.length >= 150) break;
    }
    return out;
}"""

_VISIBLE_TEXT_JS = """() => (document.body ? document.body.innerText : '').substring(0, 6000)"""

ACT_SYSTEM_PROMPT = """You control a web browser to complete ONE instruction on a job application form.
Each turn you get a screenshot and a numbered list of the interactive elements visible on screen.
Reply with ONE JSON object:
{"action": "click" | "type" | "select" | "press" | "scroll" | "done" | "fail",
 "index": <element index or null>, "value": <text / option / key / "up"|"down" or null>,
 "reason": "<short reason>"}
Rules:
- "done" as soon as the instruction is satisfied; "fail" if it cannot be satisfied.
- Never click Submit / Submit Application unless the instruction explicitly asks for it.
- Never clear a field that already has the correct value."""


class PlaywrightAgentAdapter:
    """Playwright 页面 + 视觉模型驱动的 act/extract。"""

    def __init__(
        self,
        page: Page,
        *,
        client: Optional[OpenAI] = None,
        models: Optional[list[str]] = None,
        cost_tracker: Optional[CostTracker] = None,
        progress: Optional[ProgressTracker] = None,
        log_fn: Optional[LogFn] = None,
        screenshot_max_width: int = 1280,
        max_act_steps: int = 12,
        cost_role: str = "image",
    ) -> None:
        self.page = page
        self.client = client or OpenAI(api_key=os.getenv("OPENAI_API_KEY"))
        self.models = list(models or ["gpt-4o"])
        self.cost_tracker = cost_tracker
        self.progress = progress
        self._log = log_fn or (lambda msg, level="info": None)
        self.screenshot_max_width = screenshot_max_width
        self.max_act_steps = max_act_steps
        self.cost_role = cost_role
        self._model_index = 0

    # ---- browser primitives ----

    def get_current_url(self) -> str:
        return self.page.url

    def navigate(self, url: str) -> None:
        self.page.goto(url, wait_until="domcontentloaded", timeout=60000)

    def evaluate(self, script: str, arg: Any = None) -> Any:
        if arg is None:
            return self.page.evaluate(script)
        return self.page.evaluate(script, arg)

    # ---- agent capabilities ----

    def act(self, instruction: str, timeout_ms: Optional[int] = None) -> ActResult:
        started = time.monotonic()
        deadline = started + timeout_ms / 1000 if timeout_ms else None
        history: list[str] = []

        for step in range(1, self.max_act_steps + 1):
            if deadline is not None and time.monotonic() > deadline:
                return ActResult(False, "act timed out", self._elapsed_ms(started))

            screenshot_b64 = self._screenshot_b64()
            elements = self.page.evaluate(_COLLECT_INTERACTIVE_JS) or []
            user_text = (
                f"INSTRUCTION:\n{instruction}\n\n"
                f"STEP {step}/{self.max_act_steps}\n"
                f"PREVIOUS ACTIONS:\n" + ("\n".join(history[-8:]) or "(none)") + "\n\n"
                f"VISIBLE ELEMENTS:\n{self._format_elements(elements)}"
            )
            decision = self._call_model_json(ACT_SYSTEM_PROMPT, user_text, screenshot_b64)
            action = str(decision.get("action") or "").lower()
            reason = str(decision.get("reason") or "")

            if action == "done":
                return ActResult(True, reason or "done", self._elapsed_ms(started))
            if action == "fail" or not action:
                return ActResult(False, reason or "agent gave up", self._elapsed_ms(started))

            if self.cost_tracker:
                self.cost_tracker.record_action()
            if self.progress:
                self.progress.record_thought(reason)
                self.progress.on_action_started(action)

            ok = self._execute(action, decision.get("index"), decision.get("value"))
            history.append(
                f"{step}. {action} #{decision.get('index')} {decision.get('value')!r} -> {'ok' if ok else 'failed'}"
            )
            self.page.wait_for_timeout(400)

        return ActResult(False, "step limit reached", self._elapsed_ms(started))

    def extract(self, instruction: str, schema: dict) -> dict:
        screenshot_b64 = self._screenshot_b64()
        visible_text = self.page.evaluate(_VISIBLE_TEXT_JS) or ""
        system_prompt = (
            "You read web pages and answer with ONE JSON object only.\n"
            f"JSON schema (field -> type / allowed values):\n{json.dumps(schema, ensure_ascii=False)}"
        )
        user_text = (
            f"{instruction}\n\nCURRENT URL: {self.page.url}\n\n"
            f"VISIBLE TEXT (truncated):\n{visible_text}"
        )
        return self._call_model_json(system_prompt, user_text, screenshot_b64)

    # ---- internals ----

    def _call_model_json(self, system_prompt: str, user_text: str, screenshot_b64: str) -> dict:
        messages = [
            {"role": "system", "content": system_prompt},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": user_text},
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:image/jpeg;base64,{screenshot_b64}"},
                    },
                ],
            },
        ]
        result = run_chat_with_fallback(
            client=self.client,
            fallback_models=self.models,
            start_model_index=self._model_index,
            messages=messages,
            temperature=0.0,
            max_tokens=600,
            response_format={"type": "json_object"},
            on_log=lambda level, message: self._log(message, level),
        )
        if not result.ok:
            raise RuntimeError(result.error_summary or "LLM call failed")
        self._model_index = result.model_index
        self._record_usage(result.model, result.prompt_tokens, result.completion_tokens)

        parsed = self._safe_parse_json(result.raw)
        if parsed is None:
            raise ValueError(f"model returned non-JSON output: {result.raw[:120]}")
        return parsed

    def _record_usage(self, model: str, prompt_tokens: int, completion_tokens: int) -> None:
        if not self.cost_tracker:
            return
        price_in, price_out = MODEL_PRICES.get(model, DEFAULT_PRICE)
        self.cost_tracker.record_token_usage(
            input_tokens=prompt_tokens,
            output_tokens=completion_tokens,
            input_cost=prompt_tokens / 1000 * price_in,
            output_cost=completion_tokens / 1000 * price_out,
            role=self.cost_role,
        )

    def _execute(self, action: str, index: Any, value: Any) -> bool:
        value_str = "" if value is None else str(value)
        try:
            if action == "press":
                self.page.keyboard.press(value_str or "Enter")
                return True
            if action == "scroll":
                self.page.mouse.wheel(0, -600 if value_str.lower() == "up" else 600)
                return True
            if index is None:
                return False
            locator = self.page.locator(f'[{AGENT_IDX_ATTR}="{int(index)}"]').first
            if action == "click":
                locator.click(timeout=5000)
            elif action == "type":
                try:
                    locator.fill(value_str, timeout=5000)
                except Exception:
                    locator.click(timeout=5000)
                    self.page.keyboard.type(value_str, delay=20)
            elif action == "select":
                locator.select_option(label=value_str, timeout=5000)
            else:
                return False
            return True
        except Exception as e:
            self._log(f"⚠ 执行 {action} 失败: {e}", "warn")
            return False

    def _screenshot_b64(self) -> str:
        png_bytes = self.page.screenshot(full_page=False)
        return base64.b64encode(self._to_jpeg(png_bytes)).decode("ascii")

    def _to_jpeg(self, png_bytes: bytes) -> bytes:
        """缩到 screenshot_max_width 以内并转 JPEG；Pillow 读不了时原样发送。"""
        try:
            with Image.open(io.BytesIO(png_bytes)) as img:
                frame = img.convert("RGB")
        except (OSError, ValueError) as e:
            self._log(f"⚠ 截图无法解码，发送原图: {e}", "warn")
            return png_bytes
        frame.thumbnail((self.screenshot_max_width, frame.height), Image.Resampling.LANCZOS)
        buf = io.BytesIO()
        frame.save(buf, format="JPEG", quality=SCREENSHOT_JPEG_QUALITY, optimize=True)
        return buf.getvalue()

    @staticmethod
    def _format_elements(elements: list[dict]) -> str:
        lines = []
        for el in elements:
            desc = el.get("tag", "")
            if el.get("type"):
                desc += f"[{el['type']}]"
            if el.get("role"):
                desc += f"(role={el['role']})"
            line = f"[{el.get('index')}] {desc} \"{el.get('text', '')}\""
            if el.get("value"):
                line += f" value=\"{el['value']}\""
            if el.get("checked"):
                line += " (checked)"
            lines.append(line)
        return "\n".join(lines) or "(no interactive elements visible)"

    @staticmethod
    def _safe_parse_json(raw: str) -> dict | None:
        """模型回复 → dict：整段、```json 代码块、首个 { 到末个 } 依次尝试。"""
        candidates = [raw]
        fenced = _FENCED_JSON_RE.search(raw or "")
        if fenced:
            candidates.append(fenced.group(1))
        lo, hi = (raw or "").find("{"), (raw or "").rfind("}")
        if 0 <= lo < hi:
            candidates.append(raw[lo : hi + 1])
        for text in candidates:
            try:
                data = json.loads(text)
            except (TypeError, ValueError):
                continue
            if isinstance(data, dict):
                return data
        return None

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
