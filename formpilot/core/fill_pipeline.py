"""
填充管线（Fill Pipeline）

职责：
- 单页有界循环：扫描 → 简历上传 → Phase 1 DOM 直填 → Phase 2 Agent 填充
  → 收尾补填 → Phase 2.75 升级层逐字段填充
- 某一轮没有新填上的字段即停止循环，交给 NavigationAdvancer 推进
- 计数器累加在 RunContext 上；预算 / 动作上限等致命错误直接上抛

Phase 2 两种模式：
- 逐字段：配置了廉价的单动作 Agent 时，每个字段一次聚焦的 act()，前后取值比较判定成功
- 批量视口：只有主 Agent 时，按视口分组，每组一次 act()，按字段取值差异判定成功
"""

from __future__ import annotations

from typing import Callable, Optional

from ..config import OrchestratorSettings
from .agent_runtime import AgentGate
from .answer_matcher import find_best_answer
from .dom_filler import upload_resume_if_present
from .errors import is_fatal_error
from .field_scanner import build_scan_context_for_llm, scan_visible_unfilled_fields
from .heuristics import dedupe_label_key
from .navigation import NavigationAdvancer
from .page_probe import PageInspector
from .prompt_builder import (
    UPLOAD_CLICK_PROMPT,
    build_batch_fill_prompt,
    build_cleanup_prompt,
    build_escalation_prompt,
    build_per_field_prompt,
)
from .types import RunContext, ScannedField, ScanResult

LogFn = Callable[[str, str], None]

FILE_KINDS = ("file", "upload_button")


def needs_fill(field: ScannedField) -> bool:
    """未标记 filled、当前无值、且不是文件类控件。"""
    return (
        not field.filled
        and not (field.current_value or "").strip()
        and field.kind not in FILE_KINDS
    )


class FillPipeline:
    def __init__(
        self,
        config,
        inspector: PageInspector,
        gate: AgentGate,
        ctx: RunContext,
        settings: Optional[OrchestratorSettings] = None,
        log_fn: Optional[LogFn] = None,
        advancer: Optional[NavigationAdvancer] = None,
    ) -> None:
        self.config = config
        self.inspector = inspector
        self.gate = gate
        self.ctx = ctx
        self.settings = settings or OrchestratorSettings()
        self._log = log_fn or (lambda msg, level="info": None)
        self.advancer = advancer or NavigationAdvancer(
            config, inspector, gate, self.settings, log_fn
        )

    def _match(self, label: str) -> Optional[str]:
        return find_best_answer(label, self.ctx.qa_map, self.settings.matcher)

    # ------------------------------------------------------------------
    # 入口
    # ------------------------------------------------------------------

    def fill_page(
        self,
        fill_prompt: str,
        page_label: str,
        depth: int = 0,
        llm_calls: int = 0,
    ) -> str:
        """返回 'navigated' | 'review' | 'complete'。"""
        if depth >= self.settings.max_fill_depth:
            self._log(f"⚠ [{page_label}] 达到最大填充深度 {self.settings.max_fill_depth}，放弃本页", "warn")
            return "complete"

        if self.inspector.is_review_structure():
            self._log(f"[{page_label}] 结构上是审核页，跳过填充")
            return "review"

        llm_calls = self._run_cycles(fill_prompt, page_label, llm_calls)

        def refill(next_depth: int) -> str:
            return self.fill_page(fill_prompt, page_label, next_depth, llm_calls)

        return self.advancer.advance(page_label, depth, refill)

    def _run_cycles(self, fill_prompt: str, page_label: str, llm_calls: int) -> int:
        settings = self.settings
        resume_uploaded = False

        for cycle in range(settings.max_fill_cycles):
            scan = self.config.scan_page_fields(
                self.inspector, step_ratio=settings.scroll_step_ratio
            )
            self.ctx.total_fields += len(scan.fields)
            empty = [f for f in scan.fields if needs_fill(f) or (f.kind in FILE_KINDS and not f.filled)]
            self._log(
                f"[{page_label}] 第 {cycle + 1} 轮扫描: 共 {len(scan.fields)} 个字段，{len(empty)} 个待填"
            )
            if not empty:
                break

            new_fills = 0

            if not resume_uploaded:
                resume_uploaded, calls = self._upload_resume(scan, page_label)
                llm_calls += calls
                if resume_uploaded:
                    new_fills += 1

            new_fills += self._direct_fill(scan, page_label)
            new_fills += self.config.check_required_checkboxes(self.inspector)

            if any(needs_fill(f) for f in scan.fields) and llm_calls < settings.max_llm_calls_per_page:
                if self.gate.per_field_mode:
                    calls, filled = self._agent_fill_per_field(scan, page_label, llm_calls)
                else:
                    calls, filled = self._agent_fill_batch(scan, fill_prompt, page_label, llm_calls)
                llm_calls += calls
                self.ctx.llm_filled += filled
                new_fills += filled

            leftover = [f for f in scan.fields if needs_fill(f)]
            if leftover:
                self._log(f"[{page_label}] 收尾补填: 仍有 {len(leftover)} 个字段未填")
                calls, filled = self._post_walk_cleanup(leftover, fill_prompt, page_label, llm_calls)
                llm_calls += calls
                new_fills += filled

            if any(needs_fill(f) for f in scan.fields):
                new_fills += self._escalate(scan, page_label)

            if new_fills == 0:
                self._log(f"[{page_label}] 本轮没有新填字段，停止循环")
                break

        return llm_calls

    # ------------------------------------------------------------------
    # Phase 0.5: 简历
    # ------------------------------------------------------------------

    def _upload_resume(self, scan: ScanResult, page_label: str) -> tuple[bool, int]:
        resume_path = self.ctx.resume_path
        if not resume_path:
            return False, 0

        file_field = next(
            (f for f in scan.fields if f.kind == "file" and not f.current_value), None
        )
        if file_field is not None and upload_resume_if_present(self.inspector, resume_path, self._log):
            file_field.filled = True
            return True, 0

        upload_btn = next(
            (f for f in scan.fields if f.kind == "upload_button" and not f.filled), None
        )
        if upload_btn is None:
            return False, 0

        self._log(f"[{page_label}] 发现上传按钮，交给 Agent 点击")
        try:
            self._scroll_to(upload_btn)
            ok = self.gate.safe_act(UPLOAD_CLICK_PROMPT, page_label)
        except Exception as e:
            if is_fatal_error(e):
                raise
            self._log(f"⚠ [{page_label}] 点击上传按钮失败: {e}", "warn")
            return False, 1
        if not ok:
            self._log(f"⚠ [{page_label}] 上传按钮点击未成功，下一轮重试", "warn")
            return False, 1
        # 文件选择框由编排器注册的 filechooser 监听自动挂载简历
        self.inspector.wait(3000)
        upload_btn.filled = True
        return True, 1

    # ------------------------------------------------------------------
    # Phase 1: DOM 直填
    # ------------------------------------------------------------------

    def _direct_fill(self, scan: ScanResult, page_label: str) -> int:
        filled = 0
        for field in scan.fields:
            if not needs_fill(field):
                continue
            answer = self._match(field.label)
            if not answer:
                continue
            field.matched_answer = answer
            if self._try_dom_fill(field, answer, page_label):
                filled += 1
        if filled:
            self._log(f"✓ [{page_label}] DOM 直填 {filled} 个字段")
        return filled

    def _try_dom_fill(self, field: ScannedField, answer: str, page_label: str) -> bool:
        try:
            ok = self.config.fill_scanned_field(self.inspector, field, answer, self._log)
        except Exception as e:
            if is_fatal_error(e):
                raise
            self._log(f"⚠ [{page_label}] DOM 填充失败 \"{field.label}\": {e}", "warn")
            return False
        if ok:
            field.filled = True
            self.ctx.dom_filled += 1
        return bool(ok)

    # ------------------------------------------------------------------
    # Phase 2: Agent 填充
    # ------------------------------------------------------------------

    def _agent_fill_per_field(
        self, scan: ScanResult, page_label: str, llm_calls: int
    ) -> tuple[int, int]:
        settings = self.settings
        calls = 0
        filled = 0
        failures = 0
        attempted: set[str] = set()

        for field in [f for f in scan.fields if needs_fill(f)]:
            if llm_calls + calls >= settings.max_llm_calls_per_page:
                break
            if failures >= settings.max_consecutive_failures:
                self._log(f"⚠ [{page_label}] 连续 {failures} 次失败，剩余字段交给升级层", "warn")
                break

            key = dedupe_label_key(field.label)
            if key and key in attempted:
                # 同一个问题被多个节点渲染，只填一次
                field.filled = True
                continue
            attempted.add(key)

            answer = field.matched_answer or self._match(field.label)
            if not answer and not field.is_required:
                continue

            self._scroll_to(field)
            before = self._read_value(field)
            try:
                ok = self.gate.safe_act(build_per_field_prompt(field, answer), page_label)
            except Exception as e:
                if is_fatal_error(e):
                    raise
                calls += 1
                failures += 1
                self._log(f"⚠ [{page_label}] Agent 填充 \"{field.label}\" 出错: {e}", "warn")
                self.inspector.dismiss_open_overlays()
                continue
            calls += 1

            if ok:
                self.inspector.wait(500)
                after = self._read_value(field)
                if after != before and after.strip():
                    field.filled = True
                    filled += 1
                    failures = 0
                    self._log(f"✓ [{page_label}] Agent 已填 \"{field.label}\"")
                else:
                    failures += 1
                    self._log(f"[{page_label}] \"{field.label}\" 取值没有变化 ({failures}/{settings.max_consecutive_failures})")
            else:
                failures += 1
            self.inspector.dismiss_open_overlays()

        return calls, filled

    def _agent_fill_batch(
        self, scan: ScanResult, fill_prompt: str, page_label: str, llm_calls: int
    ) -> tuple[int, int]:
        settings = self.settings
        inspector = self.inspector
        calls = 0
        filled = 0

        inspector.scroll_to(0)
        inspector.wait(400)
        viewport = inspector.viewport_height() or 800
        max_pos = max(0, inspector.scroll_height() - viewport)
        pos = 0
        steps = 0

        while steps < settings.max_scroll_steps and llm_calls + calls < settings.max_llm_calls_per_page:
            visible = scan_visible_unfilled_fields(inspector, self.ctx.qa_map, settings.matcher)
            if visible:
                prompt = build_batch_fill_prompt(
                    fill_prompt, build_scan_context_for_llm(visible), len(visible)
                )
                self._log(f"[{page_label}] 第 {llm_calls + calls + 1} 次 Agent 调用，视口内 {len(visible)} 个字段")
                acted, changed = self._act_on_visible(prompt, visible, scan, page_label)
                calls += 1
                filled += changed
                if changed:
                    continue
                if not acted:
                    break

            if pos >= max_pos:
                break
            pos = min(pos + round(viewport * settings.scroll_step_ratio), max_pos)
            inspector.scroll_to(pos)
            inspector.wait(400)
            steps += 1

        return calls, filled

    def _act_on_visible(
        self,
        prompt: str,
        visible: list[ScannedField],
        scan: ScanResult,
        page_label: str,
    ) -> tuple[bool, int]:
        """对当前视口发一次批量 act()；返回 (act 是否成功, 实际取值变化的字段数)。"""
        inspector = self.inspector
        values_before = inspector.per_field_values(visible)
        checked_before = inspector.checked_checkboxes(scan.fields)

        acted = False
        try:
            acted = self.gate.safe_act(prompt, page_label)
        except Exception as e:
            if is_fatal_error(e):
                raise
            self._log(f"⚠ [{page_label}] 批量 act() 失败: {e}", "warn")

        inspector.dismiss_open_overlays()
        inspector.restore_unchecked_checkboxes(checked_before)

        values_after = inspector.per_field_values(visible)
        by_selector = {f.selector: f for f in scan.fields}
        changed = 0
        for i, field in enumerate(visible):
            before = values_before[i] if i < len(values_before) else ""
            after = values_after[i] if i < len(values_after) else ""
            if after != before and after.strip():
                match = by_selector.get(field.selector)
                if match is not None and not match.filled:
                    match.filled = True
                    changed += 1
        return acted, changed

    # ------------------------------------------------------------------
    # 收尾补填
    # ------------------------------------------------------------------

    def _post_walk_cleanup(
        self,
        leftover: list[ScannedField],
        fill_prompt: str,
        page_label: str,
        llm_calls: int,
    ) -> tuple[int, int]:
        filled = 0
        for field in leftover:
            answer = field.matched_answer or self._match(field.label)
            if not answer:
                continue
            self._scroll_to(field)
            if self._try_dom_fill(field, answer, page_label):
                filled += 1
                self._log(f"✓ [{page_label}] 收尾直填 \"{field.label}\"")

        still = [f for f in leftover if not f.filled]
        remaining_calls = self.settings.max_llm_calls_per_page - llm_calls
        if not still or remaining_calls <= 0:
            return 0, filled

        if self.gate.per_field_mode:
            calls, agent_filled = self._cleanup_per_field(still, page_label, remaining_calls)
            return calls, filled + agent_filled

        self._scroll_to(still[0])
        visible = scan_visible_unfilled_fields(self.inspector, self.ctx.qa_map, self.settings.matcher)
        if not visible:
            return 0, filled
        prompt = build_cleanup_prompt(fill_prompt, build_scan_context_for_llm(visible), len(visible))
        self._log(f"[{page_label}] 收尾批量 Agent 调用，{len(visible)} 个字段")
        scan = ScanResult(fields=leftover)
        _, changed = self._act_on_visible(prompt, visible, scan, page_label)
        self.ctx.llm_filled += changed
        return 1, filled + changed

    def _cleanup_per_field(
        self, fields: list[ScannedField], page_label: str, remaining_calls: int
    ) -> tuple[int, int]:
        max_calls = min(self.settings.max_cleanup_calls, remaining_calls)
        calls = 0
        filled = 0
        for field in fields:
            if calls >= max_calls:
                break
            answer = field.matched_answer or self._match(field.label)
            if not answer and not field.is_required:
                continue
            self._scroll_to(field)
            try:
                ok = self.gate.safe_act(build_per_field_prompt(field, answer), page_label)
            except Exception as e:
                if is_fatal_error(e):
                    raise
                ok = False
                self._log(f"⚠ [{page_label}] 收尾 Agent 出错: {e}", "warn")
            calls += 1
            if ok:
                self.inspector.wait(500)
                if self._read_value(field).strip():
                    field.filled = True
                    filled += 1
                    self.ctx.llm_filled += 1
                    self._log(f"✓ [{page_label}] 收尾 Agent 已填 \"{field.label}\"")
            self.inspector.dismiss_open_overlays()
        return calls, filled

    # ------------------------------------------------------------------
    # Phase 2.75: 升级层
    # ------------------------------------------------------------------

    def _escalate(self, scan: ScanResult, page_label: str) -> int:
        if self.ctx.escalation_disabled:
            return 0

        fresh = self.config.scan_page_fields(
            self.inspector, step_ratio=self.settings.scroll_step_ratio
        )
        filled_selectors = {f.selector for f in scan.fields if f.filled}
        for field in fresh.fields:
            if field.selector in filled_selectors:
                field.filled = True
            if not field.filled:
                field.matched_answer = self._match(field.label)

        targets = [f for f in fresh.fields if needs_fill(f)]
        if not targets:
            return 0
        self._log(f"[{page_label}] 仍有 {len(targets)} 个字段未填，启用升级层")
        try:
            filled = self._escalation_phase(targets, page_label)
        except Exception as e:
            if is_fatal_error(e):
                raise
            self._log(f"⚠ [{page_label}] 升级层出错: {e}", "warn")
            return 0

        by_selector = {f.selector: f for f in scan.fields}
        for field in targets:
            if field.filled and field.selector in by_selector:
                by_selector[field.selector].filled = True
        if filled:
            self._log(f"✓ [{page_label}] 升级层填了 {filled} 个字段")
        return filled

    def _escalation_phase(self, targets: list[ScannedField], page_label: str) -> int:
        settings = self.settings
        tracker = self.gate.cost_tracker

        start_remaining = tracker.get_remaining_budget() if tracker is not None else None
        if start_remaining is not None and start_remaining < settings.escalation_min_remaining_budget:
            self._disable_escalation(page_label, start_remaining)
            return 0
        soft_cap = (
            settings.escalation_budget_cap * start_remaining
            if start_remaining is not None
            else None
        )

        filled = 0
        attempts = targets[: settings.escalation_max_fields]
        for field in attempts:
            if tracker is not None:
                remaining = tracker.get_remaining_budget()
                if start_remaining - remaining >= soft_cap:
                    self._log(f"[{page_label}] 升级层达到软上限 (${start_remaining - remaining:.4f})，停止")
                    break
                if remaining < settings.escalation_min_remaining_budget:
                    self._disable_escalation(page_label, remaining)
                    break

            self._scroll_to(field)
            prompt = build_escalation_prompt(field, field.matched_answer, self.ctx.data_prompt)
            self._log(f"[{page_label}] 升级层填充 \"{field.label}\" ({field.kind})")
            try:
                ok = self.gate.safe_act(
                    prompt,
                    page_label,
                    visual=True,
                    timeout_ms=settings.escalation_act_timeout_ms,
                )
            except Exception as e:
                if is_fatal_error(e):
                    self._log(f"❌ [{page_label}] 升级层触发预算 / 动作上限，停止", "error")
                    raise
                ok = False
                self._log(f"⚠ [{page_label}] 升级层 \"{field.label}\" 出错: {e}", "warn")

            if ok:
                field.filled = True
                filled += 1
                self.ctx.agent_filled += 1
            self.inspector.dismiss_open_overlays()

        self._log(f"[{page_label}] 升级层完成 {filled}/{len(attempts)}")
        return filled

    def _disable_escalation(self, page_label: str, remaining: float) -> None:
        self.ctx.escalation_disabled = True
        self._log(
            f"⚠ [{page_label}] 剩余预算 ${remaining:.4f} 低于下限，本次运行不再使用升级层",
            "warn",
        )

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _scroll_to(self, field: ScannedField) -> None:
        if not field.selector:
            return
        try:
            self.inspector.scroll_into_view(field.selector)
            self.inspector.wait(300)
        except Exception as e:
            self._log(f"⚠ 滚动到字段失败: {e}", "warn")

    def _read_value(self, field: ScannedField) -> str:
        if not field.selector:
            return ""
        try:
            values = self.inspector.per_field_values([field])
        except Exception:
            return ""
        return values[0] if values else ""
