from formpilot.core.field_scanner import (
    build_scan_context_for_llm,
    is_value_present,
    merge_scanned_fields,
    scan_page,
    scan_visible_unfilled_fields,
)
from formpilot.core.types import ScannedField


class _ScanInspector:
    def __init__(self, batches, viewport=800, scroll_height=1000):
        self._batches = list(batches)
        self._viewport = viewport
        self._scroll_height = scroll_height
        self.scrolled_to: list[float] = []

    def viewport_height(self):
        return self._viewport

    def scroll_height(self):
        return self._scroll_height

    def scroll_to(self, y, smooth=False):
        self.scrolled_to.append(y)

    def wait(self, ms):
        pass

    def evaluate(self, script, arg=None):
        return self._batches.pop(0) if self._batches else []


def _raw(idx, label, kind="text", value="", y=0.0, **extra):
    return {
        "selector": f'[data-fp-scan-idx="{idx}"]',
        "kind": kind,
        "label": label,
        "currentValue": value,
        "absoluteY": y,
        **extra,
    }


def test_is_value_present_treats_placeholders_as_empty():
    assert is_value_present("text", "Ada") is True
    assert is_value_present("text", "   ") is False
    assert is_value_present("custom_dropdown", "Select One") is False
    assert is_value_present("select", "Country", label="Country") is False
    assert is_value_present("custom_dropdown", "Country Select One", label="Country") is False
    assert is_value_present("custom_dropdown", "Canada", label="Country") is True


def test_merge_dedupes_by_selector_and_sorts_by_position():
    fields = merge_scanned_fields(
        [
            [_raw(2, "Email", y=300), _raw(1, "Name", value="Ada", y=100)],
            [_raw(2, "Email", y=300), _raw(3, "Phone", y=900)],
            [{"label": "no selector"}],
        ]
    )
    assert [f.label for f in fields] == ["Name", "Email", "Phone"]
    assert fields[0].filled is True
    assert fields[0].id == "field-1"
    assert fields[1].filled is False


def test_scan_page_walks_viewports_and_returns_to_top():
    inspector = _ScanInspector(
        [[_raw(1, "First Name", y=50)], [_raw(2, "Resume", kind="file", y=900, isRequired=True)]]
    )
    result = scan_page(inspector, step_ratio=0.7)
    assert [f.label for f in result.fields] == ["First Name", "Resume"]
    assert result.fields[1].is_required is True
    assert inspector.scrolled_to == [0, 560, 0]
    assert result.viewport_height == 800


def test_scan_visible_unfilled_fields_dedupes_and_matches():
    inspector = _ScanInspector(
        [
            [
                {"selector": "#a", "label": "First Name", "kind": "text"},
                {"selector": "#b", "label": "First Name", "kind": "text"},
                {"selector": "#c", "label": "Why us?", "kind": "text", "isRequired": True},
            ]
        ]
    )
    fields = scan_visible_unfilled_fields(inspector, {"First Name": "Ada"})
    assert [f.selector for f in fields] == ["#a", "#c"]
    assert fields[0].matched_answer == "Ada"
    assert fields[1].matched_answer is None


def test_build_scan_context_for_llm():
    fields = [
        ScannedField(id="1", selector="#a", kind="select", label="Country", options=["US", "CA"], matched_answer="US"),
        ScannedField(id="2", selector="#b", kind="text", label="Why us?", is_required=True),
    ]
    context = build_scan_context_for_llm(fields)
    lines = context.splitlines()
    assert lines[0] == '- "Country" (Dropdown) Options: [US, CA] → Fill with: "US"'
    assert lines[1].startswith('- "Why us?" (Text input) → No exact data available')
    assert lines[1].endswith("[REQUIRED]")


def test_rescanning_an_unchanged_page_is_stable():
    viewport_batches = [
        [_raw(1, "First Name", y=50), _raw(2, "Country", kind="select", y=400, options=["US", "CA"])],
        [_raw(2, "Country", kind="select", y=400, options=["US", "CA"]), _raw(3, "Cover Letter", kind="textarea", y=900)],
    ]
    first = scan_page(_ScanInspector([list(b) for b in viewport_batches]))
    second = scan_page(_ScanInspector([list(b) for b in viewport_batches]))

    assert [(f.label, f.kind) for f in first.fields] == [(f.label, f.kind) for f in second.fields]
    assert [f.selector for f in first.fields] == [f.selector for f in second.fields]
    assert [f.label for f in first.fields] == ["First Name", "Country", "Cover Letter"]


def test_dropdown_showing_its_own_label_is_unfilled():
    fields = merge_scanned_fields(
        [
            [
                _raw(1, "Country", kind="custom_dropdown", value="Country", y=10),
                _raw(2, "State", kind="select", value="State Select One", y=20),
                _raw(3, "Degree", kind="custom_dropdown", value="Bachelor's", y=30),
            ]
        ]
    )
    assert [f.filled for f in fields] == [False, False, True]
