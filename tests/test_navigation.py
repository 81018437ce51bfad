from formpilot.core.navigation import NavigationAdvancer


class _Adapter:
    def __init__(self, inspector):
        self._inspector = inspector

    def get_current_url(self):
        return self._inspector.url


class _Inspector:
    def __init__(self, submit_like=False):
        self.url = "https://acme.com/apply/step1"
        self.fp = "Contact|fields:4|active:"
        self.y = 0.0
        self.submit_like = submit_like
        self.adapter = _Adapter(self)
        self.scrolls: list[tuple[float, bool]] = []
        self.settled = 0

    def clear_scan_tags(self):
        pass

    def scroll_to_bottom(self):
        pass

    def wait(self, ms):
        pass

    def fingerprint(self):
        return self.fp

    def scroll_y(self):
        return self.y

    def scroll_to(self, y, smooth=False):
        self.scrolls.append((y, smooth))

    def content_scroll_max(self):
        return 1500

    def wait_for_settled(self, ms):
        self.settled += 1

    def has_submit_like_button(self):
        return self.submit_like


class _Config:
    def __init__(self, *clicks, validation_errors=False):
        self.clicks = list(clicks)
        self.validation_errors = validation_errors
        self.click_count = 0

    def click_next_button(self, inspector, gate=None):
        self.click_count += 1
        result, effect = self.clicks.pop(0) if self.clicks else ("not_found", None)
        if effect:
            effect(inspector)
        return result

    def detect_validation_errors(self, inspector):
        return self.validation_errors


def _navigate(inspector):
    inspector.url = "https://acme.com/apply/step2"


def _new_section(inspector):
    inspector.fp = "Questions|fields:6|active:"


def _auto_scroll(inspector):
    inspector.y = 800.0


def _advancer(config, inspector):
    return NavigationAdvancer(config, inspector)


def test_click_with_url_change_navigates():
    inspector = _Inspector()
    assert _advancer(_Config(("clicked", _navigate)), inspector).advance("p") == "navigated"
    assert inspector.settled == 1


def test_spa_section_change_counts_as_navigation():
    inspector = _Inspector()
    assert _advancer(_Config(("clicked", _new_section)), inspector).advance("p") == "navigated"


def test_review_detected_never_clicks_submit():
    config = _Config(("review_detected", None))
    assert _advancer(config, _Inspector()).advance("p") == "review"
    assert config.click_count == 1


def test_validation_errors_trigger_refill_at_next_depth():
    inspector = _Inspector()
    depths: list[int] = []

    def refill(depth):
        depths.append(depth)
        return "navigated"

    config = _Config(("clicked", None), validation_errors=True)
    assert _advancer(config, inspector).advance("p", depth=1, refill=refill) == "navigated"
    assert depths == [2]
    assert inspector.scrolls == [(0, False)]


def test_validation_errors_without_refill_complete():
    config = _Config(("clicked", None), validation_errors=True)
    assert _advancer(config, _Inspector()).advance("p") == "complete"


def test_auto_scroll_to_unfilled_field_triggers_refill():
    depths: list[int] = []
    config = _Config(("clicked", _auto_scroll))
    result = _advancer(config, _Inspector()).advance("p", refill=lambda d: depths.append(d) or "complete")
    assert result == "complete"
    assert depths == [1]


def test_unchanged_page_falls_back_to_submit_check():
    assert _advancer(_Config(("clicked", None)), _Inspector()).advance("p") == "complete"
    assert _advancer(_Config(("clicked", None)), _Inspector(submit_like=True)).advance("p") == "review"


def test_missing_button_retries_at_content_bottom():
    inspector = _Inspector()
    config = _Config(("not_found", None), ("clicked", _navigate))
    assert _advancer(config, inspector).advance("p") == "navigated"
    assert inspector.scrolls == [(1500, True)]
    assert config.click_count == 2

    config = _Config(("not_found", None), ("review_detected", None))
    assert _advancer(config, _Inspector()).advance("p") == "review"


def test_custom_handler_advance():
    assert _advancer(_Config(("clicked", _navigate)), _Inspector()).advance_after_custom_handler("experience") == "navigated"
    assert _advancer(_Config(("review_detected", None)), _Inspector()).advance_after_custom_handler("experience") == "review"
    assert (
        _advancer(_Config(("clicked", _navigate), validation_errors=True), _Inspector())
        .advance_after_custom_handler("experience")
        == "stuck"
    )
    assert _advancer(_Config(), _Inspector()).advance_after_custom_handler("experience") == "stuck"
    assert _advancer(_Config(("clicked", None)), _Inspector()).advance_after_custom_handler("experience") == "stuck"
