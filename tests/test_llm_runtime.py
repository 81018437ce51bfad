from formpilot.core.llm_runtime import classify_llm_error, run_chat_with_fallback


class _FakeUsage:
    prompt_tokens = 120
    completion_tokens = 30


class _FakeMessage:
    def __init__(self, content: str):
        self.content = content


class _FakeChoice:
    def __init__(self, content: str):
        self.message = _FakeMessage(content)


class _FakeCompletion:
    def __init__(self, content: str):
        self.choices = [_FakeChoice(content)]
        self.usage = _FakeUsage()


class _FakeCompletions:
    def __init__(self, handler):
        self._handler = handler
        self.called_models: list[str] = []

    def create(self, **kwargs):
        model = kwargs.get("model", "")
        self.called_models.append(model)
        result = self._handler(model)
        if isinstance(result, Exception):
            raise result
        return _FakeCompletion(result)


class _FakeClient:
    def __init__(self, handler):
        self.chat = type("Chat", (), {})()
        self.chat.completions = _FakeCompletions(handler)


def _call(client, models):
    return run_chat_with_fallback(
        client=client,
        fallback_models=models,
        messages=[{"role": "user", "content": "hi"}],
        sleep_seconds=0.0,
    )


def test_classify_llm_error():
    assert classify_llm_error("Error 429: rate_limit") == "rate_limit"
    assert classify_llm_error("model does not support image_url") == "capability"
    assert classify_llm_error("connection reset") == "other"


def test_fallback_on_rate_limit_reports_usage():
    client = _FakeClient(lambda m: Exception("429 Too Many Requests") if m == "a" else '{"action":"done"}')
    result = _call(client, ["a", "b"])
    assert result.ok is True
    assert result.model == "b"
    assert result.prompt_tokens == 120
    assert result.completion_tokens == 30
    assert client.chat.completions.called_models == ["a", "b"]


def test_rate_limit_exhausted():
    client = _FakeClient(lambda _m: Exception("429"))
    result = _call(client, ["a", "b"])
    assert result.ok is False
    assert result.error_code == "rate_limit_exhausted"


def test_generic_error_does_not_fall_back():
    client = _FakeClient(lambda _m: Exception("connection reset by peer"))
    result = _call(client, ["a", "b"])
    assert result.ok is False
    assert result.error_code == "llm_call_failed"
    assert client.chat.completions.called_models == ["a"]
