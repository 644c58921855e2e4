from __future__ import annotations

from types import SimpleNamespace

import httpx
import pytest

from lodestone.config import Settings
from lodestone.query_expansion import QueryExpander


def test_expansion_combines_question_and_answer() -> None:
    expander = QueryExpander(Settings(), generate=lambda prompt: "  Refunds take five days.  ")

    assert expander.expand("How long do refunds take?") == (
        "Question: How long do refunds take?\nContext: Refunds take five days."
    )


@pytest.mark.parametrize("generate", [lambda prompt: "", lambda prompt: 1 / 0])
def test_expansion_falls_back_to_raw_query(generate) -> None:
    assert QueryExpander(Settings(), generate=generate).expand("refund policy") == "refund policy"


def test_openai_backend_uses_responses_api(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = []

    class _StubResponses:
        def create(self, **kwargs):
            calls.append(kwargs)
            return SimpleNamespace(output_text="Use the billing page.")

    class _StubOpenAI:
        def __init__(self, api_key: str, timeout: float) -> None:
            self.responses = _StubResponses()

    monkeypatch.setattr("lodestone.query_expansion.OpenAI", _StubOpenAI)
    expander = QueryExpander(Settings(openai_api_key="token", openai_chat_model="gpt-4o-mini"))

    expanded = expander.expand("Where are invoices?")

    assert expanded == "Question: Where are invoices?\nContext: Use the billing page."
    assert calls[0]["model"] == "gpt-4o-mini"
    assert calls[0]["max_output_tokens"] == 300


def test_openai_backend_without_key_falls_back() -> None:
    assert QueryExpander(Settings(openai_api_key=None)).expand("pricing") == "pricing"


def test_ollama_backend_posts_chat_request(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = {}

    def fake_post(url, json, timeout):
        seen["url"] = url
        seen["json"] = json
        return httpx.Response(
            200,
            json={"message": {"content": "Reset it from the login page."}},
            request=httpx.Request("POST", url),
        )

    monkeypatch.setattr("lodestone.query_expansion.httpx.post", fake_post)
    expander = QueryExpander(Settings(chat_backend="ollama", ollama_base_url="http://ollama:11434/"))

    expanded = expander.expand("Forgot password")

    assert expanded.endswith("Context: Reset it from the login page.")
    assert seen["url"] == "http://ollama:11434/api/chat"
    assert seen["json"]["stream"] is False
