"""Hypothetical-answer query expansion for retrieval."""

from __future__ import annotations

import logging
from typing import Callable

import httpx
from openai import OpenAI

from .config import Settings

logger = logging.getLogger(__name__)

_PROMPT_TEMPLATE = (
    "Answer the following user question in a technical, detailed way, as an expert "
    "writing an official manual. Skip greetings and go straight to the point.\n\n"
    "Question: {query}\n\nHypothetical answer:"
)
_MAX_OUTPUT_TOKENS = 300


class QueryExpander:
    """Let an LLM draft a hypothetical answer and embed it alongside the question.

    The expanded text has the form ``Question: <q>\\nContext: <answer>``. Any
    backend failure, or an empty answer, falls back to the raw query.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        generate: Callable[[str], str] | None = None,
    ) -> None:
        self._settings = settings
        self._generate = generate
        self._openai_client: OpenAI | None = None

    def expand(self, query: str) -> str:
        try:
            answer = self._hypothetical_answer(query)
        except Exception as exc:
            logger.warning("query_expansion.failed error=%s", exc)
            return query
        answer = (answer or "").strip()
        if not answer:
            return query
        logger.debug("query_expansion.generated chars=%s", len(answer))
        return f"Question: {query}\nContext: {answer}"

    def _hypothetical_answer(self, query: str) -> str:
        prompt = _PROMPT_TEMPLATE.format(query=query)
        if self._generate is not None:
            return self._generate(prompt)
        if self._settings.is_openai_chat_backend:
            return self._invoke_openai(prompt)
        if self._settings.is_ollama_chat_backend:
            return self._invoke_ollama(prompt)
        raise ValueError(f"Unsupported chat backend: {self._settings.chat_backend}")

    def _invoke_openai(self, prompt: str) -> str:
        if not self._settings.openai_api_key:
            raise RuntimeError("OPENAI_API_KEY must be set for query expansion with OpenAI")
        if self._openai_client is None:
            self._openai_client = OpenAI(
                api_key=self._settings.openai_api_key,
                timeout=self._settings.chat_timeout,
            )
        response = self._openai_client.responses.create(
            model=self._settings.openai_chat_model,
            input=[{"role": "user", "content": prompt}],
            max_output_tokens=_MAX_OUTPUT_TOKENS,
        )
        return str(getattr(response, "output_text", "") or "")

    def _invoke_ollama(self, prompt: str) -> str:
        url = f"{self._settings.ollama_base_url.rstrip('/')}/api/chat"
        payload = {
            "model": self._settings.ollama_model,
            "messages": [{"role": "user", "content": prompt}],
            "stream": False,
            "options": {"num_predict": _MAX_OUTPUT_TOKENS},
        }
        response = httpx.post(url, json=payload, timeout=self._settings.chat_timeout)
        response.raise_for_status()
        data = response.json()
        message = data.get("message") or {}
        return str(message.get("content") or data.get("response") or "")


__all__ = ["QueryExpander"]
