from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable

import httpx
import pytest
from qdrant_client import QdrantClient

from lodestone.app import ApplicationState, build_state
from lodestone.config import Settings
from lodestone.observability import MetricsRecorder

VOCABULARY = ("refund", "shipping", "warranty", "password", "pricing", "invoice", "support", "video")


class KeywordEmbeddingService:
    """Deterministic embeddings: one axis per vocabulary word plus a bias axis."""

    dimension = len(VOCABULARY) + 1

    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    def embed(self, texts: Iterable[str]) -> list[list[float]]:
        batch = list(texts)
        self.calls.append(batch)
        return [self._vector_for(text) for text in batch]

    def embed_one(self, text: str) -> list[float]:
        return self.embed([text])[0]

    @staticmethod
    def _vector_for(text: str) -> list[float]:
        lowered = text.lower()
        return [float(lowered.count(word)) for word in VOCABULARY] + [0.1]


class RecordingNotifier:
    def __init__(self) -> None:
        self.agents: list[str] = []

    def knowledge_changed(self, agent_id: str) -> None:
        self.agents.append(agent_id)


def not_found(request: httpx.Request) -> httpx.Response:
    return httpx.Response(404, text="Not Found")


def build_settings(tmp_path: Path, **overrides) -> Settings:
    overrides.setdefault("data_dir", str(tmp_path / "data"))
    overrides.setdefault("observability_metrics_enabled", False)
    return Settings(**overrides)


@pytest.fixture
def make_state(tmp_path: Path):
    """Build an ``ApplicationState`` on in-memory Qdrant with a mocked network."""

    created: list[ApplicationState] = []

    def factory(
        handler: Callable[[httpx.Request], httpx.Response] | None = None,
        *,
        embedding=None,
        notifier=None,
        metrics=None,
        reranker=None,
        expander=None,
        **overrides,
    ) -> ApplicationState:
        settings = build_settings(tmp_path, **overrides)
        client = httpx.Client(transport=httpx.MockTransport(handler or not_found), follow_redirects=True)
        state = build_state(
            settings=settings,
            embedding_service=embedding or KeywordEmbeddingService(),
            qdrant_client=QdrantClient(location=":memory:"),
            http_client=client,
            notifier=notifier or RecordingNotifier(),
            metrics=metrics or MetricsRecorder(enabled=False),
            reranker=reranker,
            expander=expander,
        )
        created.append(state)
        return state

    yield factory

    for state in created:
        state.close()
