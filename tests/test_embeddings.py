from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
import pytest

from lodestone.config import Settings
from lodestone.embeddings import EmbeddingBackend, EmbeddingService

OPENAI_DIMENSION = 1536


@dataclass
class _StubModel:
    name: str
    dimension: int = 3

    def encode(self, texts: list[str], show_progress_bar: bool = False) -> list[list[float]]:  # noqa: ARG002
        return [[float(len(text)), 0.0, 0.0] for text in texts]

    def get_sentence_embedding_dimension(self) -> int:
        return self.dimension


class _StubOpenAIEmbeddings:
    def __init__(self, width: int = OPENAI_DIMENSION) -> None:
        self.calls: list[dict[str, Any]] = []
        self.width = width

    def create(self, model: str, input: list[str], timeout: float | None = None) -> Any:  # noqa: ANN401
        self.calls.append({"model": model, "input": list(input), "timeout": timeout})
        padding = [0.0] * (self.width - 1)
        return type(
            "Response",
            (),
            {"data": [type("Item", (), {"embedding": [float(len(text))] + padding}) for text in input]},
        )()


class _StubOpenAIModels:
    def __init__(self) -> None:
        self.retrieved: list[str] = []

    def retrieve(self, name: str) -> None:
        self.retrieved.append(name)


class _StubOpenAIClient:
    instances: list["_StubOpenAIClient"] = []

    def __init__(self, api_key: str, timeout: float | None = None) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self.embeddings = _StubOpenAIEmbeddings()
        self.models = _StubOpenAIModels()
        _StubOpenAIClient.instances.append(self)


class _StubHttpxResponse:
    def __init__(self, vector: list[float] | None) -> None:
        self._vector = vector

    def raise_for_status(self) -> None:
        return None

    def json(self) -> dict[str, Any]:
        return {} if self._vector is None else {"embedding": self._vector}


class _StubHttpxClient:
    def __init__(self, base_url: str, timeout: float) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self.requests: list[tuple[str, dict[str, str], float]] = []
        self.closed = False

    def post(self, url: str, json: dict[str, str], timeout: float) -> _StubHttpxResponse:
        self.requests.append((url, json, timeout))
        length = float(len(json.get("prompt", "")))
        return _StubHttpxResponse([length, 1.0, 0.0])

    def close(self) -> None:
        self.closed = True


class _StubHttpxModule:
    HTTPError = httpx.HTTPError

    def __init__(self) -> None:
        self.created: list[_StubHttpxClient] = []

    def Client(self, *args: Any, **kwargs: Any) -> _StubHttpxClient:  # noqa: N802
        client = _StubHttpxClient(*args, **kwargs)
        self.created.append(client)
        return client


def test_huggingface_backend_uses_sentence_transformer(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "lodestone.embeddings.SentenceTransformer", lambda name: _StubModel(name=name)
    )
    service = EmbeddingService(Settings())

    assert service.backend is EmbeddingBackend.HUGGINGFACE
    assert service.dimension == 3
    assert service.model_identifier == "sentence-transformers/all-MiniLM-L6-v2"
    assert service.embed(["hello"]) == [[5.0, 0.0, 0.0]]
    assert service.embed_one("hi") == [2.0, 0.0, 0.0]
    assert service.embed([]) == []


def test_huggingface_backend_rejects_zero_dimension(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "lodestone.embeddings.SentenceTransformer", lambda name: _StubModel(name=name, dimension=0)
    )

    with pytest.raises(ValueError):
        EmbeddingService(Settings())


def test_batch_with_wrong_dimension_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "lodestone.embeddings.SentenceTransformer", lambda name: _StubModel(name=name, dimension=4)
    )
    service = EmbeddingService(Settings())

    with pytest.raises(RuntimeError, match="dimension changed from 4 to 3"):
        service.embed(["refund policy"])


def test_batch_with_missing_vectors_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    class _ShortModel(_StubModel):
        def encode(self, texts: list[str], show_progress_bar: bool = False) -> list[list[float]]:  # noqa: ARG002
            return [[1.0, 0.0, 0.0]]

    monkeypatch.setattr("lodestone.embeddings.SentenceTransformer", lambda name: _ShortModel(name=name))
    service = EmbeddingService(Settings())

    with pytest.raises(RuntimeError, match="1 vectors for 2 texts"):
        service.embed(["refunds", "shipping"])


def test_openai_backend_calls_api_with_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    _StubOpenAIClient.instances.clear()
    monkeypatch.setattr("lodestone.embeddings.OpenAI", _StubOpenAIClient)

    settings = Settings(embedding_model="text-embedding-3-small", openai_api_key="token", embedding_timeout=7.5)
    service = EmbeddingService(settings)

    vectors = service.embed(["hi", "team"])

    assert service.backend is EmbeddingBackend.OPENAI
    assert service.dimension == OPENAI_DIMENSION
    assert [vector[0] for vector in vectors] == [2.0, 4.0]
    assert all(len(vector) == OPENAI_DIMENSION for vector in vectors)

    client = _StubOpenAIClient.instances[0]
    assert client.models.retrieved == ["text-embedding-3-small"]
    assert client.timeout == 7.5
    assert client.embeddings.calls == [
        {"model": "text-embedding-3-small", "input": ["hi", "team"], "timeout": 7.5}
    ]


def test_openai_backend_requires_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("lodestone.embeddings.OpenAI", _StubOpenAIClient)

    settings = Settings(embedding_model="text-embedding-3-large", openai_api_key=None)
    with pytest.raises(ValueError):
        EmbeddingService(settings)


def test_ollama_backend_calls_local_api(monkeypatch: pytest.MonkeyPatch) -> None:
    stub_httpx = _StubHttpxModule()
    monkeypatch.setattr("lodestone.embeddings.httpx", stub_httpx)

    settings = Settings(
        embedding_model="ollama:nomic-embed-text",
        ollama_embedding_concurrency=1,
        embedding_timeout=4.0,
    )
    service = EmbeddingService(settings, validate=False)

    assert service.backend is EmbeddingBackend.OLLAMA
    assert service.dimension == 3
    assert service.embed(["hi", "team"]) == [[2.0, 1.0, 0.0], [4.0, 1.0, 0.0]]

    client = stub_httpx.created[0]
    assert client.base_url == "http://localhost:11434"
    assert len(client.requests) == 1 + 2  # dimension probe + two embedding calls
    assert client.requests[1] == (
        "http://localhost:11434/api/embeddings",
        {"model": "nomic-embed-text", "prompt": "hi"},
        4.0,
    )

    service.close()
    assert client.closed


def test_ollama_backend_supports_explicit_base_url(monkeypatch: pytest.MonkeyPatch) -> None:
    stub_httpx = _StubHttpxModule()
    monkeypatch.setattr("lodestone.embeddings.httpx", stub_httpx)

    settings = Settings(embedding_model="ollama:http://remote-host:9999/qwen3-embedding")
    service = EmbeddingService(settings, validate=False)

    assert service.embed(["hi"]) == [[2.0, 1.0, 0.0]]
    client = stub_httpx.created[0]
    assert client.base_url == "http://remote-host:9999"
    assert client.requests[-1][1]["model"] == "qwen3-embedding"


def test_ollama_backend_missing_embedding_field(monkeypatch: pytest.MonkeyPatch) -> None:
    stub_httpx = _StubHttpxModule()
    monkeypatch.setattr("lodestone.embeddings.httpx", stub_httpx)
    monkeypatch.setattr(
        _StubHttpxClient, "post", lambda self, url, json, timeout: _StubHttpxResponse(None)
    )

    with pytest.raises(RuntimeError):
        EmbeddingService(Settings(embedding_model="ollama:nomic-embed-text"), validate=False)
