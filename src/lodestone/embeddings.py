"""Embedding service supporting OpenAI, SentenceTransformers and Ollama backends."""

from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from enum import Enum, auto
import logging
import time
from typing import List, Protocol

import httpx
from openai import OpenAI
from sentence_transformers import SentenceTransformer

from .config import Settings

logger = logging.getLogger(__name__)


class EmbeddingBackend(Enum):
    """Supported embedding backends."""

    OPENAI = auto()
    HUGGINGFACE = auto()
    OLLAMA = auto()


class _Encoder(Protocol):
    dimension: int

    def encode(self, texts: Sequence[str], timeout: float) -> List[List[float]]:
        ...

    def close(self) -> None:
        ...


class _OpenAIEncoder:
    def __init__(self, settings: Settings, *, validate: bool) -> None:
        api_key = settings.openai_api_key or None
        if not api_key:
            msg = "OPENAI_API_KEY must be set when using the OpenAI embedding backend."
            raise ValueError(msg)
        self._model = settings.embedding_model
        self.client = OpenAI(api_key=api_key, timeout=settings.embedding_timeout)
        self.dimension = settings.openai_embedding_dimension
        if validate:
            # Raises when the configured model is not available to this key.
            self.client.models.retrieve(self._model)

    def encode(self, texts: Sequence[str], timeout: float) -> List[List[float]]:
        result = self.client.embeddings.create(model=self._model, input=list(texts), timeout=timeout)
        return [item.embedding for item in result.data]

    def close(self) -> None:
        return None


class _SentenceTransformerEncoder:
    """Local model; runs in-process so the timeout does not apply."""

    def __init__(self, settings: Settings, *, validate: bool) -> None:
        model_name = settings.embedding_model
        self.model = SentenceTransformer(model_name)
        self.dimension = int(self.model.get_sentence_embedding_dimension() or 0)
        if validate and self.dimension <= 0:
            msg = f"Unexpected embedding dimension ({self.dimension}) for model '{model_name}'."
            raise ValueError(msg)

    def encode(self, texts: Sequence[str], timeout: float) -> List[List[float]]:  # noqa: ARG002
        vectors = self.model.encode(list(texts), show_progress_bar=False)
        if hasattr(vectors, "tolist"):
            return vectors.tolist()
        return [list(vector) for vector in vectors]

    def close(self) -> None:
        return None


class _OllamaEncoder:
    """One ``/api/embeddings`` request per text, fanned out over a small pool."""

    def __init__(self, settings: Settings) -> None:
        self.model, self.base_url = settings.ollama_embedding_endpoint
        self._concurrency = max(1, settings.ollama_embedding_concurrency)
        self.client = httpx.Client(base_url=self.base_url, timeout=settings.embedding_timeout)
        vector = self._embed_text("__dimension_probe__", settings.embedding_timeout)
        if not vector:
            msg = f"Ollama embedding backend '{self.model}' returned no data."
            raise ValueError(msg)
        self.dimension = len(vector)
        logger.info("embeddings.ollama.ready model=%s dimension=%s", self.model, self.dimension)

    def encode(self, texts: Sequence[str], timeout: float) -> List[List[float]]:
        workers = min(self._concurrency, len(texts))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(lambda text: self._embed_text(text, timeout), texts))

    def close(self) -> None:
        self.client.close()

    def _embed_text(self, text: str, timeout: float) -> List[float]:
        # Fully-qualified URL keeps any base path prefix.
        url = f"{self.base_url.rstrip('/')}/api/embeddings"
        try:
            response = self.client.post(url, json={"model": self.model, "prompt": text}, timeout=timeout)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise RuntimeError(f"Ollama embedding request failed: {exc}") from exc

        embedding = response.json().get("embedding")
        if embedding is None:
            msg = "Ollama embedding response did not include an 'embedding' field."
            raise RuntimeError(msg)
        return [float(value) for value in embedding]


class EmbeddingService:
    """Text to vector function shared by ingestion and retrieval.

    Every fragment and every query goes through the same instance so both sides
    live in one embedding space. Each batch is checked against the fixed
    dimensionality before it reaches the vector store.
    """

    def __init__(self, settings: Settings, *, validate: bool = True) -> None:
        self._settings = settings
        self._timeout = settings.embedding_timeout
        self._encoder: _Encoder
        if settings.is_openai_backend:
            self._backend = EmbeddingBackend.OPENAI
            self._encoder = _OpenAIEncoder(settings, validate=validate)
        elif settings.is_ollama_embedding_backend:
            self._backend = EmbeddingBackend.OLLAMA
            self._encoder = _OllamaEncoder(settings)
        else:
            self._backend = EmbeddingBackend.HUGGINGFACE
            self._encoder = _SentenceTransformerEncoder(settings, validate=validate)

    @classmethod
    def from_env(cls, *, validate: bool = True) -> "EmbeddingService":
        return cls(Settings.from_env(), validate=validate)

    @property
    def backend(self) -> EmbeddingBackend:
        return self._backend

    @property
    def dimension(self) -> int:
        return self._encoder.dimension

    @property
    def model_identifier(self) -> str:
        return self._settings.embedding_model

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed one batch of fragment texts, one vector per text in order.

        Raises ``RuntimeError`` when the backend returns the wrong number of
        vectors or a vector of the wrong dimensionality.
        """

        if not texts:
            return []
        started = time.perf_counter()
        vectors = self._encoder.encode(texts, self._timeout)
        self._check_batch(texts, vectors)
        logger.debug(
            "embeddings.batch backend=%s size=%s duration_ms=%.1f",
            self._backend.name.lower(),
            len(texts),
            (time.perf_counter() - started) * 1000,
        )
        return [[float(value) for value in vector] for vector in vectors]

    def embed_one(self, text: str) -> List[float]:
        return self.embed([text])[0]

    def close(self) -> None:
        """Release any underlying client resources."""

        self._encoder.close()

    def _check_batch(self, texts: Sequence[str], vectors: Sequence[Sequence[float]]) -> None:
        if len(vectors) != len(texts):
            msg = f"Embedding backend returned {len(vectors)} vectors for {len(texts)} texts."
            raise RuntimeError(msg)
        expected = self.dimension
        for vector in vectors:
            if len(vector) != expected:
                msg = f"Embedding dimension changed from {expected} to {len(vector)}."
                raise RuntimeError(msg)


__all__ = ["EmbeddingBackend", "EmbeddingService"]
