"""Second-stage reranking of retrieved fragments."""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
import math
from typing import List, Optional, Protocol, Sequence

from sentence_transformers import CrossEncoder

from .config import Settings
from .fragments import RetrievedFragment

logger = logging.getLogger(__name__)

_MAX_TEXT_CHARS = 2000


class Embedder(Protocol):
    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        ...

    def embed_one(self, text: str) -> List[float]:
        ...


class Reranker(Protocol):
    name: str

    def rerank(
        self,
        query: str,
        *,
        query_embedding: Sequence[float] | None,
        fragments: Sequence[RetrievedFragment],
        top_k: int | None = None,
    ) -> List[RetrievedFragment]:
        ...


@dataclass(slots=True)
class DisabledReranker:
    """Keeps the vector-search order."""

    name: str = "none"

    def rerank(
        self,
        query: str,
        *,
        query_embedding: Sequence[float] | None,
        fragments: Sequence[RetrievedFragment],
        top_k: int | None = None,
    ) -> List[RetrievedFragment]:
        limit = top_k if top_k is not None else len(fragments)
        return list(fragments[:limit])


class _ScoringReranker:
    """Score the first ``max_candidates`` fragments and reorder them.

    Fragments beyond the candidate window keep their incoming order after the
    rescored ones.
    """

    name = "base"

    def __init__(self, *, max_candidates: int) -> None:
        if max_candidates <= 0:
            raise ValueError("max_candidates must be positive")
        self._max_candidates = max_candidates

    def rerank(
        self,
        query: str,
        *,
        query_embedding: Sequence[float] | None,
        fragments: Sequence[RetrievedFragment],
        top_k: int | None = None,
    ) -> List[RetrievedFragment]:
        limit = top_k if top_k is not None else len(fragments)
        candidates = list(fragments[: self._max_candidates])
        spillover = list(fragments[self._max_candidates :])
        if not candidates:
            return []

        texts = [item.fragment.content[:_MAX_TEXT_CHARS] for item in candidates]
        scores = self._score(query, query_embedding, texts)
        rescored = [
            replace(item, rerank_score=float(score)) for item, score in zip(candidates, scores)
        ]
        rescored.sort(key=lambda item: item.rerank_score or 0.0, reverse=True)
        return (rescored + spillover)[:limit]

    def _score(
        self,
        query: str,
        query_embedding: Sequence[float] | None,
        texts: Sequence[str],
    ) -> List[float]:
        raise NotImplementedError


class EmbeddingReranker(_ScoringReranker):
    """Re-embed candidate fragments and order them by cosine similarity."""

    name = "embedding"

    def __init__(self, embedding_service: Embedder, *, max_candidates: int = 20) -> None:
        super().__init__(max_candidates=max_candidates)
        self._embedding = embedding_service

    def _score(self, query, query_embedding, texts):
        query_vector = list(query_embedding) if query_embedding is not None else self._embedding.embed_one(query)
        vectors = self._embedding.embed(list(texts))
        return [_cosine_similarity(query_vector, vector) for vector in vectors]


class CrossEncoderReranker(_ScoringReranker):
    """Score (query, fragment) pairs with a sentence-transformers cross encoder."""

    name = "cross_encoder"

    def __init__(self, model_name: str, *, max_candidates: int = 20) -> None:
        super().__init__(max_candidates=max_candidates)
        self._model = CrossEncoder(model_name)

    def _score(self, query, query_embedding, texts):
        return [float(score) for score in self._model.predict([[query, text] for text in texts])]


def build_reranker(settings: Settings, embedding_service: Embedder) -> Optional[Reranker]:
    """Instantiate the configured reranker strategy, or ``None`` when disabled."""

    strategy = (settings.reranker_strategy or "none").strip().lower()
    if not strategy or strategy == "none":
        return None
    max_candidates = max(1, settings.reranker_max_candidates)
    if strategy == "embedding":
        return EmbeddingReranker(embedding_service, max_candidates=max_candidates)
    if strategy in {"cross", "cross_encoder", "cross-encoder"}:
        model = settings.reranker_model or "cross-encoder/ms-marco-MiniLM-L-6-v2"
        logger.info("reranker.cross_encoder.initialising model=%s", model)
        return CrossEncoderReranker(model, max_candidates=max_candidates)
    raise ValueError(f"Unsupported reranker strategy: {settings.reranker_strategy}")


def _cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    if not vec_a or not vec_b or len(vec_a) != len(vec_b):
        return 0.0
    dot = sum(float(a) * float(b) for a, b in zip(vec_a, vec_b))
    norm_a = math.sqrt(sum(float(a) * float(a) for a in vec_a))
    norm_b = math.sqrt(sum(float(b) * float(b) for b in vec_b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


__all__ = [
    "Reranker",
    "DisabledReranker",
    "EmbeddingReranker",
    "CrossEncoderReranker",
    "build_reranker",
]
