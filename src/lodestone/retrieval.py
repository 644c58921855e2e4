"""Nearest-fragment lookup for an agent's ready knowledge."""

from __future__ import annotations

import logging
import time
from typing import List, Protocol, Sequence

from .config import Settings
from .errors import RetrievalFailed
from .fragments import FragmentRepository, RetrievedFragment
from .observability import MetricsRecorder
from .query_expansion import QueryExpander
from .reranker import Reranker
from .sources import SourceStore

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    def embed_one(self, text: str) -> List[float]:
        ...


def rank_candidates(candidates: Sequence[RetrievedFragment]) -> List[RetrievedFragment]:
    """Order by descending score; equal scores put the newest fragment first."""

    return sorted(
        candidates,
        key=lambda item: (item.score, item.fragment.created_at, item.fragment.position),
        reverse=True,
    )


class Retriever:
    """Embed the query and return the agent's most similar fragments.

    Only fragments of READY sources are considered. A candidate pool larger
    than ``k`` is fetched so reranking has room to reorder; errors from the
    expander or reranker fall back to the plain vector ranking. Embedding or
    vector store failures raise ``RetrievalFailed``; an empty result means
    a blank query or no matching ready knowledge.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        sources: SourceStore,
        fragments: FragmentRepository,
        embedding: Embedder,
        reranker: Reranker | None = None,
        expander: QueryExpander | None = None,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self._settings = settings
        self._sources = sources
        self._fragments = fragments
        self._embedding = embedding
        self._reranker = reranker
        self._expander = expander
        self._metrics = metrics

    def retrieve(self, agent_id: str, query: str, k: int | None = None) -> List[RetrievedFragment]:
        limit = self._settings.retrieval_top_k if k is None else k
        if limit <= 0:
            raise ValueError("k must be a positive integer")
        if not query or not query.strip():
            return []

        ready = self._sources.ready_source_ids(agent_id)
        if not ready:
            logger.info("retrieval.no_ready_sources agent=%s", agent_id)
            return []

        started = time.perf_counter()
        try:
            results = self._retrieve(agent_id, query.strip(), ready, limit)
        except Exception as exc:
            logger.warning("retrieval.failed agent=%s error=%s", agent_id, exc)
            raise RetrievalFailed(f"Retrieval failed for agent {agent_id}: {exc}") from exc

        logger.info(
            "retrieval.completed agent=%s sources=%s results=%s",
            agent_id,
            len(ready),
            len(results),
        )
        if self._metrics:
            self._metrics.record_timing(
                "retrieval.duration",
                time.perf_counter() - started,
                reranker=self._reranker.name if self._reranker else "none",
            )
        return results

    def _retrieve(self, agent_id: str, query: str, ready: Sequence[str], limit: int) -> List[RetrievedFragment]:
        search_text = self._expander.expand(query) if self._expander else query
        query_vector = self._embedding.embed_one(search_text)
        pool = max(self._settings.retrieval_candidate_pool, limit)
        candidates = rank_candidates(
            self._fragments.search(query_vector, agent_id=agent_id, source_ids=ready, limit=pool)
        )
        if self._reranker is None or not candidates:
            return candidates[:limit]

        try:
            return self._reranker.rerank(
                query,
                query_embedding=query_vector if search_text == query else None,
                fragments=candidates,
                top_k=limit,
            )
        except Exception as exc:
            logger.warning("retrieval.rerank_failed reranker=%s error=%s", self._reranker.name, exc)
            return candidates[:limit]


__all__ = ["Retriever", "rank_candidates"]
