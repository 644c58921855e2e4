"""Document fragment persistence on top of the Qdrant vector store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import List, Sequence
from uuid import UUID, uuid4

from .vector_store import QdrantVectorStore, StoredPoint, VectorRecord, match_filter

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DocumentFragment:
    id: str
    source_id: str
    agent_id: str
    content: str
    position: int
    created_at: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "agent_id": self.agent_id,
            "content": self.content,
            "position": self.position,
            "created_at": self.created_at,
        }

    @classmethod
    def from_point(cls, point: StoredPoint) -> "DocumentFragment":
        payload = point.payload
        return cls(
            id=str(payload.get("fragment_id") or point.id),
            source_id=str(payload.get("source_id", "")),
            agent_id=str(payload.get("agent_id", "")),
            content=str(payload.get("content", "")),
            position=int(payload.get("position", 0)),
            created_at=str(payload.get("created_at", "")),
        )


@dataclass(slots=True)
class RetrievedFragment:
    fragment: DocumentFragment
    score: float
    rerank_score: float | None = None

    def to_dict(self) -> dict:
        data = self.fragment.to_dict()
        data["score"] = self.score
        if self.rerank_score is not None:
            data["rerank_score"] = self.rerank_score
        return data


class FragmentRepository:
    """Store, list, delete and search fragments; point ids are fragment ids."""

    def __init__(self, store: QdrantVectorStore) -> None:
        self._store = store

    @property
    def store(self) -> QdrantVectorStore:
        return self._store

    def add(
        self,
        agent_id: str,
        source_id: str,
        contents: Sequence[str],
        embeddings: Sequence[Sequence[float]],
        *,
        start_position: int = 0,
    ) -> List[DocumentFragment]:
        if len(contents) != len(embeddings):
            msg = f"Received {len(embeddings)} embeddings for {len(contents)} fragments"
            raise ValueError(msg)

        created_at = _now()
        fragments: list[DocumentFragment] = []
        records: list[VectorRecord] = []
        for offset, (content, vector) in enumerate(zip(contents, embeddings)):
            if not content or not content.strip():
                raise ValueError("Fragment content must not be empty")
            fragment = DocumentFragment(
                id=str(uuid4()),
                source_id=source_id,
                agent_id=agent_id,
                content=content,
                position=start_position + offset,
                created_at=created_at,
            )
            payload = fragment.to_dict()
            payload["fragment_id"] = payload.pop("id")
            records.append(VectorRecord(id=fragment.id, vector=vector, payload=payload))
            fragments.append(fragment)

        self._store.upsert(records)
        logger.debug("fragments.added source=%s count=%s", source_id, len(fragments))
        return fragments

    def get(self, fragment_id: str) -> DocumentFragment | None:
        try:
            UUID(fragment_id)
        except ValueError:
            return None
        points = self._store.retrieve([fragment_id])
        return DocumentFragment.from_point(points[0]) if points else None

    def list_for_source(self, source_id: str) -> List[DocumentFragment]:
        """Return the source's fragments in document order."""

        fragments = [
            DocumentFragment.from_point(point)
            for point in self._store.iter_points(scroll_filter=match_filter(source_id=source_id))
        ]
        return sorted(fragments, key=lambda fragment: (fragment.created_at, fragment.position))

    def count_for_source(self, source_id: str) -> int:
        return self._store.count(match_filter(source_id=source_id))

    def delete_for_source(self, source_id: str) -> None:
        self._store.delete_by_filter(match_filter(source_id=source_id))
        logger.debug("fragments.deleted_for_source source=%s", source_id)

    def delete(self, fragment_id: str) -> bool:
        if self.get(fragment_id) is None:
            return False
        self._store.delete_by_ids([fragment_id])
        logger.info("fragments.deleted fragment=%s", fragment_id)
        return True

    def search(
        self,
        vector: Sequence[float],
        *,
        agent_id: str,
        source_ids: Sequence[str],
        limit: int,
    ) -> List[RetrievedFragment]:
        """Nearest fragments owned by *agent_id* within *source_ids*."""

        if not source_ids or limit <= 0:
            return []
        points = self._store.search(
            vector,
            limit=limit,
            query_filter=match_filter(agent_id=agent_id, source_id=list(source_ids)),
        )
        return [
            RetrievedFragment(fragment=DocumentFragment.from_point(point), score=float(point.score or 0.0))
            for point in points
        ]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


__all__ = ["DocumentFragment", "RetrievedFragment", "FragmentRepository"]
