"""Qdrant collection wrapper used for fragment storage and similarity search."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Iterable, Iterator, List, Sequence

from qdrant_client import QdrantClient, models

from .config import Settings

logger = logging.getLogger(__name__)

_PAYLOAD_INDEXES: dict[str, models.PayloadSchemaType] = {
    "agent_id": models.PayloadSchemaType.KEYWORD,
    "source_id": models.PayloadSchemaType.KEYWORD,
    "fragment_id": models.PayloadSchemaType.KEYWORD,
    "position": models.PayloadSchemaType.INTEGER,
}


@dataclass(slots=True)
class VectorRecord:
    """Point to be written to Qdrant."""

    id: str
    vector: Sequence[float]
    payload: dict[str, Any] | None = None


@dataclass(slots=True)
class StoredPoint:
    id: str
    payload: dict[str, Any]
    score: float | None = None
    vector: List[float] | None = None


def match_filter(**conditions: str | Sequence[str]) -> models.Filter:
    """Build a ``must`` filter; sequence values become ``MatchAny`` conditions."""

    must: list[models.Condition] = []
    for key, value in conditions.items():
        if isinstance(value, str):
            must.append(models.FieldCondition(key=key, match=models.MatchValue(value=value)))
        else:
            must.append(models.FieldCondition(key=key, match=models.MatchAny(any=list(value))))
    return models.Filter(must=must)


class QdrantVectorStore:
    """Thin wrapper around one Qdrant collection with a fixed vector size."""

    def __init__(
        self,
        client: QdrantClient,
        collection_name: str,
        *,
        vector_size: int,
        distance: models.Distance = models.Distance.COSINE,
    ) -> None:
        if vector_size <= 0:
            msg = "vector_size must be a positive integer"
            raise ValueError(msg)

        self._client = client
        self._collection_name = collection_name
        self._vector_size = vector_size
        self._distance = distance

    @classmethod
    def from_settings(cls, settings: Settings, *, vector_size: int) -> "QdrantVectorStore":
        client = QdrantClient(**settings.qdrant_client_kwargs())
        return cls(client, settings.qdrant_collection, vector_size=vector_size)

    @property
    def collection_name(self) -> str:
        return self._collection_name

    @property
    def vector_size(self) -> int:
        return self._vector_size

    @property
    def distance(self) -> models.Distance:
        return self._distance

    def ensure_collection(self, *, force_recreate: bool = False) -> None:
        """Create the collection, or recreate it when the stored vector size differs."""

        exists = self._client.collection_exists(self._collection_name)
        if exists and force_recreate:
            self._client.delete_collection(self._collection_name)
            exists = False

        if not exists:
            self._create_collection()
            return

        info = self._client.get_collection(self._collection_name)
        existing_size = info.config.params.vectors.size
        if existing_size != self._vector_size:
            logger.warning(
                "vector_store.recreate collection=%s stored_size=%s expected_size=%s",
                self._collection_name,
                existing_size,
                self._vector_size,
            )
            self._client.delete_collection(self._collection_name)
            self._create_collection()

    def ensure_payload_indexes(self) -> None:
        """Index the payload fields used in filters."""

        for field_name, schema in _PAYLOAD_INDEXES.items():
            try:
                self._client.create_payload_index(
                    collection_name=self._collection_name,
                    field_name=field_name,
                    field_schema=schema,
                )
            except Exception as exc:  # pragma: no cover - already exists
                if "exists" in str(exc).lower():
                    continue
                logger.warning(
                    "vector_store.index_failed collection=%s field=%s error=%s",
                    self._collection_name,
                    field_name,
                    exc,
                )

    def upsert(self, records: Sequence[VectorRecord], *, wait: bool = True) -> None:
        if not records:
            return

        ids: list[str] = []
        vectors: list[list[float]] = []
        payloads: list[dict[str, Any]] = []
        for record in records:
            vector = [float(value) for value in record.vector]
            if len(vector) != self._vector_size:
                msg = (
                    f"Vector for id {record.id!r} has length {len(vector)}, "
                    f"expected {self._vector_size}."
                )
                raise ValueError(msg)
            ids.append(record.id)
            vectors.append(vector)
            payloads.append(record.payload or {})

        self._client.upsert(
            collection_name=self._collection_name,
            points=models.Batch(ids=ids, vectors=vectors, payloads=payloads),
            wait=wait,
        )

    def search(
        self,
        vector: Sequence[float],
        *,
        limit: int = 5,
        query_filter: models.Filter | None = None,
        score_threshold: float | None = None,
        with_vectors: bool = False,
    ) -> List[StoredPoint]:
        """Return the points nearest to *vector*, best first."""

        query_vector = list(vector)
        if len(query_vector) != self._vector_size:
            msg = f"Query vector has length {len(query_vector)}, expected {self._vector_size}."
            raise ValueError(msg)

        response = self._client.query_points(
            collection_name=self._collection_name,
            query=query_vector,
            query_filter=query_filter,
            limit=limit,
            score_threshold=score_threshold,
            with_payload=True,
            with_vectors=with_vectors,
        )
        return [_to_stored(point, score=point.score) for point in response.points]

    def iter_points(
        self,
        *,
        scroll_filter: models.Filter | None = None,
        batch_size: int = 256,
        with_vectors: bool = False,
    ) -> Iterator[StoredPoint]:
        """Yield every point matching the optional filter."""

        offset = None
        while True:
            points, offset = self._client.scroll(
                collection_name=self._collection_name,
                scroll_filter=scroll_filter,
                with_payload=True,
                with_vectors=with_vectors,
                limit=batch_size,
                offset=offset,
            )
            for point in points:
                yield _to_stored(point)
            if offset is None:
                break

    def retrieve(self, ids: Iterable[str]) -> List[StoredPoint]:
        id_list = list(ids)
        if not id_list:
            return []
        points = self._client.retrieve(
            collection_name=self._collection_name,
            ids=id_list,
            with_payload=True,
        )
        return [_to_stored(point) for point in points]

    def count(self, count_filter: models.Filter | None = None) -> int:
        return self._client.count(
            collection_name=self._collection_name,
            count_filter=count_filter,
            exact=True,
        ).count

    def delete_by_ids(self, ids: Iterable[str]) -> None:
        id_list = list(ids)
        if not id_list:
            return
        self._client.delete(
            collection_name=self._collection_name,
            points_selector=models.PointIdsList(points=id_list),
        )

    def delete_by_filter(self, flt: models.Filter) -> models.UpdateResult:
        return self._client.delete(
            collection_name=self._collection_name,
            points_selector=models.FilterSelector(filter=flt),
        )

    def _create_collection(self) -> None:
        self._client.create_collection(
            collection_name=self._collection_name,
            vectors_config=models.VectorParams(size=self._vector_size, distance=self._distance),
        )


def _to_stored(point: Any, *, score: float | None = None) -> StoredPoint:
    vector = getattr(point, "vector", None)
    return StoredPoint(
        id=str(point.id),
        payload=dict(point.payload or {}),
        score=score,
        vector=list(vector) if isinstance(vector, list) else None,
    )


__all__ = ["QdrantVectorStore", "VectorRecord", "StoredPoint", "match_filter"]
