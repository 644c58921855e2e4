"""Knowledge base and knowledge source metadata with the source state machine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
import json
import logging
from pathlib import Path
import re
import threading
from typing import ClassVar, List, Union
from uuid import uuid4

from .errors import InvalidTransition, SourceNotFound
from .extractors import decode_data_url

logger = logging.getLogger(__name__)

_AGENT_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")
_TITLE_LIMIT = 160


class SourceType(str, Enum):
    TEXT = "TEXT"
    WEBSITE = "WEBSITE"
    VIDEO = "VIDEO"
    DOCUMENT = "DOCUMENT"


class SourceStatus(str, Enum):
    PROCESSING = "PROCESSING"
    READY = "READY"
    FAILED = "FAILED"


class UpdateInterval(str, Enum):
    """Refresh cadence read by an external scheduler."""

    NEVER = "NEVER"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


# Source specifications -------------------------------------------------------


@dataclass(slots=True)
class TextSource:
    kind: ClassVar[SourceType] = SourceType.TEXT

    text: str
    title: str | None = None
    update_interval: UpdateInterval = UpdateInterval.NEVER

    @property
    def origin(self) -> str:
        if self.title and self.title.strip():
            return self.title.strip()[:_TITLE_LIMIT]
        for line in self.text.splitlines():
            stripped = line.strip()
            if stripped:
                return stripped[:_TITLE_LIMIT]
        return "Untitled text"


@dataclass(slots=True)
class WebsiteSource:
    kind: ClassVar[SourceType] = SourceType.WEBSITE

    url: str
    crawl_subpages: bool = False
    update_interval: UpdateInterval = UpdateInterval.NEVER

    @property
    def origin(self) -> str:
        return self.url.strip()


@dataclass(slots=True)
class DocumentSource:
    """An uploaded file (``data``) or a document to download (``url``)."""

    kind: ClassVar[SourceType] = SourceType.DOCUMENT

    filename: str
    data: bytes | None = None
    url: str | None = None
    content_type: str | None = None
    update_interval: UpdateInterval = UpdateInterval.NEVER

    def __post_init__(self) -> None:
        if (self.data is None) == (self.url is None):
            raise ValueError("DocumentSource requires exactly one of data or url")

    @classmethod
    def from_data_url(cls, filename: str, value: str, **kwargs) -> "DocumentSource":
        data, content_type = decode_data_url(value)
        return cls(filename=filename, data=data, content_type=content_type, **kwargs)

    @property
    def origin(self) -> str:
        return self.filename.strip() or (self.url or "document")


@dataclass(slots=True)
class VideoSource:
    kind: ClassVar[SourceType] = SourceType.VIDEO

    url: str
    update_interval: UpdateInterval = UpdateInterval.NEVER

    @property
    def origin(self) -> str:
        return self.url.strip()


SourceSpec = Union[TextSource, WebsiteSource, DocumentSource, VideoSource]


# Persisted records -----------------------------------------------------------


@dataclass(slots=True)
class KnowledgeBase:
    id: str
    agent_id: str
    name: str
    created_at: str


@dataclass(slots=True)
class KnowledgeSource:
    id: str
    knowledge_base_id: str
    agent_id: str
    type: SourceType
    origin: str
    status: SourceStatus
    created_at: str
    updated_at: str
    error_message: str | None = None
    crawl_subpages: bool = False
    update_interval: UpdateInterval = UpdateInterval.NEVER
    fragment_count: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status is not SourceStatus.PROCESSING

    def to_dict(self) -> dict:
        data = asdict(self)
        data["type"] = self.type.value
        data["status"] = self.status.value
        data["update_interval"] = self.update_interval.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "KnowledgeSource":
        payload = dict(data)
        payload["type"] = SourceType(payload["type"])
        payload["status"] = SourceStatus(payload["status"])
        payload["update_interval"] = UpdateInterval(payload.get("update_interval") or "NEVER")
        return cls(**payload)


@dataclass(slots=True)
class _AgentRecord:
    knowledge_base: KnowledgeBase
    sources: List[KnowledgeSource] = field(default_factory=list)


class SourceStore:
    """File-based repository for knowledge bases and their sources.

    Each agent gets one JSON document under ``<root>/agents``. Writes go to a
    temporary file which then replaces the original, all under one lock.
    """

    def __init__(self, root: Path) -> None:
        self._root = root
        self._agents_dir = root / "agents"
        self._agents_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    # Knowledge bases ---------------------------------------------------------

    def get_knowledge_base(self, agent_id: str) -> KnowledgeBase | None:
        record = self._read(agent_id)
        return record.knowledge_base if record else None

    def ensure_knowledge_base(self, agent_id: str) -> KnowledgeBase:
        with self._lock:
            record = self._read(agent_id)
            if record is not None:
                return record.knowledge_base
            knowledge_base = KnowledgeBase(
                id=uuid4().hex,
                agent_id=agent_id,
                name=f"{agent_id} Knowledge Base",
                created_at=_now(),
            )
            self._write(_AgentRecord(knowledge_base=knowledge_base))
            logger.info("knowledge_base.created agent=%s id=%s", agent_id, knowledge_base.id)
            return knowledge_base

    # Sources -----------------------------------------------------------------

    def create_source(self, agent_id: str, spec: SourceSpec) -> KnowledgeSource:
        with self._lock:
            knowledge_base = self.ensure_knowledge_base(agent_id)
            record = self._require(agent_id)
            now = _now()
            source = KnowledgeSource(
                id=uuid4().hex,
                knowledge_base_id=knowledge_base.id,
                agent_id=agent_id,
                type=spec.kind,
                origin=spec.origin,
                status=SourceStatus.PROCESSING,
                created_at=now,
                updated_at=now,
                crawl_subpages=bool(getattr(spec, "crawl_subpages", False)),
                update_interval=UpdateInterval(spec.update_interval),
            )
            record.sources.append(source)
            self._write(record)
        logger.info(
            "source.created agent=%s source=%s type=%s origin=%s",
            agent_id,
            source.id,
            source.type.value,
            source.origin,
        )
        return source

    def get_source(self, agent_id: str, source_id: str) -> KnowledgeSource | None:
        record = self._read(agent_id)
        if record is None:
            return None
        for source in record.sources:
            if source.id == source_id:
                return source
        return None

    def find_source(self, source_id: str) -> KnowledgeSource | None:
        """Look a source up by id across all agents."""

        for path in sorted(self._agents_dir.glob("*.json")):
            source = self.get_source(path.stem, source_id)
            if source is not None:
                return source
        return None

    def list_sources(self, agent_id: str) -> List[KnowledgeSource]:
        record = self._read(agent_id)
        if record is None:
            return []
        return sorted(record.sources, key=lambda source: source.created_at)

    def ready_source_ids(self, agent_id: str) -> List[str]:
        return [source.id for source in self.list_sources(agent_id) if source.status is SourceStatus.READY]

    def mark_ready(self, agent_id: str, source_id: str, *, fragment_count: int) -> KnowledgeSource:
        if fragment_count < 1:
            raise InvalidTransition(f"Source {source_id} cannot become READY without fragments")
        return self._transition(
            agent_id,
            source_id,
            SourceStatus.READY,
            error_message=None,
            fragment_count=fragment_count,
        )

    def mark_failed(
        self,
        agent_id: str,
        source_id: str,
        message: str,
        *,
        fragment_count: int = 0,
    ) -> KnowledgeSource:
        return self._transition(
            agent_id,
            source_id,
            SourceStatus.FAILED,
            error_message=message.strip() or "Ingestion failed",
            fragment_count=fragment_count,
        )

    def update_fragment_count(self, agent_id: str, source_id: str, fragment_count: int) -> KnowledgeSource:
        with self._lock:
            record = self._require(agent_id)
            source = _find(record, source_id)
            source.fragment_count = max(0, fragment_count)
            source.updated_at = _now()
            self._write(record)
            return source

    def delete_source(self, agent_id: str, source_id: str) -> bool:
        with self._lock:
            record = self._read(agent_id)
            if record is None:
                return False
            remaining = [source for source in record.sources if source.id != source_id]
            if len(remaining) == len(record.sources):
                return False
            record.sources = remaining
            self._write(record)
        logger.info("source.deleted agent=%s source=%s", agent_id, source_id)
        return True

    # Internal helpers --------------------------------------------------------

    def _transition(
        self,
        agent_id: str,
        source_id: str,
        status: SourceStatus,
        *,
        error_message: str | None,
        fragment_count: int,
    ) -> KnowledgeSource:
        with self._lock:
            record = self._require(agent_id)
            source = _find(record, source_id)
            if source.status is not SourceStatus.PROCESSING:
                raise InvalidTransition(
                    f"Source {source_id} is {source.status.value}; cannot move to {status.value}"
                )
            source.status = status
            source.error_message = error_message
            source.fragment_count = fragment_count
            source.updated_at = _now()
            self._write(record)
        logger.info(
            "source.transition agent=%s source=%s status=%s fragments=%s",
            agent_id,
            source_id,
            status.value,
            fragment_count,
        )
        return source

    def _path(self, agent_id: str) -> Path:
        if not _AGENT_ID_RE.match(agent_id):
            raise ValueError(f"Invalid agent id: {agent_id!r}")
        return self._agents_dir / f"{agent_id}.json"

    def _require(self, agent_id: str) -> _AgentRecord:
        record = self._read(agent_id)
        if record is None:
            raise SourceNotFound(f"Agent {agent_id} has no knowledge base")
        return record

    def _read(self, agent_id: str) -> _AgentRecord | None:
        path = self._path(agent_id)
        with self._lock:
            if not path.exists():
                return None
            with path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        return _AgentRecord(
            knowledge_base=KnowledgeBase(**data["knowledge_base"]),
            sources=[KnowledgeSource.from_dict(item) for item in data.get("sources", [])],
        )

    def _write(self, record: _AgentRecord) -> None:
        path = self._path(record.knowledge_base.agent_id)
        payload = {
            "knowledge_base": asdict(record.knowledge_base),
            "sources": [source.to_dict() for source in record.sources],
        }
        tmp_path = path.with_suffix(".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
        tmp_path.replace(path)


def _find(record: _AgentRecord, source_id: str) -> KnowledgeSource:
    for source in record.sources:
        if source.id == source_id:
            return source
    raise SourceNotFound(f"Source {source_id} not found")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


__all__ = [
    "SourceType",
    "SourceStatus",
    "UpdateInterval",
    "TextSource",
    "WebsiteSource",
    "DocumentSource",
    "VideoSource",
    "SourceSpec",
    "KnowledgeBase",
    "KnowledgeSource",
    "SourceStore",
]
