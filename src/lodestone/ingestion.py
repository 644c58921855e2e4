"""Ingestion orchestrator: turn a source specification into stored fragments."""

from __future__ import annotations

import logging
from pathlib import PurePosixPath
import time
from typing import List, Protocol, Sequence
from urllib.parse import urlparse

import httpx

from .config import Settings
from .discovery import UrlDiscoverer, resolve_mode
from .errors import EmbeddingFailed, FetchFailed, InvalidTransition, SourceNotFound, ZeroContent
from .extractors import extract_text
from .fetching import FetchChain
from .fragments import DocumentFragment, FragmentRepository
from .normalizer import extract_title
from .notifications import KnowledgeChangeNotifier, LoggingNotifier
from .observability import MetricsRecorder
from .segmenter import segment
from .sources import (
    DocumentSource,
    KnowledgeSource,
    SourceSpec,
    SourceStatus,
    SourceStore,
    TextSource,
    VideoSource,
    WebsiteSource,
)

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        ...


def ensure_scheme(url: str) -> str:
    """Prefix ``https://`` when *url* has no scheme."""

    cleaned = url.strip()
    if not cleaned:
        raise ValueError("URL must not be empty")
    if not cleaned.lower().startswith(("http://", "https://")):
        cleaned = f"https://{cleaned}"
    return cleaned


class IngestionOrchestrator:
    """Drive each source from PROCESSING to READY or FAILED.

    ``process_source`` never raises for ingestion problems: every failure ends
    as a FAILED transition carrying the error message, and the notifier is told
    about every terminal transition.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        sources: SourceStore,
        fragments: FragmentRepository,
        embedding: Embedder,
        discoverer: UrlDiscoverer,
        fetch_chain: FetchChain,
        http_client: httpx.Client,
        notifier: KnowledgeChangeNotifier | None = None,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self._settings = settings
        self._sources = sources
        self._fragments = fragments
        self._embedding = embedding
        self._discoverer = discoverer
        self._fetch_chain = fetch_chain
        self._http = http_client
        self._notifier = notifier or LoggingNotifier()
        self._metrics = metrics

    # Caller-facing operations -----------------------------------------------

    def add_source(self, agent_id: str, spec: SourceSpec) -> KnowledgeSource:
        """Create the source record and ingest it synchronously."""

        source = self.create_source(agent_id, spec)
        return self.process_source(source, spec)

    def create_source(self, agent_id: str, spec: SourceSpec) -> KnowledgeSource:
        if not isinstance(spec, (TextSource, WebsiteSource, DocumentSource, VideoSource)):
            raise TypeError(f"Unsupported source specification: {type(spec).__name__}")
        return self._sources.create_source(agent_id, spec)

    def process_source(self, source: KnowledgeSource, spec: SourceSpec) -> KnowledgeSource:
        if source.status is not SourceStatus.PROCESSING:
            raise InvalidTransition(f"Source {source.id} is already {source.status.value}")

        metrics = self._metrics
        started = time.perf_counter()
        logger.info(
            "ingest.start agent=%s source=%s type=%s origin=%s",
            source.agent_id,
            source.id,
            source.type.value,
            source.origin,
        )
        try:
            # Leftovers from an abandoned attempt must not count towards this one.
            self._fragments.delete_for_source(source.id)
            contents = self._build_fragments(source, spec)
            if not contents:
                raise ZeroContent(_zero_content_message(spec))
            persisted = self._embed_and_store(source, contents)
            result = self._sources.mark_ready(source.agent_id, source.id, fragment_count=persisted)
            logger.info(
                "ingest.completed agent=%s source=%s fragments=%s",
                source.agent_id,
                source.id,
                persisted,
            )
        except Exception as exc:
            result = self._fail(source, exc)

        if metrics:
            metrics.record_timing(
                "ingestion.total_duration",
                time.perf_counter() - started,
                type=source.type.value,
                status=result.status.value,
            )
            metrics.increment("ingestion.sources", type=source.type.value, status=result.status.value)
        self._notify(source.agent_id)
        return result

    def delete_source(self, agent_id: str, source_id: str) -> None:
        """Delete the source's fragments, then the source record."""

        source = self._sources.get_source(agent_id, source_id)
        if source is None:
            raise SourceNotFound(f"Source {source_id} not found")
        self._fragments.delete_for_source(source_id)
        self._sources.delete_source(agent_id, source_id)
        logger.info("ingest.source_deleted agent=%s source=%s", agent_id, source_id)
        self._notify(agent_id)

    def list_fragments(self, source_id: str) -> List[DocumentFragment]:
        return self._fragments.list_for_source(source_id)

    def delete_fragment(self, fragment_id: str) -> bool:
        """Remove one fragment. The last fragment of a READY source is kept."""

        fragment = self._fragments.get(fragment_id)
        if fragment is None:
            return False
        source = self._sources.get_source(fragment.agent_id, fragment.source_id)
        remaining = self._fragments.count_for_source(fragment.source_id) - 1
        if source is not None and source.status is SourceStatus.READY and remaining < 1:
            raise InvalidTransition(
                "Cannot delete the last fragment of a ready source; delete the source instead"
            )
        self._fragments.delete(fragment_id)
        if source is not None:
            self._sources.update_fragment_count(source.agent_id, source.id, remaining)
        self._notify(fragment.agent_id)
        return True

    # Source-type handlers ----------------------------------------------------

    def _build_fragments(self, source: KnowledgeSource, spec: SourceSpec) -> List[str]:
        if isinstance(spec, TextSource):
            return self._segment(spec.text)
        if isinstance(spec, WebsiteSource):
            return self._segment(self._collect_website(source, spec))
        if isinstance(spec, DocumentSource):
            return self._segment(self._collect_document(spec))
        if isinstance(spec, VideoSource):
            return [self._video_placeholder(spec)]
        raise TypeError(f"Unsupported source specification: {type(spec).__name__}")

    def _segment(self, text: str) -> List[str]:
        return segment(
            text,
            size=self._settings.fragment_size,
            overlap=self._settings.fragment_overlap,
        )

    def _collect_website(self, source: KnowledgeSource, spec: WebsiteSource) -> str:
        root_url = ensure_scheme(spec.url)
        mode = resolve_mode(root_url, spec.crawl_subpages)
        discovered = self._discoverer.discover(root_url, mode)
        if not discovered:
            raise ZeroContent(f"No pages were discovered at {root_url}")

        cap = self._settings.crawl_max_pages
        urls = discovered[:cap]
        if len(discovered) > cap:
            logger.info(
                "ingest.crawl_capped source=%s discovered=%s cap=%s",
                source.id,
                len(discovered),
                cap,
            )

        results = self._fetch_chain.fetch_pages(urls)
        pages = [result for result in results if result.ok]
        failed = [result for result in results if not result.ok]
        logger.info(
            "ingest.pages source=%s mode=%s fetched=%s failed=%s",
            source.id,
            mode.value,
            len(pages),
            len(failed),
        )
        if self._metrics:
            self._metrics.increment("ingestion.pages_fetched", value=len(pages), mode=mode.value)
            self._metrics.increment("ingestion.pages_failed", value=len(failed), mode=mode.value)

        if not pages:
            details = "; ".join(f"{result.url}: {result.error}" for result in failed[:3])
            raise FetchFailed(f"Could not fetch any page from {root_url}: {details}")
        return "\n\n".join(f"Source: {page.url}\n\n{page.text}" for page in pages)

    def _collect_document(self, spec: DocumentSource) -> str:
        filename = spec.filename
        content_type = spec.content_type
        if spec.data is not None:
            data = spec.data
        else:
            data, downloaded_type = self._download(ensure_scheme(spec.url or ""))
            content_type = content_type or downloaded_type
            if not PurePosixPath(filename).suffix:
                filename = PurePosixPath(urlparse(spec.url or "").path).name or filename

        if not data:
            raise ZeroContent(f"Document {filename} is empty")
        return extract_text(data, filename, content_type)

    def _download(self, url: str) -> tuple[bytes, str | None]:
        try:
            response = self._http.get(url, timeout=self._settings.fetch_timeout, follow_redirects=True)
        except httpx.HTTPError as exc:
            raise FetchFailed(f"Failed to download {url}: {exc}") from exc
        if response.status_code >= 400:
            raise FetchFailed(f"Failed to download {url}: HTTP {response.status_code}")
        content_type = response.headers.get("content-type")
        if content_type:
            content_type = content_type.split(";", 1)[0].strip()
        return response.content, content_type

    def _video_placeholder(self, spec: VideoSource) -> str:
        url = ensure_scheme(spec.url)
        title = self._video_title(url)
        if title:
            return f"Video: {title} ({url}). Transcript not available."
        return f"Video: {url}. Transcript not available."

    def _video_title(self, url: str) -> str | None:
        try:
            response = self._http.get(
                url,
                timeout=self._settings.fetch_timeout,
                follow_redirects=True,
                headers={"User-Agent": self._settings.browser_user_agent},
            )
        except httpx.HTTPError as exc:
            logger.info("ingest.video_title_unavailable url=%s error=%s", url, exc)
            return None
        if response.status_code >= 400:
            return None
        return extract_title(response.text)

    # Persistence ---------------------------------------------------------------

    def _embed_and_store(self, source: KnowledgeSource, contents: Sequence[str]) -> int:
        batch_size = max(1, self._settings.embedding_batch_size)
        persisted = 0
        embedding_seconds = 0.0
        for offset in range(0, len(contents), batch_size):
            batch = list(contents[offset : offset + batch_size])
            started = time.perf_counter()
            try:
                vectors = self._embedding.embed(batch)
            except Exception as exc:
                raise EmbeddingFailed(f"Embedding service error: {exc}") from exc
            embedding_seconds += time.perf_counter() - started
            if len(vectors) != len(batch):
                raise EmbeddingFailed(
                    f"Embedding service returned {len(vectors)} vectors for {len(batch)} fragments"
                )
            self._fragments.add(
                source.agent_id,
                source.id,
                batch,
                vectors,
                start_position=offset,
            )
            persisted += len(batch)

        if self._metrics:
            self._metrics.record_timing(
                "ingestion.embedding_duration",
                embedding_seconds,
                type=source.type.value,
            )
            self._metrics.increment("ingestion.fragments", value=persisted, type=source.type.value)
        return persisted

    def _fail(self, source: KnowledgeSource, exc: Exception) -> KnowledgeSource:
        message = str(exc).strip() or exc.__class__.__name__
        logger.warning(
            "ingest.failed agent=%s source=%s error_type=%s error=%s",
            source.agent_id,
            source.id,
            exc.__class__.__name__,
            message,
        )
        try:
            return self._sources.mark_failed(source.agent_id, source.id, message)
        except SourceNotFound:
            logger.info("ingest.source_vanished agent=%s source=%s", source.agent_id, source.id)
            # Deleted while processing; drop whatever this attempt persisted.
            try:
                self._fragments.delete_for_source(source.id)
            except Exception:
                logger.exception("ingest.cleanup_failed source=%s", source.id)
        except Exception:
            logger.exception("ingest.mark_failed_error agent=%s source=%s", source.agent_id, source.id)
        source.status = SourceStatus.FAILED
        source.error_message = message
        source.fragment_count = 0
        return source

    def _notify(self, agent_id: str) -> None:
        try:
            self._notifier.knowledge_changed(agent_id)
        except Exception:
            logger.exception("ingest.notify_failed agent=%s", agent_id)


def _zero_content_message(spec: SourceSpec) -> str:
    if isinstance(spec, TextSource):
        return "No text content was provided"
    if isinstance(spec, DocumentSource):
        return f"No extractable text found in {spec.filename} (scanned or image-only documents are not supported)"
    if isinstance(spec, WebsiteSource):
        return f"No readable content found at {spec.url}"
    return "No content could be extracted from the source"


__all__ = ["IngestionOrchestrator", "ensure_scheme"]
