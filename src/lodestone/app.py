"""FastAPI application exposing the knowledge ingestion and retrieval operations."""

from __future__ import annotations

import logging
from pathlib import Path

import httpx
from fastapi import BackgroundTasks, Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from qdrant_client import QdrantClient, models

from .config import Settings
from .discovery import UrlDiscoverer
from .embeddings import EmbeddingService
from .errors import InvalidTransition, KnowledgeError, RetrievalFailed, SourceNotFound
from .fetching import FetchChain
from .fragments import FragmentRepository
from .ingestion import Embedder, IngestionOrchestrator
from .notifications import KnowledgeChangeNotifier, build_notifier
from .observability import MetricsRecorder
from .query_expansion import QueryExpander
from .reranker import Reranker, build_reranker
from .retrieval import Retriever
from .sources import (
    DocumentSource,
    SourceSpec,
    SourceStore,
    SourceType,
    TextSource,
    UpdateInterval,
    VideoSource,
    WebsiteSource,
)
from .vector_store import QdrantVectorStore

logger = logging.getLogger(__name__)


_LOGGING_CONFIGURED = False


def _ensure_logging() -> None:
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    lodestone_logger = logging.getLogger("lodestone")
    uvicorn_logger = logging.getLogger("uvicorn.error")

    handlers = list(uvicorn_logger.handlers)
    if handlers:
        lodestone_logger.handlers = []
        for handler in handlers:
            lodestone_logger.addHandler(handler)
    else:
        handler = logging.StreamHandler()
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
        lodestone_logger.addHandler(handler)

    if lodestone_logger.level == logging.NOTSET or lodestone_logger.level > logging.INFO:
        lodestone_logger.setLevel(logging.INFO)
    lodestone_logger.propagate = False
    _LOGGING_CONFIGURED = True


class ApplicationState:
    """Container for runtime dependencies used by the FastAPI app."""

    def __init__(
        self,
        *,
        settings: Settings,
        embedding_service: Embedder,
        source_store: SourceStore,
        fragments: FragmentRepository,
        orchestrator: IngestionOrchestrator,
        retriever: Retriever,
        http_client: httpx.Client,
        discoverer: UrlDiscoverer,
        metrics: MetricsRecorder | None,
    ) -> None:
        self.settings = settings
        self.embedding_service = embedding_service
        self.source_store = source_store
        self.fragments = fragments
        self.orchestrator = orchestrator
        self.retriever = retriever
        self.http_client = http_client
        self.discoverer = discoverer
        self.metrics = metrics

    def close(self) -> None:
        self.discoverer.close()
        self.http_client.close()
        close_embedding = getattr(self.embedding_service, "close", None)
        if close_embedding is not None:
            close_embedding()


def build_state(
    *,
    settings: Settings | None = None,
    embedding_service: Embedder | None = None,
    qdrant_client: QdrantClient | None = None,
    source_store: SourceStore | None = None,
    http_client: httpx.Client | None = None,
    notifier: KnowledgeChangeNotifier | None = None,
    metrics: MetricsRecorder | None = None,
    reranker: Reranker | None = None,
    expander: QueryExpander | None = None,
) -> ApplicationState:
    """Wire the pipeline from settings; every collaborator can be injected."""

    settings = settings or Settings.from_env()
    embedding_service = embedding_service or EmbeddingService(settings)
    metrics = metrics or settings.build_metrics_recorder()
    source_store = source_store or SourceStore(settings.sources_path())
    http_client = http_client or httpx.Client(timeout=settings.fetch_timeout, follow_redirects=True)

    vector_store = QdrantVectorStore(
        client=qdrant_client or QdrantClient(**settings.qdrant_client_kwargs()),
        collection_name=settings.qdrant_collection,
        vector_size=embedding_service.dimension,
        distance=models.Distance.COSINE,
    )
    vector_store.ensure_collection()
    vector_store.ensure_payload_indexes()
    fragments = FragmentRepository(vector_store)

    discoverer = UrlDiscoverer(
        client=http_client,
        timeout=settings.fetch_timeout,
        user_agent=settings.browser_user_agent,
    )
    orchestrator = IngestionOrchestrator(
        settings,
        sources=source_store,
        fragments=fragments,
        embedding=embedding_service,
        discoverer=discoverer,
        fetch_chain=FetchChain.from_settings(settings, http_client),
        http_client=http_client,
        notifier=notifier or build_notifier(settings),
        metrics=metrics,
    )

    if reranker is None:
        reranker = build_reranker(settings, embedding_service)
    if expander is None and settings.query_expansion_enabled:
        expander = QueryExpander(settings)
    retriever = Retriever(
        settings,
        sources=source_store,
        fragments=fragments,
        embedding=embedding_service,
        reranker=reranker,
        expander=expander,
        metrics=metrics,
    )
    logger.info(
        "app.services_ready data_dir=%s collection=%s dimension=%s",
        settings.sources_path(),
        settings.qdrant_collection,
        vector_store.vector_size,
    )
    return ApplicationState(
        settings=settings,
        embedding_service=embedding_service,
        source_store=source_store,
        fragments=fragments,
        orchestrator=orchestrator,
        retriever=retriever,
        http_client=http_client,
        discoverer=discoverer,
        metrics=metrics,
    )


def _build_spec(
    *,
    source_type: str,
    text: str | None,
    title: str | None,
    url: str | None,
    crawl_subpages: bool,
    update_interval: str,
    filename: str | None,
    data: bytes | None,
    data_url: str | None,
    content_type: str | None,
) -> SourceSpec:
    kind = SourceType(source_type.strip().upper())
    interval = UpdateInterval(update_interval.strip().upper())

    if kind is SourceType.TEXT:
        if not text or not text.strip():
            raise ValueError("Text is required for TEXT sources")
        return TextSource(text=text, title=title, update_interval=interval)
    if kind is SourceType.WEBSITE:
        if not url or not url.strip():
            raise ValueError("URL is required for WEBSITE sources")
        return WebsiteSource(url=url.strip(), crawl_subpages=crawl_subpages, update_interval=interval)
    if kind is SourceType.VIDEO:
        if not url or not url.strip():
            raise ValueError("URL is required for VIDEO sources")
        return VideoSource(url=url.strip(), update_interval=interval)

    if data is not None:
        return DocumentSource(
            filename=filename or "document",
            data=data,
            content_type=content_type,
            update_interval=interval,
        )
    if data_url:
        return DocumentSource.from_data_url(filename or "document", data_url, update_interval=interval)
    if url and url.strip():
        name = filename or Path(url.strip().split("?", 1)[0]).name or "document"
        return DocumentSource(filename=name, url=url.strip(), update_interval=interval)
    raise ValueError("A file, data URL or URL is required for DOCUMENT sources")


def create_app(
    *,
    settings: Settings | None = None,
    embedding_service: Embedder | None = None,
    qdrant_client: QdrantClient | None = None,
    source_store: SourceStore | None = None,
    http_client: httpx.Client | None = None,
    notifier: KnowledgeChangeNotifier | None = None,
    metrics: MetricsRecorder | None = None,
    reranker: Reranker | None = None,
    expander: QueryExpander | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    _ensure_logging()

    app = FastAPI()
    app.state.services = build_state(
        settings=settings,
        embedding_service=embedding_service,
        qdrant_client=qdrant_client,
        source_store=source_store,
        http_client=http_client,
        notifier=notifier,
        metrics=metrics,
        reranker=reranker,
        expander=expander,
    )

    @app.on_event("shutdown")
    async def _close_clients() -> None:
        app.state.services.close()

    def get_state(request: Request) -> ApplicationState:
        return request.app.state.services

    def get_source_store(request: Request) -> SourceStore:
        return get_state(request).source_store

    def get_orchestrator(request: Request) -> IngestionOrchestrator:
        return get_state(request).orchestrator

    def get_retriever(request: Request) -> Retriever:
        return get_state(request).retriever

    def get_metrics(request: Request) -> MetricsRecorder | None:
        return get_state(request).metrics

    @app.post("/agents/{agent_id}/sources", response_class=JSONResponse)
    async def add_source(
        agent_id: str,
        background_tasks: BackgroundTasks,
        source_type: str = Form(..., alias="type"),
        text: str | None = Form(None),
        title: str | None = Form(None),
        url: str | None = Form(None),
        crawl_subpages: bool = Form(False),
        update_interval: str = Form("NEVER"),
        filename: str | None = Form(None),
        data_url: str | None = Form(None),
        file: UploadFile | None = File(None),
        orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
    ) -> JSONResponse:
        data = None
        content_type = None
        if file is not None:
            data = await file.read()
            content_type = file.content_type
            filename = filename or file.filename
        try:
            spec = _build_spec(
                source_type=source_type,
                text=text,
                title=title,
                url=url,
                crawl_subpages=crawl_subpages,
                update_interval=update_interval,
                filename=filename,
                data=data,
                data_url=data_url,
                content_type=content_type,
            )
            source = orchestrator.create_source(agent_id, spec)
        except (ValueError, KnowledgeError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        logger.info("sources.endpoint accepted agent=%s source=%s type=%s", agent_id, source.id, source.type.value)
        background_tasks.add_task(orchestrator.process_source, source, spec)
        return JSONResponse({"source": source.to_dict()}, status_code=202)

    @app.get("/agents/{agent_id}/sources", response_class=JSONResponse)
    async def list_sources(agent_id: str, store: SourceStore = Depends(get_source_store)) -> JSONResponse:
        try:
            sources = store.list_sources(agent_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return JSONResponse({"sources": [source.to_dict() for source in sources]})

    @app.get("/agents/{agent_id}/sources/{source_id}", response_class=JSONResponse)
    async def get_source(
        agent_id: str,
        source_id: str,
        store: SourceStore = Depends(get_source_store),
    ) -> JSONResponse:
        try:
            source = store.get_source(agent_id, source_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if source is None:
            raise HTTPException(status_code=404, detail="Source not found")
        return JSONResponse({"source": source.to_dict()})

    @app.delete("/agents/{agent_id}/sources/{source_id}", response_class=Response)
    async def delete_source(
        agent_id: str,
        source_id: str,
        orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
    ) -> Response:
        try:
            orchestrator.delete_source(agent_id, source_id)
        except SourceNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return Response(status_code=204)

    @app.get("/sources/{source_id}/fragments", response_class=JSONResponse)
    async def list_fragments(
        source_id: str,
        store: SourceStore = Depends(get_source_store),
        orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
    ) -> JSONResponse:
        if store.find_source(source_id) is None:
            raise HTTPException(status_code=404, detail="Source not found")
        fragments = orchestrator.list_fragments(source_id)
        return JSONResponse({"fragments": [fragment.to_dict() for fragment in fragments]})

    @app.delete("/fragments/{fragment_id}", response_class=Response)
    async def delete_fragment(
        fragment_id: str,
        orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
    ) -> Response:
        try:
            deleted = orchestrator.delete_fragment(fragment_id)
        except InvalidTransition as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        if not deleted:
            raise HTTPException(status_code=404, detail="Fragment not found")
        return Response(status_code=204)

    @app.post("/agents/{agent_id}/retrieve", response_class=JSONResponse)
    async def retrieve(
        agent_id: str,
        request: Request,
        retriever: Retriever = Depends(get_retriever),
    ) -> JSONResponse:
        payload = await request.json()
        query = str(payload.get("query", "")).strip()
        if not query:
            return JSONResponse({"error": "Query is required."}, status_code=400)
        k = payload.get("k")
        try:
            results = retriever.retrieve(agent_id, query, int(k) if k is not None else None)
        except RetrievalFailed as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except (TypeError, ValueError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return JSONResponse({"fragments": [item.to_dict() for item in results]})

    @app.get("/metrics")
    async def metrics_endpoint(metrics: MetricsRecorder | None = Depends(get_metrics)) -> Response:
        if metrics is None or not metrics.prometheus_enabled:
            raise HTTPException(status_code=404, detail="Metrics export disabled")
        return Response(content=metrics.render_prometheus(), media_type=metrics.prometheus_content_type)

    return app


__all__ = ["create_app", "build_state", "ApplicationState"]
