"""Configuration helpers for the Lodestone knowledge pipeline."""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Any, Final

from dotenv import load_dotenv

load_dotenv()

_DEFAULT_EMBEDDING_MODEL: Final[str] = "sentence-transformers/all-MiniLM-L6-v2"
_DEFAULT_QDRANT_URL: Final[str] = "http://localhost:6333"
_DEFAULT_QDRANT_COLLECTION: Final[str] = "knowledge_fragments"
_DEFAULT_DATA_DIR: Final[str] = "data"
_DEFAULT_OLLAMA_URL: Final[str] = "http://localhost:11434"
_DEFAULT_OLLAMA_MODEL: Final[str] = "llama3.1:8b"
_DEFAULT_CHAT_BACKEND: Final[str] = "openai"
_DEFAULT_OPENAI_CHAT_MODEL: Final[str] = "gpt-4o-mini"
_DEFAULT_NETWORK_TIMEOUT: Final[float] = 15.0
_DEFAULT_OLLAMA_EMBED_CONCURRENCY: Final[int] = 2
_DEFAULT_EMBEDDING_BATCH_SIZE: Final[int] = 16
_DEFAULT_FRAGMENT_SIZE: Final[int] = 1000
_DEFAULT_FRAGMENT_OVERLAP: Final[int] = 200
_DEFAULT_CRAWL_MAX_PAGES: Final[int] = 15
_DEFAULT_FETCH_CONCURRENCY: Final[int] = 6
_DEFAULT_MIN_PAGE_CHARS: Final[int] = 200
_DEFAULT_READER_BASE_URL: Final[str] = "https://r.jina.ai"
_DEFAULT_READER_USER_AGENT: Final[str] = "LodestoneBot/1.0"
_DEFAULT_BROWSER_USER_AGENT: Final[str] = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
_DEFAULT_RETRIEVAL_TOP_K: Final[int] = 5
_DEFAULT_RETRIEVAL_CANDIDATE_POOL: Final[int] = 20
_DEFAULT_RERANKER_STRATEGY: Final[str] = "none"
_DEFAULT_RERANKER_MAX_CANDIDATES: Final[int] = 20

_OPENAI_EMBEDDING_DIMENSIONS: Final[dict[str, int]] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


def _env_optional_bool(name: str) -> bool | None:
    """Read an optional boolean environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    msg = f"Environment variable {name} must be a boolean value (true/false)."
    raise ValueError(msg)


def _env_optional_int(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc


def _env_optional_float(name: str) -> float | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a float") from exc


def _env_int(name: str, default: int) -> int:
    value = _env_optional_int(name)
    return default if value is None else value


def _env_float(name: str, default: float) -> float:
    """Read a float environment variable with a fallback (preserving zero)."""

    value = _env_optional_float(name)
    return default if value is None else value


def _env_bool(name: str, default: bool) -> bool:
    value = _env_optional_bool(name)
    if value is None:
        return default
    return value


def _env_str(name: str) -> str | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip()
    return value or None


@dataclass(slots=True)
class Settings:
    """Runtime settings loaded from environment variables."""

    embedding_model: str = _DEFAULT_EMBEDDING_MODEL
    openai_api_key: str | None = None
    embedding_timeout: float = _DEFAULT_NETWORK_TIMEOUT
    embedding_batch_size: int = _DEFAULT_EMBEDDING_BATCH_SIZE
    ollama_base_url: str = _DEFAULT_OLLAMA_URL
    ollama_model: str = _DEFAULT_OLLAMA_MODEL
    ollama_embedding_concurrency: int = _DEFAULT_OLLAMA_EMBED_CONCURRENCY
    qdrant_url: str = _DEFAULT_QDRANT_URL
    qdrant_api_key: str | None = None
    qdrant_path: str | None = None
    qdrant_collection: str = _DEFAULT_QDRANT_COLLECTION
    data_dir: str = _DEFAULT_DATA_DIR
    fragment_size: int = _DEFAULT_FRAGMENT_SIZE
    fragment_overlap: int = _DEFAULT_FRAGMENT_OVERLAP
    crawl_max_pages: int = _DEFAULT_CRAWL_MAX_PAGES
    fetch_concurrency: int = _DEFAULT_FETCH_CONCURRENCY
    fetch_timeout: float = _DEFAULT_NETWORK_TIMEOUT
    min_page_chars: int = _DEFAULT_MIN_PAGE_CHARS
    reader_enabled: bool = True
    reader_base_url: str = _DEFAULT_READER_BASE_URL
    reader_user_agent: str = _DEFAULT_READER_USER_AGENT
    browser_user_agent: str = _DEFAULT_BROWSER_USER_AGENT
    retrieval_top_k: int = _DEFAULT_RETRIEVAL_TOP_K
    retrieval_candidate_pool: int = _DEFAULT_RETRIEVAL_CANDIDATE_POOL
    reranker_strategy: str = _DEFAULT_RERANKER_STRATEGY
    reranker_model: str | None = None
    reranker_max_candidates: int = _DEFAULT_RERANKER_MAX_CANDIDATES
    query_expansion_enabled: bool = False
    chat_backend: str = _DEFAULT_CHAT_BACKEND
    openai_chat_model: str = _DEFAULT_OPENAI_CHAT_MODEL
    chat_timeout: float = _DEFAULT_NETWORK_TIMEOUT
    scoring_webhook_url: str | None = None
    observability_metrics_enabled: bool = True
    observability_namespace: str = "lodestone"
    observability_prometheus_enabled: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings by reading environment variables."""

        return cls(
            embedding_model=os.getenv("EMBEDDING_MODEL", _DEFAULT_EMBEDDING_MODEL),
            openai_api_key=_env_str("OPENAI_API_KEY"),
            embedding_timeout=_env_float("EMBEDDING_TIMEOUT", _DEFAULT_NETWORK_TIMEOUT),
            embedding_batch_size=max(1, _env_int("EMBEDDING_BATCH_SIZE", _DEFAULT_EMBEDDING_BATCH_SIZE)),
            ollama_base_url=os.getenv("OLLAMA_BASE_URL", _DEFAULT_OLLAMA_URL),
            ollama_model=os.getenv("OLLAMA_MODEL", _DEFAULT_OLLAMA_MODEL),
            ollama_embedding_concurrency=max(
                1, _env_int("OLLAMA_EMBEDDING_CONCURRENCY", _DEFAULT_OLLAMA_EMBED_CONCURRENCY)
            ),
            qdrant_url=os.getenv("QDRANT_URL", _DEFAULT_QDRANT_URL),
            qdrant_api_key=_env_str("QDRANT_API_KEY"),
            qdrant_path=_env_str("QDRANT_PATH"),
            qdrant_collection=os.getenv("QDRANT_COLLECTION", _DEFAULT_QDRANT_COLLECTION),
            data_dir=os.getenv("DATA_DIR", _DEFAULT_DATA_DIR),
            fragment_size=_env_int("FRAGMENT_SIZE", _DEFAULT_FRAGMENT_SIZE),
            fragment_overlap=_env_int("FRAGMENT_OVERLAP", _DEFAULT_FRAGMENT_OVERLAP),
            crawl_max_pages=max(1, _env_int("CRAWL_MAX_PAGES", _DEFAULT_CRAWL_MAX_PAGES)),
            fetch_concurrency=max(1, _env_int("FETCH_CONCURRENCY", _DEFAULT_FETCH_CONCURRENCY)),
            fetch_timeout=_env_float("FETCH_TIMEOUT", _DEFAULT_NETWORK_TIMEOUT),
            min_page_chars=max(0, _env_int("MIN_PAGE_CHARS", _DEFAULT_MIN_PAGE_CHARS)),
            reader_enabled=_env_bool("READER_ENABLED", True),
            reader_base_url=os.getenv("READER_BASE_URL", _DEFAULT_READER_BASE_URL),
            reader_user_agent=os.getenv("READER_USER_AGENT", _DEFAULT_READER_USER_AGENT),
            browser_user_agent=os.getenv("BROWSER_USER_AGENT", _DEFAULT_BROWSER_USER_AGENT),
            retrieval_top_k=max(1, _env_int("RETRIEVAL_TOP_K", _DEFAULT_RETRIEVAL_TOP_K)),
            retrieval_candidate_pool=max(
                1, _env_int("RETRIEVAL_CANDIDATE_POOL", _DEFAULT_RETRIEVAL_CANDIDATE_POOL)
            ),
            reranker_strategy=os.getenv("RERANKER_STRATEGY", _DEFAULT_RERANKER_STRATEGY),
            reranker_model=_env_str("RERANKER_MODEL"),
            reranker_max_candidates=_env_int("RERANKER_MAX_CANDIDATES", _DEFAULT_RERANKER_MAX_CANDIDATES),
            query_expansion_enabled=_env_bool("QUERY_EXPANSION_ENABLED", False),
            chat_backend=os.getenv("CHAT_BACKEND", _DEFAULT_CHAT_BACKEND),
            openai_chat_model=os.getenv("OPENAI_CHAT_MODEL", _DEFAULT_OPENAI_CHAT_MODEL),
            chat_timeout=_env_float("CHAT_TIMEOUT", _DEFAULT_NETWORK_TIMEOUT),
            scoring_webhook_url=_env_str("SCORING_WEBHOOK_URL"),
            observability_metrics_enabled=_env_bool("OBSERVABILITY_METRICS_ENABLED", True),
            observability_namespace=os.getenv("OBSERVABILITY_NAMESPACE", "lodestone"),
            observability_prometheus_enabled=_env_bool("OBSERVABILITY_PROMETHEUS_ENABLED", False),
        )

    @property
    def is_openai_backend(self) -> bool:
        """Return True when the configured embedding backend is OpenAI."""

        return self.embedding_model.strip().lower() in _OPENAI_EMBEDDING_DIMENSIONS

    @property
    def is_ollama_embedding_backend(self) -> bool:
        """Return True when embeddings should be generated via an Ollama-hosted model."""

        return self.embedding_model.strip().lower().startswith("ollama:")

    @property
    def openai_embedding_dimension(self) -> int:
        if not self.is_openai_backend:
            msg = "OpenAI dimension requested but EMBEDDING_MODEL is not an OpenAI model."
            raise ValueError(msg)
        return _OPENAI_EMBEDDING_DIMENSIONS[self.embedding_model.strip().lower()]

    @property
    def ollama_embedding_endpoint(self) -> tuple[str, str]:
        """Return the Ollama embedding model and resolved base URL for embeddings.

        ``EMBEDDING_MODEL`` accepts either ``ollama:<model>`` or
        ``ollama:http://host:port/<model>``; the latter overrides ``OLLAMA_BASE_URL``.
        """

        if not self.is_ollama_embedding_backend:
            msg = "Ollama embedding endpoint requested but EMBEDDING_MODEL is not an Ollama model."
            raise ValueError(msg)
        _, _, spec = self.embedding_model.strip().partition(":")
        spec = spec.strip()
        base_url = self.ollama_base_url
        if spec.lower().startswith(("http://", "https://")):
            base_url, _, spec = spec.rpartition("/")
        model = spec.strip()
        if not model:
            msg = "EMBEDDING_MODEL must include an Ollama model identifier."
            raise ValueError(msg)
        base_url = base_url.strip().rstrip("/")
        if not base_url:
            msg = "Resolved Ollama embedding base URL is empty."
            raise ValueError(msg)
        return model, base_url

    @property
    def is_openai_chat_backend(self) -> bool:
        return self.chat_backend.strip().lower() == "openai"

    @property
    def is_ollama_chat_backend(self) -> bool:
        return self.chat_backend.strip().lower() == "ollama"

    def qdrant_client_kwargs(self) -> dict[str, Any]:
        """Configuration arguments for instantiating a Qdrant client."""

        if self.qdrant_path:
            return {"path": self.qdrant_path}
        kwargs: dict[str, Any] = {"url": self.qdrant_url}
        if self.qdrant_api_key:
            kwargs["api_key"] = self.qdrant_api_key
        return kwargs

    def sources_path(self) -> Path:
        """Return the directory holding knowledge source metadata."""

        return Path(self.data_dir).expanduser().resolve()

    def build_metrics_recorder(self) -> "MetricsRecorder":
        """Instantiate the configured metrics recorder."""

        from .observability import MetricsRecorder

        return MetricsRecorder(
            enabled=self.observability_metrics_enabled,
            namespace=self.observability_namespace,
            prometheus_enabled=self.observability_prometheus_enabled,
        )
