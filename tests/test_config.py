from __future__ import annotations

from pathlib import Path

import pytest

from lodestone.config import Settings


def test_defaults_match_pipeline_constants() -> None:
    settings = Settings()

    assert settings.fragment_size == 1000
    assert settings.fragment_overlap == 200
    assert settings.crawl_max_pages == 15
    assert settings.retrieval_top_k == 5
    assert settings.qdrant_collection == "knowledge_fragments"
    assert settings.reader_enabled is True


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("EMBEDDING_MODEL", "text-embedding-3-large")
    monkeypatch.setenv("OPENAI_API_KEY", " sk-test ")
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.setenv("CRAWL_MAX_PAGES", "0")
    monkeypatch.setenv("RETRIEVAL_TOP_K", "8")
    monkeypatch.setenv("READER_ENABLED", "off")
    monkeypatch.setenv("FETCH_TIMEOUT", "0")
    monkeypatch.setenv("SCORING_WEBHOOK_URL", "https://scoring.test/hook")

    settings = Settings.from_env()

    assert settings.is_openai_backend
    assert settings.openai_embedding_dimension == 3072
    assert settings.openai_api_key == "sk-test"
    assert settings.sources_path() == tmp_path.resolve()
    assert settings.crawl_max_pages == 1
    assert settings.retrieval_top_k == 8
    assert settings.reader_enabled is False
    assert settings.fetch_timeout == 0.0
    assert settings.scoring_webhook_url == "https://scoring.test/hook"


@pytest.mark.parametrize(("name", "value"), [("READER_ENABLED", "maybe"), ("FRAGMENT_SIZE", "big"), ("FETCH_TIMEOUT", "soon")])
def test_from_env_rejects_malformed_values(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError):
        Settings.from_env()


def test_ollama_embedding_endpoint_parsing() -> None:
    assert Settings(embedding_model="ollama:nomic-embed-text").ollama_embedding_endpoint == (
        "nomic-embed-text",
        "http://localhost:11434",
    )
    assert Settings(embedding_model="ollama:http://gpu-box:11434/bge-m3").ollama_embedding_endpoint == (
        "bge-m3",
        "http://gpu-box:11434",
    )
    with pytest.raises(ValueError):
        Settings(embedding_model="ollama:").ollama_embedding_endpoint
    with pytest.raises(ValueError):
        Settings().ollama_embedding_endpoint


def test_openai_dimension_requires_openai_model() -> None:
    with pytest.raises(ValueError):
        Settings().openai_embedding_dimension


def test_qdrant_client_kwargs() -> None:
    assert Settings(qdrant_path="/tmp/qdrant").qdrant_client_kwargs() == {"path": "/tmp/qdrant"}
    assert Settings(qdrant_url="http://qdrant:6333", qdrant_api_key="key").qdrant_client_kwargs() == {
        "url": "http://qdrant:6333",
        "api_key": "key",
    }


def test_build_metrics_recorder_follows_settings() -> None:
    recorder = Settings(observability_metrics_enabled=False, observability_prometheus_enabled=True).build_metrics_recorder()

    assert recorder.enabled is False
    assert recorder.prometheus_enabled is True


def test_chat_backend_flags() -> None:
    assert Settings().is_openai_chat_backend
    assert Settings(chat_backend="Ollama").is_ollama_chat_backend
