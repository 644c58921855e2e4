"""Lodestone knowledge ingestion and retrieval package."""

from __future__ import annotations

from .config import Settings
from .segmenter import segment

__all__ = [
    "Settings",
    "segment",
    "IngestionOrchestrator",
    "Retriever",
    "EmbeddingService",
    "create_app",
]


def __getattr__(name: str):  # pragma: no cover - small helper
    if name == "IngestionOrchestrator":
        from .ingestion import IngestionOrchestrator

        return IngestionOrchestrator
    if name == "Retriever":
        from .retrieval import Retriever

        return Retriever
    if name == "EmbeddingService":
        from .embeddings import EmbeddingService

        return EmbeddingService
    if name == "create_app":
        from .app import create_app

        return create_app
    raise AttributeError(f"module 'lodestone' has no attribute {name}")
