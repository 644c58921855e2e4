"""Exceptions raised by the ingestion and retrieval pipeline."""

from __future__ import annotations


class KnowledgeError(Exception):
    """Base class for pipeline errors whose message is shown on a failed source."""


class DiscoveryDegraded(KnowledgeError):
    """Sitemap or crawl expansion could not complete."""


class FetchFailed(KnowledgeError):
    """No fetch strategy produced usable text."""


class ExtractionFailed(KnowledgeError):
    """A document parser could not produce text."""


class UnsupportedFormat(ExtractionFailed):
    pass


class CorruptInput(ExtractionFailed):
    pass


class EmbeddingFailed(KnowledgeError):
    """The embedding backend raised while processing fragments."""


class ZeroContent(KnowledgeError):
    """The pipeline finished without producing any usable text."""


class InvalidTransition(KnowledgeError):
    """A source status change that the lifecycle does not allow."""


class SourceNotFound(KnowledgeError):
    pass


class RetrievalFailed(KnowledgeError):
    """The query could not be embedded or the vector store could not be searched."""


__all__ = [
    "KnowledgeError",
    "DiscoveryDegraded",
    "FetchFailed",
    "ExtractionFailed",
    "UnsupportedFormat",
    "CorruptInput",
    "EmbeddingFailed",
    "ZeroContent",
    "InvalidTransition",
    "SourceNotFound",
    "RetrievalFailed",
]
