"""Tell the external scoring collaborator that an agent's knowledge changed."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Protocol

import httpx

from .config import Settings

logger = logging.getLogger(__name__)


class KnowledgeChangeNotifier(Protocol):
    def knowledge_changed(self, agent_id: str) -> None:
        ...


class LoggingNotifier:
    """Default notifier when no scoring webhook is configured."""

    def knowledge_changed(self, agent_id: str) -> None:
        logger.info("knowledge.changed agent=%s", agent_id)


class WebhookNotifier:
    """POST ``{"agent_id", "changed_at"}`` to the scoring webhook."""

    def __init__(self, url: str, *, timeout: float = 15.0, client: httpx.Client | None = None) -> None:
        self._url = url
        self._timeout = timeout
        self._client = client

    def knowledge_changed(self, agent_id: str) -> None:
        payload = {"agent_id": agent_id, "changed_at": datetime.now(timezone.utc).isoformat()}
        if self._client is not None:
            response = self._client.post(self._url, json=payload, timeout=self._timeout)
        else:
            response = httpx.post(self._url, json=payload, timeout=self._timeout)
        response.raise_for_status()
        logger.info("knowledge.changed.notified agent=%s status=%s", agent_id, response.status_code)


def build_notifier(settings: Settings) -> KnowledgeChangeNotifier:
    if settings.scoring_webhook_url:
        return WebhookNotifier(settings.scoring_webhook_url, timeout=settings.fetch_timeout)
    return LoggingNotifier()


__all__ = ["KnowledgeChangeNotifier", "LoggingNotifier", "WebhookNotifier", "build_notifier"]
