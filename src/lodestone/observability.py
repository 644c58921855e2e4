"""Metric log lines with optional Prometheus export."""

from __future__ import annotations

from contextlib import contextmanager
import logging
import re
import time
from typing import Any, Tuple

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

_PROM_NAME_RE = re.compile(r"[^a-zA-Z0-9_]")


class MetricsRecorder:
    """Emit ``namespace.metric key=value`` lines and mirror them into Prometheus.

    Counters and histograms are created lazily per (metric, label names) pair
    on a private registry, so several recorders can coexist in one process.
    """

    def __init__(
        self,
        *,
        enabled: bool = True,
        namespace: str = "lodestone",
        logger: logging.Logger | None = None,
        prometheus_enabled: bool = False,
        registry: CollectorRegistry | None = None,
    ) -> None:
        self._enabled = enabled
        self._namespace = namespace.strip() or "lodestone"
        self._logger = logger or logging.getLogger("lodestone.metrics")
        self._prometheus_enabled = prometheus_enabled
        self._registry = registry if registry is not None else (CollectorRegistry() if prometheus_enabled else None)
        self._collectors: dict[Tuple[str, str, Tuple[str, ...]], Counter | Histogram] = {}

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def prometheus_enabled(self) -> bool:
        return self._prometheus_enabled and self._registry is not None

    @property
    def prometheus_content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def render_prometheus(self) -> bytes:
        if not self.prometheus_enabled:
            raise RuntimeError("Prometheus export is disabled")
        return generate_latest(self._registry)

    def increment(self, metric: str, *, value: int = 1, **tags: Any) -> None:
        if not self._enabled:
            return
        value = int(value)
        clean_tags = _clean(tags)
        self._emit(metric, fields={"value": value}, tags=clean_tags)
        if self.prometheus_enabled:
            self._collector("counter", metric, clean_tags).inc(float(max(value, 0)))

    def record_timing(self, metric: str, duration_seconds: float, **tags: Any) -> None:
        """Log the duration in milliseconds; Prometheus observes seconds."""

        if not self._enabled:
            return
        duration_seconds = max(duration_seconds, 0.0)
        clean_tags = _clean(tags)
        self._emit(metric, fields={"duration_ms": round(duration_seconds * 1000.0, 4)}, tags=clean_tags)
        if self.prometheus_enabled:
            self._collector("histogram", metric, clean_tags).observe(duration_seconds)

    @contextmanager
    def track_timing(self, metric: str, **tags: Any):
        if not self._enabled:
            yield
            return
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_timing(metric, time.perf_counter() - start, **tags)

    def _emit(self, metric: str, *, fields: dict[str, Any], tags: dict[str, Any]) -> None:
        segments = [f"{key}={_stringify(value)}" for key, value in sorted(fields.items())]
        segments.extend(f"{key}={_stringify(value)}" for key, value in sorted(tags.items()))
        message = f"{self._namespace}.{metric}"
        if segments:
            message = f"{message} {' '.join(segments)}"
        self._logger.info(message)

    def _collector(self, kind: str, metric: str, tags: dict[str, Any]):
        label_keys = tuple(sorted(tags))
        label_names = tuple(_PROM_NAME_RE.sub("_", key) or "label" for key in label_keys)
        key = (kind, metric, label_names)
        collector = self._collectors.get(key)
        if collector is None:
            name = f"{_PROM_NAME_RE.sub('_', self._namespace)}_{_PROM_NAME_RE.sub('_', metric)}".strip("_")
            factory = Counter if kind == "counter" else Histogram
            collector = factory(
                name,
                f"{metric} {kind}",
                labelnames=list(label_names),
                registry=self._registry,
            )
            self._collectors[key] = collector
        if not label_names:
            return collector
        values = {name: _stringify(tags[tag]) for name, tag in zip(label_names, label_keys)}
        return collector.labels(**values)


def _clean(tags: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in tags.items() if value is not None}


def _stringify(value: Any) -> str:
    if isinstance(value, float):
        return f"{int(value)}" if value.is_integer() else f"{value:.4f}"
    if hasattr(value, "value") and isinstance(getattr(value, "value"), str):
        return value.value
    return str(value)


__all__ = ["MetricsRecorder"]
