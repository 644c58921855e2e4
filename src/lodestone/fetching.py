"""Best-effort page fetching through an ordered chain of strategies."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
import logging
from typing import List, Protocol, Sequence

import httpx

from .config import Settings
from .normalizer import normalize

logger = logging.getLogger(__name__)

_ACCESS_DENIED_MARKER = "Access Denied"


@dataclass(slots=True)
class FetchAttempt:
    """Outcome of a single strategy: text on success, an error description otherwise."""

    text: str | None = None
    error: str | None = None


@dataclass(slots=True)
class PageResult:
    url: str
    text: str | None = None
    strategy: str | None = None
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.text)

    @property
    def error(self) -> str | None:
        return "; ".join(self.errors) if self.errors else None


class FetchStrategy(Protocol):
    name: str

    def attempt(self, url: str) -> FetchAttempt:
        ...


class ReaderStrategy:
    """Ask a remote reader service to render the page as plain text."""

    name = "reader"

    def __init__(
        self,
        client: httpx.Client,
        *,
        base_url: str = "https://r.jina.ai",
        timeout: float = 15.0,
        user_agent: str = "LodestoneBot/1.0",
    ) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._headers = {"Accept": "text/plain", "User-Agent": user_agent}

    def attempt(self, url: str) -> FetchAttempt:
        try:
            response = self._client.get(
                f"{self._base_url}/{url}",
                headers=self._headers,
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            return FetchAttempt(error=f"{self.name}: {exc.__class__.__name__}: {exc}")
        if response.status_code >= 400:
            return FetchAttempt(error=f"{self.name}: HTTP {response.status_code}")
        text = response.text.strip()
        if _ACCESS_DENIED_MARKER in text:
            return FetchAttempt(error=f"{self.name}: access denied")
        return FetchAttempt(text=text)


class DirectFetchStrategy:
    """GET the page directly with a browser user agent and normalise the HTML."""

    name = "direct"

    def __init__(
        self,
        client: httpx.Client,
        *,
        timeout: float = 15.0,
        user_agent: str,
    ) -> None:
        self._client = client
        self._timeout = timeout
        self._headers = {
            "User-Agent": user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }

    def attempt(self, url: str) -> FetchAttempt:
        try:
            response = self._client.get(
                url,
                headers=self._headers,
                timeout=self._timeout,
                follow_redirects=True,
            )
        except httpx.HTTPError as exc:
            return FetchAttempt(error=f"{self.name}: {exc.__class__.__name__}: {exc}")
        if response.status_code >= 400:
            return FetchAttempt(error=f"{self.name}: HTTP {response.status_code}")

        content_type = (response.headers.get("content-type") or "").split(";", 1)[0].strip().lower()
        body = response.text
        if "html" in content_type or (not content_type and "<html" in body[:2048].lower()):
            return FetchAttempt(text=normalize(body))
        if not content_type or content_type.startswith("text/"):
            return FetchAttempt(text=body.strip())
        return FetchAttempt(error=f"{self.name}: unsupported content type {content_type}")


class FetchChain:
    """Try each strategy in order; the first that yields enough text wins.

    Ordinary failures never raise: a page that every strategy misses comes back
    as a ``PageResult`` without text and with one error entry per strategy.
    """

    def __init__(
        self,
        strategies: Sequence[FetchStrategy],
        *,
        min_chars: int = 200,
        max_workers: int = 6,
    ) -> None:
        if not strategies:
            raise ValueError("FetchChain requires at least one strategy")
        self._strategies = list(strategies)
        self._min_chars = max(0, min_chars)
        self._max_workers = max(1, max_workers)

    @classmethod
    def from_settings(cls, settings: Settings, client: httpx.Client) -> "FetchChain":
        strategies: list[FetchStrategy] = []
        if settings.reader_enabled:
            strategies.append(
                ReaderStrategy(
                    client,
                    base_url=settings.reader_base_url,
                    timeout=settings.fetch_timeout,
                    user_agent=settings.reader_user_agent,
                )
            )
        strategies.append(
            DirectFetchStrategy(
                client,
                timeout=settings.fetch_timeout,
                user_agent=settings.browser_user_agent,
            )
        )
        return cls(
            strategies,
            min_chars=settings.min_page_chars,
            max_workers=settings.fetch_concurrency,
        )

    @property
    def strategies(self) -> list[FetchStrategy]:
        return list(self._strategies)

    def fetch_page(self, url: str) -> PageResult:
        result = PageResult(url=url)
        for strategy in self._strategies:
            try:
                attempt = strategy.attempt(url)
            except Exception as exc:
                logger.exception("fetch.strategy.error strategy=%s url=%s", strategy.name, url)
                attempt = FetchAttempt(error=f"{strategy.name}: {exc}")

            text = (attempt.text or "").strip()
            if text and len(text) >= self._min_chars:
                result.text = text
                result.strategy = strategy.name
                logger.debug("fetch.page.ok strategy=%s url=%s chars=%s", strategy.name, url, len(text))
                return result
            if attempt.error:
                result.errors.append(attempt.error)
            else:
                result.errors.append(f"{strategy.name}: only {len(text)} characters")

        logger.warning("fetch.page.failed url=%s errors=%s", url, result.error)
        return result

    def fetch_page_text(self, url: str) -> str:
        """Return the page text, or an empty string when no strategy succeeded."""

        return self.fetch_page(url).text or ""

    def fetch_pages(self, urls: Sequence[str]) -> List[PageResult]:
        """Fetch *urls* concurrently and return results in input order."""

        if not urls:
            return []
        workers = min(self._max_workers, len(urls))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(self.fetch_page, urls))


__all__ = [
    "FetchAttempt",
    "PageResult",
    "FetchStrategy",
    "ReaderStrategy",
    "DirectFetchStrategy",
    "FetchChain",
]
