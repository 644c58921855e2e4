"""Expand a website source into the set of page URLs to ingest."""

from __future__ import annotations

from enum import Enum
import logging
from pathlib import PurePosixPath
from typing import Iterable, List
from urllib.parse import urljoin, urlparse, urlunparse

import httpx
from bs4 import BeautifulSoup

from .errors import DiscoveryDegraded

logger = logging.getLogger(__name__)

_ASSET_EXTENSIONS = frozenset(
    {
        # images
        ".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".ico", ".bmp", ".tif", ".tiff",
        # archives
        ".zip", ".tar", ".gz", ".tgz", ".rar", ".7z", ".bz2",
        # stylesheets, scripts, fonts
        ".css", ".js", ".mjs", ".map", ".woff", ".woff2", ".ttf", ".otf", ".eot",
        # office documents
        ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".odt", ".ods",
        # media
        ".mp3", ".mp4", ".avi", ".mov", ".wav", ".webm", ".mkv",
        # binaries
        ".exe", ".dmg", ".iso", ".bin", ".apk",
    }
)


class DiscoveryMode(str, Enum):
    SINGLE = "single"
    SITEMAP = "sitemap"
    CRAWL = "crawl"


def resolve_mode(url: str, crawl_subpages: bool) -> DiscoveryMode:
    """Pick the discovery mode for a website source.

    URLs ending in ``.xml`` or mentioning ``sitemap`` are treated as sitemaps;
    otherwise subpage crawling follows the caller's request.
    """

    lowered = url.strip().lower()
    path = urlparse(lowered).path
    if path.endswith(".xml") or "sitemap" in lowered:
        return DiscoveryMode.SITEMAP
    if crawl_subpages:
        return DiscoveryMode.CRAWL
    return DiscoveryMode.SINGLE


def normalize_url(url: str) -> str:
    """Reduce *url* to scheme, host and path without fragment or trailing slash."""

    parsed = urlparse(url.strip())
    scheme = parsed.scheme.lower()
    netloc = parsed.netloc.lower()
    path = parsed.path.rstrip("/")
    return urlunparse((scheme, netloc, path, "", "", ""))


def is_asset_path(path: str) -> bool:
    return PurePosixPath(path.lower()).suffix in _ASSET_EXTENSIONS


class UrlDiscoverer:
    """Resolve a root URL into candidate page URLs (single page, sitemap, or crawl)."""

    def __init__(
        self,
        *,
        client: httpx.Client | None = None,
        timeout: float = 15.0,
        user_agent: str | None = None,
    ) -> None:
        headers = {"User-Agent": user_agent} if user_agent else None
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True, headers=headers)
        self._timeout = timeout

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def discover(self, root_url: str, mode: DiscoveryMode) -> List[str]:
        if mode is DiscoveryMode.SINGLE:
            return [root_url]
        if mode is DiscoveryMode.SITEMAP:
            try:
                urls = self._discover_sitemap(root_url)
            except DiscoveryDegraded as exc:
                logger.warning("discovery.degraded mode=sitemap url=%s error=%s", root_url, exc)
                return []
            logger.info("discovery.sitemap url=%s pages=%s", root_url, len(urls))
            return urls
        if mode is DiscoveryMode.CRAWL:
            try:
                urls = self._discover_links(root_url)
            except DiscoveryDegraded as exc:
                logger.warning("discovery.degraded mode=crawl url=%s error=%s", root_url, exc)
                return [root_url]
            logger.info("discovery.crawl url=%s pages=%s", root_url, len(urls))
            return urls
        raise ValueError(f"Unknown discovery mode: {mode!r}")

    # Internal helpers -------------------------------------------------

    def _get(self, url: str) -> httpx.Response:
        try:
            response = self._client.get(url, timeout=self._timeout, follow_redirects=True)
        except httpx.HTTPError as exc:
            raise DiscoveryDegraded(f"{url}: {exc.__class__.__name__}: {exc}") from exc
        if response.status_code >= 400:
            raise DiscoveryDegraded(f"{url}: HTTP {response.status_code}")
        return response

    def _discover_sitemap(self, sitemap_url: str) -> List[str]:
        soup = BeautifulSoup(self._get(sitemap_url).text, "html.parser")
        if soup.find("sitemapindex") is None:
            return _dedupe(_loc_values(soup.find_all("loc")))

        locations: list[str] = []
        for child in _loc_values(tag.find("loc") for tag in soup.find_all("sitemap")):
            try:
                child_soup = BeautifulSoup(self._get(child).text, "html.parser")
            except DiscoveryDegraded as exc:
                logger.warning("discovery.sitemap.child_failed url=%s error=%s", child, exc)
                continue
            locations.extend(_loc_values(child_soup.find_all("loc")))
        return _dedupe(locations)

    def _discover_links(self, root_url: str) -> List[str]:
        response = self._get(root_url)
        # Same-host checks use the URL reached after redirects.
        base_url = str(response.url) if response.url else root_url
        root_host = (urlparse(base_url).hostname or "").lower()
        landed = normalize_url(base_url)
        soup = BeautifulSoup(response.text, "html.parser")

        candidates = [root_url]
        for anchor in soup.find_all(href=True):
            href = str(anchor.get("href") or "").strip()
            if not href or href.startswith("#"):
                continue
            absolute = urljoin(base_url, href)
            parsed = urlparse(absolute)
            if parsed.scheme not in {"http", "https"}:
                continue
            if (parsed.hostname or "").lower() != root_host:
                continue
            if is_asset_path(parsed.path):
                continue
            normalized = normalize_url(absolute)
            if normalized == landed:
                continue
            candidates.append(normalized)
        return _dedupe(candidates)


def _loc_values(tags: Iterable) -> List[str]:
    values = []
    for tag in tags:
        if tag is None:
            continue
        text = tag.get_text(strip=True)
        if text:
            values.append(text)
    return values


def _dedupe(urls: Iterable[str]) -> List[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for url in urls:
        key = normalize_url(url)
        if key in seen:
            continue
        seen.add(key)
        unique.append(url)
    return unique


__all__ = ["DiscoveryMode", "UrlDiscoverer", "resolve_mode", "normalize_url", "is_asset_path"]
