"""Convert raw HTML into markdown-like plain text for fragmenting."""

from __future__ import annotations

import re
from typing import List

from bs4 import BeautifulSoup
from bs4.element import Comment, Declaration, Doctype, NavigableString, ProcessingInstruction, Tag


_STRIP_TAGS = (
    "script",
    "style",
    "noscript",
    "nav",
    "footer",
    "header",
    "aside",
    "iframe",
    "svg",
    "form",
    "template",
)

_BOILERPLATE_SELECTORS = ", ".join(
    [
        '[class*="sidebar"]',
        '[id*="sidebar"]',
        '[class*="advert"]',
        '[id*="advert"]',
        '[class*="cookie"]',
        '[id*="cookie"]',
        '[class~="ad"]',
        '[class~="ads"]',
        '[role="navigation"]',
        '[role="banner"]',
        '[role="contentinfo"]',
        '[aria-hidden="true"]',
    ]
)

_MAIN_SELECTORS = ("main", "article", '[role="main"]', "#content", ".content")

_BLOCK_TAGS = {
    "p",
    "div",
    "section",
    "dl",
    "dt",
    "dd",
    "figure",
    "figcaption",
    "address",
    "details",
    "summary",
    "body",
    "html",
    "main",
    "article",
}

_SKIPPED_NODES = (Comment, Declaration, Doctype, ProcessingInstruction)
_INLINE_SPACE_RE = re.compile(r"[ \t\r\f\v]+")
_SPACE_RE = re.compile(r"\s+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")
_NESTED_ITEM_RE = re.compile(r"^ {2,}(-|\d+\.) ")


def normalize(html: str | bytes) -> str:
    """Return the main content of *html* as markdown-like text.

    Boilerplate containers are pruned only inside the chosen content root, and
    never when they wrap a main-content landmark or most of the page text.
    """

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(list(_STRIP_TAGS)):
        tag.decompose()

    root = _select_main(soup)
    root_chars = len(root.get_text(strip=True))
    for tag in root.select(_BOILERPLATE_SELECTORS):
        if tag.decomposed or _is_layout_wrapper(tag, root_chars):
            continue
        tag.decompose()
    rendered = _render_children(root)
    return _tidy(rendered)


def extract_title(html: str | bytes) -> str | None:
    """Return the document ``<title>`` (or first ``h1``) when present."""

    soup = BeautifulSoup(html, "html.parser")
    if soup.title and soup.title.get_text(strip=True):
        return soup.title.get_text(strip=True)
    heading = soup.find("h1")
    if heading is not None:
        text = heading.get_text(" ", strip=True)
        return text or None
    return None


def _select_main(soup: BeautifulSoup) -> Tag:
    for selector in _MAIN_SELECTORS:
        candidate = soup.select_one(selector)
        if candidate is not None and candidate.get_text(strip=True):
            return candidate
    return soup.body or soup


def _is_layout_wrapper(tag: Tag, root_chars: int) -> bool:
    """True for matches that wrap the page content rather than sit beside it."""

    if tag.name in {"html", "body"}:
        return True
    if any(tag.select_one(selector) is not None for selector in _MAIN_SELECTORS):
        return True
    return len(tag.get_text(strip=True)) * 2 > root_chars


def _render_children(node: Tag) -> str:
    return "".join(_render(child) for child in node.children)


def _render(node) -> str:
    if isinstance(node, _SKIPPED_NODES):
        return ""
    if isinstance(node, NavigableString):
        return _INLINE_SPACE_RE.sub(" ", str(node).replace("\n", " "))
    if not isinstance(node, Tag):
        return ""

    name = node.name
    if name in {"h1", "h2", "h3", "h4", "h5", "h6"}:
        text = _inline_text(node)
        if not text:
            return ""
        return f"\n\n{'#' * int(name[1])} {text}\n\n"
    if name in {"ul", "ol"}:
        return "\n\n" + _render_list(node, depth=0) + "\n\n"
    if name == "pre":
        code = node.get_text().strip("\n")
        if not code.strip():
            return ""
        return f"\n\n```\n{code}\n```\n\n"
    if name == "table":
        return "\n\n" + _render_table(node) + "\n\n"
    if name == "blockquote":
        inner = _tidy(_render_children(node))
        if not inner:
            return ""
        quoted = "\n".join(f"> {line}" if line else ">" for line in inner.split("\n"))
        return f"\n\n{quoted}\n\n"
    if name == "br":
        return "\n"
    if name == "hr":
        return "\n\n"
    if name == "img":
        return ""
    if name in {"strong", "b"}:
        text = _inline_text(node)
        return f"**{text}**" if text else ""
    if name in {"em", "i"}:
        text = _inline_text(node)
        return f"*{text}*" if text else ""
    if name == "code":
        text = node.get_text()
        return f"`{text.strip()}`" if text.strip() else ""
    if name == "li":
        return "\n" + _render_children(node).strip() + "\n"
    if name in _BLOCK_TAGS:
        return f"\n\n{_render_children(node)}\n\n"
    return _render_children(node)


def _inline_text(node: Tag) -> str:
    return _SPACE_RE.sub(" ", _render_children(node)).strip()


def _render_list(node: Tag, *, depth: int) -> str:
    ordered = node.name == "ol"
    indent = "  " * depth
    lines: List[str] = []
    index = 1
    for item in node.find_all("li", recursive=False):
        nested: List[str] = []
        parts: List[str] = []
        for child in item.children:
            if isinstance(child, Tag) and child.name in {"ul", "ol"}:
                nested.append(_render_list(child, depth=depth + 1))
            else:
                parts.append(_render(child))
        text = _SPACE_RE.sub(" ", "".join(parts)).strip()
        marker = f"{index}." if ordered else "-"
        if text:
            lines.append(f"{indent}{marker} {text}")
            index += 1
        lines.extend(block for block in nested if block)
    return "\n".join(lines)


def _render_table(node: Tag) -> str:
    rows: List[List[str]] = []
    for row in node.find_all("tr"):
        cells = [
            _SPACE_RE.sub(" ", _render_children(cell)).strip().replace("|", "\\|")
            for cell in row.find_all(["th", "td"], recursive=False)
        ]
        if any(cells):
            rows.append(cells)
    if not rows:
        return ""

    width = max(len(row) for row in rows)
    lines = []
    for position, row in enumerate(rows):
        padded = row + [""] * (width - len(row))
        lines.append("| " + " | ".join(padded) + " |")
        if position == 0:
            lines.append("|" + "|".join(" --- " for _ in range(width)) + "|")
    return "\n".join(lines)


def _tidy(text: str) -> str:
    lines = [
        line.rstrip() if _NESTED_ITEM_RE.match(line) else line.strip()
        for line in text.split("\n")
    ]
    cleaned = "\n".join(lines)
    cleaned = _BLANK_LINES_RE.sub("\n\n", cleaned)
    return cleaned.strip()


__all__ = ["normalize", "extract_title"]
