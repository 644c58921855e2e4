"""Split long text into overlapping fragments that end on natural boundaries."""

from __future__ import annotations

import re
from typing import List

DEFAULT_SIZE = 1000
DEFAULT_OVERLAP = 200
MIN_FRAGMENT_CHARS = 6
BOUNDARY_LOOKBACK = 150
BOUNDARY_LOOKAHEAD = 50

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_whitespace(text: str) -> str:
    """Collapse every run of whitespace to a single space and trim the ends."""

    return _WHITESPACE_RE.sub(" ", text).strip()


def _find_boundary(text: str, start: int, end: int, overlap: int) -> int:
    """Return the cut offset for a window ending at *end*.

    The search region covers the trailing ``BOUNDARY_LOOKBACK`` characters of the
    window plus ``BOUNDARY_LOOKAHEAD`` characters past it. Cuts never fall at or
    before ``start + overlap`` so the next window always starts past ``start``.
    """

    region_start = max(start + overlap + 1, end - BOUNDARY_LOOKBACK)
    region_end = min(len(text), end + BOUNDARY_LOOKAHEAD)
    if region_start >= region_end:
        return end

    period = text.rfind(".", region_start, region_end)
    if period != -1:
        return period + 1
    newline = text.rfind("\n", region_start, region_end)
    if newline != -1:
        return newline
    space = text.rfind(" ", region_start, region_end)
    if space != -1:
        return space
    return end


def segment(text: str, size: int = DEFAULT_SIZE, overlap: int = DEFAULT_OVERLAP) -> List[str]:
    """Split *text* into fragments of roughly *size* characters.

    Consecutive fragments share about *overlap* characters so context carries
    across the cut. Fragments may exceed *size* by up to ``BOUNDARY_LOOKAHEAD``
    characters when the nearest sentence boundary lies just past the window.
    """

    if size <= 0:
        raise ValueError("size must be a positive integer")
    if overlap < 0 or overlap >= size:
        raise ValueError("overlap must be non-negative and smaller than size")

    normalized = normalize_whitespace(text)
    if not normalized:
        return []
    if len(normalized) <= size:
        return [normalized]

    fragments: List[str] = []
    length = len(normalized)
    start = 0
    while start < length:
        end = min(start + size, length)
        if end < length:
            end = _find_boundary(normalized, start, end, overlap)

        piece = normalized[start:end].strip()
        if len(piece) >= MIN_FRAGMENT_CHARS:
            fragments.append(piece)

        if end >= length:
            break
        start = max(end - overlap, start + 1)

    return fragments


__all__ = ["segment", "normalize_whitespace", "DEFAULT_SIZE", "DEFAULT_OVERLAP", "MIN_FRAGMENT_CHARS"]
