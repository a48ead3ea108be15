"""Snippet highlighting for lexical matches."""

from __future__ import annotations

import html
import re
from typing import Sequence

from knowledge_engine.search.types import Highlight

MARK_OPEN = "<mark>"
MARK_CLOSE = "</mark>"


def _term_pattern(terms: Sequence[str]) -> re.Pattern[str] | None:
    cleaned = sorted({t for t in terms if t}, key=len, reverse=True)
    if not cleaned:
        return None
    alternation = "|".join(re.escape(t) for t in cleaned)
    return re.compile(rf"(?<!\w)(?:{alternation})(?!\w)", re.IGNORECASE)


def _mark(text: str, pattern: re.Pattern[str]) -> str:
    """HTML-escape `text` and wrap every term match in <mark> tags."""
    parts: list[str] = []
    cursor = 0
    for match in pattern.finditer(text):
        parts.append(html.escape(text[cursor : match.start()]))
        parts.append(f"{MARK_OPEN}{html.escape(match.group(0))}{MARK_CLOSE}")
        cursor = match.end()
    parts.append(html.escape(text[cursor:]))
    return "".join(parts)


def _densest_window(starts: list[int], window: int) -> int:
    """Index into `starts` of the match with the most neighbours within 2*window chars."""
    best_index = 0
    best_count = 0
    right = 0
    for left, start in enumerate(starts):
        while right < len(starts) and starts[right] - start <= 2 * window:
            right += 1
        if right - left > best_count:
            best_count = right - left
            best_index = left
    return best_index


def snippet_around_matches(text: str, terms: Sequence[str], window: int = 100) -> str | None:
    """
    Highlighted excerpt around the densest cluster of query-term matches.

    The excerpt spans `window` characters before the first match of the
    cluster and up to `2 * window` after it ends, the width a cluster may
    cover, trimmed to word boundaries.
    Returns None when no term occurs in the text.
    """
    pattern = _term_pattern(terms)
    if pattern is None or not text:
        return None
    matches = list(pattern.finditer(text))
    if not matches:
        return None

    first = matches[_densest_window([m.start() for m in matches], window)]
    start = max(0, first.start() - window)
    end = min(len(text), first.end() + 2 * window)

    if start > 0:
        space = text.find(" ", start, first.start())
        start = space + 1 if space != -1 else start
    if end < len(text):
        space = text.rfind(" ", first.end(), end)
        end = space if space != -1 else end

    excerpt = _mark(text[start:end].strip(), pattern)
    prefix = "..." if start > 0 else ""
    suffix = "..." if end < len(text) else ""
    return f"{prefix}{excerpt}{suffix}"


def build_highlight(
    title: str | None,
    body: str | None,
    terms: Sequence[str],
    window: int = 100,
) -> Highlight | None:
    pattern = _term_pattern(terms)
    if pattern is None:
        return None

    title_highlight = _mark(title, pattern) if title and pattern.search(title) else None
    content_highlight = snippet_around_matches(body or "", terms, window)
    if title_highlight is None and content_highlight is None:
        return None
    return Highlight(title=title_highlight, content=content_highlight)
