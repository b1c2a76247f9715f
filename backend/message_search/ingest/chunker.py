"""Chunking utilities."""

from __future__ import annotations

import re
from dataclasses import dataclass

from message_search.core.errors import ConfigurationError

# Sentence terminator followed by whitespace, or a line break.
_SENTENCE_END_RE = re.compile(r"[.!?]+\s|\n")
_WHITESPACE_RE = re.compile(r"\s")


@dataclass(slots=True)
class Span:
    start: int
    end: int


def chunk_text(
    text: str,
    max_chunk_chars: int,
    overlap_chars: int,
    lookback_chars: int | None = None,
) -> list[str]:
    """Split ``text`` into ordered chunks of at most ``max_chunk_chars``.

    Chunks are raw slices of the input. Each chunk after the first starts
    ``overlap_chars`` before the end of the previous one.
    """
    return [text[span.start : span.end] for span in chunk_spans(text, max_chunk_chars, overlap_chars, lookback_chars)]


def chunk_spans(
    text: str,
    max_chunk_chars: int,
    overlap_chars: int,
    lookback_chars: int | None = None,
) -> list[Span]:
    """Return the character spans :func:`chunk_text` would cut."""
    _validate(max_chunk_chars, overlap_chars, lookback_chars)
    if not text or not text.strip():
        return []

    lookback = lookback_chars if lookback_chars is not None else max(1, max_chunk_chars // 4)
    length = len(text)
    spans: list[Span] = []
    start = 0
    while True:
        hard_end = start + max_chunk_chars
        if hard_end >= length:
            spans.append(Span(start, length))
            break
        end = _find_cut(text, start, hard_end, overlap_chars, lookback)
        spans.append(Span(start, end))
        start = end - overlap_chars
    return spans


def _validate(max_chunk_chars: int, overlap_chars: int, lookback_chars: int | None) -> None:
    if not isinstance(max_chunk_chars, int) or not isinstance(overlap_chars, int):
        raise ConfigurationError("chunk sizes must be integers")
    if not max_chunk_chars > overlap_chars >= 0:
        raise ConfigurationError(
            "chunker requires max_chunk_chars > overlap_chars >= 0",
            {"max_chunk_chars": max_chunk_chars, "overlap_chars": overlap_chars},
        )
    if lookback_chars is not None and lookback_chars < 0:
        raise ConfigurationError("lookback_chars must be >= 0", {"lookback_chars": lookback_chars})


def _find_cut(text: str, start: int, hard_end: int, overlap_chars: int, lookback: int) -> int:
    """Pick the end of the chunk starting at ``start``.

    The cut must stay beyond ``start + overlap_chars`` so the next chunk makes
    progress.
    """
    floor = max(start + overlap_chars + 1, hard_end - lookback)
    if floor >= hard_end:
        return hard_end
    window = text[floor:hard_end]

    sentence_cut = None
    for match in _SENTENCE_END_RE.finditer(window):
        sentence_cut = floor + match.end()
    if sentence_cut is not None:
        return sentence_cut

    whitespace_cut = None
    for match in _WHITESPACE_RE.finditer(window):
        whitespace_cut = floor + match.end()
    if whitespace_cut is not None:
        return whitespace_cut
    return hard_end


__all__ = ["chunk_text", "chunk_spans", "Span"]
