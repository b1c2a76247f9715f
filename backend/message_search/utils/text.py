"""Text processing helpers."""

from __future__ import annotations

import re


WHITESPACE_RE = re.compile(r"\s+")


def normalize(text: str | None) -> str:
    """Collapse whitespace and strip."""
    if not text:
        return ""
    return WHITESPACE_RE.sub(" ", text).strip()
