"""Hashing utilities."""

from __future__ import annotations

import hashlib
from typing import Iterable


def sha256_parts(parts: Iterable[str | None]) -> str:
    """Hash a sequence of text fields; ``None`` and empty strings stay distinct."""
    h = hashlib.sha256()
    for part in parts:
        if part is None:
            h.update(b"\x00")
        else:
            h.update(b"\x01")
            h.update(part.encode("utf-8"))
        h.update(b"\x1f")
    return h.hexdigest()
