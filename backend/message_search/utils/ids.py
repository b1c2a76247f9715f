"""ID helpers."""

from __future__ import annotations

import re
import uuid

_ID_RE = re.compile(r"^(?:(?P<prefix>[a-z]+)_)?(?P<hex>[0-9a-f]{32})$")


def new_id(prefix: str | None = None) -> str:
    """Generate a random UUID4 string with optional prefix."""
    base = uuid.uuid4().hex
    return f"{prefix}_{base}" if prefix else base


def has_prefix(value: str, prefix: str) -> bool:
    """Return True when ``value`` looks like an id minted by ``new_id(prefix)``."""
    match = _ID_RE.match(value or "")
    return bool(match) and match.group("prefix") == prefix
