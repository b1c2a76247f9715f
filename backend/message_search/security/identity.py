"""Identity boundary.

Every engine operation takes a :class:`Principal` explicitly. Principals are
only minted by an :class:`IdentityResolver`; raw owner strings handed to the
engine are rejected by :func:`require_principal`.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass, field
from typing import Mapping, Protocol

from message_search.core.errors import Unauthenticated

_RESOLVER_SEAL = object()


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated owner all data is scoped to."""

    id: str
    _seal: object = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self._seal is not _RESOLVER_SEAL:
            raise Unauthenticated("principals must be issued by an identity resolver")
        if not self.id or not self.id.strip():
            raise Unauthenticated("principal id must be non-empty")


class IdentityResolver(Protocol):
    def resolve(self, credential: str | None) -> Principal: ...


def issue_principal(owner_id: str) -> Principal:
    """Mint a principal. Only resolver implementations call this."""
    return Principal(id=owner_id, _seal=_RESOLVER_SEAL)


def require_principal(value: object) -> Principal:
    """Return ``value`` if it is a resolved principal, otherwise raise."""
    if not isinstance(value, Principal):
        raise Unauthenticated(
            "operation requires a resolved principal",
            {"received": type(value).__name__},
        )
    return value


class StaticTokenResolver:
    """Resolve bearer tokens against a fixed token -> owner id mapping."""

    def __init__(self, tokens: Mapping[str, str]) -> None:
        self._tokens = dict(tokens)

    def resolve(self, credential: str | None) -> Principal:
        if not credential:
            raise Unauthenticated("missing credential")
        token = credential
        if token.lower().startswith("bearer "):
            token = token[7:].strip()
        for known, owner_id in self._tokens.items():
            if hmac.compare_digest(known.encode("utf-8"), token.encode("utf-8")):
                return issue_principal(owner_id)
        raise Unauthenticated("unknown credential")


__all__ = [
    "Principal",
    "IdentityResolver",
    "StaticTokenResolver",
    "issue_principal",
    "require_principal",
]
