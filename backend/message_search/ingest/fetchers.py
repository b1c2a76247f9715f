"""Message source fetchers.

A fetcher turns ``(owner, source, cursor)`` into a :class:`FetchPage`. Calls
must be idempotent: the same cursor yields the same page.
"""

from __future__ import annotations

import csv
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from message_search.core.errors import ConfigurationError
from message_search.ingest.types import FetchPage, RawMessage
from message_search.security.identity import Principal, require_principal

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class MessageSourceFetcher(Protocol):
    def fetch(self, owner: Principal, source: str, cursor: str | None) -> FetchPage: ...


class FetcherRegistry:
    """Look up the fetcher registered for a source name."""

    def __init__(self) -> None:
        self._fetchers: dict[str, MessageSourceFetcher] = {}

    def register(self, source: str, fetcher: MessageSourceFetcher) -> None:
        self._fetchers[source] = fetcher

    def get(self, source: str) -> MessageSourceFetcher:
        fetcher = self._fetchers.get(source)
        if fetcher is None:
            raise ConfigurationError(f"no fetcher registered for source '{source}'", {"source": source})
        return fetcher

    def sources(self) -> list[str]:
        return sorted(self._fetchers)


class LinkedInExportFetcher:
    """Read ``<export_dir>/<owner id>/messages.csv`` from a LinkedIn data export.

    Rows are paged oldest first with undated rows last, whatever order the
    file lists them in. The cursor is the number of rows already consumed; a
    newer export only adds rows at the recent end of that order, so the
    cursor from the previous export still points at the first unseen row.
    """

    filename = "messages.csv"

    def __init__(self, export_dir: Path, page_size: int = 100) -> None:
        self.export_dir = export_dir.expanduser()
        self.page_size = page_size

    def fetch(self, owner: Principal, source: str, cursor: str | None) -> FetchPage:
        owner = require_principal(owner)
        offset = _parse_offset(cursor)
        path = self.export_dir / owner.id / self.filename
        if not path.exists():
            logger.info("No export file at %s", path)
            return FetchPage(messages=[], next_cursor=cursor, has_more=False)

        with path.open("r", encoding="utf-8-sig", newline="") as fh:
            rows = list(csv.DictReader(fh))
        ordered = [_row_to_message(row) for row in reversed(rows)]
        ordered.sort(key=_chronological)
        messages = ordered[offset : offset + self.page_size]
        has_more = offset + len(messages) < len(ordered)
        next_offset = offset + len(messages)
        return FetchPage(messages=messages, next_cursor=str(next_offset), has_more=has_more)


def _parse_offset(cursor: str | None) -> int:
    if cursor is None or cursor == "":
        return 0
    try:
        offset = int(cursor)
    except ValueError as exc:
        raise ConfigurationError(f"invalid export cursor '{cursor}'", {"cursor": cursor}) from exc
    if offset < 0:
        raise ConfigurationError(f"invalid export cursor '{cursor}'", {"cursor": cursor})
    return offset


def _row_to_message(row: dict[str, str]) -> RawMessage:
    sender = (row.get("FROM") or "").strip() or None
    recipients = [name.strip() for name in (row.get("TO") or "").split(",") if name.strip()]
    participants = sorted({*recipients, *([sender] if sender else [])})
    metadata = {
        key: row[column]
        for key, column in (
            ("subject", "SUBJECT"),
            ("folder", "FOLDER"),
            ("sender_profile_url", "SENDER PROFILE URL"),
        )
        if row.get(column)
    }
    return RawMessage(
        conversation_external_id=(row.get("CONVERSATION ID") or "").strip() or "unknown",
        body=row.get("CONTENT") or "",
        external_id=None,
        sender_id=sender,
        sent_at=_parse_date(row.get("DATE")),
        conversation_title=(row.get("CONVERSATION TITLE") or "").strip() or None,
        participants=participants,
        metadata=metadata,
    )


def _chronological(message: RawMessage) -> tuple[bool, datetime]:
    return (message.sent_at is None, message.sent_at or _EPOCH)


def _parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    text = value.strip()
    for fmt in ("%Y-%m-%d %H:%M:%S UTC", "%Y-%m-%d %H:%M:%S", "%m/%d/%Y, %I:%M %p"):
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    logger.debug("Unparseable export date %r", value)
    return None


__all__ = ["MessageSourceFetcher", "FetcherRegistry", "LinkedInExportFetcher"]
