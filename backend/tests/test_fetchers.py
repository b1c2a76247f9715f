"""Tests for message source fetchers."""

import csv
from datetime import datetime, timezone
from pathlib import Path

import pytest

from message_search.core.errors import ConfigurationError
from message_search.ingest.fetchers import FetcherRegistry, LinkedInExportFetcher

COLUMNS = [
    "CONVERSATION ID",
    "CONVERSATION TITLE",
    "FROM",
    "SENDER PROFILE URL",
    "TO",
    "DATE",
    "SUBJECT",
    "CONTENT",
    "FOLDER",
]


def _write_export(root: Path, owner_id: str, rows: list[dict[str, str]]) -> None:
    target = root / owner_id
    target.mkdir(parents=True, exist_ok=True)
    with (target / "messages.csv").open("w", encoding="utf-8", newline="") as fh:
        writer = csv.DictWriter(fh, fieldnames=COLUMNS)
        writer.writeheader()
        for row in rows:
            writer.writerow({column: row.get(column, "") for column in COLUMNS})


def _row(idx: int) -> dict[str, str]:
    return {
        "CONVERSATION ID": "2-abc",
        "CONVERSATION TITLE": "Recruiting chat",
        "FROM": "Dana Lee",
        "TO": "Alex Kim",
        "DATE": f"2024-03-0{idx + 1} 09:30:00 UTC",
        "CONTENT": f"Message {idx}",
        "FOLDER": "INBOX",
    }


def test_pages_through_export(tmp_path: Path, alice) -> None:
    _write_export(tmp_path, "alice", [_row(idx) for idx in range(5)])
    fetcher = LinkedInExportFetcher(tmp_path, page_size=2)

    first = fetcher.fetch(alice, "linkedin", None)
    assert [message.body for message in first.messages] == ["Message 0", "Message 1"]
    assert first.next_cursor == "2"
    assert first.has_more

    last = fetcher.fetch(alice, "linkedin", "4")
    assert [message.body for message in last.messages] == ["Message 4"]
    assert last.next_cursor == "5"
    assert not last.has_more

    assert fetcher.fetch(alice, "linkedin", "2").messages == fetcher.fetch(alice, "linkedin", "2").messages


def test_newer_export_resumes_after_last_seen_row(tmp_path: Path, alice) -> None:
    _write_export(tmp_path, "alice", [_row(idx) for idx in reversed(range(3))])
    fetcher = LinkedInExportFetcher(tmp_path, page_size=2)

    seen: list[str] = []
    cursor = None
    while True:
        page = fetcher.fetch(alice, "linkedin", cursor)
        seen.extend(message.body for message in page.messages)
        cursor = page.next_cursor
        if not page.has_more:
            break
    assert seen == ["Message 0", "Message 1", "Message 2"]
    assert cursor == "3"

    _write_export(tmp_path, "alice", [_row(idx) for idx in reversed(range(5))])
    page = fetcher.fetch(alice, "linkedin", cursor)
    assert [message.body for message in page.messages] == ["Message 3", "Message 4"]
    assert page.next_cursor == "5"
    assert not page.has_more


def test_undated_rows_are_paged_last(tmp_path: Path, alice) -> None:
    undated = {**_row(9), "DATE": "", "CONTENT": "No date"}
    _write_export(tmp_path, "alice", [undated, _row(1), _row(0)])
    page = LinkedInExportFetcher(tmp_path).fetch(alice, "linkedin", None)
    assert [message.body for message in page.messages] == ["Message 0", "Message 1", "No date"]


def test_row_mapping(tmp_path: Path, alice) -> None:
    _write_export(tmp_path, "alice", [_row(0)])
    message = LinkedInExportFetcher(tmp_path).fetch(alice, "linkedin", None).messages[0]
    assert message.conversation_external_id == "2-abc"
    assert message.conversation_title == "Recruiting chat"
    assert message.sender_id == "Dana Lee"
    assert message.participants == ["Alex Kim", "Dana Lee"]
    assert message.sent_at == datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)
    assert message.external_id is None
    assert message.metadata == {"folder": "INBOX"}


def test_reads_only_the_owners_export(tmp_path: Path, alice, bob) -> None:
    _write_export(tmp_path, "alice", [_row(0)])
    page = LinkedInExportFetcher(tmp_path).fetch(bob, "linkedin", None)
    assert page.messages == []
    assert not page.has_more


def test_invalid_cursor(tmp_path: Path, alice) -> None:
    _write_export(tmp_path, "alice", [_row(0)])
    with pytest.raises(ConfigurationError):
        LinkedInExportFetcher(tmp_path).fetch(alice, "linkedin", "abc")


def test_registry_lookup(tmp_path: Path) -> None:
    registry = FetcherRegistry()
    fetcher = LinkedInExportFetcher(tmp_path)
    registry.register("linkedin", fetcher)
    assert registry.get("linkedin") is fetcher
    assert registry.sources() == ["linkedin"]
    with pytest.raises(ConfigurationError):
        registry.get("gmail")
