"""Tests for chunker."""

import pytest

from message_search.core.errors import ConfigurationError
from message_search.ingest.chunker import chunk_spans, chunk_text

SAMPLE = (
    "Hi Dana, thanks for the intro last week. I went through the deck and the pricing page. "
    "Could we set up a call on Thursday? I would like to bring our CTO as well!\n"
    "Also, are you still hiring for the platform team? A friend of mine is looking. "
    "Let me know what works and I will send an invite."
)


def test_chunk_lengths_and_overlap() -> None:
    chunks = chunk_text(SAMPLE, 100, 20)
    assert len(chunks) > 1
    assert all(len(chunk) <= 100 for chunk in chunks)
    for previous, current in zip(chunks, chunks[1:]):
        assert previous[-20:] == current[:20]


def test_chunking_is_deterministic() -> None:
    assert chunk_text(SAMPLE, 100, 20) == chunk_text(SAMPLE, 100, 20)


def test_chunks_cover_the_whole_text() -> None:
    spans = chunk_spans(SAMPLE, 100, 20)
    assert spans[0].start == 0
    assert spans[-1].end == len(SAMPLE)
    for previous, current in zip(spans, spans[1:]):
        assert current.start == previous.end - 20
        assert current.end > previous.end


def test_prefers_sentence_boundaries() -> None:
    chunks = chunk_text(SAMPLE, 100, 20)
    assert chunks[0].endswith("pricing page. ")


def test_hard_cut_without_whitespace() -> None:
    text = "x" * 250
    chunks = chunk_text(text, 100, 20)
    assert [len(chunk) for chunk in chunks] == [100, 100, 90]


def test_short_text_is_single_chunk() -> None:
    assert chunk_text("See you tomorrow.", 100, 20) == ["See you tomorrow."]


@pytest.mark.parametrize("text", ["", "   ", "\n\t "])
def test_empty_text_yields_no_chunks(text: str) -> None:
    assert chunk_text(text, 100, 20) == []


@pytest.mark.parametrize("max_chars, overlap", [(20, 20), (10, 30), (100, -1)])
def test_invalid_sizes_rejected(max_chars: int, overlap: int) -> None:
    with pytest.raises(ConfigurationError):
        chunk_text(SAMPLE, max_chars, overlap)
