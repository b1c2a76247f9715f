"""Tests for the owner-partitioned vector index."""

import numpy as np
import pytest

from message_search.core.errors import DimensionMismatch, Unauthenticated
from message_search.retrieval.vector_index import VectorIndex


def _basis(dim: int, axis: int) -> list[float]:
    vector = [0.0] * dim
    vector[axis] = 1.0
    return vector


def test_upsert_then_search_returns_exact_match(alice) -> None:
    index = VectorIndex(dim=3)
    index.upsert(alice, "chk_a", [0.2, 0.4, 0.9])
    results = index.search(alice, [0.2, 0.4, 0.9], k=5, similarity_threshold=1.0)
    assert [hit.chunk_id for hit in results] == ["chk_a"]
    assert results[0].similarity == pytest.approx(1.0)


def test_owners_never_see_each_other(alice, bob) -> None:
    index = VectorIndex(dim=3)
    index.upsert(alice, "chk_alice", [1.0, 0.0, 0.0])
    index.upsert(bob, "chk_bob", [1.0, 0.0, 0.0])
    alice_hits = index.search(alice, [1.0, 0.0, 0.0], k=10, similarity_threshold=-1.0)
    bob_hits = index.search(bob, [1.0, 0.0, 0.0], k=10, similarity_threshold=-1.0)
    assert [hit.chunk_id for hit in alice_hits] == ["chk_alice"]
    assert [hit.chunk_id for hit in bob_hits] == ["chk_bob"]


def test_threshold_ordering_and_ties(alice) -> None:
    index = VectorIndex(dim=2)
    index.upsert(alice, "chk_b", [1.0, 0.0])
    index.upsert(alice, "chk_a", [2.0, 0.0])
    index.upsert(alice, "chk_c", [1.0, 1.0])
    index.upsert(alice, "chk_d", [0.0, 1.0])
    results = index.search(alice, [1.0, 0.0], k=10, similarity_threshold=0.5)
    assert [hit.chunk_id for hit in results] == ["chk_a", "chk_b", "chk_c"]
    assert results[2].similarity == pytest.approx(2**-0.5)
    assert len(index.search(alice, [1.0, 0.0], k=2, similarity_threshold=0.5)) == 2


def test_upsert_replaces_vector(alice) -> None:
    index = VectorIndex(dim=2)
    index.upsert(alice, "chk_a", [1.0, 0.0])
    index.upsert(alice, "chk_a", [0.0, 1.0])
    assert index.size(alice) == 1
    assert index.search(alice, [1.0, 0.0], k=1, similarity_threshold=0.5) == []


def test_remove_is_idempotent(alice) -> None:
    index = VectorIndex(dim=2)
    index.upsert(alice, "chk_a", [1.0, 0.0])
    index.remove(alice, "chk_a")
    index.remove(alice, "chk_a")
    index.remove(alice, "chk_never")
    assert index.size(alice) == 0
    assert index.search(alice, [1.0, 0.0], k=1, similarity_threshold=-1.0) == []


def test_dimension_mismatch(alice) -> None:
    index = VectorIndex(dim=3)
    with pytest.raises(DimensionMismatch):
        index.upsert(alice, "chk_a", [1.0, 0.0])
    with pytest.raises(DimensionMismatch):
        index.search(alice, [1.0, 0.0, 0.0, 0.0], k=1, similarity_threshold=0.0)


def test_raw_owner_strings_rejected() -> None:
    index = VectorIndex(dim=2)
    with pytest.raises(Unauthenticated):
        index.upsert("alice", "chk_a", [1.0, 0.0])
    with pytest.raises(Unauthenticated):
        index.search("alice", [1.0, 0.0], k=1, similarity_threshold=0.0)


def test_switches_to_ivf_above_limit(alice) -> None:
    dim = 8
    index = VectorIndex(dim=dim, exact_search_limit=40, lists=4, probes=4)
    rng = np.random.default_rng(7)
    vectors = {}
    for idx in range(60):
        vector = _basis(dim, idx % dim)
        vector = [value + 0.05 * noise for value, noise in zip(vector, rng.standard_normal(dim))]
        vectors[f"chk_{idx:03d}"] = vector
        index.upsert(alice, f"chk_{idx:03d}", vector)
    assert index.strategy(alice) == "ivf"
    # probing every list is exhaustive
    results = index.search(alice, vectors["chk_013"], k=1, similarity_threshold=0.0)
    assert results[0].chunk_id == "chk_013"
    assert results[0].similarity == pytest.approx(1.0)

    for idx in range(30):
        index.remove(alice, f"chk_{idx:03d}")
    assert index.strategy(alice) == "exact"
    assert index.size(alice) == 30


def test_ivf_is_deterministic(alice) -> None:
    def build() -> list[str]:
        index = VectorIndex(dim=4, exact_search_limit=10, lists=3, probes=1)
        rng = np.random.default_rng(3)
        for idx in range(30):
            index.upsert(alice, f"chk_{idx:02d}", rng.standard_normal(4).tolist())
        return [hit.chunk_id for hit in index.search(alice, [1.0, 0.5, 0.0, 0.0], k=5, similarity_threshold=-1.0)]

    assert build() == build()


def test_partition_loads_lazily_from_loader(alice, bob) -> None:
    loaded: list[str] = []

    def loader(owner):
        loaded.append(owner.id)
        if owner.id == "alice":
            return [("chk_stored", [0.0, 1.0])]
        return []

    index = VectorIndex(dim=2, loader=loader)
    assert index.search(alice, [0.0, 1.0], k=1, similarity_threshold=0.9)[0].chunk_id == "chk_stored"
    index.search(alice, [0.0, 1.0], k=1, similarity_threshold=0.9)
    assert index.search(bob, [0.0, 1.0], k=1, similarity_threshold=-1.0) == []
    assert loaded == ["alice", "bob"]


def test_drop_partition_reloads(alice) -> None:
    calls = {"count": 0}

    def loader(owner):
        calls["count"] += 1
        return []

    index = VectorIndex(dim=2, loader=loader)
    index.upsert(alice, "chk_a", [1.0, 0.0])
    index.drop_partition(alice)
    assert index.size(alice) == 0
    assert calls["count"] == 2
