"""Owner-partitioned vector index.

Each principal gets its own :class:`OwnerPartition`; there is no code path
that reads vectors from more than one partition. Small partitions are searched
exactly, larger ones through an IVF (inverted file) clustering.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence

import numpy as np

from message_search.core.errors import ConfigurationError, DimensionMismatch
from message_search.core.metrics import INDEX_SIZE, SEARCH_LATENCY
from message_search.security.identity import Principal, require_principal

logger = logging.getLogger(__name__)

PartitionLoader = Callable[[Principal], Iterable[tuple[str, Sequence[float]]]]

_KMEANS_ITERATIONS = 10


@dataclass(slots=True)
class SearchResult:
    chunk_id: str
    similarity: float


class _IVFLists:
    """Inverted lists over k-means centroids of unit vectors."""

    def __init__(self, centroids: np.ndarray, assignments: dict[str, int]) -> None:
        self.centroids = centroids
        self.members: list[set[str]] = [set() for _ in range(len(centroids))]
        self.assignments: dict[str, int] = {}
        for chunk_id, list_no in assignments.items():
            self.assign(chunk_id, list_no)

    @classmethod
    def train(cls, ids: Sequence[str], matrix: np.ndarray, lists: int) -> "_IVFLists":
        # Deterministic init: evenly spaced members in chunk id order.
        order = np.argsort(np.asarray(ids))
        n_lists = max(1, min(lists, len(ids)))
        seeds = order[np.linspace(0, len(ids) - 1, n_lists).astype(int)]
        centroids = matrix[seeds].copy()
        labels = np.zeros(len(ids), dtype=int)
        for _ in range(_KMEANS_ITERATIONS):
            labels = np.argmax(matrix @ centroids.T, axis=1)
            for list_no in range(n_lists):
                members = matrix[labels == list_no]
                if len(members) == 0:
                    continue
                centroid = members.mean(axis=0)
                norm = np.linalg.norm(centroid)
                if norm > 0:
                    centroids[list_no] = centroid / norm
        return cls(centroids, {chunk_id: int(labels[pos]) for pos, chunk_id in enumerate(ids)})

    def nearest(self, unit: np.ndarray) -> int:
        return int(np.argmax(self.centroids @ unit))

    def assign(self, chunk_id: str, list_no: int) -> None:
        self.discard(chunk_id)
        self.members[list_no].add(chunk_id)
        self.assignments[chunk_id] = list_no

    def discard(self, chunk_id: str) -> None:
        previous = self.assignments.pop(chunk_id, None)
        if previous is not None:
            self.members[previous].discard(chunk_id)

    def candidates(self, unit: np.ndarray, probes: int) -> set[str]:
        scores = self.centroids @ unit
        probe_lists = np.argsort(-scores, kind="stable")[:probes]
        found: set[str] = set()
        for list_no in probe_lists:
            found.update(self.members[int(list_no)])
        return found


class OwnerPartition:
    """Vectors of a single owner, guarded by its own lock."""

    def __init__(self, dim: int, exact_search_limit: int, lists: int, probes: int) -> None:
        self.dim = dim
        self.exact_search_limit = exact_search_limit
        self.lists = lists
        self.probes = probes
        self.lock = threading.RLock()
        self._vectors: dict[str, np.ndarray] = {}
        self._ivf: _IVFLists | None = None
        self._trained_size = 0

    @property
    def size(self) -> int:
        return len(self._vectors)

    @property
    def strategy(self) -> str:
        return "ivf" if self._ivf is not None else "exact"

    def upsert(self, chunk_id: str, vector: Sequence[float]) -> None:
        unit = self._unit(vector)
        with self.lock:
            self._vectors[chunk_id] = unit
            if self._ivf is not None:
                self._ivf.assign(chunk_id, self._ivf.nearest(unit))
            self._maybe_retrain()

    def remove(self, chunk_id: str) -> bool:
        with self.lock:
            removed = self._vectors.pop(chunk_id, None) is not None
            if self._ivf is not None:
                self._ivf.discard(chunk_id)
                if self.size < self.exact_search_limit:
                    self._ivf = None
                    self._trained_size = 0
            return removed

    def search(self, query: Sequence[float], k: int, threshold: float) -> list[SearchResult]:
        unit = self._unit(query)
        with self.lock:
            if not self._vectors or k <= 0:
                return []
            if self._ivf is not None:
                ids = sorted(self._ivf.candidates(unit, self.probes))
            else:
                ids = sorted(self._vectors)
            if not ids:
                return []
            matrix = np.stack([self._vectors[chunk_id] for chunk_id in ids])
        similarities = np.clip(matrix @ unit, -1.0, 1.0)
        hits = [
            SearchResult(chunk_id=chunk_id, similarity=float(score))
            for chunk_id, score in zip(ids, similarities)
            if score >= threshold
        ]
        hits.sort(key=lambda hit: (-hit.similarity, hit.chunk_id))
        return hits[:k]

    def _unit(self, vector: Sequence[float]) -> np.ndarray:
        array = np.asarray(vector, dtype=np.float64)
        if array.ndim != 1 or array.shape[0] != self.dim:
            raise DimensionMismatch(self.dim, int(array.shape[-1]) if array.ndim else 0)
        norm = np.linalg.norm(array)
        # zero vectors have no direction; they score 0 against everything
        return array / norm if norm > 0 else array

    def _maybe_retrain(self) -> None:
        size = self.size
        if size < self.exact_search_limit:
            return
        if self._ivf is None or size >= 2 * self._trained_size:
            ids = list(self._vectors)
            matrix = np.stack([self._vectors[chunk_id] for chunk_id in ids])
            self._ivf = _IVFLists.train(ids, matrix, self.lists)
            self._trained_size = size
            logger.info("Trained IVF lists=%d over %d vectors", len(self._ivf.centroids), size)


class VectorIndex:
    """Per-owner cosine similarity index.

    ``loader`` repopulates a partition from persisted embeddings the first time
    an owner is touched.
    """

    def __init__(
        self,
        dim: int,
        exact_search_limit: int = 5000,
        lists: int = 100,
        probes: int = 8,
        loader: PartitionLoader | None = None,
    ) -> None:
        if dim <= 0:
            raise ConfigurationError("index dimension must be positive", {"dim": dim})
        self.dim = dim
        self.exact_search_limit = exact_search_limit
        self.lists = lists
        self.probes = probes
        self.loader = loader
        self._partitions: dict[str, OwnerPartition] = {}
        self._lock = threading.Lock()

    def upsert(self, owner: Principal, chunk_id: str, vector: Sequence[float]) -> None:
        self._partition(owner).upsert(chunk_id, vector)
        self._update_metric()

    def remove(self, owner: Principal, chunk_id: str) -> None:
        self._partition(owner).remove(chunk_id)
        self._update_metric()

    def search(
        self,
        owner: Principal,
        query_vector: Sequence[float],
        k: int,
        similarity_threshold: float,
    ) -> list[SearchResult]:
        partition = self._partition(owner)
        with SEARCH_LATENCY.labels(strategy=partition.strategy).time():
            return partition.search(query_vector, k, similarity_threshold)

    def size(self, owner: Principal) -> int:
        return self._partition(owner).size

    def strategy(self, owner: Principal) -> str:
        return self._partition(owner).strategy

    def drop_partition(self, owner: Principal) -> None:
        owner = require_principal(owner)
        with self._lock:
            self._partitions.pop(owner.id, None)
        self._update_metric()

    def _partition(self, owner: Principal) -> OwnerPartition:
        owner = require_principal(owner)
        with self._lock:
            partition = self._partitions.get(owner.id)
            if partition is not None:
                return partition
            partition = OwnerPartition(self.dim, self.exact_search_limit, self.lists, self.probes)
            # hold the partition lock while loading so nobody sees a half-loaded owner
            partition.lock.acquire()
            self._partitions[owner.id] = partition
        try:
            if self.loader is not None:
                loaded = 0
                for chunk_id, vector in self.loader(owner):
                    try:
                        partition.upsert(chunk_id, vector)
                        loaded += 1
                    except DimensionMismatch as exc:
                        logger.warning("Skipping stored vector %s: %s", chunk_id, exc.message)
                logger.debug("Loaded %d vectors for owner partition", loaded)
        except Exception:
            with self._lock:
                self._partitions.pop(owner.id, None)
            raise
        finally:
            partition.lock.release()
        return partition

    def _update_metric(self) -> None:
        with self._lock:
            INDEX_SIZE.set(sum(partition.size for partition in self._partitions.values()))


__all__ = ["VectorIndex", "OwnerPartition", "SearchResult"]
