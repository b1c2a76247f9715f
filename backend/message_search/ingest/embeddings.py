"""Embedding gateway and the local hashed provider."""

from __future__ import annotations

import hashlib
import logging
import math
import re
from array import array
from dataclasses import dataclass
from typing import Protocol, Sequence

from message_search.core.config import Settings
from message_search.core.errors import DimensionMismatch, PermanentProviderError, TransientProviderError
from message_search.ingest.resilience import RetryConfig, TimeoutRunner, call_with_retry

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+")


class EmbeddingProvider(Protocol):
    """Opaque text -> vector provider.

    Raises :class:`TransientProviderError` (or ``TimeoutError``/``ConnectionError``)
    for retryable faults and :class:`PermanentProviderError` for rejected input.
    """

    def embed(self, texts: Sequence[str]) -> list[list[float]]: ...


@dataclass(slots=True)
class EmbeddingResult:
    vector: list[float] | None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.vector is not None


class HashedEmbeddingProvider:
    """Lightweight hashed bag-of-words embedding with deterministic output."""

    def __init__(self, dim: int = 1536, model_name: str = "hashed-bow") -> None:
        self.model_name = model_name
        self.dim = dim

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for text in texts:
            vector = [0.0] * self.dim
            for token in _tokenize(text):
                vector[_hash_token(token, self.dim)] += 1.0
            _normalize(vector)
            vectors.append(vector)
        return vectors


class EmbeddingGateway:
    """Batch, retry and isolate failures around an :class:`EmbeddingProvider`."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        dim: int,
        batch_size: int = 64,
        retry: RetryConfig | None = None,
        runner: TimeoutRunner | None = None,
    ) -> None:
        self.provider = provider
        self.dim = dim
        self.batch_size = max(1, batch_size)
        self.retry = retry or RetryConfig()
        self.runner = runner

    @classmethod
    def from_settings(cls, settings: Settings, provider: EmbeddingProvider | None = None) -> "EmbeddingGateway":
        retry = RetryConfig(
            max_attempts=settings.embed_max_attempts,
            backoff_base=settings.embed_backoff_base,
            backoff_max=settings.embed_backoff_max,
            timeout=settings.embed_timeout_s,
        )
        return cls(
            provider=provider or HashedEmbeddingProvider(dim=settings.embedding_dim, model_name=settings.embedding_model),
            dim=settings.embedding_dim,
            batch_size=settings.embed_batch_size,
            retry=retry,
            runner=TimeoutRunner(name="embed"),
        )

    def embed(self, texts: Sequence[str]) -> list[EmbeddingResult]:
        """Embed ``texts`` preserving order.

        Raises:
            ProviderUnavailable: a batch exhausted its transient retry budget.
                Nothing is returned for the other batches either.
        """
        results: list[EmbeddingResult] = []
        for offset in range(0, len(texts), self.batch_size):
            results.extend(self._embed_isolating(list(texts[offset : offset + self.batch_size])))
        return results

    def embed_one(self, text: str) -> list[float]:
        """Embed a single text, raising on per-item failure."""
        result = self.embed([text])[0]
        if result.vector is None:
            raise PermanentProviderError(result.error or "embedding rejected", index=0)
        return result.vector

    def _embed_isolating(self, batch: list[str]) -> list[EmbeddingResult]:
        if not batch:
            return []
        try:
            vectors = call_with_retry(self._call_provider, batch, config=self.retry, runner=self.runner, operation="embed")
        except PermanentProviderError as exc:
            return self._isolate(batch, exc)
        return [self._check_dimension(vector) for vector in vectors]

    def _isolate(self, batch: list[str], exc: PermanentProviderError) -> list[EmbeddingResult]:
        if len(batch) == 1:
            logger.warning("Embedding rejected: %s", exc.message)
            return [EmbeddingResult(vector=None, error=exc.message)]
        if exc.index is not None and 0 <= exc.index < len(batch):
            logger.warning("Embedding rejected item %d of %d: %s", exc.index, len(batch), exc.message)
            head = self._embed_isolating(batch[: exc.index])
            tail = self._embed_isolating(batch[exc.index + 1 :])
            return [*head, EmbeddingResult(vector=None, error=exc.message), *tail]
        middle = len(batch) // 2
        return [*self._embed_isolating(batch[:middle]), *self._embed_isolating(batch[middle:])]

    def _call_provider(self, batch: list[str]) -> list[list[float]]:
        vectors = self.provider.embed(batch)
        if len(vectors) != len(batch):
            raise TransientProviderError(
                "provider returned a mismatched batch",
                {"expected": len(batch), "received": len(vectors)},
            )
        return [list(vector) for vector in vectors]

    def _check_dimension(self, vector: list[float]) -> EmbeddingResult:
        if len(vector) != self.dim:
            error = DimensionMismatch(self.dim, len(vector))
            logger.warning("Dropping embedding: %s", error.message)
            return EmbeddingResult(vector=None, error=error.message)
        return EmbeddingResult(vector=vector)


def vector_to_blob(vector: Sequence[float]) -> bytes:
    return array("f", vector).tobytes()


def blob_to_vector(blob: bytes) -> list[float]:
    floats = array("f")
    floats.frombytes(blob)
    return list(floats)


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    value = int.from_bytes(digest, "big")
    return value % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = [
    "EmbeddingProvider",
    "EmbeddingResult",
    "EmbeddingGateway",
    "HashedEmbeddingProvider",
    "vector_to_blob",
    "blob_to_vector",
]
