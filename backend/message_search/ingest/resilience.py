"""Retry and timeout helpers for provider calls.

Embedding and fetch calls go through :func:`call_with_retry`: each attempt is
bounded by a timeout, transient failures back off exponentially with jitter,
and an exhausted budget surfaces as :class:`ProviderUnavailable`.
"""

from __future__ import annotations

import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from message_search.core.errors import ProviderUnavailable, TransientProviderError
from message_search.core.metrics import PROVIDER_RETRIES

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class RetryConfig:
    """Configuration for retry with exponential backoff."""

    max_attempts: int = 5
    backoff_base: float = 0.5  # seconds
    backoff_max: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: bool = True
    timeout: float | None = None
    retryable_exceptions: tuple[type[BaseException], ...] = (
        TransientProviderError,
        TimeoutError,
        FutureTimeout,
        ConnectionError,
    )

    def delay_for(self, attempt: int) -> float:
        delay = min(self.backoff_base * (self.backoff_multiplier**attempt), self.backoff_max)
        if self.jitter:
            delay = delay * (0.5 + random.random())
        return delay


class TimeoutRunner:
    """Run blocking callables on worker threads with a per-call deadline.

    A timed-out call keeps running in the background; its result is dropped.
    """

    def __init__(self, max_workers: int = 8, name: str = "provider") -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)

    def run(self, fn: Callable[..., T], *args: Any, timeout: float | None = None, **kwargs: Any) -> T:
        if timeout is None:
            return fn(*args, **kwargs)
        future = self._executor.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            future.cancel()
            raise TimeoutError(f"call exceeded {timeout:.1f}s") from None

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


def call_with_retry(
    fn: Callable[..., T],
    *args: Any,
    config: RetryConfig | None = None,
    runner: TimeoutRunner | None = None,
    operation: str = "provider",
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> T:
    """Execute ``fn`` with retry, backoff and an optional per-attempt timeout.

    Raises:
        ProviderUnavailable: transient failures exhausted the attempt budget.
        Exception: any non-retryable error is re-raised unchanged.
    """
    cfg = config or RetryConfig()
    last_exc: BaseException | None = None
    for attempt in range(cfg.max_attempts):
        try:
            if runner is not None:
                return runner.run(fn, *args, timeout=cfg.timeout, **kwargs)
            return fn(*args, **kwargs)
        except cfg.retryable_exceptions as exc:
            last_exc = exc
            if attempt + 1 >= cfg.max_attempts:
                break
            delay = cfg.delay_for(attempt)
            PROVIDER_RETRIES.labels(operation=operation).inc()
            logger.warning(
                "RETRYING %s: attempt=%d/%d delay=%.2fs: %s",
                operation,
                attempt + 1,
                cfg.max_attempts,
                delay,
                exc,
            )
            sleep(delay)

    logger.error("RETRY_EXHAUSTED %s after %d attempts: %s", operation, cfg.max_attempts, last_exc)
    raise ProviderUnavailable(
        f"{operation} unavailable after {cfg.max_attempts} attempts: {last_exc}",
        {"operation": operation, "attempts": cfg.max_attempts},
    ) from last_exc


__all__ = ["RetryConfig", "TimeoutRunner", "call_with_retry"]
