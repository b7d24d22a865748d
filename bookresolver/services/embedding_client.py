"""Embedding client: rate limiting, retries and dimension checks around a provider.

The resolver and the backfill job never call an :class:`IEmbeddingProvider`
directly.  They go through :class:`EmbeddingClient`, which adds:

1. **Input preparation** -- whitespace is collapsed and text is truncated to
   the model's token budget, estimated at ~4 characters per token.
2. **Request-rate limiting** -- a sliding one-minute window bounded by the
   configured requests-per-minute budget.  When the window is full the
   caller sleeps until the oldest request ages out.
3. **Bounded retries** -- an explicit loop with exponential backoff
   (``base_delay * 2 ** (attempt - 1)``).  A rate-limit signal from the
   provider adds a cooldown of one window slot (``60 / rpm`` seconds) per
   attempt on top of the backoff.
4. **Per-call timeout** -- a timed-out call is a transient failure and is
   retried like any other.
5. **Dimension validation** -- every returned vector must have the
   configured length.  A mismatch raises :class:`DimensionMismatchError`
   immediately and is never retried.

When retries are exhausted (or the provider fails non-transiently) the
client raises :class:`EmbeddingUnavailableError`, which the resolver turns
into the keyword fallback for that suggestion.
"""

from __future__ import annotations

import asyncio
import math
import re
import time
from collections import deque
from typing import Awaitable, Callable

from bookresolver.interfaces.embedding_provider import IEmbeddingProvider
from bookresolver.utils.concurrency import call_with_timeout
from bookresolver.utils.errors import (
    BookResolverError,
    DimensionMismatchError,
    EmbeddingUnavailableError,
    RateLimitError,
    TransientUpstreamError,
    ValidationError,
)
from bookresolver.utils.logging import get_logger

CHARS_PER_TOKEN = 4
DEFAULT_MAX_INPUT_TOKENS = 8000
# USD per 1K tokens for text-embedding-3-small.
DEFAULT_PRICE_PER_1K_TOKENS = 0.00002

_WHITESPACE_RE = re.compile(r"\s+")


def estimate_tokens(text: str) -> int:
    """Rough token count: ~4 characters per token."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_cost(texts: list[str], price_per_1k_tokens: float = DEFAULT_PRICE_PER_1K_TOKENS) -> float:
    """Estimated USD cost of embedding *texts*."""
    return sum(estimate_tokens(t) for t in texts) * price_per_1k_tokens / 1000


def prepare_embedding_text(title: str, is_variant_spelling: bool = False) -> str:
    """Text embedded for a catalog title.

    Variant spellings are marked so their vectors sit near, but not on top
    of, the correctly spelled title.
    """
    text = f"Title: {title.strip()}"
    if is_variant_spelling:
        text += " (misspelled variant)"
    return text


class SlidingWindowRateLimiter:
    """Allow at most *max_requests* acquisitions in any *window*-second span."""

    def __init__(
        self,
        max_requests: int,
        window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._max_requests = max(1, max_requests)
        self._window = window
        self._clock = clock
        self._sleep = sleep
        self._stamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    @property
    def slot_interval(self) -> float:
        """Average spacing between requests at the full budget."""
        return self._window / self._max_requests

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                now = self._clock()
                while self._stamps and now - self._stamps[0] >= self._window:
                    self._stamps.popleft()
                if len(self._stamps) < self._max_requests:
                    self._stamps.append(now)
                    return
                wait = self._window - (now - self._stamps[0])
                get_logger(__name__).info("embedding_rate_window_full", wait_seconds=round(wait, 3))
                await self._sleep(wait)


class EmbeddingClient:
    """Turns text into validated, fixed-length vectors.

    Parameters
    ----------
    provider:
        Raw embedding transport.
    dimension:
        Expected vector length; defaults to ``provider.get_dimension()``.
    max_retries:
        Attempt ceiling per call (first attempt included).
    base_delay:
        Backoff base in seconds.
    requests_per_minute:
        Sliding-window request budget.
    timeout:
        Per-call timeout in seconds; ``None`` disables it.
    max_input_tokens:
        Inputs longer than this (estimated) are truncated.
    sleep, clock:
        Injected by tests to avoid real waiting.
    """

    def __init__(
        self,
        provider: IEmbeddingProvider,
        dimension: int | None = None,
        max_retries: int = 3,
        base_delay: float = 1.0,
        requests_per_minute: int = 3500,
        timeout: float | None = 15.0,
        max_input_tokens: int = DEFAULT_MAX_INPUT_TOKENS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider = provider
        self._dimension = dimension or provider.get_dimension()
        self._max_retries = max(1, max_retries)
        self._base_delay = base_delay
        self._timeout = timeout
        self._max_chars = max_input_tokens * CHARS_PER_TOKEN
        self._sleep = sleep
        self._limiter = SlidingWindowRateLimiter(requests_per_minute, clock=clock, sleep=sleep)
        self._logger = get_logger(__name__)

    @property
    def model_name(self) -> str:
        return self._provider.get_model_name()

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def provider_name(self) -> str:
        return self._provider.get_provider_name()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def prepare_text(self, text: str) -> str:
        """Collapse whitespace and truncate to the token budget at a word boundary."""
        cleaned = _WHITESPACE_RE.sub(" ", text).strip()
        if len(cleaned) <= self._max_chars:
            return cleaned
        truncated = cleaned[: self._max_chars].rsplit(" ", 1)[0] or cleaned[: self._max_chars]
        self._logger.debug(
            "embedding_input_truncated",
            original_chars=len(cleaned),
            truncated_chars=len(truncated),
        )
        return truncated

    async def embed(self, text: str) -> list[float]:
        """Embed one text.

        Raises
        ------
        ValidationError
            If *text* is empty after normalization.
        DimensionMismatchError
            If the provider returned a vector of the wrong length.
        EmbeddingUnavailableError
            If every attempt failed.
        """
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts in one provider call; output order matches input order."""
        if not texts:
            return []
        prepared = [self.prepare_text(t) for t in texts]
        if any(not t for t in prepared):
            raise ValidationError(message="Cannot embed empty text", provider_name=self.provider_name)

        last_error: BookResolverError | None = None
        for attempt in range(1, self._max_retries + 1):
            await self._limiter.acquire()
            try:
                vectors = await call_with_timeout(
                    self._provider.embed(prepared),
                    self._timeout,
                    operation="embedding request",
                    provider_name=self.provider_name,
                )
            except RateLimitError as exc:
                last_error = exc
                delay = self._backoff(attempt) + self._limiter.slot_interval * attempt
                self._log_retry(attempt, delay, exc, rate_limited=True)
            except TransientUpstreamError as exc:
                last_error = exc
                delay = self._backoff(attempt)
                self._log_retry(attempt, delay, exc, rate_limited=False)
            except BookResolverError as exc:
                raise EmbeddingUnavailableError(
                    message=f"Embedding request rejected: {exc.message}",
                    provider_name=self.provider_name,
                ) from exc
            else:
                self._validate(vectors, len(prepared))
                return vectors

            if attempt < self._max_retries:
                await self._sleep(delay)

        self._logger.warning(
            "embedding_retries_exhausted",
            attempts=self._max_retries,
            provider=self.provider_name,
            error=str(last_error),
        )
        raise EmbeddingUnavailableError(
            message=f"Embedding failed after {self._max_retries} attempts: {last_error}",
            provider_name=self.provider_name,
        ) from last_error

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _backoff(self, attempt: int) -> float:
        return self._base_delay * (2 ** (attempt - 1))

    def _log_retry(self, attempt: int, delay: float, exc: BookResolverError, rate_limited: bool) -> None:
        self._logger.info(
            "embedding_retry",
            attempt=attempt,
            max_attempts=self._max_retries,
            delay=round(delay, 3),
            rate_limited=rate_limited,
            error=str(exc),
        )

    def _validate(self, vectors: list[list[float]], expected_count: int) -> None:
        if len(vectors) != expected_count:
            raise EmbeddingUnavailableError(
                message=f"Provider returned {len(vectors)} vectors for {expected_count} inputs",
                provider_name=self.provider_name,
            )
        for vector in vectors:
            if len(vector) != self._dimension:
                raise DimensionMismatchError(
                    message=f"Expected {self._dimension}-dimensional vector, got {len(vector)}",
                    provider_name=self.provider_name,
                )
