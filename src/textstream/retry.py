"""Retry controller with exponential backoff and additive jitter."""

from __future__ import annotations

import inspect
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from textstream.cancellation import CancelToken
from textstream.errors import TransportError

_logger = logging.getLogger(__name__)

T = TypeVar("T")

# Called as on_retry(attempt_number, delay_ms) before each backoff sleep.
RetryObserver = Callable[[int, float], Any]
AttemptFn = Callable[[int], Awaitable[T]]


def exponential_jitter_backoff(
    attempt: int,
    base: float = 500,
    maximum: float = 10_000,
    rng: Callable[[], float] = random.random,
) -> float:
    """Delay in ms for 0-indexed *attempt*: ``min(base * 2**n + U(0, base), maximum)``."""
    exponential = base * 2 ** attempt
    jitter = rng() * base
    return min(exponential + jitter, maximum)


@dataclass
class RetryPolicy:
    """Backoff parameters.  ``max_attempts`` counts every attempt, the first included."""

    base_delay_ms: float = 500
    max_delay_ms: float = 10_000
    max_attempts: int = 4

    def __post_init__(self) -> None:
        if self.base_delay_ms < 0:
            raise ValueError("base_delay_ms must be >= 0")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def delay_for(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        return exponential_jitter_backoff(
            attempt, self.base_delay_ms, self.max_delay_ms, rng,
        )


def is_retryable(error: BaseException) -> bool:
    """Only 5xx statuses and a missing response body are worth retrying."""
    return isinstance(error, TransportError) and error.retryable


class RetryController:
    """Run an attempt function, retrying retryable failures with backoff.

    Parameters
    ----------
    policy:
        Default backoff policy.
    token:
        Cancel token observed during backoff sleeps.
    on_retry:
        Optional ``(attempt_number, delay_ms)`` observer, sync or async,
        invoked before each sleep.  ``attempt_number`` is 1 for the first
        retry.
    rng:
        Jitter source returning floats in ``[0, 1)``.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        token: CancelToken | None = None,
        on_retry: RetryObserver | None = None,
        rng: Callable[[], float] | None = None,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._token = token or CancelToken()
        self._on_retry = on_retry
        self._rng = rng or random.random
        self.attempt = 0

    async def run(self, attempt_fn: AttemptFn[T], policy: RetryPolicy | None = None) -> T:
        """Call ``attempt_fn(attempt)`` until it succeeds or may not be retried."""
        policy = policy or self.policy
        while True:
            self._token.raise_if_cancelled()
            try:
                result = await attempt_fn(self.attempt)
            except TransportError as e:
                if not e.retryable or self.attempt + 1 >= policy.max_attempts:
                    if e.retryable:
                        _logger.warning(
                            "Giving up after %d attempts: %s", self.attempt + 1, e.message,
                        )
                    raise
                delay = policy.delay_for(self.attempt, self._rng)
                self.attempt += 1
                _logger.warning(
                    "Stream attempt failed (%s), retry %d/%d in %.0f ms",
                    e.message, self.attempt, policy.max_attempts - 1, delay,
                )
                await self._notify(self.attempt, delay)
                await self._token.sleep(delay / 1000)
                continue
            return result

    def reset(self) -> None:
        """Forget past retries.  Called once the whole exchange has completed."""
        self.attempt = 0

    async def _notify(self, attempt: int, delay: float) -> None:
        if self._on_retry is None:
            return
        result = self._on_retry(attempt, delay)
        if inspect.isawaitable(result):
            await result
