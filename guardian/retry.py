"""Retry with a capped Fibonacci backoff."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import TypeVar

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Retry settings shared by the API clients (delays in seconds)."""

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 20.0


class RetryableError(Exception):
    """Marks an error as worth retrying."""

    def __init__(self, error: BaseException) -> None:
        super().__init__(str(error))
        self.error = error


def fibonacci_delays(
    initial_delay: float, max_retries: int, max_delay: float
) -> Iterator[float]:
    """Yield at most ``max_retries`` Fibonacci delays, each capped at ``max_delay``."""
    previous, current = 0.0, initial_delay
    for _ in range(max_retries):
        yield min(current, max_delay)
        previous, current = current, previous + current


def with_retries(
    func: Callable[[], T],
    config: RetryConfig | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``func`` until it succeeds, retrying on ``RetryableError``.

    Other exceptions propagate at once. When retries run out the wrapped
    error of the last ``RetryableError`` is raised.
    """
    cfg = config or RetryConfig()
    delays = fibonacci_delays(cfg.initial_delay, cfg.max_retries, cfg.max_delay)
    while True:
        try:
            return func()
        except RetryableError as exc:
            delay = next(delays, None)
            if delay is None:
                raise exc.error
            sleep(delay)