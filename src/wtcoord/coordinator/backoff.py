"""Exponential backoff with jitter, shaped for tenacity."""

from __future__ import annotations

import random
from collections.abc import Callable

from tenacity import RetryCallState
from tenacity.wait import wait_base


def backoff_delay(attempt: int, base_delay: float, rng: Callable[[], float] = random.random) -> float:
    """Delay before retry ``attempt`` (0-based).

    ``base * 2**attempt`` plus uniform jitter below that same amount, so the
    result lies in ``[base*2**n, base*2**(n+1))``. Workers that fail together
    spread out instead of retrying in lockstep.
    """
    delay = base_delay * (2 ** attempt)
    return delay + rng() * delay


class BackoffWait(wait_base):
    """tenacity wait strategy around :func:`backoff_delay`."""

    def __init__(self, base_delay: float, rng: Callable[[], float] = random.random) -> None:
        self.base_delay = base_delay
        self.rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        # attempt_number is 1 after the first failure, so the first wait is base*2 plus jitter.
        return backoff_delay(retry_state.attempt_number, self.base_delay, self.rng)
