import random
from dataclasses import dataclass

from topology.config import (
    BACKOFF_BASE_SECONDS,
    BACKOFF_MAX_SECONDS,
    MUTATE_MAX_ATTEMPTS,
    STORE_RETRIES,
)


@dataclass
class RetryPolicy:
    """
    Bounded retry settings shared by the CAS loop and backend calls.

    max_attempts: CAS rounds before giving up with ConcurrencyExhausted
    store_retries: attempts per backend call before StoreUnavailable
    base_delay / max_delay: exponential backoff range in seconds
    jitter: fraction of the delay randomized (0 disables jitter)
    """
    max_attempts: int = MUTATE_MAX_ATTEMPTS
    store_retries: int = STORE_RETRIES
    base_delay: float = BACKOFF_BASE_SECONDS
    max_delay: float = BACKOFF_MAX_SECONDS
    jitter: float = 0.5

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.store_retries < 1:
            raise ValueError("store_retries must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("backoff delays must be non-negative")
        if not 0 <= self.jitter <= 1:
            raise ValueError("jitter must be in range 0..1")

    def backoff(self, attempt: int, rng: random.Random = None) -> float:
        """Delay before retry number `attempt` (1-based), capped at max_delay."""
        delay = min(self.max_delay, self.base_delay * (2 ** max(0, attempt - 1)))
        if self.jitter and delay > 0:
            spread = delay * self.jitter
            delay = delay - spread + (rng or random).uniform(0, 2 * spread)
        return min(self.max_delay, max(0.0, delay))


# Policy without delays, used by tests and in-process tooling
NO_BACKOFF = RetryPolicy(base_delay=0.0, max_delay=0.0, jitter=0.0)
