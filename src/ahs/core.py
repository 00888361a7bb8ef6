from __future__ import annotations

import os
import random
import time
from dataclasses import dataclass
from typing import Callable, Tuple, Type, TypeVar

import structlog

log = structlog.get_logger(__name__)

T = TypeVar("T")


def env_str(key: str, default: str) -> str:
    v = os.getenv(key, "").strip()
    return v or default


def env_int(key: str, default: int) -> int:
    v = os.getenv(key, "").strip()
    if not v:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def env_bool(key: str, default: bool = False) -> bool:
    v = os.getenv(key, "").strip().lower()
    if not v:
        return default
    return v in ("1", "true", "t", "yes", "y", "on")


# --------------------------
# Backoff primitive
# --------------------------
@dataclass(frozen=True)
class BackoffConfig:
    """
    min_seconds:
      - first delay handed out after a failure (100ms)
    max_seconds:
      - ceiling; a retry loop whose next delay reaches it gives up
    factor:
      - growth per attempt
    jitter:
      - off by default so the schedule is reproducible across the fleet
    """
    min_seconds: float = 0.1
    max_seconds: float = 120.0
    factor: float = 2.0
    jitter: bool = False

    def validate(self) -> None:
        if self.min_seconds <= 0:
            raise ValueError("min_seconds must be > 0")
        if self.max_seconds < self.min_seconds:
            raise ValueError("max_seconds must be >= min_seconds")
        if self.factor <= 1:
            raise ValueError("factor must be > 1")


class Backoff:
    """
    Exponential delay cursor: delay_k = min(max, min * factor ** k).

    One instance is the BackoffState of a single call site. The cursor only
    moves forward through next() and goes back to the minimum on reset().
    """

    def __init__(self, cfg: BackoffConfig | None = None, rng: random.Random | None = None):
        cfg = cfg or BackoffConfig()
        cfg.validate()
        self.cfg = cfg
        self.attempt = 0
        self._rng = rng or random.Random()

    def next_micros(self) -> int:
        """
        Next delay in integer microseconds (avoids float equality issues
        when comparing against the cap).
        """
        min_us = int(round(self.cfg.min_seconds * 1_000_000))
        cap_us = int(round(self.cfg.max_seconds * 1_000_000))
        # Past the cap the float can overflow; the answer is the cap anyway.
        try:
            raw_us = int(round(self.cfg.min_seconds * (self.cfg.factor ** self.attempt) * 1_000_000))
        except OverflowError:
            raw_us = cap_us
        self.attempt += 1

        wait_us = min(cap_us, raw_us)
        if self.cfg.jitter and wait_us < cap_us:
            wait_us = self._rng.randint(min_us, wait_us)
        return wait_us

    def next(self) -> float:
        """Next delay in seconds."""
        return self.next_micros() / 1_000_000.0

    def saturated(self, delay_seconds: float) -> bool:
        return int(round(delay_seconds * 1_000_000)) >= int(round(self.cfg.max_seconds * 1_000_000))

    def reset(self) -> None:
        self.attempt = 0


# --------------------------
# Retry loop
# --------------------------
def retry_call(
    fn: Callable[[], T],
    *,
    backoff: Backoff,
    retry_on: Tuple[Type[BaseException], ...],
    describe: str = "remote call",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run fn until it succeeds, sleeping between attempts.

    Errors outside retry_on propagate at once. A retryable error is re-raised
    unchanged once the next delay reaches the backoff ceiling. The backoff is
    reset after a success so the next call site starts from the minimum.
    """
    while True:
        try:
            result = fn()
        except retry_on as e:
            delay = backoff.next()
            if backoff.saturated(delay):
                log.debug("retries exhausted", call=describe, attempts=backoff.attempt)
                raise
            log.info(f"{e}, retrying in {delay:g}s", call=describe, attempt=backoff.attempt)
            sleep(delay)
        else:
            backoff.reset()
            return result
