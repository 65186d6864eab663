# ─────────────────────────────────────────────────────────────────────────────
# Temp Mail Inbox - A Professional Temporary Email Client
# Copyright © 2024‑2025  zebbern  <https://github.com/zebbern>
# ─────────────────────────────────────────────────────────────────────────────
# Request governor: decides when the client may call the rate-limited mail
# API and computes exponential backoff after throttling or repeated failures.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

LOGGER = logging.getLogger(__name__)

##############################################################################
# Configuration and state
##############################################################################

@dataclass(frozen=True)
class GovernorConfig:
    """Timing constants for one governor, in seconds."""

    min_interval: float = 5.0
    initial_delay: float = 10.0
    max_delay: float = 60.0
    max_retry_attempts: int = 3
    jitter: float = 2.0
    failure_threshold: int = 3

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "GovernorConfig":
        """Build a governor config from the CLI's JSON config dictionary."""
        defaults = cls()
        return cls(
            min_interval=float(config.get("min_interval", defaults.min_interval)),
            initial_delay=float(config.get("initial_delay", defaults.initial_delay)),
            max_delay=float(config.get("max_delay", defaults.max_delay)),
            max_retry_attempts=int(config.get("max_retry_attempts", defaults.max_retry_attempts)),
            jitter=float(config.get("jitter", defaults.jitter)),
            failure_threshold=int(config.get("failure_threshold", defaults.failure_threshold)),
        )


@dataclass
class GovernorState:
    """Mutable timing state owned by a single polling session."""

    last_request_at: Optional[float] = None
    retry_count: int = 0
    rate_limited: bool = False
    consecutive_failures: int = 0
    current_backoff: float = 0.0


class FailureAction(Enum):
    RETRYING = "retrying"
    GIVE_UP = "give_up"
    FAILED = "failed"


@dataclass(frozen=True)
class FailureOutcome:
    """What the caller should tell the user after a failed call."""

    action: FailureAction
    delay: Optional[float]
    retry_count: int

##############################################################################
# Governor
##############################################################################

class RequestGovernor:
    """Gate for outbound calls to one rate-limited API.

    The governor never raises: it only answers "proceed" or "wait". Callers
    wrap every remote call like so::

        if governor.try_acquire():
            try:
                result = call()
            except RateLimitError:
                outcome = governor.record_failure(True)
            except ProviderError:
                outcome = governor.record_failure(False)
            else:
                governor.record_success()
    """

    def __init__(
        self,
        config: Optional[GovernorConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = config or GovernorConfig()
        self.state = GovernorState()
        self._clock = clock
        self._rng = rng or random.Random()
        self._lock = threading.Lock()

    def _now(self, now: Optional[float]) -> float:
        return self._clock() if now is None else now

    def backoff_delay(self, retry_count: int) -> float:
        """Exponential delay for the given attempt, capped, plus jitter.

        The first rate-limited attempt waits ``initial_delay``; each further
        attempt doubles it until ``max_delay``. The result never exceeds
        ``max_delay + jitter``.
        """
        cfg = self.config
        exponent = max(retry_count - 1, 0)
        # Past this exponent the cap always wins; avoids float overflow.
        if cfg.initial_delay > 0 and exponent < 64:
            base = min(cfg.initial_delay * (2 ** exponent), cfg.max_delay)
        else:
            base = cfg.max_delay if cfg.initial_delay > 0 else 0.0
        jitter = self._rng.uniform(0, cfg.jitter) if cfg.jitter > 0 else 0.0
        return base + jitter

    def _required_wait(self) -> float:
        if self.state.rate_limited:
            return self.state.current_backoff
        return self.config.min_interval

    def can_proceed(self, now: Optional[float] = None) -> bool:
        """Return whether a call may be issued at ``now``."""
        last = self.state.last_request_at
        if last is None:
            return True
        elapsed = self._now(now) - last
        # Clock skew or a same-instant retry fails closed.
        if elapsed <= 0:
            return False
        return elapsed >= self._required_wait()

    def remaining_wait(self, now: Optional[float] = None) -> float:
        """Seconds left before ``can_proceed`` would return True."""
        last = self.state.last_request_at
        if last is None:
            return 0.0
        elapsed = self._now(now) - last
        if elapsed <= 0:
            return max(self._required_wait(), 0.0)
        return max(self._required_wait() - elapsed, 0.0)

    def record_attempt_start(self, now: Optional[float] = None) -> None:
        """Mark the start of a permitted call."""
        now = self._now(now)
        state = self.state
        if state.rate_limited and state.last_request_at is not None:
            if now - state.last_request_at >= state.current_backoff:
                # Backoff window served; retry_count keeps escalating until a success.
                state.rate_limited = False
        state.last_request_at = now

    def try_acquire(self, now: Optional[float] = None) -> bool:
        """Check and claim the current window in one step."""
        with self._lock:
            now = self._now(now)
            if not self.can_proceed(now):
                LOGGER.debug("Request throttled, %.1fs remaining", self.remaining_wait(now))
                return False
            self.record_attempt_start(now)
            return True

    def record_success(self) -> None:
        with self._lock:
            self.state.retry_count = 0
            self.state.consecutive_failures = 0
            self.state.rate_limited = False
            self.state.current_backoff = 0.0

    def record_failure(self, is_rate_limit: bool) -> FailureOutcome:
        """Update counters after a failed call and advise the caller.

        A 429 always bumps ``retry_count``. Once more than
        ``failure_threshold`` calls have failed in a row, every failure gets
        one further bump, so a rate limit hit during a failure streak
        escalates twice. The counter never exceeds ``max_retry_attempts + 1``.
        """
        cfg = self.config
        cap = cfg.max_retry_attempts + 1
        with self._lock:
            state = self.state
            state.consecutive_failures += 1
            backing_off = False

            if is_rate_limit:
                state.rate_limited = True
                state.retry_count = min(state.retry_count + 1, cap)
                backing_off = True
            if state.consecutive_failures > cfg.failure_threshold:
                LOGGER.debug(
                    "%d consecutive failures, slowing down", state.consecutive_failures
                )
                state.rate_limited = True
                state.retry_count = min(state.retry_count + 1, cap)
                backing_off = True

            if backing_off:
                state.current_backoff = self.backoff_delay(state.retry_count)

            if not is_rate_limit:
                return FailureOutcome(
                    FailureAction.FAILED,
                    state.current_backoff if backing_off else None,
                    state.retry_count,
                )
            if state.retry_count <= cfg.max_retry_attempts:
                LOGGER.debug(
                    "Rate limited, backing off %.1fs (attempt %d)",
                    state.current_backoff,
                    state.retry_count,
                )
                return FailureOutcome(FailureAction.RETRYING, state.current_backoff, state.retry_count)
            return FailureOutcome(FailureAction.GIVE_UP, state.current_backoff, state.retry_count)

    def reset(self) -> None:
        """Forget all timing state, e.g. after switching accounts."""
        with self._lock:
            self.state = GovernorState()
