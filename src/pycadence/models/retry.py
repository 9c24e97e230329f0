"""
Retry policy configuration and persisted retry state.

Design Pattern: Strategy Pattern
RetryPolicy encapsulates retry behavior, allowing different retry strategies
(per-task exponential backoff, per-workflow fixed interval) without modifying
the RetryController.

Design Rationale:
- Safe default for workflows: no automatic retries (max_attempts=1)
- Tasks default to STANDARD-like settings: 3 attempts, 1s initial delay
- Advanced control: custom RetryPolicy for full control
"""

from __future__ import annotations

import random
from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, cast

from pycadence.models.timestamps import format_timestamp, parse_timestamp

JITTER_RATIO = 0.2
"""Upper bound of the additive jitter, as a fraction of the base delay."""


@dataclass(frozen=True)
class RetryPolicy:
    """
    Configuration for retry behavior.

    Controls how many times an operation is attempted and the backoff
    strategy between attempts. Delays are expressed in seconds.

    Examples:
        # Simple: just specify max attempts (uses standard delays)
        policy = RetryPolicy.with_max_attempts(3)

        # Named policy: predefined sensible defaults
        policy = RetryPolicy.STANDARD

        # Custom policy: full control
        policy = RetryPolicy(
            max_attempts=5,
            initial_delay=1.0,
            max_delay=30.0,
            backoff_multiplier=2.0,
            jitter=False,
        )
    """

    max_attempts: int = 3
    """Maximum number of attempts (including the first try).

    For example, max_attempts = 3 means:
    - Attempt 1: immediate (first try)
    - Attempt 2: after delay(1)
    - Attempt 3: after delay(2)
    """

    initial_delay: float = 1.0
    """Delay before the first retry in seconds."""

    max_delay: float = 300.0
    """Maximum delay between retries in seconds (caps exponential backoff)."""

    backoff_multiplier: float = 2.0
    """Multiplier for exponential backoff.

    Each retry delay is calculated as:
    min(initial_delay * backoff_multiplier^(attempt-1), max_delay)
    """

    jitter: bool = True
    """Add a uniform random term in [0, 0.2 * delay] to each delay."""

    min_delay: float = 1.0
    """Floor applied to every computed delay, after jitter."""

    if TYPE_CHECKING:
        NONE: RetryPolicy
        STANDARD: RetryPolicy
        AGGRESSIVE: RetryPolicy
    else:
        NONE = cast("RetryPolicy", None)
        STANDARD = cast("RetryPolicy", None)
        AGGRESSIVE = cast("RetryPolicy", None)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.initial_delay < 0 or self.max_delay < 0 or self.min_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.backoff_multiplier < 1:
            raise ValueError(
                f"backoff_multiplier must be >= 1, got {self.backoff_multiplier}"
            )

    @classmethod
    def with_max_attempts(cls, max_attempts: int) -> RetryPolicy:
        """
        Create a policy with custom max_attempts (uses standard delays).

        Args:
            max_attempts: Maximum number of attempts

        Returns:
            RetryPolicy with standard delays
        """
        return cls(max_attempts=max_attempts)

    @classmethod
    def fixed_interval(cls, max_attempts: int, interval: float) -> RetryPolicy:
        """
        Create a policy that waits the same interval between every attempt.

        Used for whole-workflow retries, which deliberately do not back off
        exponentially.
        """
        return cls(
            max_attempts=max_attempts,
            initial_delay=interval,
            max_delay=interval,
            backoff_multiplier=1.0,
            jitter=False,
            min_delay=min(interval, 1.0),
        )

    def base_delay(self, attempt: int) -> float:
        """
        Delay after failed attempt ``attempt`` (1-indexed), before jitter.

        attempt=1 (first retry): multiplier^0 = 1 -> initial_delay
        attempt=2 (second retry): multiplier^1 -> initial_delay * multiplier

        Non-decreasing in ``attempt`` and never above ``max_delay``.
        """
        exponent = max(attempt - 1, 0)
        return min(self.max_delay, self.initial_delay * self.backoff_multiplier**exponent)

    def delay_for_attempt(self, attempt: int, rng: random.Random | None = None) -> float:
        """
        Calculate the sleep before the attempt that follows ``attempt``.

        Args:
            attempt: The attempt that just failed (1-indexed)
            rng: Random source for jitter (module-level random when None)

        Returns:
            Delay in seconds, floored at ``min_delay``.

        Example:
            policy = RetryPolicy(initial_delay=1, jitter=False)
            policy.delay_for_attempt(1)  # 1.0
            policy.delay_for_attempt(2)  # 2.0
        """
        delay = self.base_delay(attempt)
        if self.jitter:
            source = rng if rng is not None else random
            delay += source.uniform(0, JITTER_RATIO * delay)
        return max(delay, self.min_delay)

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_attempts": self.max_attempts,
            "initial_delay": self.initial_delay,
            "max_delay": self.max_delay,
            "backoff_multiplier": self.backoff_multiplier,
            "jitter": self.jitter,
            "min_delay": self.min_delay,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], default: RetryPolicy | None = None) -> RetryPolicy:
        """
        Build a policy from a definition-file ``retry`` block.

        Accepts ``delay`` as an alias of ``initial_delay`` and ``multiplier``
        as an alias of ``backoff_multiplier``. Missing keys come from
        ``default`` (or the dataclass defaults).
        """
        base = default if default is not None else cls()
        changes: dict[str, Any] = {}
        aliases = {"delay": "initial_delay", "multiplier": "backoff_multiplier"}
        for key, value in data.items():
            name = aliases.get(key, key)
            if name not in base.to_dict():
                raise ValueError(f"unknown retry option: {key}")
            changes[name] = value
        return replace(base, **changes)


RetryPolicy.NONE = RetryPolicy(
    max_attempts=1, initial_delay=0, max_delay=0, backoff_multiplier=1.0, jitter=False
)

RetryPolicy.STANDARD = RetryPolicy(
    max_attempts=3,
    initial_delay=1.0,
    max_delay=300.0,
    backoff_multiplier=2.0,
)

RetryPolicy.AGGRESSIVE = RetryPolicy(
    max_attempts=10,
    initial_delay=1.0,
    max_delay=60.0,
    backoff_multiplier=1.5,
)


@dataclass
class RetryState:
    """
    Persisted retry bookkeeping for one entity (task or workflow).

    ``attempts`` survives process restarts: a new run continues counting
    from the stored value instead of starting over at 1. It is reset only by
    a recorded success or an explicit reset.
    """

    attempts: int = 0
    last_attempt: datetime | None = None
    last_error: str | None = None
    permanent_failure: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempts": self.attempts,
            "last_attempt": format_timestamp(self.last_attempt),
            "last_error": self.last_error,
            "permanent_failure": self.permanent_failure,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RetryState:
        return cls(
            attempts=int(data.get("attempts") or 0),
            last_attempt=parse_timestamp(data.get("last_attempt")),
            last_error=data.get("last_error") or None,
            permanent_failure=bool(data.get("permanent_failure", False)),
        )
