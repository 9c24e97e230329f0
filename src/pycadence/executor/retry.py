"""
Retry/backoff controller.

Executes one operation (a task command, or a whole-workflow attempt) under a
bounded retry policy with exponential backoff and optional jitter.

**Key design choice**: the attempt counter lives in the StateStore, not in
this object. A call starts counting at ``persisted.attempts + 1``, so a
process restarted halfway through an entity's retries continues where the
previous one stopped, and an entity that exhausted ``max_attempts`` stays
blocked (``permanent_failure``) until it succeeds or is explicitly reset.

**Concurrency**: the backoff sleep suspends only the calling asyncio task;
sibling tasks in the same layer keep running.

**Idempotence**: the wrapped operation may be invoked several times with the
same side effects each time; the controller performs no deduplication.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from pycadence.errors import ConfigError, PermanentFailure, StorageError
from pycadence.models import RetryPolicy, RetryState
from pycadence.models.timestamps import utcnow
from pycadence.storage.base import StateStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
Sleep = Callable[[float], Awaitable[None]]
RetryCallback = Callable[[int, float, BaseException], Awaitable[None] | None]


def describe_error(error: BaseException) -> str:
    """One-line message stored as ``last_error``."""
    message = str(error).strip()
    return message.splitlines()[0] if message else type(error).__name__


class RetryController:
    """
    Bounded retries with persisted attempt counters.

    Dependencies are injected: the state store, the sleep coroutine (tests
    pass a recorder instead of ``asyncio.sleep``) and the random source used
    for jitter.

    Example:
        ```python
        controller = RetryController(store)
        result = await controller.execute(
            "nightly-backup",
            lambda: run_backup(),
            RetryPolicy(max_attempts=3, initial_delay=1, jitter=False),
        )
        ```
    """

    def __init__(
        self,
        store: StateStore,
        sleep: Sleep | None = None,
        rng: random.Random | None = None,
    ):
        self._store = store
        self._sleep = sleep if sleep is not None else asyncio.sleep
        self._rng = rng if rng is not None else random.Random()

    async def execute(
        self,
        entity_id: str,
        operation: Operation[T],
        policy: RetryPolicy,
        on_retry: RetryCallback | None = None,
    ) -> T:
        """
        Run ``operation`` until it succeeds or the policy is exhausted.

        Failure means ``operation`` raised. ConfigError (including graph
        errors) and StorageError are never retried: they propagate untouched
        and leave the retry state unchanged.

        Args:
            entity_id: Task or workflow id owning the retry state
            operation: Async callable; its return value is returned on success
            policy: Attempts and backoff settings
            on_retry: Called with (failed attempt, delay, error) before each
                backoff sleep

        Returns:
            The value returned by the successful invocation

        Raises:
            PermanentFailure: The entity was already permanently failed
                (operation not invoked), or this call exhausted
                ``max_attempts``. Chained from the last error.
            ConfigError, StorageError: Raised by the operation
        """
        state = await self._store.get_retry_state(entity_id)

        if state.permanent_failure:
            logger.error(
                f"Entity {entity_id} has permanent failure status, skipping execution"
            )
            raise PermanentFailure(
                entity_id, state.attempts, state.last_error, short_circuited=True
            )

        attempt = state.attempts + 1

        while True:
            logger.info(f"Executing {entity_id} (attempt {attempt}/{policy.max_attempts})")

            try:
                result = await operation()
            except (ConfigError, StorageError):
                raise
            except Exception as e:
                error = e
            else:
                await self._store.put_retry_state(
                    entity_id,
                    RetryState(attempts=0, last_attempt=utcnow()),
                )
                logger.info(f"Entity {entity_id} succeeded on attempt {attempt}")
                return result

            message = describe_error(error)
            exhausted = attempt >= policy.max_attempts
            await self._store.put_retry_state(
                entity_id,
                RetryState(
                    attempts=attempt,
                    last_attempt=utcnow(),
                    last_error=message,
                    permanent_failure=exhausted,
                ),
            )

            if exhausted:
                logger.error(
                    f"Entity {entity_id} failed after {attempt} attempts: {message}"
                )
                raise PermanentFailure(entity_id, attempt, message) from error

            delay = policy.delay_for_attempt(attempt, self._rng)
            logger.warning(
                f"Entity {entity_id} failed on attempt {attempt}/{policy.max_attempts}: "
                f"{message}; retrying in {delay:.1f}s"
            )

            if on_retry is not None:
                callback_result = on_retry(attempt, delay, error)
                if asyncio.iscoroutine(callback_result):
                    await callback_result

            await self._sleep(delay)
            attempt += 1

    async def get_stats(self, entity_id: str) -> RetryState:
        """Current retry statistics of an entity (fresh state if never run)."""
        return await self._store.get_retry_state(entity_id)

    async def reset(self, entity_id: str) -> bool:
        """
        Explicitly reset an entity: clears attempts and permanent failure.

        Returns:
            True if there was a record to clear
        """
        cleared = await self._store.clear_retry_state(entity_id)
        if cleared:
            logger.info(f"Cleared retry state for: {entity_id}")
        return cleared

    async def should_retry(self, entity_id: str, policy: RetryPolicy) -> bool:
        """True if the entity is not permanently failed and has attempts left."""
        state = await self._store.get_retry_state(entity_id)
        return not state.permanent_failure and state.attempts < policy.max_attempts


__all__ = ["RetryController", "describe_error"]
