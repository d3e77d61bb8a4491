"""
Bounded exponential-backoff retry around store operations.

RetryableOperation is the single place the engine talks to an unreliable
store. Only transient errors are retried; validation, conflict and exhaustion
errors propagate on the first attempt so a stale state is never blindly
re-applied. Each failed attempt emits exactly one telemetry event.

The backoff wait is bound to an explicit CancellationToken: once the owning
workflow is abandoned the pending wait ends with OperationCancelledError and
no further attempt (and therefore no late write) runs.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, TypeVar

from pydantic import BaseModel, Field

from pools.logic.exceptions import OperationCancelledError, OperationFailedError, TransientStoreError
from shared.telemetry import LogTelemetrySink, emit_safely

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from shared.telemetry import TelemetrySink

T = TypeVar("T")

RETRYABLE_ERRORS: tuple[type[Exception], ...] = (TransientStoreError, ConnectionError)


class RetryPolicy(BaseModel, frozen=True):
    """Attempt budget and backoff base for store operations."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay_seconds: float = Field(default=1.0, ge=0)

    def delay_for(self, attempt: int) -> float:
        """Backoff after the given failed attempt (1-based): base, 2x base, 4x base, ..."""
        return self.base_delay_seconds * 2 ** (attempt - 1)


class CancellationToken:
    """Cooperative cancellation flag shared by one workflow and its retries."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``. Return True if cancelled before the time elapsed."""
        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True


class RetryableOperation:
    def __init__(self, policy: RetryPolicy | None = None, telemetry: TelemetrySink | None = None) -> None:
        self._policy = policy or RetryPolicy()
        self._telemetry: TelemetrySink = telemetry or LogTelemetrySink(level="warning")

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def run(
        self,
        label: str,
        action: Callable[[], Awaitable[T]],
        *,
        max_attempts: int | None = None,
        base_delay_seconds: float | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> T:
        """Run ``action`` until it succeeds, fails non-transiently, or the budget is spent.

        ``action`` is re-invoked from scratch on every attempt, so any state it
        validates is validated again after each backoff.
        """
        policy = self._policy
        if max_attempts is not None or base_delay_seconds is not None:
            policy = RetryPolicy(
                max_attempts=max_attempts if max_attempts is not None else policy.max_attempts,
                base_delay_seconds=base_delay_seconds if base_delay_seconds is not None else policy.base_delay_seconds,
            )

        attempt = 0
        while True:
            attempt += 1
            if cancel_token is not None and cancel_token.cancelled:
                raise OperationCancelledError(label=label)
            try:
                return await action()
            except RETRYABLE_ERRORS as exc:
                final = attempt >= policy.max_attempts
                delay = None if final else policy.delay_for(attempt)
                emit_safely(
                    self._telemetry,
                    "operation_retry",
                    operation=label,
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                    error_message=str(exc),
                    retry_in_seconds=delay,
                )
                if delay is None:
                    raise OperationFailedError(label=label, attempts=attempt) from exc
            await self._backoff(label, delay, cancel_token)

    @staticmethod
    async def _backoff(label: str, seconds: float, cancel_token: CancellationToken | None) -> None:
        if cancel_token is None:
            await asyncio.sleep(seconds)
            return
        if await cancel_token.wait(seconds):
            raise OperationCancelledError(label=label)
