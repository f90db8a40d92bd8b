"""Batch execution of Graph operations.

The runner drives every operation through the shared RateLimiter and a
RetryPolicy and collects exactly one OperationOutcome per operation:

    Pending -> Attempting -> Succeeded
                          -> TransientFailure -> Attempting (attempts < max)
                          -> FailedRetryable (attempts == max)
                          -> TerminalFailure
    Pending -> TerminalFailure (cancelled before start)

A failing operation never aborts the batch. Outcomes come back in input
order whatever the concurrency. The one exception is AuthError: without a
token no further call can succeed, so the runner stops starting operations,
waits for in-flight ones and re-raises it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable, Sequence

from .config import DEFAULT_BATCH_CONCURRENCY, MAX_BATCH_CONCURRENCY, Config
from .operations import (
    ErrorDetail,
    Executor,
    GraphOperation,
    OperationOutcome,
    OperationStatus,
    RemoteResult,
)
from .rate_limiter import RateLimiter
from .retry import RetryPolicy
from .security import AuthError

logger = logging.getLogger(__name__)

OutcomeCallback = Callable[[OperationOutcome], None]


class BatchRunner:
    """Run operations with bounded concurrency, throttling and retry.

    Usage:
        runner = BatchRunner(RetryPolicy(), RateLimiter(10, 1.0), concurrency=4)
        outcomes = await runner.run(operations, executor)

    Cancellation is cooperative: cancel() lets in-flight operations finish
    and finalizes every not-yet-started operation as cancelled.
    """

    def __init__(
        self,
        retry_policy: RetryPolicy,
        rate_limiter: RateLimiter,
        concurrency: int = DEFAULT_BATCH_CONCURRENCY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not (1 <= concurrency <= MAX_BATCH_CONCURRENCY):
            raise ValueError(f"concurrency must be between 1 and {MAX_BATCH_CONCURRENCY}")

        self._retry = retry_policy
        self._limiter = rate_limiter
        self._concurrency = concurrency
        self._clock = clock
        self._cancel_event = asyncio.Event()

    @classmethod
    def from_config(cls, config: Config, rate_limiter: RateLimiter | None = None) -> BatchRunner:
        limiter = rate_limiter or RateLimiter(
            limit=config.rate_limit_calls,
            window_seconds=config.rate_limit_window_seconds,
        )
        return cls(
            retry_policy=RetryPolicy.from_config(config),
            rate_limiter=limiter,
            concurrency=config.batch_concurrency,
        )

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Stop starting new operations."""
        logger.info("Batch cancellation requested")
        self._cancel_event.set()

    async def run(
        self,
        operations: Iterable[GraphOperation],
        executor: Executor,
        on_outcome: OutcomeCallback | None = None,
    ) -> list[OperationOutcome]:
        """Execute all operations and return their outcomes in input order.

        Args:
            operations: Operations to run.
            executor: Coroutine function performing one remote call.
            on_outcome: Optional callback invoked as each outcome finalizes.

        Returns:
            One OperationOutcome per operation, in input order.

        Raises:
            AuthError: If the executor cannot obtain a token. Operations not yet
                started are skipped.
        """
        ops: Sequence[GraphOperation] = list(operations)
        outcomes: list[OperationOutcome | None] = [None] * len(ops)
        if not ops:
            return []

        logger.info(
            "Starting batch",
            extra={"operation_count": len(ops), "concurrency": self._concurrency},
        )

        # Workers share one iterator, so operations start in input order
        pending = iter(enumerate(ops))
        auth_failure: AuthError | None = None

        async def worker() -> None:
            nonlocal auth_failure
            for index, operation in pending:
                if auth_failure is not None:
                    return
                if self._cancel_event.is_set():
                    outcome = self._cancelled_outcome(index, operation)
                else:
                    try:
                        outcome = await self._execute(index, operation, executor)
                    except AuthError as e:
                        auth_failure = auth_failure or e
                        return
                outcomes[index] = outcome
                if on_outcome is not None:
                    on_outcome(outcome)

        workers = min(self._concurrency, len(ops))
        await asyncio.gather(*(worker() for _ in range(workers)))

        if auth_failure is not None:
            logger.error(
                "Batch aborted: authentication failed",
                extra={
                    "operation_count": len(ops),
                    "completed": sum(1 for outcome in outcomes if outcome is not None),
                    "error": str(auth_failure),
                },
            )
            raise auth_failure

        # SAFETY: Every index is written exactly once by the workers above
        results = [outcome for outcome in outcomes if outcome is not None]
        assert len(results) == len(ops), "Batch finished with missing outcomes"

        failed = sum(1 for outcome in results if not outcome.succeeded)
        logger.info(
            "Batch complete",
            extra={
                "operation_count": len(results),
                "succeeded": len(results) - failed,
                "failed": failed,
                "cancelled": self._cancel_event.is_set(),
            },
        )
        return results

    async def _execute(
        self, index: int, operation: GraphOperation, executor: Executor
    ) -> OperationOutcome:
        start = self._clock()
        attempts = 0

        async def attempt() -> RemoteResult:
            nonlocal attempts
            attempts += 1
            return await executor(operation)

        try:
            result = await self._retry.execute(
                attempt,
                before_attempt=self._limiter.acquire,
                description=operation.describe(),
            )
        except (asyncio.CancelledError, AuthError):
            raise
        except Exception as e:
            # Executor bugs must not abort the batch
            logger.exception(
                "Operation raised unexpectedly",
                extra={"operation": operation.describe(), "error_type": type(e).__name__},
            )
            outcome = OperationOutcome(
                operation=operation,
                status=OperationStatus.FAILED_TERMINAL,
                attempts=attempts,
                last_error=ErrorDetail(
                    code="unexpected_error",
                    message=f"{type(e).__name__}: {e}",
                ),
                elapsed_ms=self._elapsed_ms(start),
                index=index,
            )
        else:
            outcome = OperationOutcome(
                operation=operation,
                status=result.status,
                attempts=result.attempts,
                last_error=result.last_error,
                elapsed_ms=self._elapsed_ms(start),
                index=index,
            )

        self._log_outcome(outcome)
        return outcome

    def _cancelled_outcome(self, index: int, operation: GraphOperation) -> OperationOutcome:
        return OperationOutcome(
            operation=operation,
            status=OperationStatus.FAILED_TERMINAL,
            attempts=0,
            last_error=ErrorDetail(code="cancelled", message="Batch cancelled before start"),
            index=index,
        )

    def _elapsed_ms(self, start: float) -> int:
        return int((self._clock() - start) * 1000)

    def _log_outcome(self, outcome: OperationOutcome) -> None:
        extra = {
            "operation": outcome.operation.describe(),
            "idempotency_key": outcome.operation.idempotency_key,
            "status": outcome.status.value,
            "attempts": outcome.attempts,
            "elapsed_ms": outcome.elapsed_ms,
        }
        if outcome.last_error is not None:
            extra["error_code"] = outcome.last_error.code
            extra["error"] = outcome.last_error.message
            logger.warning("Operation failed", extra=extra)
        else:
            logger.info("Operation succeeded", extra=extra)
