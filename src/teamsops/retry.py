"""Bounded retry with exponential backoff for single Graph calls.

Transient failures (429, 5xx, no response) are retried with
base * 2^(attempt-1) + uniform(0, base), capped at max_delay. A Retry-After
hint from Graph replaces the computed delay. Terminal failures (any other
4xx) return immediately.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from .config import (
    DEFAULT_RETRY_BACKOFF_BASE_SECONDS,
    DEFAULT_RETRY_BACKOFF_MAX_SECONDS,
    DEFAULT_RETRY_MAX_ATTEMPTS,
    Config,
)
from .operations import ErrorDetail, OperationStatus, RemoteResult

logger = logging.getLogger(__name__)

HTTP_TOO_MANY_REQUESTS = 429


class FailureClass(str, Enum):
    """Classification of a remote call result."""

    SUCCESS = "success"
    TRANSIENT = "transient"
    TERMINAL = "terminal"


def classify(result: RemoteResult) -> FailureClass:
    """Classify a RemoteResult.

    Status 0 means no response (timeout, connection reset) and is transient.
    """
    status = result.http_status
    if result.success and 200 <= status < 300:
        return FailureClass.SUCCESS
    if status == 0 or status == HTTP_TOO_MANY_REQUESTS or 500 <= status < 600:
        return FailureClass.TRANSIENT
    return FailureClass.TERMINAL


@dataclass(frozen=True)
class RetryResult:
    """What happened across all attempts of one call."""

    status: OperationStatus
    attempts: int
    last_result: RemoteResult | None = None
    last_error: ErrorDetail | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == OperationStatus.SUCCEEDED


class RetryPolicy:
    """Execute a remote call with bounded retry.

    Args:
        max_attempts: Total attempts, including the first.
        backoff_base_seconds: Base delay for exponential backoff and jitter range.
        max_delay_seconds: Cap on the computed backoff for one wait.
        sleep: Awaitable sleep, injectable for tests.
        rng: Random source for jitter, injectable for tests.
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_RETRY_MAX_ATTEMPTS,
        backoff_base_seconds: float = DEFAULT_RETRY_BACKOFF_BASE_SECONDS,
        max_delay_seconds: float = DEFAULT_RETRY_BACKOFF_MAX_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if backoff_base_seconds < 0:
            raise ValueError("backoff_base_seconds cannot be negative")

        self._max_attempts = max_attempts
        self._base = backoff_base_seconds
        self._max_delay = max_delay_seconds
        self._sleep = sleep
        self._rng = rng or random.Random()

    @classmethod
    def from_config(cls, config: Config) -> RetryPolicy:
        return cls(
            max_attempts=config.retry_max_attempts,
            backoff_base_seconds=config.retry_backoff_base_seconds,
            max_delay_seconds=config.retry_backoff_max_seconds,
        )

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def backoff_delay(self, attempt: int, retry_after_seconds: float | None = None) -> float:
        """Delay before the attempt following `attempt` (1-based).

        Retry-After from the server wins over the computed backoff.
        """
        if retry_after_seconds is not None and retry_after_seconds >= 0:
            return retry_after_seconds
        backoff = self._base * (2 ** (attempt - 1))
        jitter = self._rng.uniform(0, self._base)
        return min(backoff + jitter, self._max_delay)

    async def execute(
        self,
        action: Callable[[], Awaitable[RemoteResult]],
        before_attempt: Callable[[], Awaitable[None]] | None = None,
        description: str = "",
    ) -> RetryResult:
        """Run `action` until it succeeds, fails terminally, or attempts run out.

        Args:
            action: Performs one remote call and returns its RemoteResult.
            before_attempt: Awaited before every attempt, including retries.
            description: Label for log records.

        Returns:
            RetryResult with the final status and the number of attempts made.
        """
        last_result: RemoteResult | None = None

        for attempt in range(1, self._max_attempts + 1):
            if before_attempt is not None:
                await before_attempt()

            result = await action()
            last_result = result

            match classify(result):
                case FailureClass.SUCCESS:
                    return RetryResult(
                        status=OperationStatus.SUCCEEDED,
                        attempts=attempt,
                        last_result=result,
                    )

                case FailureClass.TERMINAL:
                    return RetryResult(
                        status=OperationStatus.FAILED_TERMINAL,
                        attempts=attempt,
                        last_result=result,
                        last_error=ErrorDetail.from_result(result, retryable=False),
                    )

                case FailureClass.TRANSIENT:
                    if attempt >= self._max_attempts:
                        break

                    wait_time = self.backoff_delay(attempt, result.retry_after_seconds)
                    logger.warning(
                        "Transient Graph failure, retrying",
                        extra={
                            "operation": description,
                            "attempt": attempt,
                            "max_attempts": self._max_attempts,
                            "http_status": result.http_status,
                            "wait_seconds": round(wait_time, 3),
                            "retry_after": result.retry_after_seconds,
                        },
                    )
                    await self._sleep(wait_time)

        # SAFETY: Loop runs at least once (max_attempts >= 1)
        assert last_result is not None, "Retry loop completed without a result"
        logger.error(
            "Giving up after retries",
            extra={
                "operation": description,
                "attempts": self._max_attempts,
                "http_status": last_result.http_status,
            },
        )
        return RetryResult(
            status=OperationStatus.FAILED_RETRYABLE,
            attempts=self._max_attempts,
            last_result=last_result,
            last_error=ErrorDetail.from_result(last_result, retryable=True),
        )
