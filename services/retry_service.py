"""
Retry Service with Bounded Attempts
A retry policy is plain data {max_attempts, backoff, retryable}; one harness
executes it so every retry loop in the engine has the same, testable shape.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

NONCE_ERROR_MARKERS = ("nonce", "replacement transaction underpriced", "already known")


def linear_backoff(base_delay: float) -> Callable[[int], float]:
    """Attempt n (1-based) waits n * base_delay before running"""
    return lambda attempt: base_delay * attempt


def is_nonce_error(error: BaseException) -> bool:
    """Sequence-number collisions with another pending submission from the same signer"""
    message = str(error).lower()
    return any(marker in message for marker in NONCE_ERROR_MARKERS)


def always_retry(error: BaseException) -> bool:
    return True


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff: Callable[[int], float] = field(default=linear_backoff(2.0))
    retryable: Callable[[BaseException], bool] = field(default=always_retry)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")


@dataclass
class RetryOutcome:
    """Result of running an operation under a policy; never raises"""
    success: bool
    attempts: int
    result: Any = None
    last_error: Optional[BaseException] = None
    gave_up_reason: str = ""


class RetryService:
    """Service for running async operations under a RetryPolicy"""

    def __init__(self, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self._sleep = sleep

    async def run(
        self,
        operation: Callable[[], Awaitable[Any]],
        policy: RetryPolicy,
        name: str = "operation",
    ) -> RetryOutcome:
        """
        Run operation until it succeeds, a non-retryable error occurs, or
        policy.max_attempts attempts have been made.

        The first attempt runs immediately; attempt n > 1 waits
        policy.backoff(n - 1) seconds first.
        """
        last_error: Optional[BaseException] = None
        for attempt in range(1, policy.max_attempts + 1):
            if attempt > 1:
                delay = policy.backoff(attempt - 1)
                if delay > 0:
                    logger.info(f"⏳ {name}: waiting {delay:.2f}s before attempt {attempt}/{policy.max_attempts}")
                    await self._sleep(delay)
            try:
                result = await operation()
                if attempt > 1:
                    logger.info(f"✅ {name} succeeded on attempt {attempt}/{policy.max_attempts}")
                return RetryOutcome(success=True, attempts=attempt, result=result)
            except Exception as e:
                last_error = e
                if not policy.retryable(e):
                    logger.error(f"❌ {name} failed with non-retryable error on attempt {attempt}: {e}")
                    return RetryOutcome(
                        success=False, attempts=attempt, last_error=e, gave_up_reason="non_retryable"
                    )
                logger.warning(f"Attempt {attempt}/{policy.max_attempts} failed for {name}: {e}")

        logger.error(f"Max retry attempts ({policy.max_attempts}) reached for {name}")
        return RetryOutcome(
            success=False,
            attempts=policy.max_attempts,
            last_error=last_error,
            gave_up_reason="exhausted",
        )


def notification_policy(max_attempts: int = 3, base_delay: float = 2.0) -> RetryPolicy:
    """Retry only nonce-class failures, linear backoff"""
    return RetryPolicy(
        max_attempts=max_attempts,
        backoff=linear_backoff(base_delay),
        retryable=is_nonce_error,
    )
