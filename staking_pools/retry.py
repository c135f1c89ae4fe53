# retry.py
# Fixed-delay retry policy and the async combinator that applies it

import asyncio
from datetime import timedelta
from typing import Awaitable, Callable, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from .constants import ATTEMPTS, RETRY_DELAY_MS
from .logging_utils import get_logger


logger = get_logger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    max_attempts: int = Field(default=ATTEMPTS, gt=0)
    delay: timedelta = timedelta(milliseconds=RETRY_DELAY_MS)

    model_config = ConfigDict(frozen=True)


class RetryError(Exception):
    """Raised once every attempt allowed by a policy has failed."""

    def __init__(self, description: str, attempts: int, last_error: BaseException):
        super().__init__(
            f"{description} failed after {attempts} attempts: {last_error}"
        )
        self.attempts = attempts
        self.last_error = last_error


async def retry(
    policy: RetryPolicy,
    operation: Callable[[], Awaitable[T]],
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    description: str = "operation",
) -> T:
    """
    Await `operation()` until it succeeds or `policy.max_attempts` is reached.

    Only exceptions matching `retry_on` are retried; anything else propagates
    on the first occurrence. The last retryable error is wrapped in RetryError.
    """
    last_error: BaseException | None = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await operation()
        except retry_on as e:
            last_error = e
            if attempt == policy.max_attempts:
                break
            logger.warning(
                f"{description} failed (attempt {attempt}/{policy.max_attempts}): {e}. Retrying..."
            )
            await asyncio.sleep(policy.delay.total_seconds())
    raise RetryError(description, policy.max_attempts, last_error)
