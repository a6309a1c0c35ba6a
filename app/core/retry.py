"""Retry policy shared by the push dispatch call sites."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)


T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff retry: ``backoff_base * 2 ** attempt`` between attempts.

    Args:
        max_retries: Retries after the first attempt (total attempts = max_retries + 1)
        backoff_base: Delay before the first retry, in seconds
        retryable: Predicate deciding whether a raised exception is retried
        sleep: Optional coroutine used to wait between attempts
    """

    max_retries: int
    backoff_base: float
    retryable: Callable[[BaseException], bool]
    sleep: Callable[[float], Awaitable[None]] | None = None

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds after the zero-based ``attempt`` fails."""
        return self.backoff_base * (2**attempt)

    def retrying(self, logger: logging.Logger | None = None) -> AsyncRetrying:
        kwargs: dict[str, Any] = {
            "stop": stop_after_attempt(self.max_retries + 1),
            "wait": wait_exponential(multiplier=self.backoff_base),
            "retry": retry_if_exception(self.retryable),
            "reraise": True,
        }
        if logger is not None:
            kwargs["before_sleep"] = before_sleep_log(logger, logging.WARNING)
        if self.sleep is not None:
            kwargs["sleep"] = self.sleep
        return AsyncRetrying(**kwargs)

    async def call(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        logger: logging.Logger | None = None,
        **kwargs: Any,
    ) -> T:
        """Run ``fn`` under this policy; the last exception is re-raised when retries run out."""
        return await self.retrying(logger)(fn, *args, **kwargs)


__all__ = ["RetryPolicy"]
