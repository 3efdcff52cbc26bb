from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from loguru import logger

from .errors import EnrollmentRateLimited

T = TypeVar("T")

Sleeper = Callable[[float], Awaitable[None]]


@dataclass
class RetryOutcome:
    value: object | None
    retries: int
    exhausted: bool
    last_error: EnrollmentRateLimited | None = None


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-delay retry for rate-limited calls.

    ``max_retries`` counts attempts after the first one.
    """

    max_retries: int = 3
    delay_seconds: float = 10.0

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        sleep: Sleeper = asyncio.sleep,
        context: dict[str, object] | None = None,
    ) -> RetryOutcome:
        """Call ``operation`` until it succeeds or retries are exhausted.

        Only ``EnrollmentRateLimited`` is retried; anything else propagates.
        """

        retries = 0
        while True:
            try:
                value = await operation()
            except EnrollmentRateLimited as exc:
                if retries >= self.max_retries:
                    return RetryOutcome(value=None, retries=retries, exhausted=True, last_error=exc)
                retries += 1
                logger.warning(
                    "Rate limited, retrying",
                    attempt=retries,
                    max_retries=self.max_retries,
                    delay_seconds=self.delay_seconds,
                    status_code=exc.status_code,
                    **(context or {}),
                )
                await sleep(self.delay_seconds)
                continue
            return RetryOutcome(value=value, retries=retries, exhausted=False)
