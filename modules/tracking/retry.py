"""Bounded retry for store calls that lose a lock/deadlock race.

Only ``ErrorKind.TRANSIENT_CONTENTION`` failures are retried. The delay before
attempt ``n + 1`` is ``base * 2 ** (n - 1)`` plus uniform jitter in ``[0, jitter)``,
so with the defaults the waits are roughly 100ms then 200ms before giving up
on the third failure. Waiting is an ``await``, never a blocking sleep.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from modules.metrics import STORE_RETRIES
from modules.persistence.gateway import GatewayError

logger = structlog.get_logger(__name__)

MAX_ATTEMPTS = 3
BASE_DELAY_S = 0.1
JITTER_S = 0.05

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryOutcome:
    value: Any = None
    attempts: int = 0
    error: BaseException | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, GatewayError) and exc.transient


class RetryExecutor:
    def __init__(
        self,
        *,
        max_attempts: int = MAX_ATTEMPTS,
        base_delay_s: float = BASE_DELAY_S,
        jitter_s: float = JITTER_S,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.max_attempts = max_attempts
        self.base_delay_s = base_delay_s
        self.jitter_s = jitter_s
        self._sleep = sleep

    def _before_sleep(self, label: str | None) -> Callable[[RetryCallState], None]:
        def _log(state: RetryCallState) -> None:
            STORE_RETRIES.inc()
            delay = state.next_action.sleep if state.next_action else 0.0
            exc = state.outcome.exception() if state.outcome else None
            logger.warning(
                "store_deadlock_retry",
                target=label,
                attempt=state.attempt_number,
                max_attempts=self.max_attempts,
                delay_ms=round(delay * 1000),
                error=str(exc) if exc else None,
            )

        return _log

    def _retrying(self, label: str | None) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay_s, exp_base=2) + wait_random(0, self.jitter_s),
            retry=retry_if_exception(is_transient),
            before_sleep=self._before_sleep(label),
            sleep=self._sleep,
            reraise=True,
        )

    async def run(self, fn: Callable[[], Awaitable[Any]], *, label: str | None = None) -> RetryOutcome:
        """Await ``fn`` until it succeeds, fails permanently, or attempts run out.

        Failures are returned on the outcome, not raised.
        """
        attempts = 0
        value: Any = None
        try:
            async for attempt in self._retrying(label):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    value = await fn()
        except Exception as exc:  # noqa: BLE001
            return RetryOutcome(attempts=attempts, error=exc)
        return RetryOutcome(value=value, attempts=attempts)
