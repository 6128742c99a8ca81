import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential
from tenacity.stop import stop_base

from .errors import RunCancelledError, categorize_error
from .event_log import log_event

logger = logging.getLogger("retry_policy")

T = TypeVar("T")

MAX_RETRIES = 2
RETRY_DELAY_MS = 1000
BACKOFF_FACTOR = 1.5


class CancellationToken:
    """Flag set by an external interrupt, observed only at explicit checkpoints."""

    def __init__(self):
        self._cancelled = False
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "interrupted") -> None:
        if not self._cancelled:
            logger.warning(f"Cancellation requested ({reason}); stopping at the next checkpoint.")
        self._cancelled = True
        self.reason = reason

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def checkpoint(self, step_name: str) -> None:
        if self._cancelled:
            raise RunCancelledError(step_name)


class stop_when_cancelled(stop_base):
    def __init__(self, token: Optional[CancellationToken]):
        self.token = token

    def __call__(self, retry_state: RetryCallState) -> bool:
        return bool(self.token and self.token.cancelled)


def _is_retriable(exc: BaseException) -> bool:
    return categorize_error(exc).is_retriable


def _log_before_sleep(step_name: str, max_retries: int) -> Callable[[RetryCallState], None]:
    def _before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay_s = retry_state.next_action.sleep if retry_state.next_action else 0
        log_event(
            logger, "WARN", "EVT-RTY-01",
            step=step_name,
            attempt=retry_state.attempt_number,
            max=max_retries,
            category=categorize_error(exc).category if exc else "unknown",
            delay_ms=int(delay_s * 1000),
            error=str(exc),
        )
    return _before_sleep


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    step_name: str = "unknown-step",
    max_retries: int = MAX_RETRIES,
    delay_ms: float = RETRY_DELAY_MS,
    cancel_token: Optional[CancellationToken] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Runs ``operation`` and retries it on retriable failures.

    The wait before attempt ``n + 1`` is ``delay_ms * 1.5 ** (n - 1)``. Non-retriable
    errors are re-raised immediately without waiting; after the last attempt the
    original error is re-raised. If cancellation is requested while an attempt is
    failing, no further attempt is made and RunCancelledError is raised instead.

    Args:
        operation: Zero-argument coroutine function to run.
        step_name: Identifies the step in log events.
        max_retries: Retries after the first attempt.
        delay_ms: Base delay in milliseconds.
        cancel_token: Optional cancellation flag checked after each failed attempt.
        sleep: Coroutine used for the backoff delay (injectable for tests).
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1) | stop_when_cancelled(cancel_token),
        wait=wait_exponential(multiplier=delay_ms / 1000.0, exp_base=BACKOFF_FACTOR, min=0),
        retry=retry_if_exception(_is_retriable),
        before_sleep=_log_before_sleep(step_name, max_retries),
        sleep=sleep,
        reraise=True,
    )
    try:
        return await retrying(operation)
    except Exception as exc:
        attempts = retrying.statistics.get("attempt_number", 1)
        if cancel_token and cancel_token.cancelled:
            raise RunCancelledError(step_name) from exc
        if attempts > 1:
            log_event(logger, "ERROR", "EVT-RTY-02", step=step_name, attempts=attempts, error=str(exc))
        raise
