"""Generic exponential-backoff retry engine.

Retries an async operation when it raises a retryable exception or when its
result matches a predicate, sleeping ``min(2**attempt * base, max)`` seconds
before each new attempt. The outcome is always returned as a tagged value,
never raised:

    result = await with_retry(lambda attempt: call_model(), policy)
    if isinstance(result, Success):
        text = result.value
    else:
        log(result.error)

The batch orchestrator uses it twice with different predicates (transient
errors around the model call, refusals around the whole analysis) and the
refusal detector uses it for its own classifier call.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, Literal, TypeVar

from loguru import logger

from pdfscribe.constants import (
    DEFAULT_RETRY_BASE_DELAY,
    DEFAULT_RETRY_COUNT,
    DEFAULT_RETRY_MAX_DELAY,
)
from pdfscribe.utils.text import format_error_message

T = TypeVar("T")

ResultPredicate = Callable[[Any], "bool | Awaitable[bool]"]


@dataclass(frozen=True)
class RetryPolicy:
    """How many times and how long to wait between attempts.

    Attributes:
        max_retries: Retries after the first attempt (0 means a single try)
        base_delay: Seconds, doubled per attempt
        max_delay: Upper bound on a single wait, seconds
        retry_on_result: Predicate marking a successful result as retryable;
                         may be sync or async
        retry_on_exception: Exception types that trigger a retry; anything
                            else fails immediately
    """

    max_retries: int = DEFAULT_RETRY_COUNT
    base_delay: float = DEFAULT_RETRY_BASE_DELAY
    max_delay: float = DEFAULT_RETRY_MAX_DELAY
    retry_on_result: ResultPredicate | None = None
    retry_on_exception: tuple[type[BaseException], ...] = (Exception,)

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based)."""
        return min((2**attempt) * self.base_delay, self.max_delay)


@dataclass(frozen=True)
class Success(Generic[T]):
    """Operation returned a value.

    ``retries_exhausted`` is set when the result still matched the retry
    predicate after the last allowed attempt.
    """

    value: T
    retries: int = 0
    retries_exhausted: bool = False

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    """Operation raised on every attempt, or raised a non-retryable error."""

    error: BaseException
    retries: int = 0
    details: str = ""

    @property
    def ok(self) -> bool:
        return False

    @property
    def message(self) -> str:
        return str(self.error) or "Failed after multiple retry attempts"


Result = Success[T] | Failure


@dataclass(frozen=True)
class RetryEvent:
    """Passed to ``on_retry`` before the engine sleeps."""

    attempt: int
    max_retries: int
    delay: float
    reason: Literal["exception", "result"]
    error: BaseException | None = None
    result: Any = None


async def _matches(predicate: ResultPredicate | None, value: Any) -> bool:
    if predicate is None:
        return False
    verdict = predicate(value)
    if inspect.isawaitable(verdict):
        verdict = await verdict
    return bool(verdict)


async def with_retry(
    operation: Callable[[int], Awaitable[T]],
    policy: RetryPolicy,
    on_retry: Callable[[RetryEvent], None] | None = None,
    label: str = "retry",
) -> Result[T]:
    """Run ``operation`` under ``policy``.

    Args:
        operation: Async callable receiving the current attempt index
                   (0 for the first call)
        policy: Retry limits and predicates
        on_retry: Called before each backoff sleep
        label: Prefix for log messages

    Returns:
        Success with the last value and the number of retries used, or
        Failure with the last exception.
    """
    attempt = 0
    last_error: BaseException | None = None

    while attempt <= policy.max_retries:
        try:
            value = await operation(attempt)
        except policy.retry_on_exception as e:
            last_error = e
            attempt += 1
            if attempt > policy.max_retries:
                break
            delay = policy.delay_for(attempt)
            logger.warning(
                f"[{label}] Attempt {attempt}/{policy.max_retries} failed: "
                f"{format_error_message(e)}, retrying in {delay:.1f}s"
            )
            if on_retry:
                on_retry(
                    RetryEvent(
                        attempt=attempt,
                        max_retries=policy.max_retries,
                        delay=delay,
                        reason="exception",
                        error=e,
                    )
                )
            await asyncio.sleep(delay)
            continue
        except Exception as e:
            logger.error(f"[{label}] Non-retryable error: {format_error_message(e)}")
            return Failure(error=e, retries=attempt, details=format_error_message(e))

        if await _matches(policy.retry_on_result, value):
            if attempt >= policy.max_retries:
                logger.debug(f"[{label}] Retries exhausted after {attempt} retries")
                return Success(value=value, retries=attempt, retries_exhausted=True)
            attempt += 1
            delay = policy.delay_for(attempt)
            logger.debug(
                f"[{label}] Result-based retry {attempt}/{policy.max_retries} "
                f"in {delay:.1f}s"
            )
            if on_retry:
                on_retry(
                    RetryEvent(
                        attempt=attempt,
                        max_retries=policy.max_retries,
                        delay=delay,
                        reason="result",
                        result=value,
                    )
                )
            await asyncio.sleep(delay)
            continue

        return Success(value=value, retries=attempt)

    assert last_error is not None
    logger.error(
        f"[{label}] Failed after {policy.max_retries + 1} attempts: "
        f"{format_error_message(last_error)}"
    )
    return Failure(
        error=last_error,
        retries=attempt - 1,
        details=format_error_message(last_error),
    )
