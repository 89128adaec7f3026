from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar, Union

from resttester.core.errors import (
    DeadlineExceededError,
    MissingValueError,
    RetryCancelledError,
    RetryExhaustedError,
    classify_error,
)
from resttester.core.logging import log_context
from resttester.core.sleeper import SleeperPolicy

T = TypeVar("T")

logger = logging.getLogger("resttester.retry")


@dataclass(frozen=True)
class Retry:
    reason: str = ""


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T


@dataclass(frozen=True)
class Failure:
    error: Exception


Outcome = Union[Retry, Success[T], Failure]
Worker = Callable[[], Outcome[T]]


def retry_loop(
    description: str,
    worker: Worker[T],
    sleeper: SleeperPolicy,
    *,
    cancel: Optional[threading.Event] = None,
    timeout_seconds: Optional[float] = None,
    sleep: Optional[Callable[[float], None]] = None,
    clock: Optional[Callable[[], float]] = None,
) -> T:
    """Invoke ``worker`` until it succeeds, fails, or the sleeper gives up.

    A ``Failure`` is raised as-is on the attempt that produced it; the worker
    alone decides what is retryable. ``cancel`` and ``timeout_seconds`` are
    checked between attempts only.
    """
    sleep = sleep or time.sleep
    clock = clock or time.monotonic
    deadline = clock() + timeout_seconds if timeout_seconds is not None else None

    attempt = 1
    with log_context(logger, retry_description=description) as log:
        while True:
            if cancel is not None and cancel.is_set():
                raise RetryCancelledError(f"RetryLoop for {description} cancelled before attempt {attempt}")

            outcome = worker()

            if isinstance(outcome, Failure):
                log.info(
                    f"Worker failed on attempt {attempt} ({classify_error(outcome.error)}): {outcome.error}",
                    extra={"attempt": attempt},
                )
                raise outcome.error

            if isinstance(outcome, Success):
                return outcome.value

            if not isinstance(outcome, Retry):
                raise TypeError(f"Worker for {description} returned {outcome!r}, expected Retry, Success or Failure")

            delay, should_continue = sleeper(attempt)
            if not should_continue:
                error = RetryExhaustedError(description, attempt)
                log.warning(str(error), extra={"attempt": attempt})
                raise error

            if deadline is not None and clock() + delay > deadline:
                raise DeadlineExceededError(
                    f"RetryLoop for {description} would exceed {timeout_seconds}s after {attempt} attempts"
                )

            log.debug(
                f"Retrying in {delay:.3f}s: {outcome.reason or 'not ready'}",
                extra={"attempt": attempt},
            )
            sleep(delay)
            attempt += 1


def require_value(value: Optional[T], description: str) -> T:
    if value is None:
        raise MissingValueError(f"RetryLoop for {description} succeeded without a value")
    return value


def poll(
    description: str,
    worker: Worker[T],
    sleeper: SleeperPolicy,
    *,
    cancel: Optional[threading.Event] = None,
    timeout_seconds: Optional[float] = None,
    sleep: Optional[Callable[[float], None]] = None,
    clock: Optional[Callable[[], float]] = None,
) -> T:
    value = retry_loop(
        description,
        worker,
        sleeper,
        cancel=cancel,
        timeout_seconds=timeout_seconds,
        sleep=sleep,
        clock=clock,
    )
    return require_value(value, description)
