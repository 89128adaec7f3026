"""Backoff schedules that decide how long to wait between polling attempts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, NamedTuple

if TYPE_CHECKING:
    from resttester.config import Config


class SleepDecision(NamedTuple):
    delay_seconds: float
    should_continue: bool


SleeperPolicy = Callable[[int], SleepDecision]


def _check_attempt(attempt: int) -> None:
    if attempt < 1:
        raise ValueError(f"attempt numbers start at 1, got {attempt}")


@dataclass(frozen=True)
class DoublingSleeper:
    """Exponential schedule: ``initial * factor ** (attempt - 1)``.

    The budget counts worker invocations, so a worker that keeps asking to
    retry runs exactly ``max_attempts`` times. There is no wall-clock limit
    here; pass ``timeout_seconds`` to the retry loop for that.
    """

    max_attempts: int = 20
    initial_delay_seconds: float = 0.01
    factor: float = 2.0
    max_delay_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay_seconds < 0:
            raise ValueError("initial_delay_seconds must be >= 0")
        if self.factor < 1:
            raise ValueError("factor must be >= 1")
        if self.max_delay_seconds is not None and self.max_delay_seconds < self.initial_delay_seconds:
            raise ValueError("max_delay_seconds must be >= initial_delay_seconds")

    def delay_for(self, attempt: int) -> float:
        _check_attempt(attempt)
        delay = self.initial_delay_seconds * (self.factor ** (attempt - 1))
        if self.max_delay_seconds is not None:
            delay = min(delay, self.max_delay_seconds)
        return delay

    def __call__(self, attempt: int) -> SleepDecision:
        return SleepDecision(self.delay_for(attempt), attempt < self.max_attempts)


@dataclass(frozen=True)
class FixedSleeper:
    max_attempts: int = 20
    delay_seconds: float = 0.1

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")

    def __call__(self, attempt: int) -> SleepDecision:
        _check_attempt(attempt)
        return SleepDecision(self.delay_seconds, attempt < self.max_attempts)


def sleeper_from_config(config: "Config") -> DoublingSleeper:
    return DoublingSleeper(
        max_attempts=config.retry_max_attempts,
        initial_delay_seconds=config.retry_initial_delay_seconds,
        factor=config.retry_backoff_factor,
        max_delay_seconds=config.retry_max_delay_seconds,
    )
