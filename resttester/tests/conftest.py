from __future__ import annotations

import pytest

from resttester.config import Config
from resttester.tester import RestTester


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> Config:
    return Config(retry_max_attempts=10, retry_initial_delay_seconds=0.01, log_level="WARNING")


@pytest.fixture
def rest_tester(config, clock):
    tester = RestTester(config, sleep=clock.sleep, clock=clock)
    yield tester
    tester.close()
