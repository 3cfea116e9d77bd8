"""Shared fixtures"""

import pytest

from fardriver.state import ControllerState
from fardriver.dispatcher import FrameDispatcher


class FakeClock:
    """Millisecond clock that only moves when told to"""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> float:
        self.now += ms
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def state(clock):
    return ControllerState(clock=clock)


@pytest.fixture
def dispatcher(state):
    return FrameDispatcher(state)
