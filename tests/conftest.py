from typing import Callable, List, Tuple

import pytest

from logo_interpreter import Interpreter
from logo_renderer import TraceRenderer


class ManualClock:
    """Collects timer callbacks so a test can fire them one at a time."""

    def __init__(self) -> None:
        self.pending: List[Tuple[float, Callable[[], None]]] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> None:
        self.pending.append((delay, callback))

    def tick(self) -> bool:
        if not self.pending:
            return False
        _delay, callback = self.pending.pop(0)
        callback()
        return True

    def run_all(self, limit: int = 10_000) -> int:
        fired = 0
        while fired < limit and self.tick():
            fired += 1
        return fired


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def renderer() -> TraceRenderer:
    return TraceRenderer()


@pytest.fixture
def interpreter(renderer: TraceRenderer) -> Interpreter:
    return Interpreter(renderer=renderer)


@pytest.fixture
def paced(renderer: TraceRenderer, clock: ManualClock) -> Interpreter:
    return Interpreter(renderer=renderer, animate=True, delay=0.04, clock=clock)
