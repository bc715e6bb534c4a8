"""Renderer contract and a headless renderer that records what it is asked to draw."""

from __future__ import annotations
import math
import numpy as np
from typing import Any, List, Protocol, Tuple
from numpy.typing import NDArray


class Renderer(Protocol):
    def forward(self, distance: float) -> None: ...

    def turn(self, degrees: float) -> None: ...

    def pen_up(self) -> None: ...

    def pen_down(self) -> None: ...

    def clear(self) -> None: ...


class TurtleState:
    """Position and heading of the turtle.

    Heading is measured clockwise from the positive y axis, in radians.
    ``sin`` and ``cos`` are derived from the heading and only change through
    ``set_angle``/``rotate``.
    """

    def __init__(self) -> None:
        self.position: NDArray[np.float64] = np.zeros(2, dtype=np.float64)
        self.pen_is_down = True
        self._angle = 0.0
        self._sin = 0.0
        self._cos = 1.0

    @property
    def angle(self) -> float:
        return self._angle

    @property
    def sin(self) -> float:
        return self._sin

    @property
    def cos(self) -> float:
        return self._cos

    @property
    def heading(self) -> float:
        return math.degrees(self._angle) % 360.0

    def set_angle(self, radians: float) -> None:
        self._angle = radians
        self._sin = math.sin(radians)
        self._cos = math.cos(radians)

    def rotate(self, degrees: float) -> None:
        self.set_angle(self._angle + math.radians(degrees))

    def direction(self) -> NDArray[np.float64]:
        return np.array([self._sin, self._cos], dtype=np.float64)


class TraceRenderer:
    def __init__(self) -> None:
        self.state = TurtleState()
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []
        self._segments: List[NDArray[np.float64]] = []

    def forward(self, distance: float) -> None:
        self.calls.append(("forward", (distance,)))
        start = self.state.position
        end = start + self.state.direction() * float(distance)
        if self.state.pen_is_down:
            self._segments.append(np.stack([start, end]))
        self.state.position = end

    def turn(self, degrees: float) -> None:
        self.calls.append(("turn", (degrees,)))
        self.state.rotate(float(degrees))

    def pen_up(self) -> None:
        self.calls.append(("pen_up", ()))
        self.state.pen_is_down = False

    def pen_down(self) -> None:
        self.calls.append(("pen_down", ()))
        self.state.pen_is_down = True

    def clear(self) -> None:
        # Clearing wipes the drawing and resets the heading but leaves the turtle where it is.
        self.calls.append(("clear", ()))
        self._segments.clear()
        self.state.set_angle(0.0)

    def segments(self) -> NDArray[np.float64]:
        """All pen-down moves as an array of shape (n, 2, 2)."""
        if not self._segments:
            return np.zeros((0, 2, 2), dtype=np.float64)
        return np.stack(self._segments)

    def position(self) -> Tuple[float, float]:
        x, y = self.state.position
        return (float(x), float(y))
