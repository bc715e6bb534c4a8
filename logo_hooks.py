"""Observers for a running turtle program.

A scheduler announces four moments of a run cycle:

``program_start(scheduler)``
    a cue found the scheduler idle and a new cycle begins.
``after_primitive(scheduler, leaf)``
    a primitive reached the renderer.
``on_error(scheduler, error)``
    a runtime error was reported and the offending command skipped.
``program_end(scheduler, result)``
    the cycle halted, before any completion callback runs.

Handlers run in registration order. A handler that raises does not stop the
drawing; the scheduler turns the exception into a runtime error.
"""

from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional

from logo_lexer import LogoError


EVENTS = ("program_start", "after_primitive", "on_error", "program_end")

Handler = Callable[..., None]


class UnknownEventError(LogoError):
    pass


class TurtleHooks:
    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = {event: [] for event in EVENTS}

    def on(self, event: str, handler: Optional[Handler] = None) -> Any:
        """Attach ``handler`` to ``event``; without a handler, acts as a decorator."""
        if event not in self._handlers:
            raise UnknownEventError(f"Unknown turtle event '{event}', expected one of: {', '.join(EVENTS)}")
        if handler is None:
            def deco(fn: Handler) -> Handler:
                self._handlers[event].append(fn)
                return fn
            return deco
        self._handlers[event].append(handler)
        return handler

    def emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers[event]):
            handler(*args)
