from __future__ import annotations
import asyncio
import enum
import functools
import math
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Protocol, Tuple

from logo_hooks import TurtleHooks
from logo_lexer import LogoError
from logo_parser import Leaf, Node, ProcedureDef, Repeat, SourceLocation
from logo_procedures import (
    ArityMismatchError,
    InvalidArgumentError,
    LogoRuntimeError,
    ProcedureRegistry,
    UnknownOperatorError,
    bind_arguments,
)
from logo_renderer import Renderer


DEFAULT_DELAY = 0.04
# Step log entries kept for tracebacks; older ones are dropped.
DEFAULT_HISTORY = 1000


class StructuralError(LogoError):
    """Raised when something other than a command is handed to the scheduler."""


class SchedulerState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    HALTED_EXHAUSTED = "exhausted"
    HALTED_CANCELLED = "cancelled"


class Clock(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> Any: ...


@dataclass
class RunResult:
    state: SchedulerState
    errors: List[LogoRuntimeError]
    steps: int

    @property
    def cancelled(self) -> bool:
        return self.state is SchedulerState.HALTED_CANCELLED

    @property
    def ok(self) -> bool:
        return self.state is SchedulerState.HALTED_EXHAUSTED and not self.errors


@dataclass
class Frame:
    command: Node
    iteration: Optional[int] = None
    pending_body: Optional[List[Node]] = None


def describe(command: Node) -> str:
    if isinstance(command, Leaf):
        return " ".join([command.op, *command.args])
    if isinstance(command, Repeat):
        return f"repeat {command.count}"
    if isinstance(command, ProcedureDef):
        return f"to {command.name}"
    return repr(command)


def coerce_command(entry: Any) -> Node:
    if isinstance(entry, (Leaf, Repeat, ProcedureDef)):
        return entry
    if isinstance(entry, (tuple, list)) and entry and isinstance(entry[0], str) and entry[0].strip():
        op, *args = entry
        if all(isinstance(arg, (str, int, float)) and not isinstance(arg, bool) for arg in args):
            return Leaf(op=op.strip().lower(), args=[str(arg) for arg in args])
    raise StructuralError(f"Malformed command: {entry!r}")


class CommandQueue:
    """FIFO of top-level commands; consumed entries are released as they are taken."""

    def __init__(self) -> None:
        self._entries: Deque[Node] = deque()
        self.cursor = 0

    def append(self, command: Node) -> None:
        self._entries.append(command)

    def next(self) -> Tuple[Optional[Node], bool]:
        if self._entries:
            self.cursor += 1
            return self._entries.popleft(), False
        return None, True

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class StepEntry:
    step_index: int
    state_id: str
    rule: str
    source_location: Optional[SourceLocation]
    statement: Optional[str]
    stack_snapshot: Optional[List[str]]
    extra: Optional[Dict[str, Any]]


class StepLogger:
    """Numbered record of scheduler steps.

    Step indexes keep counting for the life of the logger, but only the most
    recent ``history`` entries are held.
    """

    def __init__(self, verbose: bool, history: int = DEFAULT_HISTORY) -> None:
        if history < 1:
            raise ValueError("history must be >= 1")
        self.verbose = verbose
        self.entries: Deque[StepEntry] = deque(maxlen=history)
        self.next_state_index = 0

    def record(
        self,
        *,
        rule: str,
        location: Optional[SourceLocation],
        stack_snapshot: Optional[List[str]] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> StepEntry:
        step_index = self.next_state_index
        entry = StepEntry(
            step_index=step_index,
            state_id=f"s_{step_index:06d}",
            rule=rule,
            source_location=location,
            statement=location.statement if location else None,
            stack_snapshot=stack_snapshot,
            extra=extra,
        )
        self.entries.append(entry)
        self.next_state_index += 1
        return entry

    def last(self) -> Optional[StepEntry]:
        if self.entries:
            return self.entries[-1]
        return None

    def entry_for(self, step_index: Optional[int]) -> Optional[StepEntry]:
        if step_index is None or not self.entries:
            return None
        offset = step_index - self.entries[0].step_index
        if 0 <= offset < len(self.entries):
            return self.entries[offset]
        return None


# (renderer, args, location) -> None
PrimitiveImpl = Callable[..., None]


@dataclass
class Primitive:
    name: str
    min_args: int
    max_args: Optional[int]
    impl: PrimitiveImpl

    def validate(self, supplied: int, location: Optional[SourceLocation]) -> None:
        if supplied < self.min_args:
            raise ArityMismatchError(f"{self.name} expects at least {self.min_args} arguments", location=location, rule=self.name)
        if self.max_args is not None and supplied > self.max_args:
            raise ArityMismatchError(f"{self.name} expects at most {self.max_args} arguments", location=location, rule=self.name)


class Primitives:
    def __init__(self) -> None:
        self.table: Dict[str, Primitive] = {}
        self._register("forward", 1, 1, self._forward)
        self._register("back", 1, 1, self._back)
        self._register("right", 1, 1, self._right)
        self._register("left", 1, 1, self._left)
        self._register("penup", 0, 0, self._penup)
        self._register("pendown", 0, 0, self._pendown)
        self._register("clear", 0, 0, self._clear)
        self._alias("fd", "forward")
        self._alias("bk", "back")
        self._alias("backward", "back")
        self._alias("rt", "right")
        self._alias("lt", "left")
        self._alias("pu", "penup")
        self._alias("pd", "pendown")

    def _register(self, name: str, min_args: int, max_args: Optional[int], impl: PrimitiveImpl) -> None:
        self.table[name] = Primitive(name=name, min_args=min_args, max_args=max_args, impl=impl)

    def _alias(self, alias: str, name: str) -> None:
        self.table[alias] = self.table[name]

    def get_optional(self, name: str) -> Optional[Primitive]:
        return self.table.get(name)

    def invoke(self, primitive: Primitive, renderer: Renderer, args: List[str], location: Optional[SourceLocation]) -> None:
        primitive.validate(len(args), location)
        primitive.impl(renderer, args, location)

    def _expect_number(self, token: str, rule: str, location: Optional[SourceLocation]) -> float:
        try:
            value = float(token)
        except ValueError:
            raise InvalidArgumentError(f"{rule} expects a number but got '{token}'", location=location, rule=rule)
        if not math.isfinite(value):
            raise InvalidArgumentError(f"{rule} expects a finite number but got '{token}'", location=location, rule=rule)
        return value

    def _forward(self, renderer: Renderer, args: List[str], location: Optional[SourceLocation]) -> None:
        renderer.forward(self._expect_number(args[0], "forward", location))

    def _back(self, renderer: Renderer, args: List[str], location: Optional[SourceLocation]) -> None:
        distance = self._expect_number(args[0], "back", location)
        renderer.turn(180.0)
        renderer.forward(distance)
        renderer.turn(180.0)

    def _right(self, renderer: Renderer, args: List[str], location: Optional[SourceLocation]) -> None:
        renderer.turn(self._expect_number(args[0], "right", location))

    def _left(self, renderer: Renderer, args: List[str], location: Optional[SourceLocation]) -> None:
        renderer.turn(-self._expect_number(args[0], "left", location))

    def _penup(self, renderer: Renderer, args: List[str], location: Optional[SourceLocation]) -> None:
        renderer.pen_up()

    def _pendown(self, renderer: Renderer, args: List[str], location: Optional[SourceLocation]) -> None:
        renderer.pen_down()

    def _clear(self, renderer: Renderer, args: List[str], location: Optional[SourceLocation]) -> None:
        renderer.clear()


CompletionCallback = Callable[[RunResult], None]


class Scheduler:
    """Resumable executor for parsed commands.

    Each call to ``step`` advances the top frame by one unit of work. Loops and
    procedure calls push frames instead of recursing, so nesting depth never
    grows the Python stack. With ``animate`` on, every primitive is followed by
    a pause handed to ``clock.call_later``; the run resumes from the timer.
    """

    def __init__(
        self,
        *,
        renderer: Renderer,
        registry: ProcedureRegistry,
        hooks: Optional[TurtleHooks] = None,
        animate: bool = False,
        delay: float = DEFAULT_DELAY,
        clock: Optional[Clock] = None,
        verbose: bool = False,
        history: int = DEFAULT_HISTORY,
    ) -> None:
        self.renderer = renderer
        self.registry = registry
        self.hooks = hooks if hooks is not None else TurtleHooks()
        self.primitives = Primitives()
        self.animate = animate
        self.delay = delay
        self.clock = clock
        self.verbose = verbose

        self.state = SchedulerState.IDLE
        self.running = False
        self.queue = CommandQueue()
        self.stack: List[Frame] = []
        self.logger = StepLogger(verbose=verbose, history=history)
        self.errors: List[LogoRuntimeError] = []
        self._callbacks: List[CompletionCallback] = []
        self._active_clock: Optional[Clock] = None
        # Bumped on every start and halt; timers from an earlier cycle compare unequal and do nothing.
        self._generation = 0
        self._steps = 0

    # ---- public surface ----

    def cue(self, commands: Iterable[Any], on_complete: Optional[CompletionCallback] = None) -> None:
        batch = [coerce_command(entry) for entry in commands]
        if self.state is SchedulerState.RUNNING and not self.running:
            # A stop is pending on a paused run; finish that cycle before starting a new one.
            self._halt(SchedulerState.HALTED_CANCELLED)
        clock = self._resolve_clock() if self.animate and self.state is not SchedulerState.RUNNING else None

        for command in batch:
            if isinstance(command, ProcedureDef):
                self.registry.define_from(command)
            else:
                self.queue.append(command)
        if on_complete is not None:
            self._callbacks.append(on_complete)
        if self.state is SchedulerState.RUNNING:
            return

        self.state = SchedulerState.RUNNING
        self.running = True
        self.errors = []
        self._steps = 0
        self._active_clock = clock
        self._generation += 1
        self._emit_event("program_start", self)
        self._run(self._generation)

    def stop(self) -> None:
        self.running = False

    @property
    def is_running(self) -> bool:
        return self.state is SchedulerState.RUNNING

    def step(self) -> bool:
        """Advance by one step. Returns True when the caller should keep stepping."""
        if self.state is not SchedulerState.RUNNING:
            return False
        if not self.running:
            self._halt(SchedulerState.HALTED_CANCELLED)
            return False
        self._steps += 1
        if self.stack:
            return self._advance(self.stack[-1])
        command, exhausted = self.queue.next()
        if exhausted or command is None:
            self._halt(SchedulerState.HALTED_EXHAUSTED)
            return False
        self.stack.append(self._new_frame(command))
        self._log_step(rule="DEQUEUE", location=command.location)
        return True

    # ---- stepping ----

    def _run(self, generation: int) -> None:
        if generation != self._generation:
            return
        try:
            while self.step():
                pass
        except Exception:
            self._halt(SchedulerState.HALTED_CANCELLED)
            raise

    def _advance(self, frame: Frame) -> bool:
        command = frame.command
        if isinstance(command, Repeat):
            assert frame.iteration is not None and frame.pending_body is not None
            if frame.iteration < command.count:
                frame.iteration += 1
                self._load_body(frame.pending_body)
                self._log_step(rule="REPEAT", location=command.location, extra={"iteration": frame.iteration})
            else:
                self.stack.pop()
                self._log_step(rule="REPEAT_END", location=command.location)
            return True

        self.stack.pop()
        if isinstance(command, ProcedureDef):
            self.registry.define_from(command)
            self._log_step(rule="DEFINE", location=command.location, extra={"name": command.name})
            return True
        if not isinstance(command, Leaf):
            raise StructuralError(f"Malformed command on the frame stack: {command!r}")

        procedure = self.registry.get_optional(command.op)
        if procedure is not None:
            try:
                body = bind_arguments(procedure, command.args, location=command.location)
            except LogoRuntimeError as error:
                self._report(error)
                return True
            self._load_body(body)
            self._log_step(rule="CALL", location=command.location, extra={"name": procedure.name})
            return True

        primitive = self.primitives.get_optional(command.op)
        if primitive is None:
            self._report(UnknownOperatorError(f"{command.op} is not defined.", location=command.location, rule=command.op))
            return True
        try:
            self.primitives.invoke(primitive, self.renderer, command.args, command.location)
        except LogoRuntimeError as error:
            self._report(error)
            return True
        self._log_step(rule="PRIMITIVE", location=command.location, extra={"op": primitive.name})
        self._emit_event("after_primitive", self, command)
        if self.animate and self._active_clock is not None:
            self._active_clock.call_later(self.delay, functools.partial(self._run, self._generation))
            return False
        return True

    def _load_body(self, body: List[Node]) -> None:
        for node in reversed(body):
            self.stack.append(self._new_frame(node))

    def _new_frame(self, command: Node) -> Frame:
        if isinstance(command, Repeat):
            return Frame(command=command, iteration=0, pending_body=command.body)
        return Frame(command=command)

    def _halt(self, state: SchedulerState) -> None:
        if self.state is not SchedulerState.RUNNING:
            return
        self.state = state
        self.running = False
        self.stack.clear()
        self.queue.clear()
        self._generation += 1
        self._active_clock = None
        self._log_step(rule="HALT", location=None, extra={"state": state.value})
        # The result shares the error list so failures in program_end handlers reach the callbacks.
        result = RunResult(state=state, errors=self.errors, steps=self._steps)
        callbacks, self._callbacks = self._callbacks, []
        self._emit_event("program_end", self, result)
        for callback in callbacks:
            callback(result)

    def _resolve_clock(self) -> Clock:
        if self.clock is not None:
            return self.clock
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            raise LogoError("Animated execution needs a clock or a running asyncio event loop")

    # ---- reporting ----

    def _report(self, error: LogoRuntimeError) -> None:
        self._log_step(rule="ERROR", location=error.location, extra={"error": error.message})
        last = self.logger.last()
        if last is not None:
            error.step_index = last.step_index
        self.errors.append(error)
        try:
            self.hooks.emit("on_error", self, error)
        except Exception as exc:
            hook_error = LogoRuntimeError(f"Hook 'on_error' failed: {exc}", location=error.location, rule="HOOK")
            hook_error.step_index = error.step_index
            self.errors.append(hook_error)

    def _emit_event(self, event: str, *args: Any) -> None:
        try:
            self.hooks.emit(event, *args)
        except LogoRuntimeError as error:
            self._report(error)
        except Exception as exc:
            last = self.logger.last()
            loc = last.source_location if last else None
            self._report(LogoRuntimeError(f"Hook '{event}' failed: {exc}", location=loc, rule="HOOK"))

    def _log_step(
        self,
        *,
        rule: str,
        location: Optional[SourceLocation],
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        snapshot = [describe(frame.command) for frame in self.stack] if self.verbose else None
        self.logger.record(rule=rule, location=location, stack_snapshot=snapshot, extra=extra)
