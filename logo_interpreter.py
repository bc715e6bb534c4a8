from __future__ import annotations
import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from logo_hooks import TurtleHooks
from logo_parser import Leaf, Node, SourceLocation, parse
from logo_procedures import (
    LogoRuntimeError,
    Procedure,
    ProcedureRegistry,
    check_arity,
)
from logo_renderer import Renderer, TraceRenderer
from logo_scheduler import DEFAULT_DELAY, DEFAULT_HISTORY, Clock, CompletionCallback, Scheduler, StepEntry


class Interpreter:
    """One turtle with its own procedures, command queue and scheduler."""

    def __init__(
        self,
        *,
        renderer: Optional[Renderer] = None,
        animate: bool = False,
        delay: float = DEFAULT_DELAY,
        clock: Optional[Clock] = None,
        verbose: bool = False,
        hooks: Optional[TurtleHooks] = None,
        history: int = DEFAULT_HISTORY,
        filename: str = "<string>",
    ) -> None:
        self.filename = filename
        self.verbose = verbose
        self.renderer: Renderer = renderer if renderer is not None else TraceRenderer()
        self.hooks = hooks if hooks is not None else TurtleHooks()
        self.procedures = ProcedureRegistry()
        self.scheduler = Scheduler(
            renderer=self.renderer,
            registry=self.procedures,
            hooks=self.hooks,
            animate=animate,
            delay=delay,
            clock=clock,
            verbose=verbose,
            history=history,
        )

    def parse(self, source: str) -> List[Node]:
        return parse(source, self.filename)

    def cue(self, commands: Iterable[Any], on_complete: Optional[CompletionCallback] = None) -> None:
        self.scheduler.cue(commands, on_complete)

    def eval(self, source: str, on_complete: Optional[CompletionCallback] = None) -> None:
        self.cue(self.parse(source), on_complete)

    def stop(self) -> None:
        self.scheduler.stop()

    def define(self, name: str, params: Sequence[str], body: List[Node]) -> Procedure:
        return self.procedures.define(name, params, body)

    def invoke(
        self,
        name: str,
        args: Sequence[Any] = (),
        on_complete: Optional[CompletionCallback] = None,
    ) -> Optional[LogoRuntimeError]:
        """Run a defined procedure with the given arguments.

        Problems are returned rather than raised: an unknown name or a wrong
        argument count gives back the error and nothing is queued.
        """
        try:
            procedure = self.procedures.get(name)
            check_arity(procedure, args)
        except LogoRuntimeError as error:
            return error
        self.cue([Leaf(op=procedure.name, args=[str(arg) for arg in args])], on_complete)
        return None

    @property
    def is_running(self) -> bool:
        return self.scheduler.is_running

    @property
    def errors(self) -> List[LogoRuntimeError]:
        return self.scheduler.errors


@dataclass
class TracebackFrame:
    location: Optional[SourceLocation]
    statement: Optional[str]
    state_entry: Optional[StepEntry]


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def _entry_for(self, error: LogoRuntimeError) -> Optional[StepEntry]:
        return self.interpreter.scheduler.logger.entry_for(error.step_index)

    def build_frame(self, error: LogoRuntimeError) -> TracebackFrame:
        entry = self._entry_for(error)
        location = error.location
        return TracebackFrame(
            location=location,
            statement=location.statement if location else None,
            state_entry=entry,
        )

    def format_text(self, error: LogoRuntimeError, verbose: bool) -> str:
        frame = self.build_frame(error)
        lines: List[str] = []
        if frame.location:
            lines.append(f"  File \"{frame.location.file}\", line {frame.location.line}")
            if frame.statement:
                lines.append(f"    {frame.statement}")
        else:
            lines.append("  <unknown location>")
        if frame.state_entry:
            lines.append(f"    Step index: {frame.state_entry.step_index}  State id: {frame.state_entry.state_id}")
            if verbose and frame.state_entry.stack_snapshot is not None:
                lines.append(f"    Stack: {' | '.join(frame.state_entry.stack_snapshot)}")
        elif error.step_index is not None:
            # Entry already dropped from the step log.
            lines.append(f"    Step index: {error.step_index}")
        rule = error.rule or "runtime"
        lines.append(f"{error.__class__.__name__}: {error.message} (rule: {rule})")
        return "\n".join(lines)

    def to_json(self, error: LogoRuntimeError) -> str:
        frame = self.build_frame(error)
        entry: Dict[str, Any] = {}
        if frame.location:
            entry["source_location"] = {
                "file": frame.location.file,
                "line": frame.location.line,
                "statement": frame.location.statement,
            }
        if frame.state_entry:
            entry["state_id"] = frame.state_entry.state_id
            entry["step_index"] = frame.state_entry.step_index
            if frame.state_entry.stack_snapshot is not None:
                entry["stack_snapshot"] = frame.state_entry.stack_snapshot
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "rule": error.rule,
                "failing_step_index": error.step_index,
            },
            "frame": entry,
        }
        return json.dumps(data, indent=2)
