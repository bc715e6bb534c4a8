import asyncio

import pytest

from logo_lexer import LogoError
from logo_parser import Leaf, ProcedureDef, Repeat, parse
from logo_procedures import ArityMismatchError, InvalidArgumentError, ProcedureRegistry, UnknownOperatorError
from logo_renderer import TraceRenderer
from logo_scheduler import CommandQueue, Frame, RunResult, Scheduler, SchedulerState, StepLogger, StructuralError, coerce_command


def make_scheduler(renderer, **kwargs):
    return Scheduler(renderer=renderer, registry=ProcedureRegistry(), **kwargs)


def run(scheduler, commands):
    results = []
    scheduler.cue(commands, results.append)
    assert len(results) == 1
    return results[0]


def test_command_queue_is_fifo_with_monotonic_cursor():
    queue = CommandQueue()
    queue.append(Leaf("forward", ["1"]))
    queue.append(Leaf("right", ["2"]))
    assert len(queue) == 2
    assert queue.next() == (Leaf("forward", ["1"]), False)
    assert queue.cursor == 1
    assert len(queue) == 1
    assert queue.next() == (Leaf("right", ["2"]), False)
    assert queue.next() == (None, True)
    assert queue.cursor == 2


def test_repeat_expands_into_ordered_dispatches(renderer):
    scheduler = make_scheduler(renderer)
    result = run(scheduler, parse("repeat 3\n  forward 10"))
    assert renderer.calls == [("forward", (10.0,))] * 3
    assert result.state is SchedulerState.HALTED_EXHAUSTED
    assert result.ok
    assert scheduler.state is SchedulerState.HALTED_EXHAUSTED
    assert scheduler.stack == []


def test_nested_loops_keep_source_order(renderer):
    scheduler = make_scheduler(renderer)
    run(scheduler, parse("repeat 2\n  forward 1\n  repeat 2\n    right 5\n  left 3"))
    names = [name for name, _ in renderer.calls]
    assert names == ["forward", "turn", "turn", "turn"] * 2
    assert [args[0] for _, args in renderer.calls][:4] == [1.0, 5.0, 5.0, -3.0]


def test_repeat_frames_track_iterations(renderer):
    scheduler = make_scheduler(renderer)
    scheduler.state = SchedulerState.RUNNING
    scheduler.running = True
    loop = Repeat(2, [Leaf("forward", ["1"])])
    scheduler.queue.append(loop)
    assert scheduler.step()
    assert scheduler.stack == [Frame(command=loop, iteration=0, pending_body=loop.body)]
    assert scheduler.step()
    assert scheduler.stack[0].iteration == 1
    assert len(scheduler.stack) == 2


def test_repeat_frame_expands_its_pending_body(renderer):
    scheduler = make_scheduler(renderer)
    scheduler.state = SchedulerState.RUNNING
    scheduler.running = True
    loop = Repeat(2, [Leaf("forward", ["1"])])
    scheduler.stack.append(Frame(command=loop, iteration=0, pending_body=[Leaf("right", ["3"])]))
    while scheduler.step():
        pass
    assert renderer.calls == [("turn", (3.0,))] * 2


def test_primitive_aliases_and_back(renderer):
    scheduler = make_scheduler(renderer)
    run(scheduler, parse("fd 5\nbk 2\nlt 90\npu\npd\nclear"))
    assert renderer.calls == [
        ("forward", (5.0,)),
        ("turn", (180.0,)),
        ("forward", (2.0,)),
        ("turn", (180.0,)),
        ("turn", (-90.0,)),
        ("pen_up", ()),
        ("pen_down", ()),
        ("clear", ()),
    ]


def test_unknown_operator_is_reported_and_skipped(renderer):
    scheduler = make_scheduler(renderer)
    result = run(scheduler, parse("forward 1\njump 3\nforward 2"))
    assert [args for _, args in renderer.calls] == [(1.0,), (2.0,)]
    assert len(result.errors) == 1
    error = result.errors[0]
    assert isinstance(error, UnknownOperatorError)
    assert error.message == "jump is not defined."
    assert error.location.line == 2
    assert error.step_index is not None


def test_bad_primitive_arguments_are_reported(renderer):
    scheduler = make_scheduler(renderer)
    result = run(scheduler, parse("forward\nforward ten\nright 1 2\nforward 4"))
    assert renderer.calls == [("forward", (4.0,))]
    assert [type(error) for error in result.errors] == [ArityMismatchError, InvalidArgumentError, ArityMismatchError]


def test_procedure_call_binds_arguments(renderer):
    scheduler = make_scheduler(renderer)
    run(scheduler, parse("to square s\n  repeat 4\n    forward s\n    right 90"))
    run(scheduler, [Leaf("square", ["50"])])
    assert renderer.calls == [("forward", (50.0,)), ("turn", (90.0,))] * 4


def test_procedure_arity_mismatch_runs_nothing(renderer):
    scheduler = make_scheduler(renderer)
    result = run(scheduler, parse("to square s\n  forward s\nsquare 1 2\nright 7"))
    assert renderer.calls == [("turn", (7.0,))]
    assert isinstance(result.errors[0], ArityMismatchError)


def test_zero_argument_call_runs_raw_body(renderer):
    scheduler = make_scheduler(renderer)
    result = run(scheduler, parse("to square s\n  forward s\n  right 90\nsquare"))
    # The unbound parameter reaches the primitive as a literal token.
    assert renderer.calls == [("turn", (90.0,))]
    assert isinstance(result.errors[0], InvalidArgumentError)


def test_definitions_inside_loops_register_when_reached(renderer):
    scheduler = make_scheduler(renderer)
    run(scheduler, [Repeat(1, [ProcedureDef("dash", [], [Leaf("forward", ["3"])])]), Leaf("dash", [])])
    assert scheduler.registry.has("dash")
    assert renderer.calls == [("forward", (3.0,))]


def test_procedure_calling_procedure(renderer):
    scheduler = make_scheduler(renderer)
    run(scheduler, parse("to side n\n  forward n\n  right 90"))
    run(scheduler, parse("to box n\n  repeat 4\n    side n"))
    run(scheduler, parse("box 8"))
    assert renderer.calls == [("forward", (8.0,)), ("turn", (90.0,))] * 4


def test_deep_nesting_does_not_grow_the_python_stack(renderer):
    node = Leaf("forward", ["1"])
    for _ in range(5000):
        node = Repeat(1, [node])
    scheduler = make_scheduler(renderer)
    result = run(scheduler, [node])
    assert result.ok
    assert renderer.calls == [("forward", (1.0,))]


def test_tuples_are_coerced_and_malformed_entries_rejected(renderer):
    scheduler = make_scheduler(renderer)
    run(scheduler, [("FORWARD", 12), ["right", "45"]])
    assert renderer.calls == [("forward", (12.0,)), ("turn", (45.0,))]
    assert coerce_command(("pu",)) == Leaf("pu", [])

    for bad in ["forward 10", (), (3, 4), ("forward", object()), ("forward", True), None]:
        with pytest.raises(StructuralError):
            scheduler.cue([Leaf("forward", ["1"]), bad])
    # Nothing from a rejected batch is queued or run.
    assert len(renderer.calls) == 2


class StoppingRenderer(TraceRenderer):
    def __init__(self, stop_after):
        super().__init__()
        self.stop_after = stop_after
        self.scheduler = None

    def forward(self, distance):
        super().forward(distance)
        if len(self.calls) == self.stop_after:
            self.scheduler.stop()


def test_stop_halts_before_next_dispatch_and_discards_work():
    renderer = StoppingRenderer(stop_after=2)
    scheduler = make_scheduler(renderer)
    renderer.scheduler = scheduler
    result = run(scheduler, parse("repeat 10\n  forward 1\nforward 99"))
    assert len(renderer.calls) == 2
    assert result.cancelled
    assert scheduler.stack == []
    assert len(scheduler.queue) == 0

    renderer.stop_after = -1
    run(scheduler, [Leaf("right", ["5"])])
    assert renderer.calls[2:] == [("turn", (5.0,))]


def test_paced_run_waits_for_the_clock(renderer, clock):
    scheduler = make_scheduler(renderer, animate=True, delay=0.04, clock=clock)
    results = []
    scheduler.cue(parse("repeat 3\n  forward 10"), results.append)
    assert renderer.calls == [("forward", (10.0,))]
    assert [delay for delay, _ in clock.pending] == [0.04]
    assert scheduler.is_running
    assert clock.tick()
    assert len(renderer.calls) == 2
    clock.run_all()
    assert len(renderer.calls) == 3
    assert results == [RunResult(state=SchedulerState.HALTED_EXHAUSTED, errors=[], steps=results[0].steps)]


def test_stop_while_paused(renderer, clock):
    scheduler = make_scheduler(renderer, animate=True, clock=clock)
    results = []
    scheduler.cue(parse("repeat 5\n  forward 1"), results.append)
    scheduler.stop()
    assert results == []
    clock.run_all()
    assert len(renderer.calls) == 1
    assert results[0].cancelled
    assert clock.pending == []


def test_cue_while_running_appends_without_second_loop(renderer, clock):
    scheduler = make_scheduler(renderer, animate=True, clock=clock)
    first, second = [], []
    scheduler.cue([Leaf("forward", ["1"]), Leaf("forward", ["2"])], first.append)
    scheduler.cue([Leaf("forward", ["3"])], second.append)
    assert len(clock.pending) == 1
    clock.run_all()
    assert [args[0] for _, args in renderer.calls] == [1.0, 2.0, 3.0]
    assert len(first) == 1 and len(second) == 1


def test_cue_after_pending_stop_ignores_stale_timer(renderer, clock):
    scheduler = make_scheduler(renderer, animate=True, clock=clock)
    first, second = [], []
    scheduler.cue(parse("repeat 5\n  forward 1"), first.append)
    scheduler.stop()
    scheduler.cue([Leaf("right", ["9"])], second.append)
    assert first[0].cancelled
    assert renderer.calls == [("forward", (1.0,)), ("turn", (9.0,))]
    clock.run_all()
    assert renderer.calls == [("forward", (1.0,)), ("turn", (9.0,))]
    assert second[0].state is SchedulerState.HALTED_EXHAUSTED


def test_animation_needs_a_clock_outside_an_event_loop(renderer):
    scheduler = make_scheduler(renderer, animate=True)
    with pytest.raises(LogoError):
        scheduler.cue([Leaf("forward", ["1"])])
    assert len(scheduler.queue) == 0


def test_animation_with_asyncio_loop(renderer):
    scheduler = make_scheduler(renderer, animate=True, delay=0)

    async def main():
        done = asyncio.get_running_loop().create_future()
        scheduler.cue(parse("repeat 3\n  forward 2"), done.set_result)
        return await done

    result = asyncio.run(main())
    assert result.ok
    assert renderer.calls == [("forward", (2.0,))] * 3


def test_empty_cue_completes_immediately(renderer):
    scheduler = make_scheduler(renderer)
    result = run(scheduler, [])
    assert result.state is SchedulerState.HALTED_EXHAUSTED
    assert renderer.calls == []


def test_step_log_records_rules(renderer):
    scheduler = make_scheduler(renderer, verbose=True)
    run(scheduler, parse("repeat 1\n  forward 1"))
    rules = [entry.rule for entry in scheduler.logger.entries]
    assert rules == ["DEQUEUE", "REPEAT", "PRIMITIVE", "REPEAT_END", "HALT"]
    primitive = next(entry for entry in scheduler.logger.entries if entry.rule == "PRIMITIVE")
    assert primitive.stack_snapshot == ["repeat 1"]
    assert primitive.statement == "forward 1"


def test_step_log_keeps_a_bounded_window(renderer):
    scheduler = make_scheduler(renderer, history=50)
    run(scheduler, parse("repeat 200\n  forward 1"))
    run(scheduler, parse("repeat 200\n  forward 1"))
    entries = scheduler.logger.entries
    assert len(entries) == 50
    assert entries[-1].rule == "HALT"
    assert entries[-1].step_index == scheduler.logger.next_state_index - 1
    assert [entry.step_index for entry in entries] == list(range(entries[0].step_index, entries[0].step_index + 50))


def test_step_log_lookup_by_index(renderer):
    scheduler = make_scheduler(renderer, history=5)
    run(scheduler, parse("forward 1\nwobble\nrepeat 20\n  forward 1"))
    (error,) = scheduler.errors
    assert scheduler.logger.entry_for(error.step_index) is None
    last = scheduler.logger.last()
    assert scheduler.logger.entry_for(last.step_index) is last
    assert scheduler.logger.entry_for(None) is None


def test_step_log_history_must_be_positive():
    with pytest.raises(ValueError):
        StepLogger(verbose=False, history=0)
