"""Turtle Logo entry point and REPL wiring."""

from __future__ import annotations
import argparse
import asyncio
import sys
from typing import List, Optional

from logo_hooks import TurtleHooks
from logo_interpreter import Interpreter, TracebackFormatter
from logo_lexer import LogoParseError
from logo_parser import KEYWORD_REPEAT, KEYWORD_TO, Leaf, Node
from logo_renderer import TraceRenderer
from logo_scheduler import DEFAULT_DELAY, RunResult, describe


def _install_trace(hooks: TurtleHooks) -> None:
    def _print_primitive(_scheduler: object, leaf: Leaf) -> None:
        print(describe(leaf))

    hooks.on("after_primitive", _print_primitive)


async def _run_paced(interpreter: Interpreter, commands: List[Node]) -> RunResult:
    loop = asyncio.get_running_loop()
    done: "asyncio.Future[RunResult]" = loop.create_future()
    interpreter.cue(commands, done.set_result)
    try:
        return await done
    except asyncio.CancelledError:
        interpreter.stop()
        raise


def _execute(interpreter: Interpreter, commands: List[Node], animate: bool) -> RunResult:
    if animate:
        return asyncio.run(_run_paced(interpreter, commands))
    results: List[RunResult] = []
    interpreter.cue(commands, results.append)
    return results[-1]


def _report(interpreter: Interpreter, result: RunResult, *, verbose: bool, as_json: bool) -> None:
    formatter = TracebackFormatter(interpreter)
    for error in result.errors:
        print(formatter.format_text(error, verbose=verbose), file=sys.stderr)
        if as_json:
            print(formatter.to_json(error), file=sys.stderr)
    if verbose and isinstance(interpreter.renderer, TraceRenderer):
        x, y = interpreter.renderer.position()
        heading = interpreter.renderer.state.heading
        segments = len(interpreter.renderer.segments())
        print(f"turtle at ({x:g}, {y:g}) heading {heading:g}, {segments} segments drawn", file=sys.stderr)


def run_repl(interpreter: Interpreter, *, animate: bool, verbose: bool) -> int:
    print("Turtle Logo REPL. Enter commands, blank line to run a block.")
    buffer: List[str] = []
    status = 0

    while True:
        prompt = ">>> " if not buffer else "..> "
        try:
            line = input(prompt)
        except EOFError:
            print()
            break

        stripped = line.strip()
        words = stripped.lower().split()
        is_block_start = bool(words) and words[0] in (KEYWORD_TO, KEYWORD_REPEAT)

        if not buffer and stripped and not is_block_start:
            source_text = line
        elif stripped == "" and buffer:
            source_text = "\n".join(buffer)
            buffer.clear()
        else:
            if stripped:
                buffer.append(line)
            continue

        try:
            commands = interpreter.parse(source_text)
        except LogoParseError as error:
            print(f"ParseError: {error}", file=sys.stderr)
            status = 1
            continue
        result = _execute(interpreter, commands, animate)
        _report(interpreter, result, verbose=verbose, as_json=False)
        if result.errors:
            status = 1
    return status


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Turtle Logo interpreter")
    parser.add_argument("program", nargs="?", help="Source file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("--animate", action="store_true", help="Pause between drawing steps")
    parser.add_argument("--delay", type=float, default=DEFAULT_DELAY * 1000, help="Pause between drawing steps, in milliseconds")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Record frame stacks and print a summary")
    parser.add_argument("--trace", action="store_true", help="Print every primitive as it runs")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON tracebacks")
    args = parser.parse_args(argv)

    if args.delay < 0:
        print("--delay must not be negative", file=sys.stderr)
        return 1
    hooks = TurtleHooks()
    if args.trace:
        _install_trace(hooks)

    if args.program is None:
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
            return 1
        interpreter = Interpreter(animate=args.animate, delay=args.delay / 1000, verbose=args.verbose, hooks=hooks)
        return run_repl(interpreter, animate=args.animate, verbose=args.verbose)

    if args.source_mode:
        source_text = args.program
        filename = "<string>"
    else:
        filename = args.program
        try:
            with open(filename, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except OSError as exc:
            print(f"Failed to read {filename}: {exc}", file=sys.stderr)
            return 1

    interpreter = Interpreter(
        animate=args.animate,
        delay=args.delay / 1000,
        verbose=args.verbose,
        hooks=hooks,
        filename=filename,
    )
    try:
        commands = interpreter.parse(source_text)
    except LogoParseError as error:
        print(f"ParseError: {error}", file=sys.stderr)
        return 1
    result = _execute(interpreter, commands, args.animate)
    _report(interpreter, result, verbose=args.verbose, as_json=args.traceback_json)
    return 1 if result.errors else 0


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
