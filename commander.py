"""Commander entry point and REPL wiring."""

from __future__ import annotations
import argparse
import asyncio
import sys
from typing import List, Optional

from extensions import load_runtime_services
from interpreter import Engine, TracebackFormatter
from lexer import ErrorCode, ExtensionError, code_name, describe

PROMPT = "\x1b[38;2;153;221;255m>>>\033[0m "  # light blue


def build_engine(*, verbose: bool, ext_paths: List[str]) -> Engine:
    services = load_runtime_services(ext_paths)
    return Engine(verbose=verbose, services=services, install_standard=True)


def report_failure(engine: Engine, code: int, *, verbose: bool, traceback_json: bool = False) -> None:
    failure = engine.last_failure
    if failure is None:
        print(f"{code_name(code)} (0x{code:X}): {describe(code)}", file=sys.stderr)
        return
    formatter = TracebackFormatter(engine)
    print(formatter.format_text(failure, verbose=verbose), file=sys.stderr)
    if traceback_json:
        print(formatter.to_json(failure), file=sys.stderr)


def run_repl(engine: Engine) -> int:
    print("\x1b[38;2;153;221;255mCommander\033[0m REPL. One command per line, Ctrl-D to quit.")
    while True:
        try:
            line = input(PROMPT)
        except EOFError:
            print()
            break
        code = asyncio.run(engine.run_line(line))
        if code != ErrorCode.SUCCESS:
            report_failure(engine, code, verbose=engine.verbose)
    return 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Commander batch interpreter")
    parser.add_argument("program", nargs="?", help="Batch file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit variable snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("--ext", dest="ext_paths", action="append", default=[], metavar="PATH", help="Load an extension (.py, .cmdx or bundled name); repeatable")
    args = parser.parse_args(argv)

    try:
        engine = build_engine(verbose=args.verbose, ext_paths=args.ext_paths)
    except ExtensionError as error:
        print(f"ExtensionError: {error}", file=sys.stderr)
        return 1

    if args.program is None:
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
            return 1
        return run_repl(engine)

    if args.source_mode:
        source_text = args.program
    else:
        try:
            with open(args.program, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except OSError as exc:
            print(f"Failed to read {args.program}: {exc}", file=sys.stderr)
            return 1

    try:
        code = engine.run(source_text.splitlines())
    except ExtensionError as error:
        print(f"ExtensionError: {error}", file=sys.stderr)
        return 1
    if code != ErrorCode.SUCCESS:
        report_failure(engine, code, verbose=args.verbose, traceback_json=args.traceback_json)
    return int(code)


if __name__ == "__main__":
    raise SystemExit(run_cli())
