"""Indy-lang command line entry point."""

from __future__ import annotations
import argparse
import sys
from typing import List, Optional

from interpreter import IndyRuntimeError, Interpreter, TracebackFormatter


INDY_VERSION = "0.5.2"

USAGE = "Usage: indy <filepath.indy> [--verbose]"


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="indy", description="Indy-lang script interpreter")
    parser.add_argument("program", nargs="?", help="Script file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Report engine progress and include env snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("--no-banner", dest="banner", action="store_false", help="Do not print the interpreter banner")
    return parser


def run_cli(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)

    if args.banner:
        print(f"--- Indy-lang Interpreter v{INDY_VERSION} ---")

    if args.program is None:
        print("Error: Missing input file.", file=sys.stderr)
        print(USAGE, file=sys.stderr)
        return 1

    if args.source_mode:
        source_text = args.program
        filename = "<string>"
    else:
        filename = args.program
        try:
            with open(filename, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except (OSError, UnicodeDecodeError) as exc:
            print(f"[Error] Could not read file {filename}: {exc}", file=sys.stderr)
            return 1

    interpreter = Interpreter(source=source_text, filename=filename, verbose=args.verbose)
    try:
        interpreter.run()
    except IndyRuntimeError as error:
        formatter = TracebackFormatter(interpreter)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1
    return 0


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
