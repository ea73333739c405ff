from __future__ import annotations

import argparse
import pathlib
import sys
from typing import Optional

from .assembler import assemble_source
from .bytecode import format_program
from .debug import format_error, format_traceback
from .vm import StackVM
from .vm_errors import StackVMError, VMRuntimeError


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="stackvm", description="Assemble and run stack VM programs")
    parser.add_argument("script", nargs="?", help="Path to assembly source file")
    parser.add_argument("-e", "--execute", dest="inline", help="Execute assembly source string")
    parser.add_argument("--trace", action="store_true", help="Print every executed instruction to stderr")
    parser.add_argument("--stack", action="store_true", help="Print a stack traceback on runtime errors")
    parser.add_argument("--max-steps", type=int, default=None, help="Abort after N executed instructions")
    parser.add_argument("--list", action="store_true", help="Print the assembled program instead of running it")
    args = parser.parse_args(argv)

    if args.inline is not None and args.script:
        parser.error("cannot use script path and --execute together")
    if args.inline is None and not args.script:
        parser.error("missing script or --execute")
    if args.max_steps is not None and args.max_steps < 0:
        parser.error("--max-steps must be non-negative")

    try:
        if args.inline is not None:
            source = args.inline
        else:
            source = pathlib.Path(args.script).read_text(encoding="utf-8")

        program = assemble_source(source)
        if args.list:
            if len(program):
                print(format_program(program))
            return 0

        vm = StackVM(program, max_steps=args.max_steps)
        vm.run(debug=args.trace)
        sys.stdout.flush()
        return 0
    except (OSError, UnicodeDecodeError) as exc:
        print(f"stackvm: {exc}", file=sys.stderr)
        return 1
    except StackVMError as exc:
        sys.stdout.flush()
        if isinstance(exc, VMRuntimeError) and args.stack:
            print(format_traceback(exc.frames), file=sys.stderr)
        print(f"stackvm: {format_error(exc)}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
