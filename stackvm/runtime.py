from __future__ import annotations

import io
import pathlib
from typing import Optional, TextIO

from .assembler import assemble_source
from .bytecode import Program
from .vm import StackVM


def compile_source(source: str) -> Program:
    return assemble_source(source)


def run_source(
    source: str,
    *,
    max_steps: Optional[int] = None,
    debug: bool = False,
    trace: Optional[TextIO] = None,
) -> str:
    """Assemble and run ``source``; returns everything the program printed."""
    buffer = io.StringIO()
    vm = StackVM(compile_source(source), out=buffer, trace=trace, max_steps=max_steps)
    vm.run(debug=debug)
    return buffer.getvalue()


def run_script(path: str, **kwargs) -> str:
    data = pathlib.Path(path).read_text(encoding="utf-8")
    return run_source(data, **kwargs)


__all__ = ["compile_source", "run_source", "run_script"]
