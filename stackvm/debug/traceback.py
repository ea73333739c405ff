from typing import Sequence

from stackvm.vm_errors import StackVMError, VMRuntimeError
from stackvm.vm_events import TraceFrame


def format_traceback(frames: Sequence[TraceFrame]) -> str:
    lines = ["stack traceback:"]
    for frame in frames:
        lines.append(f"\tline {frame.line} pc={frame.pc}: in procedure '{frame.procedure}'")
    return "\n".join(lines)


def format_error(error: StackVMError) -> str:
    if isinstance(error, VMRuntimeError) and error.frames and error.frames[0].line:
        top = error.frames[0]
        return f"line {top.line}: {error}"
    return str(error)


__all__ = ["format_traceback", "format_error"]
