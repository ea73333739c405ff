from __future__ import annotations

from typing import Optional, Sequence

from .vm_events import TraceFrame


class StackVMError(RuntimeError):
    """Base class for every fatal assembler or VM fault."""


class AssemblyError(StackVMError):
    """Raised when source text cannot be turned into a program."""

    def __init__(self, message: str, line: int = 0, tokens: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.message = message
        self.line = line
        self.tokens = list(tokens or [])

    def __str__(self) -> str:
        if self.line:
            return f"line {self.line}: {self.message}"
        return self.message


class VMRuntimeError(StackVMError):
    """Runtime error raised by the VM with attached traceback frames."""

    def __init__(self, message: str, frames: Sequence[TraceFrame], pc: int = 0):
        super().__init__(message)
        self.frames = list(frames)
        self.pc = pc


__all__ = ["StackVMError", "AssemblyError", "VMRuntimeError"]
