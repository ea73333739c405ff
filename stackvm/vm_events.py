from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence, Tuple


@dataclass(frozen=True)
class TraceFrame:
    """A single entry in a stack traceback."""

    procedure: str
    line: int
    pc: int


@dataclass
class VMStateSnapshot:
    pc: int
    stack: Sequence[int]
    call_stack: Sequence[TraceFrame]
    steps: int = 0
    halted: bool = False
    # (stack_offset, return_ip) per active frame, outermost first
    frames: List[Tuple[int, int]] = field(default_factory=list)


__all__ = ["TraceFrame", "VMStateSnapshot"]
