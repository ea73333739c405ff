from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple

Pointer = int


class Opcode(Enum):
    # The value is the mnemonic used in assembly source.
    PUSH = "Push"          # Push value
    POP = "Pop"
    ADD = "Add"
    SUB = "Sub"
    MUL = "Mul"
    DIV = "Div"
    INCR = "Incr"
    DECR = "Decr"

    JUMP = "Jump"          # Jump label
    JE = "JE"              # jump if top == 0
    JNE = "JNE"            # jump if top != 0
    JGT = "JGT"            # jump if top > 0
    JLT = "JLT"            # jump if top < 0
    JGE = "JGE"            # jump if top >= 0
    JLE = "JLE"            # jump if top <= 0

    GET = "Get"            # Get index (frame relative)
    SET = "Set"            # Set index (frame relative)
    GET_ARG = "GetArg"     # GetArg index (counted back from the frame base)
    SET_ARG = "SetArg"     # SetArg index

    PRINT = "Print"
    PRINT_CHAR = "PrintChar"
    PRINT_STACK = "PrintStack"

    CALL = "Call"          # Call procedure
    RET = "Ret"
    NOOP = "Noop"


JUMP_OPCODES = frozenset(
    {Opcode.JUMP, Opcode.JE, Opcode.JNE, Opcode.JGT, Opcode.JLT, Opcode.JGE, Opcode.JLE}
)
INDEX_OPCODES = frozenset({Opcode.GET, Opcode.SET, Opcode.GET_ARG, Opcode.SET_ARG})
OPERAND_OPCODES = JUMP_OPCODES | INDEX_OPCODES | {Opcode.PUSH, Opcode.CALL}


@dataclass(frozen=True)
class Instruction:
    opcode: Opcode
    arg: Optional[int] = None

    def __post_init__(self) -> None:
        if self.opcode in OPERAND_OPCODES:
            if not isinstance(self.arg, int):
                raise TypeError(f"{self.opcode.value} requires an integer operand")
            if self.opcode is not Opcode.PUSH and self.arg < 0:
                raise ValueError(f"{self.opcode.value} operand must be non-negative")
        elif self.arg is not None:
            raise TypeError(f"{self.opcode.value} takes no operand")

    def __str__(self) -> str:
        if self.arg is None:
            return self.opcode.value
        return f"{self.opcode.value} {self.arg}"


@dataclass(frozen=True)
class Program:
    """An assembled program: a fixed instruction sequence plus its symbol tables.

    ``labels`` maps a label name to the pointer it resolves to and
    ``procedures`` maps a procedure name to ``(start, after_end)`` where
    ``start`` is the index of the ``Proc`` line and ``after_end`` the index
    right after its ``End`` line. ``lines`` holds the 1-based source line of
    every instruction.
    """

    instructions: Tuple[Instruction, ...]
    labels: Mapping[str, Pointer] = field(default_factory=dict)
    procedures: Mapping[str, Tuple[Pointer, Pointer]] = field(default_factory=dict)
    lines: Tuple[int, ...] = ()

    def __len__(self) -> int:
        return len(self.instructions)

    def __getitem__(self, pc: Pointer) -> Instruction:
        return self.instructions[pc]

    def line_of(self, pc: Pointer) -> int:
        if 0 <= pc < len(self.lines):
            return self.lines[pc]
        return 0

    def procedure_at(self, pc: Pointer) -> str:
        """Name of the procedure whose body contains ``pc``, or ``<main>``."""
        for name, (start, after_end) in self.procedures.items():
            if start < pc < after_end:
                return name
        return "<main>"


def format_program(program: Program) -> str:
    width = len(str(max(len(program) - 1, 0)))
    names: Dict[Pointer, str] = {start + 1: name for name, (start, _) in program.procedures.items()}
    rows = []
    for pc, inst in enumerate(program.instructions):
        row = f"{pc:>{width}}: {inst}"
        if pc in names:
            row += f"  ; proc {names[pc]}"
        rows.append(row)
    return "\n".join(rows)


__all__ = [
    "Pointer",
    "Opcode",
    "Instruction",
    "Program",
    "JUMP_OPCODES",
    "INDEX_OPCODES",
    "OPERAND_OPCODES",
    "format_program",
]
