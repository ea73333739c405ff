"""Single pass assembler for the stack VM.

Source lines map one to one onto instructions, so every index computed while
scanning the token lines is also a valid instruction pointer:

    Proc square        ->  Jump <after End>
    GetArg 0               GetArg 0
    GetArg 0               GetArg 0
    Mul                    Mul
    Ret                    Ret
    End                ->  Noop

``Call square`` becomes ``Call <Proc index + 1>`` so a call lands on the first
instruction of the body while linear execution skips it.
"""

from __future__ import annotations

import re
from typing import Dict, Mapping, Sequence, Tuple

from .bytecode import (
    JUMP_OPCODES,
    OPERAND_OPCODES,
    Instruction,
    Opcode,
    Pointer,
    Program,
)
from .lexer import TokenLine, tokenize
from .vm_errors import AssemblyError

Labels = Dict[str, Pointer]
Procedures = Dict[str, Tuple[Pointer, Pointer]]

LABEL = "label"
PROC = "Proc"
END = "End"
CALL = "Call"

MNEMONICS: Dict[str, Opcode] = {
    op.value: op for op in Opcode if op not in (Opcode.CALL, Opcode.NOOP)
}
# Short spelling accepted for compatibility with older sources.
MNEMONICS["PrintC"] = Opcode.PRINT_CHAR

_SIGNED = re.compile(r"[+-]?[0-9]+")
_UNSIGNED = re.compile(r"\+?[0-9]+")


def find_labels(lines: Sequence[TokenLine]) -> Labels:
    """Map each ``label <name>`` to the index of the line that follows it."""
    labels: Labels = {}
    for index, line in enumerate(lines):
        if len(line.tokens) == 2 and line.tokens[0] == LABEL:
            name = line.tokens[1]
            if name in labels:
                raise AssemblyError(f"duplicate label '{name}'", line.line, line.tokens)
            labels[name] = index + 1
    return labels


def find_procedures(lines: Sequence[TokenLine]) -> Procedures:
    """Pair every ``Proc <name>`` with the next ``End`` line.

    Pairing is positional: a ``Proc`` appearing before the closing ``End`` is
    part of the enclosing body and is not registered.
    """
    procedures: Procedures = {}
    ip = 0
    while ip < len(lines):
        tokens = lines[ip].tokens
        if len(tokens) == 2 and tokens[0] == PROC:
            name = tokens[1]
            start = ip
            while lines[ip].tokens != (END,):
                ip += 1
                if ip >= len(lines):
                    raise AssemblyError(
                        f"procedure '{name}' has no matching {END}", lines[start].line, tokens
                    )
            if name in procedures:
                raise AssemblyError(f"duplicate procedure '{name}'", lines[start].line, tokens)
            procedures[name] = (start, ip + 1)
        else:
            ip += 1
    return procedures


def _parse_operand(line: TokenLine, opcode: Opcode, token: str) -> int:
    pattern = _SIGNED if opcode is Opcode.PUSH else _UNSIGNED
    if not pattern.fullmatch(token):
        kind = "an integer" if opcode is Opcode.PUSH else "a non-negative index"
        raise AssemblyError(f"{opcode.value} expects {kind}, got '{token}'", line.line, line.tokens)
    return int(token)


def _lookup_label(line: TokenLine, labels: Mapping[str, Pointer], name: str) -> Pointer:
    try:
        return labels[name]
    except KeyError:
        raise AssemblyError(f"undeclared label '{name}'", line.line, line.tokens) from None


def _lookup_procedure(
    line: TokenLine, procedures: Mapping[str, Tuple[Pointer, Pointer]], name: str
) -> Tuple[Pointer, Pointer]:
    try:
        return procedures[name]
    except KeyError:
        raise AssemblyError(f"undeclared procedure '{name}'", line.line, line.tokens) from None


def _expect_operands(line: TokenLine, mnemonic: str, count: int) -> None:
    given = len(line.tokens) - 1
    if given != count:
        raise AssemblyError(
            f"{mnemonic} expects {count} operand{'s' if count != 1 else ''}, got {given}",
            line.line,
            line.tokens,
        )


def decode_instruction(
    line: TokenLine,
    labels: Mapping[str, Pointer],
    procedures: Mapping[str, Tuple[Pointer, Pointer]],
) -> Instruction:
    mnemonic = line.tokens[0]

    if mnemonic == LABEL:
        _expect_operands(line, mnemonic, 1)
        return Instruction(Opcode.NOOP)
    if mnemonic == END:
        _expect_operands(line, mnemonic, 0)
        return Instruction(Opcode.NOOP)
    if mnemonic == PROC:
        _expect_operands(line, mnemonic, 1)
        _, after_end = _lookup_procedure(line, procedures, line.tokens[1])
        return Instruction(Opcode.JUMP, after_end)
    if mnemonic == CALL:
        _expect_operands(line, mnemonic, 1)
        start, _ = _lookup_procedure(line, procedures, line.tokens[1])
        return Instruction(Opcode.CALL, start + 1)

    opcode = MNEMONICS.get(mnemonic)
    if opcode is None:
        raise AssemblyError(f"invalid instruction: {' '.join(line.tokens)}", line.line, line.tokens)

    if opcode not in OPERAND_OPCODES:
        _expect_operands(line, mnemonic, 0)
        return Instruction(opcode)

    _expect_operands(line, mnemonic, 1)
    operand = line.tokens[1]
    if opcode in JUMP_OPCODES:
        return Instruction(opcode, _lookup_label(line, labels, operand))
    return Instruction(opcode, _parse_operand(line, opcode, operand))


def assemble(lines: Sequence[TokenLine]) -> Program:
    labels = find_labels(lines)
    procedures = find_procedures(lines)
    instructions = tuple(decode_instruction(line, labels, procedures) for line in lines)
    return Program(
        instructions=instructions,
        labels=labels,
        procedures=procedures,
        lines=tuple(line.line for line in lines),
    )


def assemble_source(source: str) -> Program:
    return assemble(tokenize(source))


__all__ = [
    "MNEMONICS",
    "find_labels",
    "find_procedures",
    "decode_instruction",
    "assemble",
    "assemble_source",
]
