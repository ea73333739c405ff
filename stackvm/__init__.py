from .assembler import assemble, assemble_source, decode_instruction, find_labels, find_procedures
from .bytecode import Instruction, Opcode, Program, format_program
from .lexer import TokenLine, tokenize
from .runtime import compile_source, run_script, run_source
from .vm import Stack, StackFrame, StackVM
from .vm_errors import AssemblyError, StackVMError, VMRuntimeError

__all__ = [
    "assemble",
    "assemble_source",
    "decode_instruction",
    "find_labels",
    "find_procedures",
    "Instruction",
    "Opcode",
    "Program",
    "format_program",
    "TokenLine",
    "tokenize",
    "compile_source",
    "run_script",
    "run_source",
    "Stack",
    "StackFrame",
    "StackVM",
    "AssemblyError",
    "StackVMError",
    "VMRuntimeError",
]
