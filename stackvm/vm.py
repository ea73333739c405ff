"""Execution engine for assembled stack VM programs.

A procedure call records the operand stack length as the frame base. Inside
the procedure ``Get``/``Set`` index upward from that base and
``GetArg``/``SetArg`` index downward from just below it:

    GetArg 2   GetArg 1   GetArg 0  |  Get 0   Get 1   Get 2
    [   1,         3,         2,    |    5,      7,      4   ]

At top level there is no frame and ``Get``/``Set`` index from the bottom of
the stack.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, TextIO, Union

from .bytecode import Instruction, Opcode, Pointer, Program
from .vm_errors import VMRuntimeError
from .vm_events import TraceFrame, VMStateSnapshot


class Stack:
    """Operand stack of plain integers; every bad access is a fault."""

    __slots__ = ("values",)

    def __init__(self, values: Optional[Sequence[int]] = None):
        self.values: List[int] = list(values or [])

    def __len__(self) -> int:
        return len(self.values)

    def __repr__(self) -> str:
        return repr(self.values)

    def push(self, value: int) -> None:
        self.values.append(value)

    def pop(self) -> int:
        if not self.values:
            raise IndexError("popped an empty stack")
        return self.values.pop()

    def peek(self) -> int:
        if not self.values:
            raise IndexError("peeked an empty stack")
        return self.values[-1]

    def replace_top(self, value: int) -> None:
        self.peek()
        self.values[-1] = value

    def get(self, index: int) -> int:
        self._check(index)
        return self.values[index]

    def set(self, index: int, value: int) -> None:
        self._check(index)
        self.values[index] = value

    def _check(self, index: int) -> None:
        # Negative indices must not wrap around to the top of the stack.
        if not 0 <= index < len(self.values):
            raise IndexError("accessed a nonexistent stack index")


@dataclass(frozen=True)
class StackFrame:
    stack_offset: int
    return_ip: Pointer


def _truncating_div(b: int, a: int) -> int:
    if a == 0:
        raise ZeroDivisionError("division by zero")
    quotient = abs(b) // abs(a)
    return quotient if (a < 0) == (b < 0) else -quotient


class StackVM:
    def __init__(
        self,
        program: Union[Program, Sequence[Instruction]],
        *,
        out: Optional[TextIO] = None,
        trace: Optional[TextIO] = None,
        max_steps: Optional[int] = None,
    ):
        if not isinstance(program, Program):
            program = Program(tuple(program))
        self.program = program
        self.instructions = program.instructions
        self.stack = Stack()
        self.call_stack: List[StackFrame] = []
        self.pc: Pointer = 0
        self.steps = 0
        self.out = out
        self.trace = trace
        self.max_steps = max_steps
        self._handlers: Dict[Opcode, Callable[[Optional[int]], None]] = {
            Opcode.NOOP: self._op_NOOP,
            Opcode.PUSH: self._op_PUSH,
            Opcode.POP: self._op_POP,
            Opcode.ADD: self._op_ADD,
            Opcode.SUB: self._op_SUB,
            Opcode.MUL: self._op_MUL,
            Opcode.DIV: self._op_DIV,
            Opcode.INCR: self._op_INCR,
            Opcode.DECR: self._op_DECR,
            Opcode.JUMP: self._op_JUMP,
            Opcode.JE: self._op_JE,
            Opcode.JNE: self._op_JNE,
            Opcode.JGT: self._op_JGT,
            Opcode.JLT: self._op_JLT,
            Opcode.JGE: self._op_JGE,
            Opcode.JLE: self._op_JLE,
            Opcode.GET: self._op_GET,
            Opcode.SET: self._op_SET,
            Opcode.GET_ARG: self._op_GET_ARG,
            Opcode.SET_ARG: self._op_SET_ARG,
            Opcode.PRINT: self._op_PRINT,
            Opcode.PRINT_CHAR: self._op_PRINT_CHAR,
            Opcode.PRINT_STACK: self._op_PRINT_STACK,
            Opcode.CALL: self._op_CALL,
            Opcode.RET: self._op_RET,
        }

    @property
    def halted(self) -> bool:
        return self.pc >= len(self.instructions)

    # -------------------- Debug helpers --------------------
    def snapshot_state(self) -> VMStateSnapshot:
        return VMStateSnapshot(
            pc=self.pc,
            stack=list(self.stack.values),
            call_stack=self._capture_traceback(self.pc),
            steps=self.steps,
            halted=self.halted,
            frames=[(frame.stack_offset, frame.return_ip) for frame in self.call_stack],
        )

    def _capture_traceback(self, pc: Pointer) -> List[TraceFrame]:
        frames = [self._trace_frame(pc)]
        for frame in reversed(self.call_stack):
            frames.append(self._trace_frame(frame.return_ip - 1))
        return frames

    def _trace_frame(self, pc: Pointer) -> TraceFrame:
        return TraceFrame(
            procedure=self.program.procedure_at(pc),
            line=self.program.line_of(pc),
            pc=pc,
        )

    def _wrap_runtime_error(self, exc: Exception, pc: Pointer) -> VMRuntimeError:
        message = str(exc) or exc.__class__.__name__
        return VMRuntimeError(message, self._capture_traceback(pc), pc)

    # -------------------- Execution --------------------
    def step(self) -> Optional[str]:
        """Executes a single instruction."""
        if self.halted:
            return "halt"
        if self.max_steps is not None and self.steps >= self.max_steps:
            raise VMRuntimeError("step limit exceeded", self._capture_traceback(self.pc), self.pc)

        pc = self.pc
        inst = self.instructions[pc]
        # Jump targets are absolute, so advance before dispatching.
        self.pc += 1
        self.steps += 1
        try:
            self._handlers[inst.opcode](inst.arg)
        except (IndexError, ZeroDivisionError) as exc:
            raise self._wrap_runtime_error(exc, pc) from exc
        return "halt" if self.halted else None

    def run(self, debug: bool = False) -> None:
        while not self.halted:
            if debug:
                self._print_trace()
            self.step()

    def _print_trace(self) -> None:
        stream = self.trace if self.trace is not None else sys.stderr
        inst = self.instructions[self.pc]
        print(f"[PC={self.pc}] EXEC: {inst}", file=stream)
        print(f"  STACK: {self.stack.values}", file=stream)
        print(f"  FRAMES: {len(self.call_stack)}", file=stream)

    def _write(self, text: str) -> None:
        stream = self.out if self.out is not None else sys.stdout
        stream.write(text)

    def _frame_offset(self) -> int:
        return self.call_stack[-1].stack_offset if self.call_stack else 0

    def _arg_index(self, index: int) -> int:
        if not self.call_stack:
            raise IndexError("no active call frame")
        return self.call_stack[-1].stack_offset - 1 - index

    def _branch_if(self, taken: bool, target: Pointer) -> None:
        # The tested value is consumed only when the branch is taken.
        if taken:
            self.stack.pop()
            self.pc = target

    # -------------------- Opcode handlers --------------------
    def _op_NOOP(self, arg):
        pass

    def _op_PUSH(self, arg):
        self.stack.push(arg)

    def _op_POP(self, arg):
        self.stack.pop()

    # Binary operators pop a (the top) and then b, with b pushed first.
    def _op_ADD(self, arg):
        a, b = self.stack.pop(), self.stack.pop()
        self.stack.push(a + b)

    def _op_SUB(self, arg):
        a, b = self.stack.pop(), self.stack.pop()
        self.stack.push(b - a)

    def _op_MUL(self, arg):
        a, b = self.stack.pop(), self.stack.pop()
        self.stack.push(a * b)

    def _op_DIV(self, arg):
        a, b = self.stack.pop(), self.stack.pop()
        self.stack.push(_truncating_div(b, a))

    def _op_INCR(self, arg):
        self.stack.replace_top(self.stack.peek() + 1)

    def _op_DECR(self, arg):
        self.stack.replace_top(self.stack.peek() - 1)

    # 控制流
    def _op_JUMP(self, target):
        self.pc = target

    def _op_JE(self, target):
        self._branch_if(self.stack.peek() == 0, target)

    def _op_JNE(self, target):
        self._branch_if(self.stack.peek() != 0, target)

    def _op_JGT(self, target):
        self._branch_if(self.stack.peek() > 0, target)

    def _op_JLT(self, target):
        self._branch_if(self.stack.peek() < 0, target)

    def _op_JGE(self, target):
        self._branch_if(self.stack.peek() >= 0, target)

    def _op_JLE(self, target):
        self._branch_if(self.stack.peek() <= 0, target)

    # Frame relative access
    def _op_GET(self, index):
        self.stack.push(self.stack.get(index + self._frame_offset()))

    def _op_SET(self, index):
        self.stack.set(index + self._frame_offset(), self.stack.peek())

    def _op_GET_ARG(self, index):
        self.stack.push(self.stack.get(self._arg_index(index)))

    def _op_SET_ARG(self, index):
        self.stack.set(self._arg_index(index), self.stack.peek())

    # 输出
    def _op_PRINT(self, arg):
        self._write(str(self.stack.peek()))

    def _op_PRINT_CHAR(self, arg):
        self._write(chr(self.stack.peek() & 0xFF))

    def _op_PRINT_STACK(self, arg):
        self._write(f"{self.stack.values}\n")

    # 过程调用
    def _op_CALL(self, target):
        self.call_stack.append(StackFrame(stack_offset=len(self.stack), return_ip=self.pc))
        self.pc = target

    def _op_RET(self, arg):
        if not self.call_stack:
            raise IndexError("returned with an empty call stack")
        self.pc = self.call_stack.pop().return_ip


__all__ = ["Stack", "StackFrame", "StackVM"]
