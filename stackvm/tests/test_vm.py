import io
import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from stackvm.assembler import assemble_source
from stackvm.bytecode import Instruction, Opcode, Program
from stackvm.vm import Stack, StackFrame, StackVM
from stackvm.vm_errors import VMRuntimeError
from stackvm.vm_events import TraceFrame


def run_vm(source, **kwargs):
    out = io.StringIO()
    vm = StackVM(assemble_source(source), out=out, **kwargs)
    vm.run()
    return vm, out.getvalue()


def test_every_opcode_has_a_handler():
    vm = StackVM(Program(()))
    assert set(vm._handlers) == set(Opcode)


def test_empty_program_halts_immediately():
    vm, output = run_vm("")
    assert vm.halted
    assert vm.steps == 0
    assert output == ""


def test_push_then_pop_leaves_stack_unchanged():
    vm = StackVM(assemble_source("Push 1\nPush 2\nPush 7\nPop"), out=io.StringIO())
    vm.step()
    vm.step()
    before = list(vm.stack.values)
    vm.step()
    vm.step()
    assert vm.stack.values == before
    assert vm.pc == 4


def test_sub_prints_difference():
    _, output = run_vm("Push 5\nPush 3\nSub\nPrint")
    assert output == "2"


def test_incr_twice():
    _, output = run_vm("Push 0\nIncr\nIncr\nPrint")
    assert output == "2"


@pytest.mark.parametrize(
    "source, expected",
    [
        ("Push 2\nPush 3\nAdd", [5]),
        ("Push 2\nPush 3\nSub", [-1]),
        ("Push 4\nPush -3\nMul", [-12]),
        ("Push 7\nPush 2\nDiv", [3]),
        ("Push -7\nPush 2\nDiv", [-3]),
        ("Push 7\nPush -2\nDiv", [-3]),
        ("Push -7\nPush -2\nDiv", [3]),
        ("Push 9\nDecr", [8]),
        ("Push 1\nPush 2\nPush 3\nAdd\nMul", [5]),
    ],
)
def test_arithmetic(source, expected):
    vm, _ = run_vm(source)
    assert vm.stack.values == expected


def test_divide_by_zero_is_fatal():
    with pytest.raises(VMRuntimeError) as excinfo:
        run_vm("Push 4\nPush 0\nDiv")
    assert str(excinfo.value) == "division by zero"
    assert isinstance(excinfo.value.__cause__, ZeroDivisionError)
    assert excinfo.value.pc == 2


def test_je_taken_pops_zero():
    vm, _ = run_vm("Push 5\nPush 5\nSub\nJE equal\nPush 99\nlabel equal")
    assert vm.stack.values == []


def test_je_not_taken_keeps_difference():
    vm, _ = run_vm("Push 5\nPush 3\nSub\nJE equal\nPush 99\nlabel equal")
    assert vm.stack.values == [2, 99]


@pytest.mark.parametrize(
    "mnemonic, value, taken",
    [
        ("JE", 0, True),
        ("JE", 3, False),
        ("JNE", 3, True),
        ("JNE", 0, False),
        ("JGT", 1, True),
        ("JGT", 0, False),
        ("JLT", -1, True),
        ("JLT", 0, False),
        ("JGE", 0, True),
        ("JGE", -1, False),
        ("JLE", 0, True),
        ("JLE", 1, False),
    ],
)
def test_conditional_jumps(mnemonic, value, taken):
    vm, _ = run_vm(f"Push {value}\n{mnemonic} skip\nPush 99\nlabel skip")
    if taken:
        assert vm.stack.values == []
    else:
        assert vm.stack.values == [value, 99]


def test_jump_past_end_halts():
    vm, _ = run_vm("Jump end\nPush 1\nlabel end")
    assert vm.halted
    assert vm.stack.values == []


def test_backward_jump_loop():
    _, output = run_vm("Push 3\nlabel top\nPrint\nDecr\nGet 0\nJGT top")
    assert output == "321"


def test_set_then_get_at_top_level():
    vm, _ = run_vm("Push 1\nPush 2\nPush 9\nSet 0\nGet 0")
    assert vm.stack.values == [9, 2, 9, 9]


def test_set_then_get_inside_frame():
    source = "\n".join(
        [
            "Proc p",
            "Push 0",
            "Push 0",
            "Push 42",
            "Set 1",
            "Get 1",
            "PrintStack",
            "Pop",
            "Pop",
            "Pop",
            "Pop",
            "Ret",
            "End",
            "Push 7",
            "Call p",
        ]
    )
    vm, output = run_vm(source)
    assert output == "[7, 0, 42, 42, 42]\n"
    assert vm.stack.values == [7]


def test_get_arg_walks_back_through_arguments():
    source = "Proc p\nGetArg 0\nGetArg 1\nGetArg 2\nPrintStack\nRet\nEnd\nPush 1\nPush 2\nPush 3\nCall p"
    _, output = run_vm(source)
    assert output == "[1, 2, 3, 3, 2, 1]\n"


def test_set_arg_writes_into_caller_slot():
    source = "Proc p\nPush 50\nSetArg 1\nPop\nRet\nEnd\nPush 1\nPush 2\nCall p"
    vm, _ = run_vm(source)
    assert vm.stack.values == [50, 2]


def test_call_then_ret_resumes_after_call():
    vm = StackVM(assemble_source("Proc p\nRet\nEnd\nPush 1\nCall p\nPush 2"), out=io.StringIO())
    vm.step()  # Jump over the body
    vm.step()  # Push 1
    vm.step()  # Call p
    assert vm.call_stack == [StackFrame(stack_offset=1, return_ip=5)]
    assert vm.pc == 1
    vm.step()  # Ret
    assert vm.pc == 5
    assert vm.call_stack == []
    assert vm.stack.values == [1]


def test_nested_calls_unwind_to_top_level():
    source = "Proc b\nRet\nEnd\nProc a\nCall b\nRet\nEnd\nCall a\nPush 42"
    vm = StackVM(assemble_source(source), out=io.StringIO())
    depth = 0
    while vm.pc != 8:
        vm.step()
        depth = max(depth, len(vm.call_stack))
    assert depth == 2
    assert vm.call_stack == []
    vm.run()
    assert vm.stack.values == [42]


def test_print_does_not_pop():
    vm, output = run_vm("Push -12\nPrint\nPrint")
    assert output == "-12-12"
    assert vm.stack.values == [-12]


@pytest.mark.parametrize("value", [65, 321, -191])
def test_print_char_uses_low_byte(value):
    _, output = run_vm(f"Push {value}\nPrintChar")
    assert output == "A"


def test_print_stack_does_not_mutate():
    vm, output = run_vm("Push 1\nPush 2\nPrintStack\nPrintStack")
    assert output == "[1, 2]\n[1, 2]\n"
    assert vm.stack.values == [1, 2]


def test_output_is_written_to_stream():
    out = io.StringIO()
    vm = StackVM(assemble_source("Push 4\nPrint\nPush 10\nPrintChar"), out=out)
    vm.run()
    assert out.getvalue() == "4\n"


class CountingStream:
    def __init__(self):
        self.writes = 0

    def write(self, text):
        self.writes += 1
        return len(text)


def test_printing_loop_retains_no_output():
    out = CountingStream()
    vm = StackVM(assemble_source("Push 1\nlabel l\nPrint\nJump l"), out=out)
    for _ in range(30000):
        vm.step()
    assert out.writes == 15000
    assert not any(isinstance(value, (list, str)) and len(value) > 10 for value in vars(vm).values())
    assert vm.stack.values == [1]


@pytest.mark.parametrize(
    "source, message",
    [
        ("Pop", "popped an empty stack"),
        ("Push 1\nAdd", "popped an empty stack"),
        ("Print", "peeked an empty stack"),
        ("Incr", "peeked an empty stack"),
        ("JE somewhere\nlabel somewhere", "peeked an empty stack"),
        ("Push 1\nGet 1", "accessed a nonexistent stack index"),
        ("Push 1\nSet 3", "accessed a nonexistent stack index"),
        ("Set 0", "peeked an empty stack"),
        ("Ret", "returned with an empty call stack"),
        ("Push 1\nGetArg 0", "no active call frame"),
        ("Push 1\nSetArg 0", "no active call frame"),
        ("Proc p\nGetArg 0\nRet\nEnd\nCall p", "accessed a nonexistent stack index"),
        ("Proc p\nGetArg 1\nRet\nEnd\nPush 1\nCall p", "accessed a nonexistent stack index"),
        ("Proc p\nGet 0\nRet\nEnd\nPush 1\nCall p", "accessed a nonexistent stack index"),
    ],
)
def test_runtime_faults(source, message):
    with pytest.raises(VMRuntimeError) as excinfo:
        run_vm(source)
    assert str(excinfo.value) == message


def test_fault_traceback_names_procedures():
    source = "Proc p\nPop\nRet\nEnd\nCall p"
    with pytest.raises(VMRuntimeError) as excinfo:
        run_vm(source)
    assert excinfo.value.pc == 1
    assert excinfo.value.frames == [
        TraceFrame(procedure="p", line=2, pc=1),
        TraceFrame(procedure="<main>", line=5, pc=4),
    ]


def test_max_steps_stops_infinite_loop():
    with pytest.raises(VMRuntimeError, match="step limit exceeded"):
        run_vm("label forever\nJump forever", max_steps=100)


def test_debug_trace_goes_to_trace_stream():
    trace = io.StringIO()
    run_vm("Push 1\nPop", trace=trace)
    assert trace.getvalue() == ""
    vm = StackVM(assemble_source("Push 1\nPop"), out=io.StringIO(), trace=trace)
    vm.run(debug=True)
    lines = trace.getvalue().splitlines()
    assert lines[0] == "[PC=0] EXEC: Push 1"
    assert lines[1] == "  STACK: []"
    assert lines[3] == "[PC=1] EXEC: Pop"
    assert lines[4] == "  STACK: [1]"


def test_snapshot_state():
    vm = StackVM(assemble_source("Proc p\nPush 3\nRet\nEnd\nPush 1\nCall p"), out=io.StringIO())
    for _ in range(4):
        vm.step()
    snapshot = vm.snapshot_state()
    assert snapshot.pc == 2
    assert snapshot.stack == [1, 3]
    assert snapshot.frames == [(1, 6)]
    assert snapshot.steps == 4
    assert not snapshot.halted
    assert [frame.procedure for frame in snapshot.call_stack] == ["p", "<main>"]


def test_vm_accepts_plain_instruction_list():
    vm = StackVM(
        [Instruction(Opcode.PUSH, 6), Instruction(Opcode.PUSH, 7), Instruction(Opcode.MUL)],
        out=io.StringIO(),
    )
    vm.run()
    assert vm.stack.values == [42]


def test_stack_wrapper():
    stack = Stack([1, 2])
    assert len(stack) == 2
    stack.replace_top(5)
    assert stack.values == [1, 5]
    with pytest.raises(IndexError):
        stack.get(-1)
    with pytest.raises(IndexError):
        Stack().replace_top(1)
