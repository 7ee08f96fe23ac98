import io

import pytest

from footnote.assembler import assemble
from footnote.config import MachineConfig
from footnote.cpu import CPUState
from footnote.errors import (
    DivideByZero,
    FaultKind,
    FetchOutOfBounds,
    IllegalInstruction,
    InvalidInput,
    MachineStateError,
    OutOfBounds,
    ProgramTooLarge,
    StackUnderflow,
    StepLimitExceeded,
)
from footnote.machine import MachineState, StackMachine
from footnote.memory import Memory


def _quiet_machine(memory_size: int = 16, **kwargs) -> StackMachine:
    return StackMachine(MachineConfig(memory_size=memory_size, output_stream=io.StringIO(), **kwargs))


def test_push_push_add_leaves_seven_on_top(make_machine):
    machine = make_machine("PUSH 3\nPUSH 4\nADD\nHALT\n")
    assert machine.run() is MachineState.HALTED
    assert machine.peek() == 7
    assert machine.stack() == [7]
    assert machine.state is MachineState.HALTED


def test_load_copies_program_exactly():
    words = [1, 2, 3, 4, 5]
    machine = _quiet_machine(8)
    machine.load(words)
    assert machine.state is MachineState.LOADED
    assert machine.memory.snapshot() == words + [0, 0, 0]
    assert machine.pc == 0
    assert machine.sp == 8


def test_program_may_fill_memory_exactly():
    machine = _quiet_machine(4)
    machine.load([0, 1, 2, 3])
    assert machine.memory.snapshot() == [0, 1, 2, 3]


def test_too_large_program_leaves_machine_constructed():
    machine = _quiet_machine(4)
    with pytest.raises(ProgramTooLarge) as exc:
        machine.load([0] * 5)
    assert exc.value.size == 5
    assert exc.value.capacity == 4
    assert machine.state is MachineState.CONSTRUCTED
    assert machine.memory.snapshot() == [0] * 4


def test_reload_overwrites_previous_program():
    machine = _quiet_machine(4)
    machine.load([7, 7, 7, 7])
    machine.load([0])
    assert machine.memory.snapshot() == [0, 0, 0, 0]


def test_load_word_streams_at_next_free_address():
    machine = _quiet_machine(4)
    for word in assemble("PUSH 9\nHALT\n").words:
        machine.load_word(word)
    assert machine.state is MachineState.LOADED
    assert machine.memory.snapshot() == [1, 9, 0, 0]
    machine.run()
    assert machine.stack() == [9]


def test_load_word_past_capacity_is_too_large():
    machine = _quiet_machine(2)
    machine.load_word(0)
    machine.load_word(0)
    with pytest.raises(ProgramTooLarge):
        machine.load_word(0)


def test_halt_only_program_changes_nothing_else():
    machine = _quiet_machine(8)
    machine.load(assemble("HALT"))
    before = machine.memory.snapshot()
    machine.run()
    assert machine.state is MachineState.HALTED
    assert machine.memory.snapshot() == before
    assert machine.pc == 0
    assert machine.steps == 1


def test_jump_out_of_memory_faults_on_fetch():
    machine = _quiet_machine(8)
    machine.load(assemble("JMP 1000\n"))
    with pytest.raises(FetchOutOfBounds) as exc:
        machine.run()
    assert machine.state is MachineState.FAULTED
    assert machine.fault is exc.value
    assert exc.value.kind is FaultKind.FETCH_OUT_OF_BOUNDS
    assert exc.value.address == 1000
    assert exc.value.pc == 1000


def test_running_off_the_end_of_memory_faults():
    machine = _quiet_machine(4)
    machine.load(assemble("NOP NOP NOP NOP"))
    with pytest.raises(FetchOutOfBounds):
        machine.run()
    assert machine.steps == 4


def test_operand_past_end_of_memory_faults():
    machine = _quiet_machine(2)
    machine.load([60, 1])
    with pytest.raises(FetchOutOfBounds) as exc:
        machine.run()
    assert exc.value.address == 2
    assert exc.value.pc == 1


def test_pop_of_empty_stack_underflows(make_machine):
    machine = make_machine("POP\nHALT\n")
    with pytest.raises(StackUnderflow) as exc:
        machine.run()
    assert exc.value.pc == 0
    assert machine.state is MachineState.FAULTED


def test_division_by_zero_faults(make_machine):
    machine = make_machine("PUSH 1\nPUSH 0\nDIV\nHALT\n")
    with pytest.raises(DivideByZero) as exc:
        machine.run()
    assert exc.value.pc == 4
    assert exc.value.value == 1


def test_push_below_address_zero_is_out_of_bounds():
    cpu = CPUState(Memory(2))
    cpu.push(1)
    cpu.push(2)
    with pytest.raises(OutOfBounds) as exc:
        cpu.push(3)
    assert exc.value.address == -1
    assert cpu.sp == 0
    assert cpu.stack_values() == [2, 1]


def test_store_outside_memory_faults(make_machine):
    machine = make_machine("PUSH 1\nSTORE 5000\nHALT\n")
    with pytest.raises(OutOfBounds) as exc:
        machine.run()
    assert exc.value.address == 5000
    assert exc.value.pc == 2


def test_unknown_opcode_is_illegal():
    machine = _quiet_machine(4)
    machine.load([999])
    with pytest.raises(IllegalInstruction) as exc:
        machine.run()
    assert exc.value.value == 999


def test_call_and_return(make_machine):
    machine = make_machine(
        """
        PUSH 6
        CALL square
        PRINT
        HALT
square: SWAP        ; return address under the argument
        DUP
        MUL
        SWAP
        RET
        """
    )
    machine.run()
    assert machine.config.output_stream.getvalue() == "36\n"
    assert machine.stack() == []


def test_countdown_loop_prints_each_value(make_machine):
    machine = make_machine(
        """
        PUSH 3
loop:   DUP
        PRINT
        PUSH 1
        SUB
        DUP
        JNZ loop
        POP
        HALT
        """
    )
    machine.run()
    assert machine.config.output_stream.getvalue() == "3\n2\n1\n"


def test_memory_cells_as_variables(make_machine):
    source = """
        PUSH 5
        STORE total
        LOAD total
        PUSH 2
        MUL
        STORE total
        HALT
total:  WORD 0
    """
    machine = make_machine(source)
    machine.run()
    assert machine.memory.read(assemble(source).symbols["total"]) == 10


def test_indirect_load_and_store(make_machine):
    machine = make_machine(
        """
        PUSH 42
        PUSH cell
        STOREI
        PUSH cell
        LOADI
        HALT
cell:   WORD 0
        """
    )
    machine.run()
    assert machine.stack() == [42]


def test_read_consumes_input_lines(make_machine):
    machine = make_machine("READ\nREAD\nADD\nPRINT\nHALT\n", stdin="40\n0x2\n")
    machine.run()
    assert machine.config.output_stream.getvalue() == "42\n"


@pytest.mark.parametrize("stdin", ["", "forty\n", "99999999999\n", "1_000\n", "+5\n", "1e3\n"])
def test_bad_input_faults(make_machine, stdin):
    machine = make_machine("READ\nHALT\n", stdin=stdin)
    with pytest.raises(InvalidInput):
        machine.run()


def test_printc_writes_characters(make_machine):
    machine = make_machine("PUSH 72\nPRINTC\nPUSH 105\nPRINTC\nHALT\n")
    machine.run()
    assert machine.config.output_stream.getvalue() == "Hi"


def test_printc_surrogate_halts_on_strict_utf8_stream():
    stream = io.TextIOWrapper(io.BytesIO(), encoding="utf-8")
    machine = StackMachine(MachineConfig(memory_size=32, output_stream=stream))
    machine.load(assemble("PUSH 55296\nPRINTC\nHALT\n"))
    assert machine.run() is MachineState.HALTED
    stream.flush()
    assert stream.buffer.getvalue() == "\ufffd".encode("utf-8")


def test_step_limit_stops_infinite_loop():
    machine = _quiet_machine(8, max_steps=10)
    machine.load(assemble("top: JMP top"))
    with pytest.raises(StepLimitExceeded):
        machine.run()
    assert machine.steps == 10


def test_step_walks_one_instruction_at_a_time(make_machine):
    machine = make_machine("PUSH 1\nPUSH 2\nHALT\n")
    outcome = machine.step()
    assert outcome.instruction.mnemonic == "PUSH"
    assert outcome.instruction.operands == [1]
    assert machine.state is MachineState.RUNNING
    assert machine.pc == 2
    machine.step()
    outcome = machine.step()
    assert outcome.halted
    assert machine.stack() == [2, 1]


def test_terminal_states_are_sticky(make_machine):
    machine = make_machine("POP")
    first = machine.step()
    assert first.fault is not None
    again = machine.step()
    assert again.fault is first.fault
    with pytest.raises(MachineStateError):
        machine.run()
    with pytest.raises(MachineStateError):
        machine.load([0])


def test_run_requires_a_loaded_program():
    machine = _quiet_machine()
    with pytest.raises(MachineStateError):
        machine.run()
    with pytest.raises(MachineStateError):
        machine.step()


def test_decode_describes_instruction(make_machine):
    machine = make_machine("PUSH -4\nHALT\n")
    instr = machine.decode(0)
    assert instr.text == "PUSH -4"
    assert instr.size == 2
