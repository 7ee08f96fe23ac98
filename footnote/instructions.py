from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List

from footnote.cpu import CPUState
from footnote.errors import DivideByZero
from footnote.model import Instruction


@dataclass
class ExecResult:
    next_pc: int | None = None
    halt: bool = False
    output: str | None = None


@dataclass(frozen=True)
class InstructionDef:
    mnemonic: str
    opcode: int
    operands: List[str]
    summary: str
    description: str
    syntax: str
    executor: Callable[[CPUState, Instruction], ExecResult]

    @property
    def size(self) -> int:
        return 1 + len(self.operands)


Executor = Callable[[CPUState, Instruction], ExecResult]

INSTRUCTION_IMPLS: Dict[str, Executor] = {}


def register_instruction_impl(mnemonic: str, executor: Executor) -> None:
    INSTRUCTION_IMPLS[mnemonic.upper()] = executor


def get_instruction_executor(mnemonic: str) -> Executor | None:
    return INSTRUCTION_IMPLS.get(mnemonic.upper())


def _bool(value: bool) -> int:
    return 1 if value else 0


def _pop_pair(cpu: CPUState) -> tuple[int, int]:
    b = cpu.pop()
    a = cpu.pop()
    return a, b


def exec_halt(cpu: CPUState, instr: Instruction) -> ExecResult:
    return ExecResult(halt=True)


def exec_nop(cpu: CPUState, instr: Instruction) -> ExecResult:
    return ExecResult()


def exec_push(cpu: CPUState, instr: Instruction) -> ExecResult:
    cpu.push(instr.operands[0])
    return ExecResult()


def exec_pop(cpu: CPUState, instr: Instruction) -> ExecResult:
    cpu.pop()
    return ExecResult()


def exec_dup(cpu: CPUState, instr: Instruction) -> ExecResult:
    cpu.push(cpu.peek())
    return ExecResult()


def exec_swap(cpu: CPUState, instr: Instruction) -> ExecResult:
    a, b = _pop_pair(cpu)
    cpu.push(b)
    cpu.push(a)
    return ExecResult()


def exec_over(cpu: CPUState, instr: Instruction) -> ExecResult:
    a, b = _pop_pair(cpu)
    cpu.push(a)
    cpu.push(b)
    cpu.push(a)
    return ExecResult()


def exec_add(cpu: CPUState, instr: Instruction) -> ExecResult:
    a, b = _pop_pair(cpu)
    cpu.push(a + b)
    return ExecResult()


def exec_sub(cpu: CPUState, instr: Instruction) -> ExecResult:
    a, b = _pop_pair(cpu)
    cpu.push(a - b)
    return ExecResult()


def exec_mul(cpu: CPUState, instr: Instruction) -> ExecResult:
    a, b = _pop_pair(cpu)
    cpu.push(a * b)
    return ExecResult()


def _truncated_quotient(a: int, b: int) -> int:
    quotient = abs(a) // abs(b)
    return quotient if (a < 0) == (b < 0) else -quotient


def exec_div(cpu: CPUState, instr: Instruction) -> ExecResult:
    a, b = _pop_pair(cpu)
    if b == 0:
        raise DivideByZero(f"Division of {a} by zero", value=a)
    cpu.push(_truncated_quotient(a, b))
    return ExecResult()


def exec_mod(cpu: CPUState, instr: Instruction) -> ExecResult:
    a, b = _pop_pair(cpu)
    if b == 0:
        raise DivideByZero(f"Remainder of {a} by zero", value=a)
    cpu.push(a - b * _truncated_quotient(a, b))
    return ExecResult()


def exec_neg(cpu: CPUState, instr: Instruction) -> ExecResult:
    cpu.push(-cpu.pop())
    return ExecResult()


def exec_eq(cpu: CPUState, instr: Instruction) -> ExecResult:
    a, b = _pop_pair(cpu)
    cpu.push(_bool(a == b))
    return ExecResult()


def exec_lt(cpu: CPUState, instr: Instruction) -> ExecResult:
    a, b = _pop_pair(cpu)
    cpu.push(_bool(a < b))
    return ExecResult()


def exec_gt(cpu: CPUState, instr: Instruction) -> ExecResult:
    a, b = _pop_pair(cpu)
    cpu.push(_bool(a > b))
    return ExecResult()


def exec_not(cpu: CPUState, instr: Instruction) -> ExecResult:
    cpu.push(_bool(cpu.pop() == 0))
    return ExecResult()


def exec_jmp(cpu: CPUState, instr: Instruction) -> ExecResult:
    return ExecResult(next_pc=instr.operands[0])


def exec_jz(cpu: CPUState, instr: Instruction) -> ExecResult:
    if cpu.pop() == 0:
        return ExecResult(next_pc=instr.operands[0])
    return ExecResult()


def exec_jnz(cpu: CPUState, instr: Instruction) -> ExecResult:
    if cpu.pop() != 0:
        return ExecResult(next_pc=instr.operands[0])
    return ExecResult()


def exec_call(cpu: CPUState, instr: Instruction) -> ExecResult:
    cpu.push(instr.address + instr.size)
    return ExecResult(next_pc=instr.operands[0])


def exec_ret(cpu: CPUState, instr: Instruction) -> ExecResult:
    return ExecResult(next_pc=cpu.pop())


def exec_load(cpu: CPUState, instr: Instruction) -> ExecResult:
    cpu.push(cpu.memory.read(instr.operands[0]))
    return ExecResult()


def exec_store(cpu: CPUState, instr: Instruction) -> ExecResult:
    cpu.memory.write(instr.operands[0], cpu.pop())
    return ExecResult()


def exec_loadi(cpu: CPUState, instr: Instruction) -> ExecResult:
    address = cpu.pop()
    cpu.push(cpu.memory.read(address))
    return ExecResult()


def exec_storei(cpu: CPUState, instr: Instruction) -> ExecResult:
    address = cpu.pop()
    value = cpu.pop()
    cpu.memory.write(address, value)
    return ExecResult()


def exec_print(cpu: CPUState, instr: Instruction) -> ExecResult:
    return ExecResult(output=f"{cpu.pop()}\n")


def exec_printc(cpu: CPUState, instr: Instruction) -> ExecResult:
    value = cpu.pop()
    # surrogates and code points outside unicode print as the replacement character
    if 0 <= value <= 0x10FFFF and not 0xD800 <= value <= 0xDFFF:
        return ExecResult(output=chr(value))
    return ExecResult(output="\ufffd")


def exec_read(cpu: CPUState, instr: Instruction) -> ExecResult:
    cpu.push(cpu.read_input())
    return ExecResult()


register_instruction_impl("HALT", exec_halt)
register_instruction_impl("NOP", exec_nop)
register_instruction_impl("PUSH", exec_push)
register_instruction_impl("POP", exec_pop)
register_instruction_impl("DUP", exec_dup)
register_instruction_impl("SWAP", exec_swap)
register_instruction_impl("OVER", exec_over)
register_instruction_impl("ADD", exec_add)
register_instruction_impl("SUB", exec_sub)
register_instruction_impl("MUL", exec_mul)
register_instruction_impl("DIV", exec_div)
register_instruction_impl("MOD", exec_mod)
register_instruction_impl("NEG", exec_neg)
register_instruction_impl("EQ", exec_eq)
register_instruction_impl("LT", exec_lt)
register_instruction_impl("GT", exec_gt)
register_instruction_impl("NOT", exec_not)
register_instruction_impl("JMP", exec_jmp)
register_instruction_impl("JZ", exec_jz)
register_instruction_impl("JNZ", exec_jnz)
register_instruction_impl("CALL", exec_call)
register_instruction_impl("RET", exec_ret)
register_instruction_impl("LOAD", exec_load)
register_instruction_impl("STORE", exec_store)
register_instruction_impl("LOADI", exec_loadi)
register_instruction_impl("STOREI", exec_storei)
register_instruction_impl("PRINT", exec_print)
register_instruction_impl("PRINTC", exec_printc)
register_instruction_impl("READ", exec_read)
