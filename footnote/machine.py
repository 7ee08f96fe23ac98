from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Tuple, Union

from footnote.config import MachineConfig
from footnote.cpu import CPUState
from footnote.errors import (
    FetchOutOfBounds,
    IllegalInstruction,
    MachineFault,
    MachineStateError,
    ProgramTooLarge,
    StepLimitExceeded,
)
from footnote.instructions import ExecResult, InstructionDef
from footnote.isa import InstructionSetManager, isa_manager
from footnote.memory import Memory
from footnote.model import Instruction, Program


log = logging.getLogger(__name__)


class MachineState(Enum):
    CONSTRUCTED = "Constructed"
    LOADED = "Loaded"
    RUNNING = "Running"
    HALTED = "Halted"
    FAULTED = "Faulted"


@dataclass
class StepOutcome:
    halted: bool = False
    fault: Optional[MachineFault] = None
    output: Optional[str] = None
    instruction: Optional[Instruction] = None


class StackMachine:
    """Fetch-execute loop over one flat memory.

    Code is loaded from address 0 and the operand stack grows down from the
    top of memory, so a program that pushes deep enough runs into its own
    code. That is allowed; only accesses outside memory fault.
    """

    def __init__(self, config: Optional[MachineConfig] = None, isa: Optional[InstructionSetManager] = None) -> None:
        self.config = config or MachineConfig()
        self.isa = isa or isa_manager
        self.memory = Memory(self.config.memory_size)
        input_stream = self.config.input_stream if self.config.input_stream is not None else sys.stdin
        self.cpu = CPUState(self.memory, input_stream=input_stream)
        self.state = MachineState.CONSTRUCTED
        self.fault: Optional[MachineFault] = None
        self.steps = 0
        self._next_free = 0

    @property
    def pc(self) -> int:
        return self.cpu.pc

    @property
    def sp(self) -> int:
        return self.cpu.sp

    @property
    def capacity(self) -> int:
        return self.memory.capacity

    def _require_loadable(self) -> None:
        if self.state not in (MachineState.CONSTRUCTED, MachineState.LOADED):
            raise MachineStateError(f"Cannot load a program into a machine that is {self.state.value}")

    def load(self, words: Union[Program, Iterable[int]]) -> None:
        if isinstance(words, Program):
            words = words.words
        self._require_loadable()
        program = list(words)
        if len(program) > self.memory.capacity:
            raise ProgramTooLarge(len(program), self.memory.capacity)
        self.memory.clear()
        self.memory.load(program)
        self.cpu.reset()
        self._next_free = len(program)
        self.state = MachineState.LOADED
        log.debug("Loaded %d words into %d words of memory", len(program), self.memory.capacity)

    def load_word(self, word: int) -> None:
        self._require_loadable()
        if self._next_free >= self.memory.capacity:
            raise ProgramTooLarge(self._next_free + 1, self.memory.capacity)
        self.memory.write(self._next_free, word)
        self._next_free += 1
        self.state = MachineState.LOADED

    def decode(self, address: int) -> Instruction:
        return self._decode(address)[1]

    def _decode(self, address: int) -> Tuple[InstructionDef, Instruction]:
        if not self.memory.in_bounds(address):
            raise FetchOutOfBounds(
                f"Program counter {address} is outside memory 0..{self.memory.capacity - 1}",
                address=address,
            )
        opcode = self.memory.read(address)
        defn = self.isa.lookup_opcode(opcode)
        if defn is None:
            raise IllegalInstruction(f"Unknown opcode {opcode}", address=address, value=opcode)
        operands: List[int] = []
        for offset in range(1, defn.size):
            operand_address = address + offset
            if not self.memory.in_bounds(operand_address):
                raise FetchOutOfBounds(
                    f"Operand of {defn.mnemonic} at {operand_address} is outside memory",
                    address=operand_address,
                )
            operands.append(self.memory.read(operand_address))
        return defn, Instruction(address=address, opcode=opcode, mnemonic=defn.mnemonic, operands=operands)

    def step(self) -> StepOutcome:
        if self.state is MachineState.CONSTRUCTED:
            raise MachineStateError("No program loaded")
        if self.state is MachineState.HALTED:
            return StepOutcome(halted=True)
        if self.state is MachineState.FAULTED:
            return StepOutcome(fault=self.fault)

        self.state = MachineState.RUNNING
        pc = self.cpu.pc
        try:
            if self.config.max_steps is not None and self.steps >= self.config.max_steps:
                raise StepLimitExceeded(f"Step limit of {self.config.max_steps} reached")
            defn, instr = self._decode(pc)
            result: ExecResult = defn.executor(self.cpu, instr)
        except MachineFault as fault:
            return self._record_fault(fault, pc)

        self.steps += 1
        if result.output:
            self._emit(result.output)
        if result.halt:
            self.state = MachineState.HALTED
            log.debug("Halted at pc=%d after %d steps", pc, self.steps)
            return StepOutcome(halted=True, output=result.output, instruction=instr)

        self.cpu.pc = result.next_pc if result.next_pc is not None else pc + instr.size
        return StepOutcome(output=result.output, instruction=instr)

    def run(self) -> MachineState:
        if self.state is not MachineState.LOADED:
            raise MachineStateError(f"run() requires a loaded machine, state is {self.state.value}")
        while True:
            outcome = self.step()
            if outcome.fault:
                raise outcome.fault
            if outcome.halted:
                return self.state

    def _record_fault(self, fault: MachineFault, pc: int) -> StepOutcome:
        if fault.pc is None:
            fault.pc = pc
        self.fault = fault
        self.state = MachineState.FAULTED
        log.warning("Machine faulted: %s", fault)
        return StepOutcome(fault=fault)

    def _emit(self, text: str) -> None:
        stream = self.config.output_stream if self.config.output_stream is not None else sys.stdout
        stream.write(text)

    def stack(self) -> List[int]:
        return self.cpu.stack_values()

    def peek(self) -> int:
        return self.cpu.peek()

    def snapshot(self) -> dict:
        return {
            "state": self.state.value,
            "pc": self.cpu.pc,
            "sp": self.cpu.sp,
            "steps": self.steps,
            "memory": self.memory.snapshot(),
        }
