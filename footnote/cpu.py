from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, TextIO

from footnote.errors import InvalidInput, StackUnderflow
from footnote.lexer import parse_literal
from footnote.memory import Memory, fits_word


REGISTER_ORDER = ["PC", "SP"]


@dataclass
class CPUState:
    memory: Memory
    pc: int = 0
    sp: int = field(default=-1)
    input_stream: Optional[TextIO] = None

    def __post_init__(self) -> None:
        if self.sp < 0:
            self.sp = self.memory.capacity

    @property
    def stack_base(self) -> int:
        return self.memory.capacity

    def reset(self) -> None:
        self.pc = 0
        self.sp = self.stack_base

    def get_reg(self, name: str) -> int:
        upper = name.upper()
        if upper == "PC":
            return self.pc
        if upper == "SP":
            return self.sp
        raise KeyError(name)

    def set_reg(self, name: str, value: int) -> None:
        upper = name.upper()
        if upper == "PC":
            self.pc = value
        elif upper == "SP":
            self.sp = value
        else:
            raise KeyError(name)

    def depth(self) -> int:
        return max(0, self.stack_base - self.sp)

    def push(self, value: int) -> None:
        # the write faults before sp moves, so a failed push leaves sp intact
        self.memory.write(self.sp - 1, value)
        self.sp -= 1

    def pop(self) -> int:
        if self.sp >= self.stack_base:
            raise StackUnderflow("Pop from an empty stack", address=self.sp)
        value = self.memory.read(self.sp)
        self.sp += 1
        return value

    def peek(self) -> int:
        if self.sp >= self.stack_base:
            raise StackUnderflow("Stack is empty", address=self.sp)
        return self.memory.read(self.sp)

    def stack_values(self) -> List[int]:
        return [self.memory.read(addr) for addr in range(self.sp, self.stack_base) if self.memory.in_bounds(addr)]

    def read_input(self) -> int:
        if self.input_stream is None:
            raise InvalidInput("No input stream attached")
        try:
            line = self.input_stream.readline()
        except OSError as exc:
            raise InvalidInput(f"Cannot read input: {exc}") from exc
        if not line:
            raise InvalidInput("End of input")
        text = line.strip()
        value = parse_literal(text)
        if value is None:
            raise InvalidInput(f"Not an integer: {text!r}")
        if not fits_word(value):
            raise InvalidInput(f"Input {value} does not fit in a word", value=value)
        return value
