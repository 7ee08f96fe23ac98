from __future__ import annotations

from enum import Enum
from typing import Optional


class FootnoteError(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AssemblyError(FootnoteError):
    def __init__(self, message: str, line_no: int = 0, text: str = "") -> None:
        super().__init__(message)
        self.line_no = line_no
        self.text = text

    def __str__(self) -> str:
        if self.line_no:
            return f"line {self.line_no}: {self.message}"
        return self.message


class MalformedSource(AssemblyError):
    pass


class DuplicateSymbol(AssemblyError):
    def __init__(self, name: str, line_no: int, first_line: int) -> None:
        super().__init__(f"Duplicate label: {name} (first defined on line {first_line})", line_no, name)
        self.name = name
        self.first_line = first_line


class UndefinedSymbol(AssemblyError):
    def __init__(self, name: str, line_no: int) -> None:
        super().__init__(f"Undefined label: {name}", line_no, name)
        self.name = name


class AssemblerStateError(FootnoteError):
    pass


class MalformedProgram(FootnoteError):
    def __init__(self, message: str, line_no: int, text: str) -> None:
        super().__init__(message)
        self.line_no = line_no
        self.text = text

    def __str__(self) -> str:
        return f"line {self.line_no}: {self.message}"


class ISAError(FootnoteError):
    pass


class MachineError(FootnoteError):
    pass


class ProgramTooLarge(MachineError):
    def __init__(self, size: int, capacity: int) -> None:
        super().__init__(f"Program of {size} words does not fit in {capacity} words of memory")
        self.size = size
        self.capacity = capacity


class MachineStateError(MachineError):
    pass


class FaultKind(Enum):
    OUT_OF_BOUNDS = "OutOfBounds"
    FETCH_OUT_OF_BOUNDS = "FetchOutOfBounds"
    STACK_UNDERFLOW = "StackUnderflow"
    DIVIDE_BY_ZERO = "DivideByZero"
    ILLEGAL_INSTRUCTION = "IllegalInstruction"
    INVALID_INPUT = "InvalidInput"
    STEP_LIMIT_EXCEEDED = "StepLimitExceeded"


class MachineFault(MachineError):
    """A runtime condition that stops the machine for good.

    ``pc`` is the address of the instruction being executed when the fault
    was raised. It is filled in by the machine if the raising code did not
    know it (memory accesses, for example).
    """

    kind: FaultKind

    def __init__(
        self,
        message: str,
        pc: Optional[int] = None,
        address: Optional[int] = None,
        value: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.pc = pc
        self.address = address
        self.value = value

    def __str__(self) -> str:
        if self.pc is None:
            return f"{self.kind.value}: {self.message}"
        return f"{self.kind.value} at pc={self.pc}: {self.message}"


class OutOfBounds(MachineFault):
    kind = FaultKind.OUT_OF_BOUNDS


class FetchOutOfBounds(MachineFault):
    kind = FaultKind.FETCH_OUT_OF_BOUNDS


class StackUnderflow(MachineFault):
    kind = FaultKind.STACK_UNDERFLOW


class DivideByZero(MachineFault):
    kind = FaultKind.DIVIDE_BY_ZERO


class IllegalInstruction(MachineFault):
    kind = FaultKind.ILLEGAL_INSTRUCTION


class InvalidInput(MachineFault):
    kind = FaultKind.INVALID_INPUT


class StepLimitExceeded(MachineFault):
    kind = FaultKind.STEP_LIMIT_EXCEEDED
