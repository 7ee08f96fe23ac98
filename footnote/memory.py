from __future__ import annotations

from typing import Iterable, List

from footnote.errors import OutOfBounds


WORD_BITS = 32
WORD_MASK = (1 << WORD_BITS) - 1
WORD_MIN = -(1 << (WORD_BITS - 1))
WORD_MAX = (1 << (WORD_BITS - 1)) - 1


def wrap_word(value: int) -> int:
    value &= WORD_MASK
    if value > WORD_MAX:
        value -= 1 << WORD_BITS
    return value


def fits_word(value: int) -> bool:
    return WORD_MIN <= value <= WORD_MAX


class Memory:
    """Flat word-addressed store shared by code, data and the operand stack."""

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError(f"Memory capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._cells: List[int] = [0] * capacity

    def __len__(self) -> int:
        return self.capacity

    def in_bounds(self, address: int) -> bool:
        return 0 <= address < self.capacity

    def _check(self, address: int, action: str) -> None:
        if not self.in_bounds(address):
            raise OutOfBounds(
                f"{action} of address {address} outside memory 0..{self.capacity - 1}",
                address=address,
            )

    def read(self, address: int) -> int:
        self._check(address, "Read")
        return self._cells[address]

    def write(self, address: int, value: int) -> None:
        self._check(address, "Write")
        self._cells[address] = wrap_word(value)

    def load(self, words: Iterable[int], start: int = 0) -> int:
        address = start
        for word in words:
            self.write(address, word)
            address += 1
        return address - start

    def clear(self) -> None:
        self._cells = [0] * self.capacity

    def snapshot(self) -> List[int]:
        return list(self._cells)
