from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional


@dataclass(frozen=True)
class Token:
    text: str
    line_no: int

    @property
    def is_label(self) -> bool:
        return self.text.endswith(":")


@dataclass(frozen=True)
class Instruction:
    address: int
    opcode: int
    mnemonic: str
    operands: List[int]

    @property
    def size(self) -> int:
        return 1 + len(self.operands)

    @property
    def text(self) -> str:
        return " ".join([self.mnemonic] + [str(op) for op in self.operands])


@dataclass(frozen=True)
class Program:
    words: List[int]
    symbols: Dict[str, int] = field(default_factory=dict)
    line_map: Dict[int, int] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.words)

    def lines(self) -> Iterator[str]:
        for word in self.words:
            yield str(word)

    def get_label(self, name: str) -> Optional[int]:
        return self.symbols.get(name)

    def source_line(self, address: int) -> Optional[int]:
        """Line of the instruction that owns ``address``.

        Operand words have no entry of their own, so the closest mapped
        address at or below ``address`` wins.
        """
        if address < 0 or address >= len(self.words):
            return None
        best: Optional[int] = None
        for mapped in self.line_map:
            if mapped <= address and (best is None or mapped > best):
                best = mapped
        if best is None:
            return None
        return self.line_map[best]
