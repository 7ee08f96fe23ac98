"""
Two-pass assembler for Footnote source (``*.ftnt``).

Source grammar, one token stream split on whitespace (``;`` starts a comment):

    name:               label definition, bound to the address of whatever
                        instruction follows
    MNEMONIC operand*   instruction from the active instruction set; the number
                        of operands is fixed per mnemonic
    WORD value          raw data word

An operand is an integer literal (``42``, ``-7``, ``0x1F``) or a label name.
Labels are case-sensitive, mnemonics are not.

Pass 1 walks the tokens with an address counter and binds labels. Pass 2 walks
them again, emits one word per opcode and per operand, swaps label references
for their addresses and records which source line produced each instruction.
Because pass 1 finishes before pass 2 starts, labels may be used before they
are defined.
"""

from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, TextIO, Tuple, Union

from footnote.errors import AssemblerStateError, DuplicateSymbol, MalformedSource, UndefinedSymbol
from footnote.isa import InstructionSetManager, isa_manager
from footnote.lexer import parse_literal, read_tokens
from footnote.memory import fits_word
from footnote.model import Program, Token


log = logging.getLogger(__name__)

IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

# directive -> operand count; a directive emits its operands and no opcode
DIRECTIVES = {"WORD": 1}


@dataclass(frozen=True)
class LabelDef:
    name: str
    token: Token


@dataclass(frozen=True)
class Statement:
    token: Token
    mnemonic: str
    opcode: Optional[int]
    operands: List[Token]

    @property
    def size(self) -> int:
        return len(self.operands) + (0 if self.opcode is None else 1)


def _check_operand(mnemonic: str, operand: Token) -> None:
    if operand.is_label:
        raise MalformedSource(
            f"{mnemonic} expects an operand, found label definition {operand.text}",
            operand.line_no,
            operand.text,
        )
    value = parse_literal(operand.text)
    if value is not None:
        if not fits_word(value):
            raise MalformedSource(f"Literal {operand.text} does not fit in a 32-bit word", operand.line_no, operand.text)
        return
    if not IDENT_RE.fullmatch(operand.text):
        raise MalformedSource(f"Invalid operand for {mnemonic}: {operand.text}", operand.line_no, operand.text)


def _walk(tokens: List[Token], isa: InstructionSetManager) -> Iterator[Union[LabelDef, Statement]]:
    index = 0
    while index < len(tokens):
        token = tokens[index]
        index += 1
        if token.is_label:
            name = token.text[:-1]
            if not IDENT_RE.fullmatch(name):
                raise MalformedSource(f"Invalid label name: {token.text}", token.line_no, token.text)
            yield LabelDef(name=name, token=token)
            continue

        mnemonic = token.text.upper()
        if mnemonic in DIRECTIVES:
            opcode = None
            operand_count = DIRECTIVES[mnemonic]
        else:
            defn = isa.lookup_mnemonic(mnemonic)
            if defn is None:
                raise MalformedSource(f"Unknown instruction: {token.text}", token.line_no, token.text)
            opcode = defn.opcode
            operand_count = len(defn.operands)

        operands = tokens[index:index + operand_count]
        if len(operands) < operand_count:
            raise MalformedSource(
                f"{mnemonic} expects {operand_count} operand(s), found {len(operands)}",
                token.line_no,
                token.text,
            )
        index += operand_count
        for operand in operands:
            _check_operand(mnemonic, operand)
        yield Statement(token=token, mnemonic=mnemonic, opcode=opcode, operands=list(operands))


def build_symbol_table(tokens: List[Token], isa: Optional[InstructionSetManager] = None) -> Dict[str, int]:
    isa = isa or isa_manager
    symbols: Dict[str, int] = {}
    defined_on: Dict[str, int] = {}
    address = 0
    for item in _walk(tokens, isa):
        if isinstance(item, LabelDef):
            if item.name in symbols:
                raise DuplicateSymbol(item.name, item.token.line_no, defined_on[item.name])
            symbols[item.name] = address
            defined_on[item.name] = item.token.line_no
            continue
        address += item.size
    return symbols


def emit_program(
    tokens: List[Token], symbols: Dict[str, int], isa: Optional[InstructionSetManager] = None
) -> Tuple[List[int], Dict[int, int]]:
    isa = isa or isa_manager
    words: List[int] = []
    line_map: Dict[int, int] = {}
    for item in _walk(tokens, isa):
        if isinstance(item, LabelDef):
            continue
        line_map[len(words)] = item.token.line_no
        if item.opcode is not None:
            words.append(item.opcode)
        for operand in item.operands:
            value = parse_literal(operand.text)
            if value is None:
                if operand.text not in symbols:
                    raise UndefinedSymbol(operand.text, operand.line_no)
                value = symbols[operand.text]
            words.append(value)
    return words, line_map


class Assembler:
    def __init__(self, path: Path | str, isa: Optional[InstructionSetManager] = None) -> None:
        self.path = Path(path)
        self.name = str(path)
        self.isa = isa or isa_manager
        self._text: Optional[str] = None
        self._result: Optional[Program] = None

    @classmethod
    def from_string(
        cls, text: str, name: str = "<string>", isa: Optional[InstructionSetManager] = None
    ) -> "Assembler":
        assembler = cls(name, isa)
        assembler._text = text
        return assembler

    def _open(self) -> TextIO:
        if self._text is not None:
            return io.StringIO(self._text)
        try:
            return self.path.open("r", encoding="utf-8")
        except OSError as exc:
            raise MalformedSource(f"Cannot open {self.path}: {exc}") from exc

    def assemble(self) -> Program:
        self._result = None
        with self._open() as stream:
            tokens = list(read_tokens(stream))
        symbols = build_symbol_table(tokens, self.isa)
        words, line_map = emit_program(tokens, symbols, self.isa)
        self._result = Program(words=words, symbols=symbols, line_map=line_map)
        log.debug(
            "Assembled %s: %d words, %d instructions, %d symbols",
            self.name,
            len(words),
            len(line_map),
            len(symbols),
        )
        return self._result

    @property
    def result(self) -> Program:
        if self._result is None:
            raise AssemblerStateError(f"{self.name} has not been assembled")
        return self._result

    def program(self) -> List[int]:
        return list(self.result.words)

    def program_lines(self) -> List[str]:
        return list(self.result.lines())

    def symbol_table(self) -> Dict[str, int]:
        return dict(self.result.symbols)

    def line_map(self) -> Dict[int, int]:
        return dict(self.result.line_map)


def assemble(text: str, isa: Optional[InstructionSetManager] = None) -> Program:
    return Assembler.from_string(text, isa=isa).assemble()
