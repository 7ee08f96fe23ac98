from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from footnote.errors import ISAError
from footnote.instructions import InstructionDef, get_instruction_executor


log = logging.getLogger(__name__)

ALLOWED_OPERANDS = {"value", "address"}
RESERVED_MNEMONICS = {"WORD"}
SUPPORTED_WORD_BITS = 32


@dataclass(frozen=True)
class SheetInstruction:
    mnemonic: str
    opcode: int
    operands: List[str]
    summary: str
    description: str
    examples: List[str]


@dataclass(frozen=True)
class InstructionSheet:
    schema_version: int
    name: str
    description: str
    word_bits: int
    instructions: List[SheetInstruction]


def _default_sheet_path() -> Path:
    return Path(__file__).resolve().parent / "assets" / "isa" / "footnote_v1.json"


class InstructionSetManager:
    def __init__(self, default_path: Optional[Path] = None) -> None:
        self.default_path = default_path or _default_sheet_path()
        self.active_sheet: Optional[InstructionSheet] = None
        self.active_path: Optional[Path] = None
        self._by_mnemonic: Dict[str, InstructionDef] = {}
        self._by_opcode: Dict[int, InstructionDef] = {}
        self._callbacks: List[Callable[[InstructionSheet], None]] = []
        self.load_default()

    def on_change(self, callback: Callable[[InstructionSheet], None]) -> None:
        self._callbacks.append(callback)

    def _emit_change(self) -> None:
        if not self.active_sheet:
            return
        for callback in list(self._callbacks):
            callback(self.active_sheet)

    def list_bundled(self) -> List[Path]:
        if not self.default_path.exists():
            return []
        return sorted(self.default_path.parent.glob("*.json"))

    def load_default(self) -> InstructionSheet:
        return self.load_from_path(self.default_path)

    def load_from_path(self, path: Path | str) -> InstructionSheet:
        resolved = Path(path).expanduser().resolve()
        data = self._load_json(resolved)
        sheet = self._validate_sheet(data, resolved)
        self._activate_sheet(sheet)
        self.active_sheet = sheet
        self.active_path = resolved
        log.debug("Activated instruction set %r (%d instructions) from %s", sheet.name, len(sheet.instructions), resolved)
        self._emit_change()
        return sheet

    def reload(self) -> InstructionSheet:
        if self.active_path:
            return self.load_from_path(self.active_path)
        return self.load_default()

    def lookup_mnemonic(self, mnemonic: str) -> Optional[InstructionDef]:
        return self._by_mnemonic.get(mnemonic.upper())

    def lookup_opcode(self, opcode: int) -> Optional[InstructionDef]:
        return self._by_opcode.get(opcode)

    def definitions(self) -> List[InstructionDef]:
        return sorted(self._by_opcode.values(), key=lambda defn: defn.opcode)

    def mnemonics(self) -> set[str]:
        return set(self._by_mnemonic)

    def _activate_sheet(self, sheet: InstructionSheet) -> None:
        by_mnemonic: Dict[str, InstructionDef] = {}
        by_opcode: Dict[int, InstructionDef] = {}
        for instruction in sheet.instructions:
            executor = get_instruction_executor(instruction.mnemonic)
            if not executor:
                raise ISAError(f"Instruction '{instruction.mnemonic}' is not implemented by the machine.")
            defn = InstructionDef(
                mnemonic=instruction.mnemonic,
                opcode=instruction.opcode,
                operands=list(instruction.operands),
                summary=instruction.summary,
                description=instruction.description,
                syntax=self._format_syntax(instruction),
                executor=executor,
            )
            by_mnemonic[defn.mnemonic] = defn
            by_opcode[defn.opcode] = defn
        self._by_mnemonic = by_mnemonic
        self._by_opcode = by_opcode

    def _format_syntax(self, instruction: SheetInstruction) -> str:
        if not instruction.operands:
            return instruction.mnemonic
        return f"{instruction.mnemonic} " + " ".join(f"<{op}>" for op in instruction.operands)

    def _load_json(self, path: Path) -> dict:
        if not path.exists():
            raise ISAError(f"Instruction set sheet not found: {path}")
        try:
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except json.JSONDecodeError as exc:
            raise ISAError(f"Invalid JSON in {path}: {exc}") from exc
        except OSError as exc:
            raise ISAError(f"Failed to read instruction set sheet: {exc}") from exc

    def _validate_sheet(self, data: dict, path: Path) -> InstructionSheet:
        if not isinstance(data, dict):
            raise ISAError("Instruction set sheet must be a JSON object.")
        schema_version = data.get("schema_version")
        if not isinstance(schema_version, int) or isinstance(schema_version, bool):
            raise ISAError("schema_version must be an integer.")
        if schema_version != 1:
            raise ISAError(f"Unsupported schema_version: {schema_version}")
        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ISAError("name is required and must be a string.")
        description = data.get("description") or ""
        if not isinstance(description, str):
            raise ISAError("description must be a string if provided.")
        word_bits = data.get("word_bits")
        if word_bits != SUPPORTED_WORD_BITS:
            raise ISAError(f"Only {SUPPORTED_WORD_BITS}-bit words are supported, got {word_bits}.")
        instructions_data = data.get("instructions")
        if not isinstance(instructions_data, list) or not instructions_data:
            raise ISAError("instructions must be a non-empty array.")
        instructions: List[SheetInstruction] = []
        seen_mnemonics: set[str] = set()
        seen_opcodes: Dict[int, str] = {}
        for idx, entry in enumerate(instructions_data, start=1):
            instruction = self._validate_instruction(entry, idx, path)
            if instruction.mnemonic in seen_mnemonics:
                raise ISAError(f"Duplicate mnemonic in instruction set sheet: {instruction.mnemonic}")
            if instruction.opcode in seen_opcodes:
                raise ISAError(
                    f"Opcode {instruction.opcode} used by both {seen_opcodes[instruction.opcode]} "
                    f"and {instruction.mnemonic}"
                )
            seen_mnemonics.add(instruction.mnemonic)
            seen_opcodes[instruction.opcode] = instruction.mnemonic
            instructions.append(instruction)
        return InstructionSheet(
            schema_version=schema_version,
            name=name.strip(),
            description=description.strip(),
            word_bits=word_bits,
            instructions=instructions,
        )

    def _validate_instruction(self, entry: dict, index: int, path: Path) -> SheetInstruction:
        if not isinstance(entry, dict):
            raise ISAError(f"Instruction #{index} must be an object in {path}.")
        mnemonic = entry.get("mnemonic")
        if not isinstance(mnemonic, str) or not mnemonic.strip():
            raise ISAError(f"Instruction #{index} is missing mnemonic.")
        mnemonic = mnemonic.strip().upper()
        if mnemonic in RESERVED_MNEMONICS:
            raise ISAError(f"{mnemonic} is reserved for the assembler.")
        opcode = entry.get("opcode")
        if not isinstance(opcode, int) or isinstance(opcode, bool) or opcode < 0:
            raise ISAError(f"Instruction {mnemonic} opcode must be a non-negative integer.")
        summary = entry.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            raise ISAError(f"Instruction {mnemonic} is missing summary.")
        description = entry.get("description") or ""
        if not isinstance(description, str):
            raise ISAError(f"Instruction {mnemonic} description must be a string.")
        operands = entry.get("operands")
        if operands is None:
            operands = []
        if not isinstance(operands, list) or any(not isinstance(op, str) for op in operands):
            raise ISAError(f"Instruction {mnemonic} operands must be a list of strings.")
        for op in operands:
            if op not in ALLOWED_OPERANDS:
                raise ISAError(f"Instruction {mnemonic} has unsupported operand type: {op}")
        examples = entry.get("examples") or []
        if not isinstance(examples, list) or any(not isinstance(ex, str) for ex in examples):
            raise ISAError(f"Instruction {mnemonic} examples must be an array of strings.")
        return SheetInstruction(
            mnemonic=mnemonic,
            opcode=opcode,
            operands=list(operands),
            summary=summary.strip(),
            description=description.strip(),
            examples=examples,
        )


isa_manager = InstructionSetManager()
