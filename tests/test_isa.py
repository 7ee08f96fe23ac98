import json
from pathlib import Path

import pytest

from footnote.assembler import assemble
from footnote.errors import ISAError, MalformedSource
from footnote.isa import InstructionSetManager, isa_manager


def _write_sheet(path: Path, data: dict) -> None:
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def _sheet(*instructions: dict, **overrides) -> dict:
    data = {
        "schema_version": 1,
        "name": "Test sheet",
        "word_bits": 32,
        "instructions": list(instructions),
    }
    data.update(overrides)
    return data


HALT = {"mnemonic": "halt", "opcode": 0, "summary": "Stop"}
PUSH = {"mnemonic": "push", "opcode": 1, "operands": ["value"], "summary": "Push"}


def test_default_sheet_is_active():
    assert isa_manager.active_sheet.name == "Footnote stack machine"
    assert isa_manager.lookup_mnemonic("push").opcode == 1
    assert isa_manager.lookup_opcode(33).mnemonic == "CALL"
    assert isa_manager.lookup_opcode(7) is None
    assert len(isa_manager.definitions()) == 29
    assert [d.opcode for d in isa_manager.definitions()] == sorted(d.opcode for d in isa_manager.definitions())


def test_syntax_lists_operand_kinds():
    assert isa_manager.lookup_mnemonic("JMP").syntax == "JMP <address>"
    assert isa_manager.lookup_mnemonic("ADD").syntax == "ADD"


def test_bundled_sheets_are_listed():
    assert isa_manager.default_path in isa_manager.list_bundled()


def test_reduced_sheet_rejects_missing_instruction(tmp_path: Path):
    path = tmp_path / "tiny.json"
    _write_sheet(path, _sheet(HALT, PUSH))
    isa_manager.load_from_path(path)
    assert assemble("PUSH 1\nHALT\n").words == [1, 1, 0]
    with pytest.raises(MalformedSource) as exc:
        assemble("PUSH 1\nPUSH 2\nADD\n")
    assert "Unknown instruction: ADD" in exc.value.message


def test_sheet_may_renumber_opcodes(tmp_path: Path):
    path = tmp_path / "renumbered.json"
    _write_sheet(path, _sheet(dict(HALT, opcode=99), dict(PUSH, opcode=7)))
    isa_manager.load_from_path(path)
    assert assemble("PUSH 5 HALT").words == [7, 5, 99]


def test_change_callbacks_fire_on_load(tmp_path: Path):
    manager = InstructionSetManager()
    seen = []
    manager.on_change(lambda sheet: seen.append(sheet.name))
    path = tmp_path / "named.json"
    _write_sheet(path, _sheet(HALT, name="Named"))
    manager.load_from_path(path)
    manager.reload()
    assert seen == ["Named", "Named"]


@pytest.mark.parametrize(
    "data, fragment",
    [
        (_sheet(HALT, schema_version=2), "Unsupported schema_version"),
        (_sheet(HALT, word_bits=64), "32-bit"),
        (_sheet(), "non-empty"),
        (_sheet(HALT, dict(HALT, opcode=5)), "Duplicate mnemonic"),
        (_sheet(HALT, dict(PUSH, opcode=0)), "Opcode 0 used by both"),
        (_sheet(dict(HALT, opcode=-1)), "non-negative"),
        (_sheet(dict(HALT, opcode=True)), "non-negative"),
        (_sheet(dict(PUSH, operands=["register"])), "unsupported operand type"),
        (_sheet({"mnemonic": "word", "opcode": 3, "summary": "Data"}), "reserved"),
        (_sheet({"mnemonic": "halt", "opcode": 0}), "missing summary"),
        (_sheet({"mnemonic": "fly", "opcode": 3, "summary": "Fly"}), "not implemented"),
    ],
)
def test_invalid_sheets_are_rejected(tmp_path: Path, data, fragment):
    path = tmp_path / "bad.json"
    _write_sheet(path, data)
    with pytest.raises(ISAError) as exc:
        isa_manager.load_from_path(path)
    assert fragment in exc.value.message
    assert isa_manager.active_sheet.name == "Footnote stack machine"


def test_unreadable_sheets_are_rejected(tmp_path: Path):
    with pytest.raises(ISAError):
        isa_manager.load_from_path(tmp_path / "missing.json")
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(ISAError) as exc:
        isa_manager.load_from_path(broken)
    assert "Invalid JSON" in exc.value.message
