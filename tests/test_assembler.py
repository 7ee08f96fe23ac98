from pathlib import Path

import pytest

from footnote.assembler import Assembler, assemble, build_symbol_table, emit_program, parse_literal
from footnote.errors import AssemblerStateError, DuplicateSymbol, MalformedSource, UndefinedSymbol
from footnote.lexer import tokenize


def test_push_push_add_halt_assembles_to_six_words():
    program = assemble("PUSH 3\nPUSH 4\nADD\nHALT\n")
    assert program.words == [1, 3, 1, 4, 10, 0]
    assert program.line_map == {0: 1, 2: 2, 4: 3, 5: 4}
    assert program.symbols == {}


def test_labels_bind_to_the_following_instruction():
    program = assemble(
        """
start:  PUSH 1
loop:   DUP
        JNZ loop
end:
        HALT
        """
    )
    assert program.symbols == {"start": 0, "loop": 2, "end": 5}
    assert program.words == [1, 1, 3, 32, 2, 0]


def test_forward_and_backward_references_resolve_identically():
    forward = assemble("JMP target\nNOP\ntarget: HALT\nJMP target\n")
    target = forward.symbols["target"]
    assert target == 3
    assert forward.words[1] == target
    assert forward.words[5] == target


def test_label_only_source_binds_to_end():
    program = assemble("only:\n")
    assert program.words == []
    assert program.symbols == {"only": 0}


def test_two_labels_on_one_address():
    program = assemble("a: b: HALT")
    assert program.symbols == {"a": 0, "b": 0}


def test_duplicate_label_is_rejected():
    with pytest.raises(DuplicateSymbol) as exc:
        assemble("twice: NOP\nPUSH 1\ntwice: HALT\n")
    assert exc.value.name == "twice"
    assert exc.value.line_no == 3
    assert exc.value.first_line == 1


def test_labels_are_case_sensitive():
    program = assemble("Loop: NOP\nloop: HALT\n")
    assert program.symbols == {"Loop": 0, "loop": 1}


def test_undefined_label_is_rejected_with_its_line():
    with pytest.raises(UndefinedSymbol) as exc:
        assemble("PUSH 1\nJMP nowhere\n")
    assert exc.value.name == "nowhere"
    assert exc.value.line_no == 2
    assert str(exc.value) == "line 2: Undefined label: nowhere"


@pytest.mark.parametrize(
    "source, fragment",
    [
        ("FROB 1\n", "Unknown instruction: FROB"),
        ("PUSH\n", "expects 1 operand(s), found 0"),
        ("PUSH lbl:\nlbl: HALT\n", "found label definition"),
        ("PUSH 4294967296\n", "does not fit"),
        ("PUSH 1abc\n", "Invalid operand"),
        ("9lives: HALT\n", "Invalid label name"),
        ("WORD\n", "expects 1 operand(s)"),
    ],
)
def test_malformed_source_is_rejected(source, fragment):
    with pytest.raises(MalformedSource) as exc:
        assemble(source)
    assert fragment in exc.value.message


def test_mnemonics_are_case_insensitive():
    assert assemble("push 2\nPush 3\nmul\nhalt\n").words == [1, 2, 1, 3, 12, 0]


def test_word_directive_emits_raw_data():
    program = assemble("LOAD counter\nHALT\ncounter: WORD -5\ntable: WORD counter\n")
    assert program.words == [40, 3, 0, -5, 3]
    assert program.symbols == {"counter": 3, "table": 4}
    assert program.line_map[3] == 3


@pytest.mark.parametrize(
    "text, expected",
    [
        ("0", 0),
        ("42", 42),
        ("-7", -7),
        ("0x1F", 31),
        ("0X1f", 31),
        ("-0x10", -16),
        ("label", None),
        ("0x", None),
        ("--1", None),
        ("1_000", None),
        ("+5", None),
        (" 5", None),
    ],
)
def test_parse_literal(text, expected):
    assert parse_literal(text) == expected


def test_passes_can_be_driven_separately():
    tokens = list(tokenize("CALL sub\nHALT\nsub: RET\n"))
    symbols = build_symbol_table(tokens)
    assert symbols == {"sub": 3}
    words, line_map = emit_program(tokens, symbols)
    assert words == [33, 3, 0, 34]
    assert line_map == {0: 1, 2: 2, 3: 3}


def test_accessors_before_assembly_are_refused():
    assembler = Assembler.from_string("HALT")
    with pytest.raises(AssemblerStateError):
        assembler.program()
    with pytest.raises(AssemblerStateError):
        assembler.symbol_table()


def test_reassembling_is_idempotent():
    assembler = Assembler.from_string("top: PUSH top\nJMP top\n")
    first = assembler.assemble()
    second = assembler.assemble()
    assert first == second
    assert assembler.program() == [1, 0, 30, 0]
    assert assembler.program_lines() == ["1", "0", "30", "0"]


def test_failed_reassembly_exposes_no_partial_program(tmp_path: Path):
    source = tmp_path / "prog.ftnt"
    source.write_text("HALT\n", encoding="utf-8")
    assembler = Assembler(source)
    assembler.assemble()
    source.write_text("JMP missing\n", encoding="utf-8")
    with pytest.raises(UndefinedSymbol):
        assembler.assemble()
    with pytest.raises(AssemblerStateError):
        assembler.line_map()


def test_accessors_return_copies():
    assembler = Assembler.from_string("x: HALT")
    assembler.assemble()
    assembler.symbol_table()["x"] = 99
    assembler.program().append(7)
    assert assembler.symbol_table() == {"x": 0}
    assert assembler.program() == [0]


def test_missing_file_is_malformed_source(tmp_path: Path):
    with pytest.raises(MalformedSource) as exc:
        Assembler(tmp_path / "absent.ftnt").assemble()
    assert "Cannot open" in exc.value.message
