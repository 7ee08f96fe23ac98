import io
from pathlib import Path

import pytest

from footnote import cli
from footnote.config import RunMode


COUNTDOWN = """
        PUSH 3
loop:   DUP
        PRINT
        PUSH 1
        SUB
        DUP
        JNZ loop
        HALT
"""


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_source_only_is_assembled_beside_it(tmp_path: Path, capsys):
    _write(tmp_path / "count.ftnt", COUNTDOWN)
    assert cli.main([str(tmp_path / "count")]) == 0
    compiled = tmp_path / "count.i"
    assert compiled.read_text(encoding="utf-8").splitlines()[:4] == ["1", "3", "3", "50"]
    assert capsys.readouterr().out == ""


def test_compiled_only_is_run(tmp_path: Path, capsys):
    _write(tmp_path / "seven.i", "1\n3\n1\n4\n10\n50\n0\n")
    assert cli.main([str(tmp_path / "seven.i")]) == 0
    assert capsys.readouterr().out == "7\n"


def test_both_present_assembles_then_runs(tmp_path: Path, capsys):
    _write(tmp_path / "count.ftnt", COUNTDOWN)
    _write(tmp_path / "count.i", "0\n")
    assert cli.main([str(tmp_path / "count.ftnt")]) == 0
    assert capsys.readouterr().out == "3\n2\n1\n"
    assert (tmp_path / "count.i").read_text(encoding="utf-8").startswith("1\n3\n")


def test_explicit_mode_overrides_discovery(tmp_path: Path, capsys):
    _write(tmp_path / "count.ftnt", COUNTDOWN)
    assert cli.main(["--mode", "both", str(tmp_path / "count")]) == 0
    assert capsys.readouterr().out == "3\n2\n1\n"


def test_outfile_gets_the_compiled_extension(tmp_path: Path):
    _write(tmp_path / "count.ftnt", COUNTDOWN)
    assert cli.main([str(tmp_path / "count"), str(tmp_path / "renamed")]) == 0
    assert (tmp_path / "renamed.i").exists()
    assert not (tmp_path / "count.i").exists()


def test_debug_dumps_land_in_working_directory(tmp_path: Path, monkeypatch):
    src_dir = tmp_path / "src"
    src_dir.mkdir()
    _write(src_dir / "count.ftnt", COUNTDOWN)
    monkeypatch.chdir(tmp_path)
    assert cli.main(["--sym", "--lines", str(src_dir / "count")]) == 0
    assert (tmp_path / "symbols.txt").read_text(encoding="utf-8") == "loop, 2\n"
    assert (tmp_path / "linemap.txt").read_text(encoding="utf-8").splitlines()[:3] == ["0, 2", "2, 3", "3, 4"]


def test_dumps_without_assembly_only_warn(tmp_path: Path, monkeypatch, capsys):
    _write(tmp_path / "halt.i", "0\n")
    monkeypatch.chdir(tmp_path)
    assert cli.main(["--sym", str(tmp_path / "halt")]) == 0
    assert "only be used during assembly" in capsys.readouterr().err
    assert not (tmp_path / "symbols.txt").exists()


def test_read_uses_standard_input(tmp_path: Path, monkeypatch, capsys):
    _write(tmp_path / "echo.ftnt", "READ\nPUSH 2\nMUL\nPRINT\nHALT\n")
    monkeypatch.setattr("sys.stdin", io.StringIO("21\n"))
    assert cli.main(["--mode", "both", str(tmp_path / "echo")]) == 0
    assert capsys.readouterr().out == "42\n"


def test_runtime_fault_reports_source_line(tmp_path: Path, capsys):
    _write(tmp_path / "boom.ftnt", "PUSH 1\nPUSH 0\nDIV\nHALT\n")
    _write(tmp_path / "boom.i", "")
    assert cli.main([str(tmp_path / "boom")]) == 1
    err = capsys.readouterr().err
    assert "DivideByZero at pc=4" in err
    assert "(source line 3)" in err


def test_fault_without_source_has_no_line(tmp_path: Path, capsys):
    _write(tmp_path / "pop.i", "2\n")
    assert cli.main([str(tmp_path / "pop")]) == 1
    err = capsys.readouterr().err
    assert "StackUnderflow" in err
    assert "source line" not in err


def test_assembly_error_is_reported(tmp_path: Path, capsys):
    _write(tmp_path / "bad.ftnt", "PUSH 1\nJMP nowhere\n")
    assert cli.main([str(tmp_path / "bad")]) == 1
    assert "line 2: Undefined label: nowhere" in capsys.readouterr().err
    assert not (tmp_path / "bad.i").exists()


def test_malformed_compiled_file_is_reported(tmp_path: Path, capsys):
    _write(tmp_path / "junk.i", "1\nseven\n")
    assert cli.main([str(tmp_path / "junk")]) == 1
    assert "line 2" in capsys.readouterr().err


def test_program_larger_than_memory(tmp_path: Path, capsys):
    _write(tmp_path / "count.ftnt", COUNTDOWN)
    assert cli.main(["--memory", "4", "--mode", "both", str(tmp_path / "count")]) == 1
    assert "does not fit" in capsys.readouterr().err


def test_step_limit_stops_a_runaway_program(tmp_path: Path, capsys):
    _write(tmp_path / "spin.ftnt", "top: JMP top\n")
    assert cli.main(["--max-steps", "50", "--mode", "both", str(tmp_path / "spin")]) == 1
    assert "StepLimitExceeded" in capsys.readouterr().err


def test_missing_input_is_an_error(tmp_path: Path, capsys):
    assert cli.main([str(tmp_path / "nothing")]) == 1
    assert "No input file specified." in capsys.readouterr().err


def test_run_mode_needs_compiled_file(tmp_path: Path, capsys):
    _write(tmp_path / "count.ftnt", COUNTDOWN)
    assert cli.main(["--mode", "run", str(tmp_path / "count")]) == 1
    assert "Could not open" in capsys.readouterr().err


@pytest.mark.parametrize("argv", [["--memory", "0", "x"], ["--memory", "lots", "x"], ["--mode", "fly", "x"], []])
def test_bad_invocation_exits_with_usage(argv, capsys):
    with pytest.raises(SystemExit) as exc:
        cli.main(argv)
    assert exc.value.code == 2
    assert "usage: footnote" in capsys.readouterr().err


def test_version(capsys):
    with pytest.raises(SystemExit) as exc:
        cli.main(["--version"])
    assert exc.value.code == 0
    assert capsys.readouterr().out.strip() == "Footnote version 0.1"


def test_parse_options_fills_driver_options():
    options = cli.parse_options(["--sym", "--memory", "512", "--mode", "assemble", "prog", "out"])
    assert options.infile == "prog"
    assert options.outfile == "out"
    assert options.mode is RunMode.ASSEMBLE
    assert options.dump_symbols and not options.dump_lines
    assert options.memory_size == 512
    assert options.wants_dumps
