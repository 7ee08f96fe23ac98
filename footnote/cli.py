"""
footnote - assemble and run Footnote programs

Usage:
    footnote [--sym] [--lines] [--memory N] [--max-steps N]
             [--mode auto|assemble|run|both] [--verbose] infile [outfile]

``infile`` names a program with or without its extension. In ``auto`` mode
the directory of ``infile`` decides what happens:

    name.ftnt only        assemble it to name.i
    name.i only           run name.i
    both                  assemble name.ftnt over name.i, then run it

Examples:
    footnote countdown              # countdown.ftnt -> countdown.i
    footnote --sym --lines fib      # also write symbols.txt and linemap.txt
    footnote --mode run fib.i       # run a compiled program
    footnote --memory 1024 sieve out
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from footnote.artifacts import load_program, save_line_map, save_program, save_symbols
from footnote.assembler import Assembler
from footnote.config import (
    DEFAULT_MEMORY_SIZE,
    LINE_MAP_FILE,
    PROGRAM_SUFFIX,
    SOURCE_SUFFIX,
    SYMBOLS_FILE,
    VERSION,
    DriverOptions,
    RunMode,
    strip_suffix,
)
from footnote.errors import AssemblyError, FootnoteError, MachineFault, MalformedProgram
from footnote.machine import StackMachine
from footnote.model import Program


log = logging.getLogger(__name__)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _positive_int(flag: str):
    def parse(value: str) -> int:
        try:
            amount = int(value)
        except ValueError:
            raise argparse.ArgumentTypeError(f"{flag}: cannot construct virtual machine with a limit of {value}")
        if amount <= 0:
            raise argparse.ArgumentTypeError(f"{flag}: amount must be positive")
        return amount

    return parse


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="footnote",
        description="Assembler and stack machine for Footnote programs",
    )
    parser.add_argument("infile", help="Program name, with or without .ftnt/.i extension")
    parser.add_argument("outfile", nargs="?", default=None, help="Compiled output name (.i is appended)")
    parser.add_argument("--version", action="version", version=VERSION)
    parser.add_argument("--sym", action="store_true", help=f"Save the symbol table to {SYMBOLS_FILE}")
    parser.add_argument("--lines", action="store_true", help=f"Save the address to source line map to {LINE_MAP_FILE}")
    parser.add_argument(
        "--memory",
        type=_positive_int("--memory"),
        default=DEFAULT_MEMORY_SIZE,
        help=f"Number of 32-bit words available to the machine (default: {DEFAULT_MEMORY_SIZE})",
    )
    parser.add_argument(
        "--max-steps",
        type=_positive_int("--max-steps"),
        default=None,
        help="Fault the run after this many instructions",
    )
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in RunMode],
        default=RunMode.AUTO.value,
        help="What to do with infile (default: decide from the files present)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log details to stderr")
    return parser


def parse_options(argv: Optional[List[str]] = None) -> DriverOptions:
    args = build_parser().parse_args(argv)
    return DriverOptions(
        infile=args.infile,
        outfile=args.outfile,
        mode=RunMode(args.mode),
        dump_symbols=args.sym,
        dump_lines=args.lines,
        memory_size=args.memory,
        max_steps=args.max_steps,
        verbose=args.verbose,
    )


def discover(options: DriverOptions) -> Tuple[RunMode, Path, Path]:
    """Pick the mode and the source/compiled pair for ``options.infile``.

    Raises ``FileNotFoundError`` when the files the mode needs are missing.
    """
    base = strip_suffix(Path(options.infile))
    source = base.with_name(base.name + SOURCE_SUFFIX)
    compiled = base.with_name(base.name + PROGRAM_SUFFIX)
    if options.outfile:
        out_base = strip_suffix(Path(options.outfile))
        compiled_out = out_base.with_name(out_base.name + PROGRAM_SUFFIX)
    else:
        compiled_out = compiled

    mode = options.mode
    if mode is RunMode.AUTO:
        if source.exists() and compiled.exists():
            mode = RunMode.BOTH
        elif source.exists():
            mode = RunMode.ASSEMBLE
        elif compiled.exists():
            mode = RunMode.RUN
        else:
            raise FileNotFoundError("No input file specified.")

    if mode is RunMode.RUN:
        if not compiled.exists():
            raise FileNotFoundError(f"Could not open {compiled}")
        return mode, compiled, compiled
    if not source.exists():
        raise FileNotFoundError(f"Could not open file: {source}")
    return mode, source, compiled_out


def assemble_file(source: Path, target: Path, options: DriverOptions) -> Program:
    assembler = Assembler(source)
    program = assembler.assemble()
    save_program(program.words, target)
    if options.dump_symbols:
        save_symbols(assembler.symbol_table(), SYMBOLS_FILE)
    if options.dump_lines:
        save_line_map(assembler.line_map(), LINE_MAP_FILE)
    log.info("Assembled %s -> %s (%d words)", source, target, len(program))
    return program


def run_machine(machine: StackMachine, program: Optional[Program] = None) -> int:
    try:
        machine.run()
    except MachineFault as fault:
        location = ""
        if program is not None and fault.pc is not None:
            line_no = program.source_line(fault.pc)
            if line_no is not None:
                location = f" (source line {line_no})"
        print(f"Machine fault: {fault}{location}", file=sys.stderr)
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    options = parse_options(argv)
    configure_logging(options.verbose)

    try:
        mode, source, compiled = discover(options)
    except FileNotFoundError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    if options.wants_dumps and mode is RunMode.RUN:
        print("--sym and --lines can only be used during assembly.", file=sys.stderr)

    program: Optional[Program] = None
    try:
        if mode in (RunMode.ASSEMBLE, RunMode.BOTH):
            program = assemble_file(source, compiled, options)
            if mode is RunMode.ASSEMBLE:
                return 0

        machine = StackMachine(options.machine_config(input_stream=sys.stdin, output_stream=sys.stdout))
        if mode is RunMode.BOTH:
            machine.load([])
            for word in load_program(compiled):
                machine.load_word(word)
        else:
            machine.load(load_program(compiled))
        return run_machine(machine, program)
    except AssemblyError as exc:
        print(f"Assembly error in {source}: {exc}", file=sys.stderr)
        return 1
    except MalformedProgram as exc:
        print(f"Bad compiled program {compiled}: {exc}", file=sys.stderr)
        return 1
    except FootnoteError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except OSError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
