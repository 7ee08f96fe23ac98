from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, TextIO


DEFAULT_MEMORY_SIZE = 256
SOURCE_SUFFIX = ".ftnt"
PROGRAM_SUFFIX = ".i"
SYMBOLS_FILE = "symbols.txt"
LINE_MAP_FILE = "linemap.txt"
VERSION = "Footnote version 0.1"


@dataclass
class MachineConfig:
    memory_size: int = DEFAULT_MEMORY_SIZE
    max_steps: Optional[int] = None
    input_stream: Optional[TextIO] = None
    output_stream: Optional[TextIO] = None

    def __post_init__(self) -> None:
        if self.memory_size <= 0:
            raise ValueError(f"Memory size must be positive, got {self.memory_size}")
        if self.max_steps is not None and self.max_steps <= 0:
            raise ValueError(f"Step limit must be positive, got {self.max_steps}")


class RunMode(Enum):
    AUTO = "auto"
    ASSEMBLE = "assemble"
    RUN = "run"
    BOTH = "both"


@dataclass
class DriverOptions:
    infile: str
    outfile: Optional[str] = None
    mode: RunMode = RunMode.AUTO
    dump_symbols: bool = False
    dump_lines: bool = False
    memory_size: int = DEFAULT_MEMORY_SIZE
    max_steps: Optional[int] = None
    verbose: bool = False

    def machine_config(
        self, input_stream: Optional[TextIO] = None, output_stream: Optional[TextIO] = None
    ) -> MachineConfig:
        return MachineConfig(
            memory_size=self.memory_size,
            max_steps=self.max_steps,
            input_stream=input_stream,
            output_stream=output_stream,
        )

    @property
    def wants_dumps(self) -> bool:
        return self.dump_symbols or self.dump_lines


def strip_suffix(path: Path) -> Path:
    if path.suffix in (SOURCE_SUFFIX, PROGRAM_SUFFIX):
        return path.with_suffix("")
    return path
