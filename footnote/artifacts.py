"""Text artifacts exchanged with the outside world.

- the compiled program (``name.i``): one decimal word per line, address order
- ``symbols.txt``: ``label, address`` per line
- ``linemap.txt``: ``address, source_line`` per line

Only the compiled program is ever read back.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, TextIO

from footnote.errors import MalformedProgram
from footnote.memory import fits_word


log = logging.getLogger(__name__)


def write_program(words: Iterable[int], stream: TextIO) -> int:
    count = 0
    for word in words:
        stream.write(f"{word}\n")
        count += 1
    return count


def read_program(stream: Iterable[str]) -> List[int]:
    words: List[int] = []
    for line_no, raw_line in enumerate(stream, start=1):
        text = raw_line.strip()
        if not text:
            continue
        try:
            value = int(text, 10)
        except ValueError as exc:
            raise MalformedProgram(f"Not a decimal word: {text!r}", line_no, raw_line.rstrip("\n")) from exc
        if not fits_word(value):
            raise MalformedProgram(f"Word {value} does not fit in 32 bits", line_no, raw_line.rstrip("\n"))
        words.append(value)
    return words


def save_program(words: Iterable[int], path: Path | str) -> int:
    with open(path, "w", encoding="utf-8") as handle:
        count = write_program(words, handle)
    log.debug("Wrote %d words to %s", count, path)
    return count


def load_program(path: Path | str) -> List[int]:
    with open(path, "r", encoding="utf-8") as handle:
        words = read_program(handle)
    log.debug("Read %d words from %s", len(words), path)
    return words


def write_symbols(symbols: Dict[str, int], stream: TextIO) -> None:
    for name, address in symbols.items():
        stream.write(f"{name}, {address}\n")


def write_line_map(line_map: Dict[int, int], stream: TextIO) -> None:
    for address in sorted(line_map):
        stream.write(f"{address}, {line_map[address]}\n")


def save_symbols(symbols: Dict[str, int], path: Path | str) -> None:
    with open(path, "w", encoding="utf-8") as handle:
        write_symbols(symbols, handle)


def save_line_map(line_map: Dict[int, int], path: Path | str) -> None:
    with open(path, "w", encoding="utf-8") as handle:
        write_line_map(line_map, handle)
