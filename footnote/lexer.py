from __future__ import annotations

import io
import re
from typing import Iterable, Iterator, Optional

from footnote.errors import MalformedSource
from footnote.model import Token


COMMENT_CHAR = ";"
LITERAL_RE = re.compile(r"-?(?:0[xX][0-9A-Fa-f]+|\d+)")


def _strip_comment(line: str) -> str:
    return line.split(COMMENT_CHAR, 1)[0]


def parse_literal(text: str) -> Optional[int]:
    if not LITERAL_RE.fullmatch(text):
        return None
    negative = text.startswith("-")
    digits = text[1:] if negative else text
    value = int(digits, 16) if digits.lower().startswith("0x") else int(digits, 10)
    return -value if negative else value


def read_tokens(stream: Iterable[str]) -> Iterator[Token]:
    """Yield the whitespace-separated tokens of ``stream`` in source order.

    ``stream`` is anything that yields lines: an open text file, a list of
    strings, a ``StringIO``. Comments run from ``;`` to the end of the line.
    No syntax is checked here; read failures surface as ``MalformedSource``.
    """
    line_no = 0
    lines = iter(stream)
    while True:
        try:
            raw_line = next(lines)
        except StopIteration:
            return
        except (OSError, UnicodeDecodeError) as exc:
            raise MalformedSource(f"Cannot read source: {exc}", line_no + 1) from exc
        line_no += 1
        for text in _strip_comment(raw_line).split():
            yield Token(text=text, line_no=line_no)


def tokenize(text: str) -> Iterator[Token]:
    return read_tokens(io.StringIO(text))
