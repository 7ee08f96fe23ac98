
import pytest

from footnote.errors import MalformedSource
from footnote.lexer import read_tokens, tokenize


def test_tokens_carry_their_line_numbers():
    tokens = list(tokenize("start: PUSH 3\n\n  PUSH   4 ; four\nADD\tHALT\n"))
    assert [(tok.text, tok.line_no) for tok in tokens] == [
        ("start:", 1),
        ("PUSH", 1),
        ("3", 1),
        ("PUSH", 3),
        ("4", 3),
        ("ADD", 4),
        ("HALT", 4),
    ]


@pytest.mark.parametrize(
    "text",
    [
        "",
        "\n\n",
        "; only a comment\n",
        "   ;PUSH 1\n\t\n",
    ],
)
def test_blank_and_comment_only_sources_produce_no_tokens(text):
    assert list(tokenize(text)) == []


def test_comment_without_leading_space_ends_the_token():
    tokens = list(tokenize("PUSH 1;comment\n"))
    assert [tok.text for tok in tokens] == ["PUSH", "1"]


def test_label_token_is_flagged():
    label, mnemonic = tokenize("loop: DUP")
    assert label.is_label
    assert not mnemonic.is_label


def test_reader_is_lazy():
    consumed = []

    def lines():
        for line in ("PUSH 1\n", "PUSH 2\n"):
            consumed.append(line)
            yield line

    tokens = read_tokens(lines())
    assert next(tokens).text == "PUSH"
    assert consumed == ["PUSH 1\n"]


def test_read_failure_becomes_malformed_source():
    class BrokenStream:
        def __iter__(self):
            yield "PUSH 1\n"
            raise OSError("disk gone")

    tokens = read_tokens(BrokenStream())
    assert next(tokens).text == "PUSH"
    next(tokens)
    with pytest.raises(MalformedSource) as exc:
        next(tokens)
    assert exc.value.line_no == 2
    assert "disk gone" in exc.value.message
