"""Tests for the line table and anchor parsing."""

import pytest

from editplane.core.errors import InvalidRequestError, PreconditionFailedError
from editplane.core.hashing import compute_line_hash
from editplane.hashline.anchors import (
    format_hashed_lines,
    parse_line_ref,
    resolve_line,
    show_lines,
    split_lines,
)

HASH_A = compute_line_hash("a")


class TestSplitLines:
    """Terminator handling."""

    def test_mixed_terminators(self) -> None:
        data = b"a\r\nb\rc\nd"
        lines = split_lines(data)

        assert [ln.content for ln in lines] == ["a", "b", "c", "d"]
        assert [data[ln.content_end : ln.end] for ln in lines] == [b"\r\n", b"\r", b"\n", b""]
        assert not lines[-1].has_terminator

    def test_trailing_newline_adds_no_line(self) -> None:
        assert len(split_lines(b"a\nb\n")) == 2

    def test_empty_file(self) -> None:
        assert split_lines(b"") == []

    def test_blank_lines_are_lines(self) -> None:
        assert [ln.content for ln in split_lines(b"\n\nx")] == ["", "", "x"]

    def test_hash_excludes_terminator(self) -> None:
        assert split_lines(b"a\r\n")[0].hash == split_lines(b"a")[0].hash == HASH_A


class TestParseLineRef:
    """Anchor syntax."""

    def test_plain(self) -> None:
        ref = parse_line_ref(f"3:{HASH_A}")
        assert (ref.line, ref.hash) == (3, HASH_A)

    def test_display_suffix_and_case_tolerated(self) -> None:
        ref = parse_line_ref(f" 3:{HASH_A.upper()}|a ")
        assert (ref.line, ref.hash) == (3, HASH_A)

    @pytest.mark.parametrize(
        ("anchor", "message"),
        [
            ("3", "expected format"),
            (f"x:{HASH_A}", "positive integer"),
            (f"0:{HASH_A}", ">= 1"),
            ("3:abc", "exactly 12 hex chars"),
            ("3:zzzzzzzzzzzz", "only hex characters"),
        ],
    )
    def test_invalid(self, anchor: str, message: str) -> None:
        with pytest.raises(InvalidRequestError, match=message):
            parse_line_ref(anchor)


class TestResolveLine:
    """Strict resolution."""

    def test_matching_line(self) -> None:
        lines = split_lines(b"x\na\n")
        assert resolve_line(f"2:{HASH_A}", lines).start == 2

    def test_stale_hash(self) -> None:
        with pytest.raises(PreconditionFailedError):
            resolve_line(f"1:{HASH_A}", split_lines(b"x\na\n"))

    def test_out_of_range(self) -> None:
        with pytest.raises(InvalidRequestError, match=r"out of range for current file \(1..=2\)"):
            resolve_line(f"5:{HASH_A}", split_lines(b"x\na\n"))


class TestShow:
    """Display formats."""

    def test_format_hashed_lines(self) -> None:
        assert format_hashed_lines(b"a\r\n") == f"1:{HASH_A}|a"

    def test_show_lines(self) -> None:
        assert show_lines(b"a") == [{"line": 1, "hash": HASH_A, "content": "a"}]
