"""Tests for encoding and line-ending helpers."""

from __future__ import annotations

import pytest

from tiller.text import (
    decode,
    default_line_ending,
    detect_encoding,
    detect_line_ending,
    encode,
    has_bom,
    normalize_line_ending,
    split_lines,
)


class TestDetectEncoding:
    def test_utf16le_bom(self) -> None:
        assert detect_encoding(b"\xff\xfeh\x00i\x00") == "utf16le"

    def test_utf8_bom(self) -> None:
        assert detect_encoding(b"\xef\xbb\xbfhello") == "utf8"

    def test_valid_utf8(self) -> None:
        assert detect_encoding("héllo".encode("utf-8")) == "utf8"

    def test_invalid_utf8_falls_back_to_ascii(self) -> None:
        assert detect_encoding(b"caf\xe9 \xff") == "ascii"

    def test_empty(self) -> None:
        assert detect_encoding(b"") == "utf8"

    def test_ascii_tag_round_trips_arbitrary_bytes(self) -> None:
        data = bytes(range(256))
        assert encode(decode(data, "ascii"), "ascii") == data

    def test_decode_drops_bom(self) -> None:
        assert decode(b"\xff\xfe" + "line\r\n".encode("utf-16-le"), "utf16le") == "line\r\n"
        assert decode(b"\xef\xbb\xbfhi", "utf8") == "hi"

    def test_encode_writes_bom_on_request(self) -> None:
        assert encode("line", "utf16le", bom=True) == b"\xff\xfe" + "line".encode("utf-16-le")
        assert encode("hi", "utf8", bom=True) == b"\xef\xbb\xbfhi"
        assert encode("hi", "utf8") == b"hi"

    def test_encode_never_doubles_bom(self) -> None:
        assert encode("\ufeffhi", "utf8", bom=True) == b"\xef\xbb\xbfhi"

    def test_has_bom(self) -> None:
        assert has_bom(b"\xff\xfeh\x00", "utf16le")
        assert has_bom(b"\xef\xbb\xbfh", "utf8")
        assert not has_bom(b"h", "utf8")
        assert not has_bom(b"\xef\xbb\xbf", "ascii")


class TestLineEndings:
    def test_lf(self) -> None:
        assert detect_line_ending("a\nb\nc") == "LF"

    def test_crlf(self) -> None:
        assert detect_line_ending("a\r\nb\r\nc") == "CRLF"

    def test_tie_resolves_to_lf(self) -> None:
        assert detect_line_ending("a\r\nb\nc") == "LF"

    def test_crlf_must_strictly_win(self) -> None:
        assert detect_line_ending("a\r\nb\r\nc\nd") == "CRLF"
        assert detect_line_ending("a\r\nb\nc\nd") == "LF"

    def test_no_breaks(self) -> None:
        assert detect_line_ending("single line") == "LF"

    @pytest.mark.parametrize("text", ["a\nb", "a\r\nb\nc", "a\rb\r\n", "", "x\n\n\r\n"])
    @pytest.mark.parametrize("style", ["LF", "CRLF"])
    def test_normalize_is_idempotent(self, text: str, style: str) -> None:
        once = normalize_line_ending(text, style)  # type: ignore[arg-type]
        assert normalize_line_ending(once, style) == once  # type: ignore[arg-type]

    def test_normalize_to_crlf_detects_crlf(self) -> None:
        assert detect_line_ending(normalize_line_ending("a\nb\r\nc\n", "CRLF")) == "CRLF"

    def test_normalize_to_lf(self) -> None:
        assert normalize_line_ending("a\r\nb\rc\n", "LF") == "a\nb\nc\n"

    def test_default_line_ending(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("tiller.text.sys.platform", "win32")
        assert default_line_ending() == "CRLF"
        monkeypatch.setattr("tiller.text.sys.platform", "linux")
        assert default_line_ending() == "LF"

    def test_split_lines(self) -> None:
        assert split_lines("a\r\nb\nc") == ["a", "b", "c"]
