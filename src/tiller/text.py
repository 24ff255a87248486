"""Text helpers for encoding and line-ending handling.

Pure functions, no I/O.
"""

from __future__ import annotations

import re
import sys
from typing import Literal

Encoding = Literal["utf16le", "utf8", "ascii"]
LineEnding = Literal["CRLF", "LF"]

# Python codec used to decode/encode each encoding tag. "ascii" files are
# handled as latin-1 so arbitrary non-UTF-8 bytes survive a read/write cycle.
CODECS: dict[str, str] = {
    "utf16le": "utf-16-le",
    "utf8": "utf-8",
    "ascii": "latin-1",
}

_UTF16LE_BOM = b"\xff\xfe"
_UTF8_BOM = b"\xef\xbb\xbf"
_BOMS: dict[str, bytes] = {"utf16le": _UTF16LE_BOM, "utf8": _UTF8_BOM}

_LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")


def detect_encoding(data: bytes) -> Encoding:
    """Pick an encoding tag from a byte-order mark or UTF-8 validity."""
    if data.startswith(_UTF16LE_BOM):
        return "utf16le"
    if data.startswith(_UTF8_BOM):
        return "utf8"
    try:
        data.decode("utf-8")
    except UnicodeDecodeError:
        return "ascii"
    return "utf8"


def has_bom(data: bytes, encoding: Encoding) -> bool:
    bom = _BOMS.get(encoding)
    return bom is not None and data.startswith(bom)


def decode(data: bytes, encoding: Encoding) -> str:
    """Decode ``data``, dropping the byte-order mark if there is one."""
    if has_bom(data, encoding):
        data = data[len(_BOMS[encoding]) :]
    return data.decode(CODECS[encoding])


def encode(text: str, encoding: Encoding, bom: bool = False) -> bytes:
    """Encode ``text``, prefixing the byte-order mark when ``bom`` is set."""
    data = text.removeprefix("\ufeff").encode(CODECS[encoding])
    if bom and encoding in _BOMS:
        return _BOMS[encoding] + data
    return data


def detect_line_ending(text: str) -> LineEnding:
    """Return the predominant line ending. CRLF must strictly outnumber LF."""
    crlf = text.count("\r\n")
    lf = text.count("\n") - crlf
    return "CRLF" if crlf > lf else "LF"


def normalize_line_ending(text: str, line_ending: LineEnding) -> str:
    """Convert every CRLF, CR and LF in ``text`` to ``line_ending``."""
    target = "\r\n" if line_ending == "CRLF" else "\n"
    return _LINE_BREAK_RE.sub(target, text)


def default_line_ending() -> LineEnding:
    return "CRLF" if sys.platform == "win32" else "LF"


def split_lines(text: str) -> list[str]:
    """Split on CRLF or LF without keeping the terminators."""
    return re.split(r"\r?\n", text)
