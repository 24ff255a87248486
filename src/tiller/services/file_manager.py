"""File access with read-before-write enforcement.

Every write or edit must be preceded by a read of the same file, and the
file must not have changed on disk since that read. Encoding and line-ending
style of existing files are preserved, and updates produce a structured
unified-diff patch.
"""

from __future__ import annotations

import asyncio
import difflib
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Literal

from .. import text as textutil

logger = logging.getLogger(__name__)

_HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")


class FileSafetyError(Exception):
    """Raised when a file operation is rejected before touching disk."""


class FileNotReadError(FileSafetyError):
    """Write or edit attempted without a prior read."""


class FileModifiedError(FileSafetyError):
    """The file changed on disk after it was last read."""


class EditMatchError(FileSafetyError):
    """The edit target string was missing or ambiguous."""


@dataclass
class PatchHunk:
    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    lines: list[str] = field(default_factory=list)


@dataclass
class ReadResult:
    content: str
    encoding: textutil.Encoding
    line_ending: textutil.LineEnding
    start_line: int = 1
    total_lines: int = 0


@dataclass
class WriteResult:
    type: Literal["create", "update"]
    file_path: str
    content: str
    structured_patch: list[PatchHunk] = field(default_factory=list)


@dataclass
class _ReadSnapshot:
    content: str
    mtime_ns: int


def structured_patch(file_path: str, old: str, new: str, context: int = 3) -> list[PatchHunk]:
    """Diff two texts and return the hunks of the unified diff."""
    diff = difflib.unified_diff(
        old.splitlines(),
        new.splitlines(),
        fromfile=file_path,
        tofile=file_path,
        n=context,
        lineterm="",
    )
    hunks: list[PatchHunk] = []
    current: PatchHunk | None = None
    for line in diff:
        match = _HUNK_HEADER_RE.match(line)
        if match:
            old_start, old_len, new_start, new_len = match.groups()
            current = PatchHunk(
                old_start=int(old_start),
                old_lines=int(old_len) if old_len is not None else 1,
                new_start=int(new_start),
                new_lines=int(new_len) if new_len is not None else 1,
            )
            hunks.append(current)
        elif current is not None:
            current.lines.append(line)
    return hunks


def format_with_line_numbers(content: str, start_line: int = 1, max_lines: int | None = None) -> str:
    """Render content ``cat -n`` style: right-aligned number, tab, line."""
    lines = content.split("\n")
    shown = lines[:max_lines] if max_lines is not None else lines
    end_line = start_line + len(shown) - 1
    width = len(str(end_line))

    formatted = "\n".join(f"{start_line + i:>{width}}\t{line}" for i, line in enumerate(shown))
    if max_lines is not None and len(lines) > max_lines:
        return f"{formatted}\n...[truncated]" if formatted else "...[truncated]"
    return formatted


class FileManager:
    """Tracks read snapshots and guards writes against stale or unread files.

    Snapshots are keyed by absolute path and live only for the lifetime of
    the process. Operations on the same path are serialized.
    """

    def __init__(self) -> None:
        self._snapshots: dict[str, _ReadSnapshot] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, path: str) -> asyncio.Lock:
        lock = self._locks.get(path)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[path] = lock
        return lock

    async def read(self, file_path: str, offset: int | None = None, limit: int | None = None) -> ReadResult:
        """Read a file and record its snapshot.

        ``offset`` is a 0-based line index. The snapshot always holds the
        full file content regardless of slicing.
        """
        path = os.path.abspath(file_path)
        async with self._lock_for(path):
            if not os.path.exists(path):
                raise FileSafetyError(f"File not found: {file_path}")
            if not os.path.isfile(path):
                raise FileSafetyError(f"Path is not a file: {file_path}")

            data, mtime_ns = _read_bytes(path)
            encoding = textutil.detect_encoding(data)
            full = textutil.decode(data, encoding)
            line_ending = textutil.detect_line_ending(full)

            lines = textutil.split_lines(full)
            content = full
            start = 0
            if offset is not None or limit is not None:
                start = max(0, offset or 0)
                end = start + limit if limit is not None else len(lines)
                content = "\n".join(lines[start:end])

            self._snapshots[path] = _ReadSnapshot(content=full, mtime_ns=mtime_ns)
            logger.debug("Read %s (%s, %s, %d bytes)", path, encoding, line_ending, len(data))
            return ReadResult(
                content=content,
                encoding=encoding,
                line_ending=line_ending,
                start_line=start + 1,
                total_lines=len(lines),
            )

    async def write(self, file_path: str, content: str) -> WriteResult:
        path = os.path.abspath(file_path)
        async with self._lock_for(path):
            return self._write(path, file_path, content)

    async def edit(self, file_path: str, old_string: str, new_string: str, replace_all: bool = False) -> WriteResult:
        """Replace ``old_string`` in the last-read content and write it back.

        Without ``replace_all`` the target must occur exactly once. With
        ``replace_all`` it must occur at least once.
        """
        path = os.path.abspath(file_path)
        async with self._lock_for(path):
            if not os.path.exists(path):
                raise FileSafetyError(f"File not found: {file_path}")
            snapshot = self._check_snapshot(path, action="editing")

            content = snapshot.content
            line_ending = textutil.detect_line_ending(content)
            old_string = textutil.normalize_line_ending(old_string, line_ending)
            new_string = textutil.normalize_line_ending(new_string, line_ending)
            matches = content.count(old_string) if old_string else 0
            if matches == 0:
                raise EditMatchError(f"String not found in file: {old_string}")
            if replace_all:
                new_content = content.replace(old_string, new_string)
            else:
                if matches > 1:
                    raise EditMatchError(
                        f"Multiple matches found ({matches}). Use replace_all=true or provide a more specific string."
                    )
                new_content = content.replace(old_string, new_string, 1)

            return self._write(path, file_path, new_content)

    def _check_snapshot(self, path: str, action: str) -> _ReadSnapshot:
        snapshot = self._snapshots.get(path)
        if snapshot is None:
            raise FileNotReadError(f"File has not been read yet. Read it first before {action} it.")
        if os.stat(path).st_mtime_ns != snapshot.mtime_ns:
            raise FileModifiedError(
                "File has been modified since read, either by the user or by a linter. "
                "Read it again before attempting to write it."
            )
        return snapshot

    def _write(self, path: str, file_path: str, content: str) -> WriteResult:
        exists = os.path.exists(path)
        original: str | None = None
        if exists:
            self._check_snapshot(path, action="writing")
            data, _ = _read_bytes(path)
            encoding = textutil.detect_encoding(data)
            bom = textutil.has_bom(data, encoding)
            original = textutil.decode(data, encoding)
            line_ending = textutil.detect_line_ending(original)
        else:
            encoding = "utf8"
            bom = False
            line_ending = textutil.default_line_ending()

        os.makedirs(os.path.dirname(path), exist_ok=True)
        normalized = textutil.normalize_line_ending(content.removeprefix("\ufeff"), line_ending)
        with open(path, "wb") as f:
            f.write(textutil.encode(normalized, encoding, bom=bom))

        self._snapshots[path] = _ReadSnapshot(content=normalized, mtime_ns=os.stat(path).st_mtime_ns)

        if original is None:
            logger.info("Created %s", path)
            return WriteResult(type="create", file_path=file_path, content=normalized)

        logger.info("Updated %s", path)
        return WriteResult(
            type="update",
            file_path=file_path,
            content=normalized,
            structured_patch=structured_patch(file_path, original, normalized),
        )

    def has_been_read(self, file_path: str) -> bool:
        return os.path.abspath(file_path) in self._snapshots

    def cached_content(self, file_path: str) -> str | None:
        snapshot = self._snapshots.get(os.path.abspath(file_path))
        return snapshot.content if snapshot else None

    def clear_state(self, file_path: str | None = None) -> None:
        if file_path is None:
            self._snapshots.clear()
        else:
            self._snapshots.pop(os.path.abspath(file_path), None)


def _read_bytes(path: str) -> tuple[bytes, int]:
    with open(path, "rb") as f:
        data = f.read()
        mtime_ns = os.fstat(f.fileno()).st_mtime_ns
    return data, mtime_ns
