"""Read access to live buffer contents."""

from pathlib import Path
from typing import Protocol


class BufferReader(Protocol):
    """What the reconcilers need from an editor buffer."""

    def line_count(self) -> int: ...

    def line_text(self, line: int) -> str:
        """Text of zero-based ``line``; raises IndexError when out of range."""
        ...


class TextBuffer:
    """BufferReader over an in-memory string.

    Lines are split on ``\\n`` the way editors count them: a trailing newline
    yields a final empty line. A trailing ``\\r`` is dropped from each line.
    """

    def __init__(self, text: str) -> None:
        self._lines = [line.rstrip("\r") for line in text.split("\n")]

    @classmethod
    def from_file(cls, path: Path) -> "TextBuffer":
        return cls(path.read_text(encoding="utf-8"))

    def line_count(self) -> int:
        return len(self._lines)

    def line_text(self, line: int) -> str:
        if line < 0 or line >= len(self._lines):
            raise IndexError(f"Line {line} out of range (buffer has {len(self._lines)} lines)")
        return self._lines[line]


def read_line(buffer: BufferReader, line: int) -> str | None:
    """Text at ``line``, or None when the buffer has no such line."""
    if line < 0 or line >= buffer.line_count():
        return None
    return buffer.line_text(line)
