"""Unified diff parsing into per-file added/removed/moved line indexes.

The unified diff grammar is treated as a fixed external format:

    diff --git a/<old> b/<new>
    index ..., --- a/<old>, +++ b/<new>     (section header, skipped)
    @@ -<oldStart>[,<oldLen>] +<newStart>[,<newLen>] @@ [section heading]
    +added / -removed / ' 'context lines

Line text is indexed with its marker stripped and surrounding whitespace
trimmed. Positions are one-based, exactly as written in hunk headers.
"""

import re
from pathlib import Path

from line_notes.models import DiffResult
from line_notes.storage import normalize_file_key

# Paths with control, quote, backslash or non-ASCII characters are C-quoted by git
QUOTED_FILE_HEADER_RE = re.compile(
    r'^diff --git "a/(?P<old>(?:[^"\\]|\\.)*)" "b/(?P<new>(?:[^"\\]|\\.)*)"$'
)
FILE_HEADER_RE = re.compile(r"^diff --git a/(?P<old>.+?) b/(?P<new>.+)$")
HUNK_HEADER_RE = re.compile(
    r"^@@ -(?P<old_start>\d+)(?:,(?P<old_len>\d+))? \+(?P<new_start>\d+)(?:,(?P<new_len>\d+))? @@"
)
NO_NEWLINE_MARKER = "\\"

_C_ESCAPES = {"a": 7, "b": 8, "t": 9, "n": 10, "v": 11, "f": 12, "r": 13, '"': 34, "\\": 92}


def unquote_path(quoted: str) -> str:
    """Decode the body of a git C-quoted path (octal escapes are UTF-8 bytes)."""
    raw = bytearray()
    i = 0
    while i < len(quoted):
        ch = quoted[i]
        if ch == "\\" and i + 1 < len(quoted):
            escape = quoted[i + 1]
            if escape in "01234567":
                raw.append(int(quoted[i + 1 : i + 4], 8))
                i += 4
                continue
            raw.append(_C_ESCAPES.get(escape, ord(escape)))
            i += 2
            continue
        raw.extend(ch.encode("utf-8"))
        i += 1
    return raw.decode("utf-8", errors="replace")


def _header_path(line: str) -> str | None:
    """New-side path of a ``diff --git`` line, or None for any other line."""
    quoted = QUOTED_FILE_HEADER_RE.match(line)
    if quoted:
        return unquote_path(quoted.group("new"))
    plain = FILE_HEADER_RE.match(line)
    return plain.group("new") if plain else None


class _FileSection:
    """Accumulator for one ``diff --git`` section."""

    def __init__(self, path: str) -> None:
        self.path = path
        self.result = DiffResult()
        self.in_hunk = False
        self.old_line = 0
        self.new_line = 0

    def start_hunk(self, old_start: int, new_start: int) -> None:
        self.in_hunk = True
        self.old_line = old_start
        self.new_line = new_start

    def consume(self, line: str) -> None:
        result = self.result
        if line.startswith("+"):
            result.added_lines.setdefault(line[1:].strip(), []).append(self.new_line)
            self.new_line += 1
        elif line.startswith("-"):
            result.removed_lines.setdefault(line[1:].strip(), []).append(self.old_line)
            self.old_line += 1
        else:
            # Context, or anything unrecognized: both sides advance
            if self.old_line != self.new_line:
                text = line[1:].strip() if line.startswith(" ") else line.strip()
                result.moved_lines.setdefault(text, []).append((self.old_line, self.new_line))
            self.old_line += 1
            self.new_line += 1

    def finish(self) -> DiffResult:
        detect_moves(self.result)
        return self.result


def detect_moves(result: DiffResult) -> DiffResult:
    """Pair removed and added occurrences of identical text as moves.

    Occurrences are paired positionally in encounter order (first removed with
    first added, ...), truncated to the shorter list. Pairs are appended after
    any context-derived candidates already present. Exact string equality is
    the only similarity signal; ambiguous repeats are paired best-effort.
    """
    for text, removed in result.removed_lines.items():
        added = result.added_lines.get(text)
        if not added:
            continue
        pairs = list(zip(removed, added))
        result.moved_lines.setdefault(text, []).extend(pairs)
    return result


class DiffParser:
    """Parses unified diff text covering one or more files."""

    def parse(self, diff_text: str, base_path: str | Path) -> dict[str, DiffResult]:
        """
        Parse diff text into a DiffResult per file.

        Args:
            diff_text: Raw unified diff (e.g. ``git diff A B`` output)
            base_path: Directory the diff's relative paths are resolved against

        Returns:
            Mapping from absolute file key (new-side path) to its DiffResult
        """
        results: dict[str, DiffResult] = {}
        section: _FileSection | None = None
        base = Path(base_path)

        for line in diff_text.splitlines():
            path = _header_path(line)
            if path is not None:
                if section is not None:
                    results[section.path] = section.finish()
                section = _FileSection(normalize_file_key(base / path))
                continue

            if section is None:
                # Preamble before the first file header
                continue

            hunk = HUNK_HEADER_RE.match(line)
            if hunk:
                section.start_hunk(int(hunk.group("old_start")), int(hunk.group("new_start")))
                continue

            if not section.in_hunk:
                # index / --- / +++ / mode / rename lines of the section header
                continue

            if line.startswith(NO_NEWLINE_MARKER):
                continue

            section.consume(line)

        if section is not None:
            results[section.path] = section.finish()

        return results


def parse_diff(diff_text: str, base_path: str | Path) -> dict[str, DiffResult]:
    """Module-level convenience wrapper around ``DiffParser().parse``."""
    return DiffParser().parse(diff_text, base_path)
