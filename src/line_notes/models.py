"""Data models for line notes, edit operations and parsed diffs."""

import time
from enum import Enum

from pydantic import BaseModel, Field, field_validator
from ulid import new as new_ulid


def now_ms() -> int:
    """Current wall-clock time in integer milliseconds since the epoch."""
    return int(time.time() * 1000)


class NoteHealth(str, Enum):
    """How a note's anchor relates to the current buffer and commit."""

    ANCHORED = "anchored"  # Line exists and its text matches file_text
    UNANCHORED = "unanchored"  # Text at the stored line no longer matches
    OUT_OF_RANGE = "out_of_range"  # Stored line is past the end of the buffer


class Note(BaseModel):
    """A single annotation attached to one line of a file.

    The anchor is the (line_number, file_text, commit) triple. ``file_text`` is
    the exact line content when the note was last confirmed correct and is the
    matching key when relocating across commits.
    """

    id: str = Field(default_factory=lambda: str(new_ulid()))
    line_number: int = Field(..., ge=0, description="Zero-based line position")
    file_text: str = Field(default="", description="Line content snapshot")
    note: str = Field(..., description="User supplied note text")
    created_at: int = Field(default_factory=now_ms, ge=0)
    updated_at: int = Field(default_factory=now_ms, ge=0)
    commit: str | None = Field(
        default=None, description="Commit under which the anchor is known valid"
    )

    @field_validator("commit")
    @classmethod
    def validate_commit(cls, v: str | None) -> str | None:
        """Normalize blank commit hashes to None (untracked)."""
        if v is not None and not v.strip():
            return None
        return v


# Line number (decimal string) -> singleton list holding that line's note.
FileNotes = dict[str, list[Note]]

# Schema version tag -> FileNotes for that schema.
VersionedFileNotes = dict[str, FileNotes]


class StoreMetadata(BaseModel):
    """Store-wide metadata, recording the schema version the data was written with."""

    version: str = Field(..., min_length=1)


class NoteSidecar(BaseModel):
    """Root structure for a per-file JSON sidecar."""

    source_file: str = Field(..., description="Relative path to source file (POSIX separators)")
    versions: VersionedFileNotes = Field(default_factory=dict)


class EditOperation(BaseModel):
    """A contiguous replacement in a live buffer.

    ``start_line`` and ``end_line`` are zero-based, inclusive, and expressed in
    the coordinates of the buffer *before* the edit.
    """

    start_line: int = Field(..., ge=0)
    end_line: int = Field(..., ge=0)
    new_text: str = ""

    @field_validator("end_line")
    @classmethod
    def validate_line_range(cls, v: int, info) -> int:
        """Validate that end_line >= start_line."""
        if "start_line" in info.data and v < info.data["start_line"]:
            raise ValueError(f"end_line ({v}) must be >= start_line ({info.data['start_line']})")
        return v

    @property
    def new_line_count(self) -> int:
        """Number of lines the replacement text spans."""
        return len(self.new_text.split("\n"))

    @property
    def line_delta(self) -> int:
        """How many lines everything below the edit moves by."""
        return self.new_line_count - (self.end_line - self.start_line + 1)


class DiffResult(BaseModel):
    """Per-file indexes produced by the unified-diff parser.

    All line numbers are one-based, as written in hunk headers.
    """

    added_lines: dict[str, list[int]] = Field(default_factory=dict)
    removed_lines: dict[str, list[int]] = Field(default_factory=dict)
    moved_lines: dict[str, list[tuple[int, int]]] = Field(default_factory=dict)


class CommitReconciliationReport(BaseModel):
    """Summary of one commit reconciliation pass."""

    current_commit: str | None = None
    examined_count: int = Field(default=0, ge=0, description="Notes stamped with another commit")
    relocated_count: int = Field(default=0, ge=0, description="Notes moved onto the current commit")
    unanchored_count: int = Field(default=0, ge=0, description="Notes left without a match")
    files_updated: list[str] = Field(default_factory=list)
