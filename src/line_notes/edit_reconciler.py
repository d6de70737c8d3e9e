"""Live-edit reconciliation: shifting notes as a buffer is edited.

An edit replaces the inclusive old-coordinate range [start_line, end_line]
with text spanning ``new_line_count`` lines. For each note:

1. Notes stamped with another commit whose text is no longer found where the
   edits carry them are left alone; commit reconciliation owns them.
2. Notes below the range shift by ``new_line_count - range length``.
3. Notes inside the range snap to ``start_line``, unless the edit kept the
   line count and the note's line still reads as its snapshot.
4. Notes above the range stay put.

After repositioning, the note's ``file_text`` is refreshed from the buffer so
later matching uses the current content.
"""

from collections.abc import Sequence
from pathlib import Path

from line_notes.anchors import (
    build_file_notes,
    flatten,
    needs_commit_reconciliation,
    settle_notes,
)
from line_notes.buffers import BufferReader, read_line
from line_notes.logging import Logger, get_logger
from line_notes.models import EditOperation, Note
from line_notes.storage import NoteStore


def shift_line(line: int, edit: EditOperation) -> int:
    """New position of ``line`` after ``edit`` is applied."""
    if line > edit.end_line:
        return line + edit.line_delta
    if edit.start_line <= line <= edit.end_line:
        return edit.start_line
    return line


def settled_line(line: int, edits: Sequence[EditOperation]) -> int:
    """Position of ``line`` after every edit of a batch, in order."""
    for edit in edits:
        line = shift_line(line, edit)
    return line


def is_quarantined(
    note: Note,
    buffer: BufferReader,
    current_commit: str | None,
    edits: Sequence[EditOperation] = (),
) -> bool:
    """Whether a note is stale pending commit reconciliation.

    True when the note carries a commit other than ``current_commit`` and the
    post-edit buffer, at the line ``edits`` carry the note to, no longer
    equals its snapshot.
    """
    if not needs_commit_reconciliation(note, current_commit):
        return False
    return read_line(buffer, settled_line(note.line_number, edits)) != note.file_text


def _reposition(note: Note, edit: EditOperation, buffer: BufferReader) -> int:
    inside = edit.start_line <= note.line_number <= edit.end_line
    if inside and edit.line_delta == 0 and read_line(buffer, note.line_number) == note.file_text:
        return note.line_number
    return shift_line(note.line_number, edit)


class EditReconciler:
    """Applies live edit operations to one file's notes."""

    def __init__(self, store: NoteStore, logger: Logger | None = None) -> None:
        self.store = store
        self._logger = logger

    @property
    def logger(self) -> Logger:
        return self._logger or get_logger()

    def reconcile(
        self,
        file: str | Path | None,
        edits: Sequence[EditOperation],
        buffer: BufferReader,
        current_commit: str | None = None,
    ) -> bool:
        """
        Reposition the notes of ``file`` for a batch of edits.

        Edits are applied in the given order. The updated note set is written
        back with a single ``put`` when anything changed. A note that would
        land on a line held by another note stays where it was.

        Args:
            file: File identity (None to use the store's context provider)
            edits: Edit operations of one change event, old coordinates each
            buffer: The buffer after the edits, for refreshing line snapshots
            current_commit: Commit checked out now, or None outside a repository

        Returns:
            True if any note's line number or snapshot text changed
        """
        file_notes = self.store.get_all(file)
        if not file_notes or not edits:
            return False

        notes = flatten(file_notes)
        originals = {note.id: note.model_copy() for note in notes}

        for note in notes:
            if is_quarantined(note, buffer, current_commit, edits):
                self.logger.debug(
                    "Skipping note pending commit reconciliation",
                    note=note.id,
                    line=note.line_number,
                )
                continue

            for edit in edits:
                note.line_number = _reposition(note, edit, buffer)
            text = read_line(buffer, note.line_number)
            if text is not None:
                note.file_text = text

        settle_notes(notes, originals, self.logger)

        has_change = any(
            (n.line_number, n.file_text)
            != (originals[n.id].line_number, originals[n.id].file_text)
            for n in notes
        )
        if has_change:
            self.store.put(file, build_file_notes(notes))
            self.logger.debug("Notes shifted by edit", file=str(file), notes=len(notes))
        return has_change
