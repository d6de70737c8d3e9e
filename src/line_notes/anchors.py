"""Anchor bookkeeping shared by the reconcilers and the surfaces.

- settle_notes: resolve line collisions after a reconciliation pass
- build_file_notes: re-key a list of repositioned notes into a FileNotes map
- assess_note: classify a note as anchored, unanchored or out of range
- visible_notes: the notes a renderer should draw for a buffer

Reconciliation never deletes a note. A note that would move onto a line still
held by another note is put back where it was before the pass and shows up
as unanchored instead.

A note whose line lies past the end of the buffer (trailing lines deleted, or a
shorter revision checked out) is hidden from rendering but never deleted; it
stays in the store and reappears once the buffer is long enough again or a
later reconciliation moves it.
"""

from collections.abc import Iterable, Mapping

from line_notes.buffers import BufferReader, read_line
from line_notes.logging import Logger, get_logger
from line_notes.models import FileNotes, Note, NoteHealth


def restore_note(note: Note, original: Note) -> None:
    """Put a note's anchor back to an earlier snapshot of itself."""
    note.line_number = original.line_number
    note.file_text = original.file_text
    note.commit = original.commit


def settle_notes(
    notes: list[Note], originals: Mapping[str, Note], logger: Logger | None = None
) -> list[Note]:
    """
    Undo moves that would put two notes on one line.

    A note still on its original line keeps it. Among notes that moved onto the
    same free line, the most recently updated one keeps it. Every other mover
    is restored to its ``originals`` snapshot, which may in turn free or claim
    a line, so the check repeats until no line is shared.

    Args:
        notes: Notes after repositioning, mutated in place
        originals: Snapshot of every note before the pass, by note id
        logger: Logger for the warning issued per restored note

    Returns:
        The notes that were restored
    """
    logger = logger or get_logger()
    restored: list[Note] = []

    while True:
        by_line: dict[int, list[Note]] = {}
        for note in notes:
            by_line.setdefault(note.line_number, []).append(note)

        clashed = False
        for line, group in by_line.items():
            if len(group) < 2:
                continue
            moved = [n for n in group if n.line_number != originals[n.id].line_number]
            held = [n for n in group if n.line_number == originals[n.id].line_number]
            keeper = held[0] if held else max(moved, key=lambda n: n.updated_at)
            for note in moved:
                if note is keeper:
                    continue
                original = originals[note.id]
                logger.warning(
                    f"Note {note.id} cannot move to line {line} held by note {keeper.id}; "
                    f"left on line {original.line_number}"
                )
                restore_note(note, original)
                restored.append(note)
                clashed = True

        if not clashed:
            return restored


def build_file_notes(notes: Iterable[Note]) -> FileNotes:
    """Key notes by their current line, one note per line.

    Raises:
        ValueError: If two notes share a line
    """
    result: FileNotes = {}
    for note in notes:
        key = str(note.line_number)
        if key in result:
            raise ValueError(
                f"Notes {result[key][0].id} and {note.id} both on line {note.line_number}"
            )
        result[key] = [note]
    return result


def flatten(file_notes: FileNotes) -> list[Note]:
    """All notes of a FileNotes map, ordered by line."""
    notes = [note for entries in file_notes.values() for note in entries]
    return sorted(notes, key=lambda n: n.line_number)


def needs_commit_reconciliation(note: Note, current_commit: str | None) -> bool:
    """True when the note is stamped with a commit other than ``current_commit``."""
    return note.commit is not None and note.commit != current_commit


def assess_note(note: Note, buffer: BufferReader) -> NoteHealth:
    """Compare a note's anchor with the buffer content at its stored line."""
    text = read_line(buffer, note.line_number)
    if text is None:
        return NoteHealth.OUT_OF_RANGE
    if text == note.file_text:
        return NoteHealth.ANCHORED
    return NoteHealth.UNANCHORED


def visible_notes(file_notes: FileNotes, buffer: BufferReader) -> dict[int, Note]:
    """Line -> note for every note that lies inside the buffer."""
    line_count = buffer.line_count()
    return {
        note.line_number: note for note in flatten(file_notes) if note.line_number < line_count
    }
