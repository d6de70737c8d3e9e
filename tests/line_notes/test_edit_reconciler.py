"""Tests for live-edit reconciliation."""

import pytest

from line_notes.buffers import TextBuffer
from line_notes.edit_reconciler import EditReconciler, is_quarantined, shift_line
from line_notes.models import EditOperation, Note
from line_notes.storage import MemoryBackend, NoteStore

FILE = "/tmp/project/app.py"


def numbered_lines(count: int) -> list[str]:
    return [f"line {i}" for i in range(count)]


def make_note(line: int, text: str, commit: str | None = None, updated_at: int = 1) -> Note:
    return Note(
        line_number=line,
        file_text=text,
        note=f"note on {line}",
        created_at=1,
        updated_at=updated_at,
        commit=commit,
    )


@pytest.fixture
def store() -> NoteStore:
    return NoteStore(MemoryBackend())


@pytest.fixture
def reconciler(store: NoteStore) -> EditReconciler:
    return EditReconciler(store)


class TestShiftLine:
    """Tests for the per-note position rule."""

    def test_line_above_edit_unchanged(self):
        edit = EditOperation(start_line=5, end_line=6, new_text="x")
        assert shift_line(2, edit) == 2

    def test_line_below_edit_shifted_by_delta(self):
        edit = EditOperation(start_line=2, end_line=2, new_text="a\nb\nc")
        assert shift_line(10, edit) == 12

    def test_line_inside_range_snaps_to_start(self):
        edit = EditOperation(start_line=4, end_line=6, new_text="merged")
        assert [shift_line(line, edit) for line in (4, 5, 6)] == [4, 4, 4]

    def test_line_below_deletion_moves_up(self):
        edit = EditOperation(start_line=1, end_line=3, new_text="")
        assert shift_line(7, edit) == 5


class TestReconcile:
    """Tests for EditReconciler.reconcile."""

    def test_noop_edit_is_idempotent(self, store, reconciler):
        """Replacing a line with its own text changes nothing."""
        lines = numbered_lines(12)
        notes = {"3": [make_note(3, "line 3")], "9": [make_note(9, "line 9")]}
        store.put(FILE, notes)
        before = store.get_all(FILE)

        edit = EditOperation(start_line=5, end_line=5, new_text="line 5")
        changed = reconciler.reconcile(FILE, [edit], TextBuffer("\n".join(lines)))

        assert changed is False
        assert store.get_all(FILE) == before

    def test_shift_after_insertion(self, store, reconciler):
        """A note at line 10 moves to 12 when one line becomes three at line 2."""
        old = numbered_lines(15)
        store.put(FILE, {"10": [make_note(10, "line 10")]})

        new = old[:2] + ["a", "b", "c"] + old[3:]
        edit = EditOperation(start_line=2, end_line=2, new_text="a\nb\nc")
        changed = reconciler.reconcile(FILE, [edit], TextBuffer("\n".join(new)))

        assert changed is True
        assert store.get(FILE, 10) is None
        moved = store.get(FILE, 12)
        assert moved is not None
        assert moved.file_text == "line 10"

    def test_snap_on_overlap(self, store, reconciler):
        """A note inside a replaced range lands on its first line."""
        old = numbered_lines(10)
        store.put(FILE, {"5": [make_note(5, "line 5")]})

        new = old[:4] + ["merged"] + old[7:]
        edit = EditOperation(start_line=4, end_line=6, new_text="merged")
        reconciler.reconcile(FILE, [edit], TextBuffer("\n".join(new)))

        note = store.get(FILE, 4)
        assert note is not None
        assert note.file_text == "merged"

    def test_text_refreshed_from_buffer(self, store, reconciler):
        """Editing a note's own line updates its snapshot without moving it."""
        store.put(FILE, {"1": [make_note(1, "old text")]})
        buffer = TextBuffer("zero\nnew text\ntwo")
        edit = EditOperation(start_line=1, end_line=1, new_text="new text")

        assert reconciler.reconcile(FILE, [edit], buffer) is True
        assert store.get(FILE, 1).file_text == "new text"

    def test_edits_applied_in_order(self, store, reconciler):
        """Each edit of a batch is expressed in the coordinates left by the previous one."""
        store.put(FILE, {"8": [make_note(8, "line 8")]})
        edits = [
            EditOperation(start_line=0, end_line=0, new_text="a\nb"),  # +1 -> 9
            EditOperation(start_line=2, end_line=4, new_text=""),  # -2 -> 7
        ]
        lines = ["a", "b", ""] + [f"line {i}" for i in range(4, 12)]
        reconciler.reconcile(FILE, edits, TextBuffer("\n".join(lines)))

        assert list(store.get_all(FILE)) == ["7"]

    def test_out_of_range_note_keeps_text(self, store, reconciler):
        """Notes pushed past the buffer end keep their last snapshot."""
        store.put(FILE, {"3": [make_note(3, "line 3")]})
        edit = EditOperation(start_line=0, end_line=0, new_text="x\ny\nz")
        buffer = TextBuffer("x\ny\nz")

        reconciler.reconcile(FILE, [edit], buffer)

        note = store.get(FILE, 5)
        assert note is not None
        assert note.file_text == "line 3"

    def test_snap_collision_keeps_both_notes(self, store, reconciler, capsys):
        """The note already on the snap line keeps it; the other stays where it was."""
        store.put(
            FILE,
            {
                "2": [make_note(2, "line 2", updated_at=100)],
                "3": [make_note(3, "line 3", updated_at=200)],
            },
        )
        edit = EditOperation(start_line=2, end_line=3, new_text="joined")
        reconciler.reconcile(FILE, [edit], TextBuffer("line 0\nline 1\njoined\nline 4"))

        notes = store.get_all(FILE)
        assert sorted(notes) == ["2", "3"]
        assert notes["2"][0].updated_at == 100
        assert notes["2"][0].file_text == "joined"
        assert notes["3"][0].file_text == "line 3"
        assert "cannot move to line 2" in capsys.readouterr().err

    def test_multiline_noop_edit_is_idempotent(self, store, reconciler):
        """Rewriting lines 4-6 with the same three lines moves nothing."""
        lines = numbered_lines(10)
        store.put(
            FILE,
            {
                "4": [make_note(4, "line 4")],
                "5": [make_note(5, "line 5")],
                "8": [make_note(8, "line 8")],
            },
        )
        before = store.get_all(FILE)

        edit = EditOperation(start_line=4, end_line=6, new_text="line 4\nline 5\nline 6")
        changed = reconciler.reconcile(FILE, [edit], TextBuffer("\n".join(lines)))

        assert changed is False
        assert store.get_all(FILE) == before

    def test_no_notes_returns_false(self, store, reconciler):
        edit = EditOperation(start_line=0, end_line=0, new_text="a\nb")
        assert reconciler.reconcile(FILE, [edit], TextBuffer("a\nb")) is False
        assert store.files() == []

    def test_no_file_context_is_noop(self, reconciler):
        edit = EditOperation(start_line=0, end_line=0, new_text="a")
        assert reconciler.reconcile(None, [edit], TextBuffer("a")) is False


class TestStaleNoteQuarantine:
    """Notes awaiting commit reconciliation are not touched by live edits."""

    def test_stale_note_not_shifted(self, store, reconciler):
        """Commit differs and text differs: the note stays exactly as stored."""
        stale = make_note(6, "original text", commit="old-commit")
        store.put(FILE, {"6": [stale]})

        lines = numbered_lines(10)
        edit = EditOperation(start_line=0, end_line=0, new_text="a\nb")
        new = ["a", "b"] + lines[1:]
        changed = reconciler.reconcile(FILE, [edit], TextBuffer("\n".join(new)), "new-commit")

        assert changed is False
        assert store.get(FILE, 6) == stale

    def test_matching_text_not_quarantined(self, store, reconciler):
        """A note from another commit whose text the edit only pushed down follows it."""
        lines = numbered_lines(10)
        store.put(FILE, {"6": [make_note(6, "line 6", commit="old-commit")]})

        new = ["a", "b", "c"] + lines[1:]
        edit = EditOperation(start_line=0, end_line=0, new_text="a\nb\nc")
        changed = reconciler.reconcile(FILE, [edit], TextBuffer("\n".join(new)), "new-commit")

        assert changed is True
        assert store.get(FILE, 6) is None
        note = store.get(FILE, 8)
        assert note is not None
        assert note.file_text == "line 6"
        assert note.commit == "old-commit"

    def test_note_blocked_by_stale_note_stays(self, store, reconciler):
        """Shifting onto a line held by a quarantined note loses neither note."""
        lines = numbered_lines(10)
        store.put(
            FILE,
            {
                "6": [make_note(6, "line 6")],
                "7": [make_note(7, "stale text", commit="old-commit")],
            },
        )

        edit = EditOperation(start_line=0, end_line=0, new_text="x\nline 0")
        changed = reconciler.reconcile(
            FILE, [edit], TextBuffer("\n".join(["x"] + lines)), "new-commit"
        )

        notes = store.get_all(FILE)
        assert changed is False
        assert sorted(notes) == ["6", "7"]
        assert notes["6"][0].file_text == "line 6"
        assert notes["7"][0].file_text == "stale text"

    def test_quarantine_checks_position_after_edits(self):
        note = make_note(2, "line 2", commit="old")
        edit = EditOperation(start_line=0, end_line=0, new_text="a\nline 0")
        buffer = TextBuffer("a\nline 0\nline 1\nline 2")

        assert is_quarantined(note, buffer, "new", [edit]) is False
        assert is_quarantined(note, buffer, "new") is True

    def test_same_commit_never_quarantined(self):
        note = make_note(0, "something else", commit="abc")
        assert is_quarantined(note, TextBuffer("different"), "abc") is False

    def test_untracked_note_never_quarantined(self):
        note = make_note(0, "something else")
        assert is_quarantined(note, TextBuffer("different"), "abc") is False

    def test_out_of_range_counts_as_mismatch(self):
        note = make_note(5, "line 5", commit="old")
        assert is_quarantined(note, TextBuffer("only line"), "new") is True
