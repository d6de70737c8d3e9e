"""Tests for the AnnotationEngine facade."""

import asyncio
from pathlib import Path

import pytest

from line_notes.buffers import TextBuffer
from line_notes.config import NotesConfig
from line_notes.engine import AnnotationEngine
from line_notes.models import EditOperation
from line_notes.storage import JsonDirectoryBackend, MemoryBackend, NoteStore, normalize_file_key

FILE = normalize_file_key("/tmp/project/app.py")

MOVE_DIFF = """\
diff --git a/app.py b/app.py
@@ -1,2 +1,3 @@
+# added
 first
 second
"""


class FakeVcs:
    """Scripted version control: the test moves ``commit`` between calls."""

    def __init__(self, commit: str | None = "c1", diffs: dict | None = None) -> None:
        self.repo_root = Path("/tmp/project")
        self.commit = commit
        self.diffs = diffs or {}

    async def current_commit(self) -> str | None:
        return self.commit

    async def diff(self, from_commit: str, to_commit: str) -> str:
        return self.diffs[(from_commit, to_commit)]


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000

    def __call__(self) -> int:
        self.now += 1
        return self.now


@pytest.fixture
def vcs() -> FakeVcs:
    return FakeVcs()


@pytest.fixture
def engine(vcs: FakeVcs) -> AnnotationEngine:
    return AnnotationEngine(NoteStore(MemoryBackend()), vcs=vcs, clock=FakeClock())


class TestAuthoring:
    """add_note / delete_note / delete_all."""

    @pytest.mark.asyncio
    async def test_add_note_stamps_commit(self, engine):
        note = await engine.add_note(FILE, 3, "x = 1", "explain x")

        assert note is not None
        assert note.commit == "c1"
        assert note.line_number == 3
        assert engine.note_at(FILE, 3) == note

    @pytest.mark.asyncio
    async def test_add_note_upserts(self, engine, vcs):
        """Re-adding on a line keeps id and created_at, refreshes the rest."""
        first = await engine.add_note(FILE, 3, "x = 1", "first")
        vcs.commit = "c2"
        second = await engine.add_note(FILE, 3, "x = 2", "second")

        assert second.id == first.id
        assert second.created_at == first.created_at
        assert second.updated_at > first.updated_at
        assert second.note == "second"
        assert second.file_text == "x = 2"
        assert second.commit == "c2"
        assert len(engine.notes_in(FILE)) == 1

    @pytest.mark.asyncio
    async def test_add_without_vcs_is_untracked(self):
        engine = AnnotationEngine(NoteStore(MemoryBackend()))
        note = await engine.add_note(FILE, 0, "a", "n")
        assert note.commit is None

    @pytest.mark.asyncio
    async def test_blank_note_deletes(self, engine):
        await engine.add_note(FILE, 3, "x = 1", "explain x")
        result = await engine.add_note(FILE, 3, "x = 1", "   ")

        assert result is None
        assert engine.note_at(FILE, 3) is None

    @pytest.mark.asyncio
    async def test_delete_note_and_delete_all(self, engine):
        await engine.add_note(FILE, 1, "a", "one")
        await engine.add_note(FILE, 2, "b", "two")

        await engine.delete_note(FILE, 1)
        assert list(engine.notes_in(FILE)) == ["2"]

        await engine.delete_all(FILE)
        assert engine.notes_in(FILE) == {}

    @pytest.mark.asyncio
    async def test_missing_file_context_is_noop(self, engine):
        assert await engine.add_note(None, 0, "a", "n") is None
        assert engine.store.files() == []

    @pytest.mark.asyncio
    async def test_context_provider_used(self, vcs):
        store = NoteStore(MemoryBackend(), context_provider=lambda: FILE)
        engine = AnnotationEngine(store, vcs=vcs)
        await engine.add_note(None, 4, "line", "n")
        assert engine.note_at(FILE, 4) is not None


class TestEdits:
    """Live edits through the queue."""

    @pytest.mark.asyncio
    async def test_on_buffer_edit_is_queued(self, engine):
        await engine.add_note(FILE, 2, "line 2", "n")
        buffer = TextBuffer("new\nline 0\nline 1\nline 2")

        edit = EditOperation(start_line=0, end_line=0, new_text="new\nline 0")
        engine.on_buffer_edit(FILE, [edit], buffer)
        await engine.queue.join()

        assert engine.note_at(FILE, 3) is not None

    @pytest.mark.asyncio
    async def test_edit_after_add_sees_the_note(self, engine):
        """Add then edit enqueued back to back: the edit observes the new note."""
        buffer = TextBuffer("inserted\nline 0\nline 1")
        add = engine.add_note(FILE, 1, "line 1", "n")
        # Start the add, then queue the edit behind it without awaiting in between
        add_task = asyncio.ensure_future(add)
        await asyncio.sleep(0)
        engine.on_buffer_edit(
            FILE, [EditOperation(start_line=0, end_line=0, new_text="inserted\nline 0")], buffer
        )
        await add_task
        await engine.queue.join()

        assert engine.note_at(FILE, 2) is not None

    @pytest.mark.asyncio
    async def test_apply_edit_returns_change_flag(self, engine):
        await engine.add_note(FILE, 5, "line 5", "n")
        edit = EditOperation(start_line=0, end_line=0, new_text="line 0")
        lines = "\n".join(f"line {i}" for i in range(8))

        assert await engine.apply_edit(FILE, [edit], TextBuffer(lines)) is False

    @pytest.mark.asyncio
    async def test_empty_edit_batch_ignored(self, engine):
        assert await engine.apply_edit(FILE, [], TextBuffer("")) is False


class TestCommitChanges:
    """check_commit / reconcile_commit."""

    @pytest.mark.asyncio
    async def test_check_commit_queues_reconciliation(self, vcs):
        store = NoteStore(MemoryBackend())
        vcs.diffs = {("c1", "c2"): MOVE_DIFF}
        engine = AnnotationEngine(store, vcs=vcs)
        await engine.add_note(FILE, 0, "first", "n")

        assert await engine.check_commit() is True  # first observation of c1
        await engine.queue.join()
        assert engine.note_at(FILE, 0).commit == "c1"

        vcs.commit = "c2"
        assert await engine.check_commit() is True
        await engine.queue.join()

        moved = engine.note_at(FILE, 1)
        assert moved is not None
        assert moved.commit == "c2"

    @pytest.mark.asyncio
    async def test_check_commit_unchanged(self, engine):
        await engine.check_commit()
        assert await engine.check_commit() is False

    @pytest.mark.asyncio
    async def test_reconcile_commit_returns_report(self, vcs):
        vcs.diffs = {("c1", "c2"): MOVE_DIFF}
        engine = AnnotationEngine(NoteStore(MemoryBackend()), vcs=vcs)
        await engine.add_note(FILE, 1, "second", "n")
        vcs.commit = "c2"

        report = await engine.reconcile_commit()

        assert report.relocated_count == 1
        assert engine.note_at(FILE, 2) is not None
        assert engine.tracker.last_commit == "c2"

    @pytest.mark.asyncio
    async def test_reconcile_without_vcs(self):
        engine = AnnotationEngine(NoteStore(MemoryBackend()))
        report = await engine.reconcile_commit()
        assert report.current_commit is None
        assert await engine.check_commit() is False


class TestForProject:
    """Building an engine over the sidecar store."""

    @pytest.mark.asyncio
    async def test_for_project_uses_json_backend(self, tmp_path: Path):
        (tmp_path / ".git").mkdir()
        config = NotesConfig(storage_dir=".annotations")
        engine = AnnotationEngine.for_project(tmp_path, config)

        assert isinstance(engine.store.backend, JsonDirectoryBackend)
        await engine.add_note(tmp_path / "a.py", 0, "x", "n")

        assert (tmp_path / ".annotations" / "files" / "a.py.json").exists()
        assert (tmp_path / ".annotations" / "metadata.json").exists()
