"""AnnotationEngine: the facade the editor integration and the CLI talk to.

Every mutation of the note store runs as a task on one TaskQueue, so note
authoring, live-edit reconciliation and commit reconciliation never
interleave. Awaitable operations enqueue their work and wait for its result;
``on_buffer_edit`` is fire-and-forget like an editor change event.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import TypeVar

from line_notes.buffers import BufferReader
from line_notes.commit_reconciler import CommitReconciler, VersionControl
from line_notes.commit_tracker import CommitTracker
from line_notes.config import NotesConfig
from line_notes.edit_reconciler import EditReconciler
from line_notes.git_ops import GitProvider
from line_notes.logging import Logger, get_logger
from line_notes.models import CommitReconciliationReport, EditOperation, FileNotes, Note, now_ms
from line_notes.storage import JsonDirectoryBackend, NoteStore, open_note_store
from line_notes.task_queue import TaskQueue

T = TypeVar("T")


class AnnotationEngine:
    """Owns the store, the queue, both reconcilers and the commit tracker."""

    def __init__(
        self,
        store: NoteStore,
        vcs: VersionControl | None = None,
        queue: TaskQueue | None = None,
        tracker: CommitTracker | None = None,
        clock: Callable[[], int] = now_ms,
        logger: Logger | None = None,
    ) -> None:
        self.store = store
        self.vcs = vcs
        self.queue = queue or TaskQueue(logger=logger)
        self.tracker = tracker or CommitTracker()
        self.clock = clock
        self._logger = logger
        self.edit_reconciler = EditReconciler(store, logger=logger)
        self.commit_reconciler = CommitReconciler(store, vcs, logger=logger) if vcs else None

    @classmethod
    def for_project(
        cls, project_root: Path, config: NotesConfig | None = None, logger: Logger | None = None
    ) -> "AnnotationEngine":
        """Engine over the JSON sidecar store and git provider of a repository.

        Raises:
            UnsupportedVersionError: If the stored notes use another schema version
        """
        config = config or NotesConfig()
        backend = JsonDirectoryBackend(
            project_root,
            storage_dir=config.storage_path(project_root),
            lock_timeout=config.lock_timeout,
            logger=logger,
        )
        store = open_note_store(backend, logger=logger)
        vcs = GitProvider(project_root, timeout=config.git_timeout, logger=logger)
        return cls(store, vcs=vcs, logger=logger)

    @property
    def logger(self) -> Logger:
        return self._logger or get_logger()

    async def current_commit(self) -> str | None:
        if self.vcs is None:
            return None
        return await self.vcs.current_commit()

    async def _submit(self, task: Callable[[], Awaitable[T]], name: str) -> T:
        """Run ``task`` on the queue and wait for its result or exception."""
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()

        async def run() -> None:
            try:
                result = await task()
            except Exception as exc:
                if not future.done():
                    future.set_exception(exc)
                return
            if not future.done():
                future.set_result(result)

        self.queue.enqueue(run, name)
        return await future

    async def add_note(
        self, file: str | Path | None, line: int, file_text: str, note: str
    ) -> Note | None:
        """
        Create or update the note on ``line``.

        An existing note keeps its id, creation time and line; its text,
        snapshot, update time and commit are refreshed. A blank note text
        deletes the note instead.

        Returns:
            The stored note, or None when it was deleted or there is no file
        """
        if not note.strip():
            await self.delete_note(file, line)
            return None

        key = self.store.resolve_file(file, "add note")
        if key is None:
            return None

        async def write() -> Note:
            commit = await self.current_commit()
            notes = self.store.get_all(key)
            existing = notes.get(str(line), [])
            now = self.clock()
            if existing:
                stored = existing[0].model_copy(
                    update={"note": note, "file_text": file_text, "updated_at": now, "commit": commit}
                )
            else:
                stored = Note(
                    line_number=line,
                    file_text=file_text,
                    note=note,
                    created_at=now,
                    updated_at=now,
                    commit=commit,
                )
            notes[str(line)] = [stored]
            self.store.put(key, notes)
            return stored

        return await self._submit(write, f"add_note:{line}")

    async def delete_note(self, file: str | Path | None, line: int) -> None:
        key = self.store.resolve_file(file, "delete note")
        if key is None:
            return

        async def remove() -> None:
            self.store.delete(key, line)

        await self._submit(remove, f"delete_note:{line}")

    async def delete_all(self, file: str | Path | None = None) -> None:
        key = self.store.resolve_file(file, "delete all")
        if key is None:
            return

        async def remove() -> None:
            self.store.delete_all(key)

        await self._submit(remove, "delete_all")

    def note_at(self, file: str | Path | None, line: int) -> Note | None:
        return self.store.get(file, line)

    def notes_in(self, file: str | Path | None = None) -> FileNotes:
        return self.store.get_all(file)

    def on_buffer_edit(
        self, file: str | Path | None, edits: Sequence[EditOperation], buffer: BufferReader
    ) -> None:
        """Queue reconciliation of one editor change event.

        Must be called on the event loop thread. Failures are logged by the
        queue.
        """
        key = self.store.resolve_file(file, "edit reconciliation")
        if key is None or not edits:
            return
        edits = list(edits)

        async def reconcile() -> bool:
            commit = await self.current_commit()
            return self.edit_reconciler.reconcile(key, edits, buffer, commit)

        self.queue.enqueue(reconcile, f"edit:{Path(key).name}")

    async def apply_edit(
        self, file: str | Path | None, edits: Sequence[EditOperation], buffer: BufferReader
    ) -> bool:
        """Like on_buffer_edit, but waits and returns whether any note moved."""
        key = self.store.resolve_file(file, "edit reconciliation")
        if key is None or not edits:
            return False
        edits = list(edits)

        async def reconcile() -> bool:
            commit = await self.current_commit()
            return self.edit_reconciler.reconcile(key, edits, buffer, commit)

        return await self._submit(reconcile, f"edit:{Path(key).name}")

    async def check_commit(self) -> bool:
        """Observe the current commit and queue reconciliation when it moved.

        Returns:
            True if a commit change was observed
        """
        commit = await self.current_commit()
        if not self.tracker.observe(commit):
            return False
        self.logger.debug("Commit changed", commit=commit)
        if self.commit_reconciler is not None:
            self.queue.enqueue(self.commit_reconciler.reconcile, f"commit:{commit}")
        return True

    async def reconcile_commit(self) -> CommitReconciliationReport:
        """Run a commit reconciliation pass through the queue and return its report."""
        if self.commit_reconciler is None:
            return CommitReconciliationReport()
        report = await self._submit(self.commit_reconciler.reconcile, "commit_reconcile")
        if report.current_commit is not None:
            self.tracker.observe(report.current_commit)
        return report
