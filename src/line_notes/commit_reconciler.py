"""Commit reconciliation: relocating notes after the checked-out commit moves.

For every note stamped with a commit other than the current one, the diff
between the two commits is parsed (once per commit pair, then cached) and the
note's snapshot text is looked up among the file's moved lines. A moved pair
whose old line is the note's line relocates the note and restamps it with the
current commit. Pairs are consumed so that two notes with identical text can
never land on the same new line.

Notes without a match keep their position and their old commit; the mismatch
is what marks them as unanchored until a later pass or a live edit catches up.
The same holds for a note whose new line is still held by another note.
"""

from pathlib import Path
from typing import Protocol

from line_notes.anchors import build_file_notes, flatten, settle_notes
from line_notes.diff_parser import DiffParser
from line_notes.git_ops import GitError
from line_notes.logging import Logger, get_logger
from line_notes.models import CommitReconciliationReport, DiffResult, FileNotes
from line_notes.storage import NoteStore

CommitPair = tuple[str, str]


class VersionControl(Protocol):
    """Version-control collaborator consumed by CommitReconciler."""

    repo_root: Path

    async def current_commit(self) -> str | None: ...

    async def diff(self, from_commit: str, to_commit: str) -> str: ...


class DiffCache:
    """Parsed diffs keyed by (from_commit, to_commit) for the process lifetime."""

    def __init__(self, vcs: VersionControl, parser: DiffParser | None = None) -> None:
        self.vcs = vcs
        self.parser = parser or DiffParser()
        self._cache: dict[CommitPair, dict[str, DiffResult]] = {}

    def __contains__(self, pair: CommitPair) -> bool:
        return pair in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    async def get(self, from_commit: str, to_commit: str) -> dict[str, DiffResult]:
        pair = (from_commit, to_commit)
        if pair not in self._cache:
            diff_text = await self.vcs.diff(from_commit, to_commit)
            self._cache[pair] = self.parser.parse(diff_text, self.vcs.repo_root)
        return self._cache[pair]

    def clear(self) -> None:
        self._cache.clear()


class CommitReconciler:
    """Moves notes across commit transitions using parsed diffs."""

    def __init__(
        self,
        store: NoteStore,
        vcs: VersionControl,
        parser: DiffParser | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.store = store
        self.vcs = vcs
        self.diffs = DiffCache(vcs, parser)
        self._logger = logger

    @property
    def logger(self) -> Logger:
        return self._logger or get_logger()

    async def reconcile(self, current_commit: str | None = None) -> CommitReconciliationReport:
        """
        Relocate every note stamped with another commit onto ``current_commit``.

        Args:
            current_commit: Commit to reconcile onto; read from the version
                control collaborator at execution time when omitted

        Returns:
            Report of examined, relocated and unanchored notes
        """
        if current_commit is None:
            current_commit = await self.vcs.current_commit()
        report = CommitReconciliationReport(current_commit=current_commit)
        if current_commit is None:
            self.logger.debug("No current commit; skipping commit reconciliation")
            return report

        # Pairs left to hand out during this pass, per (commit pair, file, text)
        pools: dict[tuple[CommitPair, str, str], list[tuple[int, int]]] = {}
        updated: dict[str, FileNotes] = {}
        failed_pairs: set[CommitPair] = set()

        for file in self.store.files():
            file_notes = self.store.get_all(file)
            notes = flatten(file_notes)
            originals = {note.id: note.model_copy() for note in notes}
            relocated = 0

            for note in notes:
                from_commit = note.commit
                if from_commit is None or from_commit == current_commit:
                    continue
                report.examined_count += 1

                pair = (from_commit, current_commit)
                if pair in failed_pairs:
                    report.unanchored_count += 1
                    continue
                try:
                    diff = (await self.diffs.get(*pair)).get(file)
                except GitError as e:
                    self.logger.warning(f"Cannot diff {from_commit}..{current_commit}: {e}")
                    failed_pairs.add(pair)
                    report.unanchored_count += 1
                    continue

                # Diff text is indexed trimmed; snapshots keep their indentation
                text = note.file_text.strip()
                candidates = diff.moved_lines.get(text) if diff else None
                if not candidates:
                    report.unanchored_count += 1
                    continue

                pool_key = (pair, file, text)
                pool = pools.setdefault(pool_key, list(candidates))

                # Diff positions are one-based, note lines zero-based
                match = next((p for p in pool if p[0] == note.line_number + 1), None)
                if match is None:
                    report.unanchored_count += 1
                    continue

                pool.remove(match)
                note.line_number = match[1] - 1
                note.commit = current_commit
                relocated += 1

            restored = len(settle_notes(notes, originals, self.logger)) if relocated else 0
            report.relocated_count += relocated - restored
            report.unanchored_count += restored
            if relocated > restored:
                updated[file] = build_file_notes(notes)

        if updated:
            self.store.put_many(updated)
            report.files_updated = sorted(updated)

        self.logger.debug(
            "Commit reconciliation finished",
            commit=current_commit,
            relocated=report.relocated_count,
            unanchored=report.unanchored_count,
        )
        return report
