"""Detects when the repository's current commit moves."""


class CommitTracker:
    """Remembers the last observed commit hash.

    Commit hashes are compared by plain string equality. An unavailable
    commit (None) is never reported as a change and does not overwrite the
    remembered value.
    """

    def __init__(self, initial_commit: str | None = None) -> None:
        self._last_commit = initial_commit

    @property
    def last_commit(self) -> str | None:
        return self._last_commit

    def has_changed(self, commit: str | None) -> bool:
        """Whether ``commit`` differs from the remembered one, without remembering it."""
        return commit is not None and commit != self._last_commit

    def observe(self, commit: str | None) -> bool:
        """Record ``commit`` and report whether it differs from the previous one."""
        changed = self.has_changed(commit)
        if changed:
            self._last_commit = commit
        return changed

    def reset(self) -> None:
        self._last_commit = None
