"""Git integration: current commit and commit-to-commit diffs.

The reconcilers treat version control as an external collaborator that
supplies a commit hash (compared by string equality) and unified diff text.
GitProvider implements that collaborator on top of the ``git`` executable.
Blocking subprocess calls run in a worker thread so the event loop (and the
task queue draining on it) stays responsive.
"""

import asyncio
import subprocess
from pathlib import Path

from line_notes.logging import Logger, get_logger


class GitError(Exception):
    """Base exception for git-related errors."""

    pass


class GitNotAvailableError(GitError):
    """Raised when git is not available in the environment."""

    pass


class NotAGitRepositoryError(GitError):
    """Raised when operating outside a git repository."""

    pass


def is_git_available() -> bool:
    """
    Check if git is available in the environment.

    Returns:
        True if git command is available, False otherwise
    """
    try:
        result = subprocess.run(
            ["git", "--version"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        return result.returncode == 0
    except (subprocess.SubprocessError, FileNotFoundError, OSError):
        return False


def is_git_repository(path: Path) -> bool:
    """
    Check if the given path is within a git repository.

    Args:
        path: Directory or file path to check

    Returns:
        True if path is within a git repository, False otherwise
    """
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--git-dir"],
            cwd=path if path.is_dir() else path.parent,
            capture_output=True,
            text=True,
            timeout=5,
        )
        return result.returncode == 0
    except (subprocess.SubprocessError, FileNotFoundError, OSError):
        return False


def run_git(args: list[str], cwd: Path, timeout: float = 10.0) -> str:
    """
    Run a git command and return its stdout.

    Raises:
        GitNotAvailableError: If the git executable cannot be started
        GitError: If the command fails or times out
    """
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise GitNotAvailableError("Git is not available in the environment") from e
    except subprocess.TimeoutExpired as e:
        raise GitError(f"git {' '.join(args)} timed out after {timeout:.1f}s") from e
    except (subprocess.SubprocessError, OSError) as e:
        raise GitError(f"git {' '.join(args)} failed: {e}") from e

    if result.returncode != 0:
        raise GitError(f"git {' '.join(args)} failed: {result.stderr.strip()}")
    return result.stdout


class GitProvider:
    """Version-control collaborator for one repository."""

    def __init__(self, repo_root: Path, timeout: float = 10.0, logger: Logger | None = None):
        self.repo_root = repo_root.resolve()
        self.timeout = timeout
        self._logger = logger

    @property
    def logger(self) -> Logger:
        return self._logger or get_logger()

    def head_commit(self) -> str | None:
        """Synchronous HEAD lookup; None outside a repository or before the first commit."""
        try:
            commit = run_git(["rev-parse", "--verify", "HEAD"], self.repo_root, self.timeout)
        except GitError as e:
            self.logger.debug("Current commit unavailable", error=str(e))
            return None
        return commit.strip() or None

    def diff_text(self, from_commit: str, to_commit: str) -> str:
        """Synchronous unified diff between two commits.

        Raises:
            GitError: If either commit is unknown or git fails
        """
        return run_git(
            ["diff", "--no-color", "--no-ext-diff", "-U3", from_commit, to_commit],
            self.repo_root,
            self.timeout,
        )

    async def current_commit(self) -> str | None:
        return await asyncio.to_thread(self.head_commit)

    async def diff(self, from_commit: str, to_commit: str) -> str:
        return await asyncio.to_thread(self.diff_text, from_commit, to_commit)
