"""Watch a repository's HEAD and refs and trigger commit checks.

Checkouts, pulls, merges and commits all end by rewriting ``.git/HEAD``, a
file under ``.git/refs/`` or ``.git/packed-refs``. The handler debounces bursts
of such events and then asks the engine to compare the current commit with the
last observed one; the engine queues commit reconciliation when it moved.
"""

import asyncio
import os
from collections.abc import Callable
from pathlib import Path
from threading import Event, Timer

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from line_notes.engine import AnnotationEngine
from line_notes.git_ops import NotAGitRepositoryError
from line_notes.logging import Logger, get_logger

REF_FILES = ("HEAD", "packed-refs")
REFS_DIR = "refs"


def resolve_git_dir(repo_root: Path) -> Path:
    """The git directory of ``repo_root``, following a ``gitdir:`` file for worktrees."""
    dot_git = repo_root / ".git"
    if dot_git.is_file():
        content = dot_git.read_text(encoding="utf-8").strip()
        if content.startswith("gitdir:"):
            git_dir = Path(content[len("gitdir:") :].strip())
            if not git_dir.is_absolute():
                git_dir = repo_root / git_dir
            return git_dir.resolve()
    return dot_git.resolve()


def _decode(path: str | bytes) -> str:
    return path if isinstance(path, str) else path.decode("utf-8")


class HeadChangeHandler(FileSystemEventHandler):
    """File system event handler with a debounced callback for ref changes.

    Lock files git writes while updating a ref are ignored; the rename of the
    lock onto the ref is what counts.
    """

    def __init__(
        self,
        git_dir: Path,
        callback: Callable[[], None],
        debounce_seconds: float = 0.5,
        logger: Logger | None = None,
    ) -> None:
        """Initialize the event handler.

        Args:
            git_dir: The repository's git directory
            callback: Called on the timer thread once a burst of ref changes settles
            debounce_seconds: Wait time after the last change before calling back
            logger: Logger for debug output and callback failures
        """
        self.git_dir = git_dir.resolve()
        self.callback = callback
        self.debounce_seconds = debounce_seconds
        self.timer: Timer | None = None
        self.shutdown_event = Event()
        self._logger = logger

    @property
    def logger(self) -> Logger:
        return self._logger or get_logger()

    def is_ref_change(self, path: str | bytes) -> bool:
        """Whether ``path`` is HEAD, packed-refs or a file under refs/."""
        candidate = Path(os.path.abspath(_decode(path)))
        if candidate.suffix == ".lock":
            return False
        try:
            parts = candidate.relative_to(self.git_dir).parts
        except ValueError:
            return False
        if len(parts) == 1:
            return parts[0] in REF_FILES
        return len(parts) > 1 and parts[0] == REFS_DIR

    def _handle(self, event: FileSystemEvent, *paths: str | bytes) -> None:
        if event.is_directory or self.shutdown_event.is_set():
            return
        for path in paths:
            if self.is_ref_change(path):
                self.logger.debug("Ref change detected", path=_decode(path))
                self._schedule()
                return

    def _schedule(self) -> None:
        """Cancel any pending timer and start a new one."""
        if self.timer is not None:
            self.timer.cancel()
        self.timer = Timer(self.debounce_seconds, self._fire)
        self.timer.daemon = True
        self.timer.start()

    def _fire(self) -> None:
        if self.shutdown_event.is_set():
            return
        try:
            self.callback()
        except Exception as e:
            self.logger.exception("Ref change callback failed", e)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._handle(event, event.src_path)

    def on_created(self, event: FileSystemEvent) -> None:
        self._handle(event, event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._handle(event, event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._handle(event, event.src_path, event.dest_path)

    def shutdown(self) -> None:
        """Cancel any pending timer and stop reacting to events."""
        if self.timer is not None:
            self.timer.cancel()
        self.shutdown_event.set()


async def watch_repository(
    engine: AnnotationEngine,
    repo_root: Path,
    debounce_seconds: float = 0.5,
    stop_event: asyncio.Event | None = None,
    logger: Logger | None = None,
) -> None:
    """
    Run commit checks whenever the repository's refs change, until ``stop_event`` is set.

    The current commit is observed once at startup, so notes left behind by
    commits made while nothing was watching are reconciled right away.

    Raises:
        NotAGitRepositoryError: If ``repo_root`` has no git directory
    """
    logger = logger or get_logger()
    git_dir = resolve_git_dir(repo_root)
    if not git_dir.is_dir():
        raise NotAGitRepositoryError(f"No git directory found for {repo_root}")

    loop = asyncio.get_running_loop()
    stop_event = stop_event or asyncio.Event()
    running: set[asyncio.Task] = set()

    async def check() -> None:
        try:
            await engine.check_commit()
        except Exception as e:
            logger.exception("Commit check failed", e)

    def start_check() -> None:
        task = loop.create_task(check())
        running.add(task)
        task.add_done_callback(running.discard)

    def on_ref_change() -> None:
        loop.call_soon_threadsafe(start_check)

    handler = HeadChangeHandler(git_dir, on_ref_change, debounce_seconds, logger)
    observer = Observer()
    observer.schedule(handler, str(git_dir), recursive=True)

    await check()
    observer.start()
    logger.info(f"Watching {git_dir} for commit changes")
    try:
        await stop_event.wait()
    finally:
        handler.shutdown()
        observer.stop()
        await asyncio.to_thread(observer.join)
        if running:
            await asyncio.gather(*running, return_exceptions=True)
        await engine.queue.join()
        logger.info("Watcher stopped")
