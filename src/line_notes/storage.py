"""Versioned per-file note storage.

NoteStore is pure data access: it reads and replaces whole per-file note maps
under the active schema version and never reconciles anything itself. The
persistence medium is a backend; two are provided:

- MemoryBackend: process-local dict, used by tests and embedding applications
- JsonDirectoryBackend: one JSON sidecar per source file under ``.notes/files/``
"""

import json
import os
import tempfile
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Protocol

from line_notes.locking import sidecar_lock
from line_notes.logging import Logger, get_logger
from line_notes.models import FileNotes, Note, NoteSidecar, StoreMetadata, VersionedFileNotes

# Active schema version. Bump whenever the Note shape changes incompatibly;
# data stored under older tags is kept as-is, not migrated in place.
VERSION = "1.0"

ContextProvider = Callable[[], str | Path | None]


class NoFileContextError(Exception):
    """Raised when no file identity is supplied and none can be inferred."""

    pass


class UnsupportedVersionError(Exception):
    """Raised when stored data was written under an unknown active version."""

    pass


def normalize_file_key(path: str | Path) -> str:
    """Canonical store key for a source file: its absolute, resolved path."""
    return str(Path(path).expanduser().resolve())


def find_project_root(start_path: Path | None = None) -> Path:
    """
    Find the project root by looking for a .git directory or file.

    Args:
        start_path: Starting directory for search (defaults to current working directory)

    Returns:
        Absolute path to project root

    Raises:
        ValueError: If no .git entry is found in any parent directory
    """
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()
    for parent in [current] + list(current.parents):
        if (parent / ".git").exists():
            return parent

    raise ValueError(
        f"No .git directory found in {start_path} or any parent directory.\n"
        "Line notes are stored relative to a git repository root."
    )


def get_sidecar_path(source_path: Path, files_dir: Path, project_root: Path) -> Path:
    """
    Map a source file to its sidecar, mirroring the source tree.

    - src/foo/bar.py -> <files_dir>/src/foo/bar.py.json

    Raises:
        ValueError: If source_path is outside project_root
    """
    source_abs = source_path.resolve()
    root_abs = project_root.resolve()
    try:
        relative = source_abs.relative_to(root_abs)
    except ValueError:
        raise ValueError(
            f"Source file is outside project root:\n  Source: {source_abs}\n  Root: {root_abs}"
        )
    return files_dir / f"{relative.as_posix()}.json"


def _copy_versions(versions: VersionedFileNotes) -> VersionedFileNotes:
    return {
        tag: {line: [note.model_copy() for note in notes] for line, notes in file_notes.items()}
        for tag, file_notes in versions.items()
    }


class StorageBackend(Protocol):
    """Keyed, versioned, per-file persistence used by NoteStore."""

    def load(self, key: str) -> VersionedFileNotes | None: ...

    def save(self, key: str, versions: VersionedFileNotes) -> None: ...

    def remove(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...

    def load_metadata(self) -> StoreMetadata | None: ...

    def save_metadata(self, metadata: StoreMetadata) -> None: ...


class MemoryBackend:
    """In-process backend. Values are copied on the way in and out."""

    def __init__(self) -> None:
        self._data: dict[str, VersionedFileNotes] = {}
        self._metadata: StoreMetadata | None = None

    def load(self, key: str) -> VersionedFileNotes | None:
        versions = self._data.get(key)
        return None if versions is None else _copy_versions(versions)

    def save(self, key: str, versions: VersionedFileNotes) -> None:
        self._data[key] = _copy_versions(versions)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)

    def load_metadata(self) -> StoreMetadata | None:
        return self._metadata

    def save_metadata(self, metadata: StoreMetadata) -> None:
        self._metadata = metadata


class JsonDirectoryBackend:
    """Sidecar backend: ``<root>/<storage_dir>/files/<relative source path>.json``.

    Writes are atomic (temp file + rename in the same directory) under an
    exclusive lock; JSON is deterministic (sorted keys, 2-space indent,
    trailing newline) so sidecars diff cleanly in git.
    """

    def __init__(
        self,
        project_root: Path,
        storage_dir: str | Path = ".notes",
        lock_timeout: float = 5.0,
        logger: Logger | None = None,
    ) -> None:
        self.project_root = project_root.resolve()
        storage = Path(storage_dir)
        self.storage_root = storage if storage.is_absolute() else self.project_root / storage
        self.files_dir = self.storage_root / "files"
        self.metadata_path = self.storage_root / "metadata.json"
        self.lock_timeout = lock_timeout
        self._logger = logger

    @property
    def logger(self) -> Logger:
        return self._logger or get_logger()

    def sidecar_path(self, key: str) -> Path:
        return get_sidecar_path(Path(key), self.files_dir, self.project_root)

    def load(self, key: str) -> VersionedFileNotes | None:
        path = self.sidecar_path(key)
        if not path.exists():
            return None
        with sidecar_lock(path, mode="shared", timeout=self.lock_timeout):
            return self._read_sidecar(path).versions

    def save(self, key: str, versions: VersionedFileNotes) -> None:
        path = self.sidecar_path(key)
        relative = Path(key).resolve().relative_to(self.project_root)
        sidecar = NoteSidecar(source_file=relative.as_posix(), versions=versions)
        with sidecar_lock(path, mode="exclusive", timeout=self.lock_timeout):
            self._write_json(path, sidecar.model_dump(mode="json"))

    def remove(self, key: str) -> None:
        path = self.sidecar_path(key)
        with sidecar_lock(path, mode="exclusive", timeout=self.lock_timeout):
            path.unlink(missing_ok=True)

    def keys(self) -> list[str]:
        if not self.files_dir.exists():
            return []
        keys = []
        for path in sorted(self.files_dir.rglob("*.json")):
            if path.name.startswith(".tmp_") or not path.is_file():
                continue
            try:
                sidecar = self._read_sidecar(path)
            except ValueError as e:
                self.logger.warning(f"Skipping unreadable sidecar {path}: {e}")
                continue
            keys.append(normalize_file_key(self.project_root / sidecar.source_file))
        return keys

    def load_metadata(self) -> StoreMetadata | None:
        if not self.metadata_path.exists():
            return None
        try:
            data = json.loads(self.metadata_path.read_text(encoding="utf-8"))
            return StoreMetadata.model_validate(data)
        except Exception as e:
            raise ValueError(f"Invalid metadata file {self.metadata_path}: {e}") from e

    def save_metadata(self, metadata: StoreMetadata) -> None:
        self._write_json(self.metadata_path, metadata.model_dump(mode="json"))

    def _read_sidecar(self, path: Path) -> NoteSidecar:
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in sidecar file {path}: {e}") from e
        except OSError as e:
            raise ValueError(f"Failed to read sidecar file {path}: {e}") from e

        try:
            return NoteSidecar.model_validate(data)
        except Exception as e:
            raise ValueError(f"Sidecar file failed schema validation: {e}") from e

    def _write_json(self, path: Path, payload: object) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        json_str = json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False) + "\n"

        temp_fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp_", suffix=".json")
        temp_path = Path(temp_name)
        try:
            with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
                f.write(json_str)
            temp_path.replace(path)
        except Exception as e:
            temp_path.unlink(missing_ok=True)
            raise OSError(f"Failed to write {path}: {e}") from e


class NoteStore:
    """Versioned, per-file, per-line map of notes.

    Callers read a file's whole map, modify it, and replace it with ``put``;
    there is no line-level mutation besides ``delete``. When a file argument
    is omitted, the optional ``context_provider`` (the editor's active file)
    is consulted; with no file at all, reads return empty results and writes
    are skipped.
    """

    def __init__(
        self,
        backend: StorageBackend,
        context_provider: ContextProvider | None = None,
        version: str = VERSION,
        logger: Logger | None = None,
    ) -> None:
        self.backend = backend
        self.context_provider = context_provider
        self.version = version
        self._logger = logger

    @property
    def logger(self) -> Logger:
        return self._logger or get_logger()

    def require_file(self, file: str | Path | None = None) -> str:
        """Resolve a file identity or raise NoFileContextError."""
        if file is None and self.context_provider is not None:
            file = self.context_provider()
        if file is None or str(file) == "":
            raise NoFileContextError("Unable to determine file path for notes")
        return normalize_file_key(file)

    def resolve_file(self, file: str | Path | None, operation: str = "access") -> str | None:
        """Like require_file, but logs and returns None when there is no file context."""
        try:
            return self.require_file(file)
        except NoFileContextError as e:
            self.logger.warning(f"{e}; skipping {operation}")
            return None

    def get(self, file: str | Path | None, line: int) -> Note | None:
        """Note at ``line`` for the active version, or None."""
        notes = self.get_all(file).get(str(line), [])
        return notes[0] if notes else None

    def get_all(self, file: str | Path | None = None) -> FileNotes:
        """Full line -> [note] map for one file under the active version."""
        key = self.resolve_file(file, "read")
        if key is None:
            return {}
        versions = self.backend.load(key) or {}
        return versions.get(self.version, {})

    def put(self, file: str | Path | None, notes: FileNotes) -> None:
        """Replace the whole map for ``file`` under the active version."""
        key = self.resolve_file(file, "write")
        if key is None:
            return
        self._write(key, notes)

    def put_many(self, notes_by_file: Mapping[str, FileNotes]) -> None:
        """Replace several files' maps in one batch."""
        for file, notes in notes_by_file.items():
            self._write(normalize_file_key(file), notes)

    def delete(self, file: str | Path | None, line: int) -> None:
        key = self.resolve_file(file, "delete")
        if key is None:
            return
        notes = self.get_all(key)
        if notes.pop(str(line), None) is not None:
            self._write(key, notes)

    def delete_all(self, file: str | Path | None = None) -> None:
        """Drop every version of the notes stored for a file."""
        key = self.resolve_file(file, "delete all")
        if key is None:
            return
        self.backend.remove(key)

    def files(self) -> list[str]:
        """Every file that has a stored note map."""
        return self.backend.keys()

    def all_notes(self) -> dict[str, FileNotes]:
        """Active-version note maps for every stored file, skipping empty ones."""
        result: dict[str, FileNotes] = {}
        for key in self.files():
            notes = self.get_all(key)
            if notes:
                result[key] = notes
        return result

    def _write(self, key: str, notes: FileNotes) -> None:
        versions = self.backend.load(key) or {}
        versions[self.version] = notes
        self.backend.save(key, versions)


def open_note_store(
    backend: StorageBackend,
    context_provider: ContextProvider | None = None,
    logger: Logger | None = None,
) -> NoteStore:
    """Open a NoteStore after checking the backend's recorded schema version.

    A fresh backend is stamped with the active version.

    Raises:
        UnsupportedVersionError: If the backend was written under another version
    """
    metadata = backend.load_metadata()
    if metadata is None:
        backend.save_metadata(StoreMetadata(version=VERSION))
    elif metadata.version != VERSION:
        raise UnsupportedVersionError(
            f"Stored notes use version {metadata.version!r}; this build supports {VERSION!r}"
        )
    return NoteStore(backend, context_provider=context_provider, logger=logger)
