"""Tests for sidecar locking."""

import sys
import time
from pathlib import Path

import pytest

from line_notes.locking import LockTimeout, lock_path_for, sidecar_lock


def test_lock_path_is_sibling(tmp_path: Path) -> None:
    """The lock for foo.py.json is foo.py.json.lock in the same directory."""
    sidecar = tmp_path / "src" / "foo.py.json"
    assert lock_path_for(sidecar) == tmp_path / "src" / "foo.py.json.lock"


def test_exclusive_lock_yields_lock_path(tmp_path: Path) -> None:
    sidecar = tmp_path / "a.json"
    with sidecar_lock(sidecar, mode="exclusive") as lock_path:
        assert lock_path.exists()
        sidecar.write_text("locked")
    assert sidecar.read_text() == "locked"


def test_lock_creates_parent_directories(tmp_path: Path) -> None:
    sidecar = tmp_path / "deep" / "nested" / "a.json"
    with sidecar_lock(sidecar):
        pass
    assert sidecar.parent.exists()
    # The sidecar itself is not created by locking
    assert not sidecar.exists()


def test_lock_survives_atomic_replace(tmp_path: Path) -> None:
    """Replacing the sidecar while locked does not disturb the lock file."""
    sidecar = tmp_path / "a.json"
    sidecar.write_text("old")
    with sidecar_lock(sidecar) as lock_path:
        temp = tmp_path / ".tmp_a.json"
        temp.write_text("new")
        temp.replace(sidecar)
        assert lock_path.exists()
    assert sidecar.read_text() == "new"


@pytest.mark.skipif(sys.platform == "win32", reason="flock semantics")
def test_shared_locks_coexist(tmp_path: Path) -> None:
    sidecar = tmp_path / "a.json"
    with sidecar_lock(sidecar, mode="shared"):
        with sidecar_lock(sidecar, mode="shared", timeout=0.5):
            pass


@pytest.mark.skipif(sys.platform == "win32", reason="flock semantics")
def test_exclusive_lock_times_out(tmp_path: Path) -> None:
    """A second exclusive acquisition waits, then raises LockTimeout."""
    sidecar = tmp_path / "a.json"
    with sidecar_lock(sidecar, mode="exclusive"):
        start = time.monotonic()
        with pytest.raises(LockTimeout, match="exclusive lock"):
            with sidecar_lock(sidecar, mode="exclusive", timeout=0.2):
                pass
        assert time.monotonic() - start >= 0.2


@pytest.mark.skipif(sys.platform == "win32", reason="flock semantics")
def test_lock_released_on_exception(tmp_path: Path) -> None:
    sidecar = tmp_path / "a.json"
    with pytest.raises(RuntimeError):
        with sidecar_lock(sidecar):
            raise RuntimeError("fail inside lock")

    with sidecar_lock(sidecar, timeout=0.2):
        pass
