"""Line-anchored notes that follow code through edits and commits.

This package contains:
- NoteStore: versioned per-file note storage over pluggable backends
- EditReconciler and CommitReconciler: keep notes on the same logical line
- DiffParser: unified diff -> added/removed/moved line indexes
- AnnotationEngine: facade serializing all of the above through a TaskQueue
"""

from .commit_reconciler import CommitReconciler
from .commit_tracker import CommitTracker
from .diff_parser import DiffParser
from .edit_reconciler import EditReconciler
from .engine import AnnotationEngine
from .models import DiffResult, EditOperation, Note
from .storage import JsonDirectoryBackend, MemoryBackend, NoteStore
from .task_queue import TaskQueue

__version__ = "0.1.0"

__all__ = [
    "AnnotationEngine",
    "CommitReconciler",
    "CommitTracker",
    "DiffParser",
    "DiffResult",
    "EditOperation",
    "EditReconciler",
    "JsonDirectoryBackend",
    "MemoryBackend",
    "Note",
    "NoteStore",
    "TaskQueue",
]
