"""MCP server exposing line notes as tools.

Every tool takes and returns JSON. Failures are reported as
``{"error": {"code": ..., "message": ...}}`` rather than raised, so agent
clients always receive a structured result.
"""

import json
from pathlib import Path
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool
from pydantic import BaseModel, Field, ValidationError

from line_notes.anchors import assess_note, flatten
from line_notes.buffers import TextBuffer
from line_notes.config import ConfigError, load_config
from line_notes.engine import AnnotationEngine
from line_notes.locking import LockTimeout
from line_notes.models import EditOperation
from line_notes.storage import UnsupportedVersionError, find_project_root, normalize_file_key

# ============================================================================
# Error Models
# ============================================================================


class ErrorResponse(BaseModel):
    """Structured error response for MCP tools."""

    code: str = Field(..., description="Error code (FILE_NOT_FOUND, NOTE_NOT_FOUND, etc.)")
    message: str = Field(..., description="Human-readable error message")


class ToolError(Exception):
    """Raised inside handlers to short-circuit with an ErrorResponse."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


# ============================================================================
# Request/Response Models
# ============================================================================


class NoteAddRequest(BaseModel):
    """Request model for note_add tool."""

    file: str = Field(..., description="Path to source file (relative or absolute)")
    line: int = Field(..., gt=0, description="Line number (1-indexed)")
    note: str = Field(..., max_length=10000, description="Note text; empty deletes the note")


class NoteAddResponse(BaseModel):
    """Response model for note_add tool."""

    note_id: str | None = Field(..., description="Note ID (ULID), null when the note was deleted")
    file: str = Field(..., description="Source file path (relative to project root)")
    line: int = Field(..., description="Line number (1-indexed)")
    commit: str | None = Field(default=None, description="Commit the anchor was stamped with")


class NoteListRequest(BaseModel):
    """Request model for note_list tool."""

    file: str | None = Field(
        default=None, description="Path to source file (optional, omit for all files)"
    )


class NoteListResponse(BaseModel):
    """Response model for note_list tool."""

    notes: list[dict[str, Any]] = Field(..., description="Notes with file, line and health")


class NoteDeleteRequest(BaseModel):
    """Request model for note_delete tool."""

    file: str = Field(..., description="Path to source file")
    line: int = Field(..., gt=0, description="Line number (1-indexed)")


class NoteDeleteResponse(BaseModel):
    """Response model for note_delete tool."""

    file: str = Field(..., description="Source file path")
    line: int = Field(..., description="Line number (1-indexed)")
    deleted: bool = Field(..., description="Whether a note existed and was removed")


class NoteApplyEditRequest(BaseModel):
    """Request model for note_apply_edit tool."""

    file: str = Field(..., description="Path to the edited source file (already saved)")
    edits: list[EditOperation] = Field(
        ..., min_length=1, description="Edits in application order, 0-indexed old coordinates"
    )


class NoteApplyEditResponse(BaseModel):
    """Response model for note_apply_edit tool."""

    file: str = Field(..., description="Source file path")
    changed: bool = Field(..., description="Whether any note moved or was re-snapshotted")


class NoteReconcileResponse(BaseModel):
    """Response model for note_reconcile tool."""

    current_commit: str | None = Field(..., description="Commit notes were reconciled onto")
    examined: int = Field(..., description="Notes stamped with another commit")
    relocated: int = Field(..., description="Notes moved onto the current commit")
    unanchored: int = Field(..., description="Notes left without a match")
    files_updated: list[str] = Field(..., description="Files whose notes were rewritten")


# ============================================================================
# Helpers
# ============================================================================


def _error(code: str, message: str) -> list[TextContent]:
    error = ErrorResponse(code=code, message=message)
    return [TextContent(type="text", text=json.dumps({"error": error.model_dump()}, indent=2))]


def _ok(response: BaseModel) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(response.model_dump(), indent=2))]


def _open_engine() -> tuple[AnnotationEngine, Path]:
    """Engine for the repository containing the working directory."""
    try:
        project_root = find_project_root(Path.cwd())
    except ValueError as e:
        raise ToolError("NO_GIT_REPO", str(e)) from e
    try:
        config = load_config(project_root)
    except ConfigError as e:
        raise ToolError("CONFIG_ERROR", str(e)) from e
    try:
        return AnnotationEngine.for_project(project_root, config), project_root
    except UnsupportedVersionError as e:
        raise ToolError("UNSUPPORTED_VERSION", str(e)) from e


def _source_key(file: str, project_root: Path, must_exist: bool = True) -> str:
    """Normalize a tool's file argument and check it lies inside the project."""
    source_path = Path(file)
    if not source_path.is_absolute():
        source_path = Path.cwd() / source_path
    key = normalize_file_key(source_path)
    try:
        relative = Path(key).relative_to(project_root.resolve())
    except ValueError as e:
        raise ToolError("INVALID_PATH", f"Source file is outside project root: {key}") from e
    if must_exist and not Path(key).is_file():
        raise ToolError("FILE_NOT_FOUND", f"File not found: {relative.as_posix()}")
    return key


def _relative(key: str, project_root: Path) -> str:
    return Path(key).relative_to(project_root.resolve()).as_posix()


# ============================================================================
# MCP Server
# ============================================================================


# Initialize MCP server
mcp = Server("line-notes")


@mcp.list_tools()
async def list_tools() -> list[Tool]:
    """List all available MCP tools."""
    return [
        Tool(
            name="note_add",
            description="Attach a note to a line of a source file (replaces any note on that line)",
            inputSchema={
                "type": "object",
                "properties": {
                    "file": {"type": "string", "description": "Path to source file"},
                    "line": {
                        "type": "integer",
                        "description": "Line number (1-indexed)",
                        "minimum": 1,
                    },
                    "note": {
                        "type": "string",
                        "description": "Note text (empty deletes the note)",
                        "maxLength": 10000,
                    },
                },
                "required": ["file", "line", "note"],
            },
        ),
        Tool(
            name="note_list",
            description="List notes with their anchor health, for one file or the whole project",
            inputSchema={
                "type": "object",
                "properties": {
                    "file": {
                        "type": "string",
                        "description": "Path to source file (omit for all files)",
                    },
                },
            },
        ),
        Tool(
            name="note_delete",
            description="Delete the note on a line of a source file",
            inputSchema={
                "type": "object",
                "properties": {
                    "file": {"type": "string", "description": "Path to source file"},
                    "line": {
                        "type": "integer",
                        "description": "Line number (1-indexed)",
                        "minimum": 1,
                    },
                },
                "required": ["file", "line"],
            },
        ),
        Tool(
            name="note_apply_edit",
            description=(
                "Shift a file's notes for edits just written to disk. Each edit replaces the "
                "0-indexed inclusive range start_line..end_line of the old text with new_text"
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "file": {"type": "string", "description": "Path to the edited file"},
                    "edits": {
                        "type": "array",
                        "minItems": 1,
                        "items": {
                            "type": "object",
                            "properties": {
                                "start_line": {"type": "integer", "minimum": 0},
                                "end_line": {"type": "integer", "minimum": 0},
                                "new_text": {"type": "string"},
                            },
                            "required": ["start_line", "end_line", "new_text"],
                        },
                    },
                },
                "required": ["file", "edits"],
            },
        ),
        Tool(
            name="note_reconcile",
            description="Relocate notes stamped with older commits onto the checked-out commit",
            inputSchema={"type": "object", "properties": {}},
        ),
    ]


@mcp.call_tool()
async def call_tool(name: str, arguments: Any) -> list[TextContent]:
    """Handle MCP tool calls."""
    try:
        if name == "note_add":
            return await handle_note_add(arguments)
        elif name == "note_list":
            return await handle_note_list(arguments)
        elif name == "note_delete":
            return await handle_note_delete(arguments)
        elif name == "note_apply_edit":
            return await handle_note_apply_edit(arguments)
        elif name == "note_reconcile":
            return await handle_note_reconcile(arguments)
        else:
            return _error("UNKNOWN_TOOL", f"Unknown tool: {name}")
    except ToolError as e:
        return _error(e.code, e.message)
    except LockTimeout as e:
        return _error("LOCK_TIMEOUT", str(e))
    except Exception as e:
        # Catch-all for unexpected errors
        return _error("INTERNAL_ERROR", str(e))


async def handle_note_add(arguments: Any) -> list[TextContent]:
    """Handle note_add tool call."""
    try:
        req = NoteAddRequest(**(arguments or {}))
    except ValidationError as e:
        return _error("VALIDATION_ERROR", f"Invalid input: {e}")

    engine, project_root = _open_engine()
    key = _source_key(req.file, project_root)

    buffer = TextBuffer.from_file(Path(key))
    if req.line > buffer.line_count():
        return _error(
            "INVALID_LINE", f"Invalid line: {req.line} (file has {buffer.line_count()} lines)"
        )

    try:
        note = await engine.add_note(key, req.line - 1, buffer.line_text(req.line - 1), req.note)
    except OSError as e:
        return _error("WRITE_FAILED", f"Failed to write notes: {e}")

    response = NoteAddResponse(
        note_id=note.id if note else None,
        file=_relative(key, project_root),
        line=req.line,
        commit=note.commit if note else None,
    )
    return _ok(response)


async def handle_note_list(arguments: Any) -> list[TextContent]:
    """Handle note_list tool call."""
    try:
        req = NoteListRequest(**(arguments or {}))
    except ValidationError as e:
        return _error("VALIDATION_ERROR", f"Invalid input: {e}")

    engine, project_root = _open_engine()
    if req.file is None:
        notes_by_file = engine.store.all_notes()
    else:
        key = _source_key(req.file, project_root, must_exist=False)
        notes_by_file = {key: engine.notes_in(key)}

    notes = []
    for key, file_notes in notes_by_file.items():
        path = Path(key)
        buffer = TextBuffer.from_file(path) if path.is_file() else None
        for note in flatten(file_notes):
            entry = note.model_dump(mode="json")
            entry["file"] = _relative(key, project_root)
            entry["line"] = note.line_number + 1
            entry["health"] = assess_note(note, buffer).value if buffer else "missing"
            notes.append(entry)

    return _ok(NoteListResponse(notes=notes))


async def handle_note_delete(arguments: Any) -> list[TextContent]:
    """Handle note_delete tool call."""
    try:
        req = NoteDeleteRequest(**(arguments or {}))
    except ValidationError as e:
        return _error("VALIDATION_ERROR", f"Invalid input: {e}")

    engine, project_root = _open_engine()
    key = _source_key(req.file, project_root, must_exist=False)

    if engine.note_at(key, req.line - 1) is None:
        return _error(
            "NOTE_NOT_FOUND", f"No note on line {req.line} of {_relative(key, project_root)}"
        )

    try:
        await engine.delete_note(key, req.line - 1)
    except OSError as e:
        return _error("WRITE_FAILED", f"Failed to write notes: {e}")

    return _ok(NoteDeleteResponse(file=_relative(key, project_root), line=req.line, deleted=True))


async def handle_note_apply_edit(arguments: Any) -> list[TextContent]:
    """Handle note_apply_edit tool call.

    The file on disk is taken as the buffer after the edits.
    """
    try:
        req = NoteApplyEditRequest(**(arguments or {}))
    except ValidationError as e:
        return _error("VALIDATION_ERROR", f"Invalid input: {e}")

    engine, project_root = _open_engine()
    key = _source_key(req.file, project_root)

    try:
        changed = await engine.apply_edit(key, req.edits, TextBuffer.from_file(Path(key)))
    except OSError as e:
        return _error("WRITE_FAILED", f"Failed to write notes: {e}")

    return _ok(NoteApplyEditResponse(file=_relative(key, project_root), changed=changed))


async def handle_note_reconcile(arguments: Any) -> list[TextContent]:
    """Handle note_reconcile tool call."""
    engine, project_root = _open_engine()
    try:
        report = await engine.reconcile_commit()
    except OSError as e:
        return _error("WRITE_FAILED", f"Failed to write notes: {e}")

    response = NoteReconcileResponse(
        current_commit=report.current_commit,
        examined=report.examined_count,
        relocated=report.relocated_count,
        unanchored=report.unanchored_count,
        files_updated=[_relative(k, project_root) for k in report.files_updated],
    )
    return _ok(response)


# ============================================================================
# Main Entry Point
# ============================================================================


async def main() -> None:
    """Run the MCP server."""
    async with stdio_server() as (read_stream, write_stream):
        await mcp.run(read_stream, write_stream, mcp.create_initialization_options())


def run_server() -> None:
    """Synchronous entry point for running the server."""
    import asyncio

    asyncio.run(main())


if __name__ == "__main__":
    run_server()
