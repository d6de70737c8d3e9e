"""CLI entry point for line notes."""

import asyncio
import json
import signal
import sys
from pathlib import Path

import click

from line_notes.anchors import assess_note, flatten
from line_notes.buffers import TextBuffer
from line_notes.config import ConfigError, NotesConfig, load_config
from line_notes.diff_parser import DiffParser
from line_notes.engine import AnnotationEngine
from line_notes.git_ops import GitError, GitProvider
from line_notes.locking import LockTimeout
from line_notes.logging import get_logger, init_logger
from line_notes.models import Note
from line_notes.storage import UnsupportedVersionError, find_project_root, normalize_file_key
from line_notes.watcher import watch_repository


def _project_root() -> Path:
    """Project root from the working directory; exits with 2 outside a repository."""
    try:
        return find_project_root()
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)


def _open_engine(project_root: Path) -> tuple[AnnotationEngine, NotesConfig]:
    """Load configuration and open the engine; exits on configuration or storage errors."""
    ctx = click.get_current_context()
    verbose = ctx.obj.get("verbose") if ctx.obj else None
    try:
        config = load_config(project_root, verbose=verbose or None)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    init_logger(verbose=config.verbose)
    try:
        engine = AnnotationEngine.for_project(project_root, config)
    except (UnsupportedVersionError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)
    return engine, config


def _source_key(file_path: Path, project_root: Path) -> str:
    """Store key for a file argument; exits with 1 when it is outside the project."""
    key = normalize_file_key(file_path)
    try:
        Path(key).relative_to(project_root.resolve())
    except ValueError:
        click.echo(
            f"Error: Source file is outside project root:\n"
            f"  Source: {key}\n  Root: {project_root.resolve()}",
            err=True,
        )
        sys.exit(1)
    return key


def _relative(key: str, project_root: Path) -> str:
    try:
        return Path(key).relative_to(project_root.resolve()).as_posix()
    except ValueError:
        return key


def _note_health(note: Note, key: str) -> str:
    """Anchor health of a note against the file on disk ("missing" if the file is gone)."""
    path = Path(key)
    if not path.exists():
        return "missing"
    return assess_note(note, TextBuffer.from_file(path)).value


def _format_health(health: str) -> str:
    colors = {"anchored": "green", "unanchored": "yellow", "out_of_range": "red"}
    return click.style(health, fg=colors.get(health, "red"))


def _note_payload(note: Note, key: str, project_root: Path) -> dict:
    payload = note.model_dump(mode="json")
    payload["file"] = _relative(key, project_root)
    payload["line"] = note.line_number + 1
    payload["health"] = _note_health(note, key)
    return payload


@click.group()
@click.version_option(version="0.1.0", prog_name="notes")
@click.option("-v", "--verbose", is_flag=True, help="Print debug output and tracebacks")
@click.pass_context
def cli(ctx: click.Context, verbose: bool):
    """Line-anchored notes that follow code through edits and commits."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    init_logger(verbose=verbose)


@cli.command()
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("line", type=click.IntRange(min=1))
@click.argument("body")
def add(file_path: Path, line: int, body: str):
    """
    Attach a note to LINE (1-indexed) of FILE_PATH, replacing any note already there.

    An empty BODY deletes the note on that line.

    Examples:

        notes add src/main.py 42 "Hot path, keep allocation free"

        notes add src/main.py 42 ""
    """
    try:
        project_root = _project_root()
        key = _source_key(file_path, project_root)
        engine, _ = _open_engine(project_root)

        buffer = TextBuffer.from_file(Path(key))
        if line > buffer.line_count():
            click.echo(
                f"Error: Invalid line: {line} (file has {buffer.line_count()} lines)",
                err=True,
            )
            sys.exit(1)

        note = asyncio.run(engine.add_note(key, line - 1, buffer.line_text(line - 1), body))
        if note is None:
            click.echo(f"Deleted note on line {line}")
        else:
            click.echo(f"Saved note {note.id}")
            click.echo(f"  File: {_relative(key, project_root)}")
            click.echo(f"  Line: {line}")
            if note.commit:
                click.echo(f"  Commit: {note.commit[:12]}")

    except (LockTimeout, OSError) as e:
        click.echo(f"Error writing notes: {e}", err=True)
        sys.exit(2)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        sys.exit(2)


@cli.command()
@click.argument("file_path", type=click.Path(path_type=Path))
@click.argument("line", type=click.IntRange(min=1))
def show(file_path: Path, line: int):
    """Show the note on LINE (1-indexed) of FILE_PATH."""
    try:
        project_root = _project_root()
        key = _source_key(file_path, project_root)
        engine, _ = _open_engine(project_root)

        note = engine.note_at(key, line - 1)
        if note is None:
            click.echo(f"Error: No note on line {line} of {_relative(key, project_root)}", err=True)
            sys.exit(1)

        click.echo(f"Note {note.id}")
        click.echo(f"  File: {_relative(key, project_root)}:{line}")
        click.echo(f"  Health: {_format_health(_note_health(note, key))}")
        click.echo(f"  Anchor text: {note.file_text!r}")
        click.echo(f"  Commit: {note.commit or '(untracked)'}")
        click.echo()
        click.echo(note.note)

    except (LockTimeout, ValueError) as e:
        click.echo(f"Error reading notes: {e}", err=True)
        sys.exit(2)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        sys.exit(2)


@cli.command(name="list")
@click.argument("file_path", type=click.Path(path_type=Path), required=False)
@click.option("--all", "list_all", is_flag=True, help="List notes for every file in the project")
@click.option("--json", "json_output", is_flag=True, help="Output results as JSON")
def list_notes(file_path: Path | None, list_all: bool, json_output: bool):
    """
    List notes for FILE_PATH, or for the whole project with --all.

    Examples:

        notes list src/main.py

        notes list --all --json
    """
    try:
        if not file_path and not list_all:
            click.echo("Error: Must specify either FILE_PATH or --all", err=True)
            sys.exit(1)
        if file_path and list_all:
            click.echo("Error: Cannot specify both FILE_PATH and --all", err=True)
            sys.exit(1)

        project_root = _project_root()
        engine, _ = _open_engine(project_root)

        if list_all:
            notes_by_file = engine.store.all_notes()
        else:
            assert file_path is not None
            key = _source_key(file_path, project_root)
            file_notes = engine.notes_in(key)
            notes_by_file = {key: file_notes} if file_notes else {}

        if json_output:
            payload = [
                _note_payload(note, key, project_root)
                for key, file_notes in notes_by_file.items()
                for note in flatten(file_notes)
            ]
            click.echo(json.dumps({"notes": payload}, indent=2))
            return

        if not notes_by_file:
            click.echo("No notes found")
            return

        for key, file_notes in notes_by_file.items():
            click.echo(_relative(key, project_root))
            for note in flatten(file_notes):
                health = _format_health(_note_health(note, key))
                click.echo(f"  {note.line_number + 1:>5}  [{health}]  {note.note}")

    except (LockTimeout, ValueError) as e:
        click.echo(f"Error reading notes: {e}", err=True)
        sys.exit(2)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        sys.exit(2)


@cli.command()
@click.argument("file_path", type=click.Path(path_type=Path))
@click.argument("line", type=click.IntRange(min=1))
def delete(file_path: Path, line: int):
    """Delete the note on LINE (1-indexed) of FILE_PATH."""
    try:
        project_root = _project_root()
        key = _source_key(file_path, project_root)
        engine, _ = _open_engine(project_root)

        if engine.note_at(key, line - 1) is None:
            click.echo(f"Error: No note on line {line} of {_relative(key, project_root)}", err=True)
            sys.exit(1)

        asyncio.run(engine.delete_note(key, line - 1))
        click.echo(f"Deleted note on line {line}")

    except (LockTimeout, OSError) as e:
        click.echo(f"Error writing notes: {e}", err=True)
        sys.exit(2)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        sys.exit(2)


@cli.command(name="delete-all")
@click.argument("file_path", type=click.Path(path_type=Path))
@click.option("--force", is_flag=True, help="Skip confirmation prompt")
def delete_all(file_path: Path, force: bool):
    """Delete every note of FILE_PATH, across all schema versions."""
    try:
        project_root = _project_root()
        key = _source_key(file_path, project_root)
        engine, _ = _open_engine(project_root)

        count = len(engine.notes_in(key))
        if not force and count > 0:
            click.confirm(
                f"Delete {count} note(s) on {_relative(key, project_root)}?", abort=True
            )

        asyncio.run(engine.delete_all(key))
        click.echo(f"Deleted {count} note(s)")

    except click.Abort:
        click.echo("Cancelled")
        sys.exit(0)
    except (LockTimeout, OSError) as e:
        click.echo(f"Error writing notes: {e}", err=True)
        sys.exit(2)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        sys.exit(2)


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Output results as JSON")
def reconcile(json_output: bool) -> None:
    """Relocate notes stamped with older commits onto the checked-out commit.

    Examples:
        notes reconcile
        notes reconcile --json
    """
    try:
        project_root = _project_root()
        engine, _ = _open_engine(project_root)

        report = asyncio.run(engine.reconcile_commit())

        if json_output:
            payload = report.model_dump(mode="json")
            payload["files_updated"] = [_relative(k, project_root) for k in report.files_updated]
            click.echo(json.dumps(payload, indent=2))
            return

        if report.current_commit is None:
            click.echo("No current commit; nothing to reconcile")
            return

        click.echo(f"Reconciled onto {report.current_commit[:12]}:")
        click.echo(f"  Examined: {report.examined_count}")
        click.echo(f"  Relocated: {report.relocated_count}")
        click.echo(f"  Unanchored: {report.unanchored_count}")
        for key in report.files_updated:
            click.echo(f"  Updated: {_relative(key, project_root)}")

    except (LockTimeout, OSError) as e:
        click.echo(f"Error writing notes: {e}", err=True)
        sys.exit(2)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        sys.exit(2)


@cli.command()
@click.argument("from_commit")
@click.argument("to_commit")
@click.option("--json", "json_output", is_flag=True, help="Output results as JSON")
def diff(from_commit: str, to_commit: str, json_output: bool) -> None:
    """Show the added, removed and moved lines between two commits."""
    try:
        project_root = _project_root()
        try:
            config = load_config(project_root)
        except ConfigError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

        provider = GitProvider(project_root, timeout=config.git_timeout)
        try:
            diff_text = provider.diff_text(from_commit, to_commit)
        except GitError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

        results = DiffParser().parse(diff_text, project_root)

        if json_output:
            payload = {
                _relative(key, project_root): result.model_dump(mode="json")
                for key, result in results.items()
            }
            click.echo(json.dumps(payload, indent=2, sort_keys=True))
            return

        if not results:
            click.echo("No changes")
            return

        for key, result in results.items():
            added = sum(len(v) for v in result.added_lines.values())
            removed = sum(len(v) for v in result.removed_lines.values())
            click.echo(f"{_relative(key, project_root)}: +{added} -{removed}")
            for text, pairs in sorted(result.moved_lines.items()):
                moves = ", ".join(f"{old}->{new}" for old, new in pairs)
                click.echo(f"  moved {text!r}: {moves}")

    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        sys.exit(2)


@cli.command()
@click.option(
    "--debounce",
    type=float,
    default=None,
    help="Seconds to wait after the last ref change (default: from config, 0.5)",
)
def watch(debounce: float | None) -> None:
    """Watch the repository's HEAD and reconcile notes whenever the commit changes."""
    try:
        project_root = _project_root()
        engine, config = _open_engine(project_root)
        debounce_seconds = debounce if debounce is not None else config.debounce_seconds

        async def run() -> None:
            stop_event = asyncio.Event()
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, stop_event.set)
            await watch_repository(engine, project_root, debounce_seconds, stop_event)

        asyncio.run(run())

    except GitError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)
    except KeyboardInterrupt:
        get_logger().info("Watcher stopped")
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        sys.exit(2)


if __name__ == "__main__":
    cli()
