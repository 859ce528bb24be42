"""
CLI interface for the memory store.

Usage:
    gmem add --tag ops "deploy service to cluster"
    gmem search cluster
    gmem compress "deploy cluster" --budget 800
    gmem shell
"""

import json
import os
import select
import shlex
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .api import MemoryStore
from .config import StoreConfig, load_or_create_config, resolve_store_file
from .errors import GmemError, log_exception
from .lock import LockRole, clean_stale_locks, is_stale, marker_age, read_marker
from .logging_config import configure_quiet_mode, enable_debug_mode, ops_log_path
from .types import Record, SearchHit, split_tag_string


def _has_stdin_data() -> bool:
    """Check if stdin has data available without blocking.

    Returns True only when stdin is a pipe with data ready to read.
    """
    if sys.stdin.isatty():
        return False
    try:
        ready, _, _ = select.select([sys.stdin], [], [], 0)
        return bool(ready)
    except (ValueError, OSError):
        return False


# Configure quiet mode by default
# Set GMEM_VERBOSE=1 to enable debug mode via environment
if os.environ.get("GMEM_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"gmem {version('gmem')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None
_role = LockRole.CLI


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    _store_override = value


app = typer.Typer(
    name="gmem",
    help="File-backed memory store with keyword search.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="GMEM_STORE_PATH",
        help="Path to the store file (or a directory holding memory.json)",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """File-backed memory store with keyword search."""


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _load_config() -> StoreConfig:
    config = load_or_create_config()
    if _store_override is not None:
        config.store_file = resolve_store_file(_store_override)
    return config


def _get_store() -> MemoryStore:
    """Open the configured store, exiting cleanly on config errors."""
    try:
        return MemoryStore(_load_config(), role=_role)
    except (OSError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@contextmanager
def _handle_errors(command: str):
    """Show store errors as one line; keep the traceback in the error log."""
    try:
        yield
    except (GmemError, OSError) as e:
        log_exception(e, context=command)
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _parse_tags(tags: Optional[list[str]]) -> list[str]:
    """Flatten repeated --tag options, each possibly comma-separated."""
    out: list[str] = []
    for value in tags or []:
        out.extend(split_tag_string(value))
    return out


def _echo_json(data) -> None:
    typer.echo(json.dumps(data, indent=2, ensure_ascii=False))


def _format_tags(tags: list[str]) -> str:
    return f" [{', '.join(tags)}]" if tags else ""


def _format_hit(rank: int, hit: SearchHit) -> str:
    r = hit.record
    return f"{rank}. {r.text}{_format_tags(r.tags)} (score: {hit.score:.1f})  {r.id}"


def _format_record(r: Record) -> str:
    state = " (deleted)" if r.is_deleted else ""
    return f"{r.id}{state}{_format_tags(r.tags)} {r.text}"


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def add(
    text: Annotated[Optional[list[str]], typer.Argument(
        help="Memory text (reads stdin when omitted)")] = None,
    tags: Annotated[Optional[list[str]], typer.Option(
        "--tag", "--tags", "-t",
        help="Tag(s) for the memory; repeat or comma-separate",
    )] = None,
):
    """Store a new memory."""
    content = " ".join(text or [])
    if not content.strip() and _has_stdin_data():
        content = sys.stdin.read()

    store = _get_store()
    with _handle_errors("add"):
        record = store.add(content, _parse_tags(tags))

    if _get_json_output():
        _echo_json(record.to_dict())
    else:
        typer.echo(f"Added {record.id}")


@app.command()
def search(
    query: Annotated[list[str], typer.Argument(help="Search terms")],
    limit: Annotated[Optional[int], typer.Option(
        "--limit", "-n", help="Maximum results to return")] = None,
):
    """Search memories, most relevant first."""
    store = _get_store()
    with _handle_errors("search"):
        hits = store.search(" ".join(query), limit=limit)

    if _get_json_output():
        _echo_json([h.to_dict() for h in hits])
    elif not hits:
        typer.echo("No results found")
    else:
        for i, hit in enumerate(hits, start=1):
            typer.echo(_format_hit(i, hit))


@app.command()
def delete(
    id: Annotated[str, typer.Argument(help="Memory ID to delete")],
):
    """Soft-delete a memory (it stays on disk until purged)."""
    store = _get_store()
    with _handle_errors("delete"):
        deleted = store.soft_delete(id)

    if _get_json_output():
        _echo_json({"id": id, "deleted": deleted})
    elif deleted:
        typer.echo(f"Deleted {id}")
    else:
        typer.echo(f"Memory not found: {id}", err=True)
        raise typer.Exit(1)


@app.command()
def purge(
    id: Annotated[Optional[str], typer.Option("--id", help="Remove this ID")] = None,
    tag: Annotated[Optional[str], typer.Option("--tag", "-t", help="Remove records with this tag")] = None,
    text: Annotated[Optional[str], typer.Option("--text", help="Remove records containing this text")] = None,
):
    """Permanently remove memories matching any of the given criteria."""
    if not (id or tag or text):
        typer.echo("Error: give at least one of --id, --tag, --text", err=True)
        raise typer.Exit(1)

    store = _get_store()
    with _handle_errors("purge"):
        count = store.purge(id=id, tag=tag, text=text)

    if _get_json_output():
        _echo_json({"purged": count})
    else:
        typer.echo(f"Purged {count} memories")


@app.command()
def compress(
    query: Annotated[list[str], typer.Argument(help="Search terms")],
    budget: Annotated[Optional[int], typer.Option(
        "--budget", "-b", help="Maximum output characters (minimum 200)")] = None,
    limit: Annotated[Optional[int], typer.Option(
        "--limit", "-n", help="Maximum memories to consider")] = None,
):
    """Compress relevant memories into a budget-bounded markdown block."""
    store = _get_store()
    with _handle_errors("compress"):
        result = store.compress(" ".join(query), budget=budget, limit=limit)

    if _get_json_output():
        _echo_json(result.to_dict())
    else:
        typer.echo(f"--- Compressed Output ({result.used} / {result.budget} chars) ---")
        typer.echo(result.markdown, nl=False)
        typer.echo("--- End ---")


@app.command()
def stats():
    """Show record counts and tag frequencies."""
    store = _get_store()
    with _handle_errors("stats"):
        s = store.stats()

    if _get_json_output():
        _echo_json(s.to_dict())
        return
    typer.echo(f"Total: {s.total}, Active: {s.active}, Deleted: {s.deleted}")
    if s.tags:
        typer.echo("\nTags:")
        for tag, count in sorted(s.tags.items(), key=lambda kv: (-kv[1], kv[0]))[:10]:
            typer.echo(f"  - {tag}: {count}")


@app.command()
def show(
    id: Annotated[str, typer.Argument(help="Memory ID")],
):
    """Show one memory, including tombstones."""
    store = _get_store()
    with _handle_errors("show"):
        record = store.get(id)
    if record is None:
        typer.echo(f"Memory not found: {id}", err=True)
        raise typer.Exit(1)
    if _get_json_output():
        _echo_json(record.to_dict())
    else:
        typer.echo(_format_record(record))
        typer.echo(f"  keywords: {', '.join(record.keywords)}")
        typer.echo(f"  created:  {record.created_at}")
        typer.echo(f"  updated:  {record.updated_at}")
        if record.deleted_at:
            typer.echo(f"  deleted:  {record.deleted_at}")


@app.command("export")
def export_cmd(
    output: Annotated[Optional[Path], typer.Option(
        "--output", "-o", help="Write to this file instead of stdout")] = None,
):
    """Export all memories as JSON (valid input for import)."""
    store = _get_store()
    with _handle_errors("export"):
        data = store.export_json()
        if output is not None:
            output.write_text(data, encoding="utf-8")
            typer.echo(f"Exported to {output}", err=True)
            return
    typer.echo(data, nl=False)


@app.command("import")
def import_cmd(
    source: Annotated[str, typer.Argument(help="JSON export file, or '-' for stdin")],
):
    """Import memories from a JSON export. Existing IDs are skipped."""
    store = _get_store()
    with _handle_errors("import"):
        if source == "-":
            payload = sys.stdin.read()
        else:
            payload = Path(source).read_text(encoding="utf-8")
        result = store.import_records(payload)

    if _get_json_output():
        _echo_json(result.to_dict())
        return
    typer.echo(f"Imported: {result.imported}, Skipped: {result.skipped}, Failed: {result.failed}")
    for err in result.errors:
        typer.echo(f"  {err}", err=True)


@app.command()
def ingest(
    path: Annotated[Path, typer.Argument(help="Markdown or .txt file, or directory of .md files")],
    temporary: Annotated[bool, typer.Option(
        "--temp", help="Tag the memories as temporary")] = False,
    tags: Annotated[Optional[list[str]], typer.Option(
        "--tag", "-t", help="Extra tag(s); repeat or comma-separate")] = None,
):
    """Store markdown files as memories (unchanged files are skipped).

    A .txt file is split on its # heading lines, one memory per section.
    """
    from .ingest import TEXT_SUFFIXES, ingest_directory, ingest_file, ingest_text_sections

    store = _get_store()
    extra = _parse_tags(tags)
    with _handle_errors("ingest"):
        if path.is_dir():
            summary = ingest_directory(store, path, temporary=temporary, extra_tags=extra)
        elif path.suffix.lower() in TEXT_SUFFIXES:
            summary = ingest_text_sections(store, path, temporary=temporary, extra_tags=extra)
        else:
            record = ingest_file(store, path, temporary=temporary, extra_tags=extra)
            summary = None

    if summary is None:
        if _get_json_output():
            _echo_json({"id": record.id if record else None, "added": record is not None})
        elif record is None:
            typer.echo(f"Unchanged, skipped: {path}")
        else:
            typer.echo(f"Added {record.id}")
        return

    if _get_json_output():
        _echo_json({"added": summary.added, "skipped": summary.skipped, "failed": summary.failed})
        return
    typer.echo(f"Added: {len(summary.added)}, Skipped: {len(summary.skipped)}, Failed: {len(summary.failed)}")
    for name, err in summary.failed.items():
        typer.echo(f"  {name}: {err}", err=True)


@app.command()
def locks(
    clean: Annotated[bool, typer.Option(
        "--clean", help="Remove stale lock markers next to the store")] = False,
    max_age: Annotated[Optional[float], typer.Option(
        "--max-age", help="Seconds after which a marker counts as stale")] = None,
    force: Annotated[bool, typer.Option(
        "--force", help="Remove this store's lock marker even if it is fresh")] = False,
):
    """Show or clean up lock markers for the store."""
    store = _get_store()
    config = store.config
    age_limit = config.stale_lock_age if max_age is None else max_age
    marker = store.lock_path

    with _handle_errors("locks"):
        if force:
            existed = marker.exists()
            marker.unlink(missing_ok=True)
            typer.echo(f"Removed {marker}" if existed else f"No lock marker at {marker}")
            return
        if clean:
            removed = clean_stale_locks(config.store_dir, age_limit)
            typer.echo(f"Removed {removed} stale lock marker(s)")
            return

    info = read_marker(marker)
    age = marker_age(marker)
    if _get_json_output():
        _echo_json({
            "path": str(marker),
            "locked": age is not None,
            "stale": is_stale(marker, age_limit),
            "holder": info.__dict__ if info else None,
            "age_seconds": age,
        })
    elif age is None:
        typer.echo(f"Unlocked: {marker}")
    else:
        holder = f"pid {info.pid}, role {info.role}, since {info.acquired_at}" if info else "unknown holder"
        flag = " (stale)" if is_stale(marker, age_limit) else ""
        typer.echo(f"Locked{flag}: {marker} ({holder}, {age:.0f}s)")


@app.command()
def logs(
    action: Annotated[str, typer.Argument(help="status | show | clear")] = "status",
    lines: Annotated[int, typer.Option("--lines", "-n", help="Lines to show")] = 20,
):
    """Inspect or clear the operations log."""
    config = _load_config()
    log_file = ops_log_path(config.log_directory)

    if action == "status":
        size = log_file.stat().st_size if log_file.exists() else 0
        typer.echo(f"Enabled: {config.logs_enabled}")
        typer.echo(f"Log file: {log_file}")
        typer.echo(f"Size: {size} bytes (rotates at {config.logs_max_size})")
        typer.echo(f"Level: {config.logs_level}")
    elif action == "show":
        if not log_file.exists():
            typer.echo("No log entries")
            return
        tail = log_file.read_text(encoding="utf-8").splitlines()[-lines:]
        for line in tail:
            typer.echo(line)
    elif action == "clear":
        removed = 0
        for p in log_file.parent.glob(f"{log_file.name}*"):
            p.unlink(missing_ok=True)
            removed += 1
        typer.echo(f"Removed {removed} log file(s)")
    else:
        typer.echo(f"Error: unknown action {action!r} (use status, show, clear)", err=True)
        raise typer.Exit(1)


@app.command()
def config():
    """Show the config file location and effective settings."""
    try:
        cfg = _load_config()
    except (OSError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    data = {
        "config_file": str(cfg.config_path) if cfg.config_path else None,
        "store_file": str(cfg.store_file),
        "lock_scope": cfg.lock_scope.value,
        "lock_timeout": cfg.lock_timeout,
        "stale_lock_age": cfg.stale_lock_age,
        "search_limit": cfg.search_limit,
        "compress_budget": cfg.compress_budget,
        "compress_limit": cfg.compress_limit,
        "logs_enabled": cfg.logs_enabled,
        "logs_dir": str(cfg.log_directory),
    }
    if _get_json_output():
        _echo_json(data)
    else:
        for key, value in data.items():
            typer.echo(f"{key}: {value}")


SHELL_BANNER = "gmem shell. Type 'help' for commands, 'exit' to quit."


@app.command()
def shell():
    """Interactive session; runs commands under the interactive lock role."""
    global _role
    _role = LockRole.INTERACTIVE
    # Each line re-enters the main callback; carry the session's global options
    base_args = ["--store", str(_store_override)] if _store_override is not None else []
    if _json_output:
        base_args.append("--json")
    typer.echo(SHELL_BANNER)
    try:
        while True:
            try:
                line = input("gmem> ")
            except EOFError:
                break
            line = line.strip()
            if not line:
                continue
            if line in ("exit", "quit"):
                break
            if line == "help":
                line = "--help"
            try:
                args = shlex.split(line)
            except ValueError as e:
                typer.echo(f"Error: {e}", err=True)
                continue
            if args and args[0] == "shell":
                typer.echo("Already in a shell", err=True)
                continue
            try:
                app([*base_args, *args], standalone_mode=False)
            except typer.Exit:
                pass
            except (typer.Abort, KeyboardInterrupt):
                typer.echo("")
            except Exception as e:  # click usage errors and the like
                typer.echo(f"Error: {e}", err=True)
    finally:
        _role = LockRole.CLI
    typer.echo("Goodbye!")


@app.command()
def mcp():
    """Run the stdio tool server."""
    from .mcp import main as mcp_main
    mcp_main()


def main():
    app()


if __name__ == "__main__":
    main()
