"""
CLI interface for contextkeeper.

Usage:
    ck add "Remember to update documentation" -p web-app -t docs,urgent
    ck list --project web-app
    ck done 3f2a9c
"""

import json
import logging
import os
import select
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn, Optional

import typer
from typing_extensions import Annotated

from .config import CONFIG_KEYS, StoreConfig, load_or_default, reset_config, save_config
from .editor import EditorError, open_editor
from .errors import AmbiguousIDError, ItemNotFoundError, StoreError
from .item_store import ITEMS_FILENAME, ItemStore
from .logging_config import (
    configure_ops_log,
    configure_quiet_mode,
    enable_debug_mode,
    remove_ops_log,
    verbose_from_env,
)
from .paths import LOCAL_DIR_NAME, find_storage_path, storage_dir
from .types import ContextItem, format_timestamp, parse_tags, utc_now, validate_tags

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_ENV = "CK_DEFAULT_PROJECT"

# Storage directory of the running command, for the error log in main()
_resolved_store_dir: Optional[Path] = None


def _remember_store_dir(store_dir: Path) -> None:
    global _resolved_store_dir
    _resolved_store_dir = store_dir

# Display widths
LIST_ID_WIDTH = 6
LIST_CONTENT_WIDTH = 50
PREVIEW_WIDTH = 40


# Configure quiet mode by default; CK_VERBOSE=1 enables debug logging
if verbose_from_env():
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


@dataclass
class CLIState:
    """Global options, carried on the click context for one invocation."""
    store: Optional[Path] = None
    json: bool = False


@dataclass
class Session:
    """What a command works with: the resolved store and its configuration."""
    store_dir: Path
    config: StoreConfig
    store: ItemStore


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"ck {version('contextkeeper')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


app = typer.Typer(
    name="ck",
    help="ContextKeeper - keep project notes next to your code.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="CK_STORAGE_PATH",
        help="Storage directory (default: nearest .contextkeeper/)",
    )] = None,
):
    """ContextKeeper - keep project notes next to your code."""
    ctx.obj = CLIState(store=store, json=output_json)


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _state(ctx: typer.Context) -> CLIState:
    return ctx.find_object(CLIState) or CLIState()


def _fail(message: str) -> NoReturn:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(1)


def _echo_json(data) -> None:
    typer.echo(json.dumps(data, indent=2, ensure_ascii=False))


def _open_session(ctx: typer.Context, *, load: bool = True) -> Session:
    """Resolve the storage path, read its config and build the store.

    With ``load=False`` the store is left empty; mutating commands load
    it inside ``store.exclusive()`` instead.
    """
    path = find_storage_path(_state(ctx).store)
    store_dir = storage_dir(path)
    _remember_store_dir(store_dir)
    try:
        config = load_or_default(store_dir)
    except (OSError, ValueError) as e:
        _fail(f"Invalid configuration: {e}")

    store = ItemStore(path, file_lock=config.file_lock)
    if load:
        try:
            store.load()
        except StoreError as e:
            _fail(str(e))

    if store_dir.is_dir():
        try:
            handler = configure_ops_log(store_dir)
        except OSError as e:
            logger.debug("Operations log unavailable: %s", e)
        else:
            ctx.call_on_close(lambda: remove_ops_log(handler))

    return Session(store_dir=store_dir, config=config, store=store)


def _has_stdin_data() -> bool:
    """Check if stdin has data available without blocking.

    Returns False for TTYs and empty pipes. Streams without a file
    descriptor (captured stdin) count as having data.
    """
    if sys.stdin is None or sys.stdin.isatty():
        return False
    try:
        ready, _, _ = select.select([sys.stdin], [], [], 0)
        return bool(ready)
    except (ValueError, OSError):
        return True


def _preview(content: str, width: int) -> str:
    """Single-line content, cut to ``width`` characters with '...'."""
    text = " ".join(content.split())
    if len(text) <= width:
        return text
    if width <= 3:
        return text[:width]
    return text[:width - 3] + "..."


def _report_ambiguous(error: AmbiguousIDError, command: str) -> NoReturn:
    """List the candidates for an ambiguous prefix and exit."""
    typer.echo(f"Error: {len(error.matches)} items match {error.prefix!r}:", err=True)
    for item in error.matches:
        typer.echo(f"  - {item.id[:LIST_ID_WIDTH]}: {_preview(item.content, PREVIEW_WIDTH)}", err=True)
    typer.echo("\nUse more characters to disambiguate:", err=True)
    for item in error.matches:
        typer.echo(f"  ck {command} {item.id}", err=True)
    raise typer.Exit(1)


def _resolve(store: ItemStore, id: str, command: str) -> ContextItem:
    """Find an item by full ID or unique prefix, or exit with a message."""
    try:
        return store.resolve(id)
    except ItemNotFoundError:
        _fail(f"item not found: {id}")
    except AmbiguousIDError as e:
        _report_ambiguous(e, command)


def _report_done(ctx: typer.Context, item: ContextItem, status: str, message: str) -> None:
    if _state(ctx).json:
        _echo_json({"id": item.short_id, "status": status})
    else:
        typer.echo(message)


# -----------------------------------------------------------------------------
# Output Formatting
# -----------------------------------------------------------------------------

def format_item_line(item: ContextItem, date_format: str) -> str:
    """One list line: status, short id, content, @project, [tags], date."""
    if item.is_completed:
        status = typer.style("[x]", fg=typer.colors.GREEN)
    else:
        status = "[ ]"
    parts = [status, f"[{item.id[:LIST_ID_WIDTH]}]", _preview(item.content, LIST_CONTENT_WIDTH)]
    if item.project:
        parts.append(typer.style(f"@{item.project}", fg=typer.colors.CYAN))
    if item.tags:
        parts.append(typer.style(f"[{', '.join(item.tags)}]", fg=typer.colors.YELLOW))
    parts.append(item.created_at.astimezone().strftime(date_format))
    if item.archived:
        parts.append(typer.style("(archived)", dim=True))
    return " ".join(parts)


def format_item_list(items: list[ContextItem], date_format: str) -> str:
    if not items:
        return "No items found."
    return "\n".join(format_item_line(item, date_format) for item in items)


def item_to_json(item: ContextItem) -> dict:
    """Display JSON for an item (camelCase keys, short and full IDs)."""
    return {
        "id": item.short_id,
        "fullId": item.id,
        "content": item.content,
        "project": item.project,
        "tags": list(item.tags),
        "completedAt": format_timestamp(item.completed_at) if item.completed_at else None,
        "createdAt": format_timestamp(item.created_at),
        "archived": item.archived,
    }


def filter_items(
    items: list[ContextItem],
    *,
    project: Optional[str] = None,
    tags: Optional[list[str]] = None,
    query: Optional[str] = None,
    include_completed: bool = False,
    include_archived: bool = False,
) -> list[ContextItem]:
    """
    Filter items for list and search.

    - project: exact match
    - tags: item must carry every tag
    - query: case-insensitive substring of content or any tag
    """
    result = items
    if not include_completed:
        result = [item for item in result if not item.is_completed]
    if not include_archived:
        result = [item for item in result if not item.archived]
    if project:
        result = [item for item in result if item.project == project]
    if tags:
        result = [item for item in result if all(t in item.tags for t in tags)]
    if query:
        needle = query.casefold()
        result = [
            item for item in result
            if needle in item.content.casefold()
            or any(needle in t.casefold() for t in item.tags)
        ]
    return result


def _print_items(ctx: typer.Context, items: list[ContextItem], config: StoreConfig) -> None:
    if _state(ctx).json:
        _echo_json([item_to_json(item) for item in items])
    else:
        typer.echo(format_item_list(items, config.date_format))


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

TagsFilterOption = Annotated[
    Optional[str],
    typer.Option(
        "--tags", "--tag", "-t",
        help="Only items with all of these tags (comma or space separated)"
    )
]

AllOption = Annotated[
    bool,
    typer.Option(
        "--all", "-a",
        help="Include completed items"
    )
]

ArchivedOption = Annotated[
    bool,
    typer.Option(
        "--archived",
        help="Include archived items"
    )
]


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def init(
    ctx: typer.Context,
    path: Annotated[Optional[Path], typer.Option(
        "--path",
        help="Directory to initialize (default: current directory)"
    )] = None,
):
    """
    Create a .contextkeeper/ directory for this project.

    \b
    Examples:
        ck init
        ck init --path ~/src/web-app
    """
    target = (path or Path.cwd()).expanduser() / LOCAL_DIR_NAME
    try:
        target.mkdir(parents=True, exist_ok=True)
        if not (target / ITEMS_FILENAME).exists():
            ItemStore(target).save()
        config = StoreConfig(path=target)
        if not config.exists():
            save_config(config)
    except (OSError, StoreError) as e:
        _fail(f"failed to initialize {target}: {e}")

    if _state(ctx).json:
        _echo_json({"path": str(target), "status": "initialized"})
    else:
        typer.echo(f"Initialized ContextKeeper in: {target}")
        typer.echo("Run 'ck add --help' to get started.")


@app.command()
def add(
    ctx: typer.Context,
    content: Annotated[Optional[str], typer.Argument(
        help="Item text (or pipe it on stdin, or use --editor)"
    )] = None,
    project: Annotated[Optional[str], typer.Option(
        "--project", "-p",
        help="Project name (default: $CK_DEFAULT_PROJECT or config default_project)"
    )] = None,
    tags: Annotated[Optional[str], typer.Option(
        "--tags", "-t",
        help="Tags (comma or space separated)"
    )] = None,
    editor: Annotated[bool, typer.Option(
        "--editor", "-e",
        help="Write the content in your editor"
    )] = False,
):
    """
    Add a new context item.

    \b
    Examples:
        ck add "Remember to update documentation"
        ck add "Fix bug #123" --project web-app --tags bug,urgent
        ck add --editor
        echo "Quick note" | ck add
    """
    session = _open_session(ctx, load=False)

    if content is None:
        if editor:
            try:
                content = open_editor("", session.config.editor or None)
            except EditorError as e:
                _fail(str(e))
        elif _has_stdin_data():
            content = sys.stdin.read()
        content = (content or "").rstrip("\n")

    if not content.strip():
        _fail("content cannot be empty (pass it as an argument, pipe it on stdin, or use --editor)")

    tag_list = parse_tags(tags)
    try:
        validate_tags(tag_list)
    except ValueError as e:
        _fail(str(e))

    if project is None:
        project = os.environ.get(DEFAULT_PROJECT_ENV) or session.config.default_project

    item = ContextItem.new(content, project=project, tags=tag_list)
    try:
        with session.store.exclusive() as store:
            store.add(item)
    except StoreError as e:
        _fail(str(e))

    logger.info("added %s", item.id)
    _report_done(ctx, item, "added", f"Added context item {item.short_id}")


@app.command("list")
def list_items(
    ctx: typer.Context,
    project: Annotated[Optional[str], typer.Option(
        "--project", "-P",
        help="Only items in this project"
    )] = None,
    tags: TagsFilterOption = None,
    show_all: AllOption = False,
    archived: ArchivedOption = False,
):
    """
    List context items (active ones unless --all / --archived).

    \b
    Examples:
        ck list
        ck list --project web-app
        ck list --tags bug,urgent
        ck list --all --json
    """
    session = _open_session(ctx)
    items = filter_items(
        session.store.get_all(),
        project=project,
        tags=parse_tags(tags),
        include_completed=show_all,
        include_archived=archived,
    )
    _print_items(ctx, items, session.config)


@app.command()
def search(
    ctx: typer.Context,
    query: Annotated[Optional[str], typer.Argument(
        help="Text to look for in content and tags (case-insensitive)"
    )] = None,
    tags: TagsFilterOption = None,
    show_all: AllOption = False,
    archived: ArchivedOption = False,
):
    """
    Search context items by content or tags.

    \b
    Examples:
        ck search auth
        ck search --tag bug
        ck search --all dashboard --json
    """
    session = _open_session(ctx)
    items = filter_items(
        session.store.get_all(),
        tags=parse_tags(tags),
        query=query,
        include_completed=show_all,
        include_archived=archived,
    )
    _print_items(ctx, items, session.config)


@app.command()
def done(
    ctx: typer.Context,
    id: Annotated[str, typer.Argument(help="Item ID or unique prefix")],
):
    """
    Mark a context item as completed.

    \b
    Examples:
        ck done 3f2a9c
        ck done 3f2a9c41-7d1e-4b8a-9c0f-2e6d5a1b7c33
    """
    session = _open_session(ctx, load=False)
    try:
        with session.store.exclusive() as store:
            item = _resolve(store, id, "done")
            if item.is_completed:
                _report_done(ctx, item, "unchanged", f"Item already completed: {item.short_id}")
                return
            store.complete(item.id)
    except StoreError as e:
        _fail(str(e))

    logger.info("completed %s", item.id)
    _report_done(ctx, item, "completed", f"Marked item as completed: {item.short_id}")


@app.command()
def edit(
    ctx: typer.Context,
    id: Annotated[str, typer.Argument(help="Item ID or unique prefix")],
    content: Annotated[Optional[str], typer.Option(
        "--content", "-c",
        help="New content (skips the editor)"
    )] = None,
):
    """
    Edit a context item's content in your editor.

    \b
    Examples:
        ck edit 3f2a9c
        ck edit 3f2a9c --content "Reworded note"
    """
    session = _open_session(ctx)
    item = _resolve(session.store, id, "edit")

    if content is None:
        try:
            content = open_editor(item.content, session.config.editor or None).rstrip("\n")
        except EditorError as e:
            _fail(str(e))

    if content == item.content:
        typer.echo("No changes.")
        return
    if not content.strip():
        _fail("content cannot be empty; item left unchanged")

    # Re-read under the lock so concurrent changes to other fields survive
    try:
        with session.store.exclusive() as store:
            current = store.get_by_id(item.id)
            current.content = content
            store.update(current)
    except StoreError as e:
        _fail(str(e))

    logger.info("edited %s", item.id)
    _report_done(ctx, item, "updated", f"Updated item: {item.short_id}")


@app.command()
def archive(
    ctx: typer.Context,
    id: Annotated[str, typer.Argument(help="Item ID or unique prefix")],
):
    """
    Archive a context item (hidden from list, kept on disk).

    \b
    Examples:
        ck archive 3f2a9c
    """
    session = _open_session(ctx, load=False)
    try:
        with session.store.exclusive() as store:
            item = _resolve(store, id, "archive")
            if item.archived:
                _report_done(ctx, item, "unchanged", f"Item already archived: {item.short_id}")
                return
            store.archive(item.id)
    except StoreError as e:
        _fail(str(e))

    logger.info("archived %s", item.id)
    _report_done(ctx, item, "archived", f"Archived item: {item.short_id}")


@app.command()
def remove(
    ctx: typer.Context,
    id: Annotated[str, typer.Argument(help="Item ID or unique prefix")],
    force: Annotated[bool, typer.Option(
        "--force", "-f",
        help="Delete without asking"
    )] = False,
):
    """
    Permanently delete a context item.

    \b
    Examples:
        ck remove 3f2a9c
        ck remove 3f2a9c --force
    """
    session = _open_session(ctx)
    item = _resolve(session.store, id, "remove")

    if not force:
        if not typer.confirm(
            f"Remove item {item.short_id}: {_preview(item.content, PREVIEW_WIDTH)}?",
            default=False,
        ):
            typer.echo("Cancelled.")
            return

    try:
        with session.store.exclusive() as store:
            store.delete(item.id)
    except ItemNotFoundError:
        _fail(f"item not found: {id}")
    except StoreError as e:
        _fail(str(e))

    logger.info("deleted %s", item.id)
    _report_done(ctx, item, "removed", f"Removed item: {item.short_id}")


@app.command()
def status(ctx: typer.Context):
    """Show a quick overview of the store."""
    session = _open_session(ctx)
    items = session.store.get_all()

    completed = sum(1 for item in items if item.is_completed)
    archived = sum(1 for item in items if item.archived)
    projects = sorted({item.project for item in items if item.project})
    tags = sorted({tag for item in items for tag in item.tags})
    oldest = min((item.created_at for item in items), default=None)

    if _state(ctx).json:
        _echo_json({
            "storagePath": str(session.store_dir),
            "totalItems": len(items),
            "activeItems": len(items) - completed,
            "completedItems": completed,
            "archivedItems": archived,
            "projects": projects,
            "tags": tags,
        })
        return

    typer.echo("ContextKeeper Status")
    typer.echo("====================")
    typer.echo(f"Storage Path: {session.store_dir}")
    typer.echo(f"Total Items:  {len(items)}")
    typer.echo(f"Active:       {len(items) - completed}")
    typer.echo(f"Completed:    {completed}")
    typer.echo(f"Archived:     {archived}")
    if oldest is not None:
        days = (utc_now() - oldest).days
        typer.echo(f"Oldest:       {days} days ago")


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------

config_app = typer.Typer(
    name="config",
    help="Show or change settings in contextkeeper.toml.",
    rich_markup_mode=None,
)
app.add_typer(config_app)


def _config_for(ctx: typer.Context) -> StoreConfig:
    store_dir = storage_dir(find_storage_path(_state(ctx).store))
    _remember_store_dir(store_dir)
    try:
        return load_or_default(store_dir)
    except (OSError, ValueError) as e:
        _fail(f"Invalid configuration: {e}")


@config_app.command("show")
def config_show(ctx: typer.Context):
    """Show all settings."""
    cfg = _config_for(ctx)
    values = {key: cfg.get_value(key) for key in CONFIG_KEYS}
    if _state(ctx).json:
        _echo_json({"path": str(cfg.path), **values})
        return
    typer.echo("Current Configuration:")
    typer.echo(f"  {'storage_path':<16} {cfg.path}")
    for key, value in values.items():
        typer.echo(f"  {key:<16} {value}")


@config_app.command("get")
def config_get(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help=f"One of: {', '.join(CONFIG_KEYS)}")],
):
    """Print one setting."""
    cfg = _config_for(ctx)
    try:
        value = cfg.get_value(key)
    except KeyError:
        _fail(f"unknown config key: {key}")
    typer.echo(json.dumps(value) if isinstance(value, bool) else value)


@config_app.command("set")
def config_set(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help=f"One of: {', '.join(CONFIG_KEYS)}")],
    value: Annotated[str, typer.Argument(help="New value")],
):
    """Change one setting."""
    cfg = _config_for(ctx)
    try:
        cfg.set_value(key, value)
    except KeyError:
        _fail(f"unknown config key: {key}")
    except ValueError as e:
        _fail(str(e))
    try:
        save_config(cfg)
    except OSError as e:
        _fail(f"failed to write {cfg.config_path}: {e}")
    typer.echo(f"Set {key} to: {value}")


@config_app.command("reset")
def config_reset(ctx: typer.Context):
    """Restore default settings."""
    cfg = _config_for(ctx)
    try:
        reset_config(cfg)
    except OSError as e:
        _fail(f"failed to write {cfg.config_path}: {e}")
    typer.echo("Configuration reset to defaults.")


# -----------------------------------------------------------------------------
# Entry point
# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="ck CLI", store_dir=_resolved_store_dir)
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
