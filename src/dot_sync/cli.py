"""CLI entrypoint for dot-sync.

Provides commands to scan, check, push, pull and watch configuration files
without needing the MCP server running.  Backend settings and credentials
come from ``DOTSYNC_*`` environment variables.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, TypeVar

import click

from dot_sync.app import (
    PULLABLE_STATES,
    PUSHABLE_STATES,
    Application,
    active_profile,
    files_in_states,
    scan_files,
    select_files,
)
from dot_sync.config import settings
from dot_sync.models import (
    ConflictResolution,
    Operation,
    OperationStatus,
    SyncDirection,
    SyncState,
    SyncStatus,
    TrackedFile,
)
from dot_sync.storage.errors import StorageError
from dot_sync.sync.catalog import FingerprintCatalog
from dot_sync.sync.profiles import DEFAULT_PROFILES
from dot_sync.sync.safety import sanitize
from dot_sync.sync.state import StateStore
from dot_sync.sync.watcher import ChangeWatcher

T = TypeVar("T")


class EchoNotifier:
    """Notification sink that prints to the terminal."""

    def notify(self, title: str, body: str) -> None:
        click.echo(f"{title}: {body}", err=True)


def _edit_in_editor(file: TrackedFile) -> None:
    click.edit(filename=file.path)


def _build_app() -> Application:
    """Construct the application, exiting with an error on bad settings."""
    try:
        return Application(settings, notifier=EchoNotifier(), merge_handler=_edit_in_editor)
    except ValueError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run *coro*, turning storage and lookup errors into a clean exit."""
    try:
        return asyncio.run(coro)
    except StorageError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    except KeyError as exc:
        click.echo(f"Error: {exc.args[0]}", err=True)
        sys.exit(1)


def _report(operations: list[Operation]) -> None:
    """Echo one line per operation and exit with the number of failures."""
    if not operations:
        click.echo("Nothing to sync.")
        return
    failures = 0
    for op in operations:
        path = op.file.relative_path
        if op.status is OperationStatus.COMPLETED:
            click.echo(f"  OK: {path} ({op.direction.value})")
        elif op.status is OperationStatus.SKIPPED:
            click.echo(f"  SKIP: {path} ({op.error or 'skipped'})")
        else:
            click.echo(f"  FAIL: {path}: {op.error}", err=True)
            failures += 1
    if failures:
        click.echo(f"\n{failures} file(s) failed to sync.", err=True)
        sys.exit(failures)
    click.echo(f"\nAll {len(operations)} file(s) processed successfully.")


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """dot-sync CLI: keep configuration files in sync with cloud storage."""
    level = getattr(logging, settings.log_level.upper(), logging.WARNING)
    if verbose:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@cli.command()
@click.option("--all", "show_all", is_flag=True, help="Ignore the active profile.")
def scan(show_all: bool) -> None:
    """List tracked configuration files."""
    try:
        files = FingerprintCatalog().scan(settings.root) if show_all else scan_files(settings)
    except KeyError as exc:
        click.echo(f"Error: {exc.args[0]}", err=True)
        sys.exit(1)
    if not files:
        click.echo("No configuration files found.")
        return
    for f in files:
        flag = "" if f.is_safe else "  [contains credentials, not synced]"
        click.echo(f"{f.priority.value:<8} {f.category.value:<13} {f.relative_path}{flag}")


@cli.command()
def status() -> None:
    """Show drift between local files and the backend."""

    async def run() -> list[SyncStatus]:
        async with _build_app() as app:
            return await app.engine.analyze(app.scan())

    statuses = _run(run())
    if not statuses:
        click.echo("No configuration files found.")
        return
    for entry in statuses:
        click.echo(f"{entry.state.value:<13} {entry.file.relative_path}")
    conflicts = sum(1 for s in statuses if s.state is SyncState.CONFLICT)
    if conflicts:
        click.echo(f"\n{conflicts} conflict(s); use `dot-sync resolve` to choose a side.")


@cli.command()
@click.argument("paths", nargs=-1)
@click.option("--all", "push_all", is_flag=True, help="Upload every safe file, even if unchanged.")
def push(paths: tuple[str, ...], push_all: bool) -> None:
    """Upload changed files, or only PATHS when given.

    Without arguments, uploads files that are newer locally or missing
    remotely.  Conflicting files are left alone.
    """

    async def run() -> tuple[list[Operation], list[TrackedFile]]:
        async with _build_app() as app:
            files = app.scan()
            if paths:
                selected = select_files(files, paths)
            elif push_all:
                selected = files
            else:
                selected = files_in_states(await app.engine.analyze(files), PUSHABLE_STATES)
            held = [f for f in selected if not f.is_safe]
            if not selected:
                return [], held
            return await app.engine.sync(selected, SyncDirection.UPLOAD), held

    operations, held = _run(run())
    for f in held:
        click.echo(f"  HELD: {f.relative_path} (contains credentials, not synced)", err=True)
    _report(operations)


@cli.command()
@click.argument("paths", nargs=-1)
def pull(paths: tuple[str, ...]) -> None:
    """Download changed files, or only PATHS when given.

    Without arguments, downloads files that are newer remotely, including
    files that exist only on the backend.  Existing local files are kept as
    ``<name>.backup`` before being replaced.
    """

    async def run() -> list[Operation]:
        async with _build_app() as app:
            files = app.scan()
            if paths:
                remote_only = await app.engine.discover_remote(app.root, files)
                selected = select_files([*files, *remote_only], paths)
            else:
                statuses = await app.engine.analyze(files)
                selected = files_in_states(statuses, PULLABLE_STATES)
                selected += await app.engine.discover_remote(app.root, files)
            if not selected:
                return []
            return await app.engine.sync(selected, SyncDirection.DOWNLOAD)

    _report(_run(run()))


@cli.command()
@click.argument("path")
@click.option(
    "--use",
    "resolution",
    required=True,
    type=click.Choice([r.value for r in ConflictResolution]),
    help="use_local uploads, use_remote downloads, merge opens $EDITOR, skip does nothing.",
)
def resolve(path: str, resolution: str) -> None:
    """Resolve a conflict on PATH explicitly."""

    async def run() -> Operation | None:
        async with _build_app() as app:
            (file,) = select_files(app.scan(), [path])
            return await app.engine.resolve_conflict(file, ConflictResolution(resolution))

    operation = _run(run())
    if operation is None:
        if resolution == ConflictResolution.MERGE:
            click.echo(f"Edited {path}; run `dot-sync push {path}` once merged.")
        else:
            click.echo(f"Left {path} unresolved.")
        return
    _report([operation])


@cli.command()
@click.option(
    "--auto-sync/--no-auto-sync",
    default=None,
    help="Upload changed files automatically (default: DOTSYNC_AUTO_SYNC).",
)
@click.option("--debounce", type=float, default=None, help="Quiet period in seconds.")
def watch(auto_sync: bool | None, debounce: float | None) -> None:
    """Watch tracked files and sync or notify after changes settle."""

    async def run() -> None:
        async with _build_app() as app:
            watcher = ChangeWatcher(
                app.engine,
                debounce=debounce or settings.debounce_seconds,
                auto_sync=settings.auto_sync if auto_sync is None else auto_sync,
                notifier=app.notifier,
            )
            async with watcher:
                await watcher.start(app.scan())
                click.echo(f"Watching {len(watcher.watched)} file(s). Press Ctrl-C to stop.")
                await asyncio.Event().wait()

    try:
        _run(run())
    except KeyboardInterrupt:
        click.echo("Stopped.")


@cli.command("test-connection")
def test_connection() -> None:
    """Check that the backend is reachable with the configured credentials."""

    async def run() -> str:
        async with _build_app() as app:
            await app.backend.test_connection()
            return app.backend.name

    name = _run(run())
    click.echo(f"OK: connected to {name}")


@cli.command()
def audit() -> None:
    """Report credential findings for every tracked file."""
    catalog = FingerprintCatalog()
    flagged = 0
    for f in catalog.scan(settings.root):
        if f.is_directory:
            continue
        excluded = catalog.is_excluded(f.relative_path)
        findings = catalog.gate.find_secrets(f.path)
        if not excluded and not findings:
            continue
        flagged += 1
        click.echo(f.relative_path)
        if excluded:
            click.echo("  excluded by name")
        for finding in findings:
            click.echo(f"  line {finding.line}: {finding.pattern} ({finding.excerpt})")
    if flagged:
        click.echo(f"\n{flagged} file(s) will not be synced.")
    else:
        click.echo("No credentials found in tracked files.")


@cli.command("sanitize")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def sanitize_command(path: Path) -> None:
    """Print PATH with credential sections and keys removed."""
    click.echo(sanitize(path.read_text(encoding="utf-8")), nl=False)


@cli.command()
@click.argument("name", required=False)
def profile(name: str | None) -> None:
    """Show the sync profiles, or make NAME the active one."""
    state = StateStore(settings.state_file)
    if name is not None:
        if name not in DEFAULT_PROFILES:
            click.echo(f"Error: unknown profile {name!r}", err=True)
            sys.exit(1)
        state.set_active_profile(name)
    current = active_profile(settings, state)
    for profile_name, entry in DEFAULT_PROFILES.items():
        marker = "*" if current is not None and current.name == profile_name else " "
        click.echo(f"{marker} {profile_name:<8} {entry.description}")


if __name__ == "__main__":
    cli()
