from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import typer
import uvicorn

from app_manager.api import create_app
from app_manager.app_registry import AppRegistry
from app_manager.app_repository import AppRepository
from app_manager.config import API_HOST, API_PORT, resolve_apps_file
from app_manager.console import OutputStyle, Reporter
from app_manager.dashboard import save_dashboard
from app_manager.errors import ConfigError, LaunchError, NoBackendError, UnsupportedOperationError
from app_manager.interactive import InteractiveMenu
from app_manager.lifecycle import LifecycleManager
from app_manager.ports import PortProber
from app_manager.sessions import SessionBackend, select_backend
from app_manager.urls import detect_prefixes

app = typer.Typer(
    help="[bold green]app-manager[/] - start, stop and inspect local web apps in terminal sessions",
    rich_markup_mode="rich",
    add_completion=False,
)


@dataclass
class State:
    config: Optional[str] = None
    color: bool = True


def _state(ctx: typer.Context) -> State:
    return ctx.obj if isinstance(ctx.obj, State) else State()


def _reporter(ctx: typer.Context) -> Reporter:
    return Reporter(OutputStyle(color=_state(ctx).color))


def _backend(reporter: Reporter, required: bool) -> Optional[SessionBackend]:
    try:
        return select_backend()
    except NoBackendError as e:
        if required:
            reporter.error(str(e))
            raise typer.Exit(1)
        return None


def _build(
    ctx: typer.Context,
    *,
    need_backend: bool = True,
    auto: bool = False,
    dry_run: bool = False,
):
    """(reporter, repo, manager) for one invocation; setup failures exit with 1."""
    reporter = _reporter(ctx)
    repo = AppRepository(resolve_apps_file(_state(ctx).config), on_warning=reporter.warn)
    try:
        registry = AppRegistry(repo)
    except ConfigError as e:
        reporter.error(str(e))
        raise typer.Exit(1)

    backend = _backend(reporter, required=need_backend)
    manager = LifecycleManager(
        registry,
        backend,
        prober=PortProber(on_warning=reporter.warn),
        reporter=reporter,
        confirm=lambda q: typer.confirm(q, default=False),
        auto=auto,
        dry_run=dry_run,
    )
    return reporter, repo, manager


def _selection(names: Optional[List[str]], all_: bool) -> str:
    if all_:
        return "all"
    if not names:
        raise typer.BadParameter("give one or more app names/indexes, or --all")
    return ",".join(names)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to apps.json"),
    no_color: bool = typer.Option(False, "--no-color", help="Disable colored output"),
):
    ctx.obj = State(config=config, color=not no_color)
    if ctx.invoked_subcommand is None:
        cmd_menu(ctx)


# -------------------------
# Lifecycle
# -------------------------

@app.command("start", help="Start apps by name or index")
def cmd_start(
    ctx: typer.Context,
    names: Optional[List[str]] = typer.Argument(None, help="App names or indexes (1,3 / 2-4)"),
    all_: bool = typer.Option(False, "--all", "-A", help="Start all apps"),
    dry_run: bool = typer.Option(False, "--dry-run", "-d", help="Print commands without starting"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask before freeing ports"),
):
    selection = _selection(names, all_)
    reporter, _, manager = _build(ctx, need_backend=not dry_run, auto=yes, dry_run=dry_run)
    try:
        manager.start_many(selection)
    except NoBackendError as e:
        reporter.error(str(e))
        raise typer.Exit(1)


@app.command("stop", help="Stop apps by freeing their ports")
def cmd_stop(
    ctx: typer.Context,
    names: Optional[List[str]] = typer.Argument(None, help="App names or indexes"),
    all_: bool = typer.Option(False, "--all", "-A", help="Stop every running app"),
):
    reporter, _, manager = _build(ctx, need_backend=False)
    if all_:
        manager.stop_all()
    else:
        manager.stop_many(_selection(names, False))


@app.command("restart", help="Stop then start apps")
def cmd_restart(
    ctx: typer.Context,
    names: List[str] = typer.Argument(..., help="App names or indexes"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask before freeing ports"),
):
    reporter, _, manager = _build(ctx, auto=yes)
    try:
        manager.restart_many(",".join(names))
    except NoBackendError as e:
        reporter.error(str(e))
        raise typer.Exit(1)


@app.command("update", help="git pull, sync dependencies and restart (0 = all)")
def cmd_update(
    ctx: typer.Context,
    names: List[str] = typer.Argument(..., help="App names or indexes"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask before freeing ports"),
):
    reporter, _, manager = _build(ctx, auto=yes)
    try:
        manager.update_many(",".join(names))
    except NoBackendError as e:
        reporter.error(str(e))
        raise typer.Exit(1)


# -------------------------
# Inspection
# -------------------------

@app.command("status", help="Show every app with its live port status")
def cmd_status(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table"),
):
    reporter, _, manager = _build(ctx, need_backend=False)
    statuses = manager.list_status()
    if as_json:
        reporter.show_json([s.to_dict() for s in statuses])
        return
    reporter.status_table(statuses)


@app.command("sessions", help="List the windows of the session backend")
def cmd_sessions(ctx: typer.Context):
    reporter, _, manager = _build(ctx)
    backend = manager.backend
    sessions = backend.list()
    if not sessions:
        reporter.warn(f"No windows in {backend.describe()}")
        return
    reporter.info(f"Windows in {backend.describe()}:")
    for s in sessions:
        reporter.plain(f"  {s.name}{'' if s.alive else ' (exited)'}")


@app.command("attach", help="Attach to the multiplexer session")
def cmd_attach(ctx: typer.Context):
    reporter, _, manager = _build(ctx)
    try:
        manager.backend.attach()
    except (LaunchError, UnsupportedOperationError) as e:
        reporter.error(str(e))
        raise typer.Exit(1)


@app.command("logs", help="Show manager events recorded for an app in this process")
def cmd_logs(ctx: typer.Context, name: str = typer.Argument(..., help="App name")):
    reporter, _, manager = _build(ctx, need_backend=False)
    for line in manager.events(name):
        reporter.plain(line)


@app.command("dashboard", help="Write a static HTML dashboard with app links")
def cmd_dashboard(
    ctx: typer.Context,
    output: Path = typer.Option(Path("dashboard.html"), "--output", "-o", help="Output file"),
    external: bool = typer.Option(True, "--external/--no-external", help="Look up the public IP"),
):
    reporter, _, manager = _build(ctx, need_backend=False)
    reporter.info("Detecting network configuration...")
    prefixes = detect_prefixes(external=external)
    path = save_dashboard(output, manager.list_status(), prefixes)
    reporter.success(f"Dashboard saved to: {path}")


# -------------------------
# Registry
# -------------------------

@app.command("import-yaml", help="Upsert apps from a YAML file (does not start them)")
def cmd_import_yaml(ctx: typer.Context, file: Path = typer.Argument(..., help="YAML file")):
    reporter, repo, _ = _build(ctx, need_backend=False)
    try:
        imported = repo.import_yaml(file)
    except ConfigError as e:
        reporter.error(str(e))
        raise typer.Exit(1)
    reporter.success(f"Imported {len(imported)} app(s): {', '.join(imported) or '-'}")


# -------------------------
# Servers / interactive
# -------------------------

@app.command("serve", help="Run the HTTP control API and dashboard")
def cmd_serve(
    ctx: typer.Context,
    host: str = typer.Option(API_HOST, "--host", help="Bind address"),
    port: int = typer.Option(API_PORT, "--port", "-p", help="Port"),
):
    reporter, repo, manager = _build(ctx, need_backend=False, auto=True)
    if manager.backend is None:
        reporter.warn("No session backend available; start/restart will return 503")
    reporter.info(f"Serving on http://{host}:{port}")
    uvicorn.run(create_app(manager, repo), host=host, port=port)


@app.command("menu", help="Interactive mode (default when no command is given)")
def cmd_menu(ctx: typer.Context):
    reporter, repo, manager = _build(ctx)
    reporter.header("App Manager")
    reporter.info("Detecting network configuration...")
    menu = InteractiveMenu(manager, repo, reporter, prefixes=detect_prefixes())
    try:
        menu.run()
    except (ConfigError, NoBackendError) as e:
        reporter.error(str(e))
        raise typer.Exit(1)
