import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

import typer

from app_manager.app_repository import AppRepository
from app_manager.console import Reporter
from app_manager.errors import AppManagerError, ConfigError, LaunchError, NoBackendError
from app_manager.lifecycle import LifecycleManager
from app_manager.models import AppDescriptor, AppType, FRAMEWORK_TYPES
from app_manager.ports import random_free_port
from app_manager.validators import validate_app_payload

_INDEXED = re.compile(r"^([sreud])\s*(\d+)$")
_INDEXED_ACTIONS = {"s": "stop", "r": "restart", "e": "edit", "d": "delete", "u": "update"}
_USAGE = {
    "s": "Usage: s <number> to stop an app",
    "e": "Usage: e <number>",
    "d": "Usage: d <number>",
    "u": "Usage: u <number> or u 0 for all",
}

HELP = """Commands:
  [number(s)] - Start app(s) by index (e.g., 1,2,3 or 2-4)
  [name]      - Start app by name
  0 or all    - Start all apps
  s [num]     - Stop app by index
  S           - Stop all running apps
  r [num]     - Restart app by index
  u [num]     - Update app from repo (0 for all)
  a           - Add a new app
  p           - Add a new process (custom command)
  e [num]     - Edit app by index
  d [num]     - Delete app by index
  l           - List sessions
  t           - Attach to session
  R           - Refresh list
  q           - Quit"""


@dataclass(frozen=True)
class MenuCommand:
    action: str
    arg: str = ""


def parse_command(raw: str) -> MenuCommand:
    """Map one line of menu input to an action. Anything unrecognized is a start selection."""
    text = (raw or "").strip()
    if not text:
        return MenuCommand("noop")
    if text.lower() in ("q", "quit", "exit"):
        return MenuCommand("quit")
    # case matters for the single-letter commands below
    if text in ("R", "r", "refresh"):
        return MenuCommand("refresh")
    if text == "S":
        return MenuCommand("stop_all")
    if text in ("a", "add"):
        return MenuCommand("add")
    if text in ("p", "process"):
        return MenuCommand("process")
    if text in ("l", "list"):
        return MenuCommand("list")
    if text in ("t", "attach"):
        return MenuCommand("attach")
    if text in _USAGE:
        return MenuCommand("usage", _USAGE[text])

    m = _INDEXED.match(text)
    if m:
        return MenuCommand(_INDEXED_ACTIONS[m.group(1)], m.group(2))
    return MenuCommand("start", text)


Prompt = Callable[..., Any]


class InteractiveMenu:
    def __init__(
        self,
        manager: LifecycleManager,
        repo: AppRepository,
        reporter: Optional[Reporter] = None,
        prefixes: Optional[Mapping[str, str]] = None,
        prompt: Prompt = typer.prompt,
        confirm: Prompt = typer.confirm,
    ):
        self.manager = manager
        self.repo = repo
        self.registry = manager.registry
        self.reporter = reporter or manager.reporter
        self.prefixes = dict(prefixes or {})
        self.prompt = prompt
        self.confirm = confirm

    def _ask(self, text: str, default: str = "") -> str:
        return str(self.prompt(text, default=default, show_default=bool(default))).strip()

    # -------------------------
    # Loop
    # -------------------------

    def run(self) -> None:
        if self.prefixes:
            self.reporter.info("Detected URLs:")
            for key in ("network", "external", "local"):
                if key in self.prefixes:
                    self.reporter.plain(f"  {key.capitalize():<9} {self.prefixes[key]}")

        while True:
            try:
                self.registry.reload()
            except ConfigError as e:
                self.reporter.error(str(e))
                raise
            self.reporter.header(f"Apps ({len(self.registry)})")
            self.reporter.status_table(self.manager.list_status())
            self.reporter.plain("")
            self.reporter.info(HELP)

            try:
                raw = self._ask("Enter selection")
            except typer.Abort:
                self.reporter.plain("Goodbye!")
                return

            cmd = parse_command(raw)
            if cmd.action == "quit":
                self.reporter.plain("Goodbye!")
                return
            if cmd.action in ("noop", "refresh"):
                continue

            self.dispatch(cmd)
            try:
                self._ask("Press Enter to continue...")
            except typer.Abort:
                return

    def dispatch(self, cmd: MenuCommand) -> None:
        try:
            self._dispatch(cmd)
        except NoBackendError:
            raise
        except AppManagerError as e:
            self.reporter.error(f"Error: {e}")

    def _dispatch(self, cmd: MenuCommand) -> None:
        m = self.manager
        if cmd.action == "usage":
            self.reporter.warn(cmd.arg)
        elif cmd.action == "start":
            m.start_many(cmd.arg)
        elif cmd.action == "stop":
            m.stop_many(cmd.arg)
        elif cmd.action == "stop_all":
            m.stop_all()
        elif cmd.action == "restart":
            m.restart_many(cmd.arg)
        elif cmd.action == "update":
            if cmd.arg == "0":
                self.reporter.info("Updating all apps...")
            m.update_many(cmd.arg)
        elif cmd.action == "add":
            self.add_app()
        elif cmd.action == "process":
            self.add_process()
        elif cmd.action == "edit":
            self.edit_app(int(cmd.arg))
        elif cmd.action == "delete":
            self.delete_app(int(cmd.arg))
        elif cmd.action == "list":
            self.list_sessions()
        elif cmd.action == "attach":
            self.attach()

    # -------------------------
    # Sessions
    # -------------------------

    def list_sessions(self) -> None:
        backend = self.manager.backend
        if backend is None:
            self.reporter.warn("No session backend available")
            return
        sessions = backend.list()
        if not sessions:
            self.reporter.warn(f"No windows in {backend.describe()}")
            return
        self.reporter.info(f"Windows in {backend.describe()}:")
        for s in sessions:
            self.reporter.plain(f"  {s.name}{'' if s.alive else ' (exited)'}")

    def attach(self) -> None:
        backend = self.manager.backend
        if backend is None:
            self.reporter.warn("No session backend available")
            return
        self.reporter.info(f"Attaching to {backend.describe()}...")
        try:
            backend.attach()
        except LaunchError as e:
            self.reporter.warn(str(e))

    # -------------------------
    # Add / edit / delete
    # -------------------------

    def _ask_dir(self, label: str) -> Optional[Path]:
        raw = self._ask(label)
        p = Path(raw).expanduser() if raw else None
        if p is None or not p.is_dir():
            self.reporter.error(f"Directory not found: {raw or '(empty)'}")
            return None
        return p.resolve()

    def _ask_type(self, app_path: Path) -> AppType:
        detected = self.manager.resolver.detect_app_type(app_path)
        if detected and self.confirm(f"Use detected type '{detected.value}'?", default=True):
            return detected
        for i, t in enumerate(FRAMEWORK_TYPES, start=1):
            self.reporter.plain(f"  {i}) {t.value}")
        choice = self._ask("Enter choice [1-4]", default="1")
        if choice.isdigit() and 1 <= int(choice) <= len(FRAMEWORK_TYPES):
            return FRAMEWORK_TYPES[int(choice) - 1]
        return AppType.parse(choice) if AppType.parse(choice).is_framework else AppType.STREAMLIT

    def _ask_index(self, app_path: Path) -> str:
        files = self.manager.resolver.find_python_files(app_path)
        if files:
            self.reporter.info("Found Python files:")
            for i, f in enumerate(files, start=1):
                self.reporter.plain(f"  {i}) {f}")
            selection = self._ask("Select index file (number or path)")
            if selection.isdigit() and 1 <= int(selection) <= len(files):
                return files[int(selection) - 1]
            if selection:
                return selection
        return self._ask("Enter index file path (relative to app)")

    def _ask_port(self) -> int:
        if self.confirm("Assign a random port?", default=True):
            port = random_free_port(self.manager.prober)
        else:
            raw = self._ask("Enter port number")
            if raw.isdigit():
                return int(raw)
            self.reporter.warn("Invalid port, generating random...")
            port = random_free_port(self.manager.prober)
        self.reporter.success(f"Assigned port: {port}")
        return port

    def _save(self, payload: Dict[str, Any], label: str, replace: Optional[str] = None) -> bool:
        ok, errors = validate_app_payload(payload)
        if not ok:
            for err in errors:
                self.reporter.error(f"{err['field']}: {err['message']}")
            return False

        self.reporter.info(f"{label} configuration:")
        self.reporter.show_json(payload)
        if not self.confirm("Save this?", default=True):
            self.reporter.plain("Cancelled.")
            return False

        app = AppDescriptor.from_dict(payload)
        if replace is None:
            self.repo.add(app)
            self.reporter.success(f"App '{app.name}' added successfully!")
        else:
            self.repo.update(replace, app)
            self.reporter.success(f"App '{app.name}' updated successfully!")
        self.registry.reload()
        return True

    def add_app(self) -> bool:
        self.reporter.header("Add New App")
        app_path = self._ask_dir("Enter app path (absolute path)")
        if app_path is None:
            return False
        name = self._ask("Enter app name", default=app_path.name)
        if self.repo.exists(name):
            self.reporter.error(f"An app named '{name}' already exists")
            return False

        app_type = self._ask_type(app_path)
        resolver = self.manager.resolver
        pm = resolver.resolve_package_manager(app_path)
        self.reporter.info(f"Detected package manager: {pm}")

        payload: Dict[str, Any] = {"Name": name, "Type": app_type.value, "AppPath": str(app_path)}
        if pm == "pip":
            venv = resolver.find_isolated_env(app_path)
            if venv is not None:
                self.reporter.info(f"Found virtualenv: {venv}")
                payload["VenvPath"] = str(venv)
        payload["PackageManager"] = pm
        if app_type.needs_index:
            payload["IndexPath"] = self._ask_index(app_path)
        payload["Port"] = self._ask_port()
        return self._save(payload, "New app")

    def add_process(self) -> bool:
        self.reporter.header("Add New Process")
        app_path = self._ask_dir("Enter working directory path (absolute path)")
        if app_path is None:
            return False
        name = self._ask("Enter process name", default=app_path.name)
        if self.repo.exists(name):
            self.reporter.error(f"An app named '{name}' already exists")
            return False
        command = self._ask("Enter command to run")
        if not command:
            self.reporter.error("Command cannot be empty")
            return False

        resolver = self.manager.resolver
        pm = resolver.resolve_package_manager(app_path)
        payload: Dict[str, Any] = {
            "Name": name,
            "Type": AppType.CUSTOM.value,
            "AppPath": str(app_path),
            "CustomCommand": command,
            "PackageManager": pm,
        }
        if pm == "pip":
            venv = resolver.find_isolated_env(app_path)
            if venv is not None:
                payload["VenvPath"] = str(venv)
        port = self._ask("Port (0 for none)", default="0")
        if port not in ("", "0"):
            payload["Port"] = port
        return self._save(payload, "New process")

    def _pick(self, index: int) -> Optional[AppDescriptor]:
        app = self.registry.by_index(index)
        if app is None:
            self.reporter.error(f"Invalid index: {index}")
        return app

    def edit_app(self, index: int) -> bool:
        app = self._pick(index)
        if app is None:
            return False
        if app.port and self.manager.prober.is_occupied(app.port):
            self.reporter.error("Stop app before editing")
            return False

        self.reporter.header(f"Edit App: {app.name}")
        self.reporter.plain("Press Enter to keep the current value.")
        current = app.to_dict()
        fields = ["Name", "Type", "Port", "AppPath"]
        if app.type.needs_index:
            fields.append("IndexPath")
        if app.type is AppType.CUSTOM or app.type is AppType.DJANGO:
            fields.append("CustomCommand")
        fields += ["VenvPath", "PackageManager"]

        payload = dict(current)
        for key in fields:
            old = current.get(key)
            value = self._ask(key, default="" if old is None else str(old))
            if value:
                payload[key] = value
            else:
                payload.pop(key, None)
        return self._save(payload, "Updated", replace=app.name)

    def delete_app(self, index: int) -> bool:
        app = self._pick(index)
        if app is None:
            return False
        self.reporter.warn(f"About to delete app: {app.name}")
        self.reporter.show_json(app.to_dict())
        if not self.confirm("Are you sure you want to delete this app?", default=False):
            self.reporter.plain("Cancelled.")
            return False
        # Stop the app if its window is still open
        self.manager.close_session(app)
        self.repo.delete(app.name)
        self.registry.reload()
        self.reporter.success(f"App '{app.name}' deleted successfully!")
        return True
