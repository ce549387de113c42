import subprocess
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Union

from app_manager.app_registry import AppRegistry
from app_manager.commands import synthesize
from app_manager.config import EVENT_TAIL_SIZE, LAUNCH_DELAY, PORT_RELEASE_TIMEOUT
from app_manager.console import Reporter
from app_manager.environment import EnvironmentResolver
from app_manager.errors import (
    AppManagerError,
    LaunchError,
    NoBackendError,
    NotStoppableError,
    UnsupportedOperationError,
    ValidationError,
)
from app_manager.models import (
    AppDescriptor,
    AppState,
    AppStatus,
    LaunchCommand,
    OperationResult,
    Outcome,
)
from app_manager.ports import PortProber
from app_manager.sessions import SessionBackend
from app_manager.utils import sanitize_window_name, venv_bin

Target = Union[AppDescriptor, str, int]
Confirm = Callable[[str], bool]

# how long Ctrl+C gets before the port owner is signalled directly
INTERRUPT_GRACE = 2.0


def _decline(_: str) -> bool:
    return False


class LifecycleManager:
    """
    Starts, stops and restarts registry apps inside session backend windows.

    Liveness is the app's port: nothing about runtime state is stored here,
    apart from a per-app tail of manager events.
    """

    def __init__(
        self,
        registry: AppRegistry,
        backend: Optional[SessionBackend],
        *,
        prober: Optional[PortProber] = None,
        resolver: Optional[EnvironmentResolver] = None,
        reporter: Optional[Reporter] = None,
        confirm: Confirm = _decline,
        auto: bool = False,
        dry_run: bool = False,
        launch_delay: float = LAUNCH_DELAY,
        port_release_timeout: float = PORT_RELEASE_TIMEOUT,
        sleep: Callable[[float], None] = time.sleep,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        self.registry = registry
        self.backend = backend
        self.reporter = reporter or Reporter()
        self.prober = prober or PortProber(on_warning=self.reporter.warn)
        self.resolver = resolver or EnvironmentResolver()
        self.confirm = confirm
        self.auto = auto
        self.dry_run = dry_run
        self.launch_delay = launch_delay
        self.port_release_timeout = port_release_timeout
        self.sleep = sleep
        self.runner = runner

        self._logs: Dict[str, Deque[str]] = {}
        self._lock = threading.RLock()

    # -------------------------
    # Event tail
    # -------------------------

    def _tail_init(self, name: str) -> None:
        if name not in self._logs:
            self._logs[name] = deque(maxlen=EVENT_TAIL_SIZE)

    def _log(self, name: str, line: str, level: str = "info") -> None:
        with self._lock:
            key = name.casefold()
            self._tail_init(key)
            self._logs[key].append(f"[manager] {line}")
        self.reporter.message(level, line)

    def get_logs(self, name: str) -> List[str]:
        with self._lock:
            key = name.casefold()
            self._tail_init(key)
            return list(self._logs[key])

    events = get_logs

    # -------------------------
    # Helpers
    # -------------------------

    def _resolve(self, target: Target) -> AppDescriptor:
        if isinstance(target, AppDescriptor):
            return target
        found = self.registry.resolve_token(str(target))
        if len(found) != 1:
            raise ValidationError(f"Could not find app: {target}")
        return found[0]

    def _require_backend(self) -> SessionBackend:
        if self.backend is None:
            raise NoBackendError("No session backend available")
        return self.backend

    def _ask(self, question: str) -> bool:
        if self.auto:
            return True
        return self.confirm(question)

    def validate(self, app: AppDescriptor) -> None:
        if not app.app_path or not app.working_dir.is_dir():
            raise ValidationError(f"AppPath not found: {app.app_path or '(empty)'}", app.name)
        if app.type.needs_index:
            if not app.index_path:
                raise ValidationError(f"IndexPath is required for {app.type.value} apps", app.name)
            if not app.index_file.is_file():
                raise ValidationError(f"IndexPath not found: {app.index_file}", app.name)

    def build_command(self, app: AppDescriptor) -> LaunchCommand:
        env = self.resolver.resolve(app)
        return synthesize(app, env)

    # -------------------------
    # Lifecycle: start/stop/restart
    # -------------------------

    def start(self, target: Target) -> OperationResult:
        app = self._resolve(target)
        self.validate(app)
        cmd = self.build_command(app)
        shell = cmd.to_shell()

        if self.dry_run:
            self.reporter.warn(f"[DRY RUN] Would start '{app.name}' in '{cmd.cwd}'")
            self.reporter.info(f"  Command: {shell}")
            return OperationResult(app.name, Outcome.DRY_RUN, command=shell)

        backend = self._require_backend()
        self._log(app.name, f"{AppState.STARTING.value} '{app.name}': {shell}")

        if backend.exists(app.name):
            self._log(app.name, f"'{app.name}' already has a {backend.name} window", "warn")
            if not self._ask("Kill existing window and restart?"):
                self._log(app.name, f"Skipping {app.name}")
                return OperationResult(app.name, Outcome.SKIPPED, command=shell)
            backend.kill(app.name)
            self.sleep(1)
        elif app.port and self.prober.is_occupied(app.port):
            self._log(app.name, f"Port {app.port} already in use", "warn")
            if not self._ask(f"Kill process on port {app.port} and start?"):
                self._log(app.name, f"Skipping {app.name}")
                return OperationResult(app.name, Outcome.SKIPPED, command=shell)
            self.prober.free(app.port)
            if not self.prober.wait_until_free(app.port, self.port_release_timeout):
                self._log(app.name, f"Port {app.port} is still in use; launching anyway", "warn")

        handle = backend.open_named(app.name, cmd.cwd, shell)
        self._log(app.name, f"Launched '{app.name}' in {backend.describe()}", "success")
        return OperationResult(app.name, Outcome.LAUNCHED, command=shell, message=handle.target)

    def stop(self, target: Target) -> OperationResult:
        """
        Stop by port (tiered): Ctrl+C to the app's window, then SIGTERM/SIGKILL
        to whoever owns the port, then close the window.
        Stopping an app whose port is already free is a no-op.
        """
        app = self._resolve(target)
        if not app.port:
            raise NotStoppableError(f"'{app.name}' has no Port; nothing to stop", app.name)

        if self.dry_run:
            self.reporter.warn(f"[DRY RUN] Would stop '{app.name}'")
            return OperationResult(app.name, Outcome.DRY_RUN)

        if not self.prober.is_occupied(app.port):
            self._log(app.name, f"'{app.name}' was not running", "warn")
            return OperationResult(app.name, Outcome.ALREADY_STOPPED)

        self._log(app.name, f"{AppState.STOPPING.value} '{app.name}' (port {app.port})")
        backend = self.backend
        has_window = backend is not None and backend.exists(app.name)

        if has_window and backend.supports_interrupt:
            try:
                backend.send_interrupt(app.name)
            except UnsupportedOperationError:
                pass
            self.prober.wait_until_free(app.port, INTERRUPT_GRACE)

        if self.prober.is_occupied(app.port):
            self._log(app.name, f"Killing process on port {app.port}...")
            self.prober.free(app.port)

        released = self.prober.wait_until_free(app.port, self.port_release_timeout)
        if has_window:
            backend.kill(app.name)

        if not released:
            self._log(app.name, f"Port {app.port} still serving after escalation", "error")
            return OperationResult(app.name, Outcome.FAILED, message=f"port {app.port} still in use")

        self._log(app.name, f"Stopped '{app.name}'", "success")
        return OperationResult(app.name, Outcome.STOPPED)

    def restart(self, target: Target) -> OperationResult:
        app = self._resolve(target)
        if not self.dry_run:
            self._log(app.name, f"Restarting '{app.name}'...")
        try:
            self.stop(app)
        except NotStoppableError as e:
            self._log(app.name, str(e))
        if app.port and not self.dry_run:
            self.prober.wait_until_free(app.port, self.port_release_timeout)
        return self.start(app)

    def update(self, target: Target) -> OperationResult:
        """Stop, git pull, sync dependencies, start again."""
        app = self._resolve(target)
        self.validate(app)
        if self.dry_run:
            self.reporter.warn(f"[DRY RUN] Would update '{app.name}'")
            return OperationResult(app.name, Outcome.DRY_RUN)

        self._log(app.name, f"===== Updating '{app.name}' =====")
        try:
            self.stop(app)
        except NotStoppableError:
            pass
        if app.port:
            self.prober.wait_until_free(app.port, self.port_release_timeout)

        wd = app.working_dir
        if (wd / ".git").exists():
            self._log(app.name, "Pulling latest changes from git...")
            self._run_step(app, ["git", "pull"], "Git pull")
        else:
            self._log(app.name, f"No git repository found in '{wd}'", "warn")

        env = self.resolver.resolve(app)
        self._log(app.name, f"Updating dependencies with {env.package_manager}...")
        if env.package_manager == "uv":
            self._run_step(app, ["uv", "sync"], "uv sync")
        else:
            req = self.resolver.find_requirements(wd)
            if req is None:
                self._log(app.name, "No requirements file found", "warn")
            else:
                pip = "pip"
                if env.venv_path is not None and venv_bin(env.venv_path, "pip").is_file():
                    pip = str(venv_bin(env.venv_path, "pip"))
                self._run_step(app, [pip, "install", "-r", str(req)], "pip install")

        result = self.start(app)
        if result.outcome is Outcome.LAUNCHED:
            self._log(app.name, f"Update complete for '{app.name}'", "success")
            return OperationResult(app.name, Outcome.UPDATED, command=result.command)
        return result

    def _run_step(self, app: AppDescriptor, args: List[str], label: str) -> bool:
        try:
            r = self.runner(
                args,
                cwd=str(app.working_dir),
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            self._log(app.name, f"{label} failed: {e}", "warn")
            return False
        if r.returncode == 0:
            self._log(app.name, f"{label} successful", "success")
            return True
        detail = (r.stderr or r.stdout or "").strip().splitlines()
        self._log(app.name, f"{label} failed: {detail[-1] if detail else r.returncode}", "warn")
        return False

    def close_session(self, target: Target) -> bool:
        """Ctrl+C and close the app's window, if the backend has one."""
        app = self._resolve(target)
        backend = self.backend
        if backend is None or not backend.exists(app.name):
            return False
        if backend.supports_interrupt:
            backend.send_interrupt(app.name)
            self.sleep(1)
        return backend.kill(app.name)

    # -------------------------
    # Batches
    # -------------------------

    def _run_batch(self, op: Callable[[AppDescriptor], OperationResult], apps: List[AppDescriptor], throttle: bool) -> List[OperationResult]:
        results: List[OperationResult] = []
        for i, app in enumerate(apps):
            if throttle and i and not self.dry_run:
                self.sleep(self.launch_delay)
            try:
                results.append(op(app))
            except NotStoppableError as e:
                self._log(app.name, str(e))
                results.append(OperationResult(app.name, Outcome.NOT_STOPPABLE, message=str(e)))
            except NoBackendError:
                raise
            except AppManagerError as e:
                self._log(app.name, f"Error: {app.name}: {e}", "error")
                results.append(OperationResult(app.name, Outcome.FAILED, message=str(e)))
        return results

    def _select(self, selection: str) -> List[AppDescriptor]:
        sel = self.registry.select(selection)
        for token in sel.unmatched:
            self.reporter.warn(f"Warning: Could not find app: {token}")
        return sel.apps

    def start_many(self, selection: str) -> List[OperationResult]:
        return self._run_batch(self.start, self._select(selection), throttle=True)

    def stop_many(self, selection: str) -> List[OperationResult]:
        return self._run_batch(self.stop, self._select(selection), throttle=False)

    def restart_many(self, selection: str) -> List[OperationResult]:
        return self._run_batch(self.restart, self._select(selection), throttle=True)

    def update_many(self, selection: str) -> List[OperationResult]:
        return self._run_batch(self.update, self._select(selection), throttle=True)

    def stop_all(self) -> List[OperationResult]:
        if self.dry_run:
            self.reporter.warn("[DRY RUN] Would stop all apps")
            return []
        running = [a for a in self.registry.apps if a.port and self.prober.is_occupied(a.port)]
        results = self._run_batch(self.stop, running, throttle=False)
        self.reporter.success("All apps stopped")
        return results

    # -------------------------
    # Status
    # -------------------------

    def list_status(self) -> List[AppStatus]:
        """Probe every app now; nothing is cached between calls."""
        windows: Optional[Dict[str, bool]] = None
        if self.backend is not None:
            try:
                windows = {s.name: s.alive for s in self.backend.list()}
            except LaunchError as e:
                self.reporter.warn(f"Could not list sessions: {e}")

        out: List[AppStatus] = []
        for i, app in enumerate(self.registry.apps, start=1):
            alive = None
            if windows is not None:
                alive = windows.get(sanitize_window_name(app.name), False)
            if not app.port:
                out.append(AppStatus(i, app, AppState.UNKNOWN, None, alive))
                continue
            probe = self.prober.probe(app.port)
            state = AppState.RUNNING if probe.occupied else AppState.STOPPED
            out.append(AppStatus(i, app, state, probe, alive))
        return out

    def status(self, target: Target) -> AppStatus:
        app = self._resolve(target)
        for s in self.list_status():
            if s.app.key == app.key:
                return s
        raise ValidationError(f"Could not find app: {target}")
