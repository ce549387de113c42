"""
Shared fixtures and fakes for app_manager tests.

- FakeProber / FakeBackend stand in for OS ports and terminal multiplexers
- make_repo writes an apps.json into tmp_path; make_manager wires a LifecycleManager over it
"""
import io
import json
from pathlib import Path
from typing import Dict, List, Optional, Set

import pytest

from app_manager.app_registry import AppRegistry
from app_manager.app_repository import AppRepository
from app_manager.console import OutputStyle, Reporter
from app_manager.environment import EnvironmentResolver
from app_manager.lifecycle import LifecycleManager
from app_manager.models import PortProbe, SessionHandle, SessionInfo
from app_manager.sessions import SessionBackend
from app_manager.utils import sanitize_window_name


class FakeProber:
    """Ports in `occupied` are in use; free() releases them unless `stubborn`."""

    def __init__(self, occupied: Optional[Set[int]] = None, stubborn: Optional[Set[int]] = None):
        self.occupied = set(occupied or ())
        self.stubborn = set(stubborn or ())
        self.calls: List[tuple] = []

    def probe(self, port: int) -> PortProbe:
        self.calls.append(("probe", port))
        return PortProbe(occupied=port in self.occupied, source="fake")

    def is_occupied(self, port: int) -> bool:
        self.calls.append(("is_occupied", port))
        return port in self.occupied

    def owning_pids(self, port: int) -> Set[int]:
        return {4242} if port in self.occupied else set()

    def free(self, port: int, grace: float = 1.0) -> bool:
        self.calls.append(("free", port))
        if port in self.stubborn:
            return False
        self.occupied.discard(port)
        return True

    def wait_until_free(self, port: int, timeout: float, interval: float = 1.0) -> bool:
        self.calls.append(("wait_until_free", port, timeout))
        return port not in self.occupied


class FakeBackend(SessionBackend):
    name = "fake"

    def __init__(self, prober: Optional[FakeProber] = None, supports_interrupt: bool = True):
        self.windows: Dict[str, bool] = {}
        self.opened: List[tuple] = []
        self.killed: List[str] = []
        self.interrupted: List[str] = []
        self.supports_interrupt = supports_interrupt
        # name -> port released when Ctrl+C arrives
        self.interrupt_frees: Dict[str, int] = {}
        self.prober = prober

    def open_named(self, name: str, working_dir: str, command: str) -> SessionHandle:
        win = sanitize_window_name(name)
        self.windows[win] = True
        self.opened.append((name, working_dir, command))
        return SessionHandle(backend=self.name, name=name, target=f"fake:{win}")

    def list(self) -> List[SessionInfo]:
        return [SessionInfo(name=n, alive=a) for n, a in self.windows.items()]

    def kill(self, name: str) -> bool:
        win = sanitize_window_name(name)
        self.killed.append(name)
        return self.windows.pop(win, None) is not None

    def send_interrupt(self, name: str) -> bool:
        self.interrupted.append(name)
        port = self.interrupt_frees.get(name)
        if port is not None and self.prober is not None:
            self.prober.occupied.discard(port)
        return True


def write_apps(path: Path, entries: List[dict]) -> Path:
    path.write_text(json.dumps(entries, indent=2), encoding="utf-8")
    return path


@pytest.fixture
def app_dir(tmp_path):
    """A project directory with the usual entry files."""
    d = tmp_path / "demo"
    d.mkdir()
    (d / "app.py").write_text("print('hi')\n")
    return d


@pytest.fixture
def warnings_seen():
    return []


@pytest.fixture
def make_repo(tmp_path, warnings_seen):
    def _make(entries: List[dict]) -> AppRepository:
        apps_file = write_apps(tmp_path / "apps.json", entries)
        return AppRepository(apps_file, on_warning=warnings_seen.append)

    return _make


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def reporter(output):
    return Reporter(OutputStyle(color=False, file=output, width=300))


@pytest.fixture
def no_uv_resolver():
    return EnvironmentResolver(which=lambda _: None)


@pytest.fixture
def make_manager(make_repo, reporter, no_uv_resolver):
    def _make(entries: List[dict], prober=None, backend="default", **kwargs) -> LifecycleManager:
        registry = AppRegistry(make_repo(entries))
        prober = prober or FakeProber()
        if backend == "default":
            backend = FakeBackend(prober)
        kwargs.setdefault("sleep", lambda _: None)
        return LifecycleManager(
            registry,
            backend,
            prober=prober,
            resolver=no_uv_resolver,
            reporter=reporter,
            **kwargs,
        )

    return _make


@pytest.fixture
def flat():
    """Collapse whitespace so console line wrapping doesn't matter."""
    return lambda text: " ".join(text.split())
