import re
import subprocess
import sys

import pytest

from app_manager.errors import LaunchError, NoBackendError, UnsupportedOperationError
from app_manager.sessions import (
    NativeTerminalBackend,
    TmuxBackend,
    ZellijBackend,
    select_backend,
    wrap_command,
)
from app_manager.utils import sanitize_window_name


class FakeTmux:
    """Records tmux invocations and keeps a tiny window table."""

    def __init__(self, session_exists=False):
        self.calls = []
        self.session = session_exists
        self.windows = {}

    def __call__(self, args, **kwargs):
        self.calls.append(args)
        sub = args[1]
        if sub == "has-session":
            return self._done(0 if self.session else 1)
        if sub == "new-session":
            self.session = True
            self.windows["_placeholder"] = "0"
            return self._done(0)
        if sub == "new-window":
            self.windows[args[args.index("-n") + 1]] = "0"
            return self._done(0)
        if sub == "list-windows":
            out = "".join(f"{name}\t{dead}\n" for name, dead in self.windows.items())
            return self._done(0, out)
        if sub == "kill-window":
            target = args[args.index("-t") + 1].split(":", 1)[1]
            return self._done(0 if self.windows.pop(target, None) is not None else 1)
        if sub == "display-message":
            return self._done(0, "work\n")
        return self._done(0)

    @staticmethod
    def _done(code, stdout=""):
        return subprocess.CompletedProcess(args=[], returncode=code, stdout=stdout, stderr="")

    def subcommands(self):
        return [c[1] for c in self.calls]


def test_sanitize_window_name():
    assert sanitize_window_name("api-dev_2") == "api-dev_2"
    assert re.fullmatch(r"My_App_v1_2_api_dev-[0-9a-f]{6}", sanitize_window_name("My App v1.2/api:dev"))
    assert sanitize_window_name("naïve(app)!").startswith("naveapp-")


def test_sanitized_names_stay_distinct():
    assert sanitize_window_name("App.1") != sanitize_window_name("App_1")
    assert sanitize_window_name("App_1") == "App_1"
    assert sanitize_window_name("App.1") == sanitize_window_name("App.1")


def test_wrap_command_keeps_window_open():
    script = wrap_command("Demo", "/srv/demo", "flask run")
    assert "cd '/srv/demo' && flask run;" in script
    assert script.endswith("read")


def test_tmux_open_named_creates_session_and_window():
    fake = FakeTmux()
    tmux = TmuxBackend("apps", runner=fake)
    handle = tmux.open_named("My App", "/srv/app", "echo hi")
    win = sanitize_window_name("My App")

    assert handle.target == f"apps:{win}"
    new_window = next(c for c in fake.calls if c[1] == "new-window")
    assert new_window[new_window.index("-n") + 1] == win
    assert new_window[new_window.index("-c") + 1] == "/srv/app"
    assert new_window[-1].startswith("bash -c ")
    assert "new-session" in fake.subcommands()
    assert "_placeholder" not in fake.windows
    assert [s.name for s in tmux.list()] == [win]


def test_tmux_refuses_duplicate_window():
    fake = FakeTmux()
    tmux = TmuxBackend("apps", runner=fake)
    tmux.open_named("Demo", "/srv", "x")
    with pytest.raises(LaunchError):
        tmux.open_named("Demo", "/srv", "x")


def test_tmux_list_marks_dead_panes():
    fake = FakeTmux(session_exists=True)
    fake.windows = {"api": "0", "_placeholder": "0", "worker": "1"}
    infos = TmuxBackend("apps", runner=fake).list()
    assert [(s.name, s.alive) for s in infos] == [("api", True), ("worker", False)]


def test_tmux_interrupt_and_kill():
    fake = FakeTmux(session_exists=True)
    fake.windows = {"api": "0"}
    tmux = TmuxBackend("apps", runner=fake)
    assert tmux.send_interrupt("api")
    assert ["tmux", "send-keys", "-t", "apps:api", "C-c"] in fake.calls
    assert tmux.kill("api")
    assert not tmux.kill("api")


def test_tmux_reuse_current_session_name():
    tmux = TmuxBackend("apps", reuse_current=True, runner=FakeTmux(session_exists=True))
    assert tmux.session_name == "work"


def test_zellij_out_of_session_targets_named_session():
    calls = []

    def runner(args, **kwargs):
        calls.append(args)
        return subprocess.CompletedProcess(args=args, returncode=0, stdout="", stderr="")

    zj = ZellijBackend("apps", runner=runner)
    zj.open_named("Demo", "/srv/demo", "echo hi")
    assert calls[0] == ["zellij", "attach", "--create-background", "apps"]
    assert ["zellij", "--session", "apps", "action", "new-tab", "--name", "Demo", "--cwd", "/srv/demo"] in calls
    assert calls[-1][-2:] == ["write", "13"]


def test_native_terminal_has_no_interrupt():
    spawned = []

    class Proc:
        pid = 4321

        def poll(self):
            return None

        def terminate(self):
            spawned.append("terminated")

    def popen(argv, **kwargs):
        spawned.append(argv)
        return Proc()

    term = NativeTerminalBackend("xterm", popen=popen)
    term.open_named("Demo", "/srv/demo", "echo hi")
    assert spawned[0][:3] == ["xterm", "-title", "Demo"]
    assert term.exists("Demo")
    assert not term.supports_interrupt
    with pytest.raises(UnsupportedOperationError):
        term.send_interrupt("Demo")
    assert term.kill("Demo")
    assert spawned[-1] == "terminated"


def _which(*tools):
    return lambda name: f"/usr/bin/{name}" if name in tools else None


def test_select_reuses_active_tmux():
    backend = select_backend(env={"TMUX": "/tmp/tmux-1/default"}, which=_which("tmux"), runner=FakeTmux())
    assert isinstance(backend, TmuxBackend)
    assert backend.reuse_current


def test_select_reuses_active_zellij():
    backend = select_backend(env={"ZELLIJ": "0"}, which=_which("zellij", "tmux"))
    assert isinstance(backend, ZellijBackend)
    assert backend.in_session


def test_select_prefers_primary_multiplexer():
    backend = select_backend(env={"DISPLAY": ":0"}, which=_which("tmux", "xterm"))
    assert isinstance(backend, TmuxBackend)
    assert not backend.reuse_current

    backend = select_backend(env={}, which=_which("tmux", "zellij"), primary="zellij")
    assert isinstance(backend, ZellijBackend)


@pytest.mark.skipif(sys.platform == "darwin", reason="macOS always has Terminal.app")
def test_select_falls_back_to_terminal_then_secondary():
    backend = select_backend(env={"DISPLAY": ":0"}, which=_which("konsole", "zellij"))
    assert isinstance(backend, NativeTerminalBackend)
    assert backend.emulator == "konsole"

    backend = select_backend(env={}, which=_which("konsole", "zellij"))
    assert isinstance(backend, ZellijBackend)
    assert not backend.in_session


@pytest.mark.skipif(sys.platform == "darwin", reason="macOS always has Terminal.app")
def test_select_without_any_backend():
    with pytest.raises(NoBackendError):
        select_backend(env={}, which=_which())


def test_tmux_session_lookup_is_exact():
    fake = FakeTmux()
    TmuxBackend("apps", runner=fake).open_named("Demo", "/srv", "x")
    assert ["tmux", "has-session", "-t", "=apps"] in fake.calls


def test_terminal_app_reuses_one_launcher_per_window(tmp_path):
    class Proc:
        pid = 1

        def poll(self):
            return None

    argvs = []

    def popen(argv, **kwargs):
        argvs.append(argv)
        return Proc()

    term = NativeTerminalBackend("Terminal", popen=popen, script_dir=tmp_path)
    term.open_named("My App", "/srv/a", "echo one")
    term.open_named("My App", "/srv/a", "echo two")

    [launcher] = list(tmp_path.iterdir())
    assert argvs[0] == ["open", "-a", "Terminal", str(launcher)]
    assert argvs[1] == argvs[0]
    assert "echo two" in launcher.read_text()
