"""
Session backends: where a launched command gets its own named, inspectable
terminal. One backend is picked at startup by `select_backend` and handed to
the LifecycleManager.
"""
import os
import shutil
import stat
import subprocess
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

from app_manager.config import NATIVE_TERMINALS, PRIMARY_MULTIPLEXER, SESSION_NAME
from app_manager.errors import LaunchError, NoBackendError, UnsupportedOperationError
from app_manager.models import SessionHandle, SessionInfo, quote_always
from app_manager.utils import Which, is_macos, sanitize_window_name

Runner = Callable[..., subprocess.CompletedProcess]
PLACEHOLDER = "_placeholder"


def wrap_command(name: str, working_dir: str, command: str) -> str:
    """Shell script run inside the session; keeps the window open after the app exits."""
    return (
        f"printf '%s\\n' {quote_always('Starting: ' + name)} "
        f"{quote_always('Directory: ' + working_dir)} '---'; "
        f"cd {quote_always(working_dir)} && {command}; "
        "echo; echo '[App exited. Press Enter to close this window]'; read"
    )


class SessionBackend(ABC):
    name = "base"
    supports_interrupt = True

    @abstractmethod
    def open_named(self, name: str, working_dir: str, command: str) -> SessionHandle:
        ...

    @abstractmethod
    def list(self) -> List[SessionInfo]:
        ...

    @abstractmethod
    def kill(self, name: str) -> bool:
        ...

    def send_interrupt(self, name: str) -> bool:
        raise UnsupportedOperationError(f"{self.name} backend cannot send an interrupt", name)

    def exists(self, name: str) -> bool:
        win = sanitize_window_name(name)
        return any(s.name == win for s in self.list())

    def attach(self) -> None:
        raise UnsupportedOperationError(f"{self.name} backend has nothing to attach to")

    def describe(self) -> str:
        return self.name


class TmuxBackend(SessionBackend):
    """
    All apps are windows of one tmux session.
    Unlike zellij, tmux can kill windows by name and send keys to them.
    """

    name = "tmux"

    def __init__(
        self,
        session_name: str = SESSION_NAME,
        reuse_current: bool = False,
        runner: Runner = subprocess.run,
    ):
        self.runner = runner
        self.reuse_current = reuse_current
        self.session_name = session_name
        if reuse_current:
            r = self._tmux("display-message", "-p", "#S")
            if r.returncode == 0 and r.stdout.strip():
                self.session_name = r.stdout.strip()

    def _tmux(self, *args: str) -> subprocess.CompletedProcess:
        try:
            return self.runner(["tmux", *args], capture_output=True, text=True, check=False)
        except OSError as e:
            raise LaunchError(f"tmux failed: {e}")

    def _target(self, name: str) -> str:
        return f"{self.session_name}:{sanitize_window_name(name)}"

    def session_exists(self) -> bool:
        # "=" disables prefix matching against other session names
        return self._tmux("has-session", "-t", f"={self.session_name}").returncode == 0

    def ensure_session(self) -> None:
        if self.session_exists():
            return
        r = self._tmux("new-session", "-d", "-s", self.session_name, "-n", PLACEHOLDER)
        if r.returncode != 0:
            raise LaunchError(f"Could not create tmux session '{self.session_name}': {r.stderr.strip()}")

    def open_named(self, name: str, working_dir: str, command: str) -> SessionHandle:
        self.ensure_session()
        if self.exists(name):
            raise LaunchError(f"Window '{name}' already exists. Use restart to replace it.", name)

        script = wrap_command(name, working_dir, command)
        r = self._tmux(
            "new-window",
            "-t", f"{self.session_name}:",
            "-n", sanitize_window_name(name),
            "-c", working_dir,
            f"bash -c {quote_always(script)}",
        )
        if r.returncode != 0:
            raise LaunchError(f"tmux new-window failed: {r.stderr.strip()}", name)

        self._tmux("kill-window", "-t", f"{self.session_name}:{PLACEHOLDER}")
        return SessionHandle(backend=self.name, name=name, target=self._target(name))

    def list(self) -> List[SessionInfo]:
        if not self.session_exists():
            return []
        r = self._tmux("list-windows", "-t", self.session_name, "-F", "#{window_name}\t#{pane_dead}")
        if r.returncode != 0:
            return []
        out = []
        for line in r.stdout.splitlines():
            win, _, dead = line.partition("\t")
            if not win or win == PLACEHOLDER:
                continue
            out.append(SessionInfo(name=win, alive=dead.strip() != "1"))
        return out

    def kill(self, name: str) -> bool:
        if not self.exists(name):
            return False
        return self._tmux("kill-window", "-t", self._target(name)).returncode == 0

    def send_interrupt(self, name: str) -> bool:
        if not self.exists(name):
            return False
        return self._tmux("send-keys", "-t", self._target(name), "C-c").returncode == 0

    def attach(self) -> None:
        if not self.session_exists():
            raise LaunchError("No tmux session found. Start some apps first.")
        if os.environ.get("TMUX"):
            self.runner(["tmux", "switch-client", "-t", self.session_name], check=False)
        else:
            self.runner(["tmux", "attach-session", "-t", self.session_name], check=False)

    def describe(self) -> str:
        return f"tmux session '{self.session_name}'"


class ZellijBackend(SessionBackend):
    """Apps are named tabs of a zellij session."""

    name = "zellij"

    def __init__(
        self,
        session_name: str = SESSION_NAME,
        in_session: bool = False,
        runner: Runner = subprocess.run,
    ):
        self.session_name = session_name
        self.in_session = in_session
        self.runner = runner

    def _zellij(self, *args: str) -> subprocess.CompletedProcess:
        base = ["zellij"] if self.in_session else ["zellij", "--session", self.session_name]
        try:
            return self.runner([*base, *args], capture_output=True, text=True, check=False)
        except OSError as e:
            raise LaunchError(f"zellij failed: {e}")

    def ensure_session(self) -> None:
        if self.in_session:
            return
        try:
            r = self.runner(
                ["zellij", "attach", "--create-background", self.session_name],
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            raise LaunchError(f"zellij failed: {e}")
        if r.returncode != 0:
            raise LaunchError(f"Could not create zellij session '{self.session_name}': {r.stderr.strip()}")

    def open_named(self, name: str, working_dir: str, command: str) -> SessionHandle:
        self.ensure_session()
        if self.exists(name):
            raise LaunchError(f"Tab '{name}' already exists. Use restart to replace it.", name)

        tab = sanitize_window_name(name)
        r = self._zellij("action", "new-tab", "--name", tab, "--cwd", working_dir)
        if r.returncode != 0:
            raise LaunchError(f"zellij new-tab failed: {r.stderr.strip()}", name)
        # the new tab has focus; type the command into its shell
        script = wrap_command(name, working_dir, command)
        self._zellij("action", "write-chars", f"bash -c {quote_always(script)}")
        self._zellij("action", "write", "13")
        return SessionHandle(backend=self.name, name=name, target=tab)

    def list(self) -> List[SessionInfo]:
        r = self._zellij("action", "query-tab-names")
        if r.returncode != 0:
            return []
        return [SessionInfo(name=t.strip()) for t in r.stdout.splitlines() if t.strip()]

    def _focus(self, name: str) -> bool:
        if not self.exists(name):
            return False
        return self._zellij("action", "go-to-tab-name", sanitize_window_name(name)).returncode == 0

    def kill(self, name: str) -> bool:
        if not self._focus(name):
            return False
        return self._zellij("action", "close-tab").returncode == 0

    def send_interrupt(self, name: str) -> bool:
        if not self._focus(name):
            return False
        # byte 3 == Ctrl+C
        return self._zellij("action", "write", "3").returncode == 0

    def attach(self) -> None:
        if self.in_session:
            raise UnsupportedOperationError("Already inside a zellij session")
        self.runner(["zellij", "attach", self.session_name], check=False)

    def describe(self) -> str:
        return "current zellij session" if self.in_session else f"zellij session '{self.session_name}'"


def _terminal_argv(emulator: str, title: str, cwd: str, script: str) -> List[str]:
    if emulator == "gnome-terminal":
        return ["gnome-terminal", f"--title={title}", f"--working-directory={cwd}", "--", "bash", "-c", script]
    if emulator == "konsole":
        return ["konsole", "--workdir", cwd, "-e", "bash", "-c", script]
    if emulator == "xterm":
        return ["xterm", "-title", title, "-e", "bash", "-c", script]
    if emulator == "kitty":
        return ["kitty", "-d", cwd, "--title", title, "bash", "-c", script]
    if emulator == "alacritty":
        return ["alacritty", "--working-directory", cwd, "--title", title, "-e", "bash", "-c", script]
    if emulator == "wezterm":
        return ["wezterm", "start", "--cwd", cwd, "--", "bash", "-c", script]
    raise LaunchError(f"Unknown terminal emulator: {emulator}")


def command_file_path(name: str, script_dir: Optional[Path] = None) -> Path:
    """Launcher script Terminal.app opens for window `name`."""
    base = Path(script_dir) if script_dir is not None else Path(tempfile.gettempdir())
    return base / f"app-manager-{sanitize_window_name(name)}.command"


class NativeTerminalBackend(SessionBackend):
    """
    One graphical terminal window per app.
    Only windows spawned by this process are visible to list()/kill();
    interrupts are not supported.
    """

    name = "terminal"
    supports_interrupt = False

    def __init__(
        self,
        emulator: str,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        script_dir: Optional[Path] = None,
    ):
        self.emulator = emulator
        self.popen = popen
        self.script_dir = script_dir
        self._procs: Dict[str, subprocess.Popen] = {}

    def _argv(self, name: str, working_dir: str, command: str) -> List[str]:
        script = wrap_command(name, working_dir, command) + "; exec bash"
        if self.emulator == "Terminal":
            # one launcher per window name, overwritten on every start
            path = command_file_path(name, self.script_dir)
            path.write_text("#!/bin/bash\n" + script + "\n", encoding="utf-8")
            path.chmod(path.stat().st_mode | stat.S_IXUSR)
            return ["open", "-a", "Terminal", str(path)]
        return _terminal_argv(self.emulator, name, working_dir, script)

    def open_named(self, name: str, working_dir: str, command: str) -> SessionHandle:
        argv = self._argv(name, working_dir, command)
        try:
            p = self.popen(
                argv,
                cwd=working_dir,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            raise LaunchError(f"{self.emulator} failed to start: {e}", name)
        win = sanitize_window_name(name)
        self._procs[win] = p
        return SessionHandle(backend=self.name, name=name, target=f"{self.emulator}:{p.pid}")

    def list(self) -> List[SessionInfo]:
        return [SessionInfo(name=win, alive=p.poll() is None) for win, p in self._procs.items()]

    def kill(self, name: str) -> bool:
        p = self._procs.pop(sanitize_window_name(name), None)
        if p is None or p.poll() is not None:
            return False
        p.terminate()
        return True

    def describe(self) -> str:
        return f"{self.emulator} windows"


# -------------------------
# Backend selection
# -------------------------

def _multiplexer(kind: str, session_name: str, runner: Runner, in_session: bool = False) -> SessionBackend:
    if kind == "zellij":
        return ZellijBackend(session_name, in_session=in_session, runner=runner)
    return TmuxBackend(session_name, reuse_current=in_session, runner=runner)


def find_native_terminal(env: Mapping[str, str], which: Which) -> Optional[str]:
    if is_macos():
        return "Terminal"
    if not (env.get("DISPLAY") or env.get("WAYLAND_DISPLAY")):
        return None
    for emulator in NATIVE_TERMINALS:
        if which(emulator):
            return emulator
    return None


def select_backend(
    env: Mapping[str, str] = os.environ,
    which: Which = shutil.which,
    primary: str = PRIMARY_MULTIPLEXER,
    session_name: str = SESSION_NAME,
    runner: Runner = subprocess.run,
) -> SessionBackend:
    """
    1. already inside tmux/zellij -> new window/tab there
    2. primary multiplexer installed -> fresh named session
    3. display + native terminal emulator -> one window per app
    4. secondary multiplexer installed -> headless background session
    """
    primary = "zellij" if primary == "zellij" else "tmux"
    secondary = "tmux" if primary == "zellij" else "zellij"

    if env.get("TMUX") and which("tmux"):
        return _multiplexer("tmux", session_name, runner, in_session=True)
    if (env.get("ZELLIJ") or env.get("ZELLIJ_SESSION_NAME")) and which("zellij"):
        return _multiplexer("zellij", session_name, runner, in_session=True)

    if which(primary):
        return _multiplexer(primary, session_name, runner)

    emulator = find_native_terminal(env, which)
    if emulator:
        return NativeTerminalBackend(emulator)

    if which(secondary):
        return _multiplexer(secondary, session_name, runner)

    raise NoBackendError(
        "No session backend available: install tmux or zellij, or run under a graphical terminal"
    )
