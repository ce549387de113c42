import os
import random
import re
import shutil
import subprocess
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Sequence, Set

import psutil

from app_manager.config import FREE_GRACE_PERIOD
from app_manager.models import PortProbe
from app_manager.utils import Which, is_macos, is_windows

Runner = Callable[..., subprocess.CompletedProcess]


class ProbeUnavailable(Exception):
    """The mechanism can't answer here (tool missing, permission denied, ...)."""


class PortStrategy(ABC):
    name = "base"

    def available(self) -> bool:
        return True

    @abstractmethod
    def is_listening(self, port: int) -> bool:
        ...

    @abstractmethod
    def pids(self, port: int) -> Set[int]:
        ...


class PsutilStrategy(PortStrategy):
    name = "psutil"

    def _listeners(self, port: int):
        try:
            conns = psutil.net_connections(kind="inet")
        except (psutil.AccessDenied, PermissionError, OSError) as e:
            # macOS needs root for system-wide connections
            raise ProbeUnavailable(str(e))
        return [
            c for c in conns
            if c.status == psutil.CONN_LISTEN and c.laddr and c.laddr.port == port
        ]

    def is_listening(self, port: int) -> bool:
        return bool(self._listeners(port))

    def pids(self, port: int) -> Set[int]:
        return {c.pid for c in self._listeners(port) if c.pid}


class CommandStrategy(PortStrategy):
    tool = ""

    def __init__(self, which: Which = shutil.which, runner: Runner = subprocess.run):
        self.which = which
        self.runner = runner

    @property
    def name(self) -> str:  # type: ignore[override]
        return self.tool

    def available(self) -> bool:
        return self.which(self.tool) is not None

    def _run(self, args: List[str]) -> subprocess.CompletedProcess:
        try:
            return self.runner(
                args,
                capture_output=True,
                text=True,
                errors="ignore",
                timeout=5,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise ProbeUnavailable(f"{self.tool}: {e}")


def _local_port(address: str) -> Optional[int]:
    # "0.0.0.0:8000", "[::]:8000", "*:8000", "127.0.0.1.8000" (BSD netstat)
    m = re.search(r"[:.](\d+)$", address)
    return int(m.group(1)) if m else None


class SsStrategy(CommandStrategy):
    tool = "ss"

    def _rows(self, port: int) -> List[str]:
        out = self._run(["ss", "-tlnp"])
        if out.returncode != 0:
            raise ProbeUnavailable(f"ss exited with {out.returncode}")
        rows = []
        for line in out.stdout.splitlines():
            parts = line.split()
            if len(parts) < 4 or parts[0] == "State":
                continue
            if _local_port(parts[3]) == port:
                rows.append(line)
        return rows

    def is_listening(self, port: int) -> bool:
        return bool(self._rows(port))

    def pids(self, port: int) -> Set[int]:
        pids: Set[int] = set()
        for row in self._rows(port):
            pids.update(int(p) for p in re.findall(r"pid=(\d+)", row))
        return pids


class NetstatStrategy(CommandStrategy):
    tool = "netstat"

    def _rows(self, port: int) -> List[List[str]]:
        if is_windows():
            args = ["netstat", "-ano"]
        elif is_macos():
            args = ["netstat", "-an", "-p", "tcp"]
        else:
            args = ["netstat", "-tlnp"]
        out = self._run(args)
        if out.returncode != 0:
            raise ProbeUnavailable(f"netstat exited with {out.returncode}")

        rows = []
        for line in out.stdout.splitlines():
            # Example:
            # TCP    127.0.0.1:8200    0.0.0.0:0    LISTENING    12345
            # tcp    0  0 0.0.0.0:8000  0.0.0.0:*   LISTEN       1234/python
            if "LISTEN" not in line:
                continue
            parts = line.split()
            local = parts[1] if is_windows() else (parts[3] if len(parts) > 3 else "")
            if _local_port(local) == port:
                rows.append(parts)
        return rows

    def is_listening(self, port: int) -> bool:
        return bool(self._rows(port))

    def pids(self, port: int) -> Set[int]:
        pids: Set[int] = set()
        for parts in self._rows(port):
            token = parts[-1].split("/", 1)[0]
            if token.isdigit():
                pids.add(int(token))
        return pids


class LsofStrategy(CommandStrategy):
    tool = "lsof"

    def pids(self, port: int) -> Set[int]:
        out = self._run(["lsof", "-nP", f"-iTCP:{port}", "-sTCP:LISTEN", "-t"])
        # lsof exits 1 when nothing matches
        return {int(tok) for tok in out.stdout.split() if tok.isdigit()}

    def is_listening(self, port: int) -> bool:
        return bool(self.pids(port))


class FuserStrategy(CommandStrategy):
    tool = "fuser"

    def pids(self, port: int) -> Set[int]:
        out = self._run(["fuser", f"{port}/tcp"])
        return {int(tok) for tok in out.stdout.split() if tok.isdigit()}

    def is_listening(self, port: int) -> bool:
        return bool(self.pids(port))


def default_strategies(which: Which = shutil.which, runner: Runner = subprocess.run):
    """(occupancy chain, pid chain)"""
    ss = SsStrategy(which, runner)
    netstat = NetstatStrategy(which, runner)
    lsof = LsofStrategy(which, runner)
    fuser = FuserStrategy(which, runner)
    ps = PsutilStrategy()
    return [ps, ss, netstat, lsof], [ps, lsof, ss, fuser, netstat]


def _ignore(_: str) -> None:
    pass


class PortProber:
    """
    Port liveness checks with an ordered fallback chain.
    When no mechanism can answer, ports are reported free with degraded=True.
    """

    def __init__(
        self,
        strategies: Optional[Sequence[PortStrategy]] = None,
        pid_strategies: Optional[Sequence[PortStrategy]] = None,
        which: Which = shutil.which,
        runner: Runner = subprocess.run,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        on_warning: Callable[[str], None] = _ignore,
    ):
        occ, pid_chain = default_strategies(which, runner)
        self.strategies = list(strategies) if strategies is not None else occ
        if pid_strategies is not None:
            self.pid_strategies = list(pid_strategies)
        elif strategies is not None:
            self.pid_strategies = list(strategies)
        else:
            self.pid_strategies = pid_chain
        self.sleep = sleep
        self.clock = clock
        self.on_warning = on_warning
        self._warned = False

    def probe(self, port: int) -> PortProbe:
        for s in self.strategies:
            if not s.available():
                continue
            try:
                return PortProbe(occupied=s.is_listening(port), source=s.name)
            except ProbeUnavailable:
                continue
        if not self._warned:
            self._warned = True
            self.on_warning(
                "No port introspection tool available (psutil, ss, netstat, lsof); "
                "ports are assumed free"
            )
        return PortProbe(occupied=False, source="none", degraded=True)

    def is_occupied(self, port: int) -> bool:
        return self.probe(port).occupied

    def owning_pids(self, port: int) -> Set[int]:
        for s in self.pid_strategies:
            if not s.available():
                continue
            try:
                pids = s.pids(port)
            except ProbeUnavailable:
                continue
            pids.discard(os.getpid())
            if pids:
                return pids
        return set()

    def free(self, port: int, grace: float = FREE_GRACE_PERIOD) -> bool:
        """
        SIGTERM every owner, wait `grace`, SIGKILL survivors.
        True iff no owning process is left. The port itself may take a
        moment longer to be released; use wait_until_free for that.
        """
        pids = self.owning_pids(port)
        if not pids:
            return not self.is_occupied(port)

        procs = []
        for pid in sorted(pids):
            try:
                p = psutil.Process(pid)
                p.terminate()
                procs.append(p)
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied:
                self.on_warning(f"Permission denied terminating pid {pid} on port {port}")
                return False

        _, alive = psutil.wait_procs(procs, timeout=grace)
        for p in alive:
            try:
                p.kill()
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied:
                self.on_warning(f"Permission denied killing pid {p.pid} on port {port}")
        if alive:
            _, alive = psutil.wait_procs(alive, timeout=grace)
        return not alive

    def wait_until_free(self, port: int, timeout: float, interval: float = 1.0) -> bool:
        if not self.is_occupied(port):
            return True
        interval = max(interval, 1.0)
        deadline = self.clock() + timeout
        while self.clock() < deadline:
            self.sleep(interval)
            if not self.is_occupied(port):
                return True
        return False


def random_free_port(
    prober: PortProber,
    low: int = 3000,
    high: int = 8999,
    attempts: int = 50,
    randint: Callable[[int, int], int] = random.randint,
) -> int:
    """Random port in [low, high] that the prober reports free; gives up after `attempts`."""
    port = randint(low, high)
    for _ in range(attempts):
        if not prober.is_occupied(port):
            return port
        port = randint(low, high)
    return port
