import hashlib
import os
import re
import sys
from pathlib import Path
from typing import Callable, Iterator, Optional

Which = Callable[[str], Optional[str]]


def is_windows() -> bool:
    return sys.platform.startswith("win")


def is_macos() -> bool:
    return sys.platform == "darwin"


def venv_activate_path(venv_dir: Path) -> Path:
    if is_windows():
        return venv_dir / "Scripts" / "activate"
    return venv_dir / "bin" / "activate"


def sanitize_window_name(name: str) -> str:
    """
    tmux/zellij-safe name: spaces and / : . become '_', other symbols are dropped.
    A name that had to change gets a short hash of the original appended, so
    "App.1" and "App_1" get different windows.
    """
    safe = re.sub(r"[ /:.]", "_", name)
    safe = re.sub(r"[^A-Za-z0-9_-]", "", safe)
    if safe == name:
        return safe
    digest = hashlib.sha1(name.encode("utf-8")).hexdigest()[:6]
    return f"{safe}-{digest}"


def walk_bounded(root: Path, max_depth: int) -> Iterator[Path]:
    """Yield files under root whose depth (root/x = 1) is <= max_depth, in sorted order."""
    root = Path(root)
    base_depth = len(root.parts)
    for dirpath, dirnames, filenames in os.walk(root):
        depth = len(Path(dirpath).parts) - base_depth
        dirnames.sort()
        if depth + 1 >= max_depth:
            # files one level deeper are the last ones allowed
            dirnames[:] = []
        for fn in sorted(filenames):
            yield Path(dirpath) / fn


def venv_bin(venv_dir: Path, tool: str) -> Path:
    if is_windows():
        return venv_dir / "Scripts" / f"{tool}.exe"
    return venv_dir / "bin" / tool
