import os
import shutil
from pathlib import Path
from typing import List, Optional

from app_manager.config import (
    MANAGE_SCRIPT,
    PROJECT_MANIFEST,
    REQUIREMENTS_CANDIDATES,
    VENV_DIR_NAMES,
)
from app_manager.models import AppDescriptor, AppType, ResolvedEnvironment
from app_manager.utils import Which, venv_activate_path, walk_bounded

# checked in this order when guessing a project's framework
_DETECT_ORDER = (
    ("streamlit", AppType.STREAMLIT),
    ("django", AppType.DJANGO),
    ("flask", AppType.FLASK),
    ("dash", AppType.DASH),
)


class EnvironmentResolver:
    """Finds the package manager, virtualenv and entry scripts for an app directory."""

    def __init__(self, which: Which = shutil.which, venv_search_depth: int = 3):
        self.which = which
        self.venv_search_depth = venv_search_depth

    def resolve_package_manager(self, directory: Path) -> str:
        # both conditions must hold; no uv on PATH always means pip
        if (Path(directory) / PROJECT_MANIFEST).is_file() and self.which("uv"):
            return "uv"
        return "pip"

    def find_isolated_env(self, directory: Path) -> Optional[Path]:
        directory = Path(directory)
        for name in VENV_DIR_NAMES:
            candidate = directory / name
            if venv_activate_path(candidate).is_file():
                return candidate

        for f in walk_bounded(directory, self.venv_search_depth):
            if f.name == "activate" and f.parent.name in ("bin", "Scripts"):
                return f.parent.parent
        return None

    def find_entry_script(self, directory: Path, name: str, max_depth: int = 3) -> Optional[str]:
        """Relative (POSIX) path of `name` under directory, root first."""
        directory = Path(directory)
        if (directory / name).is_file():
            return name
        for f in walk_bounded(directory, max_depth):
            if f.name == name:
                return f.relative_to(directory).as_posix()
        return None

    def find_manage_script(self, directory: Path) -> Optional[str]:
        return self.find_entry_script(directory, MANAGE_SCRIPT, max_depth=3)

    def find_requirements(self, directory: Path) -> Optional[Path]:
        directory = Path(directory)
        for rel in REQUIREMENTS_CANDIDATES:
            if (directory / rel).is_file():
                return directory / rel
        found = self.find_entry_script(directory, "requirements.txt", max_depth=2)
        return directory / found if found else None

    def find_python_files(self, directory: Path) -> List[str]:
        """Candidate index files (relative POSIX paths), skipping virtualenvs and caches."""
        directory = Path(directory)
        skip = set(VENV_DIR_NAMES) | {"__pycache__", "site-packages", ".git", "node_modules"}
        out: List[str] = []
        for dirpath, dirnames, filenames in os.walk(directory):
            dirnames[:] = sorted(d for d in dirnames if d not in skip)
            for fn in sorted(filenames):
                if fn.endswith(".py"):
                    out.append((Path(dirpath) / fn).relative_to(directory).as_posix())
        return out

    def detect_app_type(self, directory: Path) -> Optional[AppType]:
        directory = Path(directory)
        sources = [directory / PROJECT_MANIFEST]
        req = self.find_requirements(directory)
        if req:
            sources.append(req)
        for src in sources:
            if not src.is_file():
                continue
            try:
                content = src.read_text(encoding="utf-8", errors="ignore").lower()
            except OSError:
                continue
            for needle, app_type in _DETECT_ORDER:
                if needle in content:
                    return app_type
        return None

    def resolve(self, app: AppDescriptor) -> ResolvedEnvironment:
        working_dir = app.working_dir.resolve()
        pm = app.package_manager or self.resolve_package_manager(working_dir)

        venv: Optional[Path] = None
        activate: Optional[Path] = None
        if pm == "pip":
            if app.venv_path:
                venv = Path(app.venv_path).expanduser()
                if not venv.is_absolute():
                    venv = working_dir / venv
            else:
                venv = self.find_isolated_env(working_dir)
            if venv is not None and venv_activate_path(venv).is_file():
                activate = venv_activate_path(venv)

        manage = None
        if app.type in (AppType.DJANGO, AppType.CUSTOM):
            manage = self.find_manage_script(working_dir)

        return ResolvedEnvironment(
            working_dir=working_dir,
            package_manager=pm,
            venv_path=venv,
            activate_script=activate,
            manage_script=manage,
        )
