import json
import shutil
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml

from app_manager.config import example_file_for
from app_manager.errors import ConfigError, ValidationError
from app_manager.models import AppDescriptor

Notify = Callable[[str], None]


def _ignore(_: str) -> None:
    pass


class AppRepository:
    """
    JSON-file backed store of app descriptors.
    The file is always read and rewritten whole.
    """

    def __init__(
        self,
        path: Path,
        template_path: Optional[Path] = None,
        on_warning: Notify = _ignore,
    ):
        self.path = Path(path)
        self.template_path = Path(template_path) if template_path else example_file_for(self.path)
        self.on_warning = on_warning

    def ensure_file(self) -> None:
        """Copy the example config into place once when the real one is missing."""
        if self.path.exists():
            return
        if not self.template_path.exists():
            raise ConfigError(
                f"Could not find {self.path.name} or {self.template_path.name} in {self.path.parent}"
            )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(self.template_path, self.path)
        self.on_warning(
            f"{self.path.name} not found. Created it from {self.template_path.name}; "
            f"edit {self.path} with your actual app configurations."
        )

    def read_raw(self) -> List[Any]:
        self.ensure_file()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigError(f"Could not read {self.path}: {e}")
        except json.JSONDecodeError as e:
            raise ConfigError(f"Could not parse {self.path}: {e}")
        if not isinstance(data, list):
            raise ConfigError(f"{self.path} must contain a JSON array of apps")
        return data

    def write_raw(self, entries: List[Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(entries, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")

    def list(self) -> List[AppDescriptor]:
        apps: List[AppDescriptor] = []
        for pos, entry in enumerate(self.read_raw(), start=1):
            try:
                apps.append(AppDescriptor.from_dict(entry))
            except ValidationError as e:
                label = entry.get("Name") if isinstance(entry, dict) else None
                self.on_warning(f"Skipping entry #{pos} ({label or 'unnamed'}): {e}")
        return apps

    load = list

    def get_by_name(self, name: str) -> Optional[AppDescriptor]:
        key = name.casefold()
        for a in self.list():
            if a.key == key:
                return a
        return None

    def exists(self, name: str, exclude: Optional[str] = None) -> bool:
        key = name.casefold()
        skip = exclude.casefold() if exclude else None
        for entry in self.read_raw():
            if not isinstance(entry, dict):
                continue
            other = str(entry.get("Name") or "").casefold()
            if other == key and other != skip:
                return True
        return False

    def add(self, app: AppDescriptor) -> AppDescriptor:
        if self.exists(app.name):
            raise ValidationError(f"An app named '{app.name}' already exists", app.name)
        entries = self.read_raw()
        entries.append(app.to_dict())
        self.write_raw(entries)
        return app

    def update(self, name: str, app: AppDescriptor) -> Optional[AppDescriptor]:
        """Replace every entry whose Name matches `name` (case-insensitive). None if there is none."""
        key = name.casefold()
        found = False
        entries = []
        for entry in self.read_raw():
            if isinstance(entry, dict) and str(entry.get("Name") or "").casefold() == key:
                entries.append(app.to_dict())
                found = True
            else:
                entries.append(entry)
        if not found:
            return None
        if app.key != key and self.exists(app.name, exclude=name):
            raise ValidationError(f"Another app already uses the name '{app.name}'", app.name)
        self.write_raw(entries)
        return app

    def upsert_by_name(self, app: AppDescriptor) -> AppDescriptor:
        """
        Insert if missing; otherwise update by name.
        Used for YAML import.
        """
        if self.exists(app.name):
            self.update(app.name, app)
            return app
        return self.add(app)

    def delete(self, name: str) -> bool:
        key = name.casefold()
        entries = self.read_raw()
        kept = [
            e for e in entries
            if not (isinstance(e, dict) and str(e.get("Name") or "").casefold() == key)
        ]
        if len(kept) == len(entries):
            return False
        self.write_raw(kept)
        return True

    def import_yaml(self, yaml_path: Path) -> List[str]:
        """
        Upserts apps from a YAML file. Does NOT start apps.
        `apps:` may be a mapping of name -> fields or a list of descriptor objects.
        """
        p = Path(yaml_path)
        if not p.exists():
            raise ConfigError(f"YAML not found: {p}")
        try:
            raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse {p}: {e}")

        apps = raw.get("apps", {}) if isinstance(raw, dict) else raw
        if isinstance(apps, dict):
            items = []
            for name, cfg in apps.items():
                if not isinstance(cfg, dict):
                    continue
                items.append({"Name": str(name), **cfg})
        elif isinstance(apps, list):
            items = [a for a in apps if isinstance(a, dict)]
        else:
            raise ConfigError(f"{p}: 'apps' must be a mapping or a list")

        imported = []
        for item in items:
            try:
                app = AppDescriptor.from_dict(item)
            except ValidationError as e:
                self.on_warning(f"Skipping YAML entry {item.get('Name')!r}: {e}")
                continue
            self.upsert_by_name(app)
            imported.append(app.name)
        return imported
