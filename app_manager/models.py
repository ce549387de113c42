import shlex
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from app_manager.errors import ValidationError


class AppType(str, Enum):
    STREAMLIT = "Streamlit"
    DJANGO = "Django"
    DASH = "Dash"
    FLASK = "Flask"
    CUSTOM = "Custom"

    @classmethod
    def parse(cls, raw: Any) -> "AppType":
        """Map a registry `Type` value to an AppType.

        Accepts both the short names ("Flask") and the suffixed ones
        ("FlaskApp"), case-insensitively. Anything else is CUSTOM.
        """
        if not raw:
            return cls.CUSTOM
        key = str(raw).strip().lower()
        if key.endswith("app"):
            key = key[:-3]
        for t in FRAMEWORK_TYPES:
            if t.value.lower() == key:
                return t
        return cls.CUSTOM

    @property
    def is_framework(self) -> bool:
        return self in FRAMEWORK_TYPES

    @property
    def needs_index(self) -> bool:
        return self in (AppType.STREAMLIT, AppType.DASH, AppType.FLASK)


FRAMEWORK_TYPES = (AppType.STREAMLIT, AppType.DJANGO, AppType.DASH, AppType.FLASK)

# JSON key -> attribute
_FIELDS = {
    "Name": "name",
    "Type": "raw_type",
    "Port": "port",
    "AppPath": "app_path",
    "IndexPath": "index_path",
    "BasePath": "base_path",
    "VenvPath": "venv_path",
    "PackageManager": "package_manager",
    "CustomCommand": "custom_command",
}


def parse_port(value: Any, app_name: Optional[str] = None) -> Optional[int]:
    # 0 / absent means "unmanaged liveness"
    if value is None or value == "" or value == 0 or value == "0":
        return None
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(f"Port must be an integer (got {value!r})", app_name)
    try:
        port = int(str(value).strip())
    except ValueError:
        raise ValidationError(f"Port must be an integer (got {value!r})", app_name)
    if port < 1 or port > 65535:
        raise ValidationError(f"Port must be between 1 and 65535 (got {port})", app_name)
    return port


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@dataclass(frozen=True)
class AppDescriptor:
    name: str
    app_path: str
    type: AppType = AppType.CUSTOM
    raw_type: Optional[str] = None
    index_path: Optional[str] = None
    port: Optional[int] = None
    base_path: Optional[str] = None
    venv_path: Optional[str] = None
    package_manager: Optional[str] = None
    custom_command: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppDescriptor":
        if not isinstance(data, dict):
            raise ValidationError(f"App entry must be an object (got {type(data).__name__})")

        name = _opt_str(data.get("Name"))
        if not name:
            raise ValidationError("App entry is missing Name")

        raw_type = _opt_str(data.get("Type"))
        pm = _opt_str(data.get("PackageManager"))
        if pm:
            pm = "uv" if pm.lower() == "uv" else "pip"

        return cls(
            name=name,
            app_path=_opt_str(data.get("AppPath")) or "",
            type=AppType.parse(raw_type),
            raw_type=raw_type,
            index_path=_opt_str(data.get("IndexPath")),
            port=parse_port(data.get("Port"), name),
            base_path=_opt_str(data.get("BasePath")),
            venv_path=_opt_str(data.get("VenvPath")),
            package_manager=pm,
            custom_command=_opt_str(data.get("CustomCommand")),
            extra={k: v for k, v in data.items() if k not in _FIELDS},
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"Name": self.name}
        raw_type = self.raw_type
        if raw_type is None and self.type is not AppType.CUSTOM:
            raw_type = self.type.value
        if raw_type is not None:
            out["Type"] = raw_type
        if self.port is not None:
            out["Port"] = self.port
        out["AppPath"] = self.app_path
        for key in ("IndexPath", "BasePath", "VenvPath", "PackageManager", "CustomCommand"):
            value = getattr(self, _FIELDS[key])
            if value is not None:
                out[key] = value
        out.update(self.extra)
        return out

    @property
    def key(self) -> str:
        return self.name.casefold()

    @property
    def type_label(self) -> str:
        if self.type is AppType.CUSTOM:
            return "Process" if self.custom_command else (self.raw_type or "Unknown")
        return self.type.value

    @property
    def working_dir(self) -> Path:
        return Path(self.app_path).expanduser()

    @property
    def index_file(self) -> Optional[Path]:
        if not self.index_path:
            return None
        p = Path(self.index_path).expanduser()
        return p if p.is_absolute() else self.working_dir / p

    @property
    def is_supported(self) -> bool:
        return self.type.is_framework or bool(self.custom_command)


@dataclass(frozen=True)
class ResolvedEnvironment:
    working_dir: Path
    package_manager: str
    venv_path: Optional[Path] = None
    activate_script: Optional[Path] = None
    manage_script: Optional[str] = None


# -------------------------
# Launch command
# -------------------------

class QuotedArg(str):
    """Argument that is always single-quoted when serialized (paths, URL sub-paths)."""


def quote_always(value: str) -> str:
    return "'" + value.replace("'", "'\"'\"'") + "'"


def _quote(token: str) -> str:
    if isinstance(token, QuotedArg):
        return quote_always(token)
    return shlex.quote(token)


@dataclass
class LaunchCommand:
    argv: List[str] = field(default_factory=list)
    raw: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    activate: Optional[Path] = None
    runner: List[str] = field(default_factory=list)
    cwd: Optional[str] = None

    def to_shell(self) -> str:
        parts = [_quote(tok) for tok in [*self.runner, *self.argv]]
        if self.raw:
            parts.append(self.raw)
        body = " ".join(parts)

        prefix = ""
        if self.env:
            assigns = " ".join(f"{k}={quote_always(v)}" for k, v in self.env.items())
            prefix += f"export {assigns}; "
        if self.activate is not None:
            prefix += f"source {quote_always(str(self.activate))} && "
        return prefix + body

    def __str__(self) -> str:
        return self.to_shell()


# -------------------------
# Sessions / status
# -------------------------

@dataclass(frozen=True)
class SessionHandle:
    backend: str
    name: str
    target: str


@dataclass(frozen=True)
class SessionInfo:
    name: str
    alive: bool = True


@dataclass(frozen=True)
class PortProbe:
    occupied: bool
    source: str
    degraded: bool = False


class AppState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    UNKNOWN = "unknown"


@dataclass
class AppStatus:
    index: int
    app: AppDescriptor
    state: AppState
    probe: Optional[PortProbe] = None
    session_alive: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "name": self.app.name,
            "type": self.app.type_label,
            "port": self.app.port,
            "path": self.app.app_path,
            "base_path": self.app.base_path,
            "status": self.state.value,
            "degraded": bool(self.probe and self.probe.degraded),
            "probe_source": self.probe.source if self.probe else None,
            "session": self.session_alive,
        }


class Outcome(str, Enum):
    LAUNCHED = "launched"
    DRY_RUN = "dry_run"
    SKIPPED = "skipped"
    STOPPED = "stopped"
    ALREADY_STOPPED = "already_stopped"
    NOT_STOPPABLE = "not_stoppable"
    UPDATED = "updated"
    FAILED = "failed"


@dataclass
class OperationResult:
    name: str
    outcome: Outcome
    command: Optional[str] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is not Outcome.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "outcome": self.outcome.value,
            "command": self.command,
            "message": self.message,
        }
