from pathlib import Path
from typing import Any, Dict, List, Tuple

from app_manager.errors import ValidationError
from app_manager.models import AppType, parse_port


def _err(field: str, message: str) -> Dict[str, Any]:
    return {"field": field, "message": message}


def _text(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    return str(value).strip() if value is not None else ""


def validate_app_payload(payload: Dict[str, Any]) -> Tuple[bool, List[Dict[str, Any]]]:
    """
    Validates an app descriptor payload (add/edit), PascalCase keys as in apps.json.
    Returns: (ok, errors[])
    """
    errors: List[Dict[str, Any]] = []
    if not isinstance(payload, dict):
        return False, [_err("payload", "payload must be an object")]

    name = _text(payload, "Name")
    app_path = _text(payload, "AppPath")
    index_path = _text(payload, "IndexPath")
    custom = _text(payload, "CustomCommand")
    app_type = AppType.parse(payload.get("Type"))

    if not name:
        errors.append(_err("Name", "Name is required"))

    path_ok = False
    if not app_path:
        errors.append(_err("AppPath", "AppPath is required"))
    else:
        p = Path(app_path).expanduser()
        if not p.exists():
            errors.append(_err("AppPath", "AppPath does not exist"))
        elif not p.is_dir():
            errors.append(_err("AppPath", "AppPath must be a folder"))
        else:
            path_ok = True

    if app_type.needs_index:
        if not index_path:
            errors.append(_err("IndexPath", f"IndexPath is required for {app_type.value} apps"))
        elif path_ok:
            idx = Path(index_path).expanduser()
            if not idx.is_absolute():
                idx = Path(app_path).expanduser() / idx
            if not idx.is_file():
                errors.append(_err("IndexPath", "IndexPath does not exist"))

    if app_type is AppType.CUSTOM and not custom:
        errors.append(_err("CustomCommand", "CustomCommand is required for custom processes"))

    # port
    try:
        parse_port(payload.get("Port"), name or None)
    except ValidationError as e:
        errors.append(_err("Port", str(e)))

    pm = _text(payload, "PackageManager")
    if pm and pm.lower() not in ("uv", "pip"):
        errors.append(_err("PackageManager", "PackageManager must be 'uv' or 'pip'"))

    return (len(errors) == 0, errors)
