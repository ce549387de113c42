from pathlib import Path
from typing import Any, Callable, Dict, Optional

from fastapi import Body, FastAPI, HTTPException
from fastapi.responses import HTMLResponse

from app_manager import __version__
from app_manager.app_repository import AppRepository
from app_manager.dashboard import render_dashboard
from app_manager.errors import (
    AppManagerError,
    ConfigError,
    LaunchError,
    NoBackendError,
    NotStoppableError,
    UnsupportedTypeError,
    ValidationError,
)
from app_manager.lifecycle import LifecycleManager
from app_manager.models import AppDescriptor, OperationResult
from app_manager.urls import detect_prefixes
from app_manager.validators import validate_app_payload

DEFAULT_YAML = "config/apps.yaml"


def _http_error(e: AppManagerError) -> HTTPException:
    if isinstance(e, NoBackendError):
        return HTTPException(503, str(e))
    if isinstance(e, NotStoppableError):
        return HTTPException(409, str(e))
    if isinstance(e, (ValidationError, UnsupportedTypeError)):
        return HTTPException(422, str(e))
    if isinstance(e, LaunchError):
        return HTTPException(500, f"Failed to launch: {e}")
    return HTTPException(500, str(e))


def create_app(
    manager: LifecycleManager,
    repo: AppRepository,
    prefixes: Optional[Callable[[], Dict[str, str]]] = None,
) -> FastAPI:
    """
    HTTP control surface over a LifecycleManager.
    The manager runs in auto mode here: conflicts are resolved without prompting.
    """
    manager.auto = True
    registry = manager.registry
    get_prefixes = prefixes or (lambda: detect_prefixes(external=False))

    app = FastAPI(title="App Manager", version=__version__)

    def _find(name: str) -> AppDescriptor:
        registry.reload()
        found = registry.get(name) or repo.get_by_name(name)
        if not found:
            raise HTTPException(404, "App not found")
        return found

    def _is_running(a: AppDescriptor) -> bool:
        return bool(a.port) and manager.prober.is_occupied(a.port)

    def _compose_status(a: AppDescriptor) -> Dict[str, Any]:
        for s in manager.list_status():
            if s.app.key == a.key:
                return s.to_dict()
        # unsupported entries are stored but never listed
        return {"name": a.name, "type": a.type_label, "port": a.port, "status": "unknown"}

    def _run(op: Callable[[AppDescriptor], OperationResult], a: AppDescriptor) -> Dict[str, Any]:
        try:
            result = op(a)
        except AppManagerError as e:
            raise _http_error(e)
        out = result.to_dict()
        out["ok"] = result.ok
        out["logs"] = manager.get_logs(a.name)[-20:]
        return out

    @app.get("/", response_class=HTMLResponse)
    def home():
        registry.reload()
        return render_dashboard(manager.list_status(), get_prefixes())

    # -------------------------
    # CRUD: Apps
    # -------------------------

    @app.get("/apps")
    def list_apps():
        try:
            registry.reload()
        except ConfigError as e:
            raise HTTPException(500, str(e))
        return [s.to_dict() for s in manager.list_status()]

    @app.post("/apps")
    def add_app(payload: dict = Body(...)):
        ok, errors = validate_app_payload(payload)
        if not ok:
            raise HTTPException(422, {"errors": errors})

        name = str(payload["Name"]).strip()
        if repo.exists(name):
            raise HTTPException(409, "App name already exists")

        created = repo.add(AppDescriptor.from_dict(payload))
        registry.reload()
        return _compose_status(created)

    @app.put("/apps/{name}")
    def update_app(name: str, payload: dict = Body(...)):
        existing = _find(name)

        # Prevent edits while running (hard rule)
        if _is_running(existing):
            raise HTTPException(400, "Stop app before editing")

        merged = {**existing.to_dict(), **payload}
        ok, errors = validate_app_payload(merged)
        if not ok:
            raise HTTPException(422, {"errors": errors})

        new_name = str(merged["Name"]).strip()
        if new_name.casefold() != existing.key and repo.exists(new_name, exclude=existing.name):
            raise HTTPException(409, "Another app already uses this name")

        updated = repo.update(existing.name, AppDescriptor.from_dict(merged))
        if updated is None:
            raise HTTPException(404, "App not found")
        registry.reload()
        return _compose_status(updated)

    @app.delete("/apps/{name}")
    def delete_app(name: str):
        existing = _find(name)

        if _is_running(existing):
            raise HTTPException(400, "Stop app before deleting")

        manager.close_session(existing)
        if not repo.delete(existing.name):
            raise HTTPException(404, "App not found")

        registry.reload()
        return {"ok": True}

    # -------------------------
    # Import apps.yaml -> apps.json
    # -------------------------

    @app.post("/apps/import-yaml")
    def import_apps_yaml(payload: dict = Body(default={})):
        """
        Imports a YAML file into the registry.
        - Upserts by app name
        - Does NOT start apps
        Optional payload:
          { "path": "config/apps.yaml" }
        """
        config_path = payload.get("path") or DEFAULT_YAML
        p = Path(config_path)
        if not p.exists():
            raise HTTPException(404, f"YAML not found: {config_path}")
        try:
            imported = repo.import_yaml(p)
        except ConfigError as e:
            raise HTTPException(422, str(e))
        registry.reload()
        return {"ok": True, "imported": imported, "count": len(imported)}

    # -------------------------
    # Lifecycle: start/stop/restart/logs
    # -------------------------

    @app.post("/apps/{name}/start")
    def start_app(name: str):
        return _run(manager.start, _find(name))

    @app.post("/apps/{name}/stop")
    def stop_app(name: str):
        a = _find(name)
        out = _run(manager.stop, a)
        out["still_serving"] = _is_running(a)
        return out

    @app.post("/apps/{name}/restart")
    def restart_app(name: str):
        return _run(manager.restart, _find(name))

    @app.get("/apps/{name}/logs")
    def app_logs(name: str):
        a = _find(name)
        return {"name": a.name, "lines": manager.get_logs(a.name)}

    @app.get("/sessions")
    def list_sessions():
        if manager.backend is None:
            return []
        try:
            sessions = manager.backend.list()
        except LaunchError as e:
            raise HTTPException(503, str(e))
        return [{"name": s.name, "alive": s.alive} for s in sessions]

    return app
