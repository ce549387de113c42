import os
from pathlib import Path
from typing import Optional

APPS_FILE_NAME = "apps.json"
EXAMPLE_APPS_FILE_NAME = "apps_example.json"

# All apps share one multiplexer session
SESSION_NAME = os.environ.get("APP_MANAGER_SESSION", "app_manager")

# "tmux" or "zellij"; the other one becomes the headless fallback
PRIMARY_MULTIPLEXER = os.environ.get("APP_MANAGER_MULTIPLEXER", "tmux")

LAUNCH_DELAY = 0.5
PORT_RELEASE_TIMEOUT = 5.0
FREE_GRACE_PERIOD = 1.0
EVENT_TAIL_SIZE = 300
EXTERNAL_IP_TIMEOUT = 5.0

NATIVE_TERMINALS = ["gnome-terminal", "konsole", "xterm", "kitty", "alacritty", "wezterm"]

VENV_DIR_NAMES = [".venv", "venv", "env", ".env"]
PROJECT_MANIFEST = "pyproject.toml"
MANAGE_SCRIPT = "manage.py"
REQUIREMENTS_CANDIDATES = ["requirements.txt", "requirements/base.txt"]

API_HOST = os.environ.get("APP_MANAGER_API_HOST", "127.0.0.1")
API_PORT = int(os.environ.get("APP_MANAGER_API_PORT", "8765"))


def resolve_apps_file(explicit: Optional[str] = None) -> Path:
    """Registry location: --config, then $APP_MANAGER_APPS_FILE, then ./apps.json."""
    if explicit:
        return Path(explicit).expanduser()
    env_path = os.environ.get("APP_MANAGER_APPS_FILE")
    if env_path:
        return Path(env_path).expanduser()
    return Path.cwd() / APPS_FILE_NAME


def example_file_for(apps_file: Path) -> Path:
    return apps_file.with_name(EXAMPLE_APPS_FILE_NAME)
