from typing import Optional


class AppManagerError(Exception):
    """Base error. `app_name` identifies the offending app when known."""

    def __init__(self, message: str, app_name: Optional[str] = None):
        super().__init__(message)
        self.app_name = app_name


class ConfigError(AppManagerError):
    """Registry file missing or unparseable."""


class ValidationError(AppManagerError):
    """Descriptor references a missing path/file or has bad field values."""


class UnsupportedTypeError(AppManagerError):
    """No recognized type and no usable custom command."""


class LaunchError(AppManagerError):
    """Session backend failed to open a window/pane/tab."""


class NoBackendError(LaunchError):
    """No multiplexer or terminal emulator is available."""


class NotStoppableError(AppManagerError):
    """App has no port, so there is no liveness signal to act on."""


class UnsupportedOperationError(AppManagerError):
    """Backend variant does not implement the requested capability."""
