"""
Run-command synthesis.

`synthesize` is pure: it maps a descriptor plus an already resolved
environment to a LaunchCommand. Filesystem lookups (venv, manage.py) happen
in EnvironmentResolver before this is called.
"""
from typing import List

from app_manager.errors import UnsupportedTypeError, ValidationError
from app_manager.models import (
    AppDescriptor,
    AppType,
    LaunchCommand,
    QuotedArg,
    ResolvedEnvironment,
)

UV_RUNNER = ["uv", "run"]


def _streamlit(app: AppDescriptor) -> LaunchCommand:
    argv: List[str] = ["streamlit", "run", QuotedArg(app.index_path or "")]
    if app.port:
        argv += ["--server.port", str(app.port)]
    if app.base_path:
        argv += ["--server.baseUrlPath", QuotedArg(app.base_path)]
    return LaunchCommand(argv=argv)


def _manage(env: ResolvedEnvironment, app: AppDescriptor) -> List[str]:
    if not env.manage_script:
        raise ValidationError(f"manage.py not found under {env.working_dir}", app.name)
    return ["python", QuotedArg(env.manage_script)]


def _django(app: AppDescriptor, env: ResolvedEnvironment) -> LaunchCommand:
    argv = _manage(env, app)
    if app.custom_command:
        return LaunchCommand(argv=argv, raw=app.custom_command)
    argv.append("runserver")
    if app.port:
        argv.append(f"0.0.0.0:{app.port}")
    return LaunchCommand(argv=argv)


def _dash(app: AppDescriptor) -> LaunchCommand:
    argv: List[str] = ["python", QuotedArg(app.index_path or "")]
    if app.port:
        argv += ["--server.port", str(app.port)]
    return LaunchCommand(argv=argv)


def _flask(app: AppDescriptor) -> LaunchCommand:
    argv: List[str] = ["flask", "run"]
    if app.port:
        argv += ["--host=0.0.0.0", "--port", str(app.port)]
    env = {"FLASK_APP": app.index_path or "", "FLASK_ENV": "development"}
    return LaunchCommand(argv=argv, env=env)


def _custom(app: AppDescriptor, env: ResolvedEnvironment) -> LaunchCommand:
    if not app.custom_command:
        label = app.raw_type or "none"
        raise UnsupportedTypeError(
            f"Unsupported app type '{label}' and no CustomCommand", app.name
        )
    if env.manage_script:
        # Django-style management command
        return LaunchCommand(argv=_manage(env, app), raw=app.custom_command)
    return LaunchCommand(raw=app.custom_command)


def synthesize(app: AppDescriptor, env: ResolvedEnvironment) -> LaunchCommand:
    if app.type is AppType.STREAMLIT:
        cmd = _streamlit(app)
    elif app.type is AppType.DJANGO:
        cmd = _django(app, env)
    elif app.type is AppType.DASH:
        cmd = _dash(app)
    elif app.type is AppType.FLASK:
        cmd = _flask(app)
    else:
        cmd = _custom(app, env)

    # activation / runner prefix is the same for every type
    if env.package_manager == "uv":
        cmd.runner = list(UV_RUNNER)
    else:
        cmd.activate = env.activate_script
    cmd.cwd = str(env.working_dir)
    return cmd
