from pathlib import Path

import pytest

from app_manager.errors import ValidationError
from app_manager.models import (
    AppDescriptor,
    AppState,
    AppStatus,
    AppType,
    LaunchCommand,
    OperationResult,
    Outcome,
    PortProbe,
    QuotedArg,
    parse_port,
)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Streamlit", AppType.STREAMLIT),
        ("StreamlitApp", AppType.STREAMLIT),
        ("djangoapp", AppType.DJANGO),
        ("FLASK", AppType.FLASK),
        ("DashApp", AppType.DASH),
        ("Custom", AppType.CUSTOM),
        ("Rails", AppType.CUSTOM),
        (None, AppType.CUSTOM),
    ],
)
def test_app_type_parse(raw, expected):
    assert AppType.parse(raw) is expected


def test_parse_port_unmanaged_values():
    assert parse_port(None) is None
    assert parse_port(0) is None
    assert parse_port("") is None
    assert parse_port("8080") == 8080


@pytest.mark.parametrize("bad", [70000, -1, "abc", 80.5, True])
def test_parse_port_rejects(bad):
    with pytest.raises(ValidationError):
        parse_port(bad, "demo")


def test_from_dict_requires_name():
    with pytest.raises(ValidationError):
        AppDescriptor.from_dict({"Type": "Flask", "AppPath": "/tmp"})
    with pytest.raises(ValidationError):
        AppDescriptor.from_dict(["not", "an", "object"])


def test_from_dict_round_trip_keeps_unknown_keys():
    data = {
        "Name": "Demo",
        "Type": "StreamlitApp",
        "Port": 8501,
        "AppPath": "/srv/demo",
        "IndexPath": "app.py",
        "Owner": "ops",
    }
    app = AppDescriptor.from_dict(data)
    assert app.type is AppType.STREAMLIT
    assert app.raw_type == "StreamlitApp"
    out = app.to_dict()
    assert out["Type"] == "StreamlitApp"
    assert out["Owner"] == "ops"
    assert out["Port"] == 8501


def test_package_manager_is_normalized():
    app = AppDescriptor.from_dict({"Name": "x", "AppPath": "/tmp", "PackageManager": "Poetry"})
    assert app.package_manager == "pip"
    app = AppDescriptor.from_dict({"Name": "x", "AppPath": "/tmp", "PackageManager": "UV"})
    assert app.package_manager == "uv"


def test_type_label_and_support():
    proc = AppDescriptor.from_dict({"Name": "w", "AppPath": "/tmp", "CustomCommand": "make run"})
    assert proc.type_label == "Process"
    assert proc.is_supported

    unknown = AppDescriptor.from_dict({"Name": "g", "Type": "GoApp", "AppPath": "/tmp"})
    assert unknown.type_label == "GoApp"
    assert not unknown.is_supported


def test_index_file_relative_and_absolute(tmp_path):
    rel = AppDescriptor(name="a", app_path=str(tmp_path), index_path="src/app.py")
    assert rel.index_file == tmp_path / "src" / "app.py"
    absolute = AppDescriptor(name="a", app_path=str(tmp_path), index_path="/opt/app.py")
    assert absolute.index_file == Path("/opt/app.py")


def test_launch_command_to_shell():
    cmd = LaunchCommand(
        argv=["flask", "run", "--port", "5000"],
        env={"FLASK_APP": "app.py"},
        activate=Path("/srv/demo/.venv/bin/activate"),
    )
    assert cmd.to_shell() == (
        "export FLASK_APP='app.py'; "
        "source '/srv/demo/.venv/bin/activate' && flask run --port 5000"
    )


def test_quoted_arg_always_quoted():
    cmd = LaunchCommand(argv=["streamlit", "run", QuotedArg("app.py"), "--x", "plain value"])
    assert str(cmd) == "streamlit run 'app.py' --x 'plain value'"


def test_quoted_arg_escapes_single_quotes():
    cmd = LaunchCommand(argv=["python", QuotedArg("it's.py")])
    assert cmd.to_shell() == "python 'it'\"'\"'s.py'"


def test_status_to_dict_flags_degraded():
    app = AppDescriptor(name="a", app_path="/tmp", type=AppType.FLASK, port=5000)
    s = AppStatus(1, app, AppState.STOPPED, PortProbe(False, "none", degraded=True))
    d = s.to_dict()
    assert d["status"] == "stopped"
    assert d["degraded"] is True
    assert d["probe_source"] == "none"


def test_operation_result_ok():
    assert OperationResult("a", Outcome.ALREADY_STOPPED).ok
    assert not OperationResult("a", Outcome.FAILED).ok
