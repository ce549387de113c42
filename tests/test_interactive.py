import json

import pytest

from app_manager.interactive import InteractiveMenu, MenuCommand, parse_command
from app_manager.models import Outcome

from tests.conftest import FakeProber


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("", MenuCommand("noop")),
        ("q", MenuCommand("quit")),
        ("EXIT", MenuCommand("quit")),
        ("R", MenuCommand("refresh")),
        ("S", MenuCommand("stop_all")),
        ("s 2", MenuCommand("stop", "2")),
        ("s2", MenuCommand("stop", "2")),
        ("r 1", MenuCommand("restart", "1")),
        ("u 0", MenuCommand("update", "0")),
        ("e 3", MenuCommand("edit", "3")),
        ("d 1", MenuCommand("delete", "1")),
        ("a", MenuCommand("add")),
        ("p", MenuCommand("process")),
        ("l", MenuCommand("list")),
        ("t", MenuCommand("attach")),
        ("1,3", MenuCommand("start", "1,3")),
        ("2-4", MenuCommand("start", "2-4")),
        ("all", MenuCommand("start", "all")),
        ("My App", MenuCommand("start", "My App")),
    ],
)
def test_parse_command(raw, expected):
    assert parse_command(raw) == expected


def test_bare_stop_shows_usage():
    cmd = parse_command("s")
    assert cmd.action == "usage"
    assert "s <number>" in cmd.arg


class Script:
    """Answers prompts in order; confirm answers come from a separate queue."""

    def __init__(self, answers, confirms=()):
        self.answers = list(answers)
        self.confirms = list(confirms)
        self.asked = []

    def prompt(self, text, default="", show_default=False):
        self.asked.append(text)
        answer = self.answers.pop(0)
        return answer if answer != "" else default

    def confirm(self, text, default=False):
        self.asked.append(text)
        return self.confirms.pop(0) if self.confirms else default


@pytest.fixture
def flask_app(app_dir):
    return {"Name": "Demo", "Type": "Flask", "AppPath": str(app_dir), "IndexPath": "app.py", "Port": 5000}


def _menu(manager, script):
    return InteractiveMenu(manager, manager.registry.repo, prompt=script.prompt, confirm=script.confirm)


def test_dispatch_start_selection(make_manager, flask_app):
    manager = make_manager([flask_app])
    _menu(manager, Script([])).dispatch(parse_command("1"))
    assert [o[0] for o in manager.backend.opened] == ["Demo"]


def test_dispatch_reports_errors_and_continues(make_manager, flask_app, output):
    manager = make_manager([flask_app])
    _menu(manager, Script([])).dispatch(parse_command("e 9"))
    assert "Invalid index: 9" in output.getvalue()


def test_add_app_flow(make_manager, flask_app, tmp_path):
    project = tmp_path / "reports"
    project.mkdir()
    (project / "requirements.txt").write_text("streamlit\n")
    (project / "main.py").write_text("")

    manager = make_manager([flask_app], prober=FakeProber())
    script = Script(
        answers=[str(project), "", "1", "8502"],
        # use detected type, no random port, save
        confirms=[True, False, True],
    )
    assert _menu(manager, script).add_app() is True

    saved = json.loads((tmp_path / "apps.json").read_text())[-1]
    assert saved["Name"] == "reports"
    assert saved["Type"] == "Streamlit"
    assert saved["IndexPath"] == "main.py"
    assert saved["Port"] == 8502
    assert saved["PackageManager"] == "pip"
    assert manager.registry.get("reports") is not None


def test_add_app_rejects_missing_dir(make_manager, flask_app, tmp_path, output):
    manager = make_manager([flask_app])
    assert _menu(manager, Script([str(tmp_path / "nope")])).add_app() is False
    assert "Directory not found" in output.getvalue()


def test_add_process_flow(make_manager, flask_app, tmp_path):
    workdir = tmp_path / "worker"
    workdir.mkdir()
    manager = make_manager([flask_app])
    script = Script(answers=[str(workdir), "Worker", "python worker.py", "0"], confirms=[True])
    assert _menu(manager, script).add_process() is True

    saved = json.loads((tmp_path / "apps.json").read_text())[-1]
    assert saved["CustomCommand"] == "python worker.py"
    assert "Port" not in saved


def test_edit_keeps_values_on_enter(make_manager, flask_app, tmp_path):
    manager = make_manager([flask_app])
    # Name, Type, Port, AppPath, IndexPath, VenvPath, PackageManager
    script = Script(answers=["", "", "5050", "", "", "", ""], confirms=[True])
    assert _menu(manager, script).edit_app(1) is True

    saved = json.loads((tmp_path / "apps.json").read_text())
    assert saved == [{**flask_app, "Port": 5050}]


def test_edit_refuses_running_app(make_manager, flask_app, output):
    manager = make_manager([flask_app], prober=FakeProber(occupied={5000}))
    assert _menu(manager, Script([])).edit_app(1) is False
    assert "Stop app before editing" in output.getvalue()


def test_delete_closes_window_and_removes(make_manager, flask_app, tmp_path):
    manager = make_manager([flask_app])
    manager.backend.windows["Demo"] = True
    assert _menu(manager, Script([], confirms=[True])).delete_app(1) is True
    assert manager.backend.killed == ["Demo"]
    assert json.loads((tmp_path / "apps.json").read_text()) == []


def test_delete_declined(make_manager, flask_app, tmp_path):
    manager = make_manager([flask_app])
    assert _menu(manager, Script([], confirms=[False])).delete_app(1) is False
    assert len(json.loads((tmp_path / "apps.json").read_text())) == 1


def test_run_loop_until_quit(make_manager, flask_app):
    manager = make_manager([flask_app])
    script = Script(answers=["s 1", "", "q"])
    _menu(manager, script).run()
    assert manager.events("Demo")[-1].endswith("was not running")
    assert script.asked.count("Enter selection") == 2


def test_stop_all_from_menu(make_manager, flask_app):
    prober = FakeProber(occupied={5000})
    manager = make_manager([flask_app], prober=prober)
    _menu(manager, Script([])).dispatch(parse_command("S"))
    assert ("free", 5000) in prober.calls
    assert manager.stop("Demo").outcome is Outcome.ALREADY_STOPPED
