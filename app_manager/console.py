from dataclasses import dataclass
from typing import Any, Iterable, Optional, TextIO

from rich.console import Console
from rich.table import Table
from rich.text import Text

from app_manager.models import AppState, AppStatus

LEVEL_STYLES = {
    "info": "cyan",
    "success": "green",
    "warn": "yellow",
    "error": "red",
    "plain": "",
}

STATE_LOOK = {
    AppState.RUNNING: ("green", "●"),
    AppState.STOPPED: ("red", "○"),
    AppState.UNKNOWN: ("magenta", "?"),
    AppState.STARTING: ("yellow", "◐"),
    AppState.STOPPING: ("yellow", "◑"),
}


@dataclass(frozen=True)
class OutputStyle:
    color: bool = True
    file: Optional[TextIO] = None
    width: Optional[int] = None


class Reporter:
    """Colored terminal output; everything it needs comes from its OutputStyle."""

    def __init__(self, style: OutputStyle = OutputStyle(), console: Optional[Console] = None):
        self.style = style
        self.console = console or Console(
            file=style.file,
            no_color=not style.color,
            highlight=False,
            width=style.width,
        )

    def _style(self, level: str) -> str:
        return LEVEL_STYLES.get(level, "") if self.style.color else ""

    def message(self, level: str, text: str) -> None:
        self.console.print(Text(text, style=self._style(level)))

    def info(self, text: str) -> None:
        self.message("info", text)

    def success(self, text: str) -> None:
        self.message("success", text)

    def warn(self, text: str) -> None:
        self.message("warn", text)

    def error(self, text: str) -> None:
        self.message("error", text)

    def plain(self, text: str) -> None:
        self.message("plain", text)

    def header(self, title: str) -> None:
        self.console.print()
        self.console.rule(Text(title, style=self._style("info")), style=self._style("info"))
        self.console.print()

    def show_json(self, data: Any) -> None:
        self.console.print_json(data=data)

    def status_table(self, statuses: Iterable[AppStatus]) -> None:
        table = Table(show_lines=False, header_style="magenta" if self.style.color else "")
        table.add_column("#", justify="right", style="blue" if self.style.color else "")
        table.add_column("Name")
        table.add_column("Type")
        table.add_column("Port")
        table.add_column("Status")
        table.add_column("Session")

        for s in statuses:
            color, icon = STATE_LOOK.get(s.state, ("", " "))
            label = s.state.value
            if s.probe is not None and s.probe.degraded:
                # no introspection tool: "free" was assumed, not verified
                color, label = "yellow", "stopped?"
            if s.session_alive is None:
                session = "-"
            else:
                session = "open" if s.session_alive else "closed"
            table.add_row(
                str(s.index),
                Text(s.app.name),
                s.app.type_label,
                str(s.app.port) if s.app.port else "N/A",
                Text(f"{icon} {label}", style=color if self.style.color else ""),
                session,
            )
        self.console.print(table)
