import html
from pathlib import Path
from typing import Iterable, Mapping

from app_manager.models import AppState, AppStatus
from app_manager.urls import build_app_url, generic_url_prefix

_STYLE = """
body { font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif; margin: 0; padding: 20px;
       background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); min-height: 100vh; }
.container { max-width: 1200px; margin: 0 auto; background: white; border-radius: 15px;
             box-shadow: 0 20px 40px rgba(0,0,0,0.1); overflow: hidden; }
.header { background: linear-gradient(135deg, #11998e 0%, #38ef7d 100%); color: white;
          padding: 30px; text-align: center; }
.header h1 { margin: 0; font-size: 2.5em; font-weight: 300; }
.apps-grid { display: grid; grid-template-columns: repeat(auto-fit, minmax(350px, 1fr));
             gap: 20px; padding: 30px; }
.app-card { background: #f8f9fa; border-radius: 10px; padding: 20px; border-left: 4px solid #11998e; }
.app-name { font-size: 1.3em; font-weight: 600; color: #2c3e50; margin-bottom: 10px; }
.app-type { background: #e3f2fd; color: #1976d2; padding: 4px 8px; border-radius: 15px;
            font-size: 0.8em; display: inline-block; margin-bottom: 15px; }
.app-type.streamlit { background: #ffebee; color: #c62828; }
.app-type.django { background: #e8f5e9; color: #2e7d32; }
.app-type.flask { background: #fff3e0; color: #ef6c00; }
.app-type.dash { background: #e3f2fd; color: #1565c0; }
.url-label { font-weight: 600; color: #555; margin: 8px 0 4px; font-size: 0.9em; }
.url-link { display: block; background: white; border: 1px solid #ddd; border-radius: 5px;
            padding: 8px 12px; text-decoration: none; color: #2c3e50; word-break: break-all; }
.status { display: inline-block; width: 10px; height: 10px; border-radius: 50%; margin-right: 8px; }
.status-running { background: #2ecc71; }
.status-stopped { background: #e74c3c; }
.status-degraded { background: #f1c40f; }
.status-unknown { background: #9b59b6; }
.footer { background: #f8f9fa; padding: 20px; text-align: center; color: #666; border-top: 1px solid #eee; }
"""

LINK_LABELS = (
    ("local", "Localhost"),
    ("network", "Network"),
    ("external", "External"),
)


def _status_class(s: AppStatus) -> str:
    if s.probe is not None and s.probe.degraded:
        return "degraded"
    if s.state is AppState.RUNNING:
        return "running"
    if s.state is AppState.UNKNOWN:
        return "unknown"
    return "stopped"


def _card(s: AppStatus, prefixes: Mapping[str, str]) -> str:
    e = html.escape
    app = s.app
    status = _status_class(s)
    label = "stopped?" if status == "degraded" else s.state.value
    parts = [
        '<div class="app-card">',
        f'<div class="app-name"><span class="status status-{status}" title="{e(label)}"></span>{e(app.name)}</div>',
        f'<span class="app-type {e(app.type_label.lower())}">{e(app.type_label)}</span>',
    ]
    for key, title in LINK_LABELS:
        prefix = prefixes.get(key) or generic_url_prefix()
        url = build_app_url(prefix, app.port, app.base_path)
        parts.append(f'<div class="url-label">{title}:</div>')
        parts.append(f'<a class="url-link" href="{e(url)}" target="_blank">{e(url)}</a>')
    parts.append("</div>")
    return "\n".join(parts)


def render_dashboard(statuses: Iterable[AppStatus], prefixes: Mapping[str, str]) -> str:
    """Static HTML page with a card per app that has a port."""
    cards = [_card(s, prefixes) for s in statuses if s.app.port]
    body = "\n".join(cards) if cards else "<p>No apps with a port configured.</p>"
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>App Management Dashboard</title>
<style>{_STYLE}</style>
</head>
<body>
<div class="container">
<div class="header"><h1>App Management Dashboard</h1><p>{len(cards)} app(s)</p></div>
<div class="apps-grid">
{body}
</div>
<div class="footer"><p>Generated by app-manager</p></div>
</div>
</body>
</html>
"""


def save_dashboard(path: Path, statuses: Iterable[AppStatus], prefixes: Mapping[str, str]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_dashboard(statuses, prefixes), encoding="utf-8")
    return path
