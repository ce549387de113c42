from app_manager.cli import app

app(prog_name="app-manager")
