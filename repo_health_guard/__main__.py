from repo_health_guard.cli import app

app()
