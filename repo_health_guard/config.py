"""
Configuration management for Repository Health Guard.

Settings are resolved in this order (highest priority first):
1. Explicit keyword overrides passed to ``load_settings()``
2. REPO_HEALTH_GUARD_* environment variables (a local .env file is honored)
3. .repo-health-guard.toml (local config)
4. pyproject.toml ``[tool.repo-health-guard]`` (project-level config)
5. Built-in defaults
"""

import os
import tomllib
from pathlib import Path
from typing import Any, NamedTuple

from dotenv import load_dotenv

# project_root is the parent directory of repo_health_guard/
PROJECT_ROOT = Path(__file__).resolve().parent.parent

CONFIG_SECTION = "repo-health-guard"
ENV_PREFIX = "REPO_HEALTH_GUARD_"

# Container runtime socket; its presence means sandboxed installs are possible
DOCKER_SOCKET_PATH = Path("/var/run/docker.sock")

DEFAULT_GITHUB_API_URL = "https://api.github.com"


class Settings(NamedTuple):
    """Tunable options of the analysis engine. Durations are in seconds."""

    install_timeout: float = 120.0
    audit_timeout: float = 60.0
    outdated_timeout: float = 60.0
    retry_attempts: int = 3
    retry_base_delay: float = 0.3
    repo_cache_ttl: float = 5 * 60
    commits_cache_ttl: float = 3 * 60
    alerts_cache_ttl: float = 3 * 60
    max_concurrent_analyses: int = 4
    use_docker: bool | None = None  # None: detect at startup
    docker_image: str = "node:20-alpine"
    cleanup_grace_period: float = 5.0
    runner_interval: float = 5 * 60
    tracked_repos: tuple[str, ...] = ()
    github_api_url: str = DEFAULT_GITHUB_API_URL
    verify_ssl: bool = True
    store_path: Path | None = None


_FIELD_TYPES: dict[str, type] = {
    "install_timeout": float,
    "audit_timeout": float,
    "outdated_timeout": float,
    "retry_attempts": int,
    "retry_base_delay": float,
    "repo_cache_ttl": float,
    "commits_cache_ttl": float,
    "alerts_cache_ttl": float,
    "max_concurrent_analyses": int,
    "use_docker": bool,
    "docker_image": str,
    "cleanup_grace_period": float,
    "runner_interval": float,
    "tracked_repos": tuple,
    "github_api_url": str,
    "verify_ssl": bool,
    "store_path": Path,
}

_POSITIVE_FIELDS = {
    "install_timeout",
    "audit_timeout",
    "outdated_timeout",
    "retry_attempts",
    "max_concurrent_analyses",
    "runner_interval",
}


def load_config_file(config_path: Path) -> dict:
    """Load a TOML configuration file."""
    if not config_path.exists():
        return {}
    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except Exception as e:
        raise ValueError(f"Failed to load config from {config_path}: {e}") from e


def _load_file_options(project_root: Path) -> dict[str, Any]:
    """
    Read the ``[tool.repo-health-guard]`` table.

    .repo-health-guard.toml takes priority; pyproject.toml is only consulted
    when the local file is absent or has no table.
    """
    local_config_path = project_root / ".repo-health-guard.toml"
    if local_config_path.exists():
        config = load_config_file(local_config_path)
        section = config.get("tool", {}).get(CONFIG_SECTION, {})
        if section:
            return dict(section)

    pyproject_path = project_root / "pyproject.toml"
    if pyproject_path.exists():
        config = load_config_file(pyproject_path)
        return dict(config.get("tool", {}).get(CONFIG_SECTION, {}))

    return {}


def _load_env_options() -> dict[str, Any]:
    options: dict[str, Any] = {}
    for field in Settings._fields:
        raw = os.getenv(f"{ENV_PREFIX}{field.upper()}")
        if raw is not None and raw != "":
            options[field] = raw
    return options


def _coerce(field: str, value: Any) -> Any:
    """Convert a raw config value to the type declared for ``field``."""
    expected = _FIELD_TYPES[field]

    if value is None:
        return None

    try:
        if expected is bool:
            if isinstance(value, bool):
                return value
            lowered = str(value).strip().lower()
            if lowered in ("1", "true", "yes", "on"):
                return True
            if lowered in ("0", "false", "no", "off"):
                return False
            if field == "use_docker" and lowered == "auto":
                return None
            raise ValueError(f"expected a boolean, got {value!r}")
        if expected is tuple:
            if isinstance(value, str):
                items = [item.strip() for item in value.split(",")]
            else:
                items = [str(item).strip() for item in value]
            return tuple(item for item in items if item)
        if expected is Path:
            return Path(value).expanduser()
        if expected is int:
            if isinstance(value, float) and not value.is_integer():
                raise ValueError(f"expected an integer, got {value!r}")
            return int(value)
        return expected(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid value for '{field}': {e}") from e


def load_settings(project_root: Path | None = None, **overrides: Any) -> Settings:
    """
    Build the effective settings.

    Args:
        project_root: Directory holding the config files (default: PROJECT_ROOT).
        **overrides: Explicit values that win over every other source.

    Returns:
        Settings instance.

    Raises:
        ValueError: If a key is unknown or a value cannot be converted.
    """
    load_dotenv()

    merged: dict[str, Any] = {}
    merged.update(_load_file_options(project_root or PROJECT_ROOT))
    merged.update(_load_env_options())
    merged.update(overrides)

    unknown = sorted(set(merged) - set(Settings._fields))
    if unknown:
        raise ValueError(f"Unknown setting(s): {', '.join(unknown)}")

    values = {field: _coerce(field, value) for field, value in merged.items()}

    for field in _POSITIVE_FIELDS:
        if field in values and values[field] <= 0:
            raise ValueError(f"Invalid value for '{field}': must be greater than 0")
    if values.get("retry_base_delay", 0) < 0:
        raise ValueError("Invalid value for 'retry_base_delay': must not be negative")

    return Settings(**values)


def is_docker_available(socket_path: Path = DOCKER_SOCKET_PATH) -> bool:
    """
    Check whether a container runtime can be used for sandboxed installs.

    Args:
        socket_path: Location of the container control socket.

    Returns:
        True if the socket exists, False otherwise.
    """
    try:
        return socket_path.exists()
    except OSError:
        return False


def get_github_token() -> str | None:
    """Return the process-wide GitHub token, if one is configured."""
    load_dotenv()
    token = os.getenv("GITHUB_TOKEN", "").strip()
    return token or None
