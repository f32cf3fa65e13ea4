"""Sandboxed execution of package-manager commands."""

from repo_health_guard.external_tools.base import (
    CommandResult,
    CommandTimeoutError,
    Sandbox,
    SandboxName,
)
from repo_health_guard.external_tools.javascript_tools import NpmTool
from repo_health_guard.external_tools.sandboxes import (
    DirectSandbox,
    DockerSandbox,
    select_sandbox,
)

__all__ = [
    "CommandResult",
    "CommandTimeoutError",
    "DirectSandbox",
    "DockerSandbox",
    "NpmTool",
    "Sandbox",
    "SandboxName",
    "select_sandbox",
]
