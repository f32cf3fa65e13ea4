"""npm commands used by the dependency analyzer."""

import json
import logging
from pathlib import Path
from typing import Any

from repo_health_guard.external_tools.base import CommandTimeoutError, Sandbox

logger = logging.getLogger(__name__)

INSTALL_ARGS = ["npm", "install", "--ignore-scripts", "--silent", "--no-audit", "--no-fund"]
OUTDATED_ARGS = ["npm", "outdated", "--json"]
AUDIT_ARGS = ["npm", "audit", "--json"]


class NpmTool:
    """Install, outdated and audit steps of npm, executed through a sandbox."""

    def __init__(self, sandbox: Sandbox):
        self.sandbox = sandbox

    async def install(self, cwd: Path, timeout: float) -> None:
        """
        Install the manifest in ``cwd`` with lifecycle scripts disabled.

        Raises:
            RuntimeError: If npm exits non-zero or times out.
            OSError: If npm (or docker) cannot be started.
        """
        result = await self.sandbox.run(INSTALL_ARGS, cwd, timeout)
        if not result.ok:
            error_msg = result.stderr.strip() or result.stdout.strip()
            raise RuntimeError(
                f"npm install exited with code {result.returncode}: {error_msg}"
            )

    async def outdated(self, cwd: Path, timeout: float) -> dict[str, Any]:
        """Run ``npm outdated --json``; any failure yields an empty dict."""
        return await self._json_query(OUTDATED_ARGS, cwd, timeout)

    async def audit(self, cwd: Path, timeout: float) -> dict[str, Any]:
        """Run ``npm audit --json``; any failure yields an empty dict."""
        return await self._json_query(AUDIT_ARGS, cwd, timeout)

    async def _json_query(
        self, argv: list[str], cwd: Path, timeout: float
    ) -> dict[str, Any]:
        # npm outdated/audit exit with 1 when they find something, so the exit
        # code alone says nothing about the output's validity
        try:
            result = await self.sandbox.run(argv, cwd, timeout)
        except (CommandTimeoutError, OSError) as e:
            logger.warning("'%s' failed: %s", " ".join(argv), e)
            return {}

        try:
            parsed = json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            logger.warning(
                "'%s' returned malformed JSON (exit code %d)",
                " ".join(argv),
                result.returncode,
            )
            return {}

        if not isinstance(parsed, dict):
            return {}
        if _is_error_report(parsed):
            error = parsed["error"]
            logger.warning(
                "'%s' reported an error: %s",
                " ".join(argv),
                error.get("summary") or error.get("code"),
            )
            return {}
        return parsed


def _is_error_report(parsed: dict[str, Any]) -> bool:
    """Registry and network failures print ``{"error": {"code": ..., "summary": ...}}``."""
    error = parsed.get("error")
    if not isinstance(error, dict):
        return False
    # An outdated package literally named "error" carries version fields instead
    return "code" in error or "summary" in error
