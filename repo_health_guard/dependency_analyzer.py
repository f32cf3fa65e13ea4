"""
Dependency health analysis.

Installs a synthesized package.json in a throwaway directory (optionally inside
a container), then scores the result of ``npm audit`` and ``npm outdated``.
"""

import asyncio
import errno
import json
import logging
import re
import shutil
import tempfile
import time
from pathlib import Path
from typing import Any

from repo_health_guard.config import Settings
from repo_health_guard.errors import (
    DependencyAnalysisFailedError,
    InvalidDependencyNameError,
    SandboxExecutionFailedError,
)
from repo_health_guard.external_tools import DirectSandbox, NpmTool, Sandbox
from repo_health_guard.models import (
    DependencyAnalysisResult,
    OutdatedPackage,
    Vulnerability,
)

logger = logging.getLogger(__name__)

DEPENDENCY_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9._@/-]+$")
UNSTABLE_VERSION_PATTERN = re.compile(r"alpha|beta|rc|snapshot|next", re.IGNORECASE)

VULNERABILITY_PENALTY = 5
OUTDATED_PENALTY = 1.5

CLEANUP_ATTEMPTS = 3
CLEANUP_BACKOFF = 2.0
_RETRYABLE_CLEANUP_ERRORS = {errno.EBUSY, errno.ENOTEMPTY}


def validate_dependency_names(deps: dict[str, str]) -> None:
    """
    Reject names that could escape the install directory or inject arguments.

    Raises:
        InvalidDependencyNameError: On the first offending name.
    """
    for name in deps:
        if not DEPENDENCY_NAME_PATTERN.match(name) or ".." in name.split("/"):
            raise InvalidDependencyNameError(name)


def extract_vulnerabilities(audit_json: dict[str, Any]) -> dict[str, Vulnerability]:
    """
    Parse ``npm audit --json`` output.

    npm 7+ reports a ``vulnerabilities`` map; npm 6 used ``advisories``.

    Returns:
        Mapping of package name to severity and advisory titles.
    """
    section: Any = {}
    if isinstance(audit_json.get("vulnerabilities"), dict):
        section = audit_json["vulnerabilities"]
    elif isinstance(audit_json.get("advisories"), dict):
        section = audit_json["advisories"]

    result: dict[str, Vulnerability] = {}
    for package, data in section.items():
        if not isinstance(data, dict):
            continue

        via: list[str] = []
        raw_via = data.get("via")
        if isinstance(raw_via, list):
            for item in raw_via:
                if isinstance(item, str):
                    title = item
                elif isinstance(item, dict) and isinstance(item.get("title"), str):
                    title = item["title"]
                else:
                    title = ""
                if title:
                    via.append(title)

        severity = data.get("severity")
        result[package] = Vulnerability(
            severity=severity if isinstance(severity, str) else "info",
            via=via,
        )
    return result


def extract_outdated(outdated_json: dict[str, Any]) -> list[OutdatedPackage]:
    """Parse ``npm outdated --json`` output; missing versions become ``"unknown"``."""
    outdated: list[OutdatedPackage] = []
    for package, info in outdated_json.items():
        if not isinstance(info, dict):
            continue
        current = info.get("current")
        latest = info.get("latest")
        outdated.append(
            OutdatedPackage(
                name=package,
                current=current if isinstance(current, str) else "unknown",
                latest=latest if isinstance(latest, str) else "unknown",
            )
        )
    return outdated


def round_half_up(value: float) -> int:
    """Round like JavaScript's Math.round (halves go up) rather than banker's rounding."""
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def dependency_health_label(score: float) -> str:
    if score < 40:
        return "Poor"
    if score < 60:
        return "Moderate"
    if score < 80:
        return "Good"
    return "Excellent"


def calculate_dependency_score(total_vulns: int, total_outdated: int) -> int:
    """
    Score a dependency set from its findings.

    Scoring:
    - Start at 100
    - Each vulnerable package: -5
    - Each outdated package: -1.5
    - Floor at 0, rounded half-up to an integer
    """
    raw = 100 - total_vulns * VULNERABILITY_PENALTY - total_outdated * OUTDATED_PENALTY
    return round_half_up(max(0.0, raw))


def detect_unstable_dependencies(deps: dict[str, str]) -> list[str]:
    """Names whose declared version range points at a pre-release."""
    return [
        name
        for name, version in deps.items()
        if UNSTABLE_VERSION_PATTERN.search(str(version))
    ]


def build_result(
    deps: dict[str, str], audit_json: dict[str, Any], outdated_json: dict[str, Any]
) -> DependencyAnalysisResult:
    """Assemble the risk report from raw npm output."""
    vulnerabilities = extract_vulnerabilities(audit_json)
    outdated = extract_outdated(outdated_json)
    score = calculate_dependency_score(len(vulnerabilities), len(outdated))

    return DependencyAnalysisResult(
        score=score,
        health=dependency_health_label(score),
        total_vulns=len(vulnerabilities),
        total_outdated=len(outdated),
        risky=list(vulnerabilities),
        vulnerabilities=vulnerabilities,
        outdated=outdated,
        unstable=detect_unstable_dependencies(deps),
    )


async def cleanup_directory(
    path: Path,
    attempts: int = CLEANUP_ATTEMPTS,
    backoff: float = CLEANUP_BACKOFF,
) -> bool:
    """
    Remove an analysis directory, retrying while it is busy.

    EBUSY/ENOTEMPTY are retried with a linear backoff; a missing directory
    counts as success. Never raises.

    Returns:
        True if the directory is gone.
    """
    for attempt in range(attempts):
        try:
            await asyncio.to_thread(shutil.rmtree, path)
            logger.debug("Cleaned up %s", path)
            return True
        except FileNotFoundError:
            return True
        except OSError as e:
            if e.errno in _RETRYABLE_CLEANUP_ERRORS:
                logger.warning(
                    "Cleanup attempt %d failed for %s: %s", attempt + 1, path, e
                )
                if attempt < attempts - 1:
                    await asyncio.sleep(backoff * (attempt + 1))
                continue
            logger.error("Unexpected cleanup error for %s: %s", path, e)
            return False

    logger.error("Failed to clean up %s after %d attempts", path, attempts)
    return False


class DependencyAnalyzer:
    """
    Run the isolated install/audit/outdated cycle over a dependency map.

    Args:
        settings: Timeouts and grace period.
        sandbox: Host execution strategy (default: DirectSandbox).
        container_sandbox: Strategy used when ``use_docker=True``; None when no
            container runtime was detected at startup.
        work_root: Parent directory for analysis directories (default: system temp).
    """

    def __init__(
        self,
        settings: Settings | None = None,
        sandbox: Sandbox | None = None,
        container_sandbox: Sandbox | None = None,
        work_root: Path | None = None,
    ):
        self.settings = settings or Settings()
        self.sandbox = sandbox or DirectSandbox()
        self.container_sandbox = container_sandbox
        self.work_root = work_root
        self._cleanup_tasks: set[asyncio.Task[bool]] = set()

    def _select_sandbox(self, use_docker: bool) -> Sandbox:
        if not use_docker:
            return self.sandbox
        if self.container_sandbox is None:
            raise SandboxExecutionFailedError(
                "Docker sandbox requested but no container runtime is available."
            )
        return self.container_sandbox

    def _create_work_dir(self) -> Path:
        prefix = f"audit-{int(time.time() * 1000)}-"
        return Path(tempfile.mkdtemp(prefix=prefix, dir=self.work_root))

    async def analyze(
        self, deps: dict[str, str], use_docker: bool = False
    ) -> DependencyAnalysisResult:
        """
        Analyze a dependency map.

        Args:
            deps: Package name to version range.
            use_docker: Run npm inside the container sandbox.

        Returns:
            DependencyAnalysisResult.

        Raises:
            InvalidDependencyNameError: If any name is unsafe (nothing is run).
            SandboxExecutionFailedError: If Docker was requested but is unavailable.
            DependencyAnalysisFailedError: If the install step or setup fails.
        """
        validate_dependency_names(deps)
        npm = NpmTool(self._select_sandbox(use_docker))
        try:
            work_dir = self._create_work_dir()
        except OSError as e:
            raise DependencyAnalysisFailedError(str(e)) from e
        succeeded = False

        try:
            manifest = {
                "name": "audit-temp",
                "version": "1.0.0",
                "private": True,
                "dependencies": deps,
            }
            await asyncio.to_thread(
                (work_dir / "package.json").write_text,
                json.dumps(manifest, indent=2),
            )

            await npm.install(work_dir, self.settings.install_timeout)
            outdated_json = await npm.outdated(work_dir, self.settings.outdated_timeout)
            audit_json = await npm.audit(work_dir, self.settings.audit_timeout)

            result = build_result(deps, audit_json, outdated_json)
            succeeded = True
            logger.info(
                "Analyzed %d dependencies: score %d (%s)",
                len(deps),
                result.score,
                result.health,
            )
            return result
        except Exception as e:
            raise DependencyAnalysisFailedError(str(e) or type(e).__name__) from e
        finally:
            if succeeded:
                self._schedule_cleanup(work_dir)
            else:
                await cleanup_directory(work_dir)

    def _schedule_cleanup(self, work_dir: Path) -> None:
        async def delayed_cleanup() -> bool:
            # Give lingering npm child processes time to release file handles
            await asyncio.sleep(self.settings.cleanup_grace_period)
            return await cleanup_directory(work_dir)

        task = asyncio.get_running_loop().create_task(delayed_cleanup())
        self._cleanup_tasks.add(task)
        task.add_done_callback(self._cleanup_tasks.discard)

    @property
    def pending_cleanups(self) -> int:
        return len(self._cleanup_tasks)

    async def wait_for_cleanups(self) -> None:
        """Wait for every scheduled directory cleanup to finish."""
        if self._cleanup_tasks:
            await asyncio.gather(*list(self._cleanup_tasks))
