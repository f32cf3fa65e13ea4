"""
Repository health orchestration.

``RepoHealthService`` ties the GitHub client, the dependency analyzer and the
scorer together and persists one record per repository.
"""

import logging
import re
from datetime import datetime, timezone

from repo_health_guard.cache import TTLCache
from repo_health_guard.config import Settings
from repo_health_guard.dependency_analyzer import DependencyAnalyzer
from repo_health_guard.dependency_parsers.javascript.npm import (
    MANIFEST_NAME,
    UploadedFile,
    get_project_name,
    resolve_dependencies,
)
from repo_health_guard.errors import InvalidInputError, NotFoundError
from repo_health_guard.external_tools import SandboxName, select_sandbox
from repo_health_guard.models import (
    DependencyAnalysisResult,
    ManifestReport,
    RepositoryHealthRecord,
)
from repo_health_guard.scoring import calculate_health_score
from repo_health_guard.semaphore import AnalysisSemaphore
from repo_health_guard.storage import DEFAULT_PAGE_SIZE, HealthStore
from repo_health_guard.vcs.github import GitHubClient, parse_github_url

logger = logging.getLogger(__name__)

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")

RawManifest = str | bytes | dict


def validate_repository_identifier(owner: str, repo: str) -> None:
    """
    Check owner and repository names before they are put into API paths.

    Raises:
        InvalidInputError: If either part is empty or has unexpected characters.
    """
    for label, value in (("owner", owner), ("repository", repo)):
        if not isinstance(value, str) or not IDENTIFIER_PATTERN.match(value):
            raise InvalidInputError(f"Invalid {label} name: {value!r}")


class RepoHealthService:
    """
    Analyze repositories and keep their latest health record.

    The service owns its cache, concurrency gate and sandbox choice; pass
    explicit instances to share or replace them.

    Args:
        store: Persistence backend for health records.
        github: GitHub client (default: one built from ``settings``).
        analyzer: Dependency analyzer (default: one using the sandbox selected
            from ``settings.use_docker``).
        semaphore: Gate bounding concurrent dependency analyses.
        settings: Engine settings (default: built-in defaults).
    """

    def __init__(
        self,
        store: HealthStore,
        github: GitHubClient | None = None,
        analyzer: DependencyAnalyzer | None = None,
        semaphore: AnalysisSemaphore | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or Settings()
        self.store = store
        self.cache = TTLCache(
            retry_attempts=self.settings.retry_attempts,
            retry_base_delay=self.settings.retry_base_delay,
        )
        self.github = github or GitHubClient(cache=self.cache, settings=self.settings)
        self.semaphore = semaphore or AnalysisSemaphore(
            self.settings.max_concurrent_analyses
        )

        if analyzer is None:
            sandbox = select_sandbox(self.settings.use_docker, self.settings.docker_image)
            if sandbox.name == SandboxName.DOCKER:
                analyzer = DependencyAnalyzer(self.settings, container_sandbox=sandbox)
            else:
                analyzer = DependencyAnalyzer(self.settings, sandbox=sandbox)
        self.analyzer = analyzer
        self.use_docker = self.analyzer.container_sandbox is not None
        logger.debug(
            "Dependency sandbox: %s",
            SandboxName.DOCKER.value if self.use_docker else SandboxName.DIRECT.value,
        )

    async def aclose(self) -> None:
        """Close the HTTP client and wait for pending directory cleanups."""
        await self.github.aclose()
        await self.analyzer.wait_for_cleanups()

    async def __aenter__(self) -> "RepoHealthService":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _analyze_under_gate(self, deps: dict[str, str]) -> DependencyAnalysisResult:
        async with self.semaphore.hold():
            return await self.analyzer.analyze(deps, use_docker=self.use_docker)

    async def process_dependencies(
        self,
        upload: UploadedFile | None = None,
        raw_manifest: RawManifest | None = None,
    ) -> DependencyAnalysisResult:
        """
        Resolve dependencies from a raw manifest or upload and analyze them.

        With no dependencies the result is the healthy default (100, no risky
        packages) and no sandbox is started.
        """
        deps = resolve_dependencies(upload=upload, raw_manifest=raw_manifest)
        if not deps:
            return DependencyAnalysisResult.healthy()
        return await self._analyze_under_gate(deps)

    async def analyze_repo(
        self,
        owner: str,
        repo: str,
        upload: UploadedFile | None = None,
        raw_manifest: RawManifest | None = None,
        token: str | None = None,
    ) -> RepositoryHealthRecord:
        """
        Analyze a repository and upsert its health record.

        Args:
            owner: Repository owner.
            repo: Repository name.
            upload: Optional uploaded manifest, lockfile or zip.
            raw_manifest: Optional pasted manifest (takes priority over upload).
            token: GitHub token for this request only.

        Returns:
            The stored RepositoryHealthRecord.

        Raises:
            InvalidInputError: Bad identifiers or manifest input.
            RepositoryFetchFailedError: Repository metadata unavailable.
            SandboxExecutionFailedError: Dependency install failed.
        """
        validate_repository_identifier(owner, repo)

        summary = await self.github.get_repository_summary(owner, repo, token)
        commits = await self.github.get_commit_activity(owner, repo, token)
        alerts = await self.github.get_security_alerts(owner, repo, token)
        for signal_name, signal in (("commit activity", commits), ("security alerts", alerts)):
            if signal.degraded:
                logger.info(
                    "Using default %s for %s/%s (%s)",
                    signal_name,
                    owner,
                    repo,
                    signal.error.value,
                )

        analysis = await self.process_dependencies(upload=upload, raw_manifest=raw_manifest)

        overall = calculate_health_score(
            summary,
            commits.value,
            has_security_alerts=bool(alerts.value),
            dependency_score=analysis.score,
        )

        record = RepositoryHealthRecord(
            repo_id=f"{owner}/{repo}",
            owner=owner,
            repo=repo,
            name=summary.name,
            stars=summary.stars,
            forks=summary.forks,
            open_issues=summary.open_issues,
            last_pushed=summary.last_pushed,
            commit_activity=list(commits.value),
            security_alerts=len(alerts.value),
            dependency_health=analysis.score,
            risky_dependencies=list(analysis.risky),
            overall_health=overall,
            updated_at=datetime.now(timezone.utc),
        )
        stored = await self.store.upsert(record)
        logger.info(
            "Analyzed %s: %d (%s)", record.repo_id, overall.score, overall.label
        )
        return stored

    async def analyze_by_url(
        self,
        url: str,
        upload: UploadedFile | None = None,
        raw_manifest: RawManifest | None = None,
        token: str | None = None,
    ) -> RepositoryHealthRecord:
        ref = parse_github_url(url)
        return await self.analyze_repo(
            ref.owner, ref.repo, upload=upload, raw_manifest=raw_manifest, token=token
        )

    async def analyze_manifest_only(
        self,
        raw_manifest: RawManifest | None = None,
        upload: UploadedFile | None = None,
    ) -> ManifestReport:
        """
        Analyze a pasted manifest (or uploaded file) without GitHub or persistence.

        Raises:
            InvalidInputError: If neither input is given or the input is malformed.
        """
        if not raw_manifest and upload is None:
            raise InvalidInputError("A manifest or an uploaded file is required.")

        deps = resolve_dependencies(upload=upload, raw_manifest=raw_manifest)
        if raw_manifest:
            project_name = get_project_name(raw_manifest)
        elif upload.filename.endswith(MANIFEST_NAME):
            project_name = get_project_name(upload.content)
        else:
            project_name = "unknown"

        if deps:
            analysis = await self._analyze_under_gate(deps)
        else:
            analysis = DependencyAnalysisResult.healthy()

        return ManifestReport(
            project_name=project_name,
            total_dependencies=len(deps),
            dependencies=deps,
            analysis=analysis,
        )

    async def find_repo_health(self, owner: str, repo: str) -> RepositoryHealthRecord:
        """
        Raises:
            NotFoundError: If the repository was never analyzed.
        """
        record = await self.store.find_one(owner, repo)
        if record is None:
            raise NotFoundError(f"No analysis found for {owner}/{repo}")
        return record

    async def find_many(
        self,
        owner: str | None = None,
        repo: str | None = None,
        min_health_score: int | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[RepositoryHealthRecord]:
        return await self.store.find_many(
            owner=owner,
            repo=repo,
            min_health_score=min_health_score,
            limit=limit,
            offset=offset,
        )

    async def find_all(self) -> list[RepositoryHealthRecord]:
        return await self.store.find_all()
