"""
Data structures shared across the analysis engine.
"""

from datetime import datetime
from typing import Any, Generic, NamedTuple, TypeVar

from repo_health_guard.errors import ErrorKind

T = TypeVar("T")


class Signal(NamedTuple, Generic[T]):
    """Outcome of a secondary (non-fatal) signal fetch.

    ``error`` is None when the value came from the upstream API, otherwise it
    records why ``value`` is the degraded default.
    """

    value: T
    error: ErrorKind | None = None

    @property
    def degraded(self) -> bool:
        return self.error is not None


class RepositorySummary(NamedTuple):
    """Repository metadata used by the scorer."""

    name: str
    stars: int
    forks: int
    open_issues: int
    last_pushed: datetime | None


class OutdatedPackage(NamedTuple):
    name: str
    current: str
    latest: str


class Vulnerability(NamedTuple):
    severity: str
    via: list[str]


class DependencyAnalysisResult(NamedTuple):
    """Risk report for a set of declared dependencies."""

    score: int
    health: str
    total_vulns: int
    total_outdated: int
    risky: list[str]
    vulnerabilities: dict[str, Vulnerability]
    outdated: list[OutdatedPackage]
    unstable: list[str]

    @classmethod
    def healthy(cls) -> "DependencyAnalysisResult":
        """Result used when there is nothing to analyze."""
        return cls(
            score=100,
            health="Excellent",
            total_vulns=0,
            total_outdated=0,
            risky=[],
            vulnerabilities={},
            outdated=[],
            unstable=[],
        )


class OverallHealth(NamedTuple):
    score: int
    label: str


class ManifestReport(NamedTuple):
    """Dependency-only report for a pasted or uploaded manifest."""

    project_name: str
    total_dependencies: int
    dependencies: dict[str, str]
    analysis: DependencyAnalysisResult

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_name": self.project_name,
            "total_dependencies": self.total_dependencies,
            "dependencies": dict(self.dependencies),
            "dependency_health": {
                "score": self.analysis.score,
                "health": self.analysis.health,
                "total_vulnerabilities": self.analysis.total_vulns,
                "total_outdated": self.analysis.total_outdated,
            },
            "risky_dependencies": list(self.analysis.risky),
            "outdated_dependencies": [o._asdict() for o in self.analysis.outdated],
            "unstable_dependencies": list(self.analysis.unstable),
        }


class RepositoryHealthRecord(NamedTuple):
    """Persisted health snapshot of one repository, keyed by ``repo_id``."""

    repo_id: str
    owner: str
    repo: str
    name: str
    stars: int
    forks: int
    open_issues: int
    last_pushed: datetime | None
    commit_activity: list[int]
    security_alerts: int
    dependency_health: int
    risky_dependencies: list[str]
    overall_health: OverallHealth
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "repo_id": self.repo_id,
            "owner": self.owner,
            "repo": self.repo,
            "name": self.name,
            "stars": self.stars,
            "forks": self.forks,
            "open_issues": self.open_issues,
            "last_pushed": self.last_pushed.isoformat() if self.last_pushed else None,
            "commit_activity": list(self.commit_activity),
            "security_alerts": self.security_alerts,
            "dependency_health": self.dependency_health,
            "risky_dependencies": list(self.risky_dependencies),
            "overall_health": self.overall_health._asdict(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RepositoryHealthRecord":
        overall = data.get("overall_health") or {}
        return cls(
            repo_id=data["repo_id"],
            owner=data["owner"],
            repo=data["repo"],
            name=data.get("name", data["repo"]),
            stars=int(data.get("stars", 0)),
            forks=int(data.get("forks", 0)),
            open_issues=int(data.get("open_issues", 0)),
            last_pushed=parse_timestamp(data.get("last_pushed")),
            commit_activity=[int(v) for v in data.get("commit_activity", [])],
            security_alerts=int(data.get("security_alerts", 0)),
            dependency_health=int(data.get("dependency_health", 100)),
            risky_dependencies=list(data.get("risky_dependencies", [])),
            overall_health=OverallHealth(
                score=int(overall.get("score", 0)),
                label=overall.get("label", "Poor"),
            ),
            updated_at=parse_timestamp(data.get("updated_at")),
        )


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp, returning None for missing or malformed input."""
    if not isinstance(value, str) or not value:
        return None
    try:
        # GitHub uses a trailing "Z" for UTC
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
