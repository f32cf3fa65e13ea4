"""
Weighted repository health score.

Weights (sum to 1.0):
- stars: 0.20 (saturates at 5000)
- forks: 0.15 (saturates at 1000)
- push recency: 0.15 (linear decay over a year)
- commits in the last 12 weeks: 0.20 (saturates at 100)
- dependency health: 0.15
- open issues relative to stars: 0.10
- security alerts: 0.05 (halved when any alert is present)
"""

from datetime import datetime, timezone

from repo_health_guard.dependency_analyzer import round_half_up
from repo_health_guard.models import OverallHealth, RepositorySummary

STARS_WEIGHT = 0.20
FORKS_WEIGHT = 0.15
RECENCY_WEIGHT = 0.15
COMMITS_WEIGHT = 0.20
DEPENDENCY_WEIGHT = 0.15
ISSUES_WEIGHT = 0.10
SECURITY_WEIGHT = 0.05

STARS_CAP = 5000
FORKS_CAP = 1000
COMMITS_CAP = 100
RECENT_WEEKS = 12
RECENCY_WINDOW_DAYS = 365


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def health_label(score: float) -> str:
    if score >= 80:
        return "Excellent"
    if score >= 60:
        return "Good"
    if score >= 40:
        return "Moderate"
    return "Poor"


def days_since(moment: datetime | None, now: datetime) -> float | None:
    """Days elapsed since ``moment``; naive datetimes are treated as UTC."""
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return (now - moment).total_seconds() / 86400


def calculate_health_score(
    summary: RepositorySummary,
    commit_activity: list[int],
    has_security_alerts: bool,
    dependency_score: float,
    now: datetime | None = None,
) -> OverallHealth:
    """
    Combine repository metadata and dependency health into one score.

    Args:
        summary: Stars, forks, open issues and last push time.
        commit_activity: Weekly commit totals, most recent week last.
        has_security_alerts: Whether the vulnerability-alert probe found alerts.
        dependency_score: Dependency health score (0-100).
        now: Reference time for push recency (default: current UTC time).

    Returns:
        OverallHealth with an integer score in [0, 100] and its label.
    """
    now = now or datetime.now(timezone.utc)

    stars_score = min(summary.stars / STARS_CAP, 1.0)
    forks_score = min(summary.forks / FORKS_CAP, 1.0)

    elapsed = days_since(summary.last_pushed, now)
    recency_score = 0.0 if elapsed is None else _clamp(1 - elapsed / RECENCY_WINDOW_DAYS)

    recent_commits = sum(commit_activity[-RECENT_WEEKS:])
    commits_score = min(recent_commits / COMMITS_CAP, 1.0)

    dependency_factor = _clamp(dependency_score / 100)
    issues_factor = max(0.0, 1 - (summary.open_issues / (summary.stars + 1)) * 0.5)
    security_factor = 0.5 if has_security_alerts else 1.0

    weighted = (
        stars_score * STARS_WEIGHT
        + forks_score * FORKS_WEIGHT
        + recency_score * RECENCY_WEIGHT
        + commits_score * COMMITS_WEIGHT
        + dependency_factor * DEPENDENCY_WEIGHT
        + issues_factor * ISSUES_WEIGHT
        + security_factor * SECURITY_WEIGHT
    )

    score = round_half_up(_clamp(weighted * 100, 0, 100))
    return OverallHealth(score=score, label=health_label(score))
