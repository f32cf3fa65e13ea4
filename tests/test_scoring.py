"""
Tests for the weighted repository health score.
"""

from datetime import datetime, timedelta, timezone

import pytest

from repo_health_guard.models import RepositorySummary
from repo_health_guard.scoring import calculate_health_score, days_since, health_label

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _summary(stars=0, forks=0, open_issues=0, last_pushed=NOW):
    return RepositorySummary(
        name="bar",
        stars=stars,
        forks=forks,
        open_issues=open_issues,
        last_pushed=last_pushed,
    )


def test_popular_active_repository_is_excellent():
    summary = _summary(stars=10000, forks=500, open_issues=5)
    activity = [0] * 40 + [20] * 10 + [0] * 2

    health = calculate_health_score(summary, activity, False, 100, now=NOW)

    # 0.20 + 0.075 + 0.15 + 0.20 + 0.15 + ~0.1 + 0.05
    assert health.score == 92
    assert health.label == "Excellent"


def test_abandoned_repository_is_poor():
    summary = _summary(stars=3, forks=0, open_issues=40, last_pushed=NOW - timedelta(days=900))

    health = calculate_health_score(summary, [0] * 52, True, 10, now=NOW)

    assert health.score == 4
    assert health.label == "Poor"


def test_missing_last_push_contributes_nothing():
    with_push = calculate_health_score(_summary(), [], False, 100, now=NOW)
    without_push = calculate_health_score(_summary(last_pushed=None), [], False, 100, now=NOW)

    assert with_push.score - without_push.score == 15


def test_only_last_twelve_weeks_count():
    old_activity = [100] + [0] * 12
    recent_activity = [0] + [10] * 12

    old = calculate_health_score(_summary(), old_activity, False, 100, now=NOW)
    recent = calculate_health_score(_summary(), recent_activity, False, 100, now=NOW)

    assert recent.score - old.score == 20


def test_security_alerts_halve_their_weight():
    clean = calculate_health_score(_summary(), [], False, 100, now=NOW)
    alerted = calculate_health_score(_summary(), [], True, 100, now=NOW)

    assert clean.score == 45
    assert alerted.score in (42, 43)


def test_dependency_score_is_clamped():
    high = calculate_health_score(_summary(), [], False, 250, now=NOW)
    capped = calculate_health_score(_summary(), [], False, 100, now=NOW)
    low = calculate_health_score(_summary(), [], False, -20, now=NOW)
    floored = calculate_health_score(_summary(), [], False, 0, now=NOW)

    assert high == capped
    assert low == floored


def test_score_stays_within_bounds():
    best = _summary(stars=10**6, forks=10**6, last_pushed=NOW + timedelta(days=3))
    worst = _summary(open_issues=10**6, last_pushed=NOW - timedelta(days=5000))

    assert calculate_health_score(best, [1000] * 52, False, 100, now=NOW).score == 100
    assert calculate_health_score(worst, [], True, 0, now=NOW).score == 3


def test_naive_timestamps_are_treated_as_utc():
    naive = datetime(2024, 5, 31)
    assert days_since(naive, NOW) == pytest.approx(1.0)


@pytest.mark.parametrize(
    "score,label",
    [(100, "Excellent"), (80, "Excellent"), (79, "Good"), (60, "Good"), (59, "Moderate"), (40, "Moderate"), (39, "Poor"), (0, "Poor")],
)
def test_health_label_thresholds(score, label):
    assert health_label(score) == label
