"""
Tests for the background re-analysis runner.
"""

import asyncio
import logging

import pytest

from repo_health_guard.errors import InvalidInputError, RepositoryFetchFailedError
from repo_health_guard.runner import BackgroundRunner, split_repo_id


class RecordingService:
    """Stands in for RepoHealthService.analyze_repo."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls = []

    async def analyze_repo(self, owner, repo):
        self.calls.append(f"{owner}/{repo}")
        if f"{owner}/{repo}" in self.failing:
            raise RepositoryFetchFailedError(owner, repo, "NOT_FOUND", "not found")
        return None


def test_split_repo_id():
    assert split_repo_id("foo/bar") == ("foo", "bar")
    assert split_repo_id(" foo/bar ") == ("foo", "bar")
    for bad in ("foo", "foo/", "/bar", "foo/bar/baz"):
        with pytest.raises(InvalidInputError):
            split_repo_id(bad)


def test_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        BackgroundRunner(RecordingService(), ["foo/bar"], interval=0)


def test_run_once_analyzes_sequentially():
    service = RecordingService()
    runner = BackgroundRunner(service, ["foo/a", "foo/b", "bar/c"])

    outcomes = asyncio.run(runner.run_once())

    assert service.calls == ["foo/a", "foo/b", "bar/c"]
    assert outcomes == {"foo/a": True, "foo/b": True, "bar/c": True}


def test_failure_does_not_halt_the_pass(caplog):
    service = RecordingService(failing={"foo/b"})
    runner = BackgroundRunner(service, ["foo/a", "foo/b", "not-a-repo", "bar/c"])

    with caplog.at_level(logging.INFO, logger="repo_health_guard"):
        outcomes = asyncio.run(runner.run_once())

    assert service.calls == ["foo/a", "foo/b", "bar/c"]
    assert outcomes == {
        "foo/a": True,
        "foo/b": False,
        "not-a-repo": False,
        "bar/c": True,
    }
    assert "Auto-analysis failed: foo/b" in caplog.text
    assert "Auto-analysis completed: bar/c" in caplog.text


def test_run_forever_ticks_until_stopped():
    service = RecordingService()
    runner = BackgroundRunner(service, ["foo/bar"], interval=0.01)

    async def run():
        task = asyncio.create_task(runner.run_forever())
        while len(service.calls) < 3:
            await asyncio.sleep(0.005)
        runner.stop()
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(run())

    assert len(service.calls) >= 3
    assert runner.stopped


def test_stop_interrupts_the_wait():
    service = RecordingService()
    runner = BackgroundRunner(service, ["foo/bar"], interval=3600)

    async def run():
        task = asyncio.create_task(runner.run_forever())
        while not service.calls:
            await asyncio.sleep(0)
        runner.stop()
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(run())

    assert service.calls == ["foo/bar"]
