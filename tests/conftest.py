"""
Shared fixtures: a scripted sandbox for npm and a mocked GitHub API.
"""

import json
from pathlib import Path

import httpx
import pytest

from repo_health_guard.external_tools import CommandResult, Sandbox, SandboxName
from repo_health_guard.http_client import create_async_http_client


class FakeSandbox(Sandbox):
    """Sandbox that returns scripted results instead of spawning processes.

    ``responses`` maps the npm sub-command (``install``, ``outdated``,
    ``audit``) to a CommandResult or an exception to raise.
    """

    def __init__(self, responses=None, sandbox_name=SandboxName.DIRECT):
        self.responses = responses or {}
        self.calls = []
        self.work_dirs = []
        self._name = sandbox_name

    @property
    def name(self):
        return self._name

    def is_available(self):
        return True

    def wrap(self, argv, cwd):
        return list(argv)

    async def run(self, argv, cwd, timeout):
        self.calls.append(list(argv))
        self.work_dirs.append(Path(cwd))
        response = self.responses.get(argv[1], CommandResult(0, "", ""))
        if isinstance(response, Exception):
            raise response
        return response


def _npm_json(payload, returncode=1):
    return CommandResult(returncode, json.dumps(payload), "")


@pytest.fixture
def npm_json():
    """Build a CommandResult carrying a JSON report, as npm prints for findings."""
    return _npm_json


@pytest.fixture
def fake_sandbox():
    return FakeSandbox()


@pytest.fixture
def sandbox_factory():
    return FakeSandbox


class GitHubApi:
    """In-memory GitHub REST API served through httpx.MockTransport."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, path, status_code=200, json_body=None):
        self.routes[path] = (status_code, json_body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"message": "Not Found"})
        status_code, body = route
        if isinstance(body, Exception):
            raise body
        if body is None:
            return httpx.Response(status_code)
        return httpx.Response(status_code, json=body)

    def client(self) -> httpx.AsyncClient:
        return create_async_http_client(transport=httpx.MockTransport(self.handler))

    def hits(self, path):
        return sum(1 for request in self.requests if request.url.path == path)


@pytest.fixture
def github_api():
    return GitHubApi()


@pytest.fixture(autouse=True)
def no_github_token(monkeypatch):
    """Keep a developer's GITHUB_TOKEN (or .env) out of the tests."""
    monkeypatch.setenv("GITHUB_TOKEN", "")
