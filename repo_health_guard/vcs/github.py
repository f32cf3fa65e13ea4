"""
GitHub metadata client for Repository Health Guard.

This module fetches the repository summary, weekly commit activity and the
vulnerability-alert probe from the GitHub REST API. Every call goes through the
read-through cache with retry; only the repository summary is allowed to fail
an analysis.
"""

import logging
import re
from typing import Any, NamedTuple

import httpx

from repo_health_guard.cache import TTLCache
from repo_health_guard.config import Settings, get_github_token
from repo_health_guard.errors import (
    ErrorKind,
    InvalidRepositoryUrlError,
    RepositoryFetchFailedError,
)
from repo_health_guard.http_client import create_async_http_client
from repo_health_guard.models import RepositorySummary, Signal, parse_timestamp

logger = logging.getLogger(__name__)

_HTTPS_URL_PATTERN = re.compile(
    r"^(?:https?://)?(?:www\.)?github\.com/(?P<owner>[^/\s:]+)/(?P<repo>[^/\s]+)(?:/.*)?$"
)
_SSH_URL_PATTERN = re.compile(
    r"^git@github\.com:(?P<owner>[^/\s]+)/(?P<repo>[^/\s]+)$"
)


class RepositoryRef(NamedTuple):
    owner: str
    repo: str

    @property
    def repo_id(self) -> str:
        return f"{self.owner}/{self.repo}"


def parse_github_url(url: str) -> RepositoryRef:
    """
    Extract owner and repository name from a GitHub URL.

    Accepts ``https://github.com/{owner}/{repo}`` and
    ``git@github.com:{owner}/{repo}``, with an optional ``.git`` suffix and
    trailing slash.

    Raises:
        InvalidRepositoryUrlError: If the URL matches neither form.
    """
    if not isinstance(url, str):
        raise InvalidRepositoryUrlError(str(url))

    cleaned = url.strip().rstrip("/")
    if cleaned.endswith(".git"):
        cleaned = cleaned[: -len(".git")].rstrip("/")

    match = _HTTPS_URL_PATTERN.match(cleaned) or _SSH_URL_PATTERN.match(cleaned)
    if match is None:
        raise InvalidRepositoryUrlError(url)

    repo = match.group("repo")
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    if not repo:
        raise InvalidRepositoryUrlError(url)
    return RepositoryRef(owner=match.group("owner"), repo=repo)


def classify_github_error(owner: str, repo: str, error: Exception) -> tuple[str, str]:
    """
    Turn a failed GitHub request into a reason code and a readable message.

    Returns:
        (reason, message) where reason is one of NOT_FOUND, INVALID_TOKEN,
        PRIVATE_OR_UNAUTHORIZED, RATE_LIMIT, NETWORK_ERROR or UNKNOWN.
    """
    status = None
    api_message = ""
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        try:
            body = error.response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("message"), str):
            api_message = body["message"]
    text = (api_message or str(error)).lower()

    if status == 404:
        return (
            "NOT_FOUND",
            f"Repository '{owner}/{repo}' was not found. Ensure the owner/repo "
            "name is correct or the repository is public.",
        )
    if status == 429 or "rate limit" in text:
        return (
            "RATE_LIMIT",
            "GitHub API rate limit exceeded. Try again later or use a token.",
        )
    if status in (401, 403):
        if "bad credentials" in text or "invalid token" in text:
            return (
                "INVALID_TOKEN",
                "Invalid or expired GitHub token provided.",
            )
        return (
            "PRIVATE_OR_UNAUTHORIZED",
            f"Repository '{owner}/{repo}' is private or requires authentication.",
        )
    if isinstance(error, (httpx.TransportError, httpx.TimeoutException)):
        return ("NETWORK_ERROR", "Network issue while connecting to GitHub.")
    return (
        "UNKNOWN",
        f"Failed to fetch repository data from GitHub: {api_message or error}",
    )


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)) and value >= 0:
        return int(value)
    return 0


def normalize_repository(owner: str, repo: str, data: Any) -> RepositorySummary:
    """Map a ``GET /repos/{owner}/{repo}`` payload, defaulting malformed fields."""
    if not isinstance(data, dict):
        data = {}
    name = data.get("name")
    return RepositorySummary(
        name=name if isinstance(name, str) and name else repo,
        stars=_as_int(data.get("stargazers_count")),
        forks=_as_int(data.get("forks_count")),
        open_issues=_as_int(data.get("open_issues_count")),
        last_pushed=parse_timestamp(data.get("pushed_at")),
    )


def normalize_commit_activity(data: Any) -> list[int]:
    """Map ``stats/commit_activity`` to weekly totals, oldest week first."""
    if not isinstance(data, list):
        return []
    totals = []
    for item in data:
        total = item.get("total") if isinstance(item, dict) else None
        totals.append(_as_int(total))
    return totals


class GitHubClient:
    """
    GitHub REST client with caching and retry.

    Args:
        token: Process-wide fallback token. Defaults to GITHUB_TOKEN.
        cache: Cache shared with the owning service; a private one is created
            when omitted.
        http_client: Preconfigured AsyncClient. One is created (and owned) when
            omitted.
        settings: TTLs, retry policy and API base URL.
    """

    def __init__(
        self,
        token: str | None = None,
        cache: TTLCache | None = None,
        http_client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or Settings()
        self.token = token or get_github_token()
        self.cache = cache or TTLCache(
            retry_attempts=self.settings.retry_attempts,
            retry_base_delay=self.settings.retry_base_delay,
        )
        self._owns_client = http_client is None
        self.http_client = http_client or create_async_http_client(
            verify_ssl=self.settings.verify_ssl
        )
        self.api_url = self.settings.github_api_url.rstrip("/")

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def _headers(self, token: str | None) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        effective_token = (token or "").strip() or self.token
        if effective_token:
            headers["Authorization"] = f"Bearer {effective_token}"
        return headers

    async def _get(self, path: str, token: str | None) -> httpx.Response:
        return await self.http_client.get(
            f"{self.api_url}{path}", headers=self._headers(token)
        )

    async def get_repository_summary(
        self, owner: str, repo: str, token: str | None = None
    ) -> RepositorySummary:
        """
        Fetch stars, forks, open issues and last push time.

        Raises:
            RepositoryFetchFailedError: If GitHub could not be reached or refused
                the request after all retries.
        """

        async def fetch() -> RepositorySummary:
            response = await self._get(f"/repos/{owner}/{repo}", token)
            response.raise_for_status()
            return normalize_repository(owner, repo, response.json())

        try:
            return await self.cache.get_or_compute(
                f"repo:{owner}/{repo}", fetch, self.settings.repo_cache_ttl
            )
        except (httpx.HTTPError, ValueError) as e:
            reason, message = classify_github_error(owner, repo, e)
            logger.warning("GitHub repository fetch failed for %s/%s: %s", owner, repo, e)
            raise RepositoryFetchFailedError(owner, repo, reason, message) from e

    async def get_commit_activity(
        self, owner: str, repo: str, token: str | None = None
    ) -> Signal[list[int]]:
        """
        Fetch up to 52 weekly commit totals, most recent week last.

        A 202 response (statistics still being computed) yields an empty list.
        Failures degrade to an empty list.
        """

        async def fetch() -> list[int]:
            response = await self._get(f"/repos/{owner}/{repo}/stats/commit_activity", token)
            if response.status_code == 202:
                return []
            response.raise_for_status()
            return normalize_commit_activity(response.json())

        try:
            value = await self.cache.get_or_compute(
                f"commits:{owner}/{repo}", fetch, self.settings.commits_cache_ttl
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Commit activity unavailable for %s/%s: %s", owner, repo, e)
            return Signal([], ErrorKind.UPSTREAM_UNAVAILABLE)
        return Signal(list(value))

    async def get_security_alerts(
        self, owner: str, repo: str, token: str | None = None
    ) -> Signal[list[bool]]:
        """
        Probe whether vulnerability alerts are enabled for the repository.

        Only the status code matters: 204 means alerts are present
        (``[True]``), 404 means none (``[]``). Failures degrade to ``[]``.
        """

        async def fetch() -> list[bool]:
            response = await self._get(f"/repos/{owner}/{repo}/vulnerability-alerts", token)
            if response.status_code == 204:
                return [True]
            if response.status_code == 404:
                return []
            response.raise_for_status()
            return []

        try:
            value = await self.cache.get_or_compute(
                f"alerts:{owner}/{repo}", fetch, self.settings.alerts_cache_ttl
            )
        except httpx.HTTPError as e:
            logger.warning("Security alert probe failed for %s/%s: %s", owner, repo, e)
            return Signal([], ErrorKind.UPSTREAM_UNAVAILABLE)
        return Signal(list(value))
