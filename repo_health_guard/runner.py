"""
Periodic re-analysis of tracked repositories.
"""

import asyncio
import logging

from repo_health_guard.errors import InvalidInputError
from repo_health_guard.service import RepoHealthService

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 5 * 60


def split_repo_id(repo_id: str) -> tuple[str, str]:
    """Split ``owner/repo`` into its parts."""
    owner, sep, repo = repo_id.strip().partition("/")
    if not sep or not owner or not repo or "/" in repo:
        raise InvalidInputError(f"Tracked repository must look like 'owner/repo': {repo_id!r}")
    return owner, repo


class BackgroundRunner:
    """
    Re-analyze a fixed list of repositories on an interval.

    Failures are logged per repository and never stop the loop.
    """

    def __init__(
        self,
        service: RepoHealthService,
        tracked_repos: list[str] | tuple[str, ...],
        interval: float = DEFAULT_INTERVAL,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.service = service
        self.tracked_repos = list(tracked_repos)
        self.interval = interval
        self._stopped = asyncio.Event()

    async def run_once(self) -> dict[str, bool]:
        """
        Analyze every tracked repository once, one after another.

        Returns:
            Mapping of ``owner/repo`` to whether its analysis succeeded.
        """
        outcomes: dict[str, bool] = {}
        for repo_id in self.tracked_repos:
            try:
                owner, repo = split_repo_id(repo_id)
                await self.service.analyze_repo(owner, repo)
            except Exception as e:
                logger.warning("Auto-analysis failed: %s (%s)", repo_id, e)
                outcomes[repo_id] = False
            else:
                logger.info("Auto-analysis completed: %s", repo_id)
                outcomes[repo_id] = True
        return outcomes

    async def run_forever(self) -> None:
        """Run a pass, then wait ``interval`` seconds, until ``stop()`` is called."""
        self._stopped.clear()
        logger.info(
            "Tracking %d repositories every %gs", len(self.tracked_repos), self.interval
        )
        while not self._stopped.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        self._stopped.set()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()
