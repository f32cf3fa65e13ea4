"""
Version control metadata for Repository Health Guard.

Only GitHub is supported; the client fetches the repository summary, commit
activity and the vulnerability-alert probe used by the health score.
"""

from repo_health_guard.vcs.github import (
    GitHubClient,
    RepositoryRef,
    classify_github_error,
    parse_github_url,
)

__all__ = [
    "GitHubClient",
    "RepositoryRef",
    "classify_github_error",
    "parse_github_url",
]
