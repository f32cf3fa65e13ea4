"""
Error taxonomy for Repository Health Guard.

Every failure surfaced to callers carries an ``ErrorKind``. Fatal kinds abort an
analysis; secondary signals never raise and instead report their kind on a
``Signal`` (see ``repo_health_guard.models``).
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Categories of failure and their HTTP-equivalent status."""

    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    SANDBOX_EXECUTION_FAILED = "sandbox_execution_failed"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]


_STATUS_CODES = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UPSTREAM_UNAVAILABLE: 502,
    ErrorKind.SANDBOX_EXECUTION_FAILED: 500,
}


class RepoHealthError(Exception):
    """Base class for all typed errors raised by the analysis engine."""

    kind: ErrorKind = ErrorKind.INVALID_INPUT

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def status_code(self) -> int:
        return self.kind.status_code


class InvalidInputError(RepoHealthError):
    """Malformed manifest, URL or identifier supplied by the caller."""

    kind = ErrorKind.INVALID_INPUT


class InvalidRepositoryUrlError(InvalidInputError):
    def __init__(self, url: str):
        super().__init__(f"Invalid GitHub repository URL: {url}")
        self.url = url


class InvalidDependencyNameError(InvalidInputError):
    def __init__(self, name: str):
        super().__init__(f"Invalid dependency name: {name}")
        self.name = name


class UnsupportedFileTypeError(InvalidInputError):
    def __init__(self, filename: str):
        super().__init__(
            f"Unsupported file type '{filename}'. Please upload a zip folder or "
            "package.json/package-lock.json file."
        )
        self.filename = filename


class NoManifestFoundError(InvalidInputError):
    def __init__(self):
        super().__init__(
            "No package.json or package-lock.json found in the uploaded zip folder."
        )


class NotFoundError(RepoHealthError):
    """No stored analysis exists for the requested repository."""

    kind = ErrorKind.NOT_FOUND


class UpstreamUnavailableError(RepoHealthError):
    """An external API could not be reached after all retries."""

    kind = ErrorKind.UPSTREAM_UNAVAILABLE


class RepositoryFetchFailedError(UpstreamUnavailableError):
    """The repository summary could not be fetched from GitHub."""

    def __init__(self, owner: str, repo: str, reason: str, detail: str):
        super().__init__(detail)
        self.owner = owner
        self.repo = repo
        self.reason = reason


class SandboxExecutionFailedError(RepoHealthError):
    """A sandboxed package-manager command could not be completed."""

    kind = ErrorKind.SANDBOX_EXECUTION_FAILED


class DependencyAnalysisFailedError(SandboxExecutionFailedError):
    def __init__(self, detail: str):
        super().__init__(f"Dependency analysis failed: {detail}")
        self.detail = detail


class RetryExhaustedError(UpstreamUnavailableError):
    """Raised when a retried producer never produced an exception to re-raise."""
