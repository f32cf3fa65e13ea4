"""Base class for sandboxed command execution."""

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import NamedTuple

logger = logging.getLogger(__name__)


class SandboxName(str, Enum):
    """Available sandbox strategies.

    - direct: run npm on the host with lifecycle scripts disabled
    - docker: run npm in a throwaway container mounting only the work directory
    """

    DIRECT = "direct"
    DOCKER = "docker"


class CommandResult(NamedTuple):
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandTimeoutError(RuntimeError):
    """A sandboxed command exceeded its timeout and was killed."""

    def __init__(self, argv: list[str], timeout: float):
        super().__init__(f"Command '{' '.join(argv)}' timed out after {timeout:g}s")
        self.argv = argv
        self.timeout = timeout


class Sandbox(ABC):
    """Execution context for untrusted package-manager commands.

    Subclasses decide how a command is wrapped (run directly on the host or
    inside a throwaway container). Execution, timeouts and the forced kill are
    shared.
    """

    @property
    @abstractmethod
    def name(self) -> SandboxName:
        """Identifier of the sandbox strategy."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the sandbox can be used on this host."""

    @abstractmethod
    def wrap(self, argv: list[str], cwd: Path) -> list[str]:
        """Return the host command line that runs ``argv`` inside the sandbox."""

    async def on_timeout(self, argv: list[str]) -> None:
        """Hook called after a timed-out process has been killed."""

    async def run(self, argv: list[str], cwd: Path, timeout: float) -> CommandResult:
        """
        Run ``argv`` in ``cwd`` with a hard timeout.

        Args:
            argv: Command and arguments.
            cwd: Working directory (the only directory the command should touch).
            timeout: Seconds before the process is killed with SIGKILL.

        Returns:
            CommandResult with decoded output. A non-zero exit code is not an error
            here; callers decide.

        Raises:
            CommandTimeoutError: If the process did not finish in time.
            OSError: If the executable cannot be started.
        """
        command = self.wrap(argv, cwd)
        logger.debug("Running %s in %s", " ".join(command), cwd)

        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            await self.on_timeout(command)
            raise CommandTimeoutError(argv, timeout) from None

        return CommandResult(
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )
