"""Sandbox strategies: direct host execution and throwaway Docker containers."""

import asyncio
import logging
import os
import shutil
import uuid
from pathlib import Path

from repo_health_guard.config import DOCKER_SOCKET_PATH, is_docker_available
from repo_health_guard.errors import SandboxExecutionFailedError
from repo_health_guard.external_tools.base import Sandbox, SandboxName

logger = logging.getLogger(__name__)

DEFAULT_DOCKER_IMAGE = "node:20-alpine"
CONTAINER_WORKDIR = "/app"
CONTAINER_HOME = "/tmp"


def host_user() -> str | None:
    """Host uid:gid, so files written to the bind mount stay removable by us."""
    if not hasattr(os, "getuid"):
        return None
    return f"{os.getuid()}:{os.getgid()}"


class DirectSandbox(Sandbox):
    """Run commands on the host, relying on npm's own ``--ignore-scripts``."""

    @property
    def name(self) -> SandboxName:
        return SandboxName.DIRECT

    def is_available(self) -> bool:
        return True

    def wrap(self, argv: list[str], cwd: Path) -> list[str]:
        return list(argv)


class DockerSandbox(Sandbox):
    """Run commands in an ephemeral container that only mounts the work directory."""

    def __init__(
        self,
        image: str = DEFAULT_DOCKER_IMAGE,
        socket_path: Path = DOCKER_SOCKET_PATH,
        user: str | None = None,
    ):
        self.image = image
        self.socket_path = socket_path
        self.user = user or host_user()

    @property
    def name(self) -> SandboxName:
        return SandboxName.DOCKER

    def is_available(self) -> bool:
        """Check for both the container control socket and the docker CLI."""
        return is_docker_available(self.socket_path) and shutil.which("docker") is not None

    def wrap(self, argv: list[str], cwd: Path) -> list[str]:
        container_name = f"repo-health-audit-{uuid.uuid4().hex[:12]}"
        command = [
            "docker",
            "run",
            "--rm",
            "--name",
            container_name,
            "--security-opt",
            "no-new-privileges",
            "--network",
            "bridge",
            "-v",
            f"{cwd.resolve()}:{CONTAINER_WORKDIR}",
            "-w",
            CONTAINER_WORKDIR,
        ]
        if self.user:
            # npm keeps its cache under HOME
            command += ["--user", self.user, "-e", f"HOME={CONTAINER_HOME}"]
        return [*command, self.image, *argv]

    async def on_timeout(self, argv: list[str]) -> None:
        # Killing the docker client does not stop the container itself
        container_name = argv[argv.index("--name") + 1]
        try:
            process = await asyncio.create_subprocess_exec(
                "docker",
                "kill",
                container_name,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await process.wait()
        except OSError as e:
            logger.warning("Could not kill container %s: %s", container_name, e)


def select_sandbox(
    use_docker: bool | None = None, docker_image: str = DEFAULT_DOCKER_IMAGE
) -> Sandbox:
    """
    Choose the sandbox strategy once, at startup.

    Args:
        use_docker: True to require Docker, False to run directly, None to use
            Docker whenever the container runtime is present.
        docker_image: Pinned runtime image for container execution.

    Returns:
        Sandbox instance.

    Raises:
        SandboxExecutionFailedError: If Docker is required but unavailable.
    """
    docker = DockerSandbox(image=docker_image)

    if use_docker is False:
        return DirectSandbox()

    if docker.is_available():
        logger.debug("Container runtime detected, using Docker sandbox")
        return docker

    if use_docker:
        raise SandboxExecutionFailedError(
            "Docker sandbox requested but no container runtime is available "
            f"(expected socket at {docker.socket_path})."
        )
    return DirectSandbox()
