"""
Container Runtime — start/stop/restart project stacks through docker compose.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from app.config import settings
from app.services.command_runner import run_command

logger = logging.getLogger(__name__)

COMPOSE_TIMEOUT_SECONDS = 300


class ContainerRuntimeError(RuntimeError):
    pass


class ContainerRuntime(Protocol):
    async def start_project(self, project_path: str | Path) -> str: ...

    async def stop_project(self, project_path: str | Path) -> str: ...

    async def restart_project(self, project_path: str | Path) -> str: ...

    async def list_containers(self, project_path: str | Path) -> str: ...

    async def logs(self, project_path: str | Path, tail: int = 100) -> str: ...


def to_host_path(project_path: str | Path, users_path: str, host_users_path: str) -> str:
    """Translate a path inside this container to the path the docker host sees."""
    path = str(project_path)
    if path == users_path or path.startswith(users_path.rstrip("/") + "/"):
        return host_users_path + path[len(users_path) :]
    return path


class ComposeContainerRuntime:
    def __init__(
        self,
        docker_binary: str | None = None,
        users_path: str | None = None,
        host_users_path: str | None = None,
        timeout: float = COMPOSE_TIMEOUT_SECONDS,
    ) -> None:
        self.docker_binary = docker_binary or settings.docker_binary
        self.users_path = users_path or settings.users_path
        self.host_users_path = host_users_path or settings.host_users_path
        self.timeout = timeout

    async def _compose(self, project_path: str | Path, *args: str) -> str:
        host_path = to_host_path(project_path, self.users_path, self.host_users_path)
        cmd = [
            self.docker_binary,
            "compose",
            "-f",
            f"{host_path}/docker-compose.yml",
            "--project-directory",
            host_path,
            *args,
        ]
        logger.info("docker compose %s for %s", " ".join(args), host_path)
        result = await run_command(cmd, timeout=self.timeout)
        if not result.ok:
            raise ContainerRuntimeError(result.stderr.strip() or f"docker compose exited with {result.exit_code}")
        return result.stdout

    async def start_project(self, project_path: str | Path) -> str:
        return await self._compose(project_path, "up", "-d")

    async def stop_project(self, project_path: str | Path) -> str:
        return await self._compose(project_path, "down")

    async def restart_project(self, project_path: str | Path) -> str:
        return await self._compose(project_path, "restart")

    async def list_containers(self, project_path: str | Path) -> str:
        return await self._compose(project_path, "ps", "--all")

    async def logs(self, project_path: str | Path, tail: int = 100) -> str:
        if tail < 1:
            raise ValueError("tail must be positive")
        return await self._compose(project_path, "logs", "--no-color", "--tail", str(tail))
