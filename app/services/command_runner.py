"""Async subprocess execution with a hard wall-clock bound."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Mapping, Sequence
from pathlib import Path

logger = logging.getLogger(__name__)


class CommandResult:
    """Result of a finished local command."""

    def __init__(self, exit_code: int, stdout: str, stderr: str):
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.ok = exit_code == 0

    def __repr__(self) -> str:
        return f"CommandResult(exit_code={self.exit_code}, ok={self.ok})"


class CommandTimeoutError(TimeoutError):
    """The command exceeded its time bound and was killed."""

    def __init__(self, timeout: float):
        super().__init__(f"Command timed out after {timeout:g}s")
        self.timeout = timeout


async def run_command(
    args: Sequence[str],
    *,
    timeout: float,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> CommandResult:
    """Run *args* without a shell and collect its output.

    Raises :class:`CommandTimeoutError` once *timeout* elapses, after the
    process has been killed and reaped. A missing executable surfaces as a
    failed :class:`CommandResult` rather than an exception.
    """
    full_env = None
    if env:
        full_env = {**os.environ, **env}

    logger.debug("Local exec: %s", args[0] if args else "")
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd is not None else None,
            env=full_env,
        )
    except (FileNotFoundError, PermissionError) as exc:
        return CommandResult(127, "", str(exc))

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise CommandTimeoutError(timeout) from None
    except asyncio.CancelledError:
        proc.kill()
        raise

    return CommandResult(
        proc.returncode if proc.returncode is not None else 1,
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
    )
