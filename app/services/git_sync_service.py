"""Git Sync Service — clone, pull and disconnect project working trees.

A project directory may be bound to a remote repository. Cloning replaces
the directory with the repository content while keeping operator-owned files
(``docker-compose.yml``, ``nginx/``); pulling refreshes it and reports whether
anything changed so callers can skip needless container restarts.

Access tokens are embedded in the clone URL only for the clone itself, then
persisted to an owner-only ``.git-credentials`` file read by git's ``store``
credential helper. No URL or git output leaves this module without passing
through :func:`scrub_credentials` or :func:`sanitize_url_for_display`.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
import time
import urllib.parse
from dataclasses import dataclass, field
from pathlib import Path

from app.config import settings
from app.services.command_runner import CommandResult, CommandTimeoutError, run_command

logger = logging.getLogger(__name__)

# Operator-owned entries a directory may hold and still accept a fresh clone.
# Each one is carried into the cloned tree, replacing any copy from the remote.
PRESERVED_PATHS: tuple[str, ...] = ("docker-compose.yml", "nginx", ".env")
CLONE_TARGET_ALLOWLIST = frozenset(PRESERVED_PATHS)
CREDENTIALS_FILE = ".git-credentials"

_UP_TO_DATE_MARKERS = ("Already up to date", "Already up-to-date", "Bereits aktuell")
_CREDENTIAL_RE = re.compile(r"(https?://)[^/@\s]+@")
_VALID_GIT_URL_RE = re.compile(r"https://(github\.com|gitlab\.com|bitbucket\.org)/[\w.-]+/[\w.-]+(\.git)?")
_GIT_ENV = {"LC_ALL": "C", "LANG": "C", "GIT_TERMINAL_PROMPT": "0"}


class GitSyncError(RuntimeError):
    """A git operation failed; the message is safe to show to users."""


class GitTimeoutError(GitSyncError):
    """A git operation exceeded its time bound and was killed."""


@dataclass
class RepositoryLink:
    local_path: str
    remote_url: str | None = None
    branch: str | None = None
    last_commit: str | None = None
    has_local_changes: bool = False
    error: str | None = None


@dataclass
class CloneResult:
    path: str
    remote_url: str
    preserved: list[str] = field(default_factory=list)


@dataclass
class PullResult:
    has_changes: bool
    output: str
    previous_head: str | None = None
    current_head: str | None = None


def sanitize_url_for_display(url: str) -> str:
    """``https://token@github.com/u/r`` -> ``https://github.com/u/r``."""
    return _CREDENTIAL_RE.sub(r"\1", url or "")


def scrub_credentials(text: str) -> str:
    """Mask inline URL credentials in free text such as git stderr."""
    return _CREDENTIAL_RE.sub(r"\1***@", text or "")


def create_authenticated_url(url: str, token: str | None) -> str:
    if not token:
        return url
    if "@" in urllib.parse.urlsplit(url).netloc:
        return url
    quoted = urllib.parse.quote(token, safe="")
    if url.startswith("https://"):
        return url.replace("https://", f"https://{quoted}@", 1)
    return url


def is_valid_git_url(url: str) -> bool:
    return bool(url) and _VALID_GIT_URL_RE.fullmatch(url) is not None


def is_git_repository(path: str | Path) -> bool:
    return (Path(path) / ".git").is_dir()


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


def _cleanup(path: Path) -> None:
    try:
        _remove_path(path)
    except OSError as exc:
        logger.warning("Failed to clean up %s: %s", path, exc)


def _unexpected_entries(target: Path) -> list[str]:
    if not target.is_dir():
        return []
    return sorted(entry.name for entry in target.iterdir() if entry.name not in CLONE_TARGET_ALLOWLIST)


def _write_credentials(repo_path: Path, remote_url: str, token: str) -> Path:
    parts = urllib.parse.urlsplit(remote_url)
    quoted = urllib.parse.quote(token, safe="")
    line = f"{parts.scheme}://{quoted}@{parts.netloc}{parts.path}\n"
    credentials_path = repo_path / CREDENTIALS_FILE
    fd = os.open(credentials_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(line)
    # O_CREAT mode is filtered by umask and ignored for an existing file.
    os.chmod(credentials_path, 0o600)
    return credentials_path


def _swap_into_place(target: Path, staging: Path) -> list[str]:
    """Carry preserved files into *staging*, then exchange it with *target*.

    The real path is only touched by two renames, so it is either the old
    tree or the complete new one.
    """
    preserved: list[str] = []
    for name in PRESERVED_PATHS:
        src = target / name
        if not src.exists():
            continue
        dest = staging / name
        _remove_path(dest)
        if src.is_dir():
            shutil.copytree(src, dest, symlinks=True)
        else:
            shutil.copy2(src, dest)
        preserved.append(name)

    if not target.exists():
        staging.rename(target)
        return preserved

    retired = target.with_name(f"{target.name}_old_{time.time_ns()}")
    target.rename(retired)
    try:
        staging.rename(target)
    except OSError:
        retired.rename(target)
        raise
    _cleanup(retired)
    return preserved


class GitSyncService:
    def __init__(
        self,
        clone_timeout: float | None = None,
        pull_timeout: float | None = None,
        status_timeout: float | None = None,
        git_binary: str = "git",
    ) -> None:
        self.clone_timeout = clone_timeout or settings.git_clone_timeout_seconds
        self.pull_timeout = pull_timeout or settings.git_pull_timeout_seconds
        self.status_timeout = status_timeout or settings.git_status_timeout_seconds
        self.git_binary = git_binary

    async def _git(self, args: list[str], cwd: str | Path, timeout: float) -> CommandResult:
        return await run_command([self.git_binary, *args], timeout=timeout, cwd=cwd, env=_GIT_ENV)

    async def _git_output(self, args: list[str], cwd: str | Path) -> str | None:
        try:
            result = await self._git(args, cwd, self.status_timeout)
        except CommandTimeoutError:
            return None
        return result.stdout.strip() if result.ok else None

    async def get_status(self, path: str | Path) -> RepositoryLink | None:
        """Describe the repository bound to *path*, or ``None`` if there is none."""
        if not is_git_repository(path):
            return None
        link = RepositoryLink(local_path=str(path))
        remote = await self._git_output(["config", "--get", "remote.origin.url"], path)
        branch = await self._git_output(["rev-parse", "--abbrev-ref", "HEAD"], path)
        last_commit = await self._git_output(["log", "-1", "--format=%h - %s (%ar)"], path)
        if remote is None or branch is None:
            link.error = "Failed to read git status"
            return link
        link.remote_url = sanitize_url_for_display(remote)
        link.branch = branch
        link.last_commit = last_commit
        try:
            unstaged = await self._git(["diff", "--quiet"], path, self.status_timeout)
            staged = await self._git(["diff", "--cached", "--quiet"], path, self.status_timeout)
        except CommandTimeoutError:
            link.error = "Timed out reading git status"
            return link
        link.has_local_changes = not (unstaged.ok and staged.ok)
        return link

    async def clone_repository(self, path: str | Path, remote_url: str, token: str | None = None) -> CloneResult:
        target = Path(path)
        display_url = sanitize_url_for_display(remote_url)
        if is_git_repository(target):
            raise ValueError("Project is already connected to a git repository; disconnect it first")
        unexpected = _unexpected_entries(target)
        if unexpected:
            raise ValueError(f"Project directory is not empty: {', '.join(unexpected)}")

        target.parent.mkdir(parents=True, exist_ok=True)
        staging = target.with_name(f"{target.name}_clone_{time.time_ns()}")
        auth_url = create_authenticated_url(remote_url, token)

        logger.info("Cloning %s into %s", display_url, target)
        try:
            result = await self._git(["clone", "--", auth_url, str(staging)], target.parent, self.clone_timeout)
        except CommandTimeoutError as exc:
            await asyncio.to_thread(_cleanup, staging)
            raise GitTimeoutError(f"Git clone timed out after {exc.timeout:g}s") from None
        if not result.ok:
            await asyncio.to_thread(_cleanup, staging)
            raise GitSyncError(f"Git clone failed: {scrub_credentials(result.stderr.strip())}")

        try:
            if token:
                await self._store_credentials(staging, remote_url, token)
            preserved = await asyncio.to_thread(_swap_into_place, target, staging)
        except GitSyncError:
            await asyncio.to_thread(_cleanup, staging)
            raise
        except OSError as exc:
            await asyncio.to_thread(_cleanup, staging)
            raise GitSyncError(f"Failed to move repository into place: {scrub_credentials(str(exc))}") from None

        logger.info("Cloned %s into %s (preserved: %s)", display_url, target, ", ".join(preserved) or "-")
        return CloneResult(path=str(target), remote_url=display_url, preserved=preserved)

    async def _store_credentials(self, repo_path: Path, remote_url: str, token: str) -> None:
        await asyncio.to_thread(_write_credentials, repo_path, remote_url, token)
        steps = (
            ["config", "credential.helper", f"store --file={CREDENTIALS_FILE}"],
            ["remote", "set-url", "origin", sanitize_url_for_display(remote_url)],
        )
        for args in steps:
            try:
                result = await self._git(args, repo_path, self.status_timeout)
            except CommandTimeoutError as exc:
                raise GitTimeoutError(f"Git config timed out after {exc.timeout:g}s") from None
            if not result.ok:
                raise GitSyncError(f"Git config failed: {scrub_credentials(result.stderr.strip())}")

    async def _head(self, path: str | Path) -> str | None:
        return await self._git_output(["rev-parse", "HEAD"], path)

    async def pull_changes(self, path: str | Path) -> PullResult:
        if not is_git_repository(path):
            raise ValueError("Not a git repository")

        previous = await self._head(path)
        try:
            result = await self._git(["pull"], path, self.pull_timeout)
        except CommandTimeoutError as exc:
            raise GitTimeoutError(f"Git pull timed out after {exc.timeout:g}s") from None
        if not result.ok:
            raise GitSyncError(f"Git pull failed: {scrub_credentials(result.stderr.strip())}")

        output = scrub_credentials(result.stdout.strip())
        current = await self._head(path)
        if previous and current:
            has_changes = previous != current
        else:
            # HEAD unreadable: fall back to git's human-readable summary.
            has_changes = not any(marker in result.stdout for marker in _UP_TO_DATE_MARKERS)
        logger.info("Pulled %s (changes: %s)", path, has_changes)
        return PullResult(has_changes=has_changes, output=output, previous_head=previous, current_head=current)

    def disconnect_repository(self, path: str | Path) -> bool:
        """Remove ``.git`` and the stored credentials. Returns whether anything was removed."""
        target = Path(path)
        removed = False
        for name in (".git", CREDENTIALS_FILE):
            entry = target / name
            if entry.exists() or entry.is_symlink():
                _remove_path(entry)
                removed = True
        if removed:
            logger.info("Disconnected repository at %s", target)
        return removed
