"""Request-surface hardening helpers."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

logger = logging.getLogger(__name__)

# Container and build descriptors are generated by the platform, never taken
# from user uploads.
BLOCKED_FILES: tuple[str, ...] = (
    "Dockerfile",
    "docker-compose.yml",
    "docker-compose.yaml",
    "compose.yml",
    "compose.yaml",
    ".dockerignore",
)

_LOCAL_PATH_RE = re.compile(r"/[A-Za-z0-9._~\-/]*")


def sanitize_return_url(candidate: object, fallback: str) -> str:
    """Return *candidate* if it is a plain same-site path, else *fallback*.

    Accepts only a single leading slash followed by unreserved path
    characters, which rules out schemes, protocol-relative ``//host``,
    backslashes, percent-encoding, query strings, fragments and control
    characters.
    """
    if not isinstance(candidate, str) or not candidate:
        return fallback
    if candidate.startswith("//") or not _LOCAL_PATH_RE.fullmatch(candidate):
        return fallback
    if ".." in candidate.split("/"):
        return fallback
    return candidate


def remove_blocked_files(directory: str | os.PathLike | None) -> list[str]:
    """Delete blocklisted descriptors at the top of *directory*; return removed paths."""
    if not directory:
        return []
    root = Path(directory)
    if not root.is_dir():
        return []

    removed: list[str] = []
    for name in BLOCKED_FILES:
        path = root / name
        if not (path.is_file() or path.is_symlink()):
            continue
        try:
            path.unlink()
        except OSError as exc:
            logger.warning("Could not remove blocked file %s: %s", path, exc)
            continue
        removed.append(str(path))
    if removed:
        logger.info("Removed blocked files: %s", ", ".join(removed))
    return removed
