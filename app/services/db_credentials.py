"""Per-user database credential file.

Each provisioned database is one block in ``<users_path>/<user>/.db-credentials``::

    # Database: shop_db (created: 2026-01-01T00:00:00+00:00, type: mariadb)
    DB_TYPE=mariadb
    DB_HOST=dployr-mariadb
    ...

Projects mount or copy this file, so the format stays human-readable
``KEY=value``.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from app.config import settings

logger = logging.getLogger(__name__)

CREDENTIALS_FILENAME = ".db-credentials"
_HEADER_PREFIX = "# Database:"
_HEADER_RE = re.compile(r"^# Database:\s*([^\s(]+)(?:.*type:\s*(\w+))?")
_FIELDS = {
    "DB_TYPE": "db_type",
    "DB_HOST": "host",
    "DB_PORT": "port",
    "DB_DATABASE": "database",
    "DB_USERNAME": "username",
    "DB_PASSWORD": "password",
}


@dataclass
class DatabaseCredentials:
    database: str
    db_type: str
    host: str
    port: int
    username: str
    password: str


def credentials_path(system_username: str, users_path: str | None = None) -> Path:
    return Path(users_path or settings.users_path) / system_username / CREDENTIALS_FILENAME


def _format_block(creds: DatabaseCredentials) -> str:
    created = datetime.now(UTC).isoformat()
    return (
        f"\n{_HEADER_PREFIX} {creds.database} (created: {created}, type: {creds.db_type})\n"
        f"DB_TYPE={creds.db_type}\n"
        f"DB_HOST={creds.host}\n"
        f"DB_PORT={creds.port}\n"
        f"DB_DATABASE={creds.database}\n"
        f"DB_USERNAME={creds.username}\n"
        f"DB_PASSWORD={creds.password}\n"
    )


def append_credentials(system_username: str, creds: DatabaseCredentials, users_path: str | None = None) -> Path:
    for value in (creds.database, creds.db_type, creds.host, creds.username, creds.password):
        if "\n" in value or "\r" in value:
            raise ValueError("Credential values must be single-line")
    path = credentials_path(system_username, users_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
    with os.fdopen(fd, "a") as f:
        f.write(_format_block(creds))
    logger.info("Stored credentials for database %s of %s", creds.database, system_username)
    return path


def load_credentials(system_username: str, users_path: str | None = None) -> list[DatabaseCredentials]:
    path = credentials_path(system_username, users_path)
    try:
        content = path.read_text()
    except FileNotFoundError:
        return []

    records: list[DatabaseCredentials] = []
    current: dict[str, str] | None = None

    def _flush() -> None:
        if current and current.get("database"):
            records.append(
                DatabaseCredentials(
                    database=current["database"],
                    db_type=current.get("db_type", "mariadb"),
                    host=current.get("host", ""),
                    port=int(current.get("port") or 0),
                    username=current.get("username", ""),
                    password=current.get("password", ""),
                )
            )

    for line in content.splitlines():
        stripped = line.strip()
        header = _HEADER_RE.match(stripped)
        if header:
            _flush()
            current = {"db_type": header.group(2) or "mariadb"}
            continue
        if current is None or "=" not in stripped:
            continue
        key, _, value = stripped.partition("=")
        if key in _FIELDS:
            current[_FIELDS[key]] = value
    _flush()
    return records


def remove_credentials(system_username: str, database: str, users_path: str | None = None) -> bool:
    """Drop the block whose header names exactly *database*. Returns whether one was removed."""
    path = credentials_path(system_username, users_path)
    try:
        lines = path.read_text().splitlines()
    except FileNotFoundError:
        return False

    kept: list[str] = []
    skipping = False
    removed = False
    for line in lines:
        header = _HEADER_RE.match(line.strip())
        if header:
            skipping = header.group(1) == database
            removed = removed or skipping
            if skipping:
                continue
        elif skipping and (line.startswith("DB_") or not line.strip()):
            continue
        else:
            skipping = False
        kept.append(line)

    if removed:
        path.write_text("\n".join(kept) + ("\n" if kept else ""))
        logger.info("Removed credentials for database %s of %s", database, system_username)
    return removed
