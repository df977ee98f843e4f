"""Archive Service — turn an uploaded zip archive into a runnable project.

Uploads are untrusted. Before a single byte is written to the project
directory the archive must pass a header check and a scan of its entry
table (path traversal, per-entry size, total size, compression ratio).
Only then is it extracted, normalised and given a generated compose file.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import zipfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from app.config import settings
from app.metrics import ARCHIVE_REJECTIONS
from app.services.project_manifest import (
    ProjectType,
    container_name_for,
    detect_project_type,
    generate_docker_compose,
    generate_env,
    generate_nginx_config,
)
from app.services.security import remove_blocked_files

logger = logging.getLogger(__name__)

ZIP_MAGIC_SIGNATURES: tuple[bytes, ...] = (
    b"PK\x03\x04",  # local file header
    b"PK\x05\x06",  # empty archive
    b"PK\x07\x08",  # spanned archive
)
ZIP_CONTENT_TYPES = frozenset({"application/zip", "application/x-zip-compressed"})
DANGEROUS_EXTENSIONS = frozenset(
    {".exe", ".dll", ".bat", ".cmd", ".com", ".scr", ".msi", ".vbs", ".ps1", ".jar", ".sh", ".bin"}
)


class ArchiveRejectedError(ValueError):
    """The archive failed validation; ``errors`` lists every hard failure."""

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = list(errors)


@dataclass
class ZipValidationReport:
    valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    uncompressed_size: int = 0
    compressed_size: int = 0
    entry_count: int = 0

    def add_error(self, message: str) -> None:
        self.errors.append(message)
        self.valid = False


@dataclass
class ProjectManifestInfo:
    path: str
    project_type: ProjectType
    container_name: str
    port: int
    flattened: bool = False
    removed_files: list[str] = field(default_factory=list)


def validate_upload(filename: str | None, content_type: str | None, size: int | None) -> None:
    """Reject uploads that are not zip files or exceed the upload ceiling."""
    is_zip = (content_type or "").lower() in ZIP_CONTENT_TYPES or (filename or "").lower().endswith(".zip")
    if not is_zip:
        raise ValueError("Only ZIP archives are allowed")
    if size is not None and size > settings.upload_max_bytes:
        raise ValueError(f"Upload exceeds {settings.upload_max_bytes // (1024 * 1024)} MB limit")


def has_zip_magic(path: str | Path) -> bool:
    try:
        with open(path, "rb") as f:
            header = f.read(4)
    except OSError:
        return False
    return header in ZIP_MAGIC_SIGNATURES


def _is_traversal(name: str) -> bool:
    return ".." in name or name.startswith(("/", "\\"))


def validate_archive(
    path: str | Path,
    *,
    max_entry_bytes: int | None = None,
    max_total_bytes: int | None = None,
    max_ratio: int | None = None,
) -> ZipValidationReport:
    """Scan the archive's entry table without extracting anything."""
    max_entry_bytes = max_entry_bytes or settings.archive_max_entry_bytes
    max_total_bytes = max_total_bytes or settings.archive_max_total_bytes
    max_ratio = max_ratio or settings.archive_max_compression_ratio

    report = ZipValidationReport()
    try:
        report.compressed_size = os.path.getsize(path)
        with zipfile.ZipFile(path) as zf:
            entries = zf.infolist()
    except (OSError, zipfile.BadZipFile) as exc:
        report.add_error(f"Unreadable archive: {exc}")
        return report

    report.entry_count = len(entries)
    for info in entries:
        name = info.filename
        if _is_traversal(name):
            report.add_error(f"Unsafe path in archive: {name}")
            continue
        if info.file_size > max_entry_bytes:
            report.add_error(f"Entry too large: {name} ({info.file_size} bytes)")
        suffix = PurePosixPath(name).suffix.lower()
        if suffix in DANGEROUS_EXTENSIONS:
            report.warnings.append(f"Executable content: {name}")
        report.uncompressed_size += info.file_size

    if report.uncompressed_size > max_total_bytes:
        report.add_error(f"Archive expands to {report.uncompressed_size} bytes, limit is {max_total_bytes}")
    if report.compressed_size and report.uncompressed_size / report.compressed_size > max_ratio:
        report.add_error(
            f"Suspicious compression ratio {report.uncompressed_size // report.compressed_size}:1 (possible zip bomb)"
        )
    return report


def extract_archive(archive_path: str | Path, dest: str | Path) -> int:
    """Extract every member, refusing any that would land outside *dest*."""
    root = Path(dest).resolve()
    count = 0
    with zipfile.ZipFile(archive_path) as zf:
        for info in zf.infolist():
            target = (root / info.filename).resolve()
            if target != root and root not in target.parents:
                raise ArchiveRejectedError([f"Unsafe path in archive: {info.filename}"])
            try:
                zf.extract(info, root)
            except (zipfile.BadZipFile, EOFError, zlib.error) as exc:
                raise ArchiveRejectedError([f"Corrupt archive member {info.filename}: {exc}"]) from None
            count += 1
    return count


def flatten_if_needed(path: str | Path) -> bool:
    """Hoist the contents of a lone wrapper directory (``repo-main/``) one level up."""
    root = Path(path)
    visible = [entry for entry in root.iterdir() if not entry.name.startswith(".")]
    if len(visible) != 1 or not visible[0].is_dir() or visible[0].is_symlink():
        return False

    wrapper = visible[0]
    # A child may share the wrapper's own name; move the wrapper aside first.
    staged = root / f".flatten-{wrapper.name}"
    wrapper.rename(staged)
    for entry in list(staged.iterdir()):
        destination = root / entry.name
        if destination.exists():
            _remove(destination)
        entry.rename(destination)
    staged.rmdir()
    logger.info("Archive layout: hoisted %s/ into %s", wrapper.name, root)
    return True


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def cleanup_upload(path: str | Path) -> None:
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Failed to delete upload %s: %s", path, exc)


class ArchiveService:
    """Create project directories from uploaded archives."""

    def _materialize(self, project_path: Path, archive_path: Path, port: int) -> ProjectManifestInfo:
        if not has_zip_magic(archive_path):
            ARCHIVE_REJECTIONS.labels(reason="magic").inc()
            raise ArchiveRejectedError(["File is not a valid ZIP archive"])

        report = validate_archive(archive_path)
        for warning in report.warnings:
            logger.warning("Archive %s: %s", archive_path.name, warning)
        if not report.valid:
            ARCHIVE_REJECTIONS.labels(reason="content").inc()
            raise ArchiveRejectedError(report.errors)

        container_name = container_name_for(project_path)
        project_path.mkdir(parents=True)
        try:
            extracted = extract_archive(archive_path, project_path)
            logger.info("Extracted %d entries into %s", extracted, project_path)
            flattened = flatten_if_needed(project_path)
            removed = remove_blocked_files(project_path)

            project_type = detect_project_type(project_path)
            logger.info("Detected project type %s for %s", project_type.value, container_name)
            (project_path / "docker-compose.yml").write_text(
                generate_docker_compose(project_type, container_name, port)
            )
            (project_path / ".env").write_text(generate_env(container_name, port))
            if project_type == ProjectType.static:
                nginx_dir = project_path / "nginx"
                nginx_dir.mkdir(exist_ok=True)
                (nginx_dir / "default.conf").write_text(generate_nginx_config())
        except Exception:
            try:
                shutil.rmtree(project_path)
            except OSError as exc:
                logger.warning("Failed to remove partial project %s: %s", project_path, exc)
            raise

        return ProjectManifestInfo(
            path=str(project_path),
            project_type=project_type,
            container_name=container_name,
            port=port,
            flattened=flattened,
            removed_files=removed,
        )

    async def create_project_from_archive(
        self, path: str | Path, archive_path: str | Path, port: int
    ) -> ProjectManifestInfo:
        """Validate, extract and scaffold; the upload is deleted in every case."""
        project_path = Path(path)
        upload = Path(archive_path)
        try:
            if project_path.exists():
                raise ValueError("A project with this name already exists")
            return await asyncio.to_thread(self._materialize, project_path, upload, port)
        except ArchiveRejectedError as exc:
            logger.warning("Rejected archive for %s: %s", project_path, exc)
            raise
        finally:
            cleanup_upload(upload)
