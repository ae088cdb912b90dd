"""Backup archives of installed skills under ~/.asm/backups."""

from __future__ import annotations

import contextlib
import os
import re
import secrets
import stat
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from . import archive
from .constants import (
    ASM_DIR,
    BACKUPS_DIR,
    DIRECTORY_MODE,
    FILE_MODE,
    MAX_COLLISION_RETRIES,
    MAX_SUFFIX_ATTEMPTS,
    PACKAGE_EXTENSION,
)
from .enumerator import enumerate_skill_files, is_regular_file
from .errors import SecurityViolation
from .logger import logger
from .types import BackupDirValidation, BackupInfo, BackupResult, BackupWritabilityResult, RestoreResult

if TYPE_CHECKING:
    from collections.abc import Callable

_BACKUP_TIMESTAMP = re.compile(r"(\d{8})-(\d{6})")


def _home(homedir: str | Path | None) -> Path:
    return Path(homedir) if homedir else Path.home()


def _backup_paths(homedir: str | Path | None) -> tuple[Path, Path]:
    asm_dir = _home(homedir) / ASM_DIR
    return asm_dir, asm_dir / BACKUPS_DIR


def get_backup_directory(homedir: str | Path | None = None) -> Path:
    """Return ~/.asm/backups, creating it owner-only. Refuses symlinked directories."""
    asm_dir, backups_dir = _backup_paths(homedir)
    for directory in (asm_dir, backups_dir):
        if directory.is_symlink():
            raise SecurityViolation(f"Security error: {directory} is a symlink")
        if not directory.exists():
            directory.mkdir(mode=DIRECTORY_MODE)
            os.chmod(directory, DIRECTORY_MODE)
    return backups_dir


def validate_backup_directory(homedir: str | Path | None = None) -> BackupDirValidation:
    """Inspect ~/.asm and ~/.asm/backups without changing anything."""
    errors: list[str] = []
    warnings: list[str] = []
    for directory in _backup_paths(homedir):
        try:
            st = os.lstat(directory)
        except FileNotFoundError:
            continue
        except OSError as err:
            errors.append(f"Cannot access {directory}: {err}")
            continue

        if stat.S_ISLNK(st.st_mode):
            errors.append(f"Security error: {directory} is a symbolic link")
        elif not stat.S_ISDIR(st.st_mode):
            errors.append(f"{directory} exists but is not a directory")
        elif st.st_mode & stat.S_IROTH:
            warnings.append(f"{directory} is world-readable (mode: {stat.S_IMODE(st.st_mode):o})")

    return BackupDirValidation(valid=not errors, errors=errors, warnings=warnings)


def validate_backup_writability(homedir: str | Path | None = None) -> BackupWritabilityResult:
    try:
        backups_dir = get_backup_directory(homedir)
    except (OSError, SecurityViolation) as err:
        return BackupWritabilityResult(writable=False, error=f"Cannot access backup directory: {err}")

    probe = backups_dir / f".write-test-{secrets.token_hex(4)}"
    try:
        fd = os.open(probe, os.O_WRONLY | os.O_CREAT | os.O_EXCL, FILE_MODE)
        os.close(fd)
        probe.unlink()
    except OSError as err:
        with contextlib.suppress(FileNotFoundError):
            probe.unlink()
        return BackupWritabilityResult(writable=False, error=f"Cannot write to backup directory: {err}")
    return BackupWritabilityResult(writable=True)


def generate_backup_filename(skill_name: str, now: datetime | None = None) -> str:
    """<skill>-<YYYYMMDD>-<HHMMSS>-<8 hex>.skill, stamped in UTC."""
    now = now or datetime.now(timezone.utc)
    return f"{skill_name}-{now:%Y%m%d-%H%M%S}-{secrets.token_hex(4)}{PACKAGE_EXTENSION}"


def verify_backup_containment(backup_path: str | Path, homedir: str | Path | None = None) -> bool:
    """True when backup_path normalizes to a strict descendant of the backup directory."""
    try:
        backups_dir = os.path.abspath(get_backup_directory(homedir))
    except (OSError, SecurityViolation):
        return False

    resolved = os.path.abspath(backup_path)
    if not resolved.startswith(backups_dir + os.sep):
        return False
    relative = os.path.relpath(resolved, backups_dir)
    return not relative.startswith("..") and not os.path.isabs(relative)


def generate_unique_backup_path(skill_name: str, homedir: str | Path | None = None) -> Path:
    backups_dir = get_backup_directory(homedir)

    for _ in range(MAX_COLLISION_RETRIES):
        candidate = backups_dir / generate_backup_filename(skill_name)
        if not candidate.exists():
            return candidate
        logger.warning("Backup filename collision, retrying", filename=candidate.name)

    base = generate_backup_filename(skill_name).removesuffix(PACKAGE_EXTENSION)
    for suffix in range(1, MAX_SUFFIX_ATTEMPTS + 1):
        candidate = backups_dir / f"{base}-{suffix}{PACKAGE_EXTENSION}"
        if not candidate.exists():
            logger.warning("Using suffixed backup path", filename=candidate.name)
            return candidate

    raise OSError(f"Unable to generate unique backup filename after {MAX_SUFFIX_ATTEMPTS}+ attempts")


def create_backup_archive(
    skill_path: str | Path,
    backup_path: str | Path,
    homedir: str | Path | None = None,
    on_progress: Callable[[int, int], None] | None = None,
) -> int:
    """Zip the skill's regular files under a <skill-name>/ prefix. Returns the file count."""
    if not verify_backup_containment(backup_path, homedir):
        raise SecurityViolation(f"Security error: Backup path escapes backup directory: {backup_path}")

    skill_name = Path(skill_path).name
    total = 0
    if on_progress is not None:
        total = sum(1 for record in enumerate_skill_files(skill_path) if is_regular_file(record))

    file_count = 0
    fd = os.open(backup_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, FILE_MODE)
    with os.fdopen(fd, "wb") as f, zipfile.ZipFile(f, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(f"{skill_name}/", b"")
        for record in enumerate_skill_files(skill_path):
            if record.is_directory:
                zf.writestr(f"{skill_name}/{record.relative_path}/", b"")
                continue
            # Symlinks are never followed
            if record.is_symlink:
                continue
            zf.write(record.absolute_path, f"{skill_name}/{record.relative_path}")
            file_count += 1
            if on_progress is not None:
                on_progress(file_count, total)

    os.chmod(backup_path, FILE_MODE)
    return file_count


def create_backup(
    skill_path: str | Path,
    skill_name: str,
    homedir: str | Path | None = None,
    on_progress: Callable[[int, int], None] | None = None,
) -> BackupResult:
    """Snapshot an installed skill into a new archive in the backup directory."""
    if not os.path.isdir(skill_path) or os.path.islink(skill_path):
        return BackupResult(success=False, error=f"Skill path is not a directory: {skill_path}")

    validation = validate_backup_directory(homedir)
    if not validation.valid:
        return BackupResult(success=False, error="; ".join(validation.errors))
    for warning in validation.warnings:
        logger.warning("Backup directory permissions", detail=warning)

    writability = validate_backup_writability(homedir)
    if not writability.writable:
        return BackupResult(success=False, error=writability.error or "Backup directory is not writable")

    backup_path: Path | None = None
    try:
        backup_path = generate_unique_backup_path(skill_name, homedir)
        if not verify_backup_containment(backup_path, homedir):
            return BackupResult(
                success=False, path=str(backup_path), error="Security error: Generated backup path escapes backup directory"
            )

        file_count = create_backup_archive(skill_path, backup_path, homedir, on_progress)
        size = backup_path.stat().st_size
    except (OSError, SecurityViolation, zipfile.BadZipFile) as err:
        if backup_path is not None:
            with contextlib.suppress(FileNotFoundError):
                backup_path.unlink()
        return BackupResult(success=False, path=str(backup_path or ""), error=str(err))

    logger.info("Backup created", path=str(backup_path), files=file_count, size=size)
    return BackupResult(success=True, path=str(backup_path), size=size, file_count=file_count)


def get_backup_info(backup_path: str | Path) -> BackupInfo:
    st = os.stat(backup_path)
    match = _BACKUP_TIMESTAMP.search(Path(backup_path).name)
    if match:
        date, time = match.groups()
        timestamp = f"{date[:4]}-{date[4:6]}-{date[6:]}T{time[:2]}:{time[2:4]}:{time[4:]}Z"
    else:
        timestamp = datetime.fromtimestamp(st.st_mtime, tz=timezone.utc).isoformat()

    file_count = 0
    with contextlib.suppress(zipfile.BadZipFile, OSError), archive.open_archive(backup_path) as zf:
        file_count = sum(1 for info in zf.infolist() if not info.is_dir())
    return BackupInfo(path=str(backup_path), timestamp=timestamp, size=st.st_size, file_count=file_count)


def list_backups(skill_name: str, homedir: str | Path | None = None) -> list[Path]:
    """Backups for skill_name, newest first."""
    backups_dir = get_backup_directory(homedir)
    pattern = re.compile(rf"^{re.escape(skill_name)}-\d{{8}}-\d{{6}}-[a-f0-9]+(-\d+)?{re.escape(PACKAGE_EXTENSION)}$")
    try:
        names = [name for name in os.listdir(backups_dir) if pattern.match(name)]
    except OSError:
        return []
    return [backups_dir / name for name in sorted(names, reverse=True)]


def _check_backup_file(backup_path: str | Path) -> None:
    st = os.lstat(backup_path)
    if stat.S_ISLNK(st.st_mode):
        raise SecurityViolation(f"Security error: Backup file is a symlink: {backup_path}")
    if not stat.S_ISREG(st.st_mode):
        raise OSError(f"Backup file is not a regular file: {backup_path}")


def cleanup_backup(backup_path: str | Path, homedir: str | Path | None = None) -> None:
    """Delete a backup, re-verifying containment first."""
    if not verify_backup_containment(backup_path, homedir):
        raise SecurityViolation(f"Security error: Cannot delete file outside backup directory: {backup_path}")
    _check_backup_file(backup_path)
    os.unlink(backup_path)
    logger.info("Backup deleted", path=str(backup_path))


def restore_from_backup(
    backup_path: str | Path, target_parent: str | Path, homedir: str | Path | None = None
) -> RestoreResult:
    """Extract a backup archive into the skill's parent directory."""
    if not verify_backup_containment(backup_path, homedir):
        return RestoreResult(
            success=False, error=f"Security error: Backup path escapes backup directory: {backup_path}"
        )
    try:
        _check_backup_file(backup_path)
    except FileNotFoundError:
        return RestoreResult(success=False, error=f"Backup file not found or is not a regular file: {backup_path}")
    except (OSError, SecurityViolation) as err:
        return RestoreResult(success=False, error=str(err))

    try:
        with archive.open_archive(backup_path) as zf:
            file_count = sum(1 for info in zf.infolist() if not info.is_dir())
            archive.extract_to_directory(zf, target_parent)
    except (OSError, SecurityViolation, zipfile.BadZipFile) as err:
        return RestoreResult(success=False, error=str(err))

    logger.info("Backup restored", path=str(backup_path), target=str(target_parent), files=file_count)
    return RestoreResult(success=True, file_count=file_count)
