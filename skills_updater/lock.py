"""Per-skill advisory lock files."""

from __future__ import annotations

import contextlib
import json
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from .constants import STALE_LOCK_TIMEOUT_S, UNINSTALL_LOCK_EXTENSION, UPDATE_LOCK_EXTENSION
from .errors import FileSystemUpdateError, UpdateFailed, ValidationUpdateError
from .logger import logger
from .types import LockAcquired, LockInfo, LockNotAcquired

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from .types import LockAcquisitionResult

_VERBS = {"update": "updated", "uninstall": "uninstalled"}


def get_lock_path(skill_path: str | Path, extension: str = UPDATE_LOCK_EXTENSION) -> Path:
    """<parent>/<skill-name><extension>"""
    skill_path = Path(skill_path)
    return skill_path.parent / f"{skill_path.name}{extension}"


def _lock_age(lock_path: Path) -> float:
    return time.time() - os.stat(lock_path).st_mtime


def read_lock_info(lock_path: str | Path) -> LockInfo | None:
    try:
        return LockInfo.model_validate(json.loads(Path(lock_path).read_text(encoding="utf-8")))
    except (OSError, ValueError, ValidationError):
        return None


def _write_lock(lock_path: Path, info: LockInfo) -> None:
    # Atomic creation -- fails if file already exists
    fd = os.open(str(lock_path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
    try:
        os.write(fd, info.model_dump_json(by_alias=True, exclude_none=True).encode())
    finally:
        os.close(fd)


def _acquire(skill_path: Path, lock_path: Path, info: LockInfo) -> LockAcquisitionResult:
    skill_name = skill_path.name
    verb = _VERBS[info.operation_type]

    try:
        age = _lock_age(lock_path)
    except FileNotFoundError:
        age = None
    except OSError as err:
        return LockNotAcquired(
            lock_path=str(lock_path),
            error=f"Failed to acquire {info.operation_type} lock: {err}",
            operation="write",
        )

    if age is not None:
        if age > STALE_LOCK_TIMEOUT_S:
            with contextlib.suppress(FileNotFoundError):
                lock_path.unlink()
            logger.warning("Removed stale lock", path=str(lock_path), age_s=int(age))
        else:
            existing = read_lock_info(lock_path)
            pid = existing.pid if existing else None
            return LockNotAcquired(
                lock_path=str(lock_path),
                error=f'Skill "{skill_name}" is currently being {verb} by another process (PID: {pid or "unknown"})',
                details=[
                    f"Lock acquired: {existing.timestamp if existing else 'unknown'}",
                    f"If the previous {info.operation_type} was interrupted, remove the lock file:",
                    f'  rm "{lock_path}"',
                ],
                owner_pid=pid,
            )

    try:
        _write_lock(lock_path, info)
    except FileExistsError:
        # Another process won the race
        return LockNotAcquired(
            lock_path=str(lock_path),
            error=f'Skill "{skill_name}" is currently being {verb} by another process',
        )
    except OSError as err:
        return LockNotAcquired(
            lock_path=str(lock_path),
            error=f"Failed to acquire {info.operation_type} lock: {err}",
            operation="write",
        )

    logger.debug("Lock acquired", path=str(lock_path), pid=info.pid)
    return LockAcquired(lock_path=str(lock_path))


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def acquire_update_lock(skill_path: str | Path, package_path: str | Path) -> LockAcquisitionResult:
    """Create the update lock for skill_path. A lock older than five minutes is replaced."""
    skill_path = Path(skill_path)
    info = LockInfo(
        pid=os.getpid(),
        timestamp=_now_iso(),
        operation_type="update",
        skill_path=str(skill_path),
        package_path=str(package_path),
    )
    return _acquire(skill_path, get_lock_path(skill_path), info)


def acquire_uninstall_lock(skill_path: str | Path) -> LockAcquisitionResult:
    skill_path = Path(skill_path)
    info = LockInfo(pid=os.getpid(), timestamp=_now_iso(), operation_type="uninstall", skill_path=str(skill_path))
    return _acquire(skill_path, get_lock_path(skill_path, UNINSTALL_LOCK_EXTENSION), info)


def release_update_lock(lock_path: str | Path) -> None:
    """Delete the lock file. Never raises."""
    try:
        os.unlink(lock_path)
        logger.debug("Lock released", path=str(lock_path))
    except OSError:
        pass


release_uninstall_lock = release_update_lock


def has_update_lock(skill_path: str | Path) -> bool:
    """True when a fresh (non-stale) update lock exists."""
    try:
        return _lock_age(get_lock_path(skill_path)) <= STALE_LOCK_TIMEOUT_S
    except OSError:
        return False


def lock_failure(result: LockNotAcquired) -> ValidationUpdateError | FileSystemUpdateError:
    if result.operation == "write":
        return FileSystemUpdateError(operation="write", path=result.lock_path, message=result.error)
    return ValidationUpdateError(field="skill_name", message=result.error, details=result.details or None)


@contextlib.asynccontextmanager
async def update_lock(skill_path: str | Path, package_path: str | Path) -> AsyncIterator[str]:
    """Hold the update lock for the duration of the block.

    Raises UpdateFailed when the lock is held elsewhere. Released on every exit.
    """
    result = acquire_update_lock(skill_path, package_path)
    if not result.acquired:
        raise UpdateFailed(lock_failure(result))
    try:
        yield result.lock_path
    finally:
        release_update_lock(result.lock_path)
