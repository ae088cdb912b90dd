"""Batch removal of installed skills."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

from .cancellation import check_aborted, run_blocking
from .discovery import discover_skill
from .errors import FileSystemUpdateError, SecurityUpdateError, UpdateFailed, ValidationUpdateError
from .enumerator import enumerate_skill_files
from .lock import acquire_uninstall_lock, lock_failure, release_uninstall_lock
from .logger import logger
from .scope import resolve_scope
from .security import check_symlink_safety, detect_hard_link_warnings, verify_path_containment
from .types import ScopeInfo, UninstallOptions, UninstallSummary
from .validation import validate_scope, validate_skill_name

if TYPE_CHECKING:
    import asyncio
    from collections.abc import Sequence


def remove_skill_tree(skill_path: str | Path) -> int:
    """Delete a skill directory without following symlinks. Returns entries removed."""
    records = list(enumerate_skill_files(skill_path))
    removed = 0
    for record in records:
        if not record.is_directory:
            os.unlink(record.absolute_path)
            removed += 1
    # Deepest directories first
    directories = sorted(
        (record for record in records if record.is_directory),
        key=lambda record: record.relative_path.count("/"),
        reverse=True,
    )
    for record in directories:
        os.rmdir(record.absolute_path)
        removed += 1
    os.rmdir(skill_path)
    return removed


def uninstall_skill(skill_name: str, scope_info: ScopeInfo, options: UninstallOptions) -> bool:
    """Remove one skill. Returns False when it is not installed."""
    result = discover_skill(skill_name, scope_info)
    if result.type == "not-found":
        return False
    if result.type == "case-mismatch":
        raise UpdateFailed(
            SecurityUpdateError(
                reason="case-mismatch",
                details=f"Input: '{result.expected_name}', Actual: '{result.actual_name}'",
            )
        )
    skill_path = result.path

    symlink = check_symlink_safety(skill_path, scope_info.path)
    if symlink.type == "escape":
        raise UpdateFailed(
            SecurityUpdateError(
                reason="symlink-escape",
                details=f"Skill directory points outside {symlink.scope_boundary}: {symlink.target_path}",
            )
        )
    if symlink.type == "error":
        raise UpdateFailed(FileSystemUpdateError(operation="stat", path=skill_path, message=symlink.message))

    if not os.path.islink(skill_path):
        hard_links = detect_hard_link_warnings(skill_path)
        if hard_links is not None and not options.force:
            raise UpdateFailed(SecurityUpdateError(reason="hard-link-detected", details=hard_links.message))

    if options.dry_run:
        return True

    lock = acquire_uninstall_lock(skill_path)
    if not lock.acquired:
        raise UpdateFailed(lock_failure(lock))
    try:
        error = verify_path_containment(skill_path, scope_info.path)
        if error is not None:
            raise UpdateFailed(error)
        if os.path.islink(skill_path):
            os.unlink(skill_path)
            removed = 1
        else:
            removed = remove_skill_tree(skill_path)
    finally:
        release_uninstall_lock(lock.lock_path)

    logger.info("Skill removed", skill=skill_name, path=skill_path, entries=removed)
    return True


async def uninstall_skills(
    names: Sequence[str],
    options: UninstallOptions | None = None,
    signal: asyncio.Event | None = None,
) -> UninstallSummary:
    """Remove several skills in order, polling the cancellation signal around each one."""
    options = options or UninstallOptions()
    check_aborted(signal, "uninstall")

    for name in names:
        result = validate_skill_name(name)
        if not result.valid:
            raise UpdateFailed(ValidationUpdateError(field="skill_name", message=f"{name!r}: {result.error}"))

    scope_result = validate_scope(options.scope)
    if not scope_result.valid:
        raise UpdateFailed(ValidationUpdateError(field="scope", message=scope_result.error or "Invalid scope"))

    scope_info = resolve_scope(options.scope, cwd=options.cwd, homedir=options.homedir)
    removed: list[str] = []
    not_found: list[str] = []
    for name in names:
        check_aborted(signal, f"uninstall of {name}")
        if await run_blocking(uninstall_skill, name, scope_info, options):
            removed.append(name)
        else:
            not_found.append(name)
        check_aborted(signal, f"uninstall of {name}")

    return UninstallSummary(removed=removed, not_found=not_found, dry_run=options.dry_run)
