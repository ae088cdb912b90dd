"""Update orchestration: preparation, execution, rollback and cleanup."""

from __future__ import annotations

import asyncio
import os
import secrets
import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from . import messages
from .backup import cleanup_backup, create_backup, generate_unique_backup_path, restore_from_backup, validate_backup_writability
from .cancellation import check_aborted, run_blocking, with_timeout
from .constants import SKILL_MD, STAGING_PREFIX, STAGING_SUFFIX
from .discovery import verify_skill_md
from .errors import BackupCreationError, OperationCancelled, SecurityViolation, UpdateFailed, ValidationUpdateError
from .lock import update_lock
from .logger import logger
from .preflight import cleanup_temp_directory, run_input_and_discovery_phase, run_security_and_analysis_phase
from .security import verify_path_containment
from .types import (
    UpdateCancelled,
    UpdateDryRunPreview,
    UpdateOptions,
    UpdateRollbackFailed,
    UpdateRolledBack,
    UpdateSuccess,
    VersionComparison,
    VersionInfo,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .types import BackupResult, UpdateContext, UpdateResult

    ConfirmFn = Callable[[str], Awaitable[bool]]

DEFAULT_BACKUP_LOCATION = "~/.asm/backups/"


# --- Preparation ---


async def create_update_backup(context: UpdateContext, options: UpdateOptions) -> BackupResult | None:
    """Back up the installed skill. Returns None when backups are disabled."""
    if options.no_backup:
        return None

    writability = await run_blocking(validate_backup_writability, options.homedir)
    if not writability.writable:
        raise UpdateFailed(
            BackupCreationError(
                backup_path=DEFAULT_BACKUP_LOCATION,
                reason=writability.error or "Backup directory is not writable",
            )
        )

    result = await with_timeout(
        run_blocking(create_backup, context.skill_path, context.skill_name, options.homedir),
        options.timeouts.backup_timeout,
        "backup",
    )
    if not result.success:
        raise UpdateFailed(
            BackupCreationError(
                backup_path=result.path or DEFAULT_BACKUP_LOCATION,
                reason=result.error or "Backup creation failed",
            )
        )
    return result


async def default_confirm(question: str) -> bool:
    answer = await run_blocking(input, f"{question} [y/N] ")
    return answer.strip().lower() in ("y", "yes")


async def confirm_update(
    context: UpdateContext,
    options: UpdateOptions,
    backup_path: str,
    confirm_fn: ConfirmFn | None = None,
) -> bool:
    """Show the update summary and ask for confirmation. Forced updates skip the prompt."""
    if options.force:
        return True

    current = context.installed_info or VersionInfo(path=context.skill_path, file_count=0, size=0)
    new = context.package_info or VersionInfo(
        path=context.package_path, file_count=len(context.package_files), size=0
    )
    prompt = messages.format_confirmation_prompt(
        context.skill_name, current, new, context.comparison or VersionComparison(), backup_path
    )
    if context.downgrade_info is not None and context.downgrade_info.is_downgrade:
        prompt = messages.format_downgrade_warning(context.downgrade_info) + prompt
    print(prompt)

    return await (confirm_fn or default_confirm)("Proceed with update?")


def discard_backup(backup_path: str | None, homedir: str | None) -> None:
    """Delete a backup created by this run. Failure is logged, not raised."""
    if not backup_path:
        return
    try:
        cleanup_backup(backup_path, homedir)
    except (OSError, SecurityViolation) as err:
        logger.warning("Failed to delete backup", path=backup_path, error=str(err))


async def run_preparation_phase(
    context: UpdateContext,
    options: UpdateOptions,
    confirm_fn: ConfirmFn | None = None,
    signal: asyncio.Event | None = None,
) -> UpdateContext | None:
    """Back up, then confirm. Must run while the update lock is held.

    Returns None when the user declines; the fresh backup is deleted first.
    """
    logger.debug("Update phase", phase="backup", skill=context.skill_name)
    backup = await create_update_backup(context, options)
    created_path = backup.path if backup is not None else None

    try:
        if backup is None:
            if not options.quiet:
                print(messages.format_no_backup_warning())
            display_path = str(await run_blocking(generate_unique_backup_path, context.skill_name, options.homedir))
        else:
            display_path = backup.path
            if not options.quiet:
                print(messages.format_backup_created(display_path))
        check_aborted(signal, "backup")

        logger.debug("Update phase", phase="confirmation", skill=context.skill_name)
        confirmed = await confirm_update(context, options, display_path, confirm_fn)
        check_aborted(signal, "confirmation")
    except BaseException:
        discard_backup(created_path, options.homedir)
        raise

    if not confirmed:
        logger.info("Update declined", skill=context.skill_name)
        discard_backup(created_path, options.homedir)
        return None

    return context.model_copy(
        update={
            "backup_path": created_path,
            "backup_file_count": backup.file_count if backup is not None else None,
            "backup_size": backup.size if backup is not None else None,
            "backup_skipped": backup is None,
        }
    )


# --- Execution ---


def staging_path_for(skill_path: str | Path) -> Path:
    """Hidden sibling that holds the previous tree while the new one is moved in."""
    skill_path = Path(skill_path)
    return skill_path.parent / f"{STAGING_PREFIX}{skill_path.name}{STAGING_SUFFIX}{secrets.token_hex(4)}"


def _remove_tree(path: str | Path) -> None:
    if os.path.islink(path):
        os.unlink(path)
    else:
        shutil.rmtree(path)


def execute_update(context: UpdateContext, staging_path: Path) -> None:
    """Swap the extracted package into the skill's location."""
    error = verify_path_containment(context.skill_path, context.scope_info.path)
    if error is not None:
        raise UpdateFailed(error)
    source = context.extracted_skill_dir
    if source is None or not os.path.isdir(source):
        raise FileNotFoundError(f"Extracted package not found: {source}")

    os.rename(context.skill_path, staging_path)
    shutil.move(source, context.skill_path)

    logger.debug("Update phase", phase="post-validation", skill=context.skill_name)
    if verify_skill_md(context.skill_path).type != "present":
        raise UpdateFailed(
            ValidationUpdateError(
                field="package_content",
                message=f"Post-update validation failed: {SKILL_MD} missing after update",
            )
        )


def _restore_staged(staging_path: Path, skill_path: Path) -> None:
    if os.path.lexists(skill_path):
        _remove_tree(skill_path)
    os.rename(staging_path, skill_path)


def rollback_update(context: UpdateContext, staging_path: Path, homedir: str | None = None) -> str | None:
    """Put the previous tree back. Returns None on success, else the failure reason."""
    skill_path = Path(context.skill_path)

    if not os.path.lexists(staging_path):
        if os.path.lexists(skill_path):
            # Nothing was moved yet
            return None
        staged_error = "installed skill directory is missing"
    else:
        try:
            _restore_staged(staging_path, skill_path)
            return None
        except OSError as err:
            staged_error = str(err)

    if not context.backup_path:
        return f"Could not restore previous version ({staged_error}) and no backup is available"

    try:
        if os.path.lexists(skill_path):
            _remove_tree(skill_path)
    except OSError as err:
        return f"Could not restore previous version ({staged_error}); failed to clear {skill_path}: {err}"

    restored = restore_from_backup(context.backup_path, skill_path.parent, homedir)
    if not restored.success:
        return f"Could not restore previous version ({staged_error}); backup restore failed: {restored.error}"

    try:
        if os.path.lexists(staging_path):
            _remove_tree(staging_path)
    except OSError as err:
        logger.warning("Failed to remove staged previous version", path=str(staging_path), error=str(err))
    return None


def apply_update(context: UpdateContext, options: UpdateOptions) -> UpdateSuccess | UpdateRolledBack | UpdateRollbackFailed:
    """Execute the update and roll back on failure. Runs start to finish in one call."""
    staging_path = staging_path_for(context.skill_path)
    logger.info("Applying update", skill=context.skill_name, path=context.skill_path)

    try:
        execute_update(context, staging_path)
    except (UpdateFailed, OSError) as err:
        reason = str(err)
        logger.error("Update execution failed", skill=context.skill_name, error=reason)
        rollback_error = rollback_update(context, staging_path, options.homedir)
        if rollback_error is None:
            logger.warning("Update rolled back", skill=context.skill_name, backup=context.backup_path)
            return UpdateRolledBack(
                skill_name=context.skill_name,
                path=context.skill_path,
                failure_reason=reason,
                backup_path=context.backup_path,
            )
        logger.error("Rollback failed", skill=context.skill_name, error=rollback_error)
        return UpdateRollbackFailed(
            skill_name=context.skill_name,
            path=context.skill_path,
            update_failure_reason=reason,
            rollback_failure_reason=rollback_error,
            backup_path=context.backup_path,
            recovery_instructions=messages.recovery_instructions(
                context.skill_name, context.skill_path, context.backup_path
            ),
        )

    try:
        _remove_tree(staging_path)
    except OSError as err:
        logger.warning("Failed to remove staged previous version", path=str(staging_path), error=str(err))

    installed = context.installed_info
    package = context.package_info
    logger.info("Update applied", skill=context.skill_name)
    return UpdateSuccess(
        skill_name=context.skill_name,
        path=context.skill_path,
        previous_file_count=installed.file_count if installed else 0,
        current_file_count=package.file_count if package else len(context.package_files),
        previous_size=installed.size if installed else 0,
        current_size=package.size if package else 0,
        backup_path=context.backup_path,
        backup_will_be_removed=not options.keep_backup and not context.backup_skipped,
    )


async def run_execution_phase(
    context: UpdateContext, options: UpdateOptions
) -> UpdateSuccess | UpdateRolledBack | UpdateRollbackFailed:
    loop = asyncio.get_running_loop()
    future = loop.run_in_executor(None, apply_update, context, options)
    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        # Execution runs to completion before the lock is released
        await future
        raise


# --- Orchestration ---


async def _dry_run_preview(context: UpdateContext, options: UpdateOptions) -> UpdateDryRunPreview:
    preview_path = await run_blocking(generate_unique_backup_path, context.skill_name, options.homedir)
    return UpdateDryRunPreview(
        skill_name=context.skill_name,
        path=context.skill_path,
        current_version=context.installed_info or VersionInfo(path=context.skill_path, file_count=0, size=0),
        new_version=context.package_info
        or VersionInfo(path=context.package_path, file_count=len(context.package_files), size=0),
        comparison=context.comparison or VersionComparison(),
        downgrade_info=context.downgrade_info,
        backup_path=str(preview_path),
    )


async def _run_update(
    skill_name: str,
    package_path: str,
    options: UpdateOptions,
    confirm_fn: ConfirmFn | None,
    signal: asyncio.Event | None,
) -> UpdateResult:
    check_aborted(signal, "start")
    context = await run_input_and_discovery_phase(skill_name, package_path, options, signal)

    try:
        context = await run_security_and_analysis_phase(context, options, signal)
        if options.dry_run:
            return await _dry_run_preview(context, options)

        async with update_lock(context.skill_path, context.package_path) as lock_path:
            context = context.model_copy(update={"lock_path": lock_path})
            prepared = await run_preparation_phase(context, options, confirm_fn, signal)
            if prepared is None:
                return UpdateCancelled(skill_name=skill_name, reason="user-cancelled", cleanup_performed=True)
            context = prepared

            try:
                check_aborted(signal, "execution")
            except OperationCancelled:
                discard_backup(context.backup_path, options.homedir)
                raise

            logger.debug("Update phase", phase="execution", skill=skill_name)
            result = await run_execution_phase(context, options)
    finally:
        cleanup_temp_directory(context.temp_dir)

    logger.debug("Update phase", phase="cleanup", skill=skill_name)
    if result.type == "update-success" and result.backup_will_be_removed:
        discard_backup(context.backup_path, options.homedir)
    return result


async def update_skill(
    skill_name: str,
    package_path: str,
    options: UpdateOptions | None = None,
    confirm_fn: ConfirmFn | None = None,
    signal: asyncio.Event | None = None,
) -> UpdateResult:
    """Replace an installed skill with the contents of a new package.

    Returns one of the terminal results. Failures before execution raise
    UpdateFailed carrying exactly one UpdateError; the scratch directory and
    the lock are released first.
    """
    options = options or UpdateOptions()
    try:
        return await with_timeout(
            _run_update(skill_name, package_path, options, confirm_fn, signal),
            options.timeouts.update_timeout,
            "update",
        )
    except OperationCancelled:
        return UpdateCancelled(skill_name=skill_name, reason="interrupted", cleanup_performed=True)
