"""Validation, discovery and security phases of a skill update.

Each phase takes the accumulated UpdateContext (or the raw inputs) and either
returns an extended copy or raises UpdateFailed with exactly one error.
"""

from __future__ import annotations

import asyncio
import shutil
import tempfile
import threading
import zipfile
from pathlib import Path
from typing import TYPE_CHECKING

from . import archive, comparator, discovery, security, validation
from .cancellation import check_aborted, run_blocking, with_timeout
from .constants import SCRATCH_PREFIX
from .enumerator import check_resource_limits, get_skill_summary
from .errors import (
    FileSystemUpdateError,
    PackageMismatchError,
    SecurityUpdateError,
    SecurityViolation,
    SkillNotFoundError,
    UpdateFailed,
    ValidationUpdateError,
)
from .logger import logger
from .scope import resolve_scope
from .types import HardLinkCheckResult, ScopeInfo, SkillFound, UpdateContext

if TYPE_CHECKING:
    from .errors import UpdateError
    from .types import UpdateOptions


def cleanup_temp_directory(temp_dir: str | None) -> None:
    if not temp_dir:
        return
    try:
        shutil.rmtree(temp_dir)
    except FileNotFoundError:
        pass
    except OSError as err:
        logger.warning("Failed to remove scratch directory", path=temp_dir, error=str(err))


# --- Phase 1: validation ---


def validate_inputs(skill_name: str, package_path: str, options: UpdateOptions) -> tuple[ScopeInfo, str]:
    """Check name, scope and package file; the first failure wins."""
    name_result = validation.validate_skill_name(skill_name)
    if not name_result.valid:
        raise UpdateFailed(ValidationUpdateError(field="skill_name", message=name_result.error or "Invalid skill name"))

    scope_result = validation.validate_scope(options.scope)
    if not scope_result.valid:
        raise UpdateFailed(ValidationUpdateError(field="scope", message=scope_result.error or "Invalid scope"))

    package_result = validation.validate_package_file(package_path)
    if not package_result.valid or package_result.package_path is None:
        raise UpdateFailed(
            ValidationUpdateError(field="package_path", message=package_result.error or "Invalid package file")
        )

    scope_info = resolve_scope(options.scope, cwd=options.cwd, homedir=options.homedir)
    return scope_info, package_result.package_path


# --- Phase 2: discovery ---


def discover_installed_skill(skill_name: str, scope_info: ScopeInfo) -> SkillFound:
    result = discovery.discover_skill(skill_name, scope_info)
    if result.type == "not-found":
        raise UpdateFailed(SkillNotFoundError(skill_name=skill_name, searched_path=result.searched_path))
    if result.type == "case-mismatch":
        raise UpdateFailed(
            SecurityUpdateError(
                reason="case-mismatch",
                details=(
                    "Security error: Skill name case mismatch. "
                    f"Input: '{result.expected_name}', Actual: '{result.actual_name}'. "
                    f"Use the exact case: '{result.actual_name}'"
                ),
            )
        )
    return result


def verify_case_sensitivity(skill_path: str, skill_name: str) -> UpdateError | None:
    """Second, independent byte-for-byte check of the entry name in the parent directory."""
    result = discovery.verify_case_sensitivity(skill_path, skill_name)
    if result.type == "match":
        return None
    if result.type == "mismatch":
        return SecurityUpdateError(
            reason="case-mismatch",
            details=(
                "Security error: Skill name case mismatch. "
                f"Input: '{skill_name}', Actual: '{result.actual_name}'. "
                f"Use the exact case: '{result.actual_name}'"
            ),
        )
    if result.message.startswith("Entry not found"):
        return SecurityUpdateError(reason="case-mismatch", details=result.message)
    return FileSystemUpdateError(
        operation="readdir",
        path=str(Path(skill_path).parent),
        message=f"Failed to verify case sensitivity: {result.message}",
    )


def _check_package_structure(package_path: str, installed_skill_name: str) -> tuple[str, list[str]]:
    with archive.open_archive(package_path) as zf:
        structure = validation.validate_package_structure(zf)
        if not structure.valid or structure.root_directory is None:
            raise UpdateFailed(
                ValidationUpdateError(field="package_content", message=structure.error or "Invalid package structure")
            )
        root_dir = structure.root_directory

        name_result = validation.validate_name_match(zf)
        if not name_result.valid:
            raise UpdateFailed(
                ValidationUpdateError(field="package_content", message=name_result.error or "Package name mismatch")
            )

        if root_dir != installed_skill_name:
            raise UpdateFailed(
                PackageMismatchError(
                    installed_skill_name=installed_skill_name,
                    package_skill_name=root_dir,
                    message=(
                        f"Package contains skill '{root_dir}' but trying to update "
                        f"'{installed_skill_name}'. The package skill name must match the installed skill."
                    ),
                )
            )

        prefix = f"{root_dir}/"
        files = [
            name.removeprefix(prefix)
            for name in archive.list_entries(zf)
            if not archive.is_directory_entry(name)
        ]
    return root_dir, files


def _extract_package(package_path: str, temp_dir: str, stop: threading.Event) -> str:
    with archive.open_archive(package_path) as zf:
        return archive.extract_to_directory(zf, temp_dir, stop)


async def extract_package(package_path: str, temp_dir: str, timeout_s: float) -> str:
    """Extract into temp_dir under a deadline.

    On timeout or cancellation the worker is told to stop and awaited, so
    nothing writes into temp_dir once this returns or raises.
    """
    stop = threading.Event()
    future = asyncio.get_running_loop().run_in_executor(None, _extract_package, package_path, temp_dir, stop)
    try:
        return await with_timeout(asyncio.shield(future), timeout_s, "extraction")
    except (UpdateFailed, asyncio.CancelledError):
        stop.set()
        await asyncio.gather(future, return_exceptions=True)
        raise


async def validate_package(
    package_path: str, installed_skill_name: str, options: UpdateOptions
) -> tuple[str, list[str], str]:
    """Structure, name match, package mismatch, extraction, then content checks.

    Returns (skill name from package, package file list, scratch directory).
    The scratch directory is removed here on every failure.
    """
    timeouts = options.timeouts
    try:
        root_dir, files = await with_timeout(
            run_blocking(_check_package_structure, package_path, installed_skill_name),
            timeouts.validation_timeout,
            "package-validation",
        )
    except (zipfile.BadZipFile, OSError, UnicodeDecodeError) as err:
        raise UpdateFailed(
            ValidationUpdateError(field="package_content", message=f"Package validation failed: {err}")
        ) from err

    temp_dir = tempfile.mkdtemp(prefix=SCRATCH_PREFIX)
    try:
        try:
            await extract_package(package_path, temp_dir, timeouts.extraction_timeout)
        except SecurityViolation as err:
            raise UpdateFailed(SecurityUpdateError(reason=err.reason, details=str(err))) from err
        except (zipfile.BadZipFile, OSError) as err:
            raise UpdateFailed(
                FileSystemUpdateError(
                    operation="extract", path=package_path, message=f"Failed to extract package: {err}"
                )
            ) from err

        content = validation.validate_skill_content(Path(temp_dir) / root_dir)
        if not content.valid:
            raise UpdateFailed(
                ValidationUpdateError(
                    field="package_content",
                    message="Package content validation failed",
                    details=content.errors,
                )
            )
    except BaseException:
        cleanup_temp_directory(temp_dir)
        raise

    return root_dir, files, temp_dir


async def run_input_and_discovery_phase(
    skill_name: str,
    package_path: str,
    options: UpdateOptions,
    signal: asyncio.Event | None = None,
) -> UpdateContext:
    logger.debug("Update phase", phase="validation", skill=skill_name)
    scope_info, validated_package = validate_inputs(skill_name, package_path, options)
    check_aborted(signal, "validation")

    logger.debug("Update phase", phase="discovery", skill=skill_name)
    found = discover_installed_skill(skill_name, scope_info)
    case_error = verify_case_sensitivity(found.path, skill_name)
    if case_error is not None:
        raise UpdateFailed(case_error)
    check_aborted(signal, "discovery")

    logger.debug("Update phase", phase="package-validation", skill=skill_name)
    root_dir, files, temp_dir = await validate_package(validated_package, skill_name, options)
    if signal is not None and signal.is_set():
        cleanup_temp_directory(temp_dir)
        check_aborted(signal, "package-validation")

    return UpdateContext(
        skill_name=skill_name,
        scope_info=scope_info,
        package_path=validated_package,
        skill_path=found.path,
        has_skill_md=found.has_skill_md,
        skill_name_from_package=root_dir,
        package_files=files,
        temp_dir=temp_dir,
    )


# --- Phase 3: security-check ---


def check_skill_symlink_safety(skill_path: str, scope_path: str) -> list[str]:
    result = security.check_symlink_safety(skill_path, scope_path)
    if result.type == "escape":
        raise UpdateFailed(
            SecurityUpdateError(
                reason="symlink-escape",
                details=(
                    "Skill directory is a symlink that escapes the scope boundary. "
                    f"Target: {result.target_path}, Scope: {result.scope_boundary}"
                ),
            )
        )
    if result.type == "error":
        raise UpdateFailed(FileSystemUpdateError(operation="stat", path=skill_path, message=result.message))

    warnings = []
    if result.is_symlink:
        warnings.append(f"Skill directory is a symlink to {result.resolved_path}")
    summary = security.get_symlink_summary(skill_path)
    if summary.warning:
        warnings.append(summary.warning)
    return warnings


def check_skill_hard_links(skill_path: str, force: bool) -> HardLinkCheckResult:
    warning = security.detect_hard_link_warnings(skill_path)
    if warning is None:
        return HardLinkCheckResult(has_hard_links=False, hard_linked_files=[], requires_force=False)
    if not force:
        raise UpdateFailed(SecurityUpdateError(reason="hard-link-detected", details=warning.message))
    logger.warning("Proceeding with hard-linked files", count=warning.count)
    return HardLinkCheckResult(has_hard_links=True, hard_linked_files=warning.files, requires_force=False)


def check_package_entries(package_path: str, root_dir: str) -> list[str]:
    result = security.validate_zip_entry_security(package_path, root_dir)
    if result.type == "unsafe":
        raise UpdateFailed(SecurityUpdateError(reason=result.reason, details=result.details))
    if result.type == "error":
        raise UpdateFailed(FileSystemUpdateError(operation="read", path=package_path, message=result.message))
    return result.warnings


def check_update_resource_limits(context: UpdateContext, force: bool) -> None:
    """Both the installed tree and the incoming tree must be within limits unless forced."""
    for tree in (context.skill_path, context.extracted_skill_dir):
        if tree is None:
            continue
        result = check_resource_limits(get_skill_summary(tree))
        if result.type == "exceeded" and not force:
            raise UpdateFailed(
                ValidationUpdateError(
                    field="package_content",
                    message=f"Resource limits exceeded. {'. '.join(result.warnings)}. Use --force to bypass.",
                    details=result.warnings,
                )
            )


def verify_path_containment(target_path: str, scope_path: str) -> None:
    error = security.verify_path_containment(target_path, scope_path)
    if error is not None:
        raise UpdateFailed(error)


async def analyze_versions(context: UpdateContext, options: UpdateOptions) -> UpdateContext:
    try:
        installed_info = await run_blocking(comparator.get_installed_version_info, context.skill_path)
        package_info = await run_blocking(comparator.get_package_version_info, context.package_path)
        comparison = await comparator.compare_versions(
            context.skill_path, context.package_path, thorough=options.thorough
        )
        downgrade = comparator.detect_downgrade(
            comparator.extract_metadata(context.skill_path),
            comparator.extract_package_metadata(context.package_path),
        )
    except (OSError, zipfile.BadZipFile) as err:
        raise UpdateFailed(
            FileSystemUpdateError(operation="read", path=context.skill_path, message=f"Version analysis failed: {err}")
        ) from err

    return context.model_copy(
        update={
            "comparison": comparison,
            "installed_info": installed_info,
            "package_info": package_info,
            "downgrade_info": downgrade,
        }
    )


async def run_security_and_analysis_phase(
    context: UpdateContext, options: UpdateOptions, signal: asyncio.Event | None = None
) -> UpdateContext:
    """Safety checks in fixed order, version comparison last."""
    logger.debug("Update phase", phase="security-check", skill=context.skill_name)
    warnings = check_skill_symlink_safety(context.skill_path, context.scope_info.path)
    hard_links = check_skill_hard_links(context.skill_path, options.force)
    warnings.extend(check_package_entries(context.package_path, context.skill_name_from_package))
    check_update_resource_limits(context, options.force)
    verify_path_containment(context.skill_path, context.scope_info.path)
    check_aborted(signal, "security-check")

    context = context.model_copy(update={"security_warnings": warnings, "hard_link_check": hard_links})

    logger.debug("Update phase", phase="comparison", skill=context.skill_name)
    context = await analyze_versions(context, options)
    check_aborted(signal, "comparison")
    return context
