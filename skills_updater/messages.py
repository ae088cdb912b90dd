"""User-facing text for update prompts and results."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from .comparator import format_diff_line
from .enumerator import format_file_size

if TYPE_CHECKING:
    from .types import DowngradeInfo, UpdateRolledBack, UpdateRollbackFailed, UpdateSuccess, VersionComparison, VersionInfo

MAX_LISTED_CHANGES = 10


def format_version_block(title: str, info: VersionInfo, location_label: str = "Location") -> str:
    lines = [f"{title}:", f"   {location_label}: {info.path}", f"   Files: {info.file_count} ({format_file_size(info.size)})"]
    if info.last_modified:
        lines.append(f"   Modified: {info.last_modified}")
    if info.description:
        lines.append(f"   Description: {info.description}")
    return "\n".join(lines)


def format_change_summary(comparison: VersionComparison, max_files: int = MAX_LISTED_CHANGES) -> str:
    lines = ["Changes:"]
    for label, changes in (
        ("added", comparison.files_added),
        ("modified", comparison.files_modified),
        ("removed", comparison.files_removed),
    ):
        lines.extend(f"   {format_diff_line(change)}" for change in changes[:max_files])
        if len(changes) > max_files:
            lines.append(f"   ... and {len(changes) - max_files} more {label} files")
    if len(lines) == 1:
        lines.append("   No file changes detected")
    return "\n".join(lines)


def format_confirmation_prompt(
    skill_name: str,
    current: VersionInfo,
    new: VersionInfo,
    comparison: VersionComparison,
    backup_path: str,
) -> str:
    return "\n".join(
        [
            f"Updating skill: {skill_name}",
            "",
            format_version_block("Current version", current),
            "",
            format_version_block("New version", new, location_label="Package"),
            "",
            format_change_summary(comparison),
            "",
            f"Backup location: {backup_path}",
            "",
            "This will replace the installed skill with the new version.",
        ]
    )


def format_downgrade_warning(info: DowngradeInfo) -> str:
    lines = ["", "WARNING: This appears to be a downgrade", f"   {info.message}"]
    if info.installed_date:
        lines.append(f"   Current version date: {info.installed_date}")
    if info.new_date:
        lines.append(f"   New package date: {info.new_date}")
    lines.append("")
    return "\n".join(lines)


def format_no_backup_warning() -> str:
    return (
        "WARNING: --no-backup is set. No backup will be created and the "
        "previous version cannot be restored if the update goes wrong."
    )


def format_backup_created(backup_path: str) -> str:
    return f"Backup created: {backup_path}"


def recovery_instructions(skill_name: str, skill_path: str, backup_path: str | None) -> str:
    """Manual steps for when both the update and the automatic rollback failed."""
    parent = os.path.dirname(skill_path)
    if backup_path:
        return (
            f'Remove the damaged installation with: rm -rf "{skill_path}" '
            f'then restore the previous version with: unzip "{backup_path}" -d "{parent}". '
            f"Check for a leftover .{skill_name}.asm-update-* directory beside it as well."
        )
    return (
        f'No backup exists. Check for a leftover .{skill_name}.asm-update-* directory beside "{skill_path}" '
        f"and rename it back to {skill_name}, or reinstall the skill from its package."
    )


def format_update_success(result: UpdateSuccess) -> str:
    lines = [
        f"Successfully updated skill: {result.skill_name}",
        f"   Previous: {result.previous_file_count} files, {format_file_size(result.previous_size)}",
        f"   Current: {result.current_file_count} files, {format_file_size(result.current_size)}",
    ]
    if result.backup_path:
        note = " (will be removed)" if result.backup_will_be_removed else ""
        lines.append(f"   Backup: {result.backup_path}{note}")
    return "\n".join(lines)


def format_rolled_back(result: UpdateRolledBack) -> str:
    lines = [
        "Update failed:",
        f"   {result.failure_reason}",
        f"Rollback successful: {result.skill_name} restored to previous version",
    ]
    if result.backup_path:
        lines.append(f"   Backup kept at: {result.backup_path}")
    return "\n".join(lines)


def format_rollback_failed(result: UpdateRollbackFailed) -> str:
    lines = [
        "CRITICAL: Rollback failed - manual intervention required",
        "",
        "Update failed:",
        f"   {result.update_failure_reason}",
        "Rollback failed:",
        f"   {result.rollback_failure_reason}",
        "",
        "Skill state:",
        f"   Name: {result.skill_name}",
        f"   Path: {result.path}",
    ]
    if result.backup_path:
        lines.append(f"   Backup: {result.backup_path}")
    lines.extend(["", "Recovery instructions:", f"   {result.recovery_instructions}"])
    return "\n".join(lines)
