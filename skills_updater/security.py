"""Symlink, hard link, archive entry and containment checks."""

from __future__ import annotations

import os
import re
import zipfile
from pathlib import Path

from .constants import MAX_REPORTED_HARD_LINKS
from .enumerator import enumerate_skill_files, is_regular_file
from .errors import FileSystemUpdateError, SecurityUpdateError
from .scope import is_path_within
from .types import (
    HardLinkCheckResult,
    HardLinkInfo,
    HardLinkWarning,
    SymlinkCheckError,
    SymlinkCheckResult,
    SymlinkCheckSummary,
    SymlinkEscape,
    SymlinkInfo,
    SymlinkSafe,
    ZipEntryCheckError,
    ZipEntryCheckResult,
    ZipEntrySafe,
    ZipEntryUnsafe,
)

_DRIVE_LETTER = re.compile(r"^[A-Za-z]:")

# --- Symlinks ---


def check_symlink_safety(skill_path: str | Path, scope_path: str | Path) -> SymlinkCheckResult:
    """Verify that skill_path, if it is a symlink, still resolves inside scope_path."""
    try:
        is_symlink = os.path.islink(skill_path)
        if not is_symlink:
            return SymlinkSafe(is_symlink=False)

        target = os.path.realpath(skill_path)
        boundary = os.path.realpath(scope_path)
        if target == boundary or not is_path_within(target, boundary):
            return SymlinkEscape(target_path=target, scope_boundary=boundary)
        return SymlinkSafe(is_symlink=True, resolved_path=target)
    except OSError as err:
        return SymlinkCheckError(message=f"Failed to check symlink: {err}")


def check_directory_symlinks(skill_path: str | Path) -> list[SymlinkInfo]:
    """Report every symlink inside the tree, flagging those pointing outside it."""
    skill_real = os.path.realpath(skill_path)
    found: list[SymlinkInfo] = []
    for record in enumerate_skill_files(skill_path):
        if not record.is_symlink:
            continue
        target = os.path.realpath(record.absolute_path)
        escapes = not is_path_within(target, skill_real)
        if escapes:
            warning = f"Symlink {record.relative_path} points outside the skill directory ({target})"
        else:
            warning = f"Symlink {record.relative_path} will not be followed"
        found.append(
            SymlinkInfo(
                relative_path=record.relative_path,
                absolute_path=record.absolute_path,
                is_directory_symlink=os.path.isdir(target),
                target_path=target,
                escapes_scope=escapes,
                warning=warning,
            )
        )
    return found


def get_symlink_summary(skill_path: str | Path) -> SymlinkCheckSummary:
    symlinks = check_directory_symlinks(skill_path)
    escaping = [info for info in symlinks if info.escapes_scope]
    warning = None
    if escaping:
        warning = f"{len(escaping)} symlink(s) point outside the skill directory"
    return SymlinkCheckSummary(
        total_symlinks=len(symlinks),
        escaping_symlinks=len(escaping),
        directory_symlinks=sum(1 for info in symlinks if info.is_directory_symlink),
        escaping_paths=escaping,
        has_security_concerns=bool(escaping),
        warning=warning,
    )


# --- Hard links ---


def check_hard_links(skill_path: str | Path) -> HardLinkCheckResult:
    linked = [
        HardLinkInfo(
            relative_path=record.relative_path,
            absolute_path=record.absolute_path,
            link_count=record.hard_link_count,
        )
        for record in enumerate_skill_files(skill_path)
        if is_regular_file(record) and record.hard_link_count > 1
    ]
    return HardLinkCheckResult(has_hard_links=bool(linked), hard_linked_files=linked, requires_force=bool(linked))


def detect_hard_link_warnings(skill_path: str | Path) -> HardLinkWarning | None:
    """Summarize hard-linked files, listing at most the first few."""
    reported: list[HardLinkInfo] = []
    count = 0
    for record in enumerate_skill_files(skill_path):
        if not is_regular_file(record) or record.hard_link_count <= 1:
            continue
        count += 1
        if len(reported) < MAX_REPORTED_HARD_LINKS:
            reported.append(
                HardLinkInfo(
                    relative_path=record.relative_path,
                    absolute_path=record.absolute_path,
                    link_count=record.hard_link_count,
                )
            )
    if count == 0:
        return None

    message = (
        f"Skill contains {count} hard-linked file(s). "
        "Modifying them may affect files elsewhere on the filesystem. Use --force to proceed."
    )
    return HardLinkWarning(count=count, files=reported, message=message)


# --- Archive entries ---


def check_archive_entry_name(name: str, root_dir: str | None) -> tuple[str, str] | None:
    """Return (reason, details) when an archive entry name is unsafe, else None."""
    if "\x00" in name:
        return "path-traversal", f"Archive entry contains a null byte: {name!r}"

    normalized = name.replace("\\", "/")
    if normalized.startswith("/") or _DRIVE_LETTER.match(normalized):
        return "zip-entry-escape", f"Archive entry has an absolute path: {name}"
    if ".." in normalized.split("/"):
        return "zip-entry-escape", f"Archive entry contains path traversal: {name}"

    if root_dir is not None and normalized != root_dir and not normalized.startswith(f"{root_dir}/"):
        return "zip-entry-escape", f"Archive entry is outside root directory '{root_dir}': {name}"
    return None


def validate_zip_entry_security(package_path: str | Path, root_dir: str | None) -> ZipEntryCheckResult:
    try:
        with zipfile.ZipFile(package_path, "r") as zf:
            infos = zf.infolist()
    except (zipfile.BadZipFile, OSError) as err:
        return ZipEntryCheckError(message=f"Failed to read package entries: {err}")

    warnings: list[str] = []
    for info in infos:
        problem = check_archive_entry_name(info.filename, root_dir)
        if problem is not None:
            reason, details = problem
            return ZipEntryUnsafe(reason=reason, details=details)
        if (info.external_attr >> 16) & 0o170000 == 0o120000:
            warnings.append(f"Archive entry {info.filename} is a symlink and will not be extracted")
    return ZipEntrySafe(warnings=warnings)


# --- Containment ---


def verify_path_containment(
    target_path: str | Path, scope_path: str | Path
) -> SecurityUpdateError | FileSystemUpdateError | None:
    """Resolve both paths and check that target_path stays inside scope_path."""
    try:
        target = os.path.realpath(target_path, strict=True)
        boundary = os.path.realpath(scope_path, strict=True)
    except OSError as err:
        return FileSystemUpdateError(operation="stat", path=str(target_path), message=str(err))

    if not is_path_within(target, boundary):
        return SecurityUpdateError(
            reason="containment-violation",
            details=f"Path {target} is outside scope {boundary}",
        )
    return None
