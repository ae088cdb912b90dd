"""Streaming, symlink-safe enumeration of skill directory trees."""

from __future__ import annotations

import os
import stat
from pathlib import Path
from typing import TYPE_CHECKING

from .constants import MAX_FILE_COUNT, MAX_SKILL_SIZE
from .types import FileRecord, ResourceLimitExceeded, ResourceLimitOk, SkillSummary

if TYPE_CHECKING:
    from collections.abc import Iterator

    from .types import ResourceLimitResult


def enumerate_skill_files(root_dir: str | Path) -> Iterator[FileRecord]:
    """Yield a FileRecord for every entry below root_dir, depth first.

    Directories are walked with an explicit stack. Symlinks are reported but
    never descended into. Entries that cannot be read are skipped.
    """
    root = Path(root_dir)
    stack: list[Path] = [root]

    while stack:
        current = stack.pop()
        try:
            names = sorted(os.listdir(current))
        except OSError:
            continue

        subdirs: list[Path] = []
        for name in names:
            entry = current / name
            try:
                st = os.lstat(entry)
            except OSError:
                continue

            is_symlink = stat.S_ISLNK(st.st_mode)
            is_directory = stat.S_ISDIR(st.st_mode)
            yield FileRecord(
                relative_path=entry.relative_to(root).as_posix(),
                absolute_path=str(entry),
                size=0 if is_directory else st.st_size,
                is_directory=is_directory,
                is_symlink=is_symlink,
                hard_link_count=st.st_nlink,
            )
            if is_directory:
                subdirs.append(entry)

        # Reversed so the first subdirectory is visited first
        stack.extend(reversed(subdirs))


def collect_skill_files(root_dir: str | Path) -> list[FileRecord]:
    return list(enumerate_skill_files(root_dir))


def is_regular_file(record: FileRecord) -> bool:
    return not record.is_directory and not record.is_symlink


def get_skill_summary(root_dir: str | Path) -> SkillSummary:
    summary = SkillSummary()
    for record in enumerate_skill_files(root_dir):
        if record.is_symlink:
            summary.symlink_count += 1
        elif record.is_directory:
            summary.directory_count += 1
        else:
            summary.file_count += 1
            summary.total_size += record.size
            if record.hard_link_count > 1:
                summary.hard_link_count += 1
    return summary


def format_file_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    value = float(size)
    for unit in ("KB", "MB", "GB"):
        value /= 1024
        if value < 1024 or unit == "GB":
            return f"{value:.1f} {unit}"
    return f"{value:.1f} GB"


def check_resource_limits(
    summary: SkillSummary,
    max_files: int = MAX_FILE_COUNT,
    max_size: int = MAX_SKILL_SIZE,
) -> ResourceLimitResult:
    """Flag trees that exceed the file-count or byte-size limits."""
    warnings: list[str] = []
    if summary.file_count > max_files:
        warnings.append(f"Skill contains {summary.file_count} files (limit: {max_files})")
    if summary.total_size > max_size:
        warnings.append(
            f"Skill size is {format_file_size(summary.total_size)} (limit: {format_file_size(max_size)})"
        )
    if warnings:
        return ResourceLimitExceeded(warnings=warnings)
    return ResourceLimitOk()
