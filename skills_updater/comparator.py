"""Comparison of an installed skill against a new package."""

from __future__ import annotations

import asyncio
import hashlib
import itertools
import os
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, NamedTuple

from . import archive
from .constants import COMPARISON_BATCH_SIZE, COMPARISON_MEMORY_THRESHOLD, PACKAGE_EXTENSION, SKILL_MD
from .enumerator import enumerate_skill_files, is_regular_file
from .frontmatter import parse_frontmatter
from .logger import logger
from .types import ChangeSummary, DowngradeInfo, FileChange, SkillMetadata, VersionComparison, VersionInfo

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

HASH_CHUNK_SIZE = 64 * 1024


class _ComparableFile(NamedTuple):
    size: int
    get_hash: Callable[[], str]


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hash_file(file_path: str | Path) -> str:
    """SHA-256 of a file, read in chunks."""
    digest = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _hash_entry(zf: zipfile.ZipFile, name: str) -> str:
    digest = hashlib.sha256()
    with zf.open(name) as f:
        for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _installed_files(installed_dir: str | Path) -> dict[str, _ComparableFile]:
    files: dict[str, _ComparableFile] = {}
    for record in enumerate_skill_files(installed_dir):
        if is_regular_file(record):
            path = record.absolute_path
            files[record.relative_path] = _ComparableFile(record.size, lambda p=path: hash_file(p))
    return files


def _package_files(zf: zipfile.ZipFile) -> dict[str, _ComparableFile]:
    root_dir = archive.get_root_directory(archive.list_entries(zf))
    if root_dir is None:
        return {}
    prefix_len = len(root_dir) + 1
    files: dict[str, _ComparableFile] = {}
    for info in archive.files_under_root(zf, root_dir):
        name = info.filename
        files[name[prefix_len:]] = _ComparableFile(info.file_size, lambda n=name: _hash_entry(zf, n))
    return files


def _classify(
    installed: dict[str, _ComparableFile],
    new: dict[str, _ComparableFile],
    thorough: bool,
) -> Iterator[FileChange | None]:
    """Yield one item per compared path; None marks an unchanged file.

    Package paths come first in package order, then installed-only paths in
    enumeration order.
    """
    for path, new_file in new.items():
        old_file = installed.get(path)
        if old_file is None:
            yield FileChange(
                path=path, change_type="added", size_before=0, size_after=new_file.size, size_delta=new_file.size
            )
        elif old_file.size != new_file.size:
            yield FileChange(
                path=path,
                change_type="modified",
                size_before=old_file.size,
                size_after=new_file.size,
                size_delta=new_file.size - old_file.size,
            )
        elif thorough and old_file.get_hash() != new_file.get_hash():
            yield FileChange(
                path=path, change_type="modified", size_before=old_file.size, size_after=new_file.size, size_delta=0
            )
        else:
            yield None

    for path, old_file in installed.items():
        if path in new:
            continue
        yield FileChange(
            path=path, change_type="removed", size_before=old_file.size, size_after=0, size_delta=-old_file.size
        )


def _next_batch(items: Iterator[FileChange | None], size: int) -> list[FileChange | None]:
    return list(itertools.islice(items, size))


def _build_comparison(changes: list[FileChange]) -> VersionComparison:
    added = [c for c in changes if c.change_type == "added"]
    removed = [c for c in changes if c.change_type == "removed"]
    modified = [c for c in changes if c.change_type == "modified"]
    return VersionComparison(
        files_added=added,
        files_removed=removed,
        files_modified=modified,
        added_count=len(added),
        removed_count=len(removed),
        modified_count=len(modified),
        size_change=sum(c.size_delta for c in changes),
    )


async def compare_versions(
    installed_dir: str | Path,
    package_path: str | Path,
    thorough: bool = False,
    memory_threshold: int = COMPARISON_MEMORY_THRESHOLD,
) -> VersionComparison:
    """Classify files as added, removed or modified between installed_dir and package_path.

    Classification runs on the default executor. Above memory_threshold total
    files it is split into batches, returning to the event loop between them.
    The result is the same in both modes.
    """
    loop = asyncio.get_running_loop()
    installed = await loop.run_in_executor(None, _installed_files, installed_dir)

    with await loop.run_in_executor(None, archive.open_archive, package_path) as zf:
        new = await loop.run_in_executor(None, _package_files, zf)
        total = len(installed) + len(new)

        if total <= memory_threshold:
            batch_size = max(total, 1)
        else:
            logger.debug("Comparing in batches", files=total, batch_size=COMPARISON_BATCH_SIZE)
            batch_size = COMPARISON_BATCH_SIZE

        # Thorough mode hashes inside _classify
        classified = _classify(installed, new, thorough)
        changes: list[FileChange] = []
        while True:
            batch = await loop.run_in_executor(None, _next_batch, classified, batch_size)
            changes.extend(c for c in batch if c is not None)
            if len(batch) < batch_size:
                break

    return _build_comparison(changes)


def stream_file_comparison(
    installed_dir: str | Path, package_path: str | Path, thorough: bool = False
) -> Iterator[FileChange]:
    """Lazily yield each FileChange as it is detected."""
    installed = _installed_files(installed_dir)
    with archive.open_archive(package_path) as zf:
        new = _package_files(zf)
        for change in _classify(installed, new, thorough):
            if change is not None:
                yield change


# --- Metadata ---


def _mtime_iso(path: str | Path) -> str:
    return datetime.fromtimestamp(os.stat(path).st_mtime, tz=timezone.utc).isoformat()


def _metadata_from(data: dict, fallback_name: str, last_modified: str) -> SkillMetadata:
    version = data.get("version")
    description = data.get("description")
    return SkillMetadata(
        name=str(data.get("name") or fallback_name),
        description=str(description) if description is not None else None,
        version=version if isinstance(version, str) else None,
        last_modified=last_modified,
    )


def extract_metadata(skill_dir: str | Path) -> SkillMetadata:
    """Metadata from an installed skill's SKILL.md, falling back to the directory name."""
    skill_md = Path(skill_dir) / SKILL_MD
    fallback = Path(skill_dir).name
    try:
        parsed = parse_frontmatter(skill_md.read_text(encoding="utf-8"))
        if not parsed.success or parsed.data is None:
            return SkillMetadata(name=fallback)
        return _metadata_from(parsed.data, fallback, _mtime_iso(skill_md))
    except (OSError, UnicodeDecodeError):
        return SkillMetadata(name=fallback)


def extract_package_metadata(package_path: str | Path) -> SkillMetadata:
    fallback = Path(package_path).name.removesuffix(PACKAGE_EXTENSION)
    try:
        with archive.open_archive(package_path) as zf:
            root_dir = archive.get_root_directory(archive.list_entries(zf))
            if root_dir is None:
                return SkillMetadata(name=fallback)
            try:
                content = archive.read_entry_text(zf, f"{root_dir}/{SKILL_MD}")
            except KeyError:
                return SkillMetadata(name=root_dir)
        parsed = parse_frontmatter(content)
        if not parsed.success or parsed.data is None:
            return SkillMetadata(name=root_dir)
        return _metadata_from(parsed.data, root_dir, _mtime_iso(package_path))
    except (zipfile.BadZipFile, OSError, UnicodeDecodeError):
        return SkillMetadata(name=fallback)


def _format_date(iso: str) -> str:
    return iso.split("T")[0]


def detect_downgrade(installed: SkillMetadata, new: SkillMetadata) -> DowngradeInfo | None:
    """Heuristic downgrade check.

    Version strings are compared lexically, so "10.0.0" sorts before "2.0.0".
    When that check does not fire, modification times are compared instead.
    """
    if installed.version and new.version and installed.version > new.version:
        return DowngradeInfo(
            is_downgrade=True,
            message=f"Installed version ({installed.version}) is newer than package version ({new.version})",
        )

    if installed.last_modified and new.last_modified:
        installed_date = datetime.fromisoformat(installed.last_modified)
        new_date = datetime.fromisoformat(new.last_modified)
        if installed_date > new_date:
            return DowngradeInfo(
                is_downgrade=True,
                installed_date=installed.last_modified,
                new_date=new.last_modified,
                message=(
                    "Installed skill is newer than package "
                    f"(installed: {_format_date(installed.last_modified)}, package: {_format_date(new.last_modified)})"
                ),
            )
    return None


def get_installed_version_info(skill_dir: str | Path) -> VersionInfo:
    metadata = extract_metadata(skill_dir)
    file_count = 0
    total_size = 0
    for record in enumerate_skill_files(skill_dir):
        if is_regular_file(record):
            file_count += 1
            total_size += record.size
    return VersionInfo(
        path=str(skill_dir),
        file_count=file_count,
        size=total_size,
        last_modified=metadata.last_modified,
        description=metadata.description,
    )


def get_package_version_info(package_path: str | Path) -> VersionInfo:
    metadata = extract_package_metadata(package_path)
    with archive.open_archive(package_path) as zf:
        root_dir = archive.get_root_directory(archive.list_entries(zf))
        infos = archive.files_under_root(zf, root_dir) if root_dir else []
    return VersionInfo(
        path=str(package_path),
        file_count=len(infos),
        size=sum(info.file_size for info in infos),
        last_modified=_mtime_iso(package_path),
        description=metadata.description,
    )


# --- Display ---


def summarize_changes(comparison: VersionComparison) -> ChangeSummary:
    bytes_added = sum(c.size_after for c in comparison.files_added)
    bytes_removed = sum(c.size_before for c in comparison.files_removed)
    for change in comparison.files_modified:
        if change.size_delta > 0:
            bytes_added += change.size_delta
        else:
            bytes_removed += abs(change.size_delta)

    return ChangeSummary(
        added_count=comparison.added_count,
        removed_count=comparison.removed_count,
        modified_count=comparison.modified_count,
        bytes_added=bytes_added,
        bytes_removed=bytes_removed,
        net_size_change=comparison.size_change,
    )


def format_bytes(size: int) -> str:
    magnitude = abs(size)
    sign = "-" if size < 0 else ""
    if magnitude < 1024:
        return f"{sign}{magnitude} B"
    value = float(magnitude)
    for unit in ("KB", "MB", "GB"):
        value /= 1024
        if value < 1024:
            break
    return f"{sign}{value:.2f} {unit}"


_CHANGE_PREFIX = {"added": "+", "removed": "-", "modified": "~"}


def format_diff_line(change: FileChange) -> str:
    if change.change_type == "added":
        detail = f"added, {format_bytes(change.size_after)}"
    elif change.change_type == "removed":
        detail = f"removed, {format_bytes(change.size_before)}"
    elif change.size_delta == 0:
        detail = "modified, same size"
    else:
        sign = "+" if change.size_delta > 0 else ""
        detail = f"modified, {sign}{format_bytes(change.size_delta)}"
    return f"{_CHANGE_PREFIX[change.change_type]} {change.path} ({detail})"
