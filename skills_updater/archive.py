"""Skill package archive reading and writing (ZIP)."""

from __future__ import annotations

import os
import shutil
import stat
import zipfile
from pathlib import Path
from typing import TYPE_CHECKING

from .errors import OperationCancelled, SecurityViolation
from .security import check_archive_entry_name

if TYPE_CHECKING:
    import threading
    from collections.abc import Iterable


def open_archive(archive_path: str | Path) -> zipfile.ZipFile:
    return zipfile.ZipFile(archive_path, "r")


def is_valid_archive(archive_path: str | Path) -> bool:
    """Return True when the file is a readable ZIP whose CRCs check out."""
    if not zipfile.is_zipfile(archive_path):
        return False
    try:
        with open_archive(archive_path) as zf:
            return zf.testzip() is None
    except (zipfile.BadZipFile, OSError):
        return False


def list_entries(zf: zipfile.ZipFile) -> list[str]:
    return zf.namelist()


def is_directory_entry(name: str) -> bool:
    return name.endswith("/")


def is_symlink_entry(info: zipfile.ZipInfo) -> bool:
    return stat.S_ISLNK(info.external_attr >> 16)


def get_root_directory(names: Iterable[str]) -> str | None:
    """Return the single top-level directory of an archive, or None."""
    roots: set[str] = set()
    for name in names:
        parts = name.replace("\\", "/").split("/", 1)
        if len(parts) == 1:
            # A file at the archive root
            return None
        roots.add(parts[0])
    if len(roots) != 1:
        return None
    root = roots.pop()
    if root in ("", ".", ".."):
        return None
    return root


def read_entry_bytes(zf: zipfile.ZipFile, name: str) -> bytes:
    return zf.read(name)


def read_entry_text(zf: zipfile.ZipFile, name: str) -> str:
    return zf.read(name).decode("utf-8")


def total_uncompressed_size(zf: zipfile.ZipFile) -> int:
    return sum(info.file_size for info in zf.infolist() if not info.is_dir())


def files_under_root(zf: zipfile.ZipFile, root_dir: str) -> list[zipfile.ZipInfo]:
    """File entries beneath root_dir, in archive order."""
    prefix = f"{root_dir}/"
    return [info for info in zf.infolist() if not info.is_dir() and info.filename.startswith(prefix)]


def extract_to_directory(
    zf: zipfile.ZipFile, dest_dir: str | Path, stop: threading.Event | None = None
) -> str:
    """Extract the archive's single root directory into dest_dir.

    Every entry name is checked before anything is written. Returns the root
    directory name. Raises SecurityViolation on the first unsafe entry, and
    OperationCancelled between entries once stop is set.
    """
    infos = zf.infolist()
    root_dir = get_root_directory(info.filename for info in infos)
    if root_dir is None:
        raise SecurityViolation("Archive must contain exactly one root directory", reason="zip-entry-escape")

    for info in infos:
        problem = check_archive_entry_name(info.filename, root_dir)
        if problem is not None:
            raise SecurityViolation(problem[1], reason=problem[0])

    dest = Path(dest_dir).resolve()
    targets: list[tuple[zipfile.ZipInfo, Path]] = []
    for info in infos:
        target = (dest / info.filename).resolve()
        if target != dest and dest not in target.parents:
            raise SecurityViolation(
                f"Entry resolves outside extraction directory: {info.filename}", reason="zip-entry-escape"
            )
        targets.append((info, target))

    for info, target in targets:
        if stop is not None and stop.is_set():
            raise OperationCancelled("Extraction stopped")
        if info.is_dir():
            target.mkdir(parents=True, exist_ok=True)
            continue
        if is_symlink_entry(info):
            continue
        target.parent.mkdir(parents=True, exist_ok=True)
        with zf.open(info) as src, open(target, "wb") as dst:
            shutil.copyfileobj(src, dst)
        mode = (info.external_attr >> 16) & 0o777
        if mode:
            os.chmod(target, mode)

    return root_dir


def write_archive(
    files: Iterable[tuple[str, str | Path]],
    dest_path: str | Path,
    directories: Iterable[str] = (),
) -> int:
    """Write (arcname, source) pairs into a new deflated ZIP. Returns the file count."""
    count = 0
    with zipfile.ZipFile(dest_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for arcname in directories:
            zf.writestr(arcname.rstrip("/") + "/", b"")
        for arcname, source in files:
            zf.write(source, arcname)
            count += 1
    return count
