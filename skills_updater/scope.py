"""Scope resolution and path containment helpers."""

from __future__ import annotations

import os
from pathlib import Path

from .constants import PERSONAL_SKILLS_DIR, PROJECT_SKILLS_DIR
from .types import ScopeInfo


def expand_tilde(input_path: str) -> str:
    """Expand a leading ``~`` to the user's home directory."""
    if input_path == "~":
        return str(Path.home())
    if input_path.startswith(("~/", "~\\")):
        return str(Path.home() / input_path[2:])
    return input_path


def get_project_skills_dir(cwd: str | Path | None = None) -> Path:
    return Path(cwd or Path.cwd()) / PROJECT_SKILLS_DIR


def get_personal_skills_dir(homedir: str | Path | None = None) -> Path:
    return Path(homedir or Path.home()) / PERSONAL_SKILLS_DIR


def resolve_scope(
    scope: str | None,
    cwd: str | Path | None = None,
    homedir: str | Path | None = None,
) -> ScopeInfo:
    """Map a logical scope onto its skills directory. Defaults to project."""
    if scope == "personal":
        return ScopeInfo(type="personal", path=str(get_personal_skills_dir(homedir)))
    return ScopeInfo(type="project", path=str(get_project_skills_dir(cwd)))


def normalize_path(input_path: str | Path) -> str:
    return os.path.normpath(os.path.abspath(expand_tilde(str(input_path))))


def is_path_within(child_path: str | Path, parent_path: str | Path) -> bool:
    """Check that child_path is parent_path or lies beneath it, lexically."""
    child = normalize_path(child_path)
    parent = normalize_path(parent_path)
    if child == parent:
        return True
    parent_with_sep = parent if parent.endswith(os.sep) else parent + os.sep
    return child.startswith(parent_with_sep)
