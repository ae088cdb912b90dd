"""Shared fixtures and builders for skill updater tests."""

from __future__ import annotations

import tempfile
import zipfile
from dataclasses import dataclass
from pathlib import Path

import pytest
import yaml

from skills_updater.types import UpdateOptions


@dataclass
class Workspace:
    root: Path
    project: Path
    home: Path
    scratch: Path

    @property
    def skills_dir(self) -> Path:
        return self.project / ".claude" / "skills"

    @property
    def backups_dir(self) -> Path:
        return self.home / ".asm" / "backups"

    def options(self, **overrides: object) -> UpdateOptions:
        values: dict[str, object] = {"cwd": str(self.project), "homedir": str(self.home), "quiet": True}
        values.update(overrides)
        return UpdateOptions(**values)


@pytest.fixture()
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Workspace:
    """A project directory, a home directory and a private scratch area."""
    ws = Workspace(
        root=tmp_path,
        project=tmp_path / "project",
        home=tmp_path / "home",
        scratch=tmp_path / "scratch",
    )
    for directory in (ws.project, ws.home, ws.scratch):
        directory.mkdir()
    monkeypatch.chdir(ws.project)
    monkeypatch.setenv("HOME", str(ws.home))
    monkeypatch.setattr(tempfile, "tempdir", str(ws.scratch))
    return ws


def skill_md(name: str, description: str = "A test skill", version: str | None = None, body: str = "") -> str:
    frontmatter: dict[str, str] = {"name": name, "description": description}
    if version is not None:
        frontmatter["version"] = version
    return f"---\n{yaml.safe_dump(frontmatter, sort_keys=False)}---\n\n# {name}\n{body}"


def write_tree(root: Path, files: dict[str, str | bytes]) -> Path:
    """Write relative-path -> content pairs under root."""
    root.mkdir(parents=True, exist_ok=True)
    for rel_path, content in files.items():
        target = root / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            target.write_bytes(content)
        else:
            target.write_text(content, encoding="utf-8")
    return root


def install_skill(skills_dir: Path, name: str, files: dict[str, str | bytes] | None = None, **md: str) -> Path:
    """Create an installed skill with a valid SKILL.md plus extra files."""
    tree: dict[str, str | bytes] = {"SKILL.md": skill_md(name, **md)}
    tree.update(files or {})
    return write_tree(skills_dir / name, tree)


def write_zip(dest: Path, entries: dict[str, str | bytes]) -> Path:
    """Write a ZIP with exactly the given entry names, in order."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(dest, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, content in entries.items():
            zf.writestr(name, content)
    return dest


def make_package(
    dest_dir: Path,
    name: str,
    files: dict[str, str | bytes] | None = None,
    *,
    root: str | None = None,
    with_skill_md: bool = True,
    **md: str,
) -> Path:
    """Build <dest_dir>/<name>.skill with a single root directory."""
    root = root or name
    entries: dict[str, str | bytes] = {f"{root}/": b""}
    if with_skill_md:
        entries[f"{root}/SKILL.md"] = skill_md(root, **md)
    for rel_path, content in (files or {}).items():
        entries[f"{root}/{rel_path}"] = content
    return write_zip(dest_dir / f"{name}.skill", entries)
