"""Tests for batch skill removal."""

from __future__ import annotations

import asyncio
import os
from typing import TYPE_CHECKING

import pytest

from skills_updater.errors import OperationCancelled, UpdateFailed
from skills_updater.lock import acquire_uninstall_lock, get_lock_path
from skills_updater.types import UninstallOptions
from skills_updater.uninstall import remove_skill_tree, uninstall_skills

from .conftest import Workspace, install_skill, write_tree

if TYPE_CHECKING:
    from pathlib import Path


class TestUninstallSkills:
    @pytest.fixture(autouse=True)
    def _setup(self, workspace: Workspace) -> None:
        self.ws = workspace
        self.alpha = install_skill(workspace.skills_dir, "alpha", {"docs/a.md": "a", "docs/deep/b.md": "b"})
        self.beta = install_skill(workspace.skills_dir, "beta")
        self.options = UninstallOptions(cwd=str(workspace.project), homedir=str(workspace.home))

    @pytest.mark.asyncio
    async def test_removes_listed_skills(self) -> None:
        summary = await uninstall_skills(["alpha", "ghost"], self.options)

        assert summary.removed == ["alpha"]
        assert summary.not_found == ["ghost"]
        assert not summary.dry_run
        assert not self.alpha.exists()
        assert self.beta.exists()
        assert not get_lock_path(self.alpha, ".asm-uninstall.lock").exists()

    @pytest.mark.asyncio
    async def test_dry_run_keeps_files(self) -> None:
        options = self.options.model_copy(update={"dry_run": True})
        summary = await uninstall_skills(["alpha", "beta"], options)

        assert summary.removed == ["alpha", "beta"]
        assert summary.dry_run
        assert self.alpha.exists()
        assert self.beta.exists()

    @pytest.mark.asyncio
    async def test_invalid_name_stops_before_anything_is_removed(self) -> None:
        with pytest.raises(UpdateFailed) as exc_info:
            await uninstall_skills(["alpha", "../beta"], self.options)

        assert exc_info.value.error.field == "skill_name"
        assert self.alpha.exists()

    @pytest.mark.asyncio
    async def test_invalid_scope(self) -> None:
        options = self.options.model_copy(update={"scope": "global"})
        with pytest.raises(UpdateFailed) as exc_info:
            await uninstall_skills(["alpha"], options)
        assert exc_info.value.error.field == "scope"

    @pytest.mark.asyncio
    async def test_symlink_inside_scope_removes_only_the_link(self) -> None:
        os.symlink(self.beta, self.ws.skills_dir / "gamma")

        summary = await uninstall_skills(["gamma"], self.options)

        assert summary.removed == ["gamma"]
        assert not os.path.lexists(self.ws.skills_dir / "gamma")
        assert (self.beta / "SKILL.md").exists()

    @pytest.mark.asyncio
    async def test_symlink_escaping_scope_is_refused(self) -> None:
        outside = install_skill(self.ws.root / "outside", "delta")
        os.symlink(outside, self.ws.skills_dir / "delta")

        with pytest.raises(UpdateFailed) as exc_info:
            await uninstall_skills(["delta"], self.options)

        assert exc_info.value.error.reason == "symlink-escape"
        assert (outside / "SKILL.md").exists()

    @pytest.mark.asyncio
    async def test_hard_links_require_force(self) -> None:
        os.link(self.alpha / "docs" / "a.md", self.ws.root / "a-link")

        with pytest.raises(UpdateFailed) as exc_info:
            await uninstall_skills(["alpha"], self.options)
        assert exc_info.value.error.reason == "hard-link-detected"
        assert self.alpha.exists()

        forced = self.options.model_copy(update={"force": True})
        summary = await uninstall_skills(["alpha"], forced)
        assert summary.removed == ["alpha"]
        assert (self.ws.root / "a-link").read_text() == "a"

    @pytest.mark.asyncio
    async def test_concurrent_uninstall_is_refused(self) -> None:
        acquire_uninstall_lock(self.alpha)

        with pytest.raises(UpdateFailed) as exc_info:
            await uninstall_skills(["alpha"], self.options)

        assert "being uninstalled" in exc_info.value.error.message
        assert self.alpha.exists()

    @pytest.mark.asyncio
    async def test_cancellation_stops_the_batch(self) -> None:
        signal = asyncio.Event()
        signal.set()

        with pytest.raises(OperationCancelled):
            await uninstall_skills(["alpha", "beta"], self.options, signal=signal)

        assert self.alpha.exists()
        assert self.beta.exists()


def test_remove_skill_tree_does_not_follow_symlinks(tmp_path: Path) -> None:
    keep = write_tree(tmp_path / "keep", {"precious.txt": "p"})
    skill = write_tree(tmp_path / "skill", {"a/b/c.txt": "c", "d.txt": "d"})
    os.symlink(keep, skill / "a" / "link")

    removed = remove_skill_tree(skill)

    assert removed == 5
    assert not skill.exists()
    assert (keep / "precious.txt").read_text() == "p"
