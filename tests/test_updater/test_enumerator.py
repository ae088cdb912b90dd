"""Tests for skill tree enumeration and resource limits."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

from skills_updater.enumerator import (
    check_resource_limits,
    collect_skill_files,
    enumerate_skill_files,
    format_file_size,
    get_skill_summary,
)
from skills_updater.types import SkillSummary

from .conftest import write_tree

if TYPE_CHECKING:
    from pathlib import Path


class TestEnumerateSkillFiles:
    @pytest.fixture(autouse=True)
    def _setup(self, tmp_path: Path) -> None:
        self.skill = write_tree(
            tmp_path / "my-skill",
            {
                "SKILL.md": "---\nname: my-skill\n---\n",
                "docs/guide.md": "guide",
                "docs/deep/notes.txt": "notes!",
                "scripts/run.sh": "echo hi",
            },
        )

    def test_yields_files_and_directories_with_posix_paths(self) -> None:
        records = {r.relative_path: r for r in enumerate_skill_files(self.skill)}
        assert set(records) == {
            "SKILL.md",
            "docs",
            "docs/guide.md",
            "docs/deep",
            "docs/deep/notes.txt",
            "scripts",
            "scripts/run.sh",
        }
        assert records["docs"].is_directory
        assert records["docs"].size == 0
        assert records["docs/deep/notes.txt"].size == 6
        assert records["SKILL.md"].hard_link_count == 1

    def test_absolute_paths_point_at_entries(self) -> None:
        for record in enumerate_skill_files(self.skill):
            assert os.path.lexists(record.absolute_path)

    def test_symlinked_directory_is_reported_but_not_followed(self, tmp_path: Path) -> None:
        outside = write_tree(tmp_path / "outside", {"secret.txt": "x"})
        os.symlink(outside, self.skill / "linked")

        records = {r.relative_path: r for r in enumerate_skill_files(self.skill)}
        assert records["linked"].is_symlink
        assert not records["linked"].is_directory
        assert "linked/secret.txt" not in records

    def test_deep_tree_does_not_recurse(self, tmp_path: Path) -> None:
        root = tmp_path / "deep"
        current = root
        for i in range(300):
            current = current / f"d{i}"
        current.mkdir(parents=True)
        (current / "leaf.txt").write_text("leaf")

        records = collect_skill_files(root)
        assert len(records) == 301
        assert records[-1].relative_path.endswith("d299/leaf.txt")

    @pytest.mark.skipif(os.geteuid() == 0, reason="root can read any directory")
    def test_unreadable_directory_is_skipped(self) -> None:
        locked = self.skill / "locked"
        locked.mkdir()
        (locked / "hidden.txt").write_text("x")
        os.chmod(locked, 0)
        try:
            paths = [r.relative_path for r in enumerate_skill_files(self.skill)]
        finally:
            os.chmod(locked, 0o755)
        assert "locked" in paths
        assert "locked/hidden.txt" not in paths

    def test_iteration_can_stop_early_and_restart(self) -> None:
        first = next(iter(enumerate_skill_files(self.skill)))
        again = next(iter(enumerate_skill_files(self.skill)))
        assert first == again

    def test_missing_root_yields_nothing(self, tmp_path: Path) -> None:
        assert collect_skill_files(tmp_path / "nope") == []


class TestSkillSummary:
    def test_counts_files_directories_and_symlinks(self, tmp_path: Path) -> None:
        skill = write_tree(tmp_path / "s", {"a.txt": "12345", "sub/b.txt": "123"})
        os.symlink(skill / "a.txt", skill / "alias")
        os.link(skill / "sub" / "b.txt", tmp_path / "b-link")

        summary = get_skill_summary(skill)
        assert summary.file_count == 2
        assert summary.directory_count == 1
        assert summary.symlink_count == 1
        assert summary.total_size == 8
        assert summary.hard_link_count == 1


class TestResourceLimits:
    def test_within_limits(self) -> None:
        assert check_resource_limits(SkillSummary(file_count=3, total_size=100)).type == "ok"

    def test_file_count_exceeded(self) -> None:
        result = check_resource_limits(SkillSummary(file_count=11, total_size=10), max_files=10)
        assert result.type == "exceeded"
        assert result.requires_force
        assert result.warnings == ["Skill contains 11 files (limit: 10)"]

    def test_size_exceeded(self) -> None:
        result = check_resource_limits(SkillSummary(file_count=1, total_size=2048), max_size=1024)
        assert result.type == "exceeded"
        assert "2.0 KB" in result.warnings[0]

    def test_both_limits_reported(self) -> None:
        result = check_resource_limits(SkillSummary(file_count=5, total_size=5), max_files=1, max_size=1)
        assert result.type == "exceeded"
        assert len(result.warnings) == 2


@pytest.mark.parametrize(
    ("size", "expected"),
    [(0, "0 B"), (1023, "1023 B"), (1024, "1.0 KB"), (5 * 1024 * 1024, "5.0 MB"), (3 * 1024**3, "3.0 GB")],
)
def test_format_file_size(size: int, expected: str) -> None:
    assert format_file_size(size) == expected
