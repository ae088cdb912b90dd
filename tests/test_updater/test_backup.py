"""Tests for backup creation, listing, cleanup and restore."""

from __future__ import annotations

import os
import re
import stat
import zipfile
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import pytest

from skills_updater import backup
from skills_updater.backup import (
    cleanup_backup,
    create_backup,
    generate_backup_filename,
    generate_unique_backup_path,
    get_backup_directory,
    get_backup_info,
    list_backups,
    restore_from_backup,
    validate_backup_directory,
    validate_backup_writability,
    verify_backup_containment,
)
from skills_updater.errors import SecurityViolation

from .conftest import write_tree

if TYPE_CHECKING:
    from pathlib import Path


class TestBackupDirectory:
    @pytest.fixture(autouse=True)
    def _setup(self, tmp_path: Path) -> None:
        self.home = tmp_path / "home"
        self.home.mkdir()

    def test_created_owner_only(self) -> None:
        backups = get_backup_directory(self.home)
        assert backups == self.home / ".asm" / "backups"
        assert stat.S_IMODE(os.stat(backups).st_mode) == 0o700
        assert stat.S_IMODE(os.stat(self.home / ".asm").st_mode) == 0o700

    def test_symlinked_asm_directory_is_refused(self, tmp_path: Path) -> None:
        target = tmp_path / "attacker"
        target.mkdir()
        os.symlink(target, self.home / ".asm")
        with pytest.raises(SecurityViolation):
            get_backup_directory(self.home)
        validation = validate_backup_directory(self.home)
        assert not validation.valid
        assert "symbolic link" in validation.errors[0]

    def test_world_readable_directory_warns(self) -> None:
        backups = get_backup_directory(self.home)
        os.chmod(backups, 0o755)
        validation = validate_backup_directory(self.home)
        assert validation.valid
        assert validation.warnings

    def test_writability_probe_leaves_nothing_behind(self) -> None:
        assert validate_backup_writability(self.home).writable
        assert list(get_backup_directory(self.home).iterdir()) == []


class TestBackupNames:
    def test_filename_format(self) -> None:
        name = generate_backup_filename("my-skill", datetime(2026, 3, 4, 5, 6, 7))
        assert re.fullmatch(r"my-skill-20260304-050607-[0-9a-f]{8}\.skill", name)

    def test_default_stamp_is_utc(self) -> None:
        before = datetime.now(timezone.utc).replace(microsecond=0)
        name = generate_backup_filename("my-skill")
        after = datetime.now(timezone.utc)

        stamp = datetime.strptime(name[len("my-skill-") : len("my-skill-") + 15], "%Y%m%d-%H%M%S")
        stamp = stamp.replace(tzinfo=timezone.utc)
        assert before - timedelta(seconds=1) <= stamp <= after

    def test_containment(self, tmp_path: Path) -> None:
        backups = get_backup_directory(tmp_path)
        assert verify_backup_containment(backups / "a.skill", tmp_path)
        assert not verify_backup_containment(backups, tmp_path)
        assert not verify_backup_containment(backups / ".." / "a.skill", tmp_path)
        assert not verify_backup_containment(tmp_path / "backups-evil" / "a.skill", tmp_path)

    def test_collisions_fall_back_to_suffix(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        backups = get_backup_directory(tmp_path)
        fixed = "s-20260101-000000-deadbeef.skill"
        (backups / fixed).write_bytes(b"")
        (backups / "s-20260101-000000-deadbeef-1.skill").write_bytes(b"")
        monkeypatch.setattr(backup, "generate_backup_filename", lambda *_args, **_kwargs: fixed)

        path = generate_unique_backup_path("s", tmp_path)
        assert path.name == "s-20260101-000000-deadbeef-2.skill"

    def test_exhausted_suffixes_raise(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        backups = get_backup_directory(tmp_path)
        fixed = "s-20260101-000000-deadbeef.skill"
        (backups / fixed).write_bytes(b"")
        for i in range(1, 101):
            (backups / f"s-20260101-000000-deadbeef-{i}.skill").write_bytes(b"")
        monkeypatch.setattr(backup, "generate_backup_filename", lambda *_args, **_kwargs: fixed)

        with pytest.raises(OSError, match="Unable to generate unique backup filename"):
            generate_unique_backup_path("s", tmp_path)


class TestCreateBackup:
    @pytest.fixture(autouse=True)
    def _setup(self, tmp_path: Path) -> None:
        self.home = tmp_path / "home"
        self.home.mkdir()
        self.skill = write_tree(
            tmp_path / "skills" / "demo",
            {"SKILL.md": "---\nname: demo\n---\n", "docs/a.txt": "aaa", "empty/.keep": ""},
        )
        os.symlink(tmp_path / "home", self.skill / "escape")

    def test_archive_contents_and_mode(self) -> None:
        progress: list[tuple[int, int]] = []
        result = create_backup(self.skill, "demo", self.home, on_progress=lambda done, total: progress.append((done, total)))

        assert result.success
        assert result.file_count == 3
        assert stat.S_IMODE(os.stat(result.path).st_mode) == 0o600
        with zipfile.ZipFile(result.path) as zf:
            names = set(zf.namelist())
        assert "demo/" in names
        assert {"demo/SKILL.md", "demo/docs/a.txt", "demo/empty/.keep"} <= names
        assert "demo/escape" not in names
        assert progress[-1] == (3, 3)

    def test_refuses_symlinked_skill(self, tmp_path: Path) -> None:
        alias = tmp_path / "skills" / "alias"
        os.symlink(self.skill, alias)
        result = create_backup(alias, "alias", self.home)
        assert not result.success

    def test_refuses_symlinked_backup_directory(self, tmp_path: Path) -> None:
        (tmp_path / "trap").mkdir()
        os.symlink(tmp_path / "trap", self.home / ".asm")
        result = create_backup(self.skill, "demo", self.home)
        assert not result.success
        assert list((tmp_path / "trap").iterdir()) == []

    def test_info_and_listing(self) -> None:
        first = create_backup(self.skill, "demo", self.home)
        (get_backup_directory(self.home) / "demo-20000101-000000-00000000.skill").write_bytes(b"")
        (get_backup_directory(self.home) / "other-20990101-000000-00000000.skill").write_bytes(b"")

        listed = list_backups("demo", self.home)
        assert [p.name for p in listed][-1] == "demo-20000101-000000-00000000.skill"
        assert str(listed[0]) == first.path

        info = get_backup_info(first.path)
        assert info.file_count == 3
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z", info.timestamp)

    def test_restore_round_trip(self, tmp_path: Path) -> None:
        result = create_backup(self.skill, "demo", self.home)
        target = tmp_path / "restored"
        target.mkdir()

        restored = restore_from_backup(result.path, target, self.home)
        assert restored.success
        assert restored.file_count == 3
        assert (target / "demo" / "docs" / "a.txt").read_text() == "aaa"
        assert not (target / "demo" / "escape").exists()


class TestCleanupAndRestoreRefusals:
    @pytest.fixture(autouse=True)
    def _setup(self, tmp_path: Path) -> None:
        self.tmp = tmp_path
        self.home = tmp_path / "home"
        self.home.mkdir()
        self.backups = get_backup_directory(self.home)

    def test_cleanup_outside_backup_directory_is_refused(self) -> None:
        victim = self.tmp / "victim.skill"
        victim.write_bytes(b"keep")
        with pytest.raises(SecurityViolation):
            cleanup_backup(victim, self.home)
        assert victim.exists()

    def test_cleanup_symlink_is_refused(self) -> None:
        victim = self.tmp / "victim.skill"
        victim.write_bytes(b"keep")
        link = self.backups / "demo-20260101-000000-aaaaaaaa.skill"
        os.symlink(victim, link)
        with pytest.raises(SecurityViolation):
            cleanup_backup(link, self.home)
        assert victim.exists()

    def test_cleanup_directory_is_refused(self) -> None:
        directory = self.backups / "demo-20260101-000000-bbbbbbbb.skill"
        directory.mkdir()
        with pytest.raises(OSError):
            cleanup_backup(directory, self.home)

    def test_cleanup_removes_backup(self) -> None:
        target = self.backups / "demo-20260101-000000-cccccccc.skill"
        target.write_bytes(b"")
        cleanup_backup(target, self.home)
        assert not target.exists()

    def test_restore_outside_backup_directory_is_refused(self) -> None:
        result = restore_from_backup(self.tmp / "elsewhere.skill", self.tmp, self.home)
        assert not result.success
        assert "escapes backup directory" in (result.error or "")

    def test_restore_missing_backup(self) -> None:
        result = restore_from_backup(self.backups / "gone.skill", self.tmp, self.home)
        assert not result.success
        assert "not found" in (result.error or "")
