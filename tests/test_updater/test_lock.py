"""Tests for per-skill update and uninstall locks."""

from __future__ import annotations

import json
import os
import threading
import time
from typing import TYPE_CHECKING

import pytest

from skills_updater.errors import UpdateFailed
from skills_updater.lock import (
    acquire_uninstall_lock,
    acquire_update_lock,
    get_lock_path,
    has_update_lock,
    lock_failure,
    read_lock_info,
    release_update_lock,
    update_lock,
)

if TYPE_CHECKING:
    from pathlib import Path


class TestUpdateLock:
    @pytest.fixture(autouse=True)
    def _setup(self, tmp_path: Path) -> None:
        self.skill = tmp_path / "skills" / "demo"
        self.skill.mkdir(parents=True)
        self.lock_path = tmp_path / "skills" / "demo.asm-update.lock"

    def test_lock_path_is_a_sibling(self) -> None:
        assert get_lock_path(self.skill) == self.lock_path

    def test_lock_file_contents(self) -> None:
        result = acquire_update_lock(self.skill, "/pkgs/demo.skill")
        assert result.acquired
        data = json.loads(self.lock_path.read_text())
        assert data == {
            "pid": os.getpid(),
            "timestamp": data["timestamp"],
            "operationType": "update",
            "skillPath": str(self.skill),
            "packagePath": "/pkgs/demo.skill",
        }
        info = read_lock_info(self.lock_path)
        assert info is not None
        assert info.pid == os.getpid()

    def test_second_acquire_fails_with_owner_details(self) -> None:
        assert acquire_update_lock(self.skill, "a.skill").acquired
        second = acquire_update_lock(self.skill, "b.skill")

        assert not second.acquired
        assert second.owner_pid == os.getpid()
        assert f"(PID: {os.getpid()})" in second.error
        assert any(f'rm "{self.lock_path}"' in line for line in second.details)

    def test_stale_lock_is_replaced(self) -> None:
        self.lock_path.write_text(json.dumps({"pid": 1, "timestamp": "x", "skillPath": str(self.skill)}))
        ten_minutes_ago = time.time() - 600
        os.utime(self.lock_path, (ten_minutes_ago, ten_minutes_ago))
        assert not has_update_lock(self.skill)

        result = acquire_update_lock(self.skill, "a.skill")
        assert result.acquired
        info = read_lock_info(self.lock_path)
        assert info is not None
        assert info.pid == os.getpid()

    def test_release_is_idempotent(self) -> None:
        result = acquire_update_lock(self.skill, "a.skill")
        assert has_update_lock(self.skill)
        release_update_lock(result.lock_path)
        release_update_lock(result.lock_path)
        assert not self.lock_path.exists()
        assert not has_update_lock(self.skill)

    def test_unreadable_lock_contents_still_block(self) -> None:
        self.lock_path.write_text("garbage")
        result = acquire_update_lock(self.skill, "a.skill")
        assert not result.acquired
        assert "PID: unknown" in result.error

    def test_concurrent_acquire_has_one_winner(self) -> None:
        barrier = threading.Barrier(8)
        results = []

        def contend() -> None:
            barrier.wait()
            results.append(acquire_update_lock(self.skill, "a.skill"))

        threads = [threading.Thread(target=contend) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sum(1 for r in results if r.acquired) == 1

    def test_uninstall_lock_is_separate(self) -> None:
        assert acquire_update_lock(self.skill, "a.skill").acquired
        result = acquire_uninstall_lock(self.skill)
        assert result.acquired
        assert result.lock_path.endswith("demo.asm-uninstall.lock")
        again = acquire_uninstall_lock(self.skill)
        assert not again.acquired
        assert "being uninstalled" in again.error

    def test_lock_failure_maps_to_errors(self) -> None:
        acquire_update_lock(self.skill, "a.skill")
        error = lock_failure(acquire_update_lock(self.skill, "a.skill"))
        assert error.type == "validation-error"
        assert error.field == "skill_name"

    def test_write_failure_is_a_filesystem_error(self, tmp_path: Path) -> None:
        missing = tmp_path / "no-such-dir" / "demo"
        result = acquire_update_lock(missing, "a.skill")
        assert not result.acquired
        assert result.operation == "write"
        assert lock_failure(result).type == "filesystem-error"


class TestUpdateLockContext:
    @pytest.fixture(autouse=True)
    def _setup(self, tmp_path: Path) -> None:
        self.skill = tmp_path / "demo"
        self.skill.mkdir()

    @pytest.mark.asyncio
    async def test_released_on_exit(self) -> None:
        async with update_lock(self.skill, "a.skill") as lock_path:
            assert os.path.exists(lock_path)
        assert not os.path.exists(lock_path)

    @pytest.mark.asyncio
    async def test_released_on_exception(self) -> None:
        with pytest.raises(RuntimeError):
            async with update_lock(self.skill, "a.skill"):
                raise RuntimeError("boom")
        assert not has_update_lock(self.skill)

    @pytest.mark.asyncio
    async def test_raises_when_held(self) -> None:
        held = acquire_update_lock(self.skill, "a.skill")
        with pytest.raises(UpdateFailed) as exc_info:
            async with update_lock(self.skill, "b.skill"):
                pass
        assert exc_info.value.error.type == "validation-error"
        assert os.path.exists(held.lock_path)
