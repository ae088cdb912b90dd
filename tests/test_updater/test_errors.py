"""Tests for error descriptions, exit codes and result formatting."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from skills_updater import messages
from skills_updater.errors import (
    BackupCreationError,
    CriticalUpdateError,
    FileSystemUpdateError,
    PackageMismatchError,
    RollbackError,
    SecurityUpdateError,
    SkillNotFoundError,
    TimeoutUpdateError,
    UpdateExitCode,
    UpdateFailed,
    ValidationUpdateError,
    describe_error,
    exit_code_for_error,
    exit_code_for_result,
)
from skills_updater.types import UpdateRollbackFailed, UpdateSuccess


@pytest.mark.parametrize(
    ("error", "code"),
    [
        (SkillNotFoundError(skill_name="s", searched_path="/p/s"), UpdateExitCode.NOT_FOUND),
        (SecurityUpdateError(reason="symlink-escape", details="d"), UpdateExitCode.SECURITY_ERROR),
        (FileSystemUpdateError(operation="write", path="/p", message="m"), UpdateExitCode.FILESYSTEM_ERROR),
        (ValidationUpdateError(field="package_content", message="m"), UpdateExitCode.INVALID_PACKAGE),
        (ValidationUpdateError(field="package_path", message="m"), UpdateExitCode.INVALID_PACKAGE),
        (ValidationUpdateError(field="skill_name", message="m"), UpdateExitCode.SECURITY_ERROR),
        (
            PackageMismatchError(installed_skill_name="a", package_skill_name="b", message="m"),
            UpdateExitCode.INVALID_PACKAGE,
        ),
        (BackupCreationError(backup_path="~/.asm/backups/", reason="r"), UpdateExitCode.FILESYSTEM_ERROR),
        (RollbackError(skill_name="s", update_failure_reason="r"), UpdateExitCode.ROLLED_BACK),
        (
            CriticalUpdateError(
                skill_name="s",
                skill_path="/p/s",
                update_failure_reason="u",
                rollback_failure_reason="r",
                recovery_instructions="i",
            ),
            UpdateExitCode.ROLLBACK_FAILED,
        ),
        (TimeoutUpdateError(operation_name="update", timeout_s=300), UpdateExitCode.FILESYSTEM_ERROR),
    ],
)
def test_every_error_has_an_exit_code_and_description(error, code: UpdateExitCode) -> None:
    assert exit_code_for_error(error) == code
    assert describe_error(error)


@pytest.mark.parametrize(
    ("result_type", "code"),
    [
        ("update-success", 0),
        ("update-dry-run-preview", 0),
        ("update-cancelled", 3),
        ("update-rolled-back", 6),
        ("update-rollback-failed", 7),
    ],
)
def test_result_exit_codes(result_type: str, code: int) -> None:
    assert exit_code_for_result(result_type) == code


def test_update_failed_carries_the_error() -> None:
    error = TimeoutUpdateError(operation_name="backup", timeout_s=120)
    exc = UpdateFailed(error)
    assert exc.error is error
    assert str(exc) == "Operation 'backup' timed out after 120s"


def test_errors_are_immutable() -> None:
    error = SkillNotFoundError(skill_name="s", searched_path="/p")
    with pytest.raises(ValidationError):
        error.skill_name = "other"


class TestMessages:
    def test_success_mentions_pending_backup_removal(self) -> None:
        text = messages.format_update_success(
            UpdateSuccess(
                skill_name="demo",
                path="/p/demo",
                previous_file_count=2,
                current_file_count=3,
                previous_size=150,
                current_size=2048,
                backup_path="/h/.asm/backups/demo.skill",
                backup_will_be_removed=True,
            )
        )
        assert "Successfully updated skill: demo" in text
        assert "3 files, 2.0 KB" in text
        assert "(will be removed)" in text

    def test_rollback_failed_includes_recovery(self) -> None:
        instructions = messages.recovery_instructions("demo", "/p/skills/demo", "/h/.asm/backups/demo.skill")
        assert 'unzip "/h/.asm/backups/demo.skill" -d "/p/skills"' in instructions

        text = messages.format_rollback_failed(
            UpdateRollbackFailed(
                skill_name="demo",
                path="/p/skills/demo",
                update_failure_reason="u",
                rollback_failure_reason="r",
                backup_path="/h/.asm/backups/demo.skill",
                recovery_instructions=instructions,
            )
        )
        assert text.startswith("CRITICAL")
        assert instructions in text

    def test_recovery_without_backup(self) -> None:
        assert "No backup exists" in messages.recovery_instructions("demo", "/p/skills/demo", None)
