"""Update error variants and the exceptions that carry them."""

from __future__ import annotations

from enum import IntEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

SecurityReason = Literal[
    "path-traversal",
    "symlink-escape",
    "hard-link-detected",
    "containment-violation",
    "case-mismatch",
    "zip-entry-escape",
]

FileSystemOperation = Literal["read", "write", "delete", "stat", "readdir", "rename", "extract"]

ValidationField = Literal["skill_name", "scope", "package_path", "package_content"]


class _ErrorModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class SkillNotFoundError(_ErrorModel):
    type: Literal["skill-not-found"] = "skill-not-found"
    skill_name: str
    searched_path: str


class SecurityUpdateError(_ErrorModel):
    type: Literal["security-error"] = "security-error"
    reason: SecurityReason
    details: str


class FileSystemUpdateError(_ErrorModel):
    type: Literal["filesystem-error"] = "filesystem-error"
    operation: FileSystemOperation
    path: str
    message: str


class ValidationUpdateError(_ErrorModel):
    type: Literal["validation-error"] = "validation-error"
    field: ValidationField
    message: str
    details: list[str] | None = None


class PackageMismatchError(_ErrorModel):
    type: Literal["package-mismatch"] = "package-mismatch"
    installed_skill_name: str
    package_skill_name: str
    message: str


class BackupCreationError(_ErrorModel):
    type: Literal["backup-creation-error"] = "backup-creation-error"
    backup_path: str
    reason: str


class RollbackError(_ErrorModel):
    type: Literal["rollback-error"] = "rollback-error"
    skill_name: str
    update_failure_reason: str
    rollback_succeeded: Literal[True] = True
    backup_path: str | None = None


class CriticalUpdateError(_ErrorModel):
    type: Literal["critical-error"] = "critical-error"
    skill_name: str
    skill_path: str
    update_failure_reason: str
    rollback_failure_reason: str
    backup_path: str | None = None
    recovery_instructions: str


class TimeoutUpdateError(_ErrorModel):
    type: Literal["timeout"] = "timeout"
    operation_name: str
    timeout_s: float


UpdateError = Annotated[
    SkillNotFoundError
    | SecurityUpdateError
    | FileSystemUpdateError
    | ValidationUpdateError
    | PackageMismatchError
    | BackupCreationError
    | RollbackError
    | CriticalUpdateError
    | TimeoutUpdateError,
    Field(discriminator="type"),
]


def describe_error(error: UpdateError) -> str:
    """Return a human-readable message for an update error."""
    if error.type == "skill-not-found":
        return f"Skill not found: {error.skill_name} (searched: {error.searched_path})"
    if error.type == "security-error":
        return f"Security error ({error.reason}): {error.details}"
    if error.type == "filesystem-error":
        return f"File system error during {error.operation}: {error.message}"
    if error.type == "validation-error":
        return f"Validation error for {error.field}: {error.message}"
    if error.type == "package-mismatch":
        return error.message
    if error.type == "backup-creation-error":
        return f"Backup creation failed: {error.reason}"
    if error.type == "rollback-error":
        return f"Update failed but rollback succeeded: {error.update_failure_reason}"
    if error.type == "critical-error":
        return (
            f"Critical error: {error.update_failure_reason}. "
            f"Rollback also failed: {error.rollback_failure_reason}"
        )
    if error.type == "timeout":
        return f"Operation '{error.operation_name}' timed out after {error.timeout_s:g}s"
    raise AssertionError(f"Unhandled update error type: {error.type!r}")


class UpdateFailed(Exception):
    """Raised by an update phase to short-circuit the pipeline with one typed error."""

    def __init__(self, error: UpdateError) -> None:
        super().__init__(describe_error(error))
        self.error = error


class OperationCancelled(Exception):
    """Raised when a cancellation signal fires at a phase boundary."""

    def __init__(self, message: str = "Operation cancelled") -> None:
        super().__init__(message)


class SecurityViolation(ValueError):
    """A path would escape the directory it must stay inside."""

    def __init__(self, message: str, reason: SecurityReason = "containment-violation") -> None:
        super().__init__(message)
        self.reason = reason


class UpdateExitCode(IntEnum):
    SUCCESS = 0
    NOT_FOUND = 1
    FILESYSTEM_ERROR = 2
    CANCELLED = 3
    INVALID_PACKAGE = 4
    SECURITY_ERROR = 5
    ROLLED_BACK = 6
    ROLLBACK_FAILED = 7


def exit_code_for_error(error: UpdateError) -> UpdateExitCode:
    """Map an update error onto the command's exit code."""
    if error.type == "skill-not-found":
        return UpdateExitCode.NOT_FOUND
    if error.type == "security-error":
        return UpdateExitCode.SECURITY_ERROR
    if error.type in ("filesystem-error", "backup-creation-error", "timeout"):
        return UpdateExitCode.FILESYSTEM_ERROR
    if error.type == "validation-error":
        if error.field in ("package_path", "package_content"):
            return UpdateExitCode.INVALID_PACKAGE
        return UpdateExitCode.SECURITY_ERROR
    if error.type == "package-mismatch":
        return UpdateExitCode.INVALID_PACKAGE
    if error.type == "rollback-error":
        return UpdateExitCode.ROLLED_BACK
    if error.type == "critical-error":
        return UpdateExitCode.ROLLBACK_FAILED
    raise AssertionError(f"Unhandled update error type: {error.type!r}")


def exit_code_for_result(result_type: str) -> UpdateExitCode:
    """Map a terminal update result tag onto the command's exit code."""
    if result_type in ("update-success", "update-dry-run-preview"):
        return UpdateExitCode.SUCCESS
    if result_type == "update-cancelled":
        return UpdateExitCode.CANCELLED
    if result_type == "update-rolled-back":
        return UpdateExitCode.ROLLED_BACK
    if result_type == "update-rollback-failed":
        return UpdateExitCode.ROLLBACK_FAILED
    raise AssertionError(f"Unhandled update result type: {result_type!r}")
