"""Skill update engine domain types."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .config import TimeoutConfig

# --- Scope ---


class ScopeInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["project", "personal"]
    path: str


# --- Enumeration ---


class FileRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    relative_path: str
    absolute_path: str
    size: int
    is_directory: bool
    is_symlink: bool
    hard_link_count: int


class SkillSummary(BaseModel):
    file_count: int = 0
    directory_count: int = 0
    total_size: int = 0
    symlink_count: int = 0
    hard_link_count: int = 0


class ResourceLimitOk(BaseModel):
    type: Literal["ok"] = "ok"


class ResourceLimitExceeded(BaseModel):
    type: Literal["exceeded"] = "exceeded"
    warnings: list[str]
    requires_force: bool = True


ResourceLimitResult = ResourceLimitOk | ResourceLimitExceeded


# --- Security ---


class SymlinkSafe(BaseModel):
    type: Literal["safe"] = "safe"
    is_symlink: bool
    resolved_path: str | None = None


class SymlinkEscape(BaseModel):
    type: Literal["escape"] = "escape"
    target_path: str
    scope_boundary: str


class SymlinkCheckError(BaseModel):
    type: Literal["error"] = "error"
    message: str


SymlinkCheckResult = SymlinkSafe | SymlinkEscape | SymlinkCheckError


class SymlinkInfo(BaseModel):
    relative_path: str
    absolute_path: str
    is_directory_symlink: bool
    target_path: str
    escapes_scope: bool
    warning: str


class SymlinkCheckSummary(BaseModel):
    total_symlinks: int
    escaping_symlinks: int
    directory_symlinks: int
    escaping_paths: list[SymlinkInfo]
    has_security_concerns: bool
    warning: str | None = None


class HardLinkInfo(BaseModel):
    relative_path: str
    absolute_path: str
    link_count: int


class HardLinkWarning(BaseModel):
    count: int
    files: list[HardLinkInfo]
    message: str


class HardLinkCheckResult(BaseModel):
    has_hard_links: bool
    hard_linked_files: list[HardLinkInfo]
    requires_force: bool


class ZipEntrySafe(BaseModel):
    type: Literal["safe"] = "safe"
    warnings: list[str] = Field(default_factory=list)


class ZipEntryUnsafe(BaseModel):
    type: Literal["unsafe"] = "unsafe"
    reason: Literal["zip-entry-escape", "path-traversal"]
    details: str


class ZipEntryCheckError(BaseModel):
    type: Literal["error"] = "error"
    message: str


ZipEntryCheckResult = ZipEntrySafe | ZipEntryUnsafe | ZipEntryCheckError


# --- Discovery ---


class SkillFound(BaseModel):
    type: Literal["found"] = "found"
    path: str
    has_skill_md: bool


class SkillNotFound(BaseModel):
    type: Literal["not-found"] = "not-found"
    searched_path: str


class SkillCaseMismatch(BaseModel):
    type: Literal["case-mismatch"] = "case-mismatch"
    expected_name: str
    actual_name: str
    actual_path: str


SkillDiscoveryResult = SkillFound | SkillNotFound | SkillCaseMismatch


class CaseMatch(BaseModel):
    type: Literal["match"] = "match"


class CaseMismatch(BaseModel):
    type: Literal["mismatch"] = "mismatch"
    expected_name: str
    actual_name: str


class CaseVerifyError(BaseModel):
    type: Literal["error"] = "error"
    message: str


CaseVerifyResult = CaseMatch | CaseMismatch | CaseVerifyError


class SkillMdPresent(BaseModel):
    type: Literal["present"] = "present"
    path: str


class SkillMdMissing(BaseModel):
    type: Literal["missing"] = "missing"
    warning: str


class SkillMdError(BaseModel):
    type: Literal["error"] = "error"
    message: str


SkillMdResult = SkillMdPresent | SkillMdMissing | SkillMdError


# --- Validation ---


class FrontmatterResult(BaseModel):
    success: bool
    data: dict[str, Any] | None = None
    raw: str | None = None
    body: str | None = None
    error: str | None = None


class CheckResult(BaseModel):
    """Outcome of a single validation primitive."""

    valid: bool
    error: str | None = None


class PackageFileResult(BaseModel):
    valid: bool
    package_path: str | None = None
    error: str | None = None


class PackageStructureResult(BaseModel):
    valid: bool
    root_directory: str | None = None
    skill_md_path: str | None = None
    entry_count: int = 0
    error: str | None = None


class NameMatchResult(BaseModel):
    valid: bool
    directory_name: str | None = None
    frontmatter_name: str | None = None
    error: str | None = None


class ContentValidationResult(BaseModel):
    valid: bool
    skill_name: str | None = None
    errors: list[str] = Field(default_factory=list)


# --- Version comparison ---


class FileChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    change_type: Literal["added", "removed", "modified"]
    size_before: int
    size_after: int
    size_delta: int


class VersionComparison(BaseModel):
    model_config = ConfigDict(frozen=True)

    files_added: list[FileChange] = Field(default_factory=list)
    files_removed: list[FileChange] = Field(default_factory=list)
    files_modified: list[FileChange] = Field(default_factory=list)
    added_count: int = 0
    removed_count: int = 0
    modified_count: int = 0
    size_change: int = 0


class VersionInfo(BaseModel):
    path: str
    file_count: int
    size: int
    last_modified: str | None = None
    description: str | None = None


class SkillMetadata(BaseModel):
    name: str
    description: str | None = None
    version: str | None = None
    last_modified: str | None = None


class DowngradeInfo(BaseModel):
    is_downgrade: bool
    installed_date: str | None = None
    new_date: str | None = None
    message: str


class ChangeSummary(BaseModel):
    added_count: int
    removed_count: int
    modified_count: int
    bytes_added: int
    bytes_removed: int
    net_size_change: int


# --- Backup ---


class BackupResult(BaseModel):
    success: bool
    path: str = ""
    size: int = 0
    file_count: int = 0
    error: str | None = None


class BackupDirValidation(BaseModel):
    valid: bool
    errors: list[str]
    warnings: list[str]


class BackupWritabilityResult(BaseModel):
    writable: bool
    error: str | None = None


class BackupInfo(BaseModel):
    path: str
    timestamp: str
    size: int
    file_count: int = 0


class RestoreResult(BaseModel):
    success: bool
    file_count: int = 0
    error: str | None = None


# --- Lock ---


class LockInfo(BaseModel):
    """Contents of an update lock file (serialized with camelCase keys)."""

    model_config = ConfigDict(populate_by_name=True)

    pid: int
    timestamp: str
    operation_type: Literal["update", "uninstall"] = Field(default="update", alias="operationType")
    skill_path: str = Field(alias="skillPath")
    package_path: str | None = Field(default=None, alias="packagePath")


class LockAcquired(BaseModel):
    acquired: Literal[True] = True
    lock_path: str


class LockNotAcquired(BaseModel):
    acquired: Literal[False] = False
    lock_path: str
    error: str
    details: list[str] = Field(default_factory=list)
    owner_pid: int | None = None
    operation: Literal["locked", "write"] = "locked"


LockAcquisitionResult = LockAcquired | LockNotAcquired


# --- Update orchestration ---


class UpdateOptions(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    scope: str | None = "project"
    force: bool = False
    dry_run: bool = False
    quiet: bool = False
    no_backup: bool = False
    keep_backup: bool = False
    thorough: bool = False
    cwd: str | None = None
    homedir: str | None = None
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)


class UpdateContext(BaseModel):
    """State accumulated across update phases.

    Each phase returns a copy extended with its own fields; earlier fields are
    never rewritten.
    """

    model_config = ConfigDict(frozen=True)

    # validation / discovery
    skill_name: str
    scope_info: ScopeInfo
    package_path: str
    skill_path: str
    has_skill_md: bool
    skill_name_from_package: str
    package_files: list[str]
    temp_dir: str | None = None

    # security-check
    security_warnings: list[str] = Field(default_factory=list)
    hard_link_check: HardLinkCheckResult | None = None
    comparison: VersionComparison | None = None
    installed_info: VersionInfo | None = None
    package_info: VersionInfo | None = None
    downgrade_info: DowngradeInfo | None = None

    # preparation
    lock_path: str | None = None
    backup_path: str | None = None
    backup_file_count: int | None = None
    backup_size: int | None = None
    backup_skipped: bool = False

    @property
    def extracted_skill_dir(self) -> str | None:
        if self.temp_dir is None:
            return None
        return str(Path(self.temp_dir) / self.skill_name_from_package)


class UpdateSuccess(BaseModel):
    type: Literal["update-success"] = "update-success"
    skill_name: str
    path: str
    previous_file_count: int
    current_file_count: int
    previous_size: int
    current_size: int
    backup_path: str | None = None
    backup_will_be_removed: bool


class UpdateDryRunPreview(BaseModel):
    type: Literal["update-dry-run-preview"] = "update-dry-run-preview"
    skill_name: str
    path: str
    current_version: VersionInfo
    new_version: VersionInfo
    comparison: VersionComparison
    downgrade_info: DowngradeInfo | None = None
    backup_path: str


class UpdateRolledBack(BaseModel):
    type: Literal["update-rolled-back"] = "update-rolled-back"
    skill_name: str
    path: str
    failure_reason: str
    backup_path: str | None = None


class UpdateRollbackFailed(BaseModel):
    type: Literal["update-rollback-failed"] = "update-rollback-failed"
    skill_name: str
    path: str
    update_failure_reason: str
    rollback_failure_reason: str
    backup_path: str | None = None
    recovery_instructions: str


class UpdateCancelled(BaseModel):
    type: Literal["update-cancelled"] = "update-cancelled"
    skill_name: str
    reason: Literal["user-cancelled", "interrupted"]
    cleanup_performed: bool


UpdateResult = Annotated[
    UpdateSuccess | UpdateDryRunPreview | UpdateRolledBack | UpdateRollbackFailed | UpdateCancelled,
    Field(discriminator="type"),
]


# --- Uninstall ---


class UninstallOptions(BaseModel):
    scope: str | None = "project"
    force: bool = False
    dry_run: bool = False
    cwd: str | None = None
    homedir: str | None = None


class UninstallSummary(BaseModel):
    removed: list[str]
    not_found: list[str]
    dry_run: bool
