"""Safe, lock-protected updates of installed agent skills."""

from __future__ import annotations

from .backup import (
    cleanup_backup,
    create_backup,
    get_backup_directory,
    get_backup_info,
    list_backups,
    restore_from_backup,
)
from .cancellation import check_aborted, with_timeout
from .comparator import (
    compare_versions,
    detect_downgrade,
    format_diff_line,
    stream_file_comparison,
    summarize_changes,
)
from .config import TimeoutConfig
from .constants import (
    MAX_FILE_COUNT,
    MAX_SKILL_SIZE,
    STALE_LOCK_TIMEOUT_S,
    UPDATE_LOCK_EXTENSION,
)
from .enumerator import check_resource_limits, enumerate_skill_files, get_skill_summary
from .errors import (
    OperationCancelled,
    SecurityViolation,
    UpdateError,
    UpdateExitCode,
    UpdateFailed,
    describe_error,
    exit_code_for_error,
    exit_code_for_result,
)
from .lock import (
    acquire_update_lock,
    get_lock_path,
    has_update_lock,
    release_update_lock,
    update_lock,
)
from .security import (
    check_hard_links,
    check_symlink_safety,
    validate_zip_entry_security,
    verify_path_containment,
)
from .types import (
    FileChange,
    FileRecord,
    UninstallOptions,
    UninstallSummary,
    UpdateCancelled,
    UpdateContext,
    UpdateDryRunPreview,
    UpdateOptions,
    UpdateResult,
    UpdateRollbackFailed,
    UpdateRolledBack,
    UpdateSuccess,
    VersionComparison,
)
from .uninstall import uninstall_skills
from .update import update_skill

__all__ = [
    # backup
    "cleanup_backup",
    "create_backup",
    "get_backup_directory",
    "get_backup_info",
    "list_backups",
    "restore_from_backup",
    # cancellation
    "check_aborted",
    "with_timeout",
    # comparator
    "compare_versions",
    "detect_downgrade",
    "format_diff_line",
    "stream_file_comparison",
    "summarize_changes",
    # config
    "TimeoutConfig",
    # constants
    "MAX_FILE_COUNT",
    "MAX_SKILL_SIZE",
    "STALE_LOCK_TIMEOUT_S",
    "UPDATE_LOCK_EXTENSION",
    # enumerator
    "check_resource_limits",
    "enumerate_skill_files",
    "get_skill_summary",
    # errors
    "OperationCancelled",
    "SecurityViolation",
    "UpdateError",
    "UpdateExitCode",
    "UpdateFailed",
    "describe_error",
    "exit_code_for_error",
    "exit_code_for_result",
    # lock
    "acquire_update_lock",
    "get_lock_path",
    "has_update_lock",
    "release_update_lock",
    "update_lock",
    # security
    "check_hard_links",
    "check_symlink_safety",
    "validate_zip_entry_security",
    "verify_path_containment",
    # types
    "FileChange",
    "FileRecord",
    "UninstallOptions",
    "UninstallSummary",
    "UpdateCancelled",
    "UpdateContext",
    "UpdateDryRunPreview",
    "UpdateOptions",
    "UpdateResult",
    "UpdateRollbackFailed",
    "UpdateRolledBack",
    "UpdateSuccess",
    "VersionComparison",
    # uninstall
    "uninstall_skills",
    # update
    "update_skill",
]
