"""Locating installed skills with case-exact name checks."""

from __future__ import annotations

import os
from pathlib import Path

from .constants import SKILL_MD
from .types import (
    CaseMatch,
    CaseMismatch,
    CaseVerifyError,
    CaseVerifyResult,
    ScopeInfo,
    SkillCaseMismatch,
    SkillDiscoveryResult,
    SkillFound,
    SkillMdError,
    SkillMdMissing,
    SkillMdPresent,
    SkillMdResult,
    SkillNotFound,
)


def verify_case_sensitivity(skill_path: str | Path, skill_name: str) -> CaseVerifyResult:
    """Compare skill_name byte for byte with the entry actually present in the parent."""
    parent = Path(skill_path).parent
    try:
        entries = os.listdir(parent)
    except OSError as err:
        return CaseVerifyError(message=f"Failed to read directory {parent}: {err}")

    if skill_name in entries:
        return CaseMatch()

    lowered = skill_name.lower()
    actual = next((entry for entry in entries if entry.lower() == lowered), None)
    if actual is None:
        return CaseVerifyError(message=f"Entry not found in parent directory: {skill_name}")
    return CaseMismatch(expected_name=skill_name, actual_name=actual)


def verify_skill_md(skill_path: str | Path) -> SkillMdResult:
    skill_md = Path(skill_path) / SKILL_MD
    try:
        if skill_md.is_file():
            return SkillMdPresent(path=str(skill_md))
    except OSError as err:
        return SkillMdError(message=f"Failed to check {SKILL_MD}: {err}")
    return SkillMdMissing(warning=f"Skill directory has no {SKILL_MD}: {skill_path}")


def discover_skill(skill_name: str, scope_info: ScopeInfo) -> SkillDiscoveryResult:
    skill_path = Path(scope_info.path) / skill_name
    try:
        if not skill_path.is_dir():
            return SkillNotFound(searched_path=str(skill_path))
    except OSError:
        return SkillNotFound(searched_path=str(skill_path))

    case_result = verify_case_sensitivity(skill_path, skill_name)
    if case_result.type == "mismatch":
        return SkillCaseMismatch(
            expected_name=case_result.expected_name,
            actual_name=case_result.actual_name,
            actual_path=str(Path(scope_info.path) / case_result.actual_name),
        )
    if case_result.type == "error":
        # Unverifiable entries are treated as absent
        return SkillNotFound(searched_path=str(skill_path))

    md_result = verify_skill_md(skill_path)
    return SkillFound(path=str(skill_path), has_skill_md=md_result.type == "present")
