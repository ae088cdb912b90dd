"""Input, package and skill content validation primitives."""

from __future__ import annotations

import os
import re
import zipfile
from pathlib import Path

from . import archive
from .constants import (
    MAX_DESCRIPTION_LENGTH,
    MAX_SKILL_NAME_LENGTH,
    PACKAGE_EXTENSION,
    SKILL_MD,
    SKILL_NAME_PATTERN,
    VALID_SCOPES,
)
from .frontmatter import parse_frontmatter
from .types import (
    CheckResult,
    ContentValidationResult,
    NameMatchResult,
    PackageFileResult,
    PackageStructureResult,
)

_DRIVE_LETTER = re.compile(r"^[A-Za-z]:")


def _has_control_characters(name: str) -> bool:
    return any(ord(ch) <= 0x1F or ord(ch) == 0x7F for ch in name)


def validate_skill_name(name: str | None) -> CheckResult:
    """Strict skill name check, run before any filesystem lookup."""
    if not name or not name.strip():
        return CheckResult(valid=False, error="Skill name cannot be empty")
    if _has_control_characters(name):
        return CheckResult(valid=False, error="Skill name contains invalid control characters")
    if not name.isascii():
        return CheckResult(valid=False, error="Skill name must contain only ASCII characters")
    if "/" in name or "\\" in name:
        return CheckResult(valid=False, error="Skill name cannot contain path separators (/ or \\)")
    if name in (".", ".."):
        return CheckResult(valid=False, error='Skill name cannot be "." or ".." (path traversal not allowed)')
    if _DRIVE_LETTER.match(name):
        return CheckResult(valid=False, error="Skill name cannot be an absolute path")
    if len(name) > MAX_SKILL_NAME_LENGTH:
        return CheckResult(
            valid=False,
            error=f"Skill name must be {MAX_SKILL_NAME_LENGTH} characters or less (got {len(name)})",
        )

    if not SKILL_NAME_PATTERN.match(name):
        if re.search(r"[A-Z]", name):
            error = "Skill name must be lowercase"
        elif name.startswith("-"):
            error = "Skill name cannot start with a hyphen"
        elif name.endswith("-"):
            error = "Skill name cannot end with a hyphen"
        elif "--" in name:
            error = "Skill name cannot contain consecutive hyphens"
        else:
            error = (
                "Skill name must contain only lowercase letters, numbers, and hyphens. "
                f'Example: "my-skill-name" (got "{name}")'
            )
        return CheckResult(valid=False, error=error)

    return CheckResult(valid=True)


def validate_scope(scope: str | None) -> CheckResult:
    if not scope:
        return CheckResult(valid=True)
    if scope not in VALID_SCOPES:
        return CheckResult(
            valid=False,
            error=f'Invalid scope "{scope}". Must be one of: {", ".join(VALID_SCOPES)}',
        )
    return CheckResult(valid=True)


def validate_package_file(package_path: str | None) -> PackageFileResult:
    """Check the package exists, is a regular file, ends in .skill and is a valid ZIP."""
    if not package_path or not package_path.strip():
        return PackageFileResult(valid=False, error="Package path cannot be empty")

    absolute_path = os.path.abspath(os.path.expanduser(package_path))
    try:
        is_file = os.path.isfile(absolute_path)
        exists = os.path.exists(absolute_path)
    except OSError as err:
        return PackageFileResult(valid=False, error=f"Failed to access package file: {err}")
    if not exists:
        return PackageFileResult(valid=False, error=f"Package file not found: {absolute_path}")
    if not is_file:
        return PackageFileResult(valid=False, error=f"Path is not a file: {absolute_path}")
    if not os.access(absolute_path, os.R_OK):
        return PackageFileResult(valid=False, error=f"Permission denied: {absolute_path}")

    extension = Path(absolute_path).suffix
    if extension.lower() != PACKAGE_EXTENSION:
        return PackageFileResult(
            valid=False,
            error=f'Invalid package extension "{extension}". Expected "{PACKAGE_EXTENSION}"',
        )

    if not archive.is_valid_archive(absolute_path):
        return PackageFileResult(valid=False, error="Package file is not a valid ZIP archive")

    return PackageFileResult(valid=True, package_path=absolute_path)


def validate_package_structure(zf: zipfile.ZipFile) -> PackageStructureResult:
    names = archive.list_entries(zf)
    root_dir = archive.get_root_directory(names)
    if root_dir is None:
        return PackageStructureResult(
            valid=False,
            entry_count=len(names),
            error="Package must contain a single root directory with all skill files",
        )

    skill_md_path = f"{root_dir}/{SKILL_MD}"
    if skill_md_path not in names:
        return PackageStructureResult(
            valid=False,
            root_directory=root_dir,
            entry_count=len(names),
            error=f'{SKILL_MD} not found in package root directory "{root_dir}"',
        )

    return PackageStructureResult(
        valid=True, root_directory=root_dir, skill_md_path=skill_md_path, entry_count=len(names)
    )


def validate_name_match(zf: zipfile.ZipFile) -> NameMatchResult:
    """The package root directory must equal the name declared in SKILL.md."""
    root_dir = archive.get_root_directory(archive.list_entries(zf))
    if root_dir is None:
        return NameMatchResult(valid=False, error="Package must contain a single root directory")

    try:
        content = archive.read_entry_text(zf, f"{root_dir}/{SKILL_MD}")
    except (KeyError, UnicodeDecodeError, zipfile.BadZipFile):
        return NameMatchResult(valid=False, directory_name=root_dir, error="Could not read SKILL.md from package")

    parsed = parse_frontmatter(content)
    if not parsed.success or parsed.data is None:
        return NameMatchResult(
            valid=False, directory_name=root_dir, error=f"Invalid SKILL.md frontmatter: {parsed.error}"
        )

    frontmatter_name = parsed.data.get("name")
    if not frontmatter_name:
        return NameMatchResult(
            valid=False, directory_name=root_dir, error='SKILL.md frontmatter is missing the "name" field'
        )

    frontmatter_name = str(frontmatter_name)
    if frontmatter_name != root_dir:
        return NameMatchResult(
            valid=False,
            directory_name=root_dir,
            frontmatter_name=frontmatter_name,
            error=(
                f'Skill name mismatch: directory is "{root_dir}" '
                f'but SKILL.md declares name as "{frontmatter_name}"'
            ),
        )

    return NameMatchResult(valid=True, directory_name=root_dir, frontmatter_name=frontmatter_name)


def validate_description(description: object) -> CheckResult:
    if description is None or not str(description).strip():
        return CheckResult(valid=False, error="Description cannot be empty")
    text = str(description)
    if len(text) > MAX_DESCRIPTION_LENGTH:
        return CheckResult(
            valid=False,
            error=f"Description must be {MAX_DESCRIPTION_LENGTH} characters or less (got {len(text)})",
        )
    if "<" in text or ">" in text:
        return CheckResult(valid=False, error="Description cannot contain angle brackets (< or >)")
    return CheckResult(valid=True)


def validate_skill_content(skill_dir: str | Path) -> ContentValidationResult:
    """Validate an extracted or installed skill directory's SKILL.md."""
    skill_md = Path(skill_dir) / SKILL_MD
    if not skill_md.is_file():
        return ContentValidationResult(valid=False, errors=[f"{SKILL_MD} not found in {skill_dir}"])

    try:
        content = skill_md.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as err:
        return ContentValidationResult(valid=False, errors=[f"Could not read {SKILL_MD}: {err}"])

    parsed = parse_frontmatter(content)
    if not parsed.success or parsed.data is None:
        return ContentValidationResult(valid=False, errors=[parsed.error or "Invalid frontmatter"])

    errors: list[str] = []
    name = parsed.data.get("name")
    if not name:
        errors.append('Missing required field: "name"')
    else:
        name_result = validate_skill_name(str(name))
        if not name_result.valid:
            errors.append(name_result.error or "Invalid skill name")

    if "description" not in parsed.data:
        errors.append('Missing required field: "description"')
    else:
        desc_result = validate_description(parsed.data.get("description"))
        if not desc_result.valid:
            errors.append(desc_result.error or "Invalid description")

    return ContentValidationResult(
        valid=not errors,
        skill_name=str(name) if name else None,
        errors=errors,
    )
