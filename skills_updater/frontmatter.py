"""SKILL.md YAML frontmatter parsing."""

from __future__ import annotations

import yaml

from .types import FrontmatterResult

FRONTMATTER_DELIMITER = "---"


def parse_frontmatter(content: str) -> FrontmatterResult:
    """Split SKILL.md into its YAML frontmatter mapping and markdown body."""
    if not content or not content.strip():
        return FrontmatterResult(success=False, error="SKILL.md is empty")

    trimmed = content.lstrip()
    if not trimmed.startswith(FRONTMATTER_DELIMITER):
        return FrontmatterResult(success=False, error='Missing YAML frontmatter. File must start with "---"')

    after_opening = trimmed[len(FRONTMATTER_DELIMITER) :]
    closing_idx = after_opening.find(f"\n{FRONTMATTER_DELIMITER}")

    if closing_idx == -1:
        if after_opening.strip().startswith(FRONTMATTER_DELIMITER):
            return FrontmatterResult(success=False, error="Frontmatter cannot be empty")
        return FrontmatterResult(success=False, error='Unclosed YAML frontmatter. Missing closing "---"')

    raw = after_opening[:closing_idx].strip()
    if not raw:
        return FrontmatterResult(success=False, error="Frontmatter cannot be empty")

    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError as err:
        return FrontmatterResult(success=False, error=f"Invalid YAML frontmatter: {err}")

    if parsed is None:
        return FrontmatterResult(success=False, error="Frontmatter cannot be empty")
    if not isinstance(parsed, dict):
        return FrontmatterResult(success=False, error="Frontmatter must be a YAML object with key-value pairs")

    body_start = closing_idx + len(FRONTMATTER_DELIMITER) + 1
    body = after_opening[body_start:].strip()

    return FrontmatterResult(success=True, data=parsed, raw=raw, body=body)
