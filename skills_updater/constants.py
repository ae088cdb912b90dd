"""Skill update engine constants."""

from __future__ import annotations

import re
from pathlib import Path

SKILL_MD = "SKILL.md"
PACKAGE_EXTENSION = ".skill"

PROJECT_SKILLS_DIR = Path(".claude/skills")
PERSONAL_SKILLS_DIR = Path(".claude/skills")
VALID_SCOPES = ("project", "personal")

ASM_DIR = ".asm"
BACKUPS_DIR = "backups"
DIRECTORY_MODE = 0o700
FILE_MODE = 0o600
MAX_COLLISION_RETRIES = 3
MAX_SUFFIX_ATTEMPTS = 100

UPDATE_LOCK_EXTENSION = ".asm-update.lock"
UNINSTALL_LOCK_EXTENSION = ".asm-uninstall.lock"
STALE_LOCK_TIMEOUT_S = 5 * 60  # 5 minutes

MAX_SKILL_NAME_LENGTH = 64
SKILL_NAME_PATTERN = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")
MAX_DESCRIPTION_LENGTH = 1024

MAX_FILE_COUNT = 10_000
MAX_SKILL_SIZE = 1024 * 1024 * 1024  # 1 GiB

COMPARISON_MEMORY_THRESHOLD = 1000
COMPARISON_BATCH_SIZE = 100

MAX_REPORTED_HARD_LINKS = 10

STAGING_PREFIX = "."
STAGING_SUFFIX = ".asm-update-"
SCRATCH_PREFIX = "asm-update-"
