"""Timeout configuration, overridable from the environment or a .env file."""

from __future__ import annotations

import os
from pathlib import Path


def read_env_file(keys: list[str], env_file: Path | None = None) -> dict[str, str]:
    """Values for the requested KEY=VALUE lines of .env in the working directory."""
    env_file = env_file or Path.cwd() / ".env"
    try:
        lines = env_file.read_text().splitlines()
    except OSError:
        return {}

    result: dict[str, str] = {}
    for line in lines:
        key, sep, value = line.partition("=")
        key, value = key.strip(), value.strip()
        if sep and key in keys and value:
            result[key] = value
    return result


_TIMEOUT_KEYS = [
    "ASM_UPDATE_TIMEOUT",
    "ASM_BACKUP_TIMEOUT",
    "ASM_EXTRACTION_TIMEOUT",
    "ASM_VALIDATION_TIMEOUT",
]
_env_config = read_env_file(_TIMEOUT_KEYS)


def _seconds(key: str, default: float) -> float:
    raw = os.environ.get(key) or _env_config.get(key)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


UPDATE_TIMEOUT: float = _seconds("ASM_UPDATE_TIMEOUT", 5 * 60)
BACKUP_TIMEOUT: float = _seconds("ASM_BACKUP_TIMEOUT", 2 * 60)
EXTRACTION_TIMEOUT: float = _seconds("ASM_EXTRACTION_TIMEOUT", 2 * 60)
VALIDATION_TIMEOUT: float = _seconds("ASM_VALIDATION_TIMEOUT", 5)


class TimeoutConfig:
    """Per-operation timeouts for an update, in seconds."""

    def __init__(
        self,
        update_timeout: float = UPDATE_TIMEOUT,
        backup_timeout: float = BACKUP_TIMEOUT,
        extraction_timeout: float = EXTRACTION_TIMEOUT,
        validation_timeout: float = VALIDATION_TIMEOUT,
    ) -> None:
        self.update_timeout = update_timeout
        self.backup_timeout = backup_timeout
        self.extraction_timeout = extraction_timeout
        self.validation_timeout = validation_timeout

    def __repr__(self) -> str:
        return (
            f"TimeoutConfig(update={self.update_timeout}, backup={self.backup_timeout}, "
            f"extraction={self.extraction_timeout}, validation={self.validation_timeout})"
        )
