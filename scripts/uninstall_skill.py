"""Remove one or more installed skills."""

from __future__ import annotations

import asyncio
import json
import sys

from skills_updater.errors import UpdateFailed
from skills_updater.types import UninstallOptions
from skills_updater.uninstall import uninstall_skills


def main() -> None:
    names = [arg for arg in sys.argv[1:] if not arg.startswith("--")]
    flags = {arg for arg in sys.argv[1:] if arg.startswith("--")}
    if not names:
        print(
            "Usage: python scripts/uninstall_skill.py <skill-name>... [--personal] [--force] [--dry-run]",
            file=sys.stderr,
        )
        sys.exit(1)

    options = UninstallOptions(
        scope="personal" if "--personal" in flags else "project",
        force="--force" in flags,
        dry_run="--dry-run" in flags,
    )
    summary = asyncio.run(uninstall_skills(names, options))
    print(json.dumps(summary.model_dump(), indent=2))

    if summary.not_found:
        sys.exit(1)


if __name__ == "__main__":
    try:
        main()
    except UpdateFailed as err:
        print(err, file=sys.stderr)
        sys.exit(1)
