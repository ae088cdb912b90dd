"""Update an installed skill from a .skill package."""

from __future__ import annotations

import asyncio
import json
import signal
import sys

from skills_updater import messages
from skills_updater.errors import UpdateExitCode, UpdateFailed, exit_code_for_error, exit_code_for_result
from skills_updater.types import UpdateOptions
from skills_updater.update import update_skill

USAGE = (
    "Usage: python scripts/update_skill.py <skill-name> <package.skill> "
    "[--personal] [--force] [--dry-run] [--quiet] [--no-backup] [--keep-backup] [--thorough]"
)


def _print_result(result) -> None:
    if result.type == "update-success":
        print(messages.format_update_success(result))
    elif result.type == "update-rolled-back":
        print(messages.format_rolled_back(result), file=sys.stderr)
    elif result.type == "update-rollback-failed":
        print(messages.format_rollback_failed(result), file=sys.stderr)
    else:
        print(json.dumps(result.model_dump(), indent=2))


async def _run(skill_name: str, package_path: str, options: UpdateOptions) -> int:
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, cancel.set)

    try:
        result = await update_skill(skill_name, package_path, options, signal=cancel)
    except UpdateFailed as err:
        print(f"Error: {err}", file=sys.stderr)
        details = getattr(err.error, "details", None)
        if isinstance(details, list):
            for line in details:
                print(f"  {line}", file=sys.stderr)
        return exit_code_for_error(err.error)
    finally:
        loop.remove_signal_handler(signal.SIGINT)

    _print_result(result)
    return exit_code_for_result(result.type)


def main() -> None:
    args = [arg for arg in sys.argv[1:] if not arg.startswith("--")]
    flags = {arg for arg in sys.argv[1:] if arg.startswith("--")}
    if len(args) != 2:
        print(USAGE, file=sys.stderr)
        sys.exit(UpdateExitCode.FILESYSTEM_ERROR)

    options = UpdateOptions(
        scope="personal" if "--personal" in flags else "project",
        force="--force" in flags,
        dry_run="--dry-run" in flags,
        quiet="--quiet" in flags,
        no_backup="--no-backup" in flags,
        keep_backup="--keep-backup" in flags,
        thorough="--thorough" in flags,
    )
    sys.exit(asyncio.run(_run(args[0], args[1], options)))


if __name__ == "__main__":
    main()
