"""Cooperative cancellation and timeouts for update phases."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, TypeVar

from .errors import OperationCancelled, TimeoutUpdateError, UpdateFailed
from .logger import logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")


def is_aborted(signal: asyncio.Event | None) -> bool:
    return signal is not None and signal.is_set()


def check_aborted(signal: asyncio.Event | None, where: str = "") -> None:
    """Raise OperationCancelled if the signal has fired."""
    if is_aborted(signal):
        logger.info("Operation cancelled", at=where or None)
        raise OperationCancelled(f"Operation cancelled{f' during {where}' if where else ''}")


async def with_timeout(awaitable: Awaitable[T], seconds: float, operation_name: str) -> T:
    """Await with a deadline. Expiry raises UpdateFailed carrying a timeout error."""
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as err:
        logger.error("Operation timed out", operation=operation_name, timeout_s=seconds)
        raise UpdateFailed(TimeoutUpdateError(operation_name=operation_name, timeout_s=seconds)) from err


async def run_blocking(fn: Callable[..., T], *args: object) -> T:
    """Run blocking filesystem work on the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, fn, *args)
