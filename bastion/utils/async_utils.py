"""
Bastion - Async Utilities
=========================

Background tasks and concurrent operations that never fail silently.

Usage:
    from bastion.utils.async_utils import create_safe_task

    create_safe_task(executor.execute(request), "Action: ban")

Author: Bastion Maintainers
"""

import asyncio
from typing import Any, Callable, Coroutine, Set

from bastion.core.logger import logger


# Strong references so fire-and-forget tasks are not garbage collected mid-flight
_background_tasks: Set[asyncio.Task] = set()


# =============================================================================
# Safe Background Tasks
# =============================================================================

def create_safe_task(
    coro: Coroutine[Any, Any, Any],
    name: str = "Background Task",
) -> asyncio.Task:
    """
    Create a background task with automatic error logging.

    Must be called with a running event loop.

    Args:
        coro: The coroutine to run as a background task.
        name: Name for logging purposes.

    Returns:
        The created asyncio.Task.
    """
    async def wrapped():
        try:
            await coro
        except asyncio.CancelledError:
            pass  # Expected during shutdown
        except Exception as e:
            logger.error("Background Task Failed", [
                ("Task", name),
                ("Error Type", type(e).__name__),
                ("Error", str(e)[:200]),
            ])

    task = asyncio.create_task(wrapped(), name=name)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


def has_running_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def run_blocking(func: Callable[..., Any], *args: Any, name: str = "Blocking Call") -> None:
    """
    Run a blocking call (usually a database write) off the event path.

    Inside an event loop the call goes to a worker thread as a safe task;
    outside one (startup, synchronous tests) it runs inline.
    """
    if has_running_loop():
        create_safe_task(asyncio.to_thread(func, *args), name)
    else:
        func(*args)


__all__ = [
    "create_safe_task",
    "has_running_loop",
    "run_blocking",
]
