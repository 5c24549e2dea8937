"""
Detached background tasks.

Fire-and-forget work (invoice notifications) runs as an asyncio task that the
caller never awaits. References are held here so tasks are not garbage
collected mid-flight; failures are logged from the done-callback.
"""
import asyncio
import logging
from typing import Coroutine, Any, Optional, Set

logger = logging.getLogger("business_service.background")

_tasks: Set[asyncio.Task] = set()


def _on_done(task: asyncio.Task) -> None:
    _tasks.discard(task)
    if task.cancelled():
        logger.info("[background] task cancelled", extra={"task_name": task.get_name()})
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "[background] task failed",
            exc_info=exc,
            extra={"task_name": task.get_name()},
        )


def spawn(coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> asyncio.Task:
    """Schedule ``coro`` on the running loop without awaiting it."""
    task = asyncio.get_running_loop().create_task(coro, name=name)
    _tasks.add(task)
    task.add_done_callback(_on_done)
    return task


async def drain(timeout: Optional[float] = None) -> None:
    """Wait for in-flight background tasks (shutdown and tests)."""
    if not _tasks:
        return
    done, not_done = await asyncio.wait(set(_tasks), timeout=timeout)
    for task in not_done:
        task.cancel()
    if not_done:
        logger.warning("[background] cancelled unfinished tasks", extra={"count": len(not_done)})
