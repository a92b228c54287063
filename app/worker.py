"""
Background task supervisor.

HTTP handlers hand long-running generation work to the supervisor and return
immediately; clients observe progress by polling the plan. Every task is
named and tracked so that:
  - a failure that escapes the task is logged, never silently dropped
  - a second spawn under a running name is a no-op (no duplicate workers)
  - tasks can be cancelled by name, and all are cancelled on shutdown

Tasks run in the spawning request's context, so log lines keep its
correlation ID.

Usage:
    supervisor = get_supervisor()
    supervisor.spawn(f"plan:{plan_id}:artifacts", generate_artifacts(...))
"""
import asyncio
from typing import Coroutine, Dict, Optional

from app.utils.logger import logger
from app.utils.metrics import inc, set_gauge


class TaskSupervisor:
    def __init__(self) -> None:
        self._tasks: Dict[str, asyncio.Task] = {}

    def spawn(self, name: str, coro: Coroutine) -> asyncio.Task:
        existing = self._tasks.get(name)
        if existing is not None and not existing.done():
            coro.close()
            logger.info("task.already_running", extra={"task": name})
            return existing

        task = asyncio.create_task(coro, name=name)
        self._tasks[name] = task
        task.add_done_callback(self._on_done)
        inc("tasks.spawned")
        set_gauge("tasks.running", len(self._tasks))
        logger.info("task.spawned", extra={"task": name})
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        name = task.get_name()
        if self._tasks.get(name) is task:
            del self._tasks[name]
        set_gauge("tasks.running", len(self._tasks))

        if task.cancelled():
            inc("tasks.cancelled")
            logger.info("task.cancelled", extra={"task": name})
            return
        exc = task.exception()
        if exc is not None:
            inc("tasks.failed")
            logger.error("task.failed", extra={"task": name, "error": str(exc)[:500]}, exc_info=exc)
        else:
            inc("tasks.completed")

    def is_running(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and not task.done()

    def running(self) -> Dict[str, asyncio.Task]:
        return dict(self._tasks)

    async def cancel(self, name: str) -> bool:
        task = self._tasks.get(name)
        if task is None or task.done():
            return False
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return True

    async def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Wait until no tasks are running, including ones spawned meanwhile."""
        async def _drain():
            while self._tasks:
                await asyncio.wait(list(self._tasks.values()))
        await asyncio.wait_for(_drain(), timeout=timeout)

    async def shutdown(self, timeout: float = 10.0) -> None:
        tasks = list(self._tasks.values())
        if not tasks:
            return
        logger.info("task.shutdown", extra={"count": len(tasks)})
        for task in tasks:
            task.cancel()
        await asyncio.wait(tasks, timeout=timeout)


_supervisor: Optional[TaskSupervisor] = None


def get_supervisor() -> TaskSupervisor:
    global _supervisor
    if _supervisor is None:
        _supervisor = TaskSupervisor()
    return _supervisor


def reset_supervisor() -> None:
    """Forget all tracked tasks (used by tests)."""
    global _supervisor
    _supervisor = None
