"""
Task Scheduler

Provides cancellable delayed tasks for session timers (countdown,
auto-expire, secondary escalation delay). Every scheduled task owns an
asyncio.Task handle so nothing outlives the component that scheduled it.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Set


@dataclass
class ScheduledTask:
    """Delayed task definition"""
    name: str
    owner: str
    delay: float
    handler: Callable = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    run_at: Optional[datetime] = None
    fired: bool = False
    cancelled: bool = False
    last_error: Optional[str] = None
    _task: Optional[asyncio.Task] = field(default=None, init=False, repr=False)

    @property
    def pending(self) -> bool:
        """Still waiting for its delay to elapse"""
        return not self.fired and not self.cancelled


class TaskScheduler:
    """
    Scheduler for one-shot delayed tasks.

    Cancelling a task only stops it while it is still waiting. Once the
    delay has elapsed the handler runs to completion, so work that has
    started is never interrupted halfway.
    """

    def __init__(self, owner: str):
        """
        Initialize scheduler.

        Args:
            owner: Name of the component owning the tasks (used in logs)
        """
        self.owner = owner
        self.tasks: Dict[str, ScheduledTask] = {}
        self.running_tasks: Set[asyncio.Task] = set()
        self.logger = logging.getLogger(f"{__name__}.{owner}")
        self._shutdown = False

    def schedule_once(self, name: str, delay: float, handler: Callable) -> ScheduledTask:
        """
        Run handler once after delay seconds.

        Args:
            name: Task name (unique within the scheduler)
            delay: Seconds to wait, zero or more
            handler: Sync or async callable taking no arguments

        Returns:
            Created ScheduledTask

        Raises:
            ValueError: If the delay is negative or the scheduler is stopped
        """
        if delay < 0:
            raise ValueError(f"Delay must not be negative, got: {delay}")
        if self._shutdown:
            raise ValueError(f"Scheduler '{self.owner}' is stopped")

        # Replacing a task with the same name cancels the old timer
        self.cancel(name)

        task = ScheduledTask(
            name=name,
            owner=self.owner,
            delay=delay,
            handler=handler,
            run_at=datetime.utcnow() + timedelta(seconds=delay)
        )
        task._task = asyncio.create_task(self._run_once(task))
        self.running_tasks.add(task._task)
        task._task.add_done_callback(self.running_tasks.discard)
        self.tasks[name] = task

        self.logger.debug(f"Scheduled task '{name}' in {delay}s")
        return task

    async def _run_once(self, task: ScheduledTask):
        """Wait for the delay, then run the handler"""
        try:
            await asyncio.sleep(task.delay)
        except asyncio.CancelledError:
            task.cancelled = True
            self.logger.debug(f"Task '{task.name}' cancelled before firing")
            raise

        task.fired = True
        try:
            result = task.handler()
            if asyncio.iscoroutine(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            task.last_error = str(e)
            self.logger.error(f"Error in task '{task.name}': {e}", exc_info=True)
        finally:
            if self.tasks.get(task.name) is task:
                del self.tasks[task.name]

    def cancel(self, name: str) -> bool:
        """
        Cancel a pending task.

        Args:
            name: Task name

        Returns:
            True if a waiting task was cancelled, False if the task was
            unknown or had already fired
        """
        task = self.tasks.get(name)
        if not task or not task.pending:
            return False

        task.cancelled = True
        if task._task and not task._task.done():
            task._task.cancel()
        del self.tasks[name]
        self.logger.debug(f"Cancelled task '{name}'")
        return True

    @property
    def stopped(self) -> bool:
        return self._shutdown

    def is_pending(self, name: str) -> bool:
        task = self.tasks.get(name)
        return bool(task and task.pending)

    async def stop_all(self):
        """Cancel every pending task and wait for running handlers"""
        self._shutdown = True
        for name in list(self.tasks.keys()):
            self.cancel(name)

        if self.running_tasks:
            await asyncio.gather(*list(self.running_tasks), return_exceptions=True)

        self.tasks.clear()
        self.logger.debug(f"Scheduler '{self.owner}' stopped")
