"""In-process fan-out of progress events to streaming HTTP clients"""

import asyncio
import logging
from collections import OrderedDict, deque
from typing import Any, AsyncIterator, Deque, Dict, List, Optional

from .reporter import TERMINAL_EVENT_TYPES
from ..core.config import PROGRESS_IDLE_TIMEOUT

logger = logging.getLogger(__name__)


class ProgressHub:
    """
    Per-task event queues for long-lived progress streams

    A short backlog per task lets a client that connects after generation
    started still see the latest events, including the terminal one. A
    subscription that sees no event for idle_timeout seconds ends, so a
    stream for a task that never runs does not stay open.
    """

    def __init__(self, backlog_size: int = 20, max_tasks: int = 200, idle_timeout: Optional[float] = PROGRESS_IDLE_TIMEOUT):
        self.backlog_size = backlog_size
        self.max_tasks = max_tasks
        self.idle_timeout = idle_timeout
        self._backlog: "OrderedDict[str, Deque[Dict[str, Any]]]" = OrderedDict()
        self._subscribers: Dict[str, List[asyncio.Queue]] = {}

    async def publish(self, task_id: str, event: Dict[str, Any]) -> None:
        backlog = self._backlog.get(task_id)
        if backlog is None:
            backlog = self._backlog[task_id] = deque(maxlen=self.backlog_size)
            while len(self._backlog) > self.max_tasks:
                self._backlog.popitem(last=False)
        backlog.append(event)
        for queue in self._subscribers.get(task_id, []):
            queue.put_nowait(event)

    async def subscribe(self, task_id: str) -> AsyncIterator[Dict[str, Any]]:
        """Yield events for task_id until its terminal event or the idle timeout"""
        queue: asyncio.Queue = asyncio.Queue()
        for event in self._backlog.get(task_id, ()):
            queue.put_nowait(event)
        self._subscribers.setdefault(task_id, []).append(queue)
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), self.idle_timeout)
                except asyncio.TimeoutError:
                    logger.info(f"[ProgressHub] No events for {task_id} in {self.idle_timeout}s, closing stream")
                    return
                yield event
                if event.get("type") in TERMINAL_EVENT_TYPES:
                    return
        finally:
            queues = self._subscribers.get(task_id, [])
            if queue in queues:
                queues.remove(queue)
            if not queues:
                self._subscribers.pop(task_id, None)

    def subscriber_count(self, task_id: str) -> int:
        return len(self._subscribers.get(task_id, []))
