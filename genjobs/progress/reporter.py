"""Fire-and-forget progress reporting for generation jobs"""

import asyncio
import inspect
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Set

logger = logging.getLogger(__name__)

TERMINAL_EVENT_TYPES = {"completed", "error"}


class ProgressSink(Protocol):
    async def publish(self, task_id: str, event: Dict[str, Any]) -> None:
        ...


class CallbackSink:
    """Adapts an on_progress(task_id, event) callable (sync or async) to a sink"""

    def __init__(self, callback: Callable[[str, Dict[str, Any]], Any]):
        self.callback = callback

    async def publish(self, task_id: str, event: Dict[str, Any]) -> None:
        outcome = self.callback(task_id, event)
        if inspect.isawaitable(outcome):
            await outcome


class ProgressReporter:
    """
    Forwards (task_id, percent, message) to every sink without waiting

    Delivery runs in background tasks; a failing sink is logged and
    ignored so notification problems never fail a job.
    """

    def __init__(self, sinks: Optional[List[ProgressSink]] = None):
        self._sinks: List[ProgressSink] = list(sinks or [])
        self._pending: Set[asyncio.Task] = set()

    def add_sink(self, sink: ProgressSink) -> None:
        self._sinks.append(sink)

    def report(self, task_id: Optional[str], percent: float, message: str = "") -> None:
        self._dispatch(task_id, {
            "type": "progress",
            "percent": round(percent, 1),
            "message": message
        })

    def completed(self, task_id: Optional[str], result: Dict[str, Any], message: str = "Generation complete") -> None:
        self._dispatch(task_id, {
            "type": "completed",
            "percent": 100,
            "message": message,
            "result": result
        })

    def failed(self, task_id: Optional[str], error: str, category: Optional[str] = None) -> None:
        self._dispatch(task_id, {
            "type": "error",
            "error": error,
            "errorCategory": category
        })

    def _dispatch(self, task_id: Optional[str], event: Dict[str, Any]) -> None:
        if not task_id or not self._sinks:
            return
        event = {**event, "taskId": task_id, "timestamp": datetime.now().isoformat()}
        for sink in self._sinks:
            task = asyncio.create_task(self._deliver(sink, task_id, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _deliver(self, sink: ProgressSink, task_id: str, event: Dict[str, Any]) -> None:
        try:
            await sink.publish(task_id, event)
        except Exception as e:
            logger.warning(f"[Progress] Failed to deliver {event.get('type')} for {task_id} via {type(sink).__name__}: {e}")

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
