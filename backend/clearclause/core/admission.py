"""
Admission control for analysis operations.
At most max_concurrent operations run at once; the rest wait in FIFO order.
"""

import asyncio
import logging
import uuid
from collections import deque
from datetime import datetime
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from ..errors import ConfigurationError
from ..models.runtime import QueueItem, QueueStats

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]


class AdmissionQueue:
    """Bounded-concurrency FIFO executor with reactive admission."""

    def __init__(self, max_concurrent: int = 2):
        if max_concurrent < 1:
            raise ConfigurationError(f"max_concurrent must be at least 1, got {max_concurrent}")
        self.max_concurrent = max_concurrent

        self._queue: Deque[QueueItem] = deque()
        self._processing: Dict[str, QueueItem] = {}
        self._completed: List[QueueItem] = []
        self._failed: List[QueueItem] = []
        self._operations: Dict[str, Operation] = {}
        self._futures: Dict[str, asyncio.Future] = {}
        self._total_submitted = 0

    async def enqueue(self, operation: Operation, label: Optional[str] = None) -> Any:
        """
        Submit an operation and wait for it to be admitted and settle.

        Args:
            operation: Zero-argument callable returning an awaitable
            label: Short description used in logs

        Returns:
            The operation's result; its exception is re-raised
        """
        item = QueueItem(
            id=str(uuid.uuid4()),
            request=label or getattr(operation, "__name__", "operation"),
            enqueued_at=datetime.utcnow()
        )
        future = asyncio.get_event_loop().create_future()

        self._operations[item.id] = operation
        self._futures[item.id] = future
        self._queue.append(item)
        self._total_submitted += 1
        logger.debug(f"Queued {item.request} ({item.id}), {len(self._queue)} waiting")

        self._admit()
        return await future

    def stats(self) -> QueueStats:
        """Aggregate statistics; internal lists are never exposed."""
        return QueueStats(
            queued=len(self._queue),
            processing=len(self._processing),
            completed=len(self._completed),
            failed=len(self._failed),
            total_submitted=self._total_submitted,
            max_concurrent=self.max_concurrent,
            average_wait_ms=round(self.average_wait_time_ms(), 3)
        )

    def average_wait_time_ms(self) -> float:
        """Mean of started_at - enqueued_at across completed items."""
        waits = [item.wait_time_ms for item in self._completed if item.wait_time_ms is not None]
        return sum(waits) / len(waits) if waits else 0.0

    def _admit(self) -> None:
        while self._queue and len(self._processing) < self.max_concurrent:
            item = self._queue.popleft()
            operation = self._operations.pop(item.id)
            future = self._futures[item.id]

            # Caller gave up while waiting; settle the item instead of dropping it
            if future.cancelled():
                item.started_at = item.completed_at = datetime.utcnow()
                item.error = "cancelled before admission"
                self._failed.append(item)
                self._futures.pop(item.id)
                continue

            item.started_at = datetime.utcnow()
            self._processing[item.id] = item
            logger.debug(f"Admitted {item.request} ({item.id}), {len(self._processing)} in flight")

            task = asyncio.ensure_future(self._run(operation))
            task.add_done_callback(lambda t, item=item: self._settle(item, t))

    async def _run(self, operation: Operation) -> Any:
        return await operation()

    def _settle(self, item: QueueItem, task: asyncio.Task) -> None:
        self._processing.pop(item.id, None)
        future = self._futures.pop(item.id)
        item.completed_at = datetime.utcnow()

        if task.cancelled():
            item.error = "cancelled"
            self._failed.append(item)
            if not future.done():
                future.cancel()
        elif task.exception() is not None:
            error = task.exception()
            item.error = f"{type(error).__name__}: {error}"
            self._failed.append(item)
            if not future.done():
                future.set_exception(error)
        else:
            self._completed.append(item)
            if not future.done():
                future.set_result(task.result())

        self._admit()
