"""Bounded in-process notification queue with a fixed worker pool.

Settlement enqueues messages after its transaction commits; workers render
and hand them to the sender. Enqueueing never blocks: when the queue is
full the message is dropped and counted. Nothing here is durable, so
messages still queued when the process stops are lost (and logged).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from apptime.config import get_settings
from apptime.notifications.messages import NotificationMessage
from apptime.notifications.render import render

logger = logging.getLogger(__name__)


class NotificationSender(Protocol):
    async def notify(self, user_id: str, template_id: str, payload: dict[str, Any]) -> bool: ...


class NotificationDispatcher:
    """Queue plus workers. ``start()`` once, ``stop()`` on shutdown."""

    def __init__(
        self,
        sender: NotificationSender,
        queue_size: int | None = None,
        workers: int | None = None,
        drain_timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self._sender = sender
        self._queue: asyncio.Queue[NotificationMessage] = asyncio.Queue(
            maxsize=queue_size if queue_size is not None else settings.notification_queue_size,
        )
        self._worker_count = workers if workers is not None else settings.notification_workers
        self._drain_timeout = (
            drain_timeout if drain_timeout is not None else settings.notification_drain_timeout_seconds
        )
        self._tasks: list[asyncio.Task] = []

        self.enqueued = 0
        self.delivered = 0
        self.failed = 0
        self.dropped = 0

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def stats(self) -> dict[str, int]:
        return {
            "enqueued": self.enqueued,
            "delivered": self.delivered,
            "failed": self.failed,
            "dropped": self.dropped,
            "pending": self.pending,
        }

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"notification-worker-{i}")
            for i in range(self._worker_count)
        ]
        logger.info("Notification dispatcher started with %d workers", self._worker_count)

    def enqueue(self, message: NotificationMessage) -> bool:
        """Queue a message without waiting. Returns False if it was dropped."""
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Notification queue full; dropped %s message %s",
                message.kind.value, message.message_id,
            )
            return False
        self.enqueued += 1
        return True

    async def stop(self) -> None:
        """Drain for up to the drain timeout, then cancel workers."""
        if not self._tasks:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=self._drain_timeout)
        except asyncio.TimeoutError:
            logger.warning("Notification drain timed out after %.1fs", self._drain_timeout)

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        undelivered = self._queue.qsize()
        if undelivered:
            logger.warning("Notification dispatcher stopped with %d undelivered messages", undelivered)
        logger.info("Notification dispatcher stopped (%s)", self.stats())

    async def _worker(self, worker_id: int) -> None:
        while True:
            message = await self._queue.get()
            try:
                await self._deliver(message)
            except Exception:
                self.failed += 1
                logger.exception(
                    "Worker %d failed to deliver %s message %s",
                    worker_id, message.kind.value, message.message_id,
                )
            finally:
                self._queue.task_done()

    async def _deliver(self, message: NotificationMessage) -> None:
        payload = render(message)
        body = payload.as_dict()
        ok = True
        for user_id in payload.user_ids:
            if not await self._sender.notify(user_id, payload.template_id, body):
                ok = False
        if ok:
            self.delivered += 1
        else:
            self.failed += 1
