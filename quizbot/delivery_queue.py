"""
Per-user serialized delivery of outbound chat operations.
"""
import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Set

from .errors import DeliveryTimeout, SessionReset

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER = 5 * 60

DeliveryJob = Callable[[], Awaitable[Any]]


@dataclass
class DeliveryTask:
    """One queued unit of outbound work."""
    user_id: int
    job: DeliveryJob
    future: asyncio.Future
    enqueued_at: float
    expiry_handle: Optional[asyncio.TimerHandle] = None
    started: bool = False


class DeliveryQueue:
    """
    Sequential task runner keyed by user id.

    Tasks for one user run strictly one at a time in enqueue order; tasks for
    different users run independently. A task that waits longer than
    ``stale_after`` seconds is evicted and its future fails with
    ``DeliveryTimeout``; it is never executed afterwards.
    """

    def __init__(self, stale_after: float = DEFAULT_STALE_AFTER):
        self.stale_after = stale_after
        self._queues: Dict[int, Deque[DeliveryTask]] = {}
        self._workers: Dict[int, asyncio.Task] = {}
        self._suspended: Set[int] = set()
        self._all_suspended = False

    def enqueue(self, user_id: int, job: DeliveryJob) -> asyncio.Future:
        """
        Queue a job for a user.

        Args:
            user_id: User the job delivers to
            job: Zero-argument coroutine function performing one chat operation

        Returns:
            Future resolved with the job's result, or failed with its exception,
            ``DeliveryTimeout`` or ``SessionReset``
        """
        loop = asyncio.get_running_loop()
        task = DeliveryTask(
            user_id=user_id,
            job=job,
            future=loop.create_future(),
            enqueued_at=loop.time()
        )
        task.expiry_handle = loop.call_later(self.stale_after, self._expire, task)
        self._queues.setdefault(user_id, deque()).append(task)

        logger.debug(
            f"Delivery task queued for user {user_id}",
            extra={
                'event_type': 'delivery_enqueued',
                'user_id': user_id,
                'queue_length': len(self._queues[user_id]),
                'timestamp': time.time()
            }
        )
        self._ensure_worker(user_id)
        return task.future

    def clear(self, user_id: int) -> int:
        """
        Drop every pending task for a user and cancel the one in flight.

        Returns:
            Number of tasks dropped
        """
        dropped = 0
        queue = self._queues.pop(user_id, None)
        if queue:
            while queue:
                task = queue.popleft()
                self._cancel_expiry(task)
                if not task.future.done():
                    task.future.set_exception(SessionReset(user_id))
                    dropped += 1

        worker = self._workers.pop(user_id, None)
        if worker is not None and not worker.done():
            worker.cancel()
            dropped += 1

        if dropped:
            logger.info(
                f"Cleared {dropped} delivery task(s) for user {user_id}",
                extra={
                    'event_type': 'delivery_cleared',
                    'user_id': user_id,
                    'dropped': dropped,
                    'timestamp': time.time()
                }
            )
        return dropped

    def suspend(self, user_id: int) -> None:
        """Stop dispatching for a user whose connection went away."""
        self._suspended.add(user_id)
        logger.info(f"Delivery suspended for user {user_id}")

    def resume(self, user_id: int) -> None:
        self._suspended.discard(user_id)
        logger.info(f"Delivery resumed for user {user_id}")
        self._ensure_worker(user_id)

    def suspend_all(self) -> None:
        self._all_suspended = True
        logger.warning("Delivery suspended for all users")

    def resume_all(self) -> None:
        self._all_suspended = False
        logger.info("Delivery resumed for all users")
        for user_id in list(self._queues.keys()):
            self._ensure_worker(user_id)

    def is_suspended(self, user_id: int) -> bool:
        return self._all_suspended or user_id in self._suspended

    def pending_count(self, user_id: int) -> int:
        queue = self._queues.get(user_id)
        return len(queue) if queue else 0

    def _ensure_worker(self, user_id: int) -> None:
        if self.is_suspended(user_id) or not self._queues.get(user_id):
            return
        worker = self._workers.get(user_id)
        if worker is not None and not worker.done():
            return
        self._workers[user_id] = asyncio.get_running_loop().create_task(self._drain(user_id))

    async def _drain(self, user_id: int) -> None:
        loop = asyncio.get_running_loop()
        current = asyncio.current_task()
        try:
            while not self.is_suspended(user_id):
                queue = self._queues.get(user_id)
                if not queue:
                    break
                task = queue.popleft()
                self._cancel_expiry(task)
                if task.future.done():
                    continue

                waited = loop.time() - task.enqueued_at
                if waited > self.stale_after:
                    self._reject_stale(task, waited)
                    continue

                task.started = True
                try:
                    result = await task.job()
                except asyncio.CancelledError:
                    if not task.future.done():
                        task.future.set_exception(SessionReset(user_id))
                    raise
                except Exception as e:
                    logger.error(f"Delivery task failed for user {user_id}: {e}")
                    if not task.future.done():
                        task.future.set_exception(e)
                else:
                    if not task.future.done():
                        task.future.set_result(result)
        finally:
            if self._workers.get(user_id) is current:
                del self._workers[user_id]
            queue = self._queues.get(user_id)
            if queue is not None and not queue:
                del self._queues[user_id]

    def _expire(self, task: DeliveryTask) -> None:
        if task.started or task.future.done():
            return
        queue = self._queues.get(task.user_id)
        if queue is not None:
            try:
                queue.remove(task)
            except ValueError:
                pass
            if not queue:
                del self._queues[task.user_id]
        self._reject_stale(task, asyncio.get_running_loop().time() - task.enqueued_at)

    def _reject_stale(self, task: DeliveryTask, waited: float) -> None:
        logger.warning(
            f"Delivery task for user {task.user_id} aged out after {waited:.1f}s",
            extra={
                'event_type': 'delivery_timeout',
                'user_id': task.user_id,
                'waited': waited,
                'timestamp': time.time()
            }
        )
        if not task.future.done():
            task.future.set_exception(DeliveryTimeout(task.user_id, waited))

    @staticmethod
    def _cancel_expiry(task: DeliveryTask) -> None:
        if task.expiry_handle is not None:
            task.expiry_handle.cancel()
            task.expiry_handle = None
