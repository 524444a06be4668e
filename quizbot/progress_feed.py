"""
Best-effort live progress mirror for external subscribers.
"""
import asyncio
import logging
import time
from typing import Any, Dict, List

logger = logging.getLogger(__name__)


class ProgressFeed:
    """
    Fire-and-forget per-user event fan-out.

    Subscribers receive events through bounded ``asyncio.Queue`` objects. A
    full or missing subscriber never blocks or fails the publisher.
    """

    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: Dict[int, List[asyncio.Queue]] = {}

    def subscribe(self, user_id: int) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.setdefault(user_id, []).append(queue)
        logger.debug(f"Progress subscriber added for user {user_id}")
        return queue

    def unsubscribe(self, user_id: int, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(user_id)
        if not queues:
            return
        try:
            queues.remove(queue)
        except ValueError:
            pass
        if not queues:
            del self._subscribers[user_id]

    def has_subscribers(self, user_id: int) -> bool:
        return bool(self._subscribers.get(user_id))

    def publish(self, user_id: int, event_type: str, **payload: Any) -> int:
        """
        Push an event to every subscriber of a user.

        Returns:
            Number of subscribers that received the event
        """
        queues = self._subscribers.get(user_id)
        if not queues:
            return 0

        event = {'type': event_type, 'user_id': user_id, 'timestamp': time.time(), **payload}
        delivered = 0
        for queue in list(queues):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"Progress subscriber for user {user_id} is full, dropping {event_type}")
            except Exception as e:
                logger.error(f"Failed to publish {event_type} for user {user_id}: {e}")
        return delivered
