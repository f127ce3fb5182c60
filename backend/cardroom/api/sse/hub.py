import asyncio
import json
import logging
from collections import defaultdict
from typing import Any, AsyncIterator, Dict, List, Optional

from cardroom.config import settings
from cardroom.utils.ids import new_id

logger = logging.getLogger(__name__)

CONNECTED_FRAME = ": connected\n\n"
KEEPALIVE_FRAME = ": keepalive\n\n"


def format_frame(event_type: str, data: Dict[str, Any]) -> str:
    return f"event: {event_type}\ndata: {json.dumps(data)}\n\n"


class SubscriberClosed(Exception):
    pass


class Subscriber:
    def __init__(self, maxsize: int) -> None:
        self.id = new_id()
        # None is the end-of-stream marker
        self.queue: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def write(self, frame: str) -> None:
        if self.closed:
            raise SubscriberClosed(self.id)
        self.queue.put_nowait(frame)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        while True:
            try:
                self.queue.put_nowait(None)
                return
            except asyncio.QueueFull:
                self.queue.get_nowait()


class RoomHub:
    """Room keyed fan-out of SSE frames. Knows nothing about the game."""

    def __init__(
        self, queue_size: Optional[int] = None, keepalive_seconds: Optional[float] = None
    ) -> None:
        self.queue_size = queue_size or settings.sse_queue_size
        self.keepalive_seconds = keepalive_seconds or settings.sse_keepalive_seconds
        self._by_room: Dict[str, Dict[str, Subscriber]] = defaultdict(dict)

    def register(self, room_id: str) -> Subscriber:
        subscriber = Subscriber(self.queue_size)
        self._by_room[room_id][subscriber.id] = subscriber
        logger.debug("[SSE] Subscriber %s joined room %s", subscriber.id, room_id)
        return subscriber

    def unregister(self, room_id: str, subscriber: Subscriber) -> None:
        subscribers = self._by_room.get(room_id)
        if subscribers is None:
            return
        subscribers.pop(subscriber.id, None)
        if not subscribers:
            self._by_room.pop(room_id, None)
        logger.debug("[SSE] Subscriber %s left room %s", subscriber.id, room_id)

    def subscriber_count(self, room_id: str) -> int:
        return len(self._by_room.get(room_id) or {})

    async def subscribe(self, room_id: str) -> AsyncIterator[str]:
        subscriber = self.register(room_id)
        try:
            yield CONNECTED_FRAME
            while True:
                try:
                    frame = await asyncio.wait_for(
                        subscriber.queue.get(), timeout=self.keepalive_seconds
                    )
                except asyncio.TimeoutError:
                    yield KEEPALIVE_FRAME
                    continue
                if frame is None:
                    return
                yield frame
        finally:
            subscriber.closed = True
            self.unregister(room_id, subscriber)

    async def broadcast(self, room_id: str, event_type: str, data: Dict[str, Any]) -> int:
        subscribers = self._by_room.get(room_id)
        if not subscribers:
            return 0

        frame = format_frame(event_type, data)
        logger.info(
            "[SSE] Broadcasting to room %s: event=%s, data length=%d",
            room_id,
            event_type,
            len(frame),
        )

        dead: List[Subscriber] = []
        delivered = 0
        for subscriber in list(subscribers.values()):
            try:
                subscriber.write(frame)
                delivered += 1
            except (SubscriberClosed, asyncio.QueueFull):
                dead.append(subscriber)

        for subscriber in dead:
            self.unregister(room_id, subscriber)
            subscriber.close()
        if dead:
            logger.info("[SSE] Dropped %d dead subscriber(s) in room %s", len(dead), room_id)
        return delivered

    async def close_all(self) -> None:
        logger.info("[SSE] Closing all SSE connections for graceful shutdown...")
        for subscribers in list(self._by_room.values()):
            for subscriber in list(subscribers.values()):
                subscriber.close()
        self._by_room.clear()
