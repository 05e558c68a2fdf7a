# notifications.py
from __future__ import annotations
import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder

logger = logging.getLogger("aquabill.events")
UTC = timezone.utc

OPERATORS = "operators"
ADMINS = "admins"


class Subscription:
    def __init__(self, audience: Optional[str], maxsize: int):
        self.id = uuid.uuid4().hex
        self.audience = audience  # None = everything
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    def wants(self, audience: Optional[str]) -> bool:
        return self.audience is None or audience is None or audience == self.audience


class EventBroadcaster:
    """
    In-process fan-out of billing events to live subscribers (the /ws/events feed).
    A subscriber whose queue is full misses the event; producers never wait.
    """

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subs: Dict[str, Subscription] = {}

    def subscribe(self, audience: Optional[str] = None) -> Subscription:
        sub = Subscription(audience, self.queue_size)
        self._subs[sub.id] = sub
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        self._subs.pop(sub.id, None)

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)

    def publish(self, message: Dict[str, Any], audience: Optional[str] = None) -> int:
        delivered = 0
        for sub in list(self._subs.values()):
            if not sub.wants(audience):
                continue
            try:
                sub.queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("event %s dropped for slow subscriber %s", message.get("type"), sub.id)
        return delivered


class Notifier:
    """
    Best-effort notification handle passed into each billing operation.
    notify() never raises: a failed delivery is logged and the operation goes on.
    """

    def __init__(self, broadcaster: Optional[EventBroadcaster] = None, actor: Optional[uuid.UUID] = None):
        self.broadcaster = broadcaster
        self.actor = actor

    async def notify(self, event_type: str, payload: Dict[str, Any], audience: Optional[str] = None) -> None:
        if self.broadcaster is None:
            return
        try:
            message = {
                "type": event_type,
                "audience": audience,
                "actor": str(self.actor) if self.actor else None,
                "at": datetime.now(tz=UTC).isoformat(),
                "data": jsonable_encoder(payload),
            }
            self.broadcaster.publish(message, audience)
        except Exception as e:
            logger.warning("notification %s failed: %s", event_type, e)
