"""In-process change feed used by clients to refresh views.

Subscribers receive small events (table, id, case id, kind of change); they
refetch whatever they display. Nothing here is durable, and a slow consumer
simply drops events once its queue is full.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from src.casehub.errors import StoreError

logger = logging.getLogger(__name__)

_QUEUE_SIZE = 100


@dataclass
class _Subscriber:
    queue: "asyncio.Queue[Dict[str, Any]]"
    loop: asyncio.AbstractEventLoop
    case_ids: Set[str] = field(default_factory=set)
    # Checked per event; a subscriber with one only sees events of cases it
    # accepts.
    can_see: Optional[Callable[[str], bool]] = None

    def wants(self, event: Dict[str, Any]) -> bool:
        case_id = event.get("case_id")
        if self.case_ids and case_id not in self.case_ids:
            return False
        if self.can_see is None:
            return True
        return case_id is not None and self.can_see(case_id)


class ChangeFeed:
    def __init__(self) -> None:
        self._subscribers: List[_Subscriber] = []

    def subscribe(
        self,
        case_ids: Optional[Set[str]] = None,
        *,
        can_see: Optional[Callable[[str], bool]] = None,
    ) -> _Subscriber:
        subscriber = _Subscriber(
            queue=asyncio.Queue(maxsize=_QUEUE_SIZE),
            loop=asyncio.get_running_loop(),
            case_ids=set(case_ids or ()),
            can_see=can_see,
        )
        self._subscribers.append(subscriber)
        return subscriber

    def unsubscribe(self, subscriber: _Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def publish(self, table: str, event: str, record_id: Any, *, case_id: Any = None) -> int:
        """Fan an event out to interested subscribers; returns how many got it.

        Safe to call from worker threads (sync route handlers run in a
        threadpool), so delivery is scheduled on each subscriber's loop.
        """

        payload = {
            "table": table,
            "event": event,
            "id": str(record_id),
            "case_id": str(case_id) if case_id is not None else None,
        }
        delivered = 0
        for subscriber in list(self._subscribers):
            try:
                wanted = subscriber.wants(payload)
            except StoreError:
                logger.exception("Visibility check failed; skipping %s event", table)
                continue
            if not wanted:
                continue
            try:
                subscriber.loop.call_soon_threadsafe(self._offer, subscriber, payload)
            except RuntimeError:
                # Loop already closed; the websocket is gone.
                self.unsubscribe(subscriber)
                continue
            delivered += 1
        return delivered

    @staticmethod
    def _offer(subscriber: _Subscriber, payload: Dict[str, Any]) -> None:
        try:
            subscriber.queue.put_nowait(payload)
        except asyncio.QueueFull:
            logger.warning("Change feed subscriber queue full; dropping %s", payload["table"])

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


change_feed = ChangeFeed()
