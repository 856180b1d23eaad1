"""
SmartNotes Backend — Realtime Change Notifications
====================================================

What:  In-process publish/subscribe of note change events, keyed by note ID.
Why:   Collaborators with a note open see edits as they happen.
How:   Each WebSocket subscriber owns a bounded asyncio.Queue. Publishing never
       blocks: a subscriber whose queue is full misses that event.

Event shape (RealtimeEvent):
    {"event": "UPDATE", "table": "notes", "record": {...note...},
     "cursor": 42, "user_id": "...", "timestamp": "..."}

Services never publish from inside a request. They call `publish_on_commit`
or `revoke_on_commit`, which defer delivery until the request transaction
commits (see database.after_commit).

Single process only. Running several workers needs an external broker.
"""

import asyncio
import functools
import logging
import uuid
from collections import defaultdict
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from smartnotes.database import after_commit, utcnow
from smartnotes.schemas.collaboration import RealtimeEvent

logger = logging.getLogger(__name__)

# Put on a subscriber's queue when that user loses access to the note
ACCESS_REVOKED = object()


class RealtimeHub:
    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        # note ID -> {queue: subscribing user ID}
        self._subscribers: Dict[uuid.UUID, Dict[asyncio.Queue, Optional[uuid.UUID]]] = defaultdict(dict)

    def subscribe(self, note_id: uuid.UUID, user_id: Optional[uuid.UUID] = None) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers[note_id][queue] = user_id
        logger.info(
            "Realtime subscriber added for note %s (%d total)",
            note_id,
            len(self._subscribers[note_id]),
        )
        return queue

    def unsubscribe(self, note_id: uuid.UUID, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(note_id)
        if not queues:
            return
        queues.pop(queue, None)
        if not queues:
            del self._subscribers[note_id]
        logger.info("Realtime subscriber removed for note %s", note_id)

    def subscriber_count(self, note_id: uuid.UUID) -> int:
        return len(self._subscribers.get(note_id, ()))

    def publish(
        self,
        note_id: uuid.UUID,
        event: str,
        record: Dict[str, Any],
        cursor: Optional[int] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> int:
        """
        Fan an event out to every subscriber of `note_id`.

        Returns:
            Number of subscribers the event was delivered to.
        """
        queues = self._subscribers.get(note_id)
        if not queues:
            return 0

        payload = RealtimeEvent(
            event=event,
            record=record,
            cursor=cursor,
            user_id=user_id,
            timestamp=utcnow(),
        ).model_dump(mode="json")

        delivered = 0
        for queue in list(queues):
            try:
                queue.put_nowait(payload)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Realtime subscriber for note %s is lagging; event dropped", note_id)
        logger.debug("Published %s for note %s to %d subscribers", event, note_id, delivered)
        return delivered

    def revoke(self, note_id: uuid.UUID, user_id: uuid.UUID) -> int:
        """
        Tell every open stream `user_id` has on `note_id` to close.

        Pending events are dropped so the close marker always fits.
        """
        revoked = 0
        for queue, subscriber in list(self._subscribers.get(note_id, {}).items()):
            if subscriber != user_id:
                continue
            while not queue.empty():
                queue.get_nowait()
            queue.put_nowait(ACCESS_REVOKED)
            revoked += 1
        if revoked:
            logger.info("Closed %d live streams of %s on note %s", revoked, user_id, note_id)
        return revoked

    # ── Transaction-bound delivery ────────────────────────────────────────

    def publish_on_commit(
        self,
        db: AsyncSession,
        note_id: uuid.UUID,
        event: str,
        record: Dict[str, Any],
        cursor: Optional[int] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> None:
        after_commit(
            db, functools.partial(self.publish, note_id, event, record, cursor=cursor, user_id=user_id)
        )

    def revoke_on_commit(self, db: AsyncSession, note_id: uuid.UUID, user_id: uuid.UUID) -> None:
        after_commit(db, functools.partial(self.revoke, note_id, user_id))


realtime_hub = RealtimeHub()
