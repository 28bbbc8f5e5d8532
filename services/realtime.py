"""In-process fan-out of committed trip and itinerary mutations.

Services describe what changed as `Event` records; the router publishes
them only after the transaction committed. Each WebSocket connection owns
an asyncio.Queue drained by a single sender task, so everything sent on one
connection (acks included) goes out in the order it was enqueued.
"""

import asyncio
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set

from utils.errors import error_body
from utils.time_utils import utcnow

TRIP_CREATED = "trip.created"
TRIP_UPDATED = "trip.updated"
TRIP_DELETED = "trip.deleted"
ITINERARY_ADD = "itinerary.add"
ITINERARY_UPDATE = "itinerary.update"
ITINERARY_DELETE = "itinerary.delete"
ITINERARY_REORDER = "itinerary.reorder"

# trip.updated fields that can change who may subscribe
ACCESS_FIELDS = frozenset(("share_token", "privacy"))


@dataclass
class Event:
    kind: str
    trip_id: int
    actor_user_id: Optional[str]
    data: dict = field(default_factory=dict)


def format_timestamp(value: datetime) -> str:
    # fixed width so string order matches time order
    return value.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class Connection:
    """One authenticated socket and its outbound queue."""

    def __init__(self, websocket, user_id: str):
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self.user_id = user_id
        self.loop = asyncio.get_running_loop()
        self.queue: asyncio.Queue = asyncio.Queue()
        self.trip_ids: Set[int] = set()
        # share token presented per subscribed trip, rechecked on access changes
        self.share_tokens: Dict[int, Optional[str]] = {}

    def enqueue(self, message: Optional[dict]) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self.loop:
            self.queue.put_nowait(message)
        else:
            self.loop.call_soon_threadsafe(self.queue.put_nowait, message)

    def close(self) -> None:
        self.enqueue(None)

    async def run_sender(self) -> None:
        while True:
            message = await self.queue.get()
            if message is None:
                return
            try:
                await self.websocket.send_json(message)
            except (RuntimeError, OSError) as e:
                # socket already closed underneath us
                logging.info("realtime.send dropped conn=%s error=%s", self.id, e)
                return


class RealtimeBus:
    def __init__(self):
        # (user_id, trip_id, share_token) -> may this user still subscribe?
        self.authorize: Optional[Callable[[str, int, Optional[str]], bool]] = None
        self._lock = threading.Lock()
        self._connections: Dict[str, Connection] = {}
        self._subscribers: Dict[int, Set[str]] = {}
        self._last_timestamp: Optional[datetime] = None

    # ---- subscription table ----

    def register(self, conn: Connection) -> None:
        with self._lock:
            self._connections[conn.id] = conn
        logging.info("realtime.connect conn=%s user_id=%s", conn.id, conn.user_id)

    def unregister(self, conn: Connection) -> None:
        with self._lock:
            self._connections.pop(conn.id, None)
            for trip_id in conn.trip_ids:
                subscribers = self._subscribers.get(trip_id)
                if subscribers is not None:
                    subscribers.discard(conn.id)
                    if not subscribers:
                        del self._subscribers[trip_id]
            conn.trip_ids.clear()
            conn.share_tokens.clear()
        logging.info("realtime.disconnect conn=%s", conn.id)

    def subscribe(self, conn: Connection, trip_id: int, share_token: Optional[str] = None) -> None:
        with self._lock:
            self._subscribers.setdefault(trip_id, set()).add(conn.id)
            conn.trip_ids.add(trip_id)
            conn.share_tokens[trip_id] = share_token
        logging.debug("realtime.subscribe conn=%s trip_id=%s", conn.id, trip_id)

    def unsubscribe(self, conn: Connection, trip_id: int) -> None:
        with self._lock:
            subscribers = self._subscribers.get(trip_id)
            if subscribers is not None:
                subscribers.discard(conn.id)
                if not subscribers:
                    del self._subscribers[trip_id]
            conn.trip_ids.discard(trip_id)
            conn.share_tokens.pop(trip_id, None)
        logging.debug("realtime.unsubscribe conn=%s trip_id=%s", conn.id, trip_id)

    def drop_trip(self, trip_id: int) -> None:
        """Forget every subscription to a deleted trip."""
        with self._lock:
            for conn_id in self._subscribers.pop(trip_id, set()):
                conn = self._connections.get(conn_id)
                if conn is not None:
                    conn.trip_ids.discard(trip_id)
                    conn.share_tokens.pop(trip_id, None)

    def revoke_lost_access(self, trip_id: int) -> List[str]:
        """Recheck every subscriber of `trip_id` and drop those no longer allowed.

        Dropped connections get an ``unsubscribed`` message carrying a
        ``forbidden`` error. Returns the dropped connection ids.
        """
        if self.authorize is None:
            return []
        with self._lock:
            candidates = [
                (self._connections[conn_id], self._connections[conn_id].share_tokens.get(trip_id))
                for conn_id in self._subscribers.get(trip_id, ())
                if conn_id in self._connections
            ]

        # authorize hits the database; keep it outside the lock
        revoked = [conn for conn, token in candidates if not self.authorize(conn.user_id, trip_id, token)]
        for conn in revoked:
            self.unsubscribe(conn, trip_id)
            conn.enqueue(dict(
                error_body("forbidden", "Access to this trip was revoked"),
                type="unsubscribed",
                trip_id=trip_id,
            ))
        if revoked:
            logging.info("realtime.revoke trip_id=%s connections=%s", trip_id, len(revoked))
        return [conn.id for conn in revoked]

    def subscribers(self, trip_id: int) -> List[str]:
        with self._lock:
            return sorted(self._subscribers.get(trip_id, ()))

    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    # ---- publishing ----

    def _next_timestamp(self) -> datetime:
        now = utcnow()
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    def publish(self, events: Iterable[Event]) -> List[dict]:
        """Stamp and deliver committed events; returns the envelopes sent.

        Call only after the producing transaction committed.
        """
        envelopes = []
        for event in events:
            if event.kind == TRIP_UPDATED and ACCESS_FIELDS.intersection(event.data.get("fields", ())):
                self.revoke_lost_access(event.trip_id)
            # stamping and enqueueing under one lock keeps per-trip order
            with self._lock:
                envelope = {
                    "type": "event",
                    "event": event.kind,
                    "event_id": str(uuid.uuid4()),
                    "trip_id": event.trip_id,
                    "actor_user_id": event.actor_user_id,
                    "server_timestamp": format_timestamp(self._next_timestamp()),
                    "data": event.data,
                }
                targets = [
                    self._connections[conn_id]
                    for conn_id in self._subscribers.get(event.trip_id, ())
                    if conn_id in self._connections
                ]
                for conn in targets:
                    conn.enqueue(envelope)
            if event.kind == TRIP_DELETED:
                self.drop_trip(event.trip_id)
            logging.info(
                "realtime.publish event=%s trip_id=%s subscribers=%s",
                event.kind, event.trip_id, len(targets),
            )
            envelopes.append(envelope)
        return envelopes

    def reset(self) -> None:
        with self._lock:
            self._connections.clear()
            self._subscribers.clear()
            self._last_timestamp = None


bus = RealtimeBus()
