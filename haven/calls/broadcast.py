"""
Real-time broadcast hub for Haven.

Fans transcript segments and call events out to subscribers registered under
a call id, a ``client:<client_id>`` key, or both. Each physical connection
receives a published message once, however many of its keys match.
"""

import uuid
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from .registry import TranscriptSegment

logger = logging.getLogger(__name__)


class SubscriptionError(Exception):
    """Raised when a connection supplies neither a call id nor a client id."""


def client_key(client_id: str) -> str:
    return f"client:{client_id}"


@dataclass
class Connection:
    """A registered subscriber and the keys it listens on."""
    subscriber: Any  # anything with ``async send_json(dict)``
    keys: Set[str]
    call_id: Optional[str] = None
    client_id: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    messages_sent: int = 0


class BroadcastHub:
    """
    Publish/subscribe hub keyed by call and by client.

    Delivery is best-effort to currently open connections with no replay;
    a subscriber whose send fails is unregistered.
    """

    def __init__(self):
        self._connections: Dict[str, Connection] = {}
        self._subscribers: Dict[str, Dict[str, Connection]] = {}

    @property
    def keys(self) -> List[str]:
        return list(self._subscribers.keys())

    def subscriber_count(self, key: str) -> int:
        return len(self._subscribers.get(key, {}))

    def connection_count(self) -> int:
        return len(self._connections)

    def register(self, subscriber: Any, call_id: Optional[str] = None,
                 client_id: Optional[str] = None) -> Connection:
        """
        Register a subscriber under its call and/or client key.

        Raises:
            SubscriptionError: If neither key is supplied.
        """
        if not call_id and not client_id:
            raise SubscriptionError("call_id or client_id required")

        keys = set()
        if call_id:
            keys.add(call_id)
        if client_id:
            keys.add(client_key(client_id))

        connection = Connection(subscriber=subscriber, keys=keys, call_id=call_id, client_id=client_id)
        self._connections[connection.id] = connection
        for key in keys:
            self._subscribers.setdefault(key, {})[connection.id] = connection

        logger.info(f"Subscriber {connection.id} registered for {sorted(keys)}")
        return connection

    async def connect(self, subscriber: Any, call_id: Optional[str] = None,
                      client_id: Optional[str] = None) -> Connection:
        """Register a subscriber and send it the ``connected`` acknowledgment."""
        connection = self.register(subscriber, call_id=call_id, client_id=client_id)
        await self._send(connection, {"type": "connected", "call_id": call_id, "client_id": client_id})
        return connection

    def unregister(self, connection: Connection) -> None:
        """Remove a connection from every key; drop keys left empty."""
        if self._connections.pop(connection.id, None) is None:
            return
        for key in connection.keys:
            subs = self._subscribers.get(key)
            if subs is None:
                continue
            subs.pop(connection.id, None)
            if not subs:
                del self._subscribers[key]
        logger.info(f"Subscriber {connection.id} unregistered after {connection.messages_sent} messages")

    async def publish_transcript(self, segment: TranscriptSegment) -> int:
        """Deliver a transcript segment to its call and client subscribers."""
        message = {"type": "transcript", "data": segment.to_dict()}
        return await self._fanout([segment.call_id, client_key(segment.client_id)], message)

    async def publish_event(self, call_id: str, client_id: str, event_type: str,
                            data: Optional[dict] = None) -> int:
        """Deliver a call event envelope to call and client subscribers."""
        message = {"type": event_type, "call_id": call_id, "client_id": client_id, "data": data}
        return await self._fanout([call_id, client_key(client_id)], message)

    async def _fanout(self, keys: List[str], message: dict) -> int:
        # Dedupe across keys so overlapping subscriptions get one copy
        targets: Dict[str, Connection] = {}
        for key in keys:
            for connection_id, connection in list(self._subscribers.get(key, {}).items()):
                targets.setdefault(connection_id, connection)

        sent = 0
        for connection in targets.values():
            if await self._send(connection, message):
                sent += 1
        return sent

    async def _send(self, connection: Connection, message: dict) -> bool:
        try:
            await connection.subscriber.send_json(message)
        except Exception as e:
            logger.warning(f"Dropping subscriber {connection.id}: {e}")
            self.unregister(connection)
            return False
        connection.messages_sent += 1
        return True
