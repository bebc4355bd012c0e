"""
Channel Broker - in-process publish/subscribe for live event streams.

Each topic is one user's one conversation. The broker is a live fan-out
mechanism, not a durable log: publishing to a topic with no subscribers is a
no-op, and a reconnecting client is expected to fetch history from storage.

Every entry point runs to completion without awaiting, so concurrent asyncio
tasks cannot interleave partial mutations of the registries.
"""

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set, Tuple
from storykeeper.core.logger import Logger

logger = Logger("Broker")

# Queue item used to ask a subscription's reader to stop
CLOSE_SIGNAL = ("__close__", None)


class ConnectionRegistry:
    """
    Per-user live connection bookkeeping, used for leak detection only.

    Going over the warning threshold is logged; connections are never refused.
    """

    def __init__(self, warn_threshold: int = 5):
        self.warn_threshold = warn_threshold
        self._connections: Dict[str, Set[str]] = {}

    def register(self, user_id: str, connection_id: str) -> int:
        conns = self._connections.setdefault(user_id, set())
        if len(conns) > self.warn_threshold:
            logger.warn(
                f"⚠️ User {user_id} has {len(conns)} active event streams - potential connection leak"
            )
        conns.add(connection_id)
        return len(conns)

    def release(self, user_id: str, connection_id: str) -> int:
        conns = self._connections.get(user_id)
        if conns is None:
            return 0
        conns.discard(connection_id)
        if not conns:
            del self._connections[user_id]
            return 0
        return len(conns)

    def count(self, user_id: str) -> int:
        return len(self._connections.get(user_id, ()))

    def snapshot(self) -> Dict[str, int]:
        return {user_id: len(conns) for user_id, conns in self._connections.items()}

    def clear(self):
        self._connections.clear()


@dataclass(eq=False)
class Subscription:
    """Handle returned by subscribe(); owns the delivery queue for one listener."""
    id: int
    topic: str
    user_id: str
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    active: bool = True

    def deliver(self, event_name: str, data: Any):
        self.queue.put_nowait((event_name, data))

    async def next_event(self) -> Tuple[str, Any]:
        return await self.queue.get()


@dataclass(eq=False)
class Topic:
    key: str
    subscribers: Dict[int, Subscription] = field(default_factory=dict)
    published: int = 0


class ChannelBroker:
    def __init__(self, connections: Optional[ConnectionRegistry] = None, soft_listener_cap: int = 50):
        self.connections = connections or ConnectionRegistry()
        self.soft_listener_cap = soft_listener_cap
        self._topics: Dict[str, Topic] = {}
        self._ids = itertools.count(1)

    def get_or_create_topic(self, key: str) -> Topic:
        topic = self._topics.get(key)
        if topic is None:
            topic = Topic(key=key)
            self._topics[key] = topic
        return topic

    def has_topic(self, key: str) -> bool:
        return key in self._topics

    def subscriber_count(self, key: str) -> int:
        topic = self._topics.get(key)
        return len(topic.subscribers) if topic else 0

    def subscribe(self, key: str, user_id: str = "anonymous") -> Subscription:
        topic = self.get_or_create_topic(key)
        sub = Subscription(id=next(self._ids), topic=key, user_id=user_id)
        topic.subscribers[sub.id] = sub
        if len(topic.subscribers) > self.soft_listener_cap:
            logger.warn(
                f"Topic {key} has {len(topic.subscribers)} listeners (soft cap {self.soft_listener_cap})"
            )
        return sub

    def unsubscribe(self, sub: Subscription):
        sub.active = False
        topic = self._topics.get(sub.topic)
        if topic is None:
            return
        topic.subscribers.pop(sub.id, None)
        if not topic.subscribers:
            del self._topics[sub.topic]

    def publish(self, key: str, event_name: str, data: Any) -> int:
        """Fan out to every live subscriber. Returns the delivered count."""
        topic = self._topics.get(key)
        if topic is None or not topic.subscribers:
            logger.debug(f"No subscribers on {key}; dropping {event_name} event")
            return 0
        topic.published += 1
        delivered = 0
        for sub in list(topic.subscribers.values()):
            if sub.active:
                sub.deliver(event_name, data)
                delivered += 1
        return delivered

    def close_all(self):
        """Ask every subscriber to end its stream (server shutdown)."""
        for topic in list(self._topics.values()):
            for sub in list(topic.subscribers.values()):
                sub.queue.put_nowait(CLOSE_SIGNAL)

    def stats(self) -> Dict[str, Any]:
        return {
            "topics": len(self._topics),
            "subscribers": sum(len(t.subscribers) for t in self._topics.values()),
            "connections": self.connections.snapshot(),
        }
