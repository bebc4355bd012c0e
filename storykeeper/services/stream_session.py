"""
Stream Session - one live Server-Sent Events subscriber.

Lifecycle: CONNECTING → OPEN → CLOSED. While OPEN, published events are
framed as named SSE events and a comment heartbeat is emitted once per
interval, with or without traffic. close() is idempotent and releases
everything the session acquired; closing a stream never cancels in-flight
extraction.
"""

import asyncio
import json
import random
import string
import time
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from storykeeper.core.logger import Logger
from storykeeper.services.broker import CLOSE_SIGNAL, ChannelBroker, Subscription

logger = Logger("StreamSession")

HEARTBEAT_FRAME = ": heartbeat\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def sse_frame(event: str, data: Any) -> str:
    """Format a named SSE event with a JSON data line."""
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


def new_connection_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"{int(time.time() * 1000)}_{suffix}"


class SessionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class StreamSession:
    def __init__(
        self,
        broker: ChannelBroker,
        topic: str,
        user_id: str,
        heartbeat_interval: float = 15.0,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ):
        self.broker = broker
        self.topic = topic
        self.user_id = user_id
        self.heartbeat_interval = heartbeat_interval
        self.is_disconnected = is_disconnected
        self.connection_id = new_connection_id()
        self.state = SessionState.CONNECTING
        self.subscription: Optional[Subscription] = None
        self.heartbeats_sent = 0

    def open(self) -> "StreamSession":
        if self.state is not SessionState.CONNECTING:
            return self
        self.subscription = self.broker.subscribe(self.topic, self.user_id)
        total = self.broker.connections.register(self.user_id, self.connection_id)
        self.state = SessionState.OPEN
        logger.info(
            f"📡 Stream connected for user={self.user_id}, topic={self.topic}, "
            f"connection={self.connection_id} (total: {total})"
        )
        return self

    def close(self):
        if self.state is SessionState.CLOSED:
            return
        was_open = self.state is SessionState.OPEN
        self.state = SessionState.CLOSED
        if self.subscription is not None:
            self.broker.unsubscribe(self.subscription)
            # Wake a reader blocked on the queue so the pulse stops now
            self.subscription.queue.put_nowait(CLOSE_SIGNAL)
        if was_open:
            remaining = self.broker.connections.release(self.user_id, self.connection_id)
            logger.info(
                f"📡 Stream disconnected for user={self.user_id}, "
                f"connection={self.connection_id} (remaining: {remaining})"
            )

    @property
    def is_open(self) -> bool:
        return self.state is SessionState.OPEN

    async def events(self) -> AsyncIterator[str]:
        """
        Yield SSE frames until the session closes or the transport goes away.

        The heartbeat runs on a fixed period regardless of event traffic; each
        pulse also checks whether the client is still connected.
        """
        self.open()
        loop = asyncio.get_running_loop()
        next_pulse = loop.time() + self.heartbeat_interval
        try:
            while self.is_open:
                try:
                    event = await asyncio.wait_for(
                        self.subscription.next_event(),
                        timeout=max(0.0, next_pulse - loop.time()),
                    )
                except asyncio.TimeoutError:
                    event = None

                if event is not None:
                    if event == CLOSE_SIGNAL:
                        break
                    yield sse_frame(*event)

                if loop.time() >= next_pulse:
                    next_pulse = loop.time() + self.heartbeat_interval
                    if self.is_disconnected is not None and await self.is_disconnected():
                        break
                    if not self.is_open:
                        break
                    self.heartbeats_sent += 1
                    yield HEARTBEAT_FRAME
        finally:
            self.close()
