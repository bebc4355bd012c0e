"""
Event stream client: consumes /events and feeds a ClientMemoryAggregator.

On every (re)connect the history is fetched from /api/memories and hydrated
before stream events are applied, so events published while disconnected
are not lost.
"""

import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, Iterable, Iterator, List, Optional

import httpx

from storykeeper.client.aggregator import ClientMemoryAggregator
from storykeeper.core.logger import Logger

logger = Logger("EventStream")


@dataclass
class SSEEvent:
    event: str
    data: Any


class SSEParser:
    """Incremental SSE line parser; comment lines (heartbeats) are skipped."""

    def __init__(self):
        self._event = "message"
        self._data: List[str] = []

    def feed(self, line: str) -> Optional[SSEEvent]:
        line = line.rstrip("\r")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        return None

    def _dispatch(self) -> Optional[SSEEvent]:
        if not self._data:
            self._event = "message"
            return None
        raw = "\n".join(self._data)
        event = self._event
        self._event, self._data = "message", []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            data = raw
        return SSEEvent(event, data)


def parse_sse_lines(lines: Iterable[str]) -> Iterator[SSEEvent]:
    parser = SSEParser()
    for line in lines:
        event = parser.feed(line)
        if event is not None:
            yield event


async def aparse_sse_lines(lines: AsyncIterator[str]) -> AsyncIterator[SSEEvent]:
    parser = SSEParser()
    async for line in lines:
        event = parser.feed(line)
        if event is not None:
            yield event


class MemoryEventStream:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        aggregator: ClientMemoryAggregator,
        conversation_id: str = "default",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.aggregator = aggregator
        self.conversation_id = conversation_id
        self._client = client
        self.events_applied = 0

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=None)
        return self._client

    async def hydrate(self) -> int:
        """Fetch persisted memories and seed the aggregator. Returns the record count."""
        response = await self._http().get(
            "/api/memories",
            params={"conversationId": self.conversation_id},
            headers={"X-API-Key": self.api_key},
        )
        response.raise_for_status()
        records = response.json().get("memories", [])
        self.aggregator.hydrate(records)
        logger.info(f"Hydrated {len(records)} memory record(s) for {self.conversation_id}")
        return len(records)

    async def run(self, max_events: Optional[int] = None):
        """Reconcile, then apply memory events until the stream ends."""
        await self.hydrate()
        params = {"conversationId": self.conversation_id, "token": self.api_key}
        async with self._http().stream("GET", "/events", params=params) as response:
            response.raise_for_status()
            async for event in aparse_sse_lines(response.aiter_lines()):
                if event.event != "memory" or not isinstance(event.data, dict):
                    continue
                self.aggregator.apply(event.data)
                self.events_applied += 1
                if max_events is not None and self.events_applied >= max_events:
                    break

    async def aclose(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None
