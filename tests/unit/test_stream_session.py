"""
Unit tests for StreamSession: framing, heartbeats and teardown.
"""

import asyncio
import json
import pytest
from storykeeper.services.stream_session import (
    HEARTBEAT_FRAME,
    SessionState,
    StreamSession,
    sse_frame,
)


def make_session(broker, heartbeat: float = 15.0, **kwargs) -> StreamSession:
    return StreamSession(broker, "1_conv", "1", heartbeat_interval=heartbeat, **kwargs)


async def _collect(session: StreamSession):
    return [frame async for frame in session.events()]


class TestFraming:

    @pytest.mark.unit
    def test_sse_frame_format(self):
        frame = sse_frame("memory", {"messageId": "m_1", "places": ["Ohio"]})
        assert frame.startswith("event: memory\ndata: ")
        assert frame.endswith("\n\n")
        assert json.loads(frame.split("data: ", 1)[1]) == {"messageId": "m_1", "places": ["Ohio"]}

    @pytest.mark.unit
    def test_heartbeat_is_comment(self):
        assert HEARTBEAT_FRAME == ": heartbeat\n\n"


class TestLifecycle:

    @pytest.mark.unit
    def test_open_subscribes_and_registers(self, broker):
        session = make_session(broker).open()
        assert session.state is SessionState.OPEN
        assert broker.subscriber_count("1_conv") == 1
        assert broker.connections.count("1") == 1

    @pytest.mark.unit
    def test_close_releases_everything(self, broker):
        session = make_session(broker).open()
        session.close()
        assert session.state is SessionState.CLOSED
        assert broker.subscriber_count("1_conv") == 0
        assert not broker.has_topic("1_conv")
        assert broker.connections.count("1") == 0

    @pytest.mark.unit
    def test_close_is_idempotent(self, broker):
        a = make_session(broker).open()
        b = make_session(broker).open()
        a.close()
        a.close()
        assert broker.connections.count("1") == 1
        assert broker.subscriber_count("1_conv") == 1
        b.close()

    @pytest.mark.unit
    def test_close_before_open(self, broker):
        session = make_session(broker)
        session.close()
        assert session.state is SessionState.CLOSED
        assert broker.connections.count("1") == 0


class TestEvents:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_published_event_is_framed(self, broker):
        session = make_session(broker)
        stream = session.events()
        pending = asyncio.ensure_future(stream.__anext__())
        await asyncio.sleep(0)
        broker.publish("1_conv", "memory", {"messageId": "m_1"})
        frame = await asyncio.wait_for(pending, 1.0)
        assert frame == sse_frame("memory", {"messageId": "m_1"})
        await stream.aclose()
        assert session.state is SessionState.CLOSED
        assert broker.connections.count("1") == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_heartbeat_on_silence(self, broker):
        session = make_session(broker, heartbeat=0.01)
        stream = session.events()
        frame = await asyncio.wait_for(stream.__anext__(), 1.0)
        assert frame == HEARTBEAT_FRAME
        assert session.heartbeats_sent == 1
        await stream.aclose()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_no_heartbeat_after_close(self, broker):
        """Closing stops the pulse: the generator ends instead of ticking."""
        session = make_session(broker, heartbeat=0.01)
        stream = session.events()
        await asyncio.wait_for(stream.__anext__(), 1.0)
        session.close()
        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(stream.__anext__(), 1.0)
        assert session.heartbeats_sent == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_close_all_ends_stream(self, broker):
        session = make_session(broker)
        frames = []

        async def consume():
            async for frame in session.events():
                frames.append(frame)

        consumer = asyncio.ensure_future(consume())
        await asyncio.sleep(0)
        broker.publish("1_conv", "memory", {"messageId": "m_1"})
        broker.close_all()
        await asyncio.wait_for(consumer, 1.0)
        assert len(frames) == 1
        assert session.state is SessionState.CLOSED
        assert broker.connections.count("1") == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_disconnect_detected_on_heartbeat(self, broker):
        async def gone():
            return True

        session = make_session(broker, heartbeat=0.01, is_disconnected=gone)
        frames = [f async for f in session.events()]
        assert frames == []
        assert session.state is SessionState.CLOSED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_heartbeat_continues_under_steady_traffic(self, broker):
        """Events arriving faster than the interval do not suppress the pulse."""
        session = make_session(broker, heartbeat=0.1).open()
        frames = []

        async def consume():
            async for frame in session.events():
                frames.append(frame)

        consumer = asyncio.ensure_future(consume())
        for i in range(20):
            broker.publish("1_conv", "memory", {"messageId": f"m_{i}"})
            await asyncio.sleep(0.03)
        session.close()
        await asyncio.wait_for(consumer, 1.0)

        assert session.heartbeats_sent >= 3
        assert frames.count(HEARTBEAT_FRAME) == session.heartbeats_sent
        assert len([f for f in frames if f.startswith("event: memory")]) == 20

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_disconnect_detected_under_steady_traffic(self, broker):
        checks = []

        async def gone():
            checks.append(True)
            return True

        session = make_session(broker, heartbeat=0.05, is_disconnected=gone).open()

        async def publish_forever():
            while True:
                broker.publish("1_conv", "memory", {"messageId": "m_x"})
                await asyncio.sleep(0.01)

        publisher = asyncio.ensure_future(publish_forever())
        try:
            frames = await asyncio.wait_for(_collect(session), 1.0)
        finally:
            publisher.cancel()

        assert checks == [True]
        assert HEARTBEAT_FRAME not in frames
        assert session.state is SessionState.CLOSED
        assert broker.connections.count("1") == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_two_sessions_each_receive_once(self, broker):
        a, b = make_session(broker), make_session(broker)
        sa, sb = a.events(), b.events()
        fa = asyncio.ensure_future(sa.__anext__())
        fb = asyncio.ensure_future(sb.__anext__())
        await asyncio.sleep(0)
        assert broker.publish("1_conv", "memory", {"messageId": "m_1"}) == 2
        assert await asyncio.wait_for(fa, 1.0) == await asyncio.wait_for(fb, 1.0)
        await sa.aclose()
        await sb.aclose()
        assert broker.connections.count("1") == 0
