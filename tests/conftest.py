"""
Pytest configuration and shared fixtures.

This module provides fixtures for:
- Fake extraction capability and memory store
- Broker / background queue wiring
- FastAPI test client with services installed on app.state
"""

import os
import asyncio
from typing import AsyncGenerator, Dict, Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import AsyncClient, ASGITransport

# Set testing environment before importing app modules
os.environ["TESTING"] = "true"
os.environ["LOG_LEVEL"] = "ERROR"
os.environ["API_KEYS"] = "testkey:1,otherkey:2"
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = ""
os.environ["CLAUDE_API_KEY"] = "test-claude-key"
os.environ["OPENAI_API_KEY"] = "test-openai-key"
os.environ["RATE_LIMIT_MAX_REQUESTS"] = "10000"
os.environ["SPEECH_RATE_MAX_PER_MINUTE"] = "10000"


# ─────────────────────────────────────────────────────────────────────────────
# Extraction Fixtures
# ─────────────────────────────────────────────────────────────────────────────

OHIO_PAYLOAD = {
    "people": [{"name": "Jane", "relationship": "sister"}],
    "dates": [],
    "places": ["Ohio"],
    "relationships": [{"person1": "narrator", "person2": "Jane", "type": "sibling"}],
    "events": [],
}


class FakeExtractor:
    """Extraction capability returning canned payloads, optionally slow or failing."""

    def __init__(self, payload: Optional[Dict[str, Any]] = None, delay: float = 0.0, error: Exception = None):
        self.payload = payload if payload is not None else OHIO_PAYLOAD
        self.delay = delay
        self.error = error
        self.calls = []

    async def extract(self, text: str, model: str, max_tokens: int = 300) -> Dict[str, Any]:
        self.calls.append({"text": text, "model": model, "max_tokens": max_tokens})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.payload


@pytest.fixture
def ohio_payload():
    return OHIO_PAYLOAD


@pytest.fixture
def fake_extractor():
    return FakeExtractor()


@pytest.fixture
def memory_store():
    from storykeeper.services.memory.storage import InMemoryMemoryStore
    return InMemoryMemoryStore()


@pytest.fixture
def failing_store():
    """Store whose save() always raises."""
    store = MagicMock()
    store.save = AsyncMock(side_effect=RuntimeError("database unavailable"))
    return store


@pytest.fixture
def mock_db():
    """Mock asyncpg pool that returns empty results."""
    mock = MagicMock()
    mock.fetch = AsyncMock(return_value=[])
    mock.fetchrow = AsyncMock(return_value=None)
    mock.fetchval = AsyncMock(return_value=1)
    mock.execute = AsyncMock(return_value="DELETE 0")
    return mock


# ─────────────────────────────────────────────────────────────────────────────
# Pub/Sub Fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def broker():
    from storykeeper.services.broker import ChannelBroker, ConnectionRegistry
    return ChannelBroker(ConnectionRegistry(warn_threshold=5), soft_listener_cap=50)


@pytest.fixture
def task_queue():
    from storykeeper.core.tasks import BackgroundTaskQueue
    return BackgroundTaskQueue("test")


@pytest.fixture
def orchestrator(fake_extractor, memory_store, broker, task_queue):
    from storykeeper.services.memory.orchestrator import ExtractionOrchestrator
    return ExtractionOrchestrator(fake_extractor, memory_store, broker, task_queue)


@pytest.fixture
def make_request():
    from storykeeper.services.memory.models import ExtractionRequest

    def _make(message_id: str = "m_1", text: str = "I grew up in Ohio with my sister Jane", **kwargs):
        params = {
            "conversation_id": "conv1",
            "message_id": message_id,
            "text": text,
            "model": "claude-3-5-haiku-latest",
            "timeout": 1.0,
            "user_id": "1",
        }
        params.update(kwargs)
        return ExtractionRequest(**params)

    return _make


# ─────────────────────────────────────────────────────────────────────────────
# FastAPI Test Client
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def mock_collaborator():
    collaborator = MagicMock()
    collaborator.reply = AsyncMock(return_value="Tell me more about Jane.")
    return collaborator


@pytest.fixture
def mock_speech():
    speech = MagicMock()
    speech.synthesize = AsyncMock(return_value=b"ID3fake-mp3")
    speech.transcribe = AsyncMock(return_value="hello there")
    return speech


@pytest.fixture
async def app(broker, task_queue, memory_store, orchestrator, mock_collaborator, mock_speech):
    """FastAPI app with test services installed (lifespan is not run by ASGITransport)."""
    # Import here to ensure env vars are set first
    from storykeeper.main import app as fastapi_app
    from storykeeper.core.circuit_breaker import CircuitBreaker
    from storykeeper.core.database import Database
    from storykeeper.core.security import api_rate_limiter, speech_rate_limiter

    state = fastapi_app.state
    state.db = Database(url="")
    state.broker = broker
    state.queue = task_queue
    state.store = memory_store
    state.orchestrator = orchestrator
    state.collaborator = mock_collaborator
    state.speech = mock_speech
    state.voice_breaker = CircuitBreaker("voice")
    api_rate_limiter.reset()
    speech_rate_limiter.reset()
    yield fastapi_app
    await task_queue.drain(timeout=1.0)
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing API endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers():
    """Authentication headers for API requests."""
    return {"X-API-Key": "testkey"}


@pytest.fixture
def make_extractor():
    """Factory for FakeExtractor with custom payload, delay or error."""
    return FakeExtractor
