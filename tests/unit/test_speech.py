"""
Unit tests for SpeechService breaker integration and audio format detection.
"""

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock
from storykeeper.core.circuit_breaker import CircuitBreaker
from storykeeper.core.errors import CapabilityUnavailableError, UpstreamRateLimitError
from storykeeper.services.speech import SpeechService, audio_extension


@pytest.fixture
def provider():
    provider = MagicMock()
    provider.synthesize = AsyncMock(return_value=b"mp3")
    provider.transcribe = AsyncMock(return_value="hello")
    return provider


@pytest.fixture
def breaker():
    return CircuitBreaker("voice", threshold=3, cooldown_seconds=900)


class TestSpeechService:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_success_records_success(self, provider, breaker):
        breaker.record_failure(is_rate_limited=True)
        service = SpeechService(provider, breaker)
        assert await service.synthesize("hi") == b"mp3"
        assert breaker.consecutive_failures == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_three_rate_limits_trip_breaker(self, provider, breaker):
        provider.synthesize.side_effect = UpstreamRateLimitError("429")
        service = SpeechService(provider, breaker)
        for _ in range(3):
            with pytest.raises(UpstreamRateLimitError):
                await service.synthesize("hi")
        assert not breaker.is_available()

        # Fourth call never reaches the provider
        with pytest.raises(CapabilityUnavailableError):
            await service.synthesize("hi")
        assert provider.synthesize.await_count == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_other_errors_do_not_count(self, provider, breaker):
        provider.transcribe.side_effect = httpx.ConnectError("down")
        service = SpeechService(provider, breaker)
        for _ in range(5):
            with pytest.raises(httpx.ConnectError):
                await service.transcribe(b"audio", "upload.webm", "audio/webm")
        assert breaker.is_available()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_disabled_refuses(self, provider):
        service = SpeechService(provider, CircuitBreaker("voice", enabled=False))
        with pytest.raises(CapabilityUnavailableError):
            await service.transcribe(b"audio", "upload.webm", "audio/webm")
        provider.transcribe.assert_not_awaited()


class TestAudioExtension:

    @pytest.mark.unit
    @pytest.mark.parametrize("content_type,expected", [
        ("audio/webm;codecs=opus", "webm"),
        ("audio/ogg", "ogg"),
        ("audio/mpeg", "mp3"),
        ("audio/wav", "wav"),
        ("audio/mp4", "mp4"),
        ("audio/x-m4a", "m4a"),
        ("audio/flac", "flac"),
    ])
    def test_from_mime(self, content_type, expected):
        assert audio_extension(content_type, None) == expected

    @pytest.mark.unit
    def test_from_filename(self):
        assert audio_extension("application/octet-stream", "clip.WAV") == "wav"

    @pytest.mark.unit
    def test_unknown(self):
        assert audio_extension(None, "clip") is None
