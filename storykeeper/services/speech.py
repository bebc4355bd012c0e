"""
Speech Service - text-to-speech and transcription behind the voice breaker.

Every call passes through the breaker: refused up front while the breaker is
tripped or voice is disabled, and its outcome is recorded afterwards.
Rate-limit failures count towards tripping; other failures do not.
"""

import re
from typing import Any, Awaitable, Callable, Optional

from storykeeper.core.circuit_breaker import CircuitBreaker
from storykeeper.core.errors import UpstreamRateLimitError
from storykeeper.core.logger import Logger
from storykeeper.providers.openai_speech import OpenAISpeechProvider

logger = Logger("Speech")

# Substring of the upload's MIME type -> extension Whisper accepts
MIME_EXTENSIONS = (
    ("webm", "webm"),
    ("ogg", "ogg"),
    ("oga", "oga"),
    ("mp4a", "m4a"),
    ("m4a", "m4a"),
    ("mp4", "mp4"),
    ("mpeg", "mp3"),
    ("mpga", "mp3"),
    ("mp3", "mp3"),
    ("wav", "wav"),
    ("flac", "flac"),
)


def audio_extension(content_type: Optional[str], filename: Optional[str]) -> Optional[str]:
    """Pick an upload extension from the MIME type, else the filename suffix."""
    if content_type:
        for needle, ext in MIME_EXTENSIONS:
            if needle in content_type:
                return ext
    match = re.search(r'\.([A-Za-z0-9]+)$', filename or "")
    return match.group(1).lower() if match else None


class SpeechService:
    def __init__(self, provider: OpenAISpeechProvider, breaker: CircuitBreaker):
        self.provider = provider
        self.breaker = breaker

    async def _guarded(self, label: str, call: Callable[[], Awaitable[Any]]) -> Any:
        self.breaker.guard()
        try:
            result = await call()
        except UpstreamRateLimitError:
            self.breaker.record_failure(is_rate_limited=True)
            logger.warn(
                f"{label} rate limited "
                f"({self.breaker.consecutive_failures}/{self.breaker.threshold})"
            )
            raise
        except Exception:
            self.breaker.record_failure(is_rate_limited=False)
            raise
        self.breaker.record_success()
        return result

    async def synthesize(self, text: str, voice: str = "nova", speed: float = 0.9) -> bytes:
        return await self._guarded("TTS", lambda: self.provider.synthesize(text, voice, speed))

    async def transcribe(self, audio: bytes, filename: str, content_type: str) -> str:
        return await self._guarded(
            "Transcription", lambda: self.provider.transcribe(audio, filename, content_type)
        )
