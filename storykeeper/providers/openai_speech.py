"""
OpenAI speech provider (text-to-speech and Whisper transcription).

Callers gate every call through the voice CircuitBreaker; this module only
classifies failures: quota exhaustion and HTTP 429 surface as
UpstreamRateLimitError, everything else as the original httpx error.
"""

from typing import Any, Dict
import httpx
from storykeeper.providers.base import BaseProvider
from storykeeper.core.errors import UpstreamRateLimitError
from storykeeper.core.logger import Logger

logger = Logger("OpenAISpeech")

TTS_MAX_CHARS = 4096


def _is_quota_error(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    try:
        error = response.json().get("error") or {}
    except ValueError:
        return False
    return isinstance(error, dict) and error.get("code") == "insufficient_quota"


class OpenAISpeechProvider(BaseProvider):
    def __init__(self):
        super().__init__("openai", "OPENAI_API_KEY")
        self.speech_url = "https://api.openai.com/v1/audio/speech"
        self.transcribe_url = "https://api.openai.com/v1/audio/transcriptions"
        self.tts_model = "tts-1"
        self.transcribe_model = "whisper-1"

    def _headers(self) -> Dict[str, str]:
        api_key = self.get_api_key()
        if not api_key:
            raise ValueError("OPENAI_API_KEY is not set")
        return {"Authorization": f"Bearer {api_key}"}

    def _check(self, response: httpx.Response):
        if response.status_code >= 400 and _is_quota_error(response):
            raise UpstreamRateLimitError(f"OpenAI quota/rate limit ({response.status_code})")
        response.raise_for_status()

    async def call(self, prompt, model, history=None, system_prompt="", max_tokens=1024) -> Dict[str, Any]:
        raise NotImplementedError("speech provider does not support chat")

    async def synthesize(self, text: str, voice: str = "nova", speed: float = 0.9) -> bytes:
        if len(text) > TTS_MAX_CHARS:
            text = text[:TTS_MAX_CHARS - 3] + "..."
        logger.info(f"🔊 Generating TTS for {len(text)} characters with voice: {voice}")

        async with httpx.AsyncClient() as client:
            response = await client.post(
                self.speech_url,
                json={
                    "model": self.tts_model,
                    "voice": voice,
                    "input": text,
                    "speed": speed,
                    "response_format": "mp3",
                },
                headers=self._headers(),
                timeout=60.0
            )
            self._check(response)
            return response.content

    async def transcribe(self, audio: bytes, filename: str, content_type: str) -> str:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                self.transcribe_url,
                data={"model": self.transcribe_model, "language": "en", "response_format": "json"},
                files={"file": (filename, audio, content_type or "application/octet-stream")},
                headers=self._headers(),
                timeout=120.0
            )
            self._check(response)
            return (response.json().get("text") or "").strip()
