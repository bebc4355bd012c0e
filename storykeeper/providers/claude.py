from typing import List, Dict, Any
import httpx
from storykeeper.providers.base import BaseProvider
from storykeeper.core.errors import UpstreamRateLimitError
from storykeeper.core.logger import Logger

logger = Logger("Claude")


class ClaudeProvider(BaseProvider):
    def __init__(self):
        super().__init__("claude", "CLAUDE_API_KEY")
        self.default_model = "claude-3-5-haiku-latest"
        self.base_url = "https://api.anthropic.com/v1/messages"

    async def call(
        self,
        prompt: str,
        model: str,
        history: List[Dict[str, str]] = None,
        system_prompt: str = "",
        max_tokens: int = 1024,
    ) -> Dict[str, Any]:
        api_key = self.get_api_key()
        if not api_key:
            raise ValueError("CLAUDE_API_KEY is not set")

        messages = [{"role": m["role"], "content": m["content"]} for m in (history or [])]
        messages.append({"role": "user", "content": prompt})

        payload = {"model": model or self.default_model, "max_tokens": max_tokens, "messages": messages}
        if system_prompt:
            payload["system"] = system_prompt

        async with httpx.AsyncClient() as client:
            try:
                response = await client.post(
                    self.base_url,
                    json=payload,
                    headers={
                        "Content-Type": "application/json",
                        "x-api-key": api_key,
                        "anthropic-version": "2023-06-01",
                    },
                    timeout=90.0
                )
                if response.status_code == 429:
                    raise UpstreamRateLimitError("Anthropic rate limit")
                response.raise_for_status()
                data = response.json()

                content = "".join(
                    block.get("text", "")
                    for block in data.get("content", [])
                    if block.get("type") == "text"
                )
                return {"content": content, "usage": data.get("usage", {})}
            except Exception as e:
                logger.error(f"Claude API call failed: {e}")
                raise
