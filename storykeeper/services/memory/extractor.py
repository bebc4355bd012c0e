"""
Memory Extractor

The extraction capability consumed by the orchestrator:
    extract(text, model, max_tokens) -> category -> items mapping

It may raise (provider errors, unparseable output). Enforcing a deadline is
the caller's job, not this module's.
"""

import re
import json
from typing import Any, Dict, Optional

from storykeeper.core.errors import ExtractionParseError
from storykeeper.core.logger import Logger
from storykeeper.providers.base import BaseProvider
from storykeeper.services.memory.prompts import MEMORY_KEEPER_SYSTEM_PROMPT

logger = Logger("Extractor")


def extract_json_from_response(response: str) -> Optional[Dict]:
    """Extract JSON from AI response, handling markdown code blocks."""
    json_match = re.search(r'```(?:json)?\s*\n?([\s\S]*?)\n?```', response)
    if json_match:
        json_str = json_match.group(1).strip()
    else:
        json_str = response.strip()
        # Tolerate prose around a bare object
        start, end = json_str.find('{'), json_str.rfind('}')
        if start != -1 and end > start:
            json_str = json_str[start:end + 1]

    # Clean up common issues
    json_str = re.sub(r',\s*}', '}', json_str)  # Trailing commas
    json_str = re.sub(r',\s*]', ']', json_str)  # Trailing commas in arrays

    try:
        parsed = json.loads(json_str)
    except json.JSONDecodeError as e:
        logger.warn(f"JSON parse error: {e}")
        logger.debug(f"Raw response: {response[:500]}")
        return None
    return parsed if isinstance(parsed, dict) else None


class MemoryExtractor:
    """Turns one utterance into a categorized memory payload via an LLM provider."""

    def __init__(self, provider: BaseProvider):
        self.provider = provider

    async def extract(self, text: str, model: str, max_tokens: int = 300) -> Dict[str, Any]:
        result = await self.provider.call(
            prompt=text,
            model=model,
            history=[],
            system_prompt=MEMORY_KEEPER_SYSTEM_PROMPT,
            max_tokens=max_tokens,
        )
        content = result.get("content", "")
        parsed = extract_json_from_response(content)
        if parsed is None:
            raise ExtractionParseError("memory extractor returned non-JSON output")
        return parsed
