"""
Collaborator - the conversational agent whose reply streams back on /chat.

The reply is produced in one provider call and replayed as whitespace-
preserving tokens. A primer built from the client's saved memories is
appended to the system prompt when present. Only the most recent turns of
the conversation history are forwarded.
"""

import re
from typing import Any, Dict, List, Optional

from storykeeper.core.config import settings
from storykeeper.core.errors import StoryKeeperError
from storykeeper.core.logger import Logger
from storykeeper.core.tasks import TimedOut, with_deadline
from storykeeper.providers.base import BaseProvider
from storykeeper.services.memory.prompts import COLLABORATOR_SYSTEM_PROMPT

logger = Logger("Collaborator")

HISTORY_TURNS = 4


class CollaboratorTimeout(StoryKeeperError):
    pass


def split_tokens(text: str) -> List[str]:
    """Split on whitespace, keeping the whitespace runs as their own tokens."""
    return [p for p in re.split(r'(\s+)', text) if p]


def build_system_prompt(primer: Optional[str] = None) -> str:
    if primer and primer.strip():
        return f"{COLLABORATOR_SYSTEM_PROMPT}\n\n{primer.strip()}"
    return COLLABORATOR_SYSTEM_PROMPT


def recent_history(history: Optional[List[Any]], turns: int = HISTORY_TURNS) -> List[Dict[str, str]]:
    """Keep the last `turns` well-formed user/assistant entries."""
    if not history:
        return []
    kept = [
        {"role": h["role"], "content": h["content"]}
        for h in history
        if isinstance(h, dict)
        and h.get("role") in ("user", "assistant")
        and isinstance(h.get("content"), str)
    ]
    return kept[-turns:]


class Collaborator:
    def __init__(
        self,
        provider: BaseProvider,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self.provider = provider
        self.model = model or settings.COLLABORATOR_MODEL
        self.max_tokens = max_tokens or settings.COLLABORATOR_MAX_TOKENS
        self.timeout = timeout or settings.COLLABORATOR_TIMEOUT_SECONDS

    async def reply(
        self,
        text: str,
        primer: Optional[str] = None,
        history: Optional[List[Any]] = None,
        model: Optional[str] = None,
    ) -> str:
        outcome = await with_deadline(
            self.provider.call(
                prompt=text,
                model=model or self.model,
                history=recent_history(history),
                system_prompt=build_system_prompt(primer),
                max_tokens=self.max_tokens,
            ),
            self.timeout,
            None,
        )
        if isinstance(outcome, TimedOut):
            raise CollaboratorTimeout(f"collaborator timed out after {self.timeout}s")
        content = (outcome.value or {}).get("content", "")
        logger.debug(f"Collaborator replied with {len(content)} chars")
        return content
