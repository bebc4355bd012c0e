from abc import ABC, abstractmethod
from typing import List, Dict, Any
from storykeeper.core.config import settings
from storykeeper.core.logger import Logger


class BaseProvider(ABC):
    def __init__(self, name: str, api_key_env_name: str):
        self.name = name
        self.api_key_env_name = api_key_env_name
        self.logger = Logger(f"Provider:{name}")

    def get_api_key(self) -> str:
        # Pydantic settings are case-insensitive
        return str(getattr(settings, self.api_key_env_name, "") or "")

    def is_configured(self) -> bool:
        return bool(self.get_api_key())

    @abstractmethod
    async def call(
        self,
        prompt: str,
        model: str,
        history: List[Dict[str, str]] = None,
        system_prompt: str = "",
        max_tokens: int = 1024,
    ) -> Dict[str, Any]:
        """
        Call the AI provider.
        Returns: {"content": str, "usage": dict}
        """
        pass
