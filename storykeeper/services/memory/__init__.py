"""
Memory Pipeline - asynchronous extraction of structured life-story facts

Architecture:
    Utterance → MemoryExtractor (under deadline) → MemoryStore.save → ChannelBroker.publish
"""

from storykeeper.services.memory.models import (
    Category,
    CATEGORY_ORDER,
    PlainText,
    Structured,
    MemoryItem,
    ExtractionRequest,
    ExtractionResult,
)
from storykeeper.services.memory.orchestrator import ExtractionOrchestrator

__all__ = [
    "Category",
    "CATEGORY_ORDER",
    "PlainText",
    "Structured",
    "MemoryItem",
    "ExtractionRequest",
    "ExtractionResult",
    "ExtractionOrchestrator",
]
