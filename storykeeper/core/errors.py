"""
Exception hierarchy for the memory pipeline.

Background failures are caught and logged where they happen; these types
mark the conditions callers are expected to branch on.
"""

from typing import Optional


class StoryKeeperError(Exception):
    """Base class for all service errors."""


class InvalidRequestError(StoryKeeperError):
    """Inbound request rejected before any work starts."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class CapabilityUnavailableError(StoryKeeperError):
    """A breaker-guarded capability is disabled or cooling down."""

    def __init__(self, capability: str, reason: str, retry_at: Optional[float] = None):
        super().__init__(f"{capability} temporarily unavailable ({reason})")
        self.capability = capability
        self.reason = reason
        self.retry_at = retry_at


class UpstreamRateLimitError(StoryKeeperError):
    """Upstream provider answered 429 or reported exhausted quota."""


class DuplicateMessageError(StoryKeeperError):
    """An extraction for this message id was already claimed on the topic."""

    def __init__(self, topic: str, message_id: str):
        super().__init__(f"message {message_id} already extracted on {topic}")
        self.topic = topic
        self.message_id = message_id


class ExtractionParseError(StoryKeeperError):
    """Extractor output could not be parsed as a category mapping."""
