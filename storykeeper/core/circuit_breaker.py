import time
from typing import Callable, Dict, Any, Optional
from storykeeper.core.config import settings
from storykeeper.core.errors import CapabilityUnavailableError
from storykeeper.core.logger import Logger

logger = Logger("CircuitBreaker")


class CircuitBreaker:
    """
    Failure gate for a quota-limited upstream capability.

    Only confirmed rate-limit failures count towards the threshold; any other
    error leaves the breaker untouched. Once tripped, calls are refused until
    the cooldown expires or a success is recorded. There is no half-open trial call.
    """

    def __init__(
        self,
        name: str,
        enabled: bool = True,
        threshold: int = 3,
        cooldown_seconds: float = 15 * 60,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.enabled = enabled
        self.threshold = threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self.consecutive_failures = 0
        self.down_until: Optional[float] = None

    def is_available(self) -> bool:
        if not self.enabled:
            return False
        if self.down_until is not None and self._clock() < self.down_until:
            return False
        return True

    def record_success(self):
        self.consecutive_failures = 0
        self.down_until = None

    def record_failure(self, is_rate_limited: bool):
        if not is_rate_limited:
            return
        self.consecutive_failures += 1
        if self.consecutive_failures >= self.threshold:
            self.down_until = self._clock() + self.cooldown_seconds
            logger.warn(
                f"🔇 {self.name} circuit breaker tripped for {self.cooldown_seconds:.0f}s "
                f"after {self.consecutive_failures} rate-limited failures"
            )

    def guard(self):
        """Raise before invocation if the capability must not be called."""
        if not self.enabled:
            raise CapabilityUnavailableError(self.name, "disabled")
        if not self.is_available():
            raise CapabilityUnavailableError(self.name, "cooldown", retry_at=self.down_until)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "breaker_active": self.enabled and not self.is_available(),
            "down_until": self.down_until,
            "consecutive_failures": self.consecutive_failures,
            "threshold": self.threshold,
        }


def build_voice_breaker() -> CircuitBreaker:
    return CircuitBreaker(
        name="voice",
        enabled=settings.voice_available,
        threshold=settings.VOICE_MAX_CONSECUTIVE_429,
        cooldown_seconds=settings.VOICE_COOLDOWN_SECONDS,
    )
