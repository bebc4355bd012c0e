"""
Extraction Orchestrator - one background extraction job per inbound message.

Pipeline per request:
    claim message id → extract (under deadline) → persist → publish

Only the extraction call is raced against the deadline. Persistence happens
strictly before publication, and a persistence failure still publishes the
result with id=None. A message id is claimed once per topic, so at most one
result is ever published for it. Claims are kept in a bounded LRU; the
oldest claims are forgotten once `claim_capacity` is exceeded.

A fallback result (timeout or extractor failure) is published empty and
flagged with an `error` code so clients can show a degraded status.
"""

import asyncio
from collections import OrderedDict
from typing import Optional, Tuple

from storykeeper.core.errors import DuplicateMessageError
from storykeeper.core.logger import Logger
from storykeeper.core.tasks import BackgroundTaskQueue, TimedOut, with_deadline
from storykeeper.services.broker import ChannelBroker
from storykeeper.services.memory.extractor import MemoryExtractor
from storykeeper.services.memory.models import ExtractionRequest, ExtractionResult
from storykeeper.services.memory.storage import MemoryStore

logger = Logger("Orchestrator")

MEMORY_EVENT = "memory"

EXTRACTION_TIMEOUT = "extraction_timeout"
EXTRACTION_UNAVAILABLE = "extraction_unavailable"


class ExtractionOrchestrator:
    def __init__(
        self,
        extractor: MemoryExtractor,
        store: MemoryStore,
        broker: ChannelBroker,
        queue: Optional[BackgroundTaskQueue] = None,
        claim_capacity: int = 10000,
    ):
        self.extractor = extractor
        self.store = store
        self.broker = broker
        self.queue = queue or BackgroundTaskQueue("extraction")
        self.claim_capacity = max(1, claim_capacity)
        self._claimed: "OrderedDict[Tuple[str, str], None]" = OrderedDict()

    @property
    def claimed_count(self) -> int:
        return len(self._claimed)

    def claim(self, request: ExtractionRequest):
        key = (request.topic, request.message_id)
        if key in self._claimed:
            raise DuplicateMessageError(request.topic, request.message_id)
        self._claimed[key] = None
        while len(self._claimed) > self.claim_capacity:
            self._claimed.popitem(last=False)

    def is_claimed(self, topic: str, message_id: str) -> bool:
        return (topic, message_id) in self._claimed

    async def _extract(self, request: ExtractionRequest) -> ExtractionResult:
        fallback = ExtractionResult.empty(request.message_id)
        try:
            outcome = await with_deadline(
                self.extractor.extract(request.text, request.model, request.max_tokens),
                request.timeout,
                None,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warn(f"Extraction failed for {request.message_id}: {e}")
            fallback.error = EXTRACTION_UNAVAILABLE
            return fallback

        if isinstance(outcome, TimedOut):
            logger.warn(f"⏱️ Extraction timed out after {request.timeout}s for {request.message_id}")
            fallback.error = EXTRACTION_TIMEOUT
            return fallback
        return ExtractionResult.from_payload(request.message_id, outcome.value or {})

    async def run(self, request: ExtractionRequest) -> ExtractionResult:
        self.claim(request)
        return await self._process(request)

    async def _process(self, request: ExtractionRequest) -> ExtractionResult:
        result = await self._extract(request)

        try:
            saved = await self.store.save(
                request.conversation_id,
                request.message_id,
                result,
                {"user_id": request.user_id, **request.actor},
            )
            result.id = saved.get("id") if saved else None
        except Exception as e:
            logger.error(f"Failed to persist memories for {request.message_id}", e)
            result.id = None

        delivered = self.broker.publish(request.topic, MEMORY_EVENT, result.to_event())
        logger.debug(
            f"Published {request.message_id} to {request.topic} "
            f"({delivered} subscriber(s), id={result.id})"
        )
        return result

    def submit(self, request: ExtractionRequest) -> Optional[asyncio.Task]:
        """
        Claim the message id now and schedule the job in the background.

        Raises DuplicateMessageError before anything is queued.
        """
        self.claim(request)
        return self.queue.submit(self._process(request), label=f"extract:{request.message_id}")
