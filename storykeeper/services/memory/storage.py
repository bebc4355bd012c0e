"""
Memory Storage - durable side of the pipeline.

Contract consumed by the orchestrator and the history endpoints:
    save(conversation_id, message_id, result, actor) -> {"id": ...} | None
    list(conversation_id, user_id) -> [ExtractionResult]
    get(conversation_id, memory_id, user_id) -> ExtractionResult | None
    clear(user_id, conversation_id=None) -> deleted count

Empty extraction results are not persisted (save returns None).
"""

import itertools
import json
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Tuple

from storykeeper.core.database import Database
from storykeeper.core.logger import Logger
from storykeeper.services.memory.models import ExtractionResult

logger = Logger("MemoryStore")


class MemoryStore(ABC):

    @abstractmethod
    async def save(
        self,
        conversation_id: str,
        message_id: str,
        result: ExtractionResult,
        actor: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def list(self, conversation_id: str, user_id: str) -> List[ExtractionResult]:
        pass

    @abstractmethod
    async def get(self, conversation_id: str, memory_id: Any, user_id: str) -> Optional[ExtractionResult]:
        pass

    @abstractmethod
    async def clear(self, user_id: str, conversation_id: Optional[str] = None) -> int:
        pass


class InMemoryMemoryStore(MemoryStore):
    """Process-local store used when no database is configured."""

    def __init__(self):
        self._ids = itertools.count(1)
        self._rows: Dict[Tuple[str, str], "OrderedDict[int, ExtractionResult]"] = {}

    async def save(self, conversation_id, message_id, result, actor):
        if result.is_empty:
            return None
        key = (str(actor.get("user_id", "anonymous")), conversation_id)
        rows = self._rows.setdefault(key, OrderedDict())
        for memory_id, existing in rows.items():
            if existing.message_id == message_id:
                rows[memory_id] = _stored_copy(result, memory_id)
                return {"id": memory_id}
        memory_id = next(self._ids)
        rows[memory_id] = _stored_copy(result, memory_id)
        return {"id": memory_id}

    async def list(self, conversation_id, user_id):
        return list(self._rows.get((str(user_id), conversation_id), {}).values())

    async def get(self, conversation_id, memory_id, user_id):
        rows = self._rows.get((str(user_id), conversation_id), {})
        try:
            return rows.get(int(memory_id))
        except (TypeError, ValueError):
            return None

    async def clear(self, user_id, conversation_id=None):
        user_id = str(user_id)
        keys = [
            k for k in self._rows
            if k[0] == user_id and (conversation_id is None or k[1] == conversation_id)
        ]
        deleted = 0
        for key in keys:
            deleted += len(self._rows.pop(key))
        return deleted


class PostgresMemoryStore(MemoryStore):
    """asyncpg-backed store; one row per (user, conversation, message)."""

    def __init__(self, database: Database):
        self.database = database

    async def save(self, conversation_id, message_id, result, actor):
        if result.is_empty or not self.database.pool:
            return None
        row = await self.database.pool.fetchrow(
            """
            INSERT INTO memories (user_id, conversation_id, message_id, payload, user_email, ip_address, user_agent)
            VALUES ($1, $2, $3, $4::jsonb, $5, $6, $7)
            ON CONFLICT (user_id, conversation_id, message_id)
            DO UPDATE SET payload = EXCLUDED.payload
            RETURNING id
            """,
            str(actor.get("user_id", "anonymous")),
            conversation_id,
            message_id,
            json.dumps(result.payload(), ensure_ascii=False),
            actor.get("email"),
            actor.get("ip_address"),
            actor.get("user_agent"),
        )
        return {"id": row["id"]} if row else None

    async def list(self, conversation_id, user_id):
        if not self.database.pool:
            return []
        rows = await self.database.pool.fetch(
            "SELECT id, message_id, payload FROM memories "
            "WHERE user_id = $1 AND conversation_id = $2 ORDER BY created_at ASC, id ASC",
            str(user_id), conversation_id
        )
        return [_row_to_result(r) for r in rows]

    async def get(self, conversation_id, memory_id, user_id):
        if not self.database.pool:
            return None
        try:
            memory_id = int(memory_id)
        except (TypeError, ValueError):
            return None
        row = await self.database.pool.fetchrow(
            "SELECT id, message_id, payload FROM memories "
            "WHERE id = $1 AND user_id = $2 AND conversation_id = $3",
            memory_id, str(user_id), conversation_id
        )
        return _row_to_result(row) if row else None

    async def clear(self, user_id, conversation_id=None):
        if not self.database.pool:
            return 0
        if conversation_id is None:
            status = await self.database.pool.execute(
                "DELETE FROM memories WHERE user_id = $1", str(user_id)
            )
        else:
            status = await self.database.pool.execute(
                "DELETE FROM memories WHERE user_id = $1 AND conversation_id = $2",
                str(user_id), conversation_id
            )
        # asyncpg returns e.g. "DELETE 3"
        try:
            return int(status.split()[-1])
        except (AttributeError, ValueError, IndexError):
            return 0


def _stored_copy(result: ExtractionResult, memory_id: Any) -> ExtractionResult:
    return ExtractionResult(
        message_id=result.message_id,
        categories={c: list(items) for c, items in result.categories.items()},
        id=memory_id,
    )


def _row_to_result(row) -> ExtractionResult:
    payload = row["payload"]
    if isinstance(payload, str):
        payload = json.loads(payload)
    result = ExtractionResult.from_payload(row["message_id"], payload or {})
    result.id = row["id"]
    return result


def build_memory_store(database: Database) -> MemoryStore:
    if database.pool:
        logger.info("Using PostgreSQL memory store")
        return PostgresMemoryStore(database)
    logger.info("Using in-process memory store")
    return InMemoryMemoryStore()
