"""
Data Models for Memory Extraction

Defines:
- The fixed category set (people, dates, places, relationships, events)
- MemoryItem as a tagged union: PlainText | Structured
- Per-category title resolution, which doubles as the de-duplication key
- ExtractionRequest / ExtractionResult and their wire form
"""

from __future__ import annotations
import json
import random
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union


# ═══════════════════════════════════════════════════════════════════════════════
# Categories
# ═══════════════════════════════════════════════════════════════════════════════

class Category(str, Enum):
    PEOPLE = "people"
    DATES = "dates"
    PLACES = "places"
    RELATIONSHIPS = "relationships"
    EVENTS = "events"

    @classmethod
    def parse(cls, value: Any) -> Optional[Category]:
        """Return the category for `value`, or None when unrecognized."""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


CATEGORY_ORDER: Tuple[Category, ...] = (
    Category.PEOPLE,
    Category.DATES,
    Category.PLACES,
    Category.RELATIONSHIPS,
    Category.EVENTS,
)

# Title probing order per category. Relationships additionally support the
# person1/person2/type triple, handled in Structured.title().
TITLE_FIELDS: Dict[Category, Tuple[str, ...]] = {
    Category.PEOPLE: ("name",),
    Category.DATES: ("event", "description", "name"),
    Category.PLACES: ("location", "place", "name"),
    Category.RELATIONSHIPS: ("connection", "relationship", "name"),
    Category.EVENTS: ("event", "description", "name", "title", "type"),
}

GENERIC_TITLE_FIELDS = ("name", "title", "label", "type")


def normalize_text(text: str) -> str:
    """Case-fold and collapse whitespace; the basis of item equality."""
    return " ".join(str(text).split()).casefold()


# ═══════════════════════════════════════════════════════════════════════════════
# Memory Items (tagged union)
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PlainText:
    text: str

    def title(self, category: Category) -> str:
        return self.text

    def to_wire(self) -> str:
        return self.text


@dataclass(frozen=True)
class Structured:
    fields: Mapping[str, Any]

    def get(self, key: str) -> Any:
        value = self.fields.get(key)
        if value is None or value == "":
            return None
        return value

    def first(self, keys: Tuple[str, ...]) -> Optional[str]:
        for key in keys:
            value = self.get(key)
            if value is not None:
                return str(value)
        return None

    def title(self, category: Category) -> str:
        if category is Category.RELATIONSHIPS:
            p1, p2, kind = self.get("person1"), self.get("person2"), self.get("type")
            if p1 and p2 and kind:
                return f"{p1} ↔ {p2}"
        title = self.first(TITLE_FIELDS.get(category, ()))
        if title is None:
            title = self.first(GENERIC_TITLE_FIELDS)
        if title is None:
            title = json.dumps(dict(self.fields), sort_keys=True, ensure_ascii=False)
        return title

    def to_wire(self) -> Dict[str, Any]:
        return dict(self.fields)


MemoryItem = Union[PlainText, Structured]


def item_from_wire(raw: Any) -> Optional[MemoryItem]:
    """Build a MemoryItem from a raw JSON value. Empty values yield None."""
    if raw is None:
        return None
    if isinstance(raw, str):
        text = raw.strip()
        return PlainText(text) if text else None
    if isinstance(raw, Mapping):
        fields = {k: v for k, v in raw.items() if v is not None and v != ""}
        return Structured(fields) if fields else None
    text = str(raw).strip()
    return PlainText(text) if text else None


def item_key(category: Category, item: MemoryItem) -> str:
    """De-duplication key: normalized primary display text."""
    return normalize_text(item.title(category))


def items_from_wire(category: Category, values: Any) -> List[MemoryItem]:
    if not isinstance(values, list):
        values = [values] if values else []
    items = []
    for raw in values:
        item = item_from_wire(raw)
        if item is not None:
            items.append(item)
    return items


# ═══════════════════════════════════════════════════════════════════════════════
# Requests and Results
# ═══════════════════════════════════════════════════════════════════════════════

def mint_message_id() -> str:
    """m_<epoch-ms>_<6 base36 chars>, unique per utterance."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"m_{int(time.time() * 1000)}_{suffix}"


def topic_key(user_id: str, conversation_id: str) -> str:
    return f"{user_id}_{conversation_id}"


@dataclass
class ExtractionRequest:
    conversation_id: str
    message_id: str
    text: str
    model: str
    timeout: float = 20.0
    max_tokens: int = 300
    user_id: str = "anonymous"
    actor: Dict[str, Any] = field(default_factory=dict)  # email, ip_address, user_agent

    @property
    def topic(self) -> str:
        return topic_key(self.user_id, self.conversation_id)


@dataclass
class ExtractionResult:
    message_id: str
    categories: Dict[Category, List[MemoryItem]] = field(default_factory=dict)
    id: Optional[Any] = None
    error: Optional[str] = None

    @classmethod
    def empty(cls, message_id: str) -> ExtractionResult:
        return cls(message_id=message_id, categories={c: [] for c in CATEGORY_ORDER})

    @classmethod
    def from_payload(cls, message_id: str, payload: Mapping[str, Any]) -> ExtractionResult:
        """Build from a category→items mapping. Unknown keys are ignored."""
        result = cls.empty(message_id)
        for key, values in (payload or {}).items():
            category = Category.parse(key)
            if category is None:
                continue
            result.categories[category] = items_from_wire(category, values)
        return result

    @classmethod
    def from_event(cls, data: Mapping[str, Any]) -> ExtractionResult:
        result = cls.from_payload(str(data.get("messageId", "")), data)
        result.id = data.get("id")
        result.error = data.get("error")
        return result

    def items(self, category: Category) -> List[MemoryItem]:
        return self.categories.get(category, [])

    @property
    def is_empty(self) -> bool:
        return not any(self.categories.get(c) for c in CATEGORY_ORDER)

    def payload(self) -> Dict[str, List[Any]]:
        return {c.value: [i.to_wire() for i in self.items(c)] for c in CATEGORY_ORDER}

    def to_event(self) -> Dict[str, Any]:
        event: Dict[str, Any] = {"messageId": self.message_id}
        event.update(self.payload())
        event["id"] = self.id
        if self.error:
            event["error"] = self.error
        return event
