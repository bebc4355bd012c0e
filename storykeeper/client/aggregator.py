"""
Client Memory Aggregator

Merges streamed extraction events into per-category, de-duplicated memory
sets and projects them onto a MemoryPanel view model.

Flow per event:
    apply(event) → merge new items into SessionMemoryState
                 → one RenderBatch holding only the newly added items
                 → MemoryPanel.apply_batch (single update per event)

Re-delivering identical content adds nothing and produces an empty batch.
"""

import re
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Union

from storykeeper.client.primer import PrimerCaps, build_primer
from storykeeper.client.render import RenderedItem, render_item
from storykeeper.core.logger import Logger
from storykeeper.services.memory.models import (
    CATEGORY_ORDER,
    Category,
    ExtractionResult,
    MemoryItem,
    item_key,
)

logger = Logger("Aggregator")

BOT_SECTION_KEY = "memory-bot"
NARRATOR_KEY = "narrator"
BOT_NAME_PATTERN = re.compile(r"[A-Za-z\s-]{1,30}")

STATUS_READY = "Ready"
STATUS_PROCESSING = "Processing..."
STATUS_COMPLETE = "Complete"
STATUS_COLLECTED = "Memories Collected"
STATUS_DEGRADED = "Memories temporarily unavailable"

SECTION_TITLES = {
    Category.PEOPLE: "People",
    Category.DATES: "Dates & Times",
    Category.PLACES: "Places",
    Category.RELATIONSHIPS: "Relationships",
    Category.EVENTS: "Life Events",
}


def section_key(category: Category) -> str:
    return f"memory-{category.value}"


def is_valid_bot_name(name: Any) -> bool:
    return isinstance(name, str) and BOT_NAME_PATTERN.fullmatch(name) is not None


def narrator_item(name: Optional[str]) -> RenderedItem:
    title = f"Name: {name}" if name else "Click to set your name"
    return RenderedItem(NARRATOR_KEY, title)


# ═══════════════════════════════════════════════════════════════════════════════
# Session state
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class SessionMemoryState:
    memories: Dict[Category, "OrderedDict[str, MemoryItem]"] = field(
        default_factory=lambda: {c: OrderedDict() for c in CATEGORY_ORDER}
    )
    collapsed: Set[str] = field(default_factory=set)
    applied_message_ids: List[str] = field(default_factory=list)
    messages: List[Dict[str, Any]] = field(default_factory=list)

    def add(self, category: Category, item: MemoryItem) -> bool:
        """Insert unless an item with the same normalized title exists."""
        bucket = self.memories[category]
        key = item_key(category, item)
        if not key or key in bucket:
            return False
        bucket[key] = item
        return True

    def items(self, category: Category) -> List[MemoryItem]:
        return list(self.memories[category].values())

    def total(self) -> int:
        return sum(len(bucket) for bucket in self.memories.values())


# ═══════════════════════════════════════════════════════════════════════════════
# View model
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class RenderBatch:
    message_id: Optional[str] = None
    items: Dict[Category, List[RenderedItem]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not any(self.items.values())

    @property
    def total(self) -> int:
        return sum(len(v) for v in self.items.values())

    def merge(self, other: "RenderBatch"):
        for category, items in other.items.items():
            self.items.setdefault(category, []).extend(items)


@dataclass
class MemorySection:
    key: str
    title: str
    category: Optional[Category] = None
    items: List[RenderedItem] = field(default_factory=list)
    placeholder: Optional[str] = None

    @property
    def count(self) -> int:
        # Placeholder is not an item
        return len(self.items)

    @property
    def header(self) -> str:
        if self.key == BOT_SECTION_KEY:
            return self.title
        return f"{self.title} ({self.count})"

    @property
    def html(self) -> str:
        if not self.items and self.placeholder:
            return f'<div class="memory-placeholder">{self.placeholder}</div>'
        return "".join(item.html for item in self.items)


class MemoryPanel:
    def __init__(self, bot_name: str):
        self.sections: "OrderedDict[str, MemorySection]" = OrderedDict()
        self.updates = 0
        self.sections[BOT_SECTION_KEY] = MemorySection(
            key=BOT_SECTION_KEY,
            title=bot_name,
            items=[narrator_item(bot_name)],
        )

    def set_bot_name(self, name: str):
        bot = self.sections[BOT_SECTION_KEY]
        bot.title = name
        bot.items = [narrator_item(name)]
        self.updates += 1

    def section(self, key: str) -> Optional[MemorySection]:
        return self.sections.get(key)

    def has_section(self, category: Category) -> bool:
        return section_key(category) in self.sections

    def ensure_section(self, category: Category) -> MemorySection:
        key = section_key(category)
        section = self.sections.get(key)
        if section is None:
            section = MemorySection(
                key=key,
                title=SECTION_TITLES[category],
                category=category,
                placeholder=f"No {category.value} mentioned yet",
            )
            self.sections[key] = section
        return section

    def apply_batch(self, batch: RenderBatch) -> List[str]:
        """Apply every item of the batch as one update. Returns new section keys."""
        created = []
        for category in CATEGORY_ORDER:
            items = batch.items.get(category)
            if not items:
                continue
            if not self.has_section(category):
                created.append(section_key(category))
            self.ensure_section(category).items.extend(items)
        self.updates += 1
        return created

    def category_sections(self) -> List[MemorySection]:
        return [s for s in self.sections.values() if s.category is not None]

    def reset(self):
        bot = self.sections[BOT_SECTION_KEY]
        self.sections = OrderedDict([(BOT_SECTION_KEY, bot)])
        self.updates = 0


# ═══════════════════════════════════════════════════════════════════════════════
# Aggregator
# ═══════════════════════════════════════════════════════════════════════════════

class ClientMemoryAggregator:
    def __init__(self, bot_name: str = "Personal Biographer"):
        self.bot_name = bot_name
        self.state = SessionMemoryState()
        self.panel = MemoryPanel(bot_name)
        self.status = STATUS_READY

    # --- bot identity -------------------------------------------------------

    def update_bot_name(self, name: Any) -> bool:
        """
        Rename the biographer.

        Names are 1-30 letters, spaces or hyphens. Returns False for an invalid
        name and changes nothing. A real change updates the panel and adds a
        system message to the transcript.
        """
        if not is_valid_bot_name(name):
            logger.warn(f"Rejected bot name: {name!r}")
            return False
        if name != self.bot_name:
            self.bot_name = name
            self.panel.set_bot_name(name)
            self.add_message("system", f"Name updated to {name}.")
        return True

    # --- events -------------------------------------------------------------

    def _merge(self, result: ExtractionResult) -> RenderBatch:
        batch = RenderBatch(message_id=result.message_id)
        for category in CATEGORY_ORDER:
            for item in result.items(category):
                if self.state.add(category, item):
                    batch.items.setdefault(category, []).append(render_item(category, item))
        if result.message_id and result.message_id not in self.state.applied_message_ids:
            self.state.applied_message_ids.append(result.message_id)
        return batch

    def _render(self, batch: RenderBatch):
        if batch.is_empty:
            return
        for key in self.panel.apply_batch(batch):
            # New sections start collapsed
            self.state.collapsed.add(key)

    def apply(self, event: Union[Mapping[str, Any], ExtractionResult]) -> RenderBatch:
        result = event if isinstance(event, ExtractionResult) else ExtractionResult.from_event(event)
        batch = self._merge(result)
        self._render(batch)

        if result.error:
            logger.warn(f"Extraction flagged for {result.message_id}: {result.error}")
            self.set_status(STATUS_DEGRADED)
        else:
            self.set_status(STATUS_COMPLETE)
        return batch

    def hydrate(self, records: Iterable[Union[Mapping[str, Any], ExtractionResult]]) -> RenderBatch:
        """Seed state from persisted history; rendered as one batch."""
        combined = RenderBatch()
        for record in records:
            result = record if isinstance(record, ExtractionResult) else ExtractionResult.from_event(record)
            combined.merge(self._merge(result))
        self._render(combined)
        self.set_status(STATUS_READY)
        return combined

    # --- UI state -----------------------------------------------------------

    def is_collapsed(self, key: str) -> bool:
        return key in self.state.collapsed

    def toggle(self, key: str) -> bool:
        """Flip a section's collapsed flag. Returns the new collapsed value."""
        if key in self.state.collapsed:
            self.state.collapsed.discard(key)
            return False
        self.state.collapsed.add(key)
        return True

    def set_status(self, status: str):
        if status == STATUS_READY and self.state.total():
            status = STATUS_COLLECTED
        self.status = status

    def begin_processing(self):
        self.set_status(STATUS_PROCESSING)

    # --- transcript ---------------------------------------------------------

    def add_message(self, role: str, text: str, **meta: Any):
        self.state.messages.append({"role": role, "text": text, **meta})

    # --- projections --------------------------------------------------------

    def memories(self) -> Dict[str, List[Any]]:
        return {c.value: [i.to_wire() for i in self.state.items(c)] for c in CATEGORY_ORDER}

    def counts(self) -> Dict[str, int]:
        return {c.value: len(self.state.memories[c]) for c in CATEGORY_ORDER}

    def primer(self, caps: PrimerCaps = PrimerCaps()) -> str:
        return build_primer(self.memories(), caps)

    def export_session(self) -> Dict[str, Any]:
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "messages": list(self.state.messages),
            "memories": self.memories(),
            "summary": {
                "totalMessages": len(self.state.messages),
                "totalMemories": self.state.total(),
                "memoriesBreakdown": self.counts(),
            },
        }

    def new_session(self):
        self.state = SessionMemoryState()
        self.panel.reset()
        self.set_status(STATUS_READY)
