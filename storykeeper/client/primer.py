"""
Memory primer: a compact digest of saved memories injected into the next
collaborator turn.
"""

import json
from dataclasses import dataclass
from typing import Any, List, Mapping

from storykeeper.services.memory.models import Category, PlainText, Structured, item_from_wire
from storykeeper.services.memory.prompts import PRIMER_HEADER

# Line order in the primer (differs from the panel's section order)
PRIMER_ORDER = (
    Category.PEOPLE,
    Category.PLACES,
    Category.DATES,
    Category.RELATIONSHIPS,
    Category.EVENTS,
)

PRIMER_TITLE_FIELDS = ("name", "title", "event", "person", "place", "description")

ELLIPSIS = "..."


@dataclass(frozen=True)
class PrimerCaps:
    people: int = 5
    places: int = 5
    dates: int = 3
    relationships: int = 5
    events: int = 5
    total_chars: int = 600

    def for_category(self, category: Category) -> int:
        return getattr(self, category.value)


def flatten_item(value: Any) -> str:
    """Short text for one item: a title-like field, else compact JSON."""
    item = value if isinstance(value, (PlainText, Structured)) else item_from_wire(value)
    if item is None:
        return ""
    if isinstance(item, PlainText):
        return item.text
    title = item.first(PRIMER_TITLE_FIELDS)
    if title is not None:
        return title
    return json.dumps(dict(item.fields), ensure_ascii=False, separators=(",", ":"))


def _recent(values: Any, cap: int) -> List[Any]:
    if not isinstance(values, (list, tuple)) or cap <= 0:
        return []
    return list(values)[-cap:]


def build_primer(memories: Mapping[Any, Any], caps: PrimerCaps = PrimerCaps()) -> str:
    """
    Build the primer text, or '' when there is nothing to say.

    `memories` maps category (enum or name) to items, oldest first; the most
    recent `caps` items per category are kept. The result never exceeds
    caps.total_chars.
    """
    if not memories:
        return ""

    by_category = {}
    for key, values in memories.items():
        category = key if isinstance(key, Category) else Category.parse(key)
        if category is not None:
            by_category[category] = values

    lines = []
    for category in PRIMER_ORDER:
        texts = [t for t in (flatten_item(v) for v in _recent(by_category.get(category), caps.for_category(category))) if t]
        if texts:
            lines.append(f"{category.value.capitalize()}: {'; '.join(texts)}")

    if not lines:
        return ""

    text = PRIMER_HEADER + "\n" + "\n".join(lines)
    if len(text) > caps.total_chars:
        text = (text[:max(caps.total_chars - len(ELLIPSIS), 0)] + ELLIPSIS)[:caps.total_chars]
    return text
