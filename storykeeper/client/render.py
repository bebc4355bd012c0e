"""
Per-category rendering of memory items into escaped HTML fragments.

Every (category, item kind) pair is handled explicitly; an unknown category
falls back to generic object rendering. All text is HTML-escaped.
"""

import html
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from storykeeper.services.memory.models import (
    Category,
    GENERIC_TITLE_FIELDS,
    MemoryItem,
    PlainText,
    Structured,
    item_key,
    normalize_text,
)

# Secondary fields shown under the title, in display order
DETAIL_FIELDS: Dict[Category, Tuple[str, ...]] = {
    Category.PEOPLE: ("relationship", "details"),
    Category.DATES: ("timeframe", "date", "time", "significance", "details"),
    Category.PLACES: ("significance", "type", "description", "details"),
    Category.RELATIONSHIPS: ("nature", "type", "description", "details"),
    Category.EVENTS: ("type", "timeframe", "date", "location", "significance", "participants", "details"),
}


@dataclass(frozen=True)
class RenderedItem:
    key: str
    title: str
    details: Tuple[Tuple[str, str], ...] = ()

    @property
    def html(self) -> str:
        parts = [f'<div class="memory-item"><div class="memory-title">{html.escape(self.title)}</div>']
        for label, value in self.details:
            parts.append(
                f'<div class="memory-detail"><span class="memory-label">{html.escape(label)}:</span> '
                f'{html.escape(value)}</div>'
            )
        parts.append("</div>")
        return "".join(parts)


def format_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(format_value(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    return str(value)


def _details(item: Structured, fields: Tuple[str, ...], title: str) -> Tuple[Tuple[str, str], ...]:
    details = []
    for name in fields:
        value = item.get(name)
        if value is None:
            continue
        text = format_value(value)
        # A field already used as the title is not repeated
        if text == title:
            continue
        details.append((name, text))
    return tuple(details)


def _render_people(item: Structured) -> RenderedItem:
    title = item.title(Category.PEOPLE)
    return RenderedItem(item_key(Category.PEOPLE, item), title, _details(item, DETAIL_FIELDS[Category.PEOPLE], title))


def _render_dates(item: Structured) -> RenderedItem:
    title = item.title(Category.DATES)
    return RenderedItem(item_key(Category.DATES, item), title, _details(item, DETAIL_FIELDS[Category.DATES], title))


def _render_places(item: Structured) -> RenderedItem:
    title = item.title(Category.PLACES)
    return RenderedItem(item_key(Category.PLACES, item), title, _details(item, DETAIL_FIELDS[Category.PLACES], title))


def _render_relationships(item: Structured) -> RenderedItem:
    title = item.title(Category.RELATIONSHIPS)
    fields = DETAIL_FIELDS[Category.RELATIONSHIPS]
    if item.get("person1") and item.get("person2") and item.get("type"):
        # Triple form shows the type first
        fields = ("type",) + tuple(f for f in fields if f != "type")
    return RenderedItem(item_key(Category.RELATIONSHIPS, item), title, _details(item, fields, title))


def _render_events(item: Structured) -> RenderedItem:
    title = item.title(Category.EVENTS)
    return RenderedItem(item_key(Category.EVENTS, item), title, _details(item, DETAIL_FIELDS[Category.EVENTS], title))


STRUCTURED_RENDERERS: Dict[Category, Callable[[Structured], RenderedItem]] = {
    Category.PEOPLE: _render_people,
    Category.DATES: _render_dates,
    Category.PLACES: _render_places,
    Category.RELATIONSHIPS: _render_relationships,
    Category.EVENTS: _render_events,
}


def render_generic(item: Structured) -> RenderedItem:
    title = item.first(GENERIC_TITLE_FIELDS)
    if title is None:
        title = json.dumps(dict(item.fields), sort_keys=True, ensure_ascii=False)
    details = tuple(
        (name, format_value(value))
        for name, value in item.fields.items()
        if value not in (None, "") and format_value(value) != title
    )
    return RenderedItem(normalize_text(title), title, details)


def render_item(category: Optional[Category], item: MemoryItem) -> RenderedItem:
    if isinstance(item, PlainText):
        return RenderedItem(normalize_text(item.text), item.text)
    if isinstance(item, Structured):
        renderer = STRUCTURED_RENDERERS.get(category)
        if renderer is None:
            return render_generic(item)
        return renderer(item)
    raise TypeError(f"unsupported memory item: {type(item).__name__}")
