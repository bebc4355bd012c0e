"""
Unit tests for per-category item rendering.
"""

import pytest
from storykeeper.client.render import format_value, render_item
from storykeeper.services.memory.models import Category, PlainText, Structured


class TestRenderItem:

    @pytest.mark.unit
    def test_plain_text(self):
        rendered = render_item(Category.PLACES, PlainText("Ohio"))
        assert rendered.title == "Ohio"
        assert rendered.key == "ohio"
        assert rendered.details == ()

    @pytest.mark.unit
    def test_person_with_relationship(self):
        rendered = render_item(Category.PEOPLE, Structured({"name": "Jane", "relationship": "sister"}))
        assert rendered.title == "Jane"
        assert rendered.details == (("relationship", "sister"),)

    @pytest.mark.unit
    def test_relationship_triple_lists_type_first(self):
        item = Structured({"person1": "narrator", "person2": "Jane", "type": "sibling", "description": "close"})
        rendered = render_item(Category.RELATIONSHIPS, item)
        assert rendered.title == "narrator ↔ Jane"
        assert rendered.details[0] == ("type", "sibling")

    @pytest.mark.unit
    def test_title_field_not_repeated(self):
        rendered = render_item(Category.EVENTS, Structured({"type": "wedding"}))
        assert rendered.title == "wedding"
        assert rendered.details == ()

    @pytest.mark.unit
    def test_unknown_category_generic(self):
        rendered = render_item(None, Structured({"label": "x", "extra": [1, 2]}))
        assert rendered.title == "x"
        assert ("extra", "1, 2") in rendered.details

    @pytest.mark.unit
    def test_rejects_raw_values(self):
        with pytest.raises(TypeError):
            render_item(Category.PLACES, "Ohio")

    @pytest.mark.unit
    def test_html_escapes_details(self):
        rendered = render_item(Category.PLACES, Structured({"location": "A&B", "significance": "<b>home</b>"}))
        assert "A&amp;B" in rendered.html
        assert "&lt;b&gt;home&lt;/b&gt;" in rendered.html


class TestFormatValue:

    @pytest.mark.unit
    def test_list_and_dict(self):
        assert format_value(["Jane", "Tom"]) == "Jane, Tom"
        assert format_value({"b": 1, "a": 2}) == '{"a": 2, "b": 1}'
