"""Tests for infobox template parsing."""

from __future__ import annotations

import pytest

from tests.ingestion.conftest import DRAGON_MONSTER_WIKITEXT, WHIP_WIKITEXT


class TestParse:
    def test_piped_link_flattened(self):
        from wiki_mirror.ingestion.infobox import parse

        infobox = parse("{{Infobox Item|name=[[Dragon|dragon]] sword|value=100}}")
        assert infobox.to_dict() == {
            "infobox_type": "Item",
            "name": "dragon sword",
            "value": "100",
        }

    def test_type_and_span(self):
        from wiki_mirror.ingestion.infobox import parse

        text = "Intro {{Infobox Monster|combat=79}} outro"
        infobox = parse(text)
        assert infobox.infobox_type == "Monster"
        assert text[infobox.start : infobox.end] == "{{Infobox Monster|combat=79}}"

    def test_multiline_item(self):
        from wiki_mirror.ingestion.infobox import parse

        infobox = parse(WHIP_WIKITEXT)
        assert infobox["name"] == "Abyssal whip"
        assert infobox["value"] == "120,001"
        assert infobox["examine"] == "A weapon from the abyss."
        assert infobox["image"] == ""
        assert infobox["infobox_type"] == "Item"

    def test_nested_template_pipes_do_not_split(self):
        from wiki_mirror.ingestion.infobox import parse

        infobox = parse(
            "{{Infobox Item|price={{Coins|100|plain=yes}} gp|tradeable=Yes}}"
        )
        assert infobox["price"] == "gp"
        assert infobox["tradeable"] == "Yes"
        assert "plain" not in infobox

    def test_keys_normalized(self):
        from wiki_mirror.ingestion.infobox import parse

        infobox = parse("{{Infobox Item| High Alch =72,000}}")
        assert infobox.get("high_alch") == "72,000"

    def test_positional_params_ignored(self):
        from wiki_mirror.ingestion.infobox import parse

        infobox = parse("{{Infobox Item|positional|name=Whip}}")
        assert infobox.params == {"name": "Whip"}

    def test_html_stripped(self):
        from wiki_mirror.ingestion.infobox import parse

        infobox = parse("{{Infobox Item|weight=0.453<br/>kg}}")
        assert infobox["weight"] == "0.453kg"

    def test_case_insensitive_header(self):
        from wiki_mirror.ingestion.infobox import parse

        assert parse("{{infobox item|a=1}}").infobox_type == "item"

    @pytest.mark.parametrize(
        "text",
        ["", "No templates here", "{{Coins|100}}", "{{Infobox Item|name=x"],
    )
    def test_no_terminated_infobox(self, text):
        from wiki_mirror.ingestion.errors import NoInfoboxError
        from wiki_mirror.ingestion.infobox import parse

        with pytest.raises(NoInfoboxError) as excinfo:
            parse(text)
        assert excinfo.value.kind == "no_infobox"

    def test_skips_unterminated_to_later_infobox(self):
        from wiki_mirror.ingestion.infobox import parse

        # The first header opens a template the rest of the text never closes
        infobox = parse("{{Infobox Broken|a=1 {{Infobox Item|name=x}}")
        assert infobox.infobox_type == "Item"
        assert infobox.params == {"name": "x"}

    def test_monster_values(self):
        from wiki_mirror.ingestion.infobox import parse

        infobox = parse(DRAGON_MONSTER_WIKITEXT)
        assert infobox["attack_style"] == "Melee, Dragonfire"
        assert infobox["location"] == "Wilderness; Myths' Guild, Corsair Cove"


class TestFindTemplateEnd:
    def test_nested(self):
        from wiki_mirror.ingestion.infobox import find_template_end

        text = "{{a|{{b|{{c}}}}}}tail"
        assert text[: find_template_end(text, 0)] == "{{a|{{b|{{c}}}}}}"

    def test_unclosed(self):
        from wiki_mirror.ingestion.infobox import find_template_end

        assert find_template_end("{{a|{{b}}", 0) is None


class TestSplitTopLevel:
    def test_links_and_templates_protected(self):
        from wiki_mirror.ingestion.infobox import split_top_level

        assert split_top_level("a=[[x|y]]|b={{t|1}}|c=3") == [
            "a=[[x|y]]",
            "b={{t|1}}",
            "c=3",
        ]

    def test_blank_segments_dropped(self):
        from wiki_mirror.ingestion.infobox import split_top_level

        assert split_top_level("|a=1||\n|b=2") == ["a=1", "b=2"]


class TestParseAll:
    def test_document_order(self):
        from wiki_mirror.ingestion.infobox import parse_all

        boxes = parse_all(WHIP_WIKITEXT)
        assert [b.infobox_type for b in boxes] == ["Item", "Bonuses"]
        assert boxes[1]["aslash"] == "+82"

    def test_none(self):
        from wiki_mirror.ingestion.infobox import parse_all

        assert parse_all("plain text") == []


class TestExtractFields:
    def test_selected_fields(self):
        from wiki_mirror.ingestion.infobox import extract_fields

        assert extract_fields(WHIP_WIKITEXT, ["name", "release", "missing"]) == {
            "name": "Abyssal whip",
            "release": "2005-01-26",
            "missing": None,
        }

    def test_no_infobox_gives_all_none(self):
        from wiki_mirror.ingestion.infobox import extract_fields

        assert extract_fields("nothing", ["name", "value"]) == {
            "name": None,
            "value": None,
        }
