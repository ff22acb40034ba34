"""Tests for the utils module."""

import pytest

from app_object_importer import utils
from app_object_importer.errors import NotFoundError


SCRIPT = "///$tab Main\r\nSET a=1;\r\n///$tab Orders\r\nLOAD 1;\r\n"


class TestParseScript:
    def test_sections_in_order(self):
        sections = utils.parse_script(SCRIPT)
        assert [s.title for s in sections] == ["Main", "Orders"]
        assert sections[0].body == "SET a=1;\r\n"
        assert sections[1].body == "LOAD 1;\r\n"

    def test_empty_script(self):
        assert utils.parse_script("") == []
        assert utils.parse_script(None) == []

    def test_text_before_first_marker(self):
        sections = utils.parse_script("// header\r\nx\r\n///$tab Main\r\ny")
        assert sections[0].title == "// header"
        assert not sections[0].has_marker
        assert sections[1].has_marker

    def test_render_round_trip(self):
        assert utils.render_script(utils.parse_script(SCRIPT)) == SCRIPT


class TestScriptTabs:
    def test_unique_title_free(self):
        assert utils.unique_title("Main", ["Orders"]) == "Main"

    def test_unique_title_smallest_free_suffix(self):
        assert utils.unique_title("Main", ["Main", "Main (1)"]) == "Main (2)"
        assert utils.unique_title("Main", ["Main", "Main (2)"]) == "Main (1)"

    def test_append_renames_colliding_tab(self):
        script = "///$tab Main\r\nA\r\n///$tab Main (1)\r\nB\r\n"
        new_script, title = utils.append_script_section(script, "Main", "C")
        assert title == "Main (2)"
        assert new_script.startswith(script)
        assert new_script.endswith("///$tab Main (2)\r\nC")

    def test_append_adds_missing_line_break(self):
        new_script, _ = utils.append_script_section("///$tab Main\r\nA", "Next", "B")
        assert new_script == "///$tab Main\r\nA\r\n///$tab Next\r\nB"

    def test_append_to_empty_script(self):
        new_script, title = utils.append_script_section("", "Main", "A")
        assert title == "Main"
        assert new_script == "///$tab Main\r\nA"

    def test_replace_keeps_other_sections(self):
        new_script = utils.replace_script_section(SCRIPT, "Main", "SET a=2;\r\n")
        sections = utils.parse_script(new_script)
        assert [s.title for s in sections] == ["Main", "Orders"]
        assert sections[0].body == "SET a=2;\r\n"
        assert sections[1].body == "LOAD 1;\r\n"

    def test_replace_missing_section(self):
        with pytest.raises(NotFoundError, match="could not find section with title 'Nope'"):
            utils.replace_script_section(SCRIPT, "Nope", "x")


class TestSanitize:
    PROPS = {
        "qInfo": {"qId": "s1", "qType": "sheet"},
        "qMetaDef": {
            "title": "Overview",
            "published": True,
            "publishTime": "2024-01-01T00:00:00Z",
            "approved": False,
            "owner": {"userId": "bob"},
            "privileges": ["read"],
        },
        "qMeta": {"stats": 1},
    }

    def test_removes_publish_fields(self):
        clean = utils.sanitize_object_data(self.PROPS)
        assert clean["qMetaDef"] == {"title": "Overview"}
        assert "qMeta" not in clean
        assert clean["qInfo"] == {"qId": "s1", "qType": "sheet"}

    def test_idempotent(self):
        once = utils.sanitize_object_data(self.PROPS)
        twice = utils.sanitize_object_data(once)
        assert once == twice

    def test_does_not_modify_input(self):
        utils.sanitize_object_data(self.PROPS)
        assert self.PROPS["qMetaDef"]["published"] is True
        assert "qMeta" in self.PROPS

    def test_without_meta_def(self):
        assert utils.sanitize_object_data({"a": 1}) == {"a": 1}


class TestFormatting:
    def test_format_timestamp(self):
        assert utils.format_timestamp("2024-03-01T10:00:00.000Z") == "2024-03-01 10:00:00"
        assert utils.format_timestamp(None) is None
        assert utils.format_timestamp("yesterday") == "yesterday"

    def test_format_owner(self):
        assert utils.format_owner({"userDirectory": "CORP", "userId": "ann"}) == "CORP/ann"
        assert utils.format_owner("ann") == "ann"
        assert utils.format_owner(None) is None

    def test_format_state_name(self):
        assert utils.format_state_name("$") == "Default state"
        assert utils.format_state_name("Compare") == "Compare"

    def test_get_path(self):
        data = {"a": {"b": {"c": 1}}}
        assert utils.get_path(data, "a", "b", "c") == 1
        assert utils.get_path(data, "a", "x", default=0) == 0
        assert utils.get_path(None, "a") is None
