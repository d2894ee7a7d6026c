"""Tests for OData expression helpers."""

import pytest

from cmas_mcp import odata


class TestLiterals:
    def test_single_quotes_doubled(self):
        assert odata.escape_literal("O'Brien's") == "O''Brien''s"

    @pytest.mark.parametrize(
        "value, expected",
        [("Lab", "'Lab'"), (16777220, "16777220"), (True, "true"), (False, "false")],
    )
    def test_quote(self, value, expected):
        assert odata.quote(value) == expected

    def test_eq_escapes(self):
        assert odata.eq("Name", "It's") == "Name eq 'It''s'"


class TestWildcards:
    @pytest.mark.parametrize(
        "pattern, expected",
        [
            ("Lab Servers", "Name eq 'Lab Servers'"),
            ("Lab*", "startswith(Name,'Lab')"),
            ("*Servers", "endswith(Name,'Servers')"),
            ("*Win*", "contains(Name,'Win')"),
            ("Lab*Servers", "startswith(Name,'Lab') and endswith(Name,'Servers')"),
            ("SRV0?", "startswith(Name,'SRV0')"),
        ],
    )
    def test_wildcard_to_filter(self, pattern, expected):
        assert odata.wildcard_to_filter("Name", pattern) == expected

    @pytest.mark.parametrize("pattern", ["*", "**", "?", "*?*"])
    def test_glyph_only_pattern_has_no_filter(self, pattern):
        assert odata.wildcard_to_filter("Name", pattern) is None

    @pytest.mark.parametrize(
        "pattern, value, expected",
        [
            ("Lab*", "lab servers", True),
            ("SRV0?", "SRV01", True),
            ("SRV0?", "SRV010", False),
            ("*Win*", "Windows 11", True),
            ("a.b", "axb", False),
            ("Lab*", None, False),
        ],
    )
    def test_wildcard_match(self, pattern, value, expected):
        assert odata.wildcard_match(pattern, value) is expected

    def test_name_filter_exact(self):
        assert odata.name_filter("ScriptName", "Get-Uptime") == "ScriptName eq 'Get-Uptime'"


class TestPaths:
    def test_keyed_path_string(self):
        assert odata.keyed_path("SMS_Collection", "SMS00001") == "wmi/SMS_Collection('SMS00001')"

    def test_keyed_path_integer(self):
        assert odata.keyed_path("SMS_R_System", 16777220) == "wmi/SMS_R_System(16777220)"

    def test_filter_params(self):
        assert odata.filter_params(None) == {}
        assert odata.filter_params("Name eq 'x'", ["Name", "CollectionID"]) == {
            "$filter": "Name eq 'x'",
            "$select": "Name,CollectionID",
        }

    def test_and_skips_empty_clauses(self):
        assert odata.and_(None, "A eq 1", "") == "A eq 1"
        assert odata.and_("A eq 1", "B eq 2") == "A eq 1 and B eq 2"
        assert odata.and_(None) is None


class TestResponses:
    def test_strip_metadata_recursive(self):
        data = {
            "@odata.etag": "x",
            "__CLASS": "SMS_Collection",
            "Name": "Lab",
            "CollectionRules": [{"@odata.type": "#AdminService.X", "RuleName": "r"}],
        }
        assert odata.strip_metadata(data) == {
            "Name": "Lab",
            "CollectionRules": [{"RuleName": "r"}],
        }

    def test_values(self):
        assert odata.values(None) == []
        assert odata.values({"value": [{"a": 1}]}) == [{"a": 1}]
        assert odata.values({"value": {"a": 1}}) == [{"a": 1}]
        assert odata.values({"@odata.context": "x"}) == []
