"""
Unit tests for the static ERP code table loader.

Run: pytest tests/unit/test_code_map.py -v
"""

import json

from config.code_map import build_code_map, load_code_map, normalize_code


class TestNormalizeCode:

    def test_trims_and_uppercases(self):
        assert normalize_code("  de ") == "DE"

    def test_none_becomes_empty(self):
        assert normalize_code(None) == ""


class TestBuildCodeMap:
    """Tests for build_code_map()"""

    def test_flattens_sections(self):
        table = build_code_map({
            "brands": {"de": 4},
            "categories": {"MOR": "71"},
        })

        assert table == {("BRAND", "DE"): "4", ("CATEGORY", "MOR"): "71"}

    def test_same_code_in_both_kinds_kept_apart(self):
        """HP is a brand and a category (headphones) with different ids."""
        table = build_code_map({
            "brands": {"HP": "5"},
            "categories": {"HP": "159"},
        })

        assert table[("BRAND", "HP")] == "5"
        assert table[("CATEGORY", "HP")] == "159"

    def test_blank_entries_skipped(self):
        table = build_code_map({
            "brands": {"": "1", "LG": "", "AS": None},
            "categories": None,
        })

        assert table == {}


class TestLoadCodeMap:
    """Tests for load_code_map()"""

    def test_loads_file(self, tmp_path):
        path = tmp_path / "codes.json"
        path.write_text(json.dumps({"brands": {"DE": "4"}, "categories": {}}), encoding="utf-8")

        assert load_code_map(path) == {("BRAND", "DE"): "4"}

    def test_bundled_table(self):
        table = load_code_map()

        assert table[("BRAND", "DE")] == "4"
        assert table[("CATEGORY", "MOR")] == "71"
