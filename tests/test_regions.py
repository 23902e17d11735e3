"""Tests for region catalogue loading and lookup."""

import json

import pytest

from tilevault.exceptions import ConfigurationError, RegionNotFoundError
from tilevault.storage.regions import (
    find_region,
    load_regions,
    parse_catalogue,
    region_from_pm,
)
from tilevault.utils.path import region_code_from_pm, resolve_resource_url

BASE = "https://tiles.example.org/tiles/"


class TestParseCatalogue:
    """Tests for parse_catalogue function."""

    def test_canonical_shape(self):
        """Canonical camelCase entries are accepted."""
        regions = parse_catalogue(
            {
                "regions": [
                    {
                        "id": "CVL",
                        "label": "Centre-Val de Loire",
                        "sourceUrl": "https://cdn.example.org/CVL.pmtiles",
                        "approximateSizeMiB": 412,
                    }
                ]
            },
            BASE,
        )
        assert regions[0].id == "CVL"
        assert regions[0].source_url == "https://cdn.example.org/CVL.pmtiles"
        assert regions[0].approximate_size_mib == 412

    def test_legacy_shape_resolves_relative_urls(self):
        """Legacy entries with bare archive names resolve against the base URL."""
        regions = parse_catalogue(
            {"regions": [{"code": "BRE", "pmtiles_url": "BRE.pmtiles"}]}, BASE
        )
        assert regions[0].source_url == BASE + "BRE.pmtiles"
        assert regions[0].approximate_size_mib is None

    def test_duplicate_codes_rejected(self):
        """Two entries with the same code are a configuration error."""
        entry = {"id": "CVL", "sourceUrl": "CVL.pmtiles"}
        with pytest.raises(ConfigurationError):
            parse_catalogue({"regions": [entry, entry]}, BASE)

    def test_invalid_entry_rejected(self):
        """An entry without a source URL is a configuration error."""
        with pytest.raises(ConfigurationError):
            parse_catalogue({"regions": [{"id": "CVL"}]}, BASE)

    def test_wrong_document_shape(self):
        """A bare list is not a catalogue."""
        with pytest.raises(ConfigurationError):
            parse_catalogue([], BASE)


class TestLoadRegions:
    """Tests for load_regions function."""

    @pytest.mark.asyncio
    async def test_local_file(self, tmp_path):
        """A local regions.json is read and validated."""
        path = tmp_path / "regions.json"
        path.write_text(
            json.dumps({"regions": [{"id": "CVL", "sourceUrl": "CVL.pmtiles"}]}),
            encoding="utf-8",
        )
        regions = await load_regions(str(path), BASE)
        assert [r.id for r in regions] == ["CVL"]

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        """A missing catalogue raises ConfigurationError."""
        with pytest.raises(ConfigurationError):
            await load_regions(str(tmp_path / "nope.json"), BASE)

    @pytest.mark.asyncio
    async def test_invalid_json(self, tmp_path):
        """Unparseable JSON raises ConfigurationError."""
        path = tmp_path / "regions.json"
        path.write_text("{", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            await load_regions(str(path), BASE)


class TestRegionLookup:
    """Tests for region lookup helpers."""

    @pytest.fixture
    def regions(self):
        return parse_catalogue(
            {
                "regions": [
                    {"id": "CVL", "sourceUrl": "CVL.pmtiles"},
                    {"id": "BRE", "sourceUrl": "BRE.pmtiles"},
                ]
            },
            BASE,
        )

    def test_find_region_case_insensitive(self, regions):
        """Codes match regardless of case."""
        assert find_region(regions, "cvl").id == "CVL"

    def test_find_region_unknown(self, regions):
        """Unknown codes raise RegionNotFoundError."""
        with pytest.raises(RegionNotFoundError):
            find_region(regions, "XYZ")

    def test_region_from_pm(self, regions):
        """A pm parameter maps to its region, by name or by URL."""
        assert region_from_pm(regions, "BRE.pmtiles").id == "BRE"
        assert region_from_pm(regions, BASE + "CVL.pmtiles").id == "CVL"
        assert region_from_pm(regions, "NOR.pmtiles") is None
        assert region_from_pm(regions, None) is None


class TestResourceUrls:
    """Tests for pm resolution helpers."""

    def test_resolve_bare_name(self):
        """Bare names are joined to the base URL."""
        assert resolve_resource_url("CVL.pmtiles", BASE) == BASE + "CVL.pmtiles"

    def test_resolve_absolute(self):
        """Absolute URLs are used as-is."""
        url = "https://other.example/x/CVL.pmtiles"
        assert resolve_resource_url(url, BASE) == url

    def test_code_from_pm(self):
        """The region code is the archive name without its suffix."""
        assert region_code_from_pm("CVL.pmtiles") == "CVL"
        assert region_code_from_pm(BASE + "BRE.pmtiles") == "BRE"
