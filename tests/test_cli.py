"""Tests for the Typer command-line interface."""

import json

import pytest
from typer.testing import CliRunner

from tilevault import __version__
from tilevault.cli import app as cli_app

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "config" / "config.ini"
    monkeypatch.setattr(cli_app, "CONFIG_FILE", path)
    monkeypatch.setattr(cli_app, "CONFIG_DIR", path.parent)
    return path


@pytest.fixture
def regions_file(tmp_path):
    path = tmp_path / "regions.json"
    path.write_text(
        json.dumps(
            {
                "regions": [
                    {"id": "CVL", "label": "Centre", "sourceUrl": "CVL.pmtiles"},
                    {"id": "BRE", "label": "Bretagne", "sourceUrl": "BRE.pmtiles"},
                ]
            }
        ),
        encoding="utf-8",
    )
    return path


def _init(tmp_path, regions_file):
    return runner.invoke(
        cli_app.app,
        [
            "init",
            "--data-dir",
            str(tmp_path / "data"),
            "--regions-source",
            str(regions_file),
            "--force",
        ],
    )


class TestCli:
    """Tests for CLI commands."""

    def test_version(self):
        """--version prints the package version."""
        result = runner.invoke(cli_app.app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_init_writes_config(self, tmp_path, config_file, regions_file):
        """init creates the INI file with the given options."""
        result = _init(tmp_path, regions_file)
        assert result.exit_code == 0
        text = config_file.read_text(encoding="utf-8")
        assert str(regions_file) in text
        assert "tiles_base_url" in text

    def test_regions_lists_catalogue(self, tmp_path, config_file, regions_file):
        """regions shows every catalogue entry."""
        _init(tmp_path, regions_file)
        result = runner.invoke(cli_app.app, ["regions"])
        assert result.exit_code == 0
        assert "CVL" in result.output
        assert "BRE" in result.output

    def test_evict_unknown_region(self, tmp_path, config_file, regions_file):
        """Unknown region codes exit with an error."""
        _init(tmp_path, regions_file)
        result = runner.invoke(cli_app.app, ["evict", "XYZ"])
        assert result.exit_code == 1
        assert "RegionNotFoundError" in result.output

    def test_evict_not_cached(self, tmp_path, config_file, regions_file):
        """Evicting a region that is not cached is not an error."""
        _init(tmp_path, regions_file)
        result = runner.invoke(cli_app.app, ["evict", "cvl"])
        assert result.exit_code == 0
        assert "was not cached" in result.output

    def test_missing_config(self, config_file):
        """Commands other than init need a config file."""
        result = runner.invoke(cli_app.app, ["regions"])
        assert result.exit_code == 1
