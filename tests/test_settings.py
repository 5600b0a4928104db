"""
Tests for GrabberSettings — env, YAML and CLI layering.
"""

from pathlib import Path

import pytest

from wikigrab.config.settings import GrabberSettings, normalize_timestamp, parse_namespaces
from wikigrab.errors import ConfigurationError


class TestParsers:
    """Tests for value parsers."""

    def test_parse_namespaces(self):
        assert parse_namespaces("0|10,14") == [0, 10, 14]
        assert parse_namespaces([0, "6"]) == [0, 6]
        assert parse_namespaces("") == []
        assert parse_namespaces(None) == []

    def test_bad_namespace(self):
        with pytest.raises(ConfigurationError):
            parse_namespaces("0|main")

    def test_normalize_timestamp(self):
        assert normalize_timestamp("2020-01-02") == "2020-01-02T00:00:00Z"
        assert normalize_timestamp("2020-01-02T03:04:05+02:00") == "2020-01-02T01:04:05Z"
        assert normalize_timestamp("20200102030405") == "2020-01-02T03:04:05Z"
        assert normalize_timestamp(None) is None

    def test_bad_timestamp(self):
        with pytest.raises(ConfigurationError):
            normalize_timestamp("not a date")


class TestFromEnv:
    """Tests for WIKIGRAB_* environment parsing."""

    def test_defaults(self):
        settings = GrabberSettings.from_env({})
        assert settings.api_url is None
        assert settings.db_path == Path("mirror.sqlite")
        assert settings.report_interval == 500
        assert settings.collision_suffix == "@imported"

    def test_values_are_coerced(self):
        settings = GrabberSettings.from_env(
            {
                "WIKIGRAB_URL": "https://wiki.example.org/w/api.php",
                "WIKIGRAB_NAMESPACES": "0|6",
                "WIKIGRAB_REPORT_INTERVAL": "50",
                "WIKIGRAB_RETRY_DELAY": "0.5",
                "WIKIGRAB_TRANSCODING_HOSTS": "cdn.example.org, Static.Example.org",
                "WIKIGRAB_START": "2020-01-01",
                "WIKIGRAB_FINDINGS": "audit/findings.ndjson",
                "WIKIGRAB_USERNAME": "",
            }
        )
        assert settings.namespaces == [0, 6]
        assert settings.report_interval == 50
        assert settings.retry_delay == 0.5
        assert settings.transcoding_hosts == ["cdn.example.org", "static.example.org"]
        assert settings.start == "2020-01-01T00:00:00Z"
        assert settings.findings_path == Path("audit/findings.ndjson")
        assert settings.username is None

    def test_bad_integer(self):
        with pytest.raises(ConfigurationError):
            GrabberSettings.from_env({"WIKIGRAB_MAX_RETRIES": "many"})


class TestLayering:
    """Tests for YAML files and CLI overrides."""

    def test_yaml_over_env(self, tmp_path):
        path = tmp_path / "grab.yaml"
        path.write_text("api_url: https://yaml.example.org/api.php\nnamespaces: [0, 4]\nbogus: 1\n")
        base = GrabberSettings.from_env({"WIKIGRAB_URL": "https://env.example.org/api.php", "WIKIGRAB_DB": "x.db"})

        settings = GrabberSettings.from_yaml(path, base=base)

        assert settings.api_url == "https://yaml.example.org/api.php"
        assert settings.namespaces == [0, 4]
        assert settings.db_path == Path("x.db")

    def test_yaml_must_be_mapping(self, tmp_path):
        path = tmp_path / "grab.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            GrabberSettings.from_yaml(path)

    def test_merged_skips_none(self):
        settings = GrabberSettings(api_url="https://a/api.php").merged(api_url=None, end="2021-01-01")
        assert settings.api_url == "https://a/api.php"
        assert settings.end == "2021-01-01T00:00:00Z"


class TestValidate:
    """Tests for settings validation."""

    def test_valid(self):
        GrabberSettings(api_url="https://wiki.example.org/w/api.php").validate()

    @pytest.mark.parametrize(
        "overrides",
        [
            {"api_url": None},
            {"api_url": "ftp://wiki.example.org"},
            {"username": "Bot"},
            {"namespaces": [-1]},
            {"report_interval": 0},
            {"max_retries": 0},
            {"retry_delay": -1.0},
            {"start": "2021-01-01T00:00:00Z", "end": "2020-01-01T00:00:00Z"},
        ],
    )
    def test_invalid(self, overrides):
        values = {"api_url": "https://wiki.example.org/w/api.php", **overrides}
        with pytest.raises(ConfigurationError):
            GrabberSettings(**values).validate()

    def test_url_optional_when_not_required(self):
        GrabberSettings().validate(require_url=False)
