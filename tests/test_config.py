"""
Tests for configuration loading.

Configuration comes from RULESENSE_* environment variables or from a
YAML/JSON file named by RULESENSE_CONFIG_FILE or --config.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from rulesense.checker.checks import AggregationCheck, ExternalLabelsCheck, SelectorCheck
from rulesense.config import (
    CheckSettings,
    Config,
    get_config,
    load_config_from_env,
    load_config_from_file,
    reset_config,
)
from rulesense.exceptions import ConfigurationError


# =============================================================================
# Environment
# =============================================================================


class TestEnvironment:
    """RULESENSE_* variables."""

    def test_defaults(self) -> None:
        config = load_config_from_env()
        assert config.parallel is True
        assert config.max_workers == 4
        assert config.fail_fast is False
        assert config.checks == {}
        assert config.external_labels == {}

    def test_global_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RULESENSE_PARALLEL", "false")
        monkeypatch.setenv("RULESENSE_MAX_WORKERS", "8")
        monkeypatch.setenv("RULESENSE_FAIL_FAST", "yes")
        config = load_config_from_env()
        assert config.parallel is False
        assert config.max_workers == 8
        assert config.fail_fast is True

    def test_invalid_numbers_fall_back(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RULESENSE_MAX_WORKERS", "lots")
        assert load_config_from_env().max_workers == 4
        monkeypatch.setenv("RULESENSE_MAX_WORKERS", "0")
        assert load_config_from_env().max_workers == 1

    def test_check_switches(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RULESENSE_CHECK_PROMQL_COUNTER_ENABLED", "false")
        monkeypatch.setenv("RULESENSE_CHECK_ALERTS_EXTERNAL_LABELS_ENABLED", "true")
        config = load_config_from_env()
        assert not config.is_check_enabled("promql/counter")
        assert config.is_check_enabled("alerts/external_labels")
        assert config.is_check_enabled("promql/impossible")

    def test_external_labels(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RULESENSE_EXTERNAL_LABELS", "cluster=prod, region=eu,broken")
        assert load_config_from_env().external_labels == {"cluster": "prod", "region": "eu"}


# =============================================================================
# Files
# =============================================================================


class TestFiles:
    """YAML and JSON configuration files."""

    def test_yaml_file(self, tmp_path: Path) -> None:
        path = tmp_path / "rulesense.yaml"
        path.write_text(
            "checks:\n"
            "  promql/counter:\n"
            "    enabled: false\n"
            "  promql/impossible:\n"
            "    severity: bug\n"
            "aggregate:\n"
            "  - name: 'job:.*'\n"
            "    label: job\n"
            "selectors:\n"
            "  - key: 'http_.*'\n"
            "    required: [job]\n"
            "external_labels:\n"
            "  cluster: prod\n"
        )
        config = load_config_from_file(path)
        assert not config.is_check_enabled("promql/counter")
        assert config.check_settings("promql/impossible").severity == "bug"
        assert config.aggregate[0].name == "job:.*"
        assert config.aggregate[0].keep is True
        assert config.selectors[0].required == ["job"]
        assert config.external_labels == {"cluster": "prod"}

    def test_json_file(self, tmp_path: Path) -> None:
        path = tmp_path / "rulesense.json"
        path.write_text(json.dumps({"max_workers": 2, "metric_types": {"foo_total": "counter"}}))
        config = load_config_from_file(path)
        assert config.max_workers == 2
        assert config.metric_types == {"foo_total": "counter"}

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "rulesense.yaml"
        path.write_text("")
        assert load_config_from_file(path) == Config()

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="Config file not found"):
            load_config_from_file(tmp_path / "missing.yaml")

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "rulesense.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError, match="must contain a mapping"):
            load_config_from_file(path)

    def test_broken_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "rulesense.yaml"
        path.write_text("checks: [\n")
        with pytest.raises(ConfigurationError, match="Failed to load config"):
            load_config_from_file(path)

    @pytest.mark.parametrize("text, key", [
        ("max_workers: 0\n", "max_workers"),
        ("colour: red\n", "colour"),
        ("checks:\n  promql/counter:\n    severity: loud\n", "checks.promql/counter.severity"),
    ])
    def test_invalid_values(self, tmp_path: Path, text: str, key: str) -> None:
        path = tmp_path / "rulesense.yaml"
        path.write_text(text)
        with pytest.raises(ConfigurationError) as exc_info:
            load_config_from_file(path)
        assert exc_info.value.config_key == key
        assert exc_info.value.to_dict()["config_key"] == key


# =============================================================================
# Global config
# =============================================================================


class TestGlobalConfig:
    """get_config() caching."""

    def test_cached(self) -> None:
        assert get_config() is get_config()

    def test_config_file_variable(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "rulesense.yaml"
        path.write_text("fail_fast: true\n")
        monkeypatch.setenv("RULESENSE_CONFIG_FILE", str(path))
        assert get_config().fail_fast is True

    def test_reset(self, monkeypatch: pytest.MonkeyPatch) -> None:
        first = get_config()
        monkeypatch.setenv("RULESENSE_FAIL_FAST", "true")
        assert get_config() is first
        reset_config()
        assert get_config().fail_fast is True


# =============================================================================
# Hash and check options
# =============================================================================


class TestConfigHash:
    def test_stable(self) -> None:
        assert Config().config_hash() == Config().config_hash()
        assert len(Config().config_hash()) == 16

    def test_execution_settings_do_not_matter(self) -> None:
        assert Config(parallel=False, max_workers=9).config_hash() == Config().config_hash()

    def test_check_settings_matter(self) -> None:
        disabled = Config(checks={"promql/counter": CheckSettings(enabled=False)})
        assert disabled.config_hash() != Config().config_hash()


class TestCheckOptions:
    """Checks read their options from the global configuration."""

    def test_aggregate_rules(self) -> None:
        check = AggregationCheck.from_config(Config(aggregate=[{"label": "job"}]))
        assert [rule.label for rule in check.config.rules] == ["job"]

    def test_options_take_precedence(self) -> None:
        config = Config(
            aggregate=[{"label": "job"}],
            checks={"promql/aggregate": {"options": {"rules": [{"label": "instance"}]}}},
        )
        check = AggregationCheck.from_config(config)
        assert [rule.label for rule in check.config.rules] == ["instance"]

    def test_selector_rules(self) -> None:
        check = SelectorCheck.from_config(Config(selectors=[{"key": "foo", "required": ["job"]}]))
        assert check.config.rules[0].key == "foo"

    def test_external_labels(self) -> None:
        check = ExternalLabelsCheck.from_config(Config(external_labels={"cluster": "prod"}))
        assert check.config.external_labels == {"cluster": "prod"}

    def test_unknown_option(self) -> None:
        with pytest.raises(ValueError):
            AggregationCheck({"bogus": 1})
