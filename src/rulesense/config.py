"""
Configuration system for RuleSense.

Implements 12-factor config principles:
- Environment variables as primary config source
- Optional YAML or JSON config file
- Per-check enable switches, severities and options
- Check-specific rule lists (aggregation labels, required selector labels)

Usage:
    from rulesense.config import get_config, Config

    # Load from environment (default)
    config = get_config()

    # Check if a check is enabled
    if config.is_check_enabled("promql/aggregate"):
        ...

    # Load an explicit file
    config = load_config_from_file(Path("rulesense.yaml"))
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from rulesense import __version__
from rulesense.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

SeverityName = Literal["fatal", "bug", "warning", "information"]

ENV_PREFIX = "RULESENSE_"
CHECK_PREFIX = "RULESENSE_CHECK_"


class CheckSettings(BaseModel):
    """Configuration for a single check."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = Field(default=True, description="Whether the check is enabled")
    severity: SeverityName | None = Field(
        default=None,
        description="Override the severity of every problem reported by the check",
    )
    options: dict[str, Any] = Field(
        default_factory=dict,
        description="Check-specific options",
    )


class AggregateRule(BaseModel):
    """A label that aggregations must keep (or strip) for matching rules."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(default=".*", description="Regex matched against the rule name")
    label: str = Field(description="Label name to look for")
    keep: bool = Field(default=True, description="True if the label must survive aggregations")
    severity: SeverityName = Field(default="warning")


class SelectorRule(BaseModel):
    """A label every selector of a metric must filter on."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    key: str = Field(description="Regex matched against the metric name")
    call: str | None = Field(
        default=None,
        description="Only check selectors passed to functions matching this regex",
    )
    required: list[str] = Field(description="Labels that must have a matcher")
    comment: str = Field(default="", description="Extra text added to reported problems")
    severity: SeverityName = Field(default="warning")


class Config(BaseModel):
    """
    RuleSense configuration.

    Loaded from environment variables or a config file.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    rulesense_version: str = Field(
        default=__version__,
        description="RuleSense version the configuration was loaded by",
    )

    # Check configurations
    checks: dict[str, CheckSettings] = Field(
        default_factory=dict,
        description="Per-check configurations",
    )
    aggregate: list[AggregateRule] = Field(
        default_factory=list,
        description="Rules for the promql/aggregate check",
    )
    selectors: list[SelectorRule] = Field(
        default_factory=list,
        description="Rules for the promql/selector check",
    )
    external_labels: dict[str, str] = Field(
        default_factory=dict,
        description="External labels configured on the Prometheus servers",
    )
    metric_types: dict[str, str] = Field(
        default_factory=dict,
        description="Static metric metadata (metric name to type)",
    )

    # Execution
    parallel: bool = Field(default=True, description="Lint rules concurrently")
    max_workers: int = Field(default=4, ge=1, description="Worker threads for parallel linting")
    fail_fast: bool = Field(default=False, description="Stop on the first failing check")

    def check_settings(self, check_id: str) -> CheckSettings:
        return self.checks.get(check_id, CheckSettings())

    def is_check_enabled(self, check_id: str) -> bool:
        """Check if a check is enabled."""
        if check_id in self.checks:
            return self.checks[check_id].enabled
        return True  # Checks enabled by default

    def config_hash(self) -> str:
        """
        Generate a hash of the configuration.

        Changes whenever anything affecting lint results changes.
        """
        config_dict = self.model_dump(exclude={"parallel", "max_workers"})
        config_json = json.dumps(config_dict, sort_keys=True, default=str)
        return hashlib.sha256(config_json.encode()).hexdigest()[:16]


def _parse_env_bool(value: str | None, default: bool = False) -> bool:
    """Parse boolean from environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_env_int(value: str | None, default: int) -> int:
    """Parse integer from environment variable."""
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_env_mapping(value: str | None) -> dict[str, str]:
    """Parse ``k=v,k2=v2`` into a dict."""
    if not value:
        return {}
    mapping: dict[str, str] = {}
    for item in value.split(","):
        if not item.strip():
            continue
        key, sep, val = item.partition("=")
        if not sep:
            logger.warning("Ignoring malformed key=value pair %r", item)
            continue
        mapping[key.strip()] = val.strip()
    return mapping


def _check_id_from_env(name: str) -> str:
    """``PROMQL_AGGREGATE`` -> ``promql/aggregate``."""
    return name.lower().replace("_", "/", 1)


def load_config_from_env() -> Config:
    """
    Load configuration from environment variables.

    Environment variable naming convention:
    - RULESENSE_<SETTING> for global settings
    - RULESENSE_CHECK_<CHECK_ID>_ENABLED to toggle a check, where the
      ``/`` of the check id is written as ``_``

    Examples:
    - RULESENSE_PARALLEL=false
    - RULESENSE_MAX_WORKERS=8
    - RULESENSE_FAIL_FAST=true
    - RULESENSE_CHECK_PROMQL_COUNTER_ENABLED=false
    - RULESENSE_EXTERNAL_LABELS=cluster=prod,region=eu
    """
    config_kwargs: dict[str, Any] = {
        "parallel": _parse_env_bool(os.environ.get("RULESENSE_PARALLEL"), True),
        "max_workers": max(1, _parse_env_int(os.environ.get("RULESENSE_MAX_WORKERS"), 4)),
        "fail_fast": _parse_env_bool(os.environ.get("RULESENSE_FAIL_FAST"), False),
        "external_labels": _parse_env_mapping(os.environ.get("RULESENSE_EXTERNAL_LABELS")),
    }

    checks: dict[str, CheckSettings] = {}
    for key, value in os.environ.items():
        if not key.startswith(CHECK_PREFIX) or not key.endswith("_ENABLED"):
            continue
        name = key[len(CHECK_PREFIX):-len("_ENABLED")]
        if not name:
            continue
        check_id = _check_id_from_env(name)
        checks[check_id] = CheckSettings(enabled=_parse_env_bool(value, True))
    config_kwargs["checks"] = checks

    return Config(**config_kwargs)


def load_config_from_file(path: Path) -> Config:
    """
    Load configuration from a JSON or YAML file.

    Raises:
        ConfigurationError: If the file can't be read or has invalid content.
    """
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}", config_key=str(path))

    try:
        with open(path, encoding="utf-8") as f:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Failed to load config from {path}: {e}", config_key=str(path)) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file {path} must contain a mapping, got {type(data).__name__}",
            config_key=str(path),
        )

    try:
        return Config(**data)
    except ValidationError as e:
        first = e.errors()[0]
        key = ".".join(str(part) for part in first["loc"])
        raise ConfigurationError(f"Invalid config in {path}: {key}: {first['msg']}", config_key=key) from e


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get the global configuration instance.

    Loads from:
    1. RULESENSE_CONFIG_FILE environment variable (if set)
    2. Environment variables (default)

    Result is cached for the lifetime of the process.
    """
    config_file = os.environ.get("RULESENSE_CONFIG_FILE")

    if config_file:
        return load_config_from_file(Path(config_file))

    return load_config_from_env()


def reset_config() -> None:
    """Reset the cached configuration (mainly for testing)."""
    get_config.cache_clear()
