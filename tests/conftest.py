"""Shared fixtures for the RuleSense test suite."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable

import pytest

from rulesense.config import reset_config

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch):
    """Every test starts without RULESENSE_* variables and without a cached config."""
    for key in list(os.environ):
        if key.startswith("RULESENSE_"):
            monkeypatch.delenv(key, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES_DIR


@pytest.fixture
def write_rules(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write rule file text into the test's temporary directory."""

    def write(text: str, name: str = "rules.yaml") -> Path:
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path

    return write
