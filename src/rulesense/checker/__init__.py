"""
Rule checker module - check registry, checks and the linter.

Module responsibilities:
- models.py: Immutable result models (Problem, CheckRun, LintResult)
- registry.py: Check registration and discovery
- metadata.py: Metric metadata sources for online checks
- templates.py: Go template scanning for alert labels and annotations
- checks/: The checks themselves, registered on import
- linter.py: Linter orchestrator
"""

from rulesense.checker.models import (
    CheckRun,
    CheckRunStatus,
    LintResult,
    Problem,
    Severity,
)
from rulesense.checker.registry import CheckRegistry, get_registry, register_check
from rulesense.checker.metadata import (
    CachedMetadataSource,
    MetadataSource,
    StaticMetadataSource,
)
from rulesense.checker.checks import Check, CheckConfig, CheckContext
from rulesense.checker.linter import Linter

__all__ = [
    # Models
    "CheckRun",
    "CheckRunStatus",
    "LintResult",
    "Problem",
    "Severity",
    # Registry
    "CheckRegistry",
    "get_registry",
    "register_check",
    # Metadata
    "CachedMetadataSource",
    "MetadataSource",
    "StaticMetadataSource",
    # Checks
    "Check",
    "CheckConfig",
    "CheckContext",
    # Linter
    "Linter",
]
