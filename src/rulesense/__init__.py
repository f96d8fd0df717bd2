"""RuleSense - Static linter for Prometheus rules with label provenance analysis."""

__version__ = "0.3.0"
__license__ = "MIT"

# Exception hierarchy (import first so other modules can use it)
from rulesense.exceptions import (
    RuleSenseError,
    AnalyzerError,
    CheckError,
    ConfigurationError,
    ParseError,
    RuleFileError,
    PromQLSyntaxError,
)

# Query parsing and the provenance engine
from rulesense.promql import parse_expr
from rulesense.provenance import ProvenanceNode, build

# Rule files and linting
from rulesense.parser import Rule, RuleFile, parse_rules
from rulesense.checker import (
    CheckRun,
    CheckRunStatus,
    Linter,
    LintResult,
    Problem,
    Severity,
)
from rulesense.config import Config, get_config

__all__ = [
    # Version
    "__version__",
    # Exceptions
    "RuleSenseError",
    "AnalyzerError",
    "CheckError",
    "ConfigurationError",
    "ParseError",
    "RuleFileError",
    "PromQLSyntaxError",
    # Engine
    "parse_expr",
    "build",
    "ProvenanceNode",
    # Rules
    "Rule",
    "RuleFile",
    "parse_rules",
    # Linting
    "Linter",
    "LintResult",
    "Problem",
    "Severity",
    "CheckRun",
    "CheckRunStatus",
    # Config
    "Config",
    "get_config",
]
