"""
Rule file reader configuration with resource limits.

These limits prevent pathological inputs from exhausting memory or
making a single file dominate a lint run. The defaults are generous
for normal usage but will catch genuinely problematic files.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ParserConfig(BaseModel):
    """
    Configuration for the rule file reader with resource limits.

    Attributes:
        max_file_size_mb: Maximum file size to read.
        max_rules: Maximum number of rules in one file.
        max_query_length: Maximum length of a single rule expression.

    Example:
        # Use defaults
        config = ParserConfig()

        # Stricter limits for untrusted input
        config = ParserConfig(max_file_size_mb=1, max_rules=500)
    """

    max_file_size_mb: float = Field(
        default=20.0,
        gt=0,
        description="Maximum file size in megabytes",
    )

    max_rules: int = Field(
        default=10_000,
        gt=0,
        description="Maximum number of rules per file",
    )

    max_query_length: int = Field(
        default=64_000,
        gt=0,
        description="Maximum length of a rule expression in characters",
    )


# Sensible defaults for different use cases
DEFAULT_CONFIG = ParserConfig()

# Stricter limits for untrusted input
STRICT_CONFIG = ParserConfig(
    max_file_size_mb=1.0,
    max_rules=1_000,
    max_query_length=8_000,
)
