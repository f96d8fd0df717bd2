"""
Linter - runs every enabled check against every rule of a rule file.

For each rule file:
1. The provenance tree of every rule is built once, so checks that look
   at sibling rules (``promql/performance``) reuse them.
2. Every check runs against every rule with its own CheckContext and
   yields a CheckRun with PASS/SKIP/FAIL status.
3. Problems are sorted deterministically and returned in a LintResult.

Rules are independent of each other, so with ``parallel=True`` both
steps run on a thread pool. Trees are immutable and shared read-only.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Iterable, Sequence

from rulesense.checker.checks.base import Check, CheckContext
from rulesense.checker.metadata import CachedMetadataSource, MetadataSource, StaticMetadataSource
from rulesense.checker.models import CheckRun, CheckRunStatus, LintResult, Problem, Severity
from rulesense.checker.registry import get_registry
from rulesense.config import Config, get_config
from rulesense.exceptions import AnalyzerError, CheckError, ConfigurationError, RuleFileError
from rulesense.parser import parse_rules
from rulesense.parser.config import DEFAULT_CONFIG, ParserConfig
from rulesense.parser.models import Rule, RuleFile
from rulesense.provenance import ProvenanceNode, build

logger = logging.getLogger(__name__)

SYNTAX_CHECK_ID = "promql/syntax"

Siblings = Sequence[tuple[Rule, "ProvenanceNode | None"]]


class Linter:
    """
    Static linter for Prometheus rule files.

    Features:
    - Thread-safe: Trees are immutable and each check gets its own context
    - Observable: PASS/SKIP/FAIL status for every check and rule
    - Configurable: Checks, their options and severities come from Config

    Example:
        from rulesense import Linter

        linter = Linter()
        result = linter.lint_file("rules.yaml")

        for problem in result.problems:
            print(f"{problem.severity}: {problem.summary}")
    """

    DEFAULT_MAX_WORKERS: int = 4

    def __init__(
        self,
        checks: list[Check] | None = None,
        include: set[str] | None = None,
        exclude: set[str] | None = None,
        fail_fast: bool = False,
        parallel: bool = True,
        max_workers: int = DEFAULT_MAX_WORKERS,
        config: Config | None = None,
        metadata: MetadataSource | None = None,
        parser_config: ParserConfig | None = None,
    ) -> None:
        """
        Initialize the linter.

        Args:
            checks: Check instances to run (if None, uses the registry)
            include: Only run these check IDs
            exclude: Skip these check IDs
            fail_fast: Raise on the first check error or unreadable file
            parallel: Lint rules on a thread pool
            max_workers: Thread pool size
            config: Configuration instance (if None, uses get_config())
            metadata: Metric metadata for online checks (if None, built
                from ``config.metric_types`` when there are any)
            parser_config: Limits for reading rule files
        """
        self.config = config
        if self.config is None:
            try:
                self.config = get_config()
            except ConfigurationError as e:
                logger.warning("Failed to load config, falling back to defaults: %s", e)
                self.config = Config()

        if checks is not None:
            self.checks = list(checks)
        else:
            registry = get_registry()
            check_classes = registry.filter(include=include, exclude=exclude)
            self.checks = [cls.from_config(self.config) for cls in check_classes]

        self.checks = [c for c in self.checks if self.config.is_check_enabled(c.check_id)]

        if metadata is None and self.config.metric_types:
            metadata = StaticMetadataSource(self.config.metric_types)
        if metadata is not None and not isinstance(metadata, CachedMetadataSource):
            metadata = CachedMetadataSource(metadata)
        self.metadata = metadata

        self.fail_fast = fail_fast
        self.parallel = parallel
        self.max_workers = max_workers
        self.parser_config = parser_config or DEFAULT_CONFIG

    # ── entry points ─────────────────────────────────────────────────────

    def lint_file(self, path: str | Path) -> LintResult:
        """Lint a single rule file."""
        return self.lint_files([path])

    def lint_files(self, paths: Iterable[str | Path]) -> LintResult:
        """
        Lint several rule files into one result.

        Files that can't be read are recorded in ``LintResult.errors``
        and the remaining files are still linted, unless ``fail_fast``.
        """
        start_time = time.perf_counter()
        problems: list[Problem] = []
        runs: list[CheckRun] = []
        errors: list[dict] = []
        files_count = 0
        rules_count = 0

        for path in paths:
            files_count += 1
            try:
                rule_file = parse_rules(Path(path), self.parser_config)
            except RuleFileError as e:
                if self.fail_fast:
                    raise
                logger.warning("Cannot read rule file %s: %s", path, e.message)
                errors.append(e.to_dict())
                continue

            file_problems, file_runs = self._lint(rule_file)
            problems.extend(file_problems)
            runs.extend(file_runs)
            rules_count += len(rule_file.rules)

        return self._result(problems, runs, errors, files_count, rules_count, start_time)

    def lint_rules(self, rule_file: RuleFile) -> LintResult:
        """Lint rules that were already read."""
        start_time = time.perf_counter()
        problems, runs = self._lint(rule_file)
        return self._result(problems, runs, [], 1, len(rule_file.rules), start_time)

    def lint_text(self, text: str, path: str | None = None) -> LintResult:
        """
        Lint rules given as YAML text.

        ``path`` is only used to label problems.

        Raises:
            RuleFileError: If the text is not a valid rule file.
        """
        rule_file = parse_rules(text, self.parser_config)
        if path is not None:
            rule_file = rule_file.model_copy(update={"path": path})
        return self.lint_rules(rule_file)

    # ── internals ────────────────────────────────────────────────────────

    def _result(
        self,
        problems: list[Problem],
        runs: list[CheckRun],
        errors: list[dict],
        files_count: int,
        rules_count: int,
        start_time: float,
    ) -> LintResult:
        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.debug(
            "Linted %d rule(s) in %d file(s): %d problem(s) in %.1fms",
            rules_count, files_count, len(problems), duration_ms,
        )
        return LintResult(
            problems=tuple(sorted(problems)),
            runs=tuple(runs),
            errors=tuple(errors),
            files_count=files_count,
            rules_count=rules_count,
            duration_ms=duration_ms,
            config_hash=self.config.config_hash(),
        )

    def _lint(self, rule_file: RuleFile) -> tuple[list[Problem], list[CheckRun]]:
        rules = list(rule_file.rules)
        path = rule_file.path

        if self.parallel and len(rules) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                trees = list(pool.map(self._build_tree, rules))
                siblings = list(zip(rules, trees))
                outcomes = list(pool.map(
                    lambda pair: self._lint_rule(pair[0], pair[1], path, siblings),
                    siblings,
                ))
        else:
            trees = [self._build_tree(rule) for rule in rules]
            siblings = list(zip(rules, trees))
            outcomes = [self._lint_rule(rule, tree, path, siblings) for rule, tree in siblings]

        problems: list[Problem] = []
        runs: list[CheckRun] = []
        for rule_problems, rule_runs in outcomes:
            problems.extend(rule_problems)
            runs.extend(rule_runs)
        return problems, runs

    def _build_tree(self, rule: Rule) -> ProvenanceNode | None:
        if rule.expr.ast is None:
            return None
        try:
            return build(rule.expr.ast, rule.expr.text)
        except Exception as e:
            if self.fail_fast:
                raise AnalyzerError(f"Cannot analyse query of rule '{rule.name}': {e}") from e
            logger.warning("Provenance analysis of rule %s failed: %s", rule.name, e)
            return None

    def _syntax_problem(self, rule: Rule, path: str | None) -> Problem:
        error = rule.expr.syntax_error
        return Problem(
            check_id=SYNTAX_CHECK_ID,
            severity=Severity.FATAL,
            summary="PromQL syntax error",
            text=f"Prometheus failed to parse the query with this error: `{error.message}`.",
            details=(
                "[Click here](https://prometheus.io/docs/prometheus/latest/querying/basics/) "
                "for PromQL documentation."
            ),
            lines=rule.expr.lines,
            fragment=error.pos,
            fragment_text=error.pos.fragment(rule.expr.text),
            path=path,
            rule_name=rule.name,
        )

    def _lint_rule(
        self,
        rule: Rule,
        tree: ProvenanceNode | None,
        path: str | None,
        siblings: Siblings,
    ) -> tuple[list[Problem], list[CheckRun]]:
        """Run every check against one rule and track execution status."""
        problems: list[Problem] = []
        runs: list[CheckRun] = []

        if rule.expr.syntax_error is not None:
            problems.append(self._syntax_problem(rule, path))

        ctx = CheckContext(
            rule=rule,
            provenance=tree,
            path=path,
            siblings=siblings,
            metadata=self.metadata,
        )

        for check in self.checks:
            skip_reason = self._skip_reason(check, rule, tree)
            if skip_reason is not None:
                runs.append(CheckRun(
                    check_id=check.check_id,
                    version=check.version,
                    status=CheckRunStatus.SKIP,
                    rule_name=rule.name,
                    skip_reason=skip_reason,
                ))
                logger.debug("Check %s skipped on %s: %s", check.check_id, rule.name, skip_reason)
                continue

            check_start = time.perf_counter()
            try:
                check_problems = self._apply_severity(check, check.check(ctx))
                problems.extend(check_problems)

                runtime_ms = (time.perf_counter() - check_start) * 1000
                runs.append(CheckRun(
                    check_id=check.check_id,
                    version=check.version,
                    status=CheckRunStatus.PASS,
                    rule_name=rule.name,
                    runtime_ms=runtime_ms,
                    problems_count=len(check_problems),
                ))

            except Exception as e:
                runtime_ms = (time.perf_counter() - check_start) * 1000

                if self.fail_fast:
                    raise CheckError(check.check_id, check.version, e, rule_name=rule.name) from e

                runs.append(CheckRun(
                    check_id=check.check_id,
                    version=check.version,
                    status=CheckRunStatus.FAIL,
                    rule_name=rule.name,
                    runtime_ms=runtime_ms,
                    error_summary=str(e),
                ))
                logger.warning("Check %s failed on rule %s: %s", check.check_id, rule.name, e)

        return problems, runs

    def _skip_reason(self, check: Check, rule: Rule, tree: ProvenanceNode | None) -> str | None:
        if check.uses_provenance and tree is None:
            if rule.expr.syntax_error is not None:
                return "Query has a syntax error"
            return "Provenance tree not available"
        if check.online and self.metadata is None:
            return "No metadata source configured"
        return None

    def _apply_severity(self, check: Check, problems: list[Problem]) -> list[Problem]:
        override = self.config.check_settings(check.check_id).severity
        if override is None:
            return problems
        severity = Severity(override)
        return [p.model_copy(update={"severity": severity}) for p in problems]
