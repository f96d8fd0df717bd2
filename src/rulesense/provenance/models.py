"""
Data models for the provenance tree.

A ProvenanceNode summarises what is statically known about the labels
of one query sub-expression:
- Which labels every result series is guaranteed to carry
- Which labels can never be present (and why, with the fragment to blame)
- Whether the sub-expression can ever return anything at all
- Which other branches (introduced by ``or``) may produce the result instead

Nodes are immutable. Builders derive new nodes with ``dataclasses.replace``
and never modify a node after it was created, so one tree can be shared
by every check, on any thread.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Iterable, Iterator, Mapping

from rulesense.promql.ast import PositionRange, ValueType

if TYPE_CHECKING:
    from rulesense.promql.ast import Expr, VectorMatching, VectorSelector


class NodeKind(str, Enum):
    """Closed set of provenance node kinds."""

    SELECTOR = "selector"
    FUNCTION = "function"
    AGGREGATION = "aggregation"
    BINARY_JOIN = "binary_join"
    SET_OP = "set_op"
    LITERAL = "literal"
    SUBQUERY = "subquery"
    UNKNOWN = "unknown"


class Combinator(str, Enum):
    """
    How a node was reached from the expression that produces the result.

    NONE: the node produces (part of) the result
    AND: the node only filters results through ``and``
    UNLESS: the node only removes results through ``unless``
    JOIN: the node is the other side of a vector/vector arithmetic join
    OR: the node is an alternative producer introduced by ``or``
    """

    NONE = "none"
    AND = "and"
    UNLESS = "unless"
    JOIN = "join"
    OR = "or"


class LabelKind(str, Enum):
    GUARANTEED = "guaranteed"
    POSSIBLE = "possible"
    EXCLUDED = "excluded"


@dataclass(frozen=True)
class LabelFact:
    """What is known about one label name, and where that knowledge comes from."""

    kind: LabelKind
    reason: str
    fragment: PositionRange


@dataclass(frozen=True)
class Exclusion:
    """Why a label is provably absent, and the query fragment responsible."""

    reason: str
    fragment: PositionRange


@dataclass(frozen=True)
class DeadInfo:
    """
    Proof that a node never returns anything.

    ``inherited`` is True when the node is dead only because a child is,
    so reporters can blame the child instead of every ancestor.
    """

    reason: str
    fragment: PositionRange
    inherited: bool = False

    def propagate(self) -> "DeadInfo":
        return DeadInfo(reason=self.reason, fragment=self.fragment, inherited=True)


class LabelIssueKind(str, Enum):
    IMPOSSIBLE = "impossible label"
    DUPLICATED_JOIN = "redundant label"


@dataclass(frozen=True)
class LabelIssue:
    """
    A label used by the query (in ``by()``, ``on()``, ``group_left()``...)
    that cannot have any effect.
    """

    kind: LabelIssueKind
    name: str
    reason: str
    usage: PositionRange
    label_reason: str = ""
    label_fragment: PositionRange | None = None


@dataclass(frozen=True)
class Operation:
    """
    One step in the chain of operations from a leaf selector to a node.

    ``label`` is the selector name, function name or aggregation operator;
    ``text`` is the normalised source of the whole sub-expression and is
    what two independently built trees are compared on.
    """

    label: str
    text: str
    position: PositionRange
    args: tuple[str, ...] = ()

    def same_as(self, other: "Operation") -> bool:
        return self.text == other.text


@dataclass(frozen=True)
class JoinMismatch:
    """A label one side of an ``ignoring()`` join guarantees but the other side excludes."""

    name: str
    side: str
    reason: str
    fragment: PositionRange


@dataclass(frozen=True)
class LabelSet:
    """
    Tri-state set of guaranteed labels.

    ``names is None`` means unknown, which is never the same as empty:
    an empty set is a proof that no label is guaranteed.
    """

    names: frozenset[str] | None

    @classmethod
    def unknown(cls) -> "LabelSet":
        return cls(None)

    @classmethod
    def empty(cls) -> "LabelSet":
        return cls(frozenset())

    @classmethod
    def of(cls, names: Iterable[str]) -> "LabelSet":
        return cls(frozenset(names))

    @property
    def is_unknown(self) -> bool:
        return self.names is None

    @property
    def is_empty(self) -> bool:
        return self.names is not None and not self.names

    def __contains__(self, name: object) -> bool:
        return self.names is not None and name in self.names

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.names or ()))

    def __len__(self) -> int:
        return len(self.names or ())

    def __str__(self) -> str:
        if self.names is None:
            return "unknown"
        return "{" + ", ".join(sorted(self.names)) + "}"


@dataclass(frozen=True)
class Filter:
    """
    Another sub-tree that filters or joins into a branch without being
    one of its producers: the right hand side of ``and``/``unless`` or of
    a vector/vector arithmetic operation.
    """

    node: "ProvenanceNode"
    combinator: Combinator
    op: str
    matching: "VectorMatching | None" = None


@dataclass(frozen=True)
class ProvenanceNode:
    """
    Provenance of one query sub-expression.

    The label fields (``labels``, ``fixed``, ``unknown``) describe the
    primary branch. Other branches that may produce the result instead
    are in ``alternatives``; any universal claim must hold for all of them.

    Attributes:
        kind: Node kind
        position: Character range of the sub-expression
        expr: The AST node this was built from
        labels: Per-label facts (guaranteed, possible, excluded)
        fixed: True when only labels listed in ``labels`` as guaranteed or
            possible can ever be present
        fixed_reason: Why every unlisted label is absent (when ``fixed``)
        unknown: True when nothing at all can be said about guaranteed labels
        dead: Proof that the primary branch never returns anything
        alternatives: Flattened sibling branches introduced by ``or``
        operations: Operation chain from the leaf to this node
        children: Provenance of the AST children
        filters: Right hand sides joined into or filtering this branch
        returns: Value type of the sub-expression
        value: Statically known numeric value, if any
        value_text: Text describing how ``value`` was computed
        always_returns: True when the sub-expression returns a result for any input
        is_conditional: True when results are filtered by a comparison
        is_return_bool: True for comparisons using the ``bool`` modifier
        is_absent: True for ``absent()``/``absent_over_time()`` results
        is_fallback: True for ``vector(...)`` results
        is_scalar_marker: True for ``scalar()``, ``time()``, ``pi()`` and number literals
        selector: The vector selector at the leaf of the operation chain
        join_mismatches: Labels that make ``ignoring()`` joins lopsided
        label_issues: Labels used by the query that can have no effect
        combinator: How this node is combined into its parent
    """

    kind: NodeKind
    position: PositionRange
    expr: "Expr | None" = field(default=None, compare=False, repr=False)
    labels: Mapping[str, LabelFact] = field(default_factory=lambda: MappingProxyType({}))
    fixed: bool = False
    fixed_reason: Exclusion | None = None
    unknown: bool = False
    dead: DeadInfo | None = None
    alternatives: tuple["ProvenanceNode", ...] = ()
    operations: tuple[Operation, ...] = ()
    children: tuple["ProvenanceNode", ...] = ()
    filters: tuple[Filter, ...] = ()
    returns: ValueType = ValueType.VECTOR
    value: float | None = None
    value_text: str | None = None
    value_position: PositionRange | None = None
    always_returns: bool = False
    is_conditional: bool = False
    is_return_bool: bool = False
    is_absent: bool = False
    is_fallback: bool = False
    is_scalar_marker: bool = False
    selector: "VectorSelector | None" = field(default=None, compare=False, repr=False)
    join_mismatches: tuple[JoinMismatch, ...] = ()
    label_issues: tuple[LabelIssue, ...] = ()
    combinator: Combinator = Combinator.NONE

    # ── derived views ────────────────────────────────────────────────────

    @property
    def guaranteed(self) -> LabelSet:
        """Labels present on every series of the primary branch."""
        if self.unknown:
            return LabelSet.unknown()
        return LabelSet.of(
            name for name, fact in self.labels.items() if fact.kind == LabelKind.GUARANTEED
        )

    @property
    def included(self) -> frozenset[str]:
        """Labels that may be present but are not guaranteed."""
        return frozenset(
            name for name, fact in self.labels.items() if fact.kind == LabelKind.POSSIBLE
        )

    @property
    def excluded(self) -> Mapping[str, Exclusion]:
        """Labels explicitly proven absent, with their reason."""
        return MappingProxyType({
            name: Exclusion(fact.reason, fact.fragment)
            for name, fact in self.labels.items()
            if fact.kind == LabelKind.EXCLUDED
        })

    @property
    def is_dead(self) -> bool:
        """True when no branch of this node can return anything."""
        return self.dead is not None and all(alt.dead is not None for alt in self.alternatives)

    @property
    def operation(self) -> str:
        """Label of the outermost operation."""
        return self.operations[-1].label if self.operations else ""

    # ── single branch queries, alternatives are not consulted ───────────

    def can_have(self, name: str) -> bool:
        fact = self.labels.get(name)
        if fact is not None:
            return fact.kind != LabelKind.EXCLUDED
        return not self.fixed

    def exclusion(self, name: str) -> Exclusion | None:
        fact = self.labels.get(name)
        if fact is not None:
            if fact.kind == LabelKind.EXCLUDED:
                return Exclusion(fact.reason, fact.fragment)
            return None
        return self.fixed_reason if self.fixed else None

    def guarantees(self, name: str) -> bool:
        fact = self.labels.get(name)
        return fact is not None and fact.kind == LabelKind.GUARANTEED

    def branches(self) -> tuple["ProvenanceNode", ...]:
        """This node's primary branch followed by every ``or`` alternative."""
        return (self, *self.alternatives)

    def __str__(self) -> str:
        return (
            f"{self.kind.value}@{self.position} guaranteed={self.guaranteed} "
            f"excluded={sorted(self.excluded)}"
            + (" fixed" if self.fixed else "")
            + (" dead" if self.dead else "")
        )
