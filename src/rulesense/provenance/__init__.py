"""
Label provenance and dead code analysis of PromQL queries.

Usage:
    from rulesense.promql import parse_expr
    from rulesense.provenance import build, can_have_label

    query = "sum(foo) without(job)"
    tree = build(parse_expr(query), query)
    can_have_label(tree, "job")  # False
"""

from rulesense.provenance.builder import ProvenanceBuilder, build
from rulesense.provenance.models import (
    Combinator,
    DeadInfo,
    Exclusion,
    Filter,
    JoinMismatch,
    LabelFact,
    LabelIssue,
    LabelIssueKind,
    LabelKind,
    LabelSet,
    NodeKind,
    Operation,
    ProvenanceNode,
)
from rulesense.provenance.traversal import (
    all_alternatives_dead,
    always_has_label,
    branches_without_label,
    can_have_label,
    dead_branches,
    exclude_reason,
    fragment,
    is_dead,
    iter_nodes,
    operations,
    operations_match,
    possibly_lacks_label,
    walk_alternatives,
)

__all__ = [
    "Combinator",
    "DeadInfo",
    "Exclusion",
    "Filter",
    "JoinMismatch",
    "LabelFact",
    "LabelIssue",
    "LabelIssueKind",
    "LabelKind",
    "LabelSet",
    "NodeKind",
    "Operation",
    "ProvenanceBuilder",
    "ProvenanceNode",
    "all_alternatives_dead",
    "always_has_label",
    "branches_without_label",
    "build",
    "can_have_label",
    "dead_branches",
    "exclude_reason",
    "fragment",
    "is_dead",
    "iter_nodes",
    "operations",
    "operations_match",
    "possibly_lacks_label",
    "walk_alternatives",
]
