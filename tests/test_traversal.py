"""Tests for queries over a built provenance tree."""

from __future__ import annotations

from rulesense.promql import parse_expr
from rulesense.provenance import (
    Combinator,
    NodeKind,
    ProvenanceNode,
    all_alternatives_dead,
    build,
    dead_branches,
    fragment,
    iter_nodes,
    operations,
    operations_match,
    walk_alternatives,
)


def provenance(query: str) -> ProvenanceNode:
    return build(parse_expr(query), query)


def visited(query: str) -> list[tuple[NodeKind, Combinator]]:
    found: list[tuple[NodeKind, Combinator]] = []
    walk_alternatives(provenance(query), lambda branch, how: found.append((branch.kind, how)))
    return found


class TestWalkAlternatives:
    def test_filters_are_visited_with_their_combinator(self) -> None:
        assert visited("foo and bar unless baz") == [
            (NodeKind.SET_OP, Combinator.NONE),
            (NodeKind.SELECTOR, Combinator.AND),
            (NodeKind.SELECTOR, Combinator.UNLESS),
        ]

    def test_everything_below_unless_is_unless(self) -> None:
        assert visited("foo unless (bar and baz)") == [
            (NodeKind.SET_OP, Combinator.NONE),
            (NodeKind.SET_OP, Combinator.UNLESS),
            (NodeKind.SELECTOR, Combinator.UNLESS),
        ]

    def test_alternatives_are_producers(self) -> None:
        assert visited("foo or bar") == [
            (NodeKind.SET_OP, Combinator.NONE),
            (NodeKind.SELECTOR, Combinator.NONE),
        ]

    def test_join_side(self) -> None:
        assert visited("foo / bar") == [
            (NodeKind.BINARY_JOIN, Combinator.NONE),
            (NodeKind.SELECTOR, Combinator.JOIN),
        ]


class TestIterNodes:
    def test_parents(self) -> None:
        tree = provenance("sum(foo) by(job)")
        pairs = list(iter_nodes(tree))
        assert len(pairs) == 2
        assert pairs[0] == (tree, None)
        child, parent = pairs[1]
        assert parent is tree
        assert child.kind == NodeKind.SELECTOR

    def test_fragment(self) -> None:
        query = "sum(foo) by(job)"
        tree = provenance(query)
        assert fragment(tree, query) == query
        assert fragment(tree.children[0], query) == "foo"


class TestDeadBranches:
    def test_inherited_deaths_are_skipped(self) -> None:
        query = 'sum(foo{a="1", a="2"})'
        branches = list(dead_branches(provenance(query)))
        assert len(branches) == 1
        assert branches[0].kind == NodeKind.SELECTOR
        assert fragment(branches[0], query) == 'foo{a="1", a="2"}'

    def test_branch_reachable_twice_is_reported_once(self) -> None:
        branches = list(dead_branches(provenance('foo and bar{b="1", b="2"}')))
        assert len(branches) == 1

    def test_live_tree(self) -> None:
        assert list(dead_branches(provenance("sum(rate(foo[5m])) by (job)"))) == []

    def test_dead_alternative(self) -> None:
        tree = provenance("vector(1) or foo")
        assert [b.kind for b in dead_branches(tree)] == [NodeKind.SELECTOR]
        assert not all_alternatives_dead(tree)


class TestOperations:
    def test_operation_chain(self) -> None:
        tree = provenance("sum(rate(foo[5m])) by (job)")
        assert [op.label for op in operations(tree)] == ["foo", "rate", "sum"]
        assert operations(tree)[-1].text == "sum by (job) (rate(foo[5m]))"

    def test_chains_from_different_queries_match(self) -> None:
        nested = provenance("sum(rate(foo[5m]))").children[0]
        standalone = provenance("rate(foo[5m])")
        assert operations_match(operations(nested), operations(standalone))

    def test_different_ranges_dont_match(self) -> None:
        a = provenance("rate(foo[5m])")
        b = provenance("rate(foo[1m])")
        assert not operations_match(operations(a), operations(b))

    def test_whitespace_does_not_matter(self) -> None:
        a = provenance("sum(rate(foo[5m])) by (job)")
        b = provenance("sum by(job)(rate( foo[5m] ))")
        assert operations_match(operations(a), operations(b))
