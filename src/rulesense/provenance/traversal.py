"""
Queries over a built provenance tree.

Every function here answers for the node as a whole, which means for
its primary branch and for every ``or`` alternative. Single-branch
questions are answered by the ``ProvenanceNode`` methods instead.
"""

from __future__ import annotations

from typing import Callable, Iterator

from rulesense.provenance.models import Combinator, Exclusion, Operation, ProvenanceNode

Visitor = Callable[[ProvenanceNode, Combinator], None]


def can_have_label(node: ProvenanceNode, name: str) -> bool:
    """
    Check if any result series could carry ``name``.

    Returns False only when every live branch provably lacks the label.
    """
    live = [branch for branch in node.branches() if branch.dead is None] or list(node.branches())
    return any(branch.can_have(name) for branch in live)


def exclude_reason(node: ProvenanceNode, name: str) -> Exclusion | None:
    """Why ``name`` can't be present, or None when it can."""
    if can_have_label(node, name):
        return None
    for branch in node.branches():
        exclusion = branch.exclusion(name)
        if exclusion is not None:
            return exclusion
    return None


def always_has_label(node: ProvenanceNode, name: str) -> bool:
    """True only when the node and every alternative guarantee ``name``."""
    return all(
        branch.guarantees(name) for branch in node.branches() if branch.dead is None
    ) and not node.is_dead


def possibly_lacks_label(node: ProvenanceNode, name: str) -> bool:
    """True when at least one live branch doesn't guarantee ``name``."""
    return not always_has_label(node, name)


def branches_without_label(node: ProvenanceNode, name: str) -> list[ProvenanceNode]:
    """Live branches that don't guarantee ``name``."""
    return [
        branch for branch in node.branches()
        if branch.dead is None and not branch.guarantees(name)
    ]


def walk_alternatives(
    node: ProvenanceNode,
    visit: Visitor,
    context: Combinator = Combinator.NONE,
) -> None:
    """
    Visit every branch that contributes to, or filters, the result of ``node``.

    ``visit`` is called with each branch and the combinator it was reached
    through: NONE for producers, AND/UNLESS/JOIN for the other side of a
    binary operation. Everything below the right hand side of ``unless``
    is reported as UNLESS.
    """
    for branch in node.branches():
        visit(branch, context)
        for flt in branch.filters:
            inner = Combinator.UNLESS if context == Combinator.UNLESS else flt.combinator
            walk_alternatives(flt.node, visit, inner)


def iter_nodes(
    node: ProvenanceNode, parent: ProvenanceNode | None = None
) -> Iterator[tuple[ProvenanceNode, ProvenanceNode | None]]:
    """Yield ``(node, parent)`` pairs depth-first over the tree's children."""
    yield node, parent
    for child in node.children:
        yield from iter_nodes(child, node)


def fragment(node: ProvenanceNode, query: str) -> str:
    """Source text of ``node``, or an empty string if its span doesn't fit ``query``."""
    return node.position.fragment(query)


def is_dead(node: ProvenanceNode) -> tuple[bool, str]:
    """Whether ``node`` never returns anything, with the reason."""
    if not node.is_dead:
        return False, ""
    return True, node.dead.reason


def all_alternatives_dead(node: ProvenanceNode) -> bool:
    return all(branch.dead is not None for branch in node.branches())


def dead_branches(node: ProvenanceNode) -> Iterator[ProvenanceNode]:
    """
    Yield every branch anywhere in the tree that is dead for its own reason.

    Branches that are dead only because a child is dead are skipped, so
    each problem is reported where it originates. Duplicates reachable
    through several paths are yielded once.
    """
    seen: set[tuple[str, int, int]] = set()
    for current, _ in iter_nodes(node):
        found: list[ProvenanceNode] = []
        walk_alternatives(current, lambda branch, _context: found.append(branch))
        for branch in found:
            dead = branch.dead
            if dead is None or dead.inherited:
                continue
            key = (dead.reason, dead.fragment.start, dead.fragment.end)
            if key in seen:
                continue
            seen.add(key)
            yield branch


def operations(node: ProvenanceNode) -> tuple[Operation, ...]:
    return node.operations


def operations_match(a: tuple[Operation, ...], b: tuple[Operation, ...]) -> bool:
    """Compare two operation chains built from different queries."""
    return len(a) == len(b) and all(x.same_as(y) for x, y in zip(a, b))
