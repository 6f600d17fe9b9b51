"""
cartpy.pruning
==============

Weakest-link cost-complexity pruning.

For a subtree ``T_t`` rooted at internal node ``t`` the cost of keeping it
rather than collapsing ``t`` into a leaf is

    g(t) = (R(t) - R(T_t)) / (|leaves(T_t)| - 1)

where ``R`` is the loss-weighted training misclassification cost.  Collapsing
the nodes with the smallest ``g`` over and over yields a nested sequence of
trees, each optimal for ``R(T) + alpha * |leaves(T)|`` over an interval of
``alpha``.  As in rpart, ``alpha`` is reported relative to the root risk, so a
complexity parameter of ``0.01`` means "a split must lower the overall
misclassification cost by 1% of the root's to be kept".
"""

from __future__ import annotations

from typing import TYPE_CHECKING, NamedTuple

from loguru import logger

if TYPE_CHECKING:
    from cartpy.tree import Node, Tree


class PruneStep(NamedTuple):
    complexity_parameter: float
    tree: "Tree"


class CpRow(NamedTuple):
    complexity_parameter: float
    n_splits: int
    rel_error: float


def _weakest_links(root: "Node", collapsed: set[int]) -> dict[int, float]:
    """``g(t)`` for every internal node still present once ``collapsed`` are leaves."""
    links: dict[int, float] = {}

    def visit(node) -> tuple[float, int]:
        if node.is_leaf or node.node_id in collapsed:
            return node.risk, 1
        rl, nl = visit(node.children["left"])
        rr, nr = visit(node.children["right"])
        links[node.node_id] = (node.risk - rl - rr) / (nl + nr - 1)
        return rl + rr, nl + nr

    visit(root)
    return links


def prune_path(tree: "Tree") -> list[PruneStep]:
    """
    Compute the cost-complexity pruning path of ``tree``.

    Returns
    -------
    list[PruneStep]
        ``(complexity_parameter, tree)`` pairs with strictly increasing
        complexity parameter and strictly decreasing leaf count.  The first
        entry has complexity parameter ``0`` and is ``tree`` with every split
        that does not lower the training cost removed; the last one is the
        root alone.  Each tree is obtained from ``tree`` by collapsing nodes
        only, and ``tree`` itself is left untouched.
    """
    root_risk = tree.root.risk
    scale = root_risk if root_risk > 0 else 1.0
    tol = 1e-9 * max(scale, 1.0)

    collapsed: set[int] = set()
    alpha = 0.0
    steps: list[PruneStep] = []
    while True:
        links = _weakest_links(tree.root, collapsed)
        while links and min(links.values()) <= alpha + tol:
            collapsed |= {i for i, g in links.items() if g <= alpha + tol}
            links = _weakest_links(tree.root, collapsed)
        cp = alpha / scale
        steps.append(PruneStep(cp, tree.collapse(collapsed, cp)))
        if not links:
            break
        alpha = min(links.values())

    logger.debug("Pruning path of {} steps, leaves {} -> 1", len(steps), steps[0].tree.n_leaves)
    return steps


def prune_to(tree: "Tree", complexity_parameter: float, path: list[PruneStep] | None = None) -> "Tree":
    """
    The tree of the pruning path with the largest complexity parameter not
    exceeding ``complexity_parameter``.

    ``path`` may be given to reuse a path computed by :func:`prune_path`.
    """
    if path is None:
        path = prune_path(tree)
    chosen = path[0].tree
    for step in path:
        if step.complexity_parameter <= complexity_parameter + 1e-12:
            chosen = step.tree
        else:
            break
    return chosen


def cp_table(tree: "Tree", path: list[PruneStep] | None = None) -> list[CpRow]:
    """rpart's ``printcp`` table: cp, number of splits and risk relative to the root."""
    if path is None:
        path = prune_path(tree)
    root_risk = tree.root.risk
    rows = []
    for step in path:
        rel = step.tree.risk / root_risk if root_risk > 0 else 0.0
        rows.append(CpRow(step.complexity_parameter, step.tree.n_leaves - 1, rel))
    return rows
