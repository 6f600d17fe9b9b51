# -*- coding: utf-8 -*-
"""
cartpy.tree
===========

This module implements CART classification trees for binary targets in the
style of rpart.  Splits are binary; numeric features split at midpoints
between consecutive distinct values, categorical features split into two
groups of categories.  Growth is controlled by ``min_split``, ``min_bucket``,
``max_depth`` and a complexity-parameter stop, and an optional 2x2 loss matrix
turns leaf predictions into minimum expected-loss decisions.

The module holds three layers:

- :class:`Node` and :class:`Tree`, the immutable fitted structure, which route
  records to leaves and expose per-node statistics for inspection;
- :func:`build_tree`, the greedy recursive builder;
- :class:`CARTClassifier`, a scikit-learn estimator that builds a tree and
  prunes it to its ``cp`` like ``rpart(cp=...)`` does.

Trees are never modified after construction.  Pruning (see
:mod:`cartpy.pruning`) produces new trees through :meth:`Tree.collapse`.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Iterator

import numpy as np
from loguru import logger
from sklearn.base import BaseEstimator, ClassifierMixin

from cartpy.config import TreeConfig, validate_loss_matrix
from cartpy.exceptions import EmptyDatasetError
from cartpy.features import Dataset, Schema, SplitRule
from cartpy.impurity import TIE_TOLERANCE, class_weights_from_loss, find_best_split, impurity
from cartpy.pruning import prune_path, prune_to


# -----------------------------------------------------------------------------
# Node
# -----------------------------------------------------------------------------
class Node:
    """Single node of a :class:`Tree`.

    Parameters
    ----------
    node_id : int
        rpart numbering: the root is 1 and the children of node ``i`` are
        ``2i`` (left) and ``2i + 1`` (right).
    depth : int
        Distance from the root.
    counts : ndarray of shape (2,)
        Number of training records of class 0 and class 1 routed here.
    loss : ndarray of shape (2, 2)
        Loss matrix, rows true class, columns predicted class.
    parent : Node or None
        Parent node, ``None`` for the root.

    Attributes
    ----------
    predicted_class : int
        Class minimizing the expected loss ``sum_i counts[i] * loss[i, j]``;
        ties go to class 0.  With unit costs this is the majority class.
    risk : float
        Expected loss of that prediction over the node's records.
    probabilities : ndarray of shape (2,)
        Class proportions of the node's training records.
    rule : SplitRule or None
        Split of an internal node.
    improvement : float
        Record-weighted impurity decrease of the split, ``0`` for leaves.
    children : dict
        ``{"left": Node, "right": Node}`` for internal nodes, empty for leaves.
    """

    def __init__(self, *, node_id: int, depth: int, counts, loss, parent: "Node | None" = None):
        self.node_id = int(node_id)
        self.depth = int(depth)
        self.parent = parent
        self.counts = np.asarray(counts, dtype=float)
        self.loss = loss
        self.n_samples = int(round(self.counts.sum()))
        costs = self.counts @ loss
        self.predicted_class: int = int(np.argmin(costs))
        self.risk: float = float(costs[self.predicted_class])
        tot = self.counts.sum()
        self.probabilities = self.counts / tot if tot > 0 else np.full(2, 0.5)
        self.rule: SplitRule | None = None
        self.improvement: float = 0.0
        self.children: dict = {}

    @property
    def is_leaf(self) -> bool:
        return not self.children

    @property
    def left(self) -> "Node | None":
        return self.children.get("left")

    @property
    def right(self) -> "Node | None":
        return self.children.get("right")

    def __repr__(self) -> str:
        kind = "Leaf" if self.is_leaf else f"Split({self.rule.describe()})"
        return (f"Node(id={self.node_id}, {kind}, n={self.n_samples}, "
                f"counts={self.counts.tolist()}, predicted={self.predicted_class})")


def _iter_nodes(node: Node) -> Iterator[Node]:
    stack = [node]
    while stack:
        nd = stack.pop()
        yield nd
        if not nd.is_leaf:
            stack.append(nd.children["right"])
            stack.append(nd.children["left"])


def _subtree_stats(node: Node) -> tuple[float, int]:
    """Sum of leaf risks and leaf count of the subtree rooted at ``node``."""
    risk, leaves = 0.0, 0
    for nd in _iter_nodes(node):
        if nd.is_leaf:
            risk += nd.risk
            leaves += 1
    return risk, leaves


# -----------------------------------------------------------------------------
# Tree
# -----------------------------------------------------------------------------
class Tree:
    """
    A fitted classification tree.

    Parameters
    ----------
    root : Node
        Root node.
    schema : Schema
        Features the tree was built on; records routed through the tree must
        match it.
    complexity_parameter : float
        The complexity parameter the tree was grown or pruned under.
    criterion : str
        Impurity measure used for growth.
    """

    def __init__(self, root: Node, schema: Schema, complexity_parameter: float = 0.0,
                 criterion: str = "gini"):
        self.root = root
        self.schema = schema
        self.complexity_parameter = float(complexity_parameter)
        self.criterion = criterion
        self._nodes = {nd.node_id: nd for nd in _iter_nodes(root)}

    # -- structure -----------------------------------------------------------
    @property
    def loss_matrix(self) -> np.ndarray:
        return self.root.loss

    def nodes(self) -> list[Node]:
        """All nodes in pre-order (node, left subtree, right subtree)."""
        return list(_iter_nodes(self.root))

    def node(self, node_id: int) -> Node:
        return self._nodes[int(node_id)]

    def leaves(self) -> list[Node]:
        return [nd for nd in _iter_nodes(self.root) if nd.is_leaf]

    @property
    def n_leaves(self) -> int:
        return len(self.leaves())

    @property
    def n_nodes(self) -> int:
        return len(self._nodes)

    @property
    def depth(self) -> int:
        return max(nd.depth for nd in self._nodes.values())

    @property
    def risk(self) -> float:
        """Total training loss of the leaves."""
        return _subtree_stats(self.root)[0]

    def collapse(self, node_ids, complexity_parameter: float) -> "Tree":
        """Return a new tree in which the given nodes are turned into leaves."""
        collapsed = set(int(i) for i in node_ids)

        def copy(src: Node, parent: Node | None) -> Node:
            dst = Node(node_id=src.node_id, depth=src.depth, counts=src.counts,
                       loss=src.loss, parent=parent)
            if src.is_leaf or src.node_id in collapsed:
                return dst
            dst.rule = src.rule
            dst.improvement = src.improvement
            dst.children = {"left": copy(src.children["left"], dst),
                            "right": copy(src.children["right"], dst)}
            return dst

        return Tree(copy(self.root, None), self.schema, complexity_parameter, self.criterion)

    # -- prediction ----------------------------------------------------------
    def apply(self, X) -> np.ndarray:
        """
        Route records to leaves.

        Parameters
        ----------
        X : Dataset, array-like of shape (n_records, n_features) or sequence of mappings
            Records to route.  Their features must match :attr:`schema`.

        Returns
        -------
        ndarray of shape (n_records,)
            Node id of the leaf each record lands in.

        Raises
        ------
        SchemaMismatchError
            If the records do not carry the schema's features.
        """
        columns = self.schema.encode(X)
        n = len(columns[0]) if columns else len(X)
        out = np.empty(n, dtype=np.int64)
        stack = [(self.root, np.arange(n))]
        while stack:
            node, idx = stack.pop()
            if node.is_leaf:
                out[idx] = node.node_id
                continue
            goes_left = node.rule.matches(columns[node.rule.feature_index][idx])
            stack.append((node.children["left"], idx[goes_left]))
            stack.append((node.children["right"], idx[~goes_left]))
        return out

    def leaf_partition(self, X) -> dict[int, np.ndarray]:
        """Mapping leaf id -> indices of the records routed to that leaf."""
        ids = self.apply(X)
        groups: dict[int, list[int]] = defaultdict(list)
        for i, leaf_id in enumerate(ids):
            groups[int(leaf_id)].append(i)
        return {k: np.asarray(v, dtype=np.int64) for k, v in groups.items()}

    def predict_proba(self, X) -> np.ndarray:
        """Class proportions of the leaf reached by each record, shape (n, 2)."""
        ids = self.apply(X)
        if ids.size == 0:
            return np.empty((0, 2), dtype=float)
        return np.array([self._nodes[i].probabilities for i in ids])

    def predict(self, X) -> np.ndarray:
        """Minimum expected-loss class of the leaf reached by each record."""
        ids = self.apply(X)
        return np.array([self._nodes[i].predicted_class for i in ids], dtype=np.intp)

    # -- inspection ----------------------------------------------------------
    def variable_importance(self) -> dict[str, float]:
        """Sum of split improvements per feature, largest first."""
        acc: dict[str, float] = defaultdict(float)
        for nd in _iter_nodes(self.root):
            if not nd.is_leaf:
                acc[nd.rule.feature_name] += nd.improvement
        return dict(sorted(acc.items(), key=lambda kv: kv[1], reverse=True))

    def export_rules(self, *, feature_names=None, class_names=None) -> list[str]:
        """One ``<antecedent> => <class>`` string per leaf, left to right."""
        rules: list[str] = []
        self._collect_rules(self.root, [], rules, feature_names, class_names)
        return rules

    def trace_rule(self, record, feature_names=None) -> str:
        """The antecedent followed by a single record (mapping or sequence)."""
        columns = self.schema.encode([record] if isinstance(record, dict) else [list(record)])
        parts = []
        node = self.root
        while not node.is_leaf:
            goes_left = bool(node.rule.matches(columns[node.rule.feature_index])[0])
            parts.append(node.rule.describe(negate=not goes_left, feature_names=feature_names))
            node = node.children["left" if goes_left else "right"]
        return " AND ".join(parts) if parts else "<root>"

    def to_text(self, feature_names=None, class_names=None) -> str:
        lines: list[str] = []
        self._format_node(self.root, "", feature_names, class_names, lines)
        return "\n".join(lines)

    def _collect_rules(self, node: Node, parts, rules, fn, cn):
        if node.is_leaf:
            body = " AND ".join(parts) if parts else "<root>"
            pred = cn[node.predicted_class] if cn is not None else str(node.predicted_class)
            rules.append(f"{body} => {pred} (p1={node.probabilities[1]:.3f}, n={node.n_samples})")
            return
        left = node.rule.describe(feature_names=fn)
        right = node.rule.describe(negate=True, feature_names=fn)
        self._collect_rules(node.children["left"], parts + [left], rules, fn, cn)
        self._collect_rules(node.children["right"], parts + [right], rules, fn, cn)

    def _format_node(self, node: Node, indent, fn, cn, lines):
        if node.is_leaf:
            pred = cn[node.predicted_class] if cn is not None else str(node.predicted_class)
            lines.append(f"{indent}{node.node_id}) Predict {pred} | n={node.n_samples} "
                         f"| counts={node.counts.astype(int).tolist()} | p1={node.probabilities[1]:.3f}")
            return
        lines.append(f"{indent}{node.node_id}) if {node.rule.describe(feature_names=fn)}:")
        self._format_node(node.children["left"], indent + "  ", fn, cn, lines)
        lines.append(f"{indent}else:")
        self._format_node(node.children["right"], indent + "  ", fn, cn, lines)

    def __repr__(self) -> str:
        return (f"Tree(n_leaves={self.n_leaves}, depth={self.depth}, "
                f"complexity_parameter={self.complexity_parameter:g})")


# -----------------------------------------------------------------------------
# Builder
# -----------------------------------------------------------------------------
class _TreeBuilder:
    def __init__(self, config: TreeConfig, loss: np.ndarray, n_root: int, root_impurity: float):
        self.config = config
        self.loss = loss
        self.class_weights = class_weights_from_loss(loss)
        self.n_root = n_root
        self.min_improvement = config.complexity_parameter * root_impurity

    def _build_tree(self, data: Dataset, node_id: int, depth: int, parent: Node | None) -> Node:
        """
        Recursively build a subtree from ``data``.

        A leaf is returned when the node is too small to split, is pure, has
        reached ``max_depth``, admits no split leaving ``min_bucket`` records
        on each side, or when its best split does not reduce the tree's total
        impurity by ``complexity_parameter`` times the root impurity.
        """
        cfg = self.config
        node = Node(node_id=node_id, depth=depth, counts=data.class_counts(),
                    loss=self.loss, parent=parent)
        if node.n_samples < cfg.min_split or np.count_nonzero(node.counts) < 2:
            return node
        if depth >= cfg.max_depth:
            return node

        cand, gain = find_best_split(data, cfg.criterion, self.class_weights, cfg.min_bucket)
        if cand is None or gain <= TIE_TOLERANCE:
            return node
        improvement = len(data) / self.n_root * gain
        if improvement < self.min_improvement:
            return node

        rule = cand.rule
        goes_left = rule.matches(data.columns[rule.feature_index])
        node.rule = rule
        node.improvement = len(data) * gain
        node.children["left"] = self._build_tree(data.subset(np.nonzero(goes_left)[0]),
                                                 2 * node_id, depth + 1, node)
        node.children["right"] = self._build_tree(data.subset(np.nonzero(~goes_left)[0]),
                                                  2 * node_id + 1, depth + 1, node)
        return node


def build_tree(dataset: Dataset, config: TreeConfig | None = None, loss_matrix=None) -> Tree:
    """
    Grow a classification tree on ``dataset``.

    Parameters
    ----------
    dataset : Dataset
        Training records.
    config : TreeConfig or None
        Stopping rules; defaults to ``TreeConfig()``.
    loss_matrix : array-like of shape (2, 2) or None
        Misclassification costs, rows true class, columns predicted class.
        ``None`` means unit costs.

    Returns
    -------
    Tree
        Tree labelled with ``config.complexity_parameter``.

    Raises
    ------
    EmptyDatasetError
        If ``dataset`` has no records.
    InvalidConfigurationError
        If the loss matrix is malformed.
    """
    if len(dataset) == 0:
        raise EmptyDatasetError("build_tree")
    config = config or TreeConfig()
    loss = validate_loss_matrix(loss_matrix)
    root_impurity = impurity(dataset.class_counts(), config.criterion, class_weights_from_loss(loss))
    builder = _TreeBuilder(config, loss, len(dataset), root_impurity)
    tree = Tree(builder._build_tree(dataset, 1, 0, None), dataset.schema,
                config.complexity_parameter, config.criterion)
    logger.debug("Built tree on {} records: {} leaves, depth {}", len(dataset), tree.n_leaves, tree.depth)
    return tree


# -----------------------------------------------------------------------------
# Estimator
# -----------------------------------------------------------------------------
class CARTClassifier(BaseEstimator, ClassifierMixin):
    """
    Binary CART classifier with a scikit-learn API.

    ``fit`` grows a tree with the given stopping rules and prunes it to ``cp``
    along its cost-complexity path, which is what ``rpart(cp=...)`` returns.

    Parameters
    ----------
    min_split : int, default=20
        Minimum number of records in a node for a split to be attempted.
    min_bucket : int or None, default=None
        Minimum number of records in any leaf; ``round(min_split / 3)`` when
        ``None``.
    max_depth : int, default=30
        Maximum depth of any node (root = 0).
    cp : float, default=0.01
        Complexity parameter used both as the growth stop and as the pruning
        level.
    criterion : {"gini", "entropy"}, default="gini"
    loss_matrix : array-like of shape (2, 2) or None, default=None
        Misclassification costs with rows as true class and columns as
        predicted class, in the order ``[negative, positive]``.
    feature_names : list[str] or None, default=None
        Names of the input features.  Taken from ``X.columns`` when ``X`` is a
        DataFrame.
    categorical_features : list[int|str] or None, default=None
        Indices or names of categorical features.  When ``None``, columns
        holding any non-numeric value are categorical.
    positive_label : object or None, default=None
        Label of the positive class.  Defaults to the larger of the two
        observed labels.

    Attributes
    ----------
    classes_ : ndarray
        ``[negative_label, positive_label]``.
    full_tree_ : Tree
        The tree before pruning.
    prune_path_ : list[PruneStep]
        Cost-complexity path of ``full_tree_``.
    tree_ : Tree
        ``full_tree_`` pruned to ``cp``.

    Notes
    -----
    ``predict_proba`` columns follow ``classes_``.  Only binary targets are
    supported.
    """

    def __init__(
        self,
        *,
        min_split: int = 20,
        min_bucket: int | None = None,
        max_depth: int = 30,
        cp: float = 0.01,
        criterion: str = "gini",
        loss_matrix=None,
        feature_names: list[str] | None = None,
        categorical_features: list[int | str] | None = None,
        positive_label=None,
    ):
        self.min_split = min_split
        self.min_bucket = min_bucket
        self.max_depth = max_depth
        self.cp = cp
        self.criterion = criterion
        self.loss_matrix = loss_matrix
        self.feature_names = feature_names
        self.categorical_features = categorical_features
        self.positive_label = positive_label

    def _config(self) -> TreeConfig:
        return TreeConfig(min_split=self.min_split, min_bucket=self.min_bucket,
                          max_depth=self.max_depth, complexity_parameter=self.cp,
                          criterion=self.criterion)

    def _encode_target(self, y) -> np.ndarray:
        y = np.asarray(y)
        observed = np.unique(y)
        if len(observed) > 2:
            raise ValueError(f"CARTClassifier supports binary targets only, got classes {observed.tolist()}")
        positive = self.positive_label if self.positive_label is not None else observed[-1]
        negatives = [c for c in observed if c != positive]
        if len(observed) == 2 and len(negatives) != 1:
            raise ValueError(f"positive_label={positive!r} is not one of {observed.tolist()}")
        if negatives and positive in observed:
            self.classes_ = np.array([negatives[0], positive], dtype=observed.dtype)
        elif negatives:
            self.classes_ = np.array([negatives[0]], dtype=observed.dtype)
        else:
            self.classes_ = np.array([positive], dtype=observed.dtype)
        return (y == positive).astype(np.intp) if len(self.classes_) == 2 else np.zeros(len(y), dtype=np.intp)

    def fit(self, X, y):
        names = self.feature_names
        if names is None and hasattr(X, "columns"):
            names = [str(c) for c in X.columns]
        X = np.asarray(X, dtype=object)
        if len(y) == 0:
            raise EmptyDatasetError("CARTClassifier.fit")
        y01 = self._encode_target(y)
        schema = Schema.infer(X, names, self.categorical_features)
        self.feature_names_ = schema.names
        self.n_features_in_ = len(schema)

        dataset = Dataset(X, y01, schema)
        self.full_tree_ = build_tree(dataset, self._config(), self.loss_matrix)
        self.prune_path_ = prune_path(self.full_tree_)
        self.tree_ = prune_to(self.full_tree_, self.cp, self.prune_path_)
        return self

    def _check_fitted(self):
        if getattr(self, "tree_", None) is None:
            raise ValueError("Estimator not fitted. Call fit(...) first.")

    def predict(self, X):
        """
        Predict class labels for the provided samples.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Input samples.  Missing values may be ``None`` or ``numpy.nan``.

        Returns
        -------
        ndarray of shape (n_samples,)
            Predicted labels taken from :attr:`classes_`.
        """
        self._check_fitted()
        pred = self.tree_.predict(np.asarray(X, dtype=object))
        return self.classes_[np.minimum(pred, len(self.classes_) - 1)]

    def predict_proba(self, X):
        """
        Class proportions of the leaf each sample reaches.

        Returns
        -------
        ndarray of shape (n_samples, n_classes)
            Columns ordered like :attr:`classes_`.
        """
        self._check_fitted()
        proba = self.tree_.predict_proba(np.asarray(X, dtype=object))
        return proba[:, : len(self.classes_)]

    def predict_rule(self, X, feature_names=None):
        """Antecedent of the rule followed by each sample."""
        self._check_fitted()
        Xp = np.asarray(X, dtype=object)
        if Xp.ndim == 1:
            Xp = Xp.reshape(1, -1)
        return [self.tree_.trace_rule(list(x), feature_names) for x in Xp]

    def export_rules(self, *, feature_names=None, class_names=None):
        """All leaf rules as ``<antecedent> => <class>`` strings."""
        self._check_fitted()
        if class_names is None:
            class_names = [str(c) for c in self.classes_]
        return self.tree_.export_rules(feature_names=feature_names, class_names=class_names)

    def print_tree(self, feature_names=None, class_names=None):
        """Pretty-print the pruned tree to ``stdout``."""
        self._check_fitted()
        if class_names is None:
            class_names = [str(c) for c in self.classes_]
        print(self.tree_.to_text(feature_names, class_names))

    @property
    def feature_importances_(self) -> np.ndarray:
        self._check_fitted()
        imp = self.tree_.variable_importance()
        out = np.array([imp.get(n, 0.0) for n in self.feature_names_], dtype=float)
        tot = out.sum()
        return out / tot if tot > 0 else out
