"""
cartpy.config
=============

Option holders for tree growth and cross-validation, plus loss matrices.

Both configs are frozen dataclasses validated on construction; use
:func:`dataclasses.replace` to derive a variant.  Defaults follow rpart
(``minsplit=20``, ``minbucket=round(minsplit/3)``, ``maxdepth=30``,
``cp=0.01``) and caret (10 folds, one repeat).
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from cartpy.exceptions import InvalidConfigurationError

CRITERIA = ("gini", "entropy")
SELECTION_RULES = ("best", "one_standard_error")
MAX_DEPTH_LIMIT = 30


def loss_matrix(false_negative_cost: float = 1.0, false_positive_cost: float = 1.0) -> np.ndarray:
    """
    Build a 2x2 loss matrix.

    Rows are the true class and columns the predicted class, class ``1`` being
    the positive class: ``L[1, 0]`` is the cost of a false negative and
    ``L[0, 1]`` the cost of a false positive.  The default is the unit-cost
    matrix ``[[0, 1], [1, 0]]``.
    """
    return validate_loss_matrix([[0.0, false_positive_cost], [false_negative_cost, 0.0]])


def validate_loss_matrix(matrix) -> np.ndarray:
    """Return ``matrix`` as a float array after checking shape and signs."""
    if matrix is None:
        return loss_matrix()
    m = np.asarray(matrix, dtype=float)
    if m.shape != (2, 2):
        raise InvalidConfigurationError("loss_matrix", matrix, "must be a 2x2 matrix")
    if not np.all(np.isfinite(m)):
        raise InvalidConfigurationError("loss_matrix", matrix, "entries must be finite")
    if np.any(m < 0):
        raise InvalidConfigurationError("loss_matrix", matrix, "entries must be non-negative")
    if m[0, 1] <= 0 and m[1, 0] <= 0:
        raise InvalidConfigurationError(
            "loss_matrix", matrix,
            "at least one misclassification cost must be positive; "
            "the unit-cost (\"identity\") default is [[0, 1], [1, 0]]",
        )
    return m


@dataclass(frozen=True)
class TreeConfig:
    """
    Stopping rules for :func:`cartpy.tree.build_tree`.

    Parameters
    ----------
    min_split : int, default=20
        Minimum number of records a node needs before a split is attempted.
    min_bucket : int or None, default=None
        Minimum number of records in each child.  ``None`` means
        ``round(min_split / 3)``.
    max_depth : int, default=30
        Maximum depth of any node, the root being depth 0.
    complexity_parameter : float, default=0.01
        A split is only made when it reduces the tree's total impurity by at
        least this fraction of the root impurity.  ``0`` grows the full tree.
    criterion : {"gini", "entropy"}, default="gini"
        Impurity measure.
    """

    min_split: int = 20
    min_bucket: int | None = None
    max_depth: int = 30
    complexity_parameter: float = 0.01
    criterion: str = "gini"

    def __post_init__(self):
        if int(self.min_split) < 1:
            raise InvalidConfigurationError("min_split", self.min_split, "must be at least 1")
        if self.min_bucket is None:
            object.__setattr__(self, "min_bucket", max(1, int(round(self.min_split / 3))))
        if int(self.min_bucket) < 1:
            raise InvalidConfigurationError("min_bucket", self.min_bucket, "must be at least 1")
        if self.min_bucket > self.min_split:
            raise InvalidConfigurationError(
                "min_bucket", self.min_bucket, f"must not exceed min_split={self.min_split}"
            )
        # node ids double per level and are stored as int64
        if not 0 <= int(self.max_depth) <= MAX_DEPTH_LIMIT:
            raise InvalidConfigurationError("max_depth", self.max_depth,
                                            f"must be between 0 and {MAX_DEPTH_LIMIT}")
        if not np.isfinite(self.complexity_parameter) or self.complexity_parameter < 0:
            raise InvalidConfigurationError(
                "complexity_parameter", self.complexity_parameter, "must be a non-negative number"
            )
        if self.criterion not in CRITERIA:
            raise InvalidConfigurationError("criterion", self.criterion, f"must be one of {CRITERIA}")


@dataclass(frozen=True)
class CrossValidationConfig:
    """
    Options for :func:`cartpy.cross_validation.cross_validate`.

    Parameters
    ----------
    k : int, default=10
        Number of folds.
    repeats : int, default=1
        Number of independent fold partitions.
    seed : int, default=0
        Root seed; every repeat derives its own generator from it.
    selection_rule : {"best", "one_standard_error"} or callable, default="best"
        A callable receives the :class:`~cartpy.cross_validation.PerformanceTable`
        and returns the chosen complexity parameter.
    metric : str or callable, default="accuracy"
        A name from :data:`cartpy.metrics.METRICS` or a callable taking
        :class:`cartpy.metrics.ConfusionCounts`.
    tune_length : int, default=10
        Number of candidate complexity parameters derived from the full-data
        pruning path when none are given.
    n_jobs : int, default=1
        joblib workers for the ``(repeat, fold)`` grid.
    max_grid_size : int or None, default=None
        Upper bound on ``candidates * k * repeats``; ``None`` disables it.
    """

    k: int = 10
    repeats: int = 1
    seed: int = 0
    selection_rule: object = "best"
    metric: object = "accuracy"
    tune_length: int = 10
    n_jobs: int = 1
    max_grid_size: int | None = field(default=None)

    def __post_init__(self):
        if int(self.k) < 2:
            raise InvalidConfigurationError("k", self.k, "must be at least 2")
        if int(self.repeats) < 1:
            raise InvalidConfigurationError("repeats", self.repeats, "must be at least 1")
        if int(self.seed) < 0:
            raise InvalidConfigurationError("seed", self.seed, "must be non-negative")
        if not callable(self.selection_rule) and self.selection_rule not in SELECTION_RULES:
            raise InvalidConfigurationError(
                "selection_rule", self.selection_rule, f"must be one of {SELECTION_RULES}"
            )
        if int(self.tune_length) < 1:
            raise InvalidConfigurationError("tune_length", self.tune_length, "must be at least 1")
        if self.max_grid_size is not None and int(self.max_grid_size) < 1:
            raise InvalidConfigurationError("max_grid_size", self.max_grid_size, "must be positive")
