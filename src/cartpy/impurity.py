"""
cartpy.impurity
===============

Impurity measures and the split evaluator.

Impurities are computed from per-class counts.  ``class_weights`` scale the
count of each class before proportions are taken; :func:`class_weights_from_loss`
derives them from a loss matrix the way rpart alters its priors (the weight of
a class is the total cost of misclassifying it), so costly classes pull the
splits towards isolating them.
"""

from __future__ import annotations

import numpy as np

from cartpy.exceptions import EmptyDatasetError, InvalidConfigurationError
from cartpy.features import Dataset, SplitCandidate, _label_counts

# A later candidate must beat the incumbent by more than this to replace it,
# so floating-point noise never breaks the deterministic tie-break.
TIE_TOLERANCE = 1e-12


def gini(counts, class_weights=None) -> float:
    w = np.asarray(counts, dtype=float)
    if class_weights is not None:
        w = w * class_weights
    tot = w.sum()
    if tot <= 0:
        return 0.0
    p = w / tot
    return float(1.0 - np.sum(p * p))


def entropy(counts, class_weights=None) -> float:
    w = np.asarray(counts, dtype=float)
    if class_weights is not None:
        w = w * class_weights
    tot = w.sum()
    if tot <= 0:
        return 0.0
    p = w / tot
    p = p[p > 0]
    return float(-np.sum(p * np.log2(p)))


IMPURITY_FUNCTIONS = {"gini": gini, "entropy": entropy}


def impurity(counts, criterion: str = "gini", class_weights=None) -> float:
    try:
        fn = IMPURITY_FUNCTIONS[criterion]
    except KeyError:
        raise InvalidConfigurationError("criterion", criterion,
                                        f"must be one of {tuple(IMPURITY_FUNCTIONS)}") from None
    return fn(counts, class_weights)


def class_weights_from_loss(loss: np.ndarray) -> np.ndarray:
    """Row sums of the loss matrix: the cost of misclassifying each true class."""
    return np.asarray(loss, dtype=float).sum(axis=1)


def impurity_reduction(parent, left, right, criterion: str = "gini", class_weights=None) -> float:
    """
    Parent impurity minus the size-weighted impurities of the two children.

    Sizes are weighted by ``class_weights`` like the impurities themselves.
    """
    cw = np.ones(2) if class_weights is None else np.asarray(class_weights, dtype=float)
    parent = np.asarray(parent, dtype=float)
    left = np.asarray(left, dtype=float)
    right = np.asarray(right, dtype=float)
    w = float((parent * cw).sum())
    if w <= 0:
        return 0.0
    wl = float((left * cw).sum())
    wr = float((right * cw).sum())
    return (impurity(parent, criterion, cw)
            - wl / w * impurity(left, criterion, cw)
            - wr / w * impurity(right, criterion, cw))


def candidate_reduction(candidate: SplitCandidate, criterion: str = "gini", class_weights=None) -> float:
    """Reduction of a candidate, scaled by the fraction of records with a known value."""
    left, right = candidate.left_counts, candidate.right_counts
    known = left + right
    gain = impurity_reduction(known, left, right, criterion, class_weights)
    n_known = known.sum()
    frac_known = n_known / (n_known + candidate.n_missing) if n_known > 0 else 0.0
    return float(gain * frac_known)


def evaluate_split(dataset: Dataset, feature, candidate, criterion: str = "gini",
                   class_weights=None) -> float:
    """
    Impurity reduction of splitting ``dataset`` on ``feature`` at ``candidate``.

    Parameters
    ----------
    dataset : Dataset
        Non-empty set of labeled records.
    feature : int or str
        Feature index or name.
    candidate : float or iterable
        Threshold for a numeric feature (records with ``value >= candidate``
        go left) or the set of categories sent left for a categorical one.
    criterion : {"gini", "entropy"}, default="gini"
    class_weights : array-like of shape (2,) or None
        Per-class multipliers, see :func:`class_weights_from_loss`.

    Returns
    -------
    float
        The reduction, ``0.0`` when the candidate leaves one side empty.

    Raises
    ------
    EmptyDatasetError
        If ``dataset`` has no records.
    """
    if len(dataset) == 0:
        raise EmptyDatasetError("evaluate_split")
    j = dataset.schema.index_of(feature)
    feat = dataset.schema[j]
    column = dataset.columns[j]
    rule = feat.rule_for(j, candidate, column)

    missing = feat.missing_mask(column)
    known_labels = dataset.labels[~missing]
    goes_left = rule.matches(column)[~missing]
    left = _label_counts(known_labels[goes_left])
    right = _label_counts(known_labels[~goes_left])
    if left.sum() == 0 or right.sum() == 0:
        return 0.0
    return candidate_reduction(SplitCandidate(rule, left, right, int(missing.sum())),
                               criterion, class_weights)


def find_best_split(dataset: Dataset, criterion: str = "gini", class_weights=None,
                    min_bucket: int = 1) -> tuple[SplitCandidate | None, float]:
    """
    Scan every feature and return the candidate with the largest reduction.

    Ties are broken by the lowest feature index, then by the first candidate in
    the feature's evaluation order (lowest threshold for numeric features).
    Returns ``(None, 0.0)`` when no feature admits a split.
    """
    best, best_gain = None, -np.inf
    for j, feat in enumerate(dataset.schema):
        for cand in feat.candidate_splits(dataset.columns[j], dataset.labels, index=j,
                                          class_weights=class_weights, min_bucket=min_bucket):
            gain = candidate_reduction(cand, criterion, class_weights)
            if gain > best_gain + TIE_TOLERANCE:
                best, best_gain = cand, gain
    if best is None:
        return None, 0.0
    return best, float(best_gain)
