"""
cartpy.thresholds
=================

Turning predicted probabilities into binary decisions.

:func:`sweep_thresholds` evaluates the rule "predict positive iff
``probability >= threshold``" at every distinct predicted probability (plus
``+inf``, where nothing is predicted positive), from the highest threshold to
the lowest.  The resulting sequence is the ROC curve, from which
:func:`area_under_curve` and :func:`best_threshold_by` are computed.
Undefined values (F1 with no predicted positives, rates when a class is
absent) are reported as ``NaN``, never as zero.
"""

from __future__ import annotations

from dataclasses import dataclass, fields

import numpy as np

from cartpy.exceptions import EmptyDatasetError, InvalidConfigurationError, UndefinedMetricError
from cartpy.metrics import ConfusionCounts, accuracy, f1, precision, safe_score, sensitivity, specificity, youden


@dataclass(frozen=True)
class ThresholdPoint:
    threshold: float
    counts: ConfusionCounts
    true_positive_rate: float
    false_positive_rate: float
    sensitivity: float
    specificity: float
    precision: float
    accuracy: float
    youden: float
    f1: float

    @classmethod
    def from_counts(cls, threshold: float, counts: ConfusionCounts) -> "ThresholdPoint":
        sens = safe_score(sensitivity, counts)
        spec = safe_score(specificity, counts)
        return cls(
            threshold=float(threshold),
            counts=counts,
            true_positive_rate=sens,
            false_positive_rate=1.0 - spec,
            sensitivity=sens,
            specificity=spec,
            precision=safe_score(precision, counts),
            accuracy=safe_score(accuracy, counts),
            youden=safe_score(youden, counts),
            f1=safe_score(f1, counts),
        )


POINT_METRICS = tuple(f.name for f in fields(ThresholdPoint) if f.name not in ("threshold", "counts"))


def _validate(predicted_probabilities, actual_labels) -> tuple[np.ndarray, np.ndarray]:
    p = np.asarray(predicted_probabilities, dtype=float).ravel()
    y = np.asarray(actual_labels).ravel()
    if p.shape != y.shape:
        raise ValueError(f"got {p.size} probabilities for {y.size} labels")
    if p.size == 0:
        raise EmptyDatasetError("sweep_thresholds")
    if np.isnan(p).any():
        raise ValueError("predicted probabilities must not contain NaN")
    if not np.all(np.isin(y, (0, 1))):
        raise ValueError("labels must be binary (0/1)")
    return p, y.astype(bool)


def sweep_thresholds(predicted_probabilities, actual_labels) -> list[ThresholdPoint]:
    """
    Evaluate every decision threshold.

    Parameters
    ----------
    predicted_probabilities : array-like of shape (n,)
        Predicted probability of the positive class.
    actual_labels : array-like of shape (n,)
        True labels in ``{0, 1}``.

    Returns
    -------
    list[ThresholdPoint]
        One point for ``+inf`` followed by one per distinct probability,
        thresholds strictly descending.
    """
    p, y = _validate(predicted_probabilities, actual_labels)
    n_pos = int(y.sum())
    n_neg = int(y.size - n_pos)

    order = np.argsort(-p, kind="mergesort")
    ps = p[order]
    ys = y[order]
    tps = np.cumsum(ys)
    fps = np.cumsum(~ys)
    # last position of each run of equal probabilities
    ends = np.append(np.nonzero(ps[:-1] != ps[1:])[0], ps.size - 1)

    curve = [ThresholdPoint.from_counts(np.inf, ConfusionCounts(0, 0, n_neg, n_pos))]
    for i in ends:
        tp, fp = int(tps[i]), int(fps[i])
        counts = ConfusionCounts(tp=tp, fp=fp, tn=n_neg - fp, fn=n_pos - tp)
        curve.append(ThresholdPoint.from_counts(ps[i], counts))
    return curve


def roc_curve(predicted_probabilities, actual_labels) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """``(fpr, tpr, thresholds)`` arrays of :func:`sweep_thresholds`."""
    curve = sweep_thresholds(predicted_probabilities, actual_labels)
    return (np.array([pt.false_positive_rate for pt in curve]),
            np.array([pt.true_positive_rate for pt in curve]),
            np.array([pt.threshold for pt in curve]))


def area_under_curve(curve: list[ThresholdPoint]) -> float:
    """
    Trapezoidal area under the ROC curve.

    ``0.5`` for a classifier that cannot separate the classes, ``1.0`` for a
    perfect ranking, ``NaN`` when one class is absent.
    """
    fpr = np.array([pt.false_positive_rate for pt in curve], dtype=float)
    tpr = np.array([pt.true_positive_rate for pt in curve], dtype=float)
    if fpr.size < 2 or np.isnan(fpr).any() or np.isnan(tpr).any():
        return float("nan")
    return float(np.sum(np.diff(fpr) * (tpr[1:] + tpr[:-1]) / 2.0))


def best_threshold_by(curve: list[ThresholdPoint], metric: str = "youden") -> ThresholdPoint:
    """
    The point of ``curve`` maximizing ``metric``.

    Ties go to the first occurrence, i.e. the highest threshold.  ``NaN``
    values are skipped.

    Raises
    ------
    InvalidConfigurationError
        If ``metric`` is not an attribute of :class:`ThresholdPoint`.
    UndefinedMetricError
        If ``metric`` is ``NaN`` at every threshold.
    """
    if metric not in POINT_METRICS:
        raise InvalidConfigurationError("metric", metric, f"must be one of {POINT_METRICS}")
    best, best_val = None, -np.inf
    for pt in curve:
        val = getattr(pt, metric)
        if np.isnan(val):
            continue
        if val > best_val:
            best, best_val = pt, val
    if best is None:
        raise UndefinedMetricError(metric, "undefined at every threshold")
    return best
