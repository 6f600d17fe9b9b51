"""
cartpy.metrics
==============

Confusion counts and the named metric strategies used by cross-validation and
threshold sweeps.

A metric is any callable ``(ConfusionCounts) -> float``.  When a metric has no
value for the given counts it raises :class:`~cartpy.exceptions.UndefinedMetricError`;
:func:`safe_score` turns that into ``NaN`` so aggregations can skip it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable

import numpy as np
from loguru import logger

from cartpy.exceptions import InvalidConfigurationError, UndefinedMetricError


@dataclass(frozen=True)
class ConfusionCounts:
    """2x2 confusion matrix of a binary classifier, class ``1`` being positive."""

    tp: int
    fp: int
    tn: int
    fn: int

    @classmethod
    def from_predictions(cls, predicted, actual) -> "ConfusionCounts":
        predicted = np.asarray(predicted).astype(bool)
        actual = np.asarray(actual).astype(bool)
        if predicted.shape != actual.shape:
            raise ValueError("predicted and actual must have the same shape")
        return cls(
            tp=int(np.sum(predicted & actual)),
            fp=int(np.sum(predicted & ~actual)),
            tn=int(np.sum(~predicted & ~actual)),
            fn=int(np.sum(~predicted & actual)),
        )

    @property
    def n(self) -> int:
        return self.tp + self.fp + self.tn + self.fn

    @property
    def positives(self) -> int:
        return self.tp + self.fn

    @property
    def negatives(self) -> int:
        return self.tn + self.fp

    @property
    def predicted_positives(self) -> int:
        return self.tp + self.fp

    def as_matrix(self) -> np.ndarray:
        """``[[tn, fp], [fn, tp]]`` (rows actual, columns predicted)."""
        return np.array([[self.tn, self.fp], [self.fn, self.tp]])


MetricFn = Callable[[ConfusionCounts], float]


def accuracy(c: ConfusionCounts) -> float:
    if c.n == 0:
        raise UndefinedMetricError("accuracy", "no records")
    return (c.tp + c.tn) / c.n


def sensitivity(c: ConfusionCounts) -> float:
    if c.positives == 0:
        raise UndefinedMetricError("sensitivity", "no positive records")
    return c.tp / c.positives


def specificity(c: ConfusionCounts) -> float:
    if c.negatives == 0:
        raise UndefinedMetricError("specificity", "no negative records")
    return c.tn / c.negatives


def precision(c: ConfusionCounts) -> float:
    if c.predicted_positives == 0:
        raise UndefinedMetricError("precision", "no predicted positives")
    return c.tp / c.predicted_positives


def sens_spec_sum(c: ConfusionCounts) -> float:
    return sensitivity(c) + specificity(c)


def youden(c: ConfusionCounts) -> float:
    """Youden's J = sensitivity + specificity - 1."""
    return sensitivity(c) + specificity(c) - 1.0


def f1(c: ConfusionCounts) -> float:
    """Harmonic mean of precision and recall, ``2 tp / (2 tp + fp + fn)``."""
    if c.predicted_positives == 0:
        raise UndefinedMetricError("f1", "no predicted positives")
    return 2.0 * c.tp / (2.0 * c.tp + c.fp + c.fn)


def kappa(c: ConfusionCounts) -> float:
    """Cohen's kappa: agreement beyond what the marginals give by chance."""
    n = c.n
    if n == 0:
        raise UndefinedMetricError("kappa", "no records")
    po = (c.tp + c.tn) / n
    pe = (c.predicted_positives * c.positives + (c.fn + c.tn) * c.negatives) / (n * n)
    if math.isclose(pe, 1.0):
        raise UndefinedMetricError("kappa", "chance agreement is 1")
    return (po - pe) / (1.0 - pe)


METRICS: dict[str, MetricFn] = {
    "accuracy": accuracy,
    "kappa": kappa,
    "sensitivity": sensitivity,
    "specificity": specificity,
    "precision": precision,
    "sens_spec_sum": sens_spec_sum,
    "youden": youden,
    "f1": f1,
}


def get_metric(metric: str | MetricFn) -> MetricFn:
    """Resolve a registered metric name, or pass a callable through."""
    if callable(metric):
        return metric
    try:
        return METRICS[metric]
    except (KeyError, TypeError):
        raise InvalidConfigurationError("metric", metric, f"must be callable or one of {sorted(METRICS)}") from None


def metric_name(metric: str | MetricFn) -> str:
    if isinstance(metric, str):
        return metric
    return getattr(metric, "__name__", repr(metric))


def safe_score(metric: MetricFn, counts: ConfusionCounts) -> float:
    """Evaluate ``metric``, returning ``NaN`` when it is undefined."""
    try:
        return float(metric(counts))
    except UndefinedMetricError as exc:
        logger.trace("{} -> NaN", exc)
        return float("nan")
