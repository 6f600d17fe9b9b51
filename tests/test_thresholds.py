import math

import numpy as np
import pytest

from cartpy import (
    EmptyDatasetError,
    InvalidConfigurationError,
    UndefinedMetricError,
    area_under_curve,
    best_threshold_by,
    roc_curve,
    sweep_thresholds,
)


def test_thresholds_descend_from_infinity():
    curve = sweep_thresholds([0.2, 0.8, 0.8, 0.5], [0, 1, 0, 1])
    thresholds = [pt.threshold for pt in curve]
    assert math.isinf(thresholds[0])
    assert thresholds[1:] == [0.8, 0.5, 0.2]


def test_counts_at_each_threshold():
    curve = sweep_thresholds([0.2, 0.8, 0.8, 0.5], [0, 1, 0, 1])
    top = curve[0]
    assert (top.counts.tp, top.counts.fp) == (0, 0)
    assert math.isnan(top.f1)
    assert math.isnan(top.precision)
    # both 0.8 records become positive together
    assert (curve[1].counts.tp, curve[1].counts.fp) == (1, 1)
    bottom = curve[-1]
    assert bottom.sensitivity == 1.0
    assert bottom.specificity == 0.0
    assert bottom.false_positive_rate == 1.0


def test_youden_and_f1_values():
    curve = sweep_thresholds([0.9, 0.8, 0.3, 0.2], [1, 1, 0, 0])
    at_08 = curve[2]
    assert at_08.threshold == 0.8
    assert at_08.youden == pytest.approx(1.0)
    assert at_08.f1 == pytest.approx(1.0)
    assert curve[1].f1 == pytest.approx(2 / 3)


def test_auc_of_perfect_ranking_is_one():
    curve = sweep_thresholds([0.9, 0.8, 0.7, 0.3, 0.2], [1, 1, 1, 0, 0])
    assert area_under_curve(curve) == pytest.approx(1.0)


def test_auc_of_reversed_ranking_is_zero():
    curve = sweep_thresholds([0.1, 0.2, 0.8, 0.9], [1, 1, 0, 0])
    assert area_under_curve(curve) == pytest.approx(0.0)


def test_auc_of_constant_scores_is_half():
    curve = sweep_thresholds([0.4] * 6, [0, 1, 0, 1, 1, 0])
    assert len(curve) == 2
    assert area_under_curve(curve) == pytest.approx(0.5)


def test_auc_of_random_scores_is_near_half():
    rng = np.random.default_rng(0)
    y = np.array([0, 1] * 1000)
    p = rng.uniform(size=y.size)
    assert area_under_curve(sweep_thresholds(p, y)) == pytest.approx(0.5, abs=0.05)


def test_auc_is_nan_with_one_class():
    curve = sweep_thresholds([0.2, 0.6], [1, 1])
    assert math.isnan(area_under_curve(curve))


def test_best_threshold_by_metric():
    curve = sweep_thresholds([0.9, 0.8, 0.3, 0.2], [1, 1, 0, 0])
    assert best_threshold_by(curve).threshold == 0.8
    assert best_threshold_by(curve, 'f1').threshold == 0.8


def test_best_threshold_ties_go_to_highest_threshold():
    curve = sweep_thresholds([0.8, 0.6, 0.4, 0.2], [1, 0, 1, 0])
    assert curve[1].youden == pytest.approx(curve[3].youden)
    assert best_threshold_by(curve, 'youden').threshold == 0.8


def test_best_threshold_errors():
    curve = sweep_thresholds([0.9, 0.1], [1, 0])
    with pytest.raises(InvalidConfigurationError):
        best_threshold_by(curve, 'auc')
    with pytest.raises(UndefinedMetricError):
        best_threshold_by(curve[:1], 'f1')


def test_roc_curve_arrays():
    fpr, tpr, thr = roc_curve([0.9, 0.8, 0.3, 0.2], [1, 0, 1, 0])
    assert fpr.shape == tpr.shape == thr.shape == (5,)
    assert (fpr[0], tpr[0]) == (0.0, 0.0)
    assert (fpr[-1], tpr[-1]) == (1.0, 1.0)


def test_sweep_validates_inputs():
    with pytest.raises(EmptyDatasetError):
        sweep_thresholds([], [])
    with pytest.raises(ValueError):
        sweep_thresholds([0.1, 0.2], [1])
    with pytest.raises(ValueError):
        sweep_thresholds([0.1, np.nan], [1, 0])
    with pytest.raises(ValueError):
        sweep_thresholds([0.1, 0.2], [1, 2])
