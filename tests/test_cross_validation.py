import math

import numpy as np
import pytest

from cartpy import (
    Dataset,
    EmptyDatasetError,
    InvalidConfigurationError,
    TreeConfig,
    UndefinedMetricError,
    build_tree,
    cross_validate,
    prune_to,
    stratified_folds,
    train_test_split,
    tune_loss_penalty,
)
from cartpy.cross_validation import (
    CpSummary,
    PerformanceRecord,
    PerformanceTable,
    repeat_rng,
    select_best,
    select_complexity_parameter,
    select_one_standard_error,
)


def _noisy_dataset(n=150, seed=4):
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(n, 3))
    y = (X[:, 0] + 0.5 * X[:, 1] + rng.normal(scale=0.8, size=n) > 0.4).astype(int)
    return Dataset(X, y, feature_names=['a', 'b', 'c'])


def _table(cps, means, ses):
    rows = [CpSummary(cp, m, se, 10) for cp, m, se in zip(cps, means, ses)]
    return PerformanceTable([], rows)


def test_stratified_folds_partition_and_balance():
    labels = np.array([0] * 23 + [1] * 9)
    folds = stratified_folds(labels, 5, repeat_rng(0, 0))
    assert folds.shape == labels.shape
    assert set(folds.tolist()) == set(range(5))
    sizes = np.bincount(folds, minlength=5)
    assert sizes.max() - sizes.min() <= 1
    for cls in (0, 1):
        per_fold = np.bincount(folds[labels == cls], minlength=5)
        assert per_fold.max() - per_fold.min() <= 1


def test_repeat_rng_is_reproducible_and_distinct():
    a = repeat_rng(7, 0).integers(0, 1_000_000, 5)
    b = repeat_rng(7, 0).integers(0, 1_000_000, 5)
    c = repeat_rng(7, 1).integers(0, 1_000_000, 5)
    assert np.array_equal(a, b)
    assert not np.array_equal(a, c)


def test_fold_assignments_partition_records():
    ds = _noisy_dataset()
    res = cross_validate(ds, [0.0, 0.01, 0.05], k=5, repeats=2, seed=3)
    assert len(res.fold_assignments) == 2
    for folds in res.fold_assignments:
        assert folds.shape == (len(ds),)
        assert sorted(set(folds.tolist())) == list(range(5))
    # one record per (cp, repeat, fold)
    assert len(res.records) == 3 * 5 * 2
    assert {(r.repeat, r.fold) for r in res.records} == {(r, f) for r in range(2) for f in range(5)}


def test_cross_validation_is_deterministic():
    ds = _noisy_dataset()
    first = cross_validate(ds, [0.0, 0.01, 0.03, 0.1], k=5, repeats=2, seed=11)
    second = cross_validate(ds, [0.0, 0.01, 0.03, 0.1], k=5, repeats=2, seed=11)
    assert all(np.array_equal(a, b) for a, b in zip(first.fold_assignments, second.fold_assignments))
    assert first.selected_cp == second.selected_cp
    assert [r.mean for r in first.table] == [r.mean for r in second.table]


def test_parallel_units_match_sequential():
    ds = _noisy_dataset()
    seq = cross_validate(ds, [0.0, 0.02, 0.1], k=4, seed=5, n_jobs=1)
    par = cross_validate(ds, [0.0, 0.02, 0.1], k=4, seed=5, n_jobs=2)
    assert seq.selected_cp == par.selected_cp
    assert sorted(seq.records) == sorted(par.records)


def test_different_seeds_change_folds():
    ds = _noisy_dataset()
    a = cross_validate(ds, [0.01], k=5, seed=1)
    b = cross_validate(ds, [0.01], k=5, seed=2)
    assert not np.array_equal(a.fold_assignments[0], b.fold_assignments[0])


def test_one_standard_error_never_selects_a_larger_tree():
    ds = _noisy_dataset()
    cps = [0.0, 0.005, 0.01, 0.02, 0.05, 0.1, 0.3]
    best = cross_validate(ds, cps, k=5, repeats=3, seed=2, selection_rule='best')
    simple = cross_validate(ds, cps, k=5, repeats=3, seed=2, selection_rule='one_standard_error')
    assert simple.selected_cp >= best.selected_cp
    assert simple.tree.n_leaves <= best.tree.n_leaves
    assert simple.table.row(simple.selected_cp).n_leaves == simple.tree.n_leaves


def test_selection_rules_on_fixed_table():
    table = _table([0.0, 0.01, 0.05, 0.1], [0.80, 0.82, 0.81, 0.70], [0.02] * 4)
    assert select_best(table) == 0.01
    assert select_one_standard_error(table) == 0.05
    assert select_complexity_parameter(table, lambda t: 0.1) == 0.1


def test_best_rule_prefers_larger_cp_on_ties():
    table = _table([0.0, 0.02], [0.9, 0.9], [0.0, 0.0])
    assert select_best(table) == 0.02


def test_selection_skips_undefined_means():
    table = _table([0.0, 0.02], [0.7, float('nan')], [0.01, 0.0])
    assert select_best(table) == 0.0
    with pytest.raises(UndefinedMetricError):
        select_best(_table([0.0], [float('nan')], [0.0]))


def test_table_aggregation_excludes_nan():
    records = [
        PerformanceRecord(0.0, 0, 0, 1.0),
        PerformanceRecord(0.0, 0, 1, 0.5),
        PerformanceRecord(0.0, 0, 2, float('nan')),
        PerformanceRecord(0.1, 0, 0, 0.6),
    ]
    table = PerformanceTable.from_records(records, [0.0, 0.1])
    row = table.row(0.0)
    assert row.mean == pytest.approx(0.75)
    assert row.n_scores == 2
    assert row.std_error == pytest.approx(0.25)
    assert table.row(0.1).std_error == 0.0


def test_undefined_metric_everywhere_raises():
    def never_defined(counts):
        raise UndefinedMetricError('never_defined', 'always undefined')

    with pytest.raises(UndefinedMetricError):
        cross_validate(_noisy_dataset(), [0.01], k=3, metric=never_defined)


def test_undefined_fold_scores_become_nan():
    # 2 positives, so most held-out folds have none and sensitivity is undefined there
    X = np.arange(20, dtype=float).reshape(-1, 1)
    y = np.array([0] * 18 + [1] * 2)
    ds = Dataset(X, y, feature_names=['x'])
    res = cross_validate(ds, [0.0], k=5, metric='sensitivity')
    scores = [r.score for r in res.records]
    assert sum(math.isnan(s) for s in scores) == 3
    assert res.table.row(0.0).n_scores == 2


def test_custom_metric_callable_and_name():
    ds = _noisy_dataset()

    def balanced(counts):
        return 0.5 * (counts.tp / max(counts.positives, 1) + counts.tn / max(counts.negatives, 1))

    res = cross_validate(ds, [0.0, 0.05], k=3, metric=balanced)
    assert res.metric == 'balanced'


def test_default_candidates_come_from_pruning_path():
    ds = _noisy_dataset()
    res = cross_validate(ds, k=3, tune_length=4)
    assert 1 <= len(res.candidate_cps) <= 4
    assert res.candidate_cps[0] == 0.0
    assert res.selected_cp in res.candidate_cps


def test_final_tree_is_refit_on_all_records():
    ds = _noisy_dataset()
    res = cross_validate(ds, [0.0, 0.02, 0.1], k=4, seed=9)
    assert res.tree.root.n_samples == len(ds)
    assert res.tree.complexity_parameter <= res.selected_cp + 1e-12


@pytest.mark.parametrize('cp', [0.005, 0.01, 0.02])
def test_refit_tree_is_full_tree_pruned_at_selected_cp(cp):
    ds = _noisy_dataset(n=300, seed=7)
    res = cross_validate(ds, [cp], k=3)
    full = build_tree(ds, TreeConfig(complexity_parameter=0.0))
    expected = prune_to(full, res.selected_cp)
    assert res.tree.n_leaves == expected.n_leaves
    assert res.table.row(cp).n_leaves == expected.n_leaves


def test_growth_cp_of_config_does_not_limit_candidates():
    ds = _noisy_dataset(n=300, seed=7)
    coarse = cross_validate(ds, [0.0], k=3, config=TreeConfig(complexity_parameter=0.2))
    full = cross_validate(ds, [0.0], k=3, config=TreeConfig(complexity_parameter=0.0))
    assert coarse.tree.n_leaves == full.tree.n_leaves
    assert [r.score for r in coarse.records] == [r.score for r in full.records]


def test_invalid_configurations():
    ds = _noisy_dataset(n=20)
    with pytest.raises(InvalidConfigurationError):
        cross_validate(ds, [0.01], k=1)
    with pytest.raises(InvalidConfigurationError):
        cross_validate(ds, [0.01], k=21)
    with pytest.raises(InvalidConfigurationError):
        cross_validate(ds, [0.0, 0.01, 0.1], k=5, repeats=2, max_grid_size=10)
    with pytest.raises(InvalidConfigurationError):
        cross_validate(ds, [0.01], k=5, metric='no_such_metric')
    with pytest.raises(InvalidConfigurationError):
        cross_validate(ds, [0.01], k=5, selection_rule='worst')
    with pytest.raises(InvalidConfigurationError):
        cross_validate(ds, [-0.1], k=5)
    with pytest.raises(InvalidConfigurationError):
        cross_validate(ds, [0.01], k=5, fold_assignments=[np.zeros(20, dtype=int)])


def test_empty_dataset_raises():
    ds = Dataset(np.empty((0, 2)), [], feature_names=['a', 'b'])
    with pytest.raises(EmptyDatasetError):
        cross_validate(ds, [0.01], k=5)


def test_penalty_sweep_reuses_folds():
    ds = _noisy_dataset()
    results = tune_loss_penalty(ds, [1.0, 2.0, 5.0], [0.0, 0.01, 0.05], k=4, repeats=2, seed=6)
    assert [r.penalty for r in results] == [1.0, 2.0, 5.0]
    reference = results[0].result.fold_assignments
    for r in results[1:]:
        assert all(np.array_equal(a, b) for a, b in zip(reference, r.result.fold_assignments))
    assert results[2].result.tree.loss_matrix[1, 0] == 5.0


def test_train_test_split_is_stratified():
    ds = _noisy_dataset(n=100)
    train, test = train_test_split(ds, test_fraction=0.2, seed=1)
    n_pos = int(ds.labels.sum())
    assert len(train) + len(test) == len(ds)
    assert int(test.labels.sum()) == round(0.2 * n_pos)
    with pytest.raises(InvalidConfigurationError):
        train_test_split(ds, test_fraction=1.5)
