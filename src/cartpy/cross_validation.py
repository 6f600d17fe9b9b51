"""
cartpy.cross_validation
=======================

Repeated stratified k-fold cross-validation of the complexity parameter.

Every ``(repeat, fold)`` pair is an independent unit: grow a tree on the
other folds, compute its pruning path, and score the pruned tree of each
candidate complexity parameter on the held-out fold.  Units only receive index
arrays and return lists of :class:`PerformanceRecord`, so they run unchanged
under ``joblib.Parallel`` and are reduced by concatenation.  Randomness comes
from one generator per repeat, derived from ``SeedSequence([seed, repeat])``;
no global random state is touched.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Callable, NamedTuple, Sequence

import numpy as np
from joblib import Parallel, delayed
from loguru import logger

from cartpy.config import CrossValidationConfig, TreeConfig, loss_matrix as make_loss_matrix, validate_loss_matrix
from cartpy.exceptions import EmptyDatasetError, InvalidConfigurationError, UndefinedMetricError
from cartpy.features import Dataset
from cartpy.metrics import ConfusionCounts, MetricFn, get_metric, metric_name, safe_score
from cartpy.pruning import prune_path, prune_to
from cartpy.tree import Tree, build_tree


class PerformanceRecord(NamedTuple):
    complexity_parameter: float
    repeat: int
    fold: int
    score: float


@dataclass(frozen=True)
class CpSummary:
    """Aggregated score of one candidate complexity parameter.

    ``n_leaves`` is the leaf count of the full-data tree pruned at this
    complexity parameter (``0`` until the final refit is known).
    """

    complexity_parameter: float
    mean: float
    std_error: float
    n_scores: int
    n_leaves: int = 0


class PerformanceTable:
    """Per-unit scores and their per-cp mean and standard error."""

    def __init__(self, records: Sequence[PerformanceRecord], rows: Sequence[CpSummary]):
        self.records = tuple(records)
        self.rows = tuple(sorted(rows, key=lambda r: r.complexity_parameter))

    @classmethod
    def from_records(cls, records: Sequence[PerformanceRecord], candidate_cps) -> "PerformanceTable":
        by_cp: dict[float, list[float]] = {float(cp): [] for cp in candidate_cps}
        for rec in records:
            by_cp[rec.complexity_parameter].append(rec.score)
        rows = []
        for cp, scores in by_cp.items():
            s = np.asarray(scores, dtype=float)
            s = s[~np.isnan(s)]
            n = int(s.size)
            mean = float(s.mean()) if n else float("nan")
            se = float(s.std(ddof=1) / math.sqrt(n)) if n >= 2 else 0.0
            rows.append(CpSummary(cp, mean, se, n))
        return cls(records, rows)

    def with_leaf_counts(self, path) -> "PerformanceTable":
        rows = [replace(r, n_leaves=prune_to(path[0].tree, r.complexity_parameter, path).n_leaves)
                for r in self.rows]
        return PerformanceTable(self.records, rows)

    def row(self, complexity_parameter: float) -> CpSummary:
        for r in self.rows:
            if math.isclose(r.complexity_parameter, complexity_parameter, rel_tol=1e-12, abs_tol=1e-15):
                return r
        raise KeyError(complexity_parameter)

    @property
    def complexity_parameters(self) -> list[float]:
        return [r.complexity_parameter for r in self.rows]

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self):
        return iter(self.rows)


@dataclass(frozen=True)
class CrossValidationResult:
    selected_cp: float
    tree: Tree
    table: PerformanceTable
    fold_assignments: tuple[np.ndarray, ...]
    candidate_cps: tuple[float, ...]
    metric: str
    selection_rule: str

    @property
    def records(self) -> tuple[PerformanceRecord, ...]:
        return self.table.records


# -----------------------------------------------------------------------------
# Selection rules
# -----------------------------------------------------------------------------
def _defined_rows(table: PerformanceTable) -> list[CpSummary]:
    rows = [r for r in table.rows if not math.isnan(r.mean)]
    if not rows:
        raise UndefinedMetricError("cross-validated metric", "no candidate has a defined mean score")
    return rows


def _best_row(rows: list[CpSummary]) -> CpSummary:
    best_mean = max(r.mean for r in rows)
    # ties go to the larger complexity parameter (the smaller tree)
    return max((r for r in rows if r.mean >= best_mean - 1e-12), key=lambda r: r.complexity_parameter)


def select_best(table: PerformanceTable) -> float:
    """Complexity parameter with the highest mean score."""
    return _best_row(_defined_rows(table)).complexity_parameter


def select_one_standard_error(table: PerformanceTable) -> float:
    """Largest complexity parameter whose mean is within one standard error of the best."""
    rows = _defined_rows(table)
    best = _best_row(rows)
    limit = best.mean - best.std_error - 1e-12
    return max(r.complexity_parameter for r in rows if r.mean >= limit)


SELECTION_RULES: dict[str, Callable[[PerformanceTable], float]] = {
    "best": select_best,
    "one_standard_error": select_one_standard_error,
}


def select_complexity_parameter(table: PerformanceTable, rule="best") -> float:
    if callable(rule):
        return float(rule(table))
    try:
        return SELECTION_RULES[rule](table)
    except KeyError:
        raise InvalidConfigurationError("selection_rule", rule, f"must be one of {tuple(SELECTION_RULES)}") from None


# -----------------------------------------------------------------------------
# Folds
# -----------------------------------------------------------------------------
def repeat_rng(seed: int, repeat: int) -> np.random.Generator:
    """Independent generator of one repeat."""
    return np.random.default_rng(np.random.SeedSequence([int(seed), int(repeat)]))


def stratified_folds(labels, k: int, rng: np.random.Generator) -> np.ndarray:
    """
    Assign each record to one of ``k`` folds, preserving label proportions.

    The indices of each class are shuffled and dealt to the folds in turn; the
    dealer continues where the previous class stopped, so fold sizes differ by
    at most one and each class is spread within one record per fold.
    """
    labels = np.asarray(labels)
    folds = np.empty(labels.shape[0], dtype=np.intp)
    offset = 0
    for cls in np.unique(labels):
        idx = np.nonzero(labels == cls)[0]
        idx = idx[rng.permutation(idx.size)]
        folds[idx] = (offset + np.arange(idx.size)) % k
        offset = (offset + idx.size) % k
    return folds


def train_test_split(dataset: Dataset, test_fraction: float = 0.25, seed: int = 0) -> tuple[Dataset, Dataset]:
    """Stratified holdout split, returns ``(train, test)``."""
    if not 0.0 < test_fraction < 1.0:
        raise InvalidConfigurationError("test_fraction", test_fraction, "must lie strictly between 0 and 1")
    if len(dataset) == 0:
        raise EmptyDatasetError("train_test_split")
    rng = np.random.default_rng(np.random.SeedSequence([int(seed)]))
    test_mask = np.zeros(len(dataset), dtype=bool)
    for cls in np.unique(dataset.labels):
        idx = np.nonzero(dataset.labels == cls)[0]
        idx = idx[rng.permutation(idx.size)]
        test_mask[idx[: int(round(test_fraction * idx.size))]] = True
    return dataset.subset(np.nonzero(~test_mask)[0]), dataset.subset(np.nonzero(test_mask)[0])


def _check_fold_assignments(fold_assignments, n: int, k: int) -> tuple[np.ndarray, ...]:
    out = []
    for folds in fold_assignments:
        folds = np.asarray(folds, dtype=np.intp)
        if folds.shape != (n,):
            raise InvalidConfigurationError("fold_assignments", folds.shape, f"each assignment needs {n} entries")
        if folds.min() < 0 or folds.max() >= k or np.unique(folds).size != k:
            raise InvalidConfigurationError("fold_assignments", np.unique(folds).tolist(),
                                            f"must use every fold id 0..{k - 1}")
        out.append(folds)
    if not out:
        raise InvalidConfigurationError("fold_assignments", fold_assignments, "must not be empty")
    return tuple(out)


# -----------------------------------------------------------------------------
# Candidates
# -----------------------------------------------------------------------------
def default_candidate_cps(dataset: Dataset, config: TreeConfig | None = None, loss_matrix=None,
                          tune_length: int = 10) -> list[float]:
    """
    ``tune_length`` complexity parameters spread over the pruning path of a
    fully grown tree on ``dataset``.
    """
    config = replace(config or TreeConfig(), complexity_parameter=0.0)
    path = prune_path(build_tree(dataset, config, loss_matrix))
    cps = [step.complexity_parameter for step in path]
    if len(cps) > tune_length:
        idx = np.unique(np.linspace(0, len(cps) - 1, tune_length).round().astype(int))
        cps = [cps[i] for i in idx]
    return cps


def _check_candidates(candidate_cps) -> tuple[float, ...]:
    cps = sorted({float(cp) for cp in candidate_cps})
    if not cps:
        raise InvalidConfigurationError("candidate_cps", candidate_cps, "must not be empty")
    if any(not math.isfinite(cp) or cp < 0 for cp in cps):
        raise InvalidConfigurationError("candidate_cps", candidate_cps, "must be finite and non-negative")
    return tuple(cps)


# -----------------------------------------------------------------------------
# Cross-validation
# -----------------------------------------------------------------------------
def _evaluate_unit(dataset: Dataset, train_idx, valid_idx, candidate_cps, config: TreeConfig,
                   loss: np.ndarray, metric: MetricFn, repeat: int, fold: int) -> list[PerformanceRecord]:
    """Grow on the training folds and score every candidate on the held-out fold."""
    train = dataset.subset(train_idx)
    valid = dataset.subset(valid_idx)
    if np.unique(valid.labels).size < 2:
        logger.warning("Repeat {} fold {}: held-out fold contains a single class", repeat, fold)
    tree = build_tree(train, config, loss)
    path = prune_path(tree)
    out = []
    for cp in candidate_cps:
        pred = prune_to(tree, cp, path).predict(valid)
        counts = ConfusionCounts.from_predictions(pred, valid.labels)
        out.append(PerformanceRecord(cp, repeat, fold, safe_score(metric, counts)))
    return out


def cross_validate(
    dataset: Dataset,
    candidate_cps=None,
    k: int = 10,
    repeats: int = 1,
    seed: int = 0,
    metric="accuracy",
    selection_rule="best",
    config: TreeConfig | None = None,
    loss_matrix=None,
    *,
    tune_length: int = 10,
    n_jobs: int = 1,
    max_grid_size: int | None = None,
    fold_assignments=None,
) -> CrossValidationResult:
    """
    Select the complexity parameter by repeated stratified k-fold cross-validation.

    Parameters
    ----------
    dataset : Dataset
        Training records.
    candidate_cps : iterable of float or None, default=None
        Complexity parameters to compare.  When ``None``, ``tune_length``
        values are taken from the pruning path of a fully grown tree.
    k : int, default=10
        Number of folds.
    repeats : int, default=1
        Number of independent fold partitions.
    seed : int, default=0
        Root seed; identical inputs and seed reproduce identical folds and
        selection.
    metric : str or callable, default="accuracy"
        Registered metric name or ``(ConfusionCounts) -> float``; larger is
        better.
    selection_rule : {"best", "one_standard_error"} or callable, default="best"
    config : TreeConfig or None
        Stopping rules.  Its complexity parameter is ignored: fold and refit
        trees are grown fully and then pruned to each candidate.
    loss_matrix : array-like of shape (2, 2) or None
        Misclassification costs.
    tune_length : int, default=10
        Number of derived candidates when ``candidate_cps`` is ``None``.
    n_jobs : int, default=1
        joblib workers for the ``(repeat, fold)`` units.
    max_grid_size : int or None, default=None
        Refuse grids with more than this many ``cp x fold x repeat`` cells.
    fold_assignments : sequence of arrays or None, default=None
        Precomputed folds, one array per repeat; overrides ``repeats`` and
        ``seed``.

    Returns
    -------
    CrossValidationResult
        Selected complexity parameter, the tree refit on all of ``dataset``
        and pruned to it, the performance table and the folds used.

    Raises
    ------
    EmptyDatasetError
        If ``dataset`` has no records.
    InvalidConfigurationError
        For ``k < 2``, ``k`` above the number of records, an oversized grid,
        or other invalid options.
    UndefinedMetricError
        If the metric is undefined on every unit for every candidate.
    """
    if len(dataset) == 0:
        raise EmptyDatasetError("cross_validate")
    cv = CrossValidationConfig(k=k, repeats=repeats, seed=seed, selection_rule=selection_rule,
                               metric=metric, tune_length=tune_length, n_jobs=n_jobs,
                               max_grid_size=max_grid_size)
    n = len(dataset)
    if cv.k > n:
        raise InvalidConfigurationError("k", cv.k, f"exceeds the number of records ({n})")
    config = config or TreeConfig()
    loss = validate_loss_matrix(loss_matrix)
    metric_fn = get_metric(cv.metric)

    if candidate_cps is None:
        candidate_cps = default_candidate_cps(dataset, config, loss, cv.tune_length)
    cps = _check_candidates(candidate_cps)

    if fold_assignments is None:
        folds = tuple(stratified_folds(dataset.labels, cv.k, repeat_rng(cv.seed, r)) for r in range(cv.repeats))
    else:
        folds = _check_fold_assignments(fold_assignments, n, cv.k)

    grid_size = len(cps) * cv.k * len(folds)
    if cv.max_grid_size is not None and grid_size > cv.max_grid_size:
        raise InvalidConfigurationError("max_grid_size", cv.max_grid_size,
                                        f"grid of {grid_size} cells ({len(cps)} cps x {cv.k} folds"
                                        f" x {len(folds)} repeats) exceeds it")

    # full trees; the candidates only act through pruning
    growth = replace(config, complexity_parameter=0.0)
    logger.info("Cross-validating {} candidate cps over {} folds x {} repeats ({} fits)",
                len(cps), cv.k, len(folds), cv.k * len(folds))
    units = Parallel(n_jobs=cv.n_jobs)(
        delayed(_evaluate_unit)(dataset, np.nonzero(assign != fold)[0], np.nonzero(assign == fold)[0],
                                cps, growth, loss, metric_fn, repeat, fold)
        for repeat, assign in enumerate(folds)
        for fold in range(cv.k)
    )
    records = [rec for unit in units for rec in unit]
    table = PerformanceTable.from_records(records, cps)
    selected = select_complexity_parameter(table, cv.selection_rule)

    full = build_tree(dataset, growth, loss)
    path = prune_path(full)
    tree = prune_to(full, selected, path)
    table = table.with_leaf_counts(path)
    logger.info("Selected cp={:.6g} ({}), refit tree has {} leaves", selected,
                cv.selection_rule if isinstance(cv.selection_rule, str) else "custom rule", tree.n_leaves)

    return CrossValidationResult(
        selected_cp=selected,
        tree=tree,
        table=table,
        fold_assignments=folds,
        candidate_cps=cps,
        metric=metric_name(cv.metric),
        selection_rule=cv.selection_rule if isinstance(cv.selection_rule, str) else metric_name(cv.selection_rule),
    )


# -----------------------------------------------------------------------------
# Loss-penalty sweep
# -----------------------------------------------------------------------------
class PenaltyResult(NamedTuple):
    penalty: float
    result: CrossValidationResult


def tune_loss_penalty(
    dataset: Dataset,
    penalties: Sequence[float],
    candidate_cps=None,
    k: int = 10,
    repeats: int = 1,
    seed: int = 0,
    metric="accuracy",
    selection_rule="best",
    config: TreeConfig | None = None,
    **kwargs,
) -> list[PenaltyResult]:
    """
    Cross-validate once per false-negative penalty.

    Penalty ``p`` uses the loss matrix ``[[0, 1], [p, 0]]``.  The folds are
    drawn once from ``seed`` and reused for every penalty, so the scores of
    different penalties are computed on identical resamples.
    """
    if len(dataset) == 0:
        raise EmptyDatasetError("tune_loss_penalty")
    cv = CrossValidationConfig(k=k, repeats=repeats, seed=seed)
    if cv.k > len(dataset):
        raise InvalidConfigurationError("k", cv.k, f"exceeds the number of records ({len(dataset)})")
    folds = kwargs.pop("fold_assignments", None)
    if folds is None:
        folds = tuple(stratified_folds(dataset.labels, cv.k, repeat_rng(cv.seed, r)) for r in range(cv.repeats))
    out = []
    for p in penalties:
        res = cross_validate(dataset, candidate_cps, k=cv.k, metric=metric, selection_rule=selection_rule,
                             config=config, loss_matrix=make_loss_matrix(false_negative_cost=p),
                             fold_assignments=folds, **kwargs)
        logger.info("Penalty {:g}: selected cp={:.6g}", p, res.selected_cp)
        out.append(PenaltyResult(float(p), res))
    return out
