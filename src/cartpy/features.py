"""
cartpy.features
===============

Feature schema, datasets and split rules.

A :class:`Schema` is an ordered tuple of features, each either a
:class:`NumericFeature` or a :class:`CategoricalFeature`.  The kind of a
feature is fixed when the schema is defined; everything downstream (value
encoding, candidate enumeration, routing) dispatches on the feature object
rather than inspecting values.

A :class:`Dataset` holds one encoded column per feature plus binary labels
(``0``/``1``).  Numeric columns are stored as ``float64`` with ``NaN`` for
missing values; categorical columns as ``object`` arrays with ``None`` for
missing values.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from numbers import Number
from typing import Any, Iterable, Sequence

import numpy as np

from cartpy.exceptions import InvalidConfigurationError, SchemaMismatchError


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _isnan_scalar(v) -> bool:
    return (v is None) or (isinstance(v, float) and np.isnan(v))


def _is_number(v) -> bool:
    return isinstance(v, Number) and not isinstance(v, bool)


def _is_record_sequence(X) -> bool:
    return isinstance(X, (list, tuple)) and len(X) > 0 and isinstance(X[0], Mapping)


def _label_counts(labels: np.ndarray) -> np.ndarray:
    return np.bincount(labels, minlength=2).astype(float)


def _class_weights(class_weights) -> np.ndarray:
    if class_weights is None:
        return np.ones(2, dtype=float)
    return np.asarray(class_weights, dtype=float)


# -----------------------------------------------------------------------------
# Split rules
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class SplitRule:
    """Binary routing rule of an internal node.

    Records satisfying the predicate go to the left child, all others to the
    right child.  For a numeric feature the predicate is
    ``value >= threshold``; for a categorical feature it is
    ``value in categories``.  Missing values, and categories never seen during
    training, follow ``missing_goes_left``.  Every record is therefore routed
    to exactly one child.
    """

    feature_index: int
    feature_name: str
    threshold: float | None = None
    categories: frozenset | None = None
    other_categories: frozenset | None = None
    missing_goes_left: bool = True

    @property
    def split_type(self) -> str:
        return "numeric" if self.threshold is not None else "categorical"

    def goes_left(self, value) -> bool:
        if _isnan_scalar(value):
            return self.missing_goes_left
        if self.threshold is not None:
            return float(value) >= self.threshold
        if value in self.categories:
            return True
        if value in self.other_categories:
            return False
        return self.missing_goes_left

    def matches(self, values: np.ndarray) -> np.ndarray:
        """Vectorized :meth:`goes_left` over an encoded column."""
        if self.threshold is not None:
            values = np.asarray(values, dtype=float)
            missing = np.isnan(values)
            with np.errstate(invalid="ignore"):
                left = values >= self.threshold
            return np.where(missing, self.missing_goes_left, left)
        return np.fromiter((self.goes_left(v) for v in values), dtype=bool, count=len(values))

    def describe(self, negate: bool = False, feature_names=None) -> str:
        name = self.feature_name
        if feature_names is not None and 0 <= self.feature_index < len(feature_names):
            name = feature_names[self.feature_index]
        if self.threshold is not None:
            op = "<" if negate else ">="
            return f"{name} {op} {self.threshold:.4f}"
        S = "{" + ", ".join(map(str, sorted(self.categories, key=str))) + "}"
        return f"{name} " + ("NOT IN " if negate else "IN ") + S


@dataclass(frozen=True)
class SplitCandidate:
    """A candidate split with the class counts of its two children.

    ``left_counts`` and ``right_counts`` count records with a known value only;
    ``n_missing`` records lacking the value are not part of either.
    """

    rule: SplitRule
    left_counts: np.ndarray = field(repr=False)
    right_counts: np.ndarray = field(repr=False)
    n_missing: int = 0

    @property
    def n_left(self) -> float:
        return float(self.left_counts.sum())

    @property
    def n_right(self) -> float:
        return float(self.right_counts.sum())


# -----------------------------------------------------------------------------
# Features
# -----------------------------------------------------------------------------
class Feature(ABC):
    """Capability interface shared by numeric and categorical features."""

    name: str

    @abstractmethod
    def encode(self, values) -> np.ndarray:
        """Convert raw column values into this feature's column representation."""

    @abstractmethod
    def missing_mask(self, column: np.ndarray) -> np.ndarray:
        """Boolean mask of missing entries in an encoded column."""

    @abstractmethod
    def candidate_splits(self, column: np.ndarray, labels: np.ndarray, *, index: int = 0,
                         class_weights=None, min_bucket: int = 1) -> list[SplitCandidate]:
        """Enumerate admissible splits of ``column`` in evaluation order."""

    @abstractmethod
    def rule_for(self, index: int, candidate, column: np.ndarray | None = None) -> SplitRule:
        """Build the rule for a raw candidate (threshold or category set)."""


@dataclass(frozen=True)
class NumericFeature(Feature):
    """Ordered feature; candidates are midpoints between consecutive distinct values."""

    name: str

    def encode(self, values) -> np.ndarray:
        out = np.empty(len(values), dtype=float)
        for i, v in enumerate(values):
            if _isnan_scalar(v):
                out[i] = np.nan
            else:
                try:
                    out[i] = float(v)
                except (TypeError, ValueError) as exc:
                    raise SchemaMismatchError([f"{self.name} (numeric)"], [f"{self.name}={v!r}"]) from exc
        return out

    def missing_mask(self, column: np.ndarray) -> np.ndarray:
        return np.isnan(np.asarray(column, dtype=float))

    def candidate_splits(self, column, labels, *, index=0, class_weights=None, min_bucket=1):
        column = np.asarray(column, dtype=float)
        known = ~np.isnan(column)
        v_known = column[known]
        if v_known.size < 2:
            return []
        # one sort, then a single cumulative scan
        order = np.argsort(v_known, kind="mergesort")
        v = v_known[order]
        yk = labels[known][order]
        bd = np.nonzero(v[:-1] != v[1:])[0]
        if bd.size == 0:
            return []

        M = np.zeros((yk.shape[0], 2), dtype=float)
        M[np.arange(yk.shape[0]), yk] = 1.0
        below = M.cumsum(axis=0)
        total = below[-1]
        n_missing = int(column.size - v_known.size)

        out = []
        for i in bd:
            right = below[i]
            left = total - right
            if left.sum() < min_bucket or right.sum() < min_bucket:
                continue
            thr = 0.5 * (v[i] + v[i + 1])
            if thr <= v[i]:
                thr = float(v[i + 1])
            rule = SplitRule(index, self.name, threshold=float(thr),
                             missing_goes_left=bool(left.sum() >= right.sum()))
            out.append(SplitCandidate(rule, left.copy(), right.copy(), n_missing))
        return out

    def rule_for(self, index, candidate, column=None):
        thr = float(candidate)
        left_n = right_n = 0
        if column is not None:
            col = np.asarray(column, dtype=float)
            col = col[~np.isnan(col)]
            left_n = int((col >= thr).sum())
            right_n = col.size - left_n
        return SplitRule(index, self.name, threshold=thr, missing_goes_left=left_n >= right_n)


@dataclass(frozen=True)
class CategoricalFeature(Feature):
    """Unordered feature.

    With two classes, ordering categories by their (weighted) positive-class
    proportion and splitting along that order contains the optimal subset
    split for Gini and entropy, so only ``m - 1`` subsets are evaluated.
    """

    name: str

    def encode(self, values) -> np.ndarray:
        out = np.empty(len(values), dtype=object)
        for i, v in enumerate(values):
            out[i] = None if _isnan_scalar(v) else v
        return out

    def missing_mask(self, column: np.ndarray) -> np.ndarray:
        return np.fromiter((v is None for v in column), dtype=bool, count=len(column))

    def category_counts(self, column, labels) -> dict[Any, np.ndarray]:
        dists: dict[Any, np.ndarray] = {}
        for v, y in zip(column, labels):
            if v is None:
                continue
            if v not in dists:
                dists[v] = np.zeros(2, dtype=float)
            dists[v][y] += 1.0
        return {c: dists[c] for c in sorted(dists, key=str)}

    def candidate_splits(self, column, labels, *, index=0, class_weights=None, min_bucket=1):
        dists = self.category_counts(column, labels)
        if len(dists) < 2:
            return []
        cw = _class_weights(class_weights)

        def positive_share(c):
            w = dists[c] * cw
            return w[1] / w.sum() if w.sum() > 0 else 0.0

        ordered = sorted(dists, key=positive_share)
        total = sum(dists.values())
        n_missing = int(len(column) - total.sum())

        out = []
        left = np.zeros(2, dtype=float)
        for i in range(1, len(ordered)):
            left = left + dists[ordered[i - 1]]
            right = total - left
            if left.sum() < min_bucket or right.sum() < min_bucket:
                continue
            rule = SplitRule(index, self.name,
                             categories=frozenset(ordered[:i]),
                             other_categories=frozenset(ordered[i:]),
                             missing_goes_left=bool(left.sum() >= right.sum()))
            out.append(SplitCandidate(rule, left.copy(), right.copy(), n_missing))
        return out

    def rule_for(self, index, candidate, column=None):
        cats = frozenset(candidate)
        others = frozenset()
        left_n = right_n = 0
        if column is not None:
            seen = {v for v in column if v is not None}
            others = frozenset(seen - cats)
            left_n = sum(1 for v in column if v is not None and v in cats)
            right_n = sum(1 for v in column if v is not None and v not in cats)
        return SplitRule(index, self.name, categories=cats, other_categories=others,
                         missing_goes_left=left_n >= right_n)


# -----------------------------------------------------------------------------
# Schema
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class Schema:
    """Ordered, uniquely named features."""

    features: tuple[Feature, ...]

    def __post_init__(self):
        names = [f.name for f in self.features]
        if len(set(names)) != len(names):
            raise InvalidConfigurationError("schema", names, "feature names must be unique")

    @classmethod
    def from_names(cls, names: Sequence[str], categorical: Iterable[int | str] = ()) -> "Schema":
        cats = set()
        for c in categorical:
            cats.add(names[c] if isinstance(c, (int, np.integer)) else c)
        unknown = cats - set(names)
        if unknown:
            raise InvalidConfigurationError("categorical_features", sorted(unknown, key=str),
                                            "not among the feature names")
        return cls(tuple(CategoricalFeature(n) if n in cats else NumericFeature(n) for n in names))

    @classmethod
    def infer(cls, X: np.ndarray, names: Sequence[str] | None = None,
              categorical: Iterable[int | str] | None = None) -> "Schema":
        """Fix feature kinds once: explicit ``categorical`` wins, otherwise a
        column holding any non-numeric value is categorical."""
        n_features = X.shape[1]
        if names is None:
            names = [f"f{i}" for i in range(n_features)]
        if len(names) != n_features:
            raise SchemaMismatchError(list(names), [f"column {i}" for i in range(n_features)])
        if categorical is None:
            categorical = [j for j in range(n_features)
                           if any(not _isnan_scalar(v) and not _is_number(v) for v in X[:, j])]
        return cls.from_names(list(names), categorical)

    @property
    def names(self) -> list[str]:
        return [f.name for f in self.features]

    def __len__(self) -> int:
        return len(self.features)

    def __iter__(self):
        return iter(self.features)

    def __getitem__(self, i) -> Feature:
        return self.features[i]

    def index_of(self, feature: int | str) -> int:
        if isinstance(feature, (int, np.integer)):
            if not 0 <= feature < len(self.features):
                raise SchemaMismatchError(self.names, [f"column {feature}"])
            return int(feature)
        try:
            return self.names.index(feature)
        except ValueError:
            raise SchemaMismatchError(self.names, [feature]) from None

    def encode(self, X) -> list[np.ndarray]:
        """Encode a 2-D array-like or a sequence of record mappings column-wise."""
        if isinstance(X, Dataset):
            if X.schema.names != self.names:
                raise SchemaMismatchError(self.names, X.schema.names)
            return list(X.columns)
        if _is_record_sequence(X):
            return self._encode_records(X)
        X = np.asarray(X, dtype=object)
        if X.ndim == 1:
            X = X.reshape(1, -1) if X.size == len(self.features) else X.reshape(-1, 1)
        if X.ndim != 2 or X.shape[1] != len(self.features):
            width = X.shape[1] if X.ndim == 2 else X.size
            raise SchemaMismatchError(self.names, [f"column {i}" for i in range(width)])
        return [f.encode(X[:, j]) for j, f in enumerate(self.features)]

    def _encode_records(self, records: Sequence[Mapping]) -> list[np.ndarray]:
        expected = set(self.names)
        for rec in records:
            if set(rec) != expected:
                raise SchemaMismatchError(self.names, list(rec))
        return [f.encode([rec[f.name] for rec in records]) for f in self.features]


# -----------------------------------------------------------------------------
# Dataset
# -----------------------------------------------------------------------------
class Dataset:
    """
    Encoded feature columns plus binary labels.

    Parameters
    ----------
    X : array-like of shape (n_records, n_features) or sequence of mappings
        Feature values.  ``None`` and ``NaN`` mark missing values.
    y : array-like of shape (n_records,)
        Labels in ``{0, 1}`` (booleans are accepted).
    schema : Schema or None, default=None
        Feature schema.  Inferred from ``X`` when omitted.
    feature_names : list[str] or None, default=None
        Names used when the schema is inferred.
    categorical_features : list[int|str] or None, default=None
        Columns forced to be categorical when the schema is inferred.
    """

    def __init__(self, X, y, schema: Schema | None = None, *, feature_names=None,
                 categorical_features=None):
        y = np.asarray(y)
        if y.ndim != 1:
            raise ValueError("labels must be one-dimensional")
        if y.size and not np.all(np.isin(y, (0, 1))):
            raise ValueError("labels must be binary (0/1); map the positive class to 1 first")
        self.labels = y.astype(np.intp)

        if schema is None:
            if not len(y):
                schema = Schema.from_names(list(feature_names or []), categorical_features or ())
            elif _is_record_sequence(X):
                names = list(feature_names or X[0])
                X = np.array([[rec.get(n) for n in names] for rec in X], dtype=object)
                schema = Schema.infer(X, names, categorical_features)
            else:
                X = np.asarray(X, dtype=object)
                if X.ndim == 1:
                    X = X.reshape(len(y), -1)
                schema = Schema.infer(X, feature_names, categorical_features)
        self.schema = schema
        if len(y):
            self.columns = tuple(schema.encode(X))
        else:
            self.columns = tuple(np.empty(0, dtype=float if isinstance(f, NumericFeature) else object)
                                 for f in schema)
        for col in self.columns:
            if len(col) != len(self.labels):
                raise ValueError("X and y have a different number of records")

    @classmethod
    def from_records(cls, records: Sequence[Mapping], label: str, schema: Schema | None = None,
                     categorical_features=None) -> "Dataset":
        """Build a dataset from mappings holding the features and the ``label`` key."""
        y = [rec[label] for rec in records]
        feats = [{k: v for k, v in rec.items() if k != label} for rec in records]
        if schema is None and feats:
            names = list(feats[0])
            X = np.array([[rec.get(n) for n in names] for rec in feats], dtype=object)
            schema = Schema.infer(X, names, categorical_features)
            return cls(X, y, schema)
        return cls(feats, y, schema)

    @classmethod
    def _from_columns(cls, columns, labels, schema) -> "Dataset":
        ds = cls.__new__(cls)
        ds.schema = schema
        ds.columns = tuple(columns)
        ds.labels = labels
        return ds

    def __len__(self) -> int:
        return int(self.labels.shape[0])

    @property
    def n_records(self) -> int:
        return len(self)

    @property
    def n_features(self) -> int:
        return len(self.schema)

    def column(self, feature: int | str) -> np.ndarray:
        return self.columns[self.schema.index_of(feature)]

    def class_counts(self) -> np.ndarray:
        return _label_counts(self.labels)

    def subset(self, indices) -> "Dataset":
        idx = np.asarray(indices)
        return Dataset._from_columns([c[idx] for c in self.columns], self.labels[idx], self.schema)

    def record(self, i: int) -> dict:
        out = {}
        for f, col in zip(self.schema, self.columns):
            v = col[i]
            out[f.name] = None if _isnan_scalar(v) else v
        return out

    def __repr__(self) -> str:
        n_pos = int(self.labels.sum())
        return f"Dataset(n_records={len(self)}, n_features={self.n_features}, positives={n_pos})"
