"""
cartpy.exceptions
=================

Errors raised by cartpy.

Configuration and schema errors are fatal and surface immediately:

- ``EmptyDatasetError`` when building, splitting or cross-validating on zero
  records.
- ``SchemaMismatchError`` when a record does not match the schema a tree was
  built on.
- ``InvalidConfigurationError`` for nonsensical options (``min_bucket`` larger
  than ``min_split``, ``k < 2``, negative loss-matrix entries, unknown metric
  names, ...).

``UndefinedMetricError`` is different: metric functions raise it when a score
has no value (F1 with no predicted positives, sensitivity without positives).
Threshold sweeps and cross-validation catch it and record ``NaN`` instead, so a
single degenerate resample never aborts the enclosing computation.

Every concrete error derives from ``CartError`` and from the matching builtin,
so existing ``except ValueError`` handlers keep working.
"""

from __future__ import annotations

from typing import Any


class CartError(Exception):
    """Base class for all cartpy errors."""


class EmptyDatasetError(CartError, ValueError):
    """Raised when an operation receives a dataset with no records.

    Attributes
    ----------
    operation : str
        Name of the operation that needed records.
    """

    def __init__(self, operation: str):
        super().__init__(f"{operation} requires at least one record, got an empty dataset")
        self.operation = operation


class SchemaMismatchError(CartError, ValueError):
    """Raised when a record's features do not match a tree's schema.

    Attributes
    ----------
    expected : list[str]
        Feature names of the schema.
    received : list[str]
        Feature names (or positional placeholders) found on the record.
    """

    def __init__(self, expected: list[str], received: list[str]):
        self.expected = list(expected)
        self.received = list(received)
        super().__init__(
            f"Record features {self.received} do not match schema {self.expected}"
            f" (missing: {self.missing_features}, unexpected: {self.unexpected_features})"
        )

    @property
    def missing_features(self) -> list[str]:
        received = set(self.received)
        return [name for name in self.expected if name not in received]

    @property
    def unexpected_features(self) -> list[str]:
        expected = set(self.expected)
        return [name for name in self.received if name not in expected]


class InvalidConfigurationError(CartError, ValueError):
    """Raised when an option has a nonsensical value.

    Attributes
    ----------
    parameter : str
        Name of the offending option.
    value : Any
        The rejected value.
    reason : str
        Why the value was rejected.

    Examples
    --------
    >>> str(InvalidConfigurationError("k", 1, "must be at least 2"))
    'Invalid k=1: must be at least 2'
    """

    def __init__(self, parameter: str, value: Any, reason: str):
        super().__init__(f"Invalid {parameter}={value!r}: {reason}")
        self.parameter = parameter
        self.value = value
        self.reason = reason


class UndefinedMetricError(CartError, ArithmeticError):
    """Raised by a metric whose value is undefined for the given counts.

    Attributes
    ----------
    metric : str
        Name of the metric.
    reason : str
        Why the metric is undefined.
    """

    def __init__(self, metric: str, reason: str):
        super().__init__(f"{metric} is undefined: {reason}")
        self.metric = metric
        self.reason = reason
