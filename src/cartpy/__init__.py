# cartpy/__init__.py
"""
cartpy: CART classification trees with cost-complexity pruning in pure Python.

Exports:
    - CARTClassifier (scikit-learn style estimator)
    - Dataset, Schema, NumericFeature, CategoricalFeature
    - build_tree, prune_path, prune_to, cp_table
    - cross_validate, tune_loss_penalty, stratified_folds, train_test_split
    - sweep_thresholds, roc_curve, area_under_curve, best_threshold_by
    - enable_logging
"""
from loguru import logger

from .config import CrossValidationConfig, TreeConfig, loss_matrix
from .cross_validation import (
    CrossValidationResult,
    PerformanceRecord,
    PerformanceTable,
    cross_validate,
    stratified_folds,
    train_test_split,
    tune_loss_penalty,
)
from .exceptions import (
    CartError,
    EmptyDatasetError,
    InvalidConfigurationError,
    SchemaMismatchError,
    UndefinedMetricError,
)
from .features import CategoricalFeature, Dataset, NumericFeature, Schema, SplitRule
from .impurity import evaluate_split, find_best_split
from .logging import PACKAGE_NAME, LoggingHandle, enable_logging
from .metrics import METRICS, ConfusionCounts, get_metric
from .pruning import cp_table, prune_path, prune_to
from .thresholds import ThresholdPoint, area_under_curve, best_threshold_by, roc_curve, sweep_thresholds
from .tree import CARTClassifier, Node, Tree, build_tree

logger.disable(PACKAGE_NAME)

__all__ = [
    "CARTClassifier",
    "CartError",
    "CategoricalFeature",
    "ConfusionCounts",
    "CrossValidationConfig",
    "CrossValidationResult",
    "Dataset",
    "EmptyDatasetError",
    "InvalidConfigurationError",
    "LoggingHandle",
    "METRICS",
    "Node",
    "NumericFeature",
    "PerformanceRecord",
    "PerformanceTable",
    "Schema",
    "SchemaMismatchError",
    "SplitRule",
    "ThresholdPoint",
    "Tree",
    "TreeConfig",
    "UndefinedMetricError",
    "area_under_curve",
    "best_threshold_by",
    "build_tree",
    "cp_table",
    "cross_validate",
    "enable_logging",
    "evaluate_split",
    "find_best_split",
    "get_metric",
    "loss_matrix",
    "prune_path",
    "prune_to",
    "roc_curve",
    "stratified_folds",
    "sweep_thresholds",
    "train_test_split",
    "tune_loss_penalty",
]
__version__ = "0.1.0"
