from dataclasses import replace

import numpy as np
import pytest

from cartpy import CrossValidationConfig, InvalidConfigurationError, TreeConfig, loss_matrix
from cartpy.config import validate_loss_matrix


def test_tree_config_defaults():
    cfg = TreeConfig()
    assert cfg.min_split == 20
    assert cfg.min_bucket == 7
    assert cfg.max_depth == 30
    assert cfg.complexity_parameter == 0.01
    assert cfg.criterion == 'gini'
    assert replace(cfg, min_split=9).min_bucket == 7


def test_tree_config_min_bucket_follows_min_split():
    assert TreeConfig(min_split=9).min_bucket == 3
    assert TreeConfig(min_split=1).min_bucket == 1


@pytest.mark.parametrize('kwargs', [
    dict(min_split=0),
    dict(min_split=5, min_bucket=6),
    dict(min_bucket=0),
    dict(max_depth=31),
    dict(max_depth=-1),
    dict(complexity_parameter=-0.1),
    dict(complexity_parameter=float('inf')),
    dict(criterion='twoing'),
])
def test_tree_config_rejects(kwargs):
    with pytest.raises(InvalidConfigurationError):
        TreeConfig(**kwargs)


def test_invalid_configuration_error_carries_details():
    with pytest.raises(InvalidConfigurationError) as err:
        TreeConfig(min_split=5, min_bucket=6)
    assert err.value.parameter == 'min_bucket'
    assert err.value.value == 6
    assert isinstance(err.value, ValueError)


@pytest.mark.parametrize('kwargs', [
    dict(k=1),
    dict(repeats=0),
    dict(seed=-1),
    dict(selection_rule='median'),
    dict(tune_length=0),
    dict(max_grid_size=0),
])
def test_cross_validation_config_rejects(kwargs):
    with pytest.raises(InvalidConfigurationError):
        CrossValidationConfig(**kwargs)


def test_cross_validation_config_accepts_callable_rule():
    cfg = CrossValidationConfig(selection_rule=lambda table: 0.0)
    assert callable(cfg.selection_rule)


def test_loss_matrix_layout():
    m = loss_matrix(false_negative_cost=5.0)
    assert np.array_equal(m, [[0.0, 1.0], [5.0, 0.0]])
    assert np.array_equal(validate_loss_matrix(None), [[0.0, 1.0], [1.0, 0.0]])


@pytest.mark.parametrize('matrix', [
    [[0, 1], [-1, 0]],
    [[0, 0], [0, 0]],
    [[0, np.nan], [1, 0]],
    [[0, 1]],
])
def test_loss_matrix_rejects(matrix):
    with pytest.raises(InvalidConfigurationError):
        validate_loss_matrix(matrix)


def test_literal_identity_loss_matrix_points_to_unit_costs():
    with pytest.raises(InvalidConfigurationError) as err:
        validate_loss_matrix([[1, 0], [0, 1]])
    assert '[[0, 1], [1, 0]]' in str(err.value)
    assert err.value.parameter == 'loss_matrix'
