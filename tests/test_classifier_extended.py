import numpy as np
import pytest
from sklearn.base import clone

from cartpy import CARTClassifier, EmptyDatasetError


def _tiny_dataset():
    """Return a small classification dataset with a numeric and categorical feature."""
    X = np.array([[1, 'A'], [2, 'A'], [3, 'B'], [4, 'B']], dtype=object)
    y = np.array([0, 0, 1, 1])
    return X, y


def _fit_tiny(**kwargs):
    X, y = _tiny_dataset()
    params = dict(min_split=2, min_bucket=1, cp=0.0,
                  feature_names=['num', 'cat'], categorical_features=[1])
    params.update(kwargs)
    return CARTClassifier(**params).fit(X, y)


def test_classifier_proba_sums_to_one():
    X, _ = _tiny_dataset()
    clf = _fit_tiny()
    proba = clf.predict_proba(X)
    # probabilities for each row should sum to 1
    assert proba.shape == (4, 2)
    assert np.allclose(proba.sum(axis=1), 1.0)


def test_classifier_fits_training_data():
    X, y = _tiny_dataset()
    clf = _fit_tiny()
    assert clf.score(X, y) == 1.0
    # the numeric feature comes first and wins the tie
    assert clf.tree_.root.rule.feature_name == 'num'
    assert clf.tree_.root.rule.threshold == pytest.approx(2.5)


def test_classifier_rule_export():
    X, y = _tiny_dataset()
    clf = _fit_tiny()
    # trace rule for each sample
    rules = clf.predict_rule(X, feature_names=['num', 'cat'])
    assert len(rules) == len(X)
    assert rules[0] == 'num < 2.5000'
    # export full tree rules
    tree_rules = clf.export_rules(feature_names=['num', 'cat'], class_names=['no', 'yes'])
    assert len(tree_rules) == clf.tree_.n_leaves
    # each exported rule should contain implication symbol
    assert all('=>' in r for r in tree_rules)
    assert any(r.startswith('num >= 2.5000 => yes') for r in tree_rules)


def test_classifier_print_tree(capsys):
    clf = _fit_tiny()
    clf.print_tree(class_names=['no', 'yes'])
    out = capsys.readouterr().out
    assert out.startswith('1) if num >= 2.5000:')
    assert 'Predict yes' in out


def test_classifier_not_fitted_raises():
    clf = CARTClassifier()
    with pytest.raises(ValueError):
        clf.predict([[1, 'A']])
    with pytest.raises(ValueError):
        clf.predict_rule([[1, 'A']])
    with pytest.raises(ValueError):
        clf.export_rules()
    with pytest.raises(ValueError):
        clf.print_tree()


def test_classifier_max_depth():
    X, y = _tiny_dataset()
    # depth 0 keeps the root as the only leaf
    clf = _fit_tiny(max_depth=0)
    preds = clf.predict(X)
    assert preds.shape == y.shape
    assert clf.tree_.n_leaves == 1


def test_classifier_with_missing_values():
    # dataset containing missing values (None)
    X = np.array([[1, 'A'], [2, None], [3, 'B'], [None, 'A']], dtype=object)
    y = np.array([0, 0, 1, 1])
    clf = CARTClassifier(min_split=2, min_bucket=1, cp=0.0,
                         feature_names=['num', 'cat'], categorical_features=[1])
    clf.fit(X, y)
    preds = clf.predict(X)
    # predictions should be of correct length
    assert len(preds) == len(y)
    assert clf.predict([[None, None]]).shape == (1,)


def test_classifier_string_labels_and_positive_label():
    X, _ = _tiny_dataset()
    y = np.array(['yes', 'yes', 'no', 'no'])
    clf = CARTClassifier(min_split=2, min_bucket=1, cp=0.0, feature_names=['num', 'cat'],
                         categorical_features=[1], positive_label='yes')
    clf.fit(X, y)
    assert list(clf.classes_) == ['no', 'yes']
    assert list(clf.predict(X)) == list(y)
    # predict_proba columns follow classes_
    assert np.allclose(clf.predict_proba(X[:1]), [[0.0, 1.0]])


def test_classifier_rejects_multiclass():
    X, _ = _tiny_dataset()
    with pytest.raises(ValueError):
        _fit_tiny().fit(X, np.array([0, 1, 2, 2]))


def test_classifier_empty_input():
    with pytest.raises(EmptyDatasetError):
        CARTClassifier().fit(np.empty((0, 2), dtype=object), np.array([], dtype=int))


def test_classifier_single_class():
    X, _ = _tiny_dataset()
    clf = _fit_tiny().fit(X, np.array([1, 1, 1, 1]))
    assert list(clf.classes_) == [1]
    assert list(clf.predict(X)) == [1, 1, 1, 1]


def test_classifier_feature_importances():
    rng = np.random.default_rng(3)
    X = rng.normal(size=(200, 3))
    y = (X[:, 1] > 0).astype(int)
    clf = CARTClassifier(feature_names=['a', 'b', 'c']).fit(X, y)
    imp = clf.feature_importances_
    assert imp.sum() == pytest.approx(1.0)
    assert int(np.argmax(imp)) == 1


def test_classifier_loss_matrix_shifts_predictions():
    # one feature with no signal: the root leaf decides
    X = np.zeros((8, 1))
    y = np.array([0, 0, 0, 0, 0, 0, 1, 1])
    plain = CARTClassifier(min_split=2, min_bucket=1).fit(X, y)
    costly = CARTClassifier(min_split=2, min_bucket=1, loss_matrix=[[0, 1], [4, 0]]).fit(X, y)
    assert list(plain.predict(X[:1])) == [0]
    assert list(costly.predict(X[:1])) == [1]


def test_classifier_clone_and_params():
    clf = CARTClassifier(cp=0.05, criterion='entropy')
    params = clone(clf).get_params()
    assert params['cp'] == 0.05
    assert params['criterion'] == 'entropy'


def test_classifier_cp_prunes_full_tree():
    rng = np.random.default_rng(5)
    X = rng.normal(size=(150, 2))
    y = (X[:, 0] + rng.normal(scale=0.8, size=150) > 0).astype(int)
    loose = CARTClassifier(min_split=2, min_bucket=1, cp=0.0).fit(X, y)
    tight = CARTClassifier(min_split=2, min_bucket=1, cp=0.05).fit(X, y)
    assert tight.tree_.n_leaves < loose.tree_.n_leaves
    assert loose.tree_.n_leaves == loose.prune_path_[0].tree.n_leaves
