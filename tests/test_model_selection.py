import numpy as np
import pytest
from sklearn.dummy import DummyRegressor
from sklearn.model_selection import cross_val_score

from donorsignal.exceptions import ValidationError
from donorsignal.model_selection import ExpandingWindowSplitter, sequential_split


def test_sequential_split_of_100_at_point_2():
    train, val = sequential_split(100, 0.2)
    np.testing.assert_array_equal(train, np.arange(0, 80))
    np.testing.assert_array_equal(val, np.arange(80, 100))


def test_sequential_split_floors_the_cut():
    train, val = sequential_split(11, 0.25)
    assert len(train) == 8
    assert len(val) == 3


@pytest.mark.parametrize("fraction", [0.0, 1.0, -0.1, 1.5])
def test_sequential_split_rejects_out_of_range_fraction(fraction):
    with pytest.raises(ValidationError, match="validation_split"):
        sequential_split(100, fraction)


def test_sequential_split_rejects_empty_partition():
    with pytest.raises(ValidationError, match="empty partition"):
        sequential_split(1, 0.5)


def test_expanding_window_never_leaks_future_rows():
    X = np.zeros((80, 2))
    splits = list(ExpandingWindowSplitter(n_splits=3).split(X))

    assert len(splits) == 3
    previous_train = 0
    for train, test in splits:
        assert train.max() < test.min()
        assert train[0] == 0
        assert len(train) > previous_train
        previous_train = len(train)


def test_expanding_window_by_groups():
    X = np.zeros((10, 1))
    periods = np.array([1] * 4 + [2] * 3 + [3] * 3)
    splitter = ExpandingWindowSplitter(n_splits=5)
    splits = list(splitter.split(X, groups=periods))

    assert splitter.get_n_splits(groups=periods) == 2
    assert len(splits) == 2
    for train, test in splits:
        assert periods[train].max() < periods[test].min()


def test_expanding_window_errors():
    with pytest.raises(ValueError, match="n_splits"):
        list(ExpandingWindowSplitter(n_splits=0).split(np.zeros((10, 1))))
    with pytest.raises(ValueError, match="walk-forward"):
        list(ExpandingWindowSplitter(n_splits=5).split(np.zeros((3, 1))))
    with pytest.raises(ValueError, match="at least 2 distinct groups"):
        list(ExpandingWindowSplitter().split(np.zeros((3, 1)), groups=[1, 1, 1]))


def test_works_with_cross_val_score():
    rng = np.random.default_rng(0)
    X = rng.normal(size=(60, 2))
    y = rng.normal(size=60)
    scores = cross_val_score(DummyRegressor(), X, y, cv=ExpandingWindowSplitter(n_splits=3))
    assert len(scores) == 3
