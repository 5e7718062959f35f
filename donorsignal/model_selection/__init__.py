"""
donorsignal.model_selection
===========================
Order-preserving splitters for donor training data.

Training data for donor models is ordered in time, so random shuffling
leaks future giving behaviour into the fit.  Both helpers here keep the
dataset order intact:

* :func:`sequential_split`: the single train/validation cut used by the
  training pipeline.
* :class:`ExpandingWindowSplitter`: walk-forward cross-validation on the
  training portion, compatible with :func:`sklearn.model_selection.cross_val_score`.

Typical usage
-------------
>>> import numpy as np
>>> from donorsignal.model_selection import sequential_split, ExpandingWindowSplitter
>>> train_idx, val_idx = sequential_split(100, 0.2)
>>> int(train_idx[-1]), int(val_idx[0])
(79, 80)
>>> splitter = ExpandingWindowSplitter(n_splits=3)
>>> [len(test) for _, test in splitter.split(np.zeros((80, 2)))]
[20, 20, 20]
"""

from __future__ import annotations

import math
from typing import Tuple

import numpy as np
from sklearn.model_selection import BaseCrossValidator
from sklearn.utils.validation import column_or_1d

from donorsignal.exceptions import ValidationError
from donorsignal.utils._validation import validate_validation_split

__all__ = ["sequential_split", "ExpandingWindowSplitter"]


def sequential_split(n_samples: int, validation_split: float) -> Tuple[np.ndarray, np.ndarray]:
    """Cut ``range(n_samples)`` at ``floor(n_samples * (1 - validation_split))``.

    Parameters
    ----------
    n_samples : int
        Length of the ordered dataset.
    validation_split : float
        Trailing share held out for validation, strictly in (0, 1).

    Returns
    -------
    train_idx, val_idx : ndarray of int
        Contiguous index ranges ``[0, cut)`` and ``[cut, n_samples)``.

    Raises
    ------
    ValidationError
        If ``validation_split`` is out of range or either side would be empty.
    """
    validate_validation_split(validation_split)
    cut = math.floor(n_samples * (1.0 - validation_split))
    if cut <= 0 or cut >= n_samples:
        raise ValidationError(
            f"validation_split={validation_split} leaves an empty partition "
            f"for a dataset of {n_samples} samples."
        )
    indices = np.arange(n_samples)
    return indices[:cut], indices[cut:]


class ExpandingWindowSplitter(BaseCrossValidator):
    """Walk-forward cross-validator over ordered samples.

    Without ``groups`` the samples are cut into ``n_splits + 1`` contiguous
    blocks of (almost) equal size; fold ``i`` trains on blocks ``0..i`` and
    tests on block ``i + 1``.  With ``groups`` (for example a period label
    per sample) the blocks are the distinct group values in sorted order,
    and the last ``n_splits`` groups are used as test sets.

    Parameters
    ----------
    n_splits : int, default=3
        Number of folds.  Must be ``>= 1``.
    min_train_size : int, default=1
        Folds whose training window is smaller than this are skipped.

    Raises
    ------
    ValueError
        During :meth:`split` if there are too few samples or groups for a
        single fold.

    Examples
    --------
    >>> import numpy as np
    >>> X = np.zeros((10, 1))
    >>> periods = np.array([1] * 4 + [2] * 3 + [3] * 3)
    >>> for train, test in ExpandingWindowSplitter(n_splits=2).split(X, groups=periods):
    ...     print(train.max(), test.min())
    3 4
    6 7
    """

    def __init__(self, n_splits: int = 3, min_train_size: int = 1) -> None:
        self.n_splits = n_splits
        self.min_train_size = min_train_size

    def split(self, X, y=None, groups=None):
        """Generate ``(train_indices, test_indices)`` arrays.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Only the number of rows is used.
        y : ignored
        groups : array-like of shape (n_samples,), optional
            Ordered period labels.

        Yields
        ------
        train, test : ndarray of int
        """
        if int(self.n_splits) < 1:
            raise ValueError(f"`n_splits` must be >= 1, got {self.n_splits}.")

        n_samples = _n_samples(X)
        indices = np.arange(n_samples)

        if groups is None:
            n_blocks = int(self.n_splits) + 1
            if n_samples < n_blocks:
                raise ValueError(
                    f"Cannot make {self.n_splits} walk-forward folds from "
                    f"{n_samples} samples."
                )
            bounds = np.linspace(0, n_samples, n_blocks + 1).astype(int)
            for i in range(1, n_blocks):
                train = indices[: bounds[i]]
                test = indices[bounds[i] : bounds[i + 1]]
                if len(train) >= self.min_train_size:
                    yield train, test
            return

        groups = column_or_1d(np.asarray(groups))
        if len(groups) != n_samples:
            raise ValueError(
                f"`groups` length ({len(groups)}) must match the number of "
                f"samples in X ({n_samples})."
            )
        unique_groups = np.sort(np.unique(groups))
        if len(unique_groups) < 2:
            raise ValueError(
                f"ExpandingWindowSplitter requires at least 2 distinct groups, "
                f"found {len(unique_groups)}."
            )
        n_splits = min(int(self.n_splits), len(unique_groups) - 1)
        for test_group in unique_groups[-n_splits:]:
            train_mask = groups < test_group
            if train_mask.sum() < self.min_train_size:
                continue
            yield indices[train_mask], indices[groups == test_group]

    def get_n_splits(self, X=None, y=None, groups=None) -> int:
        """Number of folds :meth:`split` will attempt."""
        if groups is not None:
            n_groups = len(np.unique(np.asarray(groups)))
            return min(int(self.n_splits), max(0, n_groups - 1))
        return int(self.n_splits)

    def _iter_test_indices(self, X=None, y=None, groups=None):
        for _, test in self.split(X, y, groups):
            yield test


def _n_samples(X) -> int:
    if X is None:
        raise ValueError("X must not be None.")
    try:
        return X.shape[0]
    except AttributeError:
        return len(X)
