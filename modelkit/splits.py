# Train/test splitting and k-fold resampling

from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import pandas as pd
from sklearn.model_selection import (
    KFold, RepeatedKFold, RepeatedStratifiedKFold, StratifiedKFold, train_test_split
)

from .exceptions import SchemaError, StratificationError, TestSetReuseError


def _strata_values(data, strata, min_count, what):
    if strata not in data.columns:
        raise SchemaError(f"Strata column '{strata}' not found in data. Available: {list(data.columns)}")
    values = data[strata]
    if values.isnull().any():
        raise StratificationError(f"Strata column '{strata}' contains missing values")
    counts = values.value_counts()
    counts = counts[counts > 0]
    small = counts[counts < min_count]
    if len(small) > 0:
        cls = small.index[0]
        raise StratificationError(
            f"Class '{cls}' of '{strata}' has {int(small.iloc[0])} record(s); "
            f"at least {min_count} are needed to {what}"
        )
    return values.astype(str).to_numpy()


@dataclass
class Split:
    """
    A partition of `data` into train and test rows (positional indices).

    `testing()` hands out the test rows once and marks the split consumed;
    a second call raises TestSetReuseError. `peek_testing()` reads them
    without recording anything, for inspection only.
    """
    data: pd.DataFrame
    train_index: np.ndarray
    test_index: np.ndarray
    strata: Optional[str] = None
    seed: Optional[int] = None
    test_consumed: bool = field(default=False)

    def training(self) -> pd.DataFrame:
        return self.data.iloc[self.train_index]

    def testing(self) -> pd.DataFrame:
        if self.test_consumed:
            raise TestSetReuseError(
                "The test subset of this split has already been used for evaluation. "
                "Create a fresh split to evaluate again."
            )
        self.test_consumed = True
        return self.peek_testing()

    def peek_testing(self) -> pd.DataFrame:
        return self.data.iloc[self.test_index]

    def __repr__(self):
        return f"<Training/Testing/Total> <{len(self.train_index)}/{len(self.test_index)}/{len(self.data)}>"


def _stratified_train_positions(stratify, prop, seed):
    # per class: floor(prop * n_c) training records, at least one on each side
    rng = np.random.default_rng(seed)
    positions = np.arange(len(stratify))
    train = []
    for cls in np.unique(stratify):
        members = positions[stratify == cls]
        n_c = len(members)
        n_train_c = min(max(int(np.floor(prop * n_c)), 1), n_c - 1)
        train.append(rng.permutation(members)[:n_train_c])
    return np.concatenate(train)


def initial_split(data: pd.DataFrame, prop=0.75, strata=None, seed=None) -> Split:
    """
    Split rows into train and test subsets.

    Args:
        prop: fraction of rows for training, strictly between 0 and 1
        strata: optional column; each of its classes contributes
                floor(prop * n_c) training rows (at least one row per side)
        seed: random seed; the same seed gives the same split

    Raises:
        StratificationError if a stratum has fewer than 2 records
    """
    if not 0 < prop < 1:
        raise ValueError(f"prop must be in (0, 1), got {prop}")
    n = len(data)
    positions = np.arange(n)

    if strata is not None:
        stratify = _strata_values(data, strata, 2, "split")
        train_idx = np.sort(_stratified_train_positions(stratify, prop, seed))
        test_idx = np.setdiff1d(positions, train_idx)
        return Split(data, train_idx, test_idx, strata=strata, seed=seed)

    n_train = int(np.floor(prop * n))
    n_test = n - n_train
    if n_train == 0 or n_test == 0:
        raise ValueError(f"prop={prop} on {n} rows leaves an empty train or test subset")

    train_idx, test_idx = train_test_split(
        positions, train_size=n_train, test_size=n_test, random_state=seed, shuffle=True
    )
    return Split(data, np.sort(train_idx), np.sort(test_idx), strata=strata, seed=seed)


@dataclass
class Fold:
    id: str
    repeat: Optional[str]
    train_index: np.ndarray
    val_index: np.ndarray

    @property
    def key(self):
        return f"{self.repeat}/{self.id}" if self.repeat else self.id


@dataclass
class FoldSet:
    data: pd.DataFrame
    folds: List[Fold]
    v: int
    repeats: int
    strata: Optional[str] = None

    def __len__(self):
        return len(self.folds)

    def __iter__(self):
        return iter(self.folds)

    def __getitem__(self, i):
        return self.folds[i]

    def analysis(self, fold: Fold) -> pd.DataFrame:
        return self.data.iloc[fold.train_index]

    def assessment(self, fold: Fold) -> pd.DataFrame:
        return self.data.iloc[fold.val_index]


def _validate_fold(train_idx, val_idx):
    train_set = set(train_idx)
    val_set = set(val_idx)
    if not train_set.isdisjoint(val_set):
        overlap = train_set.intersection(val_set)
        raise ValueError(f"CV LEAK: Train/val indices overlap! {len(overlap)} shared indices")


def vfold_cv(data: pd.DataFrame, v=10, repeats=1, strata=None, seed=None) -> FoldSet:
    """
    V-fold cross-validation folds, optionally repeated and stratified.

    Every row is in exactly one assessment (validation) set per repeat.
    """
    n = len(data)
    if v < 2:
        raise ValueError(f"v must be >= 2, got {v}")
    if v > n:
        raise ValueError(f"v ({v}) cannot exceed the number of rows ({n})")
    if repeats < 1:
        raise ValueError(f"repeats must be >= 1, got {repeats}")

    positions = np.arange(n)
    if strata is not None:
        y = _strata_values(data, strata, v, f"build {v} stratified folds")
        if repeats == 1:
            cv = StratifiedKFold(n_splits=v, shuffle=True, random_state=seed)
        else:
            cv = RepeatedStratifiedKFold(n_splits=v, n_repeats=repeats, random_state=seed)
        splits = cv.split(positions, y)
    else:
        if repeats == 1:
            cv = KFold(n_splits=v, shuffle=True, random_state=seed)
        else:
            cv = RepeatedKFold(n_splits=v, n_repeats=repeats, random_state=seed)
        splits = cv.split(positions)

    width = len(str(v))
    folds = []
    for i, (train_idx, val_idx) in enumerate(splits):
        _validate_fold(train_idx, val_idx)
        fold_id = f"Fold{(i % v) + 1:0{max(2, width)}d}"
        repeat_id = f"Repeat{i // v + 1}" if repeats > 1 else None
        folds.append(Fold(fold_id, repeat_id, np.asarray(train_idx), np.asarray(val_idx)))

    return FoldSet(data=data, folds=folds, v=v, repeats=repeats, strata=strata)
