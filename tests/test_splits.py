import pytest
import numpy as np
import pandas as pd

from modelkit.exceptions import SchemaError, StratificationError, TestSetReuseError
from modelkit.splits import initial_split, vfold_cv


@pytest.mark.parametrize("prop", [0.5, 0.7, 0.75, 0.9])
@pytest.mark.parametrize("split_seed", [0, 1, 123])
def test_split_partitions_all_rows(malaria_df, prop, split_seed):
    split = initial_split(malaria_df, prop=prop, seed=split_seed)
    train, test = split.training(), split.peek_testing()

    assert len(train) + len(test) == len(malaria_df)
    assert set(train.index).isdisjoint(set(test.index))
    assert set(train.index) | set(test.index) == set(malaria_df.index)
    assert len(train) == int(np.floor(prop * len(malaria_df)))


@pytest.mark.parametrize("prop", [0.6, 0.75, 0.8])
def test_stratified_split_preserves_class_proportions(malaria_df, prop, seed):
    split = initial_split(malaria_df, prop=prop, strata="severity", seed=seed)
    train = split.training()

    overall = malaria_df["severity"].value_counts(normalize=True)
    in_train = train["severity"].value_counts(normalize=True)
    for cls in overall.index:
        assert abs(in_train[cls] - overall[cls]) <= 1.0 / len(train)


def test_same_seed_same_split(malaria_df):
    a = initial_split(malaria_df, prop=0.75, strata="severity", seed=7)
    b = initial_split(malaria_df, prop=0.75, strata="severity", seed=7)
    c = initial_split(malaria_df, prop=0.75, strata="severity", seed=8)

    assert np.array_equal(a.train_index, b.train_index)
    assert not np.array_equal(a.train_index, c.train_index)


def test_stratum_with_single_record_raises(malaria_df):
    df = malaria_df.copy()
    df["group"] = "common"
    df.loc[df.index[0], "group"] = "rare"
    with pytest.raises(StratificationError, match="rare"):
        initial_split(df, prop=0.75, strata="group", seed=1)


def test_missing_strata_column_raises(malaria_df):
    with pytest.raises(SchemaError, match="not_a_column"):
        initial_split(malaria_df, prop=0.75, strata="not_a_column")


@pytest.mark.parametrize("prop", [0, 1, -0.2, 1.5])
def test_invalid_prop_raises(malaria_df, prop):
    with pytest.raises(ValueError, match="prop"):
        initial_split(malaria_df, prop=prop)


def test_testing_marks_split_consumed(malaria_df):
    split = initial_split(malaria_df, prop=0.75, seed=1)
    split.peek_testing()
    assert not split.test_consumed

    test = split.testing()
    assert split.test_consumed
    assert len(test) == len(split.test_index)
    with pytest.raises(TestSetReuseError):
        split.testing()
    # inspection stays available after consumption
    assert len(split.peek_testing()) == len(test)


@pytest.mark.parametrize("split_seed", range(40))
def test_stratified_split_keeps_rare_class_on_both_sides(split_seed):
    df = pd.DataFrame({
        "x": np.arange(100, dtype=float),
        "g": ["rare"] * 2 + ["common"] * 98,
    })
    split = initial_split(df, prop=0.75, strata="g", seed=split_seed)
    train, test = split.training(), split.peek_testing()

    assert (train["g"] == "rare").sum() == 1
    assert (test["g"] == "rare").sum() == 1
    # floor(0.75 * 98)
    assert (train["g"] == "common").sum() == 73
    assert len(train) + len(test) == len(df)


@pytest.mark.parametrize("strata", [None, "severity"])
def test_vfold_each_row_validated_once(malaria_df, strata, seed):
    folds = vfold_cv(malaria_df, v=5, strata=strata, seed=seed)
    assert len(folds) == 5

    counts = np.zeros(len(malaria_df), dtype=int)
    for fold in folds:
        assert set(fold.train_index).isdisjoint(set(fold.val_index))
        assert len(fold.train_index) + len(fold.val_index) == len(malaria_df)
        counts[fold.val_index] += 1
    assert (counts == 1).all()


def test_repeated_vfold_validates_once_per_repeat(malaria_df, seed):
    folds = vfold_cv(malaria_df, v=4, repeats=3, strata="severity", seed=seed)
    assert len(folds) == 12

    for repeat in ["Repeat1", "Repeat2", "Repeat3"]:
        counts = np.zeros(len(malaria_df), dtype=int)
        for fold in folds:
            if fold.repeat == repeat:
                counts[fold.val_index] += 1
        assert (counts == 1).all()


def test_stratified_vfold_keeps_class_balance(malaria_df, seed):
    folds = vfold_cv(malaria_df, v=5, strata="severity", seed=seed)
    overall = (malaria_df["severity"] == "1").mean()
    for fold in folds:
        val = folds.assessment(fold)
        # each fold's share of the event class stays close to the overall share
        assert abs((val["severity"] == "1").mean() - overall) <= 2.0 / len(val)


def test_stratified_vfold_class_too_small_raises(malaria_df):
    df = malaria_df.copy()
    df["group"] = "common"
    df.loc[df.index[:2], "group"] = "rare"
    with pytest.raises(StratificationError, match="rare"):
        vfold_cv(df, v=5, strata="group", seed=1)


def test_vfold_rejects_bad_v(malaria_df):
    with pytest.raises(ValueError):
        vfold_cv(malaria_df, v=1)
    with pytest.raises(ValueError):
        vfold_cv(malaria_df.head(3), v=5)


def test_fold_ids_are_stable(malaria_df, seed):
    folds = vfold_cv(malaria_df, v=3, seed=seed)
    assert [f.id for f in folds] == ["Fold01", "Fold02", "Fold03"]
    assert all(f.repeat is None for f in folds)
