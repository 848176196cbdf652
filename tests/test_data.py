import pytest
import copy
import numpy as np
import pandas as pd

from modelkit.data import recode_label, prepare_dataset, validate_data_integrity, label_distribution
from modelkit.exceptions import SchemaError


@pytest.mark.parametrize("raw", [[1, 0, 1], [1.0, 0.0, 1.0], ["1", "0", "1"]])
def test_recode_label_puts_event_first(raw):
    out = recode_label(pd.Series(raw, name="severity"))
    assert list(out.cat.categories) == ["1", "0"]
    assert list(out.astype(str)) == ["1", "0", "1"]


def test_recode_label_custom_positive_class():
    out = recode_label(pd.Series(["yes", "no", "no"]), positive_class="yes")
    assert list(out.cat.categories) == ["yes", "no"]


def test_recode_label_rejects_missing_values():
    with pytest.raises(ValueError, match="missing"):
        recode_label(pd.Series([1, np.nan, 0], name="severity"))


def test_recode_label_rejects_absent_positive_class():
    with pytest.raises(ValueError, match="Positive class"):
        recode_label(pd.Series([0, 0, 2]))


def test_recode_label_rejects_multiclass():
    with pytest.raises(ValueError, match="binary"):
        recode_label(pd.Series([0, 1, 2]))


def test_prepare_dataset_keeps_rows_and_drops_columns(raw_malaria_df, base_config):
    cfg = copy.deepcopy(base_config)
    cfg["data"]["columns_to_drop"] = ["batch", "not_present"]
    df = prepare_dataset(raw_malaria_df, cfg)

    assert len(df) == len(raw_malaria_df)
    assert "batch" not in df.columns
    assert isinstance(df["severity"].dtype, pd.CategoricalDtype)
    # input frame is untouched
    assert "batch" in raw_malaria_df.columns
    assert raw_malaria_df["severity"].dtype.kind == "i"


def test_prepare_dataset_missing_target(raw_malaria_df, base_config):
    with pytest.raises(SchemaError, match="severity"):
        prepare_dataset(raw_malaria_df.drop(columns=["severity"]), base_config)


def test_integrity_passes_on_clean_data(malaria_df, base_config):
    assert validate_data_integrity(malaria_df, base_config)


def test_integrity_rejects_infinite_values(malaria_df, base_config):
    df = malaria_df.copy()
    df.loc[df.index[0], "hemoglobin"] = np.inf
    with pytest.raises(ValueError, match="Infinite values found in feature: hemoglobin"):
        validate_data_integrity(df, base_config)


def test_integrity_rejects_empty_column(malaria_df, base_config):
    df = malaria_df.copy()
    df["empty"] = np.nan
    with pytest.raises(ValueError, match="no values"):
        validate_data_integrity(df, base_config)


def test_label_distribution(malaria_df):
    table = label_distribution(malaria_df, "severity")
    assert list(table["severity"]) == ["1", "0"]
    assert table["n"].sum() == len(malaria_df)
    assert table["prop"].sum() == pytest.approx(1.0)
