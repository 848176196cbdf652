import pytest
import pandas as pd
import numpy as np

from modelkit.data import prepare_dataset


@pytest.fixture(scope="session")
def seed():
    return 42


@pytest.fixture
def raw_malaria_df(seed):
    """
    Small deterministic dataframe resembling the malaria severity data.
    Includes:
      - severity (raw 0/1 label; risk rises away from mid-range age)
      - age, parasite_density, hemoglobin (numeric predictors)
      - sex (categorical predictor)
      - batch (constant column, removed by the zero-variance filter)
    """
    rng = np.random.default_rng(seed)
    n = 150

    age = rng.uniform(1, 80, size=n)
    hemoglobin = rng.normal(loc=11.0, scale=2.0, size=n)
    logit = -1.0 + 0.004 * (age - 40) ** 2 - 0.3 * (hemoglobin - 11.0)
    p = 1.0 / (1.0 + np.exp(-logit))

    df = pd.DataFrame({
        "age": age,
        "parasite_density": rng.lognormal(mean=8.0, sigma=1.0, size=n),
        "hemoglobin": hemoglobin,
        "sex": rng.choice(["female", "male"], size=n),
        "batch": np.ones(n),
        "severity": rng.binomial(1, p),
    })
    return df


@pytest.fixture
def base_config(tmp_path, seed):
    """
    Minimal config for a fast end-to-end run.
    """
    cfg = {
        "experiment": {
            "name": "pytest_malaria",
            "seed": seed,
            "output_dir": str(tmp_path / "runs")
        },
        "data": {
            "dataset_path": "DUMMY.csv",
            "target_column": "severity",
            "positive_class": "1",
            "columns_to_drop": []
        },
        "split": {
            "prop": 0.75,
            "strata": True
        },
        "cross_validation": {
            "n_splits": 3,
            "n_repeats": 1
        },
        "preprocessing": {
            "poly_column": "age",
            "poly_degree": "tune"
        },
        "models": [
            {"type": "logistic_reg"},
            {"type": "decision_tree", "params": {"tree_depth": "tune"}}
        ],
        "tuning": {
            "grid_size": 3,
            "n_jobs": 1,
            "metric": "roc_auc"
        },
        "metrics": ["roc_auc", "accuracy", "sensitivity", "specificity", "brier_class"]
    }
    return cfg


@pytest.fixture
def malaria_df(raw_malaria_df, base_config):
    """Dataset with the label recoded into an event-first categorical."""
    return prepare_dataset(raw_malaria_df, base_config)


@pytest.fixture
def patch_dataset_loader(monkeypatch, raw_malaria_df):
    """
    Monkeypatch load_dataset so experiments don't hit disk or network.
    """
    def _fake_load_dataset(config, dataset_path=None):
        return raw_malaria_df.copy(), "test_dataset.csv"

    monkeypatch.setattr("modelkit.data.load_dataset", _fake_load_dataset)
    monkeypatch.setattr("runners.run_malaria.load_dataset", _fake_load_dataset)
    return _fake_load_dataset


@pytest.fixture
def freeze_time(monkeypatch):
    """
    Make run_dir deterministic by freezing datetime.now().
    """
    import datetime as dt

    class _FixedDT:
        @staticmethod
        def now():
            return dt.datetime(2026, 1, 4, 12, 34, 56)

    monkeypatch.setattr("modelkit.io.datetime", _FixedDT)
    return _FixedDT


@pytest.fixture
def write_yaml(tmp_path):
    import yaml
    def _write(cfg, name="temp.yaml"):
        p = tmp_path / name
        with open(p, "w") as f:
            yaml.safe_dump(cfg, f, default_flow_style=False)
        return str(p)
    return _write
