# Data loading and label preparation utilities

import numpy as np
import pandas as pd

from .exceptions import SchemaError


def load_dataset(config, dataset_path=None):
    """Load the dataset CSV from a local path or URL; `dataset_path` overrides the config."""
    path = dataset_path or config['data'].get('dataset_path')
    if path is None:
        raise ValueError("No dataset given: set data.dataset_path or pass --dataset")

    print(f"Loading dataset: {path}")
    df = pd.read_csv(path)

    return df, path


def recode_label(series: pd.Series, positive_class='1') -> pd.Series:
    """
    Recode a raw 0/1 label into a categorical whose first level is the event.

    Values are compared as strings, so 1, 1.0 and '1' all map to level '1'.
    """
    if series.isnull().any():
        raise ValueError(f"Label '{series.name}' has {int(series.isnull().sum())} missing values")

    def _as_label(v):
        if isinstance(v, (float, np.floating)) and float(v).is_integer():
            v = int(v)
        return str(v)

    labels = series.map(_as_label)
    positive = str(positive_class)
    others = sorted(set(labels) - {positive})
    if positive not in set(labels):
        raise ValueError(f"Positive class '{positive}' not present in label '{series.name}'. Found: {sorted(set(labels))}")
    if len(others) != 1:
        raise ValueError(f"Label '{series.name}' must be binary, found classes {sorted(set(labels))}")

    return pd.Series(
        pd.Categorical(labels, categories=[positive] + others),
        index=series.index, name=series.name,
    )


def prepare_dataset(df, config):
    """
    Drop auxiliary columns and recode the target into an event-first factor.

    Returns:
        DataFrame with the same rows, target recoded
    """
    target = config['data']['target_column']
    positive = config['data'].get('positive_class', '1')

    cols_to_drop = config['data'].get('columns_to_drop', [])
    df = df.drop(columns=[c for c in cols_to_drop if c in df.columns])

    if target not in df.columns:
        raise SchemaError(f"Target column '{target}' not found in dataset. Available: {list(df.columns)}")

    df = df.copy()
    df[target] = recode_label(df[target], positive)
    return df


def validate_data_integrity(df, config):
    """
    Validate data integrity before training.

    Checks:
    - Target present with two classes
    - No infinite values in numeric predictors
    - Every column has at least one non-missing value
    """
    errors = []
    target = config['data']['target_column']

    if target not in df.columns:
        errors.append(f"Target column '{target}' not found")
    else:
        n_classes = df[target].nunique()
        if n_classes != 2:
            errors.append(f"Target '{target}' must have 2 classes, found {n_classes}")

    empty_cols = df.columns[df.isnull().all()].tolist()
    if empty_cols:
        errors.append(f"Columns with no values: {empty_cols}")

    numeric_cols = df.select_dtypes(include=[np.number]).columns
    for col in numeric_cols:
        values = df[col].dropna()
        if not np.isfinite(values).all():
            errors.append(f"Infinite values found in feature: {col}")

    if errors:
        raise ValueError("Data integrity check failed:\n  - " + "\n  - ".join(errors))

    return True


def label_distribution(df, target):
    """Counts and proportions of each label class, in level order."""
    counts = df[target].value_counts(sort=False)
    table = pd.DataFrame({target: counts.index.astype(str), 'n': counts.to_numpy()})
    table['prop'] = table['n'] / table['n'].sum()
    return table
