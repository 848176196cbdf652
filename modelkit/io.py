# I/O utilities for the modeling pipeline
# Config loading, result saving, run directory management

import os
import json
import hashlib
from datetime import datetime

import joblib
import numpy as np
import yaml
import pandas as pd


def load_config(config_path):
    """Load YAML configuration file."""
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f)

    if config is None:
        raise ValueError(f"Config file is empty or invalid: {config_path}")

    return config


def config_hash(config):
    """Generate deterministic hash of config for run naming."""
    config_str = json.dumps(config, sort_keys=True)
    return hashlib.md5(config_str.encode()).hexdigest()[:8]


def dataset_hash(df):
    """Generate hash of dataset content for fingerprinting."""
    # Hash based on shape and sample of data
    content = f"{df.shape}_{df.columns.tolist()}_{df.head(10).to_json()}_{df.tail(10).to_json()}"
    return hashlib.md5(content.encode()).hexdigest()[:12]


def create_run_dir(config, output_dir=None):
    """Create unique run directory for experiment outputs."""
    output_dir = output_dir or config['experiment'].get('output_dir', 'runs')
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    cfg_hash = config_hash(config)
    run_name = f"{config['experiment']['name']}_{timestamp}_{cfg_hash}"
    run_dir = os.path.join(output_dir, run_name)
    os.makedirs(run_dir, exist_ok=True)
    return run_dir


def _records(table):
    """DataFrame -> JSON-safe list of dicts (NaN becomes null)."""
    clean = table.astype(object).where(pd.notna(table), None)
    records = clean.to_dict(orient='records')
    for row in records:
        for k, v in row.items():
            if isinstance(v, np.generic):
                row[k] = v.item()
    return records


def save_results(run_dir, config, results):
    """
    Save all experiment artifacts to run directory.

    Args:
        results: dict with keys 'tuning' (collected metrics), 'ranking',
                 'best_params', 'test_metrics', 'test_predictions',
                 'confusion_matrix', 'roc_curve', 'importance' (optional)
                 and 'fitted' (the final fitted workflow)
    """
    # Save config
    with open(os.path.join(run_dir, 'config.yaml'), 'w') as f:
        yaml.dump(config, f, default_flow_style=False)

    results_json = {
        'experiment_name': config['experiment']['name'],
        'seed': config['experiment']['seed'],
        'target_column': config['data']['target_column'],
        'best_workflow': results.get('best_workflow'),
        'best_params': results.get('best_params', {}),
        'ranking': _records(results['ranking']),
        'test_metrics': _records(results['test_metrics']),
    }
    with open(os.path.join(run_dir, 'metrics.json'), 'w') as f:
        json.dump(results_json, f, indent=2)

    tables = {
        'tuning_metrics.csv': results.get('tuning'),
        'model_ranking.csv': results.get('ranking'),
        'test_predictions.csv': results.get('test_predictions'),
        'roc_curve.csv': results.get('roc_curve'),
        'variable_importance.csv': results.get('importance'),
    }
    for name, table in tables.items():
        if table is not None:
            table.to_csv(os.path.join(run_dir, name), index=False)
    if results.get('confusion_matrix') is not None:
        results['confusion_matrix'].to_csv(os.path.join(run_dir, 'confusion_matrix.csv'))

    # Save the final fitted workflow
    if results.get('fitted') is not None:
        model_path = os.path.join(run_dir, 'model.joblib')
        joblib.dump(results['fitted'], model_path)
        print(f"Model saved to: {model_path}")

    print(f"Results saved to: {run_dir}")
    return run_dir


def save_data_profile(run_dir, df, split, target, dataset_path):
    """Save dataset fingerprint/profile for reproducibility tracking."""
    y = df[target]
    profile = {
        'dataset_path': str(dataset_path),
        'dataset_hash': dataset_hash(df),
        'total_rows': len(df),
        'total_columns': len(df.columns),
        'train_rows': len(split.train_index),
        'test_rows': len(split.test_index),
        'features_used': [c for c in df.columns if c != target],
        'target_column': target,
        'target_levels': [str(lvl) for lvl in y.cat.categories] if isinstance(y.dtype, pd.CategoricalDtype) else None,
        'value_counts': {str(k): int(v) for k, v in y.value_counts().items()},
        'missing_values': int(df.isnull().sum().sum()),
        'timestamp': datetime.now().isoformat()
    }

    with open(os.path.join(run_dir, 'data_profile.json'), 'w') as f:
        json.dump(profile, f, indent=2)

    return profile
