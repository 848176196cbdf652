# Config schema validation
# Validates config structure, types, model and metric names

from .metrics import METRICS
from .models import SUPPORTED_MODELS

REQUIRED_KEYS = {
    'experiment': ['name', 'seed'],
    'data': ['target_column'],
    'split': ['prop'],
    'cross_validation': ['n_splits'],
    'models': [],
}

# Value marking a hyperparameter to be tuned
TUNE_MARKER = 'tune'

ALLOWED_PREPROCESSING_KEYS = ['poly_column', 'poly_degree', 'normalize', 'dummy', 'impute', 'zero_variance']


class ConfigValidationError(Exception):
    """Raised when config validation fails."""
    pass


def validate_config(config):
    """
    Validate experiment configuration.

    Args:
        config: dict - Configuration dictionary

    Raises:
        ConfigValidationError if validation fails
    """
    errors = []

    # Check required top-level keys
    for section, required_keys in REQUIRED_KEYS.items():
        if section not in config:
            errors.append(f"Missing required section: '{section}'")
            continue
        for key in required_keys:
            if key not in config[section]:
                errors.append(f"Missing required key: '{section}.{key}'")

    if errors:
        raise ConfigValidationError("Config validation failed:\n  - " + "\n  - ".join(errors))

    # Validate types
    if not isinstance(config['experiment'].get('seed'), int):
        errors.append("experiment.seed must be an integer")

    prop = config['split'].get('prop')
    if not isinstance(prop, (int, float)) or not 0 < prop < 1:
        errors.append(f"split.prop must be a number in (0, 1), got {prop!r}")

    cv = config['cross_validation']
    if not isinstance(cv.get('n_splits'), int):
        errors.append("cross_validation.n_splits must be an integer")
    elif cv['n_splits'] < 2:
        errors.append("cross_validation.n_splits must be >= 2")
    n_repeats = cv.get('n_repeats', 1)
    if not isinstance(n_repeats, int) or n_repeats < 1:
        errors.append("cross_validation.n_repeats must be an integer >= 1")

    # Validate models
    models = config['models']
    if not isinstance(models, list) or not models:
        errors.append("models must be a non-empty list")
    else:
        for i, entry in enumerate(models):
            model_type = entry.get('type') if isinstance(entry, dict) else None
            if model_type not in SUPPORTED_MODELS:
                errors.append(f"Invalid model type '{model_type}' in models[{i}]. Allowed: {list(SUPPORTED_MODELS)}")
                continue
            if 'classification' not in SUPPORTED_MODELS[model_type]:
                errors.append(f"Model '{model_type}' in models[{i}] cannot be used for classification")
            params = entry.get('params', {}) or {}
            if not isinstance(params, dict):
                errors.append(f"models[{i}].params must be a mapping")

    # Validate preprocessing
    preprocessing = config.get('preprocessing', {}) or {}
    unknown = [k for k in preprocessing if k not in ALLOWED_PREPROCESSING_KEYS]
    if unknown:
        errors.append(f"Unknown preprocessing keys: {unknown}. Allowed: {ALLOWED_PREPROCESSING_KEYS}")
    degree = preprocessing.get('poly_degree')
    if degree is not None and degree != TUNE_MARKER and not (isinstance(degree, int) and degree >= 1):
        errors.append(f"preprocessing.poly_degree must be an integer >= 1 or '{TUNE_MARKER}', got {degree!r}")
    if degree is not None and not preprocessing.get('poly_column'):
        errors.append("preprocessing.poly_degree requires preprocessing.poly_column")

    # Validate metrics
    metric_names = config.get('metrics', []) or []
    bad_metrics = [m for m in metric_names if m not in METRICS]
    if bad_metrics:
        errors.append(f"Unknown metrics {bad_metrics}. Allowed: {list(METRICS)}")

    tuning = config.get('tuning', {}) or {}
    rank_metric = tuning.get('metric')
    if rank_metric is not None:
        if rank_metric not in METRICS:
            errors.append(f"Unknown tuning.metric '{rank_metric}'. Allowed: {list(METRICS)}")
        elif metric_names and rank_metric not in metric_names:
            errors.append(f"tuning.metric '{rank_metric}' must be one of the configured metrics {metric_names}")
    grid_size = tuning.get('grid_size', 10)
    if not isinstance(grid_size, int) or grid_size < 1:
        errors.append("tuning.grid_size must be an integer >= 1")

    if errors:
        raise ConfigValidationError("Config validation failed:\n  - " + "\n  - ".join(errors))

    return True
