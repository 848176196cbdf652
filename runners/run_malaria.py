# Malaria severity experiment runner
# Split -> resample -> tune/compare workflows -> finalize -> one evaluation on the test set

import argparse
import random
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np

from modelkit.config_schema import validate_config, ConfigValidationError, TUNE_MARKER
from modelkit.io import load_config, save_results, create_run_dir, save_data_profile
from modelkit.data import load_dataset, prepare_dataset, validate_data_integrity, label_distribution
from modelkit.params import tune
from modelkit.splits import initial_split, vfold_cv
from modelkit.recipes import Recipe, step_poly, step_zv, step_normalize, step_dummy, step_impute_mean
from modelkit.models import MODEL_CONSTRUCTORS
from modelkit.workflow import finalize_workflow
from modelkit.metrics import metric_set, DEFAULT_METRICS, conf_mat, roc_curve
from modelkit.tuning import last_fit
from modelkit.compare import workflow_set, workflow_map, rank_results


def set_seeds(seed):
    """Set all random seeds for reproducibility."""
    random.seed(seed)
    np.random.seed(seed)


def build_recipes(config):
    """
    Named preprocessing recipes from the config.

    'basic' encodes and scales predictors; 'poly' additionally expands
    preprocessing.poly_column into an orthogonal polynomial whose degree may
    be tuned.
    """
    target = config['data']['target_column']
    pre = config.get('preprocessing', {}) or {}

    def _common(recipe):
        if pre.get('impute', True):
            recipe = recipe.add_step(step_impute_mean())
        if pre.get('dummy', True):
            recipe = recipe.add_step(step_dummy())
        if pre.get('zero_variance', True):
            recipe = recipe.add_step(step_zv())
        if pre.get('normalize', True):
            recipe = recipe.add_step(step_normalize())
        return recipe

    recipes = {'basic': _common(Recipe(target))}

    poly_column = pre.get('poly_column')
    if poly_column:
        degree = pre.get('poly_degree', 2)
        if degree == TUNE_MARKER:
            degree = tune('degree')
        poly = Recipe(target)
        if pre.get('impute', True):
            poly = poly.add_step(step_impute_mean([poly_column]))
        recipes['poly'] = _common(poly.add_step(step_poly(poly_column, degree=degree)))

    return recipes


def build_model_specs(config):
    """Named model specs; a parameter set to 'tune' becomes a tune(<name>) marker."""
    specs = {}
    for entry in config['models']:
        model_type = entry['type']
        params = {
            name: tune(name) if value == TUNE_MARKER else value
            for name, value in (entry.get('params') or {}).items()
        }
        name = entry.get('name', model_type)
        if name in specs:
            raise ConfigValidationError(f"Duplicate model name '{name}'; set a distinct 'name' per entry")
        specs[name] = MODEL_CONSTRUCTORS[model_type](**params)
    return specs


def run_malaria(config_path, dataset_path=None, output_dir=None):
    """
    Run the full tuning and comparison experiment.

    Args:
        config_path: Path to YAML config file
        dataset_path: Optional path or URL of the dataset CSV (overrides config)
        output_dir: Optional output directory (overrides config)

    Returns:
        run_dir: Path to experiment output directory
    """
    # Load and validate config
    config = load_config(config_path)

    # Override output_dir if provided
    if output_dir:
        config['experiment']['output_dir'] = output_dir

    try:
        validate_config(config)
    except ConfigValidationError as e:
        print(f"\nCONFIG ERROR:\n{e}")
        raise

    seed = config['experiment']['seed']
    set_seeds(seed)

    target = config['data']['target_column']
    cv_config = config['cross_validation']
    tuning_config = config.get('tuning', {}) or {}
    metric_names = config.get('metrics') or list(DEFAULT_METRICS)
    rank_metric = tuning_config.get('metric', metric_names[0])
    metrics = metric_set(*metric_names)

    print("=" * 60)
    print("MALARIA SEVERITY MODELING EXPERIMENT")
    print("=" * 60)
    print(f"Experiment: {config['experiment']['name']}")
    print(f"Target: {target} (event level '{config['data'].get('positive_class', '1')}')")
    print(f"Seed: {seed}")
    print(f"Rank metric: {rank_metric}")
    print("=" * 60)

    # Load data
    raw, actual_path = load_dataset(config, dataset_path)
    df = prepare_dataset(raw, config)
    validate_data_integrity(df, config)

    print(f"\nDataset shape: {df.shape}")
    print("Class distribution:")
    print(label_distribution(df, target).to_string(index=False))

    # Split; the test rows are only touched by last_fit
    strata = target if config['split'].get('strata', True) else None
    split = initial_split(df, prop=config['split']['prop'], strata=strata, seed=seed)
    print(f"\nSplit: {split}")

    folds = vfold_cv(
        split.training(),
        v=cv_config['n_splits'],
        repeats=cv_config.get('n_repeats', 1),
        strata=strata,
        seed=seed,
    )
    print(f"Resamples: {len(folds)} folds")

    # Compare every recipe x model combination
    wset = workflow_set(build_recipes(config), build_model_specs(config), cross=True)
    workflow_map(
        wset, folds,
        grid=tuning_config.get('grid_size', 10),
        metrics=metrics,
        seed=seed,
        n_jobs=tuning_config.get('n_jobs', 1),
    )
    ranking = rank_results(wset, rank_metric, select_best=True)

    print("\n" + "=" * 60)
    print(f"MODEL RANKING ({rank_metric}, {len(folds)} resamples)")
    print("=" * 60)
    top = ranking[ranking['.metric'] == rank_metric]
    for _, row in top.iterrows():
        print(f"{int(row['rank']):>3d}. {row['wflow_id']:30s} {row['mean']:.4f} ± {row['std_err']:.4f}")

    # Finalize the best workflow and evaluate once on the test set
    best_id = top.iloc[0]['wflow_id']
    result = wset.extract_result(best_id)
    best_params = result.select_best(rank_metric)
    final_wf = finalize_workflow(wset.extract_workflow(best_id), best_params)
    final = last_fit(final_wf, split, metrics=metrics, seed=seed)

    fitted = final.extract_workflow()
    preds = final.collect_predictions()
    prob_cols = [f".pred_{lvl}" for lvl in fitted.levels]
    cm = conf_mat(preds[target], preds['.pred_class'], levels=fitted.levels)
    curve = roc_curve(preds[target], preds[prob_cols], levels=fitted.levels)
    importance = None
    if hasattr(fitted.estimator, 'feature_importances_') or hasattr(fitted.estimator, 'coef_'):
        importance = fitted.variable_importance()

    print("\n" + "=" * 60)
    print(f"TEST SET RESULTS ({best_id})")
    print("=" * 60)
    for _, row in final.collect_metrics().iterrows():
        print(f"{row['.metric']:12s} {row['.estimate']:.4f}")
    print("\nConfusion matrix:")
    print(cm.to_string())

    # Create run directory
    run_dir = create_run_dir(config)

    # Save data profile (dataset fingerprint)
    save_data_profile(run_dir, df, split, target, actual_path)

    params_out = {k: v for k, v in best_params.iloc[0].to_dict().items() if k != '.config'}
    results = {
        'best_workflow': best_id,
        'best_params': {k: (v.item() if hasattr(v, 'item') else v) for k, v in params_out.items()},
        'tuning': result.collect_metrics(),
        'ranking': ranking,
        'test_metrics': final.collect_metrics(),
        'test_predictions': preds,
        'confusion_matrix': cm,
        'roc_curve': curve,
        'importance': importance,
        'fitted': fitted,
    }
    save_results(run_dir, config, results)

    print("\n" + "=" * 60)
    print("Experiment complete!")
    print("=" * 60)

    return run_dir


def main():
    parser = argparse.ArgumentParser(
        description='Tune, compare and evaluate classifiers for malaria severity'
    )
    parser.add_argument('--config', '-c', type=str, default='configs/malaria.yaml',
                       help='Path to config YAML file')
    parser.add_argument('--dataset', '-d', type=str, default=None,
                       help='Path or URL of the dataset CSV (overrides config)')
    parser.add_argument('--output-dir', '-o', type=str, default=None,
                       help='Output directory (overrides config)')
    args = parser.parse_args()

    run_malaria(args.config, args.dataset, args.output_dir)


if __name__ == "__main__":
    main()
