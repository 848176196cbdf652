# modelkit package
# Split / recipe / workflow / tune / compare pipeline for binary classifiers

from .exceptions import (
    SchemaError, StratificationError, UnresolvedParameterError, PipelineStateError, TestSetReuseError
)
from .config_schema import validate_config, ConfigValidationError
from .io import load_config, save_results, create_run_dir, save_data_profile
from .data import load_dataset, prepare_dataset, recode_label, validate_data_integrity, label_distribution
from .params import tune, Tune, Range, grid_regular, grid_random
from .splits import initial_split, vfold_cv, Split, FoldSet
from .recipes import (
    Recipe, prep, bake, juice, step_poly, step_zv, step_normalize, step_dummy, step_impute_mean
)
from .models import (
    ModelSpec, build_estimator, logistic_reg, linear_reg, decision_tree, rand_forest, boost_tree,
    SUPPORTED_MODELS, MODEL_CONSTRUCTORS
)
from .workflow import Workflow, FittedWorkflow, fit_workflow, finalize_workflow
from .metrics import (
    metric_set, conf_mat, accuracy, sensitivity, specificity, precision, f_meas, kap,
    brier_class, mn_log_loss, roc_curve, roc_auc, METRICS
)
from .tuning import TuningResult, LastFitResult, fit_resamples, tune_grid, last_fit
from .compare import WorkflowSet, workflow_set, workflow_map, rank_results

__all__ = [
    'SchemaError', 'StratificationError', 'UnresolvedParameterError', 'PipelineStateError', 'TestSetReuseError',
    'validate_config', 'ConfigValidationError',
    'load_config', 'save_results', 'create_run_dir', 'save_data_profile',
    'load_dataset', 'prepare_dataset', 'recode_label', 'validate_data_integrity', 'label_distribution',
    'tune', 'Tune', 'Range', 'grid_regular', 'grid_random',
    'initial_split', 'vfold_cv', 'Split', 'FoldSet',
    'Recipe', 'prep', 'bake', 'juice',
    'step_poly', 'step_zv', 'step_normalize', 'step_dummy', 'step_impute_mean',
    'ModelSpec', 'build_estimator', 'logistic_reg', 'linear_reg', 'decision_tree', 'rand_forest', 'boost_tree',
    'SUPPORTED_MODELS', 'MODEL_CONSTRUCTORS',
    'Workflow', 'FittedWorkflow', 'fit_workflow', 'finalize_workflow',
    'metric_set', 'conf_mat', 'accuracy', 'sensitivity', 'specificity', 'precision', 'f_meas', 'kap',
    'brier_class', 'mn_log_loss', 'roc_curve', 'roc_auc', 'METRICS',
    'TuningResult', 'LastFitResult', 'fit_resamples', 'tune_grid', 'last_fit',
    'WorkflowSet', 'workflow_set', 'workflow_map', 'rank_results',
]
