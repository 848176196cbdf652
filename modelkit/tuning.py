# Resampled evaluation, grid search and the final train/test fit

from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from .exceptions import UnresolvedParameterError
from .metrics import MetricSet, default_metric_set, metric_direction
from .params import candidate_rows, default_range, grid_random
from .splits import FoldSet, Split
from .workflow import FittedWorkflow, Workflow, finalize_workflow, fit_workflow


def _evaluate_fold(workflow, bindings, config_id, fold, resamples, metrics, seed, save_pred):
    """Fit one candidate on one fold's analysis rows and score its assessment rows."""
    wf = workflow.bind(bindings)
    fitted = fit_workflow(wf, resamples.analysis(fold), seed=seed)
    if fitted.mode != 'classification':
        raise ValueError("Resampled metrics are defined for classification workflows only")
    assessment = resamples.assessment(fold)
    preds = fitted.augment(assessment)
    scores = metrics(preds, truth=wf.outcome, levels=fitted.levels)

    keys = dict(bindings)
    keys.update({'.config': config_id, 'id': fold.id, 'repeat': fold.repeat})
    for k, v in keys.items():
        scores[k] = v

    pred_rows = None
    if save_pred:
        pred_cols = ['.pred_class'] + [f".pred_{lvl}" for lvl in fitted.levels]
        pred_rows = preds[pred_cols + [wf.outcome]].copy()
        pred_rows['.row'] = fold.val_index
        for k, v in keys.items():
            pred_rows[k] = v
    return scores, pred_rows


def _metric_maximize(metric, maximize):
    if maximize is not None:
        return bool(maximize)
    return metric_direction(metric) == 'maximize'


@dataclass
class TuningResult:
    """
    Per-fold metric estimates for every candidate.

    `metrics` is a long table with one row per (candidate, fold, metric):
    parameter columns, `.config`, `id`, `repeat`, `.metric`, `.estimator`,
    `.estimate`.
    """
    param_names: List[str]
    metrics: pd.DataFrame
    predictions: Optional[pd.DataFrame] = None
    workflow: Optional[Workflow] = None

    def collect_metrics(self, summarize=True) -> pd.DataFrame:
        if not summarize:
            return self.metrics.copy()
        keys = self.param_names + ['.metric', '.estimator', '.config']
        grouped = self.metrics.groupby(keys, dropna=False, sort=False)['.estimate']
        summary = grouped.agg(
            mean='mean',
            n='count',
            std_err=lambda s: s.std(ddof=1) / np.sqrt(s.count()) if s.count() > 1 else np.nan,
        ).reset_index()
        return summary[self.param_names + ['.metric', '.estimator', 'mean', 'n', 'std_err', '.config']]

    def collect_predictions(self) -> pd.DataFrame:
        if self.predictions is None:
            raise ValueError("Predictions were not saved; rerun with save_pred=True")
        return self.predictions.copy()

    def _ranked(self, metric, maximize):
        summary = self.collect_metrics()
        if metric not in set(summary['.metric']):
            raise ValueError(f"Metric '{metric}' was not computed. Available: {sorted(set(summary['.metric']))}")
        table = summary[summary['.metric'] == metric].copy()
        # exact ties on the mean fall back to the simplest candidate:
        # smallest parameter values, compared in parameter order
        table['_key'] = table['mean'].round(12)
        order = ['_key'] + self.param_names
        ascending = [not maximize] + [True] * len(self.param_names)
        table = table.sort_values(order, ascending=ascending, na_position='last', kind='mergesort')
        return table.drop(columns=['_key']).reset_index(drop=True)

    def show_best(self, metric, n=5, maximize=None) -> pd.DataFrame:
        """Top-n candidates by mean metric (descending for maximize metrics)."""
        return self._ranked(metric, _metric_maximize(metric, maximize)).head(n)

    def select_best(self, metric, maximize=None) -> pd.DataFrame:
        """One-row frame with the best candidate's parameters and `.config`."""
        best = self._ranked(metric, _metric_maximize(metric, maximize)).head(1)
        return best[self.param_names + ['.config']].reset_index(drop=True)

    def select_by_one_std_err(self, metric, maximize=None) -> pd.DataFrame:
        """Simplest candidate whose mean is within one standard error of the best."""
        maximize = _metric_maximize(metric, maximize)
        ranked = self._ranked(metric, maximize)
        best = ranked.iloc[0]
        se = 0.0 if pd.isna(best['std_err']) else best['std_err']
        if maximize:
            ok = ranked[ranked['mean'] >= best['mean'] - se]
        else:
            ok = ranked[ranked['mean'] <= best['mean'] + se]
        simplest = ok.sort_values(self.param_names, kind='mergesort').head(1) if self.param_names else ok.head(1)
        return simplest[self.param_names + ['.config']].reset_index(drop=True)


def _run(workflow, candidates, resamples, metrics, seed, n_jobs, save_pred):
    tasks = [(bindings, config_id, fold) for config_id, bindings in candidates for fold in resamples]
    outputs = Parallel(n_jobs=n_jobs)(
        delayed(_evaluate_fold)(workflow, bindings, config_id, fold, resamples, metrics, seed, save_pred)
        for bindings, config_id, fold in tasks
    )
    metric_rows = pd.concat([scores for scores, _ in outputs], ignore_index=True)
    preds = None
    if save_pred:
        preds = pd.concat([p for _, p in outputs], ignore_index=True)
    return metric_rows, preds


def fit_resamples(workflow: Workflow, resamples: FoldSet, metrics: MetricSet = None,
                  seed=None, n_jobs=1, save_pred=False) -> TuningResult:
    """Evaluate a fully specified workflow on every fold (no tuning)."""
    pending = workflow.parameters()
    if pending:
        raise UnresolvedParameterError(
            f"hyperparameter '{pending[0]}' has no concrete value; use tune_grid or finalize_workflow"
        )
    metrics = metrics or default_metric_set()
    print(f"Resampling 1 configuration x {len(resamples)} folds...")
    rows, preds = _run(workflow, [('Preprocessor1_Model1', {})], resamples, metrics, seed, n_jobs, save_pred)
    return TuningResult([], rows, preds, workflow)


def build_grid(workflow: Workflow, resamples: FoldSet, size=10, param_ranges=None, seed=None) -> pd.DataFrame:
    """Random grid over the workflow's tunable parameters."""
    param_ranges = param_ranges or {}
    n_predictors = resamples.data.shape[1] - 1
    ranges = {}
    for name in workflow.parameters():
        rng = param_ranges.get(name) or default_range(name)
        if rng.high is None:
            rng = rng.finalize(n_predictors)
        ranges[name] = rng
    return grid_random(ranges, size=size, seed=seed)


def tune_grid(workflow: Workflow, resamples: FoldSet, grid=10, metrics: MetricSet = None,
              param_ranges=None, seed=None, n_jobs=1, save_pred=False) -> TuningResult:
    """
    Evaluate every grid candidate on every fold.

    Args:
        grid: DataFrame of candidates (one column per tunable id) or an int
              number of random candidates drawn from `param_ranges`
        n_jobs: joblib workers for the independent (candidate x fold) fits

    Returns:
        TuningResult
    """
    params = workflow.parameters()
    if not params:
        raise ValueError("Workflow has no tunable parameters; use fit_resamples instead")
    metrics = metrics or default_metric_set()

    if isinstance(grid, (int, np.integer)):
        grid = build_grid(workflow, resamples, size=int(grid), param_ranges=param_ranges, seed=seed)
    missing = [p for p in params if p not in grid.columns]
    if missing:
        raise UnresolvedParameterError(f"hyperparameter '{missing[0]}' has no values in the tuning grid")
    extra = [c for c in grid.columns if c not in params]
    if extra:
        raise ValueError(f"Grid columns {extra} do not match any tunable parameter {params}")
    grid = grid[params].drop_duplicates().reset_index(drop=True)

    width = max(2, len(str(len(grid))))
    candidates = [(f"Preprocessor1_Model{i + 1:0{width}d}", row) for i, row in enumerate(candidate_rows(grid))]

    print(f"Tuning {len(candidates)} candidates x {len(resamples)} folds ({', '.join(params)})...")
    rows, preds = _run(workflow, candidates, resamples, metrics, seed, n_jobs, save_pred)
    return TuningResult(params, rows, preds, workflow)


@dataclass
class LastFitResult:
    metrics: pd.DataFrame
    predictions: pd.DataFrame
    fitted: FittedWorkflow
    split: Split = field(repr=False)

    def collect_metrics(self) -> pd.DataFrame:
        return self.metrics.copy()

    def collect_predictions(self) -> pd.DataFrame:
        return self.predictions.copy()

    def extract_workflow(self) -> FittedWorkflow:
        return self.fitted


def last_fit(workflow: Workflow, split: Split, metrics: MetricSet = None, seed=None, threshold=0.5) -> LastFitResult:
    """
    Fit on the training rows, then predict and score the test rows once.

    Raises:
        UnresolvedParameterError if the workflow was not finalized
        TestSetReuseError if this split's test rows were already evaluated
    """
    metrics = metrics or default_metric_set()
    fitted = fit_workflow(workflow, split.training(), seed=seed)
    test = split.testing()
    preds = fitted.augment(test, threshold=threshold)
    scores = metrics(preds, truth=workflow.outcome, levels=fitted.levels)
    scores['.config'] = 'Preprocessor1_Model1'
    return LastFitResult(scores, preds, fitted, split)


__all__ = [
    'TuningResult', 'LastFitResult', 'fit_resamples', 'tune_grid', 'build_grid',
    'last_fit', 'finalize_workflow',
]
