# Model-set comparison: many (preprocessor x model) workflows ranked on one metric

from dataclasses import dataclass, field
from typing import Dict

import pandas as pd

from .metrics import MetricSet
from .models import ModelSpec
from .recipes import Recipe
from .splits import FoldSet
from .tuning import TuningResult, _metric_maximize, fit_resamples, tune_grid
from .workflow import Workflow


@dataclass
class WorkflowSet:
    workflows: Dict[str, Workflow]
    info: pd.DataFrame
    results: Dict[str, TuningResult] = field(default_factory=dict)

    def __len__(self):
        return len(self.workflows)

    def extract_workflow(self, wflow_id) -> Workflow:
        return self.workflows[wflow_id]

    def extract_result(self, wflow_id) -> TuningResult:
        if wflow_id not in self.results:
            raise ValueError(f"No results for '{wflow_id}'; run workflow_map first")
        return self.results[wflow_id]


def workflow_set(preproc: Dict[str, Recipe], models: Dict[str, ModelSpec], cross=True) -> WorkflowSet:
    """
    Combine named recipes and model specs.

    cross=True builds every combination; cross=False pairs them in order and
    requires equal lengths.
    """
    if not preproc or not models:
        raise ValueError("workflow_set needs at least one preprocessor and one model")
    if cross:
        pairs = [(p, m) for p in preproc for m in models]
    else:
        if len(preproc) != len(models):
            raise ValueError(
                f"cross=False needs as many preprocessors as models ({len(preproc)} vs {len(models)})"
            )
        pairs = list(zip(preproc, models))

    workflows = {}
    rows = []
    for p_name, m_name in pairs:
        wflow_id = f"{p_name}_{m_name}"
        workflows[wflow_id] = Workflow(model=models[m_name], recipe=preproc[p_name])
        rows.append({'wflow_id': wflow_id, 'preprocessor': p_name, 'model': models[m_name].model_type})
    return WorkflowSet(workflows, pd.DataFrame(rows))


def workflow_map(wset: WorkflowSet, resamples: FoldSet, grid=10, metrics: MetricSet = None,
                 param_ranges=None, seed=None, n_jobs=1) -> WorkflowSet:
    """Tune workflows with Tune markers, resample the rest; results are stored on the set."""
    for i, (wflow_id, wf) in enumerate(wset.workflows.items(), start=1):
        print(f"[{i}/{len(wset)}] {wflow_id}")
        if wf.parameters():
            wset.results[wflow_id] = tune_grid(
                wf, resamples, grid=grid, metrics=metrics, param_ranges=param_ranges, seed=seed, n_jobs=n_jobs
            )
        else:
            wset.results[wflow_id] = fit_resamples(wf, resamples, metrics=metrics, seed=seed, n_jobs=n_jobs)
    return wset


def rank_results(wset: WorkflowSet, rank_metric, select_best=True, maximize=None) -> pd.DataFrame:
    """
    Rank every evaluated candidate (or each workflow's best one) by `rank_metric`.

    Returns one row per (workflow, candidate, metric) with columns
    wflow_id, .config, preprocessor, model, .metric, mean, std_err, n, rank.
    """
    if not wset.results:
        raise ValueError("Workflow set has no results; run workflow_map first")
    maximize = _metric_maximize(rank_metric, maximize)

    tables = []
    for wflow_id, result in wset.results.items():
        summary = result.collect_metrics()
        if select_best:
            best = result.select_best(rank_metric, maximize=maximize)['.config'].iloc[0]
            summary = summary[summary['.config'] == best]
        summary = summary[['.config', '.metric', 'mean', 'std_err', 'n']].copy()
        summary.insert(0, 'wflow_id', wflow_id)
        tables.append(summary)
    combined = pd.concat(tables, ignore_index=True)
    combined = combined.merge(wset.info, on='wflow_id', how='left')

    scores = combined[combined['.metric'] == rank_metric][['wflow_id', '.config', 'mean']]
    scores = scores.sort_values('mean', ascending=not maximize, na_position='last', kind='mergesort')
    scores['rank'] = range(1, len(scores) + 1)
    combined = combined.merge(scores[['wflow_id', '.config', 'rank']], on=['wflow_id', '.config'], how='left')

    cols = ['wflow_id', '.config', 'preprocessor', 'model', '.metric', 'mean', 'std_err', 'n', 'rank']
    return combined[cols].sort_values(['rank', '.metric'], kind='mergesort').reset_index(drop=True)
