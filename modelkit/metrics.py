# Classification metrics
# Binary metrics treat the first outcome level as the event unless event_level is given

from dataclasses import dataclass
from typing import Callable, List, Optional

import numpy as np
import pandas as pd
from sklearn.metrics import auc as _trapezoid_auc
from sklearn.metrics import cohen_kappa_score, confusion_matrix
from sklearn.metrics import roc_curve as _sk_roc_curve


def _as_array(values):
    if isinstance(values, (pd.Series, pd.Index, pd.Categorical)):
        return np.asarray(pd.Series(values).astype(object))
    return np.asarray(values, dtype=object)


def outcome_levels(truth, estimate=None) -> List:
    """Levels of the truth vector; categorical order wins over sorted order.

    Plain 0/1 labels come back as [1, 0] so class 1 is the default event.
    """
    if isinstance(truth, pd.Series) and isinstance(truth.dtype, pd.CategoricalDtype):
        return list(truth.cat.categories)
    if isinstance(truth, pd.Categorical):
        return list(truth.categories)
    values = set(_as_array(truth).tolist())
    if estimate is not None:
        values |= set(_as_array(estimate).tolist())
    levels = sorted(v for v in values if v is not None and v == v)
    if [str(v) for v in levels] == ['0', '1']:
        # a bare 0/1 label follows the recoded factor order: event '1' first
        levels.reverse()
    return levels


def _event(levels, event_level):
    if event_level is None:
        return levels[0]
    if event_level not in levels:
        raise ValueError(f"event_level '{event_level}' is not one of the levels {levels}")
    return event_level


def _safe_ratio(num, den):
    # undefined rates are reported as NaN rather than raising
    return float(num) / float(den) if den > 0 else float('nan')


def _level_codes(values, levels):
    # integer codes into `levels`; values outside the level set become -1
    return pd.Categorical(_as_array(values), categories=levels).codes


def conf_mat(truth, estimate, levels=None) -> pd.DataFrame:
    """Counts of (prediction, truth) pairs; rows are predictions, columns truth."""
    levels = levels if levels is not None else outcome_levels(truth, estimate)
    labels = list(range(len(levels)))
    t_codes = _level_codes(truth, levels)
    if len(t_codes) == 0 or not np.isin(t_codes, labels).any():
        cm = np.zeros((len(levels), len(levels)), dtype=int)
    else:
        cm = confusion_matrix(t_codes, _level_codes(estimate, levels), labels=labels).T
    table = pd.DataFrame(cm, index=levels, columns=levels)
    table.index.name = 'Prediction'
    table.columns.name = 'Truth'
    return table


def _binary_counts(truth, estimate, levels, event_level):
    event = _event(levels, event_level)
    t = _as_array(truth) == event
    e = _as_array(estimate) == event
    tp = int(np.sum(t & e))
    fn = int(np.sum(t & ~e))
    fp = int(np.sum(~t & e))
    tn = int(np.sum(~t & ~e))
    return tp, fn, fp, tn


def _one_vs_rest(fn, truth, estimate, levels, event_level):
    if len(levels) <= 2:
        return fn(*_binary_counts(truth, estimate, levels, event_level))
    return float(np.mean([fn(*_binary_counts(truth, estimate, levels, lvl)) for lvl in levels]))


def accuracy(truth, estimate, levels=None, event_level=None):
    cm = conf_mat(truth, estimate, levels).to_numpy()
    return _safe_ratio(np.trace(cm), cm.sum())


def sensitivity(truth, estimate, levels=None, event_level=None):
    """TP / (TP + FN); macro-averaged for more than two classes."""
    levels = levels if levels is not None else outcome_levels(truth, estimate)
    return _one_vs_rest(lambda tp, fn, fp, tn: _safe_ratio(tp, tp + fn), truth, estimate, levels, event_level)


def specificity(truth, estimate, levels=None, event_level=None):
    """TN / (TN + FP); macro-averaged for more than two classes."""
    levels = levels if levels is not None else outcome_levels(truth, estimate)
    return _one_vs_rest(lambda tp, fn, fp, tn: _safe_ratio(tn, tn + fp), truth, estimate, levels, event_level)


def precision(truth, estimate, levels=None, event_level=None):
    levels = levels if levels is not None else outcome_levels(truth, estimate)
    return _one_vs_rest(lambda tp, fn, fp, tn: _safe_ratio(tp, tp + fp), truth, estimate, levels, event_level)


def f_meas(truth, estimate, levels=None, event_level=None):
    levels = levels if levels is not None else outcome_levels(truth, estimate)

    def _f1(tp, fn, fp, tn):
        prec = _safe_ratio(tp, tp + fp)
        rec = _safe_ratio(tp, tp + fn)
        if np.isnan(prec) or np.isnan(rec):
            return float('nan')
        return _safe_ratio(2 * prec * rec, prec + rec)

    return _one_vs_rest(_f1, truth, estimate, levels, event_level)


def kap(truth, estimate, levels=None, event_level=None):
    """Cohen's kappa: (observed - expected) / (1 - expected) agreement."""
    levels = levels if levels is not None else outcome_levels(truth, estimate)
    cm = conf_mat(truth, estimate, levels).to_numpy().astype(float)
    n = cm.sum()
    if n == 0:
        return float('nan')
    expected = float(np.sum(cm.sum(axis=0) * cm.sum(axis=1))) / n ** 2
    if expected >= 1:
        return float('nan')
    return float(cohen_kappa_score(
        _level_codes(truth, levels), _level_codes(estimate, levels), labels=list(range(len(levels)))
    ))


def _prob_matrix(probs, levels, event_level=None):
    probs = probs.to_numpy() if isinstance(probs, (pd.DataFrame, pd.Series)) else np.asarray(probs)
    probs = probs.astype(float)
    if probs.ndim == 1:
        # event probability of a binary outcome
        event = _event(levels, event_level)
        other = [lvl for lvl in levels if lvl != event][0]
        cols = {event: probs, other: 1.0 - probs}
        return np.column_stack([cols[lvl] for lvl in levels])
    if probs.shape[1] != len(levels):
        raise ValueError(f"Expected {len(levels)} probability columns, got {probs.shape[1]}")
    return probs


def brier_class(truth, probs, levels=None, event_level=None):
    """(1/n) * sum_i sum_k (y_ik - p_ik)^2 with one-hot truth y."""
    levels = levels if levels is not None else outcome_levels(truth)
    p = _prob_matrix(probs, levels, event_level)
    t = _as_array(truth)
    if len(t) == 0:
        return float('nan')
    onehot = np.column_stack([(t == lvl).astype(float) for lvl in levels])
    return float(np.sum((onehot - p) ** 2) / len(t))


def mn_log_loss(truth, probs, levels=None, event_level=None, eps=1e-15):
    levels = levels if levels is not None else outcome_levels(truth)
    p = np.clip(_prob_matrix(probs, levels, event_level), eps, 1 - eps)
    t = _as_array(truth)
    if len(t) == 0:
        return float('nan')
    idx = np.array([levels.index(v) for v in t])
    return float(-np.mean(np.log(p[np.arange(len(t)), idx])))


def _event_scores(probs, levels, event):
    p = np.asarray(probs.to_numpy() if isinstance(probs, (pd.DataFrame, pd.Series)) else probs, dtype=float)
    if p.ndim == 2:
        p = p[:, levels.index(event)]
    return p


def roc_curve(truth, probs, levels=None, event_level=None) -> pd.DataFrame:
    """
    ROC points at every distinct predicted event probability.

    Returns a frame with `.threshold`, `specificity`, `sensitivity`, sorted by
    threshold. Empty when only one class is present.
    """
    levels = levels if levels is not None else outcome_levels(truth)
    event = _event(levels, event_level)
    t = _as_array(truth) == event
    if t.all() or not t.any():
        return pd.DataFrame(columns=['.threshold', 'specificity', 'sensitivity'], dtype=float)
    scores = _event_scores(probs, levels, event)
    fpr, tpr, thresholds = _sk_roc_curve(t.astype(int), scores, pos_label=1, drop_intermediate=False)
    curve = pd.DataFrame({'.threshold': thresholds, 'specificity': 1.0 - fpr, 'sensitivity': tpr})
    return curve.sort_values('.threshold', kind='mergesort').reset_index(drop=True)


def roc_auc(truth, probs, levels=None, event_level=None):
    """Trapezoidal area under the ROC curve; NaN if only one class is present."""
    levels = levels if levels is not None else outcome_levels(truth)
    event = _event(levels, event_level)
    t = _as_array(truth) == event
    if t.all() or not t.any():
        return float('nan')
    scores = _event_scores(probs, levels, event)
    fpr, tpr, _ = _sk_roc_curve(t.astype(int), scores, pos_label=1, drop_intermediate=False)
    return float(_trapezoid_auc(fpr, tpr))


@dataclass(frozen=True)
class Metric:
    name: str
    kind: str            # 'class' or 'prob'
    fn: Callable
    direction: str = 'maximize'


METRICS = {
    'accuracy': Metric('accuracy', 'class', accuracy),
    'sensitivity': Metric('sensitivity', 'class', sensitivity),
    'specificity': Metric('specificity', 'class', specificity),
    'precision': Metric('precision', 'class', precision),
    'f_meas': Metric('f_meas', 'class', f_meas),
    'kap': Metric('kap', 'class', kap),
    'roc_auc': Metric('roc_auc', 'prob', roc_auc),
    'brier_class': Metric('brier_class', 'prob', brier_class, 'minimize'),
    'mn_log_loss': Metric('mn_log_loss', 'prob', mn_log_loss, 'minimize'),
}


def metric_direction(name):
    if name not in METRICS:
        raise ValueError(f"Unknown metric '{name}'. Available: {list(METRICS)}")
    return METRICS[name].direction


class MetricSet:
    """
    A named group of metrics evaluated together on a predictions frame.

    The frame holds the truth column, `.pred_class` and/or `.pred_<level>`
    probability columns (the output of FittedWorkflow.augment).
    """

    def __init__(self, metrics):
        self.metrics = list(metrics)

    @property
    def names(self):
        return [m.name for m in self.metrics]

    def __repr__(self):
        return f"MetricSet({', '.join(self.names)})"

    def __call__(self, data: pd.DataFrame, truth: str, estimate='.pred_class',
                 levels=None, event_level=None, threshold=None) -> pd.DataFrame:
        if truth not in data.columns:
            raise ValueError(f"Truth column '{truth}' not found in predictions")
        levels = levels if levels is not None else outcome_levels(data[truth])
        prob_cols = [f".pred_{lvl}" for lvl in levels]
        has_probs = all(c in data.columns for c in prob_cols)
        estimator = 'binary' if len(levels) <= 2 else 'macro'

        predicted = data[estimate] if estimate in data.columns else None
        if threshold is not None:
            # re-derive classes from the stored probabilities
            if not has_probs:
                raise ValueError("A threshold needs probability columns in the predictions")
            if len(levels) != 2:
                raise ValueError("A probability threshold only applies to binary outcomes")
            event = _event(levels, event_level)
            other = [lvl for lvl in levels if lvl != event][0]
            predicted = pd.Series(
                np.where(data[f".pred_{event}"].to_numpy() >= threshold, event, other), index=data.index
            )

        rows = []
        for metric in self.metrics:
            if metric.kind == 'class':
                if predicted is None:
                    raise ValueError(f"Metric '{metric.name}' needs the '{estimate}' column")
                value = metric.fn(data[truth], predicted, levels=levels, event_level=event_level)
            else:
                if not has_probs:
                    raise ValueError(f"Metric '{metric.name}' needs probability columns {prob_cols}")
                value = metric.fn(data[truth], data[prob_cols], levels=levels, event_level=event_level)
            rows.append({'.metric': metric.name, '.estimator': estimator, '.estimate': value})
        return pd.DataFrame(rows, columns=['.metric', '.estimator', '.estimate'])


def metric_set(*metrics) -> MetricSet:
    resolved = []
    for m in metrics:
        if isinstance(m, Metric):
            resolved.append(m)
        elif m in METRICS:
            resolved.append(METRICS[m])
        else:
            raise ValueError(f"Unknown metric '{m}'. Available: {list(METRICS)}")
    if not resolved:
        raise ValueError("metric_set needs at least one metric")
    return MetricSet(resolved)


DEFAULT_METRICS = ('accuracy', 'roc_auc', 'brier_class')


def default_metric_set() -> MetricSet:
    return metric_set(*DEFAULT_METRICS)
