# Preprocessing recipes
# Declarative step lists learned on training data and replayed on any other frame

import warnings
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd
from pandas.api.types import is_bool_dtype, is_numeric_dtype
from sklearn.feature_selection import VarianceThreshold
from sklearn.impute import SimpleImputer
from sklearn.preprocessing import OneHotEncoder, StandardScaler

from .exceptions import PipelineStateError, SchemaError
from .params import Tune, require_resolved, resolve


# ---------------------------------------------------------------------------
# Step variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StepPoly:
    column: str
    degree: Union[int, Tune] = 2
    raw: bool = False
    kind: str = field(default='poly', init=False)


@dataclass(frozen=True)
class StepZv:
    kind: str = field(default='zv', init=False)


@dataclass(frozen=True)
class StepNormalize:
    columns: Optional[Tuple[str, ...]] = None
    kind: str = field(default='normalize', init=False)


@dataclass(frozen=True)
class StepDummy:
    columns: Optional[Tuple[str, ...]] = None
    kind: str = field(default='dummy', init=False)


@dataclass(frozen=True)
class StepImputeMean:
    columns: Optional[Tuple[str, ...]] = None
    kind: str = field(default='impute_mean', init=False)


def step_poly(column, degree=2, raw=False):
    """Orthogonal (or raw) polynomial expansion of one numeric column."""
    return StepPoly(column=column, degree=degree, raw=raw)


def step_zv():
    """Drop predictors that take a single value in the training data."""
    return StepZv()


def step_normalize(columns=None):
    return StepNormalize(columns=tuple(columns) if columns is not None else None)


def step_dummy(columns=None):
    return StepDummy(columns=tuple(columns) if columns is not None else None)


def step_impute_mean(columns=None):
    return StepImputeMean(columns=tuple(columns) if columns is not None else None)


def _step_params(step) -> Dict[str, Any]:
    return {f.name: getattr(step, f.name) for f in fields(step) if f.name != 'kind'}


# ---------------------------------------------------------------------------
# Recipe
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Recipe:
    """
    Ordered preprocessing steps for one outcome.

    predictors=None uses every column except the outcome.
    """
    outcome: str
    predictors: Optional[Tuple[str, ...]] = None
    steps: Tuple[Any, ...] = ()

    def __post_init__(self):
        if self.predictors is not None and not isinstance(self.predictors, tuple):
            object.__setattr__(self, 'predictors', tuple(self.predictors))

    def add_step(self, step):
        if step.kind not in _LEARNERS:
            raise ValueError(f"Unknown recipe step kind: '{step.kind}'")
        return replace(self, steps=self.steps + (step,))

    def parameters(self) -> List[str]:
        ids = []
        for step in self.steps:
            for value in _step_params(step).values():
                if isinstance(value, Tune) and value.id not in ids:
                    ids.append(value.id)
        return ids

    def bind(self, bindings):
        """Return a copy with Tune markers replaced by values from `bindings`."""
        steps = []
        for step in self.steps:
            updates = {name: resolve(value, bindings) for name, value in _step_params(step).items()}
            steps.append(replace(step, **updates))
        return replace(self, steps=tuple(steps))

    def describe(self):
        return [f"{s.kind}({', '.join(f'{k}={v!r}' for k, v in _step_params(s).items())})" for s in self.steps]


@dataclass
class PreparedRecipe:
    outcome: str
    predictors: List[str]
    schema: Dict[str, str]
    steps: List[Tuple[Any, Dict[str, Any]]]
    template: pd.DataFrame

    @property
    def output_columns(self):
        return [c for c in self.template.columns if c != self.outcome]


def _column_kind(series):
    if is_numeric_dtype(series) and not is_bool_dtype(series):
        return 'numeric'
    return 'categorical'


def _select_predictors(recipe, data):
    if recipe.outcome not in data.columns:
        raise SchemaError(f"Outcome column '{recipe.outcome}' not found in data. Available: {list(data.columns)}")
    if recipe.predictors is None:
        return [c for c in data.columns if c != recipe.outcome]
    missing = [c for c in recipe.predictors if c not in data.columns]
    if missing:
        raise SchemaError(f"Predictor column '{missing[0]}' not found in data. Available: {list(data.columns)}")
    return list(recipe.predictors)


def prep(recipe: Recipe, data: pd.DataFrame) -> PreparedRecipe:
    """
    Learn every step's parameters on `data`, in declared order.

    Each step sees the output of the step before it. Returns a PreparedRecipe
    that `bake` replays without looking at new data statistics.
    """
    predictors = _select_predictors(recipe, data)
    schema = {c: _column_kind(data[c]) for c in predictors}

    current = data[predictors + [recipe.outcome]].copy()
    learned = []
    for step in recipe.steps:
        params = _step_params(step)
        require_resolved(params, f"step_{step.kind}")
        state = _LEARNERS[step.kind](step, current, recipe.outcome)
        current = _APPLIERS[step.kind](step, state, current, recipe.outcome)
        learned.append((step, state))

    return PreparedRecipe(
        outcome=recipe.outcome,
        predictors=predictors,
        schema=schema,
        steps=learned,
        template=current,
    )


def bake(prepared: PreparedRecipe, data: pd.DataFrame) -> pd.DataFrame:
    """Apply learned steps to `data`; the outcome column is carried along when present."""
    if not isinstance(prepared, PreparedRecipe):
        raise PipelineStateError("bake() requires a recipe prepared with prep()")

    for col, kind in prepared.schema.items():
        if col not in data.columns:
            raise SchemaError(f"Column '{col}' seen at fit time is missing from new data")
        actual = _column_kind(data[col])
        if actual != kind:
            raise SchemaError(f"Column '{col}' was {kind} at fit time but is {actual} in new data")

    cols = list(prepared.predictors)
    if prepared.outcome in data.columns:
        cols.append(prepared.outcome)
    current = data[cols].copy()
    for step, state in prepared.steps:
        current = _APPLIERS[step.kind](step, state, current, prepared.outcome)
    return current


def juice(prepared: PreparedRecipe) -> pd.DataFrame:
    """Processed training data retained at prep time."""
    return prepared.template.copy()


# ---------------------------------------------------------------------------
# Learn / apply per step kind
# ---------------------------------------------------------------------------

def _numeric_columns(frame, outcome, columns=None):
    if columns is not None:
        for c in columns:
            if c not in frame.columns:
                raise SchemaError(f"Column '{c}' not found for recipe step")
        return list(columns)
    return [c for c in frame.columns if c != outcome and _column_kind(frame[c]) == 'numeric']


def _learn_poly(step, frame, outcome):
    if step.column not in frame.columns:
        raise SchemaError(f"Column '{step.column}' not found for step_poly")
    degree = int(step.degree)
    if degree < 1:
        raise ValueError(f"step_poly degree must be >= 1, got {degree}")
    x = frame[step.column].to_numpy(dtype=float)
    if step.raw:
        return {'degree': degree}

    n_unique = len(np.unique(x[~np.isnan(x)]))
    if degree >= n_unique:
        raise ValueError(
            f"step_poly degree ({degree}) must be less than the number of unique points "
            f"in '{step.column}' ({n_unique})"
        )

    # Three-term recurrence: P_{k+1} = (x - alpha_k) P_k - (norm2_k / norm2_{k-1}) P_{k-1}
    alpha = []
    norm2 = [float(len(x))]
    p_prev = np.zeros_like(x)
    p_curr = np.ones_like(x)
    for k in range(degree):
        a = float(np.sum(x * p_curr ** 2) / norm2[k])
        ratio = norm2[k] / norm2[k - 1] if k > 0 else 0.0
        p_next = (x - a) * p_curr - ratio * p_prev
        alpha.append(a)
        norm2.append(float(np.sum(p_next ** 2)))
        p_prev, p_curr = p_curr, p_next
    return {'degree': degree, 'alpha': alpha, 'norm2': norm2}


def _apply_poly(step, state, frame, outcome):
    x = frame[step.column].to_numpy(dtype=float)
    degree = state['degree']
    names = [f"{step.column}_poly_{k}" for k in range(1, degree + 1)]

    if step.raw:
        basis = np.column_stack([x ** k for k in range(1, degree + 1)])
    else:
        alpha, norm2 = state['alpha'], state['norm2']
        cols = []
        p_prev = np.zeros_like(x)
        p_curr = np.ones_like(x)
        for k in range(degree):
            ratio = norm2[k] / norm2[k - 1] if k > 0 else 0.0
            p_next = (x - alpha[k]) * p_curr - ratio * p_prev
            cols.append(p_next / np.sqrt(norm2[k + 1]))
            p_prev, p_curr = p_curr, p_next
        basis = np.column_stack(cols)

    out = frame.drop(columns=[step.column])
    expanded = pd.DataFrame(basis, columns=names, index=frame.index)
    return pd.concat([out, expanded], axis=1)


def _learn_zv(step, frame, outcome):
    predictors = [c for c in frame.columns if c != outcome]
    numeric = [c for c in predictors if _column_kind(frame[c]) == 'numeric']
    constant = {c for c in predictors if c not in numeric and frame[c].nunique(dropna=False) <= 1}

    selector = None
    if numeric and frame[numeric].nunique().gt(1).any():
        selector = VarianceThreshold(threshold=0.0).fit(frame[numeric])
        constant |= {c for c, keep in zip(numeric, selector.get_support()) if not keep}
    else:
        # VarianceThreshold refuses to fit when every column is constant
        constant |= set(numeric)
    return {'selector': selector, 'removed': [c for c in predictors if c in constant]}


def _apply_zv(step, state, frame, outcome):
    return frame.drop(columns=[c for c in state['removed'] if c in frame.columns])


def _learn_normalize(step, frame, outcome):
    cols = _numeric_columns(frame, outcome, step.columns)
    if not cols:
        return {'columns': [], 'scaler': None}
    # constant columns get scale 1 and are only centered
    return {'columns': cols, 'scaler': StandardScaler().fit(frame[cols])}


def _apply_normalize(step, state, frame, outcome):
    out = frame.copy()
    if state['scaler'] is not None:
        out[state['columns']] = state['scaler'].transform(out[state['columns']])
    return out


def _as_category_strings(frame, cols):
    text = frame[cols].astype(object)
    return text.where(frame[cols].isna(), text.apply(lambda col: col.map(str)))


def _learn_dummy(step, frame, outcome):
    if step.columns is not None:
        cols = list(step.columns)
        for c in cols:
            if c not in frame.columns:
                raise SchemaError(f"Column '{c}' not found for step_dummy")
    else:
        cols = [c for c in frame.columns if c != outcome and _column_kind(frame[c]) == 'categorical']
    if not cols:
        return {'columns': [], 'encoder': None, 'names': []}

    levels = []
    for c in cols:
        series = frame[c]
        if isinstance(series.dtype, pd.CategoricalDtype):
            levels.append([str(v) for v in series.cat.categories])
        else:
            levels.append(sorted(str(v) for v in series.dropna().unique()))

    # first level is the reference; unseen levels encode as all zeros
    encoder = OneHotEncoder(categories=levels, drop='first', handle_unknown='ignore', sparse_output=False)
    encoder.fit(_as_category_strings(frame, cols))
    names = [f"{c}_{level}" for c, lv in zip(cols, levels) for level in lv[1:]]
    return {'columns': cols, 'encoder': encoder, 'names': names}


def _apply_dummy(step, state, frame, outcome):
    if state['encoder'] is None:
        return frame.copy()
    cols = state['columns']
    with warnings.catch_warnings():
        # unseen levels are expected at bake time
        warnings.filterwarnings('ignore', message='Found unknown categories')
        encoded = state['encoder'].transform(_as_category_strings(frame, cols))
    dummies = pd.DataFrame(encoded, columns=state['names'], index=frame.index)
    return pd.concat([frame.drop(columns=cols), dummies], axis=1)


def _learn_impute_mean(step, frame, outcome):
    cols = _numeric_columns(frame, outcome, step.columns)
    if not cols:
        return {'columns': [], 'imputer': None}
    imputer = SimpleImputer(strategy='mean', keep_empty_features=True).fit(frame[cols])
    return {'columns': cols, 'imputer': imputer}


def _apply_impute_mean(step, state, frame, outcome):
    out = frame.copy()
    if state['imputer'] is not None:
        out[state['columns']] = state['imputer'].transform(out[state['columns']])
    return out


_LEARNERS = {
    'poly': _learn_poly,
    'zv': _learn_zv,
    'normalize': _learn_normalize,
    'dummy': _learn_dummy,
    'impute_mean': _learn_impute_mean,
}

_APPLIERS = {
    'poly': _apply_poly,
    'zv': _apply_zv,
    'normalize': _apply_normalize,
    'dummy': _apply_dummy,
    'impute_mean': _apply_impute_mean,
}
