# Tunable parameter placeholders and candidate grids

import itertools
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from .exceptions import UnresolvedParameterError


@dataclass(frozen=True)
class Tune:
    """Placeholder for a hyperparameter whose value is chosen later by tuning."""
    id: str

    def __repr__(self):
        return f"tune('{self.id}')"


def tune(id):
    return Tune(id)


def resolve(value, bindings):
    """Replace a Tune marker by its bound value; concrete values pass through."""
    if isinstance(value, Tune) and value.id in bindings:
        return bindings[value.id]
    return value


def require_resolved(params: Dict[str, Any], owner: str):
    for name, value in params.items():
        if isinstance(value, Tune):
            raise UnresolvedParameterError(
                f"hyperparameter '{value.id}' ({owner}.{name}) has no concrete value"
            )


@dataclass(frozen=True)
class Range:
    """
    Search range for a numeric hyperparameter.

    With trans='log10' the bounds are exponents: Range(-10, -1, trans='log10')
    spans 1e-10 .. 1e-1. An upper bound of None is filled in from the data
    (e.g. mtry is bounded by the number of predictors).
    """
    low: float
    high: Optional[float]
    integer: bool = False
    trans: Optional[str] = None

    def finalize(self, high):
        return Range(self.low, high, self.integer, self.trans)

    def _check(self):
        if self.high is None:
            raise ValueError("Range upper bound is unknown; finalize it before building a grid")

    def _convert(self, raw):
        values = 10.0 ** raw if self.trans == 'log10' else raw
        if self.integer:
            return [int(v) for v in np.round(values)]
        return [float(v) for v in values]

    def regular(self, levels):
        self._check()
        return self._convert(np.linspace(self.low, self.high, levels))

    def sample(self, size, rng):
        self._check()
        if self.integer and self.trans is None:
            return [int(v) for v in rng.integers(int(self.low), int(self.high) + 1, size=size)]
        return self._convert(rng.uniform(self.low, self.high, size=size))


# Default ranges keyed by parameter name
DEFAULT_RANGES = {
    'degree': Range(1, 3, integer=True),
    'penalty': Range(-10, 0, trans='log10'),
    'mixture': Range(0.0, 1.0),
    'cost_complexity': Range(-10, -1, trans='log10'),
    'tree_depth': Range(1, 15, integer=True),
    'min_n': Range(2, 40, integer=True),
    'mtry': Range(1, None, integer=True),
    'trees': Range(1, 2000, integer=True),
    'learn_rate': Range(-3, -0.5, trans='log10'),
}


def default_range(name):
    if name not in DEFAULT_RANGES:
        raise ValueError(f"No default range for parameter '{name}'. Pass param_ranges explicitly.")
    return DEFAULT_RANGES[name]


def grid_regular(ranges: Dict[str, Range], levels=3):
    """Full factorial grid with `levels` evenly spaced values per parameter."""
    names = list(ranges)
    axes = []
    for name in names:
        # integer ranges can collapse to duplicate values
        axes.append(list(dict.fromkeys(ranges[name].regular(levels))))
    rows = [dict(zip(names, combo)) for combo in itertools.product(*axes)]
    return pd.DataFrame(rows, columns=names)


def grid_random(ranges: Dict[str, Range], size=10, seed=None):
    """Random candidates drawn independently per parameter; duplicates removed."""
    rng = np.random.default_rng(seed)
    names = list(ranges)
    columns = {name: ranges[name].sample(size, rng) for name in names}
    grid = pd.DataFrame(columns, columns=names)
    return grid.drop_duplicates().reset_index(drop=True)


def candidate_rows(grid: pd.DataFrame) -> List[Dict[str, Any]]:
    return [
        {k: (v.item() if hasattr(v, 'item') else v) for k, v in row.items()}
        for row in grid.to_dict(orient='records')
    ]
