# Model specifications and estimator building

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List

from sklearn.linear_model import LogisticRegression, LinearRegression
from sklearn.tree import DecisionTreeClassifier, DecisionTreeRegressor
from sklearn.ensemble import RandomForestClassifier, RandomForestRegressor

try:
    from xgboost import XGBClassifier, XGBRegressor
    HAS_XGBOOST = True
except ImportError:
    XGBClassifier = None
    XGBRegressor = None
    HAS_XGBOOST = False

from .params import Tune, require_resolved, resolve


SUPPORTED_MODELS = {
    'logistic_reg': ['classification'],
    'linear_reg': ['regression'],
    'decision_tree': ['classification', 'regression'],
    'rand_forest': ['classification', 'regression'],
    'boost_tree': ['classification', 'regression'],
}

DEFAULT_ENGINES = {
    'logistic_reg': 'sklearn',
    'linear_reg': 'sklearn',
    'decision_tree': 'sklearn',
    'rand_forest': 'sklearn',
    'boost_tree': 'xgboost',
}

# Models whose estimator takes a random_state
STOCHASTIC_MODELS = ['decision_tree', 'rand_forest', 'boost_tree']


@dataclass(frozen=True)
class ModelSpec:
    """
    Declarative model description: algorithm, mode, hyperparameters, engine.

    Parameter values may be Tune markers; they must be resolved (see
    `finalize_workflow`) before an estimator can be built.
    """
    model_type: str
    mode: str = 'classification'
    params: Dict[str, Any] = field(default_factory=dict)
    engine: str = ''

    def __post_init__(self):
        if self.model_type not in SUPPORTED_MODELS:
            raise ValueError(f"Unknown model type: '{self.model_type}'. Supported: {list(SUPPORTED_MODELS)}")
        if self.mode not in SUPPORTED_MODELS[self.model_type]:
            raise ValueError(f"Model '{self.model_type}' does not support mode '{self.mode}'")
        if not self.engine:
            object.__setattr__(self, 'engine', DEFAULT_ENGINES[self.model_type])
        # drop unset arguments so they fall through to engine defaults
        object.__setattr__(self, 'params', {k: v for k, v in dict(self.params).items() if v is not None})

    def set_args(self, **params):
        merged = dict(self.params)
        merged.update(params)
        return replace(self, params=merged)

    def set_engine(self, engine):
        return replace(self, engine=engine)

    def parameters(self) -> List[str]:
        return [v.id for v in self.params.values() if isinstance(v, Tune)]

    def bind(self, bindings):
        return replace(self, params={k: resolve(v, bindings) for k, v in self.params.items()})


def logistic_reg(penalty=None, mixture=None, mode='classification', engine='sklearn'):
    return ModelSpec('logistic_reg', mode, {'penalty': penalty, 'mixture': mixture}, engine)


def linear_reg(mode='regression', engine='sklearn'):
    return ModelSpec('linear_reg', mode, {}, engine)


def decision_tree(cost_complexity=None, tree_depth=None, min_n=None, mode='classification', engine='sklearn'):
    return ModelSpec('decision_tree', mode,
                     {'cost_complexity': cost_complexity, 'tree_depth': tree_depth, 'min_n': min_n}, engine)


def rand_forest(mtry=None, trees=None, min_n=None, mode='classification', engine='sklearn'):
    return ModelSpec('rand_forest', mode, {'mtry': mtry, 'trees': trees, 'min_n': min_n}, engine)


def boost_tree(trees=None, tree_depth=None, learn_rate=None, min_n=None, mode='classification', engine='xgboost'):
    return ModelSpec('boost_tree', mode,
                     {'trees': trees, 'tree_depth': tree_depth, 'learn_rate': learn_rate, 'min_n': min_n}, engine)


MODEL_CONSTRUCTORS = {
    'logistic_reg': logistic_reg,
    'linear_reg': linear_reg,
    'decision_tree': decision_tree,
    'rand_forest': rand_forest,
    'boost_tree': boost_tree,
}


def _tree_args(params):
    args = {}
    if 'tree_depth' in params:
        args['max_depth'] = int(params['tree_depth'])
    if 'min_n' in params:
        args['min_samples_split'] = int(params['min_n'])
    if 'cost_complexity' in params:
        args['ccp_alpha'] = float(params['cost_complexity'])
    return args


def build_estimator(spec: ModelSpec, seed=None):
    """
    Translate a resolved ModelSpec into an unfitted estimator.

    Note: linear and logistic models are deterministic solvers; tree-based
    models receive `seed` as random_state for reproducibility.
    """
    require_resolved(spec.params, spec.model_type)
    params = spec.params
    classification = spec.mode == 'classification'
    seed_args = {'random_state': seed} if spec.model_type in STOCHASTIC_MODELS else {}

    if spec.model_type == 'logistic_reg':
        args = {'max_iter': 1000}
        if 'penalty' in params:
            penalty = float(params['penalty'])
            if penalty <= 0:
                raise ValueError("logistic_reg penalty must be > 0")
            args['C'] = 1.0 / penalty
            if 'mixture' in params:
                args.update(penalty='elasticnet', solver='saga', l1_ratio=float(params['mixture']))
        elif 'mixture' in params:
            raise ValueError("logistic_reg mixture needs a penalty")
        else:
            # unpenalized, matching a plain maximum likelihood fit
            args['penalty'] = None
        return LogisticRegression(**args)

    elif spec.model_type == 'linear_reg':
        return LinearRegression()

    elif spec.model_type == 'decision_tree':
        cls = DecisionTreeClassifier if classification else DecisionTreeRegressor
        return cls(**seed_args, **_tree_args(params))

    elif spec.model_type == 'rand_forest':
        args = _tree_args(params)
        if 'mtry' in params:
            args['max_features'] = int(params['mtry'])
        if 'trees' in params:
            args['n_estimators'] = int(params['trees'])
        cls = RandomForestClassifier if classification else RandomForestRegressor
        return cls(**seed_args, **args)

    elif spec.model_type == 'boost_tree':
        if not HAS_XGBOOST:
            raise ImportError("XGBoost not installed. Run: pip install xgboost")
        args = {}
        if 'trees' in params:
            args['n_estimators'] = int(params['trees'])
        if 'tree_depth' in params:
            args['max_depth'] = int(params['tree_depth'])
        if 'learn_rate' in params:
            args['learning_rate'] = float(params['learn_rate'])
        if 'min_n' in params:
            args['min_child_weight'] = int(params['min_n'])
        if classification:
            return XGBClassifier(**seed_args, verbosity=0, eval_metric='logloss', **args)
        return XGBRegressor(**seed_args, verbosity=0, **args)

    raise ValueError(f"Unknown model type: '{spec.model_type}'. Supported: {list(SUPPORTED_MODELS)}")


def get_model_info(model_type):
    """Get information about a model type."""
    return {
        'type': model_type,
        'modes': SUPPORTED_MODELS.get(model_type, []),
        'default_engine': DEFAULT_ENGINES.get(model_type),
        'supports_random_state': model_type in STOCHASTIC_MODELS,
    }
