# Workflows: one preprocessing recipe + one model spec fitted as a unit

from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from .exceptions import PipelineStateError, SchemaError, UnresolvedParameterError
from .metrics import outcome_levels as _class_levels
from .models import ModelSpec, build_estimator
from .recipes import PreparedRecipe, Recipe, bake, juice, prep, step_dummy


@dataclass(frozen=True)
class Workflow:
    """
    A model spec paired with either a Recipe or a plain predictor list.

    With a predictor list, categorical predictors are dummy-encoded the way a
    model formula would do it.
    """
    model: ModelSpec
    recipe: Optional[Recipe] = None
    predictors: Optional[Tuple[str, ...]] = None
    outcome: Optional[str] = None

    def __post_init__(self):
        if self.recipe is None and self.outcome is None:
            raise ValueError("Workflow needs a recipe or an outcome column")
        if self.recipe is not None and self.outcome is None:
            object.__setattr__(self, 'outcome', self.recipe.outcome)
        if self.predictors is not None and not isinstance(self.predictors, tuple):
            object.__setattr__(self, 'predictors', tuple(self.predictors))

    def preprocessor(self) -> Recipe:
        if self.recipe is not None:
            return self.recipe
        return Recipe(self.outcome, self.predictors).add_step(step_dummy())

    def parameters(self) -> List[str]:
        ids = self.preprocessor().parameters()
        ids += [i for i in self.model.parameters() if i not in ids]
        return ids

    def bind(self, bindings):
        recipe = self.recipe.bind(bindings) if self.recipe is not None else None
        return replace(self, recipe=recipe, model=self.model.bind(bindings))


def _as_bindings(params) -> Dict[str, Any]:
    if isinstance(params, pd.DataFrame):
        if len(params) != 1:
            raise ValueError(f"Expected a single row of parameters, got {len(params)}")
        params = params.iloc[0]
    if isinstance(params, pd.Series):
        params = params.to_dict()
    return {k: (v.item() if hasattr(v, 'item') else v) for k, v in dict(params).items()}


def finalize_workflow(workflow: Workflow, params) -> Workflow:
    """Substitute Tune markers with chosen values (dict, Series or one-row DataFrame)."""
    return workflow.bind(_as_bindings(params))


def outcome_levels(y: pd.Series) -> List[Any]:
    """Class levels in model order; the first level is the event class."""
    return _class_levels(y.dropna())


@dataclass
class FittedWorkflow:
    workflow: Workflow
    prepared: PreparedRecipe
    estimator: Any
    levels: Optional[List[Any]]
    feature_names: List[str]

    @property
    def mode(self):
        return self.workflow.model.mode

    @property
    def outcome(self):
        return self.workflow.outcome

    def _features(self, new_data):
        baked = bake(self.prepared, new_data)
        return baked[self.feature_names]

    def predict_proba(self, new_data) -> pd.DataFrame:
        if self.mode != 'classification':
            raise PipelineStateError("Class probabilities are only available for classification models")
        X = self._features(new_data)
        raw = self.estimator.predict_proba(X)
        probs = np.zeros((len(X), len(self.levels)))
        # estimator classes are integer codes into self.levels
        for j, code in enumerate(self.estimator.classes_):
            probs[:, int(code)] = raw[:, j]
        return pd.DataFrame(probs, columns=[f".pred_{lvl}" for lvl in self.levels], index=new_data.index)

    def classes_from_proba(self, probs: pd.DataFrame, threshold=0.5) -> pd.Series:
        values = probs.to_numpy()
        if len(self.levels) == 2:
            codes = np.where(values[:, 0] >= threshold, 0, 1)
        else:
            codes = values.argmax(axis=1)
        return pd.Series(
            pd.Categorical.from_codes(codes, categories=self.levels),
            index=probs.index, name='.pred_class',
        )

    def predict(self, new_data, type='class', threshold=0.5) -> pd.DataFrame:
        """
        One prediction row per input row, in input order.

        Args:
            type: 'class' for `.pred_class`, 'prob' for `.pred_<level>` columns
            threshold: event-class probability cut-off for binary outcomes
        """
        if self.mode == 'regression':
            preds = self.estimator.predict(self._features(new_data))
            return pd.DataFrame({'.pred': preds}, index=new_data.index)

        probs = self.predict_proba(new_data)
        if type == 'prob':
            return probs
        if type == 'class':
            return self.classes_from_proba(probs, threshold).to_frame()
        raise ValueError(f"Unknown prediction type '{type}'. Use 'class' or 'prob'.")

    def augment(self, new_data, threshold=0.5) -> pd.DataFrame:
        """`new_data` with prediction columns appended; rows and order unchanged."""
        if self.mode == 'regression':
            return pd.concat([new_data, self.predict(new_data)], axis=1)
        probs = self.predict_proba(new_data)
        classes = self.classes_from_proba(probs, threshold)
        return pd.concat([new_data, classes.to_frame(), probs], axis=1)

    def coefficients(self) -> pd.DataFrame:
        """
        Fitted coefficients of a linear model.

        For binary logistic models the estimates are on the log-odds of the
        second outcome level, as a glm fit reports them.
        """
        if not hasattr(self.estimator, 'coef_'):
            raise PipelineStateError(f"{type(self.estimator).__name__} has no coefficients")
        coef = np.atleast_2d(self.estimator.coef_)[0]
        intercept = np.atleast_1d(self.estimator.intercept_)[0]
        return pd.DataFrame({
            'term': ['(Intercept)'] + list(self.feature_names),
            'estimate': [float(intercept)] + [float(c) for c in coef],
        })

    def variable_importance(self) -> pd.DataFrame:
        if hasattr(self.estimator, 'feature_importances_'):
            values = np.asarray(self.estimator.feature_importances_, dtype=float)
        elif hasattr(self.estimator, 'coef_'):
            values = np.abs(np.atleast_2d(self.estimator.coef_)[0])
        else:
            raise PipelineStateError(f"{type(self.estimator).__name__} has no importance measure")
        table = pd.DataFrame({'variable': self.feature_names, 'importance': values})
        return table.sort_values('importance', ascending=False, kind='mergesort').reset_index(drop=True)


def fit_workflow(workflow: Workflow, data: pd.DataFrame, seed=None) -> FittedWorkflow:
    """
    Fit the recipe on `data`, bake it, then fit the model on the baked features.

    Raises UnresolvedParameterError if any Tune marker is still present.
    """
    pending = workflow.parameters()
    if pending:
        raise UnresolvedParameterError(f"hyperparameter '{pending[0]}' has no concrete value")

    prepared = prep(workflow.preprocessor(), data)
    train = juice(prepared)
    feature_names = prepared.output_columns
    if not feature_names:
        raise SchemaError("Recipe produced no predictor columns")
    X = train[feature_names]
    y = train[workflow.outcome]

    if y.isnull().any():
        raise ValueError(f"Outcome '{workflow.outcome}' has {int(y.isnull().sum())} missing values")

    spec = workflow.model
    # mtry cannot exceed the number of predictors after preprocessing
    if 'mtry' in spec.params and int(spec.params['mtry']) > len(feature_names):
        spec = spec.set_args(mtry=len(feature_names))

    estimator = build_estimator(spec, seed=seed)

    levels = None
    if spec.mode == 'classification':
        levels = outcome_levels(y)
        codes = pd.Categorical(y, categories=levels).codes
        if len(np.unique(codes)) < 2:
            raise ValueError(f"Outcome '{workflow.outcome}' has a single class in the training data")
        estimator.fit(X, codes)
    else:
        estimator.fit(X, y.to_numpy(dtype=float))

    return FittedWorkflow(
        workflow=workflow,
        prepared=prepared,
        estimator=estimator,
        levels=levels,
        feature_names=feature_names,
    )
