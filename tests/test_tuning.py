import pytest
import numpy as np
import pandas as pd

from modelkit.exceptions import TestSetReuseError, UnresolvedParameterError
from modelkit.metrics import metric_set
from modelkit.models import logistic_reg, decision_tree, rand_forest
from modelkit.params import tune
from modelkit.recipes import Recipe, step_poly, step_dummy, step_zv, step_normalize
from modelkit.splits import initial_split, vfold_cv
from modelkit.tuning import TuningResult, build_grid, fit_resamples, tune_grid, last_fit
from modelkit.workflow import Workflow, finalize_workflow


def _recipe(degree):
    return (
        Recipe("severity")
        .add_step(step_poly("age", degree=degree))
        .add_step(step_dummy())
        .add_step(step_zv())
        .add_step(step_normalize())
    )


def _hand_built_result(estimates, metric="roc_auc"):
    """TuningResult for a single `degree` parameter from {degree: [fold estimates]}."""
    rows = []
    for i, (degree, values) in enumerate(estimates.items(), start=1):
        for j, value in enumerate(values, start=1):
            rows.append({
                "degree": degree, ".config": f"Preprocessor1_Model{i:02d}",
                "id": f"Fold{j:02d}", "repeat": None,
                ".metric": metric, ".estimator": "binary", ".estimate": value,
            })
    return TuningResult(["degree"], pd.DataFrame(rows))


@pytest.fixture
def split(malaria_df, seed):
    return initial_split(malaria_df, prop=0.75, strata="severity", seed=seed)


@pytest.fixture
def folds(split, seed):
    return vfold_cv(split.training(), v=3, strata="severity", seed=seed)


def test_tie_goes_to_smallest_degree():
    result = _hand_built_result({1: [0.69, 0.71], 2: [0.74, 0.76], 3: [0.70, 0.80]})
    best = result.select_best("roc_auc")
    assert list(best.columns) == ["degree", ".config"]
    assert best["degree"].iloc[0] == 2
    assert best[".config"].iloc[0] == "Preprocessor1_Model02"


def test_show_best_orders_by_mean_then_parameters():
    result = _hand_built_result({3: [0.70, 0.80], 1: [0.69, 0.71], 2: [0.74, 0.76]})
    top = result.show_best("roc_auc", n=2)
    assert len(top) == 2
    assert list(top["degree"]) == [2, 3]
    assert top["mean"].iloc[0] == pytest.approx(0.75)


def test_minimize_metric_picks_lowest_mean():
    result = _hand_built_result({1: [0.20, 0.22], 2: [0.15, 0.17], 3: [0.25, 0.27]}, metric="brier_class")
    assert result.select_best("brier_class")["degree"].iloc[0] == 2
    assert result.select_best("brier_class", maximize=True)["degree"].iloc[0] == 3


def test_collect_metrics_summary():
    result = _hand_built_result({1: [0.6, 0.8], 2: [0.7]})
    summary = result.collect_metrics()

    assert list(summary.columns) == ["degree", ".metric", ".estimator", "mean", "n", "std_err", ".config"]
    first = summary[summary["degree"] == 1].iloc[0]
    assert first["mean"] == pytest.approx(0.7)
    assert first["n"] == 2
    # sd / sqrt(n)
    assert first["std_err"] == pytest.approx(np.std([0.6, 0.8], ddof=1) / np.sqrt(2))
    assert np.isnan(summary[summary["degree"] == 2]["std_err"].iloc[0])

    assert len(result.collect_metrics(summarize=False)) == 3


def test_select_by_one_std_err_prefers_simpler_candidate():
    result = _hand_built_result({1: [0.745, 0.745], 2: [0.74, 0.76], 3: [0.70, 0.80]})
    assert result.select_best("roc_auc")["degree"].iloc[0] == 2
    assert result.select_by_one_std_err("roc_auc")["degree"].iloc[0] == 1


def test_unknown_metric_in_selection_raises():
    result = _hand_built_result({1: [0.7], 2: [0.8]})
    with pytest.raises(ValueError, match="accuracy"):
        result.select_best("accuracy")


def test_tune_grid_evaluates_every_candidate_on_every_fold(folds, seed):
    wf = Workflow(decision_tree(tree_depth=tune("tree_depth")), recipe=_recipe(tune("degree")))
    grid = pd.DataFrame({"degree": [1, 2], "tree_depth": [2, 3]})
    ms = metric_set("roc_auc", "accuracy")

    result = tune_grid(wf, folds, grid=grid, metrics=ms, seed=seed, save_pred=True)

    raw = result.collect_metrics(summarize=False)
    assert len(raw) == 2 * 3 * 2
    assert sorted(raw[".config"].unique()) == ["Preprocessor1_Model01", "Preprocessor1_Model02"]

    summary = result.collect_metrics()
    assert len(summary) == 4
    assert (summary["n"] == 3).all()

    preds = result.collect_predictions()
    assert len(preds) == 2 * len(folds.data)
    for config, rows in preds.groupby(".config"):
        assert sorted(rows[".row"]) == list(range(len(folds.data)))

    best = result.select_best("roc_auc")
    final = finalize_workflow(wf, best)
    assert final.parameters() == []


def test_tune_grid_random_candidates(folds, seed):
    wf = Workflow(logistic_reg(), recipe=_recipe(tune("degree")))
    result = tune_grid(wf, folds, grid=3, metrics=metric_set("roc_auc"), seed=seed)
    summary = result.collect_metrics()
    assert summary["degree"].between(1, 3).all()
    # duplicate draws collapse, so at most three candidates
    assert 1 <= len(summary) <= 3


def test_build_grid_bounds_mtry_by_predictor_count(folds, seed):
    wf = Workflow(rand_forest(mtry=tune("mtry"), trees=10), predictors=["age", "hemoglobin", "sex"], outcome="severity")
    grid = build_grid(wf, folds, size=20, seed=seed)
    assert list(grid.columns) == ["mtry"]
    assert grid["mtry"].between(1, folds.data.shape[1] - 1).all()


def test_grid_missing_parameter_raises(folds):
    wf = Workflow(decision_tree(tree_depth=tune("tree_depth")), recipe=_recipe(tune("degree")))
    with pytest.raises(UnresolvedParameterError, match="tree_depth"):
        tune_grid(wf, folds, grid=pd.DataFrame({"degree": [1, 2]}))


def test_grid_extra_column_raises(folds):
    wf = Workflow(logistic_reg(), recipe=_recipe(tune("degree")))
    with pytest.raises(ValueError, match="penalty"):
        tune_grid(wf, folds, grid=pd.DataFrame({"degree": [1, 2], "penalty": [0.1, 0.2]}))


def test_tune_grid_without_tunable_parameters_raises(folds):
    with pytest.raises(ValueError, match="no tunable"):
        tune_grid(Workflow(logistic_reg(), recipe=_recipe(2)), folds, grid=2)


def test_fit_resamples_with_pending_marker_raises(folds):
    wf = Workflow(logistic_reg(), recipe=_recipe(tune("degree")))
    with pytest.raises(UnresolvedParameterError, match="degree"):
        fit_resamples(wf, folds)


def test_fit_resamples_scores_every_fold(folds, seed):
    wf = Workflow(logistic_reg(), recipe=_recipe(2))
    result = fit_resamples(wf, folds, metrics=metric_set("accuracy", "roc_auc"), seed=seed, save_pred=True)

    raw = result.collect_metrics(summarize=False)
    assert len(raw) == 3 * 2
    assert set(raw["id"]) == {"Fold01", "Fold02", "Fold03"}
    assert (raw[".config"] == "Preprocessor1_Model1").all()
    assert len(result.collect_predictions()) == len(folds.data)
    assert result.select_best("roc_auc")[".config"].iloc[0] == "Preprocessor1_Model1"


def test_parallel_matches_sequential(folds, seed):
    wf = Workflow(rand_forest(trees=20, min_n=tune("min_n")), recipe=_recipe(2))
    grid = pd.DataFrame({"min_n": [2, 10]})
    ms = metric_set("roc_auc", "accuracy")

    seq = tune_grid(wf, folds, grid=grid, metrics=ms, seed=seed, n_jobs=1).collect_metrics()
    par = tune_grid(wf, folds, grid=grid, metrics=ms, seed=seed, n_jobs=2).collect_metrics()
    pd.testing.assert_frame_equal(seq, par)


def test_last_fit_scores_test_rows_once(split, seed):
    wf = Workflow(logistic_reg(), recipe=_recipe(2))
    ms = metric_set("accuracy", "roc_auc", "brier_class")

    result = last_fit(wf, split, metrics=ms, seed=seed)
    assert list(result.collect_metrics()[".metric"]) == ["accuracy", "roc_auc", "brier_class"]
    preds = result.collect_predictions()
    assert len(preds) == len(split.test_index)
    assert result.extract_workflow().feature_names

    with pytest.raises(TestSetReuseError):
        last_fit(wf, split, metrics=ms, seed=seed)


def test_last_fit_failure_leaves_test_rows_unused(split):
    wf = Workflow(logistic_reg(), recipe=_recipe(tune("degree")))
    with pytest.raises(UnresolvedParameterError):
        last_fit(wf, split)
    assert not split.test_consumed


def test_grid_regular_is_full_factorial():
    from modelkit.params import Range, grid_regular
    grid = grid_regular({"degree": Range(1, 3, integer=True), "penalty": Range(-2, 0, trans="log10")}, levels=3)
    assert len(grid) == 9
    assert sorted(grid["degree"].unique()) == [1, 2, 3]
    assert grid["penalty"].max() == pytest.approx(1.0)
    assert grid["penalty"].min() == pytest.approx(0.01)
