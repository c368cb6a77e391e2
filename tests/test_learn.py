"""Tests for the size-distribution fit, the utility/hot-set fit and the estimator."""

import numpy as np
import pytest
from scipy.optimize import OptimizeResult

from varchoice import (
    ChoiceDataset,
    FitOptions,
    FitState,
    VariableChoiceEstimator,
    initialize_model,
    learn_model,
    learn_size_probs,
    learn_utilities,
    log_likelihood,
    simulate_data,
)
from varchoice.learn import size_gradient, size_neg_log_likelihood


class RecordingOptimizer:
    """Evaluates a fixed list of points and returns the last one."""

    def __init__(self, points, estimator=None, success=True):
        self.points = points
        self.estimator = estimator
        self.success = success
        self.states = []
        self.calls = 0

    def minimize(self, x0, objective, gradient, options):
        self.calls += 1
        if self.estimator is not None:
            self.states.append(self.estimator.state_)
        points = [x0] + [np.full_like(x0, p) for p in self.points]
        for x in points:
            objective(x)
            gradient(x)
        return OptimizeResult(
            x=points[-1], fun=objective(points[-1]), success=self.success, message="done", nfev=len(points)
        )


@pytest.fixture
def size_dataset():
    slate = [1, 2, 3, 4, 5, 6]
    choices = [[1]] * 50 + [[1, 2]] * 30 + [[1, 2, 3]] * 20
    return ChoiceDataset([(slate, c) for c in choices])


class TestSizeFit:
    """Test the categorical size model."""

    def test_gradient_matches_finite_differences(self):
        """Test the size gradient against central differences."""
        feasible = np.array([1, 2, 3, 3, 2, 3])
        choice_sizes = np.array([1, 2, 3, 1, 2, 2])
        x = np.array([0.3, -0.4])
        eps = 1e-6
        numeric = np.array(
            [
                (
                    size_neg_log_likelihood(x + eps * e, feasible, choice_sizes)
                    - size_neg_log_likelihood(x - eps * e, feasible, choice_sizes)
                )
                / (2 * eps)
                for e in np.eye(2)
            ]
        )
        np.testing.assert_allclose(size_gradient(x, feasible, choice_sizes), numeric, atol=1e-6)

    def test_recovers_empirical_frequencies(self, size_dataset):
        """Test that with large slates z matches observed size frequencies."""
        model = initialize_model(size_dataset)
        fitted, result = learn_size_probs(model, size_dataset)
        assert result.success
        np.testing.assert_allclose(fitted.z, [0.5, 0.3, 0.2], atol=5e-3)
        assert np.isclose(fitted.z.sum(), 1.0)

    def test_input_model_untouched(self, size_dataset):
        """Test that the fit returns a new model."""
        model = initialize_model(size_dataset)
        learn_size_probs(model, size_dataset)
        np.testing.assert_allclose(model.z, np.ones(3) / 3)

    def test_single_size(self):
        """Test that a dataset of single-item choices gives z = [1]."""
        dataset = ChoiceDataset([([1, 2, 3], [1]), ([1, 2], [2])])
        fitted, result = learn_size_probs(initialize_model(dataset), dataset)
        np.testing.assert_array_equal(fitted.z, [1.0])
        assert result.success

    def test_small_slates_shift_mass(self):
        """Test that events which could only pick one item still count toward size 1."""
        dataset = ChoiceDataset(
            [([1, 2], [1])] * 10 + [([1, 2, 3, 4], [1, 2])] * 10 + [([1, 2, 3, 4], [3])] * 10
        )
        fitted, _ = learn_size_probs(initialize_model(dataset), dataset)
        # Only the 4-item slates inform the split between sizes 1 and 2
        np.testing.assert_allclose(fitted.z, [0.5, 0.5], atol=5e-3)


class TestUtilityFit:
    """Test the joint utility/hot-set fit."""

    def test_improves_likelihood(self):
        """Test that a budgeted fit raises the log-likelihood."""
        dataset, _ = simulate_data(300, num_items=6, slate_size=4, seed=3)
        model, _ = learn_size_probs(initialize_model(dataset), dataset)
        before = log_likelihood(model, dataset)
        fitted, result = learn_utilities(model, dataset)
        assert log_likelihood(fitted, dataset) > before
        # the budget is checked between iterations, so one line search may overrun it
        assert result.nfev <= 25 + 20

    def test_nan_parameters_read_as_zero(self):
        """Test that NaN entries proposed by the optimizer become 0.0."""
        dataset = ChoiceDataset([([1, 2, 3], [1, 2]), ([1, 2, 3], [3])])
        model = initialize_model(dataset)
        model.hotset.add((1, 2))
        fitted, _ = learn_utilities(model, dataset, RecordingOptimizer([np.nan]))
        np.testing.assert_array_equal(fitted.utilities, np.zeros(3))
        assert fitted.hotset.value((1, 2)) == 0.0

    def test_best_vector_is_kept(self):
        """Test that the lowest-objective vector wins over the optimizer's last point."""
        dataset = ChoiceDataset([([1, 2, 3], [1]), ([1, 2, 3], [2]), ([1, 2, 3], [3])])
        model = initialize_model(dataset)

        class WorseLast:
            def minimize(self, x0, objective, gradient, options):
                objective(x0)
                worse = np.array([3.0, -3.0, 0.0])
                return OptimizeResult(x=worse, fun=objective(worse), success=False, message="budget")

        fitted, result = learn_utilities(model, dataset, WorseLast())
        np.testing.assert_array_equal(result.x, [3.0, -3.0, 0.0])
        np.testing.assert_array_equal(fitted.utilities, np.zeros(3))

    def test_hot_value_fits_overrepresented_subset(self):
        """Test that a subset chosen more than utilities explain gets its log odds."""
        slate = [1, 2, 3, 4]
        events = [(slate, [1, 2])] * 30 + [(slate, [3, 4])] * 5 + [(slate, [1, 3])] * 5
        events += [(slate, [2, 4])] * 5 + [(slate, [1, 4])] * 5 + [(slate, [2, 3])] * 5
        dataset = ChoiceDataset(events)
        model = initialize_model(dataset)
        model.hotset.add((1, 2))
        options = FitOptions(max_evaluations=None, norm_limit=None, utility_f_tol=1e-12, trace=False)
        fitted, _ = learn_utilities(model, dataset, options=options)
        # equal utilities reproduce the 5/55 pairs; the correction carries (1, 2) to 30/55
        u = fitted.utilities
        assert np.isclose(u[0], u[1], atol=0.05)
        assert np.isclose(u[2], u[3], atol=0.05)
        assert np.isclose(u[0], u[2], atol=0.05)
        assert np.isclose(fitted.hotset.value((1, 2)), np.log(6.0), atol=0.05)


class TestVariableChoiceEstimator:
    """Test the fitting state machine."""

    def test_initial_state(self):
        """Test that a new estimator has not fitted anything."""
        estimator = VariableChoiceEstimator()
        assert estimator.state_ is FitState.UNINITIALIZED
        assert estimator.model_ is None
        with pytest.raises(ValueError, match="not fitted"):
            estimator.predict_proba([1, 2], [1])

    def test_stage_order(self, size_dataset):
        """Test that the size fit runs before the utility fit."""
        estimator = VariableChoiceEstimator(options=FitOptions(trace=False))
        optimizer = RecordingOptimizer([0.0], estimator=estimator)
        estimator.optimizer = optimizer
        estimator.fit(size_dataset)
        assert optimizer.states == [
            FitState.SIZE_FIT_IN_PROGRESS,
            FitState.UTILITY_FIT_IN_PROGRESS,
        ]
        assert estimator.state_ is FitState.CONVERGED

    def test_budget_exhausted_state(self, size_dataset):
        """Test that an unsuccessful utility fit ends in BUDGET_EXHAUSTED."""

        class FailingUtilityFit(RecordingOptimizer):
            def minimize(self, x0, objective, gradient, options):
                result = super().minimize(x0, objective, gradient, options)
                result.success = options.max_evaluations is None
                return result

        estimator = VariableChoiceEstimator(FailingUtilityFit([0.0]))
        estimator.fit(size_dataset)
        assert estimator.state_ is FitState.BUDGET_EXHAUSTED
        assert estimator.model_ is not None

    def test_failed_state(self, size_dataset):
        """Test that an exception during fitting leaves the estimator FAILED."""

        class Exploding:
            def minimize(self, x0, objective, gradient, options):
                raise RuntimeError("optimizer crashed")

        estimator = VariableChoiceEstimator(Exploding())
        with pytest.raises(RuntimeError, match="optimizer crashed"):
            estimator.fit(size_dataset)
        assert estimator.state_ is FitState.FAILED

    def test_hot_subsets_promoted(self, size_dataset):
        """Test that requested subsets become fitted parameters."""
        start = initialize_model(size_dataset)
        estimator = VariableChoiceEstimator(options=FitOptions(trace=False))
        estimator.fit(size_dataset, model=start, hot_subsets=[(1, 2), (1, 2, 3)])
        assert list(estimator.model_.hotset) == [(1, 2), (1, 2, 3)]
        assert len(start.hotset) == 0

    def test_fit_recovers_parameters(self):
        """Test recovery of sizes, relative utilities and a hot-set correction."""
        utilities = np.array([0.8, 0.2, -0.3, 0.0, -0.6, 0.4])
        dataset, truth = simulate_data(
            2000,
            num_items=6,
            slate_size=5,
            size_probs=[0.5, 0.3, 0.2],
            utilities=utilities,
            hot_values={(2, 3): 1.5},
            seed=11,
        )
        options = FitOptions(max_evaluations=None, norm_limit=None, utility_f_tol=1e-10, trace=False)
        estimator = VariableChoiceEstimator(options=options)
        estimator.fit(dataset, hot_subsets=[(2, 3)])
        model = estimator.model_

        assert estimator.state_ in (FitState.CONVERGED, FitState.BUDGET_EXHAUSTED)
        np.testing.assert_allclose(model.z, truth.z, atol=0.05)
        # utilities are identified only up to a common shift
        np.testing.assert_allclose(
            model.utilities - model.utilities.mean(), utilities - utilities.mean(), atol=0.25
        )
        assert abs(model.hotset.value((2, 3)) - 1.5) < 0.4

    def test_evaluate_and_predict(self):
        """Test held-out evaluation and prediction after fitting."""
        dataset, _ = simulate_data(400, num_items=5, slate_size=4, seed=5)
        train, test = dataset.split(0.75)
        estimator = VariableChoiceEstimator(options=FitOptions(trace=False)).fit(train)
        held_out = estimator.evaluate(test)
        assert np.isfinite(held_out)
        assert held_out < 0
        p = estimator.predict_proba([1, 2, 3, 4], [2])
        assert 0 < p < 1


def test_learn_model_runs_both_fits(size_dataset):
    """Test the functional entry point."""
    model = learn_model(initialize_model(size_dataset), size_dataset, options=FitOptions(trace=False))
    np.testing.assert_allclose(model.z, [0.5, 0.3, 0.2], atol=5e-3)
    assert model.utilities.shape == (6,)
