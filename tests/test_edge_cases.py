"""
Tests for error handling and degenerate data.
"""

from unittest.mock import patch

import numpy as np
import pytest
from scipy.optimize import OptimizeResult

from varchoice import (
    ChoiceDataset,
    ChoiceModel,
    ConvergenceError,
    FitOptions,
    FitState,
    NumericalDivergenceError,
    UnsupportedSubsetSizeError,
    VariableChoiceError,
    VariableChoiceEstimator,
    initialize_model,
    learn_size_probs,
    log_likelihood,
)


class TestEdgeCases:
    """Test tricky edge cases and error conditions."""

    def test_size_fit_failure_raises_convergence_error(self):
        """Test that a ConvergenceError is raised when the size fit fails."""
        dataset = ChoiceDataset([([1, 2, 3], [1]), ([1, 2, 3], [1, 2])])
        mock_result = OptimizeResult(
            x=np.zeros(1), success=False, message="Optimization failed intentionally"
        )
        with patch("varchoice.optimize.minimize", return_value=mock_result):
            with pytest.raises(ConvergenceError, match="failed to converge"):
                learn_size_probs(initialize_model(dataset), dataset)

    def test_convergence_failure_aborts_fit(self):
        """Test that the estimator stops after a failed size fit."""
        dataset = ChoiceDataset([([1, 2, 3], [1]), ([1, 2, 3], [1, 2])])
        mock_result = OptimizeResult(x=np.zeros(1), success=False, message="nope")
        estimator = VariableChoiceEstimator(options=FitOptions(trace=False))
        with patch("varchoice.optimize.minimize", return_value=mock_result):
            with pytest.raises(RuntimeError):
                estimator.fit(dataset)
        assert estimator.state_ is FitState.FAILED
        assert estimator.utility_result_ is None

    def test_divergence_aborts_fit(self):
        """Test that an overflowing partition function aborts the utility fit."""
        dataset = ChoiceDataset([([1, 2, 3], [1, 2]), ([1, 2, 3], [3])])
        start = initialize_model(dataset)
        start.utilities = np.full(3, 500.0)
        estimator = VariableChoiceEstimator(options=FitOptions(trace=False))
        with pytest.raises(NumericalDivergenceError):
            estimator.fit(dataset, model=start)
        assert estimator.state_ is FitState.FAILED
        # the size fit completed before the abort
        assert estimator.size_result_ is not None

    def test_errors_share_base_class(self):
        """Test that library errors can be caught together."""
        dataset = ChoiceDataset([([1, 2, 3, 4, 5, 6, 7], [1, 2, 3, 4, 5, 6])])
        model = ChoiceModel(z=np.ones(6) / 6, utilities=np.zeros(7))
        with pytest.raises(VariableChoiceError):
            log_likelihood(model, dataset)
        with pytest.raises(UnsupportedSubsetSizeError):
            log_likelihood(model, dataset)

    def test_single_event(self):
        """Test fitting a dataset with one event."""
        dataset = ChoiceDataset([([1, 2, 3], [1, 2])])
        estimator = VariableChoiceEstimator(options=FitOptions(trace=False)).fit(dataset)
        model = estimator.model_
        # the only observed size absorbs nearly all of the mass
        assert model.z[1] > 0.99
        assert np.all(np.isfinite(model.utilities))
        assert model.utilities[2] < model.utilities[0]

    def test_item_never_offered(self):
        """Test that items absent from every slate keep their starting utility."""
        dataset = ChoiceDataset([([1, 2, 5], [1]), ([1, 5], [5]), ([2, 5], [2])])
        estimator = VariableChoiceEstimator(options=FitOptions(trace=False)).fit(dataset)
        assert estimator.model_.utilities.shape == (5,)
        assert estimator.model_.utilities[2] == 0.0
        assert estimator.model_.utilities[3] == 0.0

    def test_item_never_chosen(self):
        """Test that a never-chosen item ends with the lowest utility."""
        events = [([1, 2, 3], [1]), ([1, 2, 3], [2])] * 20
        dataset = ChoiceDataset(events)
        estimator = VariableChoiceEstimator(options=FitOptions(trace=False)).fit(dataset)
        u = estimator.model_.utilities
        assert u[2] < u[0]
        assert u[2] < u[1]
