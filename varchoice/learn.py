"""
Maximum-likelihood learning

Two fits run in order: the size distribution z, then the item utilities
jointly with the hot-set corrections. Both hand their objective and gradient
to an injected optimizer; the model is rebuilt from each proposed parameter
vector with `unpack` rather than mutated through shared state.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Optional

import numpy as np
import numpy.typing as npt
from scipy.optimize import OptimizeResult
from scipy.special import logsumexp, softmax

from .data import ChoiceDataset
from .errors import ConvergenceError
from .model import (
    GRADIENT_NORM_LIMIT,
    ChoiceModel,
    add_to_hotset,
    choice_probability,
    feasible_sizes,
    gradient,
    initialize_model,
    log_likelihood,
    pack,
    unpack,
)
from .optimize import Optimizer, OptimizerOptions, ScipyOptimizer

logger = logging.getLogger(__name__)


class FitState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    SIZE_FIT_IN_PROGRESS = "size_fit_in_progress"
    SIZE_FIT_DONE = "size_fit_done"
    UTILITY_FIT_IN_PROGRESS = "utility_fit_in_progress"
    CONVERGED = "converged"
    BUDGET_EXHAUSTED = "budget_exhausted"
    FAILED = "failed"


@dataclass
class FitOptions:
    """
    Settings for `learn_model` and `VariableChoiceEstimator`.

    Attributes:
        size_f_tol: Objective tolerance of the size-distribution fit.
        utility_f_tol: Objective tolerance of the utility/hot-set fit.
        max_evaluations: Objective evaluation budget of the utility/hot-set
            fit (None runs it to convergence).
        norm_limit: Gradient norm above which utility gradients are rescaled
            (None disables rescaling).
        allow_repeats: Enumerate subsets with repeated slate positions.
        trace: Log optimizer iterations at INFO level.
    """

    size_f_tol: float = 1e-6
    utility_f_tol: float = 1e-3
    max_evaluations: Optional[int] = 25
    norm_limit: Optional[float] = GRADIENT_NORM_LIMIT
    allow_repeats: bool = False
    trace: bool = True


def _size_table(
    dataset: ChoiceDataset, max_size: int
) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.int64]]:
    """Feasible size bound and observed size per event."""
    choice_sizes = dataset.choice_sizes
    if choice_sizes.size and choice_sizes.max() > max_size:
        raise ValueError(
            f"Dataset has a choice of {choice_sizes.max()} items but the model "
            f"only has size weights up to {max_size}"
        )
    feasible = np.array(
        [
            feasible_sizes(int(n), max_size, int(k))
            for n, k in zip(dataset.slate_sizes, choice_sizes)
        ],
        dtype=np.int64,
    )
    return feasible, choice_sizes


def size_neg_log_likelihood(
    x: npt.NDArray[np.float64],
    feasible: npt.NDArray[np.int64],
    choice_sizes: npt.NDArray[np.int64],
) -> float:
    """
    Negative log-likelihood of the categorical size model.

    `x` holds the scores of sizes 2..K; the size-1 score is fixed at 0.
    Each event normalizes over sizes 1..feasible[i].
    """
    scores = np.concatenate([[0.0], x])
    nll = -np.sum(scores[choice_sizes - 1])
    bounds, counts = np.unique(feasible, return_counts=True)
    for m, count in zip(bounds, counts):
        nll += count * logsumexp(scores[:m])
    return float(nll)


def size_gradient(
    x: npt.NDArray[np.float64],
    feasible: npt.NDArray[np.int64],
    choice_sizes: npt.NDArray[np.int64],
) -> npt.NDArray[np.float64]:
    """Gradient of `size_neg_log_likelihood` with respect to `x`."""
    scores = np.concatenate([[0.0], x])
    grad = -np.bincount(choice_sizes - 1, minlength=scores.size).astype(np.float64)
    bounds, counts = np.unique(feasible, return_counts=True)
    for m, count in zip(bounds, counts):
        grad[:m] += count * softmax(scores[:m])
    return grad[1:]


def learn_size_probs(
    model: ChoiceModel,
    dataset: ChoiceDataset,
    optimizer: Optional[Optimizer] = None,
    options: Optional[FitOptions] = None,
) -> tuple[ChoiceModel, OptimizeResult]:
    """
    Fit the size distribution z by maximum likelihood.

    Returns:
        A copy of `model` with the fitted z, and the optimizer result.

    Raises:
        ConvergenceError: If the optimizer reports failure.
    """
    options = options or FitOptions()
    optimizer = optimizer or ScipyOptimizer()
    feasible, choice_sizes = _size_table(dataset, model.max_size)

    if model.max_size == 1:
        result = OptimizeResult(
            x=np.zeros(0), fun=0.0, success=True, nfev=0, nit=0, message="Only one choice size"
        )
    else:
        result = optimizer.minimize(
            np.zeros(model.max_size - 1),
            lambda x: size_neg_log_likelihood(x, feasible, choice_sizes),
            lambda x: size_gradient(x, feasible, choice_sizes),
            OptimizerOptions(f_tol=options.size_f_tol, trace=options.trace),
        )
        if not result.success:
            raise ConvergenceError(
                f"Size distribution fit failed to converge: {result.message}"
            )

    z = softmax(np.concatenate([[0.0], result.x]))
    logger.info("Fitted size distribution: %s", np.array2string(z, precision=4))
    return dataclasses.replace(model, z=z), result


def learn_utilities(
    model: ChoiceModel,
    dataset: ChoiceDataset,
    optimizer: Optional[Optimizer] = None,
    options: Optional[FitOptions] = None,
) -> tuple[ChoiceModel, OptimizeResult]:
    """
    Jointly fit item utilities and hot-set corrections.

    The parameter vector is the utilities followed by the hot-set values in
    the hot set's insertion order at call time. NaN entries proposed by the
    optimizer are read as 0.0. The lowest-objective vector evaluated is the
    one returned, which matters when the evaluation budget cuts the
    optimization short.

    Returns:
        A new model with fitted utilities and hot-set values, and the
        optimizer result.
    """
    options = options or FitOptions()
    optimizer = optimizer or ScipyOptimizer()
    keys = list(model.hotset)
    hotset_index = model.hotset.index(model.num_items)

    best_f = np.inf
    best_x: Optional[npt.NDArray[np.float64]] = None

    def to_model(x: npt.NDArray[np.float64]) -> tuple[ChoiceModel, npt.NDArray[np.float64]]:
        x = np.where(np.isnan(x), 0.0, x)
        return unpack(x, model, keys), x

    def objective(x: npt.NDArray[np.float64]) -> float:
        nonlocal best_f, best_x
        current, x = to_model(x)
        f = -log_likelihood(current, dataset, options.allow_repeats)
        logger.debug("objective %.6f, max parameter %.4f", f, np.max(x) if x.size else 0.0)
        if f < best_f:
            best_f, best_x = f, x.copy()
        return f

    def jac(x: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        current, _ = to_model(x)
        return gradient(current, dataset, hotset_index, options.norm_limit, options.allow_repeats)

    logger.info(
        "Fitting %d utilities and %d hot-set values", model.num_items, len(keys)
    )
    result = optimizer.minimize(
        pack(model, keys),
        objective,
        jac,
        OptimizerOptions(
            f_tol=options.utility_f_tol,
            max_evaluations=options.max_evaluations,
            trace=options.trace,
        ),
    )
    final = best_x if best_x is not None else np.asarray(result.x, dtype=np.float64)
    fitted, _ = to_model(final)
    return fitted, result


def learn_model(
    model: ChoiceModel,
    dataset: ChoiceDataset,
    optimizer: Optional[Optimizer] = None,
    options: Optional[FitOptions] = None,
) -> ChoiceModel:
    """Run the size fit and then the utility/hot-set fit."""
    model, _ = learn_size_probs(model, dataset, optimizer, options)
    model, _ = learn_utilities(model, dataset, optimizer, options)
    return model


class VariableChoiceEstimator:
    """
    Drives both fits and records where the fitting process is.

    Attributes:
        state_ (FitState): Current stage; FAILED after an aborted fit.
        model_ (ChoiceModel): Latest model written by a completed stage.
        size_result_ (OptimizeResult): Result of the size-distribution fit.
        utility_result_ (OptimizeResult): Result of the utility/hot-set fit.
    """

    def __init__(
        self, optimizer: Optional[Optimizer] = None, options: Optional[FitOptions] = None
    ) -> None:
        self.optimizer = optimizer or ScipyOptimizer()
        self.options = options or FitOptions()

        self.state_ = FitState.UNINITIALIZED
        self.model_: ChoiceModel | None = None
        self.size_result_: OptimizeResult | None = None
        self.utility_result_: OptimizeResult | None = None

    def fit(
        self,
        dataset: ChoiceDataset,
        model: Optional[ChoiceModel] = None,
        hot_subsets: Iterable[Sequence[int]] = (),
    ) -> "VariableChoiceEstimator":
        """
        Fit a model to `dataset`.

        Args:
            dataset: Observed events.
            model: Starting model; defaults to `initialize_model(dataset)`.
                Its hot-set keys are free parameters of the utility fit.
            hot_subsets: Subsets promoted to the hot set before fitting.

        Returns:
            self: Returns the instance itself for method chaining.

        Raises:
            ConvergenceError: If the size-distribution fit does not converge.
            NumericalDivergenceError: If a partition function overflows.
        """
        if model is None:
            model = initialize_model(dataset)
        else:
            model = dataclasses.replace(model, hotset=model.hotset.copy())
        for subset in hot_subsets:
            add_to_hotset(model, subset)
        self.model_ = model

        try:
            self.state_ = FitState.SIZE_FIT_IN_PROGRESS
            logger.info("Fitting size distribution on %d events", len(dataset))
            self.model_, self.size_result_ = learn_size_probs(
                self.model_, dataset, self.optimizer, self.options
            )
            self.state_ = FitState.SIZE_FIT_DONE

            self.state_ = FitState.UTILITY_FIT_IN_PROGRESS
            self.model_, self.utility_result_ = learn_utilities(
                self.model_, dataset, self.optimizer, self.options
            )
        except Exception:
            self.state_ = FitState.FAILED
            raise

        if self.utility_result_.success:
            self.state_ = FitState.CONVERGED
        else:
            self.state_ = FitState.BUDGET_EXHAUSTED
            logger.warning("Utility fit stopped early: %s", self.utility_result_.message)
        logger.info("Fit finished in state %s", self.state_.value)
        return self

    def _fitted_model(self) -> ChoiceModel:
        if self.model_ is None:
            raise ValueError("Model is not fitted. Call fit first.")
        return self.model_

    def evaluate(self, dataset: ChoiceDataset) -> float:
        """Log-likelihood of (typically held-out) `dataset` under the fitted model."""
        return log_likelihood(self._fitted_model(), dataset, self.options.allow_repeats)

    def predict_proba(self, slate: Sequence[int], choice: Sequence[int]) -> float:
        """Probability that `choice` is selected from `slate`."""
        return choice_probability(self._fitted_model(), slate, choice, self.options.allow_repeats)
