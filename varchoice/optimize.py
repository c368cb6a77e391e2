"""
Optimizer strategy

The learning routines only need `minimize(x0, objective, gradient, options)`;
`ScipyOptimizer` provides it on top of scipy.optimize.minimize.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import numpy as np
import numpy.typing as npt
from scipy.optimize import OptimizeResult, minimize

logger = logging.getLogger(__name__)

Objective = Callable[[npt.NDArray[np.float64]], float]
Gradient = Callable[[npt.NDArray[np.float64]], npt.NDArray[np.float64]]


@dataclass
class OptimizerOptions:
    """
    Stopping and tracing settings for one optimization.

    Attributes:
        f_tol: Relative tolerance on successive objective values.
        max_evaluations: Cap on objective evaluations (None for no cap).
        max_iterations: Cap on optimizer iterations.
        trace: Log every iteration at INFO level.
    """

    f_tol: float = 1e-6
    max_evaluations: Optional[int] = None
    max_iterations: int = 15000
    trace: bool = True


class Optimizer(Protocol):
    """Anything that can minimize a smooth objective given its gradient."""

    def minimize(
        self,
        x0: npt.NDArray[np.float64],
        objective: Objective,
        gradient: Gradient,
        options: OptimizerOptions,
    ) -> OptimizeResult: ...


class ScipyOptimizer:
    """
    Quasi-Newton minimization through scipy.optimize.minimize.

    With the default L-BFGS-B method, `f_tol` maps to `ftol` and
    `max_evaluations` to `maxfun`. Other methods receive `f_tol` as `tol`
    and the evaluation cap is enforced from the iteration callback.
    """

    def __init__(self, method: str = "L-BFGS-B", options: Optional[dict[str, Any]] = None) -> None:
        self.method = method
        self.options = dict(options or {})

    def __repr__(self) -> str:
        return f"ScipyOptimizer(method={self.method!r})"

    def minimize(
        self,
        x0: npt.NDArray[np.float64],
        objective: Objective,
        gradient: Gradient,
        options: OptimizerOptions,
    ) -> OptimizeResult:
        n_evals = 0
        n_iter = 0

        def counted_objective(x: npt.NDArray[np.float64]) -> float:
            nonlocal n_evals
            n_evals += 1
            return objective(x)

        lbfgsb = self.method.upper() == "L-BFGS-B"
        scipy_options: dict[str, Any] = {"maxiter": options.max_iterations}
        tol: Optional[float] = None
        if lbfgsb:
            scipy_options["ftol"] = options.f_tol
            if options.max_evaluations is not None:
                scipy_options["maxfun"] = options.max_evaluations
        else:
            tol = options.f_tol
        scipy_options.update(self.options)

        def callback(intermediate_result: OptimizeResult) -> None:
            nonlocal n_iter
            n_iter += 1
            if options.trace:
                logger.info(
                    "iteration %d: f=%.6f evaluations=%d", n_iter, intermediate_result.fun, n_evals
                )
            if (
                not lbfgsb
                and options.max_evaluations is not None
                and n_evals >= options.max_evaluations
            ):
                raise StopIteration

        result = minimize(
            fun=counted_objective,
            x0=np.asarray(x0, dtype=np.float64),
            jac=gradient,
            method=self.method,
            tol=tol,
            options=scipy_options,
            callback=callback,
        )
        logger.debug("%s finished: %s", self.method, result.message)
        return result
