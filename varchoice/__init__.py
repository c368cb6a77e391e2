"""
Varchoice: Variable-Size Subset Choice Estimation

A Python library for estimating discrete choice models where agents select a
subset of up to five items from a slate, with additive item utilities, a
distribution over choice sizes, and learned corrections for a sparse set of
"hot" subsets.
"""

from .data import ChoiceDataset, parse_events, read_data
from .engine import enumerate_subsets, gradient_update, subset_probabilities, sumexp
from .errors import (
    ConvergenceError,
    HotSetInsertionError,
    MalformedRecordError,
    NumericalDivergenceError,
    UnsupportedSubsetSizeError,
    VariableChoiceError,
)
from .hotset import HotSet, select_hot_subsets
from .learn import (
    FitOptions,
    FitState,
    VariableChoiceEstimator,
    learn_model,
    learn_size_probs,
    learn_utilities,
)
from .model import (
    ChoiceModel,
    add_to_hotset,
    choice_probability,
    gradient,
    initialize_model,
    log_likelihood,
    log_likelihood_contributions,
    pack,
    predict_subsets,
    unpack,
)
from .optimize import Optimizer, OptimizerOptions, ScipyOptimizer
from .simulate import simulate_data

__all__ = [
    "ChoiceDataset",
    "ChoiceModel",
    "ConvergenceError",
    "FitOptions",
    "FitState",
    "HotSet",
    "HotSetInsertionError",
    "MalformedRecordError",
    "NumericalDivergenceError",
    "Optimizer",
    "OptimizerOptions",
    "ScipyOptimizer",
    "UnsupportedSubsetSizeError",
    "VariableChoiceError",
    "VariableChoiceEstimator",
    "add_to_hotset",
    "choice_probability",
    "enumerate_subsets",
    "gradient",
    "gradient_update",
    "initialize_model",
    "learn_model",
    "learn_size_probs",
    "learn_utilities",
    "log_likelihood",
    "log_likelihood_contributions",
    "pack",
    "parse_events",
    "predict_subsets",
    "read_data",
    "select_hot_subsets",
    "simulate_data",
    "subset_probabilities",
    "sumexp",
    "unpack",
]
