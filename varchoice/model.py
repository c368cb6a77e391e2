"""
Variable Choice Model

Utility model for choosing a variable-size subset from a slate:

    P(choice | slate) = P(|choice| = k | |slate|) * exp(U(choice)) / Z_k(slate)

where U(S) is the sum of item utilities in S plus the hot-set correction for
S, and Z_k(slate) sums exp(U) over all size-k subsets of the slate.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import numpy.typing as npt

from .data import ChoiceDataset
from .engine import (
    MAX_SUBSET_SIZE,
    enumerate_subsets,
    gradient_update,
    subset_probabilities,
    sumexp,
)
from .hotset import HotSet, Key, as_key

logger = logging.getLogger(__name__)

# Gradients with a larger Euclidean norm are rescaled to this norm
GRADIENT_NORM_LIMIT = 10.0


@dataclass
class ChoiceModel:
    """
    Fitted (or initial) parameters of the variable choice model.

    Attributes:
        z (np.ndarray): Size weights; z[k - 1] is the weight of choosing k items.
            Renormalized per slate over the sizes feasible for it.
        utilities (np.ndarray): Item utilities; item id i lives at index i - 1.
        hotset (HotSet): Corrections for explicitly modeled subsets.
    """

    z: npt.NDArray[np.float64]
    utilities: npt.NDArray[np.float64]
    hotset: HotSet = field(default_factory=HotSet)

    @property
    def num_items(self) -> int:
        return int(self.utilities.size)

    @property
    def max_size(self) -> int:
        return int(self.z.size)

    @property
    def num_params(self) -> int:
        """Length of the packed utility/hot-set parameter vector."""
        return self.num_items + len(self.hotset)


def initialize_model(dataset: ChoiceDataset) -> ChoiceModel:
    """Uniform size weights, zero utilities and an empty hot set."""
    max_size = dataset.max_choice_size
    if max_size < 1:
        raise ValueError("Cannot initialize a model from an empty dataset")
    if max_size > MAX_SUBSET_SIZE:
        logger.warning(
            "Dataset has choices of up to %d items; only sizes up to %d can be scored",
            max_size,
            MAX_SUBSET_SIZE,
        )
    return ChoiceModel(
        z=np.ones(max_size) / max_size,
        utilities=np.zeros(dataset.num_items),
        hotset=HotSet(),
    )


def add_to_hotset(model: ChoiceModel, subset: Sequence[int]) -> None:
    """Promote `subset` to the hot set with a zero correction."""
    model.hotset.add(subset)


def pack(model: ChoiceModel, keys: Optional[Sequence[Key]] = None) -> npt.NDArray[np.float64]:
    """
    Flatten utilities and hot-set values into one parameter vector.

    Args:
        model: Model to read.
        keys: Hot-set keys in slot order. Defaults to the hot set's
            insertion order.

    Returns:
        Array of length num_items + len(keys).
    """
    if keys is None:
        keys = list(model.hotset)
    hot_values = np.array([model.hotset.value(key) for key in keys], dtype=np.float64)
    return np.concatenate([model.utilities.astype(np.float64), hot_values])


def unpack(
    params: npt.NDArray[np.float64],
    model: ChoiceModel,
    keys: Optional[Sequence[Key]] = None,
) -> ChoiceModel:
    """
    Build a new model from a parameter vector laid out as by `pack`.

    `model` supplies the size weights, the number of items and the hot set
    whose values are replaced; it is not modified.
    """
    if keys is None:
        keys = list(model.hotset)
    params = np.asarray(params, dtype=np.float64)
    n_items = model.num_items
    expected = n_items + len(keys)
    if params.shape != (expected,):
        raise ValueError(f"params must have shape ({expected},), got {params.shape}")

    hotset = model.hotset.copy()
    for key, value in zip(keys, params[n_items:]):
        hotset.set(key, value)
    return ChoiceModel(z=model.z.copy(), utilities=params[:n_items].copy(), hotset=hotset)


def clip_gradient(
    grad: npt.NDArray[np.float64], limit: float = GRADIENT_NORM_LIMIT
) -> npt.NDArray[np.float64]:
    """Rescale `grad` in place to norm `limit` if its norm exceeds it."""
    gnorm = float(np.linalg.norm(grad))
    if gnorm > limit:
        grad *= limit / gnorm
    return grad


def feasible_sizes(slate_size: int, max_size: int, choice_size: int = 1) -> int:
    """
    Largest choice size the size distribution normalizes over for a slate.

    Sizes 1..min(slate_size - 1, max_size), widened to include `choice_size`
    so that an observed size is never outside its own normalization.
    """
    return min(max(slate_size - 1, choice_size), max_size)


def size_probabilities(model: ChoiceModel, slate_size: int) -> npt.NDArray[np.float64]:
    """P(k items chosen | slate_size) for k = 1..len(z), as an array."""
    m = feasible_sizes(slate_size, model.max_size)
    probs = np.zeros(model.max_size)
    probs[:m] = model.z[:m] / np.sum(model.z[:m])
    return probs


def _check_items(model: ChoiceModel, dataset: ChoiceDataset) -> None:
    if dataset.num_items > model.num_items:
        raise ValueError(
            f"Dataset has item id {dataset.num_items} but the model only has "
            f"{model.num_items} utilities"
        )


def _event_log_likelihood(
    model: ChoiceModel,
    slate: npt.NDArray[np.int64],
    choice: npt.NDArray[np.int64],
    allow_repeats: bool,
) -> float:
    size = int(choice.size)
    if size > model.max_size:
        return -np.inf
    m = feasible_sizes(int(slate.size), model.max_size, size)
    ll = float(np.log(model.z[size - 1] / np.sum(model.z[:m])))
    ll += float(np.sum(model.utilities[choice - 1]))
    ll += model.hotset.value(choice)
    ll -= float(np.log(sumexp(model.utilities, model.hotset, slate, size, allow_repeats)))
    return ll


def log_likelihood_contributions(
    model: ChoiceModel, dataset: ChoiceDataset, allow_repeats: bool = False
) -> npt.NDArray[np.float64]:
    """
    Per-event log-likelihoods.

    Each event contributes its size term, the utility of the choice (items
    plus hot-set correction) and minus the log partition function over
    subsets of the chosen size.

    Raises:
        NumericalDivergenceError: If a partition function is not finite.
        UnsupportedSubsetSizeError: If a choice has more than 5 items.
    """
    _check_items(model, dataset)
    return np.array(
        [_event_log_likelihood(model, s, c, allow_repeats) for s, c in dataset],
        dtype=np.float64,
    )


def log_likelihood(
    model: ChoiceModel, dataset: ChoiceDataset, allow_repeats: bool = False
) -> float:
    """Total log-likelihood of `dataset` under `model`."""
    return float(np.sum(log_likelihood_contributions(model, dataset, allow_repeats)))


def gradient(
    model: ChoiceModel,
    dataset: ChoiceDataset,
    hotset_index: Optional[Mapping[Key, int]] = None,
    norm_limit: Optional[float] = GRADIENT_NORM_LIMIT,
    allow_repeats: bool = False,
) -> npt.NDArray[np.float64]:
    """
    Gradient of the negative log-likelihood over utilities and hot-set values.

    The size term does not depend on these parameters and contributes nothing.

    Args:
        model: Current parameters.
        dataset: Observed events.
        hotset_index: Slot of each hot-set key in the parameter vector.
            Defaults to insertion order after the item slots.
        norm_limit: Rescale the result to this norm when it is larger.
            None disables rescaling.
        allow_repeats: Passed through to the engine.

    Returns:
        Array of length num_items + len(hotset_index).
    """
    _check_items(model, dataset)
    n_items = model.num_items
    if hotset_index is None:
        hotset_index = model.hotset.index(n_items)
    grad = np.zeros(n_items + len(hotset_index))

    for slate, choice in dataset:
        grad[choice - 1] -= 1.0
        slot = hotset_index.get(as_key(choice))
        if slot is not None:
            grad[slot] -= 1.0
        gradient_update(
            model.utilities,
            model.hotset,
            slate,
            int(choice.size),
            grad,
            hotset_index,
            allow_repeats,
        )

    if norm_limit is not None:
        clip_gradient(grad, norm_limit)
    return grad


def predict_subsets(
    model: ChoiceModel, slate: Sequence[int], size: int, allow_repeats: bool = False
) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.float64]]:
    """
    Conditional distribution over size-`size` subsets of a slate.

    Returns:
        subsets: (num_subsets, size) item ids in enumeration order.
        probs: P(subset | slate, size) for each row.
    """
    slate_arr = np.sort(np.asarray(slate, dtype=np.int64))
    subsets = enumerate_subsets(slate_arr, size, allow_repeats)
    probs = subset_probabilities(model.utilities, model.hotset, slate_arr, size, allow_repeats)
    return subsets, probs


def choice_probability(
    model: ChoiceModel,
    slate: Sequence[int],
    choice: Sequence[int],
    allow_repeats: bool = False,
) -> float:
    """Probability of choosing exactly `choice` when offered `slate`."""
    dataset = ChoiceDataset([(slate, choice)])
    _check_items(model, dataset)
    log_p = _event_log_likelihood(model, dataset.slates[0], dataset.choices[0], allow_repeats)
    return float(np.exp(log_p))
