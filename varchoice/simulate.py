"""
Data Simulation for Variable Choice Models

Draws slates uniformly from the item universe and choices from the model's own
distribution: a size from the size weights, then a subset of that size with
probability proportional to exp(subset utility).
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

import numpy as np
import numpy.typing as npt

from .data import ChoiceDataset
from .engine import MAX_SUBSET_SIZE
from .hotset import HotSet
from .model import ChoiceModel, predict_subsets, size_probabilities


def simulate_data(
    num_events: int,
    num_items: int,
    slate_size: int,
    size_probs: Sequence[float] | None = None,
    utilities: npt.NDArray[np.float64] | None = None,
    hot_values: Mapping[tuple[int, ...], float] | None = None,
    seed: int | None = 42,
    rng: np.random.Generator | None = None,
) -> tuple[ChoiceDataset, ChoiceModel]:
    """
    Generate a synthetic dataset from a known variable choice model.

    Args:
        num_events (int): Number of events.
        num_items (int): Size of the item universe; ids are 1..num_items.
        slate_size (int): Items offered per event.
        size_probs (Sequence[float], optional): Weights of choosing 1, 2, ...
            items. Defaults to uniform over 1..min(slate_size - 1, 5).
        utilities (np.ndarray, optional): True item utilities (num_items,).
            If None, drawn from N(0, 1).
        hot_values (Mapping, optional): True corrections keyed by subset.
        seed (int | None): Random seed for reproducibility. Ignored if rng is provided.
        rng (np.random.Generator, optional): Use an existing RNG instead of seed.

    Returns:
        tuple: (dataset, true_model)

    Raises:
        ValueError: If sizes are inconsistent or size_probs is invalid.
    """
    if num_events < 1:
        raise ValueError(f"num_events must be >= 1, got {num_events}")
    if num_items < 2:
        raise ValueError(f"num_items must be >= 2, got {num_items}")
    if not 2 <= slate_size <= num_items:
        raise ValueError(f"slate_size must be in [2, {num_items}], got {slate_size}")

    if size_probs is None:
        max_size = min(slate_size - 1, MAX_SUBSET_SIZE)
        z = np.ones(max_size) / max_size
    else:
        z = np.asarray(size_probs, dtype=np.float64)
        if z.ndim != 1 or not 1 <= z.size <= MAX_SUBSET_SIZE:
            raise ValueError(f"size_probs must have 1 to {MAX_SUBSET_SIZE} entries")
        if np.any(z < 0) or z.sum() <= 0:
            raise ValueError("size_probs must be non-negative with a positive sum")
        z = z / z.sum()

    rng = rng or np.random.default_rng(seed)

    if utilities is None:
        utilities = rng.normal(size=num_items)
    elif utilities.shape != (num_items,):
        raise ValueError(f"utilities must have shape ({num_items},), got {utilities.shape}")

    hotset = HotSet()
    for key, value in (hot_values or {}).items():
        hotset.set(key, value)
    truth = ChoiceModel(z=z, utilities=np.asarray(utilities, dtype=np.float64), hotset=hotset)

    sizes = np.arange(1, z.size + 1)
    size_p = size_probabilities(truth, slate_size)

    events = []
    for _ in range(num_events):
        slate = np.sort(rng.choice(num_items, size=slate_size, replace=False) + 1)
        k = int(rng.choice(sizes, p=size_p))
        subsets, probs = predict_subsets(truth, slate, k)
        choice = subsets[rng.choice(len(probs), p=probs / probs.sum())]
        events.append((slate, choice))

    return ChoiceDataset(events), truth
