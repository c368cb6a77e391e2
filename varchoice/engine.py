"""
Combinatorial likelihood engine

Enumerates the size-k subsets of a slate, scores each as the sum of its item
utilities plus any hot-set correction, and accumulates the partition function
and its gradient. Enumeration follows lexicographic order over slate
positions, so row r of every array below refers to the same subset.
"""

from __future__ import annotations

import functools
import math
from collections.abc import Mapping, Sequence
from itertools import combinations, combinations_with_replacement
from typing import Optional

import numpy as np
import numpy.typing as npt

from .errors import NumericalDivergenceError, UnsupportedSubsetSizeError
from .hotset import HotSet, Key

MAX_SUBSET_SIZE = 5


def check_subset_size(size: int) -> None:
    if not 1 <= size <= MAX_SUBSET_SIZE:
        raise UnsupportedSubsetSizeError(
            f"Cannot handle subset size {size}; supported sizes are 1..{MAX_SUBSET_SIZE}"
        )


def num_subsets(n: int, size: int, allow_repeats: bool = False) -> int:
    """Number of leaves `subset_positions(n, size, allow_repeats)` yields."""
    if allow_repeats:
        return math.comb(n + size - 1, size) if n > 0 else 0
    return math.comb(n, size)


@functools.lru_cache(maxsize=128)
def subset_positions(
    n: int, size: int, allow_repeats: bool = False
) -> npt.NDArray[np.intp]:
    """
    Slate positions of every size-`size` subset, one row per subset.

    With allow_repeats=False rows are strictly increasing (combinations of
    distinct positions). With allow_repeats=True rows are non-decreasing, the
    family produced by nested loops whose inner index starts at the outer one.
    The returned array is shared and read-only.
    """
    check_subset_size(size)
    combos = combinations_with_replacement if allow_repeats else combinations
    positions = np.array(list(combos(range(n), size)), dtype=np.intp).reshape(-1, size)
    positions.setflags(write=False)
    return positions


def subset_rank(positions: Sequence[int], n: int, allow_repeats: bool = False) -> int:
    """Row of `positions` in `subset_positions(n, len(positions), allow_repeats)`."""
    size = len(positions)
    if allow_repeats:
        # Non-decreasing rows map onto strictly increasing rows of range(n + size - 1).
        positions = [p + i for i, p in enumerate(positions)]
        n = n + size - 1
    rank = math.comb(n, size) - 1
    for i, p in enumerate(positions):
        rank -= math.comb(n - 1 - p, size - i)
    return rank


def _hot_rows(
    hotset: Optional[HotSet], slate: npt.NDArray[np.int64], size: int, allow_repeats: bool
) -> tuple[list[int], list[Key]]:
    """Rows (and keys) of the hot subsets of `slate` with `size` items."""
    if hotset is None or size < 2:
        return [], []
    keys = hotset.keys_of_size(size)
    if not keys:
        return [], []

    position = {int(item): i for i, item in enumerate(slate)}
    n = len(slate)
    rows: list[int] = []
    hot_keys: list[Key] = []
    for key in keys:
        try:
            key_positions = [position[item] for item in key]
        except KeyError:
            continue
        rows.append(subset_rank(key_positions, n, allow_repeats))
        hot_keys.append(key)
    return rows, hot_keys


def _score(
    utilities: npt.NDArray[np.float64],
    hotset: Optional[HotSet],
    slate: npt.ArrayLike,
    size: int,
    allow_repeats: bool,
) -> tuple[npt.NDArray[np.intp], npt.NDArray[np.float64], list[int], list[Key]]:
    slate = np.asarray(slate, dtype=np.int64)
    positions = subset_positions(len(slate), size, allow_repeats)
    if slate.size and (slate.min() < 1 or slate.max() > utilities.size):
        bad = slate[(slate < 1) | (slate > utilities.size)][0]
        raise ValueError(
            f"Slate has item id {bad} but utilities cover ids 1..{utilities.size}"
        )
    slate_utils = utilities[slate - 1]
    scores = slate_utils[positions].sum(axis=1)
    rows, keys = _hot_rows(hotset, slate, size, allow_repeats)
    for row, key in zip(rows, keys):
        scores[row] += hotset.value(key)  # type: ignore[union-attr]
    return positions, scores, rows, keys


def _checked_sumexp(scores: npt.NDArray[np.float64], size: int) -> float:
    with np.errstate(over="ignore", invalid="ignore"):
        total = float(np.sum(np.exp(scores)))
    if not np.isfinite(total):
        raise NumericalDivergenceError(
            f"Sum of exponentiated size-{size} subset utilities is {total}"
        )
    return total


def enumerate_subsets(
    slate: npt.ArrayLike, size: int, allow_repeats: bool = False
) -> npt.NDArray[np.int64]:
    """Item ids of every size-`size` subset of `slate`, shape (num_subsets, size)."""
    slate = np.asarray(slate, dtype=np.int64)
    return slate[subset_positions(len(slate), size, allow_repeats)]


def subset_scores(
    utilities: npt.NDArray[np.float64],
    hotset: Optional[HotSet],
    slate: npt.ArrayLike,
    size: int,
    allow_repeats: bool = False,
) -> npt.NDArray[np.float64]:
    """
    Utility of every size-`size` subset of `slate`.

    Args:
        utilities: Item utilities; item id i lives at index i - 1.
        hotset: Corrections added to the subsets they name (None for none).
        slate: Sorted item ids.
        size: Subset size, 1..5.
        allow_repeats: Enumerate non-decreasing position tuples instead of
            distinct subsets.

    Returns:
        1D array aligned with `enumerate_subsets(slate, size, allow_repeats)`.
    """
    return _score(utilities, hotset, slate, size, allow_repeats)[1]


def sumexp(
    utilities: npt.NDArray[np.float64],
    hotset: Optional[HotSet],
    slate: npt.ArrayLike,
    size: int,
    allow_repeats: bool = False,
) -> float:
    """
    Partition function: sum of exp(subset utility) over size-`size` subsets.

    Returns 0.0 when the slate has fewer than `size` items.

    Raises:
        UnsupportedSubsetSizeError: If size is outside 1..5.
        NumericalDivergenceError: If the sum overflows or is NaN.
    """
    scores = _score(utilities, hotset, slate, size, allow_repeats)[1]
    return _checked_sumexp(scores, size)


def subset_probabilities(
    utilities: npt.NDArray[np.float64],
    hotset: Optional[HotSet],
    slate: npt.ArrayLike,
    size: int,
    allow_repeats: bool = False,
) -> npt.NDArray[np.float64]:
    """Probability of each size-`size` subset given that `size` items are chosen."""
    scores = _score(utilities, hotset, slate, size, allow_repeats)[1]
    if scores.size == 0:
        return scores
    total = _checked_sumexp(scores, size)
    return np.exp(scores) / total


def gradient_update(
    utilities: npt.NDArray[np.float64],
    hotset: Optional[HotSet],
    slate: npt.ArrayLike,
    size: int,
    grad: npt.NDArray[np.float64],
    hotset_index: Mapping[Key, int],
    allow_repeats: bool = False,
) -> None:
    """
    Add d log(sumexp) / d params for one slate into `grad` in place.

    Every subset adds exp(score) / sumexp to the slot of each of its items
    (slot i - 1 for item i) and, when the subset is hot, to the slot that
    `hotset_index` assigns to it.
    """
    slate = np.asarray(slate, dtype=np.int64)
    positions, scores, rows, keys = _score(utilities, hotset, slate, size, allow_repeats)
    if scores.size == 0:
        return
    total = _checked_sumexp(scores, size)
    weights = np.exp(scores) / total

    slots = slate - 1
    for col in range(size):
        np.add.at(grad, slots[positions[:, col]], weights)
    for row, key in zip(rows, keys):
        grad[hotset_index[key]] += weights[row]
