"""
Hot-set table

Sparse map from sorted item tuples to additive utility corrections, plus
helpers for picking which observed subsets to promote into it.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import TYPE_CHECKING

from .errors import HotSetInsertionError, UnsupportedSubsetSizeError

if TYPE_CHECKING:
    from .data import ChoiceDataset

MIN_HOT_SIZE = 2
MAX_HOT_SIZE = 5

SELECTION_CRITERIA = ("frequency", "lift", "normalized_lift")

Key = tuple[int, ...]


def as_key(items: Iterable[int]) -> Key:
    """Canonical hot-set key: a sorted tuple of Python ints."""
    return tuple(sorted(int(item) for item in items))


class HotSet:
    """
    Sparse table of subset corrections.

    Keys are sorted tuples of distinct item ids of size 2..5. Lookups for
    keys never inserted return 0.0. Iteration follows insertion order, which
    is what makes `index` stable across pack/unpack cycles.
    """

    def __init__(self) -> None:
        self._values: dict[Key, float] = {}
        self._by_size: dict[int, list[Key]] = {}

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[Key]:
        return iter(self._values)

    def __contains__(self, key: Iterable[int]) -> bool:
        return self.contains(key)

    def __repr__(self) -> str:
        return f"HotSet({self._values!r})"

    def contains(self, key: Iterable[int]) -> bool:
        return as_key(key) in self._values

    def value(self, key: Iterable[int]) -> float:
        """Correction for `key`, 0.0 if it is not hot."""
        return self._values.get(as_key(key), 0.0)

    def set(self, key: Iterable[int], value: float) -> None:
        """Overwrite the correction for `key`, inserting it if needed."""
        k = as_key(key)
        if k not in self._values:
            self._validate(k)
            self._by_size.setdefault(len(k), []).append(k)
        self._values[k] = float(value)

    def add(self, key: Iterable[int]) -> None:
        """
        Promote `key` to the hot set with a zero correction.

        Raises:
            HotSetInsertionError: If `key` is already hot.
            UnsupportedSubsetSizeError: If `key` has fewer than 2 or more
                than 5 items.
            ValueError: If `key` repeats an item.
        """
        k = as_key(key)
        if k in self._values:
            raise HotSetInsertionError(f"Subset {k} is already in the hot set.")
        self.set(k, 0.0)

    def items(self) -> Iterator[tuple[Key, float]]:
        return iter(self._values.items())

    def keys_of_size(self, size: int) -> list[Key]:
        return list(self._by_size.get(size, ()))

    def copy(self) -> "HotSet":
        other = HotSet()
        other._values = dict(self._values)
        other._by_size = {size: list(keys) for size, keys in self._by_size.items()}
        return other

    def index(self, offset: int = 0) -> dict[Key, int]:
        """Map each key to its parameter slot, starting at `offset`."""
        return {key: offset + i for i, key in enumerate(self._values)}

    @staticmethod
    def _validate(key: Key) -> None:
        if not MIN_HOT_SIZE <= len(key) <= MAX_HOT_SIZE:
            raise UnsupportedSubsetSizeError(
                f"Hot-set keys must have {MIN_HOT_SIZE} to {MAX_HOT_SIZE} items, "
                f"got {len(key)}"
            )
        if len(set(key)) != len(key):
            raise ValueError(f"Hot-set key {key} repeats an item")


def select_hot_subsets(
    dataset: "ChoiceDataset", num: int, criterion: str = "frequency"
) -> list[Key]:
    """
    Rank observed multi-item choices as hot-set candidates.

    Args:
        dataset: Observed events.
        num: Maximum number of candidates to return.
        criterion: One of
            - "frequency": number of times the subset was chosen
            - "lift": count / product of the items' choice counts
            - "normalized_lift": count**2 / product of the items' choice counts

    Returns:
        Up to `num` keys, best first.
    """
    if criterion not in SELECTION_CRITERIA:
        raise ValueError(
            f"criterion must be one of {SELECTION_CRITERIA}, got {criterion!r}"
        )
    if num < 0:
        raise ValueError(f"num must be >= 0, got {num}")

    item_counts = dataset.item_counts()
    scored: list[tuple[float, Key]] = []
    for key, count in dataset.subset_counts().items():
        if not MIN_HOT_SIZE <= len(key) <= MAX_HOT_SIZE:
            continue
        if criterion == "frequency":
            score = float(count)
        else:
            denom = 1.0
            for item in key:
                denom *= item_counts[item]
            numer = count**2 if criterion == "normalized_lift" else count
            score = numer / denom
        scored.append((score, key))

    scored.sort(reverse=True)
    return [key for _, key in scored[:num]]
