"""
Variable choice datasets

Events pair a slate (items offered) with a choice (items taken). Both are
stored as sorted int64 arrays.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Iterator, Sequence
from os import PathLike
from typing import Union

import numpy as np
import numpy.typing as npt

from .errors import MalformedRecordError

logger = logging.getLogger(__name__)

IntArray = npt.NDArray[np.int64]
EventInput = tuple[Sequence[int], Sequence[int]]


def _as_sorted_ids(values: Iterable[int], name: str, event: int) -> IntArray:
    arr = np.sort(np.asarray(list(values), dtype=np.int64))
    if arr.size and arr[0] < 1:
        raise ValueError(f"{name} of event {event} has non-positive item id {arr[0]}")
    if np.any(arr[1:] == arr[:-1]):
        raise ValueError(f"{name} of event {event} contains duplicate items")
    arr.setflags(write=False)
    return arr


class ChoiceDataset:
    """
    Immutable collection of (slate, choice) events.

    Attributes:
        slates (tuple[np.ndarray, ...]): Sorted slate item ids per event.
        choices (tuple[np.ndarray, ...]): Sorted chosen item ids per event.
    """

    def __init__(self, events: Iterable[EventInput]) -> None:
        """
        Build and validate a dataset.

        Args:
            events: Iterable of (slate, choice) pairs of item ids. Item ids are
                positive integers.

        Raises:
            ValueError: If a slate is empty or has duplicates, a choice is
                empty, or a choice is not contained in its slate.
        """
        slates: list[IntArray] = []
        choices: list[IntArray] = []
        for i, (raw_slate, raw_choice) in enumerate(events):
            slate = _as_sorted_ids(raw_slate, "slate", i)
            choice = _as_sorted_ids(raw_choice, "choice", i)
            if slate.size == 0:
                raise ValueError(f"slate of event {i} is empty")
            if choice.size == 0:
                raise ValueError(f"choice of event {i} is empty")
            if not np.isin(choice, slate).all():
                raise ValueError(f"choice of event {i} is not a subset of its slate")
            slates.append(slate)
            choices.append(choice)

        self.slates: tuple[IntArray, ...] = tuple(slates)
        self.choices: tuple[IntArray, ...] = tuple(choices)

    def __len__(self) -> int:
        return len(self.slates)

    def __iter__(self) -> Iterator[tuple[IntArray, IntArray]]:
        return zip(self.slates, self.choices)

    def __repr__(self) -> str:
        return f"ChoiceDataset(num_events={len(self)}, num_items={self.num_items})"

    @property
    def slate_sizes(self) -> IntArray:
        return np.array([s.size for s in self.slates], dtype=np.int64)

    @property
    def choice_sizes(self) -> IntArray:
        return np.array([c.size for c in self.choices], dtype=np.int64)

    @property
    def num_items(self) -> int:
        """Largest item id observed in any slate (0 for an empty dataset)."""
        return max((int(s[-1]) for s in self.slates), default=0)

    @property
    def max_choice_size(self) -> int:
        return max((c.size for c in self.choices), default=0)

    def subset_counts(self) -> Counter[tuple[int, ...]]:
        """Number of times each choice (as a sorted tuple) was made."""
        return Counter(tuple(int(i) for i in choice) for choice in self.choices)

    def item_counts(self) -> Counter[int]:
        """Number of choices containing each item."""
        counts: Counter[int] = Counter()
        for choice in self.choices:
            counts.update(int(i) for i in choice)
        return counts

    def split(
        self, train_fraction: float = 0.8
    ) -> tuple["ChoiceDataset", "ChoiceDataset"]:
        """
        Split events in order into training and test datasets.

        The first floor(train_fraction * len(self)) events go to training.
        """
        if not 0 <= train_fraction <= 1:
            raise ValueError(f"train_fraction must be in [0, 1], got {train_fraction}")
        cut = int(np.floor(train_fraction * len(self)))
        events = list(self)
        return ChoiceDataset(events[:cut]), ChoiceDataset(events[cut:])


def parse_events(lines: Iterable[str]) -> ChoiceDataset:
    """
    Parse the text event format.

    Each non-blank line holds whitespace-separated slate ids, a semicolon,
    then whitespace-separated choice ids, e.g. ``"3 1 2;2 1"``.

    Raises:
        MalformedRecordError: If a line does not have exactly two fields of
            integers.
    """
    events: list[EventInput] = []
    for line_number, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        fields = line.split(";")
        if len(fields) != 2:
            raise MalformedRecordError(
                f"expected 2 ';'-separated fields, got {len(fields)}", line_number
            )
        try:
            slate = [int(v) for v in fields[0].split()]
            choice = [int(v) for v in fields[1].split()]
        except ValueError as exc:
            raise MalformedRecordError(str(exc), line_number) from exc
        events.append((slate, choice))

    try:
        return ChoiceDataset(events)
    except ValueError as exc:
        raise MalformedRecordError(str(exc)) from exc


def read_data(path: Union[str, PathLike]) -> ChoiceDataset:
    """Read a dataset file in the text event format."""
    with open(path, encoding="utf-8") as f:
        dataset = parse_events(f)
    logger.info("Read %d events over %d items from %s", len(dataset), dataset.num_items, path)
    return dataset
