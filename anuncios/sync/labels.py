"""Collision-free collection labels for imports.

An imported group whose desired label already exists gets a parenthesised
numeric suffix starting at 2::

    unique_label("Imported", {"Imported"})                  # → "Imported (2)"
    unique_label("Imported", {"Imported", "Imported (2)"})  # → "Imported (3)"

Comparison is exact and case-sensitive.  Suffixes are unbounded, so a free
label always exists.
"""

from __future__ import annotations

import itertools
from collections.abc import Container, Iterable

__all__ = ["unique_label", "LabelRegistry"]


def unique_label(desired: str, taken: Container[str]) -> str:
    """Return *desired*, or the first ``"desired (n)"`` (n ≥ 2) not in *taken*."""
    if desired not in taken:
        return desired
    for n in itertools.count(2):
        candidate = f"{desired} ({n})"
        if candidate not in taken:
            return candidate
    raise AssertionError("unreachable")  # pragma: no cover


class LabelRegistry:
    """Set of labels in use during one import batch.

    Seeded with the labels already present in the store; labels chosen for
    the batch are :meth:`reserve`-d before the collection create and
    :meth:`release`-d again if that create fails.
    """

    def __init__(self, existing: Iterable[str] = ()) -> None:
        self._taken: set[str] = set(existing)

    def __contains__(self, label: object) -> bool:
        return label in self._taken

    def __len__(self) -> int:
        return len(self._taken)

    def reserve(self, desired: str) -> str:
        """Pick a free label for *desired* and mark it as taken."""
        label = unique_label(desired, self._taken)
        self._taken.add(label)
        return label

    def release(self, label: str) -> None:
        """Forget a reserved label (its collection was never created)."""
        self._taken.discard(label)
