"""Ranking helpers for popularity reports."""

from typing import Callable, Hashable, Iterable, TypeVar

T = TypeVar("T")


def dense_rank(
    items: Iterable[T],
    score: Callable[[T], int],
    tie_break: Callable[[T], Hashable],
) -> list[tuple[int, T]]:
    """Rank items by descending score. Equal scores share a rank, with no gaps.

    Items with equal scores are ordered by tie_break ascending.

    Example:
        >>> dense_rank([("a", 3), ("b", 5), ("c", 3)], lambda x: x[1], lambda x: x[0])
        [(1, ('b', 5)), (2, ('a', 3)), (2, ('c', 3))]
    """
    ordered = sorted(items, key=lambda item: (-score(item), tie_break(item)))
    ranked = []
    rank = 0
    previous = None
    for item in ordered:
        current = score(item)
        if current != previous:
            rank += 1
            previous = current
        ranked.append((rank, item))
    return ranked


def age_group(age: int) -> int:
    """Decade bucket for an age: 0, 10, 20, ..."""
    return (age // 10) * 10
