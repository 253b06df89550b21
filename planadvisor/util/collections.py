"""Provides utilities to work with arbitrary collections like lists, sets and tuples."""

from __future__ import annotations

import typing
from collections.abc import Generator, Iterable, Sequence

T = typing.TypeVar("T")


def enlist(obj: T | Iterable[T]) -> list[T]:
    """Transforms any object into a list of that object, unless it already is a sequence.

    Strings are treated as scalar values, i.e. ``"foo"`` becomes ``["foo"]`` rather than ``["f", "o", "o"]``. *None* becomes
    an empty list.
    """
    if obj is None:
        return []
    if isinstance(obj, (str, bytes)) or not isinstance(obj, Iterable):
        return [obj]
    return list(obj)


def pairs(lst: Sequence[T]) -> Generator[tuple[T, T], None, None]:
    """Provides all pairs of elements of the given sequence, disregarding order and identical pairs.

    This means that the resulting iterable will not contain entries *(a, a)* unless *a* itself is present multiple
    times in the input. Likewise, tuples *(a, b)* and *(b, a)* are treated as equal and only one of them will be
    returned. Pairs are produced in the order of the input sequence, i.e. *(lst[0], lst[1])* comes first.

    Parameters
    ----------
    lst : Sequence[T]
        The sequence that contains the pairs.

    Yields
    ------
    Generator[tuple[T, T], None, None]
        The element pairs.
    """
    for a_idx, a in enumerate(lst):
        for b in lst[a_idx + 1:]:
            yield a, b


def set_union(sets: Iterable[Iterable[T]]) -> set[T]:
    """Computes the union of many sets.

    Parameters
    ----------
    sets : Iterable[Iterable[T]]
        The sets to combine.

    Returns
    -------
    set[T]
        Large union of all provided sets.
    """
    union_set: set[T] = set()
    for s in sets:
        union_set |= set(s)
    return union_set
