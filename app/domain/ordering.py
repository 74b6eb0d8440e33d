"""Pure helpers for ordered sequences (columns of a board, tasks of a column)."""
from typing import Sequence, TypeVar

T = TypeVar("T")


def clamp_index(index: int, length: int) -> int:
    """Clamp an insertion index into 0..length."""
    return max(0, min(index, length))


def insert_at(items: Sequence[T], item: T, index: int) -> list[T]:
    """
    Return a new list with ``item`` removed from wherever it was and inserted at ``index``.

    Example:
        >>> insert_at([1, 2, 3], 1, 2)
        [2, 3, 1]
        >>> insert_at([1, 2], 9, 10)
        [1, 2, 9]
    """
    result = [x for x in items if x != item]
    result.insert(clamp_index(index, len(result)), item)
    return result


def is_permutation(candidate: Sequence[T], reference: Sequence[T]) -> bool:
    """Same elements, each exactly once."""
    return len(candidate) == len(reference) == len(set(candidate)) and set(candidate) == set(reference)
