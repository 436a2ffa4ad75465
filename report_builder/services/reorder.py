"""
List reordering for template fields and filters.

Drag sources hand over ``(list_id, from_index, to_index)`` triples; only the
indices reach this module. Out-of-range moves are ignored so a bad drop
target can never break the editing session.
"""
from typing import List, Sequence, TypeVar

T = TypeVar("T")


def is_valid_move(items: Sequence[T], from_index: int, to_index: int) -> bool:
    """Both indices address an existing element."""
    size = len(items)
    return 0 <= from_index < size and 0 <= to_index < size


def reorder(items: List[T], from_index: int, to_index: int) -> List[T]:
    """
    Move the element at ``from_index`` to ``to_index``.

    Returns a new list holding the same elements with every other relative
    order preserved. Returns ``items`` itself, unchanged, when either index
    is out of range.
    """
    if not is_valid_move(items, from_index, to_index):
        return items

    moved = list(items)
    element = moved.pop(from_index)
    moved.insert(to_index, element)
    return moved
