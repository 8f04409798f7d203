"""Small sets that compare their members by identity."""

from __future__ import annotations

from typing import Generic, Iterator, Optional, TypeVar

T = TypeVar("T")


class IdentitySet(Generic[T]):
    """An ordered set of objects compared by identity, used for peers and pieces."""

    def __init__(self) -> None:
        self._items: list[T] = []

    def _position(self, item: T) -> Optional[int]:
        return next((i for i, x in enumerate(self._items) if x is item), None)

    def add(self, item: T) -> bool:
        """Add ``item``; return False if it was already present."""
        if item in self:
            return False
        self._items.append(item)
        return True

    def remove(self, item: T) -> bool:
        """Remove ``item`` by moving the last member into its place; False if absent."""
        pos = self._position(item)
        if pos is None:
            return False
        last = self._items.pop()
        if pos < len(self._items):
            self._items[pos] = last
        return True

    def __contains__(self, item: object) -> bool:
        return any(x is item for x in self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))