"""
Ring Buffer
===========

Fixed-capacity circular buffer over a pre-allocated arena. Appending past
capacity overwrites the oldest entry in O(1).
"""

from __future__ import annotations

from typing import Generic, Iterator, List, Optional, TypeVar

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """
    Circular buffer holding at most `capacity` items, oldest first.
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"RingBuffer capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._arena: List[Optional[T]] = [None] * capacity
        self._head: int = 0    # Index of the oldest item
        self._size: int = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def is_full(self) -> bool:
        return self._size == self._capacity

    def __len__(self) -> int:
        return self._size

    def __bool__(self) -> bool:
        return self._size > 0

    def append(self, item: T) -> Optional[T]:
        """
        Append an item.

        Returns:
            The evicted oldest item when the buffer was full, else None.
        """
        if self._size < self._capacity:
            self._arena[(self._head + self._size) % self._capacity] = item
            self._size += 1
            return None

        evicted = self._arena[self._head]
        self._arena[self._head] = item
        self._head = (self._head + 1) % self._capacity
        return evicted

    def __getitem__(self, index: int) -> T:
        """Index from oldest (0) to newest (-1)."""
        if index < 0:
            index += self._size
        if not 0 <= index < self._size:
            raise IndexError("RingBuffer index out of range")
        return self._arena[(self._head + index) % self._capacity]

    def __iter__(self) -> Iterator[T]:
        for i in range(self._size):
            yield self._arena[(self._head + i) % self._capacity]

    def latest(self) -> Optional[T]:
        """Newest item, or None if empty."""
        if self._size == 0:
            return None
        return self[-1]

    def tail(self, count: int) -> List[T]:
        """Up to `count` newest items, oldest first."""
        count = max(0, min(count, self._size))
        return [self[i] for i in range(self._size - count, self._size)]

    def to_list(self) -> List[T]:
        return list(self)

    def clear(self) -> None:
        self._arena = [None] * self._capacity
        self._head = 0
        self._size = 0
