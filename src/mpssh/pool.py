"""Pool of active execution slots.

Slots live in a slab (a list indexed by slot position) with a free-list of
vacated indices. Live slots are linked into a ring through parallel
`_next`/`_prev` index lists, so admit and remove splice in O(1) and indices
stay stable while the pool is walked. The cursor is the slot traversals
start from; it only moves when its own slot is removed.
"""

from __future__ import annotations

from typing import Iterator

from .hosts import Host
from .slot import ExecutionSlot


class PoolFullError(RuntimeError):
    """Raised when admitting into a pool already at its bound."""


class SlotPool:
    """Ring of active slots, bounded by `capacity`."""

    def __init__(self, capacity: int, line_length: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.line_length = line_length
        self._slab: list[ExecutionSlot | None] = []
        self._next: list[int] = []
        self._prev: list[int] = []
        self._free: list[int] = []
        self._by_pid: dict[int, ExecutionSlot] = {}
        self._count = 0
        self.cursor: int | None = None  # None is the empty-pool sentinel

    def __len__(self) -> int:
        return self._count

    def __bool__(self) -> bool:
        return self._count > 0

    @property
    def has_capacity(self) -> bool:
        return self._count < self.capacity

    def admit(self, host: Host) -> ExecutionSlot:
        """Create a slot for `host` and link it in just behind the cursor.

        Walking from the cursor therefore visits slots in admission order.
        """
        if not self.has_capacity:
            raise PoolFullError(f"pool is full ({self.capacity} slots)")
        slot = ExecutionSlot(host=host, line_length=self.line_length)
        if self._free:
            index = self._free.pop()
            self._slab[index] = slot
        else:
            index = len(self._slab)
            self._slab.append(slot)
            self._next.append(index)
            self._prev.append(index)
        slot.index = index

        if self.cursor is None:
            self._next[index] = self._prev[index] = index
            self.cursor = index
        else:
            head = self.cursor
            tail = self._prev[head]
            self._next[tail] = index
            self._prev[index] = tail
            self._next[index] = head
            self._prev[head] = index
        self._count += 1
        return slot

    def bind(self, slot: ExecutionSlot, pid: int) -> None:
        """Record the process id of a spawned slot."""
        slot.pid = pid
        self._by_pid[pid] = slot

    def remove(self, slot: ExecutionSlot) -> ExecutionSlot | None:
        """Splice `slot` out of the ring and return the next slot to visit.

        Returns None when the removed slot was the last one.
        """
        index = slot.index
        if index < 0 or self._slab[index] is not slot:
            raise KeyError(f"slot for {slot.host} is not in the pool")

        self._slab[index] = None
        self._free.append(index)
        self._count -= 1
        if slot.pid is not None:
            self._by_pid.pop(slot.pid, None)
        slot.index = -1

        if self._count == 0:
            self.cursor = None
            return None

        nxt = self._next[index]
        prev = self._prev[index]
        self._next[prev] = nxt
        self._prev[nxt] = prev
        if self.cursor == index:
            self.cursor = nxt
        return self._slab[nxt]

    def find_by_process(self, pid: int) -> ExecutionSlot | None:
        return self._by_pid.get(pid)

    def walk(self) -> Iterator[ExecutionSlot]:
        """Visit every slot once in ring order, starting at the cursor.

        The iteration runs over a snapshot, so removing slots while walking
        is safe. Used for the cancellation sweep.
        """
        snapshot = []
        index = self.cursor
        for _ in range(self._count):
            snapshot.append(self._slab[index])
            index = self._next[index]
        return iter(snapshot)

    def __iter__(self) -> Iterator[ExecutionSlot]:
        return self.walk()
