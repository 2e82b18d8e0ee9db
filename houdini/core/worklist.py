"""Worklist of implementations pending (re-)verification, plus the blacklist."""

from __future__ import annotations

from collections import deque
from typing import Deque, Iterable, Iterator, List, Optional, Set

from houdini.lang.ast import Implementation


class Worklist:
    """FIFO queue with idempotent enqueue.

    Blacklisted implementations are refused forever; the blacklist only
    grows for the lifetime of the worklist.
    """

    def __init__(self, implementations: Iterable[Implementation] = ()):
        self._queue: Deque[Implementation] = deque()
        self._members: Set[str] = set()
        self._blacklist: Set[str] = set()
        for impl in implementations:
            self.enqueue(impl)

    def __len__(self) -> int:
        return len(self._queue)

    def __bool__(self) -> bool:
        return bool(self._queue)

    def __contains__(self, name: str) -> bool:
        return name in self._members

    def __iter__(self) -> Iterator[Implementation]:
        return iter(self._queue)

    def peek(self) -> Optional[Implementation]:
        return self._queue[0] if self._queue else None

    def enqueue(self, impl: Implementation) -> bool:
        """Append ``impl``; returns False if already queued or blacklisted."""
        if impl.name in self._members or impl.name in self._blacklist:
            return False
        self._queue.append(impl)
        self._members.add(impl.name)
        return True

    def dequeue(self) -> Implementation:
        impl = self._queue.popleft()
        self._members.discard(impl.name)
        return impl

    def blacklist(self, name: str) -> None:
        self._blacklist.add(name)

    def is_blacklisted(self, name: str) -> bool:
        return name in self._blacklist

    def names(self) -> List[str]:
        return [impl.name for impl in self._queue]
