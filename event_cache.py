from collections import deque
from typing import Any, Deque, Iterator, List, NamedTuple

from schemas.rooms import Event


class CacheEntry(NamedTuple):
    event_name: str
    payload: Any
    envelope: Event


class EventCache:
    """Most recent accepted room events, oldest first.

    Pushing past `max_size` evicts from the front.
    """

    def __init__(self, max_size: int):
        if max_size <= 0:
            raise ValueError(f"Cache size must be positive, got {max_size}")
        self.max_size = max_size
        self._entries: Deque[CacheEntry] = deque()

    def push(self, entry: CacheEntry) -> None:
        self._entries.append(entry)
        if len(self._entries) > self.max_size:
            self._entries.popleft()

    def entries(self) -> List[CacheEntry]:
        return list(self._entries)

    def by_name(self, event_name: str) -> List[CacheEntry]:
        return [e for e in self._entries if e.event_name == event_name]

    def latest(self, count: int) -> List[CacheEntry]:
        if count <= 0:
            return []
        return list(self._entries)[-count:]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CacheEntry]:
        return iter(list(self._entries))

    def __getitem__(self, index: int) -> CacheEntry:
        return self._entries[index]
