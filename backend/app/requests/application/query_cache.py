"""Session-wide cache of material request reads.

Keys are tuples so a prefix selects a namespace:

    ("material-requests",)                          everything
    ("material-requests", "list")                   every list page
    ("material-requests", "list", <descriptor>)     one list page
    ("material-requests", "detail", <request id>)   one request

Entries are immutable; every write replaces the entry object, so a reader
never sees a half-applied update and a snapshot is just the old object.
"""
from dataclasses import dataclass, replace
from typing import Any, Dict, Hashable, List, Optional, Tuple

from app.requests.domain.models import MaterialRequest, PaginatedResponse, QueryDescriptor

CacheKey = Tuple[Hashable, ...]

NAMESPACE: CacheKey = ("material-requests",)
LIST_NAMESPACE: CacheKey = NAMESPACE + ("list",)
DETAIL_NAMESPACE: CacheKey = NAMESPACE + ("detail",)


def list_key(descriptor: QueryDescriptor) -> CacheKey:
    return LIST_NAMESPACE + (descriptor,)


def detail_key(request_id: str) -> CacheKey:
    return DETAIL_NAMESPACE + (request_id,)


@dataclass(frozen=True)
class CacheEntry:
    data: Any
    fetched_at: float
    invalidated: bool = False

    def is_stale(self, now: float, stale_time: float) -> bool:
        return self.invalidated or now - self.fetched_at >= stale_time


def entry_contains(entry: CacheEntry, request_id: str) -> bool:
    data = entry.data
    if isinstance(data, PaginatedResponse):
        return any(row.id == request_id for row in data.data)
    if isinstance(data, MaterialRequest):
        return data.id == request_id
    return False


class QueryCache:
    def __init__(self) -> None:
        self._entries: Dict[CacheKey, CacheEntry] = {}

    def get(self, key: CacheKey) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def get_data(self, key: CacheKey) -> Any:
        entry = self._entries.get(key)
        return entry.data if entry else None

    def set_data(self, key: CacheKey, data: Any, fetched_at: float) -> CacheEntry:
        entry = CacheEntry(data=data, fetched_at=fetched_at)
        self._entries[key] = entry
        return entry

    def replace_data(self, key: CacheKey, data: Any) -> None:
        """Swap the data of an existing entry, keeping its freshness."""
        entry = self._entries.get(key)
        if entry is not None:
            self._entries[key] = replace(entry, data=data)

    def restore(self, key: CacheKey, entry: Optional[CacheEntry]) -> None:
        if entry is None:
            self._entries.pop(key, None)
        else:
            self._entries[key] = entry

    def find(self, prefix: CacheKey) -> List[Tuple[CacheKey, CacheEntry]]:
        size = len(prefix)
        return [
            (key, entry) for key, entry in self._entries.items() if key[:size] == prefix
        ]

    def invalidate(self, prefix: CacheKey) -> List[CacheKey]:
        keys = []
        for key, entry in self.find(prefix):
            if not entry.invalidated:
                self._entries[key] = replace(entry, invalidated=True)
            keys.append(key)
        return keys

    def snapshot_containing(self, request_id: str) -> List[Tuple[CacheKey, CacheEntry]]:
        snapshots = [
            (key, entry)
            for key, entry in self.find(LIST_NAMESPACE)
            if entry_contains(entry, request_id)
        ]
        detail = self._entries.get(detail_key(request_id))
        if detail is not None:
            snapshots.append((detail_key(request_id), detail))
        return snapshots

    def remove(self, key: CacheKey) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
