from collections.abc import Iterable, Iterator, Mapping
from enum import Enum
from types import MappingProxyType
from typing import Any


class NotFound(Enum):
    """Outcome of a lookup that matched no record."""

    NOT_FOUND = "NOT_FOUND"

    def __repr__(self) -> str:
        return "NOT_FOUND"


NOT_FOUND = NotFound.NOT_FOUND


class RecordStore:
    """Immutable, in-memory list of records addressed by a key field."""

    def __init__(self, records: Iterable[Mapping[str, Any]], key: str = "id") -> None:
        self.key = key
        self._records = tuple(MappingProxyType(dict(record)) for record in records)

    def find(self, value: Any) -> Mapping[str, Any] | NotFound:
        return next((record for record in self._records if record.get(self.key) == value), NOT_FOUND)

    def __iter__(self) -> Iterator[Mapping[str, Any]]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)
