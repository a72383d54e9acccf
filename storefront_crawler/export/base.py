from __future__ import annotations

from typing import Any, Dict, List, Protocol, Union

Record = Dict[str, Any]


class Sink(Protocol):
    """Append-only output: one record or a list of records per push."""

    def push(self, items: Union[Record, List[Record]]) -> None:
        ...

    def close(self) -> None:
        ...


def as_records(items: Union[Record, List[Record]]) -> List[Record]:
    return list(items) if isinstance(items, list) else [items]


class MemorySink:
    """Keeps pushed records in memory; used by the REST API and tests."""

    def __init__(self) -> None:
        self.items: List[Record] = []
        self.writes = 0

    def push(self, items: Union[Record, List[Record]]) -> None:
        self.writes += 1
        self.items.extend(as_records(items))

    def close(self) -> None:
        pass
