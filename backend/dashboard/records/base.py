"""Record, filter and store protocol for the remote relational record store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Mapping, Optional, Protocol, Sequence

from pydantic import BaseModel, ConfigDict, Field

FilterOp = Literal["eq", "contains"]


class Record(BaseModel):
    """A single row returned by the store. Link fields hold lists of record ids."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    fields: Dict[str, Any] = Field(default_factory=dict)
    created_time: Optional[str] = Field(default=None, alias="createdTime")

    def get(self, name: str, default: Any = None) -> Any:
        value = self.fields.get(name)
        return default if value is None else value

    def first(self, *names: str, default: Any = None) -> Any:
        """Return the first non-empty value among ``names``."""
        for name in names:
            value = self.fields.get(name)
            if value not in (None, "", []):
                return value
        return default

    def links(self, *names: str) -> List[str]:
        """Return link ids from the first populated field, normalising scalars to lists."""
        value = self.first(*names)
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value if item]
        return [str(value)]


@dataclass(frozen=True)
class FieldFilter:
    field: str
    value: Any
    op: FilterOp = "eq"

    def matches(self, record: Record) -> bool:
        current = record.fields.get(self.field)
        if isinstance(current, (list, tuple)):
            # Link fields compare by membership for both operators.
            return self.value in current
        if self.op == "contains":
            return current is not None and str(self.value) in str(current)
        return current == self.value


def eq(field: str, value: Any) -> FieldFilter:
    return FieldFilter(field=field, value=value, op="eq")


def contains(field: str, value: Any) -> FieldFilter:
    return FieldFilter(field=field, value=value, op="contains")


def matches_all(record: Record, filters: Sequence[FieldFilter]) -> bool:
    return all(item.matches(record) for item in filters)


class RecordStore(Protocol):
    """Typed CRUD and flat filtered query against named tables. No joins, no transactions."""

    async def find(self, table: str, record_id: str) -> Record:  # pragma: no cover - protocol definition
        ...

    async def query(
        self,
        table: str,
        filters: Sequence[FieldFilter] = (),
        *,
        max_records: Optional[int] = None,
    ) -> List[Record]:  # pragma: no cover - protocol definition
        ...

    async def create(self, table: str, fields: Mapping[str, Any]) -> Record:  # pragma: no cover - protocol definition
        ...

    async def update(self, table: str, record_id: str, fields: Mapping[str, Any]) -> Record:  # pragma: no cover
        ...

    async def destroy(self, table: str, record_id: str) -> None:  # pragma: no cover - protocol definition
        ...


__all__ = [
    "FieldFilter",
    "FilterOp",
    "Record",
    "RecordStore",
    "contains",
    "eq",
    "matches_all",
]
