"""SQLAlchemy-backed :class:`RecordStore` used as a local mirror of the remote base."""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.models import StoredRecordModel
from ..db.session import session_scope
from ..errors import RecordNotFound, to_store_fault
from .base import FieldFilter, Record, matches_all


def new_record_id() -> str:
    return "rec" + uuid.uuid4().hex[:14]


def _to_record(model: StoredRecordModel) -> Record:
    return Record(
        id=model.record_id,
        fields=dict(model.fields or {}),
        created_time=model.created_at.isoformat() if model.created_at else None,
    )


class DatabaseRecordStore:
    """Stores each record as ``(table_name, record_id, fields)``; filters run in-process like the remote API."""

    def _require(self, session: Session, table: str, record_id: str) -> StoredRecordModel:
        stmt = select(StoredRecordModel).where(
            StoredRecordModel.table_name == table,
            StoredRecordModel.record_id == record_id,
        )
        model = session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise RecordNotFound(table, record_id)
        return model

    def _find(self, table: str, record_id: str) -> Record:
        with session_scope(commit=False) as session:
            return _to_record(self._require(session, table, record_id))

    def _query(self, table: str, filters: Sequence[FieldFilter], max_records: Optional[int]) -> List[Record]:
        with session_scope(commit=False) as session:
            stmt = (
                select(StoredRecordModel)
                .where(StoredRecordModel.table_name == table)
                .order_by(StoredRecordModel.id.asc())
            )
            records = [_to_record(model) for model in session.execute(stmt).scalars()]
        matched = [record for record in records if matches_all(record, filters)]
        return matched[:max_records] if max_records is not None else matched

    def _create(self, table: str, fields: Dict[str, Any], record_id: Optional[str]) -> Record:
        with session_scope() as session:
            model = StoredRecordModel(table_name=table, record_id=record_id or new_record_id(), fields=fields)
            session.add(model)
            session.flush()
            return _to_record(model)

    def _update(self, table: str, record_id: str, fields: Dict[str, Any]) -> Record:
        with session_scope() as session:
            model = self._require(session, table, record_id)
            model.fields = {**(model.fields or {}), **fields}
            session.flush()
            return _to_record(model)

    def _destroy(self, table: str, record_id: str) -> None:
        with session_scope() as session:
            session.delete(self._require(session, table, record_id))

    async def _run(self, operation: str, func, *args: Any) -> Any:  # type: ignore[no-untyped-def]
        try:
            return await asyncio.to_thread(func, *args)
        except SQLAlchemyError as exc:
            raise to_store_fault(exc, operation) from exc

    async def find(self, table: str, record_id: str) -> Record:
        return await self._run("fetching record", self._find, table, record_id)

    async def query(
        self,
        table: str,
        filters: Sequence[FieldFilter] = (),
        *,
        max_records: Optional[int] = None,
    ) -> List[Record]:
        return await self._run("querying records", self._query, table, tuple(filters), max_records)

    async def create(self, table: str, fields: Mapping[str, Any], *, record_id: Optional[str] = None) -> Record:
        return await self._run("creating record", self._create, table, dict(fields), record_id)

    async def update(self, table: str, record_id: str, fields: Mapping[str, Any]) -> Record:
        return await self._run("updating record", self._update, table, record_id, dict(fields))

    async def destroy(self, table: str, record_id: str) -> None:
        await self._run("deleting record", self._destroy, table, record_id)


__all__ = ["DatabaseRecordStore", "new_record_id"]
