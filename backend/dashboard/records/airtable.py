"""Airtable REST client implementing :class:`RecordStore` over ``httpx.AsyncClient``."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Dict, List, Mapping, Optional, Sequence

import httpx

from ..config import Settings
from ..errors import RecordNotFound, StoreFault, to_store_fault
from ..telemetry import emit_event
from .base import FieldFilter, Record

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
_UNSAFE_FORMULA_CHARS = str.maketrans("", "", "'\"\\")


def _quote(value: Any) -> str:
    return '"' + str(value).translate(_UNSAFE_FORMULA_CHARS) + '"'


def render_formula(filters: Sequence[FieldFilter]) -> Optional[str]:
    """Render a flat conjunction of filters as an Airtable ``filterByFormula`` expression."""
    clauses: List[str] = []
    for item in filters:
        if item.op == "contains":
            clauses.append(f"FIND({_quote(item.value)}, ARRAYJOIN({{{item.field}}}))")
        else:
            clauses.append(f"{{{item.field}}}={_quote(item.value)}")
    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return "AND(" + ", ".join(clauses) + ")"


class AirtableRecordStore:
    """Async client for a single Airtable base."""

    def __init__(
        self,
        *,
        api_key: str,
        base_id: str,
        api_url: str = "https://api.airtable.com/v0",
        timeout: float = 30.0,
        max_retries: int = 5,
        backoff_base: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not api_key or not base_id:
            raise RuntimeError("AIRTABLE_API_KEY and AIRTABLE_BASE_ID must be configured before using Airtable.")
        self._base_url = f"{api_url.rstrip('/')}/{base_id}"
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "AirtableRecordStore":
        return cls(
            api_key=settings.airtable_api_key or "",
            base_id=settings.airtable_base_id or "",
            api_url=settings.airtable_api_url,
            timeout=settings.airtable_timeout_seconds,
            max_retries=settings.airtable_max_retries,
            **kwargs,
        )

    async def __aenter__(self) -> "AirtableRecordStore":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, operation: str, **kwargs: Any) -> Dict[str, Any]:
        attempt = 0
        while True:
            try:
                response = await self._client.request(method, path, **kwargs)
            except httpx.HTTPError as exc:
                raise to_store_fault(exc, operation, path=path) from exc
            if response.status_code == 429 and attempt < self._max_retries:
                delay = (2**attempt) * self._backoff_base + random.random() * self._backoff_base
                attempt += 1
                logger.warning(
                    "Rate limit hit (429) during %s. Retry %d/%d after %.2fs",
                    operation,
                    attempt,
                    self._max_retries,
                    delay,
                )
                emit_event("record_store_retry", operation=operation, attempt=attempt, delay_seconds=delay)
                await asyncio.sleep(delay)
                continue
            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise to_store_fault(exc, operation, path=path) from exc
            if method == "DELETE" and not response.content:
                return {}
            try:
                return response.json()
            except ValueError as exc:
                raise to_store_fault(exc, operation, path=path) from exc

    async def find(self, table: str, record_id: str) -> Record:
        try:
            payload = await self._request("GET", f"/{table}/{record_id}", "fetching record")
        except StoreFault as exc:
            if exc.status_code == 404:
                raise RecordNotFound(table, record_id) from exc
            raise
        return Record.model_validate(payload)

    async def query(
        self,
        table: str,
        filters: Sequence[FieldFilter] = (),
        *,
        max_records: Optional[int] = None,
    ) -> List[Record]:
        params: Dict[str, Any] = {"pageSize": PAGE_SIZE}
        formula = render_formula(filters)
        if formula:
            params["filterByFormula"] = formula
        if max_records is not None:
            params["maxRecords"] = max_records

        records: List[Record] = []
        while True:
            payload = await self._request("GET", f"/{table}", "querying records", params=params)
            records.extend(Record.model_validate(item) for item in payload.get("records", []))
            offset = payload.get("offset")
            if not offset or (max_records is not None and len(records) >= max_records):
                break
            params = {**params, "offset": offset}
        logger.debug("Query on %s returned %d records (formula=%s)", table, len(records), formula)
        return records[:max_records] if max_records is not None else records

    async def create(self, table: str, fields: Mapping[str, Any]) -> Record:
        payload = await self._request(
            "POST",
            f"/{table}",
            "creating record",
            json={"fields": dict(fields), "typecast": True},
        )
        return Record.model_validate(payload)

    async def update(self, table: str, record_id: str, fields: Mapping[str, Any]) -> Record:
        try:
            payload = await self._request(
                "PATCH",
                f"/{table}/{record_id}",
                "updating record",
                json={"fields": dict(fields), "typecast": True},
            )
        except StoreFault as exc:
            if exc.status_code == 404:
                raise RecordNotFound(table, record_id) from exc
            raise
        return Record.model_validate(payload)

    async def destroy(self, table: str, record_id: str) -> None:
        try:
            await self._request("DELETE", f"/{table}/{record_id}", "deleting record")
        except StoreFault as exc:
            if exc.status_code == 404:
                raise RecordNotFound(table, record_id) from exc
            raise


__all__ = ["AirtableRecordStore", "render_formula"]
