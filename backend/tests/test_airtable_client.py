from __future__ import annotations

import json
from typing import List

import httpx
import pytest

from dashboard.config import Settings
from dashboard.errors import RecordNotFound, StoreFault
from dashboard.records import contains, eq
from dashboard.records.airtable import AirtableRecordStore, render_formula
from dashboard.telemetry import capture_events


def _store(handler, **kwargs) -> AirtableRecordStore:
    return AirtableRecordStore(
        api_key="key-test",
        base_id="appTest",
        api_url="https://airtable.test/v0",
        backoff_base=0.0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_render_formula() -> None:
    assert render_formula([]) is None
    assert render_formula([eq("Status", "Active")]) == '{Status}="Active"'
    assert (
        render_formula([contains("Contact", "rec1"), eq("Status", "Active")])
        == 'AND(FIND("rec1", ARRAYJOIN({Contact})), {Status}="Active")'
    )


def test_render_formula_strips_quotes_and_backslashes() -> None:
    assert render_formula([eq("Email", 'a"b\'c\\d@example.edu')]) == '{Email}="abcd@example.edu"'


@pytest.mark.asyncio
async def test_query_follows_offset_pages() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if "offset" not in request.url.params:
            return httpx.Response(200, json={"records": [{"id": "rec1", "fields": {}}], "offset": "page2"})
        return httpx.Response(200, json={"records": [{"id": "rec2", "fields": {"Name": "B"}}]})

    async with _store(handler) as store:
        records = await store.query("Teams", [eq("Status", "Active")])

    assert [record.id for record in records] == ["rec1", "rec2"]
    assert seen[0].headers["Authorization"] == "Bearer key-test"
    assert seen[0].url.path == "/v0/appTest/Teams"
    assert seen[0].url.params["filterByFormula"] == '{Status}="Active"'
    assert seen[1].url.params["offset"] == "page2"


@pytest.mark.asyncio
async def test_max_records_stops_paging() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"records": [{"id": "rec1", "fields": {}}], "offset": "more"})

    async with _store(handler) as store:
        records = await store.query("Contacts", max_records=1)

    assert len(records) == 1
    assert len(calls) == 1
    assert calls[0].url.params["maxRecords"] == "1"


@pytest.mark.asyncio
async def test_rate_limit_is_retried() -> None:
    responses = [httpx.Response(429), httpx.Response(429), httpx.Response(200, json={"id": "rec1", "fields": {}})]

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    with capture_events() as events:
        async with _store(handler) as store:
            record = await store.find("Members", "rec1")

    assert record.id == "rec1"
    assert [event.payload["attempt"] for event in events if event.name == "record_store_retry"] == [1, 2]


@pytest.mark.asyncio
async def test_rate_limit_gives_up_after_max_retries() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429)

    async with _store(handler, max_retries=2) as store:
        with pytest.raises(StoreFault) as excinfo:
            await store.find("Members", "rec1")

    assert excinfo.value.status_code == 429
    assert "Rate limit" in excinfo.value.message


@pytest.mark.asyncio
async def test_not_found_maps_to_record_not_found() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "NOT_FOUND"})

    async with _store(handler) as store:
        with pytest.raises(RecordNotFound):
            await store.find("Members", "rec404")
        with pytest.raises(RecordNotFound):
            await store.update("Members", "rec404", {"Status": "Inactive"})


@pytest.mark.asyncio
async def test_server_errors_become_store_faults() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "SERVER_ERROR"})

    async with _store(handler) as store:
        with pytest.raises(StoreFault) as excinfo:
            await store.query("Members")

    assert excinfo.value.status_code == 500
    assert excinfo.value.operation == "querying records"


@pytest.mark.asyncio
async def test_network_errors_become_store_faults() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _store(handler) as store:
        with pytest.raises(StoreFault) as excinfo:
            await store.find("Members", "rec1")

    assert excinfo.value.message == "Network error. Please check your connection."


@pytest.mark.asyncio
async def test_update_sends_typecast_payload() -> None:
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append((request.method, json.loads(request.content)))
        return httpx.Response(200, json={"id": "rec1", "fields": {"Status": "Inactive"}})

    async with _store(handler) as store:
        record = await store.update("Members", "rec1", {"Status": "Inactive"})

    assert record.fields["Status"] == "Inactive"
    assert bodies == [("PATCH", {"fields": {"Status": "Inactive"}, "typecast": True})]


@pytest.mark.asyncio
async def test_destroy_accepts_empty_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "DELETE"
        return httpx.Response(200, json={"id": "rec1", "deleted": True})

    async with _store(handler) as store:
        await store.destroy("Invites", "rec1")


def test_missing_credentials_are_rejected() -> None:
    settings = Settings(AIRTABLE_API_KEY=None, AIRTABLE_BASE_ID=None)

    with pytest.raises(RuntimeError):
        AirtableRecordStore.from_settings(settings)
