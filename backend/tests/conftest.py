from __future__ import annotations

import os
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import pytest

os.environ.setdefault("DASHBOARD_RECORD_BACKEND", "database")
os.environ.setdefault("DASHBOARD_DATABASE_URL", "sqlite://")
os.environ.setdefault("DASHBOARD_PREFETCH_INITIAL_DELAY", "0")
os.environ.setdefault("DASHBOARD_PREFETCH_BATCH_DELAY", "0")

from dashboard.cache import ViewCache  # noqa: E402
from dashboard.errors import DashboardError, RecordNotFound, StoreFault  # noqa: E402
from dashboard.records.base import FieldFilter, Record, matches_all  # noqa: E402
from dashboard.service import DashboardService, Identity  # noqa: E402
from dashboard.tables import Tables  # noqa: E402
from dashboard.telemetry import clear_listeners  # noqa: E402

CallKey = Tuple[str, str, Optional[str]]


class FakeRecordStore:
    """In-memory record store with per-call failure injection."""

    def __init__(self) -> None:
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.calls: List[CallKey] = []
        self._failures: Dict[CallKey, DashboardError] = {}
        self._counter = 0

    def add(self, table: str, record_id: str, fields: Mapping[str, Any]) -> None:
        self.tables.setdefault(table, {})[record_id] = dict(fields)

    def fields(self, table: str, record_id: str) -> Dict[str, Any]:
        return self.tables[table][record_id]

    def has(self, table: str, record_id: str) -> bool:
        return record_id in self.tables.get(table, {})

    def fail(self, operation: str, table: str, record_id: Optional[str] = None, error: Optional[DashboardError] = None) -> None:
        self._failures[(operation, table, record_id)] = error or StoreFault(
            f"injected {operation} failure", operation=operation, status_code=500
        )

    def calls_for(self, operation: str, table: Optional[str] = None) -> List[CallKey]:
        return [call for call in self.calls if call[0] == operation and (table is None or call[1] == table)]

    def _check(self, operation: str, table: str, record_id: Optional[str] = None) -> None:
        self.calls.append((operation, table, record_id))
        error = self._failures.get((operation, table, record_id))
        if error is not None:
            raise error

    def _require(self, table: str, record_id: str) -> Dict[str, Any]:
        rows = self.tables.get(table, {})
        if record_id not in rows:
            raise RecordNotFound(table, record_id)
        return rows[record_id]

    async def find(self, table: str, record_id: str) -> Record:
        self._check("find", table, record_id)
        return Record(id=record_id, fields=dict(self._require(table, record_id)))

    async def query(
        self,
        table: str,
        filters: Sequence[FieldFilter] = (),
        *,
        max_records: Optional[int] = None,
    ) -> List[Record]:
        self._check("query", table)
        records = [
            Record(id=record_id, fields=dict(fields)) for record_id, fields in self.tables.get(table, {}).items()
        ]
        matched = [record for record in records if matches_all(record, filters)]
        return matched[:max_records] if max_records is not None else matched

    async def create(self, table: str, fields: Mapping[str, Any]) -> Record:
        self._check("create", table)
        self._counter += 1
        record_id = f"recFake{self._counter:04d}"
        self.add(table, record_id, fields)
        return Record(id=record_id, fields=dict(fields))

    async def update(self, table: str, record_id: str, fields: Mapping[str, Any]) -> Record:
        self._check("update", table, record_id)
        current = self._require(table, record_id)
        current.update(fields)
        return Record(id=record_id, fields=dict(current))

    async def destroy(self, table: str, record_id: str) -> None:
        self._check("destroy", table, record_id)
        self._require(table, record_id)
        del self.tables[table][record_id]


def seed_program(store: FakeRecordStore) -> None:
    """One user in two initiatives: I1 (individual, cohort C1) and I2 (team T9, cohort C2)."""
    store.add(
        "Contacts",
        "c1",
        {
            "Email": "ada@example.edu",
            "Auth0 ID": "auth0|ada",
            "First Name": "Ada",
            "Last Name": "Lovelace",
            "Institution": ["inst1"],
            "Institution (from Education)": ["Analytical University"],
            "Members": ["m9"],
            "Participation": ["p1", "p2"],
        },
    )
    store.add("Initiatives", "I1", {"Name": "Research Fellows", "Participation Type": "Individual"})
    store.add("Initiatives", "I2", {"Name": "Build Sprint", "Participation Type": "Team"})
    store.add("Cohorts", "C1", {"Name": "Fellows Fall", "Initiative": ["I1"], "Current Cohort": True})
    store.add("Cohorts", "C2", {"Name": "Sprint Spring", "Initiative": ["I2"], "Participation Type": "Team"})
    store.add(
        "Participation",
        "p1",
        {"Contacts": ["c1"], "Cohorts": ["C1"], "Status": "Active", "Capacity": "Participant"},
    )
    store.add(
        "Participation",
        "p2",
        {"Contacts": ["c1"], "Cohorts": ["C2"], "Team": ["T9"], "Status": "Active", "Capacity": "Participant"},
    )
    store.add("Teams", "T9", {"Team Name": "Difference Engine", "Members": ["m9"], "Cohorts": ["C2"]})
    store.add("Members", "m9", {"Contact": ["c1"], "Team": ["T9"], "Status": "Active"})
    store.add("Milestones", "M2", {"Name": "Prototype", "Number": 2, "Cohort": ["C2"]})
    store.add("Milestones", "M1", {"Name": "Proposal", "Number": 1, "Cohort": ["C2"]})
    store.add("Milestones", "M3", {"Name": "Demo", "Number": 3, "Cohort": ["C2"]})
    store.add("Submissions", "S1", {"Team": ["T9"], "Milestone": ["M1"]})


@pytest.fixture(autouse=True)
def _reset_telemetry() -> Iterator[None]:
    clear_listeners()
    yield
    clear_listeners()


@pytest.fixture
def tables() -> Tables:
    return Tables.from_settings()


@pytest.fixture
def store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def program_store() -> FakeRecordStore:
    store = FakeRecordStore()
    seed_program(store)
    return store


@pytest.fixture
def identity() -> Identity:
    return Identity(user_id="auth0|ada", email="ada@example.edu")


@pytest.fixture
def service(program_store: FakeRecordStore, identity: Identity, tables: Tables) -> DashboardService:
    return DashboardService(identity, program_store, tables=tables, cache=ViewCache())
