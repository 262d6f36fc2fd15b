"""Best-effort cascading deactivation across linked record types.

Every operation runs as a saga: an ordered list of independent store writes,
each recorded as a :class:`SagaStep`. A failing write is logged and does not
stop the remaining ones, and nothing is rolled back. Callers learn exactly how
many records changed from :attr:`LeaveResult.updated_records`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .entities import Member, Participation
from .errors import DashboardError, MissingInput, NotAuthorized
from .records.base import Record, RecordStore, contains, eq
from .tables import (
    ACTIVE,
    INACTIVE,
    INVITED,
    UNKNOWN_TEAM,
    CohortFields,
    ContactFields,
    InviteFields,
    MemberFields,
    ParticipationFields,
    Tables,
)
from .telemetry import emit_event

logger = logging.getLogger(__name__)

StepAction = Literal["update", "destroy"]


class SagaStep(BaseModel):
    record_id: str
    table: str
    action: StepAction
    ok: bool
    error: Optional[str] = None


class LeaveResult(BaseModel):
    success: bool
    updated_records: int = 0
    attempted: int = 0
    message: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    steps: List[SagaStep] = Field(default_factory=list)

    @property
    def partial_failure(self) -> bool:
        return self.updated_records < self.attempted

    @classmethod
    def failed(cls, error: DashboardError, steps: Optional[List[SagaStep]] = None) -> "LeaveResult":
        steps = list(steps or [])
        return cls(
            success=False,
            updated_records=sum(1 for step in steps if step.ok),
            attempted=len(steps),
            error=error.message,
            error_kind=error.kind,
            steps=steps,
        )


class _Saga:
    """Runs store writes one at a time and records the outcome of each."""

    def __init__(self, store: RecordStore, operation: str) -> None:
        self.store = store
        self.operation = operation
        self.steps: List[SagaStep] = []
        self.updated = 0
        self.attempted = 0
        self.last_error: Optional[DashboardError] = None

    async def deactivate(self, table: str, record_id: str, *, counted: bool = True) -> bool:
        # Members and Participation share the "Status" field name.
        try:
            await self.store.update(table, record_id, {ParticipationFields.STATUS: INACTIVE})
        except DashboardError as exc:
            return self._record(table, record_id, "update", counted, exc)
        logger.info("%s: set %s/%s to %s", self.operation, table, record_id, INACTIVE)
        return self._record(table, record_id, "update", counted)

    async def destroy(self, table: str, record_id: str, *, counted: bool = True) -> bool:
        try:
            await self.store.destroy(table, record_id)
        except DashboardError as exc:
            return self._record(table, record_id, "destroy", counted, exc)
        logger.info("%s: deleted %s/%s", self.operation, table, record_id)
        return self._record(table, record_id, "destroy", counted)

    def _record(
        self,
        table: str,
        record_id: str,
        action: StepAction,
        counted: bool,
        error: Optional[DashboardError] = None,
    ) -> bool:
        ok = error is None
        if error is not None:
            self.last_error = error
            logger.error("%s: %s of %s/%s failed: %s", self.operation, action, table, record_id, error)
        self.steps.append(
            SagaStep(
                record_id=record_id,
                table=table,
                action=action,
                ok=ok,
                error=None if ok else error.message,
            )
        )
        if counted:
            self.attempted += 1
            self.updated += int(ok)
        return ok

    def result(self, message: str) -> LeaveResult:
        return LeaveResult(
            success=True,
            updated_records=self.updated,
            attempted=self.attempted,
            message=message,
            steps=list(self.steps),
        )

    def failed(self, error: DashboardError) -> LeaveResult:
        result = LeaveResult.failed(error, self.steps)
        result.updated_records = self.updated
        result.attempted = self.attempted
        return result


async def _active_members(
    store: RecordStore,
    tables: Tables,
    member_ids: List[str],
    team_id: Optional[str] = None,
) -> List[str]:
    """Linked members that are still Active, optionally restricted to ``team_id``."""
    results = await asyncio.gather(
        *(store.find(tables.members, member_id) for member_id in member_ids),
        return_exceptions=True,
    )
    matching: List[str] = []
    for member_id, result in zip(member_ids, results):
        if isinstance(result, DashboardError):
            logger.error("Error checking member %s: %s", member_id, result)
            continue
        if isinstance(result, BaseException):
            raise result
        member = Member.from_record(result)
        if member.status != ACTIVE:
            logger.debug("Skipping member %s - not Active (%s)", member_id, member.status)
            continue
        if team_id is None or team_id in member.team_ids:
            matching.append(member_id)
    return matching


async def leave_team(store: RecordStore, tables: Tables, contact_id: str, team_id: str) -> LeaveResult:
    """Deactivate the contact's Member records for ``team_id`` (or all of them for ``"unknown"``)."""
    if not contact_id:
        return LeaveResult.failed(MissingInput("Contact ID is required"))
    if not team_id:
        return LeaveResult.failed(MissingInput("Team ID is required"))

    saga = _Saga(store, "leave_team")
    specific_team = team_id != UNKNOWN_TEAM

    # Strategy A: follow the Members links on the contact record.
    try:
        contact = await store.find(tables.contacts, contact_id)
        member_ids = contact.links(ContactFields.MEMBERS)
    except DashboardError as exc:
        logger.error("Error fetching contact record %s: %s", contact_id, exc)
        member_ids = []

    if member_ids:
        logger.info("Contact %s has %d linked member records", contact_id, len(member_ids))
        member_ids = await _active_members(store, tables, member_ids, team_id if specific_team else None)
        logger.info("Filtered to %d active members for team %s", len(member_ids), team_id)
        for member_id in member_ids:
            await saga.deactivate(tables.members, member_id)

    # Strategy B: query active Member records directly.
    strategy = "links"
    if saga.updated == 0:
        strategy = "query"
        filters = [contains(MemberFields.CONTACT, contact_id), eq(MemberFields.STATUS, ACTIVE)]
        if specific_team:
            filters.append(contains(MemberFields.TEAM, team_id))
        try:
            active_members = await store.query(tables.members, filters)
        except DashboardError as exc:
            logger.error("Error querying active members for %s: %s", contact_id, exc)
            return saga.failed(exc)
        logger.info("Found %d active member records to update", len(active_members))
        for record in active_members:
            await saga.deactivate(tables.members, record.id)

    emit_event(
        "team_left",
        contact_id=contact_id,
        team_id=team_id,
        strategy=strategy,
        updated=saga.updated,
        attempted=saga.attempted,
    )
    if saga.updated:
        return saga.result(f"Successfully left {saga.updated} team member record(s)")
    return saga.result("No team member records were found to update")


async def _participation_initiative(
    store: RecordStore,
    tables: Tables,
    participation: Participation,
    cohort_initiatives: Dict[str, Optional[str]],
) -> Optional[str]:
    if participation.initiative_ids:
        return participation.initiative_ids[0]
    for cohort_id in participation.cohort_ids:
        if cohort_id not in cohort_initiatives:
            cohort = await store.find(tables.cohorts, cohort_id)
            links = cohort.links(CohortFields.INITIATIVE)
            cohort_initiatives[cohort_id] = links[0] if links else None
        if cohort_initiatives[cohort_id]:
            return cohort_initiatives[cohort_id]
    return None


async def _participation_targets(
    store: RecordStore,
    tables: Tables,
    records: List[Record],
    cohort_id: Optional[str],
    initiative_id: Optional[str],
) -> List[str]:
    targets: List[str] = []
    cohort_initiatives: Dict[str, Optional[str]] = {}
    for record in records:
        participation = Participation.from_record(record)
        if not participation.is_participant:
            logger.debug("Skipping record %s - not a Participant (%s)", record.id, participation.capacity)
            continue
        if not participation.is_active:
            logger.debug("Skipping record %s - not Active (%s)", record.id, participation.status)
            continue
        if cohort_id and cohort_id in participation.cohort_ids:
            targets.append(record.id)
            continue
        if not initiative_id:
            continue
        try:
            resolved = await _participation_initiative(store, tables, participation, cohort_initiatives)
        except DashboardError as exc:
            logger.error("Error checking initiative for record %s: %s", record.id, exc)
            continue
        if resolved == initiative_id:
            targets.append(record.id)
    return targets


async def leave_participation(
    store: RecordStore,
    tables: Tables,
    contact_id: str,
    participation_id: Optional[str] = None,
    cohort_id: Optional[str] = None,
    initiative_id: Optional[str] = None,
) -> LeaveResult:
    """Deactivate the contact's Participation records for one participation, cohort or initiative."""
    if not contact_id:
        return LeaveResult.failed(MissingInput("Contact ID is required"))
    if not (participation_id or cohort_id or initiative_id):
        return LeaveResult.failed(
            MissingInput("At least one of participation_id, cohort_id or initiative_id is required")
        )

    saga = _Saga(store, "leave_participation")
    if participation_id and participation_id != UNKNOWN_TEAM:
        try:
            record = await store.find(tables.participation, participation_id)
        except DashboardError as exc:
            logger.error("Error finding participation record %s: %s", participation_id, exc)
            return LeaveResult.failed(exc)
        participation = Participation.from_record(record)
        if contact_id not in participation.contact_ids or not participation.is_participant:
            return LeaveResult.failed(
                NotAuthorized(
                    "Participation record not found or not authorized",
                    context={"participation_id": participation_id},
                )
            )
        targets = [record.id]
    else:
        try:
            records = await store.query(
                tables.participation,
                [contains(ParticipationFields.CONTACTS, contact_id)],
            )
        except DashboardError as exc:
            logger.error("Error querying participation for %s: %s", contact_id, exc)
            return LeaveResult.failed(exc)
        logger.info("Found %d participation records for contact %s", len(records), contact_id)
        targets = await _participation_targets(store, tables, records, cohort_id, initiative_id)

    for record_id in targets:
        await saga.deactivate(tables.participation, record_id)

    emit_event(
        "participation_left",
        contact_id=contact_id,
        participation_id=participation_id,
        cohort_id=cohort_id,
        initiative_id=initiative_id,
        updated=saga.updated,
        attempted=saga.attempted,
    )
    if saga.updated:
        return saga.result(f"Successfully left {saga.updated} participation record(s)")
    return saga.result("No active participation records were found to update")


async def _member_in_team(store: RecordStore, tables: Tables, member_id: str, team_id: str) -> Member:
    member = Member.from_record(await store.find(tables.members, member_id))
    if team_id not in member.team_ids:
        raise NotAuthorized(
            "Member does not belong to this team",
            context={"member_id": member_id, "team_id": team_id},
        )
    return member


async def delete_team_invitation(store: RecordStore, tables: Tables, member_id: str, team_id: str) -> LeaveResult:
    """Delete an Invited Member record and, best effort, its Invite tokens."""
    if not member_id:
        return LeaveResult.failed(MissingInput("Member ID is required"))
    if not team_id:
        return LeaveResult.failed(MissingInput("Team ID is required"))

    try:
        member = await _member_in_team(store, tables, member_id, team_id)
    except DashboardError as exc:
        return LeaveResult.failed(exc)
    if member.status != INVITED:
        return LeaveResult.failed(
            NotAuthorized("Only invited members can be deleted", context={"member_id": member_id})
        )

    saga = _Saga(store, "delete_team_invitation")
    if not await saga.destroy(tables.members, member_id):
        return saga.failed(saga.last_error)

    invites_deleted = 0
    try:
        invites = await store.query(tables.invites, [contains(InviteFields.MEMBER, member_id)])
    except DashboardError as exc:
        logger.error("Error cleaning up invitation tokens for %s: %s", member_id, exc)
        invites = []
    for invite in invites:
        invites_deleted += int(await saga.destroy(tables.invites, invite.id, counted=False))

    emit_event(
        "team_invitation_deleted",
        member_id=member_id,
        team_id=team_id,
        invites_deleted=invites_deleted,
    )
    return saga.result(f"Deleted invitation for member {member_id}")


async def update_member_status(store: RecordStore, tables: Tables, member_id: str, team_id: str) -> LeaveResult:
    """Set a single Member of ``team_id`` to Inactive."""
    if not member_id:
        return LeaveResult.failed(MissingInput("Member ID is required"))
    if not team_id:
        return LeaveResult.failed(MissingInput("Team ID is required"))

    try:
        await _member_in_team(store, tables, member_id, team_id)
    except DashboardError as exc:
        return LeaveResult.failed(exc)

    saga = _Saga(store, "update_member_status")
    if not await saga.deactivate(tables.members, member_id):
        return saga.failed(saga.last_error)
    emit_event("member_deactivated", member_id=member_id, team_id=team_id)
    return saga.result(f"Member {member_id} set to {INACTIVE}")


__all__ = [
    "LeaveResult",
    "SagaStep",
    "delete_team_invitation",
    "leave_participation",
    "leave_team",
    "update_member_status",
]
