"""Entity fetchers: one per entity, each returning raw typed records for a key."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Optional

from .entities import Cohort, Initiative, Milestone, Participation, Profile, Submission, Team
from .errors import RecordNotFound
from .records.base import RecordStore, contains, eq
from .tables import (
    ACTIVE,
    ContactFields,
    MemberFields,
    MilestoneFields,
    ParticipationFields,
    SubmissionFields,
    Tables,
)

logger = logging.getLogger(__name__)


def _unique(values: Iterable[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for value in values:
        if value and value not in seen:
            seen[value] = None
    return list(seen)


class EntityFetchers:
    def __init__(self, store: RecordStore, tables: Tables) -> None:
        self.store = store
        self.tables = tables

    async def fetch_profile(self, email: str, user_id: Optional[str] = None) -> Optional[Profile]:
        """Resolve the Contacts record for the signed-in user, preferring the identity id."""
        if user_id:
            records = await self.store.query(self.tables.contacts, [eq(ContactFields.USER_ID, user_id)], max_records=1)
            if records:
                return Profile.from_record(records[0])
        if not email:
            return None
        records = await self.store.query(
            self.tables.contacts,
            [eq(ContactFields.EMAIL, email.strip())],
            max_records=1,
        )
        if not records:
            logger.info("No contact record found for %s", email)
            return None
        return Profile.from_record(records[0])

    async def fetch_initiative(self, initiative_id: str) -> Optional[Initiative]:
        try:
            return Initiative.from_record(await self.store.find(self.tables.initiatives, initiative_id))
        except RecordNotFound:
            logger.warning("Initiative %s referenced but not found", initiative_id)
            return None

    async def fetch_cohort(self, cohort_id: str) -> Cohort:
        cohort = Cohort.from_record(await self.store.find(self.tables.cohorts, cohort_id))
        if cohort.initiative_id:
            cohort.initiative = await self.fetch_initiative(cohort.initiative_id)
        return cohort

    async def _fetch_cohorts(self, cohort_ids: List[str]) -> Dict[str, Cohort]:
        results = await asyncio.gather(
            *(self.fetch_cohort(cohort_id) for cohort_id in cohort_ids),
            return_exceptions=True,
        )
        cohorts: Dict[str, Cohort] = {}
        for cohort_id, result in zip(cohort_ids, results):
            if isinstance(result, BaseException):
                logger.error("Error processing cohort %s: %s", cohort_id, result)
                continue
            cohorts[cohort_id] = result
        return cohorts

    async def fetch_participations(self, contact_id: str) -> List[Participation]:
        """All participation records for a contact, one entry per linked cohort, in store order."""
        if not contact_id:
            return []
        records = await self.store.query(
            self.tables.participation,
            [contains(ParticipationFields.CONTACTS, contact_id)],
        )
        logger.info("Found %d participation records for contact %s", len(records), contact_id)
        cohort_ids = _unique(
            cohort_id
            for record in records
            for cohort_id in record.links(ParticipationFields.COHORTS, ParticipationFields.COHORT)
        )
        cohorts = await self._fetch_cohorts(cohort_ids)

        participations: List[Participation] = []
        for record in records:
            linked = record.links(ParticipationFields.COHORTS, ParticipationFields.COHORT)
            if not linked:
                participations.append(Participation.from_record(record))
                continue
            for cohort_id in linked:
                cohort = cohorts.get(cohort_id)
                if cohort is None:
                    continue
                participations.append(Participation.from_record(record, cohort=cohort))
        return participations

    async def fetch_team(self, team_id: str) -> Optional[Team]:
        try:
            return Team.from_record(await self.store.find(self.tables.teams, team_id))
        except RecordNotFound:
            logger.info("Team with ID %s not found", team_id)
            return None

    async def fetch_teams(self, contact_id: str) -> List[Team]:
        """Teams reachable through the contact's active Member records."""
        if not contact_id:
            return []
        members = await self.store.query(
            self.tables.members,
            [contains(MemberFields.CONTACT, contact_id), eq(MemberFields.STATUS, ACTIVE)],
        )
        team_ids = _unique(team_id for member in members for team_id in member.links(MemberFields.TEAM))
        teams = await asyncio.gather(*(self.fetch_team(team_id) for team_id in team_ids))
        return [team for team in teams if team is not None]

    async def fetch_milestones(self, cohort_id: str) -> List[Milestone]:
        if not cohort_id:
            return []
        records = await self.store.query(self.tables.milestones, [contains(MilestoneFields.COHORT, cohort_id)])
        milestones = [Milestone.from_record(record) for record in records]
        milestones.sort(key=lambda milestone: (milestone.number is None, milestone.number or 0))
        return milestones

    async def fetch_submissions(self, team_id: str, milestone_id: str) -> List[Submission]:
        records = await self.store.query(
            self.tables.submissions,
            [contains(SubmissionFields.TEAM, team_id), contains(SubmissionFields.MILESTONE, milestone_id)],
        )
        return [Submission.from_record(record) for record in records]


__all__ = ["EntityFetchers"]
