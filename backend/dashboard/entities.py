"""Typed entity models and the single record-to-entity mapper for each."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from .participation_types import (
    is_team_based_participation,
    resolve_participation_type,
)
from .records.base import Record
from .tables import (
    ACTIVE,
    PARTICIPANT,
    CohortFields,
    ContactFields,
    InitiativeFields,
    InviteFields,
    MemberFields,
    MilestoneFields,
    ParticipationFields,
    SubmissionFields,
    TeamFields,
)

UNKNOWN_INITIATIVE = "Unknown Initiative"
UNNAMED_COHORT = "Unnamed Cohort"
UNNAMED_TEAM = "Unnamed Team"


def _text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
        if value is None:
            return default
    text = str(value).strip()
    return text or default


def _optional_text(value: Any) -> Optional[str]:
    text = _text(value)
    return text or None


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (list, tuple)):
        return any(_truthy(item) for item in value)
    return str(value).strip().lower() == "true" if value is not None else False


def _parse_date(value: Any) -> Optional[date]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except ValueError:
        return None


def _today() -> date:
    return datetime.now(timezone.utc).date()


class Profile(BaseModel):
    id: str
    email: str = ""
    user_id: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    institution_id: Optional[str] = None
    institution_name: Optional[str] = None
    member_ids: List[str] = Field(default_factory=list)
    participation_ids: List[str] = Field(default_factory=list)
    education_ids: List[str] = Field(default_factory=list)

    @property
    def is_profile_complete(self) -> bool:
        return bool(self.first_name and self.last_name and self.institution_name)

    @classmethod
    def from_record(cls, record: Record) -> "Profile":
        institution_ids = record.links(ContactFields.INSTITUTION)
        return cls(
            id=record.id,
            email=_text(record.get(ContactFields.EMAIL)),
            user_id=_optional_text(record.get(ContactFields.USER_ID)),
            first_name=_text(record.get(ContactFields.FIRST_NAME)),
            last_name=_text(record.get(ContactFields.LAST_NAME)),
            institution_id=institution_ids[0] if institution_ids else None,
            institution_name=_optional_text(record.get(ContactFields.INSTITUTION_NAME)),
            member_ids=record.links(ContactFields.MEMBERS),
            participation_ids=record.links(ContactFields.PARTICIPATION),
            education_ids=record.links(ContactFields.EDUCATION),
        )


class Initiative(BaseModel):
    id: str
    name: str = UNKNOWN_INITIATIVE
    description: str = ""
    participation_type: Optional[str] = None

    @classmethod
    def from_record(cls, record: Record) -> "Initiative":
        return cls(
            id=record.id,
            name=_text(record.get(InitiativeFields.NAME), UNKNOWN_INITIATIVE),
            description=_text(record.get(InitiativeFields.DESCRIPTION)),
            participation_type=_optional_text(record.get(InitiativeFields.PARTICIPATION_TYPE)),
        )


class Cohort(BaseModel):
    id: str
    name: str = UNNAMED_COHORT
    short_name: str = ""
    status: Optional[str] = None
    is_current: bool = False
    initiative_id: Optional[str] = None
    participation_type: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    initiative: Optional[Initiative] = None

    @property
    def resolved_participation_type(self) -> str:
        initiative_type = self.initiative.participation_type if self.initiative else None
        return resolve_participation_type(self.participation_type, initiative_type)

    @classmethod
    def from_record(cls, record: Record, *, today: Optional[date] = None) -> "Cohort":
        start = _parse_date(record.get(CohortFields.START_DATE))
        end = _parse_date(record.get(CohortFields.END_DATE))
        is_current = _truthy(record.get(CohortFields.CURRENT)) or _truthy(record.get(CohortFields.IS_CURRENT))
        if not is_current and start and end:
            is_current = start <= (today or _today()) <= end
        initiative_ids = record.links(CohortFields.INITIATIVE)
        return cls(
            id=record.id,
            name=_text(record.get(CohortFields.NAME), UNNAMED_COHORT),
            short_name=_text(record.get(CohortFields.SHORT_NAME)),
            status=_optional_text(record.get(CohortFields.STATUS)),
            is_current=is_current,
            initiative_id=initiative_ids[0] if initiative_ids else None,
            participation_type=_optional_text(record.get(CohortFields.PARTICIPATION_TYPE)),
            start_date=start,
            end_date=end,
        )


class Participation(BaseModel):
    id: str
    contact_ids: List[str] = Field(default_factory=list)
    cohort_ids: List[str] = Field(default_factory=list)
    team_ids: List[str] = Field(default_factory=list)
    initiative_ids: List[str] = Field(default_factory=list)
    status: Optional[str] = None
    capacity: str = PARTICIPANT
    cohort: Optional[Cohort] = None

    @property
    def is_active(self) -> bool:
        return self.status is None or self.status.strip().lower() == ACTIVE.lower()

    @property
    def is_participant(self) -> bool:
        return self.capacity == PARTICIPANT

    @property
    def team_id(self) -> Optional[str]:
        return self.team_ids[0] if self.team_ids else None

    @property
    def cohort_id(self) -> Optional[str]:
        if self.cohort is not None:
            return self.cohort.id
        return self.cohort_ids[0] if self.cohort_ids else None

    @property
    def initiative_id(self) -> Optional[str]:
        if self.cohort is not None and self.cohort.initiative is not None:
            return self.cohort.initiative.id
        if self.cohort is not None and self.cohort.initiative_id:
            return self.cohort.initiative_id
        return self.initiative_ids[0] if self.initiative_ids else None

    @property
    def participation_type(self) -> str:
        if self.cohort is None:
            return resolve_participation_type()
        return self.cohort.resolved_participation_type

    @property
    def is_team_based(self) -> bool:
        return is_team_based_participation(self.participation_type)

    @classmethod
    def from_record(cls, record: Record, *, cohort: Optional[Cohort] = None) -> "Participation":
        return cls(
            id=record.id,
            contact_ids=record.links(ParticipationFields.CONTACTS),
            cohort_ids=record.links(ParticipationFields.COHORTS, ParticipationFields.COHORT),
            team_ids=record.links(ParticipationFields.TEAM),
            initiative_ids=record.links(ParticipationFields.INITIATIVE),
            status=_optional_text(record.get(ParticipationFields.STATUS) or record.get("status")),
            capacity=_text(record.get(ParticipationFields.CAPACITY), PARTICIPANT),
            cohort=cohort,
        )


class Team(BaseModel):
    id: str
    name: str = UNNAMED_TEAM
    description: str = ""
    member_ids: List[str] = Field(default_factory=list)
    cohort_ids: List[str] = Field(default_factory=list)

    @classmethod
    def from_record(cls, record: Record) -> "Team":
        return cls(
            id=record.id,
            name=_text(record.first(TeamFields.NAME, TeamFields.TEAM_NAME), UNNAMED_TEAM),
            description=_text(record.get(TeamFields.DESCRIPTION)),
            member_ids=record.links(TeamFields.MEMBERS),
            cohort_ids=record.links(TeamFields.COHORT, TeamFields.COHORTS),
        )


class Member(BaseModel):
    id: str
    contact_ids: List[str] = Field(default_factory=list)
    team_ids: List[str] = Field(default_factory=list)
    status: Optional[str] = None

    @classmethod
    def from_record(cls, record: Record) -> "Member":
        return cls(
            id=record.id,
            contact_ids=record.links(MemberFields.CONTACT),
            team_ids=record.links(MemberFields.TEAM),
            status=_optional_text(record.get(MemberFields.STATUS)),
        )


class Invite(BaseModel):
    id: str
    member_ids: List[str] = Field(default_factory=list)
    token: Optional[str] = None

    @classmethod
    def from_record(cls, record: Record) -> "Invite":
        return cls(
            id=record.id,
            member_ids=record.links(InviteFields.MEMBER),
            token=_optional_text(record.get(InviteFields.TOKEN)),
        )


class Milestone(BaseModel):
    id: str
    name: str = ""
    number: Optional[int] = None
    due_date: Optional[str] = None
    description: str = ""
    cohort_ids: List[str] = Field(default_factory=list)

    @classmethod
    def from_record(cls, record: Record) -> "Milestone":
        raw_number = record.get(MilestoneFields.NUMBER)
        try:
            number = int(raw_number) if raw_number is not None else None
        except (TypeError, ValueError):
            number = None
        return cls(
            id=record.id,
            name=_text(record.get(MilestoneFields.NAME)),
            number=number,
            due_date=_optional_text(record.get(MilestoneFields.DUE_DATE)),
            description=_text(record.get(MilestoneFields.DESCRIPTION)),
            cohort_ids=record.links(MilestoneFields.COHORT),
        )


class Submission(BaseModel):
    id: str
    team_ids: List[str] = Field(default_factory=list)
    milestone_ids: List[str] = Field(default_factory=list)
    created_time: Optional[str] = None

    @classmethod
    def from_record(cls, record: Record) -> "Submission":
        return cls(
            id=record.id,
            team_ids=record.links(SubmissionFields.TEAM),
            milestone_ids=record.links(SubmissionFields.MILESTONE),
            created_time=record.created_time,
        )


__all__ = [
    "Cohort",
    "Initiative",
    "Invite",
    "Member",
    "Milestone",
    "Participation",
    "Profile",
    "Submission",
    "Team",
    "UNKNOWN_INITIATIVE",
    "UNNAMED_COHORT",
    "UNNAMED_TEAM",
]
