"""Table ids and field names of the record store base."""

from __future__ import annotations

from dataclasses import dataclass

from .config import Settings, get_settings


@dataclass(frozen=True)
class Tables:
    contacts: str
    participation: str
    cohorts: str
    initiatives: str
    teams: str
    members: str
    invites: str
    milestones: str
    submissions: str
    education: str

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "Tables":
        settings = settings or get_settings()
        return cls(
            contacts=settings.contacts_table_id,
            participation=settings.participation_table_id,
            cohorts=settings.cohorts_table_id,
            initiatives=settings.initiatives_table_id,
            teams=settings.teams_table_id,
            members=settings.members_table_id,
            invites=settings.invites_table_id,
            milestones=settings.milestones_table_id,
            submissions=settings.submissions_table_id,
            education=settings.education_table_id,
        )


class ContactFields:
    EMAIL = "Email"
    USER_ID = "Auth0 ID"
    FIRST_NAME = "First Name"
    LAST_NAME = "Last Name"
    INSTITUTION = "Institution"
    INSTITUTION_NAME = "Institution (from Education)"
    EDUCATION = "Education"
    MEMBERS = "Members"
    PARTICIPATION = "Participation"


class ParticipationFields:
    CONTACTS = "Contacts"
    COHORTS = "Cohorts"
    COHORT = "Cohort"
    TEAM = "Team"
    INITIATIVE = "Initiative"
    STATUS = "Status"
    CAPACITY = "Capacity"


class CohortFields:
    NAME = "Name"
    SHORT_NAME = "Short Name"
    STATUS = "Status"
    INITIATIVE = "Initiative"
    PARTICIPATION_TYPE = "Participation Type"
    CURRENT = "Current Cohort"
    IS_CURRENT = "Is Current"
    START_DATE = "Start Date"
    END_DATE = "End Date"


class InitiativeFields:
    NAME = "Name"
    DESCRIPTION = "Description"
    PARTICIPATION_TYPE = "Participation Type"


class TeamFields:
    NAME = "Name"
    TEAM_NAME = "Team Name"
    DESCRIPTION = "Description"
    MEMBERS = "Members"
    COHORT = "Cohort"
    COHORTS = "Cohorts"


class MemberFields:
    CONTACT = "Contact"
    TEAM = "Team"
    STATUS = "Status"


class InviteFields:
    MEMBER = "Member"
    TOKEN = "Token"


class MilestoneFields:
    NAME = "Name"
    NUMBER = "Number"
    DUE_DATE = "Due Datetime"
    DESCRIPTION = "Description"
    COHORT = "Cohort"


class SubmissionFields:
    TEAM = "Team"
    MILESTONE = "Milestone"


ACTIVE = "Active"
INACTIVE = "Inactive"
INVITED = "Invited"
PARTICIPANT = "Participant"
UNKNOWN_TEAM = "unknown"
