"""Aggregation of profile, participation and team collections into one Enhanced Profile.

The builder is pure: it performs no I/O and never raises for missing optional
data. Lookup maps are derived data and are rebuilt on every pass; callers must
re-run :func:`build_enhanced_profile` whenever any source collection changes
rather than patching an existing view.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from .entities import UNKNOWN_INITIATIVE, Participation, Profile, Team

logger = logging.getLogger(__name__)


class InitiativeMembership(BaseModel):
    """One logical program membership, deduplicated by initiative id."""

    id: str
    name: str = UNKNOWN_INITIATIVE
    participation_type: str
    is_team_based: bool = False
    team_id: Optional[str] = None
    cohort_id: Optional[str] = None


class EnhancedProfile(Profile):
    participations: List[Participation] = Field(default_factory=list)
    team_participations: List[Participation] = Field(default_factory=list)
    teams: List[Team] = Field(default_factory=list)
    has_active_participation: bool = False
    has_active_team_participation: bool = False
    by_cohort_id: Dict[str, Participation] = Field(default_factory=dict)
    by_initiative_id: Dict[str, List[Participation]] = Field(default_factory=dict)
    active_initiatives: List[InitiativeMembership] = Field(default_factory=list)

    def get_active_initiatives(self) -> List[InitiativeMembership]:
        return list(self.active_initiatives)

    def find_participation_by_cohort_id(self, cohort_id: str) -> Optional[Participation]:
        return self.by_cohort_id.get(cohort_id)

    def find_participations_by_initiative_id(self, initiative_id: str) -> List[Participation]:
        return list(self.by_initiative_id.get(initiative_id, []))

    def get_cohort_ids_for_initiative(self, initiative_id: str) -> List[str]:
        return [
            participation.cohort_id
            for participation in self.by_initiative_id.get(initiative_id, [])
            if participation.cohort_id
        ]

    def find_initiative(self, initiative_id: str) -> Optional[InitiativeMembership]:
        for initiative in self.active_initiatives:
            if initiative.id == initiative_id:
                return initiative
        return None

    def find_team(self, team_id: str) -> Optional[Team]:
        for team in self.teams:
            if team.id == team_id:
                return team
        return None

    @property
    def current_participation(self) -> Optional[Participation]:
        """First participation in a current cohort, else the first participation."""
        for participation in self.participations:
            if participation.cohort is not None and participation.cohort.is_current:
                return participation
        return self.participations[0] if self.participations else None


def _initiative_name(participation: Participation) -> str:
    cohort = participation.cohort
    if cohort is not None and cohort.initiative is not None and cohort.initiative.name:
        return cohort.initiative.name
    return UNKNOWN_INITIATIVE


def _collect_initiatives(participations: Iterable[Participation]) -> List[InitiativeMembership]:
    seen: set[str] = set()
    initiatives: List[InitiativeMembership] = []
    for participation in participations:
        initiative_id = participation.initiative_id
        if not initiative_id or initiative_id in seen:
            continue
        seen.add(initiative_id)
        participation_type = participation.participation_type
        initiatives.append(
            InitiativeMembership(
                id=initiative_id,
                name=_initiative_name(participation),
                participation_type=participation_type,
                is_team_based=participation.is_team_based,
                team_id=participation.team_id,
                cohort_id=participation.cohort_id,
            )
        )
    return initiatives


def build_enhanced_profile(
    profile: Profile,
    participations: Iterable[Participation],
    teams: Iterable[Team] = (),
) -> EnhancedProfile:
    active = [p for p in participations if p.is_active and p.is_participant]
    team_participations = [p for p in active if p.is_team_based]

    by_cohort_id: Dict[str, Participation] = {}
    by_initiative_id: Dict[str, List[Participation]] = {}
    for participation in active:
        cohort_id = participation.cohort_id
        if cohort_id:
            by_cohort_id[cohort_id] = participation
        initiative_id = participation.initiative_id
        if initiative_id:
            by_initiative_id.setdefault(initiative_id, []).append(participation)

    initiatives = _collect_initiatives(active)
    logger.debug(
        "Enhanced profile %s: %d active participations, %d initiatives",
        profile.id,
        len(active),
        len(initiatives),
    )
    return EnhancedProfile(
        **profile.model_dump(include=set(Profile.model_fields)),
        participations=active,
        team_participations=team_participations,
        teams=list(teams),
        has_active_participation=bool(active),
        has_active_team_participation=bool(team_participations),
        by_cohort_id=by_cohort_id,
        by_initiative_id=by_initiative_id,
        active_initiatives=initiatives,
    )


__all__ = ["EnhancedProfile", "InitiativeMembership", "build_enhanced_profile"]
