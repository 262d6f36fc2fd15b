"""Session-scoped tracking of the active program and the active team per program."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from .aggregator import EnhancedProfile
from .entities import Cohort, Team

logger = logging.getLogger(__name__)

DEFAULT_PROGRAM_NAME = "Program"


@dataclass
class ActiveSelection:
    """Mutable selection state owned by exactly one user session."""

    active_initiative_id: Optional[str] = None
    active_team_by_initiative: Dict[str, str] = field(default_factory=dict)

    def select_initiative(self, initiative_id: Optional[str]) -> bool:
        """Replace the active initiative. Returns ``False`` when nothing changed."""
        if initiative_id == self.active_initiative_id:
            return False
        logger.debug("Setting active program: %s (current: %s)", initiative_id, self.active_initiative_id)
        self.active_initiative_id = initiative_id
        return True

    def forget_team(self, team_id: str) -> List[str]:
        """Drop every remembered selection of ``team_id``; returns the affected initiative ids."""
        affected = [key for key, value in self.active_team_by_initiative.items() if value == team_id]
        for key in affected:
            del self.active_team_by_initiative[key]
        return affected

    def forget_all_teams(self) -> None:
        self.active_team_by_initiative.clear()

    def forget_initiative(self, initiative_id: str) -> None:
        self.active_team_by_initiative.pop(initiative_id, None)
        if self.active_initiative_id == initiative_id:
            self.active_initiative_id = None

    def retain_initiatives(self, initiative_ids: Iterable[str]) -> List[str]:
        """Forget every tracked initiative not in ``initiative_ids``; returns the forgotten ids."""
        keep = set(initiative_ids)
        tracked = list(self.active_team_by_initiative)
        if self.active_initiative_id and self.active_initiative_id not in tracked:
            tracked.append(self.active_initiative_id)
        forgotten = [initiative_id for initiative_id in tracked if initiative_id not in keep]
        for initiative_id in forgotten:
            self.forget_initiative(initiative_id)
        return forgotten


class ActiveProgramData(BaseModel):
    program_id: Optional[str] = None
    has_active_program: bool = False
    cohort: Optional[Cohort] = None
    initiative_name: str = DEFAULT_PROGRAM_NAME
    participation_type: Optional[str] = None
    is_team_based: bool = False
    team_id: Optional[str] = None
    team: Optional[Team] = None
    user_has_multiple_teams: bool = False
    available_teams: List[Team] = Field(default_factory=list)


class ProgramSelector:
    """Resolves program and team selections against one Enhanced Profile."""

    def __init__(self, selection: ActiveSelection, profile: EnhancedProfile) -> None:
        self.selection = selection
        self.profile = profile

    def set_active_initiative(self, initiative_id: Optional[str]) -> bool:
        return self.selection.select_initiative(initiative_id)

    def set_active_team(self, initiative_id: str, team_id: str) -> None:
        reachable = {team.id for team in self.get_teams_for_initiative(initiative_id)}
        if team_id not in reachable:
            raise ValueError(f"Team {team_id} is not available for program {initiative_id}")
        self.selection.active_team_by_initiative[initiative_id] = team_id

    def get_teams_for_initiative(self, initiative_id: str) -> List[Team]:
        cohort_ids = set(self.profile.get_cohort_ids_for_initiative(initiative_id))
        if not cohort_ids:
            return []
        teams = [team for team in self.profile.teams if cohort_ids.intersection(team.cohort_ids)]
        logger.debug(
            "Filtered teams for program %s: %d (of %d total)",
            initiative_id,
            len(teams),
            len(self.profile.teams),
        )
        return teams

    def get_active_team(self, initiative_id: str) -> Optional[str]:
        tracked = self.selection.active_team_by_initiative.get(initiative_id)
        if tracked:
            return tracked
        teams = self.get_teams_for_initiative(initiative_id)
        if not teams:
            return None
        # Remembering the default keeps repeated reads in a session on the same team.
        self.selection.active_team_by_initiative[initiative_id] = teams[0].id
        return teams[0].id

    def _resolve_initiative_id(self, initiative_id: Optional[str]) -> Optional[str]:
        if initiative_id:
            return initiative_id
        if self.selection.active_initiative_id:
            return self.selection.active_initiative_id
        initiatives = self.profile.get_active_initiatives()
        return initiatives[0].id if initiatives else None

    def _no_active_program(self) -> ActiveProgramData:
        participation = self.profile.current_participation
        if participation is None or participation.cohort is None:
            return ActiveProgramData()
        cohort = participation.cohort
        name = cohort.initiative.name if cohort.initiative is not None else DEFAULT_PROGRAM_NAME
        return ActiveProgramData(
            cohort=cohort,
            initiative_name=name or DEFAULT_PROGRAM_NAME,
            participation_type=participation.participation_type,
        )

    def get_active_program_data(self, initiative_id: Optional[str] = None) -> ActiveProgramData:
        active_id = self._resolve_initiative_id(initiative_id)
        if not active_id:
            return self._no_active_program()

        initiative = self.profile.find_initiative(active_id)
        participations = self.profile.find_participations_by_initiative_id(active_id)
        if initiative is None or not participations:
            logger.info("Initiative not found for program ID: %s", active_id)
            return self._no_active_program()

        available_teams = self.get_teams_for_initiative(active_id)
        team_id = self.get_active_team(active_id) or initiative.team_id
        team = next((candidate for candidate in available_teams if candidate.id == team_id), None)
        if team is None and team_id:
            # A team spanning cohorts may be outside this program's list.
            team = self.profile.find_team(team_id)

        return ActiveProgramData(
            program_id=active_id,
            has_active_program=True,
            cohort=participations[0].cohort,
            initiative_name=initiative.name,
            participation_type=initiative.participation_type,
            is_team_based=initiative.is_team_based,
            team_id=team_id,
            team=team,
            user_has_multiple_teams=len(available_teams) > 1,
            available_teams=available_teams,
        )


__all__ = ["ActiveProgramData", "ActiveSelection", "ProgramSelector"]
