"""Per-session facade over the fetchers, the aggregator, the selection tracker and the leave sagas."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .aggregator import EnhancedProfile, InitiativeMembership, build_enhanced_profile
from .cache.view_cache import LEAVE_INVALIDATION_PREFIXES, REFRESH_SCOPES, ViewCache, cache_key, view_cache
from .config import Settings, get_settings
from .entities import Milestone, Participation, Profile, Submission, Team
from .errors import DashboardError, MissingInput, NotAuthorized, RecordNotFound
from .fetchers import EntityFetchers
from .leave_operations import (
    LeaveResult,
    delete_team_invitation,
    leave_participation,
    leave_team,
    update_member_status,
)
from .prefetch import SubmissionPrefetcher
from .records.base import RecordStore
from .selection import ActiveProgramData, ActiveSelection, ProgramSelector
from .tables import UNKNOWN_TEAM, ContactFields, Tables
from .telemetry import emit_event

logger = logging.getLogger(__name__)

# Data types whose freshness is tracked; "all" stamps every one of them.
FRESHNESS_TYPES = ("profile", "teams", "program")


class Identity(BaseModel):
    """The signed-in user as asserted by the authenticating proxy."""

    user_id: str
    email: str = ""


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(default=None, max_length=120)
    last_name: Optional[str] = Field(default=None, max_length=120)
    institution_id: Optional[str] = None

    def to_fields(self) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        if self.first_name is not None:
            fields[ContactFields.FIRST_NAME] = self.first_name.strip()
        if self.last_name is not None:
            fields[ContactFields.LAST_NAME] = self.last_name.strip()
        if self.institution_id is not None:
            fields[ContactFields.INSTITUTION] = [self.institution_id] if self.institution_id else []
        return fields


class DashboardService:
    def __init__(
        self,
        identity: Identity,
        store: RecordStore,
        *,
        tables: Optional[Tables] = None,
        settings: Optional[Settings] = None,
        cache: Optional[ViewCache] = None,
        selection: Optional[ActiveSelection] = None,
    ) -> None:
        self.identity = identity
        self.store = store
        self.settings = settings or get_settings()
        self.tables = tables or Tables.from_settings(self.settings)
        self.cache = cache if cache is not None else view_cache
        self.selection = selection or ActiveSelection()
        self.fetchers = EntityFetchers(store, self.tables)
        self.prefetcher = SubmissionPrefetcher(
            self.fetchers.fetch_submissions,
            self.cache,
            batch_size=self.settings.prefetch_batch_size,
            batch_delay=self.settings.prefetch_batch_delay_seconds,
            initial_delay=self.settings.prefetch_initial_delay_seconds,
            ttl=self.settings.submissions_cache_ttl_seconds,
        )
        self.last_updated: Dict[str, datetime] = {}

    @property
    def _user_scope(self) -> str:
        return self.identity.user_id or self.identity.email

    async def _load_profile(self) -> Profile:
        async def fetch() -> Profile:
            profile = await self.fetchers.fetch_profile(self.identity.email, self.identity.user_id)
            if profile is None:
                raise RecordNotFound(self.tables.contacts, self.identity.email or self.identity.user_id)
            return profile

        return await self.cache.get_or_fetch(
            cache_key("profile", self._user_scope),
            fetch,
            self.settings.profile_cache_ttl_seconds,
        )

    async def _load_participations(self, contact_id: str) -> List[Participation]:
        return await self.cache.get_or_fetch(
            cache_key("participation", self._user_scope),
            lambda: self.fetchers.fetch_participations(contact_id),
            self.settings.participation_cache_ttl_seconds,
        )

    async def _load_teams(self, contact_id: str) -> List[Team]:
        return await self.cache.get_or_fetch(
            cache_key("teams", self._user_scope),
            lambda: self.fetchers.fetch_teams(contact_id),
            self.settings.participation_cache_ttl_seconds,
        )

    async def _build_enhanced_profile(self) -> EnhancedProfile:
        profile = await self._load_profile()
        participations, teams = await asyncio.gather(
            self._load_participations(profile.id),
            self._load_teams(profile.id),
        )
        return build_enhanced_profile(profile, participations, teams)

    async def get_enhanced_profile(self) -> EnhancedProfile:
        return await self.cache.get_or_fetch(
            cache_key("enhanced", self._user_scope),
            self._build_enhanced_profile,
            self.settings.profile_cache_ttl_seconds,
        )

    async def _selector(self) -> ProgramSelector:
        return ProgramSelector(self.selection, await self.get_enhanced_profile())

    # Program selection

    def set_active_program(self, initiative_id: Optional[str]) -> bool:
        return self.selection.select_initiative(initiative_id)

    async def set_active_team_for_program(self, initiative_id: str, team_id: str) -> ActiveProgramData:
        selector = await self._selector()
        selector.set_active_team(initiative_id, team_id)
        return selector.get_active_program_data(initiative_id)

    async def get_active_program_data(self, initiative_id: Optional[str] = None) -> ActiveProgramData:
        return (await self._selector()).get_active_program_data(initiative_id)

    async def get_all_program_initiatives(self) -> List[InitiativeMembership]:
        return (await self.get_enhanced_profile()).get_active_initiatives()

    async def get_teams_for_program(self, initiative_id: str) -> List[Team]:
        return (await self._selector()).get_teams_for_initiative(initiative_id)

    # Leave operations

    def _after_leave(self, operation: str, result: LeaveResult) -> None:
        if not result.success:
            return
        cleared = self.cache.invalidate_many(LEAVE_INVALIDATION_PREFIXES)
        self.prefetcher.cancel()
        emit_event(
            "cache_invalidated",
            reason=operation,
            user=self._user_scope,
            keys=len(cleared),
        )

    async def leave_team(self, team_id: str) -> LeaveResult:
        profile = await self._load_profile()
        # Leave sagas run to completion even if the caller goes away.
        result = await asyncio.shield(leave_team(self.store, self.tables, profile.id, team_id))
        if result.success:
            if team_id == UNKNOWN_TEAM:
                self.selection.forget_all_teams()
            else:
                self.selection.forget_team(team_id)
        self._after_leave("leave_team", result)
        return result

    async def leave_participation(
        self,
        participation_id: Optional[str] = None,
        cohort_id: Optional[str] = None,
        initiative_id: Optional[str] = None,
    ) -> LeaveResult:
        profile = await self._load_profile()
        result = await asyncio.shield(
            leave_participation(
                self.store,
                self.tables,
                profile.id,
                participation_id=participation_id,
                cohort_id=cohort_id,
                initiative_id=initiative_id,
            )
        )
        if result.success and initiative_id:
            self.selection.forget_initiative(initiative_id)
        self._after_leave("leave_participation", result)
        if result.success:
            await self._drop_left_initiatives()
        return result

    async def _drop_left_initiatives(self) -> None:
        # Leaving by cohort or participation id does not name the initiative.
        try:
            remaining = (await self.get_enhanced_profile()).get_active_initiatives()
        except DashboardError as exc:
            logger.warning("Could not reload programs after leaving for %s: %s", self._user_scope, exc)
            return
        forgotten = self.selection.retain_initiatives(membership.id for membership in remaining)
        if forgotten:
            logger.info("Cleared selection for left programs %s", forgotten)

    async def _require_team_membership(self, team_id: str) -> None:
        """Only members of ``team_id`` may change its other Member records."""
        if not team_id:
            return
        enhanced = await self.get_enhanced_profile()
        if all(team.id != team_id for team in enhanced.teams):
            raise NotAuthorized(
                f"You are not a member of team {team_id}",
                context={"team_id": team_id, "user": self._user_scope},
            )

    async def delete_team_invitation(self, member_id: str, team_id: str) -> LeaveResult:
        try:
            await self._require_team_membership(team_id)
        except NotAuthorized as exc:
            return LeaveResult.failed(exc)
        result = await asyncio.shield(delete_team_invitation(self.store, self.tables, member_id, team_id))
        self._after_leave("delete_team_invitation", result)
        return result

    async def update_member_status(self, member_id: str, team_id: str) -> LeaveResult:
        try:
            await self._require_team_membership(team_id)
        except NotAuthorized as exc:
            return LeaveResult.failed(exc)
        result = await asyncio.shield(update_member_status(self.store, self.tables, member_id, team_id))
        self._after_leave("update_member_status", result)
        return result

    # Data

    def _stamp(self, *data_types: str) -> datetime:
        now = datetime.now(timezone.utc)
        for data_type in data_types:
            self.last_updated[data_type] = now
        return now

    def get_last_updated_timestamp(self) -> Optional[datetime]:
        if not self.last_updated:
            return None
        return max(self.last_updated.values())

    def refresh_data(self, scope: str = "all") -> List[str]:
        """Drop cached data for ``scope`` so the next read refetches it; returns the cleared keys."""
        prefixes = REFRESH_SCOPES.get(scope)
        if prefixes is None:
            raise ValueError(f"Unknown refresh scope: {scope!r}")
        cleared = self.cache.invalidate_many(prefixes)
        if scope == "all":
            self._stamp(*FRESHNESS_TYPES)
        else:
            self._stamp(scope)
        emit_event("cache_invalidated", reason=f"refresh:{scope}", user=self._user_scope, keys=len(cleared))
        return cleared

    async def get_milestones(self, cohort_id: Optional[str] = None) -> List[Milestone]:
        program = await self.get_active_program_data()
        if not cohort_id and program.cohort is not None:
            cohort_id = program.cohort.id
        if not cohort_id:
            return []

        milestones = await self.cache.get_or_fetch(
            cache_key("milestones", cohort_id),
            lambda: self.fetchers.fetch_milestones(cohort_id),
            self.settings.participation_cache_ttl_seconds,
        )
        if (
            milestones
            and program.is_team_based
            and program.team_id
            and program.cohort is not None
            and program.cohort.id == cohort_id
        ):
            self.prefetcher.schedule(program.team_id, milestones)
        return milestones

    async def get_submissions(self, team_id: str, milestone_id: str) -> List[Submission]:
        if not team_id or not milestone_id:
            raise MissingInput("Team ID and milestone ID are required")
        return await self.cache.get_or_fetch(
            cache_key("submissions", team_id, milestone_id),
            lambda: self.fetchers.fetch_submissions(team_id, milestone_id),
            self.settings.submissions_cache_ttl_seconds,
        )

    async def update_profile(self, update: ProfileUpdate) -> EnhancedProfile:
        fields = update.to_fields()
        if not fields:
            raise MissingInput("No profile fields to update")
        profile = await self._load_profile()
        await self.store.update(self.tables.contacts, profile.id, fields)
        self.cache.invalidate_many(REFRESH_SCOPES["profile"])
        self._stamp("profile")
        emit_event("profile_updated", contact_id=profile.id, fields=sorted(fields))
        return await self.get_enhanced_profile()


__all__ = ["DashboardService", "Identity", "ProfileUpdate"]
