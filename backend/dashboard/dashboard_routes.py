"""Dashboard REST endpoints: profile, program selection, leave operations and refresh."""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from contextlib import contextmanager
from datetime import datetime
from functools import lru_cache
from threading import RLock
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel, Field

from .aggregator import EnhancedProfile, InitiativeMembership
from .config import get_settings
from .entities import Milestone, Submission, Team
from .errors import DashboardError
from .leave_operations import LeaveResult
from .records import RecordStore, create_record_store
from .selection import ActiveProgramData
from .service import DashboardService, Identity, ProfileUpdate

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])
logger = logging.getLogger(__name__)

HTTP_422_UNPROCESSABLE = 422

STATUS_BY_ERROR_KIND: Dict[str, int] = {
    "MissingInput": HTTP_422_UNPROCESSABLE,
    "RecordNotFound": status.HTTP_404_NOT_FOUND,
    "NotAuthorized": status.HTTP_403_FORBIDDEN,
    "StoreFault": status.HTTP_503_SERVICE_UNAVAILABLE,
}

DEFAULT_MAX_SESSIONS = 1024
DEFAULT_SESSION_IDLE_SECONDS = 3600.0


class SessionRegistry:
    """One :class:`DashboardService` per signed-in identity, bounded by size and idle time."""

    def __init__(
        self,
        *,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        idle_seconds: float = DEFAULT_SESSION_IDLE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sessions: "OrderedDict[str, Tuple[DashboardService, float]]" = OrderedDict()
        self._lock = RLock()
        self.max_sessions = max_sessions
        self.idle_seconds = idle_seconds
        self._clock = clock

    def get(self, identity: Identity, store: RecordStore) -> DashboardService:
        with self._lock:
            now = self._clock()
            self._expire(now)
            entry = self._sessions.get(identity.user_id)
            service = entry[0] if entry is not None else None
            if service is None or service.store is not store or service.identity != identity:
                if service is not None:
                    self._discard(identity.user_id)
                service = DashboardService(identity, store)
            self._sessions[identity.user_id] = (service, now)
            self._sessions.move_to_end(identity.user_id)
            while len(self._sessions) > self.max_sessions:
                self._discard(next(iter(self._sessions)))
            return service

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _expire(self, now: float) -> None:
        stale = [user_id for user_id, (_, seen) in self._sessions.items() if now - seen > self.idle_seconds]
        for user_id in stale:
            self._discard(user_id)

    def _discard(self, user_id: str) -> None:
        service, _ = self._sessions.pop(user_id)
        # Bumping the generation stops a running prefetch at its next batch.
        service.prefetcher.next_generation()
        logger.debug("Dropped dashboard session for %s", user_id)

    def clear(self) -> None:
        with self._lock:
            for user_id in list(self._sessions):
                self._discard(user_id)


sessions = SessionRegistry()


@lru_cache
def get_record_store() -> RecordStore:
    return create_record_store(get_settings())


def get_identity(
    x_user_id: Optional[str] = Header(default=None),
    x_user_email: Optional[str] = Header(default=None),
) -> Identity:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required.",
        )
    return Identity(user_id=x_user_id.strip(), email=(x_user_email or "").strip())


def get_dashboard_service(
    identity: Identity = Depends(get_identity),
    store: RecordStore = Depends(get_record_store),
) -> DashboardService:
    return sessions.get(identity, store)


@contextmanager
def _dashboard_errors() -> Iterator[None]:
    try:
        yield
    except DashboardError as exc:
        raise HTTPException(
            status_code=STATUS_BY_ERROR_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
            detail=exc.message,
        ) from exc
    except ValueError as exc:
        raise HTTPException(status_code=HTTP_422_UNPROCESSABLE, detail=str(exc)) from exc


def _leave_response(result: LeaveResult) -> LeaveResult:
    if result.success:
        return result
    raise HTTPException(
        status_code=STATUS_BY_ERROR_KIND.get(result.error_kind or "", status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail=result.error or "Operation failed.",
    )


class ActiveProgramRequest(BaseModel):
    program_id: Optional[str] = None


class ActiveTeamRequest(BaseModel):
    team_id: str = Field(..., min_length=1)


class LeaveParticipationRequest(BaseModel):
    participation_id: Optional[str] = None
    cohort_id: Optional[str] = None
    initiative_id: Optional[str] = None


class RefreshRequest(BaseModel):
    scope: str = "all"


class RefreshResponse(BaseModel):
    scope: str
    cleared: int
    last_updated: Optional[datetime] = None


@router.get("/profile", response_model=EnhancedProfile)
async def get_profile(service: DashboardService = Depends(get_dashboard_service)) -> EnhancedProfile:
    with _dashboard_errors():
        return await service.get_enhanced_profile()


@router.patch("/profile", response_model=EnhancedProfile)
async def update_profile(
    payload: ProfileUpdate,
    service: DashboardService = Depends(get_dashboard_service),
) -> EnhancedProfile:
    with _dashboard_errors():
        return await service.update_profile(payload)


@router.get("/programs", response_model=List[InitiativeMembership])
async def list_programs(service: DashboardService = Depends(get_dashboard_service)) -> List[InitiativeMembership]:
    with _dashboard_errors():
        return await service.get_all_program_initiatives()


@router.get("/programs/active", response_model=ActiveProgramData)
async def get_active_program(
    program_id: Optional[str] = None,
    service: DashboardService = Depends(get_dashboard_service),
) -> ActiveProgramData:
    with _dashboard_errors():
        return await service.get_active_program_data(program_id)


@router.put("/programs/active", response_model=ActiveProgramData)
async def set_active_program(
    payload: ActiveProgramRequest,
    service: DashboardService = Depends(get_dashboard_service),
) -> ActiveProgramData:
    with _dashboard_errors():
        service.set_active_program(payload.program_id)
        return await service.get_active_program_data()


@router.get("/programs/{program_id}/teams", response_model=List[Team])
async def list_program_teams(
    program_id: str,
    service: DashboardService = Depends(get_dashboard_service),
) -> List[Team]:
    with _dashboard_errors():
        return await service.get_teams_for_program(program_id)


@router.put("/programs/{program_id}/team", response_model=ActiveProgramData)
async def set_active_team(
    program_id: str,
    payload: ActiveTeamRequest,
    service: DashboardService = Depends(get_dashboard_service),
) -> ActiveProgramData:
    with _dashboard_errors():
        return await service.set_active_team_for_program(program_id, payload.team_id)


@router.get("/milestones", response_model=List[Milestone])
async def list_milestones(
    cohort_id: Optional[str] = None,
    service: DashboardService = Depends(get_dashboard_service),
) -> List[Milestone]:
    with _dashboard_errors():
        return await service.get_milestones(cohort_id)


@router.get("/teams/{team_id}/milestones/{milestone_id}/submissions", response_model=List[Submission])
async def list_submissions(
    team_id: str,
    milestone_id: str,
    service: DashboardService = Depends(get_dashboard_service),
) -> List[Submission]:
    with _dashboard_errors():
        return await service.get_submissions(team_id, milestone_id)


@router.post("/teams/{team_id}/leave", response_model=LeaveResult)
async def leave_team(team_id: str, service: DashboardService = Depends(get_dashboard_service)) -> LeaveResult:
    with _dashboard_errors():
        result = await service.leave_team(team_id)
    return _leave_response(result)


@router.post("/participation/leave", response_model=LeaveResult)
async def leave_participation(
    payload: LeaveParticipationRequest,
    service: DashboardService = Depends(get_dashboard_service),
) -> LeaveResult:
    with _dashboard_errors():
        result = await service.leave_participation(
            participation_id=payload.participation_id,
            cohort_id=payload.cohort_id,
            initiative_id=payload.initiative_id,
        )
    return _leave_response(result)


@router.delete("/teams/{team_id}/invitations/{member_id}", response_model=LeaveResult)
async def delete_team_invitation(
    team_id: str,
    member_id: str,
    service: DashboardService = Depends(get_dashboard_service),
) -> LeaveResult:
    with _dashboard_errors():
        result = await service.delete_team_invitation(member_id, team_id)
    return _leave_response(result)


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(
    payload: RefreshRequest,
    service: DashboardService = Depends(get_dashboard_service),
) -> RefreshResponse:
    with _dashboard_errors():
        cleared = service.refresh_data(payload.scope)
    logger.info("Refreshed %s data for %s (%d keys)", payload.scope, service.identity.user_id, len(cleared))
    return RefreshResponse(
        scope=payload.scope,
        cleared=len(cleared),
        last_updated=service.get_last_updated_timestamp(),
    )


__all__ = [
    "SessionRegistry",
    "get_dashboard_service",
    "get_identity",
    "get_record_store",
    "router",
    "sessions",
]
