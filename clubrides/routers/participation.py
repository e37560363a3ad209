# 참여/탈퇴/내 라이드 API
from typing import Optional

from fastapi import APIRouter, Depends, Query

from clubrides.config import Settings
from clubrides.dependencies import get_participation, get_settings
from clubrides.identity import get_actor
from clubrides.models.participation import ParticipationRole, ParticipationStatus
from clubrides.schemas.actor import Actor
from clubrides.schemas.participation import (
    JoinOut,
    ParticipantRoleUpdate,
    ParticipationOut,
    UserRideOut,
    UserRidePageOut,
)
from clubrides.schemas.ride import PaginationOut, RideOut
from clubrides.services.pagination import resolve_page_limit
from clubrides.services.participation import ParticipationCoordinator

router = APIRouter(tags=["Participation"])


@router.post("/rides/{ride_id}/join", response_model=JoinOut)
def join_ride(
    ride_id: str,
    actor: Actor = Depends(get_actor),
    participation: ParticipationCoordinator = Depends(get_participation),
) -> JoinOut:
    """참여 요청. 좌석이 없으면 대기열(waitlisted)로, 대기열이 꺼져 있으면 409."""
    row = participation.join_ride(ride_id, actor)
    status = "waitlisted" if row.role == ParticipationRole.WAITLISTED.value else "active"
    return JoinOut(status=status, participation=ParticipationOut.model_validate(row))


@router.delete("/rides/{ride_id}/participation", response_model=ParticipationOut)
def leave_ride(
    ride_id: str,
    actor: Actor = Depends(get_actor),
    participation: ParticipationCoordinator = Depends(get_participation),
) -> ParticipationOut:
    """탈퇴. 활성 참여가 없으면 404, 캡틴이면 409."""
    return ParticipationOut.model_validate(participation.leave_ride(ride_id, actor))


@router.delete("/rides/{ride_id}/participants/{user_id}", response_model=ParticipationOut)
def remove_participant(
    ride_id: str,
    user_id: str,
    actor: Actor = Depends(get_actor),
    participation: ParticipationCoordinator = Depends(get_participation),
) -> ParticipationOut:
    """참여자 내보내기. 캡틴은 내보낼 수 없음 (409)."""
    return ParticipationOut.model_validate(participation.remove_participant(ride_id, user_id, actor))


@router.put("/rides/{ride_id}/participants/{user_id}/role", response_model=ParticipationOut)
def update_participant_role(
    ride_id: str,
    user_id: str,
    body: ParticipantRoleUpdate,
    actor: Actor = Depends(get_actor),
    participation: ParticipationCoordinator = Depends(get_participation),
) -> ParticipationOut:
    row = participation.update_participant_role(ride_id, user_id, body.role.value, actor)
    return ParticipationOut.model_validate(row)


@router.get("/users/me/rides", response_model=UserRidePageOut)
def get_my_rides(
    status: Optional[ParticipationStatus] = Query(None),
    role: Optional[ParticipationRole] = Query(None),
    limit: Optional[int] = Query(None),
    cursor: Optional[str] = Query(None),
    actor: Actor = Depends(get_actor),
    participation: ParticipationCoordinator = Depends(get_participation),
    settings: Settings = Depends(get_settings),
) -> UserRidePageOut:
    """내 라이드 목록. limit 범위 밖/잘못된 커서는 400."""
    limit = resolve_page_limit(limit, settings)
    page = participation.get_user_rides(
        actor.user_id,
        status=status.value if status else None,
        role=role.value if role else None,
        limit=limit,
        cursor=cursor,
    )
    return UserRidePageOut(
        data=[
            UserRideOut(
                ride=RideOut.model_validate(entry.ride),
                participation=ParticipationOut.model_validate(entry.participation),
            )
            for entry in page.items
        ],
        pagination=PaginationOut(limit=limit, next_cursor=page.next_cursor),
    )
