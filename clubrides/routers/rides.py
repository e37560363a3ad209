# 라이드 생성/조회/상태 전이 API
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query

from clubrides.config import Settings
from clubrides.dependencies import get_lifecycle, get_participation, get_settings
from clubrides.identity import get_actor
from clubrides.models.ride import RideStatus
from clubrides.schemas.actor import Actor
from clubrides.schemas.participation import ParticipationOut
from clubrides.schemas.ride import PaginationOut, RideCancel, RideOut, RidePageOut
from clubrides.services.pagination import resolve_page_limit
from clubrides.services.participation import ParticipationCoordinator
from clubrides.services.ride_lifecycle import RideLifecycleManager

router = APIRouter(tags=["Rides"])


@router.post("/clubs/{club_id}/rides", response_model=RideOut, status_code=201)
def create_ride(
    club_id: str,
    body: Dict[str, Any] = Body(...),
    actor: Actor = Depends(get_actor),
    lifecycle: RideLifecycleManager = Depends(get_lifecycle),
) -> RideOut:
    """라이드 생성. 본문 검증은 서비스에서 (실패 필드 전체를 한 번에 400으로)."""
    ride = lifecycle.create_ride(body, actor, club_id)
    return RideOut.model_validate(ride)


@router.get("/clubs/{club_id}/rides", response_model=RidePageOut)
def list_club_rides(
    club_id: str,
    status: Optional[RideStatus] = Query(None),
    limit: Optional[int] = Query(None),
    cursor: Optional[str] = Query(None),
    starts_after: Optional[datetime] = Query(None, alias="startsAfter"),
    starts_before: Optional[datetime] = Query(None, alias="startsBefore"),
    actor: Actor = Depends(get_actor),
    lifecycle: RideLifecycleManager = Depends(get_lifecycle),
    settings: Settings = Depends(get_settings),
) -> RidePageOut:
    """클럽 라이드 목록. 시작 시각 내림차순, 커서 기반."""
    limit = resolve_page_limit(limit, settings)
    page = lifecycle.list_club_rides(
        club_id,
        actor,
        status=status.value if status else None,
        limit=limit,
        cursor=cursor,
        starts_after=starts_after,
        starts_before=starts_before,
    )
    return RidePageOut(
        data=[RideOut.model_validate(ride) for ride in page.items],
        pagination=PaginationOut(limit=limit, next_cursor=page.next_cursor),
    )


@router.get("/rides/{ride_id}", response_model=RideOut)
def get_ride(
    ride_id: str,
    actor: Actor = Depends(get_actor),
    lifecycle: RideLifecycleManager = Depends(get_lifecycle),
) -> RideOut:
    return RideOut.model_validate(lifecycle.get_ride(ride_id, actor))


@router.patch("/rides/{ride_id}", response_model=RideOut)
def update_ride(
    ride_id: str,
    body: Dict[str, Any] = Body(...),
    actor: Actor = Depends(get_actor),
    lifecycle: RideLifecycleManager = Depends(get_lifecycle),
) -> RideOut:
    """보낸 필드만 수정. draft/published 라이드만, 정원은 현재 좌석 수 아래로 못 줄임 (409)."""
    return RideOut.model_validate(lifecycle.update_ride(ride_id, actor, body))


@router.get("/rides/{ride_id}/participants", response_model=List[ParticipationOut])
def get_ride_participants(
    ride_id: str,
    include_left: bool = Query(False, alias="includeLeft"),
    actor: Actor = Depends(get_actor),
    participation: ParticipationCoordinator = Depends(get_participation),
) -> List[ParticipationOut]:
    rows = participation.get_ride_participants(ride_id, actor, include_left=include_left)
    return [ParticipationOut.model_validate(row) for row in rows]


@router.post("/rides/{ride_id}/publish", response_model=RideOut)
def publish_ride(
    ride_id: str,
    actor: Actor = Depends(get_actor),
    lifecycle: RideLifecycleManager = Depends(get_lifecycle),
) -> RideOut:
    return RideOut.model_validate(lifecycle.publish_ride(ride_id, actor))


@router.post("/rides/{ride_id}/cancel", response_model=RideOut)
def cancel_ride(
    ride_id: str,
    body: Optional[RideCancel] = None,
    actor: Actor = Depends(get_actor),
    lifecycle: RideLifecycleManager = Depends(get_lifecycle),
) -> RideOut:
    """취소 사유는 선택."""
    reason = body.reason if body else None
    return RideOut.model_validate(lifecycle.cancel_ride(ride_id, actor, reason=reason))


@router.post("/rides/{ride_id}/complete", response_model=RideOut)
def complete_ride(
    ride_id: str,
    actor: Actor = Depends(get_actor),
    lifecycle: RideLifecycleManager = Depends(get_lifecycle),
) -> RideOut:
    return RideOut.model_validate(lifecycle.complete_ride(ride_id, actor))
