# 라이드 생명주기: 생성(캡틴 참여와 함께), 수정, 공개, 취소, 완료, 조회, 인원 카운터 재조정

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from clubrides.config import Settings, load_settings
from clubrides.errors import (
    AuthorizationError,
    ClubRidesError,
    ConflictError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from clubrides.models.base import as_utc, utcnow
from clubrides.models.participation import (
    SEATED_ROLES,
    Participation,
    ParticipationRole,
    ParticipationStatus,
)
from clubrides.models.ride import Ride, RideStatus
from clubrides.schemas.actor import Actor
from clubrides.schemas.ride import RideCreate, RideUpdate
from clubrides.services.authorization import AuthorizationEngine, Capability
from clubrides.services.pagination import resolve_page_limit
from clubrides.services.ride_status import ensure_editable, ensure_transition
from clubrides.services.seats import SeatAllocator, participation_key, ride_key
from clubrides.store.partitioned import Condition, Page, PartitionedStore
from clubrides.store.retry import with_conditional_retries

logger = logging.getLogger(__name__)


def load_ride(store: PartitionedStore, ride_id: str) -> Ride:
    """ride_id 단독 인덱스로 라이드 조회. 없으면 NotFoundError."""
    page = store.query(Ride, {"ride_id": ride_id}, sort_keys=("ride_id",), limit=1)
    if not page.items:
        raise NotFoundError(f"Ride not found: {ride_id}")
    return page.items[0]


def _validation_fields(exc: PydanticValidationError) -> List[str]:
    return [".".join(str(part) for part in error["loc"]) or "body" for error in exc.errors()]


def parse_ride_create(request: Mapping[str, Any]) -> RideCreate:
    """요청 본문 검증. 누락/잘못된 필드를 한 번에 모두 모아 ValidationError로."""
    try:
        return RideCreate.model_validate(request)
    except PydanticValidationError as exc:
        raise ValidationError(fields=_validation_fields(exc)) from exc


def parse_ride_update(request: Mapping[str, Any]) -> RideUpdate:
    try:
        return RideUpdate.model_validate(request)
    except PydanticValidationError as exc:
        raise ValidationError(fields=_validation_fields(exc)) from exc


class RideLifecycleManager:
    """
    라이드 상태 머신의 소유자.

    - 모든 상태 전이는 읽어 둔 status를 조건으로 한 조건부 업데이트
    - 경합에서 지면 다시 읽고 재시도 (conditional_write_attempts 회까지)
    - 권한 판단은 전부 AuthorizationEngine에 위임
    """

    def __init__(
        self,
        store: PartitionedStore,
        authorization: AuthorizationEngine,
        settings: Optional[Settings] = None,
    ) -> None:
        self._store = store
        self._authz = authorization
        self._settings = settings or load_settings()
        self._seats = SeatAllocator(store, self._settings)

    # ------------------------------------------------------------------
    # 생성 (ride 쓰기 → captain 참여 쓰기, 실패 시 ride 삭제로 보상)
    def create_ride(self, request: Mapping[str, Any], actor: Actor, club_id: str) -> Ride:
        """
        라이드 생성.

        - 검증 실패: ValidationError (실패 필드 전체)
        - CREATE_RIDE_PROPOSALS 필요
        - publishImmediately=true 이고 PUBLISH_RIDE_IMMEDIATELY 권한이 있을 때만 published, 그 외 draft
        - captain 참여 쓰기가 실패하면 ride를 삭제(보상)하고 InternalError
        """
        payload = parse_ride_create(request)
        self._authz.require_capability(Capability.CREATE_RIDE_PROPOSALS, actor, club_id)
        publish = payload.publish_immediately and self._authz.has_capability(
            Capability.PUBLISH_RIDE_IMMEDIATELY, actor, club_id
        )

        now = utcnow()
        ride_id = f"ride_{uuid.uuid4().hex}"
        status = RideStatus.PUBLISHED if publish else RideStatus.DRAFT
        ride_item = {
            "club_id": club_id,
            "ride_id": ride_id,
            "title": payload.title,
            "description": payload.description,
            "ride_type": payload.ride_type.value,
            "difficulty": payload.difficulty.value,
            "start_date_time": payload.start_date_time,
            "estimated_duration": payload.estimated_duration,
            "meeting_point": payload.meeting_point.model_dump(exclude_none=True),
            "route": payload.route,
            "max_participants": payload.max_participants,
            "allow_waitlist": payload.allow_waitlist,
            "status": status.value,
            "current_participants": 0,  # 캡틴은 정원에 포함하지 않음
            "created_by": actor.user_id,
            "created_at": now,
            "updated_at": now,
            "published_by": actor.user_id if publish else None,
            "published_at": now if publish else None,
        }
        captain_item = {
            "ride_id": ride_id,
            "user_id": actor.user_id,
            "club_id": club_id,
            "role": ParticipationRole.CAPTAIN.value,
            "status": ParticipationStatus.ACTIVE.value,
            "joined_at": now,
            "ride_start_date_time": payload.start_date_time,
        }

        ride = self._store.put(Ride, ride_item, Condition(must_not_exist=True))
        try:
            self._store.put(Participation, captain_item, Condition(must_not_exist=True))
        except ClubRidesError as exc:
            logger.warning("Captain participation write failed for ride %s, compensating", ride_id)
            self._compensate_ride(ride)
            raise InternalError("Ride could not be created") from exc

        logger.info("Ride %s created in club %s by %s (status=%s)", ride_id, club_id, actor.user_id, ride.status)
        return ride

    def _compensate_ride(self, ride: Ride) -> None:
        attempts = max(self._settings.compensation_attempts, 1)
        for attempt in range(1, attempts + 1):
            try:
                self._store.delete(Ride, ride_key(ride))
                logger.info("Compensating delete removed ride %s", ride.ride_id)
                return
            except ClubRidesError as exc:
                logger.warning(
                    "Compensating delete of ride %s failed (attempt %d/%d): %s",
                    ride.ride_id,
                    attempt,
                    attempts,
                    exc.message,
                )
        logger.error(
            "Manual reconciliation required: ride club=%s ride=%s exists without a captain participation",
            ride.club_id,
            ride.ride_id,
        )

    # ------------------------------------------------------------------
    # 수정 (draft/published 에서만)
    def update_ride(self, ride_id: str, actor: Actor, request: Mapping[str, Any]) -> Ride:
        """
        라이드 내용 수정. 보낸 필드만 바뀜.

        - MANAGE_RIDES 또는 해당 라이드의 캡틴
        - draft/published 가 아니면 ConflictError
        - maxParticipants를 현재 좌석 수보다 작게 줄이면 ConflictError
        - 읽어 둔 status, current_participants를 조건으로 쓰므로 그 사이 참여/탈퇴가 있으면 재시도
        - published 라이드의 정원이 바뀌면 빈 좌석만큼 대기자를 승격
        """
        payload = parse_ride_update(request)
        ride = load_ride(self._store, ride_id)
        self._authz.require_capability(Capability.MANAGE_RIDES, actor, ride.club_id, ride_captain_id=ride.created_by)

        changes: Dict[str, Any] = {}
        for name in payload.model_fields_set:
            value = getattr(payload, name)
            if name == "meeting_point":
                value = value.model_dump(exclude_none=True)
            elif name in ("ride_type", "difficulty"):
                value = value.value
            changes[name] = value
        if not changes:
            return ride

        def attempt() -> Ride:
            current = load_ride(self._store, ride_id)
            ensure_editable(current.status)
            if "max_participants" in changes:
                new_max = changes["max_participants"]
                if new_max is not None and new_max < current.current_participants:
                    raise ConflictError(
                        f"maxParticipants cannot be lower than the {current.current_participants} seated riders"
                    )
            return self._store.update(
                Ride,
                ride_key(current),
                {**changes, "updated_at": utcnow()},
                Condition(
                    expected={"status": current.status, "current_participants": current.current_participants}
                ),
            )

        updated = with_conditional_retries(attempt, self._settings.conditional_write_attempts, f"update ride {ride_id}")
        logger.info("Ride %s updated by %s (%s)", ride_id, actor.user_id, ", ".join(sorted(changes)))

        if "start_date_time" in changes:
            self._copy_start_to_participations(updated)
        if "max_participants" in changes:
            self._seats.fill_open_seats(updated)
        return load_ride(self._store, ride_id)

    def _copy_start_to_participations(self, ride: Ride) -> None:
        # "내 라이드" 정렬 키가 바뀐 시작 시각을 따라가도록
        page = self._store.query(Participation, {"ride_id": ride.ride_id}, sort_keys=("user_id",), descending=False)
        for participation in page.items:
            self._store.update(
                Participation,
                participation_key(ride.ride_id, participation.user_id),
                {"ride_start_date_time": ride.start_date_time},
            )

    # ------------------------------------------------------------------
    # 상태 전이
    def publish_ride(self, ride_id: str, actor: Actor) -> Ride:
        """draft → published. PUBLISH_RIDE_IMMEDIATELY 필요, 그 외 상태에서는 409."""
        ride = load_ride(self._store, ride_id)
        self._authz.require_capability(Capability.PUBLISH_RIDE_IMMEDIATELY, actor, ride.club_id)
        ride = self._transition(
            ride_id,
            RideStatus.PUBLISHED,
            {"published_by": actor.user_id, "published_at": utcnow()},
            f"publish ride {ride_id}",
        )
        logger.info("Ride %s published by %s", ride_id, actor.user_id)
        return ride

    def cancel_ride(self, ride_id: str, actor: Actor, reason: Optional[str] = None) -> Ride:
        """draft/published → cancelled. CANCEL_ANY_RIDE 또는 해당 라이드의 캡틴. 이미 종료 상태면 409."""
        ride = load_ride(self._store, ride_id)
        self._authz.require_capability(Capability.CANCEL_ANY_RIDE, actor, ride.club_id, ride_captain_id=ride.created_by)
        ride = self._transition(
            ride_id,
            RideStatus.CANCELLED,
            {"cancelled_by": actor.user_id, "cancelled_at": utcnow(), "cancellation_reason": reason},
            f"cancel ride {ride_id}",
        )
        logger.info("Ride %s cancelled by %s", ride_id, actor.user_id)
        return ride

    def complete_ride(self, ride_id: str, actor: Actor) -> Ride:
        """published → completed. 시간 기반 외부 트리거가 호출. COMPLETE_RIDES 또는 캡틴."""
        ride = load_ride(self._store, ride_id)
        self._authz.require_capability(Capability.COMPLETE_RIDES, actor, ride.club_id, ride_captain_id=ride.created_by)
        ride = self._transition(
            ride_id,
            RideStatus.COMPLETED,
            {"completed_by": actor.user_id, "completed_at": utcnow()},
            f"complete ride {ride_id}",
        )
        logger.info("Ride %s completed by %s", ride_id, actor.user_id)
        return ride

    def _transition(self, ride_id: str, target: RideStatus, values: Dict[str, Any], description: str) -> Ride:
        def attempt() -> Ride:
            current = load_ride(self._store, ride_id)
            ensure_transition(current.status, target.value)
            changes = {"status": target.value, "updated_at": utcnow(), **values}
            return self._store.update(Ride, ride_key(current), changes, Condition(expected={"status": current.status}))

        return with_conditional_retries(attempt, self._settings.conditional_write_attempts, description)

    # ------------------------------------------------------------------
    # 조회
    def get_ride(self, ride_id: str, actor: Actor) -> Ride:
        """클럽 멤버만 조회 가능. draft는 VIEW_DRAFT_RIDES 권한자와 라이드 캡틴에게만 보임."""
        ride = load_ride(self._store, ride_id)
        self._authz.require_ride_visibility(actor, ride.club_id, ride.status, ride.created_by)
        return ride

    def list_club_rides(
        self,
        club_id: str,
        actor: Actor,
        status: Optional[str] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        starts_after: Optional[datetime] = None,
        starts_before: Optional[datetime] = None,
    ) -> Page:
        """
        클럽 라이드 목록. (start_date_time, ride_id) 내림차순, 커서 기반 페이지.

        VIEW_DRAFT_RIDES 권한이 없으면 draft는 목록에서 빠지고, status=draft 요청은 AuthorizationError.
        """
        self._authz.require_capability(Capability.VIEW_CLUB_RIDES, actor, club_id)
        sees_drafts = self._authz.has_capability(Capability.VIEW_DRAFT_RIDES, actor, club_id)
        if status == RideStatus.DRAFT.value and not sees_drafts:
            raise AuthorizationError(f"Missing capability {Capability.VIEW_DRAFT_RIDES.value} in this club")
        status_filter: Any = status
        if status is None and not sees_drafts:
            status_filter = tuple(s.value for s in RideStatus if s is not RideStatus.DRAFT)
        limit = resolve_page_limit(limit, self._settings)
        return self._store.query(
            Ride,
            {"club_id": club_id},
            sort_keys=("start_date_time", "ride_id"),
            descending=True,
            limit=limit,
            cursor=cursor,
            filters={"status": status_filter} if status_filter else None,
            sort_from=as_utc(starts_after) if starts_after else None,
            sort_to=as_utc(starts_before) if starts_before else None,
        )

    # ------------------------------------------------------------------
    # 카운터 재조정
    def reconcile_participant_count(self, ride_id: str) -> int:
        """
        좌석을 차지한 활성 참여 수를 다시 세어 current_participants와 비교, 어긋나면 덮어씀.

        덮어쓰기는 읽어 둔 카운터 값을 조건으로 하므로 그 사이 증감이 있으면 재시도.
        참여 쓰기 직전의 좌석 선점까지는 구분하지 못하므로 한가한 라이드에서 실행하는 운영 도구.
        """

        def attempt() -> int:
            ride = load_ride(self._store, ride_id)
            live = self._store.count(
                Participation,
                {"ride_id": ride_id},
                filters={"status": ParticipationStatus.ACTIVE.value, "role": SEATED_ROLES},
            )
            if live == ride.current_participants:
                return live
            self._store.update(
                Ride,
                ride_key(ride),
                {"current_participants": live, "updated_at": utcnow()},
                Condition(expected={"current_participants": ride.current_participants}),
            )
            logger.warning(
                "Ride %s participant counter drifted (stored=%d, live=%d), repaired",
                ride_id,
                ride.current_participants,
                live,
            )
            return live

        return with_conditional_retries(
            attempt, self._settings.conditional_write_attempts, f"reconcile participant count of ride {ride_id}"
        )
