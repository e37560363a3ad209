# 참여/탈퇴/대기열/참여자 관리 (행 잠금 대신 저장소의 조건부 증감으로 정원 초과 방지)

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional

from clubrides.config import Settings, load_settings
from clubrides.errors import ClubRidesError, ConcurrencyError, ConflictError, NotFoundError, ValidationError
from clubrides.models.base import utcnow
from clubrides.models.participation import (
    SEATED_ROLES,
    Participation,
    ParticipationRole,
    ParticipationStatus,
)
from clubrides.models.ride import Ride, RideStatus
from clubrides.schemas.actor import Actor
from clubrides.services.authorization import AuthorizationEngine, Capability
from clubrides.services.pagination import resolve_page_limit
from clubrides.services.ride_lifecycle import load_ride
from clubrides.services.seats import SeatAllocator, participation_key
from clubrides.store.partitioned import Condition, Page, PartitionedStore
from clubrides.store.retry import with_conditional_retries

logger = logging.getLogger(__name__)

# 관리자가 바꿀 수 있는 역할. 둘 다 좌석을 차지하므로 카운터는 그대로
ROLE_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    ParticipationRole.PARTICIPANT.value: frozenset({ParticipationRole.LEADER.value}),
    ParticipationRole.LEADER.value: frozenset({ParticipationRole.PARTICIPANT.value}),
}


@dataclass
class UserRide:
    """내 라이드 목록 한 항목: 라이드 + 나의 참여."""

    ride: Ride
    participation: Participation


class ParticipationCoordinator:
    """
    라이드 참여 조정.

    - 공유 자원은 Ride.current_participants 하나, 모든 증감은 SeatAllocator(저장소의 경계 검사 증감)로만
    - 프로세스 메모리에 카운터/락을 두지 않음 → 요청 간 상태 없음
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
    # 참여
    def join_ride(self, ride_id: str, actor: Actor) -> Participation:
        """
        라이드 참여.

        - 라이드 없음: NotFoundError / published 아님, 이미 참여 중: ConflictError
        - 좌석 확보(current_participants < max_participants 조건부 증가) 성공 → participant
        - 정원 초과: allow_waitlist면 waitlisted (카운터 변화 없음), 아니면 ConflictError("Ride is full")
        - 이전에 떠난 참여 행이 있으면 새 joined_at으로 다시 활성화
        - 좌석 확보 후 참여 쓰기가 어떤 이유로든 실패하면 좌석 반환
        """
        ride = load_ride(self._store, ride_id)
        self._authz.require_capability(Capability.JOIN_RIDES, actor, ride.club_id)
        if ride.status != RideStatus.PUBLISHED.value:
            raise ConflictError(f"Only published rides can be joined (ride is {ride.status})")

        key = participation_key(ride_id, actor.user_id)
        existing = self._store.get(Participation, key)
        if existing is not None and existing.status == ParticipationStatus.ACTIVE.value:
            raise ConflictError("User is already participating in this ride")

        if self._seats.claim(ride):
            try:
                participation = self._activate(ride, actor.user_id, ParticipationRole.PARTICIPANT, existing)
            except ConcurrencyError as exc:
                # 같은 사용자의 동시 참여가 먼저 기록됨
                self._seats.release(ride)
                raise ConflictError("User is already participating in this ride") from exc
            except ClubRidesError:
                self._seats.release(ride)
                raise
            logger.info("User %s joined ride %s", actor.user_id, ride_id)
            return participation

        if not ride.allow_waitlist:
            raise ConflictError("Ride is full")
        try:
            self._activate(ride, actor.user_id, ParticipationRole.WAITLISTED, existing)
        except ConcurrencyError as exc:
            raise ConflictError("User is already participating in this ride") from exc
        logger.info("User %s waitlisted on ride %s", actor.user_id, ride_id)

        # 좌석 확보 실패와 대기 기록 사이에 빈 좌석이 생겼을 수 있음
        self._seats.fill_open_seats(ride)
        return self._store.get(Participation, key)

    def _activate(
        self,
        ride: Ride,
        user_id: str,
        role: ParticipationRole,
        previous: Optional[Participation],
    ) -> Participation:
        values = {
            "club_id": ride.club_id,
            "role": role.value,
            "status": ParticipationStatus.ACTIVE.value,
            "joined_at": utcnow(),
            "left_at": None,
            "ride_start_date_time": ride.start_date_time,
        }
        key = participation_key(ride.ride_id, user_id)
        if previous is None:
            return self._store.put(Participation, {**key, **values}, Condition(must_not_exist=True))
        return self._store.update(
            Participation, key, values, Condition(expected={"status": ParticipationStatus.LEFT.value})
        )

    # ------------------------------------------------------------------
    # 탈퇴 / 내보내기
    def leave_ride(self, ride_id: str, actor: Actor) -> Participation:
        """
        라이드 탈퇴.

        - 활성 참여가 없으면 NotFoundError, 캡틴은 탈퇴 불가 (ConflictError)
        - status active → left 조건부 업데이트에서 이긴 요청만 카운터 감소 → 이중 감소 없음
        - 좌석이 비면 대기자 승격
        """
        left = self._depart(ride_id, actor.user_id, "The ride captain cannot leave the ride")
        logger.info("User %s left ride %s (role=%s)", actor.user_id, ride_id, left.role)
        return left

    def remove_participant(self, ride_id: str, user_id: str, actor: Actor) -> Participation:
        """관리자가 참여자를 내보냄. MANAGE_PARTICIPANTS 또는 해당 라이드의 캡틴. 탈퇴와 같은 감소/승격 경로."""
        ride = load_ride(self._store, ride_id)
        self._authz.require_capability(
            Capability.MANAGE_PARTICIPANTS, actor, ride.club_id, ride_captain_id=ride.created_by
        )
        removed = self._depart(ride_id, user_id, "The ride captain cannot be removed from the ride")
        logger.info("User %s removed from ride %s by %s (role=%s)", user_id, ride_id, actor.user_id, removed.role)
        return removed

    def _depart(self, ride_id: str, user_id: str, captain_message: str) -> Participation:
        key = participation_key(ride_id, user_id)

        def attempt() -> Participation:
            current = self._store.get(Participation, key)
            if current is None or current.status != ParticipationStatus.ACTIVE.value:
                raise NotFoundError("No active participation in this ride")
            if current.role == ParticipationRole.CAPTAIN.value:
                raise ConflictError(captain_message)
            return self._store.update(
                Participation,
                key,
                {"status": ParticipationStatus.LEFT.value, "left_at": utcnow()},
                Condition(expected={"status": ParticipationStatus.ACTIVE.value, "role": current.role}),
            )

        departed = with_conditional_retries(
            attempt, self._settings.conditional_write_attempts, f"end participation in ride {ride_id}"
        )

        if departed.role in SEATED_ROLES:
            ride = self._store.get(Ride, {"club_id": departed.club_id, "ride_id": ride_id})
            if ride is not None:
                try:
                    self._seats.release(ride)
                    self._seats.fill_open_seats(ride)
                except ClubRidesError:
                    logger.error(
                        "Seat release after %s left ride %s failed, counter needs reconciliation", user_id, ride_id
                    )
                    raise
        return departed

    # ------------------------------------------------------------------
    # 역할 변경
    def update_participant_role(self, ride_id: str, user_id: str, role: str, actor: Actor) -> Participation:
        """
        participant ↔ leader 변경. MANAGE_PARTICIPANTS 또는 해당 라이드의 캡틴.

        - 알 수 없는 역할: ValidationError(fields=["role"])
        - 캡틴/대기자/표에 없는 전이: ConflictError (대기자는 좌석이 생겨야 승격됨)
        - 읽어 둔 role과 active 상태를 조건으로 업데이트
        """
        if role not in {r.value for r in ParticipationRole}:
            raise ValidationError(fields=["role"])
        ride = load_ride(self._store, ride_id)
        self._authz.require_capability(
            Capability.MANAGE_PARTICIPANTS, actor, ride.club_id, ride_captain_id=ride.created_by
        )
        key = participation_key(ride_id, user_id)

        def attempt() -> Participation:
            current = self._store.get(Participation, key)
            if current is None or current.status != ParticipationStatus.ACTIVE.value:
                raise NotFoundError("No active participation in this ride")
            if current.role == role:
                return current
            if role not in ROLE_TRANSITIONS.get(current.role, frozenset()):
                raise ConflictError(f"A {current.role} cannot be changed to {role}")
            return self._store.update(
                Participation,
                key,
                {"role": role},
                Condition(expected={"status": ParticipationStatus.ACTIVE.value, "role": current.role}),
            )

        updated = with_conditional_retries(
            attempt, self._settings.conditional_write_attempts, f"change role of {user_id} in ride {ride_id}"
        )
        logger.info("User %s is now %s on ride %s (by %s)", user_id, updated.role, ride_id, actor.user_id)
        return updated

    # ------------------------------------------------------------------
    # 조회
    def get_user_rides(
        self,
        user_id: str,
        status: Optional[str] = None,
        role: Optional[str] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> Page:
        """
        내 라이드 목록. 역방향 인덱스 (user_id, ride_start_date_time, ride_id) 내림차순.

        status/role은 참여 기준 필터. 라이드 본문은 batch-get으로 한 번에 가져옴.
        """
        limit = resolve_page_limit(limit, self._settings)
        filters = {name: value for name, value in (("status", status), ("role", role)) if value}
        page = self._store.query(
            Participation,
            {"user_id": user_id},
            sort_keys=("ride_start_date_time", "ride_id"),
            descending=True,
            limit=limit,
            cursor=cursor,
            filters=filters,
        )
        rides = self._store.batch_get(Ride, [{"club_id": p.club_id, "ride_id": p.ride_id} for p in page.items])
        by_id = {ride.ride_id: ride for ride in rides}
        entries = [UserRide(ride=by_id[p.ride_id], participation=p) for p in page.items if p.ride_id in by_id]
        return Page(items=entries, next_cursor=page.next_cursor)

    def get_ride_participants(self, ride_id: str, actor: Actor, include_left: bool = False) -> List[Participation]:
        """라이드 참여자 목록 (joined_at 순). 기본은 활성 참여만. 라이드를 볼 수 있는 사람만."""
        ride = load_ride(self._store, ride_id)
        self._authz.require_ride_visibility(actor, ride.club_id, ride.status, ride.created_by)
        filters = None if include_left else {"status": ParticipationStatus.ACTIVE.value}
        page = self._store.query(
            Participation,
            {"ride_id": ride_id},
            sort_keys=("joined_at", "user_id"),
            descending=False,
            filters=filters,
        )
        return page.items
