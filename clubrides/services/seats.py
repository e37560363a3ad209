# 좌석 확보/반환과 대기자 승격. 참여 조정과 라이드 수정(정원 증가) 양쪽에서 사용

import logging
from typing import Dict, Optional

from clubrides.config import Settings
from clubrides.errors import ClubRidesError, ConcurrencyError
from clubrides.models.participation import Participation, ParticipationRole, ParticipationStatus
from clubrides.models.ride import Ride, RideStatus
from clubrides.store.partitioned import Condition, PartitionedStore

logger = logging.getLogger(__name__)


def ride_key(ride: Ride) -> Dict[str, str]:
    return {"club_id": ride.club_id, "ride_id": ride.ride_id}


def participation_key(ride_id: str, user_id: str) -> Dict[str, str]:
    return {"ride_id": ride_id, "user_id": user_id}


class SeatAllocator:
    """
    Ride.current_participants의 유일한 변경 경로.

    - 확보: current_participants + 1 <= max_participants 를 같은 UPDATE 안에서 검사
      (정원은 행의 현재 값을 사용하므로 동시에 정원이 줄어도 초과 불가)
    - 반환: 0 아래로 내려가지 않음
    """

    def __init__(self, store: PartitionedStore, settings: Settings) -> None:
        self._store = store
        self._settings = settings

    def claim(self, ride: Ride) -> bool:
        value = self._store.increment(
            Ride, ride_key(ride), "current_participants", 1, upper_bound_attribute="max_participants"
        )
        return value is not None

    def release(self, ride: Ride) -> None:
        value = self._store.increment(Ride, ride_key(ride), "current_participants", -1, lower_bound=0)
        if value is None:
            logger.warning("Participant counter of ride %s already at zero, reconciliation needed", ride.ride_id)

    def next_waitlisted(self, ride_id: str) -> Optional[Participation]:
        page = self._store.query(
            Participation,
            {"ride_id": ride_id},
            sort_keys=("joined_at", "user_id"),
            descending=False,
            limit=1,
            filters={"role": ParticipationRole.WAITLISTED.value, "status": ParticipationStatus.ACTIVE.value},
        )
        return page.items[0] if page.items else None

    def fill_open_seats(self, ride: Ride) -> int:
        """
        빈 좌석만큼 대기자를 joined_at 순으로 승격.

        좌석을 먼저 확보한 뒤 role=waitlisted 조건으로 승격 → 같은 대기자를 두 번 승격할 수 없음.
        승격이 경합에서 지면 좌석을 반환하고 다음 대기자로 (conditional_write_attempts 회까지).
        """
        if ride.status != RideStatus.PUBLISHED.value:
            return 0
        promoted = 0
        misses = 0
        while misses < self._settings.conditional_write_attempts:
            candidate = self.next_waitlisted(ride.ride_id)
            if candidate is None or not self.claim(ride):
                break
            try:
                self._store.update(
                    Participation,
                    participation_key(ride.ride_id, candidate.user_id),
                    {"role": ParticipationRole.PARTICIPANT.value},
                    Condition(
                        expected={
                            "role": ParticipationRole.WAITLISTED.value,
                            "status": ParticipationStatus.ACTIVE.value,
                        }
                    ),
                )
            except ConcurrencyError:
                self.release(ride)
                misses += 1
                continue
            except ClubRidesError:
                self.release(ride)
                raise
            promoted += 1
            logger.info("User %s promoted from waitlist on ride %s", candidate.user_id, ride.ride_id)
        return promoted
