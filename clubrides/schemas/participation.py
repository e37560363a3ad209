# 참여/탈퇴/내 라이드 응답 스키마

from typing import List, Literal, Optional

from pydantic import ConfigDict

from clubrides.models.participation import ParticipationRole, ParticipationStatus
from clubrides.schemas.ride import CamelModel, PaginationOut, RideOut, UtcDatetime


class ParticipationOut(CamelModel):
    """참여 응답."""

    model_config = ConfigDict(from_attributes=True)

    ride_id: str
    user_id: str
    club_id: str
    role: ParticipationRole
    status: ParticipationStatus
    joined_at: UtcDatetime
    left_at: Optional[UtcDatetime] = None


class JoinOut(CamelModel):
    """참여 결과. 좌석을 얻었으면 active, 대기열이면 waitlisted."""

    status: Literal["active", "waitlisted"]
    participation: ParticipationOut


class UserRideOut(CamelModel):
    ride: RideOut
    participation: ParticipationOut


class UserRidePageOut(CamelModel):
    data: List[UserRideOut]
    pagination: PaginationOut


class ParticipantRoleUpdate(CamelModel):
    role: ParticipationRole
