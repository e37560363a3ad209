# Participation 모델: 라이드 참여 (탈퇴 시 삭제하지 않고 status=left로 남김)

from enum import Enum as PyEnum

from sqlalchemy import Column, DateTime, Index, String

from clubrides.models.base import Base, utcnow


class ParticipationRole(str, PyEnum):
    CAPTAIN = "captain"
    LEADER = "leader"
    PARTICIPANT = "participant"
    WAITLISTED = "waitlisted"


class ParticipationStatus(str, PyEnum):
    ACTIVE = "active"
    LEFT = "left"


# 정원(current_participants)에 포함되는 역할
SEATED_ROLES = (ParticipationRole.PARTICIPANT.value, ParticipationRole.LEADER.value)


class Participation(Base):
    """
    참여 테이블. (ride_id, user_id) 키라서 같은 사용자의 활성 참여는 최대 1개.

    club_id, ride_start_date_time은 라이드에서 복사해 둔 값 → "내 라이드" 역방향 인덱스를
    조인 없이 (시작 시각, ride_id) 순으로 정렬하기 위함.
    """

    __tablename__ = "participations"

    ride_id = Column(String(64), primary_key=True)
    user_id = Column(String(64), primary_key=True)
    club_id = Column(String(64), nullable=False)
    role = Column(String(20), nullable=False, default=ParticipationRole.PARTICIPANT.value)
    status = Column(String(20), nullable=False, default=ParticipationStatus.ACTIVE.value)
    joined_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    left_at = Column(DateTime(timezone=True), nullable=True)
    ride_start_date_time = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_participations_user_start", "user_id", "ride_start_date_time", "ride_id"),
        Index("ix_participations_ride_role_joined", "ride_id", "role", "joined_at"),
    )
