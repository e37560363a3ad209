# Ride 모델: 클럽 라이드 엔티티

from enum import Enum as PyEnum

from sqlalchemy import JSON, Boolean, CheckConstraint, Column, DateTime, Index, Integer, String, Text

from clubrides.models.base import Base, utcnow


class RideStatus(str, PyEnum):
    """라이드 상태. DRAFT → PUBLISHED → COMPLETED, CANCELLED/COMPLETED는 종료 상태."""

    DRAFT = "draft"
    PUBLISHED = "published"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class RideType(str, PyEnum):
    TRAINING = "training"
    SOCIAL = "social"
    COMPETITIVE = "competitive"
    ADVENTURE = "adventure"
    MAINTENANCE = "maintenance"


class RideDifficulty(str, PyEnum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


class Ride(Base):
    """
    라이드 테이블. (club_id, ride_id) 키, ride_id 단독 유니크 인덱스로 단건 조회.

    current_participants는 좌석을 차지한 활성 참여(participant/leader) 수.
    캡틴과 대기자는 포함하지 않으며, 변경은 저장소의 조건부 증감으로만 한다.
    """

    __tablename__ = "rides"

    club_id = Column(String(64), primary_key=True)
    ride_id = Column(String(64), primary_key=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    ride_type = Column(String(20), nullable=False)
    difficulty = Column(String(20), nullable=False)
    start_date_time = Column(DateTime(timezone=True), nullable=False)
    estimated_duration = Column(Integer, nullable=False)  # 분 단위
    meeting_point = Column(JSON, nullable=False)  # {name, address, instructions?}
    route = Column(JSON, nullable=True)  # 불투명 값으로 저장 (경로 검증/렌더링은 범위 밖)
    max_participants = Column(Integer, nullable=True)  # None이면 정원 무제한
    allow_waitlist = Column(Boolean, nullable=False, default=True)
    status = Column(String(20), nullable=False, default=RideStatus.DRAFT.value)
    current_participants = Column(Integer, nullable=False, default=0)
    created_by = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    published_by = Column(String(64), nullable=True)
    published_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by = Column(String(64), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    completed_by = Column(String(64), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ux_rides_ride_id", "ride_id", unique=True),
        Index("ix_rides_club_start", "club_id", "start_date_time", "ride_id"),
        CheckConstraint("current_participants >= 0", name="ck_rides_current_participants_non_negative"),
    )
