# ClubMembership 모델: 클럽 내 역할/상태 (쓰기는 외부 컴포넌트 소유, 코어는 읽기만)

from enum import Enum as PyEnum

from sqlalchemy import Column, DateTime, Index, String

from clubrides.models.base import Base, utcnow


class ClubRole(str, PyEnum):
    """클럽 역할. 아래로 갈수록 상위 역할 (owner ⊇ admin ⊇ ride_captain ⊇ ride_leader ⊇ member)."""

    MEMBER = "member"
    RIDE_LEADER = "ride_leader"
    RIDE_CAPTAIN = "ride_captain"
    ADMIN = "admin"
    OWNER = "owner"


class MembershipStatus(str, PyEnum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class ClubMembership(Base):
    """멤버십 테이블. (user_id, club_id) 키, 역방향 인덱스 (club_id, user_id)."""

    __tablename__ = "club_memberships"

    user_id = Column(String(64), primary_key=True)
    club_id = Column(String(64), primary_key=True)
    role = Column(String(20), nullable=False, default=ClubRole.MEMBER.value)
    status = Column(String(20), nullable=False, default=MembershipStatus.PENDING.value)
    joined_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (Index("ix_club_memberships_club_user", "club_id", "user_id"),)
