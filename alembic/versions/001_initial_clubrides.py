"""club_memberships, rides, participations 테이블 생성

Revision ID: 001
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "club_memberships",
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("club_id", sa.String(length=64), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id", "club_id"),
    )
    op.create_index("ix_club_memberships_club_user", "club_memberships", ["club_id", "user_id"], unique=False)

    op.create_table(
        "rides",
        sa.Column("club_id", sa.String(length=64), nullable=False),
        sa.Column("ride_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("ride_type", sa.String(length=20), nullable=False),
        sa.Column("difficulty", sa.String(length=20), nullable=False),
        sa.Column("start_date_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("estimated_duration", sa.Integer(), nullable=False),
        sa.Column("meeting_point", sa.JSON(), nullable=False),
        sa.Column("route", sa.JSON(), nullable=True),
        sa.Column("max_participants", sa.Integer(), nullable=True),
        sa.Column("allow_waitlist", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("current_participants", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_by", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("published_by", sa.String(length=64), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(length=64), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("completed_by", sa.String(length=64), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("club_id", "ride_id"),
        # 정원 검사는 조건부 증가가 담당, 이 제약은 음수 방지만
        sa.CheckConstraint("current_participants >= 0", name="ck_rides_current_participants_non_negative"),
    )
    op.create_index("ux_rides_ride_id", "rides", ["ride_id"], unique=True)
    op.create_index("ix_rides_club_start", "rides", ["club_id", "start_date_time", "ride_id"], unique=False)

    op.create_table(
        "participations",
        sa.Column("ride_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("club_id", sa.String(length=64), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("left_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ride_start_date_time", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("ride_id", "user_id"),
    )
    op.create_index(
        "ix_participations_user_start", "participations", ["user_id", "ride_start_date_time", "ride_id"], unique=False
    )
    op.create_index(
        "ix_participations_ride_role_joined", "participations", ["ride_id", "role", "joined_at"], unique=False
    )


def downgrade() -> None:
    op.drop_index("ix_participations_ride_role_joined", table_name="participations")
    op.drop_index("ix_participations_user_start", table_name="participations")
    op.drop_table("participations")
    op.drop_index("ix_rides_club_start", table_name="rides")
    op.drop_index("ux_rides_ride_id", table_name="rides")
    op.drop_table("rides")
    op.drop_index("ix_club_memberships_club_user", table_name="club_memberships")
    op.drop_table("club_memberships")
