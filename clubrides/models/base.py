from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    모든 SQLAlchemy 모델이 상속할 기본 Base 클래스

    저장소 어댑터는 각 모델을 (파티션 키, 정렬 키) 복합 기본키를 가진 아이템 테이블로 다룬다.
    """

    pass


def utcnow() -> datetime:
    """타임존 포함 현재 UTC 시각. 모든 시각 컬럼은 UTC로 저장."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """naive datetime(SQLite 반환값 등)은 UTC로 간주하고, aware는 UTC로 변환."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
