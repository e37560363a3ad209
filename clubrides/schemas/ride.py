# 라이드 API 요청/응답 스키마

from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from clubrides.models.base import as_utc, utcnow
from clubrides.models.ride import RideDifficulty, RideStatus, RideType

# 응답 시각은 항상 UTC aware (SQLite는 naive로 돌려줌)
UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


def _future_start(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return value
    value = as_utc(value)
    if value <= utcnow():
        raise ValueError("start date must be in the future")
    return value


class CamelModel(BaseModel):
    """요청/응답 JSON은 camelCase, 파이썬 쪽은 snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


class MeetingPoint(CamelModel):
    """집결 장소."""

    name: str = Field(..., min_length=1, max_length=200)
    address: str = Field(..., min_length=1, max_length=300)
    instructions: Optional[str] = None


class RideCreate(CamelModel):
    """
    라이드 생성 요청.

    - publish_immediately: PUBLISH_RIDE_IMMEDIATELY 권한이 없으면 무시되고 draft로 생성
    - allow_waitlist: 정원이 찼을 때 대기자로 받을지 여부 (기본 True)
    """

    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    ride_type: RideType
    difficulty: RideDifficulty
    start_date_time: datetime
    estimated_duration: int = Field(..., gt=0)  # 분 단위
    meeting_point: MeetingPoint
    route: Optional[Dict[str, Any]] = None
    max_participants: Optional[int] = Field(default=None, ge=1)
    allow_waitlist: bool = True
    publish_immediately: bool = False

    @field_validator("start_date_time")
    @classmethod
    def _start_in_future(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _future_start(value)


class RideUpdate(CamelModel):
    """
    라이드 수정 요청. 보낸 필드만 변경 (model_fields_set 기준).

    null은 maxParticipants(정원 해제)와 route에서만 의미가 있고, 나머지 필드에서는 검증 오류.
    """

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, min_length=1)
    ride_type: Optional[RideType] = None
    difficulty: Optional[RideDifficulty] = None
    start_date_time: Optional[datetime] = None
    estimated_duration: Optional[int] = Field(default=None, gt=0)
    meeting_point: Optional[MeetingPoint] = None
    route: Optional[Dict[str, Any]] = None
    max_participants: Optional[int] = Field(default=None, ge=1)
    allow_waitlist: Optional[bool] = None

    # 기본값(None)은 검증하지 않으므로 명시적으로 null을 보낸 경우에만 걸림
    @field_validator(
        "title", "description", "ride_type", "difficulty", "start_date_time",
        "estimated_duration", "meeting_point", "allow_waitlist",
    )
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("must not be null")
        return value

    @field_validator("start_date_time")
    @classmethod
    def _start_in_future(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _future_start(value)


class RideCancel(CamelModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class RideOut(CamelModel):
    """라이드 응답."""

    model_config = ConfigDict(from_attributes=True)

    ride_id: str
    club_id: str
    title: str
    description: str
    ride_type: RideType
    difficulty: RideDifficulty
    status: RideStatus
    start_date_time: UtcDatetime
    estimated_duration: int
    meeting_point: MeetingPoint
    route: Optional[Dict[str, Any]] = None
    max_participants: Optional[int] = None
    allow_waitlist: bool
    current_participants: int
    created_by: str
    created_at: UtcDatetime
    updated_at: UtcDatetime
    published_by: Optional[str] = None
    published_at: Optional[UtcDatetime] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[UtcDatetime] = None
    cancellation_reason: Optional[str] = None
    completed_by: Optional[str] = None
    completed_at: Optional[UtcDatetime] = None


class PaginationOut(CamelModel):
    limit: int
    next_cursor: Optional[str] = None


class RidePageOut(CamelModel):
    data: List[RideOut]
    pagination: PaginationOut
