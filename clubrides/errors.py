# 도메인 오류 체계: 라우터가 status_code/error_type 그대로 HTTP 응답으로 변환

from typing import Any, Dict, Iterable, List, Optional


class ClubRidesError(Exception):
    """모든 도메인 오류의 기반 클래스. 저장소 세부 정보는 message에 넣지 않음."""

    status_code = 500
    error_type = "INTERNAL_ERROR"
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"errorType": self.error_type, "message": self.message}


class ValidationError(ClubRidesError):
    """요청 값 오류 (400). fields에 실패한 필드를 모두 담는다."""

    status_code = 400
    error_type = "VALIDATION_ERROR"
    default_message = "Request validation failed"

    def __init__(self, message: Optional[str] = None, fields: Iterable[str] = ()):
        self.fields: List[str] = list(dict.fromkeys(fields))
        if message is None and self.fields:
            message = "Invalid or missing fields: " + ", ".join(self.fields)
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["fields"] = self.fields
        return body


class AuthenticationError(ClubRidesError):
    """신원 정보 없음/만료 (401)."""

    status_code = 401
    error_type = "UNAUTHORIZED"
    default_message = "Authentication required"


class AuthorizationError(ClubRidesError):
    """권한 없음 또는 비활성 멤버십 (403)."""

    status_code = 403
    error_type = "FORBIDDEN"
    default_message = "Insufficient privileges"


class NotFoundError(ClubRidesError):
    """라이드/참여/멤버십 없음 (404)."""

    status_code = 404
    error_type = "NOT_FOUND"
    default_message = "Resource not found"


class ConflictError(ClubRidesError):
    """중복 참여, 정원 초과, 허용되지 않는 상태 전이 (409)."""

    status_code = 409
    error_type = "CONFLICT"
    default_message = "Resource conflict"


class ConcurrencyError(ClubRidesError):
    """조건부 쓰기 경합에서 졌거나 재시도 한도를 소진함 (409)."""

    status_code = 409
    error_type = "CONCURRENCY_CONFLICT"
    default_message = "The resource was modified concurrently, please retry"


class InternalError(ClubRidesError):
    """저장소 장애, 보상 트랜잭션 실패 (500)."""

    status_code = 500
    error_type = "INTERNAL_ERROR"
