# 신원 확인 계층이 넣어 준 헤더 → Actor (토큰 검증은 게이트웨이 담당, 여기서는 신뢰)

from typing import Optional

from fastapi import Header

from clubrides.errors import AuthenticationError
from clubrides.schemas.actor import Actor


def get_actor(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    x_user_email: Optional[str] = Header(default=None, alias="X-User-Email"),
    x_role_hint: Optional[str] = Header(default=None, alias="X-Role-Hint"),
) -> Actor:
    """X-User-Id가 없거나 비어 있으면 401."""
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise AuthenticationError("Missing X-User-Id header")
    return Actor(user_id=user_id, email=x_user_email or None, role_hint=x_role_hint or None)
