# 신원 확인 계층이 넘겨준 행위자 (코어는 그대로 사용, 저장하지 않음)

from typing import Optional

from pydantic import BaseModel, ConfigDict


class Actor(BaseModel):
    """{user_id, email, role_hint}. role_hint는 참고용이며 권한 판단에는 쓰지 않음."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: Optional[str] = None
    role_hint: Optional[str] = None
