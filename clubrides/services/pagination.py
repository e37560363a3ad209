from typing import Optional

from clubrides.config import Settings
from clubrides.errors import ValidationError


def resolve_page_limit(limit: Optional[int], settings: Settings) -> int:
    """None → 기본값, 범위 [1, max_page_limit] 밖이면 ValidationError."""
    if limit is None:
        return settings.default_page_limit
    if not 1 <= limit <= settings.max_page_limit:
        raise ValidationError(f"limit must be between 1 and {settings.max_page_limit}", fields=["limit"])
    return limit
