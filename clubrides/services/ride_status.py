# 라이드 상태 머신. draft → published → completed, draft/published → cancelled.
# cancelled, completed는 종료 상태 (더 이상 전이 없음)

from typing import Dict, FrozenSet

from clubrides.errors import ConflictError
from clubrides.models.ride import RideStatus

_NEXT: Dict[str, FrozenSet[str]] = {
    RideStatus.DRAFT.value: frozenset({RideStatus.PUBLISHED.value, RideStatus.CANCELLED.value}),
    RideStatus.PUBLISHED.value: frozenset({RideStatus.CANCELLED.value, RideStatus.COMPLETED.value}),
    RideStatus.CANCELLED.value: frozenset(),
    RideStatus.COMPLETED.value: frozenset(),
}

# 내용 수정(update_ride)이 허용되는 상태
EDITABLE_STATUSES = (RideStatus.DRAFT.value, RideStatus.PUBLISHED.value)


def ensure_transition(current: str, target: str) -> None:
    """current → target이 허용되지 않으면 ConflictError (409)."""
    if target in _NEXT.get(current, frozenset()):
        return
    if current == target:
        raise ConflictError(f"Ride is already {current}")
    if not _NEXT.get(current):
        raise ConflictError(f"Ride is {current} and can no longer change status")
    raise ConflictError(f"A {current} ride cannot become {target}")


def ensure_editable(current: str) -> None:
    if current not in EDITABLE_STATUSES:
        raise ConflictError(f"A {current} ride can no longer be edited")
