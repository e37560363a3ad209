# 멤버십 조회 (읽기 전용). 역할/상태는 호출 사이에 바뀔 수 있으므로 캐시하지 않음

from typing import List, Optional

from clubrides.models.membership import ClubMembership
from clubrides.store.partitioned import PartitionedStore


class MembershipDirectory:
    """멤버십 읽기 인터페이스. 승인/변경은 외부 컴포넌트 담당."""

    def __init__(self, store: PartitionedStore) -> None:
        self._store = store

    def get_membership(self, user_id: str, club_id: str) -> Optional[ClubMembership]:
        return self._store.get(ClubMembership, {"user_id": user_id, "club_id": club_id})

    def list_club_members(self, club_id: str, status: Optional[str] = None) -> List[ClubMembership]:
        """역방향 인덱스 (club_id, user_id)로 클럽 멤버 전체 조회."""
        filters = {"status": status} if status else None
        page = self._store.query(
            ClubMembership,
            {"club_id": club_id},
            sort_keys=("user_id",),
            descending=False,
            filters=filters,
        )
        return page.items
