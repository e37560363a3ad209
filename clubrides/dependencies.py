# 요청마다 서비스 조립 (저장소 어댑터 하나를 공유, 요청 간 상태 없음)

from fastapi import Depends

from clubrides.config import Settings
from clubrides.database import get_store, settings as app_settings
from clubrides.services.authorization import AuthorizationEngine
from clubrides.services.membership_directory import MembershipDirectory
from clubrides.services.participation import ParticipationCoordinator
from clubrides.services.ride_lifecycle import RideLifecycleManager
from clubrides.store.partitioned import PartitionedStore


def get_settings() -> Settings:
    return app_settings


def get_authorization(store: PartitionedStore = Depends(get_store)) -> AuthorizationEngine:
    return AuthorizationEngine(MembershipDirectory(store))


def get_lifecycle(
    store: PartitionedStore = Depends(get_store),
    authorization: AuthorizationEngine = Depends(get_authorization),
    settings: Settings = Depends(get_settings),
) -> RideLifecycleManager:
    return RideLifecycleManager(store, authorization, settings)


def get_participation(
    store: PartitionedStore = Depends(get_store),
    authorization: AuthorizationEngine = Depends(get_authorization),
    settings: Settings = Depends(get_settings),
) -> ParticipationCoordinator:
    return ParticipationCoordinator(store, authorization, settings)
