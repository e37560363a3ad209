from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from clubrides.config import load_settings
from clubrides.store.partitioned import PartitionedStore

settings = load_settings()


def build_engine(database_url: str, timeout_ms: int) -> Engine:
    """
    SQLAlchemy 엔진 생성. 스토어 호출별 시간 예산을 드라이버 타임아웃으로 적용

    - PostgreSQL: statement_timeout / lock_timeout (초과 시 OperationalError → InternalError)
    - SQLite: busy timeout (테스트에서 여러 스레드가 같은 파일 DB를 사용)
    """
    connect_args: Dict[str, Any] = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": timeout_ms / 1000.0}
    elif database_url.startswith("postgresql"):
        connect_args = {"options": f"-c statement_timeout={timeout_ms} -c lock_timeout={timeout_ms}"}
    return create_engine(database_url, echo=False, future=True, connect_args=connect_args)


def make_session_factory(bind: Engine) -> sessionmaker:
    """
    세션 팩토리 생성

    - expire_on_commit=False: 저장소 호출이 끝난 뒤(세션 종료 후)에도 반환된 아이템 속성 접근 가능
    """
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=bind,
    )


engine: Engine = build_engine(settings.database_url, settings.store_call_timeout_ms)

SessionLocal = make_session_factory(engine)


def get_store() -> PartitionedStore:
    """
    FastAPI 의존성 주입에서 사용할 저장소 어댑터

    요청 간 공유 상태 없음: 어댑터는 세션 팩토리만 들고 호출마다 짧은 트랜잭션을 연다.
    """
    return PartitionedStore(SessionLocal)
