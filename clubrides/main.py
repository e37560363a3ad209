import logging
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clubrides.database import settings
from clubrides.errors import ClubRidesError, InternalError, ValidationError
from clubrides.logging_config import setup_logging
from clubrides.routers.participation import router as participation_router
from clubrides.routers.rides import router as rides_router

setup_logging(settings.log_level)
logger = logging.getLogger(__name__)


def _run_alembic_upgrade() -> None:
    """앱 기동 시 DB 마이그레이션 자동 적용 (club_memberships, rides, participations)."""
    from alembic import command
    from alembic.config import Config

    root = Path(__file__).resolve().parent.parent
    cfg = Config(str(root / "alembic.ini"))
    command.upgrade(cfg, "head")


# 애플리케이션 팩토리 패턴을 사용할 수도 있지만
# 요청 간 상태가 없으므로 단순한 전역 인스턴스로 구성
app = FastAPI(
    title="Club Rides API",
    description="클럽 라이드 생성/상태 관리와 참여/대기열 조정 API",
    version="0.1.0",
)


@app.on_event("startup")
def _startup_migrate() -> None:
    """기동 시 Alembic upgrade head 실행 (RUN_MIGRATIONS_ON_STARTUP=false면 생략)."""
    if not settings.run_migrations_on_startup:
        return
    try:
        _run_alembic_upgrade()
    except Exception:
        # DB 미기동 등 실패 시에도 앱은 기동 (요청 시점에 저장소 오류로 500)
        logger.warning("Alembic upgrade on startup failed", exc_info=True)


@app.exception_handler(ClubRidesError)
async def _domain_error_handler(request: Request, exc: ClubRidesError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """경로/쿼리/본문 형식 오류도 도메인 ValidationError 형태(400)로."""
    fields = []
    for item in exc.errors():
        loc = [str(part) for part in item.get("loc", ()) if part not in ("body", "query", "path", "header")]
        fields.append(".".join(loc) or "body")
    error = ValidationError(fields=fields)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(Exception)
async def _unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error = InternalError()
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


app.include_router(rides_router)
app.include_router(participation_router)

# CORS 설정
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["Health"])
async def health_check() -> dict:
    return {"status": "ok"}


@app.get("/", tags=["Root"])
async def root() -> dict:
    return {
        "message": "Club Rides API",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("clubrides.main:app", host="0.0.0.0", port=8000, reload=True)
