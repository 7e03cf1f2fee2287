import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings, get_settings
from .db.monitoring import get_pool_snapshot
from .db.session import check_connection, dispose_engine, get_engine
from .logging_config import configure_logging
from .schedule_routes import router as schedule_router
from .services import build_services

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    app.state.services = build_services(settings)
    try:
        yield
    finally:
        await app.state.services.store.wait_idle()
        if settings.persistence_mode == "database":
            dispose_engine()
        logger.info("Study planner backend stopped")


app = FastAPI(title="Study Planner Backend", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(schedule_router)


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    return {"status": "ok", "persistence": settings.persistence_mode}


@app.get("/healthz/database")
def database_health(request: Request, settings: Settings = Depends(get_settings)) -> Dict[str, object]:
    if settings.persistence_mode != "database":
        return {"status": "skipped", "persistence": settings.persistence_mode}
    try:
        check_connection()
    except (SQLAlchemyError, RuntimeError) as exc:
        logger.warning("Database health check failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Database unavailable: {exc}",
        ) from exc
    return {
        "status": "ok",
        "pool": get_pool_snapshot(get_engine()),
        "cache": request.app.state.services.store.status(),
    }


def run() -> None:
    host = os.getenv("STUDY_PLANNER_HOST", "0.0.0.0")
    port = int(os.getenv("STUDY_PLANNER_PORT", "8000"))
    logger.info("Starting study planner API on %s:%s", host, port)

    import uvicorn

    uvicorn.run(app, host=host, port=port, log_level="info", timeout_graceful_shutdown=30)
