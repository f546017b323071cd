import logging
from typing import Any, Dict

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from . import telemetry_pipeline  # noqa: F401  registers the audit listener
from .admin_routes import router as admin_router
from .config import Settings, get_settings
from .db.monitoring import get_pool_snapshot, instrument_engine
from .db.session import get_engine
from .level_routes import router as level_router
from .logging_config import configure_logging
from .task_routes import router as task_router
from .team_routes import router as team_router


configure_logging()
logger = logging.getLogger(__name__)
app = FastAPI(title="Questline Backend", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(level_router)
app.include_router(task_router)
app.include_router(team_router)
app.include_router(admin_router)


def _persistence_mode(database_url: str | None) -> str:
    if not database_url:
        return "unconfigured"
    return database_url.split(":", 1)[0]


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    return {"status": "ok", "persistence_mode": _persistence_mode(settings.database_url)}


@app.get("/healthz/database")
def database_health(settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    try:
        engine = get_engine()
        instrument_engine(engine)
        with engine.connect() as connection:
            connection.exec_driver_sql("SELECT 1")
    except Exception as exc:  # noqa: BLE001
        logger.warning("Database health check failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {
        "status": "ok",
        "pool": get_pool_snapshot(engine),
        "persistence_mode": _persistence_mode(settings.database_url),
    }
