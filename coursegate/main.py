from contextlib import asynccontextmanager

from fastapi import FastAPI
import structlog
import uvicorn

from coursegate.api.dependencies.sessions import build_session_manager
from coursegate.api.v1.sessions import router as sessions_router
from coursegate.core.settings import settings
from coursegate.db import model_registry as _model_registry  # noqa: F401
from coursegate.db.session import SessionLocal, engine
from coursegate.logging import setup_logging


logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_debug)
    manager = build_session_manager(SessionLocal, settings)
    app.state.session_manager = manager
    logger.info("app_started", env=settings.app_env, identity_provider=settings.identity_provider)
    try:
        yield
    finally:
        await manager.wait_for_background_tasks()
        await engine.dispose()
        logger.info("app_stopped")


app = FastAPI(title="Coursegate Session API", lifespan=lifespan)
app.include_router(sessions_router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run("coursegate.main:app", host=settings.app_host, port=settings.app_port, reload=True)
