# booking_agent/main.py
import os
import logging

from fastapi import FastAPI

from .config import settings
from .database import init_db
from .jobs.scheduler import start_scheduler

# Routers
from .routers.webhooks import router as webhooks_router
from .routers.admin import router as admin_router

# ──────────────────────────────────────────────────────────────────────────────
# LOGGING
# Controla niveles con variables de entorno:
#   LOG_LEVEL, AGENT_LOG_LEVEL, SQLA_LOG_LEVEL, UVICORN_LOG_LEVEL
# ──────────────────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

logging.getLogger("booking_agent.agent").setLevel(
    getattr(logging, os.getenv("AGENT_LOG_LEVEL", "DEBUG"), logging.DEBUG)
)
logging.getLogger("sqlalchemy.engine").setLevel(
    getattr(logging, os.getenv("SQLA_LOG_LEVEL", "WARNING"), logging.WARNING)
)
logging.getLogger("uvicorn.error").setLevel(
    getattr(logging, os.getenv("UVICORN_LOG_LEVEL", "INFO"), logging.INFO)
)

logger = logging.getLogger(__name__)

# ──────────────────────────────────────────────────────────────────────────────
# FastAPI App
# ──────────────────────────────────────────────────────────────────────────────
app = FastAPI(title=settings.APP_NAME)

app.include_router(webhooks_router)
app.include_router(admin_router, prefix="/admin")  # admin.py NO repite /admin

_scheduler = None


# ──────────────────────────────────────────────────────────────────────────────
# Ciclo de vida
# ──────────────────────────────────────────────────────────────────────────────
@app.on_event("startup")
def on_startup():
    global _scheduler
    init_db()
    _scheduler = start_scheduler()
    logger.info("Startup completo: %s (%s) tz=%s", settings.APP_NAME, settings.ENV, settings.TIMEZONE)


@app.on_event("shutdown")
def on_shutdown():
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)


@app.get("/")
def root():
    return {"ok": True, "app": settings.APP_NAME, "env": settings.ENV}
