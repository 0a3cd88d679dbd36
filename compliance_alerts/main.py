from contextlib import asynccontextmanager

from fastapi import FastAPI

from compliance_alerts.config import Settings, get_settings
from compliance_alerts.core.logging import setup_logging
from compliance_alerts.routers import (
    alerts_router,
    deadlines_router,
    health_router,
    notifications_router,
    preferences_router,
    webhooks_router,
)
from compliance_alerts.scheduler import ensure_scheduler_schema

setup_logging()
settings: Settings = get_settings()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    ensure_scheduler_schema()
    yield


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

app.include_router(health_router)
app.include_router(deadlines_router)
app.include_router(alerts_router)
app.include_router(preferences_router)
app.include_router(notifications_router)
app.include_router(webhooks_router)


__all__ = ["app"]
