from compliance_alerts.routers.alerts import router as alerts_router
from compliance_alerts.routers.deadlines import router as deadlines_router
from compliance_alerts.routers.health import router as health_router
from compliance_alerts.routers.notifications import router as notifications_router
from compliance_alerts.routers.preferences import router as preferences_router
from compliance_alerts.routers.webhooks import router as webhooks_router

__all__ = [
    "alerts_router",
    "deadlines_router",
    "health_router",
    "notifications_router",
    "preferences_router",
    "webhooks_router",
]
