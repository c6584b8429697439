"""API endpoints package for captiongate."""

from captiongate.app.api.admin import router as admin_router
from captiongate.app.api.events import router as events_router
from captiongate.app.api.feedback import router as feedback_router
from captiongate.app.api.generate import router as generate_router
from captiongate.app.api.health import router as health_router
from captiongate.app.api.quota import router as quota_router

__all__ = [
    "admin_router",
    "events_router",
    "feedback_router",
    "generate_router",
    "health_router",
    "quota_router",
]
