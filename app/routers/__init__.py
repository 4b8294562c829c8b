"""API routers."""

from app.routers.appointments import router as appointments_router
from app.routers.follow_ups import router as follow_ups_router
from app.routers.internal import router as internal_router

__all__ = [
    "appointments_router",
    "follow_ups_router",
    "internal_router",
]
