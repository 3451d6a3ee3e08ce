"""API routers."""

from opshub.routers.internal import router as internal_router

__all__ = [
    "internal_router",
]
