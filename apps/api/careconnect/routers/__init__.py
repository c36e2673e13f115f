"""API routers."""

from careconnect.routers.connections import router as connections_router

__all__ = [
    "connections_router",
]
