"""
Route modules for the devlink companion server.
"""

from .companion_ws import router as companion_router, init_companion_routes

__all__ = [
    "companion_router",
    "init_companion_routes",
]
