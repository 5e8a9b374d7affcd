"""
Route modules for the O2 trading agent API.

This package organizes API endpoints into logical groups:
- auth: Auth flow context and transitions
- engine: Trading engine, strategy configs, markets and trade history
"""

from .auth import router as auth_router
from .engine import router as engine_router

__all__ = [
    "auth_router",
    "engine_router",
]
