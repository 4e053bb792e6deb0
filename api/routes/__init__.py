"""
API Routes Package

This package contains route handlers organized by feature:
- access.py: Lock activation, status and access history
- enrollment.py: WebSocket endpoint for user enrollment
- management.py: REST endpoints for enrolled users
"""

from api.routes.access import router as access_router
from api.routes.enrollment import router as enrollment_router
from api.routes.management import router as management_router

__all__ = [
    "access_router",
    "enrollment_router",
    "management_router",
]
