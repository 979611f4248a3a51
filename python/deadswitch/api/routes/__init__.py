"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
This allows tests to import modules without requiring all environment
variables to be configured upfront.
"""

from fastapi import APIRouter

from deadswitch.api.routes.admin import router as admin_router
from deadswitch.api.routes.check_in import router as check_in_router
from deadswitch.api.routes.cron import router as cron_router
from deadswitch.api.routes.health import router as health_router
from deadswitch.api.routes.server_share import router as server_share_router


def create_api_router() -> APIRouter:
    """Create and configure the API router.

    Returns:
        Configured APIRouter with all routes registered.
    """
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(check_in_router, tags=["check-in"])
    api_router.include_router(server_share_router, tags=["secrets"])
    api_router.include_router(cron_router, tags=["cron"])
    api_router.include_router(admin_router, tags=["admin"])
    return api_router


__all__ = ["create_api_router"]
