"""Top-level API router composition."""

from fastapi import APIRouter

from job_iteration.api.routes import health_router, management_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(management_router)

__all__ = ["api_router"]
