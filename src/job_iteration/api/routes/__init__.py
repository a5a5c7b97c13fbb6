"""Route modules public API."""

from job_iteration.api.routes.health import router as health_router
from job_iteration.api.routes.management import router as management_router

__all__ = ["health_router", "management_router"]
