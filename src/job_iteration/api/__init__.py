"""HTTP API."""

from job_iteration.api.router import api_router

__all__ = ["api_router"]
