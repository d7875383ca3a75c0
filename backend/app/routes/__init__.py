"""API route registration."""

from fastapi import APIRouter
from .imports import router as imports_router
from .submissions import router as submissions_router


def register_all_routes(api_router: APIRouter):
    """Include all route modules on the main API router."""
    api_router.include_router(imports_router)
    api_router.include_router(submissions_router)
