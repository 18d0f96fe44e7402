"""API routers for the PCN tracker."""
from fastapi import APIRouter

from . import appointments, companies, health, jobs, webhooks


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(webhooks.router)
    api_router.include_router(appointments.router)
    api_router.include_router(companies.router)
    api_router.include_router(jobs.router)
    return api_router
