"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from seathold.api.routes import shows, reservations, admin

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(shows.router)
api_router.include_router(reservations.router)
api_router.include_router(admin.router)
