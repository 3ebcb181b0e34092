"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from app.api.routes import book, booking_targets, bookings, webhooks

api_router = APIRouter(prefix="/api")
api_router.include_router(book.router)
api_router.include_router(bookings.router)
api_router.include_router(booking_targets.router)
api_router.include_router(webhooks.router)
