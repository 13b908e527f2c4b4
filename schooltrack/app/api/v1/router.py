"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from schooltrack.app.api.v1.endpoints import (
    auth, driver_vehicle, routes,
    driver_trip, attendance,
    stop_events, positions,
    notifications, conversations, admin_ops
)

router = APIRouter()

# Authentication
router.include_router(auth.router)

# Driver setup: vehicle registration and route catalogue
router.include_router(driver_vehicle.router)
router.include_router(routes.router)

# Trip lifecycle and attendance ledger
router.include_router(driver_trip.router)
router.include_router(attendance.router)

# Stop events and live positions
router.include_router(stop_events.router)
router.include_router(positions.router)

# Notifications, chat relay and SSE stream
router.include_router(notifications.router)
router.include_router(notifications.stream_router)
router.include_router(conversations.router)

# Maintenance
router.include_router(admin_ops.router)
