"""
Periodic maintenance.

Sweeps expired stop events and returns completed trips to idle once their
grace period is over. Started as a background task in the app lifespan.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from schooltrack.app.core.clock import Clock, utcnow
from schooltrack.app.core.config import settings
from schooltrack.app.db.session import AsyncSessionLocal
from schooltrack.app.services.stop_event_broker import StopEventBroker
from schooltrack.app.services.trip_controller import reset_due_trips

logger = logging.getLogger(__name__)


async def run_maintenance_once(session_factory: Callable = AsyncSessionLocal, clock: Clock = utcnow) -> dict:
    async with session_factory() as db:
        swept = await StopEventBroker(db, clock=clock).sweep_expired()
        reset = await reset_due_trips(db, clock())
    return {"stop_events_swept": swept, "trips_reset": reset}


async def maintenance_loop(
    interval_seconds: Optional[float] = None,
    session_factory: Callable = AsyncSessionLocal,
    clock: Clock = utcnow,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> None:
    interval = interval_seconds or settings.maintenance_interval_seconds
    logger.info("Maintenance loop started (every %ss)", interval)
    while True:
        try:
            await run_maintenance_once(session_factory, clock)
        except SQLAlchemyError as e:
            # Next pass retries; query-time filtering keeps reads correct meanwhile
            logger.error("Maintenance pass failed: %s", e)
        except Exception:
            logger.exception("Maintenance pass crashed")
        await sleep(interval)
