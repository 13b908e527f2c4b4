"""
Position Streamer.

Runs on the driver's device. Watches the positioning source while tracking is
on and hands every fix to a sink (the API client, or the position service when
running in-process).

Error handling:
    PERMISSION_DENIED            stop at once, no retries, `permission_denied` stays set
    TIMEOUT / POSITION_UNAVAILABLE
                                 cancel the watch, wait `retry_delay`, watch again;
                                 after `max_retries` consecutive failures stop with
                                 TrackingFailedError
A watch that cannot be registered again counts as a failed retry.
A successful fix resets the consecutive failure count.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from schooltrack.app.core.config import settings
from schooltrack.app.core.exceptions import (
    NotAuthenticatedError,
    PositioningUnavailableError,
    PositionPermissionDeniedError,
    TrackingDisabledError,
    TrackingFailedError,
)
from schooltrack.app.device.positioning import (
    PositionError,
    PositionErrorCode,
    PositionFix,
    PositionOptions,
    PositionSource,
)

logger = logging.getLogger(__name__)

Sink = Callable[[Dict[str, Any]], Awaitable[Any]]


@dataclass
class TrackedVehicle:
    id: int
    tracking_enabled: bool = True
    plate: Optional[str] = None


class PositionStreamer:

    def __init__(
        self,
        source: PositionSource,
        sink: Sink,
        vehicle: TrackedVehicle,
        is_authenticated: Callable[[], bool],
        options: Optional[PositionOptions] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_failure: Optional[Callable[[Exception], None]] = None,
        on_status_change: Optional[Callable[[bool], None]] = None,
    ):
        self.source = source
        self.sink = sink
        self.vehicle = vehicle
        self.is_authenticated = is_authenticated
        self.options = options or PositionOptions.from_settings()
        self.max_retries = settings.tracking_max_retries if max_retries is None else max_retries
        self.retry_delay = settings.tracking_retry_delay_seconds if retry_delay is None else retry_delay
        self.sleep = sleep
        self.on_failure = on_failure
        self.on_status_change = on_status_change

        self.is_tracking = False
        self.permission_denied = False
        self.retries = 0
        self.current_fix: Optional[PositionFix] = None
        self.failure: Optional[Exception] = None
        self.retry_task: Optional[asyncio.Task] = None
        self._handle: Any = None

    async def __aenter__(self) -> "PositionStreamer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def start(self) -> None:
        if self.is_tracking:
            return

        if not self.is_authenticated():
            raise NotAuthenticatedError()
        if not self.vehicle.tracking_enabled:
            raise TrackingDisabledError(self.vehicle.id)
        if not self.source.is_available():
            raise PositioningUnavailableError()

        self.retries = 0
        self.failure = None
        self._handle = await self.source.request_continuous_updates(self._on_sample, self._on_error, self.options)
        self._set_tracking(True)
        logger.info("Location tracking started for vehicle %s", self.vehicle.id)

    async def stop(self) -> None:
        was_tracking = self.is_tracking
        self._cancel_retry()
        self._cancel_watch()
        self.retries = 0
        if was_tracking:
            self._set_tracking(False)
            logger.info("Location tracking stopped for vehicle %s", self.vehicle.id)

    def _set_tracking(self, value: bool) -> None:
        self.is_tracking = value
        if self.on_status_change:
            self.on_status_change(value)

    def _cancel_watch(self) -> None:
        if self._handle is not None:
            self.source.cancel(self._handle)
            self._handle = None

    def _cancel_retry(self) -> None:
        task = self.retry_task
        self.retry_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _on_sample(self, fix: PositionFix) -> None:
        if not self.is_tracking:
            return
        self.current_fix = fix
        self.retries = 0

        payload = {
            "vehicle_id": self.vehicle.id,
            "latitude": fix.latitude,
            "longitude": fix.longitude,
            "speed": fix.speed or 0.0,
            "heading": fix.heading or 0.0,
            "accuracy_meters": fix.accuracy,
            "captured_at": fix.timestamp.isoformat(),
        }
        try:
            await self.sink(payload)
        except Exception as e:
            # One lost sample does not end the stream
            logger.error("Failed to send position for vehicle %s: %s", self.vehicle.id, e)
            self._report(e)

    async def _on_error(self, error: PositionError) -> None:
        if not self.is_tracking:
            return

        if error.code == PositionErrorCode.PERMISSION_DENIED:
            self.permission_denied = True
            logger.warning("Location permission denied on vehicle %s", self.vehicle.id)
            await self._fail(PositionPermissionDeniedError())
            return

        if self.retries >= self.max_retries:
            logger.warning("Location tracking for vehicle %s failed after %d retries: %s",
                           self.vehicle.id, self.retries, error.message)
            await self._fail(TrackingFailedError(self.retries, error.message))
            return

        self.retries += 1
        logger.info("Location error on vehicle %s (%s), retry %d/%d in %.1fs",
                    self.vehicle.id, error.message, self.retries, self.max_retries, self.retry_delay)
        self._cancel_watch()
        self._cancel_retry()
        self.retry_task = asyncio.create_task(self._retry())

    async def _retry(self) -> None:
        await self.sleep(self.retry_delay)
        if not self.is_tracking:
            return
        try:
            self._handle = await self.source.request_continuous_updates(self._on_sample, self._on_error, self.options)
        except Exception as e:
            if self.retries >= self.max_retries:
                logger.warning("Location tracking for vehicle %s failed after %d retries: %s",
                               self.vehicle.id, self.retries, e)
                await self._fail(TrackingFailedError(self.retries, str(e)))
                return
            self.retries += 1
            logger.exception("Could not watch location again on vehicle %s, retry %d/%d in %.1fs",
                             self.vehicle.id, self.retries, self.max_retries, self.retry_delay)
            self.retry_task = asyncio.create_task(self._retry())

    async def _fail(self, error: Exception) -> None:
        retries = self.retries
        await self.stop()
        self.retries = retries
        self.failure = error
        self._report(error)

    def _report(self, error: Exception) -> None:
        if self.on_failure:
            self.on_failure(error)
