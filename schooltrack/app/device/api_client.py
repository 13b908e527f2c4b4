"""
Async HTTP client for the SchoolTrack API, used on driver and passenger devices.

Every call has a timeout. Connection errors, timeouts and 5xx responses are
raised as TransientIOError and retried a bounded number of times with a fixed
delay; any other error response is mapped back to the exception class the
server raised.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from schooltrack.app.core.config import settings
from schooltrack.app.core.exceptions import (
    AppException,
    AuthenticationError,
    InsufficientPermissionsError,
    InvalidStateTransitionError,
    NotAuthenticatedError,
    PreconditionFailedError,
    ResourceNotFoundError,
    TrackingDisabledError,
    TransientIOError,
)
from schooltrack.app.core.reliability import retry_transient
from schooltrack.app.device.position_streamer import PositionStreamer, TrackedVehicle
from schooltrack.app.device.positioning import PositionOptions, PositionSource

logger = logging.getLogger(__name__)


def error_from_response(response: httpx.Response) -> AppException:
    """Rebuild the typed exception from the server's error body."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    error_code = body.get("error_code", "ERR_UNKNOWN")
    message = body.get("message") or response.reason_phrase
    details = body.get("details") or {}

    if error_code == "ERR_STATE_001":
        return InvalidStateTransitionError(message, current_state=details.get("current_state"), details=details)
    if error_code == "ERR_TRACK_DISABLED":
        return TrackingDisabledError(details.get("vehicle_id"))
    if error_code == "ERR_PRECONDITION_001":
        return PreconditionFailedError(message, remediation=details.get("remediation"), details=details)
    if error_code == "ERR_NOT_FOUND_001":
        return ResourceNotFoundError(details.get("resource", "Resource"), details.get("id"))
    if response.status_code == 401:
        return AuthenticationError(message)
    if response.status_code == 403:
        return InsufficientPermissionsError(message, details=details)
    return AppException(message=message, error_code=error_code, status_code=response.status_code, details=details)


class SchoolTrackClient:

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token
        self.max_retries = settings.device_api_max_retries if max_retries is None else max_retries
        self.retry_delay = settings.device_api_retry_delay_seconds if retry_delay is None else retry_delay
        self.sleep = sleep
        self._http = httpx.AsyncClient(
            base_url=base_url or settings.device_api_base_url,
            timeout=httpx.Timeout(timeout or settings.device_api_timeout_seconds),
            transport=transport,
        )

    async def __aenter__(self) -> "SchoolTrackClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    @property
    def is_authenticated(self) -> bool:
        return self.token is not None

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    async def _send(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._http.request(method, path, headers=self._headers(), **kwargs)
        except httpx.TransportError as e:
            raise TransientIOError(f"{method} {path} failed: {e.__class__.__name__}")

        if response.status_code >= 500:
            raise TransientIOError(f"{method} {path} returned {response.status_code}",
                                   details={"status_code": response.status_code})
        if response.status_code >= 400:
            raise error_from_response(response)
        if not response.content:
            return None
        return response.json()

    async def request(self, method: str, path: str, **kwargs) -> Any:
        return await retry_transient(
            lambda: self._send(method, path, **kwargs),
            retry_on=(TransientIOError,),
            max_retries=self.max_retries,
            delay_seconds=self.retry_delay,
            sleep=self.sleep,
        )

    def _require_auth(self) -> None:
        if not self.is_authenticated:
            raise NotAuthenticatedError()

    # Auth

    async def login(self, username: str, password: str) -> Dict[str, Any]:
        data = await self.request("POST", "/auth/login", json={"username": username, "password": password})
        self.token = data["access_token"]
        return data

    async def logout(self) -> None:
        if self.token:
            await self.request("POST", "/auth/logout")
        self.token = None

    # Vehicle and routes

    async def get_vehicle(self) -> Dict[str, Any]:
        self._require_auth()
        return await self.request("GET", "/driver/vehicle")

    async def register_vehicle(self, plate: str, model: Optional[str] = None, capacity: int = 0) -> Dict[str, Any]:
        self._require_auth()
        return await self.request("POST", "/driver/vehicle",
                                  json={"plate": plate, "model": model, "capacity": capacity})

    async def set_tracking(self, enabled: bool) -> Dict[str, Any]:
        self._require_auth()
        return await self.request("PATCH", "/driver/vehicle/tracking", json={"tracking_enabled": enabled})

    async def list_routes(self) -> List[Dict[str, Any]]:
        self._require_auth()
        return await self.request("GET", "/routes")

    # Trip

    async def select_route(self, route_id: int) -> Dict[str, Any]:
        self._require_auth()
        return await self.request("POST", "/driver/trip/route", json={"route_id": route_id})

    async def start_trip(self) -> Dict[str, Any]:
        self._require_auth()
        return await self.request("POST", "/driver/trip/start")

    async def end_trip(self) -> Dict[str, Any]:
        self._require_auth()
        return await self.request("POST", "/driver/trip/end")

    async def current_trip(self) -> Dict[str, Any]:
        self._require_auth()
        return await self.request("GET", "/driver/trip")

    # Attendance

    async def mark_present_at_stop(self, stop_id: int) -> Dict[str, Any]:
        self._require_auth()
        return await self.request("POST", "/attendance/present", json={"stop_id": stop_id})

    async def mark_boarded(self, student_id: int) -> Dict[str, Any]:
        self._require_auth()
        return await self.request("POST", f"/driver/trip/students/{student_id}/boarded")

    # Stop events

    async def register_arrival(self, stop_id: int, vehicle_id: int) -> Dict[str, Any]:
        self._require_auth()
        return await self.request("POST", f"/stops/{stop_id}/arrival", json={"vehicle_id": vehicle_id})

    async def register_departure(self, stop_id: int, vehicle_id: int) -> Dict[str, Any]:
        self._require_auth()
        return await self.request("POST", f"/stops/{stop_id}/departure", json={"vehicle_id": vehicle_id})

    async def stop_events(self, stop_id: int) -> List[Dict[str, Any]]:
        self._require_auth()
        return await self.request("GET", f"/stops/{stop_id}/events")

    # Positions

    async def record_position(self, sample: Dict[str, Any]) -> Dict[str, Any]:
        self._require_auth()
        return await self.request("POST", "/driver/positions", json=sample)

    async def last_known_position(self, vehicle_id: int) -> Dict[str, Any]:
        self._require_auth()
        return await self.request("GET", f"/vehicles/{vehicle_id}/position")


class DriverDevice:
    """A driver's device: API client plus the location streamer it owns."""

    def __init__(
        self,
        client: SchoolTrackClient,
        source: PositionSource,
        options: Optional[PositionOptions] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_failure: Optional[Callable[[Exception], None]] = None,
    ):
        self.client = client
        self.source = source
        self.options = options
        self.sleep = sleep
        self.on_failure = on_failure
        self.streamer: Optional[PositionStreamer] = None

    @property
    def is_tracking(self) -> bool:
        return self.streamer is not None and self.streamer.is_tracking

    async def start_tracking(self) -> PositionStreamer:
        if self.is_tracking:
            return self.streamer

        # Raises NotAuthenticatedError before any request when logged out
        vehicle = await self.client.get_vehicle()
        self.streamer = PositionStreamer(
            source=self.source,
            sink=self.client.record_position,
            vehicle=TrackedVehicle(
                id=vehicle["id"],
                tracking_enabled=vehicle["tracking_enabled"],
                plate=vehicle.get("plate"),
            ),
            is_authenticated=lambda: self.client.is_authenticated,
            options=self.options,
            sleep=self.sleep,
            on_failure=self.on_failure,
        )
        await self.streamer.start()
        return self.streamer

    async def stop_tracking(self) -> None:
        if self.streamer is not None:
            await self.streamer.stop()

    async def end_trip(self) -> Dict[str, Any]:
        trip = await self.client.end_trip()
        await self.stop_tracking()
        return trip
