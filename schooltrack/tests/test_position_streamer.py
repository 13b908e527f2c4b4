"""
Position streamer tests.

The streamer runs against FakePositionSource; retries are driven by awaiting
`streamer.retry_task` with a sleep that records its delays and returns at once.
"""

import asyncio

import pytest

from schooltrack.app.core.exceptions import (
    NotAuthenticatedError,
    PositioningUnavailableError,
    PositionPermissionDeniedError,
    TrackingDisabledError,
    TrackingFailedError,
    TransientIOError,
)
from schooltrack.app.device.position_streamer import PositionStreamer, TrackedVehicle
from schooltrack.app.device.positioning import PositionErrorCode, PositionOptions


class RecordingSink:
    def __init__(self, fail_with: Exception = None):
        self.payloads = []
        self.fail_with = fail_with

    async def __call__(self, payload):
        self.payloads.append(payload)
        if self.fail_with is not None:
            raise self.fail_with


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def failures():
    return []


@pytest.fixture
def make_streamer(position_source, sink, recording_sleep, failures):
    def _make(authenticated=True, tracking_enabled=True, **kwargs):
        return PositionStreamer(
            source=position_source,
            sink=kwargs.pop("sink", sink),
            vehicle=TrackedVehicle(id=7, tracking_enabled=tracking_enabled, plate="ABC1234"),
            is_authenticated=lambda: authenticated,
            sleep=recording_sleep,
            on_failure=failures.append,
            **kwargs
        )
    return _make


async def _emit_errors(source, streamer, count, code=PositionErrorCode.TIMEOUT):
    for _ in range(count):
        await source.emit_error(code)
        if streamer.retry_task is not None:
            await streamer.retry_task


@pytest.mark.asyncio
async def test_start_requires_login(make_streamer, position_source):
    with pytest.raises(NotAuthenticatedError):
        await make_streamer(authenticated=False).start()
    assert position_source.requests == []


@pytest.mark.asyncio
async def test_start_requires_tracking_enabled(make_streamer, position_source):
    with pytest.raises(TrackingDisabledError) as exc_info:
        await make_streamer(tracking_enabled=False).start()
    assert exc_info.value.remediation == "enable_vehicle_tracking"
    assert position_source.requests == []


@pytest.mark.asyncio
async def test_start_requires_positioning(make_streamer, position_source):
    position_source.available = False
    with pytest.raises(PositioningUnavailableError):
        await make_streamer().start()


@pytest.mark.asyncio
async def test_start_uses_configured_options(make_streamer, position_source):
    streamer = make_streamer()
    await streamer.start()

    assert streamer.is_tracking
    assert position_source.requests == [PositionOptions(high_accuracy=True, max_age_ms=10000, timeout_ms=5000)]


@pytest.mark.asyncio
async def test_start_and_stop_are_idempotent(make_streamer, position_source):
    statuses = []
    streamer = make_streamer(on_status_change=statuses.append)

    await streamer.start()
    await streamer.start()
    assert len(position_source.requests) == 1

    await streamer.stop()
    await streamer.stop()
    assert not position_source.watching
    assert statuses == [True, False]


@pytest.mark.asyncio
async def test_fix_is_forwarded_to_sink(make_streamer, position_source, sink):
    streamer = make_streamer()
    await streamer.start()

    await position_source.emit_fix(latitude=-23.5, longitude=-46.6, speed=10.0, heading=180.0)

    assert len(sink.payloads) == 1
    payload = sink.payloads[0]
    assert payload["vehicle_id"] == 7
    assert payload["latitude"] == -23.5
    assert payload["heading"] == 180.0
    assert streamer.current_fix.longitude == -46.6


@pytest.mark.asyncio
async def test_permission_denied_is_terminal(make_streamer, position_source, recording_sleep, failures):
    streamer = make_streamer()
    await streamer.start()

    await position_source.emit_error(PositionErrorCode.PERMISSION_DENIED)

    assert not streamer.is_tracking
    assert streamer.permission_denied is True
    assert streamer.retries == 0
    assert streamer.retry_task is None
    assert recording_sleep.delays == []
    assert len(position_source.requests) == 1
    assert isinstance(failures[0], PositionPermissionDeniedError)


@pytest.mark.asyncio
async def test_permission_denied_flag_survives_stop(make_streamer, position_source):
    streamer = make_streamer()
    await streamer.start()
    await position_source.emit_error(PositionErrorCode.PERMISSION_DENIED)
    await streamer.stop()

    assert streamer.permission_denied is True


@pytest.mark.parametrize("errors", [1, 2, 3, 4, 5])
@pytest.mark.asyncio
async def test_transient_errors_retry_then_fail(make_streamer, position_source, recording_sleep, failures, errors):
    streamer = make_streamer()
    await streamer.start()

    await _emit_errors(position_source, streamer, errors)

    assert streamer.retries == min(errors, 3)
    assert recording_sleep.delays == [2.0] * min(errors, 3)
    assert streamer.is_tracking is (errors <= 3)
    if errors > 3:
        assert isinstance(streamer.failure, TrackingFailedError)
        assert streamer.failure.details["retries"] == 3
        assert isinstance(failures[-1], TrackingFailedError)
    else:
        assert streamer.failure is None
        # Every retry re-registers the watch
        assert len(position_source.requests) == errors + 1


@pytest.mark.asyncio
async def test_position_unavailable_is_retried(make_streamer, position_source):
    streamer = make_streamer()
    await streamer.start()

    await _emit_errors(position_source, streamer, 1, code=PositionErrorCode.POSITION_UNAVAILABLE)

    assert streamer.retries == 1
    assert streamer.is_tracking
    assert position_source.watching


@pytest.mark.asyncio
async def test_fix_resets_retry_count(make_streamer, position_source, recording_sleep):
    streamer = make_streamer()
    await streamer.start()

    await _emit_errors(position_source, streamer, 3)
    await position_source.emit_fix()
    assert streamer.retries == 0

    await _emit_errors(position_source, streamer, 3)
    assert streamer.is_tracking
    assert len(recording_sleep.delays) == 6


@pytest.mark.asyncio
async def test_sink_failure_does_not_stop_stream(make_streamer, position_source, failures):
    sink = RecordingSink(fail_with=TransientIOError("server unreachable"))
    streamer = make_streamer(sink=sink)
    await streamer.start()

    await position_source.emit_fix()
    await position_source.emit_fix()

    assert streamer.is_tracking
    assert len(sink.payloads) == 2
    assert all(isinstance(f, TransientIOError) for f in failures)


@pytest.mark.asyncio
async def test_stop_cancels_pending_retry(position_source, sink):
    blocked = asyncio.Event()

    async def blocking_sleep(seconds):
        await blocked.wait()

    streamer = PositionStreamer(
        source=position_source,
        sink=sink,
        vehicle=TrackedVehicle(id=7),
        is_authenticated=lambda: True,
        sleep=blocking_sleep,
    )
    await streamer.start()
    await position_source.emit_error(PositionErrorCode.TIMEOUT)
    pending = streamer.retry_task

    await streamer.stop()
    with pytest.raises(asyncio.CancelledError):
        await pending

    assert streamer.retries == 0
    assert not position_source.watching
    assert len(position_source.requests) == 1


@pytest.mark.asyncio
async def test_restart_after_failure_resets_state(make_streamer, position_source):
    streamer = make_streamer()
    await streamer.start()
    await _emit_errors(position_source, streamer, 4)
    assert not streamer.is_tracking

    await streamer.start()

    assert streamer.is_tracking
    assert streamer.retries == 0
    assert streamer.failure is None


@pytest.mark.asyncio
async def test_context_manager_stops_tracking(make_streamer, position_source):
    async with make_streamer() as streamer:
        assert streamer.is_tracking
        assert position_source.watching
    assert not streamer.is_tracking
    assert not position_source.watching


async def _drain_retries(streamer):
    while streamer.retry_task is not None:
        task = streamer.retry_task
        await task
        if streamer.retry_task is task:
            break


def _refuse_rewatch(source, times):
    """Make the next `times` watch requests on `source` raise."""
    register = source.request_continuous_updates
    refused = []

    async def request(on_sample, on_error, options):
        if len(refused) < times:
            refused.append(options)
            raise RuntimeError("location service restarting")
        return await register(on_sample, on_error, options)

    source.request_continuous_updates = request
    return refused


@pytest.mark.asyncio
async def test_failed_rewatch_counts_as_retry(make_streamer, position_source, recording_sleep, failures):
    streamer = make_streamer()
    await streamer.start()
    _refuse_rewatch(position_source, times=1)

    await position_source.emit_error(PositionErrorCode.TIMEOUT)
    await _drain_retries(streamer)

    assert streamer.is_tracking
    assert streamer.retries == 2
    assert recording_sleep.delays == [2.0, 2.0]
    assert position_source.watching
    assert failures == []


@pytest.mark.asyncio
async def test_rewatch_failures_exhaust_retries(make_streamer, position_source, recording_sleep, failures):
    streamer = make_streamer()
    await streamer.start()
    refused = _refuse_rewatch(position_source, times=10)

    await position_source.emit_error(PositionErrorCode.TIMEOUT)
    await _drain_retries(streamer)

    assert not streamer.is_tracking
    assert streamer.retry_task is None
    assert len(refused) == 3
    assert recording_sleep.delays == [2.0] * 3
    assert isinstance(streamer.failure, TrackingFailedError)
    assert streamer.failure.details["retries"] == 3
    assert isinstance(failures[-1], TrackingFailedError)
    assert not position_source.watching
