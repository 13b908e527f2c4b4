"""
Trip lifecycle tests.

idle -> in_progress -> completed -> (grace) -> idle, ledger seeding on start
and absent finalization on end.
"""

import pytest
from datetime import datetime, timedelta
from unittest.mock import AsyncMock
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from conftest import ctx_for, auth_header
from schooltrack.app.core.exceptions import (
    InsufficientPermissionsError,
    InvalidStateTransitionError,
    PreconditionFailedError,
    ResourceNotFoundError,
)
from schooltrack.app.models.attendance import AttendanceRecord
from schooltrack.app.models.trip import Trip
from schooltrack.app.models.trip_enums import AttendanceStatus, TripState
from schooltrack.app.models.vehicle import Vehicle
from schooltrack.app.services.attendance_ledger import AttendanceLedger
from schooltrack.app.services.trip_controller import TripController, reset_due_trips


async def _attendance_count(db_session) -> int:
    result = await db_session.execute(select(func.count(AttendanceRecord.id)))
    return result.scalar()


@pytest.fixture
def controller(db_session, school, clock):
    return TripController(db_session, ctx_for(school.driver), clock=clock)


@pytest.mark.asyncio
async def test_start_requires_route(controller):
    with pytest.raises(PreconditionFailedError) as exc_info:
        await controller.start_trip()
    assert exc_info.value.remediation == "select_route"


@pytest.mark.asyncio
async def test_start_requires_vehicle(db_session, school, clock):
    controller = TripController(db_session, ctx_for(school.other_driver), clock=clock)
    with pytest.raises(PreconditionFailedError) as exc_info:
        await controller.start_trip()
    assert exc_info.value.remediation == "register_vehicle"


@pytest.mark.asyncio
async def test_only_drivers_control_trips(db_session, school, clock):
    with pytest.raises(InsufficientPermissionsError):
        TripController(db_session, ctx_for(school.student_users[0]), clock=clock)


@pytest.mark.asyncio
async def test_select_inactive_route_not_found(db_session, controller, school):
    school.other_route.is_active = False
    await db_session.commit()
    with pytest.raises(ResourceNotFoundError):
        await controller.select_route(school.other_route.id)


@pytest.mark.asyncio
async def test_start_seeds_waiting_rows(db_session, controller, school):
    await controller.select_route(school.route.id)
    trip = await controller.start_trip()

    assert trip.state == TripState.IN_PROGRESS
    assert trip.started_at == controller.clock()
    records = await controller.ledger.records_for_route(school.route.id, trip.service_date)
    assert len(records) == 3
    assert all(r.status == AttendanceStatus.WAITING for r in records)


@pytest.mark.asyncio
async def test_start_twice_is_idempotent(db_session, controller, school, clock):
    await controller.select_route(school.route.id)
    first = await controller.start_trip()
    started_at = first.started_at

    clock.advance(minutes=1)
    second = await controller.start_trip()

    assert second.id == first.id
    assert second.state == TripState.IN_PROGRESS
    assert second.started_at == started_at
    assert await _attendance_count(db_session) == 3


@pytest.mark.asyncio
async def test_cannot_change_route_while_in_progress(controller, school):
    await controller.select_route(school.route.id)
    await controller.start_trip()
    with pytest.raises(InvalidStateTransitionError):
        await controller.select_route(school.other_route.id)


@pytest.mark.asyncio
async def test_end_from_idle_rejected(controller, school):
    await controller.select_route(school.route.id)
    with pytest.raises(InvalidStateTransitionError) as exc_info:
        await controller.end_trip()
    assert exc_info.value.details["current_state"] == "idle"


@pytest.mark.asyncio
async def test_board_one_then_end_marks_others_absent(db_session, controller, school):
    """3 students, board A, end: A boarded, B and C absent, trip completed."""
    await controller.select_route(school.route.id)
    trip = await controller.start_trip()
    ana, bruno, carla = school.students

    await controller.ledger.mark_boarded(ana.id)
    trip = await controller.end_trip()

    assert trip.state == TripState.COMPLETED
    assert trip.ended_at is not None
    statuses = {
        r.student_id: r.status
        for r in await controller.ledger.records_for_route(school.route.id, trip.service_date)
    }
    assert statuses == {
        ana.id: AttendanceStatus.BOARDED,
        bruno.id: AttendanceStatus.ABSENT,
        carla.id: AttendanceStatus.ABSENT,
    }

    history = (await controller.trip_history())[0]
    assert history.trip_id == trip.id
    assert history.total_students == 3
    assert history.boarded_count == 1
    assert history.absent_count == 2
    assert history.total_stops == 3


@pytest.mark.asyncio
async def test_end_only_touches_waiting_rows(db_session, school, clock):
    driver = TripController(db_session, ctx_for(school.driver), clock=clock)
    await driver.select_route(school.route.id)
    await driver.start_trip()

    student = AttendanceLedger(db_session, ctx_for(school.student_users[1]), clock=clock)
    await student.mark_present_at_stop(school.stops[1].id)
    await driver.ledger.mark_boarded(school.students[0].id)
    await driver.end_trip()

    records = {r.student_id: r.status for r in await driver.ledger.records_for_route(school.route.id, driver.today())}
    assert records[school.students[0].id] == AttendanceStatus.BOARDED
    # present_at_stop is not waiting, so it is left alone
    assert records[school.students[1].id] == AttendanceStatus.PRESENT_AT_STOP
    assert records[school.students[2].id] == AttendanceStatus.ABSENT


@pytest.mark.asyncio
async def test_grace_reset_returns_trip_to_idle(controller, school, clock):
    await controller.select_route(school.route.id)
    await controller.start_trip()
    await controller.end_trip()

    clock.advance(seconds=4)
    with pytest.raises(InvalidStateTransitionError):
        await controller.start_trip()
    assert (await controller.current_trip()).state == TripState.COMPLETED

    clock.advance(seconds=1)
    trip = await controller.current_trip()
    assert trip.state == TripState.IDLE
    assert trip.route_id == school.route.id


@pytest.mark.asyncio
async def test_restart_after_reset_keeps_ledger(db_session, controller, school, clock):
    await controller.select_route(school.route.id)
    await controller.start_trip()
    await controller.end_trip()
    clock.advance(seconds=10)

    trip = await controller.start_trip()

    assert trip.state == TripState.IN_PROGRESS
    # Rows exist already for the date, so nothing is re-seeded
    assert await _attendance_count(db_session) == 3


@pytest.mark.asyncio
async def test_reset_due_trips_sweep(db_session, controller, school, clock):
    await controller.select_route(school.route.id)
    await controller.start_trip()
    await controller.end_trip()

    assert await reset_due_trips(db_session, clock()) == 0
    assert await reset_due_trips(db_session, clock.advance(seconds=5)) == 1

    trip = (await db_session.execute(select(Trip))).scalar_one()
    assert trip.state == TripState.IDLE


@pytest.mark.asyncio
async def test_seed_race_is_retried_once(db_session, controller, school, mocker):
    original_seed = AttendanceLedger.seed
    calls = {"count": 0}

    async def flaky_seed(self, route_id, service_date):
        calls["count"] += 1
        if calls["count"] == 1:
            raise IntegrityError("INSERT INTO attendance_records", {}, Exception("UNIQUE constraint failed"))
        return await original_seed(self, route_id, service_date)

    mocker.patch.object(AttendanceLedger, "seed", flaky_seed)

    await controller.select_route(school.route.id)
    trip = await controller.start_trip()

    assert calls["count"] == 2
    assert trip.state == TripState.IN_PROGRESS
    assert await _attendance_count(db_session) == 3


@pytest.mark.asyncio
async def test_end_trip_stops_attached_streamer(db_session, school, clock):
    streamer = AsyncMock()
    controller = TripController(db_session, ctx_for(school.driver), streamer=streamer, clock=clock)
    await controller.select_route(school.route.id)
    await controller.start_trip()

    await controller.end_trip()

    streamer.stop.assert_awaited_once()


@pytest.mark.asyncio
async def test_driver_cannot_run_two_trips(db_session, school, clock):
    controller = TripController(db_session, ctx_for(school.driver), clock=clock)
    await controller.select_route(school.route.id)
    trip = await controller.start_trip()

    # An earlier run on a spare bus that was never ended
    spare = Vehicle(driver_id=school.other_driver.id, plate="SPARE01", capacity=20)
    db_session.add(spare)
    await db_session.flush()
    db_session.add(Trip(
        vehicle_id=spare.id,
        driver_id=school.driver.id,
        route_id=school.other_route.id,
        service_date=trip.service_date - timedelta(days=1),
        state=TripState.IN_PROGRESS,
    ))
    await db_session.commit()
    clock.advance(seconds=1)
    await controller.end_trip()
    clock.advance(seconds=10)

    with pytest.raises(InvalidStateTransitionError):
        await controller.start_trip()


@pytest.mark.asyncio
async def test_trip_crossing_midnight_keeps_its_service_date(db_session, school, clock):
    clock.now = datetime(2026, 3, 2, 23, 50)
    controller = TripController(db_session, ctx_for(school.driver), clock=clock)
    await controller.select_route(school.route.id)
    trip = await controller.start_trip()

    clock.advance(minutes=20)
    boarded, _ = await AttendanceLedger(db_session, ctx_for(school.driver), clock=clock).mark_boarded(school.students[0].id)
    present, _ = await AttendanceLedger(db_session, ctx_for(school.student_users[1]), clock=clock).mark_present_at_stop(
        school.stops[1].id
    )
    assert boarded.service_date == trip.service_date
    assert present.service_date == trip.service_date
    assert (await controller.current_trip()).id == trip.id

    ended = await controller.end_trip()
    assert ended.id == trip.id
    assert ended.state == TripState.COMPLETED

    records = await controller.ledger.records_for_route(school.route.id, trip.service_date)
    assert len(records) == 3
    assert {r.student_id: r.status for r in records} == {
        school.students[0].id: AttendanceStatus.BOARDED,
        school.students[1].id: AttendanceStatus.PRESENT_AT_STOP,
        school.students[2].id: AttendanceStatus.ABSENT,
    }

    # The new date gets its own trip
    clock.advance(seconds=10)
    await controller.select_route(school.route.id)
    next_trip = await controller.start_trip()
    assert next_trip.id != trip.id
    assert next_trip.service_date == trip.service_date + timedelta(days=1)
    assert next_trip.state == TripState.IN_PROGRESS


# HTTP flow

@pytest.mark.asyncio
async def test_trip_http_flow(client, school):
    headers = auth_header(school.driver)

    response = await client.post("/v1/driver/trip/start", headers=headers)
    assert response.status_code == 412
    assert response.json()["error_code"] == "ERR_PRECONDITION_001"
    assert response.json()["details"]["remediation"] == "select_route"

    response = await client.post("/v1/driver/trip/route", json={"route_id": school.route.id}, headers=headers)
    assert response.status_code == 200
    assert response.json()["state"] == "idle"

    response = await client.post("/v1/driver/trip/start", headers=headers)
    assert response.status_code == 200
    assert response.json()["state"] == "in_progress"

    response = await client.get("/v1/driver/trip", headers=headers)
    assert response.status_code == 200
    body = response.json()
    assert body["trip"]["state"] == "in_progress"
    assert sorted(s["student_name"] for s in body["students"]) == ["Ana", "Bruno", "Carla"]

    response = await client.post(f"/v1/driver/trip/students/{school.students[0].id}/boarded", headers=headers)
    assert response.status_code == 200
    assert response.json()["changed"] is True
    assert response.json()["record"]["status"] == "boarded"

    response = await client.post("/v1/driver/trip/end", headers=headers)
    assert response.status_code == 200
    assert response.json()["state"] == "completed"

    response = await client.post("/v1/driver/trip/end", headers=headers)
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_STATE_001"

    response = await client.get("/v1/driver/trip/history", headers=headers)
    assert response.status_code == 200
    assert response.json()[0]["boarded_count"] == 1
    assert response.json()[0]["absent_count"] == 2


@pytest.mark.asyncio
async def test_students_cannot_start_trips(client, school):
    response = await client.post("/v1/driver/trip/start", headers=auth_header(school.student_users[0]))
    assert response.status_code == 403
