"""
Attendance ledger tests: single writer per transition, forward-only status.
"""

import itertools

import pytest

from conftest import ctx_for, auth_header
from schooltrack.app.core.exceptions import (
    InsufficientPermissionsError,
    InvalidStateTransitionError,
    ResourceNotFoundError,
)
from schooltrack.app.models.student import Student
from schooltrack.app.models.trip_enums import AttendanceStatus, can_advance
from schooltrack.app.services.attendance_ledger import AttendanceLedger
from schooltrack.app.services.trip_controller import TripController

# Position along waiting -> present_at_stop -> boarded; absent sits at the end
RANK = {
    AttendanceStatus.WAITING: 0,
    AttendanceStatus.PRESENT_AT_STOP: 1,
    AttendanceStatus.BOARDED: 2,
    AttendanceStatus.ABSENT: 2,
}


@pytest.fixture
def driver(db_session, school, clock):
    return TripController(db_session, ctx_for(school.driver), clock=clock)


@pytest.fixture
def ana(db_session, school, clock):
    """Ledger as seen from the first student's own session."""
    return AttendanceLedger(db_session, ctx_for(school.student_users[0]), clock=clock)


def test_transition_table_is_forward_only():
    for current, target in itertools.product(AttendanceStatus, repeat=2):
        if can_advance(current, target):
            assert RANK[target] > RANK[current]
    assert not can_advance(AttendanceStatus.BOARDED, AttendanceStatus.ABSENT)
    assert not can_advance(AttendanceStatus.ABSENT, AttendanceStatus.PRESENT_AT_STOP)


@pytest.mark.asyncio
async def test_present_before_trip_starts(db_session, school, driver, ana):
    record, changed = await ana.mark_present_at_stop(school.stops[0].id)

    assert changed is True
    assert record.status == AttendanceStatus.PRESENT_AT_STOP
    assert record.marked_by == school.student_users[0].id

    await driver.select_route(school.route.id)
    await driver.start_trip()

    records = {r.student_id: r for r in await driver.ledger.records_for_route(school.route.id, driver.today())}
    assert len(records) == 3
    # Seeding leaves the student's own row untouched
    assert records[school.students[0].id].status == AttendanceStatus.PRESENT_AT_STOP
    assert records[school.students[1].id].status == AttendanceStatus.WAITING


@pytest.mark.asyncio
async def test_present_twice_is_noop(school, ana):
    first, changed = await ana.mark_present_at_stop(school.stops[0].id)
    second, changed_again = await ana.mark_present_at_stop(school.stops[0].id)

    assert changed is True
    assert changed_again is False
    assert second.id == first.id


@pytest.mark.asyncio
async def test_present_at_another_stop_moves_student(db_session, school, ana):
    await ana.mark_present_at_stop(school.stops[2].id)

    student = await db_session.get(Student, school.students[0].id)
    await db_session.refresh(student)
    assert student.stop_id == school.stops[2].id


@pytest.mark.asyncio
async def test_present_at_stop_of_other_route_rejected(school, ana):
    with pytest.raises(InvalidStateTransitionError):
        await ana.mark_present_at_stop(school.other_stop.id)


@pytest.mark.asyncio
async def test_present_at_unknown_stop(ana):
    with pytest.raises(ResourceNotFoundError):
        await ana.mark_present_at_stop(9999)


@pytest.mark.asyncio
async def test_only_the_student_marks_presence(db_session, school, clock):
    ledger = AttendanceLedger(db_session, ctx_for(school.driver), clock=clock)
    with pytest.raises(InsufficientPermissionsError):
        await ledger.mark_present_at_stop(school.stops[0].id)


@pytest.mark.asyncio
async def test_board_requires_trip_in_progress(db_session, school, driver):
    await driver.select_route(school.route.id)

    with pytest.raises(InvalidStateTransitionError) as exc_info:
        await driver.ledger.mark_boarded(school.students[0].id)

    assert exc_info.value.details["current_state"] == "idle"
    assert await driver.ledger.records_for_route(school.route.id, driver.today()) == []


@pytest.mark.asyncio
async def test_board_after_present(school, driver, ana):
    await driver.select_route(school.route.id)
    await driver.start_trip()
    await ana.mark_present_at_stop(school.stops[0].id)

    record, changed = await driver.ledger.mark_boarded(school.students[0].id)
    again, changed_again = await driver.ledger.mark_boarded(school.students[0].id)

    assert changed is True
    assert record.status == AttendanceStatus.BOARDED
    assert record.marked_by == school.driver.id
    assert changed_again is False
    assert again.status == AttendanceStatus.BOARDED


@pytest.mark.asyncio
async def test_present_after_boarded_does_not_regress(school, driver, ana):
    await driver.select_route(school.route.id)
    await driver.start_trip()
    await driver.ledger.mark_boarded(school.students[0].id)

    record, changed = await ana.mark_present_at_stop(school.stops[0].id)

    assert changed is False
    assert record.status == AttendanceStatus.BOARDED


@pytest.mark.asyncio
async def test_board_student_of_other_route(db_session, school, driver):
    outsider = Student(name="Diego", parent_id=school.parent.id, route_id=school.other_route.id,
                       stop_id=school.other_stop.id)
    db_session.add(outsider)
    await db_session.commit()

    await driver.select_route(school.route.id)
    await driver.start_trip()

    with pytest.raises(ResourceNotFoundError):
        await driver.ledger.mark_boarded(outsider.id)


@pytest.mark.asyncio
async def test_student_added_after_start_can_board(db_session, school, driver):
    await driver.select_route(school.route.id)
    await driver.start_trip()

    late = Student(name="Eva", parent_id=school.parent.id, route_id=school.route.id, stop_id=school.stops[0].id)
    db_session.add(late)
    await db_session.commit()

    record, changed = await driver.ledger.mark_boarded(late.id)
    assert changed is True
    assert record.status == AttendanceStatus.BOARDED


@pytest.mark.parametrize("steps", list(itertools.permutations(["present", "board", "end"])))
@pytest.mark.asyncio
async def test_status_never_moves_backwards(db_session, school, driver, ana, steps):
    await driver.select_route(school.route.id)
    await driver.start_trip()
    student_id = school.students[0].id

    last_rank = 0
    for step in steps:
        try:
            if step == "present":
                await ana.mark_present_at_stop(school.stops[0].id)
            elif step == "board":
                await driver.ledger.mark_boarded(student_id)
            else:
                await driver.end_trip()
        except InvalidStateTransitionError:
            pass

        record = await driver.ledger.record_for_student(student_id, driver.today())
        await db_session.refresh(record)
        rank = RANK[record.status]
        assert rank >= last_rank
        last_rank = rank


@pytest.mark.asyncio
async def test_absent_is_final(school, driver, ana):
    await driver.select_route(school.route.id)
    await driver.start_trip()
    await driver.end_trip()

    record, changed = await ana.mark_present_at_stop(school.stops[0].id)

    assert changed is False
    assert record.status == AttendanceStatus.ABSENT


# HTTP

@pytest.mark.asyncio
async def test_attendance_endpoints(client, school):
    student_headers = auth_header(school.student_users[0])

    response = await client.get("/v1/attendance/me", headers=student_headers)
    assert response.status_code == 200
    assert response.json() is None

    response = await client.post("/v1/attendance/present", json={"stop_id": school.stops[0].id}, headers=student_headers)
    assert response.status_code == 200
    assert response.json()["changed"] is True
    assert response.json()["record"]["status"] == "present_at_stop"

    response = await client.get("/v1/attendance/me", headers=student_headers)
    assert response.json()["status"] == "present_at_stop"


@pytest.mark.asyncio
async def test_drivers_cannot_mark_presence(client, school):
    response = await client.post(
        "/v1/attendance/present",
        json={"stop_id": school.stops[0].id},
        headers=auth_header(school.driver)
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_boarding_idle_trip_over_http(client, school):
    response = await client.post(
        f"/v1/driver/trip/students/{school.students[0].id}/boarded",
        headers=auth_header(school.driver)
    )
    assert response.status_code == 409
    assert response.json()["details"]["current_state"] == "idle"
