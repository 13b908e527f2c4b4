"""
Shared fixtures: in-memory database, fake Redis, controllable clock and
a seeded school (route, stops, vehicle, students, parent, admin).
"""

import time

import pytest
from datetime import datetime, timedelta
from types import SimpleNamespace
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from schooltrack.app.main import app
from schooltrack.app.db.session import get_db, Base
from schooltrack.app.core.jwt import access_token_for
from schooltrack.app.core.realtime import SubscriptionManager
from schooltrack.app.core.security import get_password_hash
from schooltrack.app.core.session import SessionContext
from schooltrack.app.device.positioning import PositionError, PositionFix, PositionSource
from schooltrack.app.models.enums import UserRole
from schooltrack.app.models.route import Route, Stop
from schooltrack.app.models.student import Student
from schooltrack.app.models.user import User
from schooltrack.app.models.vehicle import Vehicle
import schooltrack.app.core.redis_client as redis_client_module

engine = create_async_engine(
    "sqlite+aiosqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@event.listens_for(engine.sync_engine, "connect")
def _sqlite_foreign_keys(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class FakeRedis:
    """The slice of redis.asyncio used for token revocation, with key expiry."""

    def __init__(self):
        self.keys = {}

    def _live(self, key) -> bool:
        expires = self.keys.get(key)
        if expires is None:
            return False
        if expires and expires <= time.monotonic():
            del self.keys[key]
            return False
        return True

    async def ping(self):
        return True

    async def set(self, key, value, ex=None):
        self.keys[key] = time.monotonic() + ex if ex else 0
        return True

    async def exists(self, key):
        return 1 if self._live(key) else 0

    def reset(self):
        self.keys.clear()


class FakeClock:
    """Controllable naive-UTC clock passed to services as `clock=`."""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2026, 3, 2, 7, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakePositionSource(PositionSource):
    """Positioning source driven by the test through emit_fix/emit_error."""

    def __init__(self, available: bool = True):
        self.available = available
        self.requests = []
        self.cancelled = []
        self._next_handle = 0
        self._active = {}

    def is_available(self) -> bool:
        return self.available

    async def request_continuous_updates(self, on_sample, on_error, options):
        self._next_handle += 1
        handle = self._next_handle
        self.requests.append(options)
        self._active[handle] = (on_sample, on_error)
        return handle

    def cancel(self, handle) -> None:
        if self._active.pop(handle, None) is not None:
            self.cancelled.append(handle)

    @property
    def watching(self) -> bool:
        return bool(self._active)

    async def emit_fix(self, latitude=-23.55, longitude=-46.63, speed=8.0, heading=90.0):
        for on_sample, _ in list(self._active.values()):
            await on_sample(PositionFix(latitude=latitude, longitude=longitude, speed=speed, heading=heading))

    async def emit_error(self, code, message=""):
        for _, on_error in list(self._active.values()):
            await on_error(PositionError(code, message))


class RecordingSleep:
    """Stand-in for asyncio.sleep that returns immediately and records delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture(scope="session")
def fake_redis():
    return FakeRedis()


@pytest.fixture(scope="session", autouse=True)
def apply_overrides(fake_redis):
    original_client = redis_client_module.client
    redis_client_module.client = fake_redis

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield

    app.dependency_overrides = {}
    redis_client_module.client = original_client


@pytest.fixture(autouse=True)
async def setup_database(fake_redis):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    fake_redis.reset()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manager():
    return SubscriptionManager(queue_size=10)


@pytest.fixture
def position_source():
    return FakePositionSource()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


def ctx_for(user: User) -> SessionContext:
    return SessionContext(user_id=user.id, username=user.username, role=user.role)


def auth_header(user: User) -> dict:
    return {"Authorization": f"Bearer {access_token_for(user.id, user.username, user.role)}"}


def make_user(username: str, role: UserRole) -> User:
    return User(
        email=f"{username}@test.com",
        username=username,
        full_name=username.capitalize(),
        hashed_password=get_password_hash("password123"),
        role=role,
        is_active=True
    )


@pytest.fixture
async def school(db_session):
    """
    One driver with a vehicle, one route with three stops, three students on
    it (each with a login), a parent and an admin.
    """
    driver = make_user("driver", UserRole.DRIVER)
    other_driver = make_user("driver2", UserRole.DRIVER)
    parent = make_user("parent", UserRole.PARENT)
    admin = make_user("admin", UserRole.ADMIN)
    student_users = [make_user(f"student{i}", UserRole.STUDENT) for i in range(1, 4)]
    db_session.add_all([driver, other_driver, parent, admin, *student_users])
    await db_session.flush()

    vehicle = Vehicle(driver_id=driver.id, plate="ABC1234", model="Marcopolo", capacity=30, tracking_enabled=True)
    route = Route(name="Route A", description="Morning", is_active=True)
    other_route = Route(name="Route B", description="Afternoon", is_active=True)
    db_session.add_all([vehicle, route, other_route])
    await db_session.flush()

    stops = [
        Stop(route_id=route.id, name=f"Stop {i}", latitude=-23.55 + i * 0.001, longitude=-46.63, sequence_number=i)
        for i in range(1, 4)
    ]
    other_stop = Stop(route_id=other_route.id, name="Elsewhere", latitude=-23.6, longitude=-46.7, sequence_number=1)
    db_session.add_all([*stops, other_stop])
    await db_session.flush()

    students = [
        Student(
            user_id=student_users[i].id,
            parent_id=parent.id,
            name=name,
            route_id=route.id,
            stop_id=stops[i].id
        )
        for i, name in enumerate(["Ana", "Bruno", "Carla"])
    ]
    db_session.add_all(students)
    await db_session.commit()

    return SimpleNamespace(
        driver=driver,
        other_driver=other_driver,
        parent=parent,
        admin=admin,
        student_users=student_users,
        vehicle=vehicle,
        route=route,
        other_route=other_route,
        stops=stops,
        other_stop=other_stop,
        students=students,
    )
