"""
Database seeding script for a demo school.

Creates an admin, a manager, two drivers, one route with three stops and
three students (each with their own login and a parent).
Run with `python -m schooltrack.seed_data` after the database is set up.
"""

import asyncio

from sqlalchemy import select

from schooltrack.app.db.session import AsyncSessionLocal, engine, Base
from schooltrack.app.models.user import User
from schooltrack.app.models.enums import UserRole
from schooltrack.app.models.route import Route, Stop
from schooltrack.app.models.student import Student
from schooltrack.app.core.security import get_password_hash

DEMO_USERS = [
    ("admin", UserRole.ADMIN, "admin123"),
    ("manager", UserRole.MANAGER, "manager123"),
    ("driver1", UserRole.DRIVER, "driver123"),
    ("driver2", UserRole.DRIVER, "driver123"),
    ("parent1", UserRole.PARENT, "parent123"),
]

DEMO_STOPS = [
    ("Main Square", -23.5505, -46.6333),
    ("Library", -23.5489, -46.6388),
    ("School Gate", -23.5450, -46.6420),
]

DEMO_STUDENTS = ["Ana Souza", "Bruno Lima", "Carla Dias"]


def _user(username: str, role: UserRole, password: str) -> User:
    return User(
        email=f"{username}@schooltrack.dev",
        username=username,
        full_name=username.capitalize(),
        hashed_password=get_password_hash(password),
        role=role,
        is_active=True
    )


async def seed_data():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting demo seeding...")

        result = await db.execute(select(User).where(User.username == "admin"))
        if result.scalar_one_or_none():
            print("ℹ️  Demo data already exists, skipping seeding")
            return

        users = {name: _user(name, role, pw) for name, role, pw in DEMO_USERS}
        db.add_all(users.values())

        route = Route(name="Morning Route A", description="Downtown to school", is_active=True)
        db.add(route)
        await db.flush()

        stops = [
            Stop(route_id=route.id, name=name, latitude=lat, longitude=lon, sequence_number=seq)
            for seq, (name, lat, lon) in enumerate(DEMO_STOPS, start=1)
        ]
        db.add_all(stops)
        await db.flush()

        for i, name in enumerate(DEMO_STUDENTS, start=1):
            login = _user(f"student{i}", UserRole.STUDENT, "student123")
            db.add(login)
            await db.flush()
            db.add(Student(
                user_id=login.id,
                parent_id=users["parent1"].id,
                name=name,
                student_number=f"S-{i:04d}",
                route_id=route.id,
                stop_id=stops[(i - 1) % len(stops)].id
            ))

        await db.commit()

        print("\n🎉 Demo seeding completed successfully!")
        print("\nSeeded users:")
        for name, role, pw in DEMO_USERS:
            print(f"  - {role.value:<8} {name} / {pw}")
        print("  - STUDENT  student1..student3 / student123")
        print(f"\nRoute '{route.name}' with {len(stops)} stops and {len(DEMO_STUDENTS)} students")


if __name__ == "__main__":
    asyncio.run(seed_data())
