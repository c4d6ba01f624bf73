import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

from dataclasses import dataclass, field
from datetime import date
from typing import AsyncGenerator, Dict, List

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from attendance_engine.api.v1.attendance_statuses import service as registry
from attendance_engine.auth.models import User
from attendance_engine.auth.schemas import CurrentUser
from attendance_engine.auth.security import create_access_token
from attendance_engine.core.aggregation import report_queue
from attendance_engine.core.enums import EnrollmentStatus, WeekType
from attendance_engine.core.models import (
    AcademicWeek,
    Bimester,
    Course,
    CourseAssignment,
    Enrollment,
    Grade,
    GradeCycle,
    Holiday,
    SchoolCycle,
    Section,
    Student,
)
from attendance_engine.db.seed_attendance_catalog import ROLE_PERMISSIONS, seed_attendance_catalog
from attendance_engine.db.session import Base, get_db
from attendance_engine.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Calendar used across the suite:
#   week 1  2026-03-02..2026-03-08  REGULAR (2026-03-05 is a holiday)
#   week 2  2026-03-09..2026-03-15  REGULAR (2026-03-10 is a recovered holiday)
#   week 3  2026-03-16..2026-03-22  BREAK
# Anything after 2026-03-22 has no week and is OUT_OF_RANGE.
WEEK1_DAY1 = date(2026, 3, 2)
HOLIDAY_DATE = date(2026, 3, 5)
RECOVERED_HOLIDAY_DATE = date(2026, 3, 10)
BREAK_DATE = date(2026, 3, 17)
NO_WEEK_DATE = date(2026, 4, 20)
ENROLLED_ON = date(2026, 3, 2)


@dataclass
class School:
    cycle: SchoolCycle
    bimester: Bimester
    next_bimester: Bimester
    weeks: List[AcademicWeek]
    section: Section
    math: CourseAssignment
    language: CourseAssignment
    enrollments: List[Enrollment]
    users: Dict[str, User] = field(default_factory=dict)

    def principal(self, name: str) -> CurrentUser:
        """Service-level principal for a seeded user, as get_current_user would build it."""
        user = self.users[name]
        role_name = user.role
        return CurrentUser(
            id=user.id,
            role=role_name,
            role_id=user.role_id,
            permissions=ROLE_PERMISSIONS.get(role_name, {}),
        )


@pytest.fixture()
async def test_sessionmaker() -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh in-memory database per test, shared by every session through a static pool."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    maker = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    report_queue.bind(maker)
    registry.invalidate()
    yield maker
    await report_queue.process_pending()
    registry.invalidate()
    app.dependency_overrides.clear()
    await engine.dispose()


@pytest.fixture()
async def db_session(test_sessionmaker: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with test_sessionmaker() as session:
        yield session


@pytest.fixture()
async def client(test_sessionmaker: async_sessionmaker) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def build_school(db: AsyncSession, students: int = 30) -> School:
    roles = await seed_attendance_catalog(db)

    users = {
        "admin": User(full_name="Ana Admin", email="admin@example.com", role="ADMIN"),
        "coordinator": User(
            full_name="Carla Coordinator",
            email="coord@example.com",
            role="COORDINATOR",
            role_id=roles["COORDINATOR"].id,
        ),
        "teacher": User(
            full_name="Tomas Teacher", email="teacher@example.com", role="TEACHER", role_id=roles["TEACHER"].id
        ),
        "other_teacher": User(
            full_name="Olga Teacher", email="olga@example.com", role="TEACHER", role_id=roles["TEACHER"].id
        ),
    }
    db.add_all(users.values())
    await db.flush()

    cycle = SchoolCycle(
        name="2026", start_date=date(2026, 3, 2), end_date=date(2026, 12, 18), is_active=True, is_archived=False
    )
    db.add(cycle)
    await db.flush()
    bimester = Bimester(
        cycle_id=cycle.id, number=1, name="First", start_date=date(2026, 3, 2), end_date=date(2026, 5, 8), is_active=True
    )
    next_bimester = Bimester(
        cycle_id=cycle.id, number=2, name="Second", start_date=date(2026, 5, 11), end_date=date(2026, 7, 17)
    )
    db.add_all([bimester, next_bimester])
    await db.flush()
    weeks = [
        AcademicWeek(bimester_id=bimester.id, number=1, start_date=date(2026, 3, 2), end_date=date(2026, 3, 8),
                     week_type=WeekType.REGULAR.value),
        AcademicWeek(bimester_id=bimester.id, number=2, start_date=date(2026, 3, 9), end_date=date(2026, 3, 15),
                     week_type=WeekType.REGULAR.value),
        AcademicWeek(bimester_id=bimester.id, number=3, start_date=date(2026, 3, 16), end_date=date(2026, 3, 22),
                     week_type=WeekType.BREAK.value),
    ]
    db.add_all(weeks)
    db.add_all([
        Holiday(cycle_id=cycle.id, bimester_id=bimester.id, start_date=HOLIDAY_DATE, end_date=HOLIDAY_DATE,
                description="Founders day"),
        Holiday(cycle_id=cycle.id, bimester_id=bimester.id, start_date=RECOVERED_HOLIDAY_DATE,
                end_date=RECOVERED_HOLIDAY_DATE, description="Recovered day", is_recovered=True),
    ])

    grade = Grade(name="Primero", level="Primaria", display_order=1)
    db.add(grade)
    await db.flush()
    db.add(GradeCycle(grade_id=grade.id, cycle_id=cycle.id))
    section = Section(grade_id=grade.id, name="A", teacher_id=users["teacher"].id)
    db.add(section)
    await db.flush()

    math_course = Course(name="Mathematics", code="MAT")
    language_course = Course(name="Language", code="LAN")
    db.add_all([math_course, language_course])
    await db.flush()
    math = CourseAssignment(section_id=section.id, course_id=math_course.id, teacher_id=users["teacher"].id)
    language = CourseAssignment(
        section_id=section.id, course_id=language_course.id, teacher_id=users["other_teacher"].id
    )
    db.add_all([math, language])
    await db.flush()

    enrollments: List[Enrollment] = []
    for i in range(students):
        student = Student(code=f"S{i:03d}", given_names=f"Student {i}", last_names="Test")
        db.add(student)
        await db.flush()
        enrollment = Enrollment(
            student_id=student.id,
            section_id=section.id,
            cycle_id=cycle.id,
            status=EnrollmentStatus.ACTIVE.value,
            date_enrolled=ENROLLED_ON,
        )
        db.add(enrollment)
        enrollments.append(enrollment)
    await db.commit()

    return School(
        cycle=cycle,
        bimester=bimester,
        next_bimester=next_bimester,
        weeks=weeks,
        section=section,
        math=math,
        language=language,
        enrollments=enrollments,
        users=users,
    )


@pytest.fixture()
async def school(db_session: AsyncSession) -> School:
    return await build_school(db_session)


def auth_headers(user: User) -> Dict[str, str]:
    token = create_access_token(subject={"sub": str(user.id), "role": user.role})
    return {"Authorization": f"Bearer {token}"}
