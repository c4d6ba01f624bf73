import pytest
from httpx import AsyncClient
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.api.v1.attendance_statuses import service as registry
from attendance_engine.api.v1.attendance_statuses.schemas import (
    AttendanceConfigSave,
    AttendanceStatusCreate,
    AttendanceStatusUpdate,
    RoleStatusPermissionSet,
)
from attendance_engine.core.exceptions import (
    NO_ACTIVE_CONFIG,
    NO_STATUSES_CONFIGURED,
    ConflictError,
    PreconditionError,
    ValidationError,
)
from attendance_engine.core.models import AttendanceStatus

from conftest import School, auth_headers


@pytest.mark.asyncio
async def test_empty_catalog_raises_preconditions(db_session: AsyncSession) -> None:
    with pytest.raises(PreconditionError) as exc:
        await registry.load_statuses(db_session)
    assert exc.value.code == NO_STATUSES_CONFIGURED

    with pytest.raises(PreconditionError) as exc:
        await registry.load_active_config(db_session)
    assert exc.value.code == NO_ACTIVE_CONFIG


@pytest.mark.asyncio
async def test_statuses_are_ordered_and_flagged(db_session: AsyncSession, school: School) -> None:
    statuses = await registry.load_statuses(db_session)
    assert [s.code for s in statuses] == ["P", "I", "IJ", "TI", "TJ", "E"]

    tardy = await registry.get_status_by_code(db_session, "TI")
    assert tardy.is_temporal and tardy.is_negative and not tardy.is_excused

    with pytest.raises(ValidationError):
        await registry.get_status_by_code(db_session, "ZZ")


@pytest.mark.asyncio
async def test_snapshots_are_immutable(db_session: AsyncSession, school: School) -> None:
    present = await registry.get_status_by_code(db_session, "P")
    with pytest.raises(SchemaValidationError):
        present.is_negative = True


@pytest.mark.asyncio
async def test_cache_serves_until_invalidated(db_session: AsyncSession, school: School) -> None:
    before = await registry.load_statuses(db_session)

    # Out-of-band edit: the cached snapshot is still served.
    row = await db_session.get(AttendanceStatus, before[0].id)
    row.name = "Here"
    await db_session.commit()
    assert (await registry.load_statuses(db_session))[0].name == "Present"

    registry.invalidate()
    assert (await registry.load_statuses(db_session))[0].name == "Here"


@pytest.mark.asyncio
async def test_retired_status_still_resolves_by_id(db_session: AsyncSession, school: School) -> None:
    excused = await registry.get_status_by_code(db_session, "E")
    await registry.update_status(db_session, excused.id, AttendanceStatusUpdate(is_active=False))

    assert "E" not in {s.code for s in await registry.load_statuses(db_session)}
    resolved = await registry.get_status_by_id(db_session, excused.id)
    assert resolved.code == "E"
    assert resolved.is_active is False


@pytest.mark.asyncio
async def test_allowed_statuses_per_role(db_session: AsyncSession, school: School) -> None:
    teacher = school.users["teacher"]
    allowed = await registry.load_allowed_statuses(db_session, teacher.role_id, "create")
    assert {s.code for s in allowed} == {"P", "I", "TI"}

    await registry.set_role_permission(
        db_session, RoleStatusPermissionSet(role_id=teacher.role_id, status_code="e", can_create=True)
    )
    allowed = await registry.load_allowed_statuses(db_session, teacher.role_id, "create")
    assert {s.code for s in allowed} == {"P", "I", "TI", "E"}

    modify = await registry.load_allowed_statuses(db_session, teacher.role_id, "modify")
    assert "E" not in {s.code for s in modify}

    assert await registry.load_allowed_statuses(db_session, None, "create") == []


@pytest.mark.asyncio
async def test_create_status_uppercases_and_rejects_duplicates(db_session: AsyncSession, school: School) -> None:
    created = await registry.create_status(
        db_session, AttendanceStatusCreate(code="rm", name="Remote", order=7)
    )
    assert created.code == "RM"
    assert "RM" in {s.code for s in await registry.load_statuses(db_session)}

    with pytest.raises(ConflictError):
        await registry.create_status(db_session, AttendanceStatusCreate(code="RM", name="Again"))


@pytest.mark.asyncio
async def test_save_config_replaces_active(db_session: AsyncSession, school: School) -> None:
    saved = await registry.save_config(
        db_session,
        AttendanceConfigSave(
            name="Strict",
            risk_threshold_percentage=90,
            consecutive_absence_alert=2,
            justified_status_map={"I": "IJ"},
        ),
    )
    assert saved.is_active is True

    active = await registry.load_active_config(db_session)
    assert active.id == saved.id
    assert active.risk_threshold_percentage == 90
    assert active.justified_status_map == {"I": "IJ"}


@pytest.mark.asyncio
async def test_save_config_rejects_unknown_codes(db_session: AsyncSession, school: School) -> None:
    with pytest.raises(ValidationError):
        await registry.save_config(db_session, AttendanceConfigSave(notes_required_for_states=["XX"]))


def test_config_schema_checks_time_and_window() -> None:
    with pytest.raises(SchemaValidationError):
        AttendanceConfigSave(late_threshold_time="8:30am")
    with pytest.raises(SchemaValidationError):
        AttendanceConfigSave(justification_required_after=10, max_justification_days=5)


@pytest.mark.asyncio
async def test_allowed_endpoint_by_role(client: AsyncClient, school: School) -> None:
    response = await client.get("/api/v1/attendance-statuses/allowed", headers=auth_headers(school.users["teacher"]))
    assert response.status_code == 200
    assert {s["code"] for s in response.json()} == {"P", "I", "TI"}

    response = await client.get("/api/v1/attendance-statuses/allowed", headers=auth_headers(school.users["admin"]))
    assert len(response.json()) == 6


@pytest.mark.asyncio
async def test_config_admin_endpoints(client: AsyncClient, school: School) -> None:
    response = await client.put(
        "/api/v1/attendance-statuses/config",
        json={"risk_threshold_percentage": 75},
        headers=auth_headers(school.users["teacher"]),
    )
    assert response.status_code == 403

    response = await client.put(
        "/api/v1/attendance-statuses/config",
        json={"risk_threshold_percentage": 75},
        headers=auth_headers(school.users["admin"]),
    )
    assert response.status_code == 200

    response = await client.get("/api/v1/attendance-statuses/config", headers=auth_headers(school.users["teacher"]))
    assert response.json()["risk_threshold_percentage"] == 75
