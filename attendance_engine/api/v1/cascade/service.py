"""Cascade resolver: academic tree of a cycle from grades down to course assignments."""

from collections import defaultdict
from typing import DefaultDict, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from attendance_engine.api.v1.calendar import service as calendar_service
from attendance_engine.auth.models import User
from attendance_engine.core.exceptions import ValidationError
from attendance_engine.core.models import (
    Bimester,
    CourseAssignment,
    Grade,
    GradeCycle,
    SchoolCycle,
    Section,
)

from .schemas import (
    CascadeTreeResponse,
    CourseAssignmentNode,
    CourseSummary,
    GradeNode,
    SectionNode,
    TeacherSummary,
)


def _teacher_summary(user: Optional[User]) -> Optional[TeacherSummary]:
    if user is None:
        return None
    return TeacherSummary(id=user.id, full_name=user.full_name, email=user.email)


def _assignment_node(ca: CourseAssignment) -> CourseAssignmentNode:
    return CourseAssignmentNode(
        id=ca.id,
        section_id=ca.section_id,
        is_active=ca.is_active,
        course=CourseSummary(id=ca.course.id, name=ca.course.name, code=ca.course.code),
        teacher=_teacher_summary(ca.teacher),
    )


async def _resolve_cycle(db: AsyncSession, cycle_id: Optional[UUID]) -> SchoolCycle:
    if cycle_id is None:
        return await calendar_service.require_active_cycle(db)
    return await calendar_service.get_cycle_or_error(db, cycle_id)


async def _resolve_bimester(db: AsyncSession, cycle: SchoolCycle, bimester_id: Optional[UUID]) -> Optional[Bimester]:
    if bimester_id is None:
        return None
    bimester = await db.get(Bimester, bimester_id)
    if bimester is None or bimester.cycle_id != cycle.id:
        raise ValidationError(f"Bimester {bimester_id} does not belong to cycle '{cycle.name}'")
    return bimester


async def resolve_tree(
    db: AsyncSession,
    cycle_id: Optional[UUID] = None,
    bimester_id: Optional[UUID] = None,
    include_inactive: bool = False,
) -> CascadeTreeResponse:
    """
    Build the cycle's academic tree.

    Without cycle_id the active cycle is used. Inactive grades, sections and
    course assignments are left out unless include_inactive is set. Missing
    branches come back as empty lists.
    """
    cycle = await _resolve_cycle(db, cycle_id)
    bimester = await _resolve_bimester(db, cycle, bimester_id)
    bimester_resp = None
    if bimester is not None:
        bimester_resp = calendar_service.bimester_to_response(bimester, await calendar_service.count_weeks(db, bimester.id))

    grade_stmt = (
        select(Grade)
        .join(GradeCycle, GradeCycle.grade_id == Grade.id)
        .where(GradeCycle.cycle_id == cycle.id)
        .order_by(Grade.display_order, Grade.name)
    )
    if not include_inactive:
        grade_stmt = grade_stmt.where(Grade.is_active.is_(True))
    grades = list((await db.execute(grade_stmt)).scalars().all())
    grade_ids = [g.id for g in grades]

    grade_sections: Dict[UUID, List[SectionNode]] = {g.id: [] for g in grades}
    if not grade_ids:
        return CascadeTreeResponse(
            cycle=calendar_service.cycle_to_response(cycle),
            bimester=bimester_resp,
            grades=[],
            grade_sections={},
        )

    section_stmt = (
        select(Section)
        .options(selectinload(Section.homeroom_teacher))
        .where(Section.grade_id.in_(grade_ids))
        .order_by(Section.name)
    )
    if not include_inactive:
        section_stmt = section_stmt.where(Section.is_active.is_(True))
    sections = list((await db.execute(section_stmt)).scalars().all())

    assignments_by_section: DefaultDict[UUID, List[CourseAssignmentNode]] = defaultdict(list)
    if sections:
        ca_stmt = (
            select(CourseAssignment)
            .options(selectinload(CourseAssignment.course), selectinload(CourseAssignment.teacher))
            .where(CourseAssignment.section_id.in_([s.id for s in sections]))
        )
        if not include_inactive:
            ca_stmt = ca_stmt.where(CourseAssignment.is_active.is_(True))
        for ca in (await db.execute(ca_stmt)).scalars().all():
            assignments_by_section[ca.section_id].append(_assignment_node(ca))

    for s in sections:
        nodes = sorted(assignments_by_section.get(s.id, []), key=lambda n: n.course.name)
        grade_sections[s.grade_id].append(
            SectionNode(
                id=s.id,
                grade_id=s.grade_id,
                name=s.name,
                capacity=s.capacity,
                is_active=s.is_active,
                homeroom_teacher=_teacher_summary(s.homeroom_teacher),
                course_assignments=nodes,
            )
        )

    return CascadeTreeResponse(
        cycle=calendar_service.cycle_to_response(cycle),
        bimester=bimester_resp,
        grades=[
            GradeNode(
                id=g.id,
                name=g.name,
                level=g.level,
                display_order=g.display_order,
                is_active=g.is_active,
            )
            for g in grades
        ],
        grade_sections=grade_sections,
    )
