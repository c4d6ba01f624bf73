from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel

from attendance_engine.api.v1.calendar.schemas import BimesterResponse, SchoolCycleResponse


class CourseSummary(BaseModel):
    id: UUID
    name: str
    code: Optional[str] = None


class TeacherSummary(BaseModel):
    id: UUID
    full_name: str
    email: Optional[str] = None


class CourseAssignmentNode(BaseModel):
    id: UUID
    section_id: UUID
    is_active: bool
    course: CourseSummary
    teacher: TeacherSummary


class SectionNode(BaseModel):
    id: UUID
    grade_id: UUID
    name: str
    capacity: int
    is_active: bool
    homeroom_teacher: Optional[TeacherSummary] = None
    course_assignments: List[CourseAssignmentNode] = []


class GradeNode(BaseModel):
    id: UUID
    name: str
    level: Optional[str] = None
    display_order: Optional[int] = None
    is_active: bool


class CascadeTreeResponse(BaseModel):
    """
    Cycle -> grades -> sections -> course assignments.

    grade_sections maps grade id to its sections; a grade with no sections maps to [].
    """

    cycle: SchoolCycleResponse
    bimester: Optional[BimesterResponse] = None
    grades: List[GradeNode]
    grade_sections: Dict[UUID, List[SectionNode]]
