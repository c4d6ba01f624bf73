from attendance_engine.auth.models import Role, User
from attendance_engine.core.models.school_cycle import SchoolCycle
from attendance_engine.core.models.bimester import AcademicWeek, Bimester, Holiday
from attendance_engine.core.models.grade import Grade, GradeCycle
from attendance_engine.core.models.section_model import Section
from attendance_engine.core.models.course_assignment import Course, CourseAssignment
from attendance_engine.core.models.enrollment import Enrollment, EnrollmentStatusChange, Student
from attendance_engine.core.models.attendance_status import (
    AttendanceConfig,
    AttendanceStatus,
    RoleAttendancePermission,
)
from attendance_engine.core.models.justification import StudentJustification
from attendance_engine.core.models.student_attendance import StudentAttendance, StudentAttendanceChange
from attendance_engine.core.models.attendance_report import StudentAttendanceReport

__all__ = [
    "AcademicWeek",
    "AttendanceConfig",
    "AttendanceStatus",
    "Bimester",
    "Course",
    "CourseAssignment",
    "Enrollment",
    "EnrollmentStatusChange",
    "Grade",
    "GradeCycle",
    "Holiday",
    "Role",
    "RoleAttendancePermission",
    "SchoolCycle",
    "Section",
    "Student",
    "StudentAttendance",
    "StudentAttendanceChange",
    "StudentAttendanceReport",
    "StudentJustification",
    "User",
]
