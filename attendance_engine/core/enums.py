from enum import Enum


class WeekType(str, Enum):
    REGULAR = "REGULAR"
    EVALUATION = "EVALUATION"
    BREAK = "BREAK"


class DateClassification(str, Enum):
    REGULAR = "REGULAR"
    HOLIDAY = "HOLIDAY"
    BREAK = "BREAK"
    OUT_OF_RANGE = "OUT_OF_RANGE"


class EnrollmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    GRADUATED = "GRADUATED"
    TRANSFERRED = "TRANSFERRED"


class JustificationStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class WriteMode(str, Enum):
    UPSERT = "UPSERT"
    CREATE_ONLY = "CREATE_ONLY"


class LedgerOutcome(str, Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    UNCHANGED = "UNCHANGED"
    SKIPPED = "SKIPPED"


class ChangeType(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    JUSTIFICATION = "JUSTIFICATION"
