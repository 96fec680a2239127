import enum
from typing import Dict

from sqlalchemy import Enum


def enum_column_type(enum_cls) -> Enum:
    """Type SQLAlchemy stockant la valeur (et non le nom) de l'enum en VARCHAR"""
    return Enum(
        enum_cls,
        native_enum=False,
        length=50,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


class SystemType(str, enum.Enum):
    ACADEMIC_MANAGEMENT = "academic_management"
    FINANCIAL = "financial"
    LIBRARY = "library"
    ATTENDANCE = "attendance"
    GRADING = "grading"
    LMS = "lms"
    ERP = "erp"
    COMMUNICATION = "communication"
    CRM = "crm"
    ACCOUNTING = "accounting"
    OTHER = "other"


class SystemStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"
    CONFIGURING = "configuring"
    INACTIVE = "inactive"


class AuthType(str, enum.Enum):
    APIKEY = "apikey"
    BEARER = "bearer"
    BASIC = "basic"
    NONE = "none"


class EndpointStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"
    MAINTENANCE = "maintenance"


class SyncModule(str, enum.Enum):
    STUDENTS = "students"
    COURSES = "courses"
    ENROLLMENTS = "enrollments"
    PAYMENTS = "payments"
    LEADS = "leads"


class EntityType(str, enum.Enum):
    STUDENT = "student"
    COURSE = "course"
    ENROLLMENT = "enrollment"
    PAYMENT = "payment"
    LEAD = "lead"


MODULE_ENTITIES: Dict[SyncModule, EntityType] = {
    SyncModule.STUDENTS: EntityType.STUDENT,
    SyncModule.COURSES: EntityType.COURSE,
    SyncModule.ENROLLMENTS: EntityType.ENROLLMENT,
    SyncModule.PAYMENTS: EntityType.PAYMENT,
    SyncModule.LEADS: EntityType.LEAD,
}

ENTITY_MODULES: Dict[EntityType, SyncModule] = {entity: module for module, entity in MODULE_ENTITIES.items()}


def module_for(value: str) -> SyncModule:
    """Accepte une clé de module ("students") ou un type d'entité ("student")"""
    try:
        return SyncModule(value)
    except ValueError:
        return ENTITY_MODULES[EntityType(value)]


class SyncOperation(str, enum.Enum):
    IMPORT = "import"
    EXPORT = "export"
    UPDATE = "update"
    DELETE = "delete"


class SyncTaskStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncDirection(str, enum.Enum):
    IMPORT = "import"
    EXPORT = "export"
    BIDIRECTIONAL = "bidirectional"


class MappingDirection(str, enum.Enum):
    IMPORT = "import"  # externe -> interne
    EXPORT = "export"  # interne -> externe


class SyncHistoryStatus(str, enum.Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class WebhookStatus(str, enum.Enum):
    RECEIVED = "received"
    PROCESSED = "processed"
    FAILED = "failed"
