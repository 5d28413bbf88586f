# enrollment/models/__init__.py
# Central import surface for SQLModel table registration.

from .admin import Admin, AdminRole
from .voter import Voter, Sex, VerificationStatus, ELECTOR_FIELDS
from .reference import Reference, ReferenceStatus
from .audit_log import AuditLogEntry, AuditEntity, AuditAction

__all__ = [
    "Admin",
    "AdminRole",
    "Voter",
    "Sex",
    "VerificationStatus",
    "ELECTOR_FIELDS",
    "Reference",
    "ReferenceStatus",
    "AuditLogEntry",
    "AuditEntity",
    "AuditAction",
]
