from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import Column
from sqlalchemy.types import JSON
from sqlmodel import SQLModel, Field

from .common import utcnow


class AuditEntity(str, Enum):
    VOTER = "VOTER"
    REFERENCE = "REFERENCE"
    ADMIN = "ADMIN"


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    DEACTIVATE = "DEACTIVATE"
    VERIFY = "VERIFY"
    UNVERIFY = "UNVERIFY"
    VERIFY_NOOP = "VERIFY_NOOP"
    REFERENCES_ADDED = "REFERENCES_ADDED"
    REFERENCE_STATUS = "REFERENCE_STATUS"
    NOTIFICATION_SENT = "NOTIFICATION_SENT"
    NOTIFICATION_FAILED = "NOTIFICATION_FAILED"


class AuditLogEntry(SQLModel, table=True):
    """
    Append-only action ledger. Rows are inserted in the same transaction as the
    change they describe and are never updated or deleted.

    entity_id is a plain string (no foreign key) so entries outlive the voter
    or reference they describe.
    """

    __tablename__ = "audit_logs"

    id: Optional[int] = Field(default=None, primary_key=True)

    entity_type: AuditEntity = Field(index=True)
    entity_id: str = Field(index=True)
    action: AuditAction = Field(index=True)

    old_values: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    new_values: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    actor_id: str = Field(index=True)
    actor_role: str = Field(default="system")
    actor_ip: Optional[str] = Field(default=None, max_length=45)
    user_agent: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow, index=True)
