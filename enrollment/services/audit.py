from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlmodel import Session, select

from ..models.audit_log import AuditAction, AuditEntity, AuditLogEntry
from ..validation import mask_contact, mask_identity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """
    Who performed an action, as supplied by the auth middleware.

    role is one of: admin, manager, voter, system.
    """

    id: str
    role: str = "system"
    ip: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def system(cls, name: str = "system") -> "Actor":
        return cls(id=name, role="system")

    @property
    def is_admin(self) -> bool:
        return self.role in ("admin", "manager")


# Fields masked wherever a snapshot leaves the canonical row
_MASKERS = {
    "identity_number": mask_identity,
    "contact": mask_contact,
    "reference_contact": mask_contact,
}


def _json_safe(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


def sanitize_snapshot(values: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    JSON-safe copy of a before/after snapshot with identity numbers and phone
    numbers masked.
    """
    if values is None:
        return None
    out: Dict[str, Any] = {}
    for key, value in values.items():
        masker = _MASKERS.get(key)
        if masker and isinstance(value, str):
            value = masker(value)
        out[key] = _json_safe(value)
    return out


class AuditLogWriter:
    """
    Appends immutable audit rows.

    append() only adds the row to the caller's session: it never commits or
    flushes on its own, so the entry lands in the same transaction as the
    change it describes and rolls back with it.

    There is no update or delete API.
    """

    def append(
        self,
        session: Session,
        *,
        entity_type: AuditEntity,
        entity_id: Any,
        action: AuditAction,
        actor: Actor,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            old_values=sanitize_snapshot(old_values),
            new_values=sanitize_snapshot(new_values),
            actor_id=actor.id,
            actor_role=actor.role,
            actor_ip=actor.ip,
            user_agent=actor.user_agent,
        )
        session.add(entry)
        logger.debug(
            "audit append entity=%s id=%s action=%s actor=%s",
            entity_type.value,
            entry.entity_id,
            action.value,
            actor.id,
        )
        return entry


def list_entries(
    session: Session,
    *,
    entity_type: Optional[AuditEntity] = None,
    entity_id: Optional[str] = None,
    action: Optional[AuditAction] = None,
    limit: int = 200,
    offset: int = 0,
) -> List[AuditLogEntry]:
    limit = max(1, min(int(limit), 1000))
    offset = max(0, int(offset))

    q = select(AuditLogEntry)
    if entity_type is not None:
        q = q.where(AuditLogEntry.entity_type == entity_type)
    if entity_id is not None:
        q = q.where(AuditLogEntry.entity_id == str(entity_id))
    if action is not None:
        q = q.where(AuditLogEntry.action == action)
    q = q.order_by(AuditLogEntry.id.desc()).offset(offset).limit(limit)
    return list(session.exec(q).all())
