from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field

from .common import utcnow


class AdminRole(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"


class Admin(SQLModel, table=True):
    """
    Back-office operator (admin or manager). Credentials live with the auth
    service; this row carries the profile that verification and audit
    entries point at. Accounts are deactivated, never deleted.
    """

    __tablename__ = "admins"

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    email: str = Field(index=True, unique=True)
    full_name: str
    role: AdminRole = Field(default=AdminRole.MANAGER, index=True)
    is_active: bool = Field(default=True, index=True)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
