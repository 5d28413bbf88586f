from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field

from .common import utcnow


class ReferenceStatus(str, Enum):
    """
    Normal admin flow is PENDING -> CONTACTED -> APPLIED.
    Admins may override to any state; see services.state_machine.
    """

    PENDING = "PENDING"
    CONTACTED = "CONTACTED"
    APPLIED = "APPLIED"


class Reference(SQLModel, table=True):
    """
    A person the voter nominated as a reference. Owned by exactly one voter.

    notification_sent is monotonic: once True it is never reset, even if an
    admin walks the status back to PENDING and forward again.
    """

    __tablename__ = "voter_references"

    id: Optional[int] = Field(default=None, primary_key=True)
    voter_id: int = Field(foreign_key="voters.id", index=True, ondelete="CASCADE")

    reference_name: str
    reference_contact: str = Field(index=True, max_length=15)

    status: ReferenceStatus = Field(default=ReferenceStatus.PENDING, index=True)

    notification_sent: bool = Field(default=False, index=True)
    notification_sent_at: Optional[datetime] = Field(default=None)
    # set while one worker is talking to the channel; cleared on failure
    notification_claimed_at: Optional[datetime] = Field(default=None)
    status_updated_at: Optional[datetime] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
