from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field

from .common import utcnow


class Sex(str, Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"
    OTHER = "OTHER"


class VerificationStatus(str, Enum):
    """
    Admin verification state of an enrolled voter.
    UNVERIFIED is the initial state; admins toggle between the two.
    """

    UNVERIFIED = "UNVERIFIED"
    VERIFIED = "VERIFIED"


# Elector sub-record: all populated when is_registered_elector, else all empty.
ELECTOR_FIELDS = (
    "assembly_number",
    "assembly_name",
    "polling_station_number",
    "epic_number",
)

class Voter(SQLModel, table=True):
    """
    Canonical voter record (root aggregate).

    Notes:
    - identity_number is the 12-digit national id; unique, never reassigned,
      and immutable once set (the store rejects patches that change it).
    - verified_by / verified_at are both NULL or both set, and set exactly
      when verification_status is VERIFIED.
    - verified_by holds the actor id supplied by the auth middleware (usually
      an admins.id). It is a weak reference so audit history survives admin
      removal.
    - updated_at doubles as the search projection version.
    """

    __tablename__ = "voters"

    id: Optional[int] = Field(default=None, primary_key=True)

    identity_number: str = Field(index=True, unique=True, max_length=12)

    full_name: str = Field(index=True)
    sex: Sex
    guardian_spouse: Optional[str] = Field(default=None)
    qualification: Optional[str] = Field(default=None)
    occupation: Optional[str] = Field(default=None)

    contact: str = Field(index=True, max_length=15)
    email: Optional[str] = Field(default=None)

    date_of_birth: date
    age: int

    # ---- Address ----
    house_number: str
    street: str
    area: str
    city: str = Field(index=True)
    state: str
    pincode: str = Field(max_length=10)

    # ---- Elector sub-record ----
    is_registered_elector: bool = Field(default=False)
    assembly_number: Optional[str] = Field(default=None, index=True)
    assembly_name: Optional[str] = Field(default=None)
    polling_station_number: Optional[str] = Field(default=None, index=True)
    epic_number: Optional[str] = Field(default=None)

    # ---- Education sub-record ----
    university: Optional[str] = Field(default=None)
    graduation_year: Optional[int] = Field(default=None)
    graduation_doc_type: Optional[str] = Field(default=None)

    # ---- Verification ----
    verification_status: VerificationStatus = Field(default=VerificationStatus.UNVERIFIED, index=True)
    verified_by: Optional[str] = Field(default=None, index=True)
    verified_at: Optional[datetime] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow, index=True)

    @property
    def is_verified(self) -> bool:
        return self.verification_status == VerificationStatus.VERIFIED

    def summary(self) -> dict:
        """Small, non-sensitive view used by notifications and reference listings."""
        return {"id": self.id, "full_name": self.full_name, "contact": self.contact}
