from __future__ import annotations

from datetime import date
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field as PydField, field_validator

from .models.admin import AdminRole
from .models.voter import Sex


# -----------------------------
# Schemas (do NOT use DB models as input)
#
# These only pin down shape and types. Format rules (identity number,
# contact, elector all-or-none, ...) live in validation.py so both the
# API and the store get the same per-field error list.
# -----------------------------


def _blank_to_none(v: Any) -> Any:
    if isinstance(v, str) and not v.strip():
        return None
    return v


class VoterCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    identity_number: str
    full_name: str
    sex: Sex
    guardian_spouse: Optional[str] = None
    qualification: Optional[str] = None
    occupation: Optional[str] = None

    contact: str
    email: Optional[EmailStr] = None
    date_of_birth: date

    house_number: str
    street: str
    area: str
    city: str = "PUNE"
    state: str
    pincode: str

    is_registered_elector: bool = False
    assembly_number: Optional[str] = None
    assembly_name: Optional[str] = None
    polling_station_number: Optional[str] = None
    epic_number: Optional[str] = None

    university: Optional[str] = None
    graduation_year: Optional[int] = None
    graduation_doc_type: Optional[str] = None

    @field_validator(
        "email",
        "guardian_spouse",
        "qualification",
        "occupation",
        "assembly_number",
        "assembly_name",
        "polling_station_number",
        "epic_number",
        "university",
        "graduation_doc_type",
        mode="before",
    )
    @classmethod
    def _optional_blank(cls, v: Any) -> Any:
        return _blank_to_none(v)


class VoterPatch(BaseModel):
    """
    Partial update. Any field omitted is left unchanged.

    identity_number may be sent (forms often echo it back) but must match the
    stored value.
    """

    model_config = ConfigDict(extra="forbid")

    identity_number: Optional[str] = None
    full_name: Optional[str] = None
    sex: Optional[Sex] = None
    guardian_spouse: Optional[str] = None
    qualification: Optional[str] = None
    occupation: Optional[str] = None

    contact: Optional[str] = None
    email: Optional[EmailStr] = None
    date_of_birth: Optional[date] = None

    house_number: Optional[str] = None
    street: Optional[str] = None
    area: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None

    is_registered_elector: Optional[bool] = None
    assembly_number: Optional[str] = None
    assembly_name: Optional[str] = None
    polling_station_number: Optional[str] = None
    epic_number: Optional[str] = None

    university: Optional[str] = None
    graduation_year: Optional[int] = None
    graduation_doc_type: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def _email_blank(cls, v: Any) -> Any:
        return _blank_to_none(v)


class ReferenceIn(BaseModel):
    reference_name: str = ""
    reference_contact: str = ""


class ReferencesCreate(BaseModel):
    references: List[ReferenceIn] = PydField(..., min_length=1, max_length=10)


class VerificationIn(BaseModel):
    verified: bool


class ReferenceStatusIn(BaseModel):
    # Plain str so unknown values reach the state machine (InvalidTransition)
    status: str


class BulkReferenceStatusItem(BaseModel):
    reference_id: int
    status: str


class BulkReferenceStatusIn(BaseModel):
    items: List[BulkReferenceStatusItem] = PydField(..., min_length=1, max_length=500)


class IdentityCheckIn(BaseModel):
    identity_number: str


class ManagerCreate(BaseModel):
    """Back-office account. Passwords are handled by the auth service."""

    model_config = ConfigDict(extra="forbid")

    username: str
    email: EmailStr
    full_name: str
    role: AdminRole = AdminRole.MANAGER


class ManagerPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: Optional[EmailStr] = None
    full_name: Optional[str] = None
    role: Optional[AdminRole] = None
    is_active: Optional[bool] = None
