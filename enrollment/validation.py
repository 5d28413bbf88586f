"""
Structural validation for voter, reference and manager input.

Every validator returns a tagged result instead of raising:

    Ok(value)           -> input is acceptable, value is the cleaned form
    Err([FieldError])   -> one entry per offending field with a reason

Callers decide what to do with an Err; the store turns it into
ValidationFailed, which the API renders with the field-level details.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Generic, Iterable, List, Mapping, Optional, Tuple, TypeVar, Union

from pydantic import BaseModel, ValidationError

from .models.voter import ELECTOR_FIELDS, Sex
from .schemas import ManagerCreate, ManagerPatch, ReferenceIn, VoterCreate, VoterPatch

T = TypeVar("T")


@dataclass(frozen=True)
class FieldError:
    field: str
    reason: str

    def as_dict(self) -> Dict[str, str]:
        return {"field": self.field, "reason": self.reason}


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class Err:
    errors: List[FieldError]
    ok: bool = field(default=False, init=False)

    def as_dicts(self) -> List[Dict[str, str]]:
        return [e.as_dict() for e in self.errors]


Result = Union[Ok[T], Err]


# -----------------------------
# Formats
# -----------------------------

IDENTITY_RE = re.compile(r"^\d{12}$")
CONTACT_RE = re.compile(r"^[6-9]\d{9}$")
PERSON_NAME_RE = re.compile(r"^[a-zA-Z\s.'-]+$")
PINCODE_RE = re.compile(r"^\d{6}$")
ASSEMBLY_RE = re.compile(r"^\d{1,3}$")
POLLING_STATION_RE = re.compile(r"^\d{1,4}$")
EPIC_RE = re.compile(r"^[A-Z]{3}\d{7}$")
USERNAME_RE = re.compile(r"^[a-zA-Z0-9_]{3,50}$")

MIN_AGE = 18
MAX_AGE = 120
MIN_GRADUATION_YEAR = 1950

# (max length, required) for plain text columns
_TEXT_LIMITS: Dict[str, Tuple[int, bool]] = {
    "house_number": (50, True),
    "street": (255, True),
    "area": (255, True),
    "city": (100, True),
    "state": (100, True),
    "qualification": (255, False),
    "occupation": (255, False),
    "assembly_name": (255, False),
    "university": (255, False),
    "graduation_doc_type": (100, False),
}

_NULLABLE = {
    "guardian_spouse",
    "qualification",
    "occupation",
    "email",
    "assembly_number",
    "assembly_name",
    "polling_station_number",
    "epic_number",
    "university",
    "graduation_year",
    "graduation_doc_type",
}


def clean_identity_number(raw: str) -> str:
    return re.sub(r"[\s-]", "", raw or "")


def clean_contact(raw: str) -> str:
    """Strip spaces/hyphens/plus and a leading 91 country code."""
    s = re.sub(r"[\s\-+]", "", raw or "")
    if s.startswith("91") and len(s) == 12:
        s = s[2:]
    return s


def mask_identity(value: Optional[str]) -> Optional[str]:
    if not value:
        return value
    return value[:4] + "****" + value[8:]


def mask_contact(value: Optional[str]) -> Optional[str]:
    if not value:
        return value
    return value[:4] + "****" + value[8:]


def calculate_age(dob: date, today: Optional[date] = None) -> int:
    today = today or date.today()
    age = today.year - dob.year
    if (today.month, today.day) < (dob.month, dob.day):
        age -= 1
    return age


def _pydantic_errors(exc: ValidationError) -> List[FieldError]:
    out: List[FieldError] = []
    for e in exc.errors():
        loc = ".".join(str(p) for p in e.get("loc", ())) or "__root__"
        out.append(FieldError(loc, str(e.get("msg", "invalid"))))
    return out


def _parse(model: type[BaseModel], data: Any) -> Result:
    if isinstance(data, model):
        return Ok(data)
    try:
        return Ok(model.model_validate(data))
    except ValidationError as exc:
        return Err(_pydantic_errors(exc))


# -----------------------------
# Field rules
# -----------------------------

def _check_person_name(name: str, value: str, errors: List[FieldError]) -> str:
    v = value.strip()
    if len(v) < 2:
        errors.append(FieldError(name, "must be at least 2 characters"))
    elif len(v) > 255:
        errors.append(FieldError(name, "cannot exceed 255 characters"))
    elif not PERSON_NAME_RE.match(v):
        errors.append(FieldError(name, "can only contain letters, spaces, dots, apostrophes, and hyphens"))
    return v


def _clean_values(values: Dict[str, Any], today: date) -> Tuple[Dict[str, Any], List[FieldError]]:
    """
    Apply per-field format rules to whichever fields are present.

    Works for both full creates and partial patches; missing keys are skipped.
    """
    errors: List[FieldError] = []
    out: Dict[str, Any] = {}

    for key, value in values.items():
        if isinstance(value, str) and not value.strip() and key in _NULLABLE:
            value = None

        if value is None:
            if key in _NULLABLE:
                out[key] = None
            else:
                errors.append(FieldError(key, "is required"))
            continue

        if key == "identity_number":
            v = clean_identity_number(value)
            if not IDENTITY_RE.match(v):
                errors.append(FieldError(key, "must be exactly 12 digits"))
            out[key] = v
        elif key == "full_name":
            out[key] = _check_person_name(key, value, errors)
        elif key == "guardian_spouse":
            out[key] = _check_person_name(key, value, errors)
        elif key == "contact":
            v = clean_contact(value)
            if not CONTACT_RE.match(v):
                errors.append(FieldError(key, "must be a valid 10-digit mobile number"))
            out[key] = v
        elif key == "email":
            out[key] = str(value).strip().lower()
        elif key == "date_of_birth":
            age = calculate_age(value, today)
            if age < MIN_AGE:
                errors.append(FieldError(key, f"must be at least {MIN_AGE} years old to register"))
            elif age > MAX_AGE:
                errors.append(FieldError(key, f"age cannot exceed {MAX_AGE} years"))
            out[key] = value
            out["age"] = age
        elif key == "pincode":
            v = str(value).strip()
            if not PINCODE_RE.match(v):
                errors.append(FieldError(key, "must be exactly 6 digits"))
            out[key] = v
        elif key == "assembly_number":
            v = str(value).strip()
            if not ASSEMBLY_RE.match(v):
                errors.append(FieldError(key, "must be 1-3 digits"))
            out[key] = v
        elif key == "polling_station_number":
            v = str(value).strip()
            if not POLLING_STATION_RE.match(v):
                errors.append(FieldError(key, "must be 1-4 digits"))
            out[key] = v
        elif key == "epic_number":
            v = str(value).strip().upper()
            if not EPIC_RE.match(v):
                errors.append(FieldError(key, "must be 3 letters followed by 7 digits"))
            out[key] = v
        elif key == "graduation_year":
            if not (MIN_GRADUATION_YEAR <= int(value) <= today.year):
                errors.append(FieldError(key, f"must be between {MIN_GRADUATION_YEAR} and {today.year}"))
            out[key] = int(value)
        elif key in _TEXT_LIMITS:
            limit, required = _TEXT_LIMITS[key]
            v = str(value).strip()
            if required and not v:
                errors.append(FieldError(key, "is required"))
            elif len(v) > limit:
                errors.append(FieldError(key, f"cannot exceed {limit} characters"))
            out[key] = v or None
        elif key == "sex":
            out[key] = Sex(value)
        else:
            out[key] = value

    return out, errors


def check_elector_invariant(record: Mapping[str, Any]) -> List[FieldError]:
    """
    Elector sub-fields are all populated for registered electors and all empty
    otherwise. Never partially populated.
    """
    errors: List[FieldError] = []
    registered = bool(record.get("is_registered_elector"))
    for name in ELECTOR_FIELDS:
        present = record.get(name) not in (None, "")
        if registered and not present:
            errors.append(FieldError(name, "is required for registered electors"))
        elif not registered and present:
            errors.append(FieldError(name, "must be empty unless is_registered_elector is true"))
    return errors


# -----------------------------
# Public validators
# -----------------------------

def validate_voter_create(data: Any, *, today: Optional[date] = None) -> Result:
    """
    Validate an enrollment payload. Ok value is a dict of Voter column values.
    """
    parsed = _parse(VoterCreate, data)
    if isinstance(parsed, Err):
        return parsed

    today = today or date.today()
    values, errors = _clean_values(parsed.value.model_dump(), today)
    errors.extend(check_elector_invariant(values))
    if errors:
        return Err(errors)
    return Ok(values)


def validate_voter_patch(data: Any, *, today: Optional[date] = None) -> Result:
    """
    Validate a partial update. Ok value holds only the fields the caller set.
    The elector invariant is checked later against the merged record.
    """
    parsed = _parse(VoterPatch, data)
    if isinstance(parsed, Err):
        return parsed

    today = today or date.today()
    values, errors = _clean_values(parsed.value.model_dump(exclude_unset=True), today)
    if errors:
        return Err(errors)
    return Ok(values)


def validate_references(
    refs: Iterable[Any],
    *,
    voter_contact: str,
) -> Result:
    """
    Validate a batch of references for one voter.

    Ok value is a list of (reference_name, reference_contact) tuples.
    """
    errors: List[FieldError] = []
    cleaned: List[Tuple[str, str]] = []
    seen: set = set()
    own = clean_contact(voter_contact)

    for i, raw in enumerate(refs):
        prefix = f"references[{i}]"
        parsed = _parse(ReferenceIn, raw)
        if isinstance(parsed, Err):
            errors.extend(FieldError(f"{prefix}.{e.field}", e.reason) for e in parsed.errors)
            continue
        ref = parsed.value

        name = ref.reference_name.strip()
        if not name:
            errors.append(FieldError(f"{prefix}.reference_name", "is required"))
            continue
        if len(name) > 255:
            errors.append(FieldError(f"{prefix}.reference_name", "cannot exceed 255 characters"))
            continue

        if not ref.reference_contact.strip():
            errors.append(FieldError(f"{prefix}.reference_contact", "is required"))
            continue
        contact = clean_contact(ref.reference_contact)
        if not CONTACT_RE.match(contact):
            errors.append(FieldError(f"{prefix}.reference_contact", "invalid contact number format"))
            continue
        if contact == own:
            errors.append(FieldError(f"{prefix}.reference_contact", "cannot use your own contact number as reference"))
            continue
        if contact in seen:
            errors.append(FieldError(f"{prefix}.reference_contact", "duplicate reference contact"))
            continue

        seen.add(contact)
        cleaned.append((name, contact))

    if errors:
        return Err(errors)
    if not cleaned:
        return Err([FieldError("references", "at least one valid reference is required")])
    return Ok(cleaned)


def _clean_manager_values(values: Dict[str, Any]) -> Tuple[Dict[str, Any], List[FieldError]]:
    errors: List[FieldError] = []
    # None means "leave as is" on patches; every admin column is NOT NULL
    out = {k: v for k, v in values.items() if v is not None}

    if out.get("username") is not None:
        out["username"] = out["username"].strip()
        if not USERNAME_RE.match(out["username"]):
            errors.append(
                FieldError("username", "must be 3-50 characters: letters, numbers and underscores only")
            )
    if out.get("email") is not None:
        out["email"] = str(out["email"]).strip().lower()
        if len(out["email"]) > 255:
            errors.append(FieldError("email", "cannot exceed 255 characters"))
    if out.get("full_name") is not None:
        out["full_name"] = out["full_name"].strip()
        if not 2 <= len(out["full_name"]) <= 100:
            errors.append(FieldError("full_name", "must be between 2 and 100 characters"))
    return out, errors


def validate_manager_create(data: Any) -> Result:
    """Ok value is a dict of Admin column values."""
    parsed = _parse(ManagerCreate, data)
    if isinstance(parsed, Err):
        return parsed
    values, errors = _clean_manager_values(parsed.value.model_dump())
    if errors:
        return Err(errors)
    return Ok(values)


def validate_manager_patch(data: Any) -> Result:
    parsed = _parse(ManagerPatch, data)
    if isinstance(parsed, Err):
        return parsed
    values, errors = _clean_manager_values(parsed.value.model_dump(exclude_unset=True))
    if errors:
        return Err(errors)
    return Ok(values)
