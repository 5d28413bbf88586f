from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from ..errors import ValidationFailed
from ..schemas import IdentityCheckIn
from ..services import CoreServices
from ..services.audit import Actor
from ..validation import IDENTITY_RE, clean_identity_number, mask_identity
from .deps import get_actor, get_services
from .responses import ok, public_voter

router = APIRouter(prefix="/api/users", tags=["users"])


@router.post("/enroll", status_code=201)
def enroll(
    payload: Dict[str, Any] = Body(...),
    actor: Actor = Depends(get_actor),
    services: CoreServices = Depends(get_services),
) -> Dict[str, Any]:
    voter = services.enrollment.enroll(payload, actor)
    return ok({"voter": public_voter(voter)}, message="Enrollment successful")


@router.post("/identity/check")
def check_identity(
    body: IdentityCheckIn,
    services: CoreServices = Depends(get_services),
) -> Dict[str, Any]:
    cleaned = clean_identity_number(body.identity_number)
    if not IDENTITY_RE.match(cleaned):
        raise ValidationFailed([{"field": "identity_number", "reason": "must be exactly 12 digits"}])
    exists = services.store.get_voter_by_identity(cleaned) is not None
    return ok({"identity_number": mask_identity(cleaned), "exists": exists})
