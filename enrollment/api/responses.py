from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from ..models.admin import Admin
from ..models.common import utcnow
from ..models.reference import Reference
from ..models.voter import Voter
from ..validation import mask_contact, mask_identity


def ok(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True, "data": jsonable_encoder(data)}
    if message:
        body["message"] = message
    return body


def request_id(request: Request) -> str:
    return request.headers.get("x-request-id") or uuid.uuid4().hex


def error_response(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": {
                "code": code,
                "message": message,
                "details": jsonable_encoder(details),
                "timestamp": utcnow().isoformat(),
                "request_id": request_id(request),
            },
        },
    )


# -------------------------
# Record views
# -------------------------


def public_voter(voter: Voter) -> Dict[str, Any]:
    """What the enrollee sees back: no full identity or contact."""
    return {
        "id": voter.id,
        "full_name": voter.full_name,
        "identity_number": mask_identity(voter.identity_number),
        "contact": mask_contact(voter.contact),
        "verification_status": voter.verification_status,
        "created_at": voter.created_at,
    }


def admin_voter(voter: Voter) -> Dict[str, Any]:
    return voter.model_dump()


def public_reference(ref: Reference) -> Dict[str, Any]:
    return {
        "id": ref.id,
        "reference_name": ref.reference_name,
        "reference_contact": mask_contact(ref.reference_contact),
        "status": ref.status,
        "created_at": ref.created_at,
    }


def admin_reference(ref: Reference) -> Dict[str, Any]:
    return ref.model_dump()


def admin_account(admin: Admin) -> Dict[str, Any]:
    return admin.model_dump()
