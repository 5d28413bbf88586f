from __future__ import annotations

import math
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Query

from ..models.audit_log import AuditAction, AuditEntity
from ..models.reference import ReferenceStatus
from ..models.voter import VerificationStatus
from ..schemas import BulkReferenceStatusIn, ReferenceStatusIn, VerificationIn
from ..services import CoreServices, run_followups
from ..services.audit import Actor
from ..services.record_store import VoterFilters
from .deps import get_services, require_admin
from .responses import admin_reference, admin_voter, ok

router = APIRouter(prefix="/api/admin", tags=["admin"])


# -------------------------
# Dashboard
# -------------------------


@router.get("/stats")
def stats(
    _: Actor = Depends(require_admin),
    services: CoreServices = Depends(get_services),
) -> Dict[str, Any]:
    return ok(services.store.stats())


# -------------------------
# Voters
# -------------------------


@router.get("/voters")
def list_voters(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    q: Optional[str] = None,
    verification_status: Optional[VerificationStatus] = None,
    assembly_number: Optional[str] = None,
    polling_station_number: Optional[str] = None,
    city: Optional[str] = None,
    _: Actor = Depends(require_admin),
    services: CoreServices = Depends(get_services),
) -> Dict[str, Any]:
    filters = VoterFilters(
        q=q,
        verification_status=verification_status,
        assembly_number=assembly_number,
        polling_station_number=polling_station_number,
        city=city,
    )
    items, total = services.store.list_voters(filters, page=page, limit=limit)
    return ok(
        {
            "items": [admin_voter(v) for v in items],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit) if total else 0,
            },
        }
    )


@router.get("/voters/{voter_id}")
def get_voter(
    voter_id: int,
    _: Actor = Depends(require_admin),
    services: CoreServices = Depends(get_services),
) -> Dict[str, Any]:
    voter = services.store.get_voter(voter_id)
    refs = services.store.list_references(voter_id)
    verifier = services.store.get_admin(voter.verified_by)
    data = admin_voter(voter)
    data["references"] = [admin_reference(r) for r in refs]
    data["verified_by_admin"] = (
        {"id": verifier.id, "username": verifier.username, "full_name": verifier.full_name}
        if verifier
        else None
    )
    return ok(data)


@router.patch("/voters/{voter_id}")
def update_voter(
    voter_id: int,
    background_tasks: BackgroundTasks,
    patch: Dict[str, Any] = Body(...),
    actor: Actor = Depends(require_admin),
    services: CoreServices = Depends(get_services),
) -> Dict[str, Any]:
    voter, followups = services.enrollment.update_voter(voter_id, patch, actor)
    background_tasks.add_task(run_followups, followups)
    return ok(admin_voter(voter), message="Voter updated")


@router.delete("/voters/{voter_id}")
def delete_voter(
    voter_id: int,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(require_admin),
    services: CoreServices = Depends(get_services),
) -> Dict[str, Any]:
    _, followups = services.enrollment.delete_voter(voter_id, actor)
    background_tasks.add_task(run_followups, followups)
    return ok({"id": voter_id}, message="Voter deleted")


@router.put("/voters/{voter_id}/verification")
def set_verification(
    voter_id: int,
    body: VerificationIn,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(require_admin),
    services: CoreServices = Depends(get_services),
) -> Dict[str, Any]:
    outcome, followups = services.enrollment.set_verification(voter_id, body.verified, actor)
    background_tasks.add_task(run_followups, followups)
    message = "Voter already in requested state" if outcome.already_in_state else "Verification updated"
    return ok(
        {
            "voter": admin_voter(outcome.voter),
            "changed": outcome.changed,
            "already_in_state": outcome.already_in_state,
        },
        message=message,
    )


# -------------------------
# References
# -------------------------


@router.put("/references/status")
def bulk_reference_status(
    body: BulkReferenceStatusIn,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(require_admin),
    services: CoreServices = Depends(get_services),
) -> Dict[str, Any]:
    items = [(i.reference_id, i.status) for i in body.items]
    results, followups = services.enrollment.bulk_set_reference_status(items, actor)
    background_tasks.add_task(run_followups, followups)
    succeeded = sum(1 for r in results if r["success"])
    return ok(
        {
            "results": results,
            "succeeded": succeeded,
            "failed": len(results) - succeeded,
        }
    )


@router.put("/references/{reference_id}/status")
def set_reference_status(
    reference_id: int,
    body: ReferenceStatusIn,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(require_admin),
    services: CoreServices = Depends(get_services),
) -> Dict[str, Any]:
    transition, followups = services.enrollment.set_reference_status(reference_id, body.status, actor)
    background_tasks.add_task(run_followups, followups)
    return ok(
        {
            "reference": admin_reference(transition.reference),
            "changed": transition.decision.changed,
            "notification_queued": transition.decision.notify,
        }
    )


@router.post("/references/{reference_id}/notify")
def notify_reference(
    reference_id: int,
    actor: Actor = Depends(require_admin),
    services: CoreServices = Depends(get_services),
) -> Dict[str, Any]:
    result = services.enrollment.notify_reference(reference_id, actor)
    return ok(
        {
            "reference_id": reference_id,
            "delivered": result.ok,
            "already_sent": getattr(result, "already_sent", False),
            "reason": getattr(result, "reason", None),
        }
    )


@router.post("/notifications/retry")
def retry_notifications(
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(require_admin),
    services: CoreServices = Depends(get_services),
) -> Dict[str, Any]:
    results = services.enrollment.retry_notifications(limit, actor)
    delivered = sum(1 for r in results if r.ok)
    return ok({"attempted": len(results), "delivered": delivered, "failed": len(results) - delivered})


# -------------------------
# Search
# -------------------------


@router.get("/search/voters")
def search_voters(
    q: str = "",
    verification_status: Optional[VerificationStatus] = None,
    assembly_number: Optional[str] = None,
    polling_station_number: Optional[str] = None,
    reference_status: Optional[ReferenceStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    _: Actor = Depends(require_admin),
    services: CoreServices = Depends(get_services),
) -> Dict[str, Any]:
    filters = {
        "verification_status": verification_status.value if verification_status else None,
        "assembly_number": assembly_number,
        "polling_station_number": polling_station_number,
        "references.status": reference_status.value if reference_status else None,
    }
    result = services.projector.search_voters(q, filters, page=page, limit=limit)
    return ok({**result, "page": page, "limit": limit})


@router.get("/search/suggestions")
def name_suggestions(
    q: str = "",
    limit: int = Query(10, ge=1, le=50),
    _: Actor = Depends(require_admin),
    services: CoreServices = Depends(get_services),
) -> Dict[str, Any]:
    return ok({"suggestions": services.projector.suggest_names(q, limit)})


@router.post("/search/reindex")
def reindex(
    actor: Actor = Depends(require_admin),
    services: CoreServices = Depends(get_services),
) -> Dict[str, Any]:
    batches = services.projector.reindex_all()
    return ok({"batches": batches}, message="Search index rebuilt")


@router.post("/search/reconcile")
def reconcile(
    _: Actor = Depends(require_admin),
    services: CoreServices = Depends(get_services),
) -> Dict[str, Any]:
    report = services.sweep.run_once()
    if report is None:
        return ok({"skipped": True}, message="A reconciliation sweep is already running")
    return ok({"skipped": False, **report.as_dict()})


# -------------------------
# Audit
# -------------------------


@router.get("/audit")
def audit_log(
    entity_type: Optional[AuditEntity] = None,
    entity_id: Optional[str] = None,
    action: Optional[AuditAction] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    _: Actor = Depends(require_admin),
    services: CoreServices = Depends(get_services),
) -> Dict[str, Any]:
    entries = services.store.audit_entries(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        limit=limit,
        offset=offset,
    )
    return ok({"items": [e.model_dump() for e in entries], "count": len(entries)})
