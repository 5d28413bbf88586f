from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, Depends

from ..schemas import ReferencesCreate
from ..services import CoreServices, run_followups
from ..services.audit import Actor
from .deps import get_actor, get_services
from .responses import ok, public_reference

router = APIRouter(prefix="/api/references", tags=["references"])


@router.post("/{voter_id}", status_code=201)
def add_references(
    voter_id: int,
    body: ReferencesCreate,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    services: CoreServices = Depends(get_services),
) -> Dict[str, Any]:
    refs = [r.model_dump() for r in body.references]
    created, followups = services.enrollment.add_references(voter_id, refs, actor)
    background_tasks.add_task(run_followups, followups)
    return ok(
        {"references": [public_reference(r) for r in created], "count": len(created)},
        message="References added successfully",
    )


@router.get("/{voter_id}")
def list_references(
    voter_id: int,
    services: CoreServices = Depends(get_services),
) -> Dict[str, Any]:
    refs = services.store.list_references(voter_id)
    return ok({"references": [public_reference(r) for r in refs], "count": len(refs)})
