from __future__ import annotations

import math
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from ..models.admin import AdminRole
from ..schemas import ManagerCreate, ManagerPatch
from ..services import CoreServices
from ..services.audit import Actor
from .deps import get_services, require_super_admin
from .responses import admin_account, ok

router = APIRouter(prefix="/api/admin/managers", tags=["managers"])


@router.get("")
def list_managers(
    q: Optional[str] = None,
    role: Optional[AdminRole] = None,
    is_active: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    _: Actor = Depends(require_super_admin),
    services: CoreServices = Depends(get_services),
) -> Dict[str, Any]:
    items, total = services.store.list_managers(q=q, role=role, is_active=is_active, page=page, limit=limit)
    return ok(
        {
            "items": [admin_account(a) for a in items],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit) if total else 0,
            },
        }
    )


@router.post("", status_code=201)
def create_manager(
    body: ManagerCreate,
    actor: Actor = Depends(require_super_admin),
    services: CoreServices = Depends(get_services),
) -> Dict[str, Any]:
    manager = services.store.create_manager(body, actor)
    return ok(admin_account(manager), message="Manager created successfully")


@router.get("/{admin_id}")
def get_manager(
    admin_id: int,
    _: Actor = Depends(require_super_admin),
    services: CoreServices = Depends(get_services),
) -> Dict[str, Any]:
    manager = services.store.get_manager(admin_id)
    data = admin_account(manager)
    data["verified_voters"] = services.store.verified_count(admin_id)
    return ok(data)


@router.put("/{admin_id}")
def update_manager(
    admin_id: int,
    body: ManagerPatch,
    actor: Actor = Depends(require_super_admin),
    services: CoreServices = Depends(get_services),
) -> Dict[str, Any]:
    manager = services.store.update_manager(admin_id, body, actor)
    return ok(admin_account(manager), message="Manager updated successfully")


@router.delete("/{admin_id}")
def deactivate_manager(
    admin_id: int,
    actor: Actor = Depends(require_super_admin),
    services: CoreServices = Depends(get_services),
) -> Dict[str, Any]:
    manager = services.store.deactivate_manager(admin_id, actor)
    return ok(admin_account(manager), message="Manager deactivated successfully")
