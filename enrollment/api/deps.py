from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from ..services import CoreServices
from ..services.audit import Actor

def get_services(request: Request) -> CoreServices:
    return request.app.state.services


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def get_actor(
    request: Request,
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
) -> Actor:
    """
    Identity as established by the auth middleware in front of this service.
    Unauthenticated public callers act as "public" with role voter.
    """
    return Actor(
        id=(x_actor_id or "").strip() or "public",
        role=(x_actor_role or "").strip().lower() or "voter",
        ip=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


def require_admin(
    actor: Actor = Depends(get_actor),
    x_actor_id: Optional[str] = Header(default=None),
) -> Actor:
    if not (x_actor_id or "").strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    if not actor.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return actor


def require_super_admin(actor: Actor = Depends(require_admin)) -> Actor:
    """Manager administration is limited to the admin role."""
    if actor.role != "admin":
        raise HTTPException(status_code=403, detail="Admin role required")
    return actor
