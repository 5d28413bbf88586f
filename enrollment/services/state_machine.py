from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Tuple

from ..errors import InvalidTransition
from ..models.audit_log import AuditAction
from ..models.reference import Reference, ReferenceStatus
from ..models.voter import VerificationStatus, Voter


@dataclass(frozen=True)
class VerificationDecision:
    """
    Result of evaluating a verification toggle.

    changed=False means the voter is already in the requested state. The
    caller still records the attempt (VERIFY_NOOP) but must not touch
    verified_at / verified_by.
    """

    changed: bool
    new_status: VerificationStatus
    verified_by: Optional[str]
    verified_at: Optional[datetime]
    action: AuditAction


@dataclass(frozen=True)
class ReferenceDecision:
    """
    Result of evaluating a reference status change.

    notify is True only for the first-ever move into CONTACTED, i.e. when
    the reference has never had a notification accepted.
    """

    changed: bool
    old_status: ReferenceStatus
    new_status: ReferenceStatus
    notify: bool


# -------------------------
# Policy
# -------------------------

# Normal admin flow. Overrides (skips, reverts) are allowed; this ordering is
# used for reporting only.
REFERENCE_FLOW: Tuple[ReferenceStatus, ...] = (
    ReferenceStatus.PENDING,
    ReferenceStatus.CONTACTED,
    ReferenceStatus.APPLIED,
)

ALLOWED_REFERENCE_STATUSES = frozenset(s.value for s in ReferenceStatus)


def parse_reference_status(raw: Any) -> ReferenceStatus:
    if isinstance(raw, ReferenceStatus):
        return raw
    s = ("" if raw is None else str(raw)).strip().upper()
    if s not in ALLOWED_REFERENCE_STATUSES:
        raise InvalidTransition(
            f"Unknown reference status '{raw}'. Allowed: {sorted(ALLOWED_REFERENCE_STATUSES)}",
            details={"allowed": sorted(ALLOWED_REFERENCE_STATUSES)},
        )
    return ReferenceStatus(s)


def is_forward(old: ReferenceStatus, new: ReferenceStatus) -> bool:
    return REFERENCE_FLOW.index(new) > REFERENCE_FLOW.index(old)


def decide_verification(
    voter: Voter,
    verified: bool,
    actor_id: str,
    now: datetime,
) -> VerificationDecision:
    """
    UNVERIFIED <-> VERIFIED toggle (admin only, idempotent).

    - Same state: no-op. Timestamp and verifier stay as they are.
    - VERIFIED: stamp verifier + time together.
    - UNVERIFIED: clear verifier + time together.
    """
    target = VerificationStatus.VERIFIED if verified else VerificationStatus.UNVERIFIED

    if voter.is_verified == bool(verified):
        return VerificationDecision(
            changed=False,
            new_status=target,
            verified_by=voter.verified_by,
            verified_at=voter.verified_at,
            action=AuditAction.VERIFY_NOOP,
        )

    if verified:
        return VerificationDecision(
            changed=True,
            new_status=target,
            verified_by=actor_id,
            verified_at=now,
            action=AuditAction.VERIFY,
        )

    return VerificationDecision(
        changed=True,
        new_status=target,
        verified_by=None,
        verified_at=None,
        action=AuditAction.UNVERIFY,
    )


def decide_reference_status(reference: Reference, new_status: Any) -> ReferenceDecision:
    """
    PENDING -> CONTACTED -> APPLIED, plus direct admin override to any state.

    The one derived side effect: entering CONTACTED while notification_sent is
    False asks for exactly one notification. Once the flag is True no status
    change ever asks again, including PENDING -> CONTACTED after a revert.
    This asymmetry (status mutable, flag monotonic) is policy; keep it.
    """
    target = parse_reference_status(new_status)
    old = reference.status

    changed = old != target
    notify = (
        changed
        and target == ReferenceStatus.CONTACTED
        and not bool(reference.notification_sent)
    )
    return ReferenceDecision(changed=changed, old_status=old, new_status=target, notify=notify)
