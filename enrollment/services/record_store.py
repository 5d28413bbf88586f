from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func, or_, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..database import read_session, transaction
from ..errors import (
    DuplicateAdmin,
    DuplicateIdentity,
    DuplicateReference,
    InvalidTransition,
    NotFound,
    ValidationFailed,
)
from ..models.admin import Admin, AdminRole
from ..models.audit_log import AuditAction, AuditEntity, AuditLogEntry
from ..models.common import utcnow
from ..models.reference import Reference, ReferenceStatus
from ..models.voter import ELECTOR_FIELDS, VerificationStatus, Voter
from ..validation import (
    Err,
    FieldError,
    check_elector_invariant,
    clean_identity_number,
    mask_contact,
    mask_identity,
    validate_manager_create,
    validate_manager_patch,
    validate_references,
    validate_voter_create,
    validate_voter_patch,
)
from .audit import Actor, AuditLogWriter, list_entries
from .state_machine import ReferenceDecision, decide_reference_status, decide_verification, is_forward

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationOutcome:
    voter: Voter
    changed: bool

    @property
    def already_in_state(self) -> bool:
        return not self.changed


@dataclass(frozen=True)
class ReferenceTransition:
    reference: Reference
    decision: ReferenceDecision
    voter_summary: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VoterFilters:
    q: Optional[str] = None
    verification_status: Optional[VerificationStatus] = None
    assembly_number: Optional[str] = None
    polling_station_number: Optional[str] = None
    city: Optional[str] = None


def _voter_snapshot(voter: Voter) -> Dict[str, Any]:
    return voter.model_dump(exclude={"id"})


class RecordStore:
    """
    Owns the canonical voter / reference / admin rows.

    Every mutating method runs in exactly one transaction that also appends
    the matching audit row, so either both land or neither does. Target rows
    are read with SELECT ... FOR UPDATE, which serializes concurrent admin
    edits on Postgres; a lock or serialization failure surfaces as
    StorageConflict from database.transaction().

    Reads use a plain session and only ever see committed state.

    Any change to a voter's references also bumps the voter's updated_at,
    because the search document nests the references and uses updated_at as
    its version.
    """

    def __init__(self, engine: Engine, audit: Optional[AuditLogWriter] = None) -> None:
        self.engine = engine
        self.audit = audit or AuditLogWriter()

    # -------------------------
    # Helpers
    # -------------------------

    @staticmethod
    def _lock_voter(session: Session, voter_id: int) -> Voter:
        voter = session.exec(select(Voter).where(Voter.id == voter_id).with_for_update()).first()
        if not voter:
            raise NotFound("Voter not found", code="VOTER_NOT_FOUND")
        return voter

    @staticmethod
    def _lock_reference(session: Session, reference_id: int) -> Reference:
        ref = session.exec(select(Reference).where(Reference.id == reference_id).with_for_update()).first()
        if not ref:
            raise NotFound("Reference not found", code="REFERENCE_NOT_FOUND")
        return ref

    # -------------------------
    # Voters
    # -------------------------

    def create_voter(self, data: Any, actor: Actor) -> Voter:
        """
        Enroll a voter. A second create with the same identity number fails
        with DuplicateIdentity and leaves the existing row untouched.
        """
        result = validate_voter_create(data)
        if isinstance(result, Err):
            raise ValidationFailed(result.as_dicts())
        values = result.value

        try:
            with transaction(self.engine) as session:
                existing = session.exec(
                    select(Voter.id).where(Voter.identity_number == values["identity_number"])
                ).first()
                if existing is not None:
                    raise DuplicateIdentity("Identity number already registered in the system")

                voter = Voter(**values)
                session.add(voter)
                # flush for the id; a racing insert trips the unique index here
                session.flush()

                self.audit.append(
                    session,
                    entity_type=AuditEntity.VOTER,
                    entity_id=voter.id,
                    action=AuditAction.CREATE,
                    actor=actor,
                    new_values=_voter_snapshot(voter),
                )
        except IntegrityError as exc:
            raise DuplicateIdentity("Identity number already registered in the system") from exc

        logger.info(
            "voter enrolled id=%s identity=%s actor=%s",
            voter.id,
            mask_identity(voter.identity_number),
            actor.id,
        )
        return voter

    def update_voter(self, voter_id: int, patch: Any, actor: Actor) -> Voter:
        result = validate_voter_patch(patch)
        if isinstance(result, Err):
            raise ValidationFailed(result.as_dicts())
        values = dict(result.value)

        with transaction(self.engine) as session:
            voter = self._lock_voter(session, voter_id)

            new_identity = values.pop("identity_number", None)
            if new_identity is not None and new_identity != voter.identity_number:
                raise ValidationFailed([FieldError("identity_number", "is immutable once set").as_dict()])

            # Turning the elector flag off clears the sub-record unless the
            # caller sent explicit values (which the invariant check rejects).
            if values.get("is_registered_elector") is False:
                for name in ELECTOR_FIELDS:
                    values.setdefault(name, None)

            merged = {**voter.model_dump(), **values}
            errors = check_elector_invariant(merged)
            if errors:
                raise ValidationFailed([e.as_dict() for e in errors])

            old: Dict[str, Any] = {}
            new: Dict[str, Any] = {}
            for key, value in values.items():
                current = getattr(voter, key)
                if current != value:
                    old[key] = current
                    new[key] = value
                    setattr(voter, key, value)

            if not new:
                return voter

            voter.updated_at = utcnow()
            session.add(voter)

            self.audit.append(
                session,
                entity_type=AuditEntity.VOTER,
                entity_id=voter.id,
                action=AuditAction.UPDATE,
                actor=actor,
                old_values=old,
                new_values=new,
            )

        logger.info("voter updated id=%s fields=%s actor=%s", voter_id, sorted(new), actor.id)
        return voter

    def delete_voter(self, voter_id: int, actor: Actor) -> None:
        """Delete a voter and (cascade) its references."""
        with transaction(self.engine) as session:
            voter = self._lock_voter(session, voter_id)
            refs = session.exec(select(Reference).where(Reference.voter_id == voter_id)).all()
            for ref in refs:
                session.delete(ref)
            session.flush()

            self.audit.append(
                session,
                entity_type=AuditEntity.VOTER,
                entity_id=voter_id,
                action=AuditAction.DELETE,
                actor=actor,
                old_values={**_voter_snapshot(voter), "reference_count": len(refs)},
            )
            session.delete(voter)

        logger.info("voter deleted id=%s references=%s actor=%s", voter_id, len(refs), actor.id)

    def set_verification(self, voter_id: int, verified: bool, actor: Actor) -> VerificationOutcome:
        """
        Toggle verification. Same-state requests are no-ops that still record
        one VERIFY_NOOP audit row and leave verified_at untouched.
        """
        with transaction(self.engine) as session:
            voter = self._lock_voter(session, voter_id)
            before = {
                "verification_status": voter.verification_status,
                "verified_by": voter.verified_by,
                "verified_at": voter.verified_at,
            }
            decision = decide_verification(voter, verified, actor.id, utcnow())

            if decision.changed:
                voter.verification_status = decision.new_status
                voter.verified_by = decision.verified_by
                voter.verified_at = decision.verified_at
                voter.updated_at = utcnow()
                session.add(voter)
                after: Dict[str, Any] = {
                    "verification_status": voter.verification_status,
                    "verified_by": voter.verified_by,
                    "verified_at": voter.verified_at,
                }
            else:
                after = {"verification_status": decision.new_status, "requested": verified}

            self.audit.append(
                session,
                entity_type=AuditEntity.VOTER,
                entity_id=voter.id,
                action=decision.action,
                actor=actor,
                old_values=before,
                new_values=after,
            )

        logger.info(
            "voter verification id=%s status=%s changed=%s actor=%s",
            voter_id,
            decision.new_status.value,
            decision.changed,
            actor.id,
        )
        return VerificationOutcome(voter=voter, changed=decision.changed)

    # -------------------------
    # References
    # -------------------------

    def add_references(self, voter_id: int, refs: Sequence[Any], actor: Actor) -> List[Reference]:
        """
        Add references for a voter, all or nothing. New references start as
        PENDING with notification_sent=False.
        """
        with transaction(self.engine) as session:
            voter = self._lock_voter(session, voter_id)

            result = validate_references(refs, voter_contact=voter.contact)
            if isinstance(result, Err):
                raise ValidationFailed(result.as_dicts(), message="Reference validation failed")
            cleaned: List[Tuple[str, str]] = result.value

            contacts = [c for _, c in cleaned]
            existing = session.exec(
                select(Reference.reference_contact).where(
                    Reference.voter_id == voter_id,
                    Reference.reference_contact.in_(contacts),
                )
            ).all()
            if existing:
                masked = [mask_contact(c) for c in existing]
                raise DuplicateReference(
                    f"Reference contacts already exist: {', '.join(masked)}",
                    details={"contacts": masked},
                )

            now = utcnow()
            created: List[Reference] = []
            for name, contact in cleaned:
                ref = Reference(
                    voter_id=voter_id,
                    reference_name=name,
                    reference_contact=contact,
                    status=ReferenceStatus.PENDING,
                    notification_sent=False,
                    created_at=now,
                    updated_at=now,
                )
                session.add(ref)
                created.append(ref)

            voter.updated_at = now
            session.add(voter)
            session.flush()

            self.audit.append(
                session,
                entity_type=AuditEntity.VOTER,
                entity_id=voter_id,
                action=AuditAction.REFERENCES_ADDED,
                actor=actor,
                new_values={
                    "references": [
                        {
                            "id": r.id,
                            "reference_name": r.reference_name,
                            "reference_contact": mask_contact(r.reference_contact),
                        }
                        for r in created
                    ]
                },
            )

        logger.info("references added voter_id=%s count=%s actor=%s", voter_id, len(created), actor.id)
        return created

    def set_reference_status(self, reference_id: int, status: Any, actor: Actor) -> ReferenceTransition:
        """
        Change a reference's status. The returned decision tells the caller
        whether a notification is due (first entry into CONTACTED only).
        """
        with transaction(self.engine) as session:
            ref = self._lock_reference(session, reference_id)
            decision = decide_reference_status(ref, status)
            voter = session.get(Voter, ref.voter_id)

            if decision.changed:
                now = utcnow()
                ref.status = decision.new_status
                ref.status_updated_at = now
                ref.updated_at = now
                session.add(ref)
                if voter is not None:
                    voter.updated_at = now
                    session.add(voter)

                self.audit.append(
                    session,
                    entity_type=AuditEntity.REFERENCE,
                    entity_id=ref.id,
                    action=AuditAction.REFERENCE_STATUS,
                    actor=actor,
                    old_values={"status": decision.old_status},
                    new_values={
                        "status": decision.new_status,
                        "notification_sent": ref.notification_sent,
                        "override": not is_forward(decision.old_status, decision.new_status),
                    },
                )

            summary = voter.summary() if voter is not None else {}

        logger.info(
            "reference status id=%s %s->%s changed=%s notify=%s actor=%s",
            reference_id,
            decision.old_status.value,
            decision.new_status.value,
            decision.changed,
            decision.notify,
            actor.id,
        )
        return ReferenceTransition(reference=ref, decision=decision, voter_summary=summary)

    def claim_notification(self, reference_id: int, lease_s: float = 300.0) -> bool:
        """
        Take the right to send the contact notice for one reference.

        Conditional UPDATE ... WHERE notification_sent = false and no live
        claim, so across every worker at most one caller gets True. The claim
        is released by record_notification_failure() or replaced by the flag
        in mark_notification_sent(); a claim left by a crashed worker lapses
        after lease_s. Not audited: it is not a status change.
        """
        now = utcnow()
        lapsed = now - timedelta(seconds=lease_s)
        with transaction(self.engine) as session:
            res = session.connection().execute(
                update(Reference)
                .where(
                    Reference.id == reference_id,
                    Reference.notification_sent == False,  # noqa: E712
                    or_(
                        Reference.notification_claimed_at.is_(None),
                        Reference.notification_claimed_at < lapsed,
                    ),
                )
                .values(notification_claimed_at=now)
            )
            return res.rowcount == 1

    def mark_notification_sent(self, reference_id: int, actor: Actor, message_id: Optional[str] = None) -> bool:
        """
        Flip notification_sent False -> True, once.

        Conditional UPDATE ... WHERE notification_sent = false, so two
        dispatchers racing on the same reference cannot both win. Returns
        True only for the call that actually flipped the flag.
        """
        with transaction(self.engine) as session:
            now = utcnow()
            res = session.connection().execute(
                update(Reference)
                .where(Reference.id == reference_id, Reference.notification_sent == False)  # noqa: E712
                .values(
                    notification_sent=True,
                    notification_sent_at=now,
                    notification_claimed_at=None,
                    updated_at=now,
                )
            )
            if res.rowcount != 1:
                return False

            voter_id = session.exec(select(Reference.voter_id).where(Reference.id == reference_id)).one()
            session.connection().execute(update(Voter).where(Voter.id == voter_id).values(updated_at=now))

            self.audit.append(
                session,
                entity_type=AuditEntity.REFERENCE,
                entity_id=reference_id,
                action=AuditAction.NOTIFICATION_SENT,
                actor=actor,
                old_values={"notification_sent": False},
                new_values={"notification_sent": True, "notification_sent_at": now, "message_id": message_id},
            )
        return True

    def record_notification_failure(self, reference_id: int, reason: str, actor: Actor) -> None:
        """
        Audit a failed delivery and release the send claim so a retry can
        pick the reference up. Status and flag are not touched.
        """
        with transaction(self.engine) as session:
            session.connection().execute(
                update(Reference)
                .where(Reference.id == reference_id, Reference.notification_sent == False)  # noqa: E712
                .values(notification_claimed_at=None)
            )
            self.audit.append(
                session,
                entity_type=AuditEntity.REFERENCE,
                entity_id=reference_id,
                action=AuditAction.NOTIFICATION_FAILED,
                actor=actor,
                new_values={"reason": reason},
            )

    # -------------------------
    # Managers
    # -------------------------

    @staticmethod
    def _lock_admin(session: Session, admin_id: int) -> Admin:
        admin = session.exec(select(Admin).where(Admin.id == admin_id).with_for_update()).first()
        if not admin:
            raise NotFound("Manager not found", code="MANAGER_NOT_FOUND")
        return admin

    @staticmethod
    def _check_admin_unique(
        session: Session,
        *,
        username: Optional[str] = None,
        email: Optional[str] = None,
        exclude_id: Optional[int] = None,
    ) -> None:
        if username is not None:
            q = select(Admin.id).where(Admin.username == username)
            if exclude_id is not None:
                q = q.where(Admin.id != exclude_id)
            if session.exec(q).first() is not None:
                raise DuplicateAdmin("Username already exists")
        if email is not None:
            q = select(Admin.id).where(Admin.email == email)
            if exclude_id is not None:
                q = q.where(Admin.id != exclude_id)
            if session.exec(q).first() is not None:
                raise DuplicateAdmin("Email already exists", code="EMAIL_ALREADY_EXISTS")

    def create_manager(self, data: Any, actor: Actor) -> Admin:
        result = validate_manager_create(data)
        if isinstance(result, Err):
            raise ValidationFailed(result.as_dicts())
        values = result.value

        try:
            with transaction(self.engine) as session:
                self._check_admin_unique(session, username=values["username"], email=values["email"])
                admin = Admin(**values)
                session.add(admin)
                session.flush()

                self.audit.append(
                    session,
                    entity_type=AuditEntity.ADMIN,
                    entity_id=admin.id,
                    action=AuditAction.CREATE,
                    actor=actor,
                    new_values=admin.model_dump(exclude={"id"}),
                )
        except IntegrityError as exc:
            raise DuplicateAdmin("Username or email already exists") from exc

        logger.info(
            "manager created id=%s username=%s role=%s actor=%s",
            admin.id,
            admin.username,
            admin.role.value,
            actor.id,
        )
        return admin

    def update_manager(self, admin_id: int, patch: Any, actor: Actor) -> Admin:
        result = validate_manager_patch(patch)
        if isinstance(result, Err):
            raise ValidationFailed(result.as_dicts())
        values = result.value

        if values.get("is_active") is False and str(admin_id) == actor.id:
            raise InvalidTransition("Cannot deactivate your own account", code="CANNOT_DEACTIVATE_SELF")

        try:
            with transaction(self.engine) as session:
                admin = self._lock_admin(session, admin_id)
                if "email" in values and values["email"] != admin.email:
                    self._check_admin_unique(session, email=values["email"], exclude_id=admin_id)

                old: Dict[str, Any] = {}
                new: Dict[str, Any] = {}
                for key, value in values.items():
                    current = getattr(admin, key)
                    if current != value:
                        old[key] = current
                        new[key] = value
                        setattr(admin, key, value)

                if not new:
                    return admin

                admin.updated_at = utcnow()
                session.add(admin)
                self.audit.append(
                    session,
                    entity_type=AuditEntity.ADMIN,
                    entity_id=admin.id,
                    action=AuditAction.UPDATE,
                    actor=actor,
                    old_values=old,
                    new_values=new,
                )
        except IntegrityError as exc:
            raise DuplicateAdmin("Email already exists", code="EMAIL_ALREADY_EXISTS") from exc

        logger.info("manager updated id=%s fields=%s actor=%s", admin_id, sorted(new), actor.id)
        return admin

    def deactivate_manager(self, admin_id: int, actor: Actor) -> Admin:
        """Accounts are never deleted, so verifications keep pointing at a real row."""
        if str(admin_id) == actor.id:
            raise InvalidTransition("Cannot deactivate your own account", code="CANNOT_DEACTIVATE_SELF")

        with transaction(self.engine) as session:
            admin = self._lock_admin(session, admin_id)
            if not admin.is_active:
                raise InvalidTransition("Manager is already deactivated", code="MANAGER_ALREADY_DEACTIVATED")

            admin.is_active = False
            admin.updated_at = utcnow()
            session.add(admin)
            self.audit.append(
                session,
                entity_type=AuditEntity.ADMIN,
                entity_id=admin.id,
                action=AuditAction.DEACTIVATE,
                actor=actor,
                old_values={"is_active": True},
                new_values={"is_active": False},
            )

        logger.info("manager deactivated id=%s username=%s actor=%s", admin_id, admin.username, actor.id)
        return admin

    # -------------------------
    # Reads
    # -------------------------

    def get_voter(self, voter_id: int) -> Voter:
        with read_session(self.engine) as session:
            voter = session.get(Voter, voter_id)
            if not voter:
                raise NotFound("Voter not found", code="VOTER_NOT_FOUND")
            return voter

    def get_voter_by_identity(self, identity_number: str) -> Optional[Voter]:
        cleaned = clean_identity_number(identity_number)
        with read_session(self.engine) as session:
            return session.exec(select(Voter).where(Voter.identity_number == cleaned)).first()

    def get_reference(self, reference_id: int) -> Reference:
        with read_session(self.engine) as session:
            ref = session.get(Reference, reference_id)
            if not ref:
                raise NotFound("Reference not found", code="REFERENCE_NOT_FOUND")
            return ref

    def get_admin(self, admin_id: Optional[str]) -> Optional[Admin]:
        if not admin_id or not str(admin_id).isdigit():
            return None
        with read_session(self.engine) as session:
            return session.get(Admin, int(admin_id))

    def get_manager(self, admin_id: int) -> Admin:
        with read_session(self.engine) as session:
            admin = session.get(Admin, admin_id)
            if not admin:
                raise NotFound("Manager not found", code="MANAGER_NOT_FOUND")
            return admin

    def list_managers(
        self,
        *,
        q: Optional[str] = None,
        role: Optional[AdminRole] = None,
        is_active: Optional[bool] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Admin], int]:
        limit = max(1, min(int(limit), 100))
        page = max(1, int(page))

        conds = []
        if q:
            like = f"%{q.strip()}%"
            conds.append(Admin.username.ilike(like) | Admin.email.ilike(like) | Admin.full_name.ilike(like))
        if role is not None:
            conds.append(Admin.role == role)
        if is_active is not None:
            conds.append(Admin.is_active == is_active)

        with read_session(self.engine) as session:
            total = session.exec(select(func.count()).select_from(Admin).where(*conds)).one()
            rows = session.exec(
                select(Admin)
                .where(*conds)
                .order_by(Admin.created_at.desc(), Admin.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).all()
            return list(rows), int(total)

    def verified_count(self, admin_id: int) -> int:
        """Voters currently verified by this admin."""
        with read_session(self.engine) as session:
            return int(
                session.exec(
                    select(func.count()).select_from(Voter).where(Voter.verified_by == str(admin_id))
                ).one()
            )

    def list_references(self, voter_id: int) -> List[Reference]:
        with read_session(self.engine) as session:
            if session.get(Voter, voter_id) is None:
                raise NotFound("Voter not found", code="VOTER_NOT_FOUND")
            q = select(Reference).where(Reference.voter_id == voter_id).order_by(Reference.id)
            return list(session.exec(q).all())

    def list_voters(
        self,
        filters: Optional[VoterFilters] = None,
        *,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Voter], int]:
        filters = filters or VoterFilters()
        limit = max(1, min(int(limit), 100))
        page = max(1, int(page))

        conds = []
        if filters.q:
            like = f"%{filters.q.strip()}%"
            conds.append(
                Voter.full_name.ilike(like)
                | Voter.identity_number.like(like)
                | Voter.contact.like(like)
            )
        if filters.verification_status is not None:
            conds.append(Voter.verification_status == filters.verification_status)
        if filters.assembly_number:
            conds.append(Voter.assembly_number == filters.assembly_number)
        if filters.polling_station_number:
            conds.append(Voter.polling_station_number == filters.polling_station_number)
        if filters.city:
            conds.append(Voter.city == filters.city)

        with read_session(self.engine) as session:
            total = session.exec(select(func.count()).select_from(Voter).where(*conds)).one()
            q = (
                select(Voter)
                .where(*conds)
                .order_by(Voter.created_at.desc(), Voter.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            return list(session.exec(q).all()), int(total)

    def voter_page(self, after_id: Optional[int], limit: int) -> List[Voter]:
        """Keyset page of voters ordered by id, for reindex and reconciliation."""
        q = select(Voter).order_by(Voter.id).limit(max(1, int(limit)))
        if after_id is not None:
            q = q.where(Voter.id > after_id)
        with read_session(self.engine) as session:
            return list(session.exec(q).all())

    def existing_voter_ids(self, ids: Iterable[int]) -> set:
        ids = list(ids)
        if not ids:
            return set()
        with read_session(self.engine) as session:
            return set(session.exec(select(Voter.id).where(Voter.id.in_(ids))).all())

    def references_for(self, voter_ids: Iterable[int]) -> Dict[int, List[Reference]]:
        ids = list(voter_ids)
        out: Dict[int, List[Reference]] = {i: [] for i in ids}
        if not ids:
            return out
        with read_session(self.engine) as session:
            q = select(Reference).where(Reference.voter_id.in_(ids)).order_by(Reference.id)
            for ref in session.exec(q).all():
                out.setdefault(ref.voter_id, []).append(ref)
        return out

    def load_projection_source(self, voter_id: int) -> Optional[Tuple[Voter, List[Reference]]]:
        """Voter plus its references from one committed snapshot, or None if deleted."""
        with read_session(self.engine) as session:
            voter = session.get(Voter, voter_id)
            if voter is None:
                return None
            refs = session.exec(
                select(Reference).where(Reference.voter_id == voter_id).order_by(Reference.id)
            ).all()
            return voter, list(refs)

    def pending_notifications(self, limit: int = 100) -> List[Reference]:
        """CONTACTED references whose notification was never accepted."""
        with read_session(self.engine) as session:
            q = (
                select(Reference)
                .where(
                    Reference.status == ReferenceStatus.CONTACTED,
                    Reference.notification_sent == False,  # noqa: E712
                )
                .order_by(Reference.id)
                .limit(max(1, int(limit)))
            )
            return list(session.exec(q).all())

    def stats(self) -> Dict[str, Any]:
        """Dashboard counts."""
        week_ago = utcnow() - timedelta(days=7)
        with read_session(self.engine) as session:
            total = session.exec(select(func.count()).select_from(Voter)).one()
            verified = session.exec(
                select(func.count()).select_from(Voter).where(
                    Voter.verification_status == VerificationStatus.VERIFIED
                )
            ).one()
            recent = session.exec(
                select(func.count()).select_from(Voter).where(Voter.created_at >= week_ago)
            ).one()
            by_status = dict(
                session.exec(
                    select(Reference.status, func.count()).group_by(Reference.status)
                ).all()
            )

        refs = {s.value.lower(): int(by_status.get(s, 0)) for s in ReferenceStatus}
        rate = round((verified / total) * 100, 2) if total else 0.0
        return {
            "voters": {
                "total": int(total),
                "verified": int(verified),
                "unverified": int(total) - int(verified),
                "verification_rate": rate,
                "recent_enrollments": int(recent),
            },
            "references": {"total": sum(refs.values()), **refs},
        }

    def audit_entries(
        self,
        *,
        entity_type: Optional[AuditEntity] = None,
        entity_id: Optional[str] = None,
        action: Optional[AuditAction] = None,
        limit: int = 200,
        offset: int = 0,
    ) -> List[AuditLogEntry]:
        with read_session(self.engine) as session:
            return list_entries(
                session,
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                limit=limit,
                offset=offset,
            )
