from __future__ import annotations

import logging
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..errors import EnrollmentError, InvalidTransition
from ..models.reference import Reference, ReferenceStatus
from ..models.voter import Voter
from .audit import Actor
from .notifications import Delivered, DispatchResult, NotificationDispatcher
from .record_store import RecordStore, ReferenceTransition, VerificationOutcome
from .search import SearchProjector, run_projection

logger = logging.getLogger(__name__)

FollowUp = Callable[[], Any]


def run_followups(followups: Iterable[FollowUp]) -> None:
    """
    Run post-commit jobs in order. A failing job is logged and the rest
    still run; the canonical change has already been committed.
    """
    for job in followups:
        try:
            job()
        except Exception:
            logger.exception("follow-up job failed job=%r", job)


class EnrollmentService:
    """
    Control flow for every mutation:
      canonical write (one transaction, audit included)
        -> state-machine outcome
        -> follow-ups (projection, notification) run after commit

    Mutating methods return (result, followups). The caller decides when the
    follow-ups run: FastAPI schedules them as BackgroundTasks, tests and jobs
    call run_followups() directly. A follow-up failure never undoes the
    canonical change.
    """

    def __init__(self, store: RecordStore, projector: SearchProjector, dispatcher: NotificationDispatcher) -> None:
        self.store = store
        self.projector = projector
        self.dispatcher = dispatcher

    # -------------------------
    # Follow-up builders
    # -------------------------

    def _project(self, voter_id: int) -> FollowUp:
        return partial(self.projector.index, voter_id)

    def _notify(self, reference_id: int, voter_id: int, voter_summary: Dict[str, Any], actor: Actor) -> FollowUp:
        def _job() -> DispatchResult:
            result = self.dispatcher.send_reference_contact_notice(reference_id, voter_summary, actor)
            if result.ok and not getattr(result, "already_sent", False):
                # flag flip bumped the voter version
                self.projector.index(voter_id)
            return result

        return _job

    def _transition_followups(self, transition: ReferenceTransition, actor: Actor) -> List[FollowUp]:
        followups: List[FollowUp] = []
        ref = transition.reference
        if transition.decision.changed:
            followups.append(self._project(ref.voter_id))
        if transition.decision.notify:
            followups.append(self._notify(ref.id, ref.voter_id, transition.voter_summary, actor))
        return followups

    # -------------------------
    # Voters
    # -------------------------

    def enroll(self, payload: Any, actor: Actor) -> Voter:
        """
        Create a voter and index it right away. Indexing failure is logged
        and left for the reconciliation sweep; enrollment still succeeds.
        """
        voter = self.store.create_voter(payload, actor)
        result = self.projector.index(voter.id)
        if not result.ok:
            logger.warning("voter enrolled but not indexed id=%s", voter.id)
        return voter

    def update_voter(self, voter_id: int, patch: Any, actor: Actor) -> Tuple[Voter, List[FollowUp]]:
        voter = self.store.update_voter(voter_id, patch, actor)
        return voter, [self._project(voter_id)]

    def delete_voter(self, voter_id: int, actor: Actor) -> Tuple[None, List[FollowUp]]:
        self.store.delete_voter(voter_id, actor)
        return None, [partial(self.projector.remove, voter_id)]

    def set_verification(self, voter_id: int, verified: bool, actor: Actor) -> Tuple[VerificationOutcome, List[FollowUp]]:
        outcome = self.store.set_verification(voter_id, verified, actor)
        followups = [self._project(voter_id)] if outcome.changed else []
        return outcome, followups

    # -------------------------
    # References
    # -------------------------

    def add_references(self, voter_id: int, refs: Sequence[Any], actor: Actor) -> Tuple[List[Reference], List[FollowUp]]:
        created = self.store.add_references(voter_id, refs, actor)
        return created, [self._project(voter_id)]

    def set_reference_status(
        self, reference_id: int, status: Any, actor: Actor
    ) -> Tuple[ReferenceTransition, List[FollowUp]]:
        transition = self.store.set_reference_status(reference_id, status, actor)
        return transition, self._transition_followups(transition, actor)

    def bulk_set_reference_status(
        self, items: Sequence[Tuple[int, Any]], actor: Actor
    ) -> Tuple[List[Dict[str, Any]], List[FollowUp]]:
        """
        Apply (reference_id, status) pairs one by one, each in its own
        transaction. A failing item does not stop the rest; every item gets a
        result entry with either the new status or the error.
        """
        results: List[Dict[str, Any]] = []
        voter_ids: List[int] = []
        notify: List[FollowUp] = []

        for reference_id, status in items:
            try:
                transition = self.store.set_reference_status(reference_id, status, actor)
            except EnrollmentError as e:
                results.append(
                    {
                        "reference_id": reference_id,
                        "success": False,
                        "error": {"code": e.code, "message": e.message},
                    }
                )
                continue

            decision = transition.decision
            results.append(
                {
                    "reference_id": reference_id,
                    "success": True,
                    "status": decision.new_status.value,
                    "changed": decision.changed,
                    "notification_queued": decision.notify,
                }
            )
            if decision.changed and transition.reference.voter_id not in voter_ids:
                voter_ids.append(transition.reference.voter_id)
            if decision.notify:
                ref = transition.reference
                notify.append(self._notify(ref.id, ref.voter_id, transition.voter_summary, actor))

        failed = sum(1 for r in results if not r["success"])
        logger.info("bulk reference status items=%s failed=%s actor=%s", len(results), failed, actor.id)

        followups: List[FollowUp] = []
        if voter_ids:
            followups.append(partial(run_projection, self.projector, voter_ids))
        return results, followups + notify

    def notify_reference(self, reference_id: int, actor: Optional[Actor] = None) -> DispatchResult:
        """
        Manual retry for one reference. Only CONTACTED references are
        notified; a reference that was already notified is not sent again.
        """
        ref = self.store.get_reference(reference_id)
        if ref.status != ReferenceStatus.CONTACTED:
            raise InvalidTransition(
                f"Reference must be CONTACTED to notify (current: {ref.status.value})",
                code="REFERENCE_NOT_CONTACTED",
            )
        voter = self.store.get_voter(ref.voter_id)
        return self._notify(ref.id, ref.voter_id, voter.summary(), actor or Actor.system("notification-dispatcher"))()

    def retry_notifications(self, limit: int = 100, actor: Optional[Actor] = None) -> List[DispatchResult]:
        """Retry every pending notification, then re-project voters whose flag flipped."""
        results = self.dispatcher.retry_pending(limit, actor)
        voter_ids = sorted(
            {r.voter_id for r in results if isinstance(r, Delivered) and not r.already_sent and r.voter_id}
        )
        run_projection(self.projector, voter_ids)
        return results
