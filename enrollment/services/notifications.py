from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from ..errors import NotFound
from ..validation import mask_contact
from .audit import Actor
from .messaging import MessagingChannel
from .record_store import RecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Delivered:
    reference_id: int
    voter_id: Optional[int] = None
    message_id: Optional[str] = None
    # True when the flag was already set and nothing was sent this time
    already_sent: bool = False
    ok: bool = True


@dataclass(frozen=True)
class Failed:
    reference_id: int
    reason: str
    ok: bool = False


DispatchResult = Union[Delivered, Failed]


class NotificationDispatcher:
    """
    Sends the "you were listed as a reference" message, at most once per
    reference.

    At-most-once lives in the reference row, not in the channel:
    - a reference whose flag is already set is never sent again
    - before sending, the dispatcher claims the row with a conditional
      update; only the worker holding the claim talks to the channel
    - the flag is set only after the channel accepted the message
    - on failure the flag stays False, the claim is released (retry
      possible) and a NOTIFICATION_FAILED audit row is written, separate
      from the status change that triggered the send

    A claim left behind by a crashed worker lapses after claim_lease_s, which
    must stay well above the channel timeout.
    """

    def __init__(
        self,
        store: RecordStore,
        channel: MessagingChannel,
        *,
        template_id: str = "voter_reference_notification",
        claim_lease_s: float = 300.0,
    ) -> None:
        self.store = store
        self.channel = channel
        self.template_id = template_id
        self.claim_lease_s = claim_lease_s

    def send_reference_contact_notice(
        self,
        reference_id: int,
        voter_summary: Dict[str, Any],
        actor: Optional[Actor] = None,
    ) -> DispatchResult:
        actor = actor or Actor.system("notification-dispatcher")

        try:
            ref = self.store.get_reference(reference_id)
        except NotFound:
            logger.warning("notification skipped, reference gone id=%s", reference_id)
            return Failed(reference_id=reference_id, reason="reference_not_found")

        if ref.notification_sent:
            return Delivered(reference_id=reference_id, voter_id=ref.voter_id, already_sent=True)

        if not self.store.claim_notification(reference_id, self.claim_lease_s):
            # Either sent in the meantime or another worker is sending now
            current = self.store.get_reference(reference_id)
            if current.notification_sent:
                return Delivered(reference_id=reference_id, voter_id=ref.voter_id, already_sent=True)
            logger.info("notification already claimed by another worker reference_id=%s", reference_id)
            return Failed(reference_id=reference_id, reason="claimed")

        params = [
            ref.reference_name,
            str(voter_summary.get("full_name") or ""),
            str(voter_summary.get("contact") or ""),
        ]
        try:
            result = self.channel.send(ref.reference_contact, self.template_id, params)
        except Exception as e:  # channel errors count as a rejection
            logger.exception("notification channel raised reference_id=%s", reference_id)
            result = None
            reason = f"channel_error: {e}"
        else:
            reason = result.reason or "rejected"

        if result is not None and result.accepted:
            flipped = self.store.mark_notification_sent(reference_id, actor, message_id=result.message_id)
            if not flipped:
                logger.warning("notification flag already set reference_id=%s", reference_id)
                return Delivered(
                    reference_id=reference_id,
                    voter_id=ref.voter_id,
                    message_id=result.message_id,
                    already_sent=True,
                )
            logger.info(
                "reference notified id=%s to=%s message_id=%s",
                reference_id,
                mask_contact(ref.reference_contact),
                result.message_id,
            )
            return Delivered(reference_id=reference_id, voter_id=ref.voter_id, message_id=result.message_id)

        self.store.record_notification_failure(reference_id, reason, actor)
        logger.warning("reference notification failed id=%s reason=%s", reference_id, reason)
        return Failed(reference_id=reference_id, reason=reason)

    def retry_pending(self, limit: int = 100, actor: Optional[Actor] = None) -> List[DispatchResult]:
        """
        Re-send for CONTACTED references whose notification never got through.
        Safe to run repeatedly.
        """
        results: List[DispatchResult] = []
        for ref in self.store.pending_notifications(limit):
            try:
                summary = self.store.get_voter(ref.voter_id).summary()
            except NotFound:
                continue
            results.append(self.send_reference_contact_notice(ref.id, summary, actor))
        if results:
            sent = sum(1 for r in results if isinstance(r, Delivered) and not r.already_sent)
            logger.info("notification retry attempted=%s delivered=%s", len(results), sent)
        return results
