"""
Unit tests for reference notifications.

Tests cover:
- First move into CONTACTED sends exactly one message
- Status reverts never re-notify
- Channel failures leave the flag unset and are audited
- Retry of pending notifications
- Send claims across workers
"""

import threading
from datetime import timedelta

import httpx
import pytest
from sqlalchemy import update

from enrollment.database import transaction
from enrollment.errors import InvalidTransition
from enrollment.models import AuditAction, AuditEntity, Reference
from enrollment.models.common import utcnow
from enrollment.services import run_followups
from enrollment.services.messaging import DisabledChannel, WhatsAppChannel
from enrollment.services.notifications import Delivered, Failed, NotificationDispatcher
from enrollment.services.record_store import RecordStore
from tests.conftest import RecordingChannel, audit_actions

REFS = [{"reference_name": "Ravi Kumar", "reference_contact": "9000000001"}]


def _contacted(services, make_voter, voter_actor, admin):
    voter = make_voter()
    ref = services.store.add_references(voter.id, REFS, voter_actor)[0]
    transition, followups = services.enrollment.set_reference_status(ref.id, "CONTACTED", admin)
    return voter, ref, transition, followups


class TestDispatchOnContact:
    """Tests for the CONTACTED follow-up."""

    def test_contact_sends_once(self, services, make_voter, voter_actor, admin, channel, index):
        voter, ref, transition, followups = _contacted(services, make_voter, voter_actor, admin)

        assert transition.decision.notify is True
        assert channel.sent == []  # nothing leaves before the follow-ups run

        run_followups(followups)

        assert len(channel.sent) == 1
        assert channel.sent[0]["to"] == "9000000001"
        assert channel.sent[0]["params"] == ["Ravi Kumar", "Asha Patil", voter.contact]
        assert services.store.get_reference(ref.id).notification_sent is True
        assert index.get(str(voter.id))["references"][0]["notification_sent"] is True

    def test_revert_and_recontact_does_not_resend(self, services, make_voter, voter_actor, admin, channel):
        _, ref, _, followups = _contacted(services, make_voter, voter_actor, admin)
        run_followups(followups)

        _, back = services.enrollment.set_reference_status(ref.id, "PENDING", admin)
        run_followups(back)
        transition, again = services.enrollment.set_reference_status(ref.id, "CONTACTED", admin)
        run_followups(again)

        assert transition.decision.notify is False
        assert len(channel.sent) == 1

    def test_replayed_followup_does_not_resend(self, services, make_voter, voter_actor, admin, channel):
        """Running the same dispatch twice sends once."""
        _, _, _, followups = _contacted(services, make_voter, voter_actor, admin)

        run_followups(followups)
        run_followups(followups)

        assert len(channel.sent) == 1

    def test_channel_failure(self, services, make_voter, voter_actor, admin, channel):
        """Rejected send: flag stays false, failure is audited, status unchanged."""
        channel.accept = False
        _, ref, _, followups = _contacted(services, make_voter, voter_actor, admin)

        run_followups(followups)

        stored = services.store.get_reference(ref.id)
        assert stored.notification_sent is False
        assert stored.status.value == "CONTACTED"
        assert audit_actions(services.store, AuditEntity.REFERENCE, ref.id) == [
            "REFERENCE_STATUS",
            "NOTIFICATION_FAILED",
        ]
        failure = services.store.audit_entries(action=AuditAction.NOTIFICATION_FAILED)[0]
        assert failure.new_values["reason"] == "timeout"

    def test_retry_after_failure(self, services, make_voter, voter_actor, admin, channel):
        channel.accept = False
        _, ref, _, followups = _contacted(services, make_voter, voter_actor, admin)
        run_followups(followups)

        channel.accept = True
        results = services.enrollment.retry_notifications(10, admin)

        assert len(results) == 1
        assert isinstance(results[0], Delivered)
        assert services.store.get_reference(ref.id).notification_sent is True
        assert services.store.pending_notifications() == []

    def test_manual_notify_requires_contacted(self, services, make_voter, voter_actor, admin):
        voter = make_voter()
        ref = services.store.add_references(voter.id, REFS, voter_actor)[0]

        with pytest.raises(InvalidTransition):
            services.enrollment.notify_reference(ref.id, admin)

    def test_dispatch_missing_reference(self, services):
        result = services.dispatcher.send_reference_contact_notice(999, {})
        assert isinstance(result, Failed)
        assert result.reason == "reference_not_found"


class GatedChannel(RecordingChannel):
    """Holds every send open until released."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def send(self, to, template_id, params):
        self.entered.set()
        self.release.wait(5)
        return super().send(to, template_id, params)


class TestSendClaim:
    """Tests for the per-reference send claim shared by all workers."""

    def test_two_workers_send_once(self, engine, services, make_voter, voter_actor, admin):
        """Two dispatchers with their own store (two processes) race on one reference."""
        voter, ref, _, _ = _contacted(services, make_voter, voter_actor, admin)
        gated = GatedChannel()
        first = NotificationDispatcher(RecordStore(engine), gated)
        second = NotificationDispatcher(RecordStore(engine), gated)
        summary = voter.summary()
        results = {}

        def _first():
            results["first"] = first.send_reference_contact_notice(ref.id, summary, admin)

        worker = threading.Thread(target=_first)
        worker.start()
        assert gated.entered.wait(5)

        results["second"] = second.send_reference_contact_notice(ref.id, summary, admin)
        gated.release.set()
        worker.join(5)

        assert len(gated.sent) == 1
        assert isinstance(results["first"], Delivered)
        assert results["first"].already_sent is False
        assert isinstance(results["second"], Failed)
        assert results["second"].reason == "claimed"
        stored = services.store.get_reference(ref.id)
        assert stored.notification_sent is True
        assert stored.notification_claimed_at is None

    def test_claim_is_exclusive(self, services, make_voter, voter_actor, admin):
        _, ref, _, _ = _contacted(services, make_voter, voter_actor, admin)

        assert services.store.claim_notification(ref.id) is True
        assert services.store.claim_notification(ref.id) is False

    def test_failure_releases_claim(self, services, make_voter, voter_actor, admin, channel):
        channel.accept = False
        _, ref, _, followups = _contacted(services, make_voter, voter_actor, admin)
        run_followups(followups)

        assert services.store.get_reference(ref.id).notification_claimed_at is None
        assert services.store.claim_notification(ref.id) is True

    def test_lapsed_claim_can_be_taken(self, engine, services, make_voter, voter_actor, admin):
        """A claim left by a crashed worker stops blocking after the lease."""
        _, ref, _, _ = _contacted(services, make_voter, voter_actor, admin)
        assert services.store.claim_notification(ref.id, lease_s=60) is True

        with transaction(engine) as session:
            session.connection().execute(
                update(Reference)
                .where(Reference.id == ref.id)
                .values(notification_claimed_at=utcnow() - timedelta(minutes=5))
            )

        assert services.store.claim_notification(ref.id, lease_s=60) is True

    def test_no_claim_once_sent(self, services, make_voter, voter_actor, admin):
        _, ref, _, followups = _contacted(services, make_voter, voter_actor, admin)
        run_followups(followups)

        assert services.store.claim_notification(ref.id, lease_s=0) is False


class TestWhatsAppChannel:
    """Tests for WhatsAppChannel against a mocked transport."""

    def _channel(self, handler):
        client = httpx.Client(base_url="https://graph.example.com/v18.0", transport=httpx.MockTransport(handler))
        return WhatsAppChannel(
            "https://graph.example.com/v18.0",
            "token",
            "12345",
            client=client,
        )

    def test_accepted(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = request.read()
            return httpx.Response(200, json={"messages": [{"id": "wamid.abc"}]})

        result = self._channel(handler).send("9000000001", "voter_reference_notification", ["A", "B", "C"])

        assert result.accepted is True
        assert result.message_id == "wamid.abc"
        assert seen["url"].endswith("/12345/messages")
        assert b'"to":"919000000001"' in seen["body"].replace(b" ", b"")

    def test_http_error_is_rejection(self):
        result = self._channel(lambda r: httpx.Response(400, json={"error": {}})).send("9000000001", "t", [])

        assert result.accepted is False
        assert result.reason == "http_400"

    def test_timeout_is_rejection(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        result = self._channel(handler).send("9000000001", "t", [])

        assert result.accepted is False
        assert result.reason == "timeout"

    def test_missing_message_id(self):
        result = self._channel(lambda r: httpx.Response(200, json={})).send("9000000001", "t", [])
        assert result.accepted is False

    def test_disabled_channel(self):
        assert DisabledChannel().send("9000000001", "t", []).accepted is False
