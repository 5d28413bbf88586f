"""
Unit tests for the reconciliation sweep.

Tests cover:
- Repair of documents missed during an index outage
- Repair of stale documents
- Orphan cleanup
- Single-flight guard (thread lock and host file lock)
"""

import fcntl
import threading

from enrollment.models import AuditEntity
from tests.conftest import audit_actions


class TestReconciliationSweep:
    """Tests for ReconciliationSweep.run_once."""

    def test_clean_index_needs_nothing(self, services, make_voter):
        make_voter(0)
        make_voter(1)

        report = services.sweep.run_once()

        assert report.scanned == 2
        assert report.repaired == 0
        assert report.missing == 0

    def test_repairs_after_outage(self, services, make_voter, index):
        """Writes during an outage are picked up by the next sweep."""
        index.down = True
        voters = [make_voter(i) for i in range(3)]
        index.down = False
        assert len(index) == 0

        report = services.sweep.run_once()

        assert report.scanned == 3
        assert report.missing == 3
        assert report.repaired == 3
        for v in voters:
            assert index.get(str(v.id))["full_name"] == "Asha Patil"

    def test_repairs_stale_document(self, services, make_voter, index):
        voter = make_voter()
        doc = dict(index.get(str(voter.id)))
        index.delete(str(voter.id))
        index.put(str(voter.id), {**doc, "version": doc["version"] - 1000, "full_name": "Old Name"})

        report = services.sweep.run_once()

        assert report.stale == 1
        assert report.repaired == 1
        assert index.get(str(voter.id))["full_name"] == "Asha Patil"

    def test_removes_orphans(self, services, make_voter, index):
        make_voter()
        index.put("424242", {"voter_id": 424242, "version": 1})

        report = services.sweep.run_once()

        assert report.orphans_removed == 1
        assert index.get("424242") is None

    def test_outage_during_sweep(self, services, make_voter, index):
        make_voter()
        index.down = True

        report = services.sweep.run_once()

        assert report.error is not None
        assert report.repaired == 0

    def test_sweep_leaves_audit_alone(self, services, make_voter, index):
        voter = make_voter()
        index.delete(str(voter.id))
        before = audit_actions(services.store, AuditEntity.VOTER, voter.id)

        services.sweep.run_once()

        assert audit_actions(services.store, AuditEntity.VOTER, voter.id) == before

    def test_skips_when_running_in_process(self, services):
        services.sweep._lock.acquire()
        try:
            assert services.sweep.run_once() is None
        finally:
            services.sweep._lock.release()

    def test_skips_when_host_lock_held(self, services, tmp_path):
        """Another process holding the lock file makes this sweep skip."""
        with open(tmp_path / "reconcile.lock", "a+") as f:
            fcntl.flock(f, fcntl.LOCK_EX | fcntl.LOCK_NB)
            try:
                assert services.sweep.run_once() is None
            finally:
                fcntl.flock(f, fcntl.LOCK_UN)

        assert services.sweep.run_once() is not None

    def test_run_forever_stops(self, services):
        """The loop sweeps, then exits once the stop event is set."""
        stop = threading.Event()
        calls = []

        def once():
            calls.append(1)
            stop.set()

        services.sweep.run_once = once
        services.sweep.run_forever(0.01, stop)

        assert calls == [1]
