from __future__ import annotations

import fcntl
import logging
import threading
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Generator, Optional

from ..errors import IndexUnavailable
from ..models.common import version_of
from .record_store import RecordStore
from .search import SearchProjector
from .search_index import SearchIndex

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    scanned: int = 0
    repaired: int = 0
    missing: int = 0
    stale: int = 0
    failed: int = 0
    orphans_removed: int = 0
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ReconciliationSweep:
    """
    Repairs drift between canonical voters and the search index.

    Walks voters by id, compares each voter's version (updated_at, epoch ms)
    with the indexed document's version, and re-projects documents that are
    missing or older. Finishes by dropping documents whose voter is gone.

    Only ever touches the index: never audit rows, never reference status.

    Single-flight: a concurrent run_once() returns None instead of sweeping.
    In-process that is a non-blocking thread lock; across processes on the
    same host it is an exclusive flock on lock_path.
    """

    def __init__(
        self,
        store: RecordStore,
        projector: SearchProjector,
        index: SearchIndex,
        *,
        page_size: int = 200,
        lock_path: Optional[str] = None,
    ) -> None:
        self.store = store
        self.projector = projector
        self.index = index
        self.page_size = max(1, min(int(page_size), 1000))
        self.lock_path = lock_path
        self._lock = threading.Lock()

    @contextmanager
    def _single_flight(self) -> Generator[bool, None, None]:
        if not self._lock.acquire(blocking=False):
            yield False
            return
        try:
            if not self.lock_path:
                yield True
                return

            path = Path(self.lock_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a+") as lock_file:
                try:
                    fcntl.flock(lock_file, fcntl.LOCK_EX | fcntl.LOCK_NB)
                except BlockingIOError:
                    yield False
                    return
                try:
                    yield True
                finally:
                    fcntl.flock(lock_file, fcntl.LOCK_UN)
        finally:
            self._lock.release()

    def run_once(self) -> Optional[SweepReport]:
        with self._single_flight() as acquired:
            if not acquired:
                logger.info("reconciliation sweep already running, skipped")
                return None
            return self._sweep()

    def _sweep(self) -> SweepReport:
        report = SweepReport()
        after: Optional[int] = None

        while True:
            voters = self.store.voter_page(after, self.page_size)
            if not voters:
                break
            after = voters[-1].id
            report.scanned += len(voters)

            try:
                versions = self.index.get_versions(str(v.id) for v in voters)
            except IndexUnavailable as e:
                report.error = str(e)
                logger.warning("reconciliation aborted, index unavailable: %s", e)
                return report

            for voter in voters:
                indexed = versions.get(str(voter.id))
                if indexed is None:
                    report.missing += 1
                elif indexed < version_of(voter.updated_at):
                    report.stale += 1
                else:
                    continue

                result = self.projector.index(voter.id)
                if result.ok:
                    report.repaired += 1
                else:
                    report.failed += 1

            if len(voters) < self.page_size:
                break

        try:
            report.orphans_removed = self.projector.remove_orphans()
        except IndexUnavailable as e:
            report.error = str(e)
            logger.warning("orphan cleanup failed: %s", e)

        logger.info(
            "reconciliation done scanned=%s missing=%s stale=%s repaired=%s failed=%s orphans=%s",
            report.scanned,
            report.missing,
            report.stale,
            report.repaired,
            report.failed,
            report.orphans_removed,
        )
        return report

    def run_forever(self, interval_s: float, stop_event: Optional[threading.Event] = None) -> None:
        """Sweep every interval_s seconds until stop_event is set."""
        stop_event = stop_event or threading.Event()
        logger.info("reconciliation loop started interval_s=%s", interval_s)
        while not stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("reconciliation sweep crashed")
            stop_event.wait(interval_s)
        logger.info("reconciliation loop stopped")
