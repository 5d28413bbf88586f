from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Union

from ..errors import IndexUnavailable
from ..models.common import as_utc, version_of
from ..models.reference import Reference
from ..models.voter import Voter
from .record_store import RecordStore
from .search_index import SearchIndex

logger = logging.getLogger(__name__)


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def project_voter(voter: Voter, references: Sequence[Reference]) -> Dict[str, Any]:
    """
    Pure mapping from canonical voter + references to the search document.

    Same input always yields the same document, so replaying an index write
    is harmless. version is the canonical updated_at in epoch ms.
    """
    return {
        "voter_id": voter.id,
        "version": version_of(voter.updated_at),
        "identity_number": voter.identity_number,
        "full_name": voter.full_name,
        "contact": voter.contact,
        "email": voter.email,
        "sex": voter.sex.value if voter.sex else None,
        "age": voter.age,
        "date_of_birth": _iso(voter.date_of_birth),
        "verification_status": voter.verification_status.value,
        "verified_by": voter.verified_by,
        "verified_at": _iso(voter.verified_at),
        "is_registered_elector": bool(voter.is_registered_elector),
        "assembly_number": voter.assembly_number,
        "assembly_name": voter.assembly_name,
        "polling_station_number": voter.polling_station_number,
        "epic_number": voter.epic_number,
        "city": voter.city,
        "state": voter.state,
        "pincode": voter.pincode,
        "qualification": voter.qualification,
        "occupation": voter.occupation,
        "created_at": _iso(voter.created_at),
        "updated_at": _iso(voter.updated_at),
        "references": [
            {
                "id": r.id,
                "reference_name": r.reference_name,
                "reference_contact": r.reference_contact,
                "status": r.status.value,
                "notification_sent": bool(r.notification_sent),
            }
            for r in references
        ],
    }


@dataclass(frozen=True)
class ProjectionResult:
    voter_id: int
    ok: bool
    removed: bool = False
    error: Optional[str] = None


class SearchProjector:
    """
    Derives the voter search document from canonical state and pushes it.

    Only ever called after the canonical transaction has committed, and it
    always re-reads committed state instead of trusting the caller's copy,
    so the index can never show a write that was rolled back.

    index() and remove() never raise IndexUnavailable: the failure is logged
    and returned, and the reconciliation sweep repairs the drift later.
    """

    def __init__(self, store: RecordStore, index: SearchIndex, *, batch_size: int = 200) -> None:
        self.store = store
        self.index_backend = index
        self.batch_size = max(1, min(int(batch_size), 1000))

    def index(self, record: Union[int, Voter]) -> ProjectionResult:
        voter_id = record.id if isinstance(record, Voter) else int(record)
        source = self.store.load_projection_source(voter_id)
        if source is None:
            # Deleted since the caller committed; make sure no document lingers
            return self.remove(voter_id)

        voter, refs = source
        try:
            self.index_backend.put(str(voter.id), project_voter(voter, refs))
        except IndexUnavailable as exc:
            logger.warning("search index failed voter_id=%s error=%s", voter_id, exc)
            return ProjectionResult(voter_id=voter_id, ok=False, error=str(exc))

        logger.debug("search indexed voter_id=%s", voter_id)
        return ProjectionResult(voter_id=voter_id, ok=True)

    def remove(self, voter_id: int) -> ProjectionResult:
        try:
            self.index_backend.delete(str(voter_id))
        except IndexUnavailable as exc:
            logger.warning("search remove failed voter_id=%s error=%s", voter_id, exc)
            return ProjectionResult(voter_id=voter_id, ok=False, removed=False, error=str(exc))
        return ProjectionResult(voter_id=voter_id, ok=True, removed=True)

    def index_many(self, voters: Sequence[Voter]) -> None:
        """Project a batch in one bulk request. Raises IndexUnavailable."""
        refs = self.store.references_for(v.id for v in voters)
        docs = [project_voter(v, refs.get(v.id, [])) for v in voters]
        self.index_backend.bulk_put(docs)

    def bulk_reindex(self, cursor: Optional[int] = None, *, batch_size: Optional[int] = None) -> Optional[int]:
        """
        Rebuild one batch of the index from canonical storage.

        cursor is the last voter id handled by the previous batch (None to
        start). Returns the next cursor, or None when done. The final call
        also drops documents whose voter no longer exists, so a full run
        leaves no orphans. Raises IndexUnavailable; a rebuild is an explicit
        operator action and should fail loudly.
        """
        size = max(1, min(int(batch_size or self.batch_size), 1000))
        voters = self.store.voter_page(cursor, size)
        if voters:
            self.index_many(voters)
            logger.info("reindex batch after=%s count=%s", cursor, len(voters))

        if len(voters) < size:
            self.remove_orphans()
            return None
        return voters[-1].id

    def reindex_all(self, *, batch_size: Optional[int] = None) -> int:
        """Run bulk_reindex to completion. Returns the number of batches."""
        batches = 0
        cursor: Optional[int] = None
        while True:
            cursor = self.bulk_reindex(cursor, batch_size=batch_size)
            batches += 1
            if cursor is None:
                return batches

    def remove_orphans(self) -> int:
        """Delete indexed documents with no canonical voter. Returns count removed."""
        removed = 0
        after: Optional[int] = None
        while True:
            ids = self.index_backend.ids_after(after, self.batch_size)
            if not ids:
                break
            alive = self.store.existing_voter_ids(ids)
            for doc_id in ids:
                if doc_id not in alive:
                    self.index_backend.delete(str(doc_id))
                    removed += 1
            after = ids[-1]
        if removed:
            logger.info("search orphans removed count=%s", removed)
        return removed

    def search_voters(
        self,
        query: str = "",
        filters: Optional[Dict[str, Any]] = None,
        *,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        limit = max(1, min(int(limit), 100))
        return self.index_backend.search(query, filters, page=max(1, int(page)), limit=limit)

    def suggest_names(self, prefix: str, limit: int = 10) -> List[str]:
        """Name autocomplete. An index outage yields no suggestions, not an error."""
        prefix = (prefix or "").strip()
        if len(prefix) < 2:
            return []
        try:
            return self.index_backend.suggest(prefix, max(1, min(int(limit), 50)))
        except IndexUnavailable as exc:
            logger.warning("name suggestions unavailable prefix_len=%s error=%s", len(prefix), exc)
            return []


def run_projection(projector: SearchProjector, voter_ids: List[int]) -> None:
    """Follow-up job body: project each voter, never raising."""
    for voter_id in voter_ids:
        projector.index(voter_id)
