from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from ..config import Settings
from ..database import get_engine
from ..errors import IndexUnavailable
from .audit import Actor, AuditLogWriter
from .enrollment import EnrollmentService, run_followups
from .messaging import DisabledChannel, MessagingChannel, WhatsAppChannel
from .notifications import NotificationDispatcher
from .reconcile import ReconciliationSweep
from .record_store import RecordStore
from .search import SearchProjector
from .search_index import ElasticsearchIndex, InMemorySearchIndex, SearchIndex

logger = logging.getLogger(__name__)


@dataclass
class CoreServices:
    """
    Everything the API and the job runner need, wired once and passed around.
    Nothing in the core reaches for a module-level client.
    """

    engine: Engine
    store: RecordStore
    index: SearchIndex
    projector: SearchProjector
    channel: MessagingChannel
    dispatcher: NotificationDispatcher
    enrollment: EnrollmentService
    sweep: ReconciliationSweep

    def close(self) -> None:
        for client in (self.index, self.channel):
            close = getattr(client, "close", None)
            if callable(close):
                close()
        self.engine.dispose()


def wire_services(
    engine: Engine,
    index: SearchIndex,
    channel: MessagingChannel,
    *,
    template_id: str = "voter_reference_notification",
    claim_lease_s: float = 300.0,
    batch_size: int = 200,
    sweep_page_size: int = 200,
    sweep_lock_path: Optional[str] = None,
) -> CoreServices:
    store = RecordStore(engine, AuditLogWriter())
    projector = SearchProjector(store, index, batch_size=batch_size)
    dispatcher = NotificationDispatcher(store, channel, template_id=template_id, claim_lease_s=claim_lease_s)
    return CoreServices(
        engine=engine,
        store=store,
        index=index,
        projector=projector,
        channel=channel,
        dispatcher=dispatcher,
        enrollment=EnrollmentService(store, projector, dispatcher),
        sweep=ReconciliationSweep(
            store, projector, index, page_size=sweep_page_size, lock_path=sweep_lock_path
        ),
    )


def build_index(settings: Settings) -> SearchIndex:
    if settings.search_backend == "memory":
        logger.warning("SEARCH_BACKEND=memory: search documents are not persisted")
        return InMemorySearchIndex()

    index = ElasticsearchIndex(
        settings.elasticsearch_node,
        f"{settings.elasticsearch_index_prefix}_voters",
        username=settings.elasticsearch_username,
        password=settings.elasticsearch_password,
        timeout_s=settings.search_timeout_s,
    )
    try:
        index.ensure_index()
    except IndexUnavailable as e:
        # The canonical store works without search; the sweep fills it in later
        logger.warning("search index not ready at startup: %s", e)
    return index


def build_channel(settings: Settings) -> MessagingChannel:
    if not settings.whatsapp_configured:
        logger.warning("WhatsApp not configured; reference notifications are disabled")
        return DisabledChannel()
    return WhatsAppChannel(
        settings.whatsapp_api_url,
        settings.whatsapp_access_token,
        settings.whatsapp_phone_number_id,
        language=settings.whatsapp_template_language,
        country_code=settings.whatsapp_country_code,
        timeout_s=settings.notify_timeout_s,
    )


def build_services(settings: Settings) -> CoreServices:
    engine = get_engine(settings.resolved_database_url)
    return wire_services(
        engine,
        build_index(settings),
        build_channel(settings),
        template_id=settings.whatsapp_template_name,
        claim_lease_s=settings.notify_claim_lease_s,
        batch_size=settings.reindex_batch_size,
        sweep_page_size=settings.sweep_page_size,
        sweep_lock_path=settings.sweep_lock_path,
    )


__all__ = [
    "Actor",
    "CoreServices",
    "EnrollmentService",
    "build_services",
    "wire_services",
    "run_followups",
]
