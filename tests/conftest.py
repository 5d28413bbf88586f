"""
Shared fixtures: a throwaway SQLite database per test, the in-memory search
index and a recording messaging channel, wired the same way build_services()
wires the real ones.
"""

from datetime import date
from typing import Any, Dict, List, Optional

import pytest

from enrollment.database import get_engine, init_db
from enrollment.errors import IndexUnavailable
from enrollment.services import wire_services
from enrollment.services.audit import Actor
from enrollment.services.messaging import SendResult
from enrollment.services.search_index import InMemorySearchIndex


class RecordingChannel:
    """Messaging channel double. Accepts everything unless told otherwise."""

    def __init__(self, accept: bool = True) -> None:
        self.accept = accept
        self.sent: List[Dict[str, Any]] = []

    def send(self, to: str, template_id: str, params: List[str]) -> SendResult:
        self.sent.append({"to": to, "template_id": template_id, "params": list(params)})
        if not self.accept:
            return SendResult(accepted=False, reason="timeout")
        return SendResult(accepted=True, message_id=f"wamid.{len(self.sent)}")


class FlakyIndex(InMemorySearchIndex):
    """In-memory index that can be switched off to simulate an outage."""

    def __init__(self) -> None:
        super().__init__()
        self.down = False

    def _check(self) -> None:
        if self.down:
            raise IndexUnavailable("Search index timed out")

    def put(self, doc_id: str, doc: Dict[str, Any]) -> None:
        self._check()
        super().put(doc_id, doc)

    def delete(self, doc_id: str) -> None:
        self._check()
        super().delete(doc_id)

    def get_versions(self, doc_ids):
        self._check()
        return super().get_versions(doc_ids)

    def suggest(self, prefix: str, limit: int = 10):
        self._check()
        return super().suggest(prefix, limit)


def voter_payload(**overrides: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "identity_number": "1234 5678 9012",
        "full_name": "Asha Patil",
        "sex": "FEMALE",
        "contact": "9876543210",
        "email": "asha@example.com",
        "date_of_birth": date(1990, 5, 17).isoformat(),
        "house_number": "12B",
        "street": "FC Road",
        "area": "Shivajinagar",
        "city": "PUNE",
        "state": "Maharashtra",
        "pincode": "411005",
    }
    data.update(overrides)
    return data


@pytest.fixture
def engine(tmp_path):
    eng = get_engine(f"sqlite:///{tmp_path / 'enrollment.sqlite'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def index():
    return FlakyIndex()


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def services(engine, index, channel, tmp_path):
    return wire_services(
        engine,
        index,
        channel,
        batch_size=2,
        sweep_page_size=2,
        sweep_lock_path=str(tmp_path / "reconcile.lock"),
    )


@pytest.fixture
def store(services):
    return services.store


@pytest.fixture
def admin():
    return Actor(id="1", role="admin", ip="127.0.0.1", user_agent="pytest")


@pytest.fixture
def voter_actor():
    return Actor(id="public", role="voter")


@pytest.fixture
def make_voter(services, voter_actor):
    """Enroll a voter; identity and contact vary with the seed."""

    def _make(seed: int = 0, **overrides: Any):
        payload = voter_payload(
            identity_number=f"{123456789000 + seed}",
            contact=f"98765{43210 + seed:05d}",
            **overrides,
        )
        return services.enrollment.enroll(payload, voter_actor)

    return _make


def audit_actions(store, entity_type=None, entity_id: Optional[Any] = None) -> List[str]:
    entries = store.audit_entries(
        entity_type=entity_type,
        entity_id=None if entity_id is None else str(entity_id),
    )
    return [e.action.value for e in reversed(entries)]
