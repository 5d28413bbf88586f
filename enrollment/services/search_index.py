"""
Search index backends for the voter projection.

Two implementations share one small interface (SearchIndex):

- ElasticsearchIndex: REST client over httpx, used in every real deployment.
- InMemorySearchIndex: dict-backed, for local development and tests.

Writes are versioned: a document carries the canonical updated_at (epoch ms)
as its version and a write with an older version never replaces a newer
document. That keeps replays and out-of-order follow-up jobs harmless.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Protocol

import httpx

from ..errors import IndexUnavailable

logger = logging.getLogger(__name__)


class SearchIndex(Protocol):
    def put(self, doc_id: str, doc: Dict[str, Any]) -> None: ...

    def delete(self, doc_id: str) -> None: ...

    def bulk_put(self, docs: List[Dict[str, Any]]) -> None: ...

    def get_versions(self, doc_ids: Iterable[str]) -> Dict[str, int]: ...

    def ids_after(self, after: Optional[int], limit: int) -> List[int]: ...

    def search(
        self,
        query: str = "",
        filters: Optional[Dict[str, Any]] = None,
        *,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]: ...

    def suggest(self, prefix: str, limit: int = 10) -> List[str]: ...


# Fields a caller may filter on exactly (keyword fields in the mapping)
FILTER_FIELDS = (
    "verification_status",
    "assembly_number",
    "polling_station_number",
    "city",
    "state",
    "sex",
    "references.status",
)

TEXT_FIELDS = (
    "full_name",
    "identity_number",
    "contact",
    "email",
    "references.reference_name",
    "references.reference_contact",
)

VOTERS_INDEX_SETTINGS: Dict[str, Any] = {
    "settings": {
        "number_of_shards": 1,
        "number_of_replicas": 0,
        "analysis": {
            "analyzer": {
                "name_analyzer": {
                    "type": "custom",
                    "tokenizer": "standard",
                    "filter": ["lowercase", "asciifolding"],
                },
                "phone_analyzer": {
                    "type": "custom",
                    "tokenizer": "keyword",
                    "filter": ["lowercase"],
                },
            }
        },
    },
    "mappings": {
        "properties": {
            "voter_id": {"type": "long"},
            "version": {"type": "long"},
            "identity_number": {"type": "keyword"},
            "full_name": {
                "type": "text",
                "analyzer": "name_analyzer",
                "fields": {"keyword": {"type": "keyword"}},
            },
            "contact": {"type": "text", "analyzer": "phone_analyzer"},
            "email": {"type": "keyword"},
            "sex": {"type": "keyword"},
            "age": {"type": "integer"},
            "verification_status": {"type": "keyword"},
            "verified_at": {"type": "date"},
            "is_registered_elector": {"type": "boolean"},
            "assembly_number": {"type": "keyword"},
            "assembly_name": {"type": "text"},
            "polling_station_number": {"type": "keyword"},
            "epic_number": {"type": "keyword"},
            "city": {"type": "keyword"},
            "state": {"type": "keyword"},
            "pincode": {"type": "keyword"},
            "qualification": {"type": "text"},
            "occupation": {"type": "text"},
            "created_at": {"type": "date"},
            "updated_at": {"type": "date"},
            "references": {
                "type": "nested",
                "properties": {
                    "id": {"type": "long"},
                    "reference_name": {"type": "text", "analyzer": "name_analyzer"},
                    "reference_contact": {"type": "text", "analyzer": "phone_analyzer"},
                    "status": {"type": "keyword"},
                    "notification_sent": {"type": "boolean"},
                },
            },
        }
    },
}


class ElasticsearchIndex:
    """
    Minimal Elasticsearch REST client for one voters index.

    Every call is bounded by the client timeout; timeouts, transport errors
    and unexpected statuses raise IndexUnavailable. The caller decides
    whether that is fatal (it never is for canonical writes).
    """

    def __init__(
        self,
        node: str,
        index_name: str,
        *,
        username: str = "",
        password: str = "",
        timeout_s: float = 5.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.index_name = index_name
        auth = (username, password) if username and password else None
        self._client = client or httpx.Client(base_url=node, auth=auth, timeout=timeout_s)
        self._index_ready = False
        self._ready_lock = threading.Lock()

    def close(self) -> None:
        self._client.close()

    # -------------------------
    # Plumbing
    # -------------------------

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise IndexUnavailable(f"Search index timed out: {method} {url}") from exc
        except httpx.HTTPError as exc:
            raise IndexUnavailable(f"Search index unreachable: {exc}") from exc

    def ensure_index(self) -> None:
        """Create the index with analyzers + mapping if it does not exist yet."""
        if self._index_ready:
            return
        with self._ready_lock:
            if self._index_ready:
                return
            r = self._request("HEAD", f"/{self.index_name}")
            if r.status_code == 404:
                r = self._request("PUT", f"/{self.index_name}", json=VOTERS_INDEX_SETTINGS)
                # 400 resource_already_exists when another worker won the race
                if r.status_code >= 400 and "resource_already_exists" not in r.text:
                    raise IndexUnavailable(f"Could not create index {self.index_name}: {r.status_code} {r.text[:200]}")
                logger.info("search index created name=%s", self.index_name)
            elif r.status_code >= 400:
                raise IndexUnavailable(f"Index check failed: {r.status_code}")
            self._index_ready = True

    # -------------------------
    # Writes
    # -------------------------

    def put(self, doc_id: str, doc: Dict[str, Any]) -> None:
        self.ensure_index()
        params = {
            "refresh": "wait_for",
            "version": int(doc["version"]),
            "version_type": "external_gte",
        }
        r = self._request("PUT", f"/{self.index_name}/_doc/{doc_id}", params=params, json=doc)
        if r.status_code == 409:
            # A newer version is already indexed; this write is obsolete
            logger.debug("search put superseded id=%s version=%s", doc_id, doc["version"])
            return
        if r.status_code >= 400:
            raise IndexUnavailable(f"Index write failed: {r.status_code} {r.text[:200]}")

    def delete(self, doc_id: str) -> None:
        self.ensure_index()
        r = self._request("DELETE", f"/{self.index_name}/_doc/{doc_id}", params={"refresh": "wait_for"})
        if r.status_code == 404:
            return
        if r.status_code >= 400:
            raise IndexUnavailable(f"Index delete failed: {r.status_code} {r.text[:200]}")

    def bulk_put(self, docs: List[Dict[str, Any]]) -> None:
        if not docs:
            return
        self.ensure_index()
        lines: List[str] = []
        for doc in docs:
            action = {
                "index": {
                    "_index": self.index_name,
                    "_id": str(doc["voter_id"]),
                    "version": int(doc["version"]),
                    "version_type": "external_gte",
                }
            }
            lines.append(json.dumps(action))
            lines.append(json.dumps(doc, default=str))
        body = "\n".join(lines) + "\n"

        r = self._request(
            "POST",
            "/_bulk",
            params={"refresh": "wait_for"},
            content=body.encode("utf-8"),
            headers={"Content-Type": "application/x-ndjson"},
        )
        if r.status_code >= 400:
            raise IndexUnavailable(f"Bulk index failed: {r.status_code} {r.text[:200]}")

        data = r.json()
        if data.get("errors"):
            failed = [
                item["index"]
                for item in data.get("items", [])
                if item.get("index", {}).get("error") and item["index"].get("status") != 409
            ]
            if failed:
                logger.error("bulk index partial failure count=%s first=%s", len(failed), failed[0].get("error"))
                raise IndexUnavailable(f"Bulk index failed for {len(failed)} document(s)")

    # -------------------------
    # Reads
    # -------------------------

    def get_versions(self, doc_ids: Iterable[str]) -> Dict[str, int]:
        ids = [str(i) for i in doc_ids]
        if not ids:
            return {}
        self.ensure_index()
        r = self._request(
            "POST",
            f"/{self.index_name}/_mget",
            params={"_source_includes": "version"},
            json={"ids": ids},
        )
        if r.status_code >= 400:
            raise IndexUnavailable(f"mget failed: {r.status_code}")
        out: Dict[str, int] = {}
        for d in r.json().get("docs", []):
            if d.get("found"):
                out[str(d["_id"])] = int((d.get("_source") or {}).get("version", 0))
        return out

    def ids_after(self, after: Optional[int], limit: int) -> List[int]:
        self.ensure_index()
        body: Dict[str, Any] = {
            "size": int(limit),
            "_source": False,
            "sort": [{"voter_id": "asc"}],
            "query": {"match_all": {}},
        }
        if after is not None:
            body["search_after"] = [int(after)]
        r = self._request("POST", f"/{self.index_name}/_search", json=body)
        if r.status_code >= 400:
            raise IndexUnavailable(f"Index scan failed: {r.status_code}")
        return [int(h["_id"]) for h in r.json().get("hits", {}).get("hits", [])]

    def search(
        self,
        query: str = "",
        filters: Optional[Dict[str, Any]] = None,
        *,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        self.ensure_index()
        must: List[Dict[str, Any]] = []
        flt: List[Dict[str, Any]] = []

        q = (query or "").strip()
        if q:
            must.append(
                {
                    "bool": {
                        "should": [
                            {
                                "multi_match": {
                                    "query": q,
                                    "fields": [f"{f}^3" if f == "full_name" else f for f in TEXT_FIELDS if "." not in f],
                                    "fuzziness": "AUTO",
                                    "lenient": True,
                                }
                            },
                            {
                                "nested": {
                                    "path": "references",
                                    "query": {
                                        "multi_match": {
                                            "query": q,
                                            "fields": [f for f in TEXT_FIELDS if f.startswith("references.")],
                                        }
                                    },
                                }
                            },
                        ],
                        "minimum_should_match": 1,
                    }
                }
            )

        for key, value in (filters or {}).items():
            if value in (None, "") or key not in FILTER_FIELDS:
                continue
            if key.startswith("references."):
                flt.append({"nested": {"path": "references", "query": {"term": {key: value}}}})
            else:
                flt.append({"term": {key: value}})

        body = {
            "from": (max(1, page) - 1) * limit,
            "size": limit,
            "query": {"bool": {"must": must or [{"match_all": {}}], "filter": flt}},
            "sort": [{"_score": "desc"}, {"voter_id": "desc"}],
        }
        r = self._request("POST", f"/{self.index_name}/_search", json=body)
        if r.status_code >= 400:
            raise IndexUnavailable(f"Search failed: {r.status_code}")
        hits = r.json().get("hits", {})
        total = hits.get("total", {})
        return {
            "total": int(total.get("value", 0) if isinstance(total, dict) else total),
            "items": [h.get("_source", {}) for h in hits.get("hits", [])],
        }


    def suggest(self, prefix: str, limit: int = 10) -> List[str]:
        """Distinct voter names matching prefix as a phrase, for autocomplete."""
        self.ensure_index()
        body = {
            "size": int(limit),
            "_source": ["full_name"],
            "query": {"match_phrase_prefix": {"full_name": {"query": prefix, "max_expansions": 50}}},
            "collapse": {"field": "full_name.keyword"},
        }
        r = self._request("POST", f"/{self.index_name}/_search", json=body)
        if r.status_code >= 400:
            raise IndexUnavailable(f"Suggest failed: {r.status_code}")
        hits = r.json().get("hits", {}).get("hits", [])
        return [h["_source"]["full_name"] for h in hits if (h.get("_source") or {}).get("full_name")]


class InMemorySearchIndex:
    """
    Dict-backed SearchIndex for local development and tests.

    Same version rule as Elasticsearch external_gte: an older write never
    replaces a newer document. Thread-safe; all data is lost on exit.
    """

    def __init__(self) -> None:
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def put(self, doc_id: str, doc: Dict[str, Any]) -> None:
        with self._lock:
            current = self._docs.get(doc_id)
            if current is not None and int(current["version"]) > int(doc["version"]):
                return
            self._docs[doc_id] = json.loads(json.dumps(doc, default=str))

    def delete(self, doc_id: str) -> None:
        with self._lock:
            self._docs.pop(doc_id, None)

    def bulk_put(self, docs: List[Dict[str, Any]]) -> None:
        for doc in docs:
            self.put(str(doc["voter_id"]), doc)

    def get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._docs.get(str(doc_id))

    def __len__(self) -> int:
        return len(self._docs)

    def get_versions(self, doc_ids: Iterable[str]) -> Dict[str, int]:
        with self._lock:
            return {
                str(i): int(self._docs[str(i)]["version"])
                for i in doc_ids
                if str(i) in self._docs
            }

    def ids_after(self, after: Optional[int], limit: int) -> List[int]:
        with self._lock:
            ids = sorted(int(k) for k in self._docs)
        if after is not None:
            ids = [i for i in ids if i > after]
        return ids[: int(limit)]

    def search(
        self,
        query: str = "",
        filters: Optional[Dict[str, Any]] = None,
        *,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        q = (query or "").strip().lower()
        with self._lock:
            docs = list(self._docs.values())

        def _matches(doc: Dict[str, Any]) -> bool:
            if q:
                hay = [str(doc.get(f) or "").lower() for f in TEXT_FIELDS if "." not in f]
                for ref in doc.get("references") or []:
                    hay.append(str(ref.get("reference_name") or "").lower())
                    hay.append(str(ref.get("reference_contact") or "").lower())
                if not any(q in h for h in hay):
                    return False
            for key, value in (filters or {}).items():
                if value in (None, "") or key not in FILTER_FIELDS:
                    continue
                if key.startswith("references."):
                    sub = key.split(".", 1)[1]
                    if not any(r.get(sub) == value for r in doc.get("references") or []):
                        return False
                elif doc.get(key) != value:
                    return False
            return True

        matched = sorted((d for d in docs if _matches(d)), key=lambda d: -int(d["voter_id"]))
        start = (max(1, page) - 1) * limit
        return {"total": len(matched), "items": matched[start : start + limit]}

    def suggest(self, prefix: str, limit: int = 10) -> List[str]:
        needle = " ".join((prefix or "").lower().split())
        if not needle:
            return []
        with self._lock:
            names = {str(d.get("full_name") or "") for d in self._docs.values()}
        # word-start match, close to match_phrase_prefix on an analyzed name
        matched = [n for n in names if f" {needle}" in " " + " ".join(n.lower().split())]
        return sorted(matched)[: int(limit)]
