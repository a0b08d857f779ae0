"""
Elasticsearch adapter for the product search index.

The index is a denormalized, rebuildable projection of the ``products``
table. This module is the only place that talks to the Elasticsearch client:
it normalizes client responses into ``SearchResult`` / ``BulkResult`` so
route handlers never inspect raw response shapes.

Connection state lives on the ``SearchIndex`` handle (one per application,
stored on ``app.state``). The startup check retries with exponential
backoff; afterwards a lost connection flips the handle to unavailable and
it is re-checked lazily, at most once per ``recheck_interval`` seconds.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from elastic_transport import TransportError
from elasticsearch import Elasticsearch
from fastapi import Request

from storefront.config import Settings
from storefront.logger import get_logger

logger = get_logger("tools.search_index")


INDEX_SETTINGS: Dict[str, Any] = {
    "index": {
        "max_result_window": 10_000,
        "number_of_shards": 5,
        "number_of_replicas": 1,
    }
}

_TEXT_WITH_KEYWORD = {
    "type": "text",
    "fields": {"keyword": {"type": "keyword", "ignore_above": 256}},
}

INDEX_MAPPINGS: Dict[str, Any] = {
    "properties": {
        "id": {"type": "long"},
        "name": _TEXT_WITH_KEYWORD,
        "name_suggest": {"type": "completion", "analyzer": "standard"},
        "description": _TEXT_WITH_KEYWORD,
        "category": _TEXT_WITH_KEYWORD,
        "colors": _TEXT_WITH_KEYWORD,
        "price": {"type": "long"},
        "stock": {"type": "integer"},
        "views": {"type": "integer", "null_value": 0},
        "sold": {"type": "integer", "null_value": 0},
        "status": {"type": "keyword"},
        "images": {"type": "keyword", "index": False},
        "created_at": {"type": "date"},
        "updated_at": {"type": "date"},
        "deleted_at": {"type": "date"},
    }
}


class SearchUnavailable(RuntimeError):
    """The search backend cannot be reached."""


@dataclass
class SearchHit:
    id: str
    source: Dict[str, Any]
    score: Optional[float] = None


@dataclass
class SearchResult:
    hits: List[SearchHit] = field(default_factory=list)
    total: int = 0
    aggregations: Dict[str, Any] = field(default_factory=dict)
    # suggester name -> option texts, in engine order
    suggestions: Dict[str, List[str]] = field(default_factory=dict)


@dataclass
class BulkResult:
    indexed: int = 0
    failed: List[Tuple[str, str]] = field(default_factory=list)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def build_document(product) -> Dict[str, Any]:
    """Project a Product row into its search document."""
    return {
        "id": product.id,
        "name": product.name,
        "name_suggest": product.name,
        "description": product.description,
        "category": product.category,
        "colors": list(product.colors or []),
        "price": product.price,
        "stock": product.stock or 0,
        "images": list(product.images or []),
        "views": product.views or 0,
        "sold": product.sold or 0,
        "status": product.status,
        "created_at": _iso(product.created_at),
        "updated_at": _iso(product.updated_at),
        "deleted_at": _iso(product.deleted_at),
    }


def _body(response: Any) -> Dict[str, Any]:
    """Plain dict body of a client response."""
    return dict(getattr(response, "body", response) or {})


def _total(hits: Dict[str, Any]) -> int:
    total = hits.get("total", 0)
    if isinstance(total, dict):
        return int(total.get("value", 0))
    return int(total or 0)


class SearchIndex:
    """Health-checked handle around an Elasticsearch client."""

    def __init__(
        self,
        settings: Settings,
        client: Optional[Elasticsearch] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.index_name = settings.elasticsearch_index
        self.recheck_interval = settings.elasticsearch_recheck_interval
        self.client = client if client is not None else self._make_client(settings)
        self.available = False
        self._clock = clock
        self._last_check: Optional[float] = None

    @staticmethod
    def _make_client(settings: Settings) -> Elasticsearch:
        kwargs: Dict[str, Any] = {
            "request_timeout": settings.elasticsearch_timeout,
            "verify_certs": False,
            "max_retries": 0,
        }
        if settings.elastic_username and settings.elastic_password:
            kwargs["basic_auth"] = (settings.elastic_username, settings.elastic_password)
        return Elasticsearch(settings.elasticsearch_url, **kwargs)

    #
    # Connection state
    #

    def check_connection(self) -> bool:
        """Ping the cluster and make sure the index exists."""
        self._last_check = self._clock()
        try:
            if not self.client.ping():
                self.available = False
                return False
            self.ensure_index()
        except TransportError as e:
            logger.warning("Elasticsearch connection check failed: %s", e)
            self.available = False
            return False
        self.available = True
        return True

    def connect_with_retry(
        self,
        retries: int = 5,
        delay: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> bool:
        """Startup connectivity check with exponential backoff."""
        for attempt in range(retries):
            logger.info("Elasticsearch connection attempt %d/%d", attempt + 1, retries)
            if self.check_connection():
                logger.info("Connected to Elasticsearch index '%s'", self.index_name)
                return True
            if attempt < retries - 1:
                wait = delay * (2 ** attempt)
                logger.info("Retrying Elasticsearch in %.1f seconds...", wait)
                sleep(wait)
        logger.warning(
            "Elasticsearch unreachable after %d attempts; search runs in degraded mode", retries
        )
        return False

    def ensure_available(self) -> bool:
        """True if usable now; re-checks a lost connection lazily."""
        if self.available:
            return True
        if self._last_check is None or self._clock() - self._last_check >= self.recheck_interval:
            return self.check_connection()
        return False

    def _mark_unavailable(self, operation: str, exc: Exception) -> None:
        logger.warning("Elasticsearch %s failed, marking search unavailable: %s", operation, exc)
        self.available = False
        self._last_check = self._clock()

    def _call(self, operation: str, fn: Callable[..., Any], **kwargs) -> Any:
        if not self.ensure_available():
            raise SearchUnavailable(f"search backend unavailable ({operation})")
        try:
            return fn(**kwargs)
        except TransportError as e:
            self._mark_unavailable(operation, e)
            raise SearchUnavailable(str(e)) from e

    #
    # Index management
    #

    def ensure_index(self) -> None:
        if not self.client.indices.exists(index=self.index_name):
            logger.info("Creating index '%s'", self.index_name)
            self.client.indices.create(
                index=self.index_name, settings=INDEX_SETTINGS, mappings=INDEX_MAPPINGS
            )

    def recreate_index(self) -> None:
        """Drop the index (if present) and create it with current mappings."""
        def _recreate():
            if self.client.indices.exists(index=self.index_name):
                self.client.indices.delete(index=self.index_name)
                logger.info("Deleted existing index '%s'", self.index_name)
            self.client.indices.create(
                index=self.index_name, settings=INDEX_SETTINGS, mappings=INDEX_MAPPINGS
            )
            logger.info("Created index '%s'", self.index_name)
        self._call("recreate_index", _recreate)

    def refresh(self) -> None:
        self._call("refresh", self.client.indices.refresh, index=self.index_name)

    def count(self) -> int:
        response = self._call("count", self.client.count, index=self.index_name)
        return int(_body(response).get("count", 0))

    #
    # Single-document writes (write path waits for visibility)
    #

    def index_document(self, product) -> None:
        self._call(
            "index",
            self.client.index,
            index=self.index_name,
            id=str(product.id),
            document=build_document(product),
            refresh="wait_for",
        )

    def update_document(self, product) -> None:
        self._call(
            "update",
            self.client.update,
            index=self.index_name,
            id=str(product.id),
            doc=build_document(product),
            doc_as_upsert=True,
            refresh="wait_for",
        )

    def delete_document(self, product_id) -> bool:
        """Delete by id. Returns False if the document was not indexed."""
        response = self._call(
            "delete",
            self.client.options(ignore_status=404).delete,
            index=self.index_name,
            id=str(product_id),
            refresh="wait_for",
        )
        return _body(response).get("result") == "deleted"

    def document_exists(self, product_id) -> bool:
        return bool(self._call("exists", self.client.exists, index=self.index_name, id=str(product_id)))

    def get_source(self, product_id) -> Optional[Dict[str, Any]]:
        response = self._call(
            "get",
            self.client.options(ignore_status=404).get,
            index=self.index_name,
            id=str(product_id),
        )
        body = _body(response)
        if not body.get("found"):
            return None
        return body.get("_source") or {}

    #
    # Bulk
    #

    def bulk_index(self, documents: Iterable[Dict[str, Any]]) -> BulkResult:
        """Index documents in one bulk request; per-document failures are reported, not raised."""
        operations: List[Dict[str, Any]] = []
        for doc in documents:
            operations.append({"index": {"_index": self.index_name, "_id": str(doc["id"])}})
            operations.append(doc)
        if not operations:
            return BulkResult()
        response = self._call("bulk", self.client.bulk, operations=operations, refresh=False)
        return self._bulk_result(_body(response), "index")

    def delete_many(self, product_ids: Iterable) -> BulkResult:
        operations = [
            {"delete": {"_index": self.index_name, "_id": str(pid)}} for pid in product_ids
        ]
        if not operations:
            return BulkResult()
        response = self._call("bulk", self.client.bulk, operations=operations, refresh=False)
        return self._bulk_result(_body(response), "delete")

    @staticmethod
    def _bulk_result(body: Dict[str, Any], action: str) -> BulkResult:
        result = BulkResult()
        for item in body.get("items", []):
            outcome = item.get(action, {})
            error = outcome.get("error")
            if error:
                reason = error.get("reason", str(error)) if isinstance(error, dict) else str(error)
                result.failed.append((str(outcome.get("_id")), reason))
            else:
                result.indexed += 1
        return result

    #
    # Queries
    #

    def search(self, **request: Any) -> SearchResult:
        """Run a search built by ``storefront.query_builder``."""
        response = self._call("search", self.client.search, index=self.index_name, **request)
        body = _body(response)
        hits = body.get("hits", {})

        suggestions: Dict[str, List[str]] = {}
        for name, entries in (body.get("suggest") or {}).items():
            options: List[str] = []
            for entry in entries or []:
                for option in entry.get("options", []):
                    text = option.get("text")
                    if text and text not in options:
                        options.append(text)
            suggestions[name] = options

        return SearchResult(
            hits=[
                SearchHit(id=str(hit.get("_id")), source=hit.get("_source") or {}, score=hit.get("_score"))
                for hit in hits.get("hits", [])
            ],
            total=_total(hits),
            aggregations=body.get("aggregations") or {},
            suggestions=suggestions,
        )


def get_search_index(request: Request) -> SearchIndex:
    """FastAPI dependency: the application's search handle."""
    return request.app.state.search_index
