"""
Pytest configuration for the storefront tests.

No live services are needed: SQLite (in memory) stands in for the catalog
store, and small in-process fakes stand in for Redis and Elasticsearch. The
fakes are installed on ``app.state`` before the app starts, so the lifespan
keeps them instead of building real clients.
"""

import fnmatch
import math
import os
import re
from unittest.mock import MagicMock

os.environ.setdefault("STOREFRONT_SKIP_CONNECT", "1")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
import redis
from elastic_transport import ConnectionError as TransportConnectionError
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront import database
from storefront.cache import CacheClient
from storefront.config import Settings
from storefront.database import Base, get_db
from storefront.main import app
from storefront.metrics import metrics_collector
from storefront.models import Product
from storefront.tools.object_storage import ObjectStorage
from storefront.tools.search_index import SearchIndex


# ---------------------------------------------------------------------------
# Redis fake
# ---------------------------------------------------------------------------

class FakeRedis:
    """The subset of redis.Redis the cache layer uses (decode_responses=True)."""

    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.down = False
        self.scan_patterns = []

    def _check(self):
        if self.down:
            raise redis.ConnectionError("redis is down")

    def ping(self):
        self._check()
        return True

    def get(self, key):
        self._check()
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self._check()
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    def delete(self, *keys):
        self._check()
        deleted = 0
        for key in keys:
            if key in self.store:
                del self.store[key]
                self.ttls.pop(key, None)
                deleted += 1
        return deleted

    def scan_iter(self, match="*", count=None):
        self._check()
        self.scan_patterns.append(match)
        return iter([k for k in list(self.store) if fnmatch.fnmatchcase(k, match)])

    def keys(self, pattern="*"):
        raise AssertionError("KEYS must not be used; invalidation goes through SCAN")

    def flushdb(self):
        self._check()
        self.store.clear()
        self.ttls.clear()


# ---------------------------------------------------------------------------
# Elasticsearch fake
# ---------------------------------------------------------------------------

def _field_values(doc, field):
    value = doc.get(field[:-len(".keyword")] if field.endswith(".keyword") else field)
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _tokens(text):
    return re.findall(r"\w+", str(text or "").lower())


class _FakeIndices:
    def __init__(self, es):
        self.es = es

    def exists(self, index):
        self.es._check()
        return index in self.es.indices_created

    def create(self, index, settings=None, mappings=None):
        self.es._check()
        self.es.indices_created.add(index)
        self.es.mappings = mappings
        self.es.docs = {}
        return {"acknowledged": True}

    def delete(self, index):
        self.es._check()
        self.es.indices_created.discard(index)
        self.es.docs = {}
        return {"acknowledged": True}

    def refresh(self, index):
        self.es._check()
        self.es.refreshes += 1
        return {}


class FakeElasticsearch:
    """
    Evaluates the query DSL subset produced by storefront.query_builder
    against an in-memory dict of documents.
    """

    def __init__(self):
        self.docs = {}
        self.indices_created = set()
        self.indices = _FakeIndices(self)
        self.mappings = None
        self.up = True
        self.calls = []
        self.bulk_calls = []
        self.fail_ids = set()
        self.term_suggestions = []
        self.refreshes = 0

    def _check(self):
        if not self.up:
            raise TransportConnectionError("connection refused")

    def options(self, **kwargs):
        return self

    def ping(self):
        return self.up

    # Documents

    def index(self, index, id, document, refresh=None):
        self._check()
        self.docs[str(id)] = dict(document)
        return {"result": "created"}

    def update(self, index, id, doc, doc_as_upsert=False, refresh=None):
        self._check()
        existing = self.docs.get(str(id), {})
        existing.update(doc)
        self.docs[str(id)] = existing
        return {"result": "updated"}

    def delete(self, index, id, refresh=None):
        self._check()
        if self.docs.pop(str(id), None) is None:
            return {"result": "not_found"}
        return {"result": "deleted"}

    def exists(self, index, id):
        self._check()
        return str(id) in self.docs

    def get(self, index, id):
        self._check()
        if str(id) not in self.docs:
            return {"found": False}
        return {"found": True, "_id": str(id), "_source": dict(self.docs[str(id)])}

    def count(self, index):
        self._check()
        return {"count": len(self.docs)}

    def bulk(self, operations, refresh=None):
        self._check()
        self.bulk_calls.append(operations)
        items = []
        i = 0
        while i < len(operations):
            action, meta = next(iter(operations[i].items()))
            doc_id = meta["_id"]
            if action == "index":
                source = operations[i + 1]
                i += 2
                if doc_id in self.fail_ids:
                    items.append({"index": {"_id": doc_id, "status": 400, "error": {
                        "type": "mapper_parsing_exception", "reason": "failed to parse"}}})
                    continue
                self.docs[doc_id] = dict(source)
                items.append({"index": {"_id": doc_id, "status": 201, "result": "created"}})
            else:
                i += 1
                found = self.docs.pop(doc_id, None) is not None
                items.append({"delete": {"_id": doc_id, "status": 200 if found else 404,
                                         "result": "deleted" if found else "not_found"}})
        return {"errors": any("error" in next(iter(it.values())) for it in items), "items": items}

    # Search

    def _text_score(self, clause, doc):
        kind, spec = next(iter(clause.items()))
        field, params = next(iter(spec.items()))
        query = params["query"].lower()
        boost = params.get("boost", 1)
        text = str(doc.get(field) or "").lower()
        if kind == "match_phrase_prefix":
            return boost if query in text else 0
        words = _tokens(text)
        hits = 0
        for q in _tokens(query):
            if any(w == q or w.startswith(q) or (len(q) > 4 and _edit1(w, q)) for w in words):
                hits += 1
        return boost * hits

    def _matches(self, clause, doc_id, doc):
        """(matched, score) for one query clause."""
        kind, spec = next(iter(clause.items()))
        if kind == "bool":
            return self._bool(spec, doc_id, doc)
        if kind == "match_all":
            return True, 1.0
        if kind in ("match", "match_phrase_prefix"):
            score = self._text_score(clause, doc)
            return score > 0, score
        if kind == "term":
            field, value = next(iter(spec.items()))
            boost = 1.0
            if isinstance(value, dict):
                boost = value.get("boost", 1.0)
                value = value["value"]
            return value in _field_values(doc, field), boost
        if kind == "terms":
            field, values = next(iter(spec.items()))
            return bool(set(values) & set(_field_values(doc, field))), 1.0
        if kind == "range":
            field, bounds = next(iter(spec.items()))
            value = doc.get(field)
            if value is None:
                return False, 0
            ok = all([
                "gte" not in bounds or value >= bounds["gte"],
                "lte" not in bounds or value <= bounds["lte"],
            ])
            return ok, 1.0
        if kind == "exists":
            return doc.get(spec["field"]) is not None, 1.0
        if kind == "ids":
            return doc_id in spec["values"], 1.0
        raise AssertionError(f"unsupported query clause: {kind}")

    def _bool(self, spec, doc_id, doc):
        score = 0.0
        for clause in spec.get("must", []):
            ok, s = self._matches(clause, doc_id, doc)
            if not ok:
                return False, 0
            score += s
        for clause in spec.get("filter", []):
            if not self._matches(clause, doc_id, doc)[0]:
                return False, 0
        for clause in spec.get("must_not", []):
            if self._matches(clause, doc_id, doc)[0]:
                return False, 0
        should = spec.get("should", [])
        if should:
            matched = [s for ok, s in (self._matches(c, doc_id, doc) for c in should) if ok]
            if len(matched) < spec.get("minimum_should_match", 0):
                return False, 0
            score += sum(matched)
        return True, score or 1.0

    def _evaluate(self, query):
        if query is None:
            return [(doc_id, doc, 1.0) for doc_id, doc in self.docs.items()]
        if "function_score" in query:
            fs = query["function_score"]
            results = []
            for doc_id, doc, _ in self._evaluate(fs["query"]):
                score = 0.0
                for fn in fs["functions"]:
                    fvf = fn["field_value_factor"]
                    value = doc.get(fvf["field"]) or fvf.get("missing", 0)
                    score += math.log10(1 + value * fvf.get("factor", 1)) * fn.get("weight", 1)
                results.append((doc_id, doc, score))
            return results
        results = []
        for doc_id, doc in self.docs.items():
            ok, score = self._matches(query, doc_id, doc)
            if ok:
                results.append((doc_id, doc, score))
        return results

    def _aggregate(self, aggs, docs):
        out = {}
        for name, spec in aggs.items():
            kind, params = next(iter(spec.items()))
            if kind == "terms":
                counts = {}
                include = params.get("include")
                for doc in docs:
                    for value in set(_field_values(doc, params["field"])):
                        if include and not re.fullmatch(include, str(value)):
                            continue
                        counts[value] = counts.get(value, 0) + 1
                buckets = sorted(counts.items(), key=lambda kv: (-kv[1], str(kv[0])))
                out[name] = {"buckets": [{"key": k, "doc_count": c}
                                         for k, c in buckets[:params.get("size", 10)]]}
            elif kind == "stats":
                values = [d[params["field"]] for d in docs if d.get(params["field"]) is not None]
                if values:
                    out[name] = {"count": len(values), "min": min(values), "max": max(values),
                                 "avg": sum(values) / len(values), "sum": sum(values)}
                else:
                    out[name] = {"count": 0, "min": None, "max": None, "avg": None, "sum": 0}
            elif kind == "range":
                buckets = []
                for r in params["ranges"]:
                    count = sum(
                        1 for d in docs
                        if d.get(params["field"]) is not None
                        and ("from" not in r or d[params["field"]] >= r["from"])
                        and ("to" not in r or d[params["field"]] < r["to"])
                    )
                    bucket = {"key": r["key"], "doc_count": count}
                    bucket.update({k: r[k] for k in ("from", "to") if k in r})
                    buckets.append(bucket)
                out[name] = {"buckets": buckets}
        return out

    def search(self, index, query=None, sort=None, from_=0, size=10, source=None,
               aggs=None, track_total_hits=None, suggest=None):
        self._check()
        self.calls.append({"query": query, "sort": sort, "from_": from_, "size": size,
                           "aggs": aggs, "suggest": suggest})
        results = self._evaluate(query)

        if sort:
            for spec in reversed(sort):
                field, order = next(iter(spec.items()))
                name = field[:-len(".keyword")] if field.endswith(".keyword") else field
                results.sort(key=lambda r: (r[1].get(name) is None, r[1].get(name) or 0),
                             reverse=(order == "desc"))
        else:
            results.sort(key=lambda r: -r[2])

        includes = (source or {}).get("includes")
        hits = [
            {
                "_id": doc_id,
                "_score": score,
                "_source": {k: v for k, v in doc.items() if includes is None or k in includes},
            }
            for doc_id, doc, score in results[from_:from_ + size]
        ]
        body = {"hits": {"total": {"value": len(results), "relation": "eq"}, "hits": hits}}
        if aggs:
            body["aggregations"] = self._aggregate(aggs, [doc for _, doc, _ in results])
        if suggest:
            body["suggest"] = {
                name: [{"text": suggest.get("text"),
                        "options": [{"text": t, "score": 0.9} for t in self.term_suggestions]}]
                for name in suggest if name != "text"
            }
        return body


def _edit1(a, b):
    """True if a and b differ by at most one edit."""
    if abs(len(a) - len(b)) > 1:
        return False
    if len(a) == len(b):
        return sum(x != y for x, y in zip(a, b)) <= 1
    if len(a) > len(b):
        a, b = b, a
    return any(b[:i] + b[i + 1:] == a for i in range(len(b)))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def settings():
    return Settings(
        env="test",
        skip_connect=True,
        reindex_batch_size=3,
        elasticsearch_recheck_interval=30.0,
        s3_bucket="productimages",
        s3_public_url="http://minio.test:9000",
    )


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(settings, fake_redis):
    return CacheClient(settings, client=fake_redis)


@pytest.fixture
def fake_es():
    return FakeElasticsearch()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def search_index(settings, fake_es, clock):
    index = SearchIndex(settings, client=fake_es, clock=clock)
    assert index.check_connection()
    return index


@pytest.fixture
def s3_client():
    return MagicMock()


@pytest.fixture
def storage(settings, s3_client):
    return ObjectStorage(settings, client=s3_client, clock=lambda: 1700000000.5)


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session_factory(db_engine, monkeypatch):
    factory = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    monkeypatch.setattr(database, "engine", db_engine)
    monkeypatch.setattr(database, "SessionLocal", factory)
    return factory


@pytest.fixture
def db(db_session_factory):
    session = db_session_factory()
    yield session
    session.close()


@pytest.fixture
def client(settings, cache, search_index, storage, db_session_factory):
    """TestClient with every external service replaced by a fake."""
    def _get_test_db():
        session = db_session_factory()
        try:
            yield session
        finally:
            session.close()

    app.state.settings = settings
    app.state.cache = cache
    app.state.search_index = search_index
    app.state.object_storage = storage
    app.dependency_overrides[get_db] = _get_test_db
    metrics_collector.reset()

    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    for name in ("settings", "cache", "search_index", "object_storage"):
        setattr(app.state, name, None)


@pytest.fixture
def make_product(db, search_index):
    """Insert a product row and index it, as the write path would."""
    def _make(name="Áo thun basic", price=150_000, category="Áo", colors=("Đen",),
              stock=10, views=0, sold=0, description="Cotton t-shirt for everyday wear",
              indexed=True, **extra):
        product = Product(
            name=name, price=price, description=description, category=category,
            colors=list(colors), stock=stock, images=extra.pop("images", []),
            views=views, sold=sold, status="active", **extra,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        if indexed:
            search_index.index_document(product)
        return product
    return _make
