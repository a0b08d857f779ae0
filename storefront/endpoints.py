"""
Search and facet endpoints (``/api/search``).

Reads go cache-aside: Redis first, then Elasticsearch, then the payload is
stored back with the kind's TTL. When the search backend is unreachable
every read returns an empty, well-formed payload with HTTP 200 and nothing
is cached. Reindex and delete-from-index need the backend and answer 503
without it.
"""

import json
import time
import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from pydantic import ValidationError
from sqlalchemy.orm import Session

from storefront import cache_policy
from storefront.cache import CacheClient, get_cache
from storefront.database import get_db
from storefront.formatters import (
    STATIC_COLORS,
    empty_search_response,
    format_aggregations,
    format_buckets,
    format_hits,
    format_price_ranges,
    format_price_stats,
)
from storefront.metrics import metrics_collector, record_request_metrics
from storefront.query_builder import (
    DID_YOU_MEAN_THRESHOLD,
    SUGGESTION_LIMIT,
    build_categories_request,
    build_did_you_mean_request,
    build_price_ranges_request,
    build_related_request,
    build_search_request,
    build_suggest_request,
    build_trending_request,
    total_pages,
)
from storefront.reindex import run_reindex
from storefront.schemas import (
    CategoriesResponse,
    ColorsResponse,
    PriceRangesResponse,
    PriceStats,
    ProductListResponse,
    ReindexResponse,
    SearchFilters,
    SearchResponse,
    SuggestResponse,
)
from storefront.structured_logger import StructuredLogger
from storefront.tools.product_store import ProductStore
from storefront.tools.search_index import SearchIndex, SearchUnavailable, get_search_index

log = StructuredLogger("search")

router = APIRouter(prefix="/api/search", tags=["search"])

UNAVAILABLE_MESSAGE = "Search service is temporarily unavailable"
MIN_SUGGEST_LENGTH = 2


def _json_text(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, default=str)


def _cached_response(text: str, hit: bool) -> Response:
    return Response(
        content=text,
        media_type="application/json",
        headers={"X-Cache": "HIT" if hit else "MISS"},
    )


def _finish(
    endpoint: str,
    request_id: str,
    start_time: float,
    status: str,
    cache_hit: bool = False,
    total: Optional[int] = None,
    degraded: bool = False,
) -> None:
    latency_ms = (time.time() - start_time) * 1000
    record_request_metrics(endpoint, latency_ms, is_error=False, degraded=degraded)
    log.log_response(endpoint, request_id, status, latency_ms, cache_hit=cache_hit, total=total)


def _did_you_mean(index: SearchIndex, query: str) -> Optional[List[str]]:
    """Spelling suggestions for a query; None if the engine has none."""
    try:
        result = index.search(**build_did_you_mean_request(query))
    except SearchUnavailable:
        return None
    options = result.suggestions.get("term_suggestions") or []
    return options[:SUGGESTION_LIMIT] or None


#
# Search
#

@router.get("")
def search_products(
    page: int = Query(1),
    limit: int = Query(20),
    query: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    min_price: Optional[int] = Query(None, alias="minPrice"),
    max_price: Optional[int] = Query(None, alias="maxPrice"),
    colors: Optional[str] = Query(None),
    sort: Optional[str] = Query(None),
    cache: CacheClient = Depends(get_cache),
    index: SearchIndex = Depends(get_search_index),
):
    """
    Full-text + faceted product search.

    Raises PaginationLimitExceeded (400) before touching the cache or the
    index when the page offset is beyond the result window.
    """
    request_id = str(uuid.uuid4())
    start_time = time.time()

    try:
        filters = SearchFilters(
            page=page,
            limit=limit,
            query=query,
            category=category,
            min_price=min_price,
            max_price=max_price,
            colors=colors,
            sort=sort,
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail=[{"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in e.errors()],
        )

    request_body = build_search_request(filters)
    log.log_request("search", request_id, params=filters.cache_fields())

    cache_key = cache.make_search_key(filters.cache_fields())
    cached = cache.get_text(cache_key)
    metrics_collector.record_cache("search", cached is not None)
    log.log_cache_event("search", cache_key, cached is not None)
    if cached is not None:
        _finish("search", request_id, start_time, "OK", cache_hit=True)
        return _cached_response(cached, hit=True)

    try:
        result = index.search(**request_body)
    except SearchUnavailable:
        _finish("search", request_id, start_time, "DEGRADED", total=0, degraded=True)
        degraded = empty_search_response(filters.page).model_dump(mode="json", exclude_none=True)
        return _cached_response(_json_text(degraded), hit=False)

    response = SearchResponse(
        products=format_hits(result.hits),
        total=result.total,
        page=filters.page,
        pages=total_pages(result.total, filters.limit),
        aggregations=format_aggregations(result.aggregations),
    )
    if filters.query and result.total < DID_YOU_MEAN_THRESHOLD:
        response.suggestions = _did_you_mean(index, filters.query)

    text = _json_text(response.model_dump(mode="json", exclude_none=True))
    cache.set_text(cache_key, text, cache.ttl_search)
    _finish("search", request_id, start_time, "OK", total=result.total)
    return _cached_response(text, hit=False)


#
# Facets
#

@router.get("/categories", response_model=CategoriesResponse, response_model_exclude_none=True)
def get_categories(
    cache: CacheClient = Depends(get_cache),
    index: SearchIndex = Depends(get_search_index),
):
    request_id = str(uuid.uuid4())
    start_time = time.time()

    cached = cache.get_json(cache_policy.CATEGORIES_KEY)
    metrics_collector.record_cache("categories", cached is not None)
    if cached is not None:
        _finish("categories", request_id, start_time, "OK", cache_hit=True)
        return CategoriesResponse(categories=cached)

    try:
        result = index.search(**build_categories_request())
    except SearchUnavailable:
        _finish("categories", request_id, start_time, "DEGRADED", degraded=True)
        return CategoriesResponse(categories=[], message=UNAVAILABLE_MESSAGE)

    categories = format_buckets(result.aggregations.get("categories"))
    cache.set_json(
        cache_policy.CATEGORIES_KEY,
        [c.model_dump() for c in categories],
        cache.ttl_categories,
    )
    _finish("categories", request_id, start_time, "OK", total=len(categories))
    return CategoriesResponse(categories=categories)


@router.get("/colors", response_model=ColorsResponse)
def get_colors():
    """Fixed color palette for the filter sidebar."""
    return ColorsResponse(colors=STATIC_COLORS)


@router.get("/price-ranges", response_model=PriceRangesResponse, response_model_by_alias=True,
            response_model_exclude_none=True)
def get_price_ranges(index: SearchIndex = Depends(get_search_index)):
    request_id = str(uuid.uuid4())
    start_time = time.time()
    try:
        result = index.search(**build_price_ranges_request())
    except SearchUnavailable:
        _finish("price_ranges", request_id, start_time, "DEGRADED", degraded=True)
        return PriceRangesResponse(stats=PriceStats(), ranges=[], message=UNAVAILABLE_MESSAGE)

    _finish("price_ranges", request_id, start_time, "OK")
    return PriceRangesResponse(
        stats=format_price_stats(result.aggregations.get("price_stats")),
        ranges=format_price_ranges(result.aggregations.get("price_ranges")),
    )


#
# Product lists
#

@router.get("/trending", response_model=ProductListResponse, response_model_exclude_none=True)
def get_trending(
    limit: int = Query(10, ge=1, le=50),
    index: SearchIndex = Depends(get_search_index),
):
    """Most viewed / best selling products."""
    request_id = str(uuid.uuid4())
    start_time = time.time()
    try:
        result = index.search(**build_trending_request(limit))
    except SearchUnavailable:
        _finish("trending", request_id, start_time, "DEGRADED", degraded=True)
        return ProductListResponse(products=[], message=UNAVAILABLE_MESSAGE)

    _finish("trending", request_id, start_time, "OK", total=len(result.hits))
    return ProductListResponse(products=format_hits(result.hits))


@router.get("/related/{product_id}", response_model=ProductListResponse, response_model_exclude_none=True)
def get_related(
    product_id: int,
    limit: int = Query(10, ge=1, le=50),
    index: SearchIndex = Depends(get_search_index),
):
    """Products sharing the category or a color with the given product."""
    request_id = str(uuid.uuid4())
    start_time = time.time()
    try:
        source = index.get_source(product_id)
        if source is None or source.get("deleted_at"):
            raise HTTPException(status_code=404, detail="Product not found")
        result = index.search(
            **build_related_request(product_id, source.get("category"), source.get("colors"), limit)
        )
    except SearchUnavailable:
        _finish("related", request_id, start_time, "DEGRADED", degraded=True)
        return ProductListResponse(products=[], message=UNAVAILABLE_MESSAGE)

    _finish("related", request_id, start_time, "OK", total=len(result.hits))
    return ProductListResponse(products=format_hits(result.hits))


@router.get("/suggest", response_model=SuggestResponse)
def get_suggestions(
    query: str = Query(""),
    cache: CacheClient = Depends(get_cache),
    index: SearchIndex = Depends(get_search_index),
):
    """Autocomplete: up to five names starting with the query, then spelling fixes."""
    query = query.strip()
    if len(query) < MIN_SUGGEST_LENGTH:
        return SuggestResponse(suggestions=[])

    request_id = str(uuid.uuid4())
    start_time = time.time()
    cache_key = cache_policy.suggestions_key(query)
    cached = cache.get_json(cache_key)
    metrics_collector.record_cache("suggestions", cached is not None)
    if cached is not None:
        _finish("suggest", request_id, start_time, "OK", cache_hit=True)
        return SuggestResponse(suggestions=cached)

    try:
        result = index.search(**build_suggest_request(query))
    except SearchUnavailable:
        _finish("suggest", request_id, start_time, "DEGRADED", degraded=True)
        return SuggestResponse(suggestions=[])

    suggestions: List[str] = []
    names = [b.name for b in format_buckets(result.aggregations.get("name_suggestions"))]
    for text in names + result.suggestions.get("term_suggest", []):
        if text not in suggestions:
            suggestions.append(text)
    suggestions = suggestions[:SUGGESTION_LIMIT]

    cache.set_json(cache_key, suggestions, cache.ttl_suggestions)
    _finish("suggest", request_id, start_time, "OK", total=len(suggestions))
    return SuggestResponse(suggestions=suggestions)


#
# Index maintenance
#

@router.post("/reindex", response_model=ReindexResponse)
def reindex(
    request: Request,
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    index: SearchIndex = Depends(get_search_index),
):
    """Drop and rebuild the search index from the catalog store."""
    request_id = str(uuid.uuid4())
    start_time = time.time()
    log.log_request("reindex", request_id)

    try:
        stats = run_reindex(ProductStore(db), index, request.app.state.settings.reindex_batch_size)
    except SearchUnavailable as e:
        log.log_error("SearchUnavailable", str(e), request_id)
        record_request_metrics("reindex", (time.time() - start_time) * 1000, is_error=True)
        raise HTTPException(status_code=503, detail=UNAVAILABLE_MESSAGE)

    cache.invalidate_catalog()
    _finish("reindex", request_id, start_time, "OK", total=stats.total_indexed)
    return ReindexResponse(
        message="Reindex completed",
        total_indexed=stats.total_indexed,
        total_batches=stats.total_batches,
        total_failed=stats.total_failed,
    )


@router.delete("/product/{product_id}")
def delete_from_index(
    product_id: int,
    cache: CacheClient = Depends(get_cache),
    index: SearchIndex = Depends(get_search_index),
):
    """Remove one document from the index. The catalog record is untouched."""
    try:
        if not index.document_exists(product_id):
            raise HTTPException(status_code=404, detail="Product not found in search index")
        index.delete_document(product_id)
    except SearchUnavailable:
        raise HTTPException(status_code=503, detail=UNAVAILABLE_MESSAGE)

    cache.invalidate_catalog()
    return {"success": True, "message": f"Product {product_id} removed from search index"}
