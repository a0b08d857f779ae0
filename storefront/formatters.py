"""
Shape search-engine results into the response models the UI consumes.
"""
from typing import Any, Dict, List, Optional

from storefront.schemas import (
    FacetBucket,
    PriceRangeBucket,
    PriceStats,
    SearchAggregations,
    SearchProduct,
    SearchResponse,
)
from storefront.tools.search_index import SearchHit

# Color palette shown in the filter sidebar. Not derived from the index.
STATIC_COLORS: List[Dict[str, Any]] = [
    {"name": "Đỏ", "count": 42},
    {"name": "Xanh lá", "count": 36},
    {"name": "Xanh dương", "count": 28},
    {"name": "Vàng", "count": 24},
    {"name": "Đen", "count": 56},
    {"name": "Trắng", "count": 48},
    {"name": "Hồng", "count": 18},
    {"name": "Tím", "count": 22},
    {"name": "Cam", "count": 15},
    {"name": "Xám", "count": 31},
    {"name": "Nâu", "count": 20},
    {"name": "Bạc", "count": 12},
]


def format_buckets(aggregation: Optional[Dict[str, Any]]) -> List[FacetBucket]:
    """Terms aggregation -> [{name, count}]."""
    if not aggregation:
        return []
    return [
        FacetBucket(name=str(bucket.get("key")), count=int(bucket.get("doc_count", 0)))
        for bucket in aggregation.get("buckets", [])
    ]


def format_price_stats(aggregation: Optional[Dict[str, Any]]) -> PriceStats:
    # Stats over an empty set come back as nulls
    agg = aggregation or {}
    return PriceStats(
        min=agg.get("min") or 0,
        max=agg.get("max") or 0,
        avg=agg.get("avg") or 0,
        count=agg.get("count") or 0,
        sum=agg.get("sum") or 0,
    )


def format_price_ranges(aggregation: Optional[Dict[str, Any]]) -> List[PriceRangeBucket]:
    if not aggregation:
        return []
    return [
        PriceRangeBucket(
            key=str(bucket.get("key")),
            from_=bucket.get("from"),
            to=bucket.get("to"),
            count=int(bucket.get("doc_count", 0)),
        )
        for bucket in aggregation.get("buckets", [])
    ]


def format_aggregations(aggregations: Dict[str, Any]) -> SearchAggregations:
    return SearchAggregations(
        categories=format_buckets(aggregations.get("categories")),
        colors=format_buckets(aggregations.get("colors")),
        price_stats=format_price_stats(aggregations.get("price_stats")),
    )


def format_hit(hit: SearchHit) -> SearchProduct:
    """Index hit -> product card. The document id is the catalog id."""
    data = dict(hit.source)
    data["id"] = int(hit.id)
    data["score"] = hit.score
    return SearchProduct.model_validate(data)


def format_hits(hits: List[SearchHit]) -> List[SearchProduct]:
    return [format_hit(hit) for hit in hits]


def empty_search_response(page: int) -> SearchResponse:
    """Well-formed empty result returned while the search backend is down."""
    return SearchResponse(
        products=[],
        total=0,
        page=page,
        pages=0,
        aggregations=SearchAggregations(),
    )
