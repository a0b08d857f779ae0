"""
Search query building.

Translates UI filter parameters into Elasticsearch query DSL. Everything here
is a pure function returning plain dicts: the keyword arguments for
``Elasticsearch.search``. Ranking, sorting and aggregation happen inside the
search engine.

Every request built here excludes soft-deleted documents through
``must_not: exists(deleted_at)``.
"""

import math
from typing import Any, Dict, List, Optional

from storefront.schemas import SearchFilters, SortKey


# Elasticsearch's default index.max_result_window; deeper pages are rejected
MAX_RESULT_WINDOW = 10_000
# Pagination shown to the UI is capped regardless of the true match count
MAX_PAGES = 500

CATEGORY_FACET_SIZE = 20
COLOR_FACET_SIZE = 30
CATEGORY_LIST_SIZE = 50
SUGGESTION_LIMIT = 5
# A search with fewer hits than this also asks the engine for spelling suggestions
DID_YOU_MEAN_THRESHOLD = 5

SOURCE_FIELDS = [
    "name", "price", "description", "category", "colors",
    "images", "stock", "sold", "views", "created_at",
]

PRICE_RANGES = [
    {"key": "under_500k", "to": 500_000},
    {"key": "500k_1m", "from": 500_000, "to": 1_000_000},
    {"key": "1m_2m", "from": 1_000_000, "to": 2_000_000},
    {"key": "2m_5m", "from": 2_000_000, "to": 5_000_000},
    {"key": "over_5m", "from": 5_000_000},
]

SORT_OPTIONS: Dict[SortKey, List[Dict[str, str]]] = {
    SortKey.NEWEST: [{"created_at": "desc"}],
    SortKey.PRICE_ASC: [{"price": "asc"}],
    SortKey.PRICE_DESC: [{"price": "desc"}],
    SortKey.NAME_ASC: [{"name.keyword": "asc"}],
    SortKey.NAME_DESC: [{"name.keyword": "desc"}],
}

# Characters with a meaning in Lucene regular expressions
_LUCENE_REGEX_RESERVED = set('.?+*|{}[]()"\\#@&<>~')


class PaginationLimitExceeded(ValueError):
    """Requested offset is beyond MAX_RESULT_WINDOW; no query was run."""

    def __init__(self, offset: int):
        self.offset = offset
        super().__init__(
            f"Pagination limit exceeded: offset {offset} is beyond {MAX_RESULT_WINDOW}"
        )


def exclude_deleted() -> Dict[str, Any]:
    """must_not clause that hides soft-deleted documents."""
    return {"exists": {"field": "deleted_at"}}


def text_clauses(query: str) -> Dict[str, Any]:
    """
    Weighted full-text group: name phrase-prefix (10) > fuzzy name (5) >
    fuzzy description (1). At least one must match.
    """
    return {
        "bool": {
            "should": [
                {
                    "match_phrase_prefix": {
                        "name": {"query": query, "boost": 10, "max_expansions": 10}
                    }
                },
                {
                    "match": {
                        "name": {
                            "query": query,
                            "boost": 5,
                            "fuzziness": "AUTO",
                            "prefix_length": 1,
                        }
                    }
                },
                {
                    "match": {
                        "description": {
                            "query": query,
                            "boost": 1,
                            "fuzziness": "AUTO",
                            "prefix_length": 1,
                        }
                    }
                },
            ],
            "minimum_should_match": 1,
        }
    }


def filter_clauses(filters: SearchFilters) -> List[Dict[str, Any]]:
    """Non-scoring filters: category, price range, colors."""
    clauses: List[Dict[str, Any]] = []

    category = filters.category_filter
    if category:
        clauses.append({"term": {"category.keyword": category}})

    if filters.min_price is not None or filters.max_price is not None:
        price_range: Dict[str, int] = {}
        if filters.min_price is not None:
            price_range["gte"] = filters.min_price
        if filters.max_price is not None:
            price_range["lte"] = filters.max_price
        clauses.append({"range": {"price": price_range}})

    if filters.colors:
        clauses.append({"terms": {"colors.keyword": list(filters.colors)}})

    return clauses


def sort_clause(sort: Optional[SortKey]) -> List[Dict[str, str]]:
    """Sort spec for a sort key; unknown or missing keys sort newest first."""
    return SORT_OPTIONS.get(sort, SORT_OPTIONS[SortKey.NEWEST])


def search_aggregations() -> Dict[str, Any]:
    """Facets computed over the filtered result set."""
    return {
        "categories": {"terms": {"field": "category.keyword", "size": CATEGORY_FACET_SIZE}},
        "colors": {"terms": {"field": "colors.keyword", "size": COLOR_FACET_SIZE}},
        "price_stats": {"stats": {"field": "price"}},
    }


def build_search_request(filters: SearchFilters) -> Dict[str, Any]:
    """
    Build the full search request for a filter set.

    The page size is clamped so that ``from + size`` stays inside
    MAX_RESULT_WINDOW; the last reachable page may come back short or empty.

    Raises:
        PaginationLimitExceeded: when the page offset exceeds MAX_RESULT_WINDOW
    """
    offset = filters.offset
    if offset > MAX_RESULT_WINDOW:
        raise PaginationLimitExceeded(offset)
    size = min(filters.limit, MAX_RESULT_WINDOW - offset)

    must = [text_clauses(filters.query)] if filters.query else []

    return {
        "query": {
            "bool": {
                "must": must,
                "filter": filter_clauses(filters),
                "must_not": [exclude_deleted()],
            }
        },
        "sort": sort_clause(filters.sort),
        "from_": offset,
        "size": size,
        "source": {"includes": SOURCE_FIELDS},
        "aggs": search_aggregations(),
        "track_total_hits": True,
    }


def total_pages(total: int, limit: int) -> int:
    """Page count reported to the UI, capped at MAX_PAGES."""
    if total <= 0 or limit <= 0:
        return 0
    return min(math.ceil(total / limit), MAX_PAGES)


def build_did_you_mean_request(query: str) -> Dict[str, Any]:
    """Term suggestions on product names for a query with few hits."""
    return {
        "size": 0,
        "suggest": {
            "text": query,
            "term_suggestions": {
                "term": {"field": "name", "suggest_mode": "popular", "size": SUGGESTION_LIMIT}
            },
        },
    }


def build_categories_request() -> Dict[str, Any]:
    return {
        "size": 0,
        "query": {"bool": {"must_not": [exclude_deleted()]}},
        "aggs": {
            "categories": {"terms": {"field": "category.keyword", "size": CATEGORY_LIST_SIZE}}
        },
    }


def build_price_ranges_request() -> Dict[str, Any]:
    return {
        "size": 0,
        "query": {"bool": {"must_not": [exclude_deleted()]}},
        "aggs": {
            "price_stats": {"stats": {"field": "price"}},
            "price_ranges": {"range": {"field": "price", "keyed": False, "ranges": PRICE_RANGES}},
        },
    }


def build_trending_request(limit: int) -> Dict[str, Any]:
    """
    Popularity ranking: score = log(views + 1) + 0.5 * log(sold + 1).

    ``log1p`` in field_value_factor is log10(1 + x); the weight scales the
    sold term. The relevance score of the inner query is replaced.
    """
    return {
        "size": limit,
        "query": {
            "function_score": {
                "query": {"bool": {"must_not": [exclude_deleted()]}},
                "functions": [
                    {
                        "field_value_factor": {
                            "field": "views", "factor": 1, "modifier": "log1p", "missing": 0
                        }
                    },
                    {
                        "field_value_factor": {
                            "field": "sold", "factor": 1, "modifier": "log1p", "missing": 0
                        },
                        "weight": 0.5,
                    },
                ],
                "score_mode": "sum",
                "boost_mode": "replace",
            }
        },
        "source": {"includes": SOURCE_FIELDS},
    }


def build_related_request(
    product_id: str,
    category: Optional[str],
    colors: Optional[List[str]],
    limit: int,
) -> Dict[str, Any]:
    """Products sharing the category (boosted) or any color, excluding the product itself."""
    should: List[Dict[str, Any]] = []
    if category:
        should.append({"term": {"category.keyword": {"value": category, "boost": 2.0}}})
    if colors:
        should.append({"terms": {"colors.keyword": list(colors)}})

    return {
        "size": limit,
        "query": {
            "bool": {
                "should": should,
                "minimum_should_match": 1,
                "must_not": [
                    {"ids": {"values": [str(product_id)]}},
                    exclude_deleted(),
                ],
            }
        },
        "source": {"includes": SOURCE_FIELDS},
    }


def lucene_regex_escape(text: str) -> str:
    return "".join(f"\\{ch}" if ch in _LUCENE_REGEX_RESERVED else ch for ch in text)


def case_insensitive_prefix(text: str) -> str:
    """
    Lucene regex matching any casing of ``text`` followed by anything.

    Keyword terms keep their original casing, so each cased letter becomes a
    ``[xX]`` class instead of lowercasing the field.
    """
    parts = []
    for ch in text:
        lower, upper = ch.lower(), ch.upper()
        if lower != upper and len(lower) == 1 and len(upper) == 1:
            parts.append(f"[{lower}{upper}]")
        else:
            parts.append(lucene_regex_escape(ch))
    return "".join(parts) + ".*"


def build_suggest_request(query: str) -> Dict[str, Any]:
    """
    Autosuggest: names starting with the query in any casing (terms
    aggregation) plus popular spelling suggestions from the term suggester.
    """
    return {
        "size": 0,
        "query": {"bool": {"must_not": [exclude_deleted()]}},
        "suggest": {
            "text": query,
            "term_suggest": {
                "term": {"field": "name", "suggest_mode": "popular", "size": SUGGESTION_LIMIT}
            },
        },
        "aggs": {
            "name_suggestions": {
                "terms": {
                    "field": "name.keyword",
                    "include": case_insensitive_prefix(query),
                    "size": SUGGESTION_LIMIT,
                }
            }
        },
    }
