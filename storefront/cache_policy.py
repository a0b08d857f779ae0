"""
Redis caching policy: what gets cached, for how long, and when it is dropped.

Imported by cache.py for TTL defaults and key prefixes.

Architecture:
  SQL store      → source of truth (products)
  Elasticsearch  → derived search view (rebuildable via reindex)
  Redis          → cache-aside layer in front of both (TTL-based expiry)
"""

# ────────────────────────────────────────────────────────────────────────────
# Cache Policy Table
# ────────────────────────────────────────────────────────────────────────────
#
# Data Type          | Key Pattern                            | TTL
# -------------------+----------------------------------------+---------
# Search response    | catalog:search:{sha256[:16]}           | 5 min
# Category facets    | catalog:product:categories             | 1 hour
# Suggestions        | catalog:product:suggestions:{query}    | 10 min
# Product detail     | catalog:product:item:{id}              | 5 min
# Active product list| catalog:product:all                    | 5 min
#
# ────────────────────────────────────────────────────────────────────────────
# Invalidation
# ────────────────────────────────────────────────────────────────────────────
#
# Every catalog write (create, edit, soft delete, delete-from-index) drops
# all keys under catalog:search:* and catalog:product:* before the HTTP
# response is sent. The scan is coarse: one write evicts every cached
# search, including ones the product could never appear in.
#
# Degraded search responses (search backend down) are never cached, so the
# first request after the backend recovers sees real results.
#
# Redis failures are treated as cache misses; a cache outage never fails
# a read.

DEFAULT_TTL_SEARCH = 300            # 5 minutes
DEFAULT_TTL_CATEGORIES = 3600       # 1 hour
DEFAULT_TTL_SUGGESTIONS = 600       # 10 minutes
DEFAULT_TTL_PRODUCT = 300           # 5 minutes

SEARCH_PREFIX = "search"
PRODUCT_PREFIX = "product"

# Prefixes dropped on every catalog write
WRITE_INVALIDATION_PREFIXES = (SEARCH_PREFIX, PRODUCT_PREFIX)

CATEGORIES_KEY = f"{PRODUCT_PREFIX}:categories"
ALL_PRODUCTS_KEY = f"{PRODUCT_PREFIX}:all"


def suggestions_key(query: str) -> str:
    return f"{PRODUCT_PREFIX}:suggestions:{query.strip().lower()}"


def product_key(product_id: int) -> str:
    return f"{PRODUCT_PREFIX}:item:{product_id}"
