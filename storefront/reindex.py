"""
Full rebuild of the search index from the catalog store.

The index is dropped and recreated, then filled page by page using keyset
pagination on the product id (``id > last_id ORDER BY id LIMIT n``), so the
cost of each page stays flat however large the catalog is.

Soft-deleted rows are indexed too, with ``deleted_at`` set; every query
excludes them. A row that was active when its page was read but is
soft-deleted before the page lands in the index would otherwise stay
visible, so each page is followed by a sweep that removes such rows.
"""

from dataclasses import dataclass
from typing import List

from storefront.logger import get_logger
from storefront.structured_logger import StructuredLogger
from storefront.tools.product_store import ProductStore
from storefront.tools.search_index import SearchIndex, SearchUnavailable, build_document

logger = get_logger("reindex")
events = StructuredLogger("reindex")

DEFAULT_BATCH_SIZE = 5000


@dataclass
class ReindexStats:
    total_indexed: int = 0
    total_batches: int = 0
    total_failed: int = 0
    total_swept: int = 0


def run_reindex(store: ProductStore, index: SearchIndex, batch_size: int = DEFAULT_BATCH_SIZE) -> ReindexStats:
    """
    Rebuild the index from scratch.

    Partial bulk failures are logged and counted; the loop continues with
    the next page.

    Raises:
        SearchUnavailable: if the backend is down at the start or goes away mid-run
    """
    if batch_size < 1:
        raise ValueError("batch_size must be positive")
    if not index.ensure_available():
        raise SearchUnavailable("search backend unavailable (reindex)")

    index.recreate_index()
    stats = ReindexStats()
    last_id = 0

    while True:
        page = store.iter_after(last_id, batch_size)
        if not page:
            break

        documents = [build_document(product) for product in page]
        active_ids = [product.id for product in page if product.deleted_at is None]
        last_id = page[-1].id
        page_size = len(page)

        result = index.bulk_index(documents)
        stats.total_batches += 1
        stats.total_indexed += result.indexed
        if result.failed:
            stats.total_failed += len(result.failed)
            for doc_id, reason in result.failed:
                logger.error("Failed to index product %s: %s", doc_id, reason)
            events.warning(
                "reindex_partial_failure",
                f"Batch {stats.total_batches}: {len(result.failed)} documents failed",
                {"batch": stats.total_batches, "failed_ids": [doc_id for doc_id, _ in result.failed]},
            )

        # Release the page before the sweep reads fresh state
        store.db.expunge_all()
        stats.total_swept += _sweep_deleted(store, index, active_ids)

        events.info(
            "reindex_progress",
            f"Batch {stats.total_batches} indexed",
            {
                "batch": stats.total_batches,
                "last_id": last_id,
                "total_indexed": stats.total_indexed,
                "total_failed": stats.total_failed,
            },
        )

        if page_size < batch_size:
            break

    index.refresh()
    logger.info(
        "Reindex complete: %d documents in %d batches (%d failed)",
        stats.total_indexed, stats.total_batches, stats.total_failed,
    )
    return stats


def _sweep_deleted(store: ProductStore, index: SearchIndex, active_ids: List[int]) -> int:
    """Drop rows soft-deleted since their page was read."""
    gone = store.deleted_among(active_ids)
    if not gone:
        return 0
    result = index.delete_many(gone)
    logger.info("Removed %d products soft-deleted during reindex", len(gone))
    for doc_id, reason in result.failed:
        logger.warning("Could not remove product %s from index: %s", doc_id, reason)
    return len(gone)
