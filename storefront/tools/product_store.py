"""
Catalog store: SQLAlchemy access to the ``products`` table.

The primary store is the source of truth. Every read that backs a
customer-facing list filters ``deleted_at IS NULL``; admin and reindex
paths see soft-deleted rows too.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from storefront.logger import get_logger
from storefront.models import Product
from storefront.schemas import ProductForm

logger = get_logger("tools.product_store")


class ProductNotFound(LookupError):
    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


class InsufficientStock(ValueError):
    def __init__(self, product_id: int, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Product {product_id}: requested {requested}, only {available} in stock"
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProductStore:
    """Product CRUD bound to one request's session."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_active(self) -> List[Product]:
        return (
            self.db.query(Product)
            .filter(Product.deleted_at.is_(None))
            .order_by(Product.created_at.desc(), Product.id.desc())
            .all()
        )

    def get(self, product_id: int) -> Optional[Product]:
        """Fetch by id, including soft-deleted rows."""
        return self.db.get(Product, product_id)

    def get_active(self, product_id: int) -> Product:
        product = self.get(product_id)
        if product is None or product.is_deleted:
            raise ProductNotFound(product_id)
        return product

    def iter_after(self, last_id: int, limit: int) -> List[Product]:
        """Keyset page: up to ``limit`` rows with id > last_id, ascending by id."""
        return (
            self.db.query(Product)
            .filter(Product.id > last_id)
            .order_by(Product.id.asc())
            .limit(limit)
            .all()
        )

    def deleted_among(self, product_ids: Iterable[int]) -> List[int]:
        """Ids from the given set that are currently soft-deleted."""
        ids = list(product_ids)
        if not ids:
            return []
        rows = (
            self.db.query(Product.id)
            .filter(Product.id.in_(ids), Product.deleted_at.isnot(None))
            .all()
        )
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, form: ProductForm, images: List[str]) -> Product:
        product = Product(
            name=form.name,
            price=form.price,
            description=form.description,
            category=form.category,
            colors=list(form.colors),
            stock=form.stock,
            images=list(images),
            views=0,
            sold=0,
            status="active",
        )
        self.db.add(product)
        self.db.commit()
        self.db.refresh(product)
        logger.info("Created product %s (%s)", product.id, product.name)
        return product

    def update(self, product: Product, form: ProductForm, images: Optional[List[str]] = None) -> Product:
        """Overwrite the form fields; ``images=None`` keeps the current images."""
        product.name = form.name
        product.price = form.price
        product.description = form.description
        product.category = form.category
        product.colors = list(form.colors)
        product.stock = form.stock
        if images is not None:
            product.images = list(images)
        product.updated_at = _utcnow()
        self.db.commit()
        self.db.refresh(product)
        logger.info("Updated product %s", product.id)
        return product

    def soft_delete(self, product: Product) -> Product:
        now = _utcnow()
        product.deleted_at = now
        product.updated_at = now
        product.images = []
        self.db.commit()
        self.db.refresh(product)
        logger.info("Soft-deleted product %s", product.id)
        return product

    def increment_views(self, product: Product) -> Product:
        product.views = (product.views or 0) + 1
        self.db.commit()
        self.db.refresh(product)
        return product

    def record_sale(self, product: Product, quantity: int) -> Product:
        """Decrement stock and bump the sold counter."""
        available = product.stock or 0
        if quantity > available:
            raise InsufficientStock(product.id, quantity, available)
        product.stock = available - quantity
        product.sold = (product.sold or 0) + quantity
        product.updated_at = _utcnow()
        self.db.commit()
        self.db.refresh(product)
        logger.info("Recorded sale of %d x product %s", quantity, product.id)
        return product
