"""
SQLAlchemy database models.
The primary store is the source of truth for the catalog; the search index
and the cache are derived views rebuilt from it.
"""

from sqlalchemy import Column, String, Integer, DateTime, Text, JSON, Index
from sqlalchemy.sql import func

from storefront.database import Base


class Product(Base):
    """
    Catalog product.

    Deletion is soft: ``deleted_at`` is set and the row stays, so the
    reindex procedure and audits still see it.
    """
    __tablename__ = "products"
    __table_args__ = (
        Index("ix_products_category_deleted", "category", "deleted_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, index=True)
    # Smallest currency unit (e.g. dong, cents)
    price = Column(Integer, nullable=False, index=True)
    description = Column(Text, nullable=False)
    category = Column(String(100), nullable=False)
    colors = Column(JSON, nullable=False, default=list)
    stock = Column(Integer, nullable=False, default=0)
    images = Column(JSON, nullable=False, default=list)
    views = Column(Integer, nullable=False, default=0)
    sold = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="active", index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_available(self) -> bool:
        """In stock, active and not soft-deleted."""
        return (self.stock or 0) > 0 and self.status == "active" and self.deleted_at is None

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} deleted={self.is_deleted}>"
