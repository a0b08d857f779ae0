"""
Pydantic v2 schemas for request validation and response shapes.

Request schemas use extra="forbid" to reject unknown fields.
"""

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


MAX_PAGE_LIMIT = 100


class SortKey(str, Enum):
    """Sort orders offered by the shop UI."""
    NEWEST = "newest"
    PRICE_ASC = "price_asc"
    PRICE_DESC = "price_desc"
    NAME_ASC = "name_asc"
    NAME_DESC = "name_desc"


def split_csv(value: Optional[str]) -> List[str]:
    """Split a comma-joined form/query value into trimmed, unique, non-empty items."""
    if not value:
        return []
    items: List[str] = []
    for part in value.split(","):
        part = part.strip()
        if part and part not in items:
            items.append(part)
    return items


#
# Search
#

class SearchFilters(BaseModel):
    """
    UI filter parameters for the search endpoint.

    ``category == "all"`` and a blank query mean "no filter".
    """
    model_config = ConfigDict(extra="forbid")

    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=MAX_PAGE_LIMIT)
    query: Optional[str] = None
    category: Optional[str] = None
    min_price: Optional[int] = Field(None, ge=0)
    max_price: Optional[int] = Field(None, ge=0)
    colors: List[str] = Field(default_factory=list)
    sort: SortKey = SortKey.NEWEST

    @field_validator("query", "category")
    @classmethod
    def _blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("colors", mode="before")
    @classmethod
    def _parse_colors(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return split_csv(v)
        return split_csv(",".join(str(c) for c in v))

    @field_validator("sort", mode="before")
    @classmethod
    def _default_sort(cls, v: Any) -> SortKey:
        # Unknown sort keys fall back to newest first
        try:
            return SortKey(v)
        except ValueError:
            return SortKey.NEWEST

    @model_validator(mode="after")
    def _check_price_bounds(self) -> "SearchFilters":
        if self.min_price is not None and self.max_price is not None and self.min_price > self.max_price:
            raise ValueError("minPrice must not be greater than maxPrice")
        return self

    @property
    def category_filter(self) -> Optional[str]:
        if self.category is None or self.category.lower() == "all":
            return None
        return self.category

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def cache_fields(self) -> Dict[str, Any]:
        """Fields that identify a distinct search response."""
        return {
            "page": self.page,
            "limit": self.limit,
            "query": self.query,
            "category": self.category_filter,
            "min_price": self.min_price,
            "max_price": self.max_price,
            "colors": sorted(self.colors) or None,
            "sort": self.sort.value,
        }


class FacetBucket(BaseModel):
    name: str
    count: int


class PriceStats(BaseModel):
    min: float = 0
    max: float = 0
    avg: float = 0
    count: int = 0
    sum: float = 0


class PriceRangeBucket(BaseModel):
    key: str
    from_: Optional[float] = Field(None, alias="from")
    to: Optional[float] = None
    count: int = 0

    model_config = ConfigDict(populate_by_name=True)


class SearchAggregations(BaseModel):
    categories: List[FacetBucket] = Field(default_factory=list)
    colors: List[FacetBucket] = Field(default_factory=list)
    price_stats: PriceStats = Field(default_factory=PriceStats)


class SearchProduct(BaseModel):
    """A product as returned from the search index."""
    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    price: int
    description: Optional[str] = None
    category: Optional[str] = None
    colors: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)
    stock: int = 0
    views: int = 0
    sold: int = 0
    created_at: Optional[datetime] = None
    score: Optional[float] = None


class SearchResponse(BaseModel):
    products: List[SearchProduct] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    pages: int = 0
    aggregations: SearchAggregations = Field(default_factory=SearchAggregations)
    suggestions: Optional[List[str]] = None


class CategoriesResponse(BaseModel):
    categories: List[FacetBucket]
    message: Optional[str] = None


class ColorsResponse(BaseModel):
    colors: List[FacetBucket]


class PriceRangesResponse(BaseModel):
    stats: PriceStats
    ranges: List[PriceRangeBucket]
    message: Optional[str] = None


class ProductListResponse(BaseModel):
    products: List[SearchProduct]
    message: Optional[str] = None


class SuggestResponse(BaseModel):
    suggestions: List[str]


class ReindexResponse(BaseModel):
    message: str
    total_indexed: int
    total_batches: int
    total_failed: int = 0


#
# Catalog
#

class ProductForm(BaseModel):
    """Validated text fields of the create/edit product form."""
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: str = Field(..., min_length=3, max_length=100)
    price: int = Field(..., ge=0)
    description: str = Field(..., min_length=10, max_length=1000)
    category: str = Field(..., min_length=1, max_length=100)
    colors: List[str] = Field(..., min_length=1)
    stock: int = Field(0, ge=0)

    @field_validator("colors", mode="before")
    @classmethod
    def _parse_colors(cls, v: Any) -> List[str]:
        if isinstance(v, str):
            return split_csv(v)
        return v


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    price: int
    description: str
    category: str
    colors: List[str] = Field(default_factory=list)
    stock: int = 0
    images: List[str] = Field(default_factory=list)
    views: int = 0
    sold: int = 0
    status: str = "active"
    is_available: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProductResponse(BaseModel):
    success: bool = True
    product: ProductOut


class ProductsResponse(BaseModel):
    success: bool = True
    products: List[ProductOut]


class ProductMutationResponse(BaseModel):
    success: bool = True
    message: str
    product: Optional[ProductOut] = None
    index_synced: bool = True


class SaleRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    quantity: int = Field(..., ge=1)
