"""
Catalog endpoints (``/api/products``): reads and the admin write path.

A write runs these steps in order before the response is sent:

1. validate the form and uploads (no side effects on failure)
2. upload new images to object storage
3. primary store write + commit
4. search index write by id
5. cache invalidation of ``search:*`` and ``product:*``
6. delete replaced images from object storage

The steps are not transactional. If an upload or the store write fails,
the images uploaded by this request are removed and the product keeps its
old ones. If the search backend is down the index step is skipped and the
response says ``index_synced: false``; the next write or a reindex brings
the document back in line.
"""

from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy.orm import Session

from storefront import cache_policy
from storefront.cache import CacheClient, get_cache
from storefront.database import get_db
from storefront.input_validator import ImageUpload, read_image_uploads, validate_product_form
from storefront.logger import get_logger
from storefront.metrics import metrics_collector
from storefront.schemas import (
    ProductMutationResponse,
    ProductOut,
    ProductResponse,
    ProductsResponse,
    SaleRequest,
)
from storefront.tools.object_storage import ObjectStorage, get_object_storage
from storefront.tools.product_store import InsufficientStock, ProductNotFound, ProductStore
from storefront.tools.search_index import SearchIndex, SearchUnavailable, get_search_index

logger = get_logger("products_api")

router = APIRouter(prefix="/api/products", tags=["products"])


def _form_fields(**fields) -> dict:
    return {k: v for k, v in fields.items() if v is not None}


def _sync_index(operation: str, fn: Callable, *args) -> bool:
    """Run an index write; False if the backend is unreachable."""
    try:
        fn(*args)
        return True
    except SearchUnavailable as e:
        logger.warning("Search index %s skipped, backend unavailable: %s", operation, e)
        return False


def _upload_images(storage: ObjectStorage, uploads: List[ImageUpload]) -> List[str]:
    """Upload all images or none: a failure removes the ones already stored."""
    urls: List[str] = []
    try:
        for u in uploads:
            urls.append(storage.upload(u.filename, u.data, u.content_type))
    except Exception:
        storage.delete_all(urls)
        raise
    return urls


def _get_active_or_404(store: ProductStore, product_id: int):
    try:
        return store.get_active(product_id)
    except ProductNotFound:
        raise HTTPException(status_code=404, detail="Product not found")


#
# Reads
#

@router.get("/all", response_model=ProductsResponse)
def get_all_products(
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
):
    """All active products, newest first."""
    cached = cache.get_json(cache_policy.ALL_PRODUCTS_KEY)
    metrics_collector.record_cache("product", cached is not None)
    if cached is not None:
        return ProductsResponse(products=cached)

    products = [ProductOut.model_validate(p) for p in ProductStore(db).list_active()]
    cache.set_json(
        cache_policy.ALL_PRODUCTS_KEY,
        [p.model_dump(mode="json") for p in products],
        cache.ttl_product,
    )
    return ProductsResponse(products=products)


@router.get("/{product_id}", response_model=ProductResponse)
def get_product(
    product_id: int,
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
):
    key = cache_policy.product_key(product_id)
    cached = cache.get_json(key)
    metrics_collector.record_cache("product", cached is not None)
    if cached is not None:
        return ProductResponse(product=cached)

    product = ProductOut.model_validate(_get_active_or_404(ProductStore(db), product_id))
    cache.set_json(key, product.model_dump(mode="json"), cache.ttl_product)
    return ProductResponse(product=product)


#
# Write path
#

@router.post("/create_product", response_model=ProductMutationResponse, status_code=201)
def create_product(
    name: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    colors: Optional[str] = Form(None),
    stock: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    index: SearchIndex = Depends(get_search_index),
    storage: ObjectStorage = Depends(get_object_storage),
):
    form = validate_product_form(_form_fields(
        name=name, price=price, description=description,
        category=category, colors=colors, stock=stock,
    ))
    uploads = read_image_uploads(images)

    image_urls = _upload_images(storage, uploads)
    try:
        product = ProductStore(db).create(form, image_urls)
    except Exception:
        storage.delete_all(image_urls)
        raise
    synced = _sync_index("index", index.index_document, product)
    cache.invalidate_catalog()

    return ProductMutationResponse(
        message="Product created successfully",
        product=ProductOut.model_validate(product),
        index_synced=synced,
    )


@router.post("/edit_product/{product_id}", response_model=ProductMutationResponse)
def edit_product(
    product_id: int,
    name: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    colors: Optional[str] = Form(None),
    stock: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    index: SearchIndex = Depends(get_search_index),
    storage: ObjectStorage = Depends(get_object_storage),
):
    """Overwrite a product. New images replace the old ones; no images keeps them."""
    form = validate_product_form(_form_fields(
        name=name, price=price, description=description,
        category=category, colors=colors, stock=stock,
    ))
    uploads = read_image_uploads(images)

    store = ProductStore(db)
    product = _get_active_or_404(store, product_id)

    old_images = list(product.images or [])
    image_urls = _upload_images(storage, uploads) if uploads else None

    try:
        product = store.update(product, form, image_urls)
    except Exception:
        storage.delete_all(image_urls or [])
        raise
    synced = _sync_index("update", index.update_document, product)
    cache.invalidate_catalog()
    if image_urls is not None:
        storage.delete_all(old_images)

    return ProductMutationResponse(
        message="Product updated successfully",
        product=ProductOut.model_validate(product),
        index_synced=synced,
    )


@router.post("/delete_product/{product_id}", response_model=ProductMutationResponse)
def delete_product(
    product_id: int,
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    index: SearchIndex = Depends(get_search_index),
    storage: ObjectStorage = Depends(get_object_storage),
):
    """Soft delete: images removed, ``deleted_at`` set, document dropped from the index."""
    store = ProductStore(db)
    product = _get_active_or_404(store, product_id)

    old_images = list(product.images or [])
    store.soft_delete(product)
    synced = _sync_index("delete", index.delete_document, product_id)
    cache.invalidate_catalog()
    storage.delete_all(old_images)

    return ProductMutationResponse(message="Product deleted successfully", index_synced=synced)


#
# Counters
#

@router.post("/{product_id}/views", response_model=ProductMutationResponse)
def increment_views(
    product_id: int,
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    index: SearchIndex = Depends(get_search_index),
):
    store = ProductStore(db)
    product = store.increment_views(_get_active_or_404(store, product_id))
    synced = _sync_index("update", index.update_document, product)
    # Views only feed trending order; search pages keep their cached copy
    cache.delete(cache_policy.product_key(product_id))
    cache.delete(cache_policy.ALL_PRODUCTS_KEY)

    return ProductMutationResponse(
        message="View recorded",
        product=ProductOut.model_validate(product),
        index_synced=synced,
    )


@router.post("/{product_id}/sales", response_model=ProductMutationResponse)
def record_sale(
    product_id: int,
    sale: SaleRequest,
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    index: SearchIndex = Depends(get_search_index),
):
    """Decrement stock and bump the sold counter; 409 on oversell."""
    store = ProductStore(db)
    product = _get_active_or_404(store, product_id)
    try:
        product = store.record_sale(product, sale.quantity)
    except InsufficientStock as e:
        raise HTTPException(status_code=409, detail=str(e))

    synced = _sync_index("update", index.update_document, product)
    cache.invalidate_catalog()

    return ProductMutationResponse(
        message="Sale recorded",
        product=ProductOut.model_validate(product),
        index_synced=synced,
    )
