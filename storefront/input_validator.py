"""
Validation of the create/edit product form and its image uploads.

Runs before any store access or upload, so a rejected request has no
side effects.

Handles:
1. Text fields -> ProductForm (length, range and required checks)
2. Image uploads: count, content type and size limits
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from storefront.schemas import ProductForm

MAX_UPLOAD_FILES = 10
MAX_UPLOAD_BYTES = 5 * 1024 * 1024  # 5 MB per image
ALLOWED_CONTENT_PREFIX = "image/"

INVALID_FORM_MESSAGE = "Invalid product data"


class ProductValidationError(ValueError):
    """Form fields failed validation; ``errors`` lists each problem."""

    def __init__(self, errors: List[Dict[str, Any]], message: str = INVALID_FORM_MESSAGE):
        self.errors = errors
        self.message = message
        super().__init__(message)


class UploadRejected(ProductValidationError):
    """An uploaded file breaks the count, type or size limits."""


@dataclass
class ImageUpload:
    filename: str
    data: bytes
    content_type: Optional[str]


def validate_product_form(fields: Dict[str, Any]) -> ProductForm:
    """
    Validate the multipart text fields.

    Raises:
        ProductValidationError: with one entry per failing field
    """
    try:
        return ProductForm(**fields)
    except ValidationError as e:
        errors = [
            {
                "field": ".".join(str(p) for p in err.get("loc", ())) or "form",
                "msg": err.get("msg", "invalid value"),
            }
            for err in e.errors()
        ]
        raise ProductValidationError(errors) from e


def is_valid_image(filename: str, content_type: Optional[str], size: int) -> Tuple[bool, Optional[str]]:
    """
    Check one upload against the image limits.

    Returns:
        (is_valid, error_message)
    """
    if not filename:
        return False, "File has no name"
    if not content_type or not content_type.startswith(ALLOWED_CONTENT_PREFIX):
        return False, f"{filename}: only image files are allowed"
    if size > MAX_UPLOAD_BYTES:
        return False, f"{filename}: file exceeds {MAX_UPLOAD_BYTES // (1024 * 1024)} MB"
    if size == 0:
        return False, f"{filename}: file is empty"
    return True, None


def read_image_uploads(files: Optional[List[Any]]) -> List[ImageUpload]:
    """
    Read and check uploaded files (FastAPI ``UploadFile`` objects).

    Empty file inputs (browsers send one nameless part when nothing is
    chosen) are ignored.

    Raises:
        UploadRejected: on too many files or any invalid file
    """
    files = [f for f in (files or []) if getattr(f, "filename", None)]
    if len(files) > MAX_UPLOAD_FILES:
        raise UploadRejected(
            [{"field": "images", "msg": f"At most {MAX_UPLOAD_FILES} images per request"}],
            message="Too many files",
        )

    uploads: List[ImageUpload] = []
    errors: List[Dict[str, Any]] = []
    for upload in files:
        data = upload.file.read()
        ok, error = is_valid_image(upload.filename, upload.content_type, len(data))
        if not ok:
            errors.append({"field": "images", "msg": error})
            continue
        uploads.append(ImageUpload(upload.filename, data, upload.content_type))

    if errors:
        raise UploadRejected(errors, message="Invalid upload")
    return uploads
