"""
Inventory variant store.

Products carry an ordered list of purchasable variants (size/color/price/stock).
Seller forms post numbers as strings, so every numeric field goes through the
parsers below before the variant reaches the database.
"""
import logging
from typing import Any, List, Optional

from pydantic import ValidationError as PydanticValidationError
from pymongo import ReturnDocument

import database
from errors import ConflictError, NotFoundError, ValidationError, from_pydantic
from schemas import ProductVariant

logger = logging.getLogger(__name__)

DEFAULT_UNIT = "Piece"
DEFAULT_SIZE = "Default"
RESERVE_ATTEMPTS = 3


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_money(value: Any, field: str) -> int:
    """Parse a price in minor currency units; fractional input is rounded."""
    try:
        amount = round(float(value))
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"Invalid {field}: {value!r}")
    if amount < 0:
        raise ValidationError(f"{field} must not be negative")
    return amount


def parse_discount(value: Any) -> Optional[int]:
    # 0 and "" mean "no discount", not "free"
    if not value:
        return None
    return parse_money(value, "discountPrice")


def parse_stock(value: Any) -> int:
    if _blank(value):
        return 0
    try:
        stock = int(value)
    except (TypeError, ValueError):
        try:
            stock = int(float(value))
        except (TypeError, ValueError, OverflowError):
            raise ValidationError(f"Invalid stock: {value!r}")
    if stock < 0:
        raise ValidationError("stock must not be negative")
    return stock


def normalize_variant(raw: dict) -> ProductVariant:
    if not isinstance(raw, dict):
        raise ValidationError("Each variant must be an object")
    size = raw.get("size")
    if _blank(size):
        raise ValidationError("Variant size is required")
    if _blank(raw.get("price")):
        raise ValidationError("Variant price is required")
    try:
        return ProductVariant(
            size=str(size),
            color=raw.get("color") or "",
            price=parse_money(raw.get("price"), "price"),
            discount_price=parse_discount(raw.get("discountPrice", raw.get("discount_price"))),
            stock=parse_stock(raw.get("stock")),
            unit=raw.get("unit") or DEFAULT_UNIT,
        )
    except PydanticValidationError as exc:
        raise from_pydantic(exc, prefix="Variant ")


def normalize_variants(payload: dict) -> List[ProductVariant]:
    """
    Build a product's variant list from a create/update payload.

    A ``variants`` list is normalized entry by entry, duplicates included. Without
    one, a single variant is synthesized from the top-level size/color/price/
    discountPrice/stock/unit fields.
    """
    variants = payload.get("variants")
    if isinstance(variants, list):
        if not variants:
            raise ValidationError("A product needs at least one variant")
        return [normalize_variant(v) for v in variants]

    return [
        normalize_variant(
            {
                "size": payload.get("size") or DEFAULT_SIZE,
                "color": payload.get("color"),
                "price": payload.get("price"),
                "discountPrice": payload.get("discountPrice"),
                "stock": payload.get("stock"),
                "unit": payload.get("unit"),
            }
        )
    ]


def variant_index(product: dict, size: str, color: str = "") -> Optional[int]:
    for i, variant in enumerate(product.get("variants", [])):
        if variant.get("size") == size and variant.get("color", "") == (color or ""):
            return i
    return None


def find_variant(product: dict, size: str, color: str = "") -> Optional[dict]:
    i = variant_index(product, size, color)
    return None if i is None else product["variants"][i]


def _adjust_stock(product_id: str, size: str, color: str, delta: int, session=None) -> dict:
    """
    Add ``delta`` units to the first variant matching size and color.

    The write is a single ``$inc`` on that variant's position, conditioned on the
    variant still sitting there and, when taking stock, on enough units being
    left. Writes to other variants of the same product do not interfere. When
    the condition fails the product is re-read: too little stock is reported as
    such, a variant that moved is looked up again.
    """
    oid = database.to_object_id(product_id, "Product")
    products = database.collection("product")
    color = color or ""
    for _ in range(RESERVE_ATTEMPTS):
        product = products.find_one({"_id": oid}, **database.session_kwargs(session))
        if not product:
            raise NotFoundError("Product")
        i = variant_index(product, size, color)
        if i is None:
            raise ValidationError(f"Variant {size}/{color or '-'} not found for {product.get('sku')}")
        if product["variants"][i].get("stock", 0) + delta < 0:
            raise ValidationError(f"Insufficient stock for {product.get('sku')}", code="INSUFFICIENT_STOCK")

        path = f"variants.{i}"
        query = {"_id": oid, f"{path}.size": size, f"{path}.color": color}
        if delta < 0:
            query[f"{path}.stock"] = {"$gte": -delta}
        updated = products.find_one_and_update(
            query,
            {"$inc": {f"{path}.stock": delta}, "$set": {"updated_at": database.now()}},
            return_document=ReturnDocument.AFTER,
            **database.session_kwargs(session),
        )
        if updated is not None:
            logger.info("Stock %+d for %s (%s/%s)", delta, product.get("sku"), size, color or "-")
            return updated["variants"][i]
        logger.warning("Stock for %s changed concurrently, re-reading", product.get("sku"))
    raise ConflictError("Stock changed concurrently, please retry")


def reserve_stock(product_id: str, size: str, color: str, quantity: int, session=None) -> dict:
    return _adjust_stock(product_id, size, color, -quantity, session=session)


def release_stock(product_id: str, size: str, color: str, quantity: int, session=None) -> dict:
    return _adjust_stock(product_id, size, color, quantity, session=session)


def set_variant_stock(sku: str, variants: List[dict]) -> List[ProductVariant]:
    """Replace a product's variant list from the admin inventory screen."""
    if not variants:
        raise ValidationError("A product needs at least one variant")
    normalized = [normalize_variant(v) for v in variants]
    res = database.collection("product").update_one(
        {"sku": sku},
        {"$set": {"variants": [v.model_dump() for v in normalized], "updated_at": database.now()}},
    )
    if res.matched_count == 0:
        raise NotFoundError("Product")
    return normalized
