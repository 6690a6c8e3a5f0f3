import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import NEWEST_FIRST, PRODUCTS, TRANSACTIONS, create_document, get_documents, object_id, serialize, utcnow
from errors import ConflictError, NotFoundError, from_pydantic
from schemas import ProductIn, ProductPatch

logger = logging.getLogger("texflow.catalog")


def list_products(
    db: Database,
    q: Optional[str] = None,
    category: Optional[str] = None,
    in_stock: bool = False,
) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {}
    if q:
        pattern = re.escape(q)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"sku": {"$regex": pattern, "$options": "i"}},
            {"category": {"$regex": pattern, "$options": "i"}},
        ]
    if category:
        query["category"] = category
    if in_stock:
        query["stock"] = {"$gt": 0}
    return [serialize(d) for d in get_documents(db, PRODUCTS, query, sort=NEWEST_FIRST)]


def get_product(db: Database, product_id: str) -> Dict[str, Any]:
    doc = db[PRODUCTS].find_one({"_id": object_id(product_id, "Product")})
    if not doc:
        raise NotFoundError("Product", product_id)
    return serialize(doc)


def create_product(db: Database, product: ProductIn) -> Dict[str, Any]:
    if db[PRODUCTS].find_one({"sku": product.sku}):
        raise ConflictError(f"SKU already exists: {product.sku}")
    try:
        doc = create_document(db, PRODUCTS, product)
    except DuplicateKeyError:
        # Lost a race with a concurrent create; the unique index caught it
        raise ConflictError(f"SKU already exists: {product.sku}")
    logger.info("Created product %s (%s)", doc["_id"], product.sku)
    return serialize(doc)


def update_product(db: Database, product_id: str, patch: ProductPatch) -> Dict[str, Any]:
    pid = object_id(product_id, "Product")
    existing = db[PRODUCTS].find_one({"_id": pid})
    if not existing:
        raise NotFoundError("Product", product_id)

    merged = {k: v for k, v in existing.items() if k not in ("_id", "createdAt", "updatedAt")}
    merged.update(patch.model_dump(by_alias=True, exclude_unset=True))
    try:
        product = ProductIn.model_validate(merged)
    except PydanticValidationError as exc:
        raise from_pydantic(exc)

    if db[PRODUCTS].find_one({"sku": product.sku, "_id": {"$ne": pid}}):
        raise ConflictError(f"SKU already exists: {product.sku}")

    update = product.model_dump(by_alias=True)
    update["updatedAt"] = utcnow()
    try:
        doc = db[PRODUCTS].find_one_and_update(
            {"_id": pid},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        raise ConflictError(f"SKU already exists: {product.sku}")
    if doc is None:
        raise NotFoundError("Product", product_id)
    logger.info("Updated product %s", product_id)
    return serialize(doc)


def delete_product(db: Database, product_id: str) -> int:
    """Delete a product and every transaction that references it.

    Returns the number of transactions removed with it.
    """
    res = db[PRODUCTS].delete_one({"_id": object_id(product_id, "Product")})
    if res.deleted_count == 0:
        raise NotFoundError("Product", product_id)
    removed = db[TRANSACTIONS].delete_many({"productId": product_id}).deleted_count
    logger.info("Deleted product %s and %d transaction(s)", product_id, removed)
    return removed
