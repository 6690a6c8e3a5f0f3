"""Ledger service: records Purchase/Sale transactions and applies their stock deltas.

The stock check and the decrement happen in one conditional update
(``stock >= quantity``), so two sales racing for the same units cannot
overdraw a product. Inside one process the update also runs under a
per-product lock, which keeps the check atomic on stores that do not
guarantee it. A sale that loses the race fails with
``InsufficientStockError`` instead of waiting for more stock.

Transactions are append-only; there is no update or void operation.
"""

import logging
import threading
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import PRODUCTS, TRANSACTIONS, create_document, get_documents, object_id, serialize, utcnow
from errors import InsufficientStockError, NotFoundError
from schemas import PaymentStatus, TransactionIn, TransactionType

logger = logging.getLogger("texflow.ledger")

DEFAULT_ENTITY = {
    TransactionType.PURCHASE.value: "Supplier",
    TransactionType.SALE.value: "Walk-in Customer",
}

_locks_guard = threading.Lock()
_stock_locks: Dict[str, threading.Lock] = {}


def stock_delta(tx_type: str, quantity: int) -> int:
    return quantity if tx_type == TransactionType.PURCHASE.value else -quantity


def _product_lock(product_id: str) -> threading.Lock:
    with _locks_guard:
        return _stock_locks.setdefault(product_id, threading.Lock())


def _apply_stock_delta(db: Database, product: Dict[str, Any], tx_type: str, quantity: int) -> Dict[str, Any]:
    query: Dict[str, Any] = {"_id": product["_id"]}
    if tx_type == TransactionType.SALE.value:
        query["stock"] = {"$gte": quantity}
    with _product_lock(str(product["_id"])):
        updated = db[PRODUCTS].find_one_and_update(
            query,
            {"$inc": {"stock": stock_delta(tx_type, quantity)}, "$set": {"updatedAt": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is not None:
            return updated
        current = db[PRODUCTS].find_one({"_id": product["_id"]})

    if current is None:
        raise NotFoundError("Product", str(product["_id"]))
    raise InsufficientStockError(current.get("name", ""), int(current.get("stock", 0)), quantity)


def record_transaction(db: Database, tx: TransactionIn) -> Dict[str, Any]:
    product = db[PRODUCTS].find_one({"_id": object_id(tx.product_id, "Product")})
    if not product:
        raise NotFoundError("Product", tx.product_id)

    if tx.unit_price is not None:
        unit_price = tx.unit_price
    elif tx.type == TransactionType.PURCHASE.value:
        unit_price = float(product.get("costPrice") or 0)
    else:
        unit_price = float(product.get("sellingPrice") or 0)
    tax_amount = tx.tax_amount
    total_amount = tx.total_amount
    if total_amount is None:
        total_amount = round(tx.quantity * unit_price + tax_amount, 2)

    record = tx.model_dump(by_alias=True, exclude_none=True)
    record.update(
        {
            "productId": str(product["_id"]),
            "productName": tx.product_name or product.get("name", ""),
            "unitPrice": unit_price,
            "taxAmount": tax_amount,
            "totalAmount": total_amount,
            "date": tx.date or utcnow(),
            "status": tx.status or PaymentStatus.PAID.value,
            "entityName": tx.entity_name or DEFAULT_ENTITY[tx.type],
        }
    )

    updated = _apply_stock_delta(db, product, tx.type, tx.quantity)

    try:
        doc = create_document(db, TRANSACTIONS, record)
    except PyMongoError:
        logger.exception("Failed to persist %s for product %s, reverting stock", tx.type, tx.product_id)
        db[PRODUCTS].update_one(
            {"_id": product["_id"]},
            {"$inc": {"stock": -stock_delta(tx.type, tx.quantity)}},
        )
        raise

    logger.info(
        "Recorded %s of %d x %s, stock now %s",
        tx.type,
        tx.quantity,
        record["productName"],
        updated.get("stock"),
    )
    return serialize(doc)


def list_transactions(
    db: Database,
    tx_type: Optional[str] = None,
    product_id: Optional[str] = None,
    status: Optional[str] = None,
    user_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {}
    if tx_type:
        query["type"] = tx_type
    if product_id:
        query["productId"] = product_id
    if status:
        query["status"] = status
    if user_id:
        query["userId"] = user_id
    # Ties on date fall back to insertion order via the ObjectId
    docs = get_documents(db, TRANSACTIONS, query, sort=[("date", -1), ("_id", -1)])
    return [serialize(d) for d in docs]
