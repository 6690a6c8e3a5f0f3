"""Dashboard and payments figures computed from the catalog and the ledger."""

from collections import defaultdict
from typing import Any, Dict

from pymongo.database import Database

from database import CUSTOMERS, PRODUCTS, SUPPLIERS, TRANSACTIONS, serialize
from schemas import Category, PaymentStatus, TransactionType


def _amount(doc: Dict[str, Any]) -> float:
    return float(doc.get("totalAmount") or 0)


def dashboard_stats(db: Database, low_stock_threshold: int = 10) -> Dict[str, Any]:
    products = list(db[PRODUCTS].find({}))
    transactions = list(db[TRANSACTIONS].find({}))

    inventory_value = 0.0
    by_category = {c.value: 0 for c in Category}
    for p in products:
        stock = int(p.get("stock", 0) or 0)
        inventory_value += stock * float(p.get("costPrice", 0) or 0)
        category = p.get("category") or Category.OTHER.value
        by_category[category] = by_category.get(category, 0) + stock

    total_sales = 0.0
    total_purchases = 0.0
    sales_by_product: Dict[str, float] = defaultdict(float)
    for t in transactions:
        if t.get("type") == TransactionType.SALE.value:
            total_sales += _amount(t)
            sales_by_product[t.get("productId")] += _amount(t)
        elif t.get("type") == TransactionType.PURCHASE.value:
            total_purchases += _amount(t)

    low_stock = [serialize(p) for p in products if int(p.get("stock", 0) or 0) < low_stock_threshold]

    return {
        "counts": {
            "products": len(products),
            "customers": db[CUSTOMERS].count_documents({}),
            "suppliers": db[SUPPLIERS].count_documents({}),
            "transactions": len(transactions),
        },
        "inventoryValue": round(inventory_value, 2),
        "totalSales": round(total_sales, 2),
        "totalPurchases": round(total_purchases, 2),
        "lowStock": low_stock,
        "salesByProduct": [
            {"productId": str(p["_id"]), "name": p.get("name"), "sales": round(sales_by_product.get(str(p["_id"]), 0.0), 2)}
            for p in products
        ],
        "stockByCategory": [{"category": k, "stock": v} for k, v in by_category.items()],
    }


def payment_summary(db: Database) -> Dict[str, float]:
    totals = {
        "pendingIncoming": 0.0,
        "pendingOutgoing": 0.0,
        "received": 0.0,
        "paidOut": 0.0,
    }
    keys = {
        (TransactionType.SALE.value, PaymentStatus.PENDING.value): "pendingIncoming",
        (TransactionType.PURCHASE.value, PaymentStatus.PENDING.value): "pendingOutgoing",
        (TransactionType.SALE.value, PaymentStatus.PAID.value): "received",
        (TransactionType.PURCHASE.value, PaymentStatus.PAID.value): "paidOut",
    }
    for t in db[TRANSACTIONS].find({}, {"type": 1, "status": 1, "totalAmount": 1}):
        key = keys.get((t.get("type"), t.get("status")))
        if key:
            totals[key] += _amount(t)
    return {k: round(v, 2) for k, v in totals.items()}
