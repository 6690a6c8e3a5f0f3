import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Request
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from errors import NotFoundError

logger = logging.getLogger("texflow.database")

PRODUCTS = "products"
SUPPLIERS = "suppliers"
CUSTOMERS = "customers"
TRANSACTIONS = "transactions"

NEWEST_FIRST: List[Tuple[str, int]] = [("createdAt", -1), ("_id", -1)]


def connect(uri: str, name: str, timeout_ms: int = 5000) -> Database:
    """Open a client and ping the server so a bad URI fails at startup."""
    client = MongoClient(uri, serverSelectionTimeoutMS=timeout_ms)
    client.admin.command("ping")
    logger.info("Connected to MongoDB database '%s'", name)
    return client[name]


def ensure_indexes(db: Database) -> None:
    db[PRODUCTS].create_index([("sku", ASCENDING)], unique=True)
    db[TRANSACTIONS].create_index([("productId", ASCENDING)])
    db[TRANSACTIONS].create_index([("date", -1)])


def get_db(request: Request) -> Database:
    return request.app.state.db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def object_id(value: str, resource: str = "Document") -> ObjectId:
    # An id that cannot be parsed can never resolve
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFoundError(resource, value)


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        doc = data.model_dump(by_alias=True)
    else:
        doc = dict(data)
    now = utcnow()
    doc["createdAt"] = now
    doc["updatedAt"] = now
    result = db[collection_name].insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[Sequence[Tuple[str, int]]] = None,
) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(list(sort))
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def serialize(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Expose the native ``_id`` as a string alongside a client-friendly ``id``."""
    out = dict(doc)
    native = str(out.pop("_id"))
    out["_id"] = native
    out["id"] = native
    return out
