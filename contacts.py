import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.database import Database

from database import CUSTOMERS, NEWEST_FIRST, SUPPLIERS, create_document, get_documents, object_id, serialize, utcnow
from errors import NotFoundError

logger = logging.getLogger("texflow.contacts")

# Transactions point at contacts by display name only (entityName)
RESOURCE_NAMES = {SUPPLIERS: "Supplier", CUSTOMERS: "Customer"}


def list_contacts(db: Database, kind: str, q: Optional[str] = None) -> List[Dict[str, Any]]:
    query = {"name": {"$regex": re.escape(q), "$options": "i"}} if q else {}
    return [serialize(d) for d in get_documents(db, kind, query, sort=NEWEST_FIRST)]


def create_contact(db: Database, kind: str, contact: BaseModel) -> Dict[str, Any]:
    doc = create_document(db, kind, contact)
    logger.info("Created %s %s", RESOURCE_NAMES[kind].lower(), doc["_id"])
    return serialize(doc)


def update_contact(db: Database, kind: str, contact_id: str, patch: BaseModel) -> Dict[str, Any]:
    resource = RESOURCE_NAMES[kind]
    update = patch.model_dump(by_alias=True, exclude_unset=True)
    update["updatedAt"] = utcnow()
    doc = db[kind].find_one_and_update(
        {"_id": object_id(contact_id, resource)},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        raise NotFoundError(resource, contact_id)
    return serialize(doc)
