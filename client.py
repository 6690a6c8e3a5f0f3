"""Two-tier client for the TexFlow API.

Reads try the server first and fall back to a local cache, then to seed data.
The HTTP timeout (3 seconds by default) applies per connect, read and write
phase, so a read also carries an overall budget of the same length: queued
writes are replayed first, and once the budget is spent the read is served
from the cache with the rest of the queue left for the next call.

Writes are applied to the cache immediately and queued; the queue is replayed
against the server until each entry is confirmed or rejected. Network
failures never reach the caller, who only ever sees a possibly stale data set.
"""

import copy
import json
import logging
import math
import os
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from config import Config

logger = logging.getLogger("texflow.client")

PRODUCTS = "products"
TRANSACTIONS = "transactions"
SUPPLIERS = "suppliers"
CUSTOMERS = "customers"

CACHE_PREFIX = "texflow_fallback_"
PENDING_KEY = "texflow_pending_writes"

SEED_DATA: Dict[str, List[Dict[str, Any]]] = {
    PRODUCTS: [
        {
            "id": "m1",
            "name": "Cotton Silk Blend",
            "category": "Fabric",
            "sku": "TEX-M001",
            "variant": "Gold / 100m",
            "costPrice": 500,
            "sellingPrice": 850,
            "stock": 45,
            "description": "Luxury cotton silk blend for high-end garments.",
            "image": "https://picsum.photos/seed/texm1/200/200",
        },
        {
            "id": "m2",
            "name": "Microfiber Towel",
            "category": "Towel",
            "sku": "TEX-M002",
            "variant": "Blue / Set of 4",
            "costPrice": 200,
            "sellingPrice": 450,
            "stock": 12,
            "description": "Quick-dry microfiber towels.",
            "image": "https://picsum.photos/seed/texm2/200/200",
        },
    ],
    TRANSACTIONS: [],
    SUPPLIERS: [{"id": "ms1", "name": "Local Fabrics Co", "contact": "1234567890", "email": "contact@localfabrics.com"}],
    CUSTOMERS: [{"id": "mc1", "name": "Walk-in Customer", "phone": "9999999999", "email": "walkin@example.com"}],
}


# Local tier

class LocalStore(ABC):
    """Key-value store backing the local tier."""

    @abstractmethod
    def get(self, key: str) -> Any:
        ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        ...


class MemoryStore(LocalStore):
    """Process-scoped store; forgotten on exit."""

    def __init__(self):
        self._data: Dict[str, Any] = {}

    def get(self, key):
        value = self._data.get(key)
        return copy.deepcopy(value)

    def set(self, key, value):
        self._data[key] = copy.deepcopy(value)


class JsonFileStore(LocalStore):
    """Store persisted to a single JSON file, surviving restarts like browser local storage."""

    def __init__(self, path: str):
        self.path = path

    def _load(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable cache file %s: %s", self.path, exc)
            return {}

    def get(self, key):
        return self._load().get(key)

    def set(self, key, value):
        data = self._load()
        data[key] = value
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(data, fh, default=str)
        os.replace(tmp_path, self.path)


# Remote tier

class RemoteUnavailable(Exception):
    """Server unreachable, timed out or failing (5xx)."""


class RemoteRejected(Exception):
    """Server answered with a 4xx; retrying the same request will not help."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


class RemoteStore:
    def __init__(
        self,
        base_url: str = Config.API_BASE_URL,
        timeout: float = Config.CLIENT_TIMEOUT,
        http_client: Optional[httpx.Client] = None,
    ):
        self.timeout = timeout
        self.http = http_client or httpx.Client(base_url=base_url, timeout=timeout)

    def request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = self.http.request(method, path, json=payload)
        except httpx.TransportError as exc:
            # Timeouts are transport errors too
            raise RemoteUnavailable(f"{method} {path}: {exc!r}") from exc

        if response.status_code >= 500:
            raise RemoteUnavailable(f"{method} {path}: HTTP {response.status_code}")
        if response.status_code >= 400:
            try:
                message = response.json().get("message", response.text)
            except ValueError:
                message = response.text
            raise RemoteRejected(response.status_code, message)
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteUnavailable(f"{method} {path}: malformed JSON") from exc

    def close(self) -> None:
        self.http.close()


# Composition

@dataclass
class PendingWrite:
    resource: str
    method: str
    path: str
    payload: Optional[Dict[str, Any]] = None
    local_id: Optional[str] = None
    result: Any = field(default=None, repr=False)
    confirmed: bool = field(default=False, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("result")
        data.pop("confirmed")
        return data


class HybridRepository:
    def __init__(
        self,
        remote: RemoteStore,
        local: LocalStore,
        seeds: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        read_budget: Optional[float] = None,
    ):
        self.remote = remote
        self.local = local
        self.seeds = SEED_DATA if seeds is None else seeds
        self.read_budget = remote.timeout if read_budget is None else read_budget
        self.pending: List[PendingWrite] = [PendingWrite(**p) for p in (local.get(PENDING_KEY) or [])]

    # cache helpers

    def cached(self, resource: str) -> List[Dict[str, Any]]:
        cached = self.local.get(CACHE_PREFIX + resource)
        if cached is not None:
            return cached
        return copy.deepcopy(self.seeds.get(resource, []))

    def store(self, resource: str, items: List[Dict[str, Any]]) -> None:
        self.local.set(CACHE_PREFIX + resource, items)

    def _save_pending(self) -> None:
        self.local.set(PENDING_KEY, [p.to_dict() for p in self.pending])

    # reads

    def read(self, resource: str) -> List[Dict[str, Any]]:
        deadline = time.monotonic() + self.read_budget
        if self.sync(deadline) and time.monotonic() < deadline:
            try:
                data = self.remote.request("GET", resource)
            except (RemoteUnavailable, RemoteRejected) as exc:
                logger.info("Serving %s from local cache: %s", resource, exc)
            else:
                self.store(resource, data)
                return data
        return self.cached(resource)

    # writes

    def write(
        self,
        resource: str,
        method: str,
        payload: Optional[Dict[str, Any]] = None,
        item_id: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
        prepend: bool = False,
    ) -> Optional[Dict[str, Any]]:
        """Commit locally, queue the request, then try to deliver the queue.

        Returns the server's record when the write went through, otherwise the
        optimistic local record.
        """
        items = self.cached(resource)
        record: Optional[Dict[str, Any]] = None
        local_id = None

        if method == "POST":
            local_id = f"local-{uuid.uuid4().hex[:12]}"
            record = {**(payload or {}), **(extra or {}), "id": local_id}
            if prepend:
                items.insert(0, record)
            else:
                items.append(record)
            path = resource
        elif method == "PATCH":
            for i, item in enumerate(items):
                if item.get("id") == item_id:
                    items[i] = record = {**item, **(payload or {})}
                    break
            else:
                record = {**(payload or {}), "id": item_id}
            path = f"{resource}/{item_id}"
        elif method == "DELETE":
            items = [item for item in items if item.get("id") != item_id]
            path = f"{resource}/{item_id}"
        else:
            raise ValueError(f"Unsupported method: {method}")

        self.store(resource, items)
        entry = PendingWrite(resource, method, path, payload, local_id)
        self.pending.append(entry)
        self._save_pending()

        self.sync()
        if entry.confirmed and isinstance(entry.result, dict):
            return entry.result
        return record

    def sync(self, deadline: Optional[float] = None) -> bool:
        """Replay queued writes in order; stop at the first unreachable attempt
        or once ``deadline`` (a ``time.monotonic`` value) has passed.

        Returns True when the queue is empty afterwards.
        """
        while self.pending:
            if deadline is not None and time.monotonic() >= deadline:
                logger.info("Out of time with %d writes still queued", len(self.pending))
                return False
            entry = self.pending[0]
            try:
                result = self.remote.request(entry.method, entry.path, entry.payload)
            except RemoteUnavailable as exc:
                logger.debug("Deferring %s %s: %s", entry.method, entry.path, exc)
                return False
            except RemoteRejected as exc:
                logger.warning("Server rejected %s %s, discarding: %s", entry.method, entry.path, exc)
                self.pending.pop(0)
                self._save_pending()
                continue

            self.pending.pop(0)
            entry.result = result
            entry.confirmed = True
            self._confirm(entry)
            self._save_pending()
        return True

    def _confirm(self, entry: PendingWrite) -> None:
        if entry.method == "DELETE" or not isinstance(entry.result, dict):
            return
        target = entry.local_id if entry.method == "POST" else entry.path.rsplit("/", 1)[-1]
        items = self.cached(entry.resource)
        for i, item in enumerate(items):
            if item.get("id") == target:
                items[i] = entry.result
                break
        self.store(entry.resource, items)

        server_id = entry.result.get("id")
        if entry.method == "POST" and server_id and server_id != entry.local_id:
            self._remap_id(entry.local_id, server_id)

    def _remap_id(self, local_id: str, server_id: str) -> None:
        # Writes queued against a record created offline now point at its server id
        for entry in self.pending:
            if entry.path.endswith(f"/{local_id}"):
                entry.path = f"{entry.path[: -len(local_id)]}{server_id}"
            if entry.payload and entry.payload.get("productId") == local_id:
                entry.payload["productId"] = server_id
        transactions = self.cached(TRANSACTIONS)
        for tx in transactions:
            if tx.get("productId") == local_id:
                tx["productId"] = server_id
        self.store(TRANSACTIONS, transactions)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class TexFlowClient:
    """Always-available facade the dashboard and storefront talk to."""

    def __init__(self, repository: Optional[HybridRepository] = None, config=Config):
        if repository is None:
            local = JsonFileStore(config.CLIENT_CACHE_PATH) if config.CLIENT_CACHE_PATH else MemoryStore()
            repository = HybridRepository(RemoteStore(config.API_BASE_URL, config.CLIENT_TIMEOUT), local)
        self.repo = repository
        self.gst_rate = config.GST_RATE

    # Products
    def get_products(self) -> List[Dict[str, Any]]:
        return self.repo.read(PRODUCTS)

    def save_product(self, product: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        payload = {k: v for k, v in product.items() if k not in ("id", "_id")}
        if product.get("id"):
            return self.repo.write(PRODUCTS, "PATCH", payload, item_id=product["id"])
        return self.repo.write(PRODUCTS, "POST", payload)

    def delete_product(self, product_id: str) -> None:
        # Mirror the server's cascade in the cache
        transactions = [t for t in self.repo.cached(TRANSACTIONS) if t.get("productId") != product_id]
        self.repo.store(TRANSACTIONS, transactions)
        self.repo.write(PRODUCTS, "DELETE", item_id=product_id)

    # Ledger
    def get_transactions(self) -> List[Dict[str, Any]]:
        return self.repo.read(TRANSACTIONS)

    def add_transaction(self, transaction: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        quantity = int(transaction.get("quantity") or 0)
        change = quantity if transaction.get("type") == "Purchase" else -quantity
        products = self.repo.cached(PRODUCTS)
        for p in products:
            if p.get("id") == transaction.get("productId"):
                p["stock"] = int(p.get("stock") or 0) + change
                self.repo.store(PRODUCTS, products)
                break

        extra = {"date": datetime.now(timezone.utc).isoformat()}
        return self.repo.write(TRANSACTIONS, "POST", dict(transaction), extra=extra, prepend=True)

    # Contacts
    def get_suppliers(self) -> List[Dict[str, Any]]:
        return self.repo.read(SUPPLIERS)

    def save_supplier(self, supplier: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._save_contact(SUPPLIERS, supplier)

    def get_customers(self) -> List[Dict[str, Any]]:
        return self.repo.read(CUSTOMERS)

    def save_customer(self, customer: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._save_contact(CUSTOMERS, customer)

    def _save_contact(self, resource: str, contact: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        payload = {k: v for k, v in contact.items() if k not in ("id", "_id")}
        if contact.get("id"):
            return self.repo.write(resource, "PATCH", payload, item_id=contact["id"])
        return self.repo.write(resource, "POST", payload)

    # Billing and storefront
    def checkout(
        self,
        cart: Iterable[Tuple[Dict[str, Any], int]],
        customer_name: Optional[str] = None,
        gst_rate: Optional[float] = None,
    ) -> List[Optional[Dict[str, Any]]]:
        """Bill a counter sale: one Sale per cart line with GST added.

        Lines are recorded independently; a failure part way leaves the
        earlier lines recorded.
        """
        rate = self.gst_rate if gst_rate is None else gst_rate
        results = []
        for product, quantity in cart:
            subtotal = float(product.get("sellingPrice") or 0) * quantity
            tax = subtotal * rate
            results.append(
                self.add_transaction(
                    {
                        "type": "Sale",
                        "productId": product["id"],
                        "productName": product.get("name"),
                        "quantity": quantity,
                        "unitPrice": product.get("sellingPrice"),
                        "taxAmount": tax,
                        "totalAmount": _round_half_up(subtotal + tax),
                        "status": "Paid",
                        "entityName": customer_name or "Walk-in Customer",
                    }
                )
            )
        return results

    def place_order(
        self,
        cart: Iterable[Tuple[Dict[str, Any], int]],
        shipping: Optional[Dict[str, str]] = None,
        user_id: Optional[str] = None,
    ) -> List[Optional[Dict[str, Any]]]:
        """Storefront order: untaxed Sales booked to the online customer.

        ``user_id`` tags each line so the shopper's orders can be listed
        with ``GET /api/transactions?userId=...``.
        """
        results = []
        for product, quantity in cart:
            tx = {
                "type": "Sale",
                "productId": product["id"],
                "productName": product.get("name"),
                "quantity": quantity,
                "unitPrice": product.get("sellingPrice"),
                "totalAmount": float(product.get("sellingPrice") or 0) * quantity,
                "status": "Paid",
                "entityName": "Online Customer",
            }
            if user_id:
                tx["userId"] = user_id
            tx.update(shipping or {})
            results.append(self.add_transaction(tx))
        return results
