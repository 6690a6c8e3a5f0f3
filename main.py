import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from pymongo.errors import PyMongoError
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

import catalog
import contacts
import ledger
import reports
from config import Config, configure_logging
from database import CUSTOMERS, SUPPLIERS, connect, ensure_indexes, get_db
from errors import PayloadTooLargeError, TexFlowError, from_pydantic
from schemas import CustomerIn, CustomerPatch, ProductIn, ProductPatch, SupplierIn, SupplierPatch, TransactionIn

logger = logging.getLogger("texflow.api")


def open_database(config=Config) -> Database:
    """Connect at startup; the process cannot serve anything without the store."""
    try:
        return connect(config.MONGODB_URI, config.DATABASE_NAME, config.DB_TIMEOUT_MS)
    except PyMongoError as exc:
        logger.critical("MongoDB connection error: %s", exc)
        sys.exit(1)


class PayloadLimitMiddleware:
    """Answers 413 once a request body passes ``max_bytes``.

    The declared Content-Length is checked up front; bodies without one
    (chunked uploads) are counted as they are received.
    """

    def __init__(self, app: ASGIApp, max_bytes: int) -> None:
        self.app = app
        self.max_bytes = max_bytes

    @property
    def message(self) -> str:
        return PayloadTooLargeError(f"Payload exceeds {self.max_bytes} bytes").message

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        length = Headers(scope=scope).get("content-length")
        if length and length.isdigit() and int(length) > self.max_bytes:
            response = JSONResponse(status_code=PayloadTooLargeError.status_code, content={"message": self.message})
            await response(scope, receive, send)
            return

        received = 0

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_bytes:
                    # FastAPI re-raises HTTPException from the body read
                    raise HTTPException(status_code=PayloadTooLargeError.status_code, detail=self.message)
            return message

        await self.app(scope, limited_receive, send)


def create_app(database: Optional[Database] = None, config=Config) -> FastAPI:
    configure_logging(config.LOG_LEVEL, config.LOG_FILE)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.db is None:
            app.state.db = open_database(config)
        ensure_indexes(app.state.db)
        logger.info("TexFlow API ready")
        yield

    app = FastAPI(title="TexFlow API", lifespan=lifespan)
    app.state.db = database
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(PayloadLimitMiddleware, max_bytes=config.MAX_PAYLOAD_BYTES)

    register_error_handlers(app)
    register_routes(app)
    return app


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(TexFlowError)
    async def texflow_error(request: Request, exc: TexFlowError):
        return JSONResponse(status_code=exc.status_code, content={"message": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"message": from_pydantic(exc).message})

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"message": str(exc.detail)})

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"message": str(exc)})


def register_routes(app: FastAPI) -> None:
    @app.get("/")
    def read_root():
        return {"message": "TexFlow Backend Running"}

    @app.get("/api/health")
    def health(db: Database = Depends(get_db)):
        response = {"status": "ok", "database": False}
        try:
            if db is not None:
                db.list_collection_names()
                response["database"] = True
        except PyMongoError as e:
            logger.warning("Health check could not reach MongoDB: %s", e)
        return response

    # Products
    @app.get("/api/products")
    def list_products(
        q: Optional[str] = None,
        category: Optional[str] = None,
        in_stock: bool = Query(False, alias="inStock"),
        db: Database = Depends(get_db),
    ):
        return catalog.list_products(db, q=q, category=category, in_stock=in_stock)

    @app.get("/api/products/{product_id}")
    def get_product(product_id: str, db: Database = Depends(get_db)):
        return catalog.get_product(db, product_id)

    @app.post("/api/products", status_code=201)
    def create_product(product: ProductIn, db: Database = Depends(get_db)):
        return catalog.create_product(db, product)

    @app.patch("/api/products/{product_id}")
    def update_product(product_id: str, patch: ProductPatch, db: Database = Depends(get_db)):
        return catalog.update_product(db, product_id, patch)

    @app.delete("/api/products/{product_id}", status_code=204)
    def delete_product(product_id: str, db: Database = Depends(get_db)):
        catalog.delete_product(db, product_id)
        return Response(status_code=204)

    # Transactions: recording one applies its stock delta
    @app.get("/api/transactions")
    def list_transactions(
        type: Optional[str] = None,
        product_id: Optional[str] = Query(None, alias="productId"),
        status: Optional[str] = None,
        user_id: Optional[str] = Query(None, alias="userId"),
        db: Database = Depends(get_db),
    ):
        return ledger.list_transactions(db, tx_type=type, product_id=product_id, status=status, user_id=user_id)

    @app.post("/api/transactions", status_code=201)
    def create_transaction(tx: TransactionIn, db: Database = Depends(get_db)):
        return ledger.record_transaction(db, tx)

    # Suppliers
    @app.get("/api/suppliers")
    def list_suppliers(q: Optional[str] = None, db: Database = Depends(get_db)):
        return contacts.list_contacts(db, SUPPLIERS, q)

    @app.post("/api/suppliers", status_code=201)
    def create_supplier(supplier: SupplierIn, db: Database = Depends(get_db)):
        return contacts.create_contact(db, SUPPLIERS, supplier)

    @app.patch("/api/suppliers/{supplier_id}")
    def update_supplier(supplier_id: str, patch: SupplierPatch, db: Database = Depends(get_db)):
        return contacts.update_contact(db, SUPPLIERS, supplier_id, patch)

    # Customers
    @app.get("/api/customers")
    def list_customers(q: Optional[str] = None, db: Database = Depends(get_db)):
        return contacts.list_contacts(db, CUSTOMERS, q)

    @app.post("/api/customers", status_code=201)
    def create_customer(customer: CustomerIn, db: Database = Depends(get_db)):
        return contacts.create_contact(db, CUSTOMERS, customer)

    @app.patch("/api/customers/{customer_id}")
    def update_customer(customer_id: str, patch: CustomerPatch, db: Database = Depends(get_db)):
        return contacts.update_contact(db, CUSTOMERS, customer_id, patch)

    # Dashboard and payments
    @app.get("/api/stats")
    def get_stats(request: Request, db: Database = Depends(get_db)):
        return reports.dashboard_stats(db, request.app.state.config.LOW_STOCK_THRESHOLD)

    @app.get("/api/payments/summary")
    def get_payment_summary(db: Database = Depends(get_db)):
        return reports.payment_summary(db)


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=Config.PORT)
