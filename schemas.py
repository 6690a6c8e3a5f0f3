"""
Database Schemas for TexFlow

Each Pydantic model below validates the body of a write against one MongoDB
collection: products, suppliers, customers and transactions. Documents are
stored with the camelCase field names the dashboard speaks (costPrice,
productId, ...); snake_case names are accepted on input as well.

Numeric fields never reject a request: anything that is not a finite number
falls back to a default (see ``finite_number``).
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Category(str, Enum):
    FABRIC = "Fabric"
    TOWEL = "Towel"
    GARMENT = "Garment"
    OTHER = "Other"


class TransactionType(str, Enum):
    PURCHASE = "Purchase"
    SALE = "Sale"


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    PAID = "Paid"


def finite_number(value: Any, default: float = 0.0) -> float:
    if isinstance(value, str):
        value = value.strip()
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return number


class _Schema(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        use_enum_values=True,
    )


class ProductIn(_Schema):
    name: str = Field(..., min_length=1, description="Product name")
    category: Category = Field(Category.FABRIC.value, description="Fabric, Towel, Garment or Other")
    sku: str = Field(..., min_length=1, description="Unique stock keeping unit")
    variant: str = Field("", description="Colour / size")
    cost_price: float = Field(0.0, description="Unit cost price")
    selling_price: float = Field(0.0, description="Unit selling price")
    stock: int = Field(0, ge=0, description="Quantity on hand")
    description: str = Field("", description="Product description")
    image: Optional[str] = Field(None, description="Image URL or inline base64 data")

    @field_validator("cost_price", "selling_price", mode="before")
    @classmethod
    def _coerce_price(cls, value: Any) -> float:
        return finite_number(value)

    @field_validator("stock", mode="before")
    @classmethod
    def _coerce_stock(cls, value: Any) -> int:
        return max(0, int(finite_number(value)))

    @field_validator("variant", "description", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class ProductPatch(_Schema):
    """Partial product update; merged over the stored document and re-validated as ProductIn."""

    name: Optional[str] = None
    category: Optional[str] = None
    sku: Optional[str] = None
    variant: Optional[str] = None
    cost_price: Optional[Any] = None
    selling_price: Optional[Any] = None
    stock: Optional[Any] = None
    description: Optional[str] = None
    image: Optional[str] = None


class TransactionIn(_Schema):
    type: TransactionType
    product_id: str = Field(..., min_length=1, description="Product ObjectId as string")
    product_name: Optional[str] = Field(None, description="Product name snapshot")
    quantity: int = Field(1, ge=1)
    unit_price: Optional[float] = Field(None, description="Defaults to the product's cost or selling price")
    tax_amount: float = Field(0.0)
    total_amount: Optional[float] = Field(None, description="Defaults to quantity * unitPrice + taxAmount")
    date: Optional[datetime] = None
    status: PaymentStatus = PaymentStatus.PAID.value
    entity_name: Optional[str] = Field(None, description="Supplier or customer display name")
    user_id: Optional[str] = None
    shipping_address: Optional[str] = None
    shipping_city: Optional[str] = None
    shipping_postal_code: Optional[str] = None

    @field_validator("quantity", mode="before")
    @classmethod
    def _coerce_quantity(cls, value: Any) -> int:
        return max(1, int(finite_number(value, default=1)))

    @field_validator("unit_price", "total_amount", mode="before")
    @classmethod
    def _coerce_optional_amount(cls, value: Any) -> Optional[float]:
        if value is None or value == "":
            return None
        number = finite_number(value, default=math.nan)
        return None if math.isnan(number) else number

    @field_validator("tax_amount", mode="before")
    @classmethod
    def _coerce_tax(cls, value: Any) -> float:
        return finite_number(value)

    @field_validator("date")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("entity_name", "product_name", mode="before")
    @classmethod
    def _blank_as_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class _ContactSchema(_Schema):
    @field_validator("contact", "phone", "email", mode="before", check_fields=False)
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class _ContactPatch(_ContactSchema):
    @field_validator("name", mode="before", check_fields=False)
    @classmethod
    def _name_not_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("name cannot be null")
        return value


class SupplierIn(_ContactSchema):
    name: str = Field(..., min_length=1, description="Supplier name")
    contact: str = Field("", description="Contact person or phone number")
    email: str = Field("", description="Email address")


class SupplierPatch(_ContactPatch):
    name: Optional[str] = Field(None, min_length=1)
    contact: Optional[str] = None
    email: Optional[str] = None


class CustomerIn(_ContactSchema):
    name: str = Field(..., min_length=1, description="Customer name")
    phone: str = Field("", description="Phone number")
    email: str = Field("", description="Email address")


class CustomerPatch(_ContactPatch):
    name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = None
    email: Optional[str] = None
