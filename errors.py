"""Error taxonomy shared by the services and the HTTP boundary.

Each error knows the HTTP status it maps to; ``main.py`` turns any of them into
a ``{"message": ...}`` JSON body.
"""

from typing import Optional


class TexFlowError(Exception):
    """Base class for failures the API reports to clients."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(TexFlowError):
    """Missing required field or malformed input."""

    status_code = 400


class InsufficientStockError(TexFlowError):
    """A sale asked for more units than the product holds."""

    status_code = 400

    def __init__(self, product_name: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for {product_name}: {available} available, {requested} requested"
        )
        self.available = available
        self.requested = requested


class NotFoundError(TexFlowError):
    status_code = 404

    def __init__(self, resource: str, identifier: Optional[str] = None):
        message = f"{resource} not found" if identifier is None else f"{resource} not found: {identifier}"
        super().__init__(message)


class ConflictError(TexFlowError):
    """Duplicate SKU."""

    status_code = 409


class PayloadTooLargeError(TexFlowError):
    status_code = 413


def from_pydantic(exc) -> ValidationError:
    """Collapse a pydantic ValidationError into a single readable message."""
    parts = []
    for error in exc.errors():
        field = ".".join(str(p) for p in error.get("loc", ()) if p != "body")
        if error.get("type") == "missing":
            parts.append(f"{field} is required")
        else:
            parts.append(f"{field}: {error.get('msg')}" if field else str(error.get("msg")))
    return ValidationError("; ".join(parts) or "Invalid request body")
