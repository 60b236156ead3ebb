"""
Domain errors raised by the order services.

Each error carries the HTTP status and a stable machine-readable code so the
API layer can render it without knowing which service raised it.
"""

from typing import Any


class OrderFlowError(Exception):
    status_code = 500
    code = "internal"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "error",
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class InvalidInput(OrderFlowError):
    status_code = 400
    code = "invalid_input"


class Unauthorized(OrderFlowError):
    status_code = 401
    code = "unauthorized"


class Forbidden(OrderFlowError):
    status_code = 403
    code = "forbidden"


class NotFound(OrderFlowError):
    status_code = 404
    code = "not_found"


class ItemNotFound(NotFound):
    code = "item_not_found"

    def __init__(self, item_id: int):
        self.item_id = item_id
        super().__init__(f"Menu item {item_id} not found", {"item_id": item_id})


class Conflict(OrderFlowError):
    status_code = 409
    code = "conflict"


class OutOfStock(Conflict):
    code = "out_of_stock"

    def __init__(self, item_id: int, item_name: str, available: int):
        self.item_id = item_id
        self.item_name = item_name
        self.available = available
        super().__init__(
            f"'{item_name}' is out of stock ({available} left)",
            {"item_id": item_id, "item_name": item_name, "stock": available},
        )


class Internal(OrderFlowError):
    pass
