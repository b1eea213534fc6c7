"""Cart error taxonomy.

Every failure that leaves the cart core is one of three kinds. The HTTP layer
maps the kind to a status code, nothing else needs to know the subclass.
"""

import enum
from typing import Any, Dict, Optional


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    DATABASE = "database"


class CartError(Exception):
    kind: ErrorKind = ErrorKind.DATABASE
    default_message = "Cart operation failed"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "details": self.details}


class ValidationError(CartError):
    """Malformed input or a broken business rule (quantity, stock, state)."""

    kind = ErrorKind.VALIDATION
    default_message = "Validation error"


class NotFoundError(CartError):
    """Missing product, active cart or cart line."""

    kind = ErrorKind.NOT_FOUND
    default_message = "Resource not found"


class DatabaseError(CartError):
    """Unclassified storage failure; the driver exception is kept as __cause__."""

    kind = ErrorKind.DATABASE
    default_message = "Database error"
