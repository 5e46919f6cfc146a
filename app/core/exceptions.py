"""Exception classes for the product database manager."""

from typing import Any, Dict, Optional


class ProductDatabaseError(Exception):
    """Base exception for product database errors."""

    code = "PRODUCT_DATABASE_ERROR"
    status_code = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message}}


class ConfigNotFound(ProductDatabaseError):
    """No active database configuration exists for the product."""

    code = "CONFIG_NOT_FOUND"
    status_code = 404

    def __init__(self, product_id: str) -> None:
        self.product_id = product_id
        super().__init__(f"Product database config not found for product: {product_id}")


class UnsupportedKind(ProductDatabaseError):
    """The configuration names a database kind the manager cannot handle here."""

    code = "UNSUPPORTED_KIND"
    status_code = 400

    def __init__(self, message: str, db_type: Optional[str] = None) -> None:
        self.db_type = db_type
        super().__init__(message)


class IncompleteConfig(ProductDatabaseError):
    """A field required for the configured database kind is missing."""

    code = "INCOMPLETE_CONFIG"
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        self.field = field
        super().__init__(message)


class ProbeFailure(ProductDatabaseError):
    """A connectivity probe against the product database failed."""

    code = "PROBE_FAILURE"
    status_code = 502
