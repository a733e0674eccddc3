"""Error taxonomy shared by services and routers."""
from typing import Any, Dict, Optional


class StoreError(Exception):
    """Base class for errors with a client-visible status and message."""

    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(StoreError):
    """Client input is malformed, missing, or cannot be fulfilled."""

    status_code = 400
    default_message = "Bad request"


class InsufficientStockError(ValidationError):
    """One or more products cannot cover the requested quantity."""

    def __init__(self, product_ids):
        self.product_ids = list(product_ids)
        super().__init__(f"Insufficient stock for products: {', '.join(self.product_ids)}")


class AuthorizationError(StoreError):
    """Requester may not act on the resource."""

    status_code = 403
    default_message = "Forbidden"


class NotFoundError(StoreError):
    status_code = 404
    default_message = "Not found"


class ConflictError(StoreError):
    """Resource state forbids the request (already paid, illegal transition)."""

    status_code = 400
    default_message = "Conflict"


class UpstreamError(StoreError):
    """An external collaborator (payment provider, media host) failed."""

    status_code = 500
    default_message = "Upstream service error"


class PaymentProviderError(UpstreamError):
    """
    Payment provider call failed.

    ``provider_status`` is None when no response was received (timeout or
    connection failure), so the outcome of the call is unknown.
    """

    def __init__(
        self,
        message: str,
        provider_status: Optional[int] = None,
        issue: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.provider_status = provider_status
        self.issue = issue
        self.details = details or {}
        super().__init__(message)


class InternalError(StoreError):
    status_code = 500
    default_message = "Internal error"
