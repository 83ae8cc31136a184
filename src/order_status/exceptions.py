# order_status/exceptions.py


class OrderStatusError(Exception):
    """Base error rendered to clients as ``{"error": ..., "message": ...}``."""

    status_code = 500
    error = "Internal error"

    def __init__(self, message: str, *, error: str | None = None):
        super().__init__(message)
        self.message = message
        if error is not None:
            self.error = error


class ValidationError(OrderStatusError):
    """Missing or invalid client input."""

    status_code = 400
    error = "Invalid request"


class NotFoundError(OrderStatusError):
    """No tracking record exists for the order (read path, 404 policy only)."""

    status_code = 404
    error = "Order not found"


class UpstreamUnavailable(OrderStatusError):
    """
    Shopify or the record store could not be reached. Caught where it is
    raised and turned into missing data; never rendered as a response.
    """

    status_code = 503
    error = "Upstream unavailable"


class InternalError(OrderStatusError):
    """Unexpected failure; the message carries the underlying error text."""
