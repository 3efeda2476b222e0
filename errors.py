"""
Domain errors raised by the service modules.

Each error carries the HTTP status the API answers with; main.py registers a
single handler that turns them into ``{"detail": ...}`` responses.
"""


class ShopError(Exception):
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFoundError(ShopError):
    status_code = 404


class InvalidRequestError(ShopError):
    status_code = 422


class ConflictError(ShopError):
    status_code = 409


class InvalidTransitionError(ConflictError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move from '{current}' to '{target}'")
        self.current = current
        self.target = target


class InsufficientStockError(ConflictError):
    def __init__(self, product_id: str, name: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for '{name}': {available} available, {requested} requested"
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class AuthError(ShopError):
    status_code = 401


class ForbiddenError(ShopError):
    status_code = 403
