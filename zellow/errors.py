"""Exceptions raised by the Zellow services.

Every error carries the HTTP status it maps to; ``create_app`` registers a
handler that renders them as ``{"error": message}`` JSON bodies.
"""


class ZellowError(Exception):
    """Base exception for all Zellow errors."""

    status_code = 400

    def __init__(self, message, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self):
        payload = {'error': self.message}
        payload.update(self.extra)
        return payload


class ValidationError(ZellowError):
    """Raised when request input is invalid. Nothing is written."""

    status_code = 400


class CheckoutIncompleteError(ValidationError):
    """Raised when a checkout step is attempted before an earlier one."""

    def __init__(self, step, message=None):
        self.step = step
        super().__init__(
            message or f'Checkout step "{step}" is incomplete',
            step=step,
        )


class OutOfStockError(ValidationError):
    """Raised when a product with zero stock is added to a cart."""

    def __init__(self, product_name):
        self.product_name = product_name
        super().__init__(
            f'{product_name} is currently out of stock',
            out_of_stock=True,
        )


class AuthenticationError(ZellowError):
    """Raised when an identity token is missing, invalid or expired."""

    status_code = 401


class PermissionDeniedError(ZellowError):
    """Raised when the acting role may not perform an action."""

    status_code = 403


class NotFoundError(ZellowError):
    """Raised when a requested record does not exist."""

    status_code = 404


class IllegalTransitionError(ZellowError):
    """Raised when a status change is not in the transition table."""

    status_code = 409

    def __init__(self, current, target, message=None):
        self.current = current
        self.target = target
        super().__init__(
            message or f'Cannot move from {current} to {target}',
            current_status=current,
            target_status=target,
        )


class PersistenceError(ZellowError):
    """Raised when the database rejects a write. Nothing was saved."""

    status_code = 500


class HistoryImmutableError(ZellowError):
    """Raised on any attempt to rewrite or delete a history entry."""

    status_code = 409
