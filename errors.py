"""
Domain errors raised by the service layer.

Every error carries a machine readable ``code`` and the HTTP ``status_code``
the API answers with. ``main.py`` renders them as ``{"detail", "code"}``.
"""


class ServiceError(Exception):
    code = "ERROR"
    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(ServiceError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found"


class Unauthorized(ServiceError):
    code = "UNAUTHORIZED"
    status_code = 403
    default_message = "Insufficient permissions"


class InvalidCredentials(ServiceError):
    code = "INVALID_CREDENTIALS"
    status_code = 401
    default_message = "Invalid email or password"


class AccountDeactivated(ServiceError):
    code = "ACCOUNT_DEACTIVATED"
    status_code = 403
    default_message = "Account is deactivated"


class SubscriptionExpired(ServiceError):
    code = "SUBSCRIPTION_EXPIRED"
    status_code = 403
    default_message = "Subscription has expired. Please contact an administrator"


class ValidationError(ServiceError):
    code = "VALIDATION_ERROR"
    status_code = 400
    default_message = "Validation error"


class Conflict(ServiceError):
    code = "CONFLICT"
    status_code = 409
    default_message = "Conflict"


class ProductUnavailable(ServiceError):
    code = "PRODUCT_UNAVAILABLE"
    status_code = 409
    default_message = "Product is currently unavailable"


class InvalidStateTransition(ServiceError):
    code = "INVALID_STATE_TRANSITION"
    status_code = 409
    default_message = "Invalid status transition"
