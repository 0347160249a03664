"""
Error taxonomy for the storefront services.

Services raise these; the FastAPI exception handlers in main.py turn them
into ``{"message": ...}`` responses with the matching status code.
"""


class ShopError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


# ----------------------- 400 -----------------------
class ValidationError(ShopError):
    status_code = 400
    default_message = "Invalid request"


class MissingField(ValidationError):
    default_message = "Missing required information"


class InvalidArgument(ValidationError):
    pass


class InvalidCredentials(ValidationError):
    default_message = "Invalid credentials"


class EmailNotVerified(ValidationError):
    default_message = "Please verify your email before logging in"


class InsufficientStock(ValidationError):
    default_message = "Insufficient stock"


class MinimumAmountNotMet(ValidationError):
    def __init__(self, min_amount):
        self.min_amount = min_amount
        super().__init__(f"Minimum order amount of ${min_amount:g} required for this coupon")


class Conflict(ShopError):
    status_code = 400
    default_message = "Resource already exists"


class HasDependents(Conflict):
    default_message = "Resource has dependent records"


# ----------------------- 401 / 403 -----------------------
class AuthError(ShopError):
    status_code = 401
    default_message = "Access token required"


class Forbidden(AuthError):
    status_code = 403
    default_message = "Invalid or expired token"


# ----------------------- 404 -----------------------
class NotFound(ShopError):
    status_code = 404
    default_message = "Not found"


class CouponInvalid(NotFound):
    default_message = "Invalid or expired coupon code"


# ----------------------- 500 -----------------------
class StoreError(ShopError):
    default_message = "Database error"
