"""
errors.py
=========
Error taxonomy shared by the store, the redemption engine and the API layer.

Every error carries a ``kind`` that the HTTP layer maps to a status code:
  not_found   - the coupon code does not exist
  validation  - malformed coupon input
  conflict    - coupon code already taken
  domain_rule - the basket cannot receive the coupon
  persistence - the durability backend failed
"""


class CouponError(Exception):
    kind = "coupon_error"


# ─────────────────────────── NotFound ───────────────────────────

class CouponNotFoundError(CouponError):
    kind = "not_found"

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"coupon {code!r} not found")


class CouponAlreadyRedeemedError(CouponNotFoundError):
    """Raised when another redemption burned the coupon first."""

    def __init__(self, code: str):
        super().__init__(code)
        self.args = (f"coupon {code!r} was already redeemed",)


# ─────────────────────────── Validation ───────────────────────────

class CouponValidationError(CouponError):
    kind = "validation"


class InvalidCouponError(CouponValidationError):
    def __init__(self, message: str = "invalid coupon"):
        super().__init__(message)


class DiscountInvalidError(CouponValidationError):
    def __init__(self, discount):
        self.discount = discount
        super().__init__(f"discount must be a positive integer, got {discount!r}")


class MinBasketInvalidError(CouponValidationError):
    def __init__(self, min_basket_value):
        self.min_basket_value = min_basket_value
        super().__init__(f"min_basket_value cannot be negative, got {min_basket_value!r}")


class DiscountTooBigError(CouponValidationError):
    def __init__(self, discount: int, min_basket_value: int):
        self.discount = discount
        self.min_basket_value = min_basket_value
        super().__init__(
            f"discount {discount} cannot be higher than min_basket_value {min_basket_value}"
        )


# ─────────────────────────── Conflict ───────────────────────────

class DuplicateCodeError(CouponError):
    kind = "conflict"

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"coupon code {code!r} already exists")


class CodeAlreadyExistsError(DuplicateCodeError):
    def __init__(self, code: str):
        super().__init__(code)
        self.args = (f"coupon code {code!r} already used for another coupon",)


# ─────────────────────────── Domain rules ───────────────────────────

class BasketError(CouponError):
    kind = "domain_rule"


class NonPositiveBasketError(BasketError):
    def __init__(self, value: int):
        self.value = value
        super().__init__(f"cannot apply discount to a basket of non-positive value {value}")


class BelowMinimumError(BasketError):
    def __init__(self, required: int, actual: int):
        self.required = required
        self.actual = actual
        super().__init__(
            f"cannot apply discount: value {actual} did not reach the minimum {required} "
            f"({required - actual} more needed)"
        )


# ─────────────────────────── Persistence ───────────────────────────

class PersistenceError(CouponError):
    kind = "persistence"
