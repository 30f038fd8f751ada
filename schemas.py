from pydantic import BaseModel, Field, field_validator
from typing import Optional, List


# ─────────────── Core value types ───────────────

class Coupon(BaseModel):
    """
    A fixed-amount discount offer.

    code:             case-sensitive lookup key, unique in the store
    discount:         face value in monetary units
    min_basket_value: basket value required to redeem the coupon
    """
    id: str
    code: str
    discount: int
    min_basket_value: int

    model_config = {"from_attributes": True}

    @field_validator("discount", "min_basket_value")
    @classmethod
    def must_not_be_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Must not be negative")
        return v


class Basket(BaseModel):
    value: int
    applied_discount: int = 0
    application_successful: bool = False


# ─────────────── Coupon Request ───────────────

class CouponCreate(BaseModel):
    # Business rules (positive discount, minimum, uniqueness) are enforced by
    # RedemptionService so they surface as typed errors, not 422s.
    discount: int
    code: str
    min_basket_value: int


# ─────────────── Apply Request ───────────────

class BasketRequest(BaseModel):
    value: int
    applied_discount: int = 0

    def to_basket(self) -> Basket:
        return Basket(value=self.value, applied_discount=self.applied_discount)


class ApplyCouponRequest(BaseModel):
    code: str
    basket: BasketRequest

    @field_validator("code")
    @classmethod
    def code_not_blank(cls, v: str) -> str:
        if not v:
            raise ValueError("Coupon code cannot be empty")
        return v


# ─────────────── Error Response ───────────────

class ErrorResponse(BaseModel):
    error: str
    detail: str
    required: Optional[int] = None
    actual: Optional[int] = None


class CouponListResponse(BaseModel):
    coupons: List[Coupon] = Field(default_factory=list)
