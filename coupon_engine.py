"""
coupon_engine.py
================
Core business logic for issuing and redeeming coupons.

Implemented Rules:
------------------
1. create:
   - discount must be a positive integer.
   - min_basket_value must be zero or more.
   - discount cannot exceed min_basket_value.
   - codes are unique; a taken code is never overwritten.

2. apply:
   - the basket must have a positive value and reach the coupon minimum.
   - the discount never drives the basket below zero; whatever part of the
     face value the basket cannot absorb is burned, not banked.
   - coupons are single-use: a successful redemption deletes the coupon.

3. list:
   - best-effort: unknown codes are skipped, the found coupons are returned.
"""

import logging
import uuid
from typing import List, Tuple

from errors import (
    BelowMinimumError,
    CodeAlreadyExistsError,
    CouponAlreadyRedeemedError,
    CouponNotFoundError,
    DiscountInvalidError,
    DiscountTooBigError,
    DuplicateCodeError,
    InvalidCouponError,
    MinBasketInvalidError,
    NonPositiveBasketError,
)
from schemas import Basket, Coupon
from store import CouponStore

logger = logging.getLogger(__name__)


def _is_int(v) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


# ─────────────────────────── Discount arithmetic ───────────────────────────

def compute_discount(value: int, discount: int) -> Tuple[int, int]:
    """
    Returns (new_basket_value, usable_discount).

    When the face value exceeds the basket, the basket is clamped to 0 and
    only the part that fit is counted as applied.
    """
    diff = value - discount
    if diff < 0:
        return 0, discount + diff
    return diff, discount


# ─────────────────────────── Service ───────────────────────────

class RedemptionService:

    def __init__(self, store: CouponStore):
        self.store = store

    def create_coupon(self, discount: int, code: str, min_basket_value: int) -> Coupon:
        if not _is_int(discount) or discount <= 0:
            raise DiscountInvalidError(discount)

        if not _is_int(min_basket_value) or min_basket_value < 0:
            raise MinBasketInvalidError(min_basket_value)

        if discount > min_basket_value:
            raise DiscountTooBigError(discount, min_basket_value)

        if not isinstance(code, str) or not code:
            raise InvalidCouponError("invalid coupon: coupon code is empty")

        try:
            self.store.find_by_code(code)
        except CouponNotFoundError:
            pass
        else:
            raise CodeAlreadyExistsError(code)

        coupon = Coupon(
            id=str(uuid.uuid4()),
            code=code,
            discount=discount,
            min_basket_value=min_basket_value,
        )
        try:
            self.store.save(coupon)
        except DuplicateCodeError:
            # Another caller created the same code between the check and the save
            raise CodeAlreadyExistsError(code) from None

        logger.info("Coupon %s created with code %r", coupon.id, code)
        return coupon

    def apply_coupon(self, basket: Basket, code: str) -> Basket:
        """
        Redeem ``code`` against ``basket`` and return the updated basket.

        The basket passed in is never modified; on any error the caller's
        basket is exactly as it was.
        """
        coupon = self.store.find_by_code(code)

        if basket.value <= 0:
            raise NonPositiveBasketError(basket.value)

        if basket.value < coupon.min_basket_value:
            raise BelowMinimumError(required=coupon.min_basket_value, actual=basket.value)

        new_value, usable = compute_discount(basket.value, coupon.discount)
        result = basket.model_copy(update={
            "value": new_value,
            "applied_discount": basket.applied_discount + usable,
            "application_successful": True,
        })

        # Single-use: the redemption only counts once the coupon is gone
        try:
            self.store.delete(code)
        except CouponNotFoundError:
            logger.warning("Coupon %r was redeemed concurrently, rejecting this redemption", code)
            raise CouponAlreadyRedeemedError(code) from None

        burned = coupon.discount - usable
        if burned:
            logger.info("Coupon %r redeemed for %d, %d burned", code, usable, burned)
        else:
            logger.info("Coupon %r redeemed for %d", code, usable)
        return result

    def list_coupons(self, *codes: str) -> List[Coupon]:
        if not codes:
            return self.store.list()
        # A filter made only of blank codes matches nothing
        wanted = tuple(c for c in codes if c)
        if not wanted:
            return []
        return self.store.list(*wanted)

    def get_coupon(self, code: str) -> Coupon:
        return self.store.find_by_code(code)
