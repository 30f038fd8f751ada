from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from database import Base


class CouponRecord(Base):
    """
    Database row for a stored coupon.

    Only the durability backend (persistence.SQLPersistence) reads and writes
    this table; the live inventory is the in-memory store.
    """
    __tablename__ = "coupons"

    id = Column(String(36), primary_key=True)
    code = Column(String, unique=True, index=True, nullable=False)
    discount = Column(Integer, nullable=False)
    min_basket_value = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
