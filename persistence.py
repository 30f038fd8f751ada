"""
persistence.py
==============
Durability collaborators for InMemoryCouponStore.

Both backends implement the same load-all / save-all contract:
  load()        -> every stored coupon; a store that was never written is empty
  save(coupons) -> replace the stored set with ``coupons``

Failures are raised as PersistenceError, never swallowed.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

import models
from database import Base, create_session_factory
from errors import PersistenceError
from schemas import Coupon

logger = logging.getLogger(__name__)

_coupon_list = TypeAdapter(List[Coupon])


class CouponPersistence(ABC):

    @abstractmethod
    def load(self) -> List[Coupon]:
        ...

    @abstractmethod
    def save(self, coupons: List[Coupon]) -> None:
        ...


# ─────────────────────────── JSON file ───────────────────────────

class JSONFilePersistence(CouponPersistence):
    """Stores the coupon set as a pretty-printed JSON array."""

    def __init__(self, path):
        self.path = Path(path)

    def load(self) -> List[Coupon]:
        logger.info("Loading coupons from '%s'", self.path)
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise PersistenceError(f"unable to open data file {self.path}: {exc}") from exc

        if not raw.strip():
            return []

        try:
            return _coupon_list.validate_json(raw)
        except ValidationError as exc:
            raise PersistenceError(f"error decoding coupons from {self.path}: {exc}") from exc

    def save(self, coupons: List[Coupon]) -> None:
        try:
            payload = json.dumps([c.model_dump() for c in coupons], indent=2)
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"error encoding coupons: {exc}") from exc

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=self.path.name, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(payload)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as exc:
            logger.exception("Failed to write coupons to '%s'", self.path)
            raise PersistenceError(f"unable to write data file {self.path}: {exc}") from exc


# ─────────────────────────── SQL database ───────────────────────────

class SQLPersistence(CouponPersistence):
    """Mirrors the coupon set into the ``coupons`` table."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.SessionLocal = create_session_factory(engine)
        try:
            Base.metadata.create_all(bind=engine)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"unable to create coupons table: {exc}") from exc

    def load(self) -> List[Coupon]:
        logger.info("Loading coupons from %s", self.engine.url.render_as_string(hide_password=True))
        try:
            with self.SessionLocal() as db:
                rows = db.scalars(select(models.CouponRecord)).all()
                return [Coupon.model_validate(row) for row in rows]
        except (SQLAlchemyError, ValidationError) as exc:
            raise PersistenceError(f"unable to load coupons: {exc}") from exc

    def save(self, coupons: List[Coupon]) -> None:
        wanted = {c.code: c for c in coupons}
        try:
            with self.SessionLocal() as db:
                existing = {row.code: row for row in db.scalars(select(models.CouponRecord))}

                for code, row in existing.items():
                    if code not in wanted:
                        db.delete(row)
                # Flush deletes first so a re-created code does not hit the unique index
                db.flush()

                for code, coupon in wanted.items():
                    row = existing.get(code)
                    if row is not None and row.id == coupon.id:
                        continue
                    if row is not None:
                        db.delete(row)
                        db.flush()
                    db.add(models.CouponRecord(
                        id=coupon.id,
                        code=coupon.code,
                        discount=coupon.discount,
                        min_basket_value=coupon.min_basket_value,
                    ))

                db.commit()
        except SQLAlchemyError as exc:
            logger.exception("Failed to write coupons to the database")
            raise PersistenceError(f"unable to save coupons: {exc}") from exc
