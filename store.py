"""
store.py
========
Coupon inventory: a concurrency-safe mapping from coupon code to Coupon.

CouponStore is the storage capability the redemption engine depends on.
InMemoryCouponStore keeps the map in process memory and optionally mirrors
every change to a persistence collaborator (see persistence.py).

Locking:
  - find_by_code / list share a read lock and run in parallel.
  - save / delete take the write lock and exclude every other operation.
  - The persistence flush runs after the write lock is released, serialised
    by its own flush lock, so slow disk or database writes never block readers.
"""

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, List, Optional

from errors import CouponNotFoundError, DuplicateCodeError, InvalidCouponError
from schemas import Coupon

logger = logging.getLogger(__name__)


class CouponStore(ABC):

    @abstractmethod
    def find_by_code(self, code: str) -> Coupon:
        ...

    @abstractmethod
    def save(self, coupon: Coupon) -> None:
        ...

    @abstractmethod
    def delete(self, code: str) -> None:
        ...

    @abstractmethod
    def list(self, *codes: str) -> List[Coupon]:
        ...


class ReadWriteLock:
    """Many readers or one writer. Writers are preferred once waiting."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class InMemoryCouponStore(CouponStore):
    """
    Dict-backed CouponStore.

    Records are copied on the way in and on the way out, so callers can never
    alter stored terms through a reference they hold.

    If ``persistence`` is given, the map is seeded from ``persistence.load()``
    and every successful save/delete is followed by ``persistence.save()`` of
    the full set. A failed flush raises PersistenceError to the caller but the
    in-memory change stays in place.
    """

    def __init__(self, persistence=None):
        self._entries: Dict[str, Coupon] = {}
        self._lock = ReadWriteLock()
        self._flush_lock = threading.Lock()
        self._persistence = persistence

        if persistence is not None:
            self._seed(persistence.load())

    def _seed(self, coupons: List[Coupon]) -> None:
        with self._lock.write():
            for coupon in coupons:
                if not coupon.code:
                    logger.warning("Skipping stored coupon %s with empty code", coupon.id)
                    continue
                if coupon.code in self._entries:
                    logger.warning("Skipping duplicate stored coupon code %r", coupon.code)
                    continue
                self._entries[coupon.code] = coupon.model_copy()
        logger.info("Loaded %d coupons from %s", len(self._entries), type(self._persistence).__name__)

    # ─────────────────────────── Reads ───────────────────────────

    def find_by_code(self, code: str) -> Coupon:
        with self._lock.read():
            coupon = self._entries.get(code)
            if coupon is None:
                raise CouponNotFoundError(code)
            return coupon.model_copy()

    def list(self, *codes: str) -> List[Coupon]:
        with self._lock.read():
            if not codes:
                return [c.model_copy() for c in self._entries.values()]

            found = []
            seen = set()
            for code in codes:
                if code in seen:
                    continue
                seen.add(code)
                coupon = self._entries.get(code)
                if coupon is None:
                    logger.debug("Coupon %r not found, skipped from listing", code)
                    continue
                found.append(coupon.model_copy())
            return found

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._entries)

    def __contains__(self, code: str) -> bool:
        with self._lock.read():
            return code in self._entries

    # ─────────────────────────── Writes ───────────────────────────

    def save(self, coupon: Optional[Coupon]) -> None:
        if coupon is None:
            raise InvalidCouponError("coupon is required")
        if not coupon.code:
            raise InvalidCouponError("invalid coupon: coupon code is empty")

        with self._lock.write():
            if coupon.code in self._entries:
                raise DuplicateCodeError(coupon.code)
            self._entries[coupon.code] = coupon.model_copy()

        self._flush()

    def delete(self, code: str) -> None:
        with self._lock.write():
            if code not in self._entries:
                raise CouponNotFoundError(code)
            del self._entries[code]

        self._flush()

    def _flush(self) -> None:
        if self._persistence is None:
            return
        # The full listing is read inside the flush lock so the last flush
        # always carries every mutation that completed before it.
        with self._flush_lock:
            self._persistence.save(self.list())
