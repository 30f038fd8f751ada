"""
main.py
=======
FastAPI application entry point.

Endpoints:
  POST   /api/create            - Create a coupon
  POST   /api/apply             - Redeem a coupon against a basket
  GET    /api/coupons           - List coupons (all, or ?codes=A,B)
  GET    /api/coupons/{code}    - Get a coupon by code
  GET    /                      - Health check

Run with ``python main.py`` or ``uvicorn --factory main:build_app``.
"""

import logging
import threading
from datetime import timedelta
from typing import Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import schemas
from config import Settings, StoreBackend, load_settings
from coupon_engine import RedemptionService
from database import create_db_engine
from errors import BelowMinimumError, CouponError
from persistence import JSONFilePersistence, SQLPersistence
from store import CouponStore, InMemoryCouponStore

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    "not_found": 404,
    "validation": 400,
    "conflict": 409,
    "domain_rule": 422,
    "persistence": 500,
}

router = APIRouter()


def get_service(request: Request) -> RedemptionService:
    return request.app.state.service


# ═══════════════════════════════════════════════════
#  COUPONS
# ═══════════════════════════════════════════════════

@router.post(
    "/api/create",
    response_model=schemas.Coupon,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": schemas.ErrorResponse}, 409: {"model": schemas.ErrorResponse}},
    tags=["Coupons"],
    summary="Create a new coupon",
)
def create_coupon(coupon: schemas.CouponCreate, service: RedemptionService = Depends(get_service)):
    """
    Create a fixed-amount coupon. The discount must be positive and cannot
    exceed the minimum basket value; the code must not be in use.
    """
    return service.create_coupon(coupon.discount, coupon.code, coupon.min_basket_value)


@router.get(
    "/api/coupons",
    response_model=schemas.CouponListResponse,
    tags=["Coupons"],
    summary="List coupons",
)
def list_coupons(codes: Optional[str] = None, service: RedemptionService = Depends(get_service)):
    """
    Without ``codes`` every coupon is returned. With a comma-separated list of
    codes only the coupons found are returned; unknown codes are skipped.
    """
    code_list = [c.strip() for c in codes.split(",")] if codes else []
    return schemas.CouponListResponse(coupons=service.list_coupons(*code_list))


@router.get(
    "/api/coupons/{code}",
    response_model=schemas.Coupon,
    responses={404: {"model": schemas.ErrorResponse}},
    tags=["Coupons"],
    summary="Get a coupon by code",
)
def get_coupon(code: str, service: RedemptionService = Depends(get_service)):
    return service.get_coupon(code)


# ═══════════════════════════════════════════════════
#  APPLY COUPON
# ═══════════════════════════════════════════════════

@router.post(
    "/api/apply",
    response_model=schemas.Basket,
    responses={404: {"model": schemas.ErrorResponse}, 422: {"model": schemas.ErrorResponse}},
    tags=["Apply Coupons"],
    summary="Apply a coupon to a basket",
)
def apply_coupon(payload: schemas.ApplyCouponRequest, service: RedemptionService = Depends(get_service)):
    """
    Redeem a coupon against the basket.

    Returns the basket with its value reduced and the applied discount added.
    The coupon is single-use and is removed once redeemed.
    """
    return service.apply_coupon(payload.basket.to_basket(), payload.code)


# ═══════════════════════════════════════════════════
#  HEALTH CHECK
# ═══════════════════════════════════════════════════

@router.get("/", tags=["Health"], summary="Health check")
def root():
    return {"status": "ok", "message": "Coupon service is running"}


# ═══════════════════════════════════════════════════
#  ERRORS
# ═══════════════════════════════════════════════════

def coupon_error_handler(request: Request, exc: CouponError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    body = schemas.ErrorResponse(error=exc.kind, detail=str(exc))
    if isinstance(exc, BelowMinimumError):
        body.required = exc.required
        body.actual = exc.actual

    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


# ═══════════════════════════════════════════════════
#  WIRING
# ═══════════════════════════════════════════════════

def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_store(settings: Settings) -> CouponStore:
    if settings.store == StoreBackend.json:
        return InMemoryCouponStore(persistence=JSONFilePersistence(settings.data_file))
    if settings.store == StoreBackend.sql:
        return InMemoryCouponStore(persistence=SQLPersistence(create_db_engine(settings.database_url)))
    return InMemoryCouponStore()


def create_app(service: RedemptionService, allow_origins=("*",)) -> FastAPI:
    app = FastAPI(
        title="Coupon Service",
        description="Issue, look up and redeem single-use fixed-amount discount coupons.",
        version="1.0.0",
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(allow_origins),
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.add_exception_handler(CouponError, coupon_error_handler)
    app.include_router(router)
    return app


def build_app(settings: Optional[Settings] = None) -> FastAPI:
    if settings is None:
        settings = load_settings()
    configure_logging(settings.log_level)

    store = build_store(settings)
    logger.info("Using %s coupon store (%s environment)", settings.store.value, settings.env.value)
    return create_app(RedemptionService(store), allow_origins=settings.allow_origins)


def schedule_shutdown(server, time_alive: timedelta) -> threading.Timer:
    """Ask ``server`` to exit once ``time_alive`` has elapsed."""
    def stop():
        logger.info("Time alive of %s elapsed, shutting down", time_alive)
        server.should_exit = True

    timer = threading.Timer(time_alive.total_seconds(), stop)
    timer.daemon = True
    timer.start()
    return timer


def serve(settings: Settings) -> None:
    config = uvicorn.Config(
        build_app(settings),
        host=settings.host,
        port=settings.port,
        timeout_graceful_shutdown=int(settings.shutdown_timeout.total_seconds()),
    )
    server = uvicorn.Server(config)
    timer = schedule_shutdown(server, settings.time_alive)
    try:
        server.run()
    finally:
        timer.cancel()


if __name__ == "__main__":
    serve(load_settings())
