from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session

from .. import metrics
from ..auth.middleware import (
    require_auth,
    require_customer_or_admin,
    require_supplier_or_admin,
)
from ..auth.sessions import AuthUser
from ..cache.cache_service import CacheService
from ..config import Settings
from ..db import get_db
from ..models import BookingStatus
from ..repositories import bookings_repo, payments_repo
from ..utils.logging_utils import setup_logger
from ..utils.schemas import BookingCreate, PaymentCreate
from .deps import forget_dashboards, get_cache, get_settings
from .errors import ApiError, ok, paginated

logger = setup_logger(__name__)

router = APIRouter(prefix="/bookings", tags=["bookings"], dependencies=[Depends(require_auth)])


@router.post("", status_code=201, dependencies=[Depends(require_customer_or_admin)])
async def create_booking(
    req: BookingCreate,
    user: AuthUser = Depends(require_auth),
    s: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    cache: CacheService = Depends(get_cache),
):
    try:
        booking = await run_in_threadpool(bookings_repo.create_booking, s, settings, user, req)
    except ApiError as e:
        metrics.booking_create_fail.inc()
        logger.info("Booking rejected for user %s: %s", user.id, e.message)
        raise
    except Exception:
        metrics.booking_create_fail.inc()
        raise
    metrics.booking_create_ok.inc()
    await forget_dashboards(cache, s, booking.supplier_id)
    detail = await run_in_threadpool(bookings_repo.booking_detail, s, booking)
    return ok(detail, "Booking created")


@router.get("")
def list_bookings(
    status: Optional[BookingStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: AuthUser = Depends(require_auth),
    s: Session = Depends(get_db),
):
    rows, total = bookings_repo.list_bookings(s, user, status, page, limit)
    return paginated([b.model_dump(mode="json") for b in rows], page, limit, total)


@router.get("/{booking_id}")
def get_booking(
    booking_id: str,
    user: AuthUser = Depends(require_auth),
    s: Session = Depends(get_db),
):
    booking = bookings_repo.get_booking_for(s, user, booking_id)
    return ok(bookings_repo.booking_detail(s, booking))


@router.post("/{booking_id}/approve", dependencies=[Depends(require_supplier_or_admin)])
async def approve_booking(
    booking_id: str,
    user: AuthUser = Depends(require_auth),
    s: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    booking = await run_in_threadpool(bookings_repo.approve_booking, s, user, booking_id)
    await forget_dashboards(cache, s, booking.supplier_id)
    return ok(booking.model_dump(mode="json"), "Booking approved")


@router.post("/{booking_id}/cancel", dependencies=[Depends(require_customer_or_admin)])
async def cancel_booking(
    booking_id: str,
    user: AuthUser = Depends(require_auth),
    s: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    booking = await run_in_threadpool(bookings_repo.cancel_booking, s, user, booking_id)
    await forget_dashboards(cache, s, booking.supplier_id)
    return ok(booking.model_dump(mode="json"), "Booking cancelled")


# -------- payments --------


@router.post(
    "/{booking_id}/payments",
    status_code=201,
    dependencies=[Depends(require_customer_or_admin)],
)
def create_payment(
    booking_id: str,
    req: PaymentCreate,
    user: AuthUser = Depends(require_auth),
    s: Session = Depends(get_db),
):
    payment = payments_repo.create_payment(s, user, booking_id, req)
    return ok(payment.model_dump(mode="json"), "Payment started")


@router.get("/{booking_id}/payments")
def list_payments(
    booking_id: str,
    user: AuthUser = Depends(require_auth),
    s: Session = Depends(get_db),
):
    booking = bookings_repo.get_booking_for(s, user, booking_id)
    return ok([p.model_dump(mode="json") for p in payments_repo.payments_for_booking(s, booking.id)])
