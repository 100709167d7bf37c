from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session

from ..auth.middleware import require_auth, require_supplier, require_supplier_or_admin
from ..auth.sessions import AuthUser
from ..cache.cache_service import CacheService
from ..db import get_db
from ..models import BookingStatus, Supplier
from ..repositories import bookings_repo, listings_repo, payments_repo
from .deps import get_cache
from .errors import not_found, ok, paginated

router = APIRouter(prefix="/supplier", tags=["supplier"], dependencies=[Depends(require_auth)])


def _own_supplier(s: Session, user: AuthUser) -> Supplier:
    supplier = listings_repo.supplier_for_owner(s, user.id)
    if supplier is None:
        raise not_found("Supplier profile")
    return supplier


@router.get("/dashboard", dependencies=[Depends(require_supplier)])
async def dashboard(
    user: AuthUser = Depends(require_auth),
    s: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    stats = await cache.get_dashboard_stats(user.id)
    if stats is None:
        supplier = await run_in_threadpool(_own_supplier, s, user)
        stats = await run_in_threadpool(bookings_repo.supplier_stats, s, supplier.id)
        stats["supplierId"] = supplier.id
        stats["qcStatus"] = supplier.qc_status.value
        await cache.cache_dashboard_stats(user.id, stats)
    return ok(stats)


@router.get("/properties", dependencies=[Depends(require_supplier)])
def properties(user: AuthUser = Depends(require_auth), s: Session = Depends(get_db)):
    supplier = _own_supplier(s, user)
    homes = listings_repo.homes_for_supplier(s, supplier.id)
    return ok([h.model_dump(mode="json") for h in homes])


@router.get("/properties/{home_id}", dependencies=[Depends(require_supplier_or_admin)])
def property_detail(
    home_id: str,
    user: AuthUser = Depends(require_auth),
    s: Session = Depends(get_db),
):
    home = listings_repo.get_home(s, home_id)
    listings_repo.ensure_manages_supplier(s, user, home.supplier_id)
    return ok(listings_repo.home_detail(s, home))


@router.get("/bookings", dependencies=[Depends(require_supplier)])
def bookings(
    status: Optional[BookingStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: AuthUser = Depends(require_auth),
    s: Session = Depends(get_db),
):
    rows, total = bookings_repo.list_bookings(s, user, status, page, limit)
    return paginated([b.model_dump(mode="json") for b in rows], page, limit, total)


@router.get("/payouts", dependencies=[Depends(require_supplier)])
def payouts(user: AuthUser = Depends(require_auth), s: Session = Depends(get_db)):
    supplier = _own_supplier(s, user)
    return ok([p.model_dump(mode="json") for p in payments_repo.payouts_for_supplier(s, supplier.id)])
