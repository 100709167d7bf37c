from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session

from ..auth.middleware import require_admin, require_auth
from ..cache.cache_service import CacheService
from ..config import Settings
from ..db import get_db
from ..repositories import bookings_repo, listings_repo, payments_repo, users_repo
from ..utils.schemas import (
    ChangeRoleRequest,
    CompanySettings,
    PayoutCreate,
    PayoutStatusUpdate,
    QcUpdate,
    RefundCreate,
    UserListQuery,
)
from .deps import ADMIN_DASHBOARD, forget_dashboards, get_cache, get_settings
from .errors import ok, paginated

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_auth), Depends(require_admin)],
)


def default_company_settings(settings: Settings) -> CompanySettings:
    return CompanySettings(
        name=settings.company_name,
        email=settings.company_email,
        phone=settings.company_phone,
        currency=settings.default_currency,
    )


@router.get("/dashboard")
async def dashboard(
    s: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    stats = await cache.get_dashboard_stats(ADMIN_DASHBOARD)
    if stats is None:
        stats = await run_in_threadpool(bookings_repo.admin_stats, s)
        await cache.cache_dashboard_stats(ADMIN_DASHBOARD, stats)
    return ok(stats)


@router.get("/users")
def list_users(q: UserListQuery = Depends(), s: Session = Depends(get_db)):
    rows, total = users_repo.list_users(s, q.search, q.page, q.limit)
    return paginated([users_repo.public_user(u) for u in rows], q.page, q.limit, total)


@router.get("/users/{user_id}")
def get_user(user_id: str, s: Session = Depends(get_db)):
    return ok({"user": users_repo.public_user(users_repo.get_user(s, user_id))})


@router.post("/users/{user_id}/role")
async def change_role(
    user_id: str,
    req: ChangeRoleRequest,
    s: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    user = await run_in_threadpool(users_repo.change_role, s, user_id, req.role)
    # cached profiles still carry the old role
    await cache.invalidate_user_data(user.id)
    await cache.invalidate_dashboard_stats(ADMIN_DASHBOARD)
    return ok({"user": users_repo.public_user(user)}, "Role updated")


@router.get("/settings")
async def get_company_settings(
    request: Request,
    cache: CacheService = Depends(get_cache),
):
    data = await cache.get_company_settings()
    if data is None:
        data = request.app.state.company_settings.model_dump()
        await cache.cache_company_settings(data)
    return ok(data)


@router.put("/settings")
async def put_company_settings(
    req: CompanySettings,
    request: Request,
    cache: CacheService = Depends(get_cache),
):
    request.app.state.company_settings = req
    await cache.invalidate_company_settings()
    return ok(req.model_dump(), "Settings updated")


@router.patch("/suppliers/{supplier_id}/qc")
async def set_qc(
    supplier_id: str,
    req: QcUpdate,
    s: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    supplier = await run_in_threadpool(listings_repo.set_qc_status, s, supplier_id, req.qc_status)
    await cache.invalidate_dashboard_stats(supplier.owner_user_id)
    await cache.invalidate_dashboard_stats(ADMIN_DASHBOARD)
    return ok(supplier.model_dump(mode="json"))


# -------- money --------


@router.post("/payouts", status_code=201)
async def create_payout(
    req: PayoutCreate,
    s: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    cache: CacheService = Depends(get_cache),
):
    payout = await run_in_threadpool(payments_repo.create_payout, s, settings, req)
    await forget_dashboards(cache, s, payout.supplier_id)
    return ok(payout.model_dump(mode="json"))


@router.post("/payouts/{payout_id}/status")
async def set_payout_status(
    payout_id: str,
    req: PayoutStatusUpdate,
    s: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    payout = await run_in_threadpool(payments_repo.set_payout_status, s, payout_id, req.status)
    await forget_dashboards(cache, s, payout.supplier_id)
    return ok(payout.model_dump(mode="json"))


@router.post("/payments/{payment_id}/confirm")
async def confirm_payment(
    payment_id: str,
    s: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    payment = await run_in_threadpool(payments_repo.confirm_payment, s, payment_id)
    booking = await run_in_threadpool(bookings_repo.get_booking, s, payment.booking_id)
    await forget_dashboards(cache, s, booking.supplier_id)
    return ok(payment.model_dump(mode="json"))


@router.post("/payments/{payment_id}/fail")
async def fail_payment(
    payment_id: str,
    s: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    payment = await run_in_threadpool(payments_repo.fail_payment, s, payment_id)
    booking = await run_in_threadpool(bookings_repo.get_booking, s, payment.booking_id)
    await forget_dashboards(cache, s, booking.supplier_id)
    return ok(payment.model_dump(mode="json"))


@router.post("/payments/{payment_id}/refunds", status_code=201)
def create_refund(
    payment_id: str,
    req: RefundCreate,
    s: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    refund = payments_repo.create_refund(s, settings, payment_id, req)
    return ok(refund.model_dump(mode="json"))
