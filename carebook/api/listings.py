from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session

from ..auth.middleware import require_auth, require_supplier, require_supplier_or_admin
from ..auth.sessions import AuthUser
from ..cache.cache_service import CacheService
from ..config import Settings
from ..db import get_db
from ..models import NursingHomeStatus
from ..repositories import listings_repo
from ..utils.schemas import (
    CalendarUpsert,
    NursingHomeCreate,
    NursingHomeSearch,
    NursingHomeStatusUpdate,
    RatePlanCreate,
    RoomTypeCreate,
    SupplierCreate,
)
from .deps import ADMIN_DASHBOARD, get_cache, get_settings
from .errors import not_found, ok, paginated

router = APIRouter(tags=["listings"])

supplier_only = [Depends(require_auth), Depends(require_supplier)]
supplier_or_admin = [Depends(require_auth), Depends(require_supplier_or_admin)]


# -------- suppliers --------


@router.post("/suppliers", status_code=201, dependencies=supplier_only)
async def create_supplier(
    req: SupplierCreate,
    user: AuthUser = Depends(require_auth),
    s: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    supplier = await run_in_threadpool(listings_repo.create_supplier, s, user, req)
    await cache.invalidate_dashboard_stats(user.id)
    await cache.invalidate_dashboard_stats(ADMIN_DASHBOARD)
    return ok(supplier.model_dump(mode="json"), "Supplier profile created")


@router.get("/suppliers/me", dependencies=supplier_only)
def my_supplier(user: AuthUser = Depends(require_auth), s: Session = Depends(get_db)):
    supplier = listings_repo.supplier_for_owner(s, user.id)
    if supplier is None:
        raise not_found("Supplier profile")
    return ok(supplier.model_dump(mode="json"))


# -------- nursing homes --------


@router.get("/nursing-homes")
async def search_homes(
    q: NursingHomeSearch = Depends(),
    s: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    key = q.cache_key()
    body = await cache.get_search_results(key)
    if body is None:
        rows, total = await run_in_threadpool(
            listings_repo.search_homes, s, q.city, q.province, q.page, q.limit
        )
        body = paginated([h.model_dump(mode="json") for h in rows], q.page, q.limit, total)
        await cache.cache_search_results(key, body)
    return body


@router.get("/nursing-homes/{home_id}")
def home_detail(home_id: str, s: Session = Depends(get_db)):
    home = listings_repo.get_home(s, home_id)
    if home.status is not NursingHomeStatus.LIVE:
        raise not_found("Nursing home")
    return ok(listings_repo.home_detail(s, home))


@router.post("/nursing-homes", status_code=201, dependencies=supplier_or_admin)
def create_home(
    req: NursingHomeCreate,
    user: AuthUser = Depends(require_auth),
    s: Session = Depends(get_db),
):
    home = listings_repo.create_home(s, user, req)
    return ok(home.model_dump(mode="json"))


@router.patch("/nursing-homes/{home_id}/status", dependencies=supplier_or_admin)
def set_home_status(
    home_id: str,
    req: NursingHomeStatusUpdate,
    user: AuthUser = Depends(require_auth),
    s: Session = Depends(get_db),
):
    home = listings_repo.set_home_status(s, user, home_id, req.status)
    return ok(home.model_dump(mode="json"))


@router.post("/nursing-homes/{home_id}/room-types", status_code=201, dependencies=supplier_or_admin)
def create_room_type(
    home_id: str,
    req: RoomTypeCreate,
    user: AuthUser = Depends(require_auth),
    s: Session = Depends(get_db),
):
    room_type = listings_repo.create_room_type(s, user, home_id, req)
    return ok(room_type.model_dump(mode="json"))


@router.post("/room-types/{room_type_id}/rate-plans", status_code=201, dependencies=supplier_or_admin)
def create_rate_plan(
    room_type_id: str,
    req: RatePlanCreate,
    user: AuthUser = Depends(require_auth),
    s: Session = Depends(get_db),
):
    plan = listings_repo.create_rate_plan(s, user, room_type_id, req)
    return ok(plan.model_dump(mode="json"))


# -------- price calendar --------


@router.put("/rate-plans/{rate_plan_id}/calendar", dependencies=supplier_or_admin)
def upsert_calendar(
    rate_plan_id: str,
    req: CalendarUpsert,
    user: AuthUser = Depends(require_auth),
    s: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    rows = listings_repo.upsert_calendar(s, settings, user, rate_plan_id, req.days)
    return ok([r.model_dump(mode="json") for r in rows])


@router.get("/rate-plans/{rate_plan_id}/calendar")
def get_calendar(
    rate_plan_id: str,
    start: Optional[date] = None,
    end: Optional[date] = None,
    s: Session = Depends(get_db),
):
    rows = listings_repo.get_calendar(s, rate_plan_id, start, end)
    return ok([r.model_dump(mode="json") for r in rows])
