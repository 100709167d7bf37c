from fastapi import Request
from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session

from ..cache.cache_service import CacheService
from ..config import Settings
from ..repositories.listings_repo import get_supplier

# admin stats are the same for every admin, so they share one entry
ADMIN_DASHBOARD = "admin"


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_cache(request: Request) -> CacheService:
    return request.app.state.cache


async def forget_dashboards(cache: CacheService, s: Session, supplier_id: str) -> None:
    """Drop the admin dashboard and the one of the user owning ``supplier_id``."""
    supplier = await run_in_threadpool(get_supplier, s, supplier_id)
    await cache.invalidate_dashboard_stats(supplier.owner_user_id)
    await cache.invalidate_dashboard_stats(ADMIN_DASHBOARD)
