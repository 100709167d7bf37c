from datetime import date
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from ..api.errors import conflict, forbidden, invalid, not_found
from ..auth.middleware import OWNERSHIP_DENIED
from ..auth.sessions import AuthUser
from ..config import Settings
from ..models import (
    NursingHome,
    NursingHomeStatus,
    PriceCalendar,
    QcStatus,
    RatePlan,
    Role,
    RoomType,
    Supplier,
)
from ..utils.logging_utils import setup_logger
from ..utils.schemas import (
    CalendarDay,
    NursingHomeCreate,
    RatePlanCreate,
    RoomTypeCreate,
    SupplierCreate,
)

logger = setup_logger(__name__)


# -------- suppliers --------


def get_supplier(s: Session, supplier_id: str) -> Supplier:
    supplier = s.get(Supplier, supplier_id)
    if supplier is None:
        raise not_found("Supplier")
    return supplier


def supplier_for_owner(s: Session, user_id: str) -> Optional[Supplier]:
    return s.exec(select(Supplier).where(Supplier.owner_user_id == user_id)).first()


def create_supplier(s: Session, user: AuthUser, req: SupplierCreate) -> Supplier:
    if user.role is not Role.SUPPLIER:
        raise forbidden("Only supplier accounts can own a supplier profile")
    if supplier_for_owner(s, user.id):
        raise conflict("Supplier profile already exists for this user")
    supplier = Supplier(
        owner_user_id=user.id,
        legal_name=req.legal_name,
        tax_id=req.tax_id,
        payout_account_ref=req.payout_account_ref,
        qc_status=QcStatus.PENDING,
    )
    s.add(supplier)
    s.commit()
    s.refresh(supplier)
    return supplier


def set_qc_status(s: Session, supplier_id: str, qc_status: QcStatus) -> Supplier:
    supplier = get_supplier(s, supplier_id)
    supplier.qc_status = qc_status
    s.add(supplier)
    if qc_status is not QcStatus.APPROVED:
        # homes of a supplier that lost approval stop taking bookings
        for home in s.exec(
            select(NursingHome).where(
                NursingHome.supplier_id == supplier.id,
                NursingHome.status == NursingHomeStatus.LIVE,
            )
        ).all():
            home.status = NursingHomeStatus.PAUSED
            s.add(home)
    s.commit()
    s.refresh(supplier)
    logger.info("Supplier %s QC status -> %s", supplier.id, qc_status.value)
    return supplier


def owned_supplier_id(s: Session, user: AuthUser) -> Optional[str]:
    if user.role is not Role.SUPPLIER:
        return None
    supplier = supplier_for_owner(s, user.id)
    return supplier.id if supplier else None


def ensure_manages_supplier(s: Session, user: AuthUser, supplier_id: str) -> None:
    """Admins manage everything; suppliers only their own profile."""
    if user.role is Role.ADMIN:
        return
    if owned_supplier_id(s, user) != supplier_id:
        raise forbidden(OWNERSHIP_DENIED)


# -------- nursing homes --------


def get_home(s: Session, home_id: str) -> NursingHome:
    home = s.get(NursingHome, home_id)
    if home is None:
        raise not_found("Nursing home")
    return home


def create_home(s: Session, user: AuthUser, req: NursingHomeCreate) -> NursingHome:
    if user.role is Role.ADMIN:
        if not req.supplier_id:
            raise invalid("supplier_id is required when an admin creates a nursing home")
        supplier = get_supplier(s, req.supplier_id)
    else:
        supplier = supplier_for_owner(s, user.id)
        if supplier is None:
            raise conflict("Create a supplier profile before listing nursing homes")
        if req.supplier_id and req.supplier_id != supplier.id:
            raise forbidden(OWNERSHIP_DENIED)

    home = NursingHome(
        supplier_id=supplier.id,
        name=req.name,
        address=req.address,
        city=req.city,
        province=req.province,
        gps=req.gps,
        status=NursingHomeStatus.DRAFT,
    )
    s.add(home)
    s.commit()
    s.refresh(home)
    return home


def set_home_status(
    s: Session, user: AuthUser, home_id: str, status: NursingHomeStatus
) -> NursingHome:
    home = get_home(s, home_id)
    ensure_manages_supplier(s, user, home.supplier_id)
    if status is NursingHomeStatus.LIVE:
        supplier = get_supplier(s, home.supplier_id)
        if supplier.qc_status is not QcStatus.APPROVED:
            raise conflict("Supplier must pass QC before a nursing home can go live")
    home.status = status
    s.add(home)
    s.commit()
    s.refresh(home)
    return home


def search_homes(
    s: Session,
    city: Optional[str] = None,
    province: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[List[NursingHome], int]:
    conds = [NursingHome.status == NursingHomeStatus.LIVE]
    if city:
        conds.append(func.lower(NursingHome.city).like(f"%{city.strip().lower()}%"))
    if province:
        conds.append(func.lower(NursingHome.province).like(f"%{province.strip().lower()}%"))

    rows = s.exec(
        select(NursingHome)
        .where(*conds)
        .order_by(NursingHome.name)
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    total = s.exec(select(func.count()).select_from(NursingHome).where(*conds)).one()
    return list(rows), int(total)


def homes_for_supplier(s: Session, supplier_id: str) -> List[NursingHome]:
    return list(
        s.exec(
            select(NursingHome)
            .where(NursingHome.supplier_id == supplier_id)
            .order_by(NursingHome.created_at)
        ).all()
    )


def home_detail(s: Session, home: NursingHome) -> dict:
    room_types = s.exec(
        select(RoomType).where(RoomType.nursing_home_id == home.id).order_by(RoomType.name)
    ).all()
    out = home.model_dump(mode="json")
    out["room_types"] = []
    for rt in room_types:
        plans = s.exec(select(RatePlan).where(RatePlan.room_type_id == rt.id)).all()
        entry = rt.model_dump(mode="json")
        entry["rate_plans"] = [p.model_dump(mode="json") for p in plans]
        out["room_types"].append(entry)
    return out


# -------- room types & rate plans --------


def create_room_type(
    s: Session, user: AuthUser, home_id: str, req: RoomTypeCreate
) -> RoomType:
    home = get_home(s, home_id)
    ensure_manages_supplier(s, user, home.supplier_id)
    room_type = RoomType(
        nursing_home_id=home.id,
        name=req.name,
        capacity=req.capacity,
        amenities=req.amenities,
        policy_ref=req.policy_ref,
    )
    s.add(room_type)
    s.commit()
    s.refresh(room_type)
    return room_type


def get_room_type(s: Session, room_type_id: str) -> RoomType:
    room_type = s.get(RoomType, room_type_id)
    if room_type is None:
        raise not_found("Room type")
    return room_type


def create_rate_plan(
    s: Session, user: AuthUser, room_type_id: str, req: RatePlanCreate
) -> RatePlan:
    room_type = get_room_type(s, room_type_id)
    home = get_home(s, room_type.nursing_home_id)
    ensure_manages_supplier(s, user, home.supplier_id)
    plan = RatePlan(
        room_type_id=room_type.id,
        name=req.name,
        pricing_model=req.pricing_model,
        cancel_policy=req.cancel_policy,
        meal_plan=req.meal_plan,
    )
    s.add(plan)
    s.commit()
    s.refresh(plan)
    return plan


def get_rate_plan(s: Session, rate_plan_id: str) -> RatePlan:
    plan = s.get(RatePlan, rate_plan_id)
    if plan is None:
        raise not_found("Rate plan")
    return plan


def supplier_of_rate_plan(s: Session, plan: RatePlan) -> str:
    room_type = get_room_type(s, plan.room_type_id)
    return get_home(s, room_type.nursing_home_id).supplier_id


# -------- price calendar --------


def upsert_calendar(
    s: Session,
    settings: Settings,
    user: AuthUser,
    rate_plan_id: str,
    days: List[CalendarDay],
) -> List[PriceCalendar]:
    """Write per-day price/availability rows for a rate plan.

    A day already on the calendar is rejected while
    ``strict_calendar_uniqueness`` is on and overwritten otherwise.
    """
    plan = get_rate_plan(s, rate_plan_id)
    ensure_manages_supplier(s, user, supplier_of_rate_plan(s, plan))

    seen = set()
    for d in days:
        if d.day in seen:
            raise invalid(f"Day {d.day.isoformat()} listed more than once")
        seen.add(d.day)

    existing = {
        row.day: row
        for row in s.exec(
            select(PriceCalendar).where(
                PriceCalendar.rate_plan_id == plan.id, PriceCalendar.day.in_(seen)
            )
        ).all()
    }
    if existing and settings.strict_calendar_uniqueness:
        taken = ", ".join(sorted(d.isoformat() for d in existing))
        raise conflict(f"Price calendar already has entries for: {taken}")

    written = []
    for d in sorted(days, key=lambda x: x.day):
        row = existing.get(d.day)
        if row is None:
            row = PriceCalendar(rate_plan_id=plan.id, day=d.day, price=d.price, available=d.available)
        else:
            row.price = d.price
            row.available = d.available
        s.add(row)
        written.append(row)
    s.commit()
    for row in written:
        s.refresh(row)
    return written


def get_calendar(
    s: Session,
    rate_plan_id: str,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[PriceCalendar]:
    plan = get_rate_plan(s, rate_plan_id)
    q = select(PriceCalendar).where(PriceCalendar.rate_plan_id == plan.id)
    if start:
        q = q.where(PriceCalendar.day >= start)
    if end:
        q = q.where(PriceCalendar.day < end)
    return list(s.exec(q.order_by(PriceCalendar.day)).all())
