from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, update
from sqlmodel import Session, select

from ..api.errors import conflict, forbidden, invalid, not_found
from ..auth.middleware import OWNERSHIP_DENIED, ensure_ownership
from ..auth.permissions import can_access_booking
from ..auth.sessions import AuthUser
from ..config import Settings
from ..models import (
    Booking,
    BookingItem,
    BookingStatus,
    NursingHome,
    NursingHomeStatus,
    Payment,
    PaymentStatus,
    Payout,
    PayoutStatus,
    PriceCalendar,
    PricingModel,
    QcStatus,
    RatePlan,
    Role,
    RoomType,
    Supplier,
    User,
)
from ..utils.logging_utils import setup_logger
from ..utils.schemas import BookingCreate
from .listings_repo import get_home, owned_supplier_id

logger = setup_logger(__name__)

CENTS = Decimal("0.01")

BOOKING_TRANSITIONS: Dict[BookingStatus, frozenset] = {
    BookingStatus.DRAFT: frozenset({BookingStatus.APPROVED, BookingStatus.FAILED}),
    BookingStatus.APPROVED: frozenset({BookingStatus.PAID, BookingStatus.FAILED}),
    BookingStatus.PAID: frozenset(),
    BookingStatus.FAILED: frozenset(),
}


def _stay_days(check_in: date, check_out: date) -> List[date]:
    return [check_in + timedelta(days=i) for i in range((check_out - check_in).days)]


def _calendar_charge(
    plan: RatePlan, by_day: Dict[date, PriceCalendar], days: List[date]
) -> Tuple[Decimal, Decimal]:
    """Return (unit_price, subtotal) the price calendar charges for one item.

    per_night sums every night of the stay and reports the average nightly rate
    as the unit price. package charges the check-in day's price once for the
    whole stay.
    """
    if PricingModel(plan.pricing_model) is PricingModel.PACKAGE:
        price = Decimal(by_day[days[0]].price).quantize(CENTS)
        return price, price
    subtotal = sum((Decimal(by_day[d].price) for d in days), Decimal("0")).quantize(CENTS)
    return (subtotal / len(days)).quantize(CENTS), subtotal


def _take_inventory(s: Session, rate_plan_id: str, check_in: date, check_out: date) -> bool:
    """Decrement availability by one for every night, only where a room is left."""
    nights = (check_out - check_in).days
    res = s.exec(
        update(PriceCalendar)
        .where(
            PriceCalendar.rate_plan_id == rate_plan_id,
            PriceCalendar.day >= check_in,
            PriceCalendar.day < check_out,
            PriceCalendar.available >= 1,
        )
        .values(available=PriceCalendar.available - 1)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == nights


def _release_inventory(s: Session, booking: Booking) -> None:
    items = s.exec(select(BookingItem).where(BookingItem.booking_id == booking.id)).all()
    for item in items:
        s.exec(
            update(PriceCalendar)
            .where(
                PriceCalendar.rate_plan_id == item.rate_plan_id,
                PriceCalendar.day >= booking.check_in,
                PriceCalendar.day < booking.check_out,
            )
            .values(available=PriceCalendar.available + 1)
            .execution_options(synchronize_session=False)
        )


def transition(s: Session, booking: Booking, target: BookingStatus) -> Booking:
    current = BookingStatus(booking.status)
    if target not in BOOKING_TRANSITIONS[current]:
        raise conflict(f"Cannot move booking from {current.value} to {target.value}")
    if target is BookingStatus.FAILED:
        # compensation: give the nights back to the calendar
        _release_inventory(s, booking)
    booking.status = target
    s.add(booking)
    return booking


# -------- creation --------


def create_booking(s: Session, settings: Settings, user: AuthUser, req: BookingCreate) -> Booking:
    """Create a draft booking and hold its inventory in one transaction."""
    customer_id = user.id
    if req.user_id and req.user_id != user.id:
        if user.role is not Role.ADMIN:
            raise forbidden(OWNERSHIP_DENIED)
        if s.get(User, req.user_id) is None:
            raise not_found("User")
        customer_id = req.user_id

    home = get_home(s, req.nursing_home_id)
    if home.status is not NursingHomeStatus.LIVE:
        raise conflict("Nursing home is not accepting bookings")
    if req.supplier_id and req.supplier_id != home.supplier_id:
        raise invalid("supplier_id does not own the requested nursing home")

    days = _stay_days(req.check_in, req.check_out)
    nights = len(days)
    capacity = 0
    lines: List[BookingItem] = []

    for idx, item in enumerate(req.items):
        room_type = s.get(RoomType, item.room_type_id)
        if room_type is None or room_type.nursing_home_id != home.id:
            raise invalid(f"items[{idx}].room_type_id does not belong to the nursing home")
        plan = s.get(RatePlan, item.rate_plan_id)
        if plan is None or plan.room_type_id != room_type.id:
            raise invalid(f"items[{idx}].rate_plan_id does not belong to the room type")

        rows = s.exec(
            select(PriceCalendar)
            .where(
                PriceCalendar.rate_plan_id == plan.id,
                PriceCalendar.day >= req.check_in,
                PriceCalendar.day < req.check_out,
            )
            .with_for_update()
        ).all()
        by_day = {r.day: r for r in rows}
        missing = [d.isoformat() for d in days if d not in by_day]
        if missing:
            raise conflict(f"Rate plan {plan.id} has no calendar for: {', '.join(missing)}")

        unit_price, expected = _calendar_charge(plan, by_day, days)
        if item.unit_price is not None and Decimal(item.unit_price).quantize(CENTS) != unit_price:
            raise invalid(
                f"items[{idx}].unit_price does not match the calendar price ({unit_price})"
            )
        subtotal = expected
        if item.subtotal is not None:
            supplied = Decimal(item.subtotal).quantize(CENTS)
            if supplied != expected:
                if settings.strict_subtotal:
                    raise invalid(
                        f"items[{idx}].subtotal must equal the calendar charge ({expected})"
                    )
                if user.role is Role.ADMIN:
                    # manual adjustment
                    subtotal = supplied
                else:
                    logger.warning(
                        "Ignoring subtotal %s from user %s, calendar charge is %s",
                        supplied,
                        user.id,
                        expected,
                    )

        capacity += room_type.capacity
        lines.append(
            BookingItem(
                room_type_id=room_type.id,
                rate_plan_id=plan.id,
                nights=nights,
                unit_price=unit_price,
                subtotal=subtotal,
            )
        )

    if req.guests > capacity:
        raise invalid(f"{req.guests} guests exceed the booked capacity of {capacity}")

    for line in lines:
        if not _take_inventory(s, line.rate_plan_id, req.check_in, req.check_out):
            s.rollback()
            raise conflict("Sorry, the selected room is fully booked for those dates.")

    booking = Booking(
        user_id=customer_id,
        supplier_id=home.supplier_id,
        nursing_home_id=home.id,
        status=BookingStatus.DRAFT,
        check_in=req.check_in,
        check_out=req.check_out,
        guests=req.guests,
        total_amount=sum((line.subtotal for line in lines), Decimal("0")).quantize(CENTS),
        currency=(req.currency or settings.default_currency).upper(),
    )
    s.add(booking)
    s.flush()
    for line in lines:
        line.booking_id = booking.id
        s.add(line)
    s.commit()
    s.refresh(booking)
    logger.info("Booking %s created for user %s (%d nights)", booking.id, customer_id, nights)
    return booking


# -------- reads --------


def get_booking(s: Session, booking_id: str) -> Booking:
    booking = s.get(Booking, booking_id)
    if booking is None:
        raise not_found("Booking")
    return booking


def get_booking_for(s: Session, user: AuthUser, booking_id: str) -> Booking:
    booking = get_booking(s, booking_id)
    if not can_access_booking(
        user, booking.user_id, booking.supplier_id, owned_supplier_id(s, user)
    ):
        raise forbidden(OWNERSHIP_DENIED)
    return booking


def booking_detail(s: Session, booking: Booking) -> dict:
    out = booking.model_dump(mode="json")
    items = s.exec(select(BookingItem).where(BookingItem.booking_id == booking.id)).all()
    out["items"] = [i.model_dump(mode="json") for i in items]
    return out


def list_bookings(
    s: Session,
    user: AuthUser,
    status: Optional[BookingStatus] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[Booking], int]:
    conds = []
    if user.role is Role.CUSTOMER:
        conds.append(Booking.user_id == user.id)
    elif user.role is Role.SUPPLIER:
        supplier_id = owned_supplier_id(s, user)
        if supplier_id is None:
            return [], 0
        conds.append(Booking.supplier_id == supplier_id)
    if status is not None:
        conds.append(Booking.status == status)

    rows = s.exec(
        select(Booking)
        .where(*conds)
        .order_by(Booking.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    total = s.exec(select(func.count()).select_from(Booking).where(*conds)).one()
    return list(rows), int(total)


# -------- transitions --------


def approve_booking(s: Session, user: AuthUser, booking_id: str) -> Booking:
    booking = get_booking(s, booking_id)
    if user.role is not Role.ADMIN and owned_supplier_id(s, user) != booking.supplier_id:
        raise forbidden(OWNERSHIP_DENIED)
    transition(s, booking, BookingStatus.APPROVED)
    s.commit()
    s.refresh(booking)
    return booking


def cancel_booking(s: Session, user: AuthUser, booking_id: str) -> Booking:
    booking = get_booking(s, booking_id)
    ensure_ownership(user, booking.user_id)
    transition(s, booking, BookingStatus.FAILED)
    pending = s.exec(
        select(Payment).where(
            Payment.booking_id == booking.id, Payment.status == PaymentStatus.PENDING
        )
    ).all()
    for payment in pending:
        payment.status = PaymentStatus.FAILED
        s.add(payment)
    if pending:
        booking.payment_status = PaymentStatus.FAILED.value
    s.commit()
    s.refresh(booking)
    logger.info("Booking %s cancelled by %s", booking.id, user.id)
    return booking


# -------- dashboards --------


def _count_by(s: Session, column, *conds) -> Dict[str, int]:
    rows = s.exec(select(column, func.count()).where(*conds).group_by(column)).all()
    return {getattr(k, "value", k): int(n) for k, n in rows}


def supplier_stats(s: Session, supplier_id: str) -> dict:
    revenue = s.exec(
        select(func.coalesce(func.sum(Booking.total_amount), 0)).where(
            Booking.supplier_id == supplier_id, Booking.status == BookingStatus.PAID
        )
    ).one()
    paid_out = s.exec(
        select(func.coalesce(func.sum(Payout.amount), 0)).where(
            Payout.supplier_id == supplier_id, Payout.status == PayoutStatus.PAID
        )
    ).one()
    homes = s.exec(
        select(func.count()).select_from(NursingHome).where(NursingHome.supplier_id == supplier_id)
    ).one()
    return {
        "nursingHomes": int(homes),
        "bookingsByStatus": _count_by(s, Booking.status, Booking.supplier_id == supplier_id),
        "revenue": str(Decimal(revenue).quantize(CENTS)),
        "paidOut": str(Decimal(paid_out).quantize(CENTS)),
    }


def admin_stats(s: Session) -> dict:
    revenue = s.exec(
        select(func.coalesce(func.sum(Booking.total_amount), 0)).where(
            Booking.status == BookingStatus.PAID
        )
    ).one()
    return {
        "usersByRole": _count_by(s, User.role),
        "suppliersByQc": _count_by(s, Supplier.qc_status),
        "pendingQc": _count_by(s, Supplier.qc_status, Supplier.qc_status == QcStatus.PENDING).get(
            QcStatus.PENDING.value, 0
        ),
        "bookingsByStatus": _count_by(s, Booking.status),
        "revenue": str(Decimal(revenue).quantize(CENTS)),
    }
