from decimal import Decimal
from typing import Dict, List

from sqlalchemy import func
from sqlmodel import Session, select

from ..api.errors import conflict, invalid, not_found
from ..auth.middleware import ensure_ownership
from ..auth.sessions import AuthUser
from ..config import Settings
from ..models import (
    BookingStatus,
    Payment,
    PaymentStatus,
    Payout,
    PayoutStatus,
    QcStatus,
    Refund,
    RefundStatus,
)
from ..utils.logging_utils import setup_logger
from ..utils.schemas import PaymentCreate, PayoutCreate, RefundCreate
from .bookings_repo import CENTS, get_booking, transition
from .listings_repo import get_supplier

logger = setup_logger(__name__)

PARTIALLY_PAID = "partially_paid"

PAYOUT_TRANSITIONS: Dict[PayoutStatus, frozenset] = {
    PayoutStatus.DRAFT: frozenset({PayoutStatus.APPROVED, PayoutStatus.FAILED}),
    PayoutStatus.APPROVED: frozenset({PayoutStatus.PAID, PayoutStatus.FAILED}),
    PayoutStatus.PAID: frozenset(),
    PayoutStatus.FAILED: frozenset(),
}


# -------- payments --------


def get_payment(s: Session, payment_id: str) -> Payment:
    payment = s.get(Payment, payment_id)
    if payment is None:
        raise not_found("Payment")
    return payment


def _settled(s: Session, booking_id: str) -> Decimal:
    paid = s.exec(
        select(func.coalesce(func.sum(Payment.amount), 0)).where(
            Payment.booking_id == booking_id, Payment.status == PaymentStatus.SUCCEEDED
        )
    ).one()
    return Decimal(paid)


def create_payment(s: Session, user: AuthUser, booking_id: str, req: PaymentCreate) -> Payment:
    booking = get_booking(s, booking_id)
    ensure_ownership(user, booking.user_id)
    if BookingStatus(booking.status) is not BookingStatus.APPROVED:
        raise conflict("Payments can only be started for approved bookings")

    active = s.exec(
        select(Payment).where(
            Payment.booking_id == booking.id, Payment.status == PaymentStatus.PENDING
        )
    ).first()
    if active is not None:
        raise conflict("Booking already has a pending payment")

    outstanding = (Decimal(booking.total_amount) - _settled(s, booking.id)).quantize(CENTS)
    amount = Decimal(req.amount if req.amount is not None else outstanding).quantize(CENTS)
    if amount > outstanding:
        raise invalid(f"Payment amount exceeds the outstanding balance of {outstanding}")

    payment = Payment(
        booking_id=booking.id,
        provider=req.provider,
        provider_ref=req.provider_ref,
        status=PaymentStatus.PENDING,
        amount=amount,
        currency=booking.currency,
    )
    booking.payment_status = PaymentStatus.PENDING.value
    s.add(payment)
    s.add(booking)
    s.commit()
    s.refresh(payment)
    logger.info("Payment %s started for booking %s (%s %s)", payment.id, booking.id, amount, booking.currency)
    return payment


def _pending_payment(s: Session, payment_id: str) -> Payment:
    payment = get_payment(s, payment_id)
    if PaymentStatus(payment.status) is not PaymentStatus.PENDING:
        raise conflict(f"Payment is already {PaymentStatus(payment.status).value}")
    return payment


def confirm_payment(s: Session, payment_id: str) -> Payment:
    payment = _pending_payment(s, payment_id)
    booking = get_booking(s, payment.booking_id)
    payment.status = PaymentStatus.SUCCEEDED
    s.add(payment)
    s.flush()
    # the booking is paid once succeeded payments cover its total
    if _settled(s, booking.id) >= Decimal(booking.total_amount):
        transition(s, booking, BookingStatus.PAID)
        booking.payment_status = PaymentStatus.SUCCEEDED.value
    else:
        booking.payment_status = PARTIALLY_PAID
    s.add(booking)
    s.commit()
    s.refresh(payment)
    logger.info(
        "Payment %s confirmed; booking %s is %s", payment.id, booking.id, booking.payment_status
    )
    return payment


def fail_payment(s: Session, payment_id: str) -> Payment:
    """Mark a pending payment failed and fail its booking, releasing inventory."""
    payment = _pending_payment(s, payment_id)
    booking = get_booking(s, payment.booking_id)
    transition(s, booking, BookingStatus.FAILED)
    payment.status = PaymentStatus.FAILED
    booking.payment_status = PaymentStatus.FAILED.value
    s.add(payment)
    s.commit()
    s.refresh(payment)
    logger.warning("Payment %s failed; booking %s released", payment.id, booking.id)
    return payment


def payments_for_booking(s: Session, booking_id: str) -> List[Payment]:
    return list(
        s.exec(
            select(Payment).where(Payment.booking_id == booking_id).order_by(Payment.created_at)
        ).all()
    )


# -------- refunds --------


def create_refund(s: Session, settings: Settings, payment_id: str, req: RefundCreate) -> Refund:
    payment = get_payment(s, payment_id)
    if PaymentStatus(payment.status) is not PaymentStatus.SUCCEEDED:
        raise conflict("Only succeeded payments can be refunded")

    amount = Decimal(req.amount).quantize(CENTS)
    if settings.cap_refunds:
        refunded = s.exec(
            select(func.coalesce(func.sum(Refund.amount), 0)).where(
                Refund.payment_id == payment.id, Refund.status != RefundStatus.REJECTED
            )
        ).one()
        remaining = payment.amount - Decimal(refunded)
        if amount > remaining:
            raise invalid(f"Refund exceeds the refundable amount of {remaining.quantize(CENTS)}")

    refund = Refund(
        payment_id=payment.id,
        amount=amount,
        reason=req.reason,
        status=RefundStatus.COMPLETED,
    )
    s.add(refund)
    s.commit()
    s.refresh(refund)
    logger.info("Refund %s of %s recorded for payment %s", refund.id, amount, payment.id)
    return refund


# -------- payouts --------


def create_payout(s: Session, settings: Settings, req: PayoutCreate) -> Payout:
    supplier = get_supplier(s, req.supplier_id)
    if QcStatus(supplier.qc_status) is not QcStatus.APPROVED:
        raise conflict("Payouts are only made to QC-approved suppliers")
    payout = Payout(
        supplier_id=supplier.id,
        amount=Decimal(req.amount).quantize(CENTS),
        currency=(req.currency or settings.default_currency).upper(),
        status=PayoutStatus.DRAFT,
    )
    s.add(payout)
    s.commit()
    s.refresh(payout)
    return payout


def set_payout_status(s: Session, payout_id: str, status: PayoutStatus) -> Payout:
    payout = s.get(Payout, payout_id)
    if payout is None:
        raise not_found("Payout")
    current = PayoutStatus(payout.status)
    if status not in PAYOUT_TRANSITIONS[current]:
        raise conflict(f"Cannot move payout from {current.value} to {status.value}")
    payout.status = status
    s.add(payout)
    s.commit()
    s.refresh(payout)
    return payout


def payouts_for_supplier(s: Session, supplier_id: str) -> List[Payout]:
    return list(
        s.exec(
            select(Payout).where(Payout.supplier_id == supplier_id).order_by(Payout.created_at.desc())
        ).all()
    )
