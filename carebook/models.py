import enum
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy import Enum as SAEnum
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, Relationship, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UtcDateTime(TypeDecorator):
    """Timezone-aware UTC timestamps, also on backends that store them naive (SQLite)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime passed to a UTC column")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# -------- enums --------


class Role(str, enum.Enum):
    CUSTOMER = "customer"
    SUPPLIER = "supplier"
    ADMIN = "admin"


class QcStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class NursingHomeStatus(str, enum.Enum):
    DRAFT = "draft"
    LIVE = "live"
    PAUSED = "paused"


class PricingModel(str, enum.Enum):
    PER_NIGHT = "per_night"
    PACKAGE = "package"


class BookingStatus(str, enum.Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    PAID = "paid"
    FAILED = "failed"


class PayoutStatus(str, enum.Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    PAID = "paid"
    FAILED = "failed"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RefundStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"


def _enum_column(enum_cls, name: str, **kwargs) -> Column:
    """Column persisting the enum *value* (not the member name)."""
    return Column(
        SAEnum(
            enum_cls,
            name=name,
            values_callable=lambda e: [m.value for m in e],
            validate_strings=True,
        ),
        nullable=False,
        **kwargs,
    )


def _fk_column(target: str, ondelete: Optional[str] = None, **kwargs) -> Column:
    return Column(
        String, ForeignKey(target, ondelete=ondelete), nullable=False, index=True, **kwargs
    )


class TimestampMixin(SQLModel):
    created_at: datetime = Field(default_factory=utcnow, sa_type=UtcDateTime, nullable=False)
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_type=UtcDateTime,
        nullable=False,
        sa_column_kwargs={"onupdate": utcnow},
    )


# -------- auth tables --------


class User(TimestampMixin, table=True):
    __tablename__ = "user"

    id: str = Field(default_factory=new_id, primary_key=True)
    name: str
    email: str = Field(sa_column=Column(String, unique=True, nullable=False, index=True))
    email_verified: bool = False
    image: Optional[str] = None
    role: Role = Field(sa_column=_enum_column(Role, "user_role"))
    kyc_verified: bool = False


class Account(TimestampMixin, table=True):
    __tablename__ = "account"

    id: str = Field(default_factory=new_id, primary_key=True)
    account_id: str
    provider_id: str = "credentials"
    user_id: str = Field(sa_column=_fk_column("user.id", ondelete="CASCADE"))
    password: Optional[str] = None


class UserSession(TimestampMixin, table=True):
    __tablename__ = "session"

    id: str = Field(default_factory=new_id, primary_key=True)
    token: str = Field(sa_column=Column(String, unique=True, nullable=False, index=True))
    expires_at: datetime = Field(sa_type=UtcDateTime, nullable=False)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    user_id: str = Field(sa_column=_fk_column("user.id", ondelete="CASCADE"))


# -------- listings --------


class Supplier(TimestampMixin, table=True):
    __tablename__ = "supplier"

    id: str = Field(default_factory=new_id, primary_key=True)
    # one supplier profile per owner
    owner_user_id: str = Field(sa_column=_fk_column("user.id", unique=True))
    legal_name: str
    tax_id: Optional[str] = None
    payout_account_ref: Optional[str] = None
    qc_status: QcStatus = Field(sa_column=_enum_column(QcStatus, "qc_status"))

    nursing_homes: List["NursingHome"] = Relationship(back_populates="supplier")


class NursingHome(TimestampMixin, table=True):
    __tablename__ = "nursing_home"

    id: str = Field(default_factory=new_id, primary_key=True)
    supplier_id: str = Field(sa_column=_fk_column("supplier.id"))
    name: str
    address: str
    city: str = Field(index=True)
    province: str = Field(index=True)
    gps: Optional[str] = None
    status: NursingHomeStatus = Field(
        sa_column=_enum_column(NursingHomeStatus, "nursing_home_status")
    )

    supplier: Optional[Supplier] = Relationship(back_populates="nursing_homes")
    room_types: List["RoomType"] = Relationship(back_populates="nursing_home")


class RoomType(TimestampMixin, table=True):
    __tablename__ = "room_type"
    __table_args__ = (CheckConstraint("capacity > 0", name="ck_room_type_capacity_positive"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    nursing_home_id: str = Field(sa_column=_fk_column("nursing_home.id"))
    name: str
    capacity: int
    amenities: Optional[str] = None
    policy_ref: Optional[str] = None

    nursing_home: Optional[NursingHome] = Relationship(back_populates="room_types")
    rate_plans: List["RatePlan"] = Relationship(back_populates="room_type")


class RatePlan(TimestampMixin, table=True):
    __tablename__ = "rate_plan"

    id: str = Field(default_factory=new_id, primary_key=True)
    room_type_id: str = Field(sa_column=_fk_column("room_type.id"))
    name: str
    cancel_policy: Optional[str] = None
    meal_plan: Optional[str] = None
    pricing_model: PricingModel = Field(sa_column=_enum_column(PricingModel, "pricing_model"))

    room_type: Optional[RoomType] = Relationship(back_populates="rate_plans")


class PriceCalendar(TimestampMixin, table=True):
    __tablename__ = "price_calendar"
    __table_args__ = (
        UniqueConstraint("rate_plan_id", "day", name="uq_price_calendar_rate_plan_day"),
        CheckConstraint("available >= 0", name="ck_price_calendar_available_non_negative"),
    )

    id: str = Field(default_factory=new_id, primary_key=True)
    rate_plan_id: str = Field(sa_column=_fk_column("rate_plan.id"))
    day: date
    price: Decimal = Field(max_digits=10, decimal_places=2)
    available: int


# -------- bookings & money --------


class Booking(TimestampMixin, table=True):
    __tablename__ = "booking"
    __table_args__ = (
        CheckConstraint("guests > 0", name="ck_booking_guests_positive"),
        CheckConstraint("check_in < check_out", name="ck_booking_dates_ordered"),
    )

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(sa_column=_fk_column("user.id"))
    supplier_id: str = Field(sa_column=_fk_column("supplier.id"))
    nursing_home_id: str = Field(sa_column=_fk_column("nursing_home.id"))
    status: BookingStatus = Field(sa_column=_enum_column(BookingStatus, "booking_status"))
    check_in: date
    check_out: date
    guests: int
    total_amount: Decimal = Field(max_digits=10, decimal_places=2)
    currency: str
    payment_status: Optional[str] = None

    items: List["BookingItem"] = Relationship(back_populates="booking")
    payments: List["Payment"] = Relationship(back_populates="booking")


class BookingItem(SQLModel, table=True):
    __tablename__ = "booking_item"
    __table_args__ = (CheckConstraint("nights > 0", name="ck_booking_item_nights_positive"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    booking_id: str = Field(sa_column=_fk_column("booking.id"))
    room_type_id: str = Field(sa_column=_fk_column("room_type.id"))
    rate_plan_id: str = Field(sa_column=_fk_column("rate_plan.id"))
    nights: int
    unit_price: Decimal = Field(max_digits=10, decimal_places=2)
    subtotal: Decimal = Field(max_digits=10, decimal_places=2)

    booking: Optional[Booking] = Relationship(back_populates="items")


class Payment(TimestampMixin, table=True):
    __tablename__ = "payment"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_payment_amount_positive"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    booking_id: str = Field(sa_column=_fk_column("booking.id"))
    provider: str
    provider_ref: Optional[str] = None
    status: PaymentStatus = Field(sa_column=_enum_column(PaymentStatus, "payment_status"))
    amount: Decimal = Field(max_digits=10, decimal_places=2)
    currency: str

    booking: Optional[Booking] = Relationship(back_populates="payments")
    refunds: List["Refund"] = Relationship(back_populates="payment")


class Refund(TimestampMixin, table=True):
    __tablename__ = "refund"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_refund_amount_positive"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    payment_id: str = Field(sa_column=_fk_column("payment.id"))
    amount: Decimal = Field(max_digits=10, decimal_places=2)
    reason: Optional[str] = None
    status: RefundStatus = Field(sa_column=_enum_column(RefundStatus, "refund_status"))

    payment: Optional[Payment] = Relationship(back_populates="refunds")


class Payout(TimestampMixin, table=True):
    __tablename__ = "payout"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_payout_amount_positive"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    supplier_id: str = Field(sa_column=_fk_column("supplier.id"))
    amount: Decimal = Field(max_digits=10, decimal_places=2)
    currency: str
    status: PayoutStatus = Field(sa_column=_enum_column(PayoutStatus, "payout_status"))
