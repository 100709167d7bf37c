from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..models import (
    NursingHomeStatus,
    PayoutStatus,
    PricingModel,
    QcStatus,
    Role,
)

Money = Decimal


def _normalize_email(v: str) -> str:
    v = v.strip().lower()
    if "@" not in v or v.startswith("@") or v.endswith("@"):
        raise ValueError("email must look like user@domain")
    return v


# -------- Auth --------


class SignUpRequest(BaseModel):
    name: str = Field(min_length=2, max_length=255)
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=8, max_length=128)
    role: Role = Role.CUSTOMER

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return _normalize_email(v)


class SignInRequest(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    email: Optional[str] = Field(default=None, min_length=3, max_length=255)
    image: Optional[str] = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: Optional[str]) -> Optional[str]:
        return v if v is None else _normalize_email(v)


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8, max_length=128)


class ChangeRoleRequest(BaseModel):
    role: Role


class UserListQuery(BaseModel):
    search: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)


# -------- Listings --------


class SupplierCreate(BaseModel):
    legal_name: str = Field(min_length=2, max_length=255)
    tax_id: Optional[str] = None
    payout_account_ref: Optional[str] = None


class QcUpdate(BaseModel):
    qc_status: QcStatus


class NursingHomeCreate(BaseModel):
    name: str = Field(min_length=2, max_length=255)
    address: str = Field(min_length=2)
    city: str = Field(min_length=2, max_length=64)
    province: str = Field(min_length=2, max_length=64)
    gps: Optional[str] = None
    # admins create on behalf of a supplier; suppliers use their own profile
    supplier_id: Optional[str] = None

    @field_validator("city", "province")
    @classmethod
    def strip_place(cls, v: str) -> str:
        return v.strip()


class NursingHomeStatusUpdate(BaseModel):
    status: NursingHomeStatus


class NursingHomeSearch(BaseModel):
    city: Optional[str] = None
    province: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=50)

    def cache_key(self) -> str:
        city = (self.city or "").strip().lower()
        province = (self.province or "").strip().lower()
        return f"nursing_homes:{city}:{province}:{self.page}:{self.limit}"


class RoomTypeCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    capacity: int = Field(gt=0)
    amenities: Optional[str] = None
    policy_ref: Optional[str] = None


class RatePlanCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    pricing_model: PricingModel = PricingModel.PER_NIGHT
    cancel_policy: Optional[str] = None
    meal_plan: Optional[str] = None


class CalendarDay(BaseModel):
    day: date
    price: Money = Field(ge=0, max_digits=10, decimal_places=2)
    available: int = Field(ge=0)


class CalendarUpsert(BaseModel):
    days: List[CalendarDay] = Field(min_length=1, max_length=366)


# -------- Bookings --------


class BookingItemRequest(BaseModel):
    room_type_id: str
    rate_plan_id: str
    unit_price: Optional[Money] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    subtotal: Optional[Money] = Field(default=None, ge=0, max_digits=10, decimal_places=2)


class BookingCreate(BaseModel):
    nursing_home_id: str
    supplier_id: Optional[str] = None
    check_in: date
    check_out: date
    guests: int = Field(gt=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    items: List[BookingItemRequest] = Field(min_length=1)
    # admins may book on behalf of a customer
    user_id: Optional[str] = None

    @model_validator(mode="after")
    def check_dates(self) -> "BookingCreate":
        if self.check_out <= self.check_in:
            raise ValueError("check_out must be after check_in")
        return self


# -------- Money --------


class PaymentCreate(BaseModel):
    provider: str = Field(default="manual", min_length=1, max_length=64)
    provider_ref: Optional[str] = None
    amount: Optional[Money] = Field(default=None, gt=0, max_digits=10, decimal_places=2)


class RefundCreate(BaseModel):
    amount: Money = Field(gt=0, max_digits=10, decimal_places=2)
    reason: Optional[str] = None


class PayoutCreate(BaseModel):
    supplier_id: str
    amount: Money = Field(gt=0, max_digits=10, decimal_places=2)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)


class PayoutStatusUpdate(BaseModel):
    status: PayoutStatus


class CompanySettings(BaseModel):
    name: str
    email: str
    phone: str
    currency: str
