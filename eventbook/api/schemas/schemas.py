from datetime import datetime
from decimal import Decimal
from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from eventbook.domain.capabilities import UserRole
from eventbook.domain.state_machine import BookingStatus, EventStatus, PaymentStatus

T = TypeVar("T")


class ErrorBody(BaseModel):
    code: str
    message: str


class Page(BaseModel, Generic[T]):
    items: list[T]
    page: int
    limit: int
    total: int


# -----------------------------
# Users
# -----------------------------
class UserCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    email: str = Field(min_length=3, max_length=255)
    role: UserRole = UserRole.USER


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    role: UserRole
    rating: Decimal
    total_reviews: int
    joined_events: list[str] = []


# -----------------------------
# Events
# -----------------------------
class EventCreate(BaseModel):
    title: str = Field(min_length=1, max_length=128)
    starts_at: datetime
    location: str = ""
    price: Decimal = Field(ge=0, decimal_places=2)
    max_participants: int = Field(gt=0)
    status: Literal["draft", "open"] = "open"


class EventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    host_id: str
    title: str
    starts_at: datetime
    location: str
    price: Decimal
    max_participants: int
    current_participants: int
    status: EventStatus
    participants: list[str] = []
    waiting_list: list[str] = []


class WaitlistResponse(BaseModel):
    event_id: str
    user_id: str
    position: int


# -----------------------------
# Bookings
# -----------------------------
class BookingRequest(BaseModel):
    event_id: str
    quantity: int = Field(default=1, gt=0)
    special_requests: str | None = Field(default=None, max_length=500)


class BookingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    event_id: str
    host_id: str
    quantity: int
    amount: Decimal
    currency: str
    status: BookingStatus
    payment_status: PaymentStatus
    payment_intent_id: str | None = None
    refund_id: str | None = None
    refund_amount: Decimal | None = None
    refund_reason: str | None = None
    special_requests: str | None = None
    cancellation_reason: str | None = None
    created_at: datetime | None = None


class ConfirmBookingRequest(BaseModel):
    booking_id: str


class CancelBookingRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


# -----------------------------
# Payments
# -----------------------------
class PaymentIntentRequest(BaseModel):
    event_id: str
    quantity: int = Field(default=1, gt=0)
    booking_id: str | None = None


class PaymentIntentResponse(BaseModel):
    client_secret: str
    payment_intent_id: str
    amount: int
    currency: str
    key_id: str | None = None


class ConfirmPaymentRequest(BaseModel):
    payment_intent_id: str


class ConfirmPaymentResponse(BaseModel):
    booking: BookingResponse
    created: bool


class RefundRequest(BaseModel):
    amount: Decimal | None = Field(default=None, gt=0, decimal_places=2)
    reason: str | None = Field(default=None, max_length=500)


class PaymentIntentDetails(BaseModel):
    id: str
    status: str
    amount: int
    currency: str
    metadata: dict[str, str]


class ValidatePaymentRequest(BaseModel):
    payment_intent_id: str
    expected_amount: Decimal = Field(ge=0)


class PaymentLedgerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    booking_id: str
    user_id: str
    event_id: str
    amount: Decimal
    currency: str
    status: str
    provider: str
    payment_intent_id: str | None = None
    transaction_id: str | None = None
    refund_id: str | None = None
    refund_amount: Decimal | None = None
    created_at: datetime | None = None


class HostEarningsResponse(BaseModel):
    total_revenue: Decimal
    total_refunds: Decimal
    net_earnings: Decimal
    total_bookings: int
    average_booking_value: Decimal


class WebhookAck(BaseModel):
    received: bool
    status: str


# -----------------------------
# Reviews
# -----------------------------
class ReviewCreate(BaseModel):
    event_id: str
    rating: int = Field(ge=1, le=5)
    comment: str = Field(default="", max_length=1000)


class ReviewResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    host_id: str
    event_id: str
    rating: int
    comment: str
