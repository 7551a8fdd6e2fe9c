import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Header, Query, Request
from starlette.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from eventbook.api.dependencies import (
    get_currency,
    get_current_user,
    get_db,
    get_payment_gateway,
)
from eventbook.api.routes.catalog import router as catalog_router
from eventbook.api.schemas.schemas import (
    BookingRequest,
    BookingResponse,
    CancelBookingRequest,
    ConfirmBookingRequest,
    ConfirmPaymentRequest,
    ConfirmPaymentResponse,
    HostEarningsResponse,
    Page,
    PaymentIntentDetails,
    PaymentIntentRequest,
    PaymentIntentResponse,
    PaymentLedgerResponse,
    RefundRequest,
    ValidatePaymentRequest,
    WebhookAck,
)
from eventbook.application.booking_service import BookingService
from eventbook.application.earnings_service import EarningsService
from eventbook.application.payment_service import PaymentService
from eventbook.application.webhook_service import WebhookService
from eventbook.domain.capabilities import UserRole
from eventbook.domain.exceptions import PermissionDeniedError
from eventbook.domain.state_machine import BookingStatus
from eventbook.infrastructure.db.models import User
from eventbook.infrastructure.gateways.payment_gateway import PaymentGateway


router = APIRouter()
router.include_router(catalog_router)
logger = logging.getLogger(__name__)


def _booking_service(
    db: Session = Depends(get_db),
    currency: str = Depends(get_currency),
) -> BookingService:
    return BookingService(db, currency=currency)


def _payment_service(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    currency: str = Depends(get_currency),
) -> PaymentService:
    return PaymentService(db, gateway, currency=currency)


def _require_host(actor: User) -> None:
    if actor.role not in (UserRole.HOST, UserRole.ADMIN):
        raise PermissionDeniedError("Access denied. Host role required.")


@router.get("/health")
def health():
    return {"message": "Event booking engine is running"}


# -----------------------------
# Bookings
# -----------------------------
@router.post("/bookings", response_model=BookingResponse, status_code=201)
def create_booking(
    request: BookingRequest,
    actor: User = Depends(get_current_user),
    service: BookingService = Depends(_booking_service),
):
    booking = service.create_booking(
        event_id=request.event_id,
        user_id=actor.id,
        quantity=request.quantity,
        special_requests=request.special_requests,
    )
    return BookingResponse.model_validate(booking)


@router.get("/bookings", response_model=Page[BookingResponse])
def list_bookings(
    status_filter: BookingStatus | None = Query(default=None, alias="status"),
    view: str = Query(default="user", alias="type"),
    page: int = 1,
    limit: int = 10,
    actor: User = Depends(get_current_user),
    service: BookingService = Depends(_booking_service),
):
    items, total = service.list_bookings(
        actor,
        view=view,
        status=status_filter,
        page=page,
        limit=limit,
    )
    return Page[BookingResponse](
        items=[BookingResponse.model_validate(item) for item in items],
        page=max(page, 1),
        limit=max(1, min(limit, 100)),
        total=total,
    )


@router.post("/bookings/create-intent", response_model=PaymentIntentResponse, status_code=201)
def create_payment_intent(
    request: PaymentIntentRequest,
    actor: User = Depends(get_current_user),
    service: PaymentService = Depends(_payment_service),
):
    result = service.create_payment_intent(
        event_id=request.event_id,
        user_id=actor.id,
        quantity=request.quantity,
        booking_id=request.booking_id,
    )
    return PaymentIntentResponse(
        client_secret=result.client_secret,
        payment_intent_id=result.payment_intent_id,
        amount=result.amount,
        currency=result.currency,
        key_id=result.key_id,
    )


@router.post("/bookings/confirm", response_model=BookingResponse)
def confirm_booking_by_body(
    request: ConfirmBookingRequest,
    actor: User = Depends(get_current_user),
    service: BookingService = Depends(_booking_service),
):
    booking = service.confirm_booking(request.booking_id, actor)
    return BookingResponse.model_validate(booking)


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: str,
    actor: User = Depends(get_current_user),
    service: BookingService = Depends(_booking_service),
):
    return BookingResponse.model_validate(service.get_booking(booking_id, actor))


@router.patch("/bookings/{booking_id}/confirm", response_model=BookingResponse)
def confirm_booking(
    booking_id: str,
    actor: User = Depends(get_current_user),
    service: BookingService = Depends(_booking_service),
):
    booking = service.confirm_booking(booking_id, actor)
    return BookingResponse.model_validate(booking)


@router.patch("/bookings/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
    booking_id: str,
    request: CancelBookingRequest | None = None,
    actor: User = Depends(get_current_user),
    service: BookingService = Depends(_booking_service),
):
    booking = service.cancel_booking(
        booking_id,
        actor,
        reason=request.reason if request else None,
    )
    return BookingResponse.model_validate(booking)


@router.patch("/bookings/{booking_id}/complete", response_model=BookingResponse)
def complete_booking(
    booking_id: str,
    actor: User = Depends(get_current_user),
    service: BookingService = Depends(_booking_service),
):
    booking = service.complete_booking(booking_id, actor)
    return BookingResponse.model_validate(booking)


@router.post("/bookings/{booking_id}/refund", response_model=BookingResponse)
def refund_booking(
    booking_id: str,
    request: RefundRequest | None = None,
    actor: User = Depends(get_current_user),
    service: PaymentService = Depends(_payment_service),
):
    booking = service.process_refund(
        booking_id,
        amount=request.amount if request else None,
        reason=request.reason if request else None,
        actor=actor,
    )
    return BookingResponse.model_validate(booking)


# -----------------------------
# Payments
# -----------------------------
@router.post("/payments/confirm", response_model=ConfirmPaymentResponse)
def confirm_payment(
    request: ConfirmPaymentRequest,
    actor: User = Depends(get_current_user),
    service: PaymentService = Depends(_payment_service),
):
    booking, created = service.confirm_payment(request.payment_intent_id)
    if booking.user_id != actor.id and actor.role != UserRole.ADMIN:
        raise PermissionDeniedError("Access denied")
    return ConfirmPaymentResponse(
        booking=BookingResponse.model_validate(booking),
        created=created,
    )


@router.get("/payments/intents/{payment_intent_id}", response_model=PaymentIntentDetails)
def get_payment_details(
    payment_intent_id: str,
    actor: User = Depends(get_current_user),
    service: PaymentService = Depends(_payment_service),
):
    intent = service.get_payment_details(payment_intent_id, actor=actor)
    return PaymentIntentDetails(
        id=intent.id,
        status=intent.status.value,
        amount=intent.amount,
        currency=intent.currency,
        metadata=intent.metadata,
    )


@router.post("/payments/validate")
def validate_payment(
    request: ValidatePaymentRequest,
    actor: User = Depends(get_current_user),
    service: PaymentService = Depends(_payment_service),
):
    return {
        "payment_intent_id": request.payment_intent_id,
        "valid": service.validate_payment(
            request.payment_intent_id,
            request.expected_amount,
            actor=actor,
        ),
    }


@router.get("/payments/me", response_model=Page[BookingResponse])
def my_payments(
    page: int = 1,
    limit: int = 10,
    actor: User = Depends(get_current_user),
    service: PaymentService = Depends(_payment_service),
):
    items, total = service.user_payments(actor.id, page=page, limit=limit)
    return Page[BookingResponse](
        items=[BookingResponse.model_validate(item) for item in items],
        page=max(page, 1),
        limit=max(1, min(limit, 100)),
        total=total,
    )


@router.get("/payments/host", response_model=Page[PaymentLedgerResponse])
def host_payments(
    status_filter: str | None = Query(default=None, alias="status"),
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: int = 1,
    limit: int = 10,
    actor: User = Depends(get_current_user),
    service: PaymentService = Depends(_payment_service),
):
    _require_host(actor)
    items, total = service.host_payments(
        actor.id,
        status=status_filter,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    return Page[PaymentLedgerResponse](
        items=[PaymentLedgerResponse.model_validate(item) for item in items],
        page=max(page, 1),
        limit=max(1, min(limit, 100)),
        total=total,
    )


@router.get("/payments/host/earnings", response_model=HostEarningsResponse)
def host_earnings(
    start: datetime | None = None,
    end: datetime | None = None,
    event_id: str | None = None,
    actor: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _require_host(actor)
    earnings = EarningsService(db).get_host_earnings(
        actor.id,
        start=start,
        end=end,
        event_id=event_id,
    )
    return HostEarningsResponse(
        total_revenue=earnings.total_revenue,
        total_refunds=earnings.total_refunds,
        net_earnings=earnings.net_earnings,
        total_bookings=earnings.total_bookings,
        average_booking_value=earnings.average_booking_value,
    )


@router.post("/payments/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    x_razorpay_signature: str | None = Header(default=None),
    x_razorpay_event_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    currency: str = Depends(get_currency),
):
    payload = await request.body()
    service = WebhookService(db, gateway, currency=currency)
    result = await run_in_threadpool(
        service.handle,
        payload,
        x_razorpay_signature,
        x_razorpay_event_id,
    )
    return WebhookAck(**result)
