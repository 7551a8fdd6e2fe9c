from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from eventbook.domain.money import to_amount
from eventbook.infrastructure.repositories.booking_repository import BookingRepository


@dataclass
class HostEarnings:
    total_revenue: Decimal
    total_refunds: Decimal
    net_earnings: Decimal
    total_bookings: int
    average_booking_value: Decimal


class EarningsService:
    """Read-side aggregation over a host's paid bookings."""

    def __init__(self, db: Session):
        self.booking_repository = BookingRepository(db)

    def get_host_earnings(
        self,
        host_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        event_id: str | None = None,
    ) -> HostEarnings:
        bookings = self.booking_repository.list_captured_for_host(
            host_id,
            start=start,
            end=end,
            event_id=event_id,
        )

        total_revenue = sum((booking.amount for booking in bookings), Decimal("0"))
        total_refunds = sum(
            (booking.refund_amount or Decimal("0") for booking in bookings),
            Decimal("0"),
        )
        total_bookings = len(bookings)
        average = total_revenue / total_bookings if total_bookings else Decimal("0")

        return HostEarnings(
            total_revenue=to_amount(total_revenue),
            total_refunds=to_amount(total_refunds),
            net_earnings=to_amount(total_revenue - total_refunds),
            total_bookings=total_bookings,
            average_booking_value=to_amount(average),
        )
