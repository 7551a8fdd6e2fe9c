from decimal import Decimal

import pytest

from eventbook.application.booking_service import BookingService
from eventbook.application.earnings_service import EarningsService
from eventbook.application.payment_service import PaymentService
from eventbook.domain.capabilities import UserRole


@pytest.fixture
def host(make_user):
    return make_user(role=UserRole.HOST)


def _pay(db_session, gateway, event, user, quantity=1):
    service = PaymentService(db_session, gateway)
    intent = service.create_payment_intent(event.id, user.id, quantity=quantity)
    gateway.succeed_intent(intent.payment_intent_id)
    booking, _ = service.confirm_payment(intent.payment_intent_id)
    db_session.commit()
    return booking


def test_host_earnings_count_paid_standing_bookings(db_session, gateway, host, make_user, make_event):
    event = make_event(host, price="500.00")
    _pay(db_session, gateway, event, make_user())
    _pay(db_session, gateway, event, make_user(), quantity=2)

    # refunded, unpaid and host-cancelled bookings earn nothing
    refunded = _pay(db_session, gateway, event, make_user())
    PaymentService(db_session, gateway).process_refund(refunded.id, amount=Decimal("200.00"), actor=host)
    BookingService(db_session).create_booking(event.id, make_user().id)
    cancelled = _pay(db_session, gateway, event, make_user())
    BookingService(db_session).cancel_booking(cancelled.id, host)
    db_session.commit()

    earnings = EarningsService(db_session).get_host_earnings(host.id)

    assert earnings.total_revenue == Decimal("1500.00")
    assert earnings.total_refunds == Decimal("0.00")
    assert earnings.net_earnings == Decimal("1500.00")
    assert earnings.total_bookings == 2
    assert earnings.average_booking_value == Decimal("750.00")


def test_partial_refund_drops_booking_from_earnings(db_session, gateway, host, make_user, make_event):
    event = make_event(host, price="10.00")
    _pay(db_session, gateway, event, make_user())
    refunded = _pay(db_session, gateway, event, make_user())
    PaymentService(db_session, gateway).process_refund(refunded.id, amount=Decimal("5.00"), actor=host)
    db_session.commit()

    earnings = EarningsService(db_session).get_host_earnings(host.id)

    assert earnings.total_bookings == 1
    assert earnings.total_revenue == Decimal("10.00")
    assert earnings.net_earnings == Decimal("10.00")


def test_host_earnings_filtered_by_event(db_session, gateway, host, make_user, make_event):
    first = make_event(host, price="100.00")
    second = make_event(host, price="250.00")
    _pay(db_session, gateway, first, make_user())
    _pay(db_session, gateway, second, make_user())

    earnings = EarningsService(db_session).get_host_earnings(host.id, event_id=second.id)

    assert earnings.total_revenue == Decimal("250.00")
    assert earnings.total_bookings == 1


def test_host_without_bookings(db_session, host):
    earnings = EarningsService(db_session).get_host_earnings(host.id)

    assert earnings.total_revenue == Decimal("0.00")
    assert earnings.net_earnings == Decimal("0.00")
    assert earnings.total_bookings == 0
    assert earnings.average_booking_value == Decimal("0.00")


def test_other_hosts_are_excluded(db_session, gateway, host, make_user, make_event):
    other_host = make_user(role=UserRole.HOST)
    _pay(db_session, gateway, make_event(other_host, price="900.00"), make_user())

    assert EarningsService(db_session).get_host_earnings(host.id).total_bookings == 0
