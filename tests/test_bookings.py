from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from evrent.database import transaction
from evrent.errors import CapacityExceeded, InsufficientFunds, InvalidState, NotFound, ValidationError
from evrent.services import ledger
from evrent.services.bookings import (
    activate_booking,
    cancel_booking,
    complete_booking,
    confirm_booking,
    create_booking,
    get_booking,
    pay_booking,
    reschedule_booking,
)

NOW = datetime(2030, 1, 1, 6, 0, tzinfo=timezone.utc)


def t(hour, minute=0):
    return datetime(2030, 1, 1, hour, minute, tzinfo=timezone.utc)


def book(db, user, charger, start=None, end=None, **kwargs):
    with transaction(db):
        return create_booking(
            db, user.id, charger.id, start or t(10), end or t(11), now=NOW, **kwargs
        )


def test_create_quotes_and_reserves(db, make_user, make_charger, fake_redis):
    charger = make_charger(per_hour="4.00")
    user = make_user()

    booking = book(db, user, charger, t(10), t(11, 30), notes="bay 3 please")

    assert booking.status == "reserved"
    assert booking.duration_minutes == 90
    assert booking.amount == Decimal("6.00")
    assert booking.notes == "bay 3 please"
    assert [e["booking_id"] for e in fake_redis.events("booking_created")] == [booking.id]


def test_disabled_charger_rejected(db, make_user, make_charger):
    charger = make_charger(status="disabled")
    with pytest.raises(InvalidState):
        book(db, make_user(), charger)


def test_busy_charger_is_still_bookable(db, make_user, make_charger):
    charger = make_charger(total_ports=2, status="busy")
    assert book(db, make_user(), charger).status == "reserved"


def test_past_window_rejected(db, make_user, make_charger):
    charger = make_charger()
    with pytest.raises(ValidationError):
        book(db, make_user(), charger, t(4), t(5))


def test_unknown_user_or_charger(db, make_user, make_charger):
    charger = make_charger()
    with pytest.raises(NotFound):
        with transaction(db):
            create_booking(db, 999, charger.id, t(10), t(11), now=NOW)
    user = make_user()
    with pytest.raises(NotFound):
        with transaction(db):
            create_booking(db, user.id, 999, t(10), t(11), now=NOW)


def test_pay_debits_wallet(db, make_user, make_charger):
    charger = make_charger(per_hour="50.00")
    user = make_user(balance="80.00")
    booking = book(db, user, charger)

    with transaction(db):
        pay_booking(db, booking.id, now=NOW)

    assert booking.paid_amount == Decimal("50.00")
    assert ledger.get_balance(db, user.id) == Decimal("30.00")


def test_pay_twice_rejected(db, make_user, make_charger):
    charger = make_charger(per_hour="10.00")
    user = make_user(balance="100.00")
    booking = book(db, user, charger)

    with transaction(db):
        pay_booking(db, booking.id, now=NOW)
    with pytest.raises(InvalidState):
        with transaction(db):
            pay_booking(db, booking.id, now=NOW)

    assert ledger.get_balance(db, user.id) == Decimal("90.00")


def test_pay_without_funds_leaves_booking_unpaid(db, make_user, make_charger):
    charger = make_charger(per_hour="50.00")
    user = make_user(balance="10.00")
    booking = book(db, user, charger)

    with pytest.raises(InsufficientFunds):
        with transaction(db):
            pay_booking(db, booking.id, now=NOW)

    assert get_booking(db, booking.id).paid_amount is None
    assert ledger.get_balance(db, user.id) == Decimal("10.00")


def test_paying_pending_booking_confirms_it(db, make_user, make_charger):
    charger = make_charger(per_hour="5.00")
    user = make_user(balance="5.00")
    booking = book(db, user, charger, require_confirmation=True)

    with transaction(db):
        pay_booking(db, booking.id, now=NOW)

    assert booking.status == "confirmed"
    assert booking.confirmed_at == NOW


@pytest.mark.parametrize(
    "cancel_at, refund, balance",
    [
        (t(7), Decimal("50.00"), Decimal("50.00")),
        (t(8, 30), Decimal("25.00"), Decimal("25.00")),
        (t(9, 50), Decimal("0.00"), Decimal("0.00")),
    ],
)
def test_cancel_credits_refund(db, make_user, make_charger, cancel_at, refund, balance):
    charger = make_charger(per_hour="50.00")
    user = make_user(balance="50.00")
    booking = book(db, user, charger, t(10), t(11))
    with transaction(db):
        pay_booking(db, booking.id, now=NOW)

    with transaction(db):
        cancel_booking(db, booking.id, "plans changed", now=cancel_at)

    assert booking.status == "cancelled"
    assert booking.refund_amount == refund
    assert booking.cancel_reason == "plans changed"
    assert ledger.get_balance(db, user.id) == balance
    assert ledger.verify_wallet(db, user.id)["consistent"]


def test_terminal_booking_cannot_transition(db, make_user, make_charger):
    charger = make_charger()
    booking = book(db, make_user(), charger)
    with transaction(db):
        cancel_booking(db, booking.id, now=NOW)

    for action in (
        lambda: cancel_booking(db, booking.id, now=NOW),
        lambda: confirm_booking(db, booking.id, now=NOW),
        lambda: pay_booking(db, booking.id, now=NOW),
        lambda: reschedule_booking(db, booking.id, t(12), t(13), now=NOW),
    ):
        with pytest.raises(InvalidState):
            with transaction(db):
                action()


def test_confirm_only_pending(db, make_user, make_charger):
    charger = make_charger(total_ports=2)
    user = make_user()
    pending = book(db, user, charger, require_confirmation=True)
    reserved = book(db, user, charger)

    with transaction(db):
        confirm_booking(db, pending.id, now=NOW)
    assert pending.status == "confirmed"

    with pytest.raises(InvalidState):
        with transaction(db):
            confirm_booking(db, reserved.id, now=NOW)


def test_reschedule_excludes_own_booking(db, make_user, make_charger):
    charger = make_charger(total_ports=1)
    booking = book(db, make_user(), charger, t(10), t(11))

    with transaction(db):
        reschedule_booking(db, booking.id, t(10, 30), t(11, 30), now=NOW)

    assert booking.start_time == t(10, 30)
    assert booking.end_time == t(11, 30)
    assert booking.reschedule_count == 1


def test_reschedule_conflict_changes_nothing(db, make_user, make_charger):
    charger = make_charger(total_ports=1)
    mine = book(db, make_user(), charger, t(10), t(11))
    book(db, make_user(), charger, t(12), t(13))

    with pytest.raises(CapacityExceeded):
        with transaction(db):
            reschedule_booking(db, mine.id, t(12, 30), t(13, 30), now=NOW)

    mine = get_booking(db, mine.id)
    assert (mine.start_time, mine.end_time) == (t(10), t(11))
    assert mine.reschedule_count == 0


def test_reschedule_requotes_unpaid_booking(db, make_user, make_charger):
    charger = make_charger(per_hour="2.00")
    booking = book(db, make_user(), charger, t(10), t(11))

    with transaction(db):
        reschedule_booking(db, booking.id, t(10), t(13), now=NOW)

    assert booking.amount == Decimal("6.00")


def test_failed_create_emits_nothing(db, make_user, make_charger, fake_redis):
    charger = make_charger(total_ports=1)
    book(db, make_user(), charger)
    with pytest.raises(CapacityExceeded):
        book(db, make_user(), charger)

    assert len(fake_redis.events("booking_created")) == 1
    assert len(fake_redis.events()) == len(fake_redis.events("booking_created"))


def test_window_checked_before_anything_else(db, make_user, make_charger):
    charger = make_charger()
    with pytest.raises(ValidationError):
        book(db, make_user(), charger, t(11), t(10) - timedelta(minutes=1))


def test_complete_active_booking(db, make_user, make_charger):
    charger = make_charger()
    booking = book(db, make_user(), charger)
    with transaction(db):
        activate_booking(db, get_booking(db, booking.id))

    with transaction(db):
        complete_booking(db, booking.id, now=t(11))

    assert booking.status == "completed"
    assert booking.completed_at == t(11)


def test_complete_requires_active(db, make_user, make_charger):
    charger = make_charger(total_ports=2)
    user = make_user()
    reserved = book(db, user, charger)
    cancelled = book(db, user, charger)
    with transaction(db):
        cancel_booking(db, cancelled.id, now=NOW)

    for booking_id in (reserved.id, cancelled.id):
        with pytest.raises(InvalidState):
            with transaction(db):
                complete_booking(db, booking_id, now=t(11))

    assert get_booking(db, reserved.id).status == "reserved"
    assert get_booking(db, cancelled.id).status == "cancelled"


def test_completed_booking_cannot_complete_again(db, make_user, make_charger):
    charger = make_charger()
    booking = book(db, make_user(), charger)
    with transaction(db):
        activate_booking(db, get_booking(db, booking.id))
    with transaction(db):
        complete_booking(db, booking.id, now=t(11))

    with pytest.raises(InvalidState):
        with transaction(db):
            complete_booking(db, booking.id, now=t(11, 30))


def test_complete_refused_while_charging(db, make_user, make_charger):
    from evrent.services.sessions import start_session

    charger = make_charger()
    user = make_user()
    booking = book(db, user, charger)
    with transaction(db):
        session = start_session(db, charger.id, user.id, booking.id, now=t(10))

    with pytest.raises(InvalidState) as exc:
        with transaction(db):
            complete_booking(db, booking.id, now=t(10, 30))

    assert exc.value.context["session_id"] == session.id
    assert get_booking(db, booking.id).status == "active"
