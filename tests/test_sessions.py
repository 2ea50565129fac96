from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from evrent.database import transaction
from evrent.errors import CapacityExceeded, InvalidState, ValidationError
from evrent.services import ledger
from evrent.services.availability import get_charger
from evrent.services.bookings import create_booking, get_booking
from evrent.services.sessions import (
    charger_session_stats,
    get_active_session,
    pause_session,
    record_progress,
    resume_session,
    session_history,
    session_stats,
    start_session,
    stop_session,
)


def t(hour, minute=0):
    return datetime(2030, 1, 1, hour, minute, tzinfo=timezone.utc)


def start(db, charger, user, booking=None, now=None):
    with transaction(db):
        return start_session(
            db, charger.id, user.id, booking.id if booking else None, now=now or t(10)
        )


def progress(db, session, energy, sequence=None, now=None):
    with transaction(db):
        return record_progress(db, session.id, Decimal(str(energy)), sequence=sequence, now=now or t(10, 30))


def stop(db, session, now):
    with transaction(db):
        return stop_session(db, session.id, now=now)


@pytest.fixture
def booked(db, make_user, make_charger):
    charger = make_charger(total_ports=1, per_kwh="0.30", per_hour="1.00", peak_multiplier="1.5")
    user = make_user(balance="100.00")
    with transaction(db):
        booking = create_booking(db, user.id, charger.id, t(10), t(12), now=t(8))
    return charger, user, booking


def test_off_peak_session_is_billed(db, booked):
    charger, user, booking = booked
    session = start(db, charger, user, booking)
    assert get_booking(db, booking.id).status == "active"

    progress(db, session, 10, sequence=1)
    session = stop(db, session, t(12))

    assert session.status == "completed"
    assert session.duration_minutes == 120
    assert session.cost == Decimal("5.00")
    assert session.is_peak_hour is False
    assert ledger.get_balance(db, user.id) == Decimal("95.00")
    assert get_booking(db, booking.id).status == "completed"


def test_peak_session_uses_multiplier(db, make_user, make_charger):
    charger = make_charger(per_kwh="0.30", per_hour="1.00", peak_multiplier="1.5")
    user = make_user(balance="100.00")
    with transaction(db):
        booking = create_booking(db, user.id, charger.id, t(18), t(20), now=t(8))

    session = start(db, charger, user, booking, now=t(18))
    progress(db, session, 10, now=t(19))
    session = stop(db, session, t(20))

    assert session.is_peak_hour is True
    assert session.cost == Decimal("7.50")


def test_stop_writes_ledger_entry(db, booked):
    charger, user, booking = booked
    session = start(db, charger, user, booking)
    progress(db, session, 10)
    stop(db, session, t(12))

    (tx, _deposit) = ledger.list_transactions(db, user.id)
    assert tx.kind == "debit"
    assert tx.amount == Decimal("-5.00")
    assert tx.session_id == session.id
    assert tx.booking_id == booking.id
    assert ledger.verify_wallet(db, user.id)["consistent"]


def test_start_is_idempotent(db, booked):
    charger, user, booking = booked
    first = start(db, charger, user, booking)
    again = start(db, charger, user, booking, now=t(10, 1))
    assert again.id == first.id


def test_walkup_start_is_idempotent(db, make_user, make_charger):
    charger = make_charger(total_ports=2)
    user = make_user()
    first = start(db, charger, user)
    again = start(db, charger, user, now=t(10, 5))
    assert again.id == first.id
    assert get_active_session(db, user.id).id == first.id


def test_walkup_needs_a_free_port(db, make_user, make_charger):
    charger = make_charger(total_ports=1)
    start(db, charger, make_user())
    with pytest.raises(CapacityExceeded):
        start(db, charger, make_user())


def test_cannot_start_too_early_or_after_window(db, booked):
    charger, user, booking = booked
    with pytest.raises(ValidationError):
        start(db, charger, user, booking, now=t(9, 30))
    with pytest.raises(ValidationError):
        start(db, charger, user, booking, now=t(12))
    # Early start grace
    assert start(db, charger, user, booking, now=t(9, 55)).status == "active"


def test_cannot_start_someone_elses_booking(db, booked, make_user):
    charger, _, booking = booked
    with pytest.raises(ValidationError):
        start(db, charger, make_user(), booking)


def test_cannot_start_on_cancelled_booking(db, booked):
    from evrent.services.bookings import cancel_booking

    charger, user, booking = booked
    with transaction(db):
        cancel_booking(db, booking.id, now=t(8))
    with pytest.raises(InvalidState):
        start(db, charger, user, booking)


def test_energy_accumulates_deltas(db, booked):
    charger, user, booking = booked
    session = start(db, charger, user, booking)

    progress(db, session, 5, sequence=1)
    progress(db, session, 8, sequence=2)
    assert session.energy_delivered == Decimal("8")

    # Stale / duplicate reading is ignored
    progress(db, session, 20, sequence=2)
    assert session.energy_delivered == Decimal("8")

    # Meter restart: lower reading becomes the new baseline
    progress(db, session, 2, sequence=3)
    assert session.energy_delivered == Decimal("8")
    progress(db, session, 4, sequence=4)
    assert session.energy_delivered == Decimal("10")


def test_telemetry_keeps_latest_metrics(db, booked):
    charger, user, booking = booked
    session = start(db, charger, user, booking)
    with transaction(db):
        record_progress(
            db, session.id, Decimal("1.5"),
            power_kw=Decimal("22"), battery_percent=Decimal("48"), now=t(10, 10),
        )
    assert session.power_kw == Decimal("22")
    assert session.battery_percent == Decimal("48")
    assert session.last_telemetry_at == t(10, 10)


def test_paused_time_is_not_billed(db, make_user, make_charger):
    charger = make_charger(per_kwh="0", per_hour="1.00")
    user = make_user(balance="10.00")
    session = start(db, charger, user)

    with transaction(db):
        pause_session(db, session.id, now=t(10, 30))
    with pytest.raises(InvalidState):
        with transaction(db):
            pause_session(db, session.id, now=t(10, 40))
    with transaction(db):
        resume_session(db, session.id, now=t(11))
    session = stop(db, session, t(12))

    assert session.paused_seconds == 1800
    assert session.duration_minutes == 90
    assert session.cost == Decimal("1.50")


def test_stop_while_paused(db, make_user, make_charger):
    charger = make_charger(per_kwh="0", per_hour="1.00")
    session = start(db, charger, make_user())
    with transaction(db):
        pause_session(db, session.id, now=t(11))
    session = stop(db, session, t(12))
    assert session.duration_minutes == 60


def test_negative_balance_is_flagged(db, make_user, make_charger, fake_redis):
    charger = make_charger(per_kwh="0.30", per_hour="1.00")
    user = make_user(balance="1.00")
    session = start(db, charger, user)
    progress(db, session, 10)
    session = stop(db, session, t(12))

    assert session.collections_flag is True
    assert ledger.get_balance(db, user.id) == Decimal("-4.00")
    assert [e["session_id"] for e in fake_redis.events("wallet_negative")] == [session.id]


def test_stopped_session_rejects_updates(db, booked):
    charger, user, booking = booked
    session = start(db, charger, user, booking)
    stop(db, session, t(11))

    with pytest.raises(InvalidState):
        stop(db, session, t(11, 30))
    with pytest.raises(InvalidState):
        progress(db, session, 3)


def test_charger_flag_follows_occupancy(db, make_user, make_charger):
    charger = make_charger(total_ports=1)
    session = start(db, charger, make_user())
    assert get_charger(db, charger.id).status == "busy"

    stop(db, session, t(11))
    assert get_charger(db, charger.id).status == "active"


def test_history_and_stats(db, make_user, make_charger):
    charger = make_charger(total_ports=2, per_kwh="1.00", per_hour="0")
    user = make_user(balance="100.00")

    for energy, begin in ((5, t(10)), (15, t(13))):
        session = start(db, charger, user, now=begin)
        progress(db, session, energy, now=begin + timedelta(minutes=30))
        stop(db, session, begin + timedelta(hours=1))

    history = session_history(db, user.id)
    assert [s.cost for s in history] == [Decimal("15.00"), Decimal("5.00")]
    assert len(session_history(db, user.id, min_cost=Decimal("10"))) == 1

    stats = session_stats(db, user.id)
    assert stats["total_sessions"] == 2
    assert stats["total_spent"] == Decimal("20.00")
    assert stats["max_cost"] == Decimal("15.00")
    assert stats["average_cost"] == Decimal("10.00")

    owner_stats = charger_session_stats(db, charger.id)
    assert owner_stats["unique_users"] == 1
    assert owner_stats["total_revenue"] == Decimal("20.00")


def open_sessions(db, charger):
    from evrent.models import ChargingSessions

    return (
        db.query(ChargingSessions)
        .filter(ChargingSessions.charger_id == charger.id, ChargingSessions.status.in_(("active", "paused")))
        .count()
    )


def test_cancelled_booking_keeps_port_while_charging(db, booked, make_user):
    from evrent.services.bookings import cancel_booking

    charger, user, booking = booked
    start(db, charger, user, booking)
    with transaction(db):
        cancel_booking(db, booking.id, "left early", now=t(10, 30))

    other = make_user()
    with pytest.raises(CapacityExceeded):
        with transaction(db):
            create_booking(db, other.id, charger.id, t(10, 30), t(11, 30), now=t(10, 30))
    assert open_sessions(db, charger) == 1


def test_overrun_sweep_keeps_port_while_charging(db, make_user, make_charger):
    from evrent.services.sweeps import auto_complete_overrun

    charger = make_charger(total_ports=1)
    user = make_user(balance="50.00")
    with transaction(db):
        booking = create_booking(db, user.id, charger.id, t(10), t(11), now=t(8))
    session = start(db, charger, user, booking)

    with transaction(db):
        assert auto_complete_overrun(db, t(11, 5)) == 1

    with pytest.raises(CapacityExceeded):
        start(db, charger, make_user(), now=t(11, 10))
    stop(db, session, t(11, 15))
    assert start(db, charger, make_user(), now=t(11, 20)).status == "active"


def test_early_start_waits_for_previous_driver(db, make_user, make_charger):
    charger = make_charger(total_ports=1)
    first, second = make_user(balance="50.00"), make_user(balance="50.00")
    with transaction(db):
        a = create_booking(db, first.id, charger.id, t(9), t(10), now=t(8))
        b = create_booking(db, second.id, charger.id, t(10), t(11), now=t(8))
    session_a = start(db, charger, first, a, now=t(9))

    with pytest.raises(CapacityExceeded):
        start(db, charger, second, b, now=t(9, 55))
    assert get_booking(db, b.id).status == "reserved"
    assert open_sessions(db, charger) == 1

    stop(db, session_a, t(9, 57))
    assert start(db, charger, second, b, now=t(9, 58)).status == "active"
    assert open_sessions(db, charger) == 1


def test_on_time_start_waits_for_overrunning_driver(db, make_user, make_charger):
    charger = make_charger(total_ports=1)
    first, second = make_user(balance="50.00"), make_user(balance="50.00")
    with transaction(db):
        a = create_booking(db, first.id, charger.id, t(9), t(10), now=t(8))
        b = create_booking(db, second.id, charger.id, t(10), t(11), now=t(8))
    start(db, charger, first, a, now=t(9))

    with pytest.raises(CapacityExceeded):
        start(db, charger, second, b, now=t(10, 5))
    assert open_sessions(db, charger) == 1
